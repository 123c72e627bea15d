"""Status state machines for applications and email log rows.

Application: ``draft -> pending -> sent -> delivered -> read``, with
``failed`` reachable from ``pending`` and ``bounced`` from ``sent``.
A failed application may be put back to ``draft`` for a manual retry;
its email log rows are never touched by that.

Email log: ``pending -> sent -> delivered -> read``, ``pending -> failed``,
``sent -> bounced``. No way back from any state.
"""

from __future__ import annotations

from applydispatch.exceptions import InvalidTransition
from applydispatch.models import ApplicationStatus, SentStatus

_A = ApplicationStatus
_S = SentStatus

APPLICATION_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    _A.DRAFT: frozenset({_A.PENDING}),
    _A.PENDING: frozenset({_A.SENT, _A.FAILED}),
    # read receipts can overtake the delivery report
    _A.SENT: frozenset({_A.DELIVERED, _A.READ, _A.BOUNCED}),
    _A.DELIVERED: frozenset({_A.READ}),
    _A.READ: frozenset(),
    _A.FAILED: frozenset({_A.DRAFT}),
    _A.BOUNCED: frozenset(),
}

EMAIL_TRANSITIONS: dict[SentStatus, frozenset[SentStatus]] = {
    _S.PENDING: frozenset({_S.SENT, _S.FAILED}),
    _S.SENT: frozenset({_S.DELIVERED, _S.READ, _S.BOUNCED}),
    _S.DELIVERED: frozenset({_S.READ}),
    _S.READ: frozenset(),
    _S.FAILED: frozenset(),
    _S.BOUNCED: frozenset(),
}


def can_advance(current: ApplicationStatus | SentStatus, new: ApplicationStatus | SentStatus) -> bool:
    """Return ``True`` when *current* may move to *new*."""
    if isinstance(current, ApplicationStatus):
        return ApplicationStatus(new) in APPLICATION_TRANSITIONS[current]
    return SentStatus(new) in EMAIL_TRANSITIONS[SentStatus(current)]


def ensure_transition(current: ApplicationStatus | SentStatus, new: ApplicationStatus | SentStatus) -> None:
    if not can_advance(current, new):
        raise InvalidTransition(f"Cannot move from {current.value} to {new.value}.")


def application_status_for(sent_status: SentStatus) -> ApplicationStatus:
    """Map an email log status reported by the transport onto the application."""
    return ApplicationStatus(sent_status.value)
