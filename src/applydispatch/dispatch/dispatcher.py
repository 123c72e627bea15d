"""Outbound email lifecycle: approval gate, quota re-check, send, retry."""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from typing import Awaitable, Callable, Sequence

from applydispatch.dispatch.lifecycle import application_status_for, can_advance
from applydispatch.dispatch.quota import DailyQuotaGuard
from applydispatch.dispatch.transport import DeliveryEvent, Envelope, MailTransport, TransportReceipt
from applydispatch.exceptions import InvalidTransition, TransportError
from applydispatch.models import (
    Application,
    ApplicationDraft,
    ApplicationStatus,
    ApprovalStatus,
    EmailLog,
    SentStatus,
)
from applydispatch.preferences import AutoApplicationSettings
from applydispatch.storage.tracker import ApplicationTracker

logger = logging.getLogger(__name__)


def new_mail_id() -> str:
    return f"mail_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


class Dispatcher:
    """Drives an application from ``draft`` to ``sent`` and records every attempt.

    Each attempt gets its own ``mail_id`` and its own email log row; the
    row is keyed by that id, so repeated acknowledgements are harmless.
    """

    def __init__(
        self,
        tracker: ApplicationTracker,
        transport: MailTransport,
        quota: DailyQuotaGuard | None = None,
        retry_delays: Sequence[float] = (1.0, 4.0, 10.0),
        approve_synthesized_contacts: bool = True,
        mail_id_factory: Callable[[], str] = new_mail_id,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._tracker = tracker
        self._transport = transport
        self._quota = quota or DailyQuotaGuard(tracker)
        self._retry_delays = tuple(retry_delays)
        self._approve_synthesized = approve_synthesized_contacts
        self._new_mail_id = mail_id_factory
        self._sleep = sleep

    def needs_approval(self, app: Application, settings: AutoApplicationSettings) -> bool:
        if app.approval_status == ApprovalStatus.APPROVED:
            return False
        return (
            settings.require_approval
            or not settings.auto_send
            or (self._approve_synthesized and app.contact_synthesized)
        )

    async def dispatch(
        self,
        app: Application,
        draft: ApplicationDraft,
        settings: AutoApplicationSettings,
        from_email: str,
        reply_to: str = "",
    ) -> EmailLog | None:
        """Send *draft* for *app*.

        Returns the log row of the accepted attempt, or ``None`` when the
        application is held for approval. Raises :class:`QuotaExceeded`
        when the day's quota is gone (the application stays a draft) and
        :class:`TransportError` once every attempt has failed. Any other
        error, cancellation included, leaves the application ``failed``
        before it propagates.
        """
        if app.status != ApplicationStatus.DRAFT:
            raise InvalidTransition(f"Application {app.id} is {app.status.value}, not draft.")
        if self.needs_approval(app, settings):
            logger.info("Application %s awaits approval.", app.id)
            return None

        await self._quota.claim(app, settings.max_applications_per_day)
        try:
            return await self._send_with_retries(app, draft, from_email, reply_to)
        except TransportError:
            raise
        except (Exception, asyncio.CancelledError) as exc:
            self._abort(app, exc)
            raise

    async def _send_with_retries(
        self, app: Application, draft: ApplicationDraft, from_email: str, reply_to: str
    ) -> EmailLog | None:
        envelope_fields = dict(
            from_email=from_email,
            to_email=draft.to_email,
            subject=draft.subject,
            body=draft.body,
            attachments=tuple(draft.attachment_refs),
            reply_to=reply_to,
        )
        attempts = len(self._retry_delays) + 1
        retries = self._tracker.last_retry_count(app.id) + 1
        attempt = 0
        while True:
            attempt += 1
            mail_id = self._new_mail_id()
            self._tracker.record_email_log(
                EmailLog(
                    application_id=app.id,
                    user_id=app.user_id,
                    mail_id=mail_id,
                    to_email=draft.to_email,
                    from_email=from_email,
                    subject=draft.subject,
                    body=draft.body,
                    attachments=tuple(draft.attachment_refs),
                    retries=retries,
                )
            )
            try:
                receipt = await self._transport.send(Envelope(mail_id=mail_id, **envelope_fields))
            except TransportError as exc:
                self._tracker.advance_email_log(mail_id, SentStatus.FAILED, error_message=str(exc))
                logger.warning(
                    "Send attempt %d/%d for %s failed: %s", attempt, attempts, app.id, exc
                )
                if attempt == attempts:
                    self._tracker.advance_application(
                        app, ApplicationStatus.FAILED, error_message=str(exc)
                    )
                    raise TransportError(
                        f"Giving up on application {app.id} after {attempts} attempts: {exc}"
                    ) from exc
                await self._sleep(self._retry_delays[attempt - 1])
                retries += 1
                continue

            if receipt.mail_id != mail_id:
                logger.warning(
                    "Transport acknowledged %s for attempt %s; keeping %s.",
                    receipt.mail_id,
                    mail_id,
                    mail_id,
                )
                receipt = TransportReceipt(mail_id=mail_id, accepted_at=receipt.accepted_at)
            return self.acknowledge(receipt)

    def _abort(self, app: Application, exc: BaseException) -> None:
        """Mark *app* and its open log rows failed after an unexpected error or cancellation."""
        reason = "send cancelled" if isinstance(exc, asyncio.CancelledError) else repr(exc)
        logger.error("Sending application %s broke off: %s", app.id, reason)
        for log in self._tracker.email_logs_for(app.id):
            if log.sent_status == SentStatus.PENDING:
                self._tracker.advance_email_log(
                    log.mail_id, SentStatus.FAILED, error_message=reason
                )
        current = self._tracker.get_application(app.id)
        if current is not None and can_advance(current.status, ApplicationStatus.FAILED):
            self._tracker.advance_application(
                current, ApplicationStatus.FAILED, error_message=reason
            )
            app.status = current.status
            app.error_message = reason

    def acknowledge(self, receipt: TransportReceipt) -> EmailLog | None:
        """Record the transport's acceptance. Safe to call more than once."""
        log = self._tracker.get_email_log(receipt.mail_id)
        if log is None:
            logger.warning("Acknowledgement for unknown mail id %s.", receipt.mail_id)
            return None
        self._tracker.advance_email_log(receipt.mail_id, SentStatus.SENT, receipt.accepted_at)
        app = self._tracker.get_application(log.application_id)
        if app is not None and can_advance(app.status, ApplicationStatus.SENT):
            self._tracker.advance_application(
                app,
                ApplicationStatus.SENT,
                mail_id=receipt.mail_id,
                sent_at=receipt.accepted_at,
            )
        return self._tracker.get_email_log(receipt.mail_id)

    def handle_delivery_event(self, event: DeliveryEvent) -> bool:
        """Apply a transport status report. Duplicates and regressions are ignored."""
        log = self._tracker.get_email_log(event.mail_id)
        if log is None:
            logger.warning("Delivery event for unknown mail id %s.", event.mail_id)
            return False
        if not self._tracker.advance_email_log(event.mail_id, event.status, event.timestamp):
            return False

        app = self._tracker.get_application(log.application_id)
        target = application_status_for(event.status)
        if app is not None and app.mail_id == event.mail_id and can_advance(app.status, target):
            self._tracker.advance_application(app, target)
        logger.info("Mail %s is now %s.", event.mail_id, event.status.value)
        return True
