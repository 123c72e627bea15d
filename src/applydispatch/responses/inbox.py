"""Inbound recruiter replies: correlate, store, classify."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from applydispatch.exceptions import CorrelationError
from applydispatch.models import RecruiterResponse, utc_now
from applydispatch.responses.classifier import ResponseClassifier
from applydispatch.storage.tracker import ApplicationTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    from_email: str
    subject: str
    body: str
    correlation_id: str  # mail id or a Message-ID / In-Reply-To reference
    received_at: str = field(default_factory=utc_now)
    from_name: str = ""


def normalise_correlation_id(reference: str) -> str:
    """``<mail_1_ab@host>`` -> ``mail_1_ab``; bare mail ids pass through."""
    ref = reference.strip().strip("<>")
    return ref.partition("@")[0] if "@" in ref else ref


class ResponseInbox:
    def __init__(self, tracker: ApplicationTracker, classifier: ResponseClassifier) -> None:
        self._tracker = tracker
        self._classifier = classifier

    async def ingest(self, message: InboundMessage) -> RecruiterResponse:
        """Store *message* against its application and try to classify it.

        Raises :class:`CorrelationError` if no outbound mail matches.
        """
        mail_id = normalise_correlation_id(message.correlation_id)
        log = self._tracker.get_email_log(mail_id)
        if log is None:
            raise CorrelationError(f"No outbound mail matches {message.correlation_id!r}.")
        response = self._tracker.insert_response(
            RecruiterResponse(
                application_id=log.application_id,
                email_log_id=log.id,
                from_email=message.from_email,
                from_name=message.from_name,
                subject=message.subject,
                body=message.body,
                received_at=message.received_at,
            )
        )
        logger.info("Reply from %s stored for application %s.", message.from_email, log.application_id)
        return await self._classify(response)

    async def process_pending(self) -> tuple[int, int]:
        """Retry every unparsed response. Returns ``(classified, deferred)``."""
        classified = deferred = 0
        for response in self._tracker.unparsed_responses():
            result = await self._classify(response)
            if result.parsed:
                classified += 1
            else:
                deferred += 1
        if classified or deferred:
            logger.info("Pending replies: %d classified, %d deferred.", classified, deferred)
        return classified, deferred

    async def _classify(self, response: RecruiterResponse) -> RecruiterResponse:
        result = await self._classifier.classify(response)
        if result.parsed:
            self._tracker.save_classification(result)
        return result

    def action_items(self, user_id: str) -> list[RecruiterResponse]:
        return self._tracker.open_action_items(user_id)

    def mark_handled(self, response_id: int) -> RecruiterResponse:
        """Record that the user acted on a reply. Repeating it is harmless."""
        response = self._tracker.get_response(response_id)
        if response is None:
            raise CorrelationError(f"No recruiter response with id {response_id}.")
        if self._tracker.mark_processed(response_id):
            logger.info("Reply %s marked as handled.", response_id)
        return self._tracker.get_response(response_id)
