"""Triage of recruiter replies with the content generator."""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from typing import Protocol

from pydantic import BaseModel, ValidationError, field_validator

from applydispatch.composition.generator import ContentGenerator
from applydispatch.exceptions import ClassificationDeferred, GenerationError
from applydispatch.models import Priority, RecruiterResponse, ResponseType

logger = logging.getLogger(__name__)

_CLASSIFICATION_PROMPT = """\
You triage replies that recruiters send to job applications.
Classify the email below and answer with a single JSON object, nothing else:
{{"response_type": "positive" | "negative" | "neutral" | "interview_request" | "rejection" | "unknown",
 "sentiment": "<one or two words>",
 "action_required": true | false}}

Subject: {subject}

{body}"""

ACTION_PATTERNS = [
    r"\bavailabilit(?:y|ies)\b",
    r"\bare you available\b",
    r"\bwhen (?:are|would) you be available\b",
    r"\bplease (?:reply|respond|confirm|send|provide|complete|fill)\b",
    r"\blet (?:us|me) know\b",
    r"\bat your earliest convenience\b",
    r"\bby (?:monday|tuesday|wednesday|thursday|friday|tomorrow|end of (?:day|week))\b",
    r"\bdisponibilit[ée]s?\b",
    r"\bmerci de (?:nous )?(?:confirmer|r[ée]pondre|envoyer|transmettre)\b",
]

_BASE_PRIORITY = {
    ResponseType.INTERVIEW_REQUEST: Priority.HIGH,
    ResponseType.REJECTION: Priority.LOW,
}
_ESCALATION = {
    Priority.LOW: Priority.NORMAL,
    Priority.NORMAL: Priority.HIGH,
    Priority.HIGH: Priority.URGENT,
    Priority.URGENT: Priority.URGENT,
}
_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class ActionDetector(Protocol):
    def requests_action(self, text: str) -> bool:
        ...


class RegexActionDetector:
    """Spots explicit requests such as asking for the candidate's availability."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        self._patterns = [re.compile(p, re.IGNORECASE) for p in (patterns or ACTION_PATTERNS)]

    def requests_action(self, text: str) -> bool:
        return any(p.search(text) for p in self._patterns)


class ClassificationPayload(BaseModel):
    response_type: ResponseType = ResponseType.UNKNOWN
    sentiment: str | None = None
    action_required: bool = False

    @field_validator("response_type", mode="before")
    @classmethod
    def _coerce_type(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip().lower().replace(" ", "_")
            if v not in {t.value for t in ResponseType}:
                return ResponseType.UNKNOWN
        return v


def derive_priority(response_type: ResponseType, requests_action: bool) -> Priority:
    priority = _BASE_PRIORITY.get(response_type, Priority.NORMAL)
    return _ESCALATION[priority] if requests_action else priority


def parse_classification(content: str) -> ClassificationPayload:
    match = _JSON_OBJECT_RE.search(content)
    if match is None:
        raise ClassificationDeferred("Generator answer holds no JSON object.")
    try:
        return ClassificationPayload.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ClassificationDeferred(f"Unreadable classification: {exc}") from exc


class ResponseClassifier:
    """Fills the triage fields of a recruiter response.

    Never touches the message content. When the generator fails or its
    answer cannot be read, the response comes back unchanged with
    ``parsed`` still ``False`` so the caller can queue it again.
    """

    def __init__(
        self,
        generator: ContentGenerator,
        action_detector: ActionDetector | None = None,
    ) -> None:
        self._generator = generator
        self._actions = action_detector or RegexActionDetector()

    async def classify(self, response: RecruiterResponse) -> RecruiterResponse:
        try:
            payload = await self._request_classification(response)
        except ClassificationDeferred as exc:
            logger.warning("Classification of response %s deferred: %s", response.id, exc)
            return response

        requests_action = self._actions.requests_action(f"{response.subject}\n{response.body}")
        action_required = (
            payload.action_required
            or requests_action
            or payload.response_type == ResponseType.INTERVIEW_REQUEST
        )
        return dataclasses.replace(
            response,
            parsed=True,
            response_type=payload.response_type,
            sentiment=payload.sentiment,
            action_required=action_required,
            priority=derive_priority(payload.response_type, requests_action),
        )

    async def _request_classification(self, response: RecruiterResponse) -> ClassificationPayload:
        prompt = _CLASSIFICATION_PROMPT.format(subject=response.subject, body=response.body)
        try:
            result = await self._generator.generate(prompt)
        except GenerationError as exc:
            raise ClassificationDeferred(str(exc)) from exc
        return parse_classification(result.content)
