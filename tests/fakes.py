"""Scripted stand-ins for the content generator and the mail transport."""

from __future__ import annotations

import asyncio

from applydispatch.composition.generator import GenerationResult
from applydispatch.dispatch.transport import Envelope, TransportReceipt
from applydispatch.exceptions import GenerationError, TransportError


class FakeGenerator:
    """Scripted content generator.

    *replies* are consumed in order; an Exception instance is raised
    instead of returned. Once exhausted, *default* is returned.
    """

    def __init__(self, replies=(), default="Generated letter.", fail_when=None, delay=0.0):
        self.replies = list(replies)
        self.default = default
        self.fail_when = fail_when  # substring of the prompt that triggers a failure
        self.delay = delay
        self.prompts: list[str] = []
        self.closed = False

    async def generate(self, prompt: str) -> GenerationResult:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_when and self.fail_when in prompt:
            raise GenerationError("generator timeout")
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return GenerationResult(content=reply, model="fake")

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Accepts every envelope unless told to fail."""

    def __init__(self, fail_first: int = 0, always_fail: bool = False, fail_to=()):
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.fail_to = set(fail_to)  # recipients that never get through
        self.sent: list[Envelope] = []
        self.calls = 0

    async def send(self, envelope: Envelope) -> TransportReceipt:
        self.calls += 1
        await asyncio.sleep(0)
        if self.always_fail or self.calls <= self.fail_first or envelope.to_email in self.fail_to:
            raise TransportError("connection refused")
        self.sent.append(envelope)
        return TransportReceipt(mail_id=envelope.mail_id)


async def no_sleep(delay: float) -> None:
    return None
