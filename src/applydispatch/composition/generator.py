"""Content generator: the text-generation service behind letters and triage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import openai

from applydispatch.exceptions import ConfigurationError, GenerationError
from applydispatch.settings import AppSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    content: str
    model: str = ""


@runtime_checkable
class ContentGenerator(Protocol):
    """Fallible, latency-bearing text generation.

    Implementations raise :class:`GenerationError` on timeouts, quota
    errors and transport failures.
    """

    async def generate(self, prompt: str) -> GenerationResult:
        ...

    async def close(self) -> None:
        ...


class OpenAIContentGenerator:
    """Chat-completions client for OpenAI or any OpenAI-compatible endpoint.

    Retries are left to the callers, which own the backoff policy.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "",
        temperature: float = 0.7,
        max_tokens: int = 2048,
        timeout: float = 30.0,
    ) -> None:
        if not api_key:
            raise ConfigurationError("No API key configured for the content generator.")
        self._client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or None,
            timeout=timeout,
            max_retries=0,
        )
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "OpenAIContentGenerator":
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout,
        )

    async def generate(self, prompt: str) -> GenerationResult:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except openai.APIError as exc:
            raise GenerationError(f"{type(exc).__name__}: {exc}") from exc

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""
        logger.debug("Generated %d chars with %s.", len(content), response.model)
        return GenerationResult(content=content, model=response.model or self._model)

    async def close(self) -> None:
        await self._client.close()
