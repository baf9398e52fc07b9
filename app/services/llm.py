# =============================================================================
# Completion Service — Multi-Provider LLM Abstraction
# =============================================================================
#
# Review agents send one prompt per (chunk, agent) pair and read back one
# text completion. Every provider exposes the same single-prompt call:
#
#   CompletionService (Protocol)
#   ├── AnthropicCompletions         system prompt as the `system=` kwarg
#   ├── OpenAICompatibleCompletions  system prompt as the first message
#   └── build_completion_service()   provider chosen by LLM_PROVIDER
#
# THROTTLING: both SDKs raise their own RateLimitError on HTTP 429. The
# providers re-raise it as app.errors.TransientServiceError, the only
# signal the RateLimiter retries on. SDK retry loops are disabled
# (max_retries=0) so backoff happens in one place.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, Protocol

from app.config import Settings, get_settings
from app.errors import TransientServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    """One model answer, normalised across providers."""

    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class CompletionService(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        """
        Send one user prompt and return the model's text answer.

        Raises:
            TransientServiceError: The service throttled the request.
        """
        ...


@contextmanager
def _throttling_as_transient(provider: str, rate_limit_error: type[Exception]) -> Iterator[None]:
    try:
        yield
    except rate_limit_error as e:
        raise TransientServiceError(f"{provider} throttled the request: {e}") from e


# ---------------------------------------------------------------------------
# Shared provider configuration
# ---------------------------------------------------------------------------


class _ConfiguredProvider:
    """Model name and sampling defaults read once from Settings."""

    label = "completion service"

    def __init__(self, settings: Settings, model: str | None = None) -> None:
        self._model = model or settings.llm_model
        self._temperature = settings.llm_temperature
        self._max_tokens = settings.llm_max_tokens

    def _sampling(self, temperature: float | None, max_tokens: int | None) -> dict:
        return {
            "model": self._model,
            "temperature": self._temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self._max_tokens,
        }

    @staticmethod
    def _require_key(key: str | None, env_hint: str) -> str:
        if not key:
            raise ValueError(f"Completion service needs an API key: set {env_hint}")
        return key


class AnthropicCompletions(_ConfiguredProvider):
    label = "Anthropic"

    def __init__(
        self,
        settings: Settings,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        from anthropic import AsyncAnthropic

        super().__init__(settings, model)
        key = self._require_key(
            api_key or settings.llm_api_key or settings.anthropic_api_key,
            "LLM_API_KEY or ANTHROPIC_API_KEY",
        )
        self._client = AsyncAnthropic(api_key=key, max_retries=0)
        logger.info("Completion service: Anthropic (model=%s)", self._model)

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        from anthropic import RateLimitError

        request = self._sampling(temperature, max_tokens)
        request["messages"] = [{"role": "user", "content": prompt}]
        if system:
            request["system"] = system

        with _throttling_as_transient(self.label, RateLimitError):
            response = await self._client.messages.create(**request)

        text = next(
            (block.text for block in response.content if block.type == "text"), "",
        )
        return Completion(
            text=text,
            model=response.model,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )


class OpenAICompatibleCompletions(_ConfiguredProvider):
    """
    Any chat-completions endpoint: OpenAI itself, or a self-hosted or
    third-party model behind LLM_BASE_URL.
    """

    label = "OpenAI-compatible"

    def __init__(
        self,
        settings: Settings,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
    ) -> None:
        from openai import AsyncOpenAI

        super().__init__(settings, model)
        key = self._require_key(
            api_key or settings.llm_api_key or settings.openai_api_key,
            "LLM_API_KEY or OPENAI_API_KEY",
        )
        endpoint = base_url or settings.llm_base_url
        self._client = AsyncOpenAI(api_key=key, base_url=endpoint, max_retries=0)
        logger.info(
            "Completion service: OpenAI-compatible (model=%s, endpoint=%s)",
            self._model, endpoint or "default",
        )

    async def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Completion:
        from openai import RateLimitError

        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})

        with _throttling_as_transient(self.label, RateLimitError):
            response = await self._client.chat.completions.create(
                messages=messages, **self._sampling(temperature, max_tokens),
            )

        usage = response.usage
        return Completion(
            text=response.choices[0].message.content or "",
            model=response.model or self._model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_PROVIDERS: dict[str, type[_ConfiguredProvider]] = {
    "anthropic": AnthropicCompletions,
    "openai_compatible": OpenAICompatibleCompletions,
}


def build_completion_service(settings: Settings) -> CompletionService:
    """Construct the provider named by `settings.llm_provider`."""
    try:
        provider_cls = _PROVIDERS[settings.llm_provider]
    except KeyError:
        raise ValueError(
            f"Unknown LLM_PROVIDER {settings.llm_provider!r}; "
            f"expected one of {sorted(_PROVIDERS)}"
        ) from None
    return provider_cls(settings)


@lru_cache
def get_completion_service() -> CompletionService:
    """Process-wide completion service for the worker."""
    return build_completion_service(get_settings())
