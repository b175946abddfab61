"""Anthropic Claude provider using anthropic SDK with native async."""

import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from boardroom.models import ModelResponse
from boardroom.providers.base import AIProvider, FailureKind, ProviderError, classify_failure

logger = logging.getLogger(__name__)


def _failure_kind(exc: Exception) -> FailureKind:
    if isinstance(exc, anthropic_sdk.AuthenticationError):
        return FailureKind.INVALID_CREDENTIALS
    if isinstance(exc, anthropic_sdk.RateLimitError):
        return FailureKind.QUOTA_EXCEEDED
    if isinstance(exc, anthropic_sdk.PermissionDeniedError):
        return FailureKind.PERMISSION_DENIED
    if isinstance(exc, anthropic_sdk.APITimeoutError):
        return FailureKind.TIMEOUT
    return classify_failure(exc)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(
                config.name, f"Missing API key: {config.api_key_env}", FailureKind.INVALID_CREDENTIALS
            )
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(self, prompt: str, round_number: int) -> ModelResponse:
        start = time.monotonic()
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}", _failure_kind(exc)) from exc

        latency = time.monotonic() - start

        if response.stop_reason == "refusal":
            raise ProviderError(self._config.name, "Response refused", FailureKind.CONTENT_BLOCKED)

        text_blocks = [b.text for b in response.content if b.type == "text"] if response.content else []
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        content = "\n".join(text_blocks)

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info(
            "Anthropic round %d: %.2fs, %s tokens",
            round_number,
            latency,
            token_count,
        )

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            round_number=round_number,
            content=content,
            latency_sec=latency,
            token_count=token_count,
        )
