"""OpenAI provider using openai SDK with native async."""

import json
import logging
import os
import time
from typing import Any

import openai
from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from boardroom.models import ModelResponse
from boardroom.providers.base import AIProvider, FailureKind, ProviderError, classify_failure

logger = logging.getLogger(__name__)


def _failure_kind(exc: Exception) -> FailureKind:
    if isinstance(exc, openai.AuthenticationError):
        return FailureKind.INVALID_CREDENTIALS
    if isinstance(exc, openai.RateLimitError):
        return FailureKind.QUOTA_EXCEEDED
    if isinstance(exc, openai.PermissionDeniedError):
        return FailureKind.PERMISSION_DENIED
    if isinstance(exc, openai.APITimeoutError):
        return FailureKind.TIMEOUT
    return classify_failure(exc)


class OpenAIProvider(AIProvider):
    """OpenAI (or OpenAI-compatible) provider via openai SDK."""

    supports_structured_output = True

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(
                config.name, f"Missing API key: {config.api_key_env}", FailureKind.INVALID_CREDENTIALS
            )
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def _complete(self, prompt: str, json_output: bool):
        kwargs: dict[str, Any] = {}
        if json_output:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=self._config.max_tokens,
                temperature=self._config.temperature,
                **kwargs,
            )
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}", _failure_kind(exc)) from exc

        choice = response.choices[0] if response.choices else None
        if choice is not None and choice.finish_reason == "content_filter":
            raise ProviderError(self._config.name, "Content blocked by filter", FailureKind.CONTENT_BLOCKED)
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")
        return response, choice.message.content

    async def generate(self, prompt: str, round_number: int) -> ModelResponse:
        start = time.monotonic()
        response, content = await self._complete(prompt, json_output=False)
        latency = time.monotonic() - start

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info(
            "OpenAI round %d: %.2fs, %s tokens",
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

    async def generate_structured(self, prompt: str, round_number: int) -> dict[str, Any]:
        _, content = await self._complete(prompt, json_output=True)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ProviderError(self._config.name, f"Invalid JSON in structured response: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ProviderError(self._config.name, "Structured response is not a JSON object")
        return parsed
