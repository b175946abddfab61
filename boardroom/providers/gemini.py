"""Gemini provider using google-genai SDK with native async."""

import json
import logging
import os
import time
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from boardroom.models import ModelResponse
from boardroom.providers.base import AIProvider, FailureKind, ProviderError, classify_failure

logger = logging.getLogger(__name__)

_SAFETY_CATEGORIES = (
    genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)

_STATUS_KINDS = {
    400: None,  # Gemini reports bad keys as 400 API_KEY_INVALID; fall through to message check
    401: FailureKind.INVALID_CREDENTIALS,
    403: FailureKind.PERMISSION_DENIED,
    429: FailureKind.QUOTA_EXCEEDED,
}


def _failure_kind(exc: Exception) -> FailureKind:
    if isinstance(exc, genai_errors.APIError):
        kind = _STATUS_KINDS.get(exc.code)
        if kind is not None:
            return kind
    return classify_failure(exc)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    supports_structured_output = True

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(
                config.name, f"Missing API key: {config.api_key_env}", FailureKind.INVALID_CREDENTIALS
            )
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _generation_config(self, json_output: bool = False) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            temperature=self._config.temperature,
            top_k=40,
            top_p=0.95,
            max_output_tokens=self._config.max_tokens,
            response_mime_type="application/json" if json_output else None,
            safety_settings=[
                genai_types.SafetySetting(
                    category=category,
                    threshold=genai_types.HarmBlockThreshold.BLOCK_ONLY_HIGH,
                )
                for category in _SAFETY_CATEGORIES
            ],
        )

    async def _call(self, prompt: str, json_output: bool) -> genai_types.GenerateContentResponse:
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=prompt,
                config=self._generation_config(json_output),
            )
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}", _failure_kind(exc)) from exc

        feedback = response.prompt_feedback
        if feedback is not None and feedback.block_reason:
            raise ProviderError(
                self._config.name,
                f"Content blocked: {feedback.block_reason}",
                FailureKind.CONTENT_BLOCKED,
            )
        return response

    async def generate(self, prompt: str, round_number: int) -> ModelResponse:
        start = time.monotonic()
        response = await self._call(prompt, json_output=False)
        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info(
            "Gemini round %d: %.2fs, %s tokens",
            round_number,
            latency,
            token_count,
        )

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            round_number=round_number,
            content=response.text,
            latency_sec=latency,
            token_count=token_count,
        )

    async def generate_structured(self, prompt: str, round_number: int) -> dict[str, Any]:
        response = await self._call(prompt, json_output=True)
        try:
            parsed = json.loads(response.text or "")
        except json.JSONDecodeError as exc:
            raise ProviderError(self._config.name, f"Invalid JSON in structured response: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ProviderError(self._config.name, "Structured response is not a JSON object")
        logger.debug("Gemini structured round %d: keys=%s", round_number, sorted(parsed))
        return parsed
