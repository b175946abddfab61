"""Abstract base for all reasoning-engine providers, plus the failure taxonomy."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from boardroom.models import ModelResponse


class FailureKind(str, Enum):
    INVALID_CREDENTIALS = "InvalidCredentials"
    QUOTA_EXCEEDED = "QuotaExceeded"
    PERMISSION_DENIED = "PermissionDenied"
    CONTENT_BLOCKED = "ContentBlocked"
    TIMEOUT = "Timeout"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"


class ProviderError(Exception):
    """Raised when a provider call fails. Terminal for that single call."""

    def __init__(
        self,
        provider_name: str,
        message: str,
        kind: FailureKind = FailureKind.PROVIDER_UNAVAILABLE,
    ) -> None:
        self.provider_name = provider_name
        self.kind = kind
        super().__init__(f"[{provider_name}] {message}")


# Substrings providers put in error messages, checked in order.
_MESSAGE_MARKERS: tuple[tuple[tuple[str, ...], FailureKind], ...] = (
    (("api_key_invalid", "invalid api key", "invalid x-api-key", "401", "unauthenticated"),
     FailureKind.INVALID_CREDENTIALS),
    (("quota", "resource_exhausted", "rate limit", "429"), FailureKind.QUOTA_EXCEEDED),
    (("permission_denied", "permission denied", "403"), FailureKind.PERMISSION_DENIED),
    (("blocked", "safety"), FailureKind.CONTENT_BLOCKED),
    (("timed out", "timeout"), FailureKind.TIMEOUT),
)


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an arbitrary SDK exception onto the failure taxonomy by its message."""
    if isinstance(exc, ProviderError):
        return exc.kind
    if isinstance(exc, TimeoutError):
        return FailureKind.TIMEOUT
    message = f"{type(exc).__name__} {exc}".lower()
    for markers, kind in _MESSAGE_MARKERS:
        if any(m in message for m in markers):
            return kind
    return FailureKind.PROVIDER_UNAVAILABLE


class AIProvider(ABC):
    """Abstract base for all reasoning-engine providers."""

    # Providers with a native JSON mode override this and generate_structured().
    supports_structured_output: bool = False

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, round_number: int) -> ModelResponse:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send.
            round_number: The discussion round number (1-indexed).

        Returns:
            ModelResponse dataclass with content and metadata.

        Raises:
            ProviderError: On API failure or invalid response, with its FailureKind.
        """
        ...

    async def generate_structured(self, prompt: str, round_number: int) -> dict[str, Any]:
        """Return a JSON object for the prompt. Only valid when supports_structured_output."""
        raise ProviderError(self.name(), "Structured output not supported")
