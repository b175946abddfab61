"""Unit tests for boardroom/healthcheck.py — no real API calls."""

import asyncio
from unittest.mock import AsyncMock

from boardroom.healthcheck import run_health_checks
from boardroom.models import ModelResponse
from boardroom.providers.base import FailureKind, ProviderError

from tests.conftest import MockProvider


def _ok_response(name: str) -> ModelResponse:
    return ModelResponse(
        provider=name,
        model="mock-model",
        round_number=0,
        content="OK",
        latency_sec=0.1,
        token_count=1,
    )


async def test_all_providers_pass():
    """All providers succeed -> all marked ok, no errors."""
    providers = {
        "claude": MockProvider("claude"),
        "gemini": MockProvider("gemini"),
    }
    providers["claude"].generate = AsyncMock(return_value=_ok_response("claude"))
    providers["gemini"].generate = AsyncMock(return_value=_ok_response("gemini"))

    results = await run_health_checks(providers)

    assert results["claude"].ok and results["claude"].error == ""
    assert results["gemini"].ok and results["gemini"].kind is None
    providers["claude"].generate.assert_awaited_once_with("Reply with the word OK only.", round_number=0)


async def test_one_provider_fails():
    """A provider that raises returns ok=False with the error message and kind."""
    providers = {
        "claude": MockProvider("claude"),
        "openai": MockProvider("openai"),
    }
    providers["claude"].generate = AsyncMock(return_value=_ok_response("claude"))
    providers["openai"].generate = AsyncMock(
        side_effect=ProviderError("openai", "403 Forbidden", FailureKind.PERMISSION_DENIED)
    )

    results = await run_health_checks(providers)

    assert results["claude"].ok
    assert results["openai"].ok is False
    assert "403" in results["openai"].error
    assert results["openai"].kind is FailureKind.PERMISSION_DENIED


async def test_all_providers_fail():
    """All fail -> all marked False."""
    providers = {"claude": MockProvider("claude"), "gemini": MockProvider("gemini")}
    for p in providers.values():
        p.generate = AsyncMock(side_effect=RuntimeError("invalid api key"))

    results = await run_health_checks(providers)

    assert not any(r.ok for r in results.values())
    assert all(r.kind is FailureKind.INVALID_CREDENTIALS for r in results.values())


async def test_slow_provider_times_out():
    async def _slow(prompt, round_number):
        await asyncio.sleep(5)

    provider = MockProvider("gemini")
    provider.generate = AsyncMock(side_effect=_slow)

    results = await run_health_checks({"gemini": provider}, timeout_sec=0.05)

    assert results["gemini"].ok is False
    assert results["gemini"].kind is FailureKind.TIMEOUT
    assert results["gemini"].error == "Timeout"


async def test_empty_provider_dict():
    assert await run_health_checks({}) == {}
