"""Provider health checks: ping each reasoning engine before a session starts."""

import asyncio
import logging
import time
from dataclasses import dataclass

from boardroom.providers.base import AIProvider, FailureKind, classify_failure

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


@dataclass
class HealthResult:
    ok: bool
    error: str = ""
    kind: FailureKind | None = None
    latency_sec: float = 0.0


async def _check_one(name: str, provider: AIProvider, timeout_sec: float) -> tuple[str, HealthResult]:
    """Ping a single provider. Never raises."""
    start = time.monotonic()
    try:
        await asyncio.wait_for(provider.generate(_PING_PROMPT, round_number=0), timeout=timeout_sec)
    except Exception as exc:
        kind = classify_failure(exc)
        logger.debug("Health check failed for %s (%s): %s", name, kind.value, exc)
        return name, HealthResult(ok=False, error=str(exc) or kind.value, kind=kind)
    return name, HealthResult(ok=True, latency_sec=time.monotonic() - start)


async def run_health_checks(
    providers: dict[str, AIProvider],
    timeout_sec: float = _TIMEOUT_SEC,
) -> dict[str, HealthResult]:
    """Ping all providers in parallel.

    Returns:
        Dict mapping provider name -> HealthResult. ``error`` is "" when ok.
    """
    results = await asyncio.gather(*(_check_one(n, p, timeout_sec) for n, p in providers.items()))
    return dict(results)
