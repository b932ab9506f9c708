"""Service health checks — ping completion and embedding before a session starts."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from discourse.providers.base import AIProvider
from discourse.retrieval import RetrievalGateway

logger = logging.getLogger(__name__)

_PING_MESSAGES = [{"role": "user", "content": "Reply with the word OK only."}]
_TIMEOUT_SEC = 15.0

Probe = Callable[[], Awaitable[object]]


def build_probes(provider: AIProvider, retrieval: RetrievalGateway | None = None) -> dict[str, Probe]:
    """One probe per external service the session depends on."""
    probes: dict[str, Probe] = {f"completion ({provider.name()})": lambda: provider.complete(_PING_MESSAGES)}
    if retrieval is not None:
        probes["embedding"] = lambda: retrieval.embed("ping")
    return probes


async def _check_one(name: str, probe: Probe) -> tuple[str, bool, str]:
    """Run a single probe. Returns (name, ok, error_message)."""
    try:
        await asyncio.wait_for(probe(), timeout=_TIMEOUT_SEC)
        return name, True, ""
    except Exception as exc:
        logger.debug("Health check %s failed: %s", name, exc)
        return name, False, str(exc) or type(exc).__name__


async def run_health_checks(probes: dict[str, Probe]) -> dict[str, tuple[bool, str]]:
    """Run all probes in parallel.

    Returns:
        Dict mapping probe name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p) for n, p in probes.items()))
    return {name: (ok, err) for name, ok, err in results}
