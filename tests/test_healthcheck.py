"""Unit tests for discourse/healthcheck.py — no real API calls."""

import asyncio
from unittest.mock import AsyncMock

import discourse.healthcheck as hc
from discourse.healthcheck import build_probes, run_health_checks
from discourse.providers.base import ProviderError

from tests.conftest import FakeRetrieval, MockProvider


async def test_all_probes_pass():
    """All probes succeed -> all marked ok, no errors."""
    results = await run_health_checks(build_probes(MockProvider("openai"), FakeRetrieval()))

    assert results == {"completion (openai)": (True, ""), "embedding": (True, "")}


async def test_probes_without_retrieval():
    probes = build_probes(MockProvider("claude"))
    assert list(probes) == ["completion (claude)"]


async def test_completion_probe_sends_ping():
    provider = MockProvider("openai")
    await run_health_checks(build_probes(provider))
    messages = provider.complete.await_args.args[0]
    assert "OK" in messages[0]["content"]


async def test_one_probe_fails():
    """A probe that raises returns ok=False with the error message."""
    provider = MockProvider("openai")
    provider.complete = AsyncMock(side_effect=ProviderError("openai", "403 Forbidden"))

    results = await run_health_checks(build_probes(provider, FakeRetrieval()))

    assert results["embedding"] == (True, "")
    ok, err = results["completion (openai)"]
    assert ok is False
    assert "403" in err


async def test_error_without_message_reports_type():
    async def probe():
        raise ValueError()

    results = await run_health_checks({"embedding": probe})
    assert results["embedding"] == (False, "ValueError")


async def test_empty_probes():
    results = await run_health_checks({})
    assert results == {}


async def test_timeout_counts_as_failure(monkeypatch):
    """A probe that hangs past the timeout is marked as failed."""
    async def hang():
        await asyncio.sleep(9999)

    # Patch the timeout to 0.05s so the test runs fast
    monkeypatch.setattr(hc, "_TIMEOUT_SEC", 0.05)
    results = await run_health_checks({"slow": hang})

    ok, _ = results["slow"]
    assert ok is False
