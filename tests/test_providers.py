"""Tests for provider error mapping — SDK clients replaced with mocks."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest

from config.config_loader import ModelConfig
from discourse.providers.anthropic import AnthropicProvider
from discourse.providers.base import FatalServiceError, TransientServiceError, split_system
from discourse.providers.openai_provider import OpenAIProvider

MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Hello"},
]


def _model_config(name: str, sdk: str, key_env: str) -> ModelConfig:
    return ModelConfig(name=name, sdk=sdk, model="test-model", api_key_env=key_env, timeout_sec=5, max_tokens=100)


def _rate_limit_response() -> httpx.Response:
    return httpx.Response(429, request=httpx.Request("POST", "https://api.example.org"))


@pytest.fixture
def openai_provider(monkeypatch) -> OpenAIProvider:
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    provider = OpenAIProvider(_model_config("openai", "openai", "TEST_OPENAI_KEY"))
    provider._client = MagicMock()
    return provider


@pytest.fixture
def anthropic_provider(monkeypatch) -> AnthropicProvider:
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-ant-test")
    provider = AnthropicProvider(_model_config("claude", "anthropic", "TEST_ANTHROPIC_KEY"))
    provider._client = MagicMock()
    return provider


def test_split_system():
    system, rest = split_system(MESSAGES + [{"role": "system", "content": "Cite sources."}])
    assert system == "Be brief.\n\nCite sources."
    assert rest == [{"role": "user", "content": "Hello"}]


def test_missing_key_is_fatal(monkeypatch):
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
    with pytest.raises(FatalServiceError, match="TEST_OPENAI_KEY"):
        OpenAIProvider(_model_config("openai", "openai", "TEST_OPENAI_KEY"))


async def test_openai_returns_content(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Hi there"))],
            usage=SimpleNamespace(total_tokens=12),
        )
    )
    assert await openai_provider.complete(MESSAGES) == "Hi there"
    kwargs = openai_provider._client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"] == MESSAGES
    assert kwargs["model"] == "test-model"


async def test_openai_rate_limit_is_transient(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(
        side_effect=openai.RateLimitError("slow down", response=_rate_limit_response(), body=None)
    )
    with pytest.raises(TransientServiceError):
        await openai_provider.complete(MESSAGES)


async def test_openai_other_error_is_fatal(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("boom"))
    with pytest.raises(FatalServiceError, match="boom"):
        await openai_provider.complete(MESSAGES)


async def test_openai_empty_content_is_fatal(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[], usage=None)
    )
    with pytest.raises(FatalServiceError, match="Empty"):
        await openai_provider.complete(MESSAGES)


async def test_anthropic_passes_system_separately(anthropic_provider):
    anthropic_provider._client.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hi there")],
            usage=SimpleNamespace(input_tokens=5, output_tokens=3),
        )
    )
    assert await anthropic_provider.complete(MESSAGES) == "Hi there"
    kwargs = anthropic_provider._client.messages.create.await_args.kwargs
    assert kwargs["system"] == "Be brief."
    assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]


async def test_anthropic_rate_limit_is_transient(anthropic_provider):
    anthropic_provider._client.messages.create = AsyncMock(
        side_effect=anthropic.RateLimitError("slow down", response=_rate_limit_response(), body=None)
    )
    with pytest.raises(TransientServiceError):
        await anthropic_provider.complete(MESSAGES)
