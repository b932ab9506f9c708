"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from discourse.providers.base import AIProvider, FatalServiceError, TransientServiceError, split_system

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise FatalServiceError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(self, messages: list[dict[str, str]]) -> str:
        system, conversation = split_system(messages)
        kwargs = {}
        if system:
            kwargs["system"] = system

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=self._config.max_tokens,
                    messages=conversation,
                    **kwargs,
                ),
                timeout=self._config.timeout_sec,
            )
        except anthropic_sdk.RateLimitError as exc:
            raise TransientServiceError(self._config.name, f"Rate limited: {exc}") from exc
        except TimeoutError as exc:
            raise FatalServiceError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise FatalServiceError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise FatalServiceError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise FatalServiceError(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.debug("Anthropic completion: %.2fs, %s tokens", latency, token_count)
        return "\n".join(text_blocks)
