"""OpenAI provider using openai SDK with native async. Also serves OpenAI-compatible hosts via base_url."""

import asyncio
import logging
import os
import time

import openai
from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from discourse.providers.base import AIProvider, FatalServiceError, TransientServiceError

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """OpenAI (or OpenAI-compatible) provider via openai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise FatalServiceError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(self, messages: list[dict[str, str]]) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=messages,
                    max_tokens=self._config.max_tokens,
                ),
                timeout=self._config.timeout_sec,
            )
        except openai.RateLimitError as exc:
            raise TransientServiceError(self._config.name, f"Rate limited: {exc}") from exc
        except TimeoutError as exc:
            raise FatalServiceError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise FatalServiceError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise FatalServiceError(self._config.name, "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.debug("OpenAI completion: %.2fs, %s tokens", latency, token_count)
        return choice.message.content
