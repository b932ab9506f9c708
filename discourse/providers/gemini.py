"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import os
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from discourse.providers.base import AIProvider, FatalServiceError, TransientServiceError, split_system

logger = logging.getLogger(__name__)

_ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise FatalServiceError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(self, messages: list[dict[str, str]]) -> str:
        system, conversation = split_system(messages)
        contents = [
            genai_types.Content(
                role=_ROLE_MAP.get(m["role"], "user"),
                parts=[genai_types.Part(text=m["content"])],
            )
            for m in conversation
        ]

        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=contents,
                    config=genai_types.GenerateContentConfig(
                        max_output_tokens=self._config.max_tokens,
                        system_instruction=system or None,
                    ),
                ),
                timeout=self._config.timeout_sec,
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise TransientServiceError(self._config.name, f"Rate limited: {exc}") from exc
            raise FatalServiceError(self._config.name, f"API call failed: {exc}") from exc
        except TimeoutError as exc:
            raise FatalServiceError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise FatalServiceError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise FatalServiceError(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.debug("Gemini completion: %.2fs, %s tokens", latency, token_count)
        return response.text
