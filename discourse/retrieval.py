"""Retrieval gateway: fail-soft web search over httpx and OpenAI embeddings."""

import logging
import math
import os

import httpx
from openai import AsyncOpenAI

from config.config_loader import EmbeddingConfig, SearchConfig
from discourse.models import SearchResult
from discourse.providers.base import FatalServiceError

logger = logging.getLogger(__name__)

_DEFAULT_SCORE = 0.8


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors. Zero-norm vectors give 0.0."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class RetrievalGateway:
    """Narrow typed access to the web-search and embedding services."""

    def __init__(
        self,
        search_config: SearchConfig,
        embedding_config: EmbeddingConfig,
        http_client: httpx.AsyncClient | None = None,
        embedding_client: AsyncOpenAI | None = None,
    ) -> None:
        self._search_config = search_config
        self._embedding_config = embedding_config
        self._http_client = http_client
        self._embedding_client = embedding_client

    async def search(self, query: str, max_results: int | None = None) -> list[SearchResult]:
        """Run a web search. Never raises; any failure yields an empty list."""
        cfg = self._search_config
        api_key = os.environ.get(cfg.api_key_env, "").strip()
        if not api_key and self._http_client is None:
            logger.warning("Search skipped (no API key): set %s in .env", cfg.api_key_env)
            return []

        payload = {
            "query": query[: cfg.query_max_chars],
            "search_depth": cfg.search_depth,
            "max_results": max_results or cfg.max_results,
        }
        headers = {"Authorization": f"Bearer {api_key}"}

        try:
            if self._http_client is not None:
                response = await self._http_client.post(cfg.endpoint, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=cfg.timeout_sec) as client:
                    response = await client.post(cfg.endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Search HTTP %s for %r: %s",
                exc.response.status_code, query[:80], exc.response.text[:200],
            )
            return []
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Search failed for %r: %s", query[:80], exc)
            return []

        raw_results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(raw_results, list):
            logger.warning("Invalid search response for %r", query[:80])
            return []

        results = []
        for raw in raw_results:
            if not isinstance(raw, dict) or not raw.get("url"):
                continue
            try:
                result = SearchResult(
                    title=str(raw.get("title") or "No Title"),
                    content=_truncate(str(raw.get("content") or ""), cfg.content_max_chars),
                    url=str(raw["url"]),
                    score=float(raw.get("score") or _DEFAULT_SCORE),
                )
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping malformed search result for %r: %s", query[:80], exc)
                continue
            results.append(result)
        logger.debug("Search %r returned %d results", query[:80], len(results))
        return results

    def _client(self) -> AsyncOpenAI:
        if self._embedding_client is None:
            cfg = self._embedding_config
            api_key = os.environ.get(cfg.api_key_env, "").strip()
            if not api_key:
                raise FatalServiceError("embedding", f"Missing API key: {cfg.api_key_env}")
            self._embedding_client = AsyncOpenAI(
                api_key=api_key, base_url=cfg.base_url, timeout=cfg.timeout_sec,
            )
        return self._embedding_client

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for text.

        Raises:
            FatalServiceError: When the embedding service fails.
        """
        client = self._client()
        try:
            response = await client.embeddings.create(
                input=text,
                model=self._embedding_config.model,
            )
        except Exception as exc:
            raise FatalServiceError("embedding", f"Embedding call failed: {exc}") from exc

        if not response.data:
            raise FatalServiceError("embedding", "Empty embedding response")
        return list(response.data[0].embedding)
