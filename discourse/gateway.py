"""Completion gateway: single-flight FIFO queue, cooldown, and rate-limit backoff."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

from discourse.providers.base import AIProvider, FatalServiceError, TransientServiceError

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock backed by time.monotonic and asyncio.sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(frozen=True)
class BackoffPolicy:
    base_delay: float = 10.0
    factor: float = 2.0
    max_retries: int = 3

    def delay(self, retry: int) -> float:
        """Delay before the given retry (1-indexed): 10s, 20s, 40s by default."""
        return self.base_delay * self.factor ** (retry - 1)


class CompletionGateway:
    """Serializes every completion call in the process through one provider.

    At most one request is in flight. Waiters are served in arrival order
    (asyncio.Lock wakes waiters FIFO) and a fixed cooldown separates the end of
    one request from the start of the next. Rate-limited calls are retried per
    the backoff policy; anything else propagates untouched.
    """

    def __init__(
        self,
        provider: AIProvider,
        cooldown_sec: float = 1.0,
        backoff: BackoffPolicy | None = None,
        clock: Clock | None = None,
        deadline_sec: float | None = None,
    ) -> None:
        self._provider = provider
        self._cooldown_sec = cooldown_sec
        self._backoff = backoff or BackoffPolicy()
        self._clock = clock or SystemClock()
        self._deadline_sec = deadline_sec
        self._lock = asyncio.Lock()
        self._last_finished: float | None = None
        self.request_count = 0

    @property
    def provider(self) -> AIProvider:
        return self._provider

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Queue a completion request and wait for its text.

        Raises:
            FatalServiceError: On non-retryable failure, when retries are
                exhausted, or when the per-call deadline elapses.
        """
        if self._deadline_sec is None:
            return await self._run(messages)
        try:
            return await asyncio.wait_for(self._run(messages), timeout=self._deadline_sec)
        except TimeoutError as exc:
            raise FatalServiceError(
                self._provider.name(), f"Call exceeded deadline of {self._deadline_sec}s"
            ) from exc

    async def _run(self, messages: list[dict[str, str]]) -> str:
        async with self._lock:
            await self._wait_cooldown()
            try:
                return await self._call_with_retries(messages)
            finally:
                self._last_finished = self._clock.monotonic()

    async def _wait_cooldown(self) -> None:
        if self._last_finished is None:
            return
        remaining = self._cooldown_sec - (self._clock.monotonic() - self._last_finished)
        if remaining > 0:
            await self._clock.sleep(remaining)

    async def _call_with_retries(self, messages: list[dict[str, str]]) -> str:
        retry = 0
        while True:
            self.request_count += 1
            try:
                return await self._provider.complete(messages)
            except TransientServiceError as exc:
                if retry >= self._backoff.max_retries:
                    logger.error(
                        "Provider %s still rate limited after %d retries",
                        self._provider.name(), retry,
                    )
                    raise FatalServiceError(
                        self._provider.name(), f"Rate limited after {retry} retries: {exc}"
                    ) from exc
                retry += 1
                delay = self._backoff.delay(retry)
                logger.warning(
                    "Provider %s rate limited, waiting %.0fs before retry %d/%d",
                    self._provider.name(), delay, retry, self._backoff.max_retries,
                )
                await self._clock.sleep(delay)
