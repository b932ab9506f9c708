"""Shared pytest fixtures and test doubles."""

from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DiscourseConfig, MindMapConfig, PromptsConfig, load_config
from discourse.models import Citation, ExpertProfile, IntentKind, SearchResult, Utterance
from discourse.providers.base import AIProvider, FatalServiceError


@pytest.fixture
def app_config() -> AppConfig:
    """The shipped settings.yaml."""
    return load_config()


@pytest.fixture
def prompts(app_config: AppConfig) -> PromptsConfig:
    return app_config.prompts


@pytest.fixture
def discourse_settings() -> DiscourseConfig:
    return DiscourseConfig()


@pytest.fixture
def mind_map_settings() -> MindMapConfig:
    return MindMapConfig()


@pytest.fixture
def two_profiles() -> list[ExpertProfile]:
    return [
        ExpertProfile("Energy Economist", "Costs and markets of power generation"),
        ExpertProfile("Grid Engineer", "Transmission, storage and grid stability"),
    ]


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because complete is defined in the class body below.
        self.complete = AsyncMock(return_value=response_content)  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def complete(self, messages: list[dict[str, str]]) -> str:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return self._response_content


class ScriptedGateway:
    """Stands in for CompletionGateway.

    Replies come either from a list (consumed in order; Exception entries are
    raised) or from a responder called with the messages.
    """

    def __init__(
        self,
        replies: list[str | Exception] | None = None,
        responder: Callable[[list[dict[str, str]]], str] | None = None,
    ) -> None:
        self._replies = list(replies or [])
        self._responder = responder
        self.calls: list[list[dict[str, str]]] = []

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        if self._responder is not None:
            return self._responder(messages)
        if not self._replies:
            raise AssertionError("ScriptedGateway ran out of replies")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def user_prompts(self) -> list[str]:
        return [m[-1]["content"] for m in self.calls]


class FakeClock:
    """Deterministic clock: sleeping advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeRetrieval:
    """Canned search results per query and embedding vectors per text."""

    def __init__(
        self,
        results: dict[str, list[SearchResult]] | None = None,
        vectors: dict[str, list[float]] | None = None,
    ) -> None:
        self.results = results or {}
        self.vectors = vectors or {}
        self.queries: list[str] = []
        self.embedded: list[str] = []

    async def search(self, query: str, max_results: int | None = None) -> list[SearchResult]:
        self.queries.append(query)
        return list(self.results.get(query, []))

    async def embed(self, text: str) -> list[float]:
        self.embedded.append(text)
        return self.vectors.get(text, [1.0, 0.0])


class StubExpert:
    """Expert double with scripted intent, sources and citations."""

    def __init__(
        self,
        profile: ExpertProfile,
        intent: IntentKind = IntentKind.POTENTIAL_ANSWER,
        retrieved_info: tuple[str, ...] = (),
        citations: tuple[Citation, ...] = (),
    ) -> None:
        self.profile = profile
        self.intent = intent
        self.retrieved_info = retrieved_info
        self.citations = citations
        self.fail_with: Exception | None = None
        self.turns = 0

    @property
    def role(self) -> str:
        return self.profile.role

    async def generate_utterance(self, topic: str, history: list[str]) -> Utterance:
        if self.fail_with is not None:
            raise self.fail_with
        self.turns += 1
        return Utterance(
            speaker_role=self.profile.role,
            content=f"{self.profile.role} turn {self.turns}",
            intent=self.intent,
            citations=self.citations,
            retrieved_info=self.retrieved_info,
        )

    async def answer_question(self, topic: str, question: str) -> Utterance:
        return Utterance(
            speaker_role=self.profile.role,
            content=f"{self.profile.role} answers: {question}",
            intent=IntentKind.POTENTIAL_ANSWER,
            citations=self.citations,
            retrieved_info=self.retrieved_info,
        )


def search_result(n: int, url: str | None = None) -> SearchResult:
    return SearchResult(
        title=f"Source {n}",
        content=f"Fact number {n}.",
        url=url or f"https://example.org/{n}",
        score=0.9,
    )


@pytest.fixture
def fatal_error() -> FatalServiceError:
    return FatalServiceError("mock", "service unavailable")
