"""Pure dataclasses for the discourse pipeline. No logic beyond trivial helpers, no deps."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class IntentKind(str, Enum):
    ORIGINAL_QUESTION = "ORIGINAL_QUESTION"
    INFORMATION_REQUEST = "INFORMATION_REQUEST"
    POTENTIAL_ANSWER = "POTENTIAL_ANSWER"
    FURTHER_DETAILS = "FURTHER_DETAILS"

    @property
    def is_answer(self) -> bool:
        return self in (IntentKind.POTENTIAL_ANSWER, IntentKind.FURTHER_DETAILS)

    @property
    def is_question(self) -> bool:
        return self in (IntentKind.ORIGINAL_QUESTION, IntentKind.INFORMATION_REQUEST)


@dataclass(frozen=True)
class Citation:
    id: str
    title: str
    url: str


@dataclass(frozen=True)
class SearchResult:
    title: str
    content: str
    url: str
    score: float


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Utterance:
    speaker_role: str
    content: str
    intent: IntentKind
    timestamp: str = field(default_factory=_now)
    citations: tuple[Citation, ...] = ()
    retrieved_info: tuple[str, ...] = ()   # source contents, in [n] order
    is_background: bool = False


@dataclass(frozen=True)
class ExpertProfile:
    role: str
    description: str


@dataclass(frozen=True)
class InformationItem:
    content: str
    source_question: str


@dataclass(frozen=True)
class RankedInformation:
    item: InformationItem
    score: float


@dataclass
class ArticleSection:
    title: str
    content: str


@dataclass
class Article:
    title: str
    sections: list[ArticleSection] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)


@dataclass
class UserTurnResult:
    background: str
    moderator_thought: str
    expert_responses: list[Utterance]
    article: Article


@dataclass
class BackgroundResult:
    history: list[Utterance]
    outline: dict
