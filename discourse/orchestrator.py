"""Discourse orchestration: turn-taking, moderator interventions, and knowledge folding."""

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from config.config_loader import AppConfig
from discourse.expert import ExpertAgent, generate_roster
from discourse.gateway import CompletionGateway
from discourse.mind_map import MindMapManager
from discourse.models import (
    Article,
    ArticleSection,
    BackgroundResult,
    Citation,
    ExpertProfile,
    InformationItem,
    IntentKind,
    Utterance,
    UserTurnResult,
)
from discourse.moderator import MODERATOR_ROLE, ModeratorAgent
from discourse.parsing import MalformedOutputError, parse_article, parse_outline
from discourse.providers.base import ProviderError
from discourse.retrieval import RetrievalGateway

logger = logging.getLogger(__name__)

USER_ROLE = "User"
BACKGROUND_ROLE = "Background"
ARTICLE_FAILURE_MESSAGE = "An error occurred while generating the article content."

# Discussion points handed to the outline prompt
_OUTLINE_WINDOW = 5


@dataclass
class DiscourseState:
    topic: str
    history: list[Utterance] = field(default_factory=list)
    expert_roster: list[ExpertProfile] = field(default_factory=list)
    current_expert_index: int = 0
    consecutive_answer_turns: int = 0
    unused_information: list[InformationItem] = field(default_factory=list)
    last_moderator_turn_index: int = 0


def fallback_article(topic: str) -> Article:
    return Article(
        title=topic,
        sections=[ArticleSection(title="Overview", content=ARTICLE_FAILURE_MESSAGE)],
        citations=[],
    )


def fallback_outline(topic: str) -> dict:
    return {"id": "root", "title": topic, "children": []}


def find_source_question(history: list[Utterance], topic: str) -> str:
    """Content of the nearest question in history, scanning backward; the topic if none."""
    for utterance in reversed(history):
        if utterance.intent.is_question:
            return utterance.content
    return topic


def uncited_information(utterance: Utterance, source_question: str) -> list[InformationItem]:
    """Retrieved source contents whose [n] marker never made it into the text."""
    cited = {c.id for c in utterance.citations}
    return [
        InformationItem(content=info, source_question=source_question)
        for n, info in enumerate(utterance.retrieved_info, start=1)
        if str(n) not in cited
    ]


class DiscourseOrchestrator:
    """Owns the discourse state and composes experts, moderator and mind map.

    Turns are serialized: every public operation that mutates state holds the
    turn lock for its whole duration. Within a turn, independent calls (one
    answer per expert) run concurrently and are combined in roster order.
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        retrieval: RetrievalGateway,
        config: AppConfig,
        expert_factory: Callable[[ExpertProfile], ExpertAgent] | None = None,
        moderator: ModeratorAgent | None = None,
        mind_map: MindMapManager | None = None,
    ) -> None:
        self._gateway = gateway
        self._retrieval = retrieval
        self._prompts = config.prompts
        self._settings = config.discourse
        self._expert_factory = expert_factory or self._build_expert
        self.moderator = moderator or ModeratorAgent(gateway, retrieval, config.prompts, config.discourse)
        self.mind_map = mind_map or MindMapManager(gateway, retrieval, config.prompts, config.mind_map)
        self.experts: list[ExpertAgent] = []
        self.state: DiscourseState | None = None
        self._turn_lock = asyncio.Lock()

    def _build_expert(self, profile: ExpertProfile) -> ExpertAgent:
        return ExpertAgent(profile, self._gateway, self._retrieval, self._prompts, self._settings)

    def _require_state(self) -> DiscourseState:
        if self.state is None:
            raise RuntimeError("Discourse not initialized; call initialize(topic) first")
        return self.state

    def _set_roster(self, roster: list[ExpertProfile]) -> None:
        self.experts = [self._expert_factory(profile) for profile in roster]
        self._require_state().expert_roster = list(roster)

    async def initialize(self, topic: str, roster: list[ExpertProfile] | None = None) -> DiscourseState:
        """Start a session: build the panel and the root map node."""
        if roster is None:
            roster = await generate_roster(self._gateway, self._prompts, topic)
        self.state = DiscourseState(topic=topic)
        self._set_roster(roster)
        self.mind_map.initialize(topic)
        logger.info("Session initialized: %r with %d experts", topic, len(roster))
        return self.state

    def should_moderator_speak(self) -> bool:
        state = self._require_state()
        return (
            state.consecutive_answer_turns >= self._settings.max_consecutive_answers
            or len(state.unused_information) >= self._settings.unused_info_threshold
            or len(state.history) - state.last_moderator_turn_index >= self._settings.moderator_interval
            or not self.experts
        )

    async def generate_next_utterance(self) -> Utterance:
        """Run exactly one turn and return the appended utterance.

        State is only mutated once every service call of the turn succeeded;
        a FatalServiceError leaves history and counters untouched.
        """
        async with self._turn_lock:
            if self.should_moderator_speak():
                return await self._moderator_turn()
            return await self._expert_turn()

    async def _expert_turn(self) -> Utterance:
        state = self._require_state()
        index = state.current_expert_index % len(self.experts)
        expert = self.experts[index]

        utterance = await expert.generate_utterance(state.topic, [u.content for u in state.history])
        source_question = find_source_question(state.history, state.topic)
        await self._fold_into_map(utterance, source_question)

        state.current_expert_index = (index + 1) % len(self.experts)
        self._record_expert_utterance(utterance, source_question)
        logger.info(
            "Turn %d: %s (%s), consecutive answers %d, unused info %d",
            len(state.history), expert.role, utterance.intent.value,
            state.consecutive_answer_turns, len(state.unused_information),
        )
        return utterance

    async def _moderator_turn(self) -> Utterance:
        state = self._require_state()
        history = list(state.history)

        if state.unused_information:
            ranked = await self.moderator.rerank_unused_information(list(state.unused_information), state.topic)
            utterance = await self.moderator.generate_question(state.topic, history, ranked)
        else:
            content = await self.moderator.generate_intervention(state.topic, history)
            utterance = Utterance(speaker_role=MODERATOR_ROLE, content=content, intent=IntentKind.ORIGINAL_QUESTION)

        roster = await self._revised_roster(history + [utterance])

        self._append_moderator(utterance)
        if roster:
            self._set_roster(roster)
        logger.info("Turn %d: moderator intervention, panel of %d", len(state.history), len(self.experts))
        return utterance

    async def _revised_roster(self, history: list[Utterance]) -> list[ExpertProfile] | None:
        state = self._require_state()
        try:
            return await self.moderator.update_participant_list(state.topic, history, state.expert_roster)
        except MalformedOutputError as exc:
            logger.warning("Keeping current panel, participant update unusable: %s", exc)
            return None

    def _append_moderator(self, utterance: Utterance) -> None:
        state = self._require_state()
        state.history.append(utterance)
        state.consecutive_answer_turns = 0
        state.unused_information.clear()
        state.last_moderator_turn_index = len(state.history)

    def _record_expert_utterance(self, utterance: Utterance, source_question: str) -> None:
        state = self._require_state()
        state.history.append(utterance)
        if utterance.intent.is_answer:
            state.consecutive_answer_turns += 1
        else:
            state.consecutive_answer_turns = 0
        state.unused_information.extend(uncited_information(utterance, source_question))

    async def _fold_into_map(self, utterance: Utterance, source_question: str) -> None:
        if utterance.intent.is_answer:
            await self.mind_map.insert_information(utterance.content, source_question)

    async def _panel_answers(self, question: str) -> list[Utterance]:
        state = self._require_state()
        responses = await asyncio.gather(*(e.answer_question(state.topic, question) for e in self.experts))
        for response in responses:
            await self._fold_into_map(response, question)
        return list(responses)

    async def handle_user_input(self, text: str) -> UserTurnResult:
        """Answer a user question with background, a moderator thought and every expert."""
        async with self._turn_lock:
            state = self._require_state()
            user_utterance = Utterance(speaker_role=USER_ROLE, content=text, intent=IntentKind.ORIGINAL_QUESTION)

            background = await self._gateway.complete(
                self._prompts.background_info.messages(topic=state.topic, question=text)
            )
            background_utterance = Utterance(
                speaker_role=BACKGROUND_ROLE, content=background, intent=IntentKind.FURTHER_DETAILS,
            )
            thought = await self.moderator.generate_intervention(
                state.topic, [*state.history, user_utterance, background_utterance]
            )
            responses = await self._panel_answers(text)

            state.history.extend([user_utterance, background_utterance])
            self._append_moderator(
                Utterance(speaker_role=MODERATOR_ROLE, content=thought, intent=IntentKind.ORIGINAL_QUESTION)
            )
            for response in responses:
                self._record_expert_utterance(response, text)

            article = await self._generate_article()
            return UserTurnResult(
                background=background,
                moderator_thought=thought,
                expert_responses=responses,
                article=article,
            )

    async def generate_background_discussion(self) -> BackgroundResult:
        """Bulk mode: introduction, then bounded rounds of question + full-panel answers."""
        async with self._turn_lock:
            state = self._require_state()

            intro = await self.moderator.generate_introduction(state.topic)
            self._append_moderator(
                Utterance(MODERATOR_ROLE, intro, IntentKind.ORIGINAL_QUESTION, is_background=True)
            )
            await self._background_round(intro)

            iterations = 0
            complete = False
            while not complete and iterations < self._settings.background_max_iterations:
                question = await self.moderator.generate_next_question(state.topic, state.history)
                self._append_moderator(
                    Utterance(MODERATOR_ROLE, question, IntentKind.ORIGINAL_QUESTION, is_background=True)
                )
                await self._background_round(question)
                complete = await self.moderator.check_discussion_complete(state.history)
                iterations += 1

            logger.info("Background discussion finished after %d iterations (complete=%s)", iterations, complete)
            outline = await self.generate_outline()
            return BackgroundResult(
                history=[u for u in state.history if u.is_background],
                outline=outline,
            )

    async def _background_round(self, question: str) -> None:
        for response in await self._panel_answers(question):
            self._record_expert_utterance(replace(response, is_background=True), question)

    def get_mind_map(self) -> dict | None:
        return self.mind_map.export()

    def _history_excerpt(self, history: list[Utterance]) -> str:
        limit = self._settings.history_excerpt_chars
        return json.dumps(
            [{"role": u.speaker_role, "content": u.content[:limit]} for u in history],
            ensure_ascii=False,
        )

    def collect_citations(self) -> list[Citation]:
        """Citations across history, first occurrence per url, renumbered from 1."""
        state = self._require_state()
        unique: list[Citation] = []
        seen_urls: set[str] = set()
        for utterance in state.history:
            for citation in utterance.citations:
                if citation.url in seen_urls:
                    continue
                seen_urls.add(citation.url)
                unique.append(citation)
        unique = unique[: self._settings.article_max_citations]
        return [Citation(id=str(i), title=c.title, url=c.url) for i, c in enumerate(unique, start=1)]

    async def generate_article(self) -> Article:
        async with self._turn_lock:
            return await self._generate_article()

    async def _generate_article(self) -> Article:
        state = self._require_state()
        try:
            raw = await self._gateway.complete(
                self._prompts.article.messages(topic=state.topic, history=self._history_excerpt(state.history))
            )
            article = parse_article(raw)
        except (MalformedOutputError, ProviderError) as exc:
            logger.error("Article generation failed, using fallback: %s", exc)
            return fallback_article(state.topic)
        article.citations = self.collect_citations()
        return article

    async def generate_outline(self) -> dict:
        """Outline tree of the latest discussion; a single root node on failure."""
        state = self._require_state()
        try:
            raw = await self._gateway.complete(
                self._prompts.outline.messages(
                    topic=state.topic,
                    discussion=self._history_excerpt(state.history[-_OUTLINE_WINDOW:]),
                )
            )
            return parse_outline(raw)
        except (MalformedOutputError, ProviderError) as exc:
            logger.error("Outline generation failed, using fallback: %s", exc)
            return fallback_outline(state.topic)
