"""Moderator: steers the discussion, reranks unused information, revises the panel."""

import asyncio
import logging

from config.config_loader import DiscourseConfig, PromptsConfig
from discourse.gateway import CompletionGateway
from discourse.models import ExpertProfile, InformationItem, IntentKind, RankedInformation, Utterance
from discourse.parsing import parse_completion_verdict, parse_roster
from discourse.retrieval import RetrievalGateway, cosine_similarity

logger = logging.getLogger(__name__)

MODERATOR_ROLE = "Moderator"


def format_transcript(history: list[Utterance], excerpt_chars: int | None = None) -> str:
    """Render history as "Role: content" lines, optionally truncating each entry."""
    lines = []
    for utterance in history:
        content = utterance.content
        if excerpt_chars is not None:
            content = content[:excerpt_chars]
        lines.append(f"{utterance.speaker_role}: {content}")
    return "\n".join(lines) or "(no discussion yet)"


def rerank_score(sim_topic: float, sim_question: float, alpha: float) -> float:
    """score = simTopic^alpha * (1 - simQuestion)^(1 - alpha).

    Negative bases are clamped to zero so the power stays real.
    """
    return max(sim_topic, 0.0) ** alpha * max(1.0 - sim_question, 0.0) ** (1.0 - alpha)


class ModeratorAgent:
    """The single moderator of a session."""

    role = MODERATOR_ROLE

    def __init__(
        self,
        gateway: CompletionGateway,
        retrieval: RetrievalGateway,
        prompts: PromptsConfig,
        settings: DiscourseConfig,
    ) -> None:
        self._gateway = gateway
        self._retrieval = retrieval
        self._prompts = prompts
        self._settings = settings

    async def generate_introduction(self, topic: str) -> str:
        return await self._gateway.complete(self._prompts.moderator_introduction.messages(topic=topic))

    async def generate_next_question(self, topic: str, history: list[Utterance]) -> str:
        return await self._gateway.complete(
            self._prompts.moderator_next_question.messages(topic=topic, history=format_transcript(history))
        )

    async def generate_intervention(self, topic: str, history: list[Utterance]) -> str:
        return await self._gateway.complete(
            self._prompts.moderator_intervention.messages(topic=topic, history=format_transcript(history))
        )

    async def check_discussion_complete(self, history: list[Utterance]) -> bool:
        raw = await self._gateway.complete(
            self._prompts.moderator_completion_check.messages(history=format_transcript(history))
        )
        complete = parse_completion_verdict(raw)
        logger.info("Completion check: %s", "complete" if complete else "incomplete")
        return complete

    async def summarize_discussion(self, topic: str, history: list[Utterance]) -> str:
        return await self._gateway.complete(
            self._prompts.moderator_summary.messages(
                topic=topic,
                history=format_transcript(history, self._settings.history_excerpt_chars),
            )
        )

    async def update_participant_list(
        self,
        topic: str,
        history: list[Utterance],
        roster: list[ExpertProfile] | None = None,
    ) -> list[ExpertProfile]:
        """Propose a replacement panel for the upcoming discussion.

        Raises:
            MalformedOutputError: When the reply is not a usable roster.
        """
        summary = await self.summarize_discussion(topic, history)
        current = "\n".join(f"- {p.role}: {p.description}" for p in roster or []) or "(empty)"
        raw = await self._gateway.complete(
            self._prompts.moderator_participants.messages(topic=topic, summary=summary, roster=current)
        )
        return parse_roster(raw)

    async def rerank_unused_information(self, items: list[InformationItem], topic: str) -> list[RankedInformation]:
        """Order items by topic alignment, favouring those the triggering question left unaddressed.

        Ties keep their original order. Embedding failures propagate.
        """
        if not items:
            return []

        texts = list(dict.fromkeys([topic, *(i.content for i in items), *(i.source_question for i in items)]))
        vectors = await asyncio.gather(*(self._retrieval.embed(t) for t in texts))
        embeddings = dict(zip(texts, vectors))

        alpha = self._settings.rerank_alpha
        ranked = []
        for item in items:
            content_vec = embeddings[item.content]
            sim_topic = cosine_similarity(content_vec, embeddings[topic])
            sim_question = cosine_similarity(content_vec, embeddings[item.source_question])
            ranked.append(RankedInformation(item=item, score=rerank_score(sim_topic, sim_question, alpha)))

        ranked.sort(key=lambda r: r.score, reverse=True)
        logger.debug("Reranked %d items, top score %.3f", len(ranked), ranked[0].score)
        return ranked

    async def generate_question(
        self,
        topic: str,
        history: list[Utterance],
        ranked_info: list[RankedInformation],
    ) -> Utterance:
        """Ask a grounded follow-up question from the top-ranked information."""
        top = [r.item for r in ranked_info[: self._settings.rerank_top_k]]
        summary = await self.summarize_discussion(topic, history)
        formatted = "\n".join(f"[{i}] {item.content}" for i, item in enumerate(top, start=1))
        last_utterance = history[-1].content if history else ""

        content = await self._gateway.complete(
            self._prompts.moderator_grounded_question.messages(
                topic=topic,
                summary=summary,
                information=formatted or "(none)",
                last_utterance=last_utterance,
            )
        )
        return Utterance(
            speaker_role=self.role,
            content=content,
            intent=IntentKind.ORIGINAL_QUESTION,
            retrieved_info=tuple(item.content for item in top),
        )
