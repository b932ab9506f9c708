"""Expert participants: role-grounded utterances backed by web retrieval."""

import asyncio
import logging

from config.config_loader import DiscourseConfig, PromptsConfig
from discourse.gateway import CompletionGateway
from discourse.models import Citation, ExpertProfile, IntentKind, SearchResult, Utterance
from discourse.parsing import MalformedOutputError, extract_citation_ids, parse_intent, parse_lines, parse_roster
from discourse.retrieval import RetrievalGateway

logger = logging.getLogger(__name__)

FALLBACK_EXPERT = ExpertProfile(
    role="General Expert",
    description="Broad knowledge of the topic and its context",
)


async def generate_roster(gateway: CompletionGateway, prompts: PromptsConfig, topic: str) -> list[ExpertProfile]:
    """Ask for a panel of 3-4 experts suited to the topic.

    Falls back to a single generic expert when the reply is not a usable
    JSON roster. Gateway failures propagate.
    """
    raw = await gateway.complete(prompts.roster.messages(topic=topic))
    try:
        roster = parse_roster(raw)
    except MalformedOutputError as exc:
        logger.warning("Roster generation returned malformed output, using fallback: %s", exc)
        return [FALLBACK_EXPERT]
    logger.info("Generated roster: %s", ", ".join(p.role for p in roster))
    return roster


def format_sources(sources: list[SearchResult]) -> str:
    """Number sources [1]..[n] in the order given."""
    return "\n\n".join(
        f"[{i}] {s.title} ({s.url})\n{s.content}" for i, s in enumerate(sources, start=1)
    )


def extract_citations(content: str, sources: list[SearchResult]) -> tuple[Citation, ...]:
    """Map [n] markers in content back to sources by position.

    Markers without a matching source are dropped. Result is ordered by id.
    """
    ids = sorted(n for n in extract_citation_ids(content) if 1 <= n <= len(sources))
    return tuple(Citation(id=str(n), title=sources[n - 1].title, url=sources[n - 1].url) for n in ids)


class ExpertAgent:
    """One panel member. Stateless apart from its profile."""

    def __init__(
        self,
        profile: ExpertProfile,
        gateway: CompletionGateway,
        retrieval: RetrievalGateway,
        prompts: PromptsConfig,
        settings: DiscourseConfig,
    ) -> None:
        self.profile = profile
        self._gateway = gateway
        self._retrieval = retrieval
        self._prompts = prompts
        self._settings = settings

    @property
    def role(self) -> str:
        return self.profile.role

    async def choose_intent(self, topic: str, history: list[str]) -> IntentKind:
        raw = await self._gateway.complete(
            self._prompts.expert_intent.messages(
                role=self.profile.role,
                description=self.profile.description,
                topic=topic,
                history="\n".join(history) or "(no discussion yet)",
            )
        )
        try:
            return parse_intent(raw)
        except MalformedOutputError:
            logger.warning("%s returned no recognisable intent (%r), asking a question instead", self.role, raw[:80])
            return IntentKind.INFORMATION_REQUEST

    async def generate_queries(self, topic: str, question: str) -> list[str]:
        """Derive between min_queries and max_queries search queries.

        Short lists are padded with the question itself.
        """
        raw = await self._gateway.complete(
            self._prompts.expert_queries.messages(
                topic=topic,
                question=question,
                min_queries=self._settings.min_queries,
                max_queries=self._settings.max_queries,
            )
        )
        queries = parse_lines(raw)[: self._settings.max_queries]
        for filler in (question, topic):
            if len(queries) >= self._settings.min_queries:
                break
            if filler and filler not in queries:
                queries.append(filler)
        return queries

    async def gather_sources(self, queries: list[str]) -> list[SearchResult]:
        """Search every query concurrently; concatenate in query order, first url wins.

        The returned list is what the answer prompt numbers, so `[n]` citations
        index this deduplicated order rather than the raw per-query results.
        """
        batches = await asyncio.gather(*(self._retrieval.search(q) for q in queries))
        sources: list[SearchResult] = []
        seen_urls: set[str] = set()
        for batch in batches:
            for result in batch:
                if result.url in seen_urls:
                    continue
                seen_urls.add(result.url)
                sources.append(result)
        return sources

    async def generate_answer(self, topic: str, question: str, sources: list[SearchResult]) -> str:
        return await self._gateway.complete(
            self._prompts.expert_answer.messages(
                role=self.profile.role,
                description=self.profile.description,
                topic=topic,
                question=question,
                information=format_sources(sources) or "(no sources found)",
            )
        )

    async def generate_question(self, topic: str, history: list[str]) -> str:
        return await self._gateway.complete(
            self._prompts.expert_question.messages(
                role=self.profile.role,
                description=self.profile.description,
                topic=topic,
                history="\n".join(history) or "(no discussion yet)",
            )
        )

    async def polish(self, content: str, previous: str) -> str:
        return await self._gateway.complete(
            self._prompts.expert_polish.messages(
                role=self.profile.role,
                previous=previous,
                content=content,
            )
        )

    async def _grounded_answer(self, topic: str, question: str) -> tuple[str, list[SearchResult]]:
        queries = await self.generate_queries(topic, question)
        sources = await self.gather_sources(queries)
        logger.info("%s retrieved %d sources from %d queries", self.role, len(sources), len(queries))
        return await self.generate_answer(topic, question, sources), sources

    def _build_utterance(self, content: str, intent: IntentKind, sources: list[SearchResult]) -> Utterance:
        return Utterance(
            speaker_role=self.profile.role,
            content=content,
            intent=intent,
            citations=extract_citations(content, sources),
            retrieved_info=tuple(s.content for s in sources),
        )

    async def generate_utterance(self, topic: str, history: list[str]) -> Utterance:
        """Produce the next utterance for this expert.

        Answers (POTENTIAL_ANSWER, FURTHER_DETAILS) are grounded in web search
        and cite sources as [n]; other intents produce a follow-up question.
        The raw text is then polished for tone. Gateway failures propagate.
        """
        intent = await self.choose_intent(topic, history)
        previous = history[-1] if history else ""
        sources: list[SearchResult] = []

        if intent.is_answer:
            content, sources = await self._grounded_answer(topic, previous or topic)
        else:
            content = await self.generate_question(topic, history)

        polished = await self.polish(content, previous)
        return self._build_utterance(polished, intent, sources)

    async def answer_question(self, topic: str, question: str) -> Utterance:
        """Answer a given question directly, always grounded."""
        content, sources = await self._grounded_answer(topic, question)
        polished = await self.polish(content, question)
        return self._build_utterance(polished, IntentKind.POTENTIAL_ANSWER, sources)
