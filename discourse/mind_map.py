"""Knowledge map: a concept tree that absorbs grounded answers and reorganizes itself."""

import asyncio
import logging
import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field

from config.config_loader import MindMapConfig, PromptsConfig
from discourse.gateway import CompletionGateway
from discourse.models import InformationItem
from discourse.parsing import CreateChild, DirectiveError, Insert, StepInto, parse_directive, parse_lines, parse_placement
from discourse.retrieval import RetrievalGateway, cosine_similarity

logger = logging.getLogger(__name__)

ROOT_ID = "root"


@dataclass(eq=False)
class MindMapNode:
    """A concept. Owns its children; the parent link is a weak, lookup-only reference."""

    id: str
    title: str
    level: int = 0
    information: list[InformationItem] = field(default_factory=list)
    children: list["MindMapNode"] = field(default_factory=list)
    _parent_ref: weakref.ref | None = field(default=None, init=False, repr=False)
    _next_child_index: int = field(default=0, init=False, repr=False)

    @property
    def parent(self) -> "MindMapNode | None":
        return self._parent_ref() if self._parent_ref is not None else None

    @parent.setter
    def parent(self, node: "MindMapNode | None") -> None:
        self._parent_ref = weakref.ref(node) if node is not None else None

    def add_child(self, title: str) -> "MindMapNode":
        # Ids derive from a per-node counter that never rewinds, so pruned
        # children can't hand their id to a newcomer.
        child = MindMapNode(id=f"{self.id}-{self._next_child_index}", title=title, level=self.level + 1)
        self._next_child_index += 1
        child.parent = self
        self.children.append(child)
        return child

    def find_child(self, title: str) -> "MindMapNode | None":
        return next((c for c in self.children if c.title == title), None)

    def walk(self) -> Iterator["MindMapNode"]:
        """Pre-order traversal."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "level": self.level,
            "information": [
                {"content": i.content, "question": i.source_question} for i in self.information
            ],
            "children": [c.to_dict() for c in self.children],
        }


def _relevel(node: MindMapNode) -> None:
    for child in node.children:
        child.level = node.level + 1
        _relevel(child)


class MindMapManager:
    """Places information items in the tree and keeps nodes under capacity."""

    def __init__(
        self,
        gateway: CompletionGateway,
        retrieval: RetrievalGateway,
        prompts: PromptsConfig,
        settings: MindMapConfig,
    ) -> None:
        self._gateway = gateway
        self._retrieval = retrieval
        self._prompts = prompts
        self._settings = settings
        self._reorganizing: dict[str, int] = {}
        self.root: MindMapNode | None = None

    def initialize(self, topic: str) -> MindMapNode:
        self.root = MindMapNode(id=ROOT_ID, title=topic, level=0)
        return self.root

    def find_node(self, node_id: str) -> MindMapNode | None:
        if self.root is None:
            return None
        return next((n for n in self.root.walk() if n.id == node_id), None)

    def export(self) -> dict | None:
        """Serializable snapshot of the tree. Never mutates it."""
        return self.root.to_dict() if self.root is not None else None

    async def insert_information(
        self,
        content: str,
        question: str,
        node: MindMapNode | None = None,
    ) -> MindMapNode:
        """Place one information item, starting at node (or the chosen/default start).

        Returns:
            The node the item was first attached to. A reorganization
            triggered by the attachment may move it further down.
        """
        if self.root is None:
            raise RuntimeError("Mind map is not initialized")
        if node is None:
            node = await self._starting_node(question)
        return await self._insert(InformationItem(content=content, source_question=question), node)

    async def _starting_node(self, question: str) -> MindMapNode:
        if not self._settings.placement_search or not self.root.children:
            return self.root
        candidates = await self.find_candidate_placements(question)
        return await self.choose_placement(question, candidates) or self.root

    async def _insert(self, item: InformationItem, node: MindMapNode) -> MindMapNode:
        raw = await self._gateway.complete(
            self._prompts.map_insert.messages(
                question=item.source_question,
                information=item.content,
                node_title=node.title,
                children=", ".join(c.title for c in node.children) or "(none)",
            )
        )
        try:
            directive = parse_directive(raw)
        except DirectiveError as exc:
            logger.warning("Placement at %s fell back to insert: %s", node.id, exc)
            directive = Insert()

        if isinstance(directive, StepInto):
            child = node.find_child(directive.title)
            if child is not None:
                return await self._insert(item, child)
            logger.warning("Ignored step into missing child %r of %s", directive.title, node.id)
        elif isinstance(directive, CreateChild):
            child = node.find_child(directive.title) or node.add_child(directive.title)
            logger.debug("Attaching to child %s (%r)", child.id, child.title)
            await self._attach(item, child)
            return child

        await self._attach(item, node)
        return node

    async def _attach(self, item: InformationItem, node: MindMapNode) -> None:
        node.information.append(item)
        if len(node.information) <= self._settings.node_capacity or node.id in self._reorganizing:
            return
        if self._reorganizing and len(node.information) >= min(self._reorganizing.values()):
            logger.debug("Deferring reorganization of %s (%d items) until %s settles",
                         node.id, len(node.information), next(reversed(self._reorganizing)))
            return
        await self.reorganize(node)

    async def reorganize(self, node: MindMapNode) -> None:
        """Split an overloaded node into subtopics and re-place its items.

        Items are re-inserted starting at the node itself, so the usual
        insert/step/create decision applies. While this runs the node does
        not re-trigger its own reorganization. A child that overflows during
        re-insertion cascades only if it holds fewer items than were
        displaced here; otherwise it stays over capacity and the final
        cleanup collapses a lone subtopic back into the node.
        """
        raw = await self._gateway.complete(
            self._prompts.map_reorganize.messages(
                information="\n".join(f"- {i.content}" for i in node.information)
            )
        )
        subtopics = parse_lines(raw)
        if not subtopics:
            logger.warning("Reorganization of %s produced no subtopics, keeping %d items", node.id, len(node.information))
            return

        logger.info("Reorganizing %s (%d items) into %d subtopics", node.id, len(node.information), len(subtopics))
        displaced = node.information
        node.information = []
        for title in subtopics:
            if node.find_child(title) is None:
                node.add_child(title)

        self._reorganizing[node.id] = len(displaced)
        try:
            for item in displaced:
                await self._insert(item, node)
        finally:
            del self._reorganizing[node.id]

        self.clean_up(node)

    def clean_up(self, node: MindMapNode | None = None) -> None:
        """Prune empty leaves and collapse single-child chains, bottom-up. Idempotent."""
        node = node or self.root
        if node is None:
            return
        for child in list(node.children):
            self.clean_up(child)

        node.children = [c for c in node.children if c.information or c.children]

        while len(node.children) == 1 and not node.information:
            only_child = node.children[0]
            logger.debug("Collapsing %s into %s", only_child.id, node.id)
            node.title = f"{node.title}{self._settings.title_separator}{only_child.title}"
            node.information = only_child.information
            node.children = only_child.children
            for grandchild in node.children:
                grandchild.parent = node
            _relevel(node)

    async def find_candidate_placements(self, question: str) -> list[tuple[MindMapNode, float]]:
        """Every node paired with the similarity of its title to the question, pre-order."""
        nodes = list(self.root.walk())
        vectors = await asyncio.gather(
            self._retrieval.embed(question), *(self._retrieval.embed(n.title) for n in nodes)
        )
        question_vec, title_vecs = vectors[0], vectors[1:]
        return [(n, cosine_similarity(question_vec, v)) for n, v in zip(nodes, title_vecs)]

    async def choose_placement(
        self,
        question: str,
        candidates: list[tuple[MindMapNode, float]],
    ) -> MindMapNode | None:
        listing = "\n".join(f"{i}. {node.title} (similarity: {sim:.3f})" for i, (node, sim) in enumerate(candidates))
        raw = await self._gateway.complete(
            self._prompts.map_placement.messages(question=question, candidates=listing)
        )
        index = parse_placement(raw)
        if index is None or not 0 <= index < len(candidates):
            return None
        return candidates[index][0]
