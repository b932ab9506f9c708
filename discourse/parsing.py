"""Parsers that turn raw completion text into typed values.

Every parser either returns a well-formed value or raises
MalformedOutputError; callers decide which default to fall back to.
"""

import json
import re
from dataclasses import dataclass

from discourse.models import Article, ArticleSection, ExpertProfile, IntentKind


class MalformedOutputError(Exception):
    """Completion text failed structural validation."""

    def __init__(self, kind: str, message: str, raw: str = "") -> None:
        self.kind = kind
        self.raw = raw
        super().__init__(f"Malformed {kind}: {message}")


class DirectiveError(MalformedOutputError):
    """Unrecognised knowledge-map placement directive."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__("directive", message, raw)


@dataclass(frozen=True)
class Insert:
    pass


@dataclass(frozen=True)
class StepInto:
    title: str


@dataclass(frozen=True)
class CreateChild:
    title: str


Directive = Insert | StepInto | CreateChild

_DIRECTIVE_RE = re.compile(r"^(step|create)\s*:\s*(.*)$", re.IGNORECASE)
_BULLET_RE = re.compile(r"^\s*(?:[-*•]+|\d+[.)]|#+)\s*")
_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")
_CITATION_RE = re.compile(r"\[(\d+)\]")
_PLACEMENT_RE = re.compile(r"best placement:\s*\[?(\d+)\]?", re.IGNORECASE)


def _clean_title(text: str) -> str:
    text = text.strip().strip("`\"'").strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1].strip()
    return text.rstrip(".").strip()


def parse_directive(text: str) -> Directive:
    """Parse an ``insert`` / ``step: X`` / ``create: X`` directive.

    Only the first non-empty line is considered. Bullets, quotes and
    brackets around the child title are tolerated; anything else is rejected.
    """
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if not lines:
        raise DirectiveError("empty directive", text)
    line = _BULLET_RE.sub("", lines[0]).strip().strip("`\"'").strip()

    if line.rstrip(".").lower() == "insert":
        return Insert()

    match = _DIRECTIVE_RE.match(line)
    if not match:
        raise DirectiveError(f"unrecognised directive {line!r}", text)
    title = _clean_title(match.group(2))
    if not title:
        raise DirectiveError(f"directive {line!r} has no title", text)
    if match.group(1).lower() == "step":
        return StepInto(title)
    return CreateChild(title)


def parse_intent(text: str) -> IntentKind:
    """Find the first IntentKind name mentioned in text."""
    normalized = re.sub(r"[\s-]+", "_", text.upper())
    found = [(normalized.find(kind.value), kind) for kind in IntentKind if kind.value in normalized]
    if not found:
        raise MalformedOutputError("intent", "no intent name found", text)
    return min(found, key=lambda pair: pair[0])[1]


def parse_lines(text: str) -> list[str]:
    """Split a bulleted or numbered list into unique, non-empty entries."""
    entries: list[str] = []
    for line in text.splitlines():
        entry = _BULLET_RE.sub("", line).strip().strip("\"'").strip()
        if entry and entry not in entries:
            entries.append(entry)
    return entries


def parse_completion_verdict(text: str) -> bool:
    """True only when the reply's first word is "complete"."""
    words = re.findall(r"[a-z]+", text.lower())
    return bool(words) and words[0] == "complete"


def parse_placement(text: str) -> int | None:
    match = _PLACEMENT_RE.search(text)
    return int(match.group(1)) if match else None


def extract_citation_ids(content: str) -> list[int]:
    """Numeric [n] markers in order of first appearance, deduplicated."""
    ids: list[int] = []
    for match in _CITATION_RE.finditer(content):
        n = int(match.group(1))
        if n not in ids:
            ids.append(n)
    return ids


def parse_json(text: str, kind: str) -> object:
    """Decode JSON from completion text, tolerating markdown code fences."""
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    # Fall back to the outermost bracketed span, for replies wrapped in prose.
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    if starts:
        start = min(starts)
        end = max(cleaned.rfind("}"), cleaned.rfind("]"))
        if end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError as exc:
                raise MalformedOutputError(kind, f"invalid JSON: {exc}", text) from exc
    raise MalformedOutputError(kind, "no JSON found", text)


def parse_roster(text: str) -> list[ExpertProfile]:
    data = parse_json(text, "roster")
    if isinstance(data, dict):
        data = data.get("experts")
    if not isinstance(data, list):
        raise MalformedOutputError("roster", "expected a JSON array", text)

    roster = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        role = str(entry.get("role") or "").strip()
        if not role:
            continue
        roster.append(ExpertProfile(role=role, description=str(entry.get("description") or "").strip()))
    if not roster:
        raise MalformedOutputError("roster", "no expert has a role", text)
    return roster


def parse_article(text: str) -> Article:
    """Parse the article JSON. Citations are not taken from the reply."""
    data = parse_json(text, "article")
    if not isinstance(data, dict) or not data.get("title") or not isinstance(data.get("sections"), list):
        raise MalformedOutputError("article", "invalid article structure", text)

    sections = []
    for section in data["sections"]:
        if not isinstance(section, dict) or "title" not in section or "content" not in section:
            raise MalformedOutputError("article", "section lacks title or content", text)
        sections.append(ArticleSection(title=str(section["title"]), content=str(section["content"])))
    return Article(title=str(data["title"]), sections=sections)


def _validate_outline_node(node: object, text: str) -> dict:
    if not isinstance(node, dict):
        raise MalformedOutputError("outline", "node is not an object", text)
    title = node.get("title") or node.get("topic")
    children = node.get("children", [])
    if not node.get("id") or not title or not isinstance(children, list):
        raise MalformedOutputError("outline", "invalid node structure", text)
    return {
        "id": str(node["id"]),
        "title": str(title),
        "children": [_validate_outline_node(child, text) for child in children],
    }


def parse_outline(text: str) -> dict:
    """Parse a {id, title, children} tree, validating every node."""
    return _validate_outline_node(parse_json(text, "outline"), text)
