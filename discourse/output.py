"""Rich console output and markdown file save for discussion sessions."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text
from rich.tree import Tree

from discourse.models import Article, IntentKind, Utterance

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_INTENT_STYLES = {
    IntentKind.ORIGINAL_QUESTION: "magenta",
    IntentKind.INFORMATION_REQUEST: "cyan",
    IntentKind.POTENTIAL_ANSWER: "green",
    IntentKind.FURTHER_DETAILS: "blue",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def print_utterance(utterance: Utterance) -> None:
    """Print one turn as a panel titled with speaker and intent."""
    subtitle = escape(", ".join(f"[{c.id}] {c.url}" for c in utterance.citations)) or None
    console.print(
        Panel(
            Text(utterance.content),
            title=f"[bold]{escape(utterance.speaker_role)}[/bold] · {utterance.intent.value.lower()}",
            subtitle=subtitle,
            border_style=_INTENT_STYLES.get(utterance.intent, "dim"),
        )
    )


def _add_branch(tree: Tree, node: dict) -> None:
    count = len(node.get("information", []))
    branch = tree.add(f"{escape(node['title'])} [dim]({node['id']}, {count} items)[/dim]")
    for child in node.get("children", []):
        _add_branch(branch, child)


def build_mind_map_tree(mind_map: dict) -> Tree:
    """Turn an exported mind map into a rich Tree."""
    count = len(mind_map.get("information", []))
    tree = Tree(f"[bold]{escape(mind_map['title'])}[/bold] [dim]({count} items)[/dim]")
    for child in mind_map.get("children", []):
        _add_branch(tree, child)
    return tree


def print_mind_map(mind_map: dict | None) -> None:
    console.print(Rule("[bold cyan]Mind Map[/bold cyan]"))
    if mind_map is None:
        console.print("[dim](empty)[/dim]")
        return
    console.print(build_mind_map_tree(mind_map))


def render_article(article: Article) -> str:
    """Article as markdown with a numbered reference list."""
    lines = [f"# {article.title}", ""]
    for section in article.sections:
        lines += [f"## {section.title}", "", section.content, ""]
    if article.citations:
        lines += ["## References", ""]
        lines += [f"{c.id}. [{c.title}]({c.url})" for c in article.citations]
        lines.append("")
    return "\n".join(lines)


def print_article(article: Article) -> None:
    console.print(Rule("[bold green]Article[/bold green]"))
    console.print(Markdown(render_article(article)))


def _render_mind_map_lines(node: dict, depth: int = 0) -> list[str]:
    lines = [f"{'  ' * depth}- {node['title']} ({len(node.get('information', []))} items)"]
    for child in node.get("children", []):
        lines += _render_mind_map_lines(child, depth + 1)
    return lines


def save_to_file(
    topic: str,
    history: list[Utterance],
    article: Article,
    mind_map: dict | None,
    output_dir: Path,
) -> Path:
    """Save transcript, mind map outline and article as one markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(topic)}.md"

    lines: list[str] = [
        f"# Discussion: {topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Turns:** {len(history)}",
        "",
        "---",
        "",
        "## Transcript",
        "",
    ]
    for number, utterance in enumerate(history, start=1):
        label = " (background)" if utterance.is_background else ""
        lines.append(f"### {number}. {utterance.speaker_role} — {utterance.intent.value}{label}")
        lines.append("")
        lines.append(utterance.content)
        lines.append("")
        if utterance.citations:
            lines.append("*Sources: " + ", ".join(f"[{c.id}] {c.url}" for c in utterance.citations) + "*")
            lines.append("")

    if mind_map is not None:
        lines += ["## Mind Map", ""]
        lines += _render_mind_map_lines(mind_map)
        lines.append("")

    lines += ["---", "", render_article(article)]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Session saved to: %s", filepath)
    return filepath
