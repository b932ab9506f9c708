"""Click CLI — wires config, provider, gateways and orchestrator, then runs a session."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from discourse.gateway import BackoffPolicy, CompletionGateway
from discourse.healthcheck import build_probes, run_health_checks
from discourse.models import Utterance
from discourse.orchestrator import DiscourseOrchestrator
from discourse.output import print_article, print_mind_map, print_utterance, save_to_file
from discourse.providers.anthropic import AnthropicProvider
from discourse.providers.base import AIProvider, ProviderError
from discourse.providers.gemini import GeminiProvider
from discourse.providers.openai_provider import OpenAIProvider
from discourse.retrieval import RetrievalGateway

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

SDK_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # SDK request logs drown out the turn log at INFO
    for noisy in ("httpx", "openai", "anthropic", "google_genai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _build_provider(config: AppConfig, name: str) -> AIProvider:
    """Instantiate the named completion provider.

    Raises:
        click.ClickException: Unknown provider, unknown sdk, or missing API key.
    """
    if name not in config.models:
        raise click.ClickException(f"Unknown provider '{name}'. Configured: {', '.join(sorted(config.models))}")
    model_cfg = config.models[name]
    if model_cfg.sdk not in SDK_CLASSES:
        raise click.ClickException(f"Provider '{name}' uses unsupported sdk '{model_cfg.sdk}'")
    if name not in config.available_providers:
        raise click.ClickException(f"Provider '{name}' has no API key. Set {model_cfg.api_key_env} in .env")
    try:
        return SDK_CLASSES[model_cfg.sdk](model_cfg)
    except ProviderError as exc:
        raise click.ClickException(str(exc)) from exc


def _build_gateway(config: AppConfig, provider: AIProvider) -> CompletionGateway:
    gateway_cfg = config.gateway
    return CompletionGateway(
        provider,
        cooldown_sec=gateway_cfg.cooldown_sec,
        backoff=BackoffPolicy(
            base_delay=gateway_cfg.backoff_base_sec,
            factor=gateway_cfg.backoff_factor,
            max_retries=gateway_cfg.max_retries,
        ),
        deadline_sec=gateway_cfg.call_deadline_sec,
    )


def _check_services(provider: AIProvider, retrieval: RetrievalGateway) -> None:
    """Ping services, print results, and ask whether to continue on failure."""
    console.print("\n[bold]Checking services...[/bold]")
    results = asyncio.run(run_health_checks(build_probes(provider, retrieval)))

    failed = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed.append(name)

    if not failed:
        console.print()
        return

    if any(name.startswith("completion") for name in failed):
        console.print("\n[bold red]Error:[/bold red] The completion service is unreachable.")
        sys.exit(1)

    if not click.confirm("Embedding service failed; reranking will abort moderator turns. Continue?", default=False):
        sys.exit(0)
    console.print()


async def _run_session(
    orchestrator: DiscourseOrchestrator,
    topic: str,
    turns: int,
    user_question: str | None,
    background: bool,
    output_dir: Path,
) -> Path:
    """Run one discussion session and return the saved output path."""
    produced: list[Utterance] = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Assembling expert panel...", total=None)
        state = await orchestrator.initialize(topic)
        progress.print(f"[green]OK[/green] Panel: {', '.join(p.role for p in state.expert_roster)}")

        if background:
            progress.update(task, description="Running background discussion...")
            result = await orchestrator.generate_background_discussion()
            produced.extend(result.history)
            progress.print(f"[green]OK[/green] Background discussion ({len(result.history)} utterances)")

        for turn in range(1, turns + 1):
            progress.update(task, description=f"Turn {turn}/{turns}...")
            produced.append(await orchestrator.generate_next_utterance())

        if user_question:
            progress.update(task, description="Answering your question...")
            before = len(state.history)
            turn_result = await orchestrator.handle_user_input(user_question)
            produced.extend(state.history[before:])
            article = turn_result.article
        else:
            progress.update(task, description="Writing article...")
            article = await orchestrator.generate_article()

    for utterance in produced:
        print_utterance(utterance)

    mind_map = orchestrator.get_mind_map()
    print_mind_map(mind_map)
    print_article(article)

    saved_path = save_to_file(topic, state.history, article, mind_map, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


@click.command()
@click.argument("topic")
@click.option("--turns", default=None, type=int, help="Number of utterances to generate (default: from config)")
@click.option("--question", "user_question", default=None, help="Ask the panel a question after the turns")
@click.option("--background/--no-background", default=None,
              help="Run the bounded background discussion first (default: from config)")
@click.option("--provider", "provider_name", default=None, help="Completion provider (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
def main(
    topic: str,
    turns: int | None,
    user_question: str | None,
    background: bool | None,
    provider_name: str | None,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Expert roundtable -- moderated multi-expert discussion with a live mind map.

    \b
    Examples:
      python -m discourse.cli "renewable energy"
      python -m discourse.cli "renewable energy" --turns 10 --background
      python -m discourse.cli "CRISPR ethics" --question "Who should regulate germline editing?"
      python -m discourse.cli "urban heat islands" --provider claude
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    provider = _build_provider(config, provider_name or config.defaults.completion_provider)
    retrieval = RetrievalGateway(config.search, config.embedding)

    if not skip_health_check:
        _check_services(provider, RetrievalGateway(config.search, config.embedding))

    orchestrator = DiscourseOrchestrator(_build_gateway(config, provider), retrieval, config)

    try:
        asyncio.run(
            _run_session(
                orchestrator=orchestrator,
                topic=topic,
                turns=turns if turns is not None else config.defaults.turns,
                user_question=user_question,
                background=background if background is not None else config.defaults.background,
                output_dir=Path(output_path) if output_path else config.defaults.output_dir,
            )
        )
    except ProviderError as exc:
        logger.error("Session aborted: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
