"""Load settings.yaml into typed dataclasses. Reports provider availability at startup."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str               # "openai", "anthropic" or "gemini"
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class EmbeddingConfig:
    model: str = "text-embedding-3-small"
    api_key_env: str = "OPENAI_API_KEY"
    timeout_sec: int = 30
    base_url: str | None = None


@dataclass
class SearchConfig:
    api_key_env: str = "TAVILY_API_KEY"
    endpoint: str = "https://api.tavily.com/search"
    max_results: int = 5
    search_depth: str = "advanced"
    query_max_chars: int = 350
    content_max_chars: int = 300
    timeout_sec: int = 30


@dataclass
class GatewayConfig:
    cooldown_sec: float = 1.0
    max_retries: int = 3
    backoff_base_sec: float = 10.0
    backoff_factor: float = 2.0
    call_deadline_sec: float | None = 300.0


@dataclass
class DiscourseConfig:
    max_consecutive_answers: int = 2
    unused_info_threshold: int = 5
    moderator_interval: int = 10
    background_max_iterations: int = 3
    rerank_alpha: float = 0.7
    rerank_top_k: int = 5
    min_queries: int = 3
    max_queries: int = 5
    article_max_citations: int = 10
    history_excerpt_chars: int = 300


@dataclass
class MindMapConfig:
    node_capacity: int = 10
    title_separator: str = " - "
    placement_search: bool = False


@dataclass
class PromptTemplate:
    system: str
    user: str

    def messages(self, **values: object) -> list[dict[str, str]]:
        """Render both templates into a chat message list."""
        return [
            {"role": "system", "content": self.system.format(**values).strip()},
            {"role": "user", "content": self.user.format(**values).strip()},
        ]


@dataclass
class PromptsConfig:
    roster: PromptTemplate
    expert_intent: PromptTemplate
    expert_queries: PromptTemplate
    expert_answer: PromptTemplate
    expert_question: PromptTemplate
    expert_polish: PromptTemplate
    moderator_introduction: PromptTemplate
    moderator_next_question: PromptTemplate
    moderator_intervention: PromptTemplate
    moderator_completion_check: PromptTemplate
    moderator_summary: PromptTemplate
    moderator_grounded_question: PromptTemplate
    moderator_participants: PromptTemplate
    map_insert: PromptTemplate
    map_reorganize: PromptTemplate
    map_placement: PromptTemplate
    background_info: PromptTemplate
    article: PromptTemplate
    outline: PromptTemplate


@dataclass
class DefaultsConfig:
    completion_provider: str
    output_dir: Path
    background: bool = False
    turns: int = 6


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    discourse: DiscourseConfig = field(default_factory=DiscourseConfig)
    mind_map: MindMapConfig = field(default_factory=MindMapConfig)
    available_providers: set[str] = field(default_factory=set)


def _load_prompts(prompts_raw: dict) -> PromptsConfig:
    templates = {}
    for prompt_field in fields(PromptsConfig):
        entry = prompts_raw[prompt_field.name]
        templates[prompt_field.name] = PromptTemplate(
            system=str(entry["system"]),
            user=str(entry["user"]),
        )
    return PromptsConfig(**templates)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, KeyError if a required
    section or prompt is absent. Logs missing API keys but does not raise;
    callers check available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        completion_provider=str(defaults_raw["completion_provider"]),
        output_dir=Path(defaults_raw["output_dir"]),
        background=bool(defaults_raw.get("background", False)),
        turns=int(defaults_raw.get("turns", 6)),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s — set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    gateway_raw = raw.get("gateway", {})
    deadline = gateway_raw.get("call_deadline_sec", GatewayConfig.call_deadline_sec)

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=_load_prompts(raw["prompts"]),
        embedding=EmbeddingConfig(**raw.get("embedding", {})),
        search=SearchConfig(**raw.get("search", {})),
        gateway=GatewayConfig(
            cooldown_sec=float(gateway_raw.get("cooldown_sec", 1.0)),
            max_retries=int(gateway_raw.get("max_retries", 3)),
            backoff_base_sec=float(gateway_raw.get("backoff_base_sec", 10.0)),
            backoff_factor=float(gateway_raw.get("backoff_factor", 2.0)),
            call_deadline_sec=float(deadline) if deadline is not None else None,
        ),
        discourse=DiscourseConfig(**raw.get("discourse", {})),
        mind_map=MindMapConfig(**raw.get("mind_map", {})),
        available_providers=available_providers,
    )
