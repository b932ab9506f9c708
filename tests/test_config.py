"""Tests for config/config_loader.py."""

from dataclasses import fields
from pathlib import Path

import pytest
import yaml

from config.config_loader import (
    AppConfig,
    DiscourseConfig,
    ModelConfig,
    PromptsConfig,
    PromptTemplate,
    load_config,
)


def _prompt_section() -> dict:
    return {f.name: {"system": f"{f.name} system", "user": "Topic: {topic}"} for f in fields(PromptsConfig)}


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml (no optional sections) to a temp path."""
    settings = {
        "defaults": {
            "completion_provider": "openai",
            "output_dir": "./output",
        },
        "models": {
            "openai": {
                "sdk": "openai",
                "model": "gpt-4o",
                "api_key_env": "TEST_OPENAI_KEY",
                "timeout_sec": 60,
                "max_tokens": 1000,
            }
        },
        "prompts": _prompt_section(),
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.completion_provider == "openai"
    assert isinstance(config.defaults.output_dir, Path)
    assert config.defaults.background is False
    assert config.defaults.turns == 6


def test_optional_sections_fall_back_to_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.discourse == DiscourseConfig()
    assert config.mind_map.node_capacity == 10
    assert config.gateway.max_retries == 3
    assert config.search.max_results == 5
    assert config.embedding.model == "text-embedding-3-small"


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.models["openai"], ModelConfig)
    assert config.models["openai"].base_url is None


def test_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test-key")
    config = load_config(minimal_settings)
    assert "openai" in config.available_providers


def test_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
    config = load_config(minimal_settings)
    assert "openai" not in config.available_providers


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_missing_prompt_raises(tmp_path: Path):
    prompts = _prompt_section()
    del prompts["map_insert"]
    settings = {
        "defaults": {"completion_provider": "openai", "output_dir": "./output"},
        "models": {},
        "prompts": prompts,
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    with pytest.raises(KeyError):
        load_config(path)


def test_shipped_settings_match_discussion_constants(app_config):
    assert app_config.discourse.max_consecutive_answers == 2
    assert app_config.discourse.unused_info_threshold == 5
    assert app_config.discourse.moderator_interval == 10
    assert app_config.discourse.background_max_iterations == 3
    assert app_config.discourse.rerank_alpha == 0.7
    assert app_config.discourse.rerank_top_k == 5
    assert app_config.mind_map.node_capacity == 10
    assert app_config.gateway.backoff_base_sec == 10
    assert app_config.gateway.max_retries == 3


def test_shipped_prompts_render(app_config):
    """Every shipped template formats with its documented fields."""
    values = dict(
        topic="t", history="h", role="r", description="d", question="q", information="i",
        previous="p", content="c", min_queries=3, max_queries=5, summary="s", last_utterance="l",
        roster="r", node_title="n", children="c", candidates="c", discussion="d",
    )
    for prompt_field in fields(PromptsConfig):
        messages = getattr(app_config.prompts, prompt_field.name).messages(**values)
        assert [m["role"] for m in messages] == ["system", "user"]


def test_prompt_template_keeps_literal_json_braces(app_config):
    messages = app_config.prompts.roster.messages(topic="renewable energy")
    assert '{"role": "Expert Title"' in messages[0]["content"]
    assert messages[1]["content"] == "Topic: renewable energy"


def test_prompt_template_strips_whitespace():
    template = PromptTemplate(system="  Be brief.\n", user="Q: {question}\n\n")
    assert template.messages(question="why?") == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "Q: why?"},
    ]
