"""Topic detection, JSON extraction and configuration loading."""

from __future__ import annotations

import pytest

from lachesis.engine.config import LachesisConfig
from lachesis.engine.errors import ConfigError
from lachesis.engine.topics import (
    ALL_TOPICS,
    contains_transition_phrase,
    detect_topics,
    uncovered_topics,
)
from lachesis.engine.yaml_config import load_yaml_config
from lachesis.shared.json_extract import extract_json, strip_code_fence


# ── Topics ──

def test_detect_topics_by_keyword():
    assert detect_topics("Who will use this?") == frozenset({"target_users"})
    assert detect_topics("Any budget or deadline?") == frozenset({"constraints"})


def test_topic_coverage_only_grows():
    covered = detect_topics("nothing relevant", ["problem_statement"])
    assert covered == frozenset({"problem_statement"})


def test_uncovered_topics_keep_declared_order():
    assert uncovered_topics(["target_users"]) == [t for t in ALL_TOPICS if t != "target_users"]


def test_transition_phrase_is_case_insensitive():
    assert contains_transition_phrase("VERY WELL, SIR. LET US PROCEED.")
    assert not contains_transition_phrase("Very well. Let us continue.")


# ── JSON extraction ──

def test_extract_json_from_bare_text():
    assert extract_json('{"names": []}') == {"names": []}


def test_extract_json_from_fence_containing_backticks():
    text = '```json\n{"task": "Detect ```kos``` blocks"}\n```'
    assert extract_json(text) == {"task": "Detect ```kos``` blocks"}


def test_extract_json_after_prose():
    text = 'Here you go:\n\n```json\n{"status": "success"}\n```\nThanks.'
    assert extract_json(text) == {"status": "success"}


@pytest.mark.parametrize("text", [None, "", "no json here", "```json\n{broken\n```"])
def test_extract_json_returns_none(text):
    assert extract_json(text) is None


def test_strip_code_fence_leaves_unfenced_text():
    assert strip_code_fence("  plain  ") == "plain"


# ── Config ──

def test_config_from_env(monkeypatch):
    monkeypatch.setenv("LACHESIS_MODEL", "claude-haiku")
    monkeypatch.setenv("LACHESIS_MAX_SESSIONS", "7")
    monkeypatch.setenv("LACHESIS_AGENTIC", "false")
    monkeypatch.delenv("LACHESIS_STATE_FILE", raising=False)

    config = LachesisConfig.from_env()

    assert config.model == "claude-haiku"
    assert config.max_sessions == 7
    assert config.agentic_enabled is False
    assert config.state_file is None
    assert config.ai_config("/vault/Trails").cwd == "/vault/Trails"


def test_config_rejects_unknown_planning_level():
    with pytest.raises(ConfigError):
        LachesisConfig(planning_level="extreme")


def test_yaml_overrides_base(tmp_path):
    path = tmp_path / "lachesis.yaml"
    path.write_text(
        "lachesis:\n"
        "  planning_level: heavy\n"
        "  max_tool_calls: 3\n"
        "other_tool:\n"
        "  ignored: true\n"
    )

    config = load_yaml_config(path, base=LachesisConfig(model="claude-haiku"))

    assert config.planning_level == "heavy"
    assert config.max_tool_calls == 3
    assert config.model == "claude-haiku"


def test_yaml_expands_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    path = tmp_path / "lachesis.yaml"
    path.write_text("lachesis:\n  vault_path: ~/Vault\n")

    config = load_yaml_config(path, base=LachesisConfig())

    assert config.vault_path == str(tmp_path / "Vault")


def test_yaml_unknown_key_raises(tmp_path):
    path = tmp_path / "lachesis.yaml"
    path.write_text("lachesis:\n  modle: claude-haiku\n")
    with pytest.raises(ConfigError, match="modle"):
        load_yaml_config(path, base=LachesisConfig())


def test_yaml_invalid_value_raises(tmp_path):
    path = tmp_path / "lachesis.yaml"
    path.write_text("lachesis:\n  planning_level: extreme\n")
    with pytest.raises(ConfigError):
        load_yaml_config(path, base=LachesisConfig())


def test_yaml_syntax_error_raises(tmp_path):
    path = tmp_path / "lachesis.yaml"
    path.write_text("lachesis: [unclosed\n")
    with pytest.raises(ConfigError):
        load_yaml_config(path, base=LachesisConfig())
