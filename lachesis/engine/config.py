"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via LACHESIS_* env vars,
or load a YAML file with yaml_config.load_yaml_config().
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from .errors import ConfigError

logger = logging.getLogger(__name__)

PLANNING_LEVELS = ("light", "medium", "heavy")
AGENTIC_TOOLS = ["Read", "Write", "Edit", "Glob", "Grep"]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in {"1", "true", "yes"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class AIConfig:
    """Per-call settings handed to the AI collaborator."""
    model: str = "claude-sonnet-4-5-20250929"
    permission_mode: str = "acceptEdits"
    max_tool_calls: int = 10
    cwd: str | None = None
    allowed_tools: list[str] = field(default_factory=lambda: list(AGENTIC_TOOLS))


@dataclass
class LachesisConfig:
    """Application configuration."""

    # Model used for questions, naming, and extraction
    model: str = "claude-sonnet-4-5-20250929"
    # Where new projects are scaffolded
    vault_path: str = "."
    planning_level: str = "medium"
    # Session registry bound; oldest sessions are evicted beyond this
    max_sessions: int = 50
    # Hard cap on tool invocations per agentic response
    max_tool_calls: int = 10
    permission_mode: str = "acceptEdits"
    agentic_enabled: bool = True
    # Optional JSON file the CLI uses to keep sessions between runs
    state_file: str | None = None

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.planning_level not in PLANNING_LEVELS:
            raise ConfigError(
                f"planning_level must be one of {', '.join(PLANNING_LEVELS)}, "
                f"got {self.planning_level!r}"
            )
        if self.max_sessions < 1:
            raise ConfigError("max_sessions must be at least 1")
        if self.max_tool_calls < 0:
            raise ConfigError("max_tool_calls cannot be negative")

    @classmethod
    def from_env(cls) -> LachesisConfig:
        """Load configuration from LACHESIS_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("LACHESIS_")
        }
        if env_vars:
            logger.info(
                "LachesisConfig.from_env: env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(env_vars.items())),
            )
        else:
            logger.debug("LachesisConfig.from_env: no LACHESIS_* env vars set, using defaults")

        config = cls(
            model=os.getenv("LACHESIS_MODEL", cls.model),
            vault_path=os.getenv("LACHESIS_VAULT_PATH", cls.vault_path),
            planning_level=os.getenv(
                "LACHESIS_PLANNING_LEVEL", cls.planning_level
            ),
            max_sessions=_env_int("LACHESIS_MAX_SESSIONS", cls.max_sessions),
            max_tool_calls=_env_int(
                "LACHESIS_MAX_TOOL_CALLS", cls.max_tool_calls
            ),
            permission_mode=os.getenv(
                "LACHESIS_PERMISSION_MODE", cls.permission_mode
            ),
            agentic_enabled=_env_bool("LACHESIS_AGENTIC", cls.agentic_enabled),
            state_file=os.getenv("LACHESIS_STATE_FILE") or None,
            log_level=os.getenv("LACHESIS_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "LachesisConfig.from_env: model=%s vault=%s level=%s log_level=%s",
            config.model, config.vault_path,
            config.planning_level, config.log_level,
        )
        return config

    def ai_config(self, cwd: str | None = None) -> AIConfig:
        return AIConfig(
            model=self.model,
            permission_mode=self.permission_mode,
            max_tool_calls=self.max_tool_calls,
            cwd=cwd,
        )
