"""YAML configuration loader.

Loads a single YAML file on top of the LACHESIS_* environment defaults.
Only the ``lachesis`` section is read; other top-level sections are
left for host applications.

Example YAML:
    lachesis:
      model: claude-sonnet-4-5-20250929
      vault_path: ~/Documents/Vault/Projects
      planning_level: heavy
      max_sessions: 20
      max_tool_calls: 10
      agentic_enabled: true
      state_file: .lachesis/sessions.json
      log_level: DEBUG
"""
from __future__ import annotations

import logging
from dataclasses import fields, replace
from pathlib import Path

import yaml

from .config import LachesisConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_PATH_KEYS = {"vault_path", "state_file"}


def load_yaml_config(
    path: str | Path, base: LachesisConfig | None = None
) -> LachesisConfig:
    """Load and parse a YAML config file.

    Values in the file override *base* (default: ``LachesisConfig.from_env()``).
    Unknown keys raise ConfigError so typos do not pass silently.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    section = raw.get("lachesis") or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{path}: 'lachesis' section must be a mapping")

    known = {f.name for f in fields(LachesisConfig)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ConfigError(
            f"{path}: unknown lachesis keys: {', '.join(unknown)}"
        )

    overrides = {}
    for key, value in section.items():
        if key in _PATH_KEYS and value:
            value = str(Path(str(value)).expanduser())
        overrides[key] = value

    config = base if base is not None else LachesisConfig.from_env()
    try:
        config = replace(config, **overrides)
    except TypeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc

    logger.info(
        "Parsed YAML config %s: keys=%s",
        path.name, ", ".join(sorted(overrides)) if overrides else "(none)",
    )
    return config
