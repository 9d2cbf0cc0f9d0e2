"""YAML configuration for the dagent CLI."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "copy_config_template",
    "load_config",
    "merge_config",
    "write_config",
]

DEFAULT_CONFIG_NAME = "dagent.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "models": {
        "default": "gpt-4.1",
        "base_url": "",
        "timeout": 120,
    },
    "runtime": {
        "auto_approve": False,
        "no_human": False,
        "plan_reminder": "",
        "auto_message": "",
        "augmentation": "",
        "strict_dependencies": False,
        "agents_guidance": True,
        "guidance": [],
        "approved_commands": [],
        "max_turns": None,
    },
    "paths": {
        "logs": "",
    },
}


class ConfigError(ValueError):
    """Raised when a configuration file cannot be used."""


def copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def merge_config(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into ``base`` in place and return it."""
    for key, value in override.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merge_config(current, value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def load_config(config_path: Path, *, required: bool = False) -> Dict[str, Any]:
    """Load YAML configuration from disk merged over the defaults.

    A missing file yields the defaults unless ``required`` is set.
    """
    config = copy_config_template()
    if not config_path.exists():
        if required:
            raise ConfigError(f"Config file not found: {config_path}")
        return config

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error
    except OSError as error:
        raise ConfigError(f"Failed to read config: {error}") from error

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a mapping at the top level.")

    return merge_config(config, data)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)
