from __future__ import annotations

from pathlib import Path

import yaml

from bdd_kernel.config.models import RunnerConfig
from bdd_kernel.config.validator import ConfigError, parse_runner_config


def load_yaml_config(path: Path) -> dict[str, object]:
    # Raw YAML mapping; validation happens in parse_runner_config.
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file {path} is not valid YAML: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def load_runner_config(path: Path) -> RunnerConfig:
    return parse_runner_config(load_yaml_config(path))
