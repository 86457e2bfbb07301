from __future__ import annotations

from pydantic import ValidationError

from bdd_kernel.config.models import RunnerConfig
from bdd_kernel.kernel.errors import ConfigurationError


class ConfigError(ConfigurationError, ValueError):
    # Raised for invalid runner config (fail fast, before any scenario runs).
    pass


def parse_runner_config(raw: object) -> RunnerConfig:
    if isinstance(raw, RunnerConfig):
        return raw
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    try:
        return RunnerConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(_format_validation_error(exc)) from exc


def _format_validation_error(exc: ValidationError) -> str:
    # One line per problem: "execution.workers: Input should be greater than or equal to 1".
    lines = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        lines.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid runner config:\n" + "\n".join(lines)
