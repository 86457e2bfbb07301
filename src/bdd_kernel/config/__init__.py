from .loader import load_runner_config, load_yaml_config
from .models import ContextDecl, ExecutionConfig, LoggingConfig, ResultsConfig, RunnerConfig
from .validator import ConfigError, parse_runner_config

__all__ = [
    "ConfigError",
    "ContextDecl",
    "ExecutionConfig",
    "LoggingConfig",
    "ResultsConfig",
    "RunnerConfig",
    "load_runner_config",
    "load_yaml_config",
    "parse_runner_config",
]
