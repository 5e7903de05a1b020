"""Configuration models and parser for claude-shell.yaml."""

from claude_shell.config.models import (
    DEFAULT_DISALLOWED_TOOLS,
    DEFAULT_MODEL_ALIASES,
    RetryPolicy,
    ServerConfig,
    ToolInvocationOptions,
)
from claude_shell.config.parser import ConfigError, load_config

__all__ = [
    "DEFAULT_DISALLOWED_TOOLS",
    "DEFAULT_MODEL_ALIASES",
    "ConfigError",
    "RetryPolicy",
    "ServerConfig",
    "ToolInvocationOptions",
    "load_config",
]
