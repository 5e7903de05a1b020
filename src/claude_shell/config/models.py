"""Pydantic v2 models for server configuration and per-call tool options."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from claude_shell import __version__
from claude_shell.constants import PROTOCOL_VERSION, SERVER_NAME

OutputFormat = Literal["text", "json", "stream-json"]

#: Alias (lower-cased) -> concrete model id.
DEFAULT_MODEL_ALIASES: dict[str, str] = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-5-20251101",
    "opus 4.5": "claude-opus-4-5-20251101",
}

#: Shell subcommands that would block sibling tool calls running in parallel.
#: Each has a single-file alternative (``npx tsc --noEmit <file>``,
#: ``npx vitest run <file>``, ``npx eslint <file>``).
DEFAULT_DISALLOWED_TOOLS: tuple[str, ...] = (
    "Bash(npm run build:*)",
    "Bash(npm run dev:*)",
    "Bash(npm test:*)",
    "Bash(npm run test:run:*)",
    "Bash(npm run lint:*)",
    "Bash(npx tsc -b:*)",
    "Bash(npx eslint .:*)",
)


class RetryPolicy(BaseModel):
    """Backoff durations between attempts, in seconds."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_backoff: float = Field(
        default=5.0,
        ge=0,
        description="Wait after an attempt that timed out (exit code 124/137)",
    )
    failure_backoff: float = Field(
        default=2.0,
        ge=0,
        description="Wait after any other failed attempt or unparseable JSON",
    )


class ServerConfig(BaseModel):
    """Top-level claude-shell configuration."""

    model_config = ConfigDict(extra="forbid")

    command: str = Field(
        default="claude",
        description="Executable of the wrapped CLI",
    )
    default_model: str = Field(
        default="haiku",
        description="Model alias used when a tool call does not name one",
    )
    fallback_model_id: str = Field(
        default=DEFAULT_MODEL_ALIASES["haiku"],
        description="Model id substituted for unknown aliases",
    )
    model_aliases: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_MODEL_ALIASES),
        description="Case-insensitive alias -> model id table",
    )
    default_timeout: float = Field(default=660, gt=0, description="Seconds per attempt")
    default_max_retries: int = Field(default=3, ge=1, description="Attempts per call")
    default_output_format: OutputFormat = "json"
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    disallowed_tools: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DISALLOWED_TOOLS),
        description="Always merged into --disallowedTools",
    )
    default_mcp_config: str = Field(
        default=".mcp.json",
        description="MCP config passed when a call enables MCP without a path",
    )
    protocol_version: str = PROTOCOL_VERSION
    server_name: str = SERVER_NAME
    server_version: str = __version__
    drain_on_eof: bool = Field(
        default=False,
        description="Finish in-flight tool calls before exiting on stdin EOF",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("model_aliases")
    @classmethod
    def _lower_aliases(cls, value: dict[str, str]) -> dict[str, str]:
        return {k.lower(): v for k, v in value.items()}

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    def tool_options(self, arguments: dict[str, Any]) -> ToolInvocationOptions:
        """Build the options for one tool call, applying server defaults."""
        return ToolInvocationOptions.from_arguments(arguments, self)


class ToolInvocationOptions(BaseModel):
    """Flattened, immutable options for a single tool call."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    prompt: str
    model: str = "haiku"
    timeout: float = Field(default=660, ge=0)
    max_retries: int = Field(default=3, ge=0, alias="maxRetries")
    max_turns: int | None = Field(default=None, alias="maxTurns")
    output_format: OutputFormat = Field(default="json", alias="outputFormat")
    json_schema: str | None = Field(default=None, alias="jsonSchema")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    append_system_prompt: str | None = Field(default=None, alias="appendSystemPrompt")
    allowed_tools: tuple[str, ...] = Field(default=(), alias="allowedTools")
    disallowed_tools: tuple[str, ...] = Field(default=(), alias="disallowedTools")
    add_dirs: tuple[str, ...] = Field(default=(), alias="addDirs")
    verbose: bool = False
    enable_mcp: bool = Field(default=False, alias="enableMcp")
    mcp_config_path: str | None = Field(default=None, alias="mcpConfigPath")

    @classmethod
    def from_arguments(
        cls, arguments: dict[str, Any], config: ServerConfig | None = None
    ) -> ToolInvocationOptions:
        """Validate raw ``tools/call`` arguments with defaults applied.

        ``null`` values count as absent, and an empty ``model`` or
        ``outputFormat`` falls back to the default.
        """
        config = config or ServerConfig()
        values = {k: v for k, v in arguments.items() if v is not None}
        if not values.get("model"):
            values["model"] = config.default_model
        if not values.get("outputFormat") and not values.get("output_format"):
            values["outputFormat"] = config.default_output_format
        values.setdefault("timeout", config.default_timeout)
        if "maxRetries" not in values and "max_retries" not in values:
            values["maxRetries"] = config.default_max_retries
        return cls.model_validate(values)
