"""Model-alias mapping and Claude CLI flag construction."""

from __future__ import annotations

import logging

from claude_shell.config.models import ServerConfig, ToolInvocationOptions

logger = logging.getLogger(__name__)


def map_model_name(model: str, config: ServerConfig | None = None) -> str:
    """Resolve a model alias (case-insensitive) to a concrete model id.

    Unknown aliases log a warning and fall back to the configured
    default id instead of failing the call.
    """
    config = config or ServerConfig()
    mapped = config.model_aliases.get(model.strip().lower())
    if mapped is None:
        logger.warning(
            "Unknown model '%s', using %s as default", model, config.fallback_model_id
        )
        return config.fallback_model_id
    return mapped


def build_claude_args(
    options: ToolInvocationOptions, config: ServerConfig | None = None
) -> list[str]:
    """Build the argument list (without the executable) for one call."""
    config = config or ServerConfig()
    args = [
        "--model",
        map_model_name(options.model, config),
        "--dangerously-skip-permissions",
        "-p",
        "--output-format",
        options.output_format,
    ]

    if options.max_turns is not None:
        args.extend(["--max-turns", str(options.max_turns)])

    if options.json_schema:
        args.extend(["--json-schema", options.json_schema])

    if options.system_prompt:
        args.extend(["--system-prompt", options.system_prompt])

    if options.append_system_prompt:
        args.extend(["--append-system-prompt", options.append_system_prompt])

    for tool in options.allowed_tools:
        args.extend(["--allowedTools", tool])

    # Defaults first, caller additions after, duplicates dropped.
    disallowed = dict.fromkeys([*config.disallowed_tools, *options.disallowed_tools])
    for tool in disallowed:
        args.extend(["--disallowedTools", tool])

    for directory in options.add_dirs:
        args.extend(["--add-dir", directory])

    if options.enable_mcp:
        args.extend(["--mcp-config", options.mcp_config_path or config.default_mcp_config])

    if options.verbose:
        args.append("--verbose")

    return args
