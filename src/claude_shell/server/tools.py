"""Static catalog of the tools exposed through ``tools/list``."""

from __future__ import annotations

from typing import Any

# ------------------------------------------------------------------ #
# Shared argument schemas
# ------------------------------------------------------------------ #

_MODEL_ENUM = ["haiku", "sonnet", "opus", "Haiku", "Sonnet", "Opus", "Opus 4.5"]
_OUTPUT_FORMAT_ENUM = ["text", "json", "stream-json"]

_STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}

COMMON_PROPERTIES: dict[str, Any] = {
    "prompt": {
        "type": "string",
        "description": "Prompt to pass to Claude CLI",
    },
    "model": {
        "type": "string",
        "description": "Model to use (haiku, sonnet, opus). Default: haiku",
        "enum": _MODEL_ENUM,
    },
    "timeout": {
        "type": "number",
        "description": "Timeout in seconds. Default: 660",
    },
    "maxRetries": {
        "type": "number",
        "description": "Maximum retry attempts. Default: 3",
    },
    "maxTurns": {
        "type": "number",
        "description": "Maximum agent turns (iterations). Default: unlimited",
    },
    "outputFormat": {
        "type": "string",
        "description": "Output format: text, json, stream-json. Default: json",
        "enum": _OUTPUT_FORMAT_ENUM,
    },
    "systemPrompt": {
        "type": "string",
        "description": "Replace default system prompt",
    },
    "appendSystemPrompt": {
        "type": "string",
        "description": "Append to default system prompt",
    },
    "allowedTools": {
        **_STRING_LIST,
        "description": "Additional tools to allow without asking",
    },
    "disallowedTools": {
        **_STRING_LIST,
        "description": "Tools to disallow",
    },
    "addDirs": {
        **_STRING_LIST,
        "description": "Additional directories to access",
    },
    "verbose": {
        "type": "boolean",
        "description": "Enable verbose logging. Default: false",
    },
    "enableMcp": {
        "type": "boolean",
        "description": "Enable MCP servers in the subprocess. Default: false",
    },
    "mcpConfigPath": {
        "type": "string",
        "description": "MCP config file for the subprocess. Default: .mcp.json",
    },
}

JSON_TOOL_PROPERTIES: dict[str, Any] = {
    "prompt": COMMON_PROPERTIES["prompt"],
    "model": COMMON_PROPERTIES["model"],
    "maxRetries": {
        "type": "number",
        "description": "Maximum retry attempts for JSON validation. Default: 3",
    },
    "jsonSchema": {
        "type": "string",
        "description": "JSON Schema to validate output against",
    },
    "systemPrompt": COMMON_PROPERTIES["systemPrompt"],
    "appendSystemPrompt": COMMON_PROPERTIES["appendSystemPrompt"],
}


def _tool(name: str, description: str, properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "inputSchema": {
            "type": "object",
            "properties": properties,
            "required": ["prompt"],
        },
    }


# ------------------------------------------------------------------ #
# Catalog
# ------------------------------------------------------------------ #

TOOLS: list[dict[str, Any]] = [
    _tool(
        "claude_generate",
        "Generate code or text via Claude Code CLI with retry and model selection",
        COMMON_PROPERTIES,
    ),
    _tool(
        "claude_edit",
        "Edit files via Claude Code CLI with retry and model selection",
        COMMON_PROPERTIES,
    ),
    _tool(
        "claude_refactor",
        "Refactor code via Claude Code CLI with retry and model selection",
        COMMON_PROPERTIES,
    ),
    _tool(
        "claude_generate_json",
        "Generate JSON response with validation and retry",
        JSON_TOOL_PROPERTIES,
    ),
    _tool(
        "claude_edit_json",
        "Edit with JSON response validation and retry",
        JSON_TOOL_PROPERTIES,
    ),
]

#: Tools answered with the CLI's result text.
TEXT_TOOLS = frozenset({"claude_generate", "claude_edit", "claude_refactor"})

#: Tools whose answer must contain a JSON object.
JSON_TOOLS = frozenset({"claude_generate_json", "claude_edit_json"})

VALID_TOOL_NAMES = frozenset(tool["name"] for tool in TOOLS)
