"""Shared constants and type aliases for the claude-shell runtime."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

#: JSON-RPC 2.0 error codes.
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603

#: Exit code reported when the runner kills a process for running too long.
TIMEOUT_EXIT_CODE = 124

#: Exit codes treated as "the command timed out" by the retry policy.
TIMEOUT_EXIT_CODES = frozenset({124, 137})

#: MCP protocol revision reported by ``initialize``.
PROTOCOL_VERSION = "2024-11-05"

SERVER_NAME = "claude-shell"

#: Correlation id of a JSON-RPC message.
RequestId = int | str | None

#: Injectable sleep used between retry attempts.
SleepFunc = Callable[[float], Awaitable[None]]
