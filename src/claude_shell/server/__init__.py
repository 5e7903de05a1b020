"""JSON-RPC server: protocol, tool catalog, dispatcher, output serializer."""

from claude_shell.server.dispatcher import Dispatcher
from claude_shell.server.protocol import (
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    error_response,
    parse_request,
    result_response,
    text_content,
)
from claude_shell.server.stdio import serve
from claude_shell.server.tools import JSON_TOOLS, TEXT_TOOLS, TOOLS, VALID_TOOL_NAMES
from claude_shell.server.writer import OutputSerializer

__all__ = [
    "JSON_TOOLS",
    "TEXT_TOOLS",
    "TOOLS",
    "VALID_TOOL_NAMES",
    "Dispatcher",
    "JsonRpcError",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "OutputSerializer",
    "error_response",
    "parse_request",
    "result_response",
    "text_content",
    "serve",
]
