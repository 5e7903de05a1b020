"""Request dispatcher — routes JSON-RPC messages and runs tool calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from claude_shell.config.models import ServerConfig
from claude_shell.constants import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    RequestId,
)
from claude_shell.runner.extract import extract_result_text
from claude_shell.runner.helpers import preview
from claude_shell.runner.retry import RetryController
from claude_shell.server.protocol import (
    JsonRpcRequest,
    JsonRpcResponse,
    error_response,
    parse_request,
    result_response,
    text_content,
)
from claude_shell.server.tools import JSON_TOOLS, TOOLS, VALID_TOOL_NAMES
from claude_shell.server.writer import OutputSerializer

logger = logging.getLogger(__name__)

_INITIALIZED_NOTIFICATIONS = ("initialized", "notifications/initialized")


class Dispatcher:
    """Parses input lines and answers them through an :class:`OutputSerializer`.

    Everything except ``tools/call`` is answered synchronously, before
    the next line is looked at.  Each ``tools/call`` becomes its own
    tracked task; :meth:`handle_line` returns as soon as the task is
    created, so any number of calls can run at once and their responses
    go out in completion order.
    """

    def __init__(
        self,
        writer: OutputSerializer,
        retry: RetryController | None = None,
        config: ServerConfig | None = None,
    ) -> None:
        self._writer = writer
        self._config = config or ServerConfig()
        self._retry = retry or RetryController(config=self._config)
        self._pending_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending_tasks(self) -> set[asyncio.Task[None]]:
        """Currently in-flight tool-call tasks."""
        return self._pending_tasks

    # ------------------------------------------------------------------ #
    # Input
    # ------------------------------------------------------------------ #

    def handle_line(self, line: str) -> None:
        """Parse and route one input line. Must run inside the event loop."""
        if not line.strip():
            return

        logger.debug("Received: %s", preview(line))

        parsed = parse_request(line)
        if isinstance(parsed, JsonRpcResponse):
            logger.error("Rejected input line: %s", preview(line))
            self._writer.send(parsed)
            return

        try:
            self._route(parsed)
        except Exception as exc:
            logger.exception("Failed to handle %s (id=%s)", parsed.method, parsed.id)
            self._writer.send(
                error_response(parsed.id, INTERNAL_ERROR, "Internal error", str(exc))
            )

    def reject_line(self) -> None:
        """Answer an input line that could not be read at all."""
        self._writer.send(error_response(None, PARSE_ERROR, "Parse error"))

    def _route(self, request: JsonRpcRequest) -> None:
        method = request.method

        if request.is_notification:
            if method in _INITIALIZED_NOTIFICATIONS:
                logger.info("Received initialized notification")
            else:
                logger.warning("Ignoring notification: %s", method)
            return

        match method:
            case "initialize":
                self._handle_initialize(request.id)
            case "initialized" | "notifications/initialized":
                # Sent with an id by some clients; still needs no answer.
                logger.info("Received initialized notification")
            case "ping":
                self._writer.send(result_response(request.id, {}))
            case "tools/list":
                logger.info("Listing available tools")
                self._writer.send(result_response(request.id, {"tools": TOOLS}))
            case "tools/call":
                self._start_tool_call(request)
            case _:
                logger.error("Unsupported method: %s", method)
                self._writer.send(
                    error_response(
                        request.id, METHOD_NOT_FOUND, f"Method not found: {method}"
                    )
                )

    def _handle_initialize(self, request_id: RequestId) -> None:
        logger.info("Handling initialize request")
        self._writer.send(
            result_response(
                request_id,
                {
                    "protocolVersion": self._config.protocol_version,
                    "capabilities": {"tools": {}},
                    "serverInfo": {
                        "name": self._config.server_name,
                        "version": self._config.server_version,
                    },
                },
            )
        )

    # ------------------------------------------------------------------ #
    # Tool calls
    # ------------------------------------------------------------------ #

    def _start_tool_call(self, request: JsonRpcRequest) -> None:
        """Validate the tool name, then run the call without waiting for it."""
        name = request.params.get("name")
        arguments = request.params.get("arguments")
        if not isinstance(arguments, dict):
            arguments = {}

        logger.info("Tool: %s (id=%s)", name, request.id)

        if not isinstance(name, str) or name not in VALID_TOOL_NAMES:
            logger.error("Unknown tool: %s", name)
            self._writer.send(
                error_response(request.id, METHOD_NOT_FOUND, f"Unknown tool: {name}")
            )
            return

        # Task is tracked to prevent GC.
        task = asyncio.create_task(self._run_tool_call(request.id, name, arguments))
        self._pending_tasks.add(task)
        task.add_done_callback(self._task_done)
        logger.info("Spawned async task for id=%s", request.id)

    async def _run_tool_call(
        self, request_id: RequestId, name: str, arguments: dict[str, Any]
    ) -> None:
        try:
            options = self._config.tool_options(arguments)
            logger.info(
                "[%s] Model: %s, Timeout: %ss, Max retries: %d",
                request_id,
                options.model,
                options.timeout,
                options.max_retries,
            )
            logger.info("[%s] Prompt: %s", request_id, preview(options.prompt, 50))

            if name in JSON_TOOLS:
                result = await self._retry.run_json_with_retry(options.prompt, options)
                if not result.success:
                    logger.error("[%s] JSON generation/validation failed", request_id)
                    response = error_response(
                        request_id, INTERNAL_ERROR, "JSON validation error", result.output
                    )
                else:
                    logger.info("[%s] Success: valid JSON response received", request_id)
                    response = result_response(request_id, text_content(result.output))
            else:
                result = await self._retry.run_with_retry(options.prompt, options)
                if not result.success:
                    logger.error("[%s] AI execution failed", request_id)
                    response = error_response(
                        request_id, INTERNAL_ERROR, "Claude CLI error", result.output
                    )
                else:
                    logger.info("[%s] Success: response received", request_id)
                    response = result_response(
                        request_id, text_content(extract_result_text(result.output))
                    )
        except Exception as exc:
            logger.error("[%s] Unexpected error: %s", request_id, exc)
            response = error_response(request_id, INTERNAL_ERROR, "Internal error", str(exc))

        self._writer.send(response)
        logger.info("[%s] Response queued", request_id)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        """Callback for fire-and-forget tasks — log errors, remove from set."""
        self._pending_tasks.discard(task)
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error("Unhandled error in tool call: %s", exc)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def wait_idle(self) -> None:
        """Wait until every in-flight tool call has finished."""
        while self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    async def cancel_all(self) -> int:
        """Cancel in-flight tool calls. Returns how many were running."""
        remaining = [t for t in self._pending_tasks if not t.done()]
        for task in remaining:
            task.cancel()
        if remaining:
            await asyncio.gather(*remaining, return_exceptions=True)
        return len(remaining)
