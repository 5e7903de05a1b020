"""Async stdio client for a claude-shell server subprocess."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any

from claude_shell.constants import RequestId

logger = logging.getLogger(__name__)

#: Seconds to wait for the server to exit after stdin is closed.
_SHUTDOWN_WAIT = 5.0

#: Seconds to wait after SIGTERM before SIGKILL.
_SIGTERM_WAIT = 3.0

#: Maximum bytes per response line.
_MAX_LINE_BYTES = 16 * 1024 * 1024


class RequestTimeoutError(Exception):
    """Raised when no response arrives for a request in time."""


class StdioClient:
    """Talks JSON-RPC to a server launched as a child process.

    Responses are matched to requests through a pending-request table:
    one future per outstanding id, created on send and removed when the
    matching response arrives or the request times out.  Responses may
    arrive in any order.
    """

    def __init__(self, command: list[str], request_timeout: float = 700.0) -> None:
        self.command = command
        self.request_timeout = request_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._read_task: asyncio.Task[None] | None = None
        self._pending: dict[RequestId, asyncio.Future[dict[str, Any]]] = {}
        self._request_id = 0

    @property
    def pending_ids(self) -> set[RequestId]:
        return set(self._pending)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Launch the server subprocess and begin reading responses."""
        if self._process is not None and self._process.returncode is None:
            return

        logger.info("Starting server: %s", " ".join(self.command))
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            limit=_MAX_LINE_BYTES,
        )
        self._read_task = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """Graceful shutdown: close stdin -> wait -> SIGTERM -> SIGKILL."""
        proc = self._process
        if proc is None:
            return

        if proc.stdin is not None and not proc.stdin.is_closing():
            proc.stdin.close()

        try:
            await asyncio.wait_for(proc.wait(), timeout=_SHUTDOWN_WAIT)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=_SIGTERM_WAIT)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task

        self._process = None

    async def __aenter__(self) -> StdioClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def next_id(self) -> int:
        """Generate the next request ID."""
        self._request_id += 1
        return self._request_id

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        request_id: RequestId = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Send a request and wait for its response message.

        Raises ``RuntimeError`` if *request_id* is already pending and
        :class:`RequestTimeoutError` if no response arrives in time.
        """
        if request_id is None:
            request_id = self.next_id()
        if request_id in self._pending:
            msg = f"Request id {request_id!r} is already pending"
            raise RuntimeError(msg)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        self._pending[request_id] = future
        try:
            await self._write(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "method": method,
                    "params": params or {},
                }
            )
            return await asyncio.wait_for(future, timeout or self.request_timeout)
        except TimeoutError as exc:
            msg = f"Request {request_id!r} ({method}) timed out"
            raise RequestTimeoutError(msg) from exc
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification (no id, no response)."""
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params:
            message["params"] = params
        await self._write(message)

    async def call_tool(
        self, name: str, arguments: dict[str, Any], *, timeout: float | None = None
    ) -> dict[str, Any]:
        return await self.request(
            "tools/call", {"name": name, "arguments": arguments}, timeout=timeout
        )

    async def _write(self, message: dict[str, Any]) -> None:
        proc = self._process
        if proc is None or proc.stdin is None:
            msg = "Client not running. Call start() first."
            raise RuntimeError(msg)
        proc.stdin.write((json.dumps(message) + "\n").encode())
        await proc.stdin.drain()

    # ------------------------------------------------------------------ #
    # Background read loop
    # ------------------------------------------------------------------ #

    async def _read_loop(self) -> None:
        """Read response lines and resolve the matching pending futures."""
        proc = self._process
        if proc is None or proc.stdout is None:
            return

        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break

                line_str = line.decode(errors="replace").strip()
                if not line_str:
                    continue

                try:
                    message = json.loads(line_str)
                except json.JSONDecodeError:
                    logger.warning("Non-JSON output from server: %s", line_str[:200])
                    continue

                self._dispatch_response(message)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Read loop error: %s", exc)

        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(
                    ConnectionError(
                        f"Server exited before answering request {request_id!r}"
                    )
                )

    def _dispatch_response(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning("Unexpected message from server: %r", message)
            return

        request_id = message.get("id")
        future = self._pending.pop(request_id, None)
        if future is None:
            logger.warning("Response for unknown request id %r", request_id)
            return
        if not future.done():
            future.set_result(message)
