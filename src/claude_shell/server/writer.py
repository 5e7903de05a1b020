"""Output serializer — the only writer of the protocol stream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Protocol

from claude_shell.server.protocol import JsonRpcResponse

logger = logging.getLogger(__name__)


class LineSink(Protocol):
    """Subset of ``asyncio.StreamWriter`` the serializer needs."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


class OutputSerializer:
    """Writes responses as whole lines, one at a time, in enqueue order.

    Producers call :meth:`send`, which never blocks.  A single writer
    task pops lines off a FIFO queue and awaits each write before
    starting the next, so concurrent tool calls cannot interleave bytes.
    """

    def __init__(self, sink: LineSink) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._broken = False

    def start(self) -> None:
        """Start the writer task (idempotent)."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._write_loop())

    def send(self, response: JsonRpcResponse) -> None:
        """Queue *response* for writing."""
        self._queue.put_nowait(response.to_json())

    @property
    def pending(self) -> int:
        """Lines queued but not yet written."""
        return self._queue.qsize()

    async def drain(self) -> None:
        """Wait until every queued line has been written."""
        await self._queue.join()

    async def close(self, *, drain: bool = True) -> None:
        """Stop the writer task, optionally flushing queued lines first."""
        if drain and self._task is not None and not self._task.done():
            await self.drain()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None

    async def _write_loop(self) -> None:
        while True:
            line = await self._queue.get()
            try:
                if not self._broken:
                    self._sink.write(line.encode() + b"\n")
                    await self._sink.drain()
            except (BrokenPipeError, ConnectionResetError) as exc:
                # Reader went away; keep consuming so drain() still returns.
                self._broken = True
                logger.error("Output stream closed: %s", exc)
            except Exception:
                logger.exception("Failed to write response line, dropping it")
            finally:
                self._queue.task_done()
