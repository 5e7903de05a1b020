"""stdio transport — one process, one logical connection."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import BinaryIO, Protocol

from claude_shell.config.models import ServerConfig
from claude_shell.runner.retry import RetryController
from claude_shell.runner.subprocess_runner import SubprocessRunner
from claude_shell.server.dispatcher import Dispatcher
from claude_shell.server.writer import LineSink, OutputSerializer

logger = logging.getLogger(__name__)

#: Maximum bytes per inbound line (prompts can be large).
_MAX_LINE_BYTES = 16 * 1024 * 1024


class LineSource(Protocol):
    async def readline(self) -> bytes: ...


class _ThreadedLineSource:
    """Reads lines in a worker thread, for stdin that is a regular file."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    async def readline(self) -> bytes:
        return await asyncio.to_thread(self._stream.readline)


class _BlockingSink:
    """Writes straight to a file object, for stdout that is not a pipe."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    def write(self, data: bytes) -> None:
        self._stream.write(data)

    async def drain(self) -> None:
        self._stream.flush()


async def open_stdin(stream: BinaryIO | None = None) -> LineSource:
    """Attach an async line reader to *stream* (default: stdin)."""
    stream = stream or sys.stdin.buffer
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=_MAX_LINE_BYTES)
    protocol = asyncio.StreamReaderProtocol(reader)
    try:
        await loop.connect_read_pipe(lambda: protocol, stream)
    except ValueError:
        # Regular files cannot be registered with the event loop.
        return _ThreadedLineSource(stream)
    return reader


async def open_stdout(stream: BinaryIO | None = None) -> LineSink:
    """Attach an async writer to *stream* (default: stdout)."""
    stream = stream or sys.stdout.buffer
    loop = asyncio.get_running_loop()
    try:
        transport, protocol = await loop.connect_write_pipe(
            asyncio.streams.FlowControlMixin, stream
        )
    except ValueError:
        return _BlockingSink(stream)
    return asyncio.StreamWriter(transport, protocol, None, loop)


async def read_lines(source: LineSource, dispatcher: Dispatcher) -> None:
    """Feed every input line to *dispatcher* until EOF."""
    while True:
        try:
            line = await source.readline()
        except ValueError:
            logger.error("Input line exceeded %d bytes, skipping", _MAX_LINE_BYTES)
            dispatcher.reject_line()
            continue

        if not line:
            logger.info("stdin closed, shutting down...")
            return

        try:
            dispatcher.handle_line(line.decode(errors="replace"))
        except Exception:
            logger.exception("Failed to handle input line")


async def serve(
    config: ServerConfig,
    source: LineSource | None = None,
    sink: LineSink | None = None,
    *,
    install_signals: bool = True,
) -> None:
    """Run the server until stdin closes or SIGINT/SIGTERM arrives."""
    logger.info("Starting %s server v%s...", config.server_name, config.server_version)

    source = source or await open_stdin()
    sink = sink or await open_stdout()

    writer = OutputSerializer(sink)
    writer.start()
    retry = RetryController(SubprocessRunner(config.command), config)
    dispatcher = Dispatcher(writer, retry, config)

    stop = asyncio.Event()
    if install_signals:
        _install_signal_handlers(stop)

    read_task = asyncio.create_task(read_lines(source, dispatcher))
    stop_task = asyncio.create_task(stop.wait())
    await asyncio.wait({read_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

    signalled = stop.is_set()
    for task in (read_task, stop_task):
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    if not signalled and config.drain_on_eof:
        logger.info("Waiting for %d in-flight tool call(s)", len(dispatcher.pending_tasks))
        await dispatcher.wait_idle()

    cancelled = await dispatcher.cancel_all()
    if cancelled:
        logger.warning("Abandoned %d in-flight tool call(s)", cancelled)

    # Lines already queued still go out unless we were killed.
    await writer.close(drain=not signalled)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _on_signal(sig_name: str) -> None:
        logger.info("Received %s, shutting down...", sig_name)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _on_signal, sig.name)
