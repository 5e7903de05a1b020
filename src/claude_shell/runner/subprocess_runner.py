"""Subprocess runner — one external CLI execution per call."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shlex

from claude_shell.constants import TIMEOUT_EXIT_CODE
from claude_shell.runner.helpers import format_stderr_preview, preview
from claude_shell.runner.outcome import ExecutionOutcome

logger = logging.getLogger(__name__)


class SubprocessRunner:
    """Runs the wrapped CLI as a fresh subprocess per call.

    The prompt is piped to stdin (which is then closed), stdout and
    stderr are collected in full, and the process is killed if it
    outlives *timeout*.  Failures are reported through the returned
    :class:`ExecutionOutcome`, never raised.
    """

    def __init__(self, command: str = "claude") -> None:
        self._command = command

    @property
    def command(self) -> str:
        return self._command

    async def run(
        self, prompt: str, args: list[str], timeout: float
    ) -> ExecutionOutcome:
        """Execute the command with *args*, feeding *prompt* on stdin."""
        logger.info("Executing: %s", shlex.join([self._command, *args]))
        logger.info("Prompt preview: %s", preview(prompt))

        try:
            proc = await asyncio.create_subprocess_exec(
                self._command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Failed to spawn %s: %s", self._command, exc)
            return ExecutionOutcome.failed(f"Spawn error: {exc}")

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(input=prompt.encode()),
                timeout=timeout,
            )
        except TimeoutError:
            _kill(proc)
            await proc.wait()
            logger.warning("Process killed due to timeout (%ss)", timeout)
            return ExecutionOutcome.failed("Command timeout", TIMEOUT_EXIT_CODE)
        except asyncio.CancelledError:
            # Server shutdown: do not leave the child running.
            _kill(proc)
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(proc.wait())
            raise

        # A child killed by a signal reports 128 + N, so an external SIGKILL
        # (137) is retried like a timeout.
        returncode = _normalize_returncode(proc.returncode)
        stdout_text = stdout_bytes.decode(errors="replace")
        stderr_text = stderr_bytes.decode(errors="replace")

        if returncode == 0:
            logger.info("Process exited with code 0 (%d chars)", len(stdout_text))
            return ExecutionOutcome.ok(stdout_text)

        stderr_preview = format_stderr_preview(stderr_text)
        if stderr_preview:
            logger.warning(
                "Process exited with code %d. Stderr:\n  %s", returncode, stderr_preview
            )
        else:
            logger.warning("Process exited with code %d", returncode)

        return ExecutionOutcome.failed(
            stderr_text or stdout_text or f"Exit code: {returncode}",
            returncode,
        )


def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()


def _normalize_returncode(returncode: int | None) -> int:
    """Map "killed by signal N" (negative) to the shell convention 128 + N."""
    if returncode is None:
        return 1
    if returncode < 0:
        return 128 - returncode
    return returncode
