"""Retry controller — bounded attempts with differentiated backoff."""

from __future__ import annotations

import asyncio
import json
import logging

from claude_shell.config.models import ServerConfig, ToolInvocationOptions
from claude_shell.constants import TIMEOUT_EXIT_CODES, SleepFunc
from claude_shell.runner.args import build_claude_args
from claude_shell.runner.extract import extract_json_content, extract_result_text
from claude_shell.runner.helpers import preview
from claude_shell.runner.outcome import ExecutionOutcome
from claude_shell.runner.subprocess_runner import SubprocessRunner

logger = logging.getLogger(__name__)


class RetryController:
    """Wraps a :class:`SubprocessRunner` in the retry policy.

    Backoff durations come from ``config.retry``; *sleep* is injectable
    so tests can observe the waits without spending them.
    """

    def __init__(
        self,
        runner: SubprocessRunner | None = None,
        config: ServerConfig | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._config = config or ServerConfig()
        self._runner = runner or SubprocessRunner(self._config.command)
        self._sleep = sleep

    async def run_with_retry(
        self, prompt: str, options: ToolInvocationOptions
    ) -> ExecutionOutcome:
        """Run the CLI until it succeeds or *options.max_retries* is spent.

        A non-timeout failure on the last attempt is returned as-is.
        Running out of attempts through timeouts yields a synthesized
        "Max retries reached" outcome instead.
        """
        args = build_claude_args(options, self._config)
        policy = self._config.retry
        max_retries = options.max_retries

        for attempt in range(1, max_retries + 1):
            logger.info("Attempt %d/%d", attempt, max_retries)
            result = await self._runner.run(prompt, args, options.timeout)

            if result.success:
                logger.info("Success on attempt %d", attempt)
                return result

            if result.exit_code in TIMEOUT_EXIT_CODES:
                logger.warning("Command timeout on attempt %d", attempt)
                if attempt < max_retries:
                    logger.info("Waiting %ss before retry...", policy.timeout_backoff)
                    await self._sleep(policy.timeout_backoff)
                continue

            logger.error(
                "Command failed with exit code %d on attempt %d",
                result.exit_code,
                attempt,
            )
            logger.error("Error output: %s", preview(result.output, 200))
            if attempt >= max_retries:
                return result
            logger.info("Waiting %ss before retry...", policy.failure_backoff)
            await self._sleep(policy.failure_backoff)

        logger.error("Max retries (%d) reached", max_retries)
        return ExecutionOutcome.failed(
            f"Max retries reached after {max_retries} attempts"
        )

    async def run_json_with_retry(
        self, prompt: str, options: ToolInvocationOptions
    ) -> ExecutionOutcome:
        """Run the CLI in JSON mode until its answer contains a JSON object.

        Each attempt is a single-shot :meth:`run_with_retry`.  On success
        the outcome's output is the extracted JSON object text.
        """
        single_shot = options.model_copy(
            update={"max_retries": 1, "output_format": "json"}
        )
        policy = self._config.retry
        max_retries = options.max_retries
        errors: list[str] = []

        for attempt in range(1, max_retries + 1):
            logger.info("JSON attempt %d/%d", attempt, max_retries)
            result = await self.run_with_retry(prompt, single_shot)

            if not result.success:
                error_msg = f"AI execution failed: {result.output}"
                logger.error(error_msg)
                errors.append(f"[{attempt}] {error_msg}")
            else:
                result_text = extract_result_text(result.output)
                json_content = extract_json_content(result_text)
                if json_content is None:
                    json_content = extract_json_content(result.output)

                if json_content is not None:
                    logger.info("JSON validation successful")
                    return ExecutionOutcome.ok(json_content)

                logger.error("JSON parsing failed")
                errors.append(f"[{attempt}] JSON parsing failed")

            if attempt < max_retries:
                logger.info("Waiting %ss before retry...", policy.failure_backoff)
                await self._sleep(policy.failure_backoff)

        logger.error("Max JSON retries (%d) reached", max_retries)
        return ExecutionOutcome.failed(
            json.dumps(
                {
                    "error": "Max retries reached",
                    "attempts": max_retries,
                    "errors": "\n".join(errors),
                }
            )
        )
