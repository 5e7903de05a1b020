"""Claude CLI execution: argument building, subprocess runner, retry policy."""

from claude_shell.runner.args import build_claude_args, map_model_name
from claude_shell.runner.extract import (
    ParsedJson,
    extract_json_content,
    extract_result_text,
    parse_json,
)
from claude_shell.runner.outcome import ExecutionOutcome
from claude_shell.runner.retry import RetryController
from claude_shell.runner.subprocess_runner import SubprocessRunner

__all__ = [
    "ExecutionOutcome",
    "ParsedJson",
    "RetryController",
    "SubprocessRunner",
    "build_claude_args",
    "extract_json_content",
    "extract_result_text",
    "map_model_name",
    "parse_json",
]
