"""Shared helper functions for the runner."""

from __future__ import annotations


def format_stderr_preview(stderr_text: str, max_lines: int = 5) -> str:
    """Extract and format the last N non-empty lines from stderr output."""
    lines = [line for line in stderr_text.split("\n") if line.strip()]
    last = lines[-max_lines:] if len(lines) > max_lines else lines
    return "\n  ".join(last)


def preview(text: str, limit: int = 100) -> str:
    """Single-line preview of *text* for log messages."""
    flat = text.replace("\n", " ")
    if len(flat) > limit:
        return flat[:limit] + "..."
    return flat
