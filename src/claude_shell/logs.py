"""Diagnostic logging — always stderr, never the protocol stream."""

from __future__ import annotations

import logging
import sys

_FORMAT = "[%(asctime)s.%(msecs)03d] %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stderr handler to the ``claude_shell`` logger.

    Calling it again only updates the level, so the CLI and tests can
    both call it without stacking handlers.
    """
    root = logging.getLogger("claude_shell")
    if isinstance(level, str):
        level = level.upper()
    root.setLevel(level)

    if not any(getattr(h, "_claude_shell", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
        handler._claude_shell = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    return root
