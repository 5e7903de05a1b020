"""claude-shell — JSON-RPC stdio gateway for the Claude Code CLI."""

__version__ = "2.0.0"
