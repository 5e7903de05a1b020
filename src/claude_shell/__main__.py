"""Allow ``python -m claude_shell``."""

from claude_shell.cli import cli

if __name__ == "__main__":
    cli()
