"""Root CLI group and version flag."""

import signal

import click

# Writing a response after the client hung up must not kill the process
# mid-loop; the serializer reports the broken pipe instead.
if hasattr(signal, "SIGPIPE"):
    signal.signal(signal.SIGPIPE, signal.SIG_IGN)

from claude_shell import __version__
from claude_shell.commands.probe import probe
from claude_shell.commands.serve import serve


@click.group()
@click.version_option(version=__version__, prog_name="claude-shell")
def cli() -> None:
    """claude-shell — JSON-RPC stdio gateway for the Claude Code CLI."""


cli.add_command(serve)
cli.add_command(probe)
