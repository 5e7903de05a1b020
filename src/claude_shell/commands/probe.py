"""claude-shell probe — exercise a running server end to end."""

from __future__ import annotations

import asyncio
import shlex
import sys
import time
from typing import Any

import click

from claude_shell.client import RequestTimeoutError, StdioClient
from claude_shell.logs import configure_logging

_RULE = "=" * 50


def _default_server_cmd() -> str:
    return shlex.join([sys.executable, "-m", "claude_shell", "serve"])


@click.command()
@click.option(
    "--server-cmd",
    default=None,
    help="Command that starts the server (default: this claude-shell).",
)
@click.option("--model", default="haiku", show_default=True, help="Model alias.")
@click.option(
    "--timeout",
    type=float,
    default=60.0,
    show_default=True,
    help="Per-call timeout in seconds passed to the tools.",
)
def probe(server_cmd: str | None, model: str, timeout: float) -> None:
    """Run initialize, tools/list, one call and two parallel calls."""
    configure_logging("WARNING")
    command = shlex.split(server_cmd or _default_server_cmd())
    try:
        ok = asyncio.run(_run_probe(command, model, timeout))
    except (OSError, ConnectionError, RequestTimeoutError) as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc
    if not ok:
        raise SystemExit(1)


def _section(title: str) -> None:
    click.echo(f"\n{_RULE}\n{title}\n{_RULE}")


def _first_text(response: dict[str, Any]) -> str:
    result = response.get("result")
    if not isinstance(result, dict):
        return "No content"
    content = result.get("content") or []
    if content and isinstance(content[0], dict):
        return str(content[0].get("text", ""))
    return "No content"


def _report(label: str, response: dict[str, Any]) -> bool:
    if "error" in response:
        click.echo(click.style(f"✗ {label}: {response['error']}", fg="red"))
        return False
    click.echo(click.style(f"✓ {label}: ", fg="green") + _first_text(response)[:200])
    return True


async def _run_probe(command: list[str], model: str, timeout: float) -> bool:
    arguments: dict[str, Any] = {"model": model, "maxTurns": 1, "timeout": timeout}
    request_timeout = timeout * 3 + 30

    async with StdioClient(command, request_timeout=request_timeout) as client:
        _section("Initialize")
        init = await client.request("initialize")
        click.echo(f"Server: {init.get('result', {}).get('serverInfo')}")
        await client.notify("initialized")

        _section("List tools")
        listed = await client.request("tools/list")
        for tool in listed.get("result", {}).get("tools", []):
            click.echo(f"  - {tool['name']}: {tool['description'][:50]}...")

        _section("Call claude_generate")
        single = await client.call_tool(
            "claude_generate",
            {
                **arguments,
                "prompt": 'Say "Hello from MCP!" and nothing else. Do not use any tools.',
            },
        )
        ok = _report("Response", single)

        _section("Parallel requests (2 concurrent)")
        started = time.monotonic()
        first, second = await asyncio.gather(
            client.call_tool(
                "claude_generate",
                {**arguments, "prompt": "What is 2+2? Answer with just the number."},
            ),
            client.call_tool(
                "claude_generate",
                {**arguments, "prompt": "What is 3+3? Answer with just the number."},
            ),
        )
        elapsed = time.monotonic() - started
        click.echo(f"Parallel requests completed in {elapsed:.1f}s")
        ok = _report("Response 1", first) and ok
        ok = _report("Response 2", second) and ok

    return ok
