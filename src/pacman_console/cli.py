"""Pacman Console CLI.

Runs backend operations from a terminal, or serves them over HTTP.

Usage:
    pacman-console operations                         # List operations
    pacman-console query list_installed -p search=vim # One-shot query
    pacman-console stream upgrade -p ignore=linux     # Streaming operation
    pacman-console serve --port 9090                  # HTTP server
    pacman-console health                             # Check HTTP server health
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import sys
from collections import defaultdict

import click
import httpx

from .client import PacmanClient
from .config import ClientConfig
from .errors import ClientError, ErrorKind
from .protocol.events import StreamEvent, render_event
from .protocol.operations import (
    OperationParams,
    describe_operations,
    get_operation,
    values_from_strings,
)
from .streaming import StreamCallbacks

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def _parse_pairs(operation: str, pairs: tuple[str, ...]) -> OperationParams:
    """Turn repeated ``-p key=value`` options into operation parameters."""
    try:
        params_cls = get_operation(operation)
    except KeyError as e:
        raise ClientError(ErrorKind.NOT_FOUND, e.args[0]) from None

    raw: dict[str, list[str]] = defaultdict(list)
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="-p")
        raw[key.replace("-", "_")].append(value)

    return PacmanClient.build_params(operation, values_from_strings(params_cls, raw))


def _fail(error: ClientError) -> None:
    click.echo(json.dumps(error.to_dict(), indent=2), err=True)
    sys.exit(1)


@click.group()
@click.option("--backend", envvar="PACMAN_CONSOLE_BACKEND", help="Path to the backend executable")
@click.option("--timeout", type=float, help="Deadline for one-shot queries, in seconds")
@click.option(
    "--escalation",
    envvar="PACMAN_CONSOLE_ESCALATION",
    help="Privilege escalation prefix (e.g. 'sudo -n' or 'pkexec'); empty to disable",
)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug)")
@click.pass_context
def main(
    ctx: click.Context,
    backend: str | None,
    timeout: float | None,
    escalation: str | None,
    verbose: int,
) -> None:
    """Pacman Console - client for the cockpit-pacman backend."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG

    # Log to stderr so command output on stdout stays clean
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    environ: dict[str, str] = {}
    if backend is not None:
        environ["PACMAN_CONSOLE_BACKEND"] = backend
    if timeout is not None:
        environ["PACMAN_CONSOLE_TIMEOUT"] = str(timeout)
    if escalation is not None:
        environ["PACMAN_CONSOLE_ESCALATION"] = escalation

    try:
        ctx.obj = ClientConfig.from_env({**os.environ, **environ})
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


# =============================================================================
# Operation Commands
# =============================================================================


@main.command("operations")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
def list_operations(output_format: str) -> None:
    """List the operations the backend supports.

    Examples:

        pacman-console operations
        pacman-console operations --format json
    """
    operations = describe_operations()

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(operations, indent=2))
        return

    click.echo(f"{'Operation':<22} {'Command':<22} {'Kind':<10}")
    click.echo("-" * 56)
    for op in operations:
        kind = "stream" if op["streaming"] else "query"
        click.echo(f"{op['operation']:<22} {op['command']:<22} {kind:<10}")


@main.command("query")
@click.argument("operation")
@click.option("--param", "-p", "params", multiple=True, help="Parameter as key=value")
@click.pass_obj
def query(config: ClientConfig, operation: str, params: tuple[str, ...]) -> None:
    """Run a one-shot operation and print its JSON result.

    Examples:

        pacman-console query check_updates
        pacman-console query search -p query=vim -p limit=10
    """
    try:
        parsed = _parse_pairs(operation, params)
        result = asyncio.run(PacmanClient(config).query(parsed))
    except ClientError as e:
        _fail(e)
        return

    click.echo(json.dumps(result, indent=2, ensure_ascii=False))


@main.command("stream")
@click.argument("operation")
@click.option("--param", "-p", "params", multiple=True, help="Parameter as key=value")
@click.option("--events", "show_events", is_flag=True, help="Print raw events as JSON lines")
@click.pass_obj
def stream(
    config: ClientConfig, operation: str, params: tuple[str, ...], show_events: bool
) -> None:
    """Run a streaming operation, printing progress as it arrives.

    Ctrl+C asks the backend to stop.

    Examples:

        pacman-console stream sync_database -p force=true
        pacman-console stream upgrade -p ignore=linux,linux-headers
    """
    outcome: dict[str, str | bool] = {}
    mirror: dict[str, str | None] = {}

    def on_event(event: StreamEvent) -> None:
        click.echo(event.model_dump_json(exclude_none=True))
        mirror["text"] = render_event(event)

    def on_data(text: str) -> None:
        click.echo(text, nl=False)

    def on_raw_line(text: str) -> None:
        # Skip the mirror text of the event just printed
        if text != mirror.pop("text", None):
            click.echo(text, nl=False, err=True)

    def on_complete() -> None:
        outcome["success"] = True

    def on_error(message: str) -> None:
        outcome["success"] = False
        outcome["message"] = message

    callbacks = StreamCallbacks(
        on_event=on_event if show_events else None,
        on_data=on_raw_line if show_events else on_data,
        on_complete=on_complete,
        on_error=on_error,
    )

    async def execute(parsed: OperationParams) -> None:
        handle = PacmanClient(config).stream(parsed, callbacks)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, handle.cancel)
        except (NotImplementedError, RuntimeError):
            pass  # Not in the main thread
        try:
            await handle.wait()
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    try:
        asyncio.run(execute(_parse_pairs(operation, params)))
    except ClientError as e:
        _fail(e)
        return

    if not outcome.get("success"):
        click.echo(f"Error: {outcome.get('message', 'Operation failed')}", err=True)
        sys.exit(1)


# =============================================================================
# Server Commands
# =============================================================================


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=9090, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.pass_obj
def serve(config: ClientConfig, host: str, port: int, reload: bool) -> None:
    """Serve operations over HTTP.

    The server reads its configuration from PACMAN_CONSOLE_* variables.
    """
    import uvicorn

    # The app factory reads the environment, so hand resolved options down
    os.environ["PACMAN_CONSOLE_BACKEND"] = config.backend_path
    os.environ["PACMAN_CONSOLE_TIMEOUT"] = str(config.timeout)
    os.environ["PACMAN_CONSOLE_ESCALATION"] = " ".join(config.escalation_command)
    if config.streaming_timeout is not None:
        os.environ["PACMAN_CONSOLE_STREAMING_TIMEOUT"] = str(config.streaming_timeout)

    click.echo(f"Starting Pacman Console on http://{host}:{port}", err=True)
    click.echo(f"  Backend: {config.backend_path}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "pacman_console.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@main.command("health")
@click.option("--url", default="http://127.0.0.1:9090", help="Server URL")
def health(url: str) -> None:
    """Check a running server's health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

        if response.status_code != 200:
            click.echo(f"Server returned {response.status_code}", err=True)
            sys.exit(1)

        data = response.json()
        click.echo(f"Server is healthy: {data}")
        if not data.get("backend_available"):
            click.echo(f"Backend not executable: {data.get('backend')}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
