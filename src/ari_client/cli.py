"""ARI client CLI.

Usage:
    ari-client operations                       # List every operation
    ari-client operations channels -f json      # One group, JSON output
    ari-client call channels list               # Invoke an operation
    ari-client call channels hangup -p channelId=1712345.1 -p reason=busy
    ari-client events my-app                    # Tail the event stream

Connection options fall back to ARI_URL, ARI_USERNAME and ARI_PASSWORD.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from typing import Any, TypeVar

import click

from .client import ARIClient, connect
from .config import DEFAULT_BASE_URL, ClientConfig
from .errors import ARIError, OperationCallError
from .events import WEBSOCKET_MAX_RETRIES, Event
from .resources import ResourceProxy

T = TypeVar("T")

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def truncate(text: str | None, max_len: int = 50) -> str:
    """Truncate text for display."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def to_jsonable(value: Any) -> Any:
    """json.dumps default: proxies as their fields, bytes as text."""
    if isinstance(value, ResourceProxy):
        return value.fields
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def parse_params(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Turn ``name=value`` pairs into call arguments.

    A repeated name becomes a list. ``body`` is parsed as JSON when it is
    valid JSON and sent as-is otherwise.
    """
    params: dict[str, Any] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"expected name=value, got {pair!r}", param_hint="-p")

        parsed: Any = value
        if name == "body":
            try:
                parsed = json.loads(value)
            except ValueError:
                parsed = value

        if name in params:
            existing = params[name]
            params[name] = [*existing, parsed] if isinstance(existing, list) else [existing, parsed]
        else:
            params[name] = parsed
    return params


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning client errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except OperationCallError as e:
        click.echo(f"Error: {e}", err=True)
        if e.text:
            click.echo(e.text, err=True)
        sys.exit(1)
    except ARIError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--url", envvar="ARI_URL", default=DEFAULT_BASE_URL, show_default=True, help="ARI base URL"
)
@click.option("--user", "-u", envvar="ARI_USERNAME", default="", help="ARI username")
@click.option("--password", envvar="ARI_PASSWORD", default="", help="ARI password")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, url: str, user: str, password: str, verbose: bool) -> None:
    """ARI client - call operations and watch events on an Asterisk server."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.obj = ClientConfig.from_env(base_url=url, username=user, password=password)


# =============================================================================
# Operations
# =============================================================================


@main.command("operations")
@click.argument("group", required=False)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_obj
def operations_list(config: ClientConfig, group: str | None, output_format: str) -> None:
    """List the operations the server describes.

    Examples:

        # Everything
        ari-client operations

        # One resource group as JSON
        ari-client operations channels --format json
    """

    async def collect() -> list[dict[str, Any]]:
        client = await connect(config=config)
        try:
            return _describe(client, group)
        finally:
            await client.close()

    rows = _run(collect())

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.echo("No operations found.")
        return

    click.echo(f"{'Operation':<36} {'Method':<7} {'Path':<45} {'Summary'}")
    click.echo("-" * 110)
    for row in rows:
        name = f"{row['group']}.{row['name']}"
        click.echo(
            f"{truncate(name, 36):<36} {row['method']:<7} "
            f"{truncate(row['path'], 45):<45} {truncate(row['summary'], 30)}"
        )
    click.echo(f"\nTotal: {len(rows)} operation(s)")


def _describe(client: ARIClient, group: str | None) -> list[dict[str, Any]]:
    apis = client.apis
    if group is not None and group not in apis:
        known = ", ".join(sorted(apis))
        raise click.UsageError(f"Unknown resource group: {group} (known: {known})")

    rows = []
    for group_name, api in sorted(apis.items()):
        if group is not None and group_name != group:
            continue
        for operation in api.operations.values():
            spec = operation.spec
            rows.append(
                {
                    "group": group_name,
                    "name": spec.name,
                    "method": spec.method,
                    "path": spec.path,
                    "url": f"{operation.base_url}{spec.path}",
                    "summary": spec.summary or "",
                    "parameters": [
                        {"name": p.name, "in": p.location, "required": p.required}
                        for p in spec.parameters
                    ],
                    "responseClass": spec.response_class,
                }
            )
    return rows


@main.command("call")
@click.argument("group")
@click.argument("operation")
@click.option("--param", "-p", "params", multiple=True, help="Argument as name=value (repeatable)")
@click.pass_obj
def call(config: ClientConfig, group: str, operation: str, params: tuple[str, ...]) -> None:
    """Invoke one operation and print its result as JSON.

    Examples:

        ari-client call channels list

        ari-client call channels originate -p endpoint=PJSIP/1000 -p app=demo

        ari-client call bridges addChannel -p bridgeId=b1 -p channel=c1 -p channel=c2
    """
    arguments = parse_params(params)

    async def invoke() -> Any:
        client = await connect(config=config)
        try:
            api = client.apis.get(group)
            if api is None:
                raise click.UsageError(f"Unknown resource group: {group}")
            if operation not in api:
                raise click.UsageError(f"Unknown operation: {group}.{operation}")
            return await api[operation](arguments)
        finally:
            await client.close()

    result = _run(invoke())
    if result is not None:
        click.echo(json.dumps(result, indent=2, default=to_jsonable))


# =============================================================================
# Events
# =============================================================================


@main.command("events")
@click.argument("applications", nargs=-1, required=True)
@click.option(
    "--subscribe-all", is_flag=True, help="Receive all events, not only those of the applications"
)
@click.pass_obj
def events(config: ClientConfig, applications: tuple[str, ...], subscribe_all: bool) -> None:
    """Print events for APPLICATIONS as JSON lines until interrupted.

    Examples:

        ari-client events my-app

        ari-client events app-a app-b --subscribe-all
    """

    async def tail() -> None:
        client = await connect(config=config)
        finished = asyncio.Event()

        def show(event: Event) -> None:
            click.echo(json.dumps(event.data, default=to_jsonable))
            if event.type == WEBSOCKET_MAX_RETRIES:
                finished.set()

        client.on("*", show)
        try:
            await client.start(list(applications), subscribe_all=subscribe_all)
            click.echo(f"Listening for events on {', '.join(applications)}", err=True)
            await finished.wait()
        finally:
            await client.close()

    try:
        _run(tail())
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


if __name__ == "__main__":
    main()
