#!/usr/bin/env python3
"""Command line interface for mcphub.

``mcphub serve`` runs the HTTP API. The ``servers`` and ``call`` commands
operate on one user's configuration directly, without a running server.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, NoReturn, TypeVar

import click
from aiohttp import web
from dotenv import load_dotenv
from pydantic import ValidationError

from mcphub.api import create_app
from mcphub.cli.log_utils import get_logger
from mcphub.config.schema import StdioServerConfig
from mcphub.config.settings import HubSettings
from mcphub.config.store import FileConfigStore
from mcphub.constants import MCP_ERROR_DUPLICATE_SERVER
from mcphub.exceptions import MCPError, MCPValidationError
from mcphub.manager import ConnectionManager
from mcphub.records import ConnectionRecord
from mcphub.startup import create_manager, create_registry, initialize_for_user

T = TypeVar("T")


@dataclass
class CliContext:
    settings: HubSettings
    user_id: str
    logger: logging.Logger


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _run_with_manager(
    ctx: CliContext,
    func: Callable[[ConnectionManager], Awaitable[T]],
) -> T:
    """Run *func* against a fresh manager for the selected user, then close it."""

    async def runner() -> T:
        store = FileConfigStore(ctx.settings.config_dir)
        manager = create_manager(ctx.settings, ctx.user_id, store)
        try:
            return await func(manager)
        finally:
            await manager.aclose()

    try:
        return asyncio.run(runner())
    except MCPError as exc:
        _fail(str(exc))


async def _initialize_quietly(manager: ConnectionManager, logger: logging.Logger) -> None:
    """Initialize, tolerating servers that fail to connect."""
    try:
        await manager.initialize()
    except MCPError as exc:
        if not manager.get_servers():
            raise
        logger.warning("Some MCP servers failed to connect: %s", exc)


def _echo_record(record: ConnectionRecord) -> None:
    state = "disabled" if record.disabled else record.status.value
    line = f"{record.name}: {state}"
    if record.tools:
        line += f" ({len(record.tools)} tools)"
    if record.error:
        line += f" - {record.error}"
    click.echo(line)


def _parse_env(values: tuple[str, ...]) -> dict[str, str]:
    env = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--env")
        env[key] = value
    return env


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Settings file (TOML or YAML)",
)
@click.option(
    "--user",
    "-u",
    "user_id",
    envvar="MCPHUB_USER",
    default="default",
    show_default=True,
    help="User whose server configuration to use",
)
@click.option(
    "--log-level",
    "-l",
    default="WARNING",
    show_default=True,
    help="Set logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, user_id: str, log_level: str) -> None:
    """Manage MCP server connections per user."""
    # Load environment variables from .env if present
    load_dotenv()
    logger = get_logger(log_level)
    try:
        settings = HubSettings.load(config_path)
    except MCPError as exc:
        _fail(str(exc))
    ctx.obj = CliContext(settings=settings, user_id=user_id, logger=logger)


@main.command()
@click.option("--host", help="Interface to bind, overrides settings")
@click.option("--port", type=int, help="Port to bind, overrides settings")
@click.option(
    "--init-user",
    "init_users",
    multiple=True,
    help="Initialize this user's connections at startup (repeatable)",
)
@click.pass_obj
def serve(ctx: CliContext, host: str | None, port: int | None, init_users: tuple[str, ...]) -> None:
    """Run the HTTP API."""
    registry = create_registry(ctx.settings)
    app = create_app(registry)

    if init_users:

        async def initialize_users(app: web.Application) -> None:
            for user_id in init_users:
                try:
                    await initialize_for_user(registry, user_id)
                except MCPError as exc:
                    ctx.logger.error("Failed to initialize MCP client for user %s: %s", user_id, exc)

        app.on_startup.append(initialize_users)

    host = host or ctx.settings.host
    port = port or ctx.settings.port
    ctx.logger.info("Serving MCP API on http://%s:%s", host, port)
    web.run_app(app, host=host, port=port, print=None)


@main.group()
def servers() -> None:
    """Inspect and edit the configured servers."""


@servers.command("list")
@click.option("--connect", is_flag=True, help="Connect to every server and report live status")
@click.option("--json", "json_output", is_flag=True, help="Output records as JSON")
@click.pass_obj
def list_servers(ctx: CliContext, connect: bool, json_output: bool) -> None:
    """List configured servers."""

    async def run(manager: ConnectionManager) -> list[dict[str, Any]]:
        if connect:
            await _initialize_quietly(manager, ctx.logger)
            return [record.to_dict() for record in manager.get_servers()]
        config = await manager.store.read(manager.user_id)
        return [
            {"name": name, **server.to_persisted()} for name, server in sorted(config.mcp_servers.items())
        ]

    rows = _run_with_manager(ctx, run)
    if json_output:
        click.echo(json.dumps(rows, indent=2, ensure_ascii=False))
        return
    if not rows:
        click.echo("No MCP servers configured")
        return
    for row in rows:
        if connect:
            state = "disabled" if row["disabled"] else row["status"]
            line = f"{row['name']}: {state} ({len(row['tools'])} tools)"
            if row["error"]:
                line += f" - {row['error']}"
        else:
            target = row.get("url") or " ".join([row.get("command", ""), *row.get("args", [])])
            line = f"{row['name']} [{row['transportType']}] {target}"
            if row["disabled"]:
                line += " (disabled)"
        click.echo(line)


@servers.command("add-remote")
@click.argument("name")
@click.argument("url")
@click.pass_obj
def add_remote(ctx: CliContext, name: str, url: str) -> None:
    """Add an SSE server NAME at URL and connect to it."""

    async def run(manager: ConnectionManager) -> ConnectionRecord | None:
        await manager.add_remote_server(name, url)
        return manager.get_server(name.strip())

    record = _run_with_manager(ctx, run)
    if record is not None:
        _echo_record(record)


@servers.command("add-stdio")
@click.argument("name")
@click.argument("command")
@click.argument("args", nargs=-1)
@click.option("--env", "-e", "env", multiple=True, help="Environment variable KEY=VALUE (repeatable)")
@click.option("--timeout", type=float, help="Tool call timeout in seconds")
@click.option("--disabled", is_flag=True, help="Store the server without connecting")
@click.pass_obj
def add_stdio(
    ctx: CliContext,
    name: str,
    command: str,
    args: tuple[str, ...],
    env: tuple[str, ...],
    timeout: float | None,
    disabled: bool,
) -> None:
    """Add a subprocess server NAME launched with COMMAND [ARGS]..."""
    fields: dict[str, Any] = {"command": command, "args": list(args), "env": _parse_env(env), "disabled": disabled}
    if timeout is not None:
        fields["timeout"] = timeout

    async def run(manager: ConnectionManager) -> ConnectionRecord | None:
        try:
            server = StdioServerConfig.model_validate(fields)
        except ValidationError as exc:
            raise MCPValidationError(f"Invalid server configuration: {exc}") from exc
        config = await manager.store.read(manager.user_id)
        if name in config.mcp_servers:
            raise MCPValidationError(MCP_ERROR_DUPLICATE_SERVER.format(server=name))
        await manager.store.write(manager.user_id, config.with_servers({**config.mcp_servers, name: server}))
        await manager.add_stdio_server()
        return manager.get_server(name)

    record = _run_with_manager(ctx, run)
    if record is not None:
        _echo_record(record)


@servers.command()
@click.argument("name")
@click.option("--disable/--enable", default=True, help="Disable (default) or enable NAME")
@click.pass_obj
def toggle(ctx: CliContext, name: str, disable: bool) -> None:
    """Disable or enable the server NAME."""

    async def run(manager: ConnectionManager) -> ConnectionRecord | None:
        await manager.toggle_server_disabled(name, disable)
        return manager.get_server(name)

    record = _run_with_manager(ctx, run)
    if record is not None:
        _echo_record(record)


@servers.command()
@click.argument("name")
@click.pass_obj
def restart(ctx: CliContext, name: str) -> None:
    """Reconnect the server NAME with its stored configuration."""

    async def run(manager: ConnectionManager) -> ConnectionRecord | None:
        await _initialize_quietly(manager, ctx.logger)
        await manager.restart_connection(name)
        return manager.get_server(name)

    record = _run_with_manager(ctx, run)
    if record is not None:
        _echo_record(record)


@servers.command()
@click.argument("name")
@click.pass_obj
def delete(ctx: CliContext, name: str) -> None:
    """Remove the server NAME from the configuration."""
    _run_with_manager(ctx, lambda manager: manager.delete_server(name))
    click.echo(f"Deleted {name}")


@main.command()
@click.argument("server")
@click.argument("tool")
@click.option("--args", "-a", "arguments", default="{}", help="Tool arguments as a JSON object")
@click.pass_obj
def call(ctx: CliContext, server: str, tool: str, arguments: str) -> None:
    """Call TOOL on SERVER and print the result as JSON."""
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"Invalid JSON: {exc}", param_hint="--args") from exc
    if not isinstance(parsed, dict):
        raise click.BadParameter("Tool arguments must be a JSON object", param_hint="--args")

    async def run(manager: ConnectionManager) -> dict[str, Any]:
        await _initialize_quietly(manager, ctx.logger)
        result = await manager.call_tool(server, tool, parsed)
        return result.model_dump(mode="json", by_alias=True, exclude_none=True)

    result = _run_with_manager(ctx, run)
    click.echo(json.dumps(result, indent=2, ensure_ascii=False))
    if result.get("isError"):
        sys.exit(1)


if __name__ == "__main__":
    main()
