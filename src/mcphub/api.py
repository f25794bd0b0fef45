"""HTTP API over the per-user connection managers.

Every ``/api/mcp`` route identifies the user through the ``x-user-id``
header. Responses are JSON: ``{"error": msg}`` on failure, otherwise
``{"success": true}``, ``{"servers": [...]}`` or ``{"result": {...}}``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from mcphub.exceptions import MCPError, MCPValidationError
from mcphub.manager import ConnectionManager
from mcphub.registry import ManagerRegistry

logger = logging.getLogger(__name__)

REGISTRY_KEY = web.AppKey("registry", ManagerRegistry)
USER_HEADER = "x-user-id"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class _BadRequest(Exception):
    pass


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _success() -> web.Response:
    return web.json_response({"success": True})


async def _read_json(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise _BadRequest(f"Invalid JSON body: {exc}") from exc
    if not isinstance(body, dict):
        raise _BadRequest("Request body must be a JSON object")
    return body


def _require_str(body: dict[str, Any], *keys: str, message: str) -> tuple[str, ...]:
    values = tuple(body.get(key) for key in keys)
    if not all(isinstance(value, str) and value for value in values):
        raise _BadRequest(message)
    return values


def _user_route(action: str) -> Callable[[Callable[..., Awaitable[web.Response]]], Handler]:
    """Resolve the caller's manager and map errors to status codes.

    The wrapped handler receives ``(request, manager)``. *action* is used in
    the log line and in the fallback error message.
    """

    def decorator(func: Callable[..., Awaitable[web.Response]]) -> Handler:
        async def handler(request: web.Request) -> web.StreamResponse:
            user_id = request.headers.get(USER_HEADER)
            if not user_id:
                return _error("User ID required", 401)
            try:
                manager = await request.app[REGISTRY_KEY].get(user_id)
                return await func(request, manager)
            except _BadRequest as exc:
                return _error(str(exc), 400)
            except MCPValidationError as exc:
                logger.warning("Rejected request to %s for user %s: %s", action, user_id, exc)
                return _error(str(exc), 400)
            except MCPError as exc:
                logger.error("Error trying to %s for user %s: %s", action, user_id, exc)
                return _error(str(exc) or f"Failed to {action}", 500)
            except Exception as exc:
                logger.exception("Unexpected error trying to %s for user %s", action, user_id)
                return _error(str(exc) or f"Failed to {action}", 500)

        handler.__name__ = func.__name__
        handler.__doc__ = func.__doc__
        return handler

    return decorator


async def health_handler(request: web.Request) -> web.Response:
    """GET /health"""
    registry = request.app[REGISTRY_KEY]
    return web.json_response({"status": "ok", "activeUsers": len(registry)})


@_user_route("get servers")
async def list_servers_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """GET /api/mcp/servers"""
    return web.json_response({"servers": [record.to_dict() for record in manager.get_servers()]})


@_user_route("initialize")
async def initialize_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """POST /api/mcp/initialize"""
    await manager.initialize()
    return _success()


@_user_route("add server")
async def add_server_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """POST /api/mcp/servers/add - body: serverName, serverUrl"""
    body = await _read_json(request)
    name, url = _require_str(body, "serverName", "serverUrl", message="Server name and URL are required")
    await manager.add_remote_server(name, url)
    return _success()


@_user_route("add server")
async def add_stdio_server_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """POST /api/mcp/servers/add-stdio"""
    await manager.add_stdio_server()
    return _success()


@_user_route("toggle server")
async def toggle_server_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """POST /api/mcp/servers/toggle - body: serverName, disabled"""
    body = await _read_json(request)
    name = body.get("serverName")
    disabled = body.get("disabled")
    if not isinstance(name, str) or not name or not isinstance(disabled, bool):
        raise _BadRequest("Server name and disabled state are required")
    await manager.toggle_server_disabled(name, disabled)
    return _success()


@_user_route("restart server")
async def restart_server_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """POST /api/mcp/servers/restart - body: serverName"""
    body = await _read_json(request)
    (name,) = _require_str(body, "serverName", message="Server name is required")
    await manager.restart_connection(name)
    return _success()


@_user_route("delete server")
async def delete_server_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """DELETE /api/mcp/servers/delete - body: serverName"""
    body = await _read_json(request)
    (name,) = _require_str(body, "serverName", message="Server name is required")
    await manager.delete_server(name)
    return _success()


@_user_route("call tool")
async def call_tool_handler(request: web.Request, manager: ConnectionManager) -> web.Response:
    """POST /api/mcp/tools/call - body: serverName, toolName, toolArguments"""
    body = await _read_json(request)
    server_name, tool_name = _require_str(
        body, "serverName", "toolName", message="Server name and tool name are required"
    )
    arguments = body.get("toolArguments") or {}
    if not isinstance(arguments, dict):
        raise _BadRequest("Tool arguments must be a JSON object")
    result = await manager.call_tool(server_name, tool_name, arguments)
    return web.json_response({"result": result.model_dump(mode="json", by_alias=True, exclude_none=True)})


async def _close_managers(app: web.Application) -> None:
    logger.info("Shutting down MCP clients")
    await app[REGISTRY_KEY].disconnect_all()


def create_app(registry: ManagerRegistry) -> web.Application:
    """Build the aiohttp application serving *registry*."""
    app = web.Application()
    app[REGISTRY_KEY] = registry
    app.router.add_get("/health", health_handler)
    app.router.add_get("/api/mcp/servers", list_servers_handler)
    app.router.add_post("/api/mcp/initialize", initialize_handler)
    app.router.add_post("/api/mcp/servers/add", add_server_handler)
    app.router.add_post("/api/mcp/servers/add-stdio", add_stdio_server_handler)
    app.router.add_post("/api/mcp/servers/toggle", toggle_server_handler)
    app.router.add_post("/api/mcp/servers/restart", restart_server_handler)
    app.router.add_delete("/api/mcp/servers/delete", delete_server_handler)
    app.router.add_post("/api/mcp/tools/call", call_tool_handler)
    app.on_cleanup.append(_close_managers)
    return app
