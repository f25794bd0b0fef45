"""Tests for the HTTP API."""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from mcphub.api import create_app
from mcphub.config.store import InMemoryConfigStore
from mcphub.manager import ConnectionManager
from mcphub.registry import ManagerRegistry
from tests.conftest import FakeTransportFactory, echo_tool, seed

HEADERS = {"x-user-id": "user-1"}


@pytest.fixture
def store():
    return InMemoryConfigStore()


@pytest.fixture
def transports():
    factory = FakeTransportFactory()
    factory.tools["remote"] = [echo_tool()]
    return factory


@pytest.fixture
def registry(store, transports):
    return ManagerRegistry(
        store,
        manager_factory=lambda user_id, store: ConnectionManager(user_id, store, transport_factory=transports),
    )


@pytest.fixture
def client_factory(registry):
    def make():
        return TestClient(TestServer(create_app(registry)))

    return make


@pytest.mark.asyncio
async def test_health(client_factory):
    async with client_factory() as client:
        resp = await client.get("/health")
        assert resp.status == 200
        assert (await resp.json())["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_user_id_is_unauthorized(client_factory):
    async with client_factory() as client:
        resp = await client.get("/api/mcp/servers")
        assert resp.status == 401
        assert await resp.json() == {"error": "User ID required"}


@pytest.mark.asyncio
async def test_add_list_call_delete(client_factory, store, transports):
    async with client_factory() as client:
        resp = await client.post(
            "/api/mcp/servers/add",
            json={"serverName": "remote", "serverUrl": "https://example.com/sse"},
            headers=HEADERS,
        )
        assert resp.status == 200
        assert await resp.json() == {"success": True}

        resp = await client.get("/api/mcp/servers", headers=HEADERS)
        [server] = (await resp.json())["servers"]
        assert server["name"] == "remote"
        assert server["status"] == "connected"
        assert server["tools"][0]["name"] == "echo"
        assert server["resourceTemplates"] == []

        resp = await client.post(
            "/api/mcp/tools/call",
            json={"serverName": "remote", "toolName": "echo", "toolArguments": {"text": "hi"}},
            headers=HEADERS,
        )
        assert resp.status == 200
        result = (await resp.json())["result"]
        assert result["content"][0]["text"] == "echo:{'text': 'hi'}"
        assert result["isError"] is False

        resp = await client.delete("/api/mcp/servers/delete", json={"serverName": "remote"}, headers=HEADERS)
        assert resp.status == 200
        assert store.snapshot("user-1")["mcpServers"] == {}


@pytest.mark.asyncio
async def test_initialize_toggle_and_restart(client_factory, store, transports):
    await seed(store, {"remote": {"url": "https://example.com/sse"}})
    async with client_factory() as client:
        resp = await client.post("/api/mcp/initialize", headers=HEADERS)
        assert resp.status == 200

        resp = await client.post(
            "/api/mcp/servers/toggle", json={"serverName": "remote", "disabled": True}, headers=HEADERS
        )
        assert resp.status == 200
        resp = await client.get("/api/mcp/servers", headers=HEADERS)
        assert (await resp.json())["servers"][0]["disabled"] is True

        resp = await client.post("/api/mcp/servers/restart", json={"serverName": "remote"}, headers=HEADERS)
        assert resp.status == 400
        assert "disabled" in (await resp.json())["error"]

        resp = await client.post(
            "/api/mcp/servers/toggle", json={"serverName": "remote", "disabled": False}, headers=HEADERS
        )
        assert resp.status == 200
        resp = await client.post("/api/mcp/servers/restart", json={"serverName": "remote"}, headers=HEADERS)
        assert resp.status == 200

    assert transports.opens == 3


@pytest.mark.asyncio
async def test_add_stdio_reloads_store(client_factory, store, transports):
    async with client_factory() as client:
        await seed(store, {"local": {"command": "python", "args": ["server.py"]}})
        resp = await client.post("/api/mcp/servers/add-stdio", headers=HEADERS)
        assert resp.status == 200
        resp = await client.get("/api/mcp/servers", headers=HEADERS)
        assert [s["name"] for s in (await resp.json())["servers"]] == ["local"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path, body, message",
    [
        ("/api/mcp/servers/add", {"serverName": "remote"}, "Server name and URL are required"),
        ("/api/mcp/servers/toggle", {"serverName": "remote", "disabled": "yes"}, "disabled state"),
        ("/api/mcp/servers/restart", {}, "Server name is required"),
        ("/api/mcp/tools/call", {"serverName": "remote"}, "tool name are required"),
        ("/api/mcp/tools/call", ["not", "an", "object"], "JSON object"),
    ],
)
async def test_malformed_bodies_are_rejected(client_factory, path, body, message):
    async with client_factory() as client:
        resp = await client.post(path, json=body, headers=HEADERS)
        assert resp.status == 400
        assert message in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_invalid_json_is_rejected(client_factory):
    async with client_factory() as client:
        resp = await client.post("/api/mcp/servers/add", data="{oops", headers=HEADERS)
        assert resp.status == 400
        assert "Invalid JSON" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_validation_errors_are_bad_requests(client_factory):
    async with client_factory() as client:
        resp = await client.post(
            "/api/mcp/servers/add", json={"serverName": "remote", "serverUrl": "nope"}, headers=HEADERS
        )
        assert resp.status == 400
        assert "Invalid server URL" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_manager_errors_are_server_errors(client_factory, transports):
    transports.failures["remote"] = "connection refused"
    async with client_factory() as client:
        resp = await client.post(
            "/api/mcp/servers/add",
            json={"serverName": "remote", "serverUrl": "https://example.com/sse"},
            headers=HEADERS,
        )
        assert resp.status == 500
        assert "connection refused" in (await resp.json())["error"]

        resp = await client.post(
            "/api/mcp/tools/call", json={"serverName": "ghost", "toolName": "echo"}, headers=HEADERS
        )
        assert resp.status == 500
        assert "ghost" in (await resp.json())["error"]


@pytest.mark.asyncio
async def test_shutdown_closes_managers(client_factory, registry, store, transports):
    await seed(store, {"remote": {"url": "https://example.com/sse"}})
    async with client_factory() as client:
        resp = await client.post("/api/mcp/initialize", headers=HEADERS)
        assert resp.status == 200

    assert len(registry) == 0
    assert transports.closes == 1
