"""Pytest configuration and shared fakes."""

import asyncio
import os
from typing import Any

import pytest
import pytest_asyncio
from mcp import types

from mcphub.config.schema import McpServersConfig
from mcphub.config.store import InMemoryConfigStore
from mcphub.exceptions import MCPTransportError
from mcphub.manager import ConnectionManager
from mcphub.transport.base import TransportEvent

USER = "user-1"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: mark test as launching a real MCP server subprocess")


def get_test_dir() -> str:
    """Get the path to the tests directory."""
    return os.path.dirname(os.path.abspath(__file__))


def get_test_data_path(relative_path: str) -> str:
    """Get the path to a test data file."""
    return os.path.join(get_test_dir(), "data", relative_path)


class FakeTransport:
    """In-process stand-in for a transport session.

    Behaviour is driven by the owning :class:`FakeTransportFactory`, so tests
    can configure a server before the manager creates its session.
    """

    kind = "fake"

    def __init__(self, factory: "FakeTransportFactory", name: str, config: Any, on_event) -> None:
        self.factory = factory
        self.name = name
        self.config = config
        self.on_event = on_event
        self.connect_count = 0
        self.close_count = 0
        self.requests: list[tuple[str, dict[str, Any] | None, float]] = []

    async def connect(self) -> None:
        self.connect_count += 1
        gate = self.factory.connect_gates.get(self.name)
        if gate is not None:
            await gate.wait()
        failure = self.factory.failures.get(self.name)
        if failure is not None:
            raise MCPTransportError(failure)

    async def close(self) -> None:
        self.close_count += 1

    async def request(self, method: str, params: dict[str, Any] | None, result_type: type, timeout: float):
        self.requests.append((method, params, timeout))
        if method == "tools/list":
            return result_type.model_validate({"tools": self.factory.tools.get(self.name, [])})
        if method == "resources/list":
            return result_type.model_validate({"resources": self.factory.resources.get(self.name, [])})
        if method == "resources/templates/list":
            return result_type.model_validate({"resourceTemplates": []})
        if method == "tools/call":
            error = self.factory.call_errors.get(self.name)
            if error is not None:
                raise MCPTransportError(error)
            text = f"{params['name']}:{params['arguments']}"
            return types.CallToolResult(content=[types.TextContent(type="text", text=text)])
        raise MCPTransportError(f"Unsupported method {method}")

    def emit(self, event_type: type[TransportEvent], **fields: Any) -> None:
        self.on_event(event_type(self.name, self, **fields))


class FakeTransportFactory:
    """Transport factory recording every session it creates."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []
        self.failures: dict[str, str] = {}
        self.call_errors: dict[str, str] = {}
        self.connect_gates: dict[str, asyncio.Event] = {}
        self.tools: dict[str, list[dict[str, Any]]] = {}
        self.resources: dict[str, list[dict[str, Any]]] = {}

    def __call__(self, name: str, config: Any, on_event) -> FakeTransport:
        transport = FakeTransport(self, name, config, on_event)
        self.created.append(transport)
        return transport

    @property
    def opens(self) -> int:
        return sum(t.connect_count for t in self.created)

    @property
    def closes(self) -> int:
        return sum(t.close_count for t in self.created)

    def sessions_for(self, name: str) -> list[FakeTransport]:
        return [t for t in self.created if t.name == name]


def echo_tool(name: str = "echo") -> dict[str, Any]:
    return {"name": name, "description": f"{name} tool", "inputSchema": {"type": "object"}}


async def seed(store: InMemoryConfigStore, servers: dict[str, dict[str, Any]], user_id: str = USER) -> None:
    """Write *servers* as the user's stored configuration."""
    await store.write(user_id, McpServersConfig.from_persisted({"mcpServers": servers}))


@pytest.fixture
def store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def transports() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest_asyncio.fixture
async def manager(store, transports):
    manager = ConnectionManager(USER, store, transport_factory=transports)
    yield manager
    await manager.aclose()
