"""Tests for the configuration stores."""

import json

import pytest

from mcphub.config.schema import McpServersConfig, SseServerConfig
from mcphub.config.store import ConfigStore, FileConfigStore, InMemoryConfigStore
from mcphub.exceptions import MCPConfigurationError, MCPValidationError


def _config(**servers) -> McpServersConfig:
    return McpServersConfig(mcp_servers=servers)


@pytest.mark.asyncio
async def test_file_store_creates_empty_record_on_first_read(tmp_path):
    store = FileConfigStore(tmp_path)

    config = await store.read("alice")

    assert config.mcp_servers == {}
    path = tmp_path / "alice" / "mcp_servers.json"
    assert json.loads(path.read_text()) == {"mcpServers": {}}


@pytest.mark.asyncio
async def test_file_store_write_then_read(tmp_path):
    store = FileConfigStore(tmp_path)

    await store.write("alice", _config(remote=SseServerConfig(url="https://example.com/sse")))
    config = await store.read("alice")

    assert config.mcp_servers["remote"].url == "https://example.com/sse"
    stored = json.loads((tmp_path / "alice" / "mcp_servers.json").read_text())
    assert stored["mcpServers"]["remote"]["transportType"] == "sse"
    # No temporary files left behind
    assert [p.name for p in (tmp_path / "alice").iterdir()] == ["mcp_servers.json"]


@pytest.mark.asyncio
async def test_file_store_keeps_users_apart(tmp_path):
    store = FileConfigStore(tmp_path)

    await store.write("alice", _config(remote=SseServerConfig(url="https://example.com/sse")))

    assert (await store.read("bob")).mcp_servers == {}


@pytest.mark.asyncio
async def test_file_store_reports_corrupt_json(tmp_path):
    path = tmp_path / "alice" / "mcp_servers.json"
    path.parent.mkdir()
    path.write_text("{not json")

    with pytest.raises(MCPConfigurationError):
        await FileConfigStore(tmp_path).read("alice")


@pytest.mark.asyncio
async def test_file_store_reports_invalid_entries(tmp_path):
    path = tmp_path / "alice" / "mcp_servers.json"
    path.parent.mkdir()
    path.write_text(json.dumps({"mcpServers": {"bad": {"transportType": "sse", "url": "nope"}}}))

    with pytest.raises(MCPConfigurationError):
        await FileConfigStore(tmp_path).read("alice")


@pytest.mark.parametrize("user_id", ["", "..", "a/b", "../etc", "with space"])
def test_file_store_rejects_unsafe_user_ids(tmp_path, user_id):
    with pytest.raises(MCPValidationError):
        FileConfigStore(tmp_path).path_for(user_id)


@pytest.mark.asyncio
async def test_memory_store_does_not_share_state():
    store = InMemoryConfigStore()
    await store.write("alice", _config(remote=SseServerConfig(url="https://example.com/sse")))

    snapshot = store.snapshot("alice")
    snapshot["mcpServers"].clear()

    assert "remote" in (await store.read("alice")).mcp_servers
    assert store.write_count == 1


@pytest.mark.asyncio
async def test_memory_store_reports_invalid_initial_data():
    store = InMemoryConfigStore({"alice": {"mcpServers": {"bad": {"transportType": "sse", "url": "nope"}}}})

    with pytest.raises(MCPConfigurationError):
        await store.read("alice")


def test_stores_satisfy_protocol(tmp_path):
    assert isinstance(InMemoryConfigStore(), ConfigStore)
    assert isinstance(FileConfigStore(tmp_path), ConfigStore)
