"""Tests for the command line interface."""

import json
import logging
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from mcphub.cli import main
from mcphub.manager import ConnectionManager
from tests.conftest import FakeTransportFactory, echo_tool


@pytest.fixture
def transports():
    factory = FakeTransportFactory()
    factory.tools["remote"] = [echo_tool()]
    return factory


@pytest.fixture
def invoke(tmp_path, transports):
    """Run the CLI against a temporary config dir with fake transports."""
    runner = CliRunner()

    def fake_manager(settings, user_id, store):
        return ConnectionManager(user_id, store, transport_factory=transports)

    def run(*args):
        with (
            patch("mcphub.cli.commands.get_logger", return_value=logging.getLogger("mcphub.cli")),
            patch("mcphub.cli.commands.create_manager", side_effect=fake_manager),
        ):
            return runner.invoke(main, ["--user", "alice", *args], env={"MCPHUB_CONFIG_DIR": str(tmp_path)})

    return run


def _stored(tmp_path):
    return json.loads((tmp_path / "alice" / "mcp_servers.json").read_text())["mcpServers"]


def test_list_empty(invoke):
    result = invoke("servers", "list")

    assert result.exit_code == 0
    assert "No MCP servers configured" in result.output


def test_add_stdio_disabled_and_list(invoke, tmp_path, transports):
    result = invoke("servers", "add-stdio", "local", "python", "server.py", "-e", "TOKEN=abc", "--disabled")

    assert result.exit_code == 0, result.output
    assert "local: disabled" in result.output
    assert _stored(tmp_path)["local"]["env"] == {"TOKEN": "abc"}
    assert transports.created == []

    result = invoke("servers", "list")
    assert "local [stdio] python server.py (disabled)" in result.output


def test_add_stdio_duplicate(invoke):
    invoke("servers", "add-stdio", "local", "python", "--disabled")

    result = invoke("servers", "add-stdio", "local", "node", "--disabled")

    assert result.exit_code == 1
    assert 'An MCP server with the name "local" already exists' in result.output


def test_add_stdio_bad_env(invoke):
    result = invoke("servers", "add-stdio", "local", "python", "-e", "NOEQUALS")

    assert result.exit_code == 2
    assert "KEY=VALUE" in result.output


def test_add_remote_connect_and_call(invoke, tmp_path, transports):
    result = invoke("servers", "add-remote", "remote", "https://example.com/sse")

    assert result.exit_code == 0, result.output
    assert "remote: connected (1 tools)" in result.output
    assert _stored(tmp_path)["remote"]["url"] == "https://example.com/sse"

    result = invoke("call", "remote", "echo", "--args", '{"text": "hi"}')

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["content"][0]["text"] == "echo:{'text': 'hi'}"
    # Each command opens its own connection and closes it on exit
    assert transports.opens == 2
    assert transports.closes == 2


def test_add_remote_invalid_url(invoke):
    result = invoke("servers", "add-remote", "remote", "nope")

    assert result.exit_code == 1
    assert "Invalid server URL" in result.output


def test_toggle_restart_delete(invoke, tmp_path, transports):
    invoke("servers", "add-remote", "remote", "https://example.com/sse")

    result = invoke("servers", "toggle", "remote", "--disable")
    assert result.exit_code == 0, result.output
    assert _stored(tmp_path)["remote"]["disabled"] is True

    result = invoke("servers", "restart", "remote")
    assert result.exit_code == 1
    assert "disabled" in result.output

    invoke("servers", "toggle", "remote", "--enable")
    result = invoke("servers", "restart", "remote")
    assert result.exit_code == 0, result.output
    assert "remote: connected" in result.output

    result = invoke("servers", "delete", "remote")
    assert result.exit_code == 0
    assert _stored(tmp_path) == {}


def test_unknown_server_errors(invoke):
    result = invoke("servers", "toggle", "missing")
    assert result.exit_code == 1
    assert "missing not found in MCP configuration" in result.output

    result = invoke("call", "missing", "echo")
    assert result.exit_code == 1
    assert "No connection found for server: missing" in result.output


def test_call_rejects_bad_arguments(invoke):
    result = invoke("call", "remote", "echo", "--args", "[1, 2]")

    assert result.exit_code == 2
    assert "JSON object" in result.output


def test_list_with_connect_as_json(invoke):
    invoke("servers", "add-remote", "remote", "https://example.com/sse")

    result = invoke("servers", "list", "--connect", "--json")

    assert result.exit_code == 0, result.output
    [row] = json.loads(result.output)
    assert row["name"] == "remote"
    assert row["status"] == "connected"
