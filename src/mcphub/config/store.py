"""Per-user storage of desired server configurations.

The store is the single source of truth for desired state. Managers re-read
it on every reconciliation trigger rather than caching it.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from mcphub.config.schema import McpServersConfig
from mcphub.exceptions import MCPConfigurationError, MCPValidationError

logger = logging.getLogger(__name__)

_USER_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.@-]+$")


@runtime_checkable
class ConfigStore(Protocol):
    """Reads and writes the desired server configuration of one user."""

    async def read(self, user_id: str) -> McpServersConfig:
        """Return the user's configuration, creating an empty one if missing."""
        ...

    async def write(self, user_id: str, config: McpServersConfig) -> None:
        """Persist the user's configuration."""
        ...


class InMemoryConfigStore:
    """Configuration store kept in process memory.

    Records are stored in their persisted (JSON-compatible) form so callers
    never share mutable state with the store.
    """

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._records: dict[str, dict[str, Any]] = copy.deepcopy(initial or {})
        self.write_count = 0

    async def read(self, user_id: str) -> McpServersConfig:
        record = self._records.setdefault(user_id, {"mcpServers": {}})
        try:
            return McpServersConfig.from_persisted(copy.deepcopy(record))
        except MCPValidationError as exc:
            raise MCPConfigurationError(f"Failed to read MCP config for user {user_id}: {exc}") from exc

    async def write(self, user_id: str, config: McpServersConfig) -> None:
        self._records[user_id] = config.to_persisted()
        self.write_count += 1

    def snapshot(self, user_id: str) -> dict[str, Any]:
        """Return a copy of the stored record for *user_id*."""
        return copy.deepcopy(self._records.get(user_id, {"mcpServers": {}}))


class FileConfigStore:
    """Configuration store keeping one JSON document per user.

    Layout: ``<root>/<user_id>/mcp_servers.json``. Reads create an empty
    document for unknown users. Writes go through a temporary file and an
    atomic rename. File I/O runs in a worker thread.
    """

    FILE_NAME = "mcp_servers.json"

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, user_id: str) -> Path:
        """Return the configuration file path for *user_id*."""
        if not user_id or not _USER_ID_PATTERN.match(user_id) or user_id in {".", ".."}:
            raise MCPValidationError(f"Invalid user id: {user_id!r}")
        return self.root / user_id / self.FILE_NAME

    async def read(self, user_id: str) -> McpServersConfig:
        path = self.path_for(user_id)
        data = await asyncio.to_thread(self._read_sync, path)
        try:
            return McpServersConfig.from_persisted(data)
        except MCPValidationError as exc:
            raise MCPConfigurationError(f"Failed to read MCP config from {path}: {exc}") from exc

    async def write(self, user_id: str, config: McpServersConfig) -> None:
        path = self.path_for(user_id)
        await asyncio.to_thread(self._write_sync, path, config.to_persisted())
        logger.info("MCP servers saved successfully for user: %s", user_id)

    def _read_sync(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            empty = {"mcpServers": {}}
            self._write_sync(path, empty)
            return empty
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise MCPConfigurationError(f"Failed to read MCP config from {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise MCPConfigurationError(f"MCP config in {path} must be a JSON object")
        return data

    def _write_sync(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".mcp_servers.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_name, path)
            except BaseException:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as exc:
            raise MCPConfigurationError(f"Failed to write MCP config to {path}: {exc}") from exc
