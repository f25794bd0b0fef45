"""mcphub - per-user connections to MCP servers."""

from mcphub.config.schema import McpServersConfig, SseServerConfig, StdioServerConfig
from mcphub.config.settings import HubSettings
from mcphub.config.store import FileConfigStore, InMemoryConfigStore
from mcphub.manager import ConnectionManager
from mcphub.records import ConnectionRecord, ServerStatus
from mcphub.registry import ManagerRegistry
from mcphub.startup import initialize_for_user

__all__ = [
    "ConnectionManager",
    "ConnectionRecord",
    "FileConfigStore",
    "HubSettings",
    "InMemoryConfigStore",
    "ManagerRegistry",
    "McpServersConfig",
    "ServerStatus",
    "SseServerConfig",
    "StdioServerConfig",
    "initialize_for_user",
]
__version__ = "0.1.0"
