"""Configuration models, storage and settings."""

from mcphub.config.schema import (
    McpServersConfig,
    ServerConfig,
    SseServerConfig,
    StdioServerConfig,
    is_valid_url,
    parse_server_config,
)
from mcphub.config.settings import HubSettings
from mcphub.config.store import ConfigStore, FileConfigStore, InMemoryConfigStore

__all__ = [
    "ConfigStore",
    "FileConfigStore",
    "HubSettings",
    "InMemoryConfigStore",
    "McpServersConfig",
    "ServerConfig",
    "SseServerConfig",
    "StdioServerConfig",
    "is_valid_url",
    "parse_server_config",
]
