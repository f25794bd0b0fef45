"""Build and initialize connection managers at process start."""

from __future__ import annotations

import asyncio
import functools
import logging

from mcphub.capabilities import CapabilityFetcher
from mcphub.config.settings import HubSettings
from mcphub.config.store import ConfigStore, FileConfigStore
from mcphub.exceptions import MCPConfigurationError, MCPTransportError
from mcphub.manager import ConnectionManager
from mcphub.registry import ManagerRegistry
from mcphub.transport.stderr import PatternClassifier

logger = logging.getLogger(__name__)


def create_manager(settings: HubSettings, user_id: str, store: ConfigStore) -> ConnectionManager:
    """Return a manager for *user_id* configured from *settings*."""
    return ConnectionManager(
        user_id,
        store,
        fetcher=CapabilityFetcher(timeout=settings.fetch_timeout),
        classifier=PatternClassifier(settings.stderr_error_pattern),
        connect_timeout=settings.connect_timeout,
    )


def create_registry(settings: HubSettings, store: ConfigStore | None = None) -> ManagerRegistry:
    """Return a registry backed by *store*, or by per-user files under ``settings.config_dir``."""
    if store is None:
        store = FileConfigStore(settings.config_dir)
    return ManagerRegistry(
        store,
        max_managers=settings.max_active_users,
        manager_factory=functools.partial(create_manager, settings),
    )


async def initialize_for_user(
    registry: ManagerRegistry,
    user_id: str,
    attempts: int = 3,
    backoff: float = 1.0,
) -> ConnectionManager:
    """Initialize the manager of *user_id*, retrying store failures.

    A configuration store that cannot be read is retried with exponential
    backoff, and the last failure is raised. Servers that fail to connect do
    not stop startup: their records stay disconnected with the error and the
    manager is returned.

    Raises:
        MCPConfigurationError: If every attempt failed to read the store
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    manager = await registry.get(user_id)
    delay = backoff
    for attempt in range(1, attempts + 1):
        try:
            await manager.initialize()
        except MCPTransportError as exc:
            logger.warning("MCP client for user %s started with failed servers: %s", user_id, exc)
            break
        except MCPConfigurationError as exc:
            if attempt == attempts:
                logger.error("Failed to initialize MCP client for user %s: %s", user_id, exc)
                raise
            logger.warning(
                "Initialization attempt %d/%d for user %s failed: %s; retrying in %.1fs",
                attempt,
                attempts,
                user_id,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
            delay *= 2
        else:
            logger.info("MCP client initialized for user: %s", user_id)
            break
    return manager
