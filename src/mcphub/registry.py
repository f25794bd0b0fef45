"""Table of live connection managers, one per user."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable

from mcphub.config.store import ConfigStore
from mcphub.manager import ConnectionManager

logger = logging.getLogger(__name__)

ManagerFactory = Callable[[str, ConfigStore], ConnectionManager]


class ManagerRegistry:
    """Hand out one :class:`ConnectionManager` per user.

    The table is bounded: once more than ``max_managers`` users are active,
    the least recently used manager is disconnected and dropped. With
    ``max_managers=1`` a new user always replaces the previous one.

    Args:
        store: Configuration store shared by all managers
        max_managers: Maximum number of live managers
        manager_factory: Builds a manager for ``(user_id, store)``; tests use
            it to inject fake transports
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        max_managers: int = 8,
        manager_factory: ManagerFactory | None = None,
    ) -> None:
        if max_managers < 1:
            raise ValueError("max_managers must be at least 1")
        self.store = store
        self.max_managers = max_managers
        self._manager_factory = manager_factory or ConnectionManager
        self._managers: OrderedDict[str, ConnectionManager] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._managers)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._managers

    def active_user_ids(self) -> list[str]:
        """Return user ids from least to most recently used."""
        return list(self._managers)

    async def get(self, user_id: str) -> ConnectionManager:
        """Return the manager for *user_id*, creating it if needed."""
        evicted: list[ConnectionManager] = []
        async with self._lock:
            manager = self._managers.get(user_id)
            if manager is not None and not manager.closed:
                self._managers.move_to_end(user_id)
                logger.debug("Reusing existing MCP client for user: %s", user_id)
                return manager

            logger.info("Creating new MCP client for user: %s", user_id)
            manager = self._manager_factory(user_id, self.store)
            self._managers[user_id] = manager
            while len(self._managers) > self.max_managers:
                old_user, old_manager = self._managers.popitem(last=False)
                logger.info("Evicting MCP client for user: %s", old_user)
                evicted.append(old_manager)

        for old_manager in evicted:
            await self._close(old_manager)
        return manager

    async def remove(self, user_id: str) -> bool:
        """Close and drop the manager for *user_id*. Returns False if there was none."""
        async with self._lock:
            manager = self._managers.pop(user_id, None)
        if manager is None:
            return False
        await self._close(manager)
        return True

    async def disconnect_all(self) -> None:
        """Close every manager and empty the table."""
        async with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        if managers:
            logger.info("Disconnecting MCP clients for %d user(s)", len(managers))
        await asyncio.gather(*(self._close(manager) for manager in managers))

    async def _close(self, manager: ConnectionManager) -> None:
        try:
            await manager.aclose()
        except Exception as exc:  # noqa: BLE001
            logger.error("Error disconnecting MCP client for user %s: %s", manager.user_id, exc)
