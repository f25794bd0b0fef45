"""Remote transport speaking MCP over HTTP server-sent events."""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from typing import Any

from mcp.client.sse import sse_client

from mcphub.config.schema import SseServerConfig
from mcphub.constants import MCP_CONNECT_TIMEOUT
from mcphub.transport.base import EventSink, TransportSession

logger = logging.getLogger(__name__)


class SseTransportSession(TransportSession):
    """Long-lived event stream to a remote server. No local process to manage."""

    kind = "sse"

    def __init__(
        self,
        name: str,
        config: SseServerConfig,
        on_event: EventSink | None = None,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
    ) -> None:
        super().__init__(name, on_event, connect_timeout)
        self.config = config

    def _open_streams(self) -> AbstractAsyncContextManager[tuple[Any, ...]]:
        logger.info("Creating SSE transport for: %s", self.name)
        return sse_client(self.config.url)
