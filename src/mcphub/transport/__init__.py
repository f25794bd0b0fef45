"""Transport sessions for stdio and SSE servers."""

from __future__ import annotations

from collections.abc import Callable
from typing import assert_never

from mcphub.config.schema import SseServerConfig, StdioServerConfig
from mcphub.constants import MCP_CONNECT_TIMEOUT
from mcphub.transport.base import (
    DiagnosticOutput,
    EventSink,
    TransportClosed,
    TransportEvent,
    TransportFailed,
    TransportSession,
)
from mcphub.transport.sse import SseTransportSession
from mcphub.transport.stderr import PatternClassifier, StderrClassifier, default_classifier
from mcphub.transport.stdio import StdioTransportSession

TransportFactory = Callable[[str, StdioServerConfig | SseServerConfig, EventSink], TransportSession]


def create_transport(
    name: str,
    config: StdioServerConfig | SseServerConfig,
    on_event: EventSink | None = None,
    classifier: StderrClassifier | None = None,
    connect_timeout: float = MCP_CONNECT_TIMEOUT,
) -> TransportSession:
    """Create an unconnected transport session for *config*."""
    if isinstance(config, StdioServerConfig):
        return StdioTransportSession(
            name, config, on_event, classifier=classifier, connect_timeout=connect_timeout
        )
    if isinstance(config, SseServerConfig):
        return SseTransportSession(name, config, on_event, connect_timeout=connect_timeout)
    assert_never(config)


__all__ = [
    "DiagnosticOutput",
    "EventSink",
    "PatternClassifier",
    "SseTransportSession",
    "StderrClassifier",
    "StdioTransportSession",
    "TransportClosed",
    "TransportEvent",
    "TransportFactory",
    "TransportFailed",
    "TransportSession",
    "create_transport",
    "default_classifier",
]
