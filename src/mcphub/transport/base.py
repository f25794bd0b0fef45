"""Transport session base class.

A transport session owns one MCP client connection. The SDK context managers
(``stdio_client``/``sse_client`` and ``ClientSession``) must be entered and
exited in the same task, so each session keeps them open inside a background
runner task and hands the live ``ClientSession`` to callers once the handshake
has completed.

Failures after the handshake are never raised into caller code; they are
reported as :class:`TransportEvent` objects through the ``on_event`` sink.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Any, TypeVar

import anyio
from mcp import types
from mcp.client.session import ClientSession
from mcp.shared.exceptions import McpError
from pydantic import BaseModel, ValidationError

from mcphub.constants import (
    MCP_CLIENT_NAME,
    MCP_CONNECT_TIMEOUT,
    MCP_ERROR_CONNECTION_CLOSED,
    MCP_ERROR_HANDSHAKE_TIMEOUT,
    MCP_ERROR_REQUEST_TIMEOUT,
    MCP_TRANSPORT_CLOSE_TIMEOUT,
)
from mcphub.exceptions import MCPTransportError

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


@dataclass(frozen=True)
class TransportEvent:
    """Base class for events emitted by a transport session."""

    server: str
    session: TransportSession


@dataclass(frozen=True)
class TransportClosed(TransportEvent):
    """The server side of the channel went away."""


@dataclass(frozen=True)
class TransportFailed(TransportEvent):
    """The channel reported an error."""

    message: str


@dataclass(frozen=True)
class DiagnosticOutput(TransportEvent):
    """The server wrote a line classified as an error to its stderr."""

    line: str


EventSink = Callable[[TransportEvent], None]


def describe_error(exc: BaseException) -> str:
    """Return a readable message, unwrapping exception groups."""
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return str(exc) or type(exc).__name__


class TransportSession(ABC):
    """One live connection to an MCP server."""

    kind: str = "unknown"

    def __init__(
        self,
        name: str,
        on_event: EventSink | None = None,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
    ) -> None:
        self.name = name
        self._on_event = on_event
        self.connect_timeout = connect_timeout
        self._task: asyncio.Task | None = None
        self._ready = asyncio.Event()
        self._stop = asyncio.Event()
        self._session: ClientSession | None = None
        self._startup_error: BaseException | None = None
        self._closing = False

    @abstractmethod
    def _open_streams(self) -> AbstractAsyncContextManager[tuple[Any, ...]]:
        """Return a context manager yielding ``(read_stream, write_stream, ...)``."""

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._closing

    async def connect(self) -> None:
        """Open the channel and complete the MCP handshake.

        The handshake is bounded by ``connect_timeout``; a server that never
        answers ``initialize`` is torn down and reported as a failure.

        Raises:
            MCPTransportError: If the channel cannot be opened or the handshake fails
        """
        if self._task is not None:
            raise MCPTransportError(f"Transport for MCP server '{self.name}' was already started")

        self._task = asyncio.create_task(self._runner(), name=f"mcp-transport-{self.name}")
        try:
            async with asyncio.timeout(self.connect_timeout):
                await self._ready.wait()
        except TimeoutError as exc:
            self._closing = True
            self._task.cancel()
            await asyncio.wait({self._task}, timeout=MCP_TRANSPORT_CLOSE_TIMEOUT)
            logger.error("MCP server '%s' did not complete the handshake in time", self.name)
            raise MCPTransportError(
                MCP_ERROR_HANDSHAKE_TIMEOUT.format(server=self.name, timeout=self.connect_timeout)
            ) from exc

        if self._session is None:
            reason = describe_error(self._startup_error) if self._startup_error else "connection closed during startup"
            raise MCPTransportError(
                f"Failed to connect to MCP server '{self.name}': {reason}"
            ) from self._startup_error

    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""
        if self._task is None or self._closing:
            self._closing = True
            return
        self._closing = True
        self._stop.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=MCP_TRANSPORT_CLOSE_TIMEOUT)
        except TimeoutError:
            logger.warning(
                "Timeout closing MCP server '%s' after %s seconds", self.name, MCP_TRANSPORT_CLOSE_TIMEOUT
            )
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None,
        result_type: type[ResultT],
        timeout: float,
    ) -> ResultT:
        """Send one request and return the validated result.

        Args:
            method: Protocol method name, e.g. ``tools/list``
            params: Request parameters, or None
            result_type: Pydantic model the response must validate against
            timeout: Seconds to wait for the response

        Raises:
            MCPTransportError: On timeout, malformed response, error response or closed channel
        """
        session = self._session
        if session is None or self._closing:
            raise MCPTransportError(MCP_ERROR_CONNECTION_CLOSED.format(server=self.name))

        payload: dict[str, Any] = {"method": method}
        if params is not None:
            payload["params"] = params
        try:
            request = types.ClientRequest.model_validate(payload)
        except ValidationError as exc:
            raise MCPTransportError(f"Invalid '{method}' request for MCP server '{self.name}': {exc}") from exc

        try:
            async with asyncio.timeout(timeout):
                return await session.send_request(request, result_type)
        except TimeoutError as exc:
            raise MCPTransportError(
                MCP_ERROR_REQUEST_TIMEOUT.format(method=method, server=self.name, timeout=timeout)
            ) from exc
        except McpError as exc:
            raise MCPTransportError(str(exc)) from exc
        except ValidationError as exc:
            raise MCPTransportError(f"Malformed '{method}' response from MCP server '{self.name}': {exc}") from exc
        except (anyio.ClosedResourceError, anyio.BrokenResourceError, anyio.EndOfStream) as exc:
            raise MCPTransportError(MCP_ERROR_CONNECTION_CLOSED.format(server=self.name)) from exc

    def _emit(self, event: TransportEvent) -> None:
        if self._on_event is None or self._closing:
            return
        try:
            self._on_event(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Event handler failed for MCP server '%s': %s", self.name, exc)

    async def _runner(self) -> None:
        try:
            async with self._open_streams() as streams:
                read_stream, write_stream = streams[0], streams[1]
                forward_send, forward_receive = anyio.create_memory_object_stream(0)
                async with anyio.create_task_group() as tg:
                    tg.start_soon(self._forward_messages, read_stream, forward_send)
                    async with ClientSession(
                        forward_receive,
                        write_stream,
                        client_info=types.Implementation(name=MCP_CLIENT_NAME, version="1.0.0"),
                    ) as session:
                        await session.initialize()
                        self._session = session
                        self._ready.set()
                        await self._stop.wait()
                    tg.cancel_scope.cancel()
        except Exception as exc:  # noqa: BLE001
            if not self._ready.is_set():
                self._startup_error = exc
            elif not self._closing:
                message = describe_error(exc)
                logger.error("Transport error for \"%s\": %s", self.name, message)
                self._emit(TransportFailed(self.name, self, message))
            else:
                logger.debug("Error while closing MCP server '%s': %s", self.name, describe_error(exc))
        finally:
            self._session = None
            self._ready.set()

    async def _forward_messages(self, source: Any, sink: Any) -> None:
        """Relay server messages to the client session, watching for errors and EOF."""
        async with sink:
            try:
                async for item in source:
                    if isinstance(item, Exception) and self._ready.is_set():
                        message = describe_error(item)
                        logger.error("Transport error for \"%s\": %s", self.name, message)
                        self._emit(TransportFailed(self.name, self, message))
                    await sink.send(item)
            except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
                logger.debug("Message relay for MCP server '%s' stopped: %s", self.name, exc)
        if self._session is not None and not self._closing:
            logger.info("MCP server '%s' closed the connection", self.name)
            self._emit(TransportClosed(self.name, self))
