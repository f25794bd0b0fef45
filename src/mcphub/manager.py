"""Per-user connection manager.

The manager owns the connection records of one user and is the only code
that replaces them. Mutating operations are submitted to a mailbox and run
one at a time by a single worker task; transport events are posted to the
same mailbox and applied between commands. Reads use the current immutable
records directly and never wait for the worker.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from mcp import types

from mcphub.capabilities import CapabilityFetcher
from mcphub.config.schema import McpServersConfig, SseServerConfig, StdioServerConfig, is_valid_url
from mcphub.config.store import ConfigStore
from mcphub.constants import (
    MCP_CONNECT_TIMEOUT,
    MCP_DEFAULT_TOOL_CALL_TIMEOUT,
    MCP_ERROR_DUPLICATE_SERVER,
    MCP_ERROR_INVALID_URL,
    MCP_ERROR_NO_CONNECTION,
    MCP_ERROR_SERVER_DISABLED,
    MCP_ERROR_SERVER_NOT_CONNECTED,
    MCP_ERROR_SERVER_NOT_FOUND,
    MCP_LOG_CONNECTED,
    MCP_LOG_CONNECTING,
    MCP_LOG_DISABLED,
    MCP_LOG_RECONNECTED,
    MCP_LOG_REENABLED,
    MCP_LOG_REMOVED,
    MCP_MAX_PENDING_DIAGNOSTICS,
)
from mcphub.exceptions import (
    MCPConfigurationError,
    MCPError,
    MCPInvocationError,
    MCPServerUnavailableError,
    MCPTransportError,
    MCPValidationError,
)
from mcphub.reconciler import ActionKind, ReconcileAction, plan_reconciliation
from mcphub.records import ConnectionRecord, ServerStatus
from mcphub.transport import TransportFactory, create_transport
from mcphub.transport.base import (
    DiagnosticOutput,
    TransportClosed,
    TransportEvent,
    TransportFailed,
    TransportSession,
    describe_error,
)
from mcphub.transport.stderr import StderrClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Command:
    operation: Callable[[], Awaitable[Any]]
    future: asyncio.Future


def _validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise MCPValidationError("Server name cannot be empty")
    return name.strip()


def _serialize(config: StdioServerConfig | SseServerConfig) -> str:
    return json.dumps(config.to_persisted())


class ConnectionManager:
    """Connections, reconciliation and tool calls for one user.

    Args:
        user_id: Owner of the configuration record
        store: Source of truth for desired server configuration
        transport_factory: Creates unconnected transport sessions; defaults to
            :func:`mcphub.transport.create_transport`
        fetcher: Capability fetcher used after every successful connect
        classifier: Stderr classifier for stdio servers when the default
            transport factory is used
        connect_timeout: Handshake deadline for sessions made by the default
            transport factory
    """

    def __init__(
        self,
        user_id: str,
        store: ConfigStore,
        *,
        transport_factory: TransportFactory | None = None,
        fetcher: CapabilityFetcher | None = None,
        classifier: StderrClassifier | None = None,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self._transport_factory = transport_factory or functools.partial(
            create_transport, classifier=classifier, connect_timeout=connect_timeout
        )
        self._fetcher = fetcher or CapabilityFetcher()
        self._records: dict[str, ConnectionRecord] = {}
        self._mailbox: asyncio.Queue[_Command | TransportEvent] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._pending_diagnostics = 0
        self._busy = False
        self._closed = False

    def __repr__(self) -> str:
        return f"ConnectionManager(user_id={self.user_id!r}, servers={len(self._records)})"

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_servers(self) -> list[ConnectionRecord]:
        """Return a snapshot of all connection records, disabled ones included."""
        return list(self._records.values())

    def get_server(self, name: str) -> ConnectionRecord | None:
        return self._records.get(name)

    @property
    def is_reconciling(self) -> bool:
        """True while a mutating operation is running."""
        return self._busy

    @property
    def closed(self) -> bool:
        return self._closed

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> types.CallToolResult:
        """Invoke *tool_name* on *server_name* under the server's timeout.

        Raises:
            MCPServerUnavailableError: If the server is unknown, disabled or has no session
            MCPInvocationError: If the call fails; the message is the underlying error text
        """
        record = self._records.get(server_name)
        if record is None:
            raise MCPServerUnavailableError(MCP_ERROR_NO_CONNECTION.format(server=server_name))
        if record.disabled:
            raise MCPServerUnavailableError(MCP_ERROR_SERVER_DISABLED.format(server=server_name))
        session = record.session
        if session is None:
            raise MCPServerUnavailableError(
                MCP_ERROR_SERVER_NOT_CONNECTED.format(server=server_name, status=record.status.value)
            )

        timeout = self._call_timeout(record)
        params = {"name": tool_name, "arguments": arguments or {}}
        logger.debug("Calling tool %s on MCP server %s (timeout %.1fs)", tool_name, server_name, timeout)
        try:
            return await session.request("tools/call", params, types.CallToolResult, timeout)
        except MCPTransportError as exc:
            raise MCPInvocationError(str(exc)) from exc

    def _call_timeout(self, record: ConnectionRecord) -> float:
        try:
            return record.stored_config().timeout
        except MCPValidationError as exc:
            logger.error("Failed to parse timeout configuration for server %s: %s", record.name, exc)
            return MCP_DEFAULT_TOOL_CALL_TIMEOUT

    # ------------------------------------------------------------------
    # Mutating operations
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Read the stored configuration and reconcile live connections to it.

        Raises:
            MCPConfigurationError: If the store cannot be read
            MCPTransportError: If a newly added server failed to connect
        """
        await self._submit(self._initialize)

    async def add_remote_server(self, name: str, url: str) -> None:
        """Persist a new SSE server and connect to it.

        Raises:
            MCPValidationError: If the name is taken or the URL is invalid
        """
        await self._submit(self._add_remote_server, name, url)

    async def add_stdio_server(self) -> None:
        """Reconcile after a stdio server was added to the store out of band."""
        await self._submit(self._reload)

    async def toggle_server_disabled(self, name: str, disabled: bool) -> None:
        """Persist the disabled flag of *name* and reconcile.

        Raises:
            MCPValidationError: If *name* is not configured
        """
        await self._submit(self._toggle_server_disabled, name, disabled)

    async def restart_connection(self, name: str) -> None:
        """Close and reopen the connection of *name* with its stored config.

        Raises:
            MCPValidationError: If *name* has no record or is disabled
            MCPTransportError: If the new connection fails
        """
        await self._submit(self._restart_connection, name)

    async def delete_server(self, name: str) -> None:
        """Remove *name* from the store and close its connection.

        Raises:
            MCPValidationError: If *name* is not configured
        """
        await self._submit(self._delete_server, name)

    async def disconnect_all(self) -> None:
        """Close every transport and drop every record."""
        await self._submit(self._disconnect_all)

    async def aclose(self) -> None:
        """Disconnect everything and stop the mailbox worker."""
        if self._closed:
            return
        try:
            await self.disconnect_all()
        finally:
            self._closed = True
            if self._worker is not None:
                self._worker.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._worker
                self._worker = None
            self._fail_pending()
            logger.debug("Closed connection manager for user %s", self.user_id)

    # ------------------------------------------------------------------
    # Mailbox
    # ------------------------------------------------------------------

    async def _submit(self, operation: Callable[..., Awaitable[T]], *args: Any) -> T:
        if self._closed:
            raise MCPError(f"Connection manager for user {self.user_id} is closed")
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name=f"mcp-manager-{self.user_id}")
        future = asyncio.get_running_loop().create_future()
        self._mailbox.put_nowait(_Command(functools.partial(operation, *args), future))
        return await future

    def _post_event(self, event: TransportEvent) -> None:
        if self._closed:
            return
        if isinstance(event, DiagnosticOutput):
            # Only diagnostics are bounded; status events are always queued
            if self._pending_diagnostics >= MCP_MAX_PENDING_DIAGNOSTICS:
                logger.debug("Dropping diagnostic from MCP server %s: mailbox is full", event.server)
                return
            self._pending_diagnostics += 1
        self._mailbox.put_nowait(event)

    async def _run(self) -> None:
        while True:
            item = await self._mailbox.get()
            if isinstance(item, DiagnosticOutput):
                self._pending_diagnostics -= 1
            if isinstance(item, TransportEvent):
                self._apply_event(item)
                continue
            if item.future.done():
                continue
            self._busy = True
            try:
                result = await item.operation()
            except Exception as exc:  # noqa: BLE001
                if not item.future.done():
                    item.future.set_exception(exc)
            else:
                if not item.future.done():
                    item.future.set_result(result)
            finally:
                self._busy = False

    def _fail_pending(self) -> None:
        while not self._mailbox.empty():
            item = self._mailbox.get_nowait()
            if isinstance(item, _Command) and not item.future.done():
                item.future.set_exception(MCPError(f"Connection manager for user {self.user_id} is closed"))
        self._pending_diagnostics = 0

    def _apply_event(self, event: TransportEvent) -> None:
        record = self._records.get(event.server)
        if record is None or record.session is not event.session:
            logger.debug("Ignoring stale %s from MCP server %s", type(event).__name__, event.server)
            return

        if isinstance(event, DiagnosticOutput):
            self._records[event.server] = record.with_diagnostic(event.line)
        elif isinstance(event, TransportFailed):
            self._records[event.server] = record.evolve(status=ServerStatus.DISCONNECTED, error=event.message)
        elif isinstance(event, TransportClosed):
            self._records[event.server] = record.evolve(status=ServerStatus.DISCONNECTED)

    # ------------------------------------------------------------------
    # Command bodies (run on the worker)
    # ------------------------------------------------------------------

    async def _initialize(self) -> None:
        await self._reload()
        logger.info("Initialized %d MCP server(s) for user %s", len(self._records), self.user_id)

    async def _reload(self) -> None:
        config = await self._read_config()
        await self._reconcile(config)

    async def _add_remote_server(self, name: str, url: str) -> None:
        name = _validate_name(name)
        config = await self._read_config()
        if name in config.mcp_servers:
            raise MCPValidationError(MCP_ERROR_DUPLICATE_SERVER.format(server=name))
        if not is_valid_url(url):
            raise MCPValidationError(MCP_ERROR_INVALID_URL.format(url=url))

        updated = config.with_servers({**config.mcp_servers, name: SseServerConfig(url=url)})
        await self._write_config(updated)
        await self._reconcile(updated)
        logger.info("Successfully added remote MCP server: %s", name)

    async def _toggle_server_disabled(self, name: str, disabled: bool) -> None:
        name = _validate_name(name)
        config = await self._read_config()
        server = config.mcp_servers.get(name)
        if server is None:
            raise MCPValidationError(MCP_ERROR_SERVER_NOT_FOUND.format(server=name))

        servers = {**config.mcp_servers, name: server.model_copy(update={"disabled": disabled})}
        updated = config.with_servers(servers)
        await self._write_config(updated)
        await self._reconcile(updated)

    async def _restart_connection(self, name: str) -> None:
        name = _validate_name(name)
        record = self._records.get(name)
        if record is None:
            raise MCPValidationError(MCP_ERROR_NO_CONNECTION.format(server=name))
        if record.disabled:
            raise MCPValidationError(f'Server "{name}" is disabled and cannot be restarted')

        config = record.stored_config()
        logger.info("Restarting MCP server: %s", name)
        await self._replace_connection(record, config)

    async def _delete_server(self, name: str) -> None:
        name = _validate_name(name)
        config = await self._read_config()
        if name not in config.mcp_servers:
            raise MCPValidationError(MCP_ERROR_SERVER_NOT_FOUND.format(server=name))

        servers = {key: value for key, value in config.mcp_servers.items() if key != name}
        updated = config.with_servers(servers)
        await self._write_config(updated)
        await self._reconcile(updated)

    async def _disconnect_all(self) -> None:
        records, self._records = self._records, {}
        sessions = [(record.name, record.session) for record in records.values() if record.session is not None]
        if not sessions:
            return
        logger.info("Disconnecting %d MCP server(s) for user %s", len(sessions), self.user_id)
        results = await asyncio.gather(*(session.close() for _, session in sessions), return_exceptions=True)
        for (name, _), result in zip(sessions, results, strict=True):
            if isinstance(result, Exception):
                logger.error("Failed to close transport for %s: %s", name, result)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _read_config(self) -> McpServersConfig:
        try:
            return await self.store.read(self.user_id)
        except MCPError:
            raise
        except Exception as exc:
            raise MCPConfigurationError(f"Failed to read MCP config for user {self.user_id}: {exc}") from exc

    async def _write_config(self, config: McpServersConfig) -> None:
        try:
            await self.store.write(self.user_id, config)
        except MCPError:
            raise
        except Exception as exc:
            raise MCPConfigurationError(f"Failed to write MCP config for user {self.user_id}: {exc}") from exc

    async def _reconcile(self, config: McpServersConfig) -> None:
        """Apply every planned action; the first new-server failure is raised at the end."""
        first_error: Exception | None = None
        for action in plan_reconciliation(self._records, config.mcp_servers):
            try:
                await self._apply_action(action)
            except Exception as exc:  # noqa: BLE001
                if action.propagates_errors:
                    logger.error("Failed to connect to new MCP server %s: %s", action.name, exc)
                    if first_error is None:
                        first_error = exc
                else:
                    logger.error("Failed to %s MCP server %s: %s", action.kind.value, action.name, exc)
        if first_error is not None:
            raise first_error

    async def _apply_action(self, action: ReconcileAction) -> None:
        name, config = action.name, action.config
        if action.kind is ActionKind.REMOVE:
            record = self._records.pop(name, None)
            if record is not None:
                await self._close_quietly(name, record.session)
            logger.info(MCP_LOG_REMOVED.format(server=name))
            return

        assert config is not None
        if action.kind is ActionKind.ADD_DISABLED:
            self._records[name] = ConnectionRecord(name=name, config=_serialize(config), disabled=True)
        elif action.kind is ActionKind.DISABLE:
            record = self._records[name]
            self._records[name] = ConnectionRecord(name=name, config=_serialize(config), disabled=True)
            await self._close_quietly(name, record.session)
            logger.info(MCP_LOG_DISABLED.format(server=name))
        elif action.kind is ActionKind.CONNECT:
            await self._connect(name, config)
        elif action.kind is ActionKind.ENABLE:
            await self._connect(name, config)
            logger.info(MCP_LOG_REENABLED.format(server=name))
        elif action.kind is ActionKind.RECONNECT:
            await self._replace_connection(self._records[name], config)
            logger.info(MCP_LOG_RECONNECTED.format(server=name))

    async def _replace_connection(
        self,
        record: ConnectionRecord,
        config: StdioServerConfig | SseServerConfig,
    ) -> None:
        # Keep the record visible as connecting while the old session closes
        self._records[record.name] = record.evolve(status=ServerStatus.CONNECTING, error="")
        await self._close_quietly(record.name, record.session)
        await self._connect(record.name, config)

    async def _connect(self, name: str, config: StdioServerConfig | SseServerConfig) -> None:
        session = self._transport_factory(name, config, self._post_event)
        record = ConnectionRecord(
            name=name,
            config=_serialize(config),
            status=ServerStatus.CONNECTING,
            session=session,
        )
        self._records[name] = record
        logger.info(MCP_LOG_CONNECTING.format(server=name, transport=session.kind))

        try:
            await session.connect()
        except Exception as exc:
            message = describe_error(exc)
            self._records[name] = record.evolve(status=ServerStatus.DISCONNECTED, error=message, session=None)
            await self._close_quietly(name, session)
            if isinstance(exc, MCPTransportError):
                raise
            raise MCPTransportError(message) from exc

        self._records[name] = record.evolve(status=ServerStatus.CONNECTED)
        capabilities = await self._fetcher.fetch(session, config)
        self._records[name] = self._records[name].evolve(
            tools=capabilities.tools,
            resources=capabilities.resources,
            resource_templates=capabilities.resource_templates,
        )
        logger.info(
            MCP_LOG_CONNECTED.format(
                server=name, tools=len(capabilities.tools), resources=len(capabilities.resources)
            )
        )

    async def _close_quietly(self, name: str, session: TransportSession | None) -> None:
        if session is None:
            return
        try:
            await session.close()
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to close transport for %s: %s", name, exc)
