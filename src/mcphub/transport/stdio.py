"""Subprocess transport speaking MCP over stdin/stdout."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, BinaryIO

from mcp.client.stdio import StdioServerParameters, get_default_environment, stdio_client

from mcphub.config.schema import StdioServerConfig
from mcphub.constants import MCP_CONNECT_TIMEOUT
from mcphub.transport.base import DiagnosticOutput, EventSink, TransportSession
from mcphub.transport.stderr import StderrClassifier, default_classifier

logger = logging.getLogger(__name__)

# Maximum length of a single stderr line
_STDERR_LINE_LIMIT = 1024 * 1024


class StdioTransportSession(TransportSession):
    """Launch the server as a subprocess and drain its stderr separately.

    Stderr is captured through an OS pipe handed to the SDK as ``errlog`` and
    read asynchronously, so a chatty server never blocks on a full pipe.
    Lines matching the classifier are logged as errors and reported as
    :class:`DiagnosticOutput`; they do not close the connection.
    """

    kind = "stdio"

    def __init__(
        self,
        name: str,
        config: StdioServerConfig,
        on_event: EventSink | None = None,
        classifier: StderrClassifier | None = None,
        connect_timeout: float = MCP_CONNECT_TIMEOUT,
    ) -> None:
        super().__init__(name, on_event, connect_timeout)
        self.config = config
        self.classifier = classifier or default_classifier

    def server_parameters(self) -> StdioServerParameters:
        """Return launch parameters; the caller's PATH overrides configured env."""
        env = {**get_default_environment(), **self.config.env}
        if os.environ.get("PATH"):
            env["PATH"] = os.environ["PATH"]
        return StdioServerParameters(command=self.config.command, args=list(self.config.args), env=env)

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[tuple[Any, ...]]:
        read_fd, write_fd = os.pipe()
        errlog = os.fdopen(write_fd, "w", encoding="utf-8")
        stderr_pipe = os.fdopen(read_fd, "rb", buffering=0)
        drain_task: asyncio.Task | None = None
        logger.info("Creating stdio transport for: %s", self.name)
        try:
            async with stdio_client(self.server_parameters(), errlog=errlog) as streams:
                drain_task = asyncio.create_task(self._drain_stderr(stderr_pipe), name=f"mcp-stderr-{self.name}")
                yield streams
        finally:
            errlog.close()
            if drain_task is None:
                stderr_pipe.close()
            else:
                drain_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await drain_task

    async def _drain_stderr(self, pipe: BinaryIO) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=_STDERR_LINE_LIMIT)
        transport, _ = await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), pipe)
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip()
                if line:
                    self.handle_stderr_line(line)
        finally:
            transport.close()

    def handle_stderr_line(self, line: str) -> None:
        """Log one stderr line and report it if it looks like an error."""
        if self.classifier(line):
            logger.error('Server "%s" stderr: %s', self.name, line)
            self._emit(DiagnosticOutput(self.name, self, line))
        else:
            logger.info('Server "%s" info: %s', self.name, line)
