"""Connection records and capability descriptors."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from mcphub.config.schema import SseServerConfig, StdioServerConfig, parse_server_config
from mcphub.constants import MCP_DEFAULT_TOOL_CALL_TIMEOUT, MCP_MAX_DIAGNOSTIC_LINES
from mcphub.exceptions import MCPValidationError

if TYPE_CHECKING:
    from mcphub.transport.base import TransportSession


class ServerStatus(str, Enum):
    """Connection status of a server."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class _Descriptor(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class McpTool(_Descriptor):
    """A tool advertised by a server."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] | None = Field(default=None, alias="inputSchema")
    auto_approve: bool = Field(default=False, alias="autoApprove")


class McpResource(_Descriptor):
    """A resource advertised by a server."""

    uri: str
    name: str
    mime_type: str | None = Field(default=None, alias="mimeType")
    description: str | None = None


class McpResourceTemplate(_Descriptor):
    """A resource template advertised by a server."""

    uri_template: str = Field(alias="uriTemplate")
    name: str
    mime_type: str | None = Field(default=None, alias="mimeType")
    description: str | None = None


@dataclass(frozen=True)
class ConnectionRecord:
    """Bookkeeping for one named server.

    Records are immutable; every change produces a new record via
    :meth:`evolve` so readers always see a consistent snapshot. A disabled
    record never holds a session.
    """

    name: str
    config: str
    status: ServerStatus = ServerStatus.DISCONNECTED
    disabled: bool = False
    session: TransportSession | None = field(default=None, repr=False, compare=False)
    error: str = ""
    tools: tuple[McpTool, ...] = ()
    resources: tuple[McpResource, ...] = ()
    resource_templates: tuple[McpResourceTemplate, ...] = ()
    diagnostics: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.disabled and self.session is not None:
            raise ValueError(f"Disabled server '{self.name}' cannot hold a transport session")

    def evolve(self, **changes: Any) -> ConnectionRecord:
        """Return a copy of this record with *changes* applied."""
        return replace(self, **changes)

    def with_diagnostic(self, line: str) -> ConnectionRecord:
        """Return a copy with *line* appended to the bounded diagnostics."""
        lines = (*self.diagnostics, line)[-MCP_MAX_DIAGNOSTIC_LINES:]
        return replace(self, diagnostics=lines)

    def stored_config(self) -> StdioServerConfig | SseServerConfig:
        """Parse the configuration this record was connected with.

        Raises:
            MCPValidationError: If the stored JSON is not a valid server config
        """
        try:
            data = json.loads(self.config)
        except ValueError as exc:
            raise MCPValidationError(f"Stored config for server '{self.name}' is not valid JSON: {exc}") from exc
        return parse_server_config(data)

    @property
    def timeout(self) -> float:
        """Configured call timeout, or the default when the config is unreadable."""
        try:
            return self.stored_config().timeout
        except MCPValidationError:
            return MCP_DEFAULT_TOOL_CALL_TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON representation used by the HTTP surface."""
        return {
            "name": self.name,
            "config": self.config,
            "status": self.status.value,
            "error": self.error,
            "disabled": self.disabled,
            "timeout": self.timeout,
            "tools": [tool.to_dict() for tool in self.tools],
            "resources": [resource.to_dict() for resource in self.resources],
            "resourceTemplates": [template.to_dict() for template in self.resource_templates],
            "diagnostics": list(self.diagnostics),
        }
