"""Server configuration models.

Desired server state is a tagged union over the transport kind, validated
once when it crosses the configuration store boundary. The persisted shape is::

    {"mcpServers": {"<name>": {"transportType": "stdio" | "sse", ...}}}
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from mcphub.constants import MCP_DEFAULT_TOOL_CALL_TIMEOUT, MCP_MIN_TOOL_CALL_TIMEOUT
from mcphub.exceptions import MCPValidationError

_URL_ADAPTER = TypeAdapter(AnyUrl)


def is_valid_url(value: str) -> bool:
    """Return True if *value* parses as an absolute URL."""
    try:
        url = _URL_ADAPTER.validate_python(value)
    except ValidationError:
        return False
    return bool(url.scheme) and bool(url.host)


class _BaseServerConfig(BaseModel):
    """Fields shared by every transport kind."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    disabled: bool = False
    timeout: float = Field(default=MCP_DEFAULT_TOOL_CALL_TIMEOUT, ge=MCP_MIN_TOOL_CALL_TIMEOUT)
    auto_approve: list[str] = Field(default_factory=list, alias="autoApprove")

    def to_persisted(self) -> dict[str, Any]:
        """Return the camelCase dictionary stored in the configuration store."""
        return self.model_dump(mode="json", by_alias=True)


class StdioServerConfig(_BaseServerConfig):
    """A local server launched as a subprocess."""

    transport_type: Literal["stdio"] = Field(default="stdio", alias="transportType")
    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Command cannot be empty")
        return v


class SseServerConfig(_BaseServerConfig):
    """A remote server reached over HTTP server-sent events."""

    transport_type: Literal["sse"] = Field(default="sse", alias="transportType")
    url: str

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not is_valid_url(v):
            raise ValueError(f"Invalid server URL: {v}")
        return v


def _transport_tag(value: Any) -> str | None:
    """Return the transport tag of raw or parsed config data.

    Entries written without ``transportType`` are inferred from their keys:
    a ``url`` means SSE, anything else is a subprocess.
    """
    if isinstance(value, dict):
        tag = value.get("transportType", value.get("transport_type"))
        if tag is None:
            return "sse" if "url" in value else "stdio"
        return tag
    return getattr(value, "transport_type", None)


ServerConfig = Annotated[
    Annotated[StdioServerConfig, Tag("stdio")] | Annotated[SseServerConfig, Tag("sse")],
    Discriminator(_transport_tag),
]

_SERVER_CONFIG_ADAPTER: TypeAdapter[StdioServerConfig | SseServerConfig] = TypeAdapter(ServerConfig)


def parse_server_config(data: Any) -> StdioServerConfig | SseServerConfig:
    """Validate *data* as a server configuration.

    Raises:
        MCPValidationError: If the data does not describe a valid server
    """
    try:
        return _SERVER_CONFIG_ADAPTER.validate_python(data)
    except ValidationError as exc:
        raise MCPValidationError(f"Invalid server configuration: {exc}") from exc


class McpServersConfig(BaseModel):
    """The per-user record of desired server configurations."""

    model_config = ConfigDict(populate_by_name=True)

    mcp_servers: dict[str, ServerConfig] = Field(default_factory=dict, alias="mcpServers")

    @field_validator("mcp_servers")
    @classmethod
    def validate_names(cls, v: dict[str, Any]) -> dict[str, Any]:
        for name in v:
            if not name or not name.strip():
                raise ValueError("Server name cannot be empty")
        return v

    @classmethod
    def from_persisted(cls, data: dict[str, Any] | None) -> McpServersConfig:
        """Validate stored data, treating a missing record as empty."""
        try:
            return cls.model_validate(data or {})
        except ValidationError as exc:
            raise MCPValidationError(f"Invalid MCP server configuration: {exc}") from exc

    def to_persisted(self) -> dict[str, Any]:
        return {"mcpServers": {name: config.to_persisted() for name, config in self.mcp_servers.items()}}

    def with_servers(self, servers: dict[str, StdioServerConfig | SseServerConfig]) -> McpServersConfig:
        """Return a new configuration holding *servers*."""
        return McpServersConfig(mcp_servers=servers)
