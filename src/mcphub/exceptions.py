"""Exceptions raised by mcphub.

Validation errors are raised before any state changes. Transport errors are
recorded on the affected connection. Configuration errors come from the
configuration store. Invocation errors wrap tool-call failures and keep the
underlying message text unchanged.
"""


class MCPError(Exception):
    """Base class for mcphub errors."""


class MCPValidationError(MCPError):
    """Raised when a server name, URL or configuration entry is invalid."""


class MCPTransportError(MCPError):
    """Raised when a transport fails to connect, answer a request or close."""


class MCPConfigurationError(MCPError):
    """Raised when the configuration store cannot be read or written."""


class MCPInvocationError(MCPError):
    """Raised when a tool call on a connected server fails."""


class MCPServerUnavailableError(MCPError):
    """Raised when a tool call targets a missing, disabled or disconnected server."""
