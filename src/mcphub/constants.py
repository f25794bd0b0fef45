"""Constants for the mcphub package.

This module defines timeouts and message templates used by the connection
manager and related components.
"""

# Timeout values (seconds)
MCP_DEFAULT_TOOL_CALL_TIMEOUT = 60.0
MCP_MIN_TOOL_CALL_TIMEOUT = 1.0
MCP_CAPABILITY_FETCH_TIMEOUT = 5.0
MCP_TRANSPORT_CLOSE_TIMEOUT = 5.0
MCP_CONNECT_TIMEOUT = 60.0

# Number of classified stderr error lines kept per server
MCP_MAX_DIAGNOSTIC_LINES = 20

# Number of queued stderr diagnostics a manager mailbox accepts before dropping
MCP_MAX_PENDING_DIAGNOSTICS = 100

# Default pattern for classifying server stderr output as an error
MCP_STDERR_ERROR_PATTERN = "error"

# Client identity announced during the MCP handshake
MCP_CLIENT_NAME = "mcphub"

# Log message constants
MCP_LOG_CONNECTING = "Connecting to MCP server '{server}' over {transport}"
MCP_LOG_CONNECTED = "Connected to MCP server '{server}' ({tools} tools, {resources} resources)"
MCP_LOG_RECONNECTED = "Reconnected MCP server with updated config: {server}"
MCP_LOG_REENABLED = "Re-enabled and connected MCP server: {server}"
MCP_LOG_DISABLED = "Disconnected disabled MCP server: {server}"
MCP_LOG_REMOVED = "Removed MCP server: {server}"

# Error message constants
MCP_ERROR_NO_CONNECTION = (
    "No connection found for server: {server}. "
    "Please make sure to use MCP servers available under 'Connected MCP Servers'."
)
MCP_ERROR_SERVER_DISABLED = 'Server "{server}" is disabled and cannot be used'
MCP_ERROR_SERVER_NOT_CONNECTED = 'Server "{server}" is not connected (status: {status})'
MCP_ERROR_DUPLICATE_SERVER = 'An MCP server with the name "{server}" already exists'
MCP_ERROR_INVALID_URL = "Invalid server URL: {url}. Please provide a valid URL."
MCP_ERROR_SERVER_NOT_FOUND = "{server} not found in MCP configuration"
MCP_ERROR_REQUEST_TIMEOUT = "Request '{method}' to MCP server '{server}' timed out after {timeout:.1f} seconds"
MCP_ERROR_CONNECTION_CLOSED = "Connection to MCP server '{server}' is closed"
MCP_ERROR_HANDSHAKE_TIMEOUT = "MCP server '{server}' timed out during handshake after {timeout:.1f} seconds"
