"""Minimal MCP server used by the stdio integration tests."""

import sys

from mcp.server.fastmcp import FastMCP

mcp = FastMCP("echo")


@mcp.tool()
def echo(text: str) -> str:
    """Return the given text."""
    return text


@mcp.tool()
def fail(reason: str) -> str:
    """Raise an error with the given reason."""
    raise ValueError(reason)


@mcp.resource("memo://greeting")
def greeting() -> str:
    """A fixed greeting."""
    return "hello"


if __name__ == "__main__":
    print("echo server starting", file=sys.stderr, flush=True)
    print("Error: simulated startup warning", file=sys.stderr, flush=True)
    mcp.run(transport="stdio")
