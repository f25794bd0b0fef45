"""Fetch tool and resource listings from a freshly connected server."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mcp import types

from mcphub.config.schema import SseServerConfig, StdioServerConfig
from mcphub.constants import MCP_CAPABILITY_FETCH_TIMEOUT
from mcphub.exceptions import MCPTransportError
from mcphub.records import McpResource, McpResourceTemplate, McpTool
from mcphub.transport.base import TransportSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServerCapabilities:
    tools: tuple[McpTool, ...] = ()
    resources: tuple[McpResource, ...] = ()
    resource_templates: tuple[McpResourceTemplate, ...] = ()


class CapabilityFetcher:
    """Issue the three list requests after connect.

    Each request runs under a short fixed timeout, independent of the
    server's tool-call timeout, and fails soft: a failing listing yields an
    empty list and the server stays connected.
    """

    def __init__(self, timeout: float = MCP_CAPABILITY_FETCH_TIMEOUT) -> None:
        self.timeout = timeout

    async def fetch(
        self,
        session: TransportSession,
        config: StdioServerConfig | SseServerConfig,
    ) -> ServerCapabilities:
        return ServerCapabilities(
            tools=await self.fetch_tools(session, config),
            resources=await self.fetch_resources(session),
            resource_templates=await self.fetch_resource_templates(session),
        )

    async def fetch_tools(
        self,
        session: TransportSession,
        config: StdioServerConfig | SseServerConfig,
    ) -> tuple[McpTool, ...]:
        try:
            result = await session.request("tools/list", None, types.ListToolsResult, self.timeout)
        except MCPTransportError as exc:
            logger.error("Failed to fetch tools for %s: %s", session.name, exc)
            return ()

        auto_approve = set(config.auto_approve)
        return tuple(
            McpTool(
                name=tool.name,
                description=tool.description,
                input_schema=tool.inputSchema,
                auto_approve=tool.name in auto_approve,
            )
            for tool in result.tools
        )

    async def fetch_resources(self, session: TransportSession) -> tuple[McpResource, ...]:
        try:
            result = await session.request("resources/list", None, types.ListResourcesResult, self.timeout)
        except MCPTransportError as exc:
            logger.debug("Failed to fetch resources for %s: %s", session.name, exc)
            return ()
        return tuple(
            McpResource(
                uri=str(resource.uri),
                name=resource.name,
                mime_type=resource.mimeType,
                description=resource.description,
            )
            for resource in result.resources
        )

    async def fetch_resource_templates(self, session: TransportSession) -> tuple[McpResourceTemplate, ...]:
        try:
            result = await session.request(
                "resources/templates/list", None, types.ListResourceTemplatesResult, self.timeout
            )
        except MCPTransportError as exc:
            logger.debug("Failed to fetch resource templates for %s: %s", session.name, exc)
            return ()
        return tuple(
            McpResourceTemplate(
                uri_template=template.uriTemplate,
                name=template.name,
                mime_type=template.mimeType,
                description=template.description,
            )
            for template in result.resourceTemplates
        )
