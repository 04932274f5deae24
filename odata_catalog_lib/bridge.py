"""
OData to MCP bridge that publishes a synthesized operation catalog as MCP tools.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional

from fastmcp import FastMCP
from fastmcp.tools import Tool
from fastmcp.tools.tool import ToolResult
import mcp.types as types
from pydantic import Field

from .catalog_cache import CatalogCache, CatalogLoader
from .config import BridgeConfig
from .errors import ODataCatalogError, ValidationError
from .executor import InvocationExecutor
from .models import Catalog, OperationDescriptor
from .session import describe_auth

SERVICE_INFO_TOOL = "odata_service_info"


class CatalogTool(Tool):
    """An MCP tool whose schema comes from an operation descriptor."""

    handler: Callable[[Dict[str, Any]], Awaitable[str]] = Field(exclude=True)

    async def run(self, arguments: Dict[str, Any]) -> ToolResult:
        text = await self.handler(arguments or {})
        return ToolResult(content=[types.TextContent(type="text", text=text)])


class ODataMCPBridge:
    """Bridge between OData and MCP, creating tools from the cached operation catalog."""

    def __init__(self, config: BridgeConfig):
        self.config = config
        self.service_url = config.service_url
        self.auth = config.auth
        self.verbose = config.verbose
        self.mcp = FastMCP(name=config.mcp_name)
        self.loader = CatalogLoader(config.profile, config.auth, verbose=config.verbose,
                                    timeout=config.request_timeout)
        self.cache = CatalogCache(self.loader, ttl_seconds=config.cache_ttl, verbose=config.verbose)
        self.executor = InvocationExecutor(
            config.auth,
            verbose=config.verbose,
            request_timeout=config.request_timeout,
            response_metadata=config.response_metadata,
        )
        self.registered_tools: Dict[str, OperationDescriptor] = {}
        self.service_info_registered = False
        self.cache.add_listener(self._sync_tools)

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Bridge VERBOSE] {message}", file=sys.stderr)

    # --- Tool registration ---

    def _make_tool(self, descriptor: OperationDescriptor) -> CatalogTool:
        return CatalogTool(
            name=descriptor.name,
            description=descriptor.description,
            parameters=descriptor.input_schema,
            handler=partial(self.invoke, descriptor.name),
        )

    def _sync_tools(self, identity: str, previous: Optional[Catalog], catalog: Catalog):
        """Cache listener: make the registered tools match the new catalog."""
        if identity != self.service_url:
            return
        current = {d.name: d for d in catalog.descriptors}
        for name in [n for n in self.registered_tools if n not in current]:
            self.mcp.remove_tool(name)
            del self.registered_tools[name]
            self._log_verbose(f"Removed tool: {name}")
        for name, descriptor in current.items():
            existing = self.registered_tools.get(name)
            if existing == descriptor:
                continue
            if existing is not None:
                self.mcp.remove_tool(name)
            self.mcp.add_tool(self._make_tool(descriptor))
            self.registered_tools[name] = descriptor
            self._log_verbose(f"Registered tool: {name}")
        if previous is not None:
            print(f"Catalog for {identity} refreshed: {len(self.registered_tools)} operation tools registered.",
                  file=sys.stderr)

    def _add_service_info_tool(self):
        if self.service_info_registered:
            return
        self.mcp.add_tool(CatalogTool(
            name=SERVICE_INFO_TOOL,
            description=("Provides metadata about the configured OData service, including available entity sets, "
                         "entity types, function imports, and registered tools."),
            parameters={"type": "object", "properties": {}, "additionalProperties": False},
            handler=self._service_info_handler,
        ))
        self.service_info_registered = True
        self._log_verbose(f"Registered tool: {SERVICE_INFO_TOOL}")

    async def initialize(self) -> Catalog:
        """Load the catalog and register one tool per operation. Raises if the first load fails."""
        self._log_verbose(f"Loading operation catalog for {self.service_url}...")
        catalog = await self.cache.get_catalog(self.service_url)
        self._add_service_info_tool()
        self._log_verbose(f"{len(catalog.descriptors)} operation tools registered.")
        return catalog

    @property
    def tool_names(self):
        names = list(self.registered_tools)
        if self.service_info_registered:
            names.append(SERVICE_INFO_TOOL)
        return names

    # --- Tool implementations ---

    async def invoke(self, name: str, arguments: Optional[Dict[str, Any]] = None,
                     cancel_event: Optional[asyncio.Event] = None) -> str:
        """Execute a catalog operation and return its JSON result, or a JSON error object."""
        try:
            catalog = await self.cache.get_catalog(self.service_url)
            descriptor = catalog.get(name)
            if descriptor is None:
                raise ValidationError(f"Unknown operation '{name}'")
            result = await self.executor.execute(
                descriptor,
                arguments or {},
                self.service_url,
                catalog.model,
                cancel_event=cancel_event,
            )
            return result.to_json()
        except ODataCatalogError as e:
            print(f"ERROR: Tool '{name}' failed: {e}", file=sys.stderr)
            return json.dumps({"error": e.to_dict()}, indent=2, default=str)

    async def _service_info_handler(self, arguments: Dict[str, Any]) -> str:
        return await self.service_info()

    async def service_info(self) -> str:
        catalog = await self.cache.get_catalog(self.service_url)
        model = catalog.model

        entity_set_details = {}
        singleton_details = {}
        function_import_details = {}
        for container in model.containers.values():
            for name, es in container.entity_sets.items():
                et = model.get_entity_type(es.entity_type)
                entity_set_details[name] = {
                    "entity_type": es.entity_type,
                    "description": es.description or (et.description if et else None) or "No description",
                }
            for name, singleton in container.singletons.items():
                singleton_details[name] = {"entity_type": singleton.entity_type}
            for name, fi in container.function_imports.items():
                function_import_details[name] = {
                    "description": fi.description or "No description",
                    "http_method": fi.http_method,
                    "return_type": fi.return_type or "Not specified",
                    "parameters": [
                        {"name": p.name, "type": p.type, "nullable": p.nullable} for p in fi.parameters
                    ],
                }
            for name, ai in container.action_imports.items():
                function_import_details[name] = {"action": ai.action, "http_method": "POST"}

        entity_type_details = {}
        for full_name, et in model.entity_types.items():
            entity_type_details[full_name] = {
                "description": et.description or "No description",
                "key_properties": list(model.key_names_of(et)),
                "properties": [
                    {
                        "name": p.name,
                        "type": p.type,
                        "is_key": p.is_key,
                        "nullable": p.nullable,
                        "description": p.description or "No description",
                    } for p in model.properties_of(et)
                ],
                "navigation_properties": [
                    {"name": n.name, "type": n.type} for n in model.navigation_properties_of(et)
                ],
            }

        info = {
            "service_url": self.service_url,
            "odata_version": model.version,
            "authentication": describe_auth(self.auth),
            "service_description": model.service_description or "No description provided in metadata.",
            "catalog_synthesized_at": datetime.fromtimestamp(catalog.synthesized_at, tz=timezone.utc).isoformat(),
            "entity_sets": entity_set_details,
            "singletons": singleton_details,
            "entity_types": entity_type_details,
            "function_imports": function_import_details,
            "registered_tools": {d.name: d.kind.value for d in catalog.descriptors},
        }
        return json.dumps(info, indent=2, default=str)

    # --- Serving ---

    async def serve(self):
        await self.initialize()
        self.cache.start()
        try:
            if self.config.transport == "stdio":
                self._log_verbose("Using stdio transport")
                await self.mcp.run_async(transport="stdio")
            else:
                self._log_verbose(f"Starting {self.config.transport} transport on "
                                  f"{self.config.http_host}:{self.config.http_port}")
                await self.mcp.run_async(
                    transport=self.config.transport,
                    host=self.config.http_host,
                    port=self.config.http_port,
                )
        finally:
            await self.cache.stop()

    def run(self):
        """Run the MCP server."""
        self._log_verbose(f"Starting OData MCP bridge for service: {self.service_url}")
        self._log_verbose(f"MCP Server Name: {self.mcp.name}")
        asyncio.run(self.serve())
