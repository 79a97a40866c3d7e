"""Agent-facing tools over the gas network graph."""

import json
import logging
from typing import Any, Dict, Optional

from fastmcp.exceptions import ToolError
from fastmcp.server import FastMCP
from fastmcp.tools.tool import TextContent, ToolResult
from mcp.types import ToolAnnotations
from psycopg.types.json import Jsonb
from pydantic import Field

from .capacity import CapacityAggregator, QuantityType
from .errors import GasNetError
from .executor import GraphExecutor
from .paths import LocationRef, PathResolver
from .settings import Settings
from .utils import _quote_identifiers, _truncate_string_to_tokens, _value_sanitize
from .validators import check_read_only_query

logger = logging.getLogger("gasnet_graph_api")

READ_ONLY = ToolAnnotations(
    readOnlyHint=True,
    destructiveHint=False,
    idempotentHint=True,
    openWorldHint=True,
)


def _format_namespace(namespace: str) -> str:
    """Format namespace with trailing dash if not empty."""
    if not namespace:
        return ""
    return namespace if namespace.endswith("-") else f"{namespace}-"


def _json_result(payload: Any, token_limit: Optional[int] = None) -> ToolResult:
    text = json.dumps(payload, default=str)
    if token_limit:
        text = _truncate_string_to_tokens(text, token_limit)
    return ToolResult(content=[TextContent(type="text", text=text)])


def create_mcp_server(
    executor: GraphExecutor,
    settings: Optional[Settings] = None,
    resolver: Optional[PathResolver] = None,
    capacity: Optional[CapacityAggregator] = None,
) -> FastMCP:
    """
    Create and configure the FastMCP server with gas network tools.

    Args:
        executor: Graph executor shared by every tool
        settings: Namespace, token limit, hop bound and concurrency
        resolver: Optional path resolver, built from ``executor`` when omitted
        capacity: Optional capacity aggregator, built from ``executor`` when omitted

    Returns:
        Configured FastMCP server instance
    """
    settings = settings or Settings()
    capacity = capacity or CapacityAggregator(executor)
    resolver = resolver or PathResolver(
        executor,
        capacity=capacity,
        max_hops_limit=settings.max_hops,
        concurrency=settings.enrich_concurrency,
    )

    mcp = FastMCP("gasnet-graph-api")
    namespace_prefix = _format_namespace(settings.namespace)
    token_limit = settings.token_limit

    @mcp.tool(
        name=namespace_prefix + "read_gas_network_cypher",
        annotations=READ_ONLY.model_copy(update={"title": "Read Gas Network Cypher"}),
    )
    async def read_gas_network_cypher(
        query: str = Field(..., description="The read-only Cypher query to execute."),
        params: Optional[Dict[str, Any]] = Field(
            None, description="Parameters referenced as %(name)s in the query."
        ),
    ) -> ToolResult:
        """
        Execute a read-only Cypher query against the gas network graph.

        Labels include Pipeline, Location, Constraint, Notice,
        OperationallyAvailableCapacity and TransportationContract; locations
        are linked by CONNECTS_TO. Write keywords are rejected.
        """
        try:
            check_read_only_query(query)
            results = await executor.execute(
                _quote_identifiers(query),
                {key: Jsonb(value) for key, value in (params or {}).items()},
            )
        except GasNetError as e:
            logger.error(f"Error executing read query: {e.message}\n{query}\n{params}")
            raise ToolError(f"Error: {e.message}")

        logger.debug(f"Read query returned {len(results)} rows")
        return _json_result([_value_sanitize(row) for row in results], token_limit)

    @mcp.tool(
        name=namespace_prefix + "find_network_path",
        annotations=READ_ONLY.model_copy(update={"title": "Find Network Path"}),
    )
    async def find_network_path(
        from_location: str = Field(..., description="Start location id (digits) or name."),
        to_location: str = Field(..., description="End location id (digits) or name."),
        max_hops: Optional[int] = Field(None, description="Maximum number of CONNECTS_TO hops."),
        at: Optional[str] = Field(
            None, description="ISO instant; when given each node reports whether it is constrained."
        ),
        pipeline_code: Optional[str] = Field(None, description="Restrict both ends to one pipeline."),
    ) -> ToolResult:
        """Find the shortest path between two locations over CONNECTS_TO edges."""
        try:
            path = await resolver.resolve_path(
                LocationRef.parse(from_location, pipeline_code),
                LocationRef.parse(to_location, pipeline_code),
                max_hops=max_hops,
                at=at,
            )
        except GasNetError as e:
            raise ToolError(f"Error: {e.message}")

        if path is None:
            raise ToolError(f"No path found from {from_location} to {to_location}")
        return _json_result(path.to_dict(), token_limit)

    @mcp.tool(
        name=namespace_prefix + "get_location_capacity",
        annotations=READ_ONLY.model_copy(update={"title": "Get Location Capacity"}),
    )
    async def get_location_capacity(
        pipeline_code: str = Field(..., description="Pipeline code, e.g. ANR."),
        location: str = Field(..., description="Location id (digits) or name."),
        flow_date: str = Field(..., description="Gas day as YYYY-MM-DD."),
        quantity_type: QuantityType = Field(
            QuantityType.RPQ, description="RPQ (receipt) or DPQ (delivery)."
        ),
        limit: int = Field(10, description="Maximum number of snapshots, newest first."),
    ) -> ToolResult:
        """
        Operationally available capacity snapshots for a location and gas day,
        with available and utilization percentages of the newest snapshot.
        """
        try:
            result = await capacity.capacity_at(pipeline_code, location, quantity_type, flow_date, limit=limit)
        except GasNetError as e:
            raise ToolError(f"Error: {e.message}")
        return _json_result(result, token_limit)

    return mcp
