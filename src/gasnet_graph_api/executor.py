"""AgensGraph query execution on top of a psycopg async connection pool."""

import json
import logging
import re
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, NamedTuple, Optional, Pattern

import psycopg  # type: ignore
from psycopg import errors as pg_errors  # type: ignore
from psycopg.rows import namedtuple_row  # type: ignore
from psycopg_pool import AsyncConnectionPool  # type: ignore

from .errors import ConflictError, QueryExecutionError
from .normalize import normalize_row

logger = logging.getLogger("gasnet_graph_api")

# Regex patterns for parsing AgensGraph vertex and edge formats
VERTEX_REGEX: Pattern = re.compile(r"(\w+)\[(\d+\.\d+)\](\{.*\})")
EDGE_REGEX: Pattern = re.compile(r"(\w+)\[(\d+\.\d+)\]\[(\d+\.\d+),\s*(\d+\.\d+)\](\{.*\})")


class AccessMode(str, Enum):
    READ = "READ"
    WRITE = "WRITE"


def _record_to_dict(record: NamedTuple) -> Dict[str, Any]:
    """
    Convert an AgensGraph query record to a dictionary.

    Parses vertex and edge formats from AgensGraph:
    - Vertex: label[id]{properties}
    - Edge: label[id][start_id, end_id]{properties}

    Vertices become their property maps; edges become
    ``(start_properties, label, end_properties)`` triples when both ends
    are present in the same record.
    """
    result = {}
    vertices = {}

    # First pass: Build vertex mapping for edge construction
    for field_name in record._fields:
        value = getattr(record, field_name)
        if isinstance(value, str):
            vertex_match = VERTEX_REGEX.match(value)
            if vertex_match:
                _, vertex_id, properties = vertex_match.groups()
                vertices[str(vertex_id)] = json.loads(properties)

    # Second pass: Parse all fields
    for field_name in record._fields:
        value = getattr(record, field_name)

        if isinstance(value, str):
            vertex_match = VERTEX_REGEX.match(value)
            edge_match = EDGE_REGEX.match(value)

            if vertex_match:
                result[field_name] = json.loads(vertex_match.group(3))
            elif edge_match:
                label, _, start_id, end_id, _ = edge_match.groups()
                result[field_name] = (
                    vertices.get(start_id, {}),
                    label,
                    vertices.get(end_id, {}),
                )
            else:
                result[field_name] = value
        else:
            result[field_name] = value

    return result


class GraphSession:
    """A single pooled connection bound to one access mode."""

    def __init__(self, connection: psycopg.AsyncConnection, mode: AccessMode) -> None:
        self.connection = connection
        self.mode = mode

    async def run(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        async with self.connection.cursor(row_factory=namedtuple_row) as cursor:
            try:
                if params:
                    await cursor.execute(query, params)
                else:
                    await cursor.execute(query)

                # Query doesn't return data (e.g., CREATE, SET)
                if cursor.description is None:
                    return []
                data = await cursor.fetchall()
            except pg_errors.UniqueViolation as e:
                logger.warning(f"Uniqueness violation: {e}")
                raise ConflictError("Entity already exists", {"detail": str(e)})
            except psycopg.Error as e:
                logger.error(f"Database error executing query: {e}\n{query}\n{params}")
                raise QueryExecutionError("Graph query failed")

        rows = [normalize_row(_record_to_dict(record)) for record in data]
        logger.debug(f"{self.mode.value} query returned {len(rows)} rows")
        return rows


class GraphExecutor:
    """
    Executes Cypher against an AgensGraph graph.

    Each logical operation gets its own pooled connection, released on
    every exit path. READ sessions run in a read-only transaction with a
    statement timeout, so the database rejects writes regardless of the
    query text.
    """

    def __init__(
        self,
        pool: AsyncConnectionPool,
        graphname: str,
        read_timeout: Optional[float] = 30,
    ) -> None:
        self.pool = pool
        self.graphname = graphname
        self.read_timeout = read_timeout

    @asynccontextmanager
    async def session(self, mode: AccessMode = AccessMode.READ) -> AsyncIterator[GraphSession]:
        async with self.pool.connection() as conn:
            try:
                await conn.set_read_only(mode is AccessMode.READ)
                async with conn.cursor() as cursor:
                    if mode is AccessMode.READ and self.read_timeout:
                        timeout_ms = int(float(self.read_timeout) * 1000)
                        await cursor.execute(f"SET statement_timeout = {timeout_ms}")
                    else:
                        await cursor.execute("SET statement_timeout = 0")
                    await cursor.execute(f"SET graph_path = {self.graphname}")
            except psycopg.Error as e:
                logger.error(f"Database error preparing {mode.value} session: {e}")
                raise QueryExecutionError("Graph query failed")

            # pool.connection() commits on success and rolls back on error
            yield GraphSession(conn, mode)

    async def execute(
        self,
        query: str,
        params: Optional[Dict[str, Any]] = None,
        mode: AccessMode = AccessMode.READ,
    ) -> List[Dict[str, Any]]:
        async with self.session(mode) as session:
            return await session.run(query, params)

    async def ping(self) -> bool:
        rows = await self.execute("SELECT 1 AS ok")
        return bool(rows)

    async def ensure_graph(self) -> None:
        async with self.pool.connection() as conn:
            async with conn.cursor() as cursor:
                try:
                    await cursor.execute(f"CREATE GRAPH IF NOT EXISTS {self.graphname}")
                except psycopg.Error as e:
                    logger.error(f"Database error creating graph: {e}")
                    raise QueryExecutionError("Graph initialization failed")
        logger.info(f"Graph '{self.graphname}' ensured to exist")
