import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from psycopg.types.json import Jsonb

from .capacity import CapacityAggregator, QuantityType
from .enrichment import DEFAULT_CONCURRENCY, enrich
from .errors import ValidationError
from .executor import GraphExecutor
from .querybuilder import Eq, Params
from .temporal import format_instant, gas_day_window, parse_flow_date, parse_instant, window_overlaps

logger = logging.getLogger("gasnet_graph_api")

DEFAULT_MAX_HOPS_LIMIT = 100
MAX_HOPS_CEILING = 200


@dataclass(frozen=True)
class LocationRef:
    """
    A path endpoint given either by location id or by name.

    Client input is read as an id when it is all digits. Refs built from a
    stored node with `of_node` always match on the key they were taken from.
    """

    value: str
    pipeline_code: Optional[str] = None
    by_id: Optional[bool] = None

    @classmethod
    def parse(cls, value: Any, pipeline_code: Optional[str] = None) -> "LocationRef":
        if value is None or str(value).strip() == "":
            raise ValidationError("from and to are required query params")
        return cls(str(value).strip(), pipeline_code or None)

    @classmethod
    def of_node(cls, node: Dict[str, Any]) -> "LocationRef":
        pipeline_code = node.get("pipelineCode") or None
        if node.get("locationId") not in (None, ""):
            return cls(str(node["locationId"]), pipeline_code, by_id=True)
        return cls(str(node.get("name") or ""), pipeline_code, by_id=False)

    @property
    def is_id(self) -> bool:
        if self.by_id is not None:
            return self.by_id
        return self.value.isdigit()

    def predicates(self, variable: str) -> List[Eq]:
        key = "locationId" if self.is_id else "name"
        predicates = [Eq(variable, key, self.value)]
        if self.pipeline_code:
            predicates.append(Eq(variable, "pipelineCode", self.pipeline_code))
        return predicates


@dataclass
class PathResult:
    nodes: List[Dict[str, Any]]
    relationships: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"nodes": self.nodes, "edges": self.relationships}


def node_key(node: Dict[str, Any]) -> Tuple[Any, Any]:
    return node.get("pipelineCode"), node.get("locationId") or node.get("name")


class PathResolver:
    """
    Path finding over ``CONNECTS_TO`` edges between locations.

    Constraint presence is annotation only: it is looked up after the path
    is chosen and never influences routing.
    """

    def __init__(
        self,
        executor: GraphExecutor,
        capacity: Optional[CapacityAggregator] = None,
        max_hops_limit: int = DEFAULT_MAX_HOPS_LIMIT,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.executor = executor
        self.capacity = capacity or CapacityAggregator(executor)
        self.max_hops_limit = min(max(int(max_hops_limit), 1), MAX_HOPS_CEILING)
        self.concurrency = concurrency

    def hop_bound(self, max_hops: Optional[Any]) -> int:
        if max_hops is None or max_hops == "":
            return self.max_hops_limit
        try:
            hops = int(max_hops)
        except (TypeError, ValueError):
            raise ValidationError(f"maxHops must be a positive integer, got '{max_hops}'")
        if hops < 1:
            raise ValidationError(f"maxHops must be a positive integer, got '{max_hops}'")
        return min(hops, self.max_hops_limit)

    def _path_query(self, source: LocationRef, target: LocationRef, hops: int, function: str) -> Tuple[str, Dict[str, Any]]:
        params = Params()
        conditions = [p.render(params) for p in source.predicates("a") + target.predicates("b")]
        text = (
            'MATCH (a:"Location"), (b:"Location")\n'
            f"WHERE {' AND '.join(conditions)}\n"
            f'MATCH p = {function}((a)-[:"CONNECTS_TO"*..{hops}]->(b))\n'
            "RETURN [n IN nodes(p) | properties(n)] AS nodes,\n"
            "       [r IN relationships(p) | properties(r)] AS relationships"
        )
        return text, params.values

    async def _single_node(self, ref: LocationRef) -> Optional[PathResult]:
        params = Params()
        conditions = [p.render(params) for p in ref.predicates("a")]
        text = (
            'MATCH (a:"Location")\n'
            f"WHERE {' AND '.join(conditions)}\n"
            "RETURN properties(a) AS node\n"
            "LIMIT 1"
        )
        rows = await self.executor.execute(text, params.values)
        if not rows:
            return None
        return PathResult(nodes=[rows[0]["node"]], relationships=[])

    async def shortest_path(
        self, source: LocationRef, target: LocationRef, max_hops: Optional[Any] = None
    ) -> Optional[PathResult]:
        if source == target:
            return await self._single_node(source)
        text, params = self._path_query(source, target, self.hop_bound(max_hops), "shortestpath")
        rows = await self.executor.execute(text + "\nLIMIT 1", params)
        if not rows:
            return None
        return PathResult(nodes=rows[0]["nodes"], relationships=rows[0]["relationships"])

    async def all_shortest_paths(
        self, source: LocationRef, target: LocationRef, max_hops: Optional[Any] = None
    ) -> List[PathResult]:
        """Every minimal-length path; distinct paths may touch distinct constraints."""
        if source == target:
            single = await self._single_node(source)
            return [single] if single else []
        text, params = self._path_query(source, target, self.hop_bound(max_hops), "allshortestpaths")
        rows = await self.executor.execute(text, params)
        return [PathResult(nodes=row["nodes"], relationships=row["relationships"]) for row in rows]

    async def constraints_by_location(self, nodes: Iterable[Dict[str, Any]]) -> Dict[Tuple[Any, Any], List[Dict[str, Any]]]:
        """Constraints attached to each of ``nodes``, keyed by `node_key`."""
        nodes = list(nodes)
        ids = sorted({str(n["locationId"]) for n in nodes if n.get("locationId") is not None})
        names = sorted({n["name"] for n in nodes if n.get("locationId") is None and n.get("name")})
        if not ids and not names:
            return {}

        text = (
            'MATCH (l:"Location")-[:"HAS_CONSTRAINT"]->(c:"Constraint")\n'
            'WHERE l."locationId" <@ %(ids)s OR l."name" <@ %(names)s\n'
            'RETURN l."pipelineCode" AS "pipelineCode", l."locationId" AS "locationId",\n'
            '       l."name" AS name, properties(c) AS "constraint"'
        )
        rows = await self.executor.execute(text, {"ids": Jsonb(ids), "names": Jsonb(names)})

        constraints: Dict[Tuple[Any, Any], List[Dict[str, Any]]] = {}
        for row in rows:
            constraints.setdefault(node_key(row), []).append(row["constraint"])
        return constraints

    @staticmethod
    def active_constraints(
        constraints: List[Dict[str, Any]],
        query_start: datetime,
        query_end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        return [
            c
            for c in constraints
            if window_overlaps(c.get("effectiveDatetime"), c.get("endDatetime"), query_start, query_end)
        ]

    async def constrained_flags(
        self,
        nodes: List[Dict[str, Any]],
        query_start: datetime,
        query_end: Optional[datetime] = None,
    ) -> List[bool]:
        constraints = await self.constraints_by_location(nodes)
        return [
            bool(self.active_constraints(constraints.get(node_key(node), []), query_start, query_end))
            for node in nodes
        ]

    async def resolve_path(
        self,
        source: LocationRef,
        target: LocationRef,
        max_hops: Optional[Any] = None,
        at: Optional[Any] = None,
    ) -> Optional[PathResult]:
        """
        Shortest path from ``source`` to ``target``.

        With ``at``, each node carries ``constrained``: whether any attached
        constraint window covers that instant.
        """
        instant = parse_instant(at) if at is not None else None
        path = await self.shortest_path(source, target, max_hops)
        if path is None:
            logger.debug(f"No path from {source.value} to {target.value}")
            return None
        if instant is not None:
            flags = await self.constrained_flags(path.nodes, instant)
            path.nodes = [dict(node, constrained=flag) for node, flag in zip(path.nodes, flags)]
        return path

    async def path_details(
        self,
        source: LocationRef,
        target: LocationRef,
        max_hops: Optional[Any] = None,
        at: Optional[Any] = None,
        flow_date: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        The shortest path as segments, each with constraint flags for both
        ends and receipt/delivery capacity on the gas day.

        Constraint flags use the ``at`` instant when given, otherwise the
        whole gas day of ``flow_date``.
        """
        if at is None and flow_date is None:
            raise ValidationError("at or flowDate is required")

        if at is not None:
            query_start, query_end = parse_instant(at), None
        else:
            query_start, query_end = gas_day_window(flow_date)
        day = parse_flow_date(flow_date) if flow_date is not None else query_start.date()

        path = await self.shortest_path(source, target, max_hops)
        if path is None:
            return None

        flags = await self.constrained_flags(path.nodes, query_start, query_end)
        segments = [
            {
                "from": path.nodes[i],
                "to": path.nodes[i + 1],
                "relationship": path.relationships[i] if i < len(path.relationships) else None,
                "fromConstrained": flags[i],
                "toConstrained": flags[i + 1],
            }
            for i in range(len(path.nodes) - 1)
        ]

        async def capacity_pair(segment: Dict[str, Any]) -> Dict[str, Any]:
            src, dst = LocationRef.of_node(segment["from"]), LocationRef.of_node(segment["to"])
            from_capacity = await self.capacity.capacity_at(
                src.pipeline_code, src.value, QuantityType.RPQ, day.isoformat(), limit=1, by_id=src.is_id
            )
            to_capacity = await self.capacity.capacity_at(
                dst.pipeline_code, dst.value, QuantityType.DPQ, day.isoformat(), limit=1, by_id=dst.is_id
            )
            return {"fromCapacity": from_capacity, "toCapacity": to_capacity}

        for segment, pair in zip(segments, await enrich(segments, capacity_pair, self.concurrency)):
            segment.update(pair)

        return {
            "flowDate": day.isoformat(),
            "at": format_instant(at) if at is not None else None,
            "nodes": [dict(node, constrained=flag) for node, flag in zip(path.nodes, flags)],
            "segments": segments,
        }
