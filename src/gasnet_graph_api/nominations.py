"""Which nominations are routed through constrained locations on their gas day."""

import logging
from typing import Any, Dict, List, Optional

from .enrichment import DEFAULT_CONCURRENCY, enrich
from .executor import GraphExecutor
from .paths import LocationRef, PathResolver, node_key
from .querybuilder import CypherQuery, Eq, Lt
from .temporal import gas_day_window, parse_flow_date

logger = logging.getLogger("gasnet_graph_api")

NOMINATION_PATTERN = '(r:"Location")-[n:"NOMINATED"]->(d:"Location")'
NOMINATION_RETURNS = (
    "properties(n) AS nomination",
    "properties(r) AS receipt",
    "properties(d) AS delivery",
)


def _nomination_view(row: Dict[str, Any]) -> Dict[str, Any]:
    nomination, receipt, delivery = row["nomination"], row["receipt"], row["delivery"]
    return {
        "nomId": nomination.get("nomId"),
        "pipelineCode": nomination.get("pipelineCode"),
        "contractId": nomination.get("contractId"),
        "flowDate": nomination.get("flowDate"),
        "cycle": nomination.get("cycle"),
        "receiptLocation": receipt.get("name"),
        "receiptVolume": nomination.get("receiptVolume"),
        "fuelLoss": nomination.get("fuelLoss"),
        "deliveryLocation": delivery.get("name"),
        "deliveryVolume": nomination.get("deliveryVolume"),
    }


def _impact(location: Dict[str, Any], constraint: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "locationName": location.get("name"),
        "locationPipeline": location.get("pipelineCode"),
        "constraintKind": constraint.get("kind"),
        "constraintStart": constraint.get("effectiveDatetime"),
        "constraintEnd": constraint.get("endDatetime"),
        "constraintPercent": constraint.get("percent"),
    }


def _distinct_nodes(paths) -> List[Dict[str, Any]]:
    seen = set()
    nodes = []
    for path in paths:
        for node in path.nodes:
            key = node_key(node)
            if key not in seen:
                seen.add(key)
                nodes.append(node)
    return nodes


class NominationImpact:
    def __init__(
        self,
        executor: GraphExecutor,
        resolver: PathResolver,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        self.executor = executor
        self.resolver = resolver
        self.concurrency = concurrency

    async def _nominations(self, query: CypherQuery) -> List[Dict[str, Any]]:
        text, params = query.returns(*NOMINATION_RETURNS).render()
        return await self.executor.execute(text, params)

    async def _impacted_locations(self, row: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Constraints overlapping the nomination's gas day on any all-shortest path."""
        day_start, day_end = gas_day_window(row["nomination"]["flowDate"])
        paths = await self.resolver.all_shortest_paths(
            LocationRef.of_node(row["receipt"]), LocationRef.of_node(row["delivery"])
        )
        nodes = _distinct_nodes(paths)
        constraints = await self.resolver.constraints_by_location(nodes)

        impacted = []
        for node in nodes:
            for constraint in self.resolver.active_constraints(
                constraints.get(node_key(node), []), day_start, day_end
            ):
                impacted.append(_impact(node, constraint))
        return impacted

    async def _with_impacts(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        impacts = await enrich(rows, self._impacted_locations, self.concurrency)
        return [
            dict(_nomination_view(row), impactedLocations=impacted)
            for row, impacted in zip(rows, impacts)
        ]

    async def nominations_for_day(self, pipeline_code: str, flow_date: str) -> List[Dict[str, Any]]:
        """Every nomination on a pipeline for a gas day, with its impacted locations."""
        day = parse_flow_date(flow_date).isoformat()
        query = (
            CypherQuery()
            .match(NOMINATION_PATTERN)
            .where(Eq("n", "pipelineCode", pipeline_code))
            .where(Eq("n", "flowDate", day))
            .order_by('n."pipelineCode"', 'n."nomId"')
        )
        return await self._with_impacts(await self._nominations(query))

    async def constrained_nominations(self, flow_date: str) -> List[Dict[str, Any]]:
        """Nominations across all pipelines that cross at least one active constraint."""
        day = parse_flow_date(flow_date).isoformat()
        query = (
            CypherQuery()
            .match(NOMINATION_PATTERN)
            .where(Eq("n", "flowDate", day))
            .order_by('n."nomId"')
        )
        nominations = await self._with_impacts(await self._nominations(query))
        constrained = [n for n in nominations if n["impactedLocations"]]
        logger.info(f"{len(constrained)} of {len(nominations)} nominations constrained on {day}")
        return constrained

    async def constrained_nominations_at(
        self,
        location_name: str,
        before_date: str,
        pipeline_code: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Nominations before ``before_date`` routed through ``location_name``
        on a gas day when that location carried a constraint.
        """
        before = parse_flow_date(before_date).isoformat()

        text, params = (
            CypherQuery()
            .match('(t:"Location")')
            .where(Eq("t", "name", location_name))
            .returns("properties(t) AS location")
            .render()
        )
        target_nodes = [row["location"] for row in await self.executor.execute(text, params)]
        if not target_nodes:
            return []
        target_keys = {node_key(node) for node in target_nodes}
        target_constraints = await self.resolver.constraints_by_location(target_nodes)
        if not target_constraints:
            return []

        query = (
            CypherQuery()
            .match(NOMINATION_PATTERN)
            .where(Lt("n", "flowDate", before))
            .where_if(pipeline_code, Eq("n", "pipelineCode", pipeline_code))
        )
        rows = await self._nominations(query)

        async def hits(row: Dict[str, Any]) -> list:
            paths = await self.resolver.all_shortest_paths(
                LocationRef.of_node(row["receipt"]), LocationRef.of_node(row["delivery"])
            )
            crossed = [
                node
                for node in _distinct_nodes(paths)
                if node_key(node) in target_keys
            ]
            if not crossed:
                return []
            day_start, day_end = gas_day_window(row["nomination"]["flowDate"])
            return [
                (node, constraint)
                for node in crossed
                for constraint in self.resolver.active_constraints(
                    target_constraints.get(node_key(node), []), day_start, day_end
                )
            ]

        results = []
        for row, matched in zip(rows, await enrich(rows, hits, self.concurrency)):
            for node, constraint in matched:
                view = _nomination_view(row)
                view.update(
                    constrainedLocation=node.get("name"),
                    constraintKind=constraint.get("kind"),
                    percentConstrained=constraint.get("percent"),
                    constraintStart=constraint.get("effectiveDatetime"),
                    constraintEnd=constraint.get("endDatetime"),
                )
                results.append(view)

        # flowDate DESC, pipelineCode ASC, contractId ASC, cycle DESC
        results.sort(key=lambda r: str(r.get("cycle") or ""), reverse=True)
        results.sort(key=lambda r: (str(r.get("pipelineCode") or ""), str(r.get("contractId") or "")))
        results.sort(key=lambda r: str(r.get("flowDate") or ""), reverse=True)
        return results
