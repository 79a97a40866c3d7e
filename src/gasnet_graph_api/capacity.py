import logging
from enum import Enum
from typing import Any, Dict, Optional, Union

from .executor import GraphExecutor
from .querybuilder import CypherQuery, Eq
from .temporal import parse_flow_date

logger = logging.getLogger("gasnet_graph_api")


class QuantityType(str, Enum):
    RPQ = "RPQ"
    DPQ = "DPQ"


def _percent(numerator: Any, denominator: Any) -> Optional[float]:
    if numerator is None or denominator is None or denominator == 0:
        return None
    return 100 * numerator / denominator


def with_percentages(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of an OAC record with available and utilization percentages."""
    operating = record.get("operatingCapacity")
    enriched = dict(record)
    enriched["availablePercent"] = _percent(
        record.get("operationallyAvailableCapacity"), operating
    )
    enriched["utilizationPercent"] = _percent(record.get("totalSchedQty"), operating)
    return enriched


def _empty() -> Dict[str, Any]:
    return {"records": [], "availablePercent": None, "utilizationPercent": None}


class CapacityAggregator:
    """Operationally available capacity snapshots for one location and gas day."""

    def __init__(self, executor: GraphExecutor) -> None:
        self.executor = executor

    async def capacity_at(
        self,
        pipeline_code: str,
        location: Union[str, int, None],
        quantity_type: Union[QuantityType, str],
        flow_date: str,
        limit: int = 10,
        by_id: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Latest-first OAC records for a location, quantity type and flow date.

        ``location`` is a location id (all digits) or a location name;
        ``by_id`` overrides that guess when the caller knows which it is.
        The top-level percentages describe the most recent snapshot.
        """
        if location is None or location == "":
            return _empty()

        quantity_type = QuantityType(quantity_type).value
        flow_date = parse_flow_date(flow_date).isoformat()
        location = str(location)

        query = (
            CypherQuery()
            .match('(l:"Location")-[:"HAS_AVAILABLE_CAPACITY"]->(o:"OperationallyAvailableCapacity")')
            .where(Eq("o", "pipelineCode", pipeline_code))
            .where(
                Eq("l", "locationId", location)
                if (location.isdigit() if by_id is None else by_id)
                else Eq("l", "name", location)
            )
            .where(Eq("o", "locQTI", quantity_type))
            .where(Eq("o", "flowDate", flow_date))
            .order_by('o."postingDatetime" DESC')
            .limit(limit)
            .returns("properties(o) AS capacity")
        )
        text, params = query.render()
        rows = await self.executor.execute(text, params)

        records = [with_percentages(row["capacity"]) for row in rows]
        logger.debug(
            f"{len(records)} {quantity_type} capacity records for "
            f"{pipeline_code}/{location} on {flow_date}"
        )
        if not records:
            return _empty()
        latest = records[0]
        return {
            "records": records,
            "availablePercent": latest["availablePercent"],
            "utilizationPercent": latest["utilizationPercent"],
        }
