import logging
from typing import Any, Dict, List, Optional, Set

from .errors import ValidationError
from .executor import GraphExecutor
from .querybuilder import CypherQuery, Eq, Gte, Lte, Overlaps
from .temporal import gas_day_window, parse_flow_date

logger = logging.getLogger("gasnet_graph_api")


class NetworkRepository:
    """Reference data and time-series reads for the pipeline network."""

    def __init__(self, executor: GraphExecutor) -> None:
        self.executor = executor

    async def _run(self, query: CypherQuery) -> List[Dict[str, Any]]:
        text, params = query.render()
        return await self.executor.execute(text, params)

    async def list_pipelines(self) -> List[Dict[str, Any]]:
        query = (
            CypherQuery()
            .match('(p:"Pipeline")')
            .order_by('p."name"')
            .returns(
                'p."code" AS code',
                'p."name" AS name',
                'p."operator" AS operator',
                'p."tspId" AS "tspId"',
            )
        )
        return await self._run(query)

    async def list_locations(self, pipeline_code: str, skip: int, limit: int) -> List[Dict[str, Any]]:
        query = (
            CypherQuery()
            .match('(l:"Location")')
            .where(Eq("l", "pipelineCode", pipeline_code))
            .order_by('l."locationId"')
            .skip(skip)
            .limit(limit)
            .returns("properties(l) AS location")
        )
        return [row["location"] for row in await self._run(query)]

    async def list_segments(self, pipeline_code: str, skip: int, limit: int) -> List[Dict[str, Any]]:
        query = (
            CypherQuery()
            .match('(s:"Location")-[r:"CONNECTS_TO"]->(d:"Location")')
            .where(Eq("r", "pipelineCode", pipeline_code))
            .order_by('s."locationId"', 'd."locationId"')
            .skip(skip)
            .limit(limit)
            .returns(
                'r."version" AS version',
                's."name" AS "sourceName"',
                's."locationId" AS "sourceId"',
                'd."name" AS "destName"',
                'd."locationId" AS "destId"',
            )
        )
        return await self._run(query)

    async def valid_zones(self, pipeline_code: str) -> Set[str]:
        query = (
            CypherQuery()
            .match('(l:"Location")')
            .where(Eq("l", "pipelineCode", pipeline_code))
            .returns('DISTINCT l."zone" AS zone')
        )
        return {row["zone"] for row in await self._run(query) if row.get("zone")}

    async def list_notices(
        self,
        pipeline_code: str,
        skip: int,
        limit: int,
        notice_type: Optional[str] = None,
        as_of: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Notices for a pipeline, optionally those in effect at ``as_of`` or
        overlapping the ``start_date`` .. ``end_date`` gas days.
        """
        if as_of and (start_date or end_date):
            raise ValidationError("asOf cannot be combined with startDate/endDate")
        if bool(start_date) != bool(end_date):
            raise ValidationError("startDate and endDate must be given together")

        query = (
            CypherQuery()
            .match('(n:"Notice")')
            .where(Eq("n", "pipelineCode", pipeline_code))
            .where_if(notice_type, Eq("n", "noticeType", notice_type))
            .where_if(as_of, Overlaps("n", "effectiveDatetime", "endDatetime", as_of))
        )
        if start_date:
            range_start, _ = gas_day_window(start_date)
            _, range_end = gas_day_window(end_date)
            if range_start > range_end:
                raise ValidationError("startDate must not be after endDate")
            query.where(Overlaps("n", "effectiveDatetime", "endDatetime", range_start, range_end))

        query = (
            query.with_("n")
            .order_by('n."endDatetime" DESC', 'n."effectiveDatetime" DESC')
            .skip(skip)
            .limit(limit)
            .returns("properties(n) AS notice")
        )
        return [row["notice"] for row in await self._run(query)]

    async def list_constraints(
        self,
        pipeline_code: str,
        skip: int,
        limit: int,
        location: Optional[str] = None,
        as_of: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query = CypherQuery()
        if location:
            query.match('(l:"Location")-[:"HAS_CONSTRAINT"]->(c:"Constraint")')
            query.where(Eq("l", "name", location))
        else:
            query.match('(c:"Constraint")')
        query = (
            query.where(Eq("c", "pipelineCode", pipeline_code))
            .where_if(as_of, Overlaps("c", "effectiveDatetime", "endDatetime", as_of))
            .with_("c")
            .order_by('c."effectiveDatetime" DESC')
            .skip(skip)
            .limit(limit)
            .returns('properties(c) AS "constraint"')
        )
        return [row["constraint"] for row in await self._run(query)]

    async def firm_transport(self, pipeline_code: str, as_of_date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Contract seasons on a pipeline, limited to those in effect on ``as_of_date``."""
        if as_of_date:
            as_of_date = parse_flow_date(as_of_date).isoformat()
        query = (
            CypherQuery()
            .match('(tc:"TransportationContract")-[:"HAS_SEASON"]->(cs:"ContractSeason")')
            .match('(cs)-[:"PRIMARY_RECEIPT"]->(rec:"Location")')
            .match('(cs)-[:"PRIMARY_DELIVERY"]->(del:"Location")')
            .where(Eq("tc", "pipelineCode", pipeline_code))
            .where_if(as_of_date, Overlaps("cs", "effectiveDate", "endDate", as_of_date, dates=True))
            .order_by('tc."rateSchedule"', 'tc."contractId"', 'cs."effectiveDate"')
            .returns(
                'tc."pipelineCode" AS "pipelineCode"',
                'tc."contractId" AS "contractId"',
                'tc."rateSchedule" AS "rateSchedule"',
                'cs."seasonId" AS "seasonId"',
                'cs."effectiveDate" AS "effectiveDate"',
                'cs."endDate" AS "endDate"',
                'cs."mdq" AS mdq',
                'rec."name" AS "primaryReceipt"',
                'rec."locationId" AS "primaryReceiptId"',
                'del."name" AS "primaryDelivery"',
                'del."locationId" AS "primaryDeliveryId"',
            )
        )
        return await self._run(query)

    async def scheduled_quantity(self, pipeline_code: str, contract_id: str, flow_date: str) -> Optional[float]:
        """Total nominated delivery volume under a contract for one gas day."""
        query = (
            CypherQuery()
            .match('()-[n:"NOMINATED"]->()')
            .where(Eq("n", "pipelineCode", pipeline_code))
            .where(Eq("n", "contractId", contract_id))
            .where(Eq("n", "flowDate", parse_flow_date(flow_date).isoformat()))
            .returns('sum(n."deliveryVolume") AS qty', "count(n) AS nominations")
        )
        rows = await self._run(query)
        if not rows or not rows[0].get("nominations"):
            return None
        return rows[0].get("qty")

    async def historical_flow(
        self,
        pipeline_code: str,
        start_date: str,
        end_date: str,
        skip: int,
        limit: int,
        location_id: Optional[str] = None,
        cycle: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        start = parse_flow_date(start_date).isoformat()
        end = parse_flow_date(end_date).isoformat()
        query = (
            CypherQuery()
            .match('(o:"OperationalFlow")')
            .where(Eq("o", "pipelineCode", pipeline_code))
            .where(Gte("o", "flowDate", start))
            .where(Lte("o", "flowDate", end))
            .where_if(location_id, Eq("o", "locationId", location_id))
            .where_if(cycle, Eq("o", "cycle", cycle))
            .order_by('o."pipelineCode"', 'o."locationId"', 'o."flowDate"', 'o."cycle"')
            .skip(skip)
            .limit(limit)
            .returns(
                'o."pipelineCode" AS "pipelineCode"',
                'o."locationId" AS "locationId"',
                'o."flowDate" AS "flowDate"',
                'o."cycle" AS cycle',
                'o."operationalCapacity" AS "operationalCapacity"',
                'o."scheduledVolume" AS "scheduledVolume"',
                'o."utilization" AS "utilizationPercent"',
            )
        )
        return await self._run(query)

    async def prices(
        self,
        pipeline_code: str,
        start_date: str,
        end_date: str,
        skip: int,
        limit: int,
    ) -> List[Dict[str, Any]]:
        start = parse_flow_date(start_date).isoformat()
        end = parse_flow_date(end_date).isoformat()
        query = (
            CypherQuery()
            .match(
                '(r:"Region")-[:"HAS_SYMBOL"]->(s:"Symbol")'
                '-[:"HAS_TRADING_DAY"]->(td:"SymbolTradingDay")'
            )
            .where(Eq("r", "pipelineCode", pipeline_code))
            .where(Gte("td", "tradingDay", start))
            .where(Lte("td", "tradingDay", end))
            .order_by('r."name"', 's."code"', 'td."tradingDay"')
            .skip(skip)
            .limit(limit)
            .returns(
                "properties(r) AS region",
                "properties(s) AS symbol",
                'properties(td) AS "symbolTradingDay"',
            )
        )
        return await self._run(query)
