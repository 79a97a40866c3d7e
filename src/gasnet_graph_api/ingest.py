"""
Writes and batch ingestion.

Notices and OAC snapshots are versioned by a timestamp carried in the
payload: an incoming row is applied only when its timestamp is at least the
stored one, so late-arriving snapshots never overwrite newer data. The
comparison and the write share one WRITE transaction per batch.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from psycopg.types.json import Jsonb

from .errors import ValidationError
from .executor import AccessMode, GraphExecutor, GraphSession
from .querybuilder import quote
from .repository import NetworkRepository
from .temporal import format_instant, parse_flow_date, parse_instant
from .validators import normalize_direction, validate_oac_batch, validate_position, validate_zone

logger = logging.getLogger("gasnet_graph_api")

OAC_LABEL = "OperationallyAvailableCapacity"
OAC_KEY_FIELDS = (
    "pipelineCode",
    "cycle",
    "flowDate",
    "locationId",
    "locPurpDesc",
    "locQTI",
    "direction",
    "flowIndicator",
    "grossOrNet",
    "schedStatus",
)
NOTICE_LABEL = "Notice"
NOTICE_KEY_FIELDS = ("pipelineCode", "noticeId")


def supersedes(incoming: str, stored: Optional[str]) -> bool:
    """Latest timestamp wins; an equal timestamp re-applies the row."""
    if stored is None:
        return True
    return parse_instant(incoming) >= parse_instant(stored)


def _key_pattern(key: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    pattern = ", ".join(f"{quote(name)}: %(k_{name})s" for name in key)
    params = {f"k_{name}": Jsonb(value) for name, value in key.items()}
    return "{" + pattern + "}", params


async def _upsert_latest(
    session: GraphSession,
    label: str,
    key: Dict[str, Any],
    properties: Dict[str, Any],
    version_field: str,
) -> bool:
    """Write ``properties`` unless the stored node carries a newer ``version_field``."""
    pattern, params = _key_pattern(key)
    stored = await session.run(
        f"MATCH (x:{quote(label)} {pattern})\n"
        f"RETURN x.{quote(version_field)} AS {quote(version_field)}",
        params,
    )
    current = stored[0].get(version_field) if stored else None
    if not supersedes(properties[version_field], current):
        return False

    await session.run(
        f"MERGE (x:{quote(label)} {pattern})\nSET x = %(props)s",
        dict(params, props=Jsonb(properties)),
    )
    return True


def _now() -> str:
    return format_instant(datetime.now(timezone.utc))


class IngestService:
    def __init__(self, executor: GraphExecutor, repository: NetworkRepository) -> None:
        self.executor = executor
        self.repository = repository

    async def upsert_pipeline(self, code: str, body: Dict[str, Any]) -> Dict[str, Any]:
        body_code = body.get("code")
        if body_code and body_code != code:
            raise ValidationError(f"Path code '{code}' does not match body code '{body_code}'")
        for key in ("name", "operator", "tspId"):
            if not isinstance(body.get(key), str):
                raise ValidationError(
                    "Invalid body. Expected: { name: string, operator: string, tspId: string }"
                )

        rows = await self.executor.execute(
            'MERGE (p:"Pipeline" {"code": %(code)s})\n'
            'SET p."name" = %(name)s, p."operator" = %(operator)s, p."tspId" = %(tspId)s\n'
            "RETURN properties(p) AS pipeline",
            {
                "code": Jsonb(code),
                "name": Jsonb(body["name"]),
                "operator": Jsonb(body["operator"]),
                "tspId": Jsonb(body["tspId"]),
            },
            mode=AccessMode.WRITE,
        )
        return rows[0]["pipeline"]

    async def upsert_location(self, pipeline_code: str, location_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        for key, expected in (("pipelineCode", pipeline_code), ("locationId", location_id)):
            if body.get(key) not in (None, "") and str(body[key]) != expected:
                raise ValidationError(f"Path {key} '{expected}' does not match body {key} '{body[key]}'")
        if not isinstance(body.get("name"), str) or not body["name"].strip():
            raise ValidationError("name is required")

        direction = normalize_direction(body.get("direction"))
        validate_position(body.get("position"))
        validate_zone(body.get("zone"), await self.repository.valid_zones(pipeline_code), pipeline_code)

        properties = {k: v for k, v in body.items() if v is not None}
        properties.update(
            pipelineCode=pipeline_code,
            locationId=str(location_id),
            direction=direction,
            effectiveDate=parse_flow_date(body.get("effectiveDate") or datetime.now(timezone.utc).date()).isoformat(),
        )
        if body.get("endDate"):
            properties["endDate"] = parse_flow_date(body["endDate"]).isoformat()
        if body.get("primaryDataAsOf"):
            properties["primaryDataAsOf"] = format_instant(body["primaryDataAsOf"])

        rows = await self.executor.execute(
            'MERGE (l:"Location" {"pipelineCode": %(pipelineCode)s, "locationId": %(locationId)s})\n'
            "SET l = %(props)s\n"
            "RETURN properties(l) AS location",
            {
                "pipelineCode": Jsonb(pipeline_code),
                "locationId": Jsonb(str(location_id)),
                "props": Jsonb(properties),
            },
            mode=AccessMode.WRITE,
        )
        return rows[0]["location"]

    async def create_constraint(self, body: Dict[str, Any]) -> Dict[str, Any]:
        reason, kind = body.get("reason"), body.get("kind")
        start = body.get("effectiveDatetime") or body.get("start")
        end = body.get("endDatetime") or body.get("end")
        if not reason or not kind or not start:
            raise ValidationError("reason, kind and effectiveDatetime are required")

        properties = {
            "constraintId": body.get("constraintId") or str(uuid.uuid4()),
            "reason": reason,
            "kind": kind,
            "effectiveDatetime": format_instant(start),
            "createdAt": _now(),
        }
        if end:
            properties["endDatetime"] = format_instant(end)
            if parse_instant(properties["endDatetime"]) < parse_instant(properties["effectiveDatetime"]):
                raise ValidationError("endDatetime must not precede effectiveDatetime")
        for key in ("percent", "limit", "pipelineCode"):
            if body.get(key) is not None:
                properties[key] = body[key]

        location_name = body.get("locationName")
        async with self.executor.session(AccessMode.WRITE) as session:
            rows = await session.run(
                'CREATE (c:"Constraint" %(props)s)\nRETURN properties(c) AS "constraint"',
                {"props": Jsonb(properties)},
            )
            if location_name:
                await session.run(
                    'MATCH (l:"Location"), (c:"Constraint")\n'
                    'WHERE l."name" = %(name)s AND c."constraintId" = %(id)s\n'
                    'MERGE (l)-[:"HAS_CONSTRAINT"]->(c)',
                    {"name": Jsonb(location_name), "id": Jsonb(properties["constraintId"])},
                )

        constraint = rows[0]["constraint"]
        logger.info(f"Created constraint {properties['constraintId']} ({kind})")
        return constraint

    async def set_created_at_from_start(self) -> int:
        rows = await self.executor.execute(
            'MATCH (c:"Constraint")\n'
            'SET c."createdAt" = c."effectiveDatetime"\n'
            "RETURN count(c) AS updated",
            mode=AccessMode.WRITE,
        )
        return rows[0]["updated"] if rows else 0

    async def upsert_notices(self, rows: List[Dict[str, Any]]) -> Dict[str, int]:
        """Upsert notices by (pipelineCode, noticeId); newest lastModifiedDatetime wins."""
        prepared = []
        errors = []
        for idx, row in enumerate(rows):
            try:
                prepared.append(self._prepare_notice(row))
            except ValidationError as e:
                errors.append(f"Row {idx}: {e.message}")
        if errors:
            raise ValidationError("Notice batch validation failed", {"errors": errors})

        applied = ignored = 0
        async with self.executor.session(AccessMode.WRITE) as session:
            for properties in prepared:
                key = {name: properties[name] for name in NOTICE_KEY_FIELDS}
                if await _upsert_latest(session, NOTICE_LABEL, key, properties, "lastModifiedDatetime"):
                    applied += 1
                else:
                    ignored += 1

        logger.info(f"Notices ingested: {applied} applied, {ignored} ignored")
        return {"applied": applied, "ignored": ignored}

    @staticmethod
    def _prepare_notice(row: Any) -> Dict[str, Any]:
        if not isinstance(row, dict):
            raise ValidationError("must be an object")
        for key in ("pipelineCode", "noticeId", "effectiveDatetime", "lastModifiedDatetime"):
            if row.get(key) in (None, ""):
                raise ValidationError(f"{key} is required")

        properties = {k: v for k, v in row.items() if v is not None}
        properties["noticeId"] = str(row["noticeId"])
        for key in ("postingDatetime", "effectiveDatetime", "endDatetime", "lastModifiedDatetime"):
            if row.get(key):
                properties[key] = format_instant(row[key])
        if "endDatetime" in properties and properties["endDatetime"] < properties["effectiveDatetime"]:
            raise ValidationError("endDatetime must not precede effectiveDatetime")
        if row.get("priorNoticeId") is not None:
            properties["priorNoticeId"] = str(row["priorNoticeId"])
        return properties

    async def ingest_oac(self, rows: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Upsert OAC snapshots by their composite key.

        The latest posting wins; rows posted earlier than the stored snapshot
        are counted as ``ignored``.
        """
        validate_oac_batch(rows)

        applied = ignored = 0
        async with self.executor.session(AccessMode.WRITE) as session:
            for row in rows:
                properties = dict(row)
                properties["locationId"] = str(row["locationId"])
                properties["postingDatetime"] = format_instant(row["postingDatetime"])
                key = {name: "" if properties.get(name) is None else properties[name] for name in OAC_KEY_FIELDS}
                properties.update(key)

                if not await _upsert_latest(session, OAC_LABEL, key, properties, "postingDatetime"):
                    ignored += 1
                    continue
                applied += 1

                pattern, params = _key_pattern(key)
                await session.run(
                    f'MATCH (l:"Location"), (o:{quote(OAC_LABEL)} {pattern})\n'
                    'WHERE l."pipelineCode" = %(k_pipelineCode)s AND l."locationId" = %(k_locationId)s\n'
                    'MERGE (l)-[:"HAS_AVAILABLE_CAPACITY"]->(o)',
                    params,
                )

        logger.info(f"OAC ingested: {applied} applied, {ignored} ignored")
        return {"applied": applied, "ignored": ignored}

    async def upsert_prices(self, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Upsert trading-day prices unconditionally, rejecting rows whose
        symbol is unknown instead of failing the batch.
        """
        codes = sorted({row["symbol"] for row in rows if isinstance(row, dict) and isinstance(row.get("symbol"), str)})
        known = set()
        applied = 0
        rejected = []

        async with self.executor.session(AccessMode.WRITE) as session:
            if codes:
                found = await session.run(
                    'MATCH (s:"Symbol")\nWHERE s."code" <@ %(codes)s\nRETURN s."code" AS code',
                    {"codes": Jsonb(codes)},
                )
                known = {r["code"] for r in found}

            for idx, row in enumerate(rows):
                symbol = row.get("symbol") if isinstance(row, dict) else None
                if symbol is not None and not isinstance(symbol, str):
                    rejected.append({"row": idx, "symbol": symbol, "error": "symbol must be a string"})
                    continue
                if symbol not in known:
                    rejected.append({"row": idx, "symbol": symbol, "error": f"Unknown symbol '{symbol}'"})
                    continue
                try:
                    trading_day = parse_flow_date(row.get("tradingDay")).isoformat()
                except ValidationError as e:
                    rejected.append({"row": idx, "symbol": symbol, "error": e.message})
                    continue

                properties = dict(row, tradingDay=trading_day)
                if row.get("modificationDatetime"):
                    properties["modificationDatetime"] = format_instant(row["modificationDatetime"])
                await session.run(
                    'MATCH (s:"Symbol" {"code": %(symbol)s})\n'
                    'MERGE (s)-[:"HAS_TRADING_DAY"]->(td:"SymbolTradingDay" {"symbol": %(symbol)s, "tradingDay": %(day)s})\n'
                    "SET td = %(props)s",
                    {"symbol": Jsonb(symbol), "day": Jsonb(trading_day), "props": Jsonb(properties)},
                )
                applied += 1

        logger.info(f"Prices ingested: {applied} applied, {len(rejected)} rejected")
        return {"applied": applied, "rejected": rejected}
