import math
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .errors import ValidationError
from .temporal import parse_flow_date, parse_instant

# Tokens that mark a pass-through query as mutating
FORBIDDEN_READ_TOKENS = ("create ", "merge ", "delete ", "detach ", "set ", "remove ", "foreach ")

DIRECTION_CODES = {
    "R": "R",
    "D": "D",
    "B": "B",
    "T": "T",
    "Receipt": "R",
    "Delivery": "D",
    "Bidirectional": "B",
    "Throughput": "T",
}

GROSS_OR_NET = ("GROSS", "NET")
IT_INDICATOR = ("Y", "N", "")
SCHED_STATUS = ("PRELIM", "FINAL")
OAC_QUANTITIES = (
    "designCapacity",
    "operatingCapacity",
    "operationallyAvailableCapacity",
    "totalSchedQty",
)

# North America bounding box
LATITUDE_RANGE = (20.0, 80.0)
LONGITUDE_RANGE = (-130.0, -60.0)


def check_read_only_query(query: Any) -> str:
    """
    Reject pass-through queries containing write keywords.

    Matching is a case-insensitive substring test after whitespace runs are
    collapsed, so ``SET\\n`` is caught as well as ``Set ``. This is a
    guardrail only; READ sessions are also read-only at the database.
    """
    if not isinstance(query, str) or not query.strip():
        raise ValidationError("query is required")
    lowered = re.sub(r"\s+", " ", query).lower() + " "
    if any(token in lowered for token in FORBIDDEN_READ_TOKENS):
        raise ValidationError("Write operations are not allowed in /cypher/read")
    return query


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _parses(parser: Callable[[str], Any], value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parser(value)
    except ValidationError:
        return False
    return True


def normalize_direction(direction: Any) -> str:
    """Map a direction name or abbreviation onto its stored code."""
    code = DIRECTION_CODES.get(direction) if isinstance(direction, str) else None
    if code is None:
        raise ValidationError(
            f"Invalid direction '{direction}'. Allowed: R, D, B, T, "
            "Receipt, Delivery, Bidirectional, Throughput"
        )
    return code


def validate_position(position: Optional[Dict[str, Any]]) -> None:
    if position is None:
        return

    latitude = position.get("latitude")
    longitude = position.get("longitude")

    if not _is_number(latitude) or not _is_number(longitude):
        raise ValidationError("position.latitude and position.longitude must be numbers")
    if not LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1]:
        raise ValidationError(
            f"position.latitude out of range for North America (20..80): {latitude}"
        )
    if not LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]:
        raise ValidationError(
            f"position.longitude out of range for North America (-130..-60): {longitude}"
        )


def validate_zone(zone: Optional[str], valid_zones: Set[str], pipeline_code: str) -> None:
    # pipelines without any recorded zones accept anything
    if not valid_zones or zone is None:
        return
    if zone not in valid_zones:
        raise ValidationError(
            f"Invalid zone '{zone}' for pipeline {pipeline_code}",
            {"allowedZonesSample": sorted(valid_zones)[:20]},
        )


def oac_row_errors(row: Dict[str, Any], idx: int = 0) -> List[str]:
    """Collect every problem with one OAC row as ``Row <idx>: <message>``."""
    errors: List[str] = []

    def add(message: str) -> None:
        errors.append(f"Row {idx}: {message}")

    if not isinstance(row, dict):
        add("must be an object")
        return errors

    for key in ("pipelineCode", "locationId", "cycle", "locQTI"):
        if row.get(key) in (None, ""):
            add(f"{key} is required")

    gross_or_net = row.get("grossOrNet")
    if gross_or_net and gross_or_net not in GROSS_OR_NET:
        add(f"Invalid grossOrNet '{gross_or_net}'. Allowed: {', '.join(GROSS_OR_NET)}")
    it_indicator = row.get("itIndicator")
    if it_indicator and it_indicator not in IT_INDICATOR:
        add(f"Invalid itIndicator '{it_indicator}'. Allowed: Y, N, ''")
    sched_status = row.get("schedStatus")
    if sched_status and sched_status not in SCHED_STATUS:
        add(f"Invalid schedStatus '{sched_status}'. Allowed: {', '.join(SCHED_STATUS)}")

    for key in OAC_QUANTITIES:
        value = row.get(key)
        if not _is_number(value):
            add(f"{key} must be a number")
        elif value < 0:
            add(f"{key} cannot be negative")

    if not _parses(parse_flow_date, row.get("flowDate")):
        add("flowDate must be YYYY-MM-DD")
    if not _parses(parse_instant, row.get("postingDatetime")):
        add("postingDatetime must be an ISO datetime string")

    return errors


def validate_oac_batch(rows: Iterable[Dict[str, Any]]) -> None:
    """Validate every row and raise one error listing all row problems."""
    errors: List[str] = []
    for idx, row in enumerate(rows):
        errors.extend(oac_row_errors(row, idx))
    if errors:
        raise ValidationError("OAC batch validation failed", {"errors": errors})


def validate_page(limit: Any, skip: Any, default_limit: int = 100) -> Dict[str, int]:
    """Coerce pagination inputs, falling back to defaults for junk values."""
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = default_limit
    try:
        skip = int(skip)
    except (TypeError, ValueError):
        skip = 0
    if limit <= 0:
        limit = default_limit
    if skip < 0:
        skip = 0
    return {"skip": skip, "limit": limit}
