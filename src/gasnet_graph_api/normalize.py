"""Conversion of database-native values into JSON-safe primitives."""

import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, Mapping

# Largest integer a JSON consumer can represent exactly (IEEE-754 double).
MAX_SAFE_INTEGER = 2**53 - 1


def _plain_int(value: int) -> Any:
    if -MAX_SAFE_INTEGER <= value <= MAX_SAFE_INTEGER:
        return value
    return str(value)


def to_plain(value: Any) -> Any:
    """
    Recursively convert a query result value into portable primitives.

    Integers outside the safe range are returned as strings rather than
    truncated, temporal values become ISO-8601 strings and containers are
    rebuilt with normalized members.

    Parameters
    ----------
    value : Any
        A value as returned by the database driver.

    Returns
    -------
    Any
        ``None``, ``bool``, ``int``, ``float``, ``str``, ``list`` or ``dict``.
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return _plain_int(value)
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Decimal):
        if not value.is_finite():
            return None
        if value == value.to_integral_value():
            return _plain_int(int(value))
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return str(value)


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: to_plain(value) for key, value in row.items()}
