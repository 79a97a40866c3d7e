"""
Structured Cypher assembly.

Optional filters are expressed as typed predicates that render into the
AgensGraph dialect with their values bound as ``%(pN)s`` parameters, so no
caller value is ever spliced into query text.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from psycopg.types.json import Jsonb

from .temporal import format_instant, overlap_bounds, parse_flow_date


def quote(identifier: str) -> str:
    """Double-quote an identifier so AgensGraph keeps its case."""
    if identifier.startswith('"') and identifier.endswith('"'):
        return identifier
    return '"' + identifier.replace('"', '""') + '"'


def prop(variable: str, key: str) -> str:
    """Render a property access such as ``c."effectiveDatetime"``."""
    return f"{variable}.{quote(key)}"


class Params:
    """Allocates placeholder names and collects bound values."""

    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"p{len(self.values)}"
        self.values[name] = Jsonb(value)
        return f"%({name})s"


class Predicate:
    def render(self, params: Params) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class _Comparison(Predicate):
    variable: str
    key: str
    value: Any

    operator = "="

    def render(self, params: Params) -> str:
        return f"{prop(self.variable, self.key)} {self.operator} {params.bind(self.value)}"


class Eq(_Comparison):
    operator = "="


class Lt(_Comparison):
    operator = "<"


class Lte(_Comparison):
    operator = "<="


class Gte(_Comparison):
    operator = ">="


@dataclass(frozen=True)
class Overlaps(Predicate):
    """
    The stored window ``[start_key, end_key]`` overlaps the query instant or
    range; a missing ``end_key`` value is treated as still open.
    """

    variable: str
    start_key: str
    end_key: str
    query_start: Any
    query_end: Any = None
    # windows stored as YYYY-MM-DD dates rather than instants
    dates: bool = False

    def _format(self, value: Any) -> str:
        if self.dates:
            return parse_flow_date(value).isoformat()
        return format_instant(value)

    def render(self, params: Params) -> str:
        latest_start, earliest_end = overlap_bounds(
            self._format(self.query_start),
            self._format(self.query_end) if self.query_end is not None else None,
        )
        start = prop(self.variable, self.start_key)
        end = prop(self.variable, self.end_key)
        return (
            f"{start} <= {params.bind(latest_start)} "
            f"AND ({end} IS NULL OR {end} >= {params.bind(earliest_end)})"
        )


class CypherQuery:
    """
    Incremental builder for a single MATCH ... RETURN statement.

    Example::

        query = (
            CypherQuery()
            .match('(n:"Notice")')
            .where(Eq("n", "pipelineCode", "ANR"))
            .where_if(notice_type, Eq("n", "noticeType", notice_type))
            .order_by('n."endDatetime" DESC')
            .skip(0)
            .limit(100)
            .returns("properties(n) AS notice")
        )
        text, params = query.render()
    """

    def __init__(self) -> None:
        self._matches: List[str] = []
        self._predicates: List[Predicate] = []
        self._with: Optional[str] = None
        self._order: List[str] = []
        self._skip: Optional[int] = None
        self._limit: Optional[int] = None
        self._returns: List[str] = []

    def match(self, pattern: str) -> "CypherQuery":
        self._matches.append(pattern)
        return self

    def where(self, predicate: Predicate) -> "CypherQuery":
        self._predicates.append(predicate)
        return self

    def where_if(self, value: Any, predicate: Predicate) -> "CypherQuery":
        """Add ``predicate`` only when the optional filter ``value`` is present."""
        if value is not None and value != "":
            self._predicates.append(predicate)
        return self

    def with_(self, projection: str) -> "CypherQuery":
        self._with = projection
        return self

    def order_by(self, *keys: str) -> "CypherQuery":
        self._order.extend(keys)
        return self

    def skip(self, count: int) -> "CypherQuery":
        self._skip = int(count)
        return self

    def limit(self, count: int) -> "CypherQuery":
        self._limit = int(count)
        return self

    def returns(self, *fields: str) -> "CypherQuery":
        self._returns.extend(fields)
        return self

    def render(self) -> Tuple[str, Dict[str, Any]]:
        if not self._matches:
            raise ValueError("A query needs at least one MATCH pattern")
        if not self._returns:
            raise ValueError("A query needs a RETURN clause")

        params = Params()
        lines = [f"MATCH {pattern}" for pattern in self._matches]
        if self._predicates:
            rendered = [p.render(params) for p in self._predicates]
            lines.append("WHERE " + "\n  AND ".join(f"({r})" for r in rendered))

        paging = []
        if self._order:
            paging.append("ORDER BY " + ", ".join(self._order))
        if self._skip is not None:
            paging.append(f"SKIP {self._skip}")
        if self._limit is not None:
            paging.append(f"LIMIT {self._limit}")

        if self._with is not None:
            lines.append(" ".join([f"WITH {self._with}"] + paging))
            lines.append("RETURN " + ", ".join(self._returns))
        else:
            lines.append("RETURN " + ", ".join(self._returns))
            lines.extend(paging)

        return "\n".join(lines), params.values
