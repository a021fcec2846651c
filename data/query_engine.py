"""
query_engine.py

In-memory filtering, sorting and pagination over decoded records.

The spreadsheet has no server-side filtering: every query runs over the full
table that the repository already fetched. Order is fixed:
filters (AND) -> sort -> offset/limit.

Filter values given as text are typed the same way the column's cells are
when a RowCodec is supplied (a text column keeps "true" as "true"); without
one, or for columns outside the schema, the codec's auto rules apply.

A malformed query raises QueryError when it is built. A malformed value in a
record never raises: the filter just does not match that record.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from data.errors import QueryError
from data.row_codec import RowCodec, coerce_cell, to_number

OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "contains")
DIRECTIONS = ("asc", "desc")

_SYMBOLS = {
    "=": "eq",
    "==": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "gte",
    "<": "lt",
    "<=": "lte",
}


@dataclass(frozen=True)
class Filter:
    column: str
    operator: str
    value: Any

    def __post_init__(self):
        if not self.column or not str(self.column).strip():
            raise QueryError("Filter column is required")
        if self.operator not in OPERATORS:
            raise QueryError(f"Invalid operator {self.operator!r} for column {self.column!r}")
        if self.operator == "in" and not isinstance(self.value, (list, tuple, set, frozenset)):
            raise QueryError(f"'in' filter on {self.column!r} needs a list of values")
        if self.value is None and self.operator not in ("eq", "ne"):
            raise QueryError(f"Filter on {self.column!r} needs a value")


@dataclass(frozen=True)
class Sort:
    column: str
    direction: str = "asc"

    def __post_init__(self):
        if self.direction not in DIRECTIONS:
            raise QueryError(f"Invalid sort direction {self.direction!r}")


@dataclass(frozen=True)
class Query:
    filters: Tuple[Filter, ...] = field(default_factory=tuple)
    sort: Optional[Sort] = None
    limit: Optional[int] = None
    offset: int = 0

    def __post_init__(self):
        object.__setattr__(self, "filters", tuple(self.filters))
        if self.limit is not None and self.limit < 0:
            raise QueryError("limit must be >= 0")
        if self.offset is None or self.offset < 0:
            raise QueryError("offset must be >= 0")

    @classmethod
    def from_mapping(cls, criteria: Dict[str, Any], sort: Optional[Sort] = None,
                     limit: Optional[int] = None, offset: int = 0) -> "Query":
        """
        Simple form: {"status": "todo", "priority": ["high", "medium"],
        "budget": {">=": 1000}}. Plain value -> eq, list -> in,
        mapping -> one filter per operator (symbol or operator name).
        """
        filters = []
        for column, expected in criteria.items():
            if isinstance(expected, (list, tuple, set, frozenset)):
                filters.append(Filter(column, "in", list(expected)))
            elif isinstance(expected, dict):
                for op, operand in expected.items():
                    filters.append(Filter(column, _SYMBOLS.get(op, op), operand))
            else:
                filters.append(Filter(column, "eq", expected))
        return cls(filters=tuple(filters), sort=sort, limit=limit, offset=offset)


# =========================
# value comparison
# =========================
def _normalize(column: str, value: Any, codec: Optional[RowCodec] = None) -> Any:
    if codec is not None:
        return codec.coerce(column, value)
    if isinstance(value, str):
        return coerce_cell(value)
    return value


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def _ordering_pair(left: Any, right: Any) -> Optional[Tuple[Any, Any]]:
    """Comparable (left, right) for numbers or dates, None otherwise."""
    left_num, right_num = to_number(left), to_number(right)
    if left_num is not None and right_num is not None:
        return left_num, right_num
    left_dt, right_dt = _as_datetime(left), _as_datetime(right)
    if left_dt is not None and right_dt is not None:
        return left_dt, right_dt
    return None


def _equals(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return left is None and right is None
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    pair = _ordering_pair(left, right)
    if pair is not None:
        return pair[0] == pair[1]
    return left == right


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value, expected):
        pair = _ordering_pair(value, expected)
        return pair is not None and op(*pair)
    return check


def _contains(value: Any, expected: Any) -> bool:
    if not isinstance(value, str):
        return False
    return str(expected).lower() in value.lower()


def _in(value: Any, expected: Sequence[Any]) -> bool:
    return any(_equals(value, candidate) for candidate in expected)


_CHECKS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": _equals,
    "ne": lambda v, e: not _equals(v, e),
    "gt": _compare(lambda a, b: a > b),
    "gte": _compare(lambda a, b: a >= b),
    "lt": _compare(lambda a, b: a < b),
    "lte": _compare(lambda a, b: a <= b),
    "in": _in,
    "contains": _contains,
}


def matches(record: Dict[str, Any], flt: Filter, codec: Optional[RowCodec] = None) -> bool:
    value = record.get(flt.column)
    expected = flt.value
    if flt.operator == "in":
        expected = [_normalize(flt.column, candidate, codec) for candidate in expected]
    elif flt.operator != "contains":
        expected = _normalize(flt.column, expected, codec)
    try:
        return _CHECKS[flt.operator](value, expected)
    except TypeError:
        return False


# =========================
# pipeline
# =========================
def apply_filters(records: Sequence[Dict[str, Any]], filters: Sequence[Filter],
                  codec: Optional[RowCodec] = None) -> List[Dict[str, Any]]:
    return [r for r in records if all(matches(r, f, codec) for f in filters)]


def _sort_key(value: Any) -> Tuple[int, Any]:
    if isinstance(value, bool):
        return 1, int(value)
    number = to_number(value)
    if number is not None:
        return 0, number
    moment = _as_datetime(value)
    if moment is not None:
        return 2, moment
    if isinstance(value, str):
        return 3, value.lower()
    return 4, str(value)


def apply_sort(records: Sequence[Dict[str, Any]], sort: Optional[Sort]) -> List[Dict[str, Any]]:
    """Stable single-column sort. Missing values always go last."""
    if sort is None:
        return list(records)
    present = [r for r in records if r.get(sort.column) is not None]
    missing = [r for r in records if r.get(sort.column) is None]
    present.sort(key=lambda r: _sort_key(r.get(sort.column)), reverse=sort.direction == "desc")
    return present + missing


def paginate(records: Sequence[Dict[str, Any]], limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
    end = None if limit is None else offset + limit
    return list(records[offset:end])


def apply_query(records: Sequence[Dict[str, Any]], query: Optional[Query] = None,
                codec: Optional[RowCodec] = None) -> List[Dict[str, Any]]:
    if query is None:
        return list(records)
    result = apply_filters(records, query.filters, codec)
    result = apply_sort(result, query.sort)
    return paginate(result, query.limit, query.offset)
