"""
row_codec.py

Conversion between positional sheet rows and typed records.

This is the only place where raw cell values become typed Python values
(and back). Nothing after a remote read looks at raw cells again.
"""

import json
import logging
import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from data.schema_registry import AUTO, BOOLEAN, DATE, JSON, NUMBER, TEXT, TableSchema

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:?\d{2})?$"
)

TRUE_CELL = "TRUE"
FALSE_CELL = "FALSE"


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_number(text: str) -> Optional[float]:
    text = text.strip()
    if not _NUMBER_RE.match(text):
        return None
    if "." in text or "e" in text.lower():
        number = float(text)
        return number if math.isfinite(number) else None
    return int(text)


def to_number(value: Any) -> Optional[float]:
    """Numeric coercion shared by queries and aggregates. None if not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        return parse_number(value)
    return None


def parse_boolean(text: str) -> Optional[bool]:
    lowered = text.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def parse_iso_date(text: str):
    text = text.strip()
    try:
        if _DATE_RE.match(text):
            return date.fromisoformat(text)
        if _DATETIME_RE.match(text):
            normalized = text.replace(" ", "T", 1)
            if normalized.endswith("Z"):
                normalized = normalized[:-1] + "+00:00"
            elif re.search(r"[+-]\d{4}$", normalized):
                normalized = normalized[:-2] + ":" + normalized[-2:]
            fraction = re.search(r"\.(\d+)", normalized)
            if fraction and len(fraction.group(1)) not in (3, 6):
                digits = fraction.group(1).ljust(6, "0")
                normalized = normalized.replace("." + fraction.group(1), "." + digits, 1)
            return datetime.fromisoformat(normalized)
    except ValueError:
        return None
    return None


def parse_json(text: str) -> Any:
    stripped = text.strip()
    if not stripped or stripped[0] not in "{[":
        return text
    try:
        return json.loads(stripped)
    except ValueError:
        return text


def coerce_cell(value: Any, column_type: str = AUTO) -> Any:
    """Typed value for one raw cell. Never raises: unparseable cells stay raw."""
    if is_blank(value):
        return None
    if not isinstance(value, str):
        return value

    if column_type == TEXT:
        return value
    if column_type == NUMBER:
        number = parse_number(value)
        return value if number is None else number
    if column_type == BOOLEAN:
        flag = parse_boolean(value)
        return value if flag is None else flag
    if column_type == DATE:
        parsed = parse_iso_date(value)
        return value if parsed is None else parsed
    if column_type == JSON:
        return parse_json(value)

    number = parse_number(value)
    if number is not None:
        return number
    flag = parse_boolean(value)
    if flag is not None:
        return flag
    parsed = parse_iso_date(value)
    if parsed is not None:
        return parsed
    return parse_json(value)


def encode_cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return TRUE_CELL if value else FALSE_CELL
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else ""
    if isinstance(value, datetime):
        if value.tzinfo is not None and value.utcoffset() == timedelta(0):
            return value.replace(tzinfo=None).isoformat() + "Z"
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


class RowCodec:

    def __init__(self, schema: TableSchema):
        self.schema = schema

    def encode(
        self,
        record: Dict[str, Any],
        header: Optional[Sequence[str]] = None,
        base_row: Optional[Sequence[Any]] = None,
    ) -> List[Any]:
        """
        Positional row for `record`, in `header` order (schema order by default).

        Schema columns missing from the record are written blank. Record keys
        outside the schema are dropped. Header positions that are not schema
        columns keep whatever `base_row` had there.
        """
        header = list(header) if header is not None else self.schema.headers
        base_row = list(base_row or [])

        dropped = [k for k in record if not self.schema.has_column(k)]
        if dropped:
            logger.debug("%s: dropping fields outside schema: %s", self.schema.name, dropped)

        row = []
        for position, column in enumerate(header):
            if self.schema.has_column(column):
                row.append(encode_cell(record.get(column)))
            elif position < len(base_row):
                row.append(base_row[position])
            else:
                row.append("")
        return row

    def decode(self, row: Sequence[Any], header: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        header = list(header) if header is not None else self.schema.headers
        record: Dict[str, Any] = {name: None for name in self.schema.headers}

        for position, column in enumerate(header):
            spec = self.schema.column(column)
            if spec is None:
                continue
            raw = row[position] if position < len(row) else None
            record[column] = coerce_cell(raw, spec.type)

        return record

    def coerce(self, column: str, value: Any) -> Any:
        """Same typing the column gets on decode, applied to a caller value."""
        spec = self.schema.column(column)
        column_type = spec.type if spec else AUTO
        if isinstance(value, str):
            return coerce_cell(value, column_type)
        return value
