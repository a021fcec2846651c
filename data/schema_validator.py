"""
schema_validator.py

Two checks, both returning data instead of raising:

- validate_sheet_structure: live header row vs. the registry (drift report).
  Never repairs a header: rewriting it would silently reinterpret the data
  already stored under it.
- validate_record_data: required fields and basic type conformance of a
  record before it is written.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from data.errors import NotFoundError
from data.row_codec import is_blank, parse_boolean, parse_iso_date, parse_json, to_number
from data.schema_registry import BOOLEAN, DATE, JSON, NUMBER, TEXT, SchemaRegistry, TableSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


@dataclass
class ValidationResult:
    errors: List[FieldError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, field_name: str, message: str) -> None:
        self.errors.append(FieldError(field_name, message))


@dataclass
class StructureReport:
    table: str
    exists: bool = True
    diffs: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.exists and not self.diffs


def compare_headers(table: str, expected: Sequence[str], actual: Sequence[str]) -> List[str]:
    actual = [h for h in actual if h]
    diffs = []

    for name in expected:
        if name not in actual:
            diffs.append(f"Missing header '{name}' in sheet '{table}'")
    for name in actual:
        if name not in expected:
            diffs.append(f"Unexpected header '{name}' in sheet '{table}'")

    shared_expected = [h for h in expected if h in actual]
    shared_actual = [h for h in actual if h in expected]
    for position, (want, got) in enumerate(zip(shared_expected, shared_actual)):
        if want != got:
            diffs.append(
                f"Header '{got}' out of order in sheet '{table}': "
                f"expected '{want}' at position {position + 1} of the shared columns"
            )
            break

    return diffs


def _type_error(column_type: str, value: Any) -> Optional[str]:
    if column_type == NUMBER:
        if to_number(value) is None:
            return "must be a number"
    elif column_type == BOOLEAN:
        if not isinstance(value, bool) and not (isinstance(value, str) and parse_boolean(value) is not None):
            return "must be a boolean"
    elif column_type == DATE:
        if not isinstance(value, date) and not (isinstance(value, str) and parse_iso_date(value) is not None):
            return "must be an ISO-8601 date"
    elif column_type == JSON:
        if isinstance(value, str) and parse_json(value) is value:
            return "must be a JSON object or array"
        if not isinstance(value, (str, dict, list, tuple)):
            return "must be a JSON object or array"
    elif column_type == TEXT:
        if isinstance(value, (dict, list, tuple)):
            return "must be a string"
    return None


def validate_record_data(schema: TableSchema, record: Dict[str, Any], partial: bool = False) -> ValidationResult:
    """
    Check a record against its table schema.

    With partial=True only the fields present are checked (for update
    payloads); otherwise required fields must be present and non-blank.
    The `id` column is never required here: the repository assigns it.
    """
    result = ValidationResult()

    if not isinstance(record, dict):
        result.add("*", "record must be a mapping")
        return result

    for spec in schema.columns:
        present = spec.name in record
        value = record.get(spec.name)

        if is_blank(value):
            if spec.required and spec.name != "id" and (present or not partial):
                result.add(spec.name, f"{spec.name} is required")
            continue

        message = _type_error(spec.type, value)
        if message:
            result.add(spec.name, f"{spec.name} {message}")
            continue

        if spec.minimum is not None:
            number = to_number(value)
            if number is not None and spec.exclusive_minimum and number <= spec.minimum:
                result.add(spec.name, f"{spec.name} must be > {spec.minimum:g}")
            elif number is not None and number < spec.minimum:
                result.add(spec.name, f"{spec.name} must be >= {spec.minimum:g}")

        if spec.choices is not None and str(value) not in spec.choices:
            result.add(spec.name, f"{spec.name} must be one of: {', '.join(spec.choices)}")

        if spec.pattern is not None and not re.match(spec.pattern, str(value)):
            result.add(spec.name, f"{spec.name} has an invalid format")

    return result


class SchemaValidator:

    def __init__(self, client, registry: SchemaRegistry):
        self.client = client
        self.registry = registry

    def validate_sheet_structure(self, table: str) -> StructureReport:
        schema = self.registry.get(table)
        try:
            actual = self.client.read_header(table)
        except NotFoundError:
            return StructureReport(table, exists=False, diffs=[f"Sheet '{table}' does not exist"])

        report = StructureReport(table, diffs=compare_headers(table, schema.headers, actual))
        for diff in report.diffs:
            logger.warning(diff)
        return report

    def validate_all_sheets(self) -> Dict[str, StructureReport]:
        return {table: self.validate_sheet_structure(table) for table in self.registry.tables()}

    def validate_record_data(self, table: str, record: Dict[str, Any], partial: bool = False) -> ValidationResult:
        return validate_record_data(self.registry.get(table), record, partial=partial)
