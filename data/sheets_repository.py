"""
SheetsRepository

Concrete Google Sheets implementation of BaseRepository.

Responsible for:
- create / read / update / delete (update and delete return bool)
- batch_create / batch_update
- query / aggregate (in memory, over a full fetch)
- initialize_sheets / validate_sheet_structure / validate_all_sheets
- export / clear helpers used by backups

Every remote call goes through the injected SheetsClient.
No credentials and no connection logic here.

Known limitation: there is no locking. update, delete and batch_update are
read-modify-write sequences; two callers touching the same record race and
the last write wins without being detected. Row indexes are resolved once
per operation and never re-resolved on retry.

Ids are unique per table: create and batch writes refuse an id that is
already stored or repeated within the same write.
"""

import logging
import random
import string
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from data.aggregator import AggregateResult, aggregate
from data.base_repository import BaseRepository
from data.errors import (
    BatchOperationError,
    PermanentError,
    RecordValidationError,
    SheetsStoreError,
)
from data.query_engine import Query, apply_query
from data.row_codec import RowCodec, is_blank
from data.schema_registry import SchemaRegistry, TableSchema, default_registry
from data.schema_validator import (
    FieldError,
    SchemaValidator,
    StructureReport,
    validate_record_data,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase
_rng = random.SystemRandom()


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("number must be >= 0")
    digits = ""
    while True:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
        if number == 0:
            return digits


def generate_id(prefix: str, now: Optional[datetime] = None) -> str:
    """
    <prefix>_<base36 epoch millis><6 random base36 chars>.

    Collisions are unlikely at normal write rates but not impossible;
    callers that need strict uniqueness must check first.
    """
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    suffix = "".join(_rng.choice(_BASE36) for _ in range(6))
    return f"{prefix}_{to_base36(millis)}{suffix}"


@dataclass
class StoredRow:
    index: int
    raw: List[Any]
    record: Dict[str, Any]


@dataclass
class BatchOperation:
    table: str
    action: str = "update"
    data: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class BatchResult:
    """Positions (in the submitted list) of operations by outcome."""

    applied: List[int] = field(default_factory=list)
    not_found: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    ids: Dict[int, str] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return not (self.not_found or self.failed or self.skipped)


class SheetsRepository(BaseRepository):

    def __init__(
        self,
        client,
        registry: Optional[SchemaRegistry] = None,
        cache_ttl: float = 0.0,
        clock: Optional[Callable[[], datetime]] = None,
        id_factory: Callable[[str], str] = generate_id,
    ):
        self.client = client
        self.registry = registry or default_registry()
        self.validator = SchemaValidator(client, self.registry)
        self.cache_ttl = cache_ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory
        self._codecs: Dict[str, RowCodec] = {}
        self._cache: Dict[str, Tuple[float, List[str], List[StoredRow]]] = {}

    # =========================
    # helpers
    # =========================
    @contextmanager
    def _operation(self, operation: str, table: Optional[str] = None):
        try:
            yield
        except SheetsStoreError as exc:
            raise exc.with_context(table=table, operation=operation)

    def _codec(self, schema: TableSchema) -> RowCodec:
        codec = self._codecs.get(schema.name)
        if codec is None:
            codec = self._codecs[schema.name] = RowCodec(schema)
        return codec

    def _invalidate(self, table: str) -> None:
        self._cache.pop(table, None)

    def _load(self, schema: TableSchema, fresh: bool = False) -> Tuple[List[str], List[StoredRow]]:
        table = schema.name
        if self.cache_ttl > 0 and not fresh:
            cached = self._cache.get(table)
            if cached and cached[0] > time.monotonic():
                return cached[1], cached[2]

        header, rows = self.client.fetch_all(table)
        header = header or schema.headers
        codec = self._codec(schema)

        stored = []
        for idx, raw in enumerate(rows, start=2):
            if all(is_blank(cell) for cell in raw):
                continue
            record = codec.decode(raw, header)
            if is_blank(record.get("id")):
                logger.warning("%s row %d has no id; ignored", table, idx)
                continue
            record["id"] = str(record["id"])
            stored.append(StoredRow(idx, list(raw), record))

        if self.cache_ttl > 0:
            self._cache[table] = (time.monotonic() + self.cache_ttl, header, stored)
        return header, stored

    @staticmethod
    def _find(stored: Sequence[StoredRow], id: str) -> Optional[StoredRow]:
        target = str(id)
        for row in stored:
            if row.record["id"] == target:
                return row
        return None

    def _current_ids(self, schema: TableSchema) -> set:
        _, stored = self._load(schema, fresh=True)
        return {row.record["id"] for row in stored}

    def _id_count(self, schema: TableSchema, id: str) -> int:
        _, stored = self._load(schema, fresh=True)
        return sum(1 for row in stored if row.record["id"] == id)

    def _id_errors(self, schema: TableSchema, prepared: Sequence[Dict[str, Any]],
                   supplied: Sequence[bool], labels: Sequence[str]) -> List[FieldError]:
        """Ids given by the caller must not exist yet; no id may repeat within one write."""
        existing = self._current_ids(schema) if any(supplied) else set()
        errors = []
        seen = set()
        for record, given, label in zip(prepared, supplied, labels):
            id_field = f"{label}.id" if label else "id"
            if given and record["id"] in existing:
                errors.append(FieldError(id_field, f"id {record['id']} already exists in {schema.name}"))
            elif record["id"] in seen:
                errors.append(FieldError(id_field, f"id {record['id']} is repeated in this write"))
            seen.add(record["id"])
        return errors

    def _append_landed(self, schema: TableSchema, ids: Sequence[str]) -> Callable[[], bool]:
        wanted = set(ids)

        def check() -> bool:
            present = self._current_ids(schema) & wanted
            if present and present != wanted:
                raise PermanentError(
                    f"append partially visible ({len(present)}/{len(wanted)} rows); not retrying",
                    table=schema.name,
                )
            return bool(present)

        return check

    def _validation_errors(self, schema: TableSchema, record: Dict[str, Any], label: str = "") -> List[FieldError]:
        result = validate_record_data(schema, record)
        if not label:
            return result.errors
        return [FieldError(f"{label}.{e.field}", e.message) for e in result.errors]

    def _raise_if_invalid(self, errors: List[FieldError], table: Optional[str]) -> None:
        if errors:
            raise RecordValidationError(errors, table=table)

    def _prepare_new(self, schema: TableSchema, record: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        prepared = dict(record)
        if is_blank(prepared.get("id")):
            prepared["id"] = self._id_factory(schema.id_prefix)
        prepared["id"] = str(prepared["id"])
        if schema.has_column("created_at") and is_blank(prepared.get("created_at")):
            prepared["created_at"] = now
        if schema.has_column("updated_at") and is_blank(prepared.get("updated_at")):
            prepared["updated_at"] = now
        return prepared

    def _merge(self, schema: TableSchema, existing: Dict[str, Any], partial: Dict[str, Any],
               now: datetime) -> Dict[str, Any]:
        merged = {**existing, **partial, "id": existing["id"]}
        if schema.has_column("updated_at"):
            merged["updated_at"] = now
        return merged

    @staticmethod
    def _as_query(query: Union[Query, Dict[str, Any], None]) -> Optional[Query]:
        if query is None or isinstance(query, Query):
            return query
        return Query.from_mapping(query)

    # =========================
    # CREATE
    # =========================
    def create(self, table: str, record: Dict[str, Any]) -> str:
        with self._operation("create", table):
            schema = self.registry.get(table)
            prepared = self._prepare_new(schema, record, self._clock())
            errors = self._validation_errors(schema, prepared)
            if not errors:
                errors = self._id_errors(schema, [prepared], [not is_blank(record.get("id"))], [""])
            self._raise_if_invalid(errors, table)

            row = self._codec(schema).encode(prepared)
            self.client.append_row(table, row, verify=self._append_landed(schema, [prepared["id"]]))
            self._invalidate(table)
            return prepared["id"]

    def batch_create(self, table: str, records: Sequence[Dict[str, Any]]) -> List[str]:
        """One append call for all records. Ids come back in input order."""
        with self._operation("batch_create", table):
            schema = self.registry.get(table)
            if not records:
                return []

            now = self._clock()
            prepared = [self._prepare_new(schema, r, now) for r in records]
            errors = []
            for position, record in enumerate(prepared):
                errors.extend(self._validation_errors(schema, record, label=f"[{position}]"))
            if not errors:
                errors = self._id_errors(
                    schema, prepared,
                    [not is_blank(r.get("id")) for r in records],
                    [f"[{position}]" for position in range(len(records))],
                )
            self._raise_if_invalid(errors, table)

            codec = self._codec(schema)
            ids = [r["id"] for r in prepared]
            self.client.append_rows(
                table, [codec.encode(r) for r in prepared], verify=self._append_landed(schema, ids)
            )
            self._invalidate(table)
            return ids

    # =========================
    # READ
    # =========================
    def read(self, table: str, id: Optional[str] = None) -> List[Dict[str, Any]]:
        """All records, or the single record with `id` (empty list if absent)."""
        with self._operation("read", table):
            schema = self.registry.get(table)
            _, stored = self._load(schema)
            if id is not None:
                match = self._find(stored, id)
                return [dict(match.record)] if match else []
            return [dict(row.record) for row in stored]

    def query(self, table: str, query: Union[Query, Dict[str, Any], None] = None) -> List[Dict[str, Any]]:
        with self._operation("query", table):
            codec = self._codec(self.registry.get(table))
            return apply_query(self.read(table), self._as_query(query), codec)

    def aggregate(self, table: str, operation: str, field: Optional[str] = None,
                  query: Union[Query, Dict[str, Any], None] = None) -> AggregateResult:
        with self._operation("aggregate", table):
            return aggregate(self.query(table, query), operation, field)

    # =========================
    # UPDATE
    # =========================
    def update(self, table: str, id: str, partial: Dict[str, Any]) -> bool:
        """
        Merge `partial` over the stored record and rewrite its row.

        Returns False when no row has this id. True only means the row was
        rewritten, not that any value actually changed.
        """
        with self._operation("update", table):
            schema = self.registry.get(table)
            if "id" in partial and str(partial["id"]) != str(id):
                self._raise_if_invalid([FieldError("id", "id cannot be changed")], table)

            header, stored = self._load(schema, fresh=True)
            found = self._find(stored, id)
            if found is None:
                return False

            merged = self._merge(schema, found.record, partial, self._clock())
            self._raise_if_invalid(self._validation_errors(schema, merged), table)

            row = self._codec(schema).encode(merged, header, base_row=found.raw)
            self.client.write_row(table, found.index, row)
            self._invalidate(table)
            return True

    def batch_update(self, operations: Sequence[BatchOperation]) -> BatchResult:
        """
        Apply creates and updates with one fetch and at most two writes per
        table (one multi-range write, one multi-row append).

        NOT atomic. Everything is validated before the first write; after
        that, the first failing remote call stops the batch and
        BatchOperationError carries a BatchResult saying exactly which
        operations were applied, failed or skipped.
        """
        with self._operation("batch_update"):
            result = BatchResult()
            errors: List[FieldError] = []
            by_table: Dict[str, List[int]] = {}

            for position, op in enumerate(operations):
                label = f"operations[{position}]"
                if op.action not in ("create", "update"):
                    errors.append(FieldError(label, f"unknown action {op.action!r}"))
                    continue
                if op.action == "update" and is_blank(op.id):
                    errors.append(FieldError(label, "update needs an id"))
                    continue
                self.registry.get(op.table)
                by_table.setdefault(op.table, []).append(position)
            self._raise_if_invalid(errors, None)

            now = self._clock()
            plans = []
            for table, positions in by_table.items():
                schema = self.registry.get(table)
                updates = [p for p in positions if operations[p].action == "update"]
                creates = [p for p in positions if operations[p].action == "create"]

                header: List[str] = schema.headers
                pending: Dict[int, Tuple[StoredRow, Dict[str, Any]]] = {}
                update_positions: Dict[int, List[int]] = {}
                if updates:
                    header, stored = self._load(schema, fresh=True)
                    for position in updates:
                        op = operations[position]
                        found = self._find(stored, op.id)
                        if found is None:
                            result.not_found.append(position)
                            continue
                        base = pending[found.index][1] if found.index in pending else found.record
                        merged = self._merge(schema, base, op.data, now)
                        errors.extend(self._validation_errors(schema, merged, label=f"operations[{position}]"))
                        pending[found.index] = (found, merged)
                        update_positions.setdefault(found.index, []).append(position)
                        result.ids[position] = found.record["id"]

                new_records = []
                for position in creates:
                    prepared = self._prepare_new(schema, operations[position].data, now)
                    errors.extend(self._validation_errors(schema, prepared, label=f"operations[{position}]"))
                    new_records.append(prepared)
                    result.ids[position] = prepared["id"]
                if new_records:
                    errors.extend(self._id_errors(
                        schema, new_records,
                        [not is_blank(operations[p].data.get("id")) for p in creates],
                        [f"operations[{p}]" for p in creates],
                    ))

                plans.append((schema, header, pending, update_positions, creates, new_records))
            self._raise_if_invalid(errors, None)

            remaining = [p for p in range(len(operations)) if p not in result.not_found]
            for schema, header, pending, update_positions, creates, new_records in plans:
                codec = self._codec(schema)
                steps = []
                if pending:
                    rows = {
                        idx: codec.encode(merged, header, base_row=found.raw)
                        for idx, (found, merged) in pending.items()
                    }
                    done = [p for ps in update_positions.values() for p in ps]
                    steps.append((done, lambda s=schema, r=rows: self.client.write_rows(s.name, r)))
                if new_records:
                    rows_to_add = [codec.encode(r) for r in new_records]
                    ids = [r["id"] for r in new_records]
                    steps.append((
                        list(creates),
                        lambda s=schema, r=rows_to_add, i=ids: self.client.append_rows(
                            s.name, r, verify=self._append_landed(s, i)),
                    ))

                for done, step in steps:
                    try:
                        step()
                    except SheetsStoreError as exc:
                        result.failed.extend(done)
                        result.skipped.extend(
                            p for p in remaining if p not in result.applied and p not in done
                        )
                        self._invalidate(schema.name)
                        raise BatchOperationError(
                            f"batch stopped after {len(result.applied)} applied operations: {exc.message}",
                            result,
                            table=schema.name,
                            operation="batch_update",
                            cause=exc,
                        ) from exc
                    result.applied.extend(done)
                self._invalidate(schema.name)

            result.applied.sort()
            return result

    # =========================
    # DELETE
    # =========================
    def delete(self, table: str, id: str) -> bool:
        """Hard delete: the row is removed and rows below shift up."""
        with self._operation("delete", table):
            schema = self.registry.get(table)
            _, stored = self._load(schema, fresh=True)
            found = self._find(stored, id)
            if found is None:
                return False

            target = found.record["id"]
            before = sum(1 for row in stored if row.record["id"] == target)
            if before > 1:
                logger.warning("%s has %d rows with id %s; deleting the first (row %d)",
                               table, before, target, found.index)
            self.client.delete_row(
                table, found.index, verify=lambda: self._id_count(schema, target) < before
            )
            self._invalidate(table)
            return True

    def clear_table(self, table: str) -> int:
        with self._operation("clear_table", table):
            self.registry.get(table)
            removed = self.client.clear_data(table)
            self._invalidate(table)
            logger.info("Cleared %d rows from %s", removed, table)
            return removed

    # =========================
    # SCHEMA / PROVISIONING
    # =========================
    def initialize_sheets(self) -> Dict[str, StructureReport]:
        """Create missing sheets with their headers; report drift on existing ones."""
        reports = {}
        for schema in self.registry:
            with self._operation("initialize_sheets", schema.name):
                if self.client.ensure_header(schema.name, schema.headers):
                    reports[schema.name] = StructureReport(schema.name)
                else:
                    reports[schema.name] = self.validator.validate_sheet_structure(schema.name)
        return reports

    def validate_sheet_structure(self, table: str) -> StructureReport:
        with self._operation("validate_sheet_structure", table):
            return self.validator.validate_sheet_structure(table)

    def validate_all_sheets(self) -> Dict[str, StructureReport]:
        with self._operation("validate_all_sheets"):
            return self.validator.validate_all_sheets()

    def validate_record_data(self, table: str, record: Dict[str, Any], partial: bool = False):
        return self.validator.validate_record_data(table, record, partial=partial)

    # =========================
    # EXPORT
    # =========================
    def export_table(self, table: str) -> List[Dict[str, Any]]:
        with self._operation("export_table", table):
            return self.read(table)

    def export_all(self) -> Dict[str, List[Dict[str, Any]]]:
        return {table: self.export_table(table) for table in self.registry.tables()}
