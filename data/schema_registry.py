"""
schema_registry.py

Static definition of every table kept in the spreadsheet.

A table is one worksheet. Row 1 holds the header, in exactly the order of
`TableSchema.columns`. Once a sheet exists its header order never changes:
every data row is positional relative to it.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from data.errors import UnknownTableError

AUTO = "auto"
TEXT = "text"
NUMBER = "number"
BOOLEAN = "boolean"
DATE = "date"
JSON = "json"

COLUMN_TYPES = (AUTO, TEXT, NUMBER, BOOLEAN, DATE, JSON)

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: str = AUTO
    required: bool = False
    minimum: Optional[float] = None
    exclusive_minimum: bool = False
    choices: Optional[Tuple[str, ...]] = None
    pattern: Optional[str] = None

    def __post_init__(self):
        if self.type not in COLUMN_TYPES:
            raise ValueError(f"Unknown column type {self.type!r} for {self.name!r}")


@dataclass(frozen=True)
class TableSchema:
    name: str
    columns: Tuple[ColumnSpec, ...]
    id_prefix: str
    _by_name: Dict[str, ColumnSpec] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        names = [c.name for c in self.columns]
        if "id" not in names:
            raise ValueError(f"Table {self.name!r} has no 'id' column")
        if len(set(names)) != len(names):
            raise ValueError(f"Table {self.name!r} has duplicated columns")
        object.__setattr__(self, "_by_name", {c.name: c for c in self.columns})

    @property
    def headers(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def required_fields(self) -> List[str]:
        return [c.name for c in self.columns if c.required]

    def column(self, name: str) -> Optional[ColumnSpec]:
        return self._by_name.get(name)

    def has_column(self, name: str) -> bool:
        return name in self._by_name


def _cols(*specs) -> Tuple[ColumnSpec, ...]:
    out = []
    for spec in specs:
        out.append(ColumnSpec(spec) if isinstance(spec, str) else spec)
    return tuple(out)


class SchemaRegistry:

    def __init__(self, schemas: Sequence[TableSchema] = ()):
        self._schemas: Dict[str, TableSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: TableSchema) -> None:
        if schema.name in self._schemas:
            raise ValueError(f"Table {schema.name!r} already registered")
        self._schemas[schema.name] = schema

    def get(self, table: str) -> TableSchema:
        try:
            return self._schemas[table]
        except KeyError:
            raise UnknownTableError(f"Unknown sheet: {table}", table=table) from None

    def tables(self) -> List[str]:
        return list(self._schemas)

    def __contains__(self, table: str) -> bool:
        return table in self._schemas

    def __iter__(self) -> Iterator[TableSchema]:
        return iter(self._schemas.values())


PROJECT_STATUSES = ("active", "completed", "on-hold", "cancelled")
TASK_STATUSES = ("todo", "in-progress", "completed")
TASK_PRIORITIES = ("low", "medium", "high")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")

PROJECTS = TableSchema(
    name="Projects",
    id_prefix="project",
    columns=_cols(
        ColumnSpec("id", TEXT, required=True),
        ColumnSpec("name", TEXT, required=True),
        ColumnSpec("client_id", TEXT, required=True),
        ColumnSpec("status", TEXT, choices=PROJECT_STATUSES),
        ColumnSpec("start_date", DATE),
        ColumnSpec("end_date", DATE),
        ColumnSpec("budget", NUMBER, minimum=0),
        ColumnSpec("description", TEXT),
        ColumnSpec("created_at", DATE),
        ColumnSpec("updated_at", DATE),
    ),
)

TASKS = TableSchema(
    name="Tasks",
    id_prefix="task",
    columns=_cols(
        ColumnSpec("id", TEXT, required=True),
        ColumnSpec("project_id", TEXT, required=True),
        ColumnSpec("title", TEXT, required=True),
        ColumnSpec("description", TEXT),
        ColumnSpec("status", TEXT, choices=TASK_STATUSES),
        ColumnSpec("priority", TEXT, choices=TASK_PRIORITIES),
        ColumnSpec("due_date", DATE),
        ColumnSpec("estimated_hours", NUMBER, minimum=0),
        ColumnSpec("actual_hours", NUMBER, minimum=0),
        "dependencies",
        ColumnSpec("created_at", DATE),
    ),
)

CLIENTS = TableSchema(
    name="Clients",
    id_prefix="client",
    columns=_cols(
        ColumnSpec("id", TEXT, required=True),
        ColumnSpec("name", TEXT, required=True),
        ColumnSpec("email", TEXT, required=True, pattern=EMAIL_PATTERN),
        ColumnSpec("phone", TEXT),
        ColumnSpec("address", TEXT),
        ColumnSpec("city", TEXT),
        ColumnSpec("state", TEXT),
        ColumnSpec("country", TEXT),
        ColumnSpec("postal_code", TEXT),
        ColumnSpec("gstin", TEXT),
        ColumnSpec("pan", TEXT),
        ColumnSpec("payment_terms", TEXT),
        ColumnSpec("default_currency", TEXT),
        ColumnSpec("contact_person", TEXT),
        ColumnSpec("notes", TEXT),
        ColumnSpec("is_active", BOOLEAN),
        ColumnSpec("company_name", TEXT),
        ColumnSpec("created_at", DATE),
        ColumnSpec("updated_at", DATE),
    ),
)

INVOICES = TableSchema(
    name="Invoices",
    id_prefix="invoice",
    columns=_cols(
        ColumnSpec("id", TEXT, required=True),
        ColumnSpec("invoice_number", TEXT, required=True),
        ColumnSpec("client_id", TEXT, required=True),
        ColumnSpec("project_id", TEXT),
        ColumnSpec("line_items", JSON),
        ColumnSpec("subtotal", NUMBER, minimum=0),
        ColumnSpec("tax_breakdown", JSON),
        ColumnSpec("total_amount", NUMBER, required=True, minimum=0, exclusive_minimum=True),
        ColumnSpec("currency", TEXT),
        ColumnSpec("status", TEXT, choices=INVOICE_STATUSES),
        ColumnSpec("issue_date", DATE),
        ColumnSpec("due_date", DATE),
        ColumnSpec("payment_terms", TEXT),
        ColumnSpec("notes", TEXT),
        ColumnSpec("is_recurring", BOOLEAN),
        ColumnSpec("paid_amount", NUMBER, minimum=0),
        ColumnSpec("payment_date", DATE),
        ColumnSpec("discount_amount", NUMBER, minimum=0),
        ColumnSpec("created_at", DATE),
        ColumnSpec("updated_at", DATE),
    ),
)

TIME_ENTRIES = TableSchema(
    name="Time_Entries",
    id_prefix="time",
    columns=_cols(
        ColumnSpec("id", TEXT, required=True),
        ColumnSpec("task_id", TEXT, required=True),
        ColumnSpec("project_id", TEXT, required=True),
        ColumnSpec("hours", NUMBER, required=True, minimum=0, exclusive_minimum=True),
        ColumnSpec("description", TEXT),
        ColumnSpec("date", DATE),
        ColumnSpec("created_at", DATE),
    ),
)

EXPENSES = TableSchema(
    name="Expenses",
    id_prefix="expense",
    columns=_cols(
        ColumnSpec("id", TEXT, required=True),
        ColumnSpec("project_id", TEXT, required=True),
        ColumnSpec("category", TEXT, required=True),
        ColumnSpec("amount", NUMBER, required=True, minimum=0, exclusive_minimum=True),
        ColumnSpec("currency", TEXT),
        ColumnSpec("description", TEXT),
        ColumnSpec("date", DATE),
        ColumnSpec("vendor", TEXT),
        ColumnSpec("is_billable", BOOLEAN),
        ColumnSpec("invoice_id", TEXT),
        ColumnSpec("created_at", DATE),
        ColumnSpec("updated_at", DATE),
    ),
)


def default_registry() -> SchemaRegistry:
    return SchemaRegistry([PROJECTS, TASKS, CLIENTS, INVOICES, TIME_ENTRIES, EXPENSES])
