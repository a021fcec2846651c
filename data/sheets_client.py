"""
sheets_client.py

Connection client for the Google Sheets backend.

Responsible for:

- Creating the gspread client from service-account credentials
- Opening the spreadsheet and handing out worksheets by name
- Issuing read / append / write / delete calls, each one through the
  RetryPolicy, with every failure translated into data.errors

Pure infrastructure. No record encoding and no business rules here.
One instance is created at startup and passed to whoever needs it.
"""

import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import gspread
from google.oauth2.service_account import Credentials
from gspread import exceptions as gspread_exceptions

from data.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

VALUE_INPUT = "RAW"

_UPDATED_RANGE_RE = re.compile(r"!\$?[A-Z]+\$?(\d+)")


def column_letter(column_number: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA."""
    if column_number < 1:
        raise ValueError("column_number must be >= 1")
    result = ""
    while column_number > 0:
        column_number, rem = divmod(column_number - 1, 26)
        result = chr(ord("A") + rem) + result
    return result


def row_range(row_index: int, width: int) -> str:
    return f"A{row_index}:{column_letter(max(width, 1))}{row_index}"


def _first_updated_row(response: Any) -> Optional[int]:
    if not isinstance(response, dict):
        return None
    updated = (response.get("updates") or {}).get("updatedRange") or ""
    match = _UPDATED_RANGE_RE.search(updated)
    return int(match.group(1)) if match else None


def build_credentials(service_account_info: Optional[Dict[str, Any]] = None,
                      service_account_file: Optional[str] = None) -> Credentials:
    if service_account_info:
        return Credentials.from_service_account_info(service_account_info, scopes=SCOPES)
    if service_account_file:
        return Credentials.from_service_account_file(service_account_file, scopes=SCOPES)
    raise ValueError("Google credentials not found.")


class SheetsClient:

    def __init__(self, spreadsheet, retry_policy: Optional[RetryPolicy] = None):
        self.spreadsheet = spreadsheet
        self.retry_policy = retry_policy or RetryPolicy()
        self._worksheets: Dict[str, Any] = {}

    @classmethod
    def from_settings(cls, settings, retry_policy: Optional[RetryPolicy] = None) -> "SheetsClient":
        if not settings.spreadsheet_id:
            raise ValueError("Missing SPREADSHEET_ID")

        policy = retry_policy or RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base,
            max_delay=settings.backoff_max,
            jitter=settings.backoff_jitter,
        )
        credentials = build_credentials(
            settings.service_account_info, settings.service_account_file
        )
        client = gspread.authorize(credentials)
        spreadsheet = policy.call(
            lambda: client.open_by_key(settings.spreadsheet_id),
            call="open_spreadsheet",
        )
        logger.info("Connected to spreadsheet %s", settings.spreadsheet_id)
        return cls(spreadsheet, policy)

    # =========================
    # internals
    # =========================
    def _run(self, call: str, table: Optional[str], fn: Callable[[], Any],
             idempotent: bool = True, verify: Optional[Callable[[], bool]] = None) -> Any:
        return self.retry_policy.call(
            fn, idempotent=idempotent, verify=verify, table=table, call=call
        )

    def _worksheet(self, table: str):
        ws = self._worksheets.get(table)
        if ws is None:
            try:
                ws = self.spreadsheet.worksheet(table)
            except gspread_exceptions.WorksheetNotFound:
                self._worksheets.pop(table, None)
                raise
            self._worksheets[table] = ws
        return ws

    # =========================
    # METADATA
    # =========================
    def list_tables(self) -> List[str]:
        return self._run(
            "list_tables", None,
            lambda: [ws.title for ws in self.spreadsheet.worksheets()],
        )

    def read_header(self, table: str) -> List[str]:
        def _read():
            return [str(h).strip() for h in self._worksheet(table).row_values(1)]

        return self._run("read_header", table, _read)

    def sheet_headers(self) -> Dict[str, List[str]]:
        def _read():
            return {
                ws.title: [str(h).strip() for h in ws.row_values(1)]
                for ws in self.spreadsheet.worksheets()
            }

        return self._run("sheet_headers", None, _read)

    def ensure_header(self, table: str, expected_headers: Sequence[str]) -> bool:
        """
        Create the worksheet with its header row if it does not exist.

        Returns True when something was written. An existing header is never
        touched; comparing it is the SchemaValidator's job.
        """
        headers = list(expected_headers)

        def _ensure():
            try:
                ws = self._worksheet(table)
            except gspread_exceptions.WorksheetNotFound:
                ws = self.spreadsheet.add_worksheet(title=table, rows=1000, cols=len(headers))
                self._worksheets[table] = ws
                ws.update(range_name=row_range(1, len(headers)), values=[headers],
                          value_input_option=VALUE_INPUT)
                logger.info("Created sheet %s with %d columns", table, len(headers))
                return True

            current = [str(h).strip() for h in ws.row_values(1)]
            if any(current):
                return False

            ws.update(range_name=row_range(1, len(headers)), values=[headers],
                      value_input_option=VALUE_INPUT)
            logger.info("Wrote missing header row on %s", table)
            return True

        return self._run("ensure_header", table, _ensure)

    # =========================
    # READ
    # =========================
    def fetch_all(self, table: str) -> Tuple[List[str], List[List[Any]]]:
        """Header row plus every row after it. rows[0] lives at sheet row 2."""

        def _fetch():
            values = self._worksheet(table).get_all_values()
            if not values:
                return [], []
            header = [str(h).strip() for h in values[0]]
            return header, [list(r) for r in values[1:]]

        return self._run("fetch_all", table, _fetch)

    # =========================
    # APPEND
    # =========================
    def append_row(self, table: str, row: Sequence[Any],
                   verify: Optional[Callable[[], bool]] = None) -> Optional[int]:
        return self.append_rows(table, [row], verify=verify)

    def append_rows(self, table: str, rows: Sequence[Sequence[Any]],
                    verify: Optional[Callable[[], bool]] = None) -> Optional[int]:
        """
        Append in one call. Returns the sheet index of the first new row,
        or None when the API did not report it (or a verified retry found the
        rows already there).
        """
        values = [list(r) for r in rows]
        if not values:
            return None

        def _append():
            response = self._worksheet(table).append_rows(
                values,
                value_input_option=VALUE_INPUT,
                insert_data_option="INSERT_ROWS",
                table_range="A1",
            )
            return _first_updated_row(response)

        return self._run("append_rows", table, _append, idempotent=False, verify=verify)

    # =========================
    # WRITE
    # =========================
    def write_row(self, table: str, row_index: int, row: Sequence[Any]) -> None:
        """Overwrite the whole row. Callers merge unchanged columns beforehand."""
        if row_index < 2:
            raise ValueError("Data rows start at index 2")
        values = list(row)

        def _write():
            self._worksheet(table).update(
                range_name=row_range(row_index, len(values)),
                values=[values],
                value_input_option=VALUE_INPUT,
            )

        self._run("write_row", table, _write)

    def write_rows(self, table: str, rows_by_index: Dict[int, Sequence[Any]]) -> None:
        """Several full-row overwrites in a single batch_update call."""
        if not rows_by_index:
            return
        if min(rows_by_index) < 2:
            raise ValueError("Data rows start at index 2")

        data = [
            {"range": row_range(idx, len(row)), "values": [list(row)]}
            for idx, row in sorted(rows_by_index.items())
        ]

        def _write():
            self._worksheet(table).batch_update(data, value_input_option=VALUE_INPUT)

        self._run("write_rows", table, _write)

    # =========================
    # DELETE
    # =========================
    def delete_row(self, table: str, row_index: int,
                   verify: Optional[Callable[[], bool]] = None) -> None:
        """
        Hard delete. Rows below shift up by one, so a blind retry could remove
        the next row: ambiguous failures are retried only through `verify`.
        """
        if row_index < 2:
            raise ValueError("Data rows start at index 2")
        self._run(
            "delete_row", table,
            lambda: self._worksheet(table).delete_rows(row_index),
            idempotent=False, verify=verify,
        )

    def clear_data(self, table: str) -> int:
        """Delete every data row, keep the header. Returns rows removed."""

        def _clear():
            ws = self._worksheet(table)
            last = len(ws.get_all_values())
            if last < 2:
                return 0
            ws.delete_rows(2, last)
            return last - 1

        return self._run("clear_data", table, _clear)
