import io
import json
import logging
import os
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Optional

import pandas as pd

from data.errors import SheetsStoreError

logger = logging.getLogger(__name__)


def _json_default(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _excel_value(value: Any) -> Any:
    # Excel has no timezone-aware datetimes and no nested cells
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


# -----------------------------
# BACKUP
# -----------------------------
def build_backup(repo, spreadsheet_id: str = "") -> Dict[str, Any]:
    """
    {timestamp, spreadsheet_id, sheets: {table: [records]}}

    A table that cannot be read is logged and stored as an empty list so the
    rest of the backup still completes.
    """
    backup = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "spreadsheet_id": spreadsheet_id,
        "sheets": {},
    }

    for table in repo.registry.tables():
        try:
            records = repo.export_table(table)
        except SheetsStoreError as e:
            logger.warning("Could not back up sheet %s: %s", table, e)
            records = []
        backup["sheets"][table] = records
        logger.info("Backed up %d records from %s", len(records), table)

    return backup


def write_backup(repo, backup_dir: str, spreadsheet_id: str = "", output_path: Optional[str] = None) -> str:
    backup = build_backup(repo, spreadsheet_id)

    if not output_path:
        stamp = backup["timestamp"].replace(":", "-").replace(".", "-")
        output_path = os.path.join(backup_dir, f"sheets-backup-{stamp}.json")

    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(backup, f, indent=2, ensure_ascii=False, default=_json_default)

    total = sum(len(r) for r in backup["sheets"].values())
    logger.info("Backup written to %s (%d records)", output_path, total)
    return output_path


# -----------------------------
# RESTORE
# -----------------------------
def restore_backup(repo, backup_path: str, clear_existing: bool = False,
                   tables: Optional[Iterable[str]] = None) -> Dict[str, int]:
    """
    Re-create records from a backup file, keeping their ids.

    Without clear_existing the records are added next to whatever is
    already there, and the restore is refused (RecordValidationError) if any
    backed-up id is still stored in its table.
    """
    if not os.path.isfile(backup_path):
        raise FileNotFoundError(f"Backup file not found: {backup_path}")

    with open(backup_path, "r", encoding="utf-8") as f:
        backup = json.load(f)

    sheets = backup.get("sheets") or {}
    wanted = list(tables) if tables else list(sheets)
    restored = {}

    for table in wanted:
        if table not in repo.registry:
            logger.warning("Skipping unknown sheet %s", table)
            continue
        records = sheets.get(table) or []
        if clear_existing:
            repo.clear_table(table)
        ids = repo.batch_create(table, records) if records else []
        restored[table] = len(ids)
        logger.info("Restored %d records into %s", len(ids), table)

    return restored


# -----------------------------
# EXCEL
# -----------------------------
def export_all_to_excel(repo) -> bytes:
    """One worksheet per table, columns in header order."""
    output = io.BytesIO()

    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        for schema in repo.registry:
            records = repo.export_table(schema.name)
            rows = [{k: _excel_value(r.get(k)) for k in schema.headers} for r in records]
            df = pd.DataFrame(rows, columns=schema.headers)
            df.to_excel(writer, sheet_name=schema.name[:31], index=False)

    return output.getvalue()
