from __future__ import annotations

import io
import json
from datetime import date

import pandas as pd
import pytest

from data.errors import RecordValidationError
from data.schema_registry import PROJECTS
from data.sheets_client import SheetsClient
from data.sheets_repository import SheetsRepository
from storage.export_service import build_backup, export_all_to_excel, restore_backup, write_backup
from tests.fakes import FIXED_NOW, FakeSpreadsheet


@pytest.fixture
def seeded(repo):
    project_id = repo.create("Projects", {
        "name": "Website", "client_id": "client_1", "status": "active",
        "budget": 1500, "start_date": date(2024, 1, 15),
    })
    repo.create("Invoices", {
        "invoice_number": "INV-001", "client_id": "client_1", "project_id": project_id,
        "line_items": [{"item": "Design", "qty": 2, "rate": 50}],
        "total_amount": 100, "is_recurring": False,
    })
    return repo


def _empty_repo(source, retry_policy) -> SheetsRepository:
    spreadsheet = FakeSpreadsheet({schema.name: [schema.headers] for schema in source.registry})
    return SheetsRepository(SheetsClient(spreadsheet, retry_policy), clock=lambda: FIXED_NOW)


def test_backup_contains_every_table(seeded) -> None:
    backup = build_backup(seeded, "sheet-123")

    assert backup["spreadsheet_id"] == "sheet-123"
    assert set(backup["sheets"]) == set(seeded.registry.tables())
    assert backup["sheets"]["Projects"][0]["name"] == "Website"
    assert backup["sheets"]["Tasks"] == []


def test_backup_survives_an_unreadable_sheet(retry_policy) -> None:
    spreadsheet = FakeSpreadsheet({"Projects": [PROJECTS.headers, ["p1", "Only", "c1"]]})
    repo = SheetsRepository(SheetsClient(spreadsheet, retry_policy))

    backup = build_backup(repo)

    assert [r["id"] for r in backup["sheets"]["Projects"]] == ["p1"]
    assert backup["sheets"]["Invoices"] == []


def test_write_then_restore_into_empty_spreadsheet(seeded, retry_policy, tmp_path) -> None:
    path = write_backup(seeded, str(tmp_path), "sheet-123")
    assert path.startswith(str(tmp_path))

    with open(path, encoding="utf-8") as f:
        saved = json.load(f)
    assert saved["sheets"]["Projects"][0]["start_date"] == "2024-01-15"

    target = _empty_repo(seeded, retry_policy)
    restored = restore_backup(target, path)

    assert restored["Projects"] == 1
    assert restored["Invoices"] == 1
    assert restored["Tasks"] == 0
    assert target.read("Projects") == seeded.read("Projects")
    assert target.read("Invoices") == seeded.read("Invoices")


def test_restore_with_clear_replaces_rows(seeded, tmp_path) -> None:
    path = write_backup(seeded, str(tmp_path), output_path=str(tmp_path / "backup.json"))
    seeded.create("Projects", {"name": "Later", "client_id": "client_2"})

    restored = restore_backup(seeded, path, clear_existing=True, tables=["Projects"])

    assert restored == {"Projects": 1}
    assert [p["name"] for p in seeded.read("Projects")] == ["Website"]


def test_restore_without_clear_refuses_ids_still_stored(seeded, tmp_path) -> None:
    path = write_backup(seeded, str(tmp_path), output_path=str(tmp_path / "backup.json"))

    with pytest.raises(RecordValidationError):
        restore_backup(seeded, path, tables=["Projects"])

    assert [p["name"] for p in seeded.read("Projects")] == ["Website"]


def test_restore_skips_unknown_tables(repo, tmp_path) -> None:
    path = tmp_path / "backup.json"
    path.write_text(json.dumps({"sheets": {"Ghosts": [{"id": "g1"}]}}), encoding="utf-8")

    assert restore_backup(repo, str(path)) == {}


def test_restore_missing_file(repo, tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        restore_backup(repo, str(tmp_path / "nope.json"))


def test_excel_export_has_one_sheet_per_table(seeded) -> None:
    data = export_all_to_excel(seeded)

    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None, engine="openpyxl")
    assert set(sheets) == set(seeded.registry.tables())
    assert list(sheets["Projects"].columns) == PROJECTS.headers
    assert sheets["Projects"]["name"].tolist() == ["Website"]
    assert json.loads(sheets["Invoices"]["line_items"][0]) == [{"item": "Design", "qty": 2, "rate": 50}]
