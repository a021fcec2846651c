from __future__ import annotations

import pytest
import requests

from data.errors import NotFoundError, RetryExhaustedError, TransientError
from data.sheets_client import SheetsClient, _first_updated_row, build_credentials, column_letter, row_range
from tests.fakes import FakeSpreadsheet, api_error


def test_column_letters() -> None:
    assert column_letter(1) == "A"
    assert column_letter(26) == "Z"
    assert column_letter(27) == "AA"
    assert column_letter(703) == "AAA"
    assert row_range(5, 3) == "A5:C5"


def test_first_updated_row_is_parsed_from_append_response() -> None:
    assert _first_updated_row({"updates": {"updatedRange": "'Time Entries'!A7:K9"}}) == 7
    assert _first_updated_row({"updates": {}}) is None
    assert _first_updated_row(None) is None


def test_missing_credentials() -> None:
    with pytest.raises(ValueError, match="credentials"):
        build_credentials()


def test_fetch_all_splits_header_and_rows(client, spreadsheet) -> None:
    spreadsheet.table("Projects").extend([["p1", "Site"], ["p2", "App"]])

    header, rows = client.fetch_all("Projects")

    assert header[0] == "id"
    assert rows == [["p1", "Site"], ["p2", "App"]]


def test_fetch_all_of_missing_sheet_is_not_found(client) -> None:
    with pytest.raises(NotFoundError) as info:
        client.fetch_all("Nope")
    assert info.value.table == "Nope"
    assert info.value.call == "fetch_all"


def test_reads_are_retried(client, spreadsheet, sleeps) -> None:
    spreadsheet.fail("get_all_values", "Projects", api_error(429), api_error(503))

    header, rows = client.fetch_all("Projects")

    assert header
    assert spreadsheet.count("get_all_values", "Projects") == 3
    assert len(sleeps) == 2


def test_append_returns_first_row_index(client, spreadsheet) -> None:
    assert client.append_rows("Tasks", [["t1"], ["t2"]]) == 2
    assert client.append_row("Tasks", ["t3"]) == 4
    assert [r[0] for r in spreadsheet.table("Tasks")[1:]] == ["t1", "t2", "t3"]


def test_append_after_rate_limit_is_retried_once(client, spreadsheet) -> None:
    spreadsheet.fail("append_rows", "Tasks", api_error(429))

    client.append_row("Tasks", ["t1"])

    assert spreadsheet.count("append_rows", "Tasks") == 2
    assert len(spreadsheet.table("Tasks")) == 2


def test_ambiguous_append_without_verify_is_not_repeated(client, spreadsheet) -> None:
    spreadsheet.fail("append_rows", "Tasks", api_error(502), land_first=True)

    with pytest.raises(TransientError):
        client.append_row("Tasks", ["t1"])

    assert spreadsheet.count("append_rows", "Tasks") == 1
    assert len(spreadsheet.table("Tasks")) == 2


def test_ambiguous_append_that_landed_is_not_duplicated(client, spreadsheet) -> None:
    spreadsheet.fail("append_rows", "Tasks", requests.exceptions.ReadTimeout(), land_first=True)

    def landed() -> bool:
        return any(r and r[0] == "t1" for r in spreadsheet.table("Tasks")[1:])

    client.append_row("Tasks", ["t1"], verify=landed)

    assert [r[0] for r in spreadsheet.table("Tasks")[1:]] == ["t1"]


def test_write_row_replaces_whole_row(client, spreadsheet) -> None:
    spreadsheet.table("Projects").append(["p1", "Old", "c1"])

    client.write_row("Projects", 2, ["p1", "New", "c1"])

    assert spreadsheet.table("Projects")[1] == ["p1", "New", "c1"]
    with pytest.raises(ValueError):
        client.write_row("Projects", 1, ["x"])


def test_write_rows_is_one_call(client, spreadsheet) -> None:
    spreadsheet.table("Projects").extend([["p1"], ["p2"], ["p3"]])

    client.write_rows("Projects", {4: ["p3", "C"], 2: ["p1", "A"]})

    assert spreadsheet.count("batch_update", "Projects") == 1
    assert spreadsheet.table("Projects")[1:] == [["p1", "A"], ["p2"], ["p3", "C"]]


def test_delete_row_shifts_rows_up(client, spreadsheet) -> None:
    spreadsheet.table("Projects").extend([["p1"], ["p2"], ["p3"]])

    client.delete_row("Projects", 3)

    assert spreadsheet.table("Projects")[1:] == [["p1"], ["p3"]]


def test_clear_data_keeps_header(client, spreadsheet) -> None:
    spreadsheet.table("Expenses").extend([["e1"], ["e2"]])

    assert client.clear_data("Expenses") == 2
    assert len(spreadsheet.table("Expenses")) == 1
    assert client.clear_data("Expenses") == 0


def test_ensure_header_creates_missing_sheet() -> None:
    spreadsheet = FakeSpreadsheet({"Projects": [["id", "name"]], "Blank": []})
    client = SheetsClient(spreadsheet)

    assert client.ensure_header("Tasks", ["id", "title"]) is True
    assert spreadsheet.table("Tasks") == [["id", "title"]]
    assert client.ensure_header("Blank", ["id"]) is True
    assert spreadsheet.table("Blank") == [["id"]]
    assert client.ensure_header("Projects", ["id", "name", "budget"]) is False
    assert spreadsheet.table("Projects") == [["id", "name"]]


def test_metadata(client) -> None:
    assert "Invoices" in client.list_tables()
    headers = client.sheet_headers()
    assert headers["Clients"][:2] == ["id", "name"]
    assert client.read_header("Tasks")[1] == "project_id"


def test_exhausted_retries_surface_as_retry_exhausted(client, spreadsheet) -> None:
    spreadsheet.fail("update", "Projects", *[api_error(500)] * 3)
    spreadsheet.table("Projects").append(["p1"])

    with pytest.raises(RetryExhaustedError) as info:
        client.write_row("Projects", 2, ["p1", "x"])
    assert info.value.attempts == 3
