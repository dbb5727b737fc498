"""Tests for workbook reading, row normalization, and the legacy field adapter."""

from __future__ import annotations

import pytest
from openpyxl import Workbook

from npatrack.errors import ValidationError
from npatrack.services.imports.normalizer import DEFAULT_COLUMN_MAPPING, adapt_legacy_record, normalize_rows
from npatrack.services.imports.spreadsheet import column_labels, read_workbook_rows, write_template


def _row(sequence, **cells):
    row = {label: "" for label in DEFAULT_COLUMN_MAPPING}
    row["Annexure-I"] = sequence
    row.update(cells)
    return row


def test_column_labels_name_blank_and_repeated_cells():
    assert column_labels(["Annexure-I", None, None, "Total", "Total", ""]) == [
        "Annexure-I",
        "__EMPTY",
        "__EMPTY_1",
        "Total",
        "Total_1",
        "__EMPTY_2",
    ]


def test_template_reads_back_as_one_record(tmp_path):
    path = write_template(tmp_path / "template.xlsx")

    rows = read_workbook_rows(path)
    records = normalize_rows(rows)

    assert len(rows) == 2
    assert len(records) == 1
    record = records[0]
    assert record["sr_no"] == "1"
    assert record["branch"] == "Main Branch"
    assert record["record_id"] == "C001"
    assert record["account_number"] == "191467310000967"
    assert record["date_of_npa"] == "2024-01-15"
    assert record["sanction_limit"] == 800000.0
    assert record["interest_overdue"] == pytest.approx(61618.08)


def test_read_workbook_rows_accepts_bytes_and_pads_short_rows(tmp_path):
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Annexure-I", "Branch", "Account"])
    sheet.append([None, None, None])
    sheet.append([2, "West"])
    path = tmp_path / "short.xlsx"
    workbook.save(path)

    rows = read_workbook_rows(path.read_bytes())

    assert rows == [{"Annexure-I": "2", "Branch": "West", "Account": ""}]


def test_read_workbook_rows_rejects_non_workbook():
    with pytest.raises(ValidationError, match="Failed to parse Excel file"):
        read_workbook_rows(b"definitely not a zip archive")


def test_normalize_drops_header_blank_and_non_numeric_rows(caplog):
    rows = [
        _row("Sr No.", __EMPTY="Branch Name"),
        _row("", __EMPTY="Main Branch"),
        _row("Total", __EMPTY="Main Branch"),
        _row("1", __EMPTY="Main Branch", __EMPTY_2="ACC-1", __EMPTY_6="1,200.50", __EMPTY_8="oops"),
        _row("2.0", __EMPTY="West", __EMPTY_2="ACC-2"),
    ]

    records = normalize_rows(rows)

    assert [record["account_number"] for record in records] == ["ACC-1", "ACC-2"]
    assert records[0]["sanction_limit"] == 1200.5
    assert records[0]["outstanding_balance"] == 0.0
    assert records[1]["net_balance"] == 0.0
    assert records[1]["address"] == ""
    assert "unparseable outstanding_balance" in caplog.text


def test_normalize_requires_data_and_labels():
    with pytest.raises(ValidationError, match="No data found in Excel file"):
        normalize_rows([{"Annexure-I": "", "__EMPTY": None}])

    partial = _row("1")
    del partial["__EMPTY_17"]
    with pytest.raises(ValidationError, match="Missing required columns: __EMPTY_17"):
        normalize_rows([partial])


def test_adapt_legacy_record_prefers_canonical_names():
    adapted = adapt_legacy_record(
        {
            "CUST_ID": "C001",
            "ACC_NO": "ACC-1",
            "principleOverdue": 10,
            "dateOfNPA": "2024-01-01",
            "assignedTo": "agent-1",
            "account_number": "ACC-CANONICAL",
            "notes": "kept",
        }
    )

    assert adapted == {
        "record_id": "C001",
        "principal_overdue": 10,
        "date_of_npa": "2024-01-01",
        "assigned_owner_id": "agent-1",
        "account_number": "ACC-CANONICAL",
        "notes": "kept",
    }
