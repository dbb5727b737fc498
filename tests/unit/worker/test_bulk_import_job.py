"""Tests for the npatrack-import job entrypoint."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

from npatrack.errors import AssignmentError, ErrorKind
from npatrack.services.customers.models import AssignmentResult, BulkUpsertResult, FailedEntry
from npatrack.services.imports.unassigned import AssignedKeys
from npatrack.settings import get_settings
from npatrack.worker.jobs import bulk_import

RECORDS = [
    {"CUST_ID": "C001", "ACC_NO": "ACC-1", "BRANCH": "Main Branch", "CUSTOMER_NAME": "Asha"},
    {"CUST_ID": "C002", "ACC_NO": "ACC-2", "BRANCH": "West", "CUSTOMER_NAME": "Bala"},
    {"CUST_ID": "C003", "ACC_NO": "ACC-3", "BRANCH": "Main Branch", "CUSTOMER_NAME": "Chitra"},
]


def _source(tmp_path: Path) -> Path:
    path = tmp_path / "records.json"
    path.write_text(json.dumps(RECORDS), encoding="utf-8")
    return path


def _client(created_ids, failed_entries=()) -> MagicMock:
    client = MagicMock()
    client.fetch_assigned_keys.return_value = AssignedKeys.from_values(["C002"])
    client.bulk_upsert.return_value = BulkUpsertResult(
        status="partial" if failed_entries else "complete",
        success_count=len(created_ids),
        failed_count=len(failed_entries),
        failed_entries=list(failed_entries),
        customer_ids=list(created_ids),
    )
    client.assign_by_ids.return_value = AssignmentResult(
        message="assigned", modified_count=len(created_ids), matched_count=len(created_ids)
    )
    return client


def _run(monkeypatch, tmp_path: Path, client: MagicMock, *argv: str) -> int:
    monkeypatch.setattr(bulk_import, "_build_client", lambda settings: client)
    args = bulk_import.parse_args([*argv, "--workspace", str(tmp_path / "workspace.json")])
    return bulk_import.run(args, get_settings())


def test_write_template(tmp_path):
    target = tmp_path / "out" / "template.xlsx"

    code = bulk_import.run(bulk_import.parse_args(["--write-template", str(target)]), get_settings())

    assert code == bulk_import.EXIT_OK
    assert target.exists()


def test_dry_run_reports_without_writing(monkeypatch, tmp_path):
    client = _client([])

    code = _run(monkeypatch, tmp_path, client, str(_source(tmp_path)), "--owner", "agent-1", "--dry-run")

    assert code == bulk_import.EXIT_OK
    client.bulk_upsert.assert_not_called()
    client.close.assert_called_once()
    cached = json.loads((tmp_path / "workspace.json").read_text(encoding="utf-8"))
    assert [row["record_id"] for row in cached["rows"]] == ["C001", "C002", "C003"]


def test_branch_assignment_skips_assigned_rows(monkeypatch, tmp_path):
    client = _client(["C001", "C003"])

    code = _run(monkeypatch, tmp_path, client, str(_source(tmp_path)), "--owner", "agent-1", "--branch", "Main Branch")

    assert code == bulk_import.EXIT_OK
    sent = client.bulk_upsert.call_args.args[0]
    assert [row["record_id"] for row in sent] == ["C001", "C003"]
    client.assign_by_ids.assert_called_once_with(["C001", "C003"], "agent-1")


def test_select_uses_cached_rows(monkeypatch, tmp_path):
    _run(monkeypatch, tmp_path, _client([]), str(_source(tmp_path)), "--dry-run")
    client = _client(["C003"])

    code = _run(monkeypatch, tmp_path, client, "--owner", "agent-1", "--select", "ACC-3", "--select", "C002")

    assert code == bulk_import.EXIT_OK
    assert [row["record_id"] for row in client.bulk_upsert.call_args.args[0]] == ["C003"]


def test_partial_create_exits_with_code_two(monkeypatch, tmp_path):
    failed = FailedEntry(customer={"account_number": "ACC-3"}, reason="customer_name: required", kind=ErrorKind.VALIDATION)
    client = _client(["C001"], failed_entries=[failed])

    code = _run(monkeypatch, tmp_path, client, str(_source(tmp_path)), "--owner", "agent-1")

    assert code == bulk_import.EXIT_PARTIAL_CREATE
    assert client.assign_by_ids.call_count == 0


def test_assign_failure_exits_with_failure(monkeypatch, tmp_path, caplog):
    client = _client(["C001", "C003"])
    client.assign_by_ids.side_effect = AssignmentError("Invalid API key", owner_id="agent-1", created_ids=["C001", "C003"])

    code = _run(monkeypatch, tmp_path, client, str(_source(tmp_path)), "--owner", "agent-1")

    assert code == bulk_import.EXIT_FAILURE
    assert "C001, C003" in caplog.text


def test_persisted_branch_and_missing_owner(monkeypatch, tmp_path):
    client = _client([])
    client.assign_by_branch.return_value = AssignmentResult(message="0 assigned", modified_count=0, matched_count=0)

    assert _run(monkeypatch, tmp_path, client, "--persisted-branch", "West") == bulk_import.EXIT_FAILURE
    assert _run(monkeypatch, tmp_path, client, "--persisted-branch", "West", "--owner", "agent-1") == bulk_import.EXIT_OK
    client.assign_by_branch.assert_called_once_with("West", "agent-1", reassign=False)


def test_missing_rows_and_unreadable_source(monkeypatch, tmp_path):
    assert _run(monkeypatch, tmp_path, _client([])) == bulk_import.EXIT_FAILURE
    assert _run(monkeypatch, tmp_path, _client([]), str(tmp_path / "absent.json")) == bulk_import.EXIT_FAILURE
