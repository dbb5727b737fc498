"""JSON-backed state for the client-side import workflow.

The workspace keeps the last normalized spreadsheet, the cached unassigned
view derived from it, and the list of loans marked recovered on this machine.
It loads once on construction and writes the file after every mutation.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from npatrack.errors import ValidationError
from npatrack.services.customers.models import text_value
from npatrack.services.imports.normalizer import adapt_legacy_record
from npatrack.services.imports.unassigned import AssignedKeys, UnassignedSelection, filter_unassigned

LOGGER = logging.getLogger(__name__)

WORKSPACE_VERSION = 1


@dataclass(slots=True)
class RecoveryStats:
    total_recovered: float = 0.0
    recovered_cases: int = 0
    total_pending: float = 0.0
    pending_cases: int = 0


def loan_amount(loan: Mapping[str, Any]) -> float:
    """Return the net balance of a loan, falling back to its outstanding balance."""

    for field in ("net_balance", "outstanding_balance"):
        raw = loan.get(field)
        if raw in (None, "", 0, 0.0):
            continue
        try:
            return float(str(raw).replace(",", ""))
        except ValueError:
            LOGGER.warning("Ignoring unparseable %s %r", field, raw)
    return 0.0


class ImportWorkspace:
    """Explicit state store shared by the import job and the orchestrator."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._rows: List[Dict[str, Any]] = []
        self._recovered: List[Dict[str, Any]] = []
        self._view: UnassignedSelection | None = None
        self._view_keys: AssignedKeys | None = None
        self._load()

    # ------------------------------------------------------------------
    # Cached spreadsheet rows
    # ------------------------------------------------------------------
    @property
    def rows(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._rows]

    def replace_rows(self, rows: Iterable[Mapping[str, Any]]) -> None:
        """Cache a freshly normalized spreadsheet, dropping the derived view."""

        self._rows = [adapt_legacy_record(row) for row in rows]
        self.invalidate()
        self._persist()

    def clear_rows(self) -> None:
        self._rows = []
        self.invalidate()
        self._persist()

    def rows_for_branch(self, branch: str) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._rows if text_value(row.get("branch")) == branch]

    def unassigned_view(self, assigned: AssignedKeys) -> UnassignedSelection:
        """Return cached rows that are free to assign under ``assigned``.

        The view is recomputed when the assigned keys change or after
        :meth:`invalidate`.
        """

        if self._view is None or self._view_keys != assigned:
            self._view = filter_unassigned(self._rows, assigned)
            self._view_keys = assigned
        return self._view

    def invalidate(self, *_: Any) -> None:
        """Drop the cached unassigned view; usable as an orchestrator listener."""

        self._view = None
        self._view_keys = None

    # ------------------------------------------------------------------
    # Recovered loans
    # ------------------------------------------------------------------
    @property
    def recovered_loans(self) -> List[Dict[str, Any]]:
        return [dict(loan) for loan in self._recovered]

    def add_recovered_loan(self, loan: Mapping[str, Any]) -> None:
        """Record ``loan`` as recovered; re-adding the same account replaces it."""

        entry = adapt_legacy_record(loan)
        account_number = text_value(entry.get("account_number"))
        record_id = text_value(entry.get("record_id"))
        if not account_number and not record_id:
            raise ValidationError("Recovered loan needs a record id or account number")
        entry.setdefault("recovered_at", datetime.now(timezone.utc).isoformat())
        self._recovered = [
            existing
            for existing in self._recovered
            if not (
                (account_number and text_value(existing.get("account_number")) == account_number)
                or (record_id and text_value(existing.get("record_id")) == record_id)
            )
        ]
        self._recovered.append(entry)
        self._persist()

    def remove_recovered_loan(self, loan_id: str) -> bool:
        """Remove entries whose sequence number, record id, or account number is ``loan_id``."""

        before = len(self._recovered)
        self._recovered = [
            loan
            for loan in self._recovered
            if loan_id
            not in {
                text_value(loan.get("sr_no")),
                text_value(loan.get("record_id")),
                text_value(loan.get("account_number")),
            }
        ]
        removed = len(self._recovered) != before
        if removed:
            self._persist()
        return removed

    def recovery_stats(self, all_loans: Sequence[Mapping[str, Any]] | None = None) -> RecoveryStats:
        """Summarise recovered loans, and pending totals when ``all_loans`` is given."""

        stats = RecoveryStats(
            total_recovered=sum(loan_amount(loan) for loan in self._recovered),
            recovered_cases=len(self._recovered),
        )
        if all_loans is not None:
            total = sum(loan_amount(adapt_legacy_record(loan)) for loan in all_loans)
            stats.total_pending = total - stats.total_recovered
            stats.pending_cases = len(all_loans) - stats.recovered_cases
        return stats

    # ------------------------------------------------------------------
    # File handling
    # ------------------------------------------------------------------
    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Workspace file {self.path} is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ValidationError(f"Workspace file {self.path} has an unexpected layout")
        self._rows = [adapt_legacy_record(row) for row in data.get("rows", []) if isinstance(row, dict)]
        self._recovered = [adapt_legacy_record(loan) for loan in data.get("recovered", []) if isinstance(loan, dict)]
        LOGGER.debug("Loaded workspace %s rows=%s recovered=%s", self.path, len(self._rows), len(self._recovered))

    def _persist(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"version": WORKSPACE_VERSION, "rows": self._rows, "recovered": self._recovered}
        staging = self.path.with_suffix(self.path.suffix + ".tmp")
        with staging.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2, default=str)
        os.replace(staging, self.path)


__all__ = ["ImportWorkspace", "RecoveryStats", "loan_amount"]
