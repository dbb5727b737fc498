"""Client-side filter that drops records already bound to an owner."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Sequence

from npatrack.errors import ValidationError
from npatrack.services.customers.models import text_value


@dataclass(frozen=True, slots=True)
class AssignedKeys:
    """Record ids and account numbers of persisted, assigned records."""

    record_ids: FrozenSet[str] = frozenset()
    account_numbers: FrozenSet[str] = frozenset()

    @classmethod
    def from_values(cls, record_ids: Iterable[Any] = (), account_numbers: Iterable[Any] = ()) -> "AssignedKeys":
        """Build the key sets, ignoring blank values."""

        return cls(
            record_ids=frozenset(key for key in map(text_value, record_ids) if key),
            account_numbers=frozenset(key for key in map(text_value, account_numbers) if key),
        )

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "AssignedKeys":
        """Collect keys from records whose ``assigned_owner_id`` is set."""

        assigned = [record for record in records if text_value(record.get("assigned_owner_id"))]
        return cls.from_values(
            (record.get("record_id") for record in assigned),
            (record.get("account_number") for record in assigned),
        )

    def __bool__(self) -> bool:
        return bool(self.record_ids or self.account_numbers)

    def matches(self, record: Mapping[str, Any]) -> bool:
        record_id = text_value(record.get("record_id"))
        account_number = text_value(record.get("account_number"))
        return (bool(record_id) and record_id in self.record_ids) or (
            bool(account_number) and account_number in self.account_numbers
        )


@dataclass(slots=True)
class UnassignedSelection:
    """Records still free to assign, plus the branches they belong to."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    branches: List[str] = field(default_factory=list)
    dropped: int = 0


def filter_unassigned(records: Sequence[Mapping[str, Any]], assigned: AssignedKeys) -> UnassignedSelection:
    """Keep records whose record id and account number are both unassigned.

    The result preserves input order. The filter is advisory; the server
    enforces assignment rules on its own.

    Raises:
        ValidationError: If a record has neither a record id nor an account
            number. Nothing is returned in that case.
    """

    for position, record in enumerate(records, start=1):
        if not text_value(record.get("record_id")) and not text_value(record.get("account_number")):
            raise ValidationError(f"Record {position} has neither a record id nor an account number")

    selection = UnassignedSelection()
    for record in records:
        if assigned.matches(record):
            selection.dropped += 1
            continue
        selection.records.append(dict(record))
        branch = text_value(record.get("branch"))
        if branch and branch not in selection.branches:
            selection.branches.append(branch)
    return selection


__all__ = ["AssignedKeys", "UnassignedSelection", "filter_unassigned"]
