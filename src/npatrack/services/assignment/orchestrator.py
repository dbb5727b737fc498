"""Create-then-assign workflow for spreadsheet rows picked for an owner.

The create and assign steps are separate requests with no compensating
rollback: if the assign step is rejected the created records stay unassigned
and :meth:`AssignmentOrchestrator.retry_assignment` re-runs only that step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Sequence

from npatrack.client.api import RecoveryApiClient
from npatrack.errors import AssignmentError, ValidationError
from npatrack.observability import Observability, get_observability
from npatrack.services.customers.models import FailedEntry, text_value

LOGGER = logging.getLogger(__name__)


class AssignmentPhase(str, Enum):
    STAGING = "staging"
    CREATED = "created"
    PARTIAL_CREATE_FAILURE = "partial_create_failure"
    ASSIGN_FAILED = "assign_failed"
    COMPLETED = "completed"


@dataclass(slots=True)
class AssignmentOutcome:
    """Where a run stopped and what it produced."""

    phase: AssignmentPhase
    owner_id: str
    created_ids: List[str] = field(default_factory=list)
    success_count: int = 0
    failed_entries: List[FailedEntry] = field(default_factory=list)
    modified_count: int = 0
    matched_count: int = 0
    message: str = ""

    @property
    def completed(self) -> bool:
        return self.phase is AssignmentPhase.COMPLETED


Listener = Callable[[AssignmentOutcome], Any]


class AssignmentOrchestrator:
    """Drive staged rows through create and assign against the API."""

    def __init__(self, client: RecoveryApiClient, *, observability: Observability | None = None) -> None:
        self._client = client
        self._listeners: List[Listener] = []
        self._observability = observability or get_observability(component="assignment")
        self.phase = AssignmentPhase.STAGING

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every completed outcome; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def assign_selected(self, rows: Sequence[Mapping[str, Any]], owner_id: str) -> AssignmentOutcome:
        """Create the explicitly picked ``rows`` and assign them to ``owner_id``."""

        return self._run(list(rows), owner_id)

    def assign_staged_branch(self, rows: Sequence[Mapping[str, Any]], branch: str, owner_id: str) -> AssignmentOutcome:
        """Create every staged row of ``branch`` and assign them to ``owner_id``."""

        if not text_value(branch):
            raise ValidationError("A branch is required")
        selected = [row for row in rows if text_value(row.get("branch")) == branch]
        return self._run(selected, owner_id)

    def retry_assignment(self, created_ids: Sequence[str], owner_id: str) -> AssignmentOutcome:
        """Re-run only the assign step for records that were already created."""

        ids = [record_id for record_id in created_ids if record_id]
        if not ids:
            raise ValidationError("No created records to assign")
        self._require_owner(owner_id)
        outcome = AssignmentOutcome(
            phase=AssignmentPhase.CREATED, owner_id=owner_id, created_ids=ids, success_count=len(ids)
        )
        return self._assign(outcome)

    def assign_persisted_branch(self, branch: str, owner_id: str, *, reassign: bool = False) -> AssignmentOutcome:
        """Assign already-persisted records of ``branch`` in a single request."""

        if not text_value(branch):
            raise ValidationError("A branch is required")
        self._require_owner(owner_id)
        result = self._client.assign_by_branch(branch, owner_id, reassign=reassign)
        outcome = AssignmentOutcome(
            phase=AssignmentPhase.COMPLETED,
            owner_id=owner_id,
            modified_count=result.modified_count,
            matched_count=result.matched_count,
            message=result.message,
        )
        return self._complete(outcome)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------
    def _run(self, rows: List[Mapping[str, Any]], owner_id: str) -> AssignmentOutcome:
        self.phase = AssignmentPhase.STAGING
        if not rows:
            raise ValidationError("Select at least one customer to assign")
        self._require_owner(owner_id)

        candidates = [self._unassigned_candidate(row) for row in rows]
        created = self._client.bulk_upsert(candidates)
        if created.failed_entries:
            self.phase = AssignmentPhase.PARTIAL_CREATE_FAILURE
            LOGGER.warning(
                "Create step rejected %s of %s records; assignment skipped",
                created.failed_count,
                len(candidates),
            )
            self._observability.emit_event(
                "assignment.create_failed",
                owner_id=owner_id,
                success_count=created.success_count,
                failed_count=created.failed_count,
            )
            return AssignmentOutcome(
                phase=AssignmentPhase.PARTIAL_CREATE_FAILURE,
                owner_id=owner_id,
                created_ids=list(created.customer_ids),
                success_count=created.success_count,
                failed_entries=list(created.failed_entries),
                message="Some entries were not processed due to errors",
            )

        self.phase = AssignmentPhase.CREATED
        outcome = AssignmentOutcome(
            phase=AssignmentPhase.CREATED,
            owner_id=owner_id,
            created_ids=list(created.customer_ids),
            success_count=created.success_count,
        )
        return self._assign(outcome)

    def _assign(self, outcome: AssignmentOutcome) -> AssignmentOutcome:
        try:
            result = self._client.assign_by_ids(outcome.created_ids, outcome.owner_id)
        except AssignmentError as exc:
            self.phase = AssignmentPhase.ASSIGN_FAILED
            self._observability.emit_event(
                "assignment.assign_failed",
                owner_id=outcome.owner_id,
                created_count=len(outcome.created_ids),
                status_code=exc.status_code,
            )
            raise AssignmentError(
                f"Customers were created but not assigned: {exc.message}",
                owner_id=outcome.owner_id,
                created_ids=outcome.created_ids,
                status_code=exc.status_code,
                kind=exc.kind,
            ) from exc

        outcome.phase = AssignmentPhase.COMPLETED
        outcome.modified_count = result.modified_count
        outcome.matched_count = result.matched_count
        outcome.message = result.message
        return self._complete(outcome)

    def _complete(self, outcome: AssignmentOutcome) -> AssignmentOutcome:
        self.phase = AssignmentPhase.COMPLETED
        self._observability.emit_event(
            "assignment.completed",
            owner_id=outcome.owner_id,
            modified_count=outcome.modified_count,
            matched_count=outcome.matched_count,
        )
        self._observability.increment("assignment.records", value=outcome.modified_count)
        for listener in list(self._listeners):
            listener(outcome)
        return outcome

    @staticmethod
    def _require_owner(owner_id: str) -> None:
        if not text_value(owner_id):
            raise ValidationError("Select an owner to assign customers to")

    @staticmethod
    def _unassigned_candidate(row: Mapping[str, Any]) -> Dict[str, Any]:
        candidate = dict(row)
        candidate.pop("assigned_owner_id", None)
        candidate.pop("assignedOwnerId", None)
        candidate.pop("assignedTo", None)
        return candidate


__all__ = ["AssignmentOrchestrator", "AssignmentOutcome", "AssignmentPhase"]
