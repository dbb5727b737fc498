"""Per-record upsert of customer batches with partial-failure reporting."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError

from npatrack.errors import AuthorizationError, ErrorKind, NpaTrackError, ValidationError
from npatrack.observability import Observability, get_observability
from npatrack.services.customers.models import (
    BulkUpsertResult,
    CustomerPayload,
    FailedEntry,
    describe_validation_errors,
)
from npatrack.settings import Settings, get_settings
from npatrack.store.customer_store import CustomerStore
from npatrack.store.owner_store import OwnerStore

LOGGER = logging.getLogger(__name__)

# Per-record failures reported in the result; other errors abort the batch.
_REPORTED_KINDS = frozenset({ErrorKind.VALIDATION, ErrorKind.CONFLICT, ErrorKind.UNAUTHORIZED})


class BulkUpsertEngine:
    """Validate and upsert candidates one at a time.

    Each candidate runs in its own transaction, so one bad row never rolls back
    the others. Rejected rows are reported as :class:`FailedEntry` items in
    input order; anything else propagates.
    """

    def __init__(
        self,
        store: CustomerStore,
        owners: OwnerStore,
        *,
        settings: Settings | None = None,
        observability: Observability | None = None,
    ) -> None:
        self._store = store
        self._owners = owners
        self._settings = settings or get_settings()
        self._observability = observability or get_observability(component="bulk_upsert", settings=self._settings)

    def run(
        self,
        candidates: Sequence[Mapping[str, Any]],
        *,
        branch_scope: str | None = None,
        allow_assignment: bool = True,
    ) -> BulkUpsertResult:
        """Upsert ``candidates`` and summarise the outcome.

        ``branch_scope`` fails rows that target, or would overwrite, a record of
        another branch. ``allow_assignment=False`` ignores ``assignedOwnerId``.
        """

        max_batch = self._settings.ingestion.max_batch_size
        if len(candidates) > max_batch:
            raise ValidationError(f"Batch of {len(candidates)} records exceeds the limit of {max_batch}")

        started = time.perf_counter()
        result = BulkUpsertResult()
        owner_cache: Dict[str, bool] = {}

        for candidate in candidates:
            if not isinstance(candidate, Mapping):
                result.failed_entries.append(
                    FailedEntry(customer={"value": candidate}, reason="Customer entry must be an object")
                )
                continue
            echo = dict(candidate)
            try:
                payload = self.prepare(candidate, owner_cache, allow_assignment=allow_assignment)
                if branch_scope is not None:
                    self._check_branch(payload, branch_scope)
                record_id, created = self._store.upsert_customer(payload)
            except PydanticValidationError as exc:
                result.failed_entries.append(
                    FailedEntry(customer=echo, reason=describe_validation_errors(exc.errors()), kind=ErrorKind.VALIDATION)
                )
                continue
            except NpaTrackError as exc:
                if exc.kind not in _REPORTED_KINDS:
                    raise
                result.failed_entries.append(FailedEntry(customer=echo, reason=exc.message, kind=exc.kind))
                continue

            if payload.balance_mismatch:
                LOGGER.warning(
                    "Outstanding balance %.2f differs from principal %.2f + interest %.2f for account %s",
                    payload.outstanding_balance,
                    payload.principal_overdue,
                    payload.interest_overdue,
                    payload.account_number,
                )
            LOGGER.debug("Upserted record_id=%s created=%s", record_id, created)
            result.customer_ids.append(record_id)

        result.success_count = len(result.customer_ids)
        result.failed_count = len(result.failed_entries)
        result.status = "complete" if not result.failed_entries else "partial"

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._observability.emit_event(
            "bulk_upsert.completed",
            status=result.status,
            success_count=result.success_count,
            failed_count=result.failed_count,
            duration_ms=round(elapsed_ms, 2),
        )
        self._observability.increment("bulk_upsert.records", value=result.success_count, tags={"outcome": "success"})
        if result.failed_count:
            self._observability.increment("bulk_upsert.records", value=result.failed_count, tags={"outcome": "failed"})
        self._observability.record_timing("bulk_upsert.duration", elapsed_ms)
        return result

    def prepare(
        self,
        candidate: Mapping[str, Any],
        owner_cache: Dict[str, bool] | None = None,
        *,
        allow_assignment: bool = True,
    ) -> CustomerPayload:
        """Validate ``candidate``, fill in its record id, and drop an unknown owner.

        Raises:
            pydantic.ValidationError: If required fields are missing or malformed.
            ValidationError: If ``recoveredBy`` names an owner that does not exist.
        """

        owner_cache = {} if owner_cache is None else owner_cache
        payload = CustomerPayload.model_validate(candidate)

        updates: Dict[str, Any] = {}
        if not payload.record_id:
            updates["record_id"] = self.resolve_record_id(payload)
        owner_id = payload.assigned_owner_id
        if owner_id and not allow_assignment:
            LOGGER.info("Ignoring assignment to %s for account %s", owner_id, payload.account_number)
            updates["assigned_owner_id"] = None
        elif owner_id and not self._owner_exists(owner_id, owner_cache):
            LOGGER.info("Ignoring unknown owner %s for account %s", owner_id, payload.account_number)
            updates["assigned_owner_id"] = None
        if payload.recovered_by and not self._owner_exists(payload.recovered_by, owner_cache):
            raise ValidationError(f"recoveredBy: unknown owner '{payload.recovered_by}'")
        return payload.model_copy(update=updates) if updates else payload

    def _owner_exists(self, owner_id: str, owner_cache: Dict[str, bool]) -> bool:
        if owner_id not in owner_cache:
            owner_cache[owner_id] = self._owners.get_owner(owner_id) is not None
        return owner_cache[owner_id]

    def _check_branch(self, payload: CustomerPayload, branch: str) -> None:
        existing = self._store.find_by_account(payload.account_number)
        if payload.branch != branch or (existing is not None and existing.branch != branch):
            raise AuthorizationError("Not authorized to access customers outside your branch")

    def resolve_record_id(self, payload: CustomerPayload) -> str:
        """Reuse the stored id for the account number, else derive one from it."""

        if payload.record_id:
            return payload.record_id
        existing = self._store.find_by_account(payload.account_number)
        if existing is not None:
            return existing.record_id
        return f"{self._settings.ingestion.record_id_prefix}{payload.account_number}"


__all__ = ["BulkUpsertEngine"]
