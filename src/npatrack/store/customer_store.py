"""Persistence for customer records and their location history."""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Sequence, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from npatrack.errors import ConflictError, NotFoundError, NpaTrackError, ValidationError
from npatrack.services.customers.models import CustomerPayload, CustomerRecord, GeoPoint, SummaryStats
from npatrack.store import sql as sql_schema
from npatrack.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

DUPLICATE_REASON = "Duplicate entry (recordId or accountNumber)"
_IN_CLAUSE_CHUNK = 500

# Wire and attribute spellings accepted for ``sortBy``.
SORTABLE_COLUMNS: Dict[str, str] = {
    "dateOfNpa": "date_of_npa",
    "dateOfNPA": "date_of_npa",
    "date_of_npa": "date_of_npa",
    "customerName": "customer_name",
    "customer_name": "customer_name",
    "accountNumber": "account_number",
    "account_number": "account_number",
    "recordId": "record_id",
    "record_id": "record_id",
    "srNo": "sr_no",
    "sr_no": "sr_no",
    "branch": "branch",
    "outstandingBalance": "outstanding_balance",
    "outstanding_balance": "outstanding_balance",
    "netBalance": "net_balance",
    "net_balance": "net_balance",
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _chunks(values: Sequence[str], size: int = _IN_CLAUSE_CHUNK) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


def _integrity_failure(exc: IntegrityError) -> NpaTrackError:
    """Map a unique-key violation to a conflict and any other constraint to a validation error."""

    detail = str(exc.orig).lower()
    if "unique" in detail or "duplicate" in detail:
        return ConflictError(DUPLICATE_REASON)
    return ValidationError(f"Record violates a storage constraint: {exc.orig}")


@dataclass(slots=True)
class CustomerQuery:
    """Filters, scoping, and paging for :meth:`CustomerStore.list_customers`."""

    page: int = 1
    limit: int = 10
    branch: str | None = None
    is_recovered: bool | None = None
    search: str | None = None
    sort_by: str = "dateOfNpa"
    sort_order: str = "desc"
    assigned: bool | None = None
    owner_id: str | None = None
    npa_from: date | None = None
    npa_to: date | None = None


class CustomerStore:
    """CRUD, assignment, and reporting helpers around the ``customers`` table."""

    def __init__(self, *, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_customer(self, record_id: str) -> CustomerRecord:
        """Return the record with its location history.

        Raises:
            NotFoundError: If no record has ``record_id``.
        """

        with self._session_scope() as session:
            row = session.execute(
                sa.select(sql_schema.customers).where(sql_schema.customers.c.record_id == record_id)
            ).first()
            if row is None:
                raise NotFoundError(f"Customer {record_id} not found")
            history = self._load_locations(session, [record_id])
        return self._to_record(row, history.get(record_id, []))

    def find_by_account(self, account_number: str) -> CustomerRecord | None:
        with self._session_scope() as session:
            row = session.execute(
                sa.select(sql_schema.customers).where(sql_schema.customers.c.account_number == account_number)
            ).first()
        return self._to_record(row, []) if row is not None else None

    def list_customers(self, query: CustomerQuery) -> Tuple[List[CustomerRecord], int]:
        """Return one page of records matching ``query`` and the total match count."""

        table = sql_schema.customers
        column_name = SORTABLE_COLUMNS.get(query.sort_by)
        if column_name is None:
            raise ValidationError(f"Unsupported sortBy '{query.sort_by}'")
        if query.sort_order.lower() not in {"asc", "desc"}:
            raise ValidationError("sortOrder must be 'asc' or 'desc'")
        if query.page < 1 or query.limit < 1:
            raise ValidationError("page and limit must be positive")

        conditions = self._conditions(query)
        sort_column = table.c[column_name]
        ordering = sort_column.asc() if query.sort_order.lower() == "asc" else sort_column.desc()

        with self._session_scope() as session:
            total = session.execute(sa.select(sa.func.count()).select_from(table).where(*conditions)).scalar_one()
            rows = session.execute(
                sa.select(table)
                .where(*conditions)
                .order_by(ordering, table.c.record_id.asc())
                .offset((query.page - 1) * query.limit)
                .limit(query.limit)
            ).all()
            history = self._load_locations(session, [row.record_id for row in rows])
        return [self._to_record(row, history.get(row.record_id, [])) for row in rows], int(total)

    @staticmethod
    def total_pages(total: int, limit: int) -> int:
        return math.ceil(total / limit) if limit else 0

    def assigned_key_sets(self) -> Tuple[set[str], set[str]]:
        """Return record ids and account numbers of every assigned record."""

        table = sql_schema.customers
        with self._session_scope() as session:
            rows = session.execute(
                sa.select(table.c.record_id, table.c.account_number).where(table.c.assigned_owner_id.is_not(None))
            ).all()
        return {row.record_id for row in rows}, {row.account_number for row in rows}

    def summary_stats(self, *, branch: str | None = None) -> SummaryStats:
        """Aggregate totals for the dashboard summary, optionally for one branch."""

        table = sql_schema.customers
        recovered = table.c.is_recovered.is_(True)
        stmt = sa.select(
            sa.func.count(table.c.record_id),
            sa.func.coalesce(sa.func.sum(table.c.outstanding_balance), 0),
            sa.func.coalesce(sa.func.sum(sa.case((recovered, table.c.net_balance), else_=0)), 0),
            sa.func.coalesce(sa.func.sum(sa.case((recovered, 1), else_=0)), 0),
        )
        if branch:
            stmt = stmt.where(table.c.branch == branch)
        with self._session_scope() as session:
            count, outstanding, recovered_total, recovered_count = session.execute(stmt).one()
        return SummaryStats(
            total_customers=int(count),
            total_outstanding=float(outstanding),
            total_recovered=float(recovered_total),
            recovered_count=int(recovered_count),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create_customer(self, payload: CustomerPayload) -> CustomerRecord:
        """Insert a new record; duplicates raise :class:`ConflictError`."""

        if not payload.record_id:
            raise ValidationError("record_id is required")
        now = _utcnow()
        values = payload.model_dump()
        values.update(created_at=now, updated_at=now)
        table = sql_schema.customers
        try:
            with self._session_scope() as session:
                clash = session.execute(
                    sa.select(table.c.record_id).where(
                        sa.or_(
                            table.c.record_id == payload.record_id,
                            table.c.account_number == payload.account_number,
                        )
                    )
                ).first()
                if clash is not None:
                    raise ConflictError(DUPLICATE_REASON)
                session.execute(sa.insert(table).values(**values))
        except IntegrityError as exc:
            raise _integrity_failure(exc) from exc
        LOGGER.info("Created customer record_id=%s account=%s", payload.record_id, payload.account_number)
        return self.get_customer(payload.record_id)

    def upsert_customer(self, payload: CustomerPayload) -> Tuple[str, bool]:
        """Insert or replace the record keyed by ``account_number``.

        Returns:
            The persisted record id and whether a new row was inserted.

        Raises:
            ConflictError: If ``record_id`` names a different account's record,
                or differs from the stored id for the same account number.
            ValidationError: If an insert is required but ``record_id`` is blank.
        """

        table = sql_schema.customers
        now = _utcnow()
        try:
            with self._session_scope() as session:
                existing = session.execute(
                    sa.select(table.c.record_id).where(table.c.account_number == payload.account_number)
                ).first()

                if existing is not None:
                    if payload.record_id and payload.record_id != existing.record_id:
                        raise ConflictError(DUPLICATE_REASON)
                    # Only explicitly supplied optional fields replace stored values.
                    values = payload.model_dump(exclude_unset=True, exclude={"record_id", "assigned_owner_id"})
                    if payload.assigned_owner_id:
                        values["assigned_owner_id"] = payload.assigned_owner_id
                    values["updated_at"] = now
                    session.execute(sa.update(table).where(table.c.record_id == existing.record_id).values(**values))
                    return existing.record_id, False

                if not payload.record_id:
                    raise ValidationError("record_id is required")
                taken = session.execute(sa.select(table.c.account_number).where(table.c.record_id == payload.record_id)).first()
                if taken is not None:
                    raise ConflictError(DUPLICATE_REASON)
                values = payload.model_dump()
                values.update(created_at=now, updated_at=now)
                session.execute(sa.insert(table).values(**values))
                return payload.record_id, True
        except IntegrityError as exc:
            raise _integrity_failure(exc) from exc

    def update_customer(self, record_id: str, changes: Dict[str, Any]) -> CustomerRecord:
        """Apply a partial update. Concurrent writers are last-write-wins."""

        table = sql_schema.customers
        values = dict(changes)
        if values.get("is_recovered") is True and values.get("recovery_date") is None:
            values["recovery_date"] = _utcnow().date()
        if values.get("is_recovered") is False:
            values.setdefault("recovery_date", None)
            values.setdefault("recovered_by", None)
        values["updated_at"] = _utcnow()
        try:
            with self._session_scope() as session:
                result = session.execute(sa.update(table).where(table.c.record_id == record_id).values(**values))
                if result.rowcount == 0:
                    raise NotFoundError(f"Customer {record_id} not found")
        except IntegrityError as exc:
            raise _integrity_failure(exc) from exc
        return self.get_customer(record_id)

    def delete_customer(self, record_id: str) -> None:
        """Hard delete a record together with its locations and visits."""

        with self._session_scope() as session:
            session.execute(sa.delete(sql_schema.visits).where(sql_schema.visits.c.record_id == record_id))
            session.execute(
                sa.delete(sql_schema.customer_locations).where(sql_schema.customer_locations.c.record_id == record_id)
            )
            result = session.execute(sa.delete(sql_schema.customers).where(sql_schema.customers.c.record_id == record_id))
            if result.rowcount == 0:
                raise NotFoundError(f"Customer {record_id} not found")
        LOGGER.info("Deleted customer record_id=%s", record_id)

    def assign_by_ids(self, record_ids: Iterable[str], owner_id: str, *, reassign: bool = False) -> Tuple[int, int]:
        """Bind records to ``owner_id``.

        Returns:
            ``(matched, modified)``: how many of the ids exist, and how many
            were bound. Without ``reassign`` only unassigned records change.
        """

        table = sql_schema.customers
        unique_ids = list(dict.fromkeys(record_id for record_id in record_ids if record_id))
        matched = modified = 0
        with self._session_scope() as session:
            for chunk in _chunks(unique_ids):
                selector = table.c.record_id.in_(chunk)
                matched += session.execute(sa.select(sa.func.count()).select_from(table).where(selector)).scalar_one()
                modified += self._assign(session, selector, owner_id, reassign=reassign)
        LOGGER.info("Assigned %s of %s requested records to owner_id=%s", modified, len(unique_ids), owner_id)
        return int(matched), int(modified)

    def assign_by_branch(self, branch: str, owner_id: str, *, reassign: bool = False) -> Tuple[int, int]:
        """Bind every record of ``branch`` to ``owner_id``; see :meth:`assign_by_ids`."""

        table = sql_schema.customers
        selector = table.c.branch == branch
        with self._session_scope() as session:
            matched = session.execute(sa.select(sa.func.count()).select_from(table).where(selector)).scalar_one()
            modified = self._assign(session, selector, owner_id, reassign=reassign)
        LOGGER.info("Assigned %s records of branch=%s to owner_id=%s", modified, branch, owner_id)
        return int(matched), int(modified)

    def append_location(
        self,
        record_id: str,
        *,
        lat: float,
        lng: float,
        captured_by: str | None = None,
        captured_at: datetime | None = None,
    ) -> GeoPoint:
        """Append a coordinate to the record's history.

        Raises:
            NotFoundError: If the record does not exist; nothing is written.
        """

        timestamp = captured_at or _utcnow()
        with self._session_scope() as session:
            exists = session.execute(
                sa.select(sql_schema.customers.c.record_id).where(sql_schema.customers.c.record_id == record_id)
            ).first()
            if exists is None:
                raise NotFoundError(f"Customer {record_id} not found")
            session.execute(
                sa.insert(sql_schema.customer_locations).values(
                    record_id=record_id,
                    lat=lat,
                    lng=lng,
                    captured_at=timestamp,
                    captured_by=captured_by,
                )
            )
        return GeoPoint(lat=lat, lng=lng, captured_at=timestamp, captured_by=captured_by)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _assign(session: Session, selector: Any, owner_id: str, *, reassign: bool) -> int:
        table = sql_schema.customers
        if reassign:
            eligible = sa.or_(table.c.assigned_owner_id.is_(None), table.c.assigned_owner_id != owner_id)
        else:
            eligible = table.c.assigned_owner_id.is_(None)
        result = session.execute(
            sa.update(table).where(selector, eligible).values(assigned_owner_id=owner_id, updated_at=_utcnow())
        )
        return result.rowcount or 0

    @staticmethod
    def _conditions(query: CustomerQuery) -> List[Any]:
        table = sql_schema.customers
        conditions: List[Any] = []
        if query.branch:
            conditions.append(table.c.branch == query.branch)
        if query.is_recovered is not None:
            conditions.append(table.c.is_recovered.is_(query.is_recovered))
        if query.assigned is True:
            conditions.append(table.c.assigned_owner_id.is_not(None))
        elif query.assigned is False:
            conditions.append(table.c.assigned_owner_id.is_(None))
        if query.owner_id:
            conditions.append(table.c.assigned_owner_id == query.owner_id)
        if query.npa_from:
            conditions.append(table.c.date_of_npa >= query.npa_from)
        if query.npa_to:
            conditions.append(table.c.date_of_npa <= query.npa_to)
        if query.search:
            pattern = f"%{query.search.strip()}%"
            conditions.append(
                sa.or_(
                    table.c.customer_name.ilike(pattern),
                    table.c.account_number.ilike(pattern),
                    table.c.record_id.ilike(pattern),
                )
            )
        return conditions

    @staticmethod
    def _load_locations(session: Session, record_ids: Sequence[str]) -> Dict[str, List[GeoPoint]]:
        history: Dict[str, List[GeoPoint]] = {}
        locations = sql_schema.customer_locations
        for chunk in _chunks(list(record_ids)):
            rows = session.execute(
                sa.select(locations)
                .where(locations.c.record_id.in_(chunk))
                .order_by(locations.c.captured_at.asc(), locations.c.location_id.asc())
            ).all()
            for row in rows:
                history.setdefault(row.record_id, []).append(
                    GeoPoint(lat=row.lat, lng=row.lng, captured_at=row.captured_at, captured_by=row.captured_by)
                )
        return history

    @staticmethod
    def _to_record(row: Any, history: List[GeoPoint]) -> CustomerRecord:
        data = dict(row._mapping)
        data["location_history"] = history
        return CustomerRecord.model_validate(data)


__all__ = ["CustomerQuery", "CustomerStore", "DUPLICATE_REASON", "SORTABLE_COLUMNS"]
