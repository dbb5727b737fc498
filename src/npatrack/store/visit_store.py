"""Persistence for field visits logged against customer records."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, List

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from npatrack.errors import NotFoundError, ValidationError
from npatrack.services.customers.models import Visit, VisitCreate
from npatrack.store import sql as sql_schema
from npatrack.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


class VisitStore:
    """Insert and range queries over the ``visits`` table."""

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

    def create_visit(self, request: VisitCreate, *, owner_id: str) -> Visit:
        """Log a visit by ``owner_id``; the customer must exist."""

        visit = Visit(
            visit_id=str(uuid.uuid4()),
            owner_id=owner_id,
            record_id=request.record_id,
            feedback_text=request.feedback_text,
            image_url=request.image_url,
            lat=request.lat,
            lng=request.lng,
            visit_date=request.visit_date or datetime.now(timezone.utc),
        )
        with self._session_scope() as session:
            exists = session.execute(
                sa.select(sql_schema.customers.c.record_id).where(sql_schema.customers.c.record_id == request.record_id)
            ).first()
            if exists is None:
                raise NotFoundError(f"Customer {request.record_id} not found")
            session.execute(sa.insert(sql_schema.visits).values(**visit.model_dump()))
        LOGGER.info("Logged visit visit_id=%s record_id=%s owner_id=%s", visit.visit_id, visit.record_id, owner_id)
        return visit

    def list_for_customer(
        self, record_id: str, *, start: datetime | None = None, end: datetime | None = None
    ) -> List[Visit]:
        return self._list(sql_schema.visits.c.record_id == record_id, start, end)

    def list_for_owner(self, owner_id: str, *, start: datetime | None = None, end: datetime | None = None) -> List[Visit]:
        return self._list(sql_schema.visits.c.owner_id == owner_id, start, end)

    def _list(self, selector, start: datetime | None, end: datetime | None) -> List[Visit]:
        if start and end and start > end:
            raise ValidationError("startDate must be before endDate")
        visits = sql_schema.visits
        stmt = sa.select(visits).where(selector)
        if start:
            stmt = stmt.where(visits.c.visit_date >= start)
        if end:
            stmt = stmt.where(visits.c.visit_date <= end)
        with self._session_scope() as session:
            rows = session.execute(stmt.order_by(visits.c.visit_date.desc())).all()
        return [Visit.model_validate(dict(row._mapping)) for row in rows]


__all__ = ["VisitStore"]
