"""Persistence for the owner directory (accounts that records are assigned to)."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from npatrack.errors import ConflictError, NotFoundError
from npatrack.services.customers.models import Owner, OwnerCreate, Role
from npatrack.store import sql as sql_schema
from npatrack.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


class OwnerStore:
    """CRUD helpers around the ``owners`` table."""

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

    def create_owner(self, request: OwnerCreate) -> Owner:
        """Insert an owner; a taken id or username raises :class:`ConflictError`."""

        owner_id = request.owner_id or str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        try:
            with self._session_scope() as session:
                session.execute(
                    sa.insert(sql_schema.owners).values(
                        owner_id=owner_id,
                        username=request.username,
                        role=request.role.value,
                        branch=request.branch,
                        created_at=now,
                    )
                )
        except IntegrityError as exc:
            raise ConflictError(f"Owner '{request.username}' already exists") from exc
        LOGGER.info("Created owner owner_id=%s role=%s", owner_id, request.role.value)
        return Owner(owner_id=owner_id, username=request.username, role=request.role, branch=request.branch, created_at=now)

    def get_owner(self, owner_id: str) -> Owner | None:
        if not owner_id:
            return None
        with self._session_scope() as session:
            row = session.execute(sa.select(sql_schema.owners).where(sql_schema.owners.c.owner_id == owner_id)).first()
        return self._to_owner(row) if row is not None else None

    def require_owner(self, owner_id: str) -> Owner:
        owner = self.get_owner(owner_id)
        if owner is None:
            raise NotFoundError(f"User {owner_id} not found")
        return owner

    def list_owners(self, *, role: Role | None = None, branch: str | None = None) -> List[Owner]:
        stmt = sa.select(sql_schema.owners).order_by(sql_schema.owners.c.username.asc())
        if role is not None:
            stmt = stmt.where(sql_schema.owners.c.role == role.value)
        if branch:
            stmt = stmt.where(sql_schema.owners.c.branch == branch)
        with self._session_scope() as session:
            rows = session.execute(stmt).all()
        return [self._to_owner(row) for row in rows]

    @staticmethod
    def _to_owner(row: Any) -> Owner:
        return Owner.model_validate(dict(row._mapping))


__all__ = ["OwnerStore"]
