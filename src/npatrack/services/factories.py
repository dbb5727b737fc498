"""Factory helpers that instantiate stores and services based on configuration.

These helpers centralize how the API dependencies and the import job honor the
storage settings declared in :mod:`npatrack.settings`. All stores built here
share one SQL engine per process.
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy.orm import sessionmaker

from npatrack.observability import get_observability
from npatrack.services.customers.bulk import BulkUpsertEngine
from npatrack.settings import Settings, get_settings
from npatrack.store.customer_store import CustomerStore
from npatrack.store.owner_store import OwnerStore
from npatrack.store.sql import session_factory as build_sql_session_factory
from npatrack.store.visit_store import VisitStore


@lru_cache(maxsize=1)
def shared_session_factory() -> sessionmaker:
    """Return the process-wide sessionmaker for the configured backend."""

    return build_sql_session_factory(settings=get_settings())


def build_customer_store(session_factory: sessionmaker | None = None) -> CustomerStore:
    """Instantiate a :class:`CustomerStore` backed by the configured SQL engine."""

    return CustomerStore(session_factory=session_factory or shared_session_factory())


def build_owner_store(session_factory: sessionmaker | None = None) -> OwnerStore:
    return OwnerStore(session_factory=session_factory or shared_session_factory())


def build_visit_store(session_factory: sessionmaker | None = None) -> VisitStore:
    return VisitStore(session_factory=session_factory or shared_session_factory())


def build_bulk_engine(
    *,
    store: CustomerStore | None = None,
    owners: OwnerStore | None = None,
    settings: Settings | None = None,
) -> BulkUpsertEngine:
    """Wire a :class:`BulkUpsertEngine` to the configured stores."""

    resolved = settings or get_settings()
    return BulkUpsertEngine(
        store or build_customer_store(),
        owners or build_owner_store(),
        settings=resolved,
        observability=get_observability(component="bulk_upsert", settings=resolved),
    )


__all__ = [
    "build_bulk_engine",
    "build_customer_store",
    "build_owner_store",
    "build_visit_store",
    "shared_session_factory",
]
