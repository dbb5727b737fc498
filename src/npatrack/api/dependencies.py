"""Dependency providers shared by the API routers.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Depends

from npatrack.services.customers.bulk import BulkUpsertEngine
from npatrack.services.factories import build_bulk_engine, build_customer_store, build_owner_store, build_visit_store
from npatrack.settings import Settings, get_settings
from npatrack.store.customer_store import CustomerStore
from npatrack.store.owner_store import OwnerStore
from npatrack.store.visit_store import VisitStore


def get_api_settings() -> Settings:
    return get_settings()


def get_customer_store() -> CustomerStore:
    return build_customer_store()


def get_owner_store() -> OwnerStore:
    return build_owner_store()


def get_visit_store() -> VisitStore:
    return build_visit_store()


def get_bulk_engine(
    store: CustomerStore = Depends(get_customer_store),
    owners: OwnerStore = Depends(get_owner_store),
    settings: Settings = Depends(get_api_settings),
) -> BulkUpsertEngine:
    return build_bulk_engine(store=store, owners=owners, settings=settings)
