"""Unit tests for the owner directory and visit log stores."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker

from npatrack.errors import ConflictError, NotFoundError, ValidationError
from npatrack.services.customers.models import CustomerPayload, OwnerCreate, Role, VisitCreate
from npatrack.store.customer_store import CustomerStore
from npatrack.store.owner_store import OwnerStore
from npatrack.store.sql import create_sql_engine, session_factory
from npatrack.store.visit_store import VisitStore


def _session_factory(tmp_path: Path) -> sessionmaker:
    return session_factory(engine=create_sql_engine(f"sqlite:///{tmp_path / 'owners.db'}"))


def test_owner_create_get_and_list(tmp_path):
    store = OwnerStore(session_factory=_session_factory(tmp_path))
    created = store.create_owner(OwnerCreate(username="agent_1", role=Role.USER, branch="Main Branch"))
    store.create_owner(OwnerCreate(owner_id="mgr", username="manager_1", role=Role.MANAGER, branch="West"))

    assert created.owner_id
    assert store.get_owner(created.owner_id).username == "agent_1"
    assert store.get_owner("") is None
    assert [owner.username for owner in store.list_owners()] == ["agent_1", "manager_1"]
    assert [owner.owner_id for owner in store.list_owners(role=Role.MANAGER)] == ["mgr"]
    assert [owner.username for owner in store.list_owners(branch="Main Branch")] == ["agent_1"]


def test_owner_duplicates_and_missing(tmp_path):
    store = OwnerStore(session_factory=_session_factory(tmp_path))
    store.create_owner(OwnerCreate(owner_id="a", username="agent_1"))

    with pytest.raises(ConflictError):
        store.create_owner(OwnerCreate(owner_id="b", username="agent_1"))
    with pytest.raises(NotFoundError, match="User ghost not found"):
        store.require_owner("ghost")


def test_visits_are_ranged_and_newest_first(tmp_path):
    factory = _session_factory(tmp_path)
    CustomerStore(session_factory=factory).create_customer(
        CustomerPayload(
            record_id="C001",
            account_number="ACC-1",
            branch="Main Branch",
            customer_name="Asha",
            product_type="Personal Loan",
            scheme_code="PL001",
            sanction_limit=1000,
            date_of_npa="2024-01-15",
            outstanding_balance=100,
            principal_overdue=80,
            interest_overdue=20,
        )
    )
    visits = VisitStore(session_factory=factory)
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    for offset in range(3):
        visits.create_visit(
            VisitCreate(record_id="C001", feedback_text=f"visit {offset}", visit_date=base + timedelta(days=offset)),
            owner_id="agent-1",
        )

    listed = visits.list_for_customer("C001")
    assert [visit.feedback_text for visit in listed] == ["visit 2", "visit 1", "visit 0"]

    ranged = visits.list_for_owner("agent-1", start=base + timedelta(days=1), end=base + timedelta(days=1, hours=1))
    assert [visit.feedback_text for visit in ranged] == ["visit 1"]

    with pytest.raises(ValidationError):
        visits.list_for_owner("agent-1", start=base, end=base - timedelta(days=1))


def test_visit_for_missing_customer(tmp_path):
    visits = VisitStore(session_factory=_session_factory(tmp_path))
    with pytest.raises(NotFoundError):
        visits.create_visit(VisitCreate(record_id="nope", feedback_text="closed"), owner_id="agent-1")
