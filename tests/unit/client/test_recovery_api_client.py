"""Tests for the HTTP client, run against the app through TestClient."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from npatrack.api.app import create_app
from npatrack.api.dependencies import get_api_settings, get_customer_store, get_owner_store, get_visit_store
from npatrack.client.api import API_KEY_HEADER, RecoveryApiClient
from npatrack.errors import AssignmentError, AuthorizationError, ErrorKind, NotFoundError, NpaTrackError
from npatrack.services.assignment.orchestrator import AssignmentOrchestrator, AssignmentPhase
from npatrack.services.customers.models import OwnerCreate
from npatrack.settings import get_settings
from npatrack.store.customer_store import CustomerStore
from npatrack.store.owner_store import OwnerStore
from npatrack.store.sql import create_sql_engine, session_factory
from npatrack.store.visit_store import VisitStore


def _row(account: str, record_id: str, branch: str = "Main Branch"):
    return {
        "record_id": record_id,
        "account_number": account,
        "branch": branch,
        "customer_name": f"Customer {account}",
        "product_type": "Personal Loan",
        "scheme_code": "PL001",
        "sanction_limit": 800000.0,
        "date_of_npa": "2024-01-15",
        "outstanding_balance": 1000.0,
        "principal_overdue": 900.0,
        "interest_overdue": 100.0,
    }


@pytest.fixture()
def backend(tmp_path: Path):
    factory = session_factory(engine=create_sql_engine(f"sqlite:///{tmp_path / 'client.db'}"))
    customers = CustomerStore(session_factory=factory)
    owners = OwnerStore(session_factory=factory)
    owners.create_owner(OwnerCreate(owner_id="agent-1", username="agent_1", branch="Main Branch"))
    settings = get_settings()

    app = create_app()
    app.dependency_overrides[get_customer_store] = lambda: customers
    app.dependency_overrides[get_owner_store] = lambda: owners
    app.dependency_overrides[get_visit_store] = lambda: VisitStore(session_factory=factory)
    app.dependency_overrides[get_api_settings] = lambda: settings
    client = RecoveryApiClient(TestClient(app), settings=settings, api_key="dev-admin-token")
    yield client, customers
    app.dependency_overrides.clear()


def test_bulk_upsert_reports_partial_results(backend):
    client, _ = backend
    client.bulk_upsert([_row("ACC-1", "C001")])

    result = client.bulk_upsert([_row("ACC-2", "C001"), _row("ACC-3", "C003")])

    assert result.status == "partial"
    assert result.customer_ids == ["C003"]
    assert result.failed_entries[0].kind is ErrorKind.CONFLICT


def test_fetch_assigned_keys_pages_through_results(backend):
    client, customers = backend
    client.bulk_upsert([_row(f"ACC-{index}", f"C00{index}") for index in range(1, 5)])
    customers.assign_by_ids(["C001", "C002", "C004"], "agent-1")

    keys = client.fetch_assigned_keys(page_size=2)

    assert keys.record_ids == frozenset({"C001", "C002", "C004"})
    assert keys.account_numbers == frozenset({"ACC-1", "ACC-2", "ACC-4"})


def test_errors_are_rebuilt_from_envelope(backend):
    client, _ = backend

    with pytest.raises(NotFoundError) as excinfo:
        client.get_customer("missing")
    assert excinfo.value.status_code == 404

    with pytest.raises(AssignmentError) as assign_error:
        client.assign_by_ids(["C001"], "ghost")
    assert assign_error.value.status_code == 404
    assert assign_error.value.kind is ErrorKind.NOT_FOUND
    assert assign_error.value.created_ids == ["C001"]


def test_orchestrator_end_to_end(backend):
    client, customers = backend
    orchestrator = AssignmentOrchestrator(client)

    outcome = orchestrator.assign_staged_branch(
        [_row("ACC-1", "C001"), _row("ACC-2", "C002", branch="West")], "Main Branch", "agent-1"
    )

    assert outcome.phase is AssignmentPhase.COMPLETED
    assert outcome.modified_count == 1
    assert customers.get_customer("C001").assigned_owner_id == "agent-1"
    assert client.summary_stats().total_customers == 1

    point = client.append_location("C001", lat=10.0, lng=20.0)
    assert point.captured_by == "owner-admin"


def test_api_key_header_and_transport_failures():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get(API_KEY_HEADER))
        if request.url.path == "/customers/stats/summary":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(403, json={"message": "Invalid API key", "kind": "unauthorized"})

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://testserver")
    client = RecoveryApiClient(http, settings=get_settings(), api_key="secret")

    with pytest.raises(AuthorizationError):
        client.list_customers(page=1)
    with pytest.raises(NpaTrackError, match="API request failed"):
        client.summary_stats()
    assert seen == ["secret", "secret"]
