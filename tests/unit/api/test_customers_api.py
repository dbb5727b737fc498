"""Tests for the customer, owner, and visit routers."""

from __future__ import annotations

import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from npatrack.api.app import create_app
from npatrack.api.dependencies import get_api_settings, get_customer_store, get_owner_store, get_visit_store
from npatrack.services.customers.models import OwnerCreate, Role
from npatrack.services.imports.spreadsheet import write_template
from npatrack.settings import get_settings
from npatrack.store.customer_store import CustomerStore
from npatrack.store.owner_store import OwnerStore
from npatrack.store.sql import create_sql_engine, session_factory
from npatrack.store.visit_store import VisitStore

ADMIN = {"X-API-KEY": "dev-admin-token"}
MANAGER = {"X-API-KEY": "dev-manager-token"}
AGENT = {"X-API-KEY": "dev-agent-token"}


def _customer(account: str, record_id: str | None = None, **overrides):
    body = {
        "accountNumber": account,
        "branch": "Main Branch",
        "customerName": f"Customer {account}",
        "productType": "Personal Loan",
        "schemeCode": "PL001",
        "sanctionLimit": 800000,
        "dateOfNpa": "2024-01-15",
        "outstandingBalance": 1000,
        "principalOverdue": 900,
        "interestOverdue": 100,
    }
    if record_id:
        body["recordId"] = record_id
    body.update(overrides)
    return body


@pytest.fixture()
def api(tmp_path: Path):
    factory = session_factory(engine=create_sql_engine(f"sqlite:///{tmp_path / 'api.db'}"))
    customers = CustomerStore(session_factory=factory)
    owners = OwnerStore(session_factory=factory)
    visits = VisitStore(session_factory=factory)
    owners.create_owner(OwnerCreate(owner_id="agent-1", username="agent_1", role=Role.USER, branch="Main Branch"))

    app = create_app()
    app.dependency_overrides[get_customer_store] = lambda: customers
    app.dependency_overrides[get_owner_store] = lambda: owners
    app.dependency_overrides[get_visit_store] = lambda: visits
    settings = get_settings()
    app.dependency_overrides[get_api_settings] = lambda: settings
    client = TestClient(app)
    yield client, customers
    app.dependency_overrides.clear()


def test_missing_and_unknown_api_key(api):
    client, _ = api

    missing = client.get("/customers")
    assert missing.status_code == 401
    assert missing.json() == {"message": "Missing X-API-KEY", "kind": "unauthorized"}

    unknown = client.get("/customers", headers={"X-API-KEY": "nope"})
    assert unknown.status_code == 403


def test_create_and_fetch_customer(api):
    client, _ = api

    created = client.post("/customers", json=_customer("ACC-1", "C001"), headers=ADMIN)
    assert created.status_code == 201
    assert created.json()["recordId"] == "C001"

    fetched = client.get("/customers/C001", headers=ADMIN)
    assert fetched.status_code == 200
    body = fetched.json()
    assert body["accountNumber"] == "ACC-1"
    assert body["dateOfNpa"] == "2024-01-15"
    assert body["locationHistory"] == []

    duplicate = client.post("/customers", json=_customer("ACC-1", "C009"), headers=ADMIN)
    assert duplicate.status_code == 409
    assert duplicate.json()["kind"] == "conflict"


def test_create_customer_validation_error(api):
    client, _ = api
    body = _customer("ACC-1")
    del body["customerName"]

    response = client.post("/customers", json=body, headers=ADMIN)

    assert response.status_code == 400
    assert response.json()["kind"] == "validation"


def test_agent_cannot_create_and_manager_is_branch_scoped(api):
    client, _ = api

    assert client.post("/customers", json=_customer("ACC-1"), headers=AGENT).status_code == 403
    outside = client.post("/customers", json=_customer("ACC-2", branch="West"), headers=MANAGER)
    assert outside.status_code == 403
    inside = client.post("/customers", json=_customer("ACC-3"), headers=MANAGER)
    assert inside.status_code == 201
    assert inside.json()["recordId"] == "CUST-ACC-3"


def test_bulk_all_success_returns_201(api):
    client, _ = api

    response = client.post("/customers/bulk", json=[_customer("ACC-1", "C001"), _customer("ACC-2")], headers=ADMIN)

    assert response.status_code == 201
    assert response.json() == {
        "message": "All customers processed successfully",
        "successCount": 2,
        "customerIds": ["C001", "CUST-ACC-2"],
    }


def test_bulk_partial_returns_207(api):
    client, _ = api
    client.post("/customers/bulk", json=[_customer("ACC-1", "C001")], headers=ADMIN)

    response = client.post(
        "/customers/bulk",
        json=[_customer("ACC-2", "C001"), _customer("ACC-3", "C003")],
        headers=ADMIN,
    )

    assert response.status_code == 207
    body = response.json()
    assert body["successCount"] == 1
    assert body["failedCount"] == 1
    assert body["customerIds"] == ["C003"]
    assert body["failedEntries"][0]["reason"] == "Duplicate entry (recordId or accountNumber)"
    assert body["failedEntries"][0]["customer"]["accountNumber"] == "ACC-2"


def test_list_customers_scopes_agents_to_their_records(api):
    client, customers = api
    client.post("/customers/bulk", json=[_customer("ACC-1", "C001"), _customer("ACC-2", "C002")], headers=ADMIN)
    client.post("/owners", json={"ownerId": "owner-agent", "username": "agent_dev", "branch": "Main Branch"}, headers=ADMIN)
    customers.assign_by_ids(["C002"], "owner-agent")

    agent_page = client.get("/customers", headers=AGENT).json()
    assert [record["recordId"] for record in agent_page["customers"]] == ["C002"]
    assert agent_page["customers"][0]["assignedOwnerId"] == "owner-agent"

    admin_page = client.get("/customers", params={"limit": 1, "sortBy": "recordId", "sortOrder": "asc"}, headers=ADMIN)
    assert admin_page.json()["totalCustomers"] == 2
    assert admin_page.json()["totalPages"] == 2
    assert admin_page.json()["customers"][0]["recordId"] == "C001"

    bad_sort = client.get("/customers", params={"sortBy": "nope"}, headers=ADMIN)
    assert bad_sort.status_code == 400


def test_assign_and_assign_branch(api):
    client, _ = api
    client.post("/customers/bulk", json=[_customer("ACC-1", "C001"), _customer("ACC-2", "C002")], headers=ADMIN)

    assigned = client.post("/customers/assign", json={"userId": "agent-1", "customerIds": ["C001", "C404"]}, headers=ADMIN)
    assert assigned.status_code == 200
    assert assigned.json() == {"message": "1 customers assigned successfully", "modifiedCount": 1, "matchedCount": 1}

    branch = client.post("/customers/assign-branch", json={"userId": "agent-1", "branch": "Nowhere"}, headers=ADMIN)
    assert branch.status_code == 200
    assert branch.json()["modifiedCount"] == 0
    assert branch.json()["message"] == "0 customers from branch Nowhere assigned successfully"

    unknown_owner = client.post("/customers/assign", json={"userId": "ghost", "customerIds": ["C001"]}, headers=ADMIN)
    assert unknown_owner.status_code == 404
    assert unknown_owner.json() == {"message": "User ghost not found", "kind": "not_found"}

    empty = client.post("/customers/assign", json={"userId": "agent-1", "customerIds": []}, headers=ADMIN)
    assert empty.status_code == 400

    forbidden = client.post("/customers/assign", json={"userId": "agent-1", "customerIds": ["C002"]}, headers=MANAGER)
    assert forbidden.status_code == 403


def test_location_append_and_errors(api):
    client, customers = api
    client.post("/customers", json=_customer("ACC-1", "C001"), headers=ADMIN)

    ok = client.post("/customers/C001/location", json={"lat": 12.97, "lng": 77.59}, headers=AGENT)
    assert ok.status_code == 200
    assert ok.json()["message"] == "Location updated successfully"
    assert ok.json()["location"]["capturedBy"] == "owner-agent"
    assert len(customers.get_customer("C001").location_history) == 1

    missing = client.post("/customers/C404/location", json={"lat": 1.0, "lng": 2.0}, headers=AGENT)
    assert missing.status_code == 404
    assert "location" not in missing.json()

    for body in ({"lat": "north", "lng": 2.0}, {"lat": True, "lng": 2.0}, {"lat": 91.0, "lng": 2.0}):
        response = client.post("/customers/C404/location", json=body, headers=AGENT)
        assert response.status_code == 400
        assert response.json()["kind"] == "validation"


def test_update_delete_and_summary(api):
    client, _ = api
    client.post("/customers", json=_customer("ACC-1", "C001", netBalance=700), headers=ADMIN)

    updated = client.put("/customers/C001", json={"isRecovered": True}, headers=MANAGER)
    assert updated.status_code == 200
    assert updated.json()["isRecovered"] is True
    assert updated.json()["recoveryDate"] is not None

    summary = client.get("/customers/stats/summary", headers=ADMIN).json()
    assert summary == {"totalCustomers": 1, "totalOutstanding": 1000.0, "totalRecovered": 700.0, "recoveredCount": 1}

    assert client.delete("/customers/C001", headers=MANAGER).status_code == 403
    deleted = client.delete("/customers/C001", headers=ADMIN)
    assert deleted.json() == {"message": "Customer removed"}
    assert client.get("/customers/C001", headers=ADMIN).status_code == 404


def test_update_rejects_null_columns_and_unknown_recoverer(api):
    client, customers = api
    client.post("/customers", json=_customer("ACC-1", "C001"), headers=ADMIN)

    for body in ({"customerName": None}, {"sanctionLimit": None}, {"dateOfNpa": None}, {"isRecovered": None}):
        response = client.put("/customers/C001", json=body, headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["kind"] == "validation"

    ghost = client.put("/customers/C001", json={"isRecovered": True, "recoveredBy": "ghost-owner"}, headers=ADMIN)
    assert ghost.status_code == 400
    assert "recoveredBy" in ghost.json()["message"]

    known = client.put("/customers/C001", json={"isRecovered": True, "recoveredBy": "agent-1"}, headers=ADMIN)
    assert known.status_code == 200
    assert known.json()["recoveredBy"] == "agent-1"
    cleared = client.put("/customers/C001", json={"recoveryDate": None, "recoveredBy": None}, headers=ADMIN)
    assert cleared.status_code == 200
    assert customers.get_customer("C001").recovered_by is None


def test_manager_bulk_is_branch_scoped_and_cannot_assign(api):
    client, customers = api

    response = client.post(
        "/customers/bulk",
        json=[_customer("ACC-1", "C001", assignedOwnerId="agent-1"), _customer("ACC-2", "C002", branch="West")],
        headers=MANAGER,
    )

    assert response.status_code == 207
    body = response.json()
    assert body["customerIds"] == ["C001"]
    assert body["failedEntries"][0]["kind"] == "unauthorized"
    assert body["failedEntries"][0]["customer"]["branch"] == "West"
    assert customers.get_customer("C001").assigned_owner_id is None


def test_import_preview_drops_assigned_rows(api, tmp_path):
    client, customers = api
    client.post("/customers", json=_customer("191467310000967", "C900"), headers=ADMIN)
    workbook = write_template(tmp_path / "upload.xlsx")

    fresh = client.post(
        "/customers/import",
        files={"file": ("upload.xlsx", workbook.read_bytes(), "application/octet-stream")},
        headers=ADMIN,
    )
    assert fresh.status_code == 200
    assert fresh.json()["branches"] == ["Main Branch"]
    assert fresh.json()["droppedAssigned"] == 0

    customers.assign_by_ids(["C900"], "agent-1")
    preview = client.post(
        "/customers/import",
        files={"file": ("upload.xlsx", workbook.read_bytes(), "application/octet-stream")},
        headers=ADMIN,
    )
    assert preview.json()["customers"] == []
    assert preview.json()["droppedAssigned"] == 1

    broken = client.post(
        "/customers/import", files={"file": ("bad.xlsx", io.BytesIO(b"garbage"), "application/octet-stream")}, headers=ADMIN
    )
    assert broken.status_code == 400


def test_owner_and_visit_routes(api):
    client, _ = api
    client.post("/customers", json=_customer("ACC-1", "C001"), headers=ADMIN)

    created = client.post("/owners", json={"ownerId": "mgr-2", "username": "manager_2", "role": "manager"}, headers=ADMIN)
    assert created.status_code == 201
    assert client.post("/owners", json={"username": "x"}, headers=MANAGER).status_code == 403
    listed = client.get("/owners", headers=MANAGER).json()
    assert [owner["ownerId"] for owner in listed] == ["agent-1"]

    visit = client.post("/visits", json={"recordId": "C001", "feedbackText": "Promised to pay"}, headers=AGENT)
    assert visit.status_code == 201
    assert visit.json()["ownerId"] == "owner-agent"

    history = client.get("/visits/C001", headers=AGENT).json()
    assert [item["feedbackText"] for item in history] == ["Promised to pay"]
    assert client.get("/visits/user/owner-agent", headers=AGENT).status_code == 403
    assert len(client.get("/visits/user/owner-agent", headers=ADMIN).json()) == 1
