"""Customer API router.

Endpoints:
- GET /customers
- POST /customers
- POST /customers/bulk
- POST /customers/import
- POST /customers/assign
- POST /customers/assign-branch
- GET /customers/stats/summary
- GET /customers/{record_id}
- PUT /customers/{record_id}
- DELETE /customers/{record_id}
- POST /customers/{record_id}/location
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from npatrack.api.auth import Principal, ensure_branch_access, require_roles, require_token
from npatrack.api.dependencies import get_api_settings, get_bulk_engine, get_customer_store, get_owner_store
from npatrack.errors import ValidationError
from npatrack.services.customers.bulk import BulkUpsertEngine
from npatrack.services.customers.models import (
    AssignmentRequest,
    AssignmentResult,
    BranchAssignmentRequest,
    CustomerPage,
    CustomerRecord,
    CustomerUpdate,
    ImportPreview,
    LocationRequest,
    Role,
    SummaryStats,
    describe_validation_errors,
)
from npatrack.services.imports.normalizer import normalize_rows
from npatrack.services.imports.spreadsheet import read_workbook_rows
from npatrack.services.imports.unassigned import AssignedKeys, filter_unassigned
from npatrack.settings import Settings
from npatrack.store.customer_store import CustomerQuery, CustomerStore
from npatrack.store.owner_store import OwnerStore

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/customers", tags=["customers"])

_staff = require_roles(Role.MANAGER)
_admin = require_roles(Role.ADMIN)


@router.get("", response_model=CustomerPage, summary="List customers visible to the caller")
def list_customers(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    branch: Optional[str] = None,
    is_recovered: Optional[bool] = Query(None, alias="isRecovered"),
    search: Optional[str] = None,
    sort_by: str = Query("dateOfNpa", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    assigned: Optional[bool] = None,
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    npa_from: Optional[date] = Query(None, alias="npaFrom"),
    npa_to: Optional[date] = Query(None, alias="npaTo"),
    principal: Principal = Depends(require_token),
    store: CustomerStore = Depends(get_customer_store),
    settings: Settings = Depends(get_api_settings),
):
    effective_limit = min(limit or settings.listing.default_limit, settings.listing.max_limit)
    query = CustomerQuery(
        page=page,
        limit=effective_limit,
        branch=branch,
        is_recovered=is_recovered,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        assigned=assigned,
        owner_id=owner_id,
        npa_from=npa_from,
        npa_to=npa_to,
    )
    if principal.role is Role.MANAGER:
        query.branch = principal.branch
    elif principal.role is Role.USER:
        query.owner_id = principal.owner_id

    records, total = store.list_customers(query)
    return CustomerPage(
        customers=records,
        total_pages=store.total_pages(total, effective_limit),
        current_page=page,
        total_customers=total,
    )


@router.post("", response_model=CustomerRecord, status_code=201, summary="Create one customer")
def create_customer(
    body: Dict[str, Any] = Body(...),
    principal: Principal = Depends(_staff),
    store: CustomerStore = Depends(get_customer_store),
    engine: BulkUpsertEngine = Depends(get_bulk_engine),
):
    try:
        payload = engine.prepare(body, allow_assignment=principal.is_admin)
    except PydanticValidationError as exc:
        raise ValidationError(describe_validation_errors(exc.errors())) from exc
    ensure_branch_access(principal, payload.branch)
    return store.create_customer(payload)


@router.post("/bulk", summary="Upsert a batch of customers")
def bulk_upsert(
    body: List[Any] = Body(...),
    principal: Principal = Depends(_staff),
    engine: BulkUpsertEngine = Depends(get_bulk_engine),
):
    scope = None if principal.is_admin else principal.branch
    result = engine.run(body, branch_scope=scope, allow_assignment=principal.is_admin)
    LOGGER.info(
        "Bulk upsert by %s: %s succeeded, %s failed", principal.username, result.success_count, result.failed_count
    )
    if result.failed_entries:
        content = {
            "message": "Some entries were not processed due to errors",
            **result.model_dump(mode="json", by_alias=True, include={"failed_entries", "success_count", "failed_count", "customer_ids"}),
        }
        return JSONResponse(status_code=207, content=content)
    return JSONResponse(
        status_code=201,
        content={
            "message": "All customers processed successfully",
            "successCount": result.success_count,
            "customerIds": result.customer_ids,
        },
    )


@router.post("/import", response_model=ImportPreview, summary="Normalize a workbook and drop assigned rows")
async def import_workbook(
    file: UploadFile = File(..., description="NPA workbook (.xlsx)"),
    principal: Principal = Depends(_staff),
    store: CustomerStore = Depends(get_customer_store),
    settings: Settings = Depends(get_api_settings),
):
    data = await file.read()
    if not data:
        raise ValidationError("Uploaded file is empty")
    rows = read_workbook_rows(data)
    normalized = normalize_rows(
        rows,
        sequence_column=settings.ingestion.sequence_column,
        header_label=settings.ingestion.header_label,
    )
    record_ids, account_numbers = store.assigned_key_sets()
    selection = filter_unassigned(normalized, AssignedKeys.from_values(record_ids, account_numbers))
    LOGGER.info(
        "Import preview for %s: %s rows kept, %s already assigned",
        file.filename,
        len(selection.records),
        selection.dropped,
    )
    return ImportPreview(customers=selection.records, branches=selection.branches, dropped_assigned=selection.dropped)


@router.post("/assign", response_model=AssignmentResult, summary="Assign customers to an owner")
def assign_customers(
    request: AssignmentRequest,
    principal: Principal = Depends(_admin),
    store: CustomerStore = Depends(get_customer_store),
    owners: OwnerStore = Depends(get_owner_store),
):
    owners.require_owner(request.user_id)
    matched, modified = store.assign_by_ids(request.customer_ids, request.user_id, reassign=request.reassign)
    return AssignmentResult(
        message=f"{modified} customers assigned successfully",
        modified_count=modified,
        matched_count=matched,
    )


@router.post("/assign-branch", response_model=AssignmentResult, summary="Assign a branch to an owner")
def assign_branch(
    request: BranchAssignmentRequest,
    principal: Principal = Depends(_admin),
    store: CustomerStore = Depends(get_customer_store),
    owners: OwnerStore = Depends(get_owner_store),
):
    owners.require_owner(request.user_id)
    matched, modified = store.assign_by_branch(request.branch, request.user_id, reassign=request.reassign)
    return AssignmentResult(
        message=f"{modified} customers from branch {request.branch} assigned successfully",
        modified_count=modified,
        matched_count=matched,
    )


@router.get("/stats/summary", response_model=SummaryStats, summary="Recovery totals")
def summary_stats(
    branch: Optional[str] = None,
    principal: Principal = Depends(require_token),
    store: CustomerStore = Depends(get_customer_store),
):
    scope = branch if principal.is_admin else principal.branch
    return store.summary_stats(branch=scope)


@router.get("/{record_id}", response_model=CustomerRecord, summary="Fetch one customer")
def get_customer(
    record_id: str,
    principal: Principal = Depends(require_token),
    store: CustomerStore = Depends(get_customer_store),
):
    record = store.get_customer(record_id)
    ensure_branch_access(principal, record.branch)
    return record


@router.put("/{record_id}", response_model=CustomerRecord, summary="Update one customer")
def update_customer(
    record_id: str,
    update: CustomerUpdate,
    principal: Principal = Depends(_staff),
    store: CustomerStore = Depends(get_customer_store),
    owners: OwnerStore = Depends(get_owner_store),
):
    existing = store.get_customer(record_id)
    ensure_branch_access(principal, existing.branch)
    changes = update.changes()
    if "branch" in changes:
        ensure_branch_access(principal, changes["branch"])
    recovered_by = changes.get("recovered_by")
    if recovered_by and owners.get_owner(recovered_by) is None:
        raise ValidationError(f"recoveredBy: unknown owner '{recovered_by}'")
    if not changes:
        return existing
    return store.update_customer(record_id, changes)


@router.delete("/{record_id}", summary="Delete one customer")
def delete_customer(
    record_id: str,
    principal: Principal = Depends(_admin),
    store: CustomerStore = Depends(get_customer_store),
):
    store.delete_customer(record_id)
    return {"message": "Customer removed"}


@router.post("/{record_id}/location", summary="Append a captured location")
def append_location(
    record_id: str,
    location: LocationRequest,
    principal: Principal = Depends(require_token),
    store: CustomerStore = Depends(get_customer_store),
):
    point = store.append_location(record_id, lat=location.lat, lng=location.lng, captured_by=principal.owner_id)
    return {"message": "Location updated successfully", "location": point.model_dump(mode="json", by_alias=True)}
