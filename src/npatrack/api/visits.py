"""Field visit router.

Endpoints:
- POST /visits
- GET /visits/{record_id}
- GET /visits/user/{owner_id}
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from npatrack.api.auth import Principal, ensure_branch_access, require_roles, require_token
from npatrack.api.dependencies import get_customer_store, get_visit_store
from npatrack.services.customers.models import Role, Visit, VisitCreate
from npatrack.store.customer_store import CustomerStore
from npatrack.store.visit_store import VisitStore

router = APIRouter(prefix="/visits", tags=["visits"])


@router.post("", response_model=Visit, status_code=201, summary="Log a field visit")
def create_visit(
    request: VisitCreate,
    principal: Principal = Depends(require_token),
    visits: VisitStore = Depends(get_visit_store),
    customers: CustomerStore = Depends(get_customer_store),
):
    record = customers.get_customer(request.record_id)
    ensure_branch_access(principal, record.branch)
    return visits.create_visit(request, owner_id=principal.owner_id)


@router.get("/user/{owner_id}", response_model=List[Visit], summary="Visits logged by one owner")
def visits_for_owner(
    owner_id: str,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    principal: Principal = Depends(require_roles(Role.ADMIN)),
    visits: VisitStore = Depends(get_visit_store),
):
    return visits.list_for_owner(owner_id, start=start_date, end=end_date)


@router.get("/{record_id}", response_model=List[Visit], summary="Visits logged against one customer")
def visits_for_customer(
    record_id: str,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    principal: Principal = Depends(require_token),
    visits: VisitStore = Depends(get_visit_store),
    customers: CustomerStore = Depends(get_customer_store),
):
    record = customers.get_customer(record_id)
    ensure_branch_access(principal, record.branch)
    return visits.list_for_customer(record_id, start=start_date, end=end_date)
