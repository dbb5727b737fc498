"""Owner directory router (accounts that customers are assigned to)."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends

from npatrack.api.auth import Principal, require_roles
from npatrack.api.dependencies import get_owner_store
from npatrack.services.customers.models import Owner, OwnerCreate, Role
from npatrack.store.owner_store import OwnerStore

router = APIRouter(prefix="/owners", tags=["owners"])


@router.get("", response_model=List[Owner], summary="List owners")
def list_owners(
    role: Optional[Role] = None,
    branch: Optional[str] = None,
    principal: Principal = Depends(require_roles(Role.MANAGER)),
    store: OwnerStore = Depends(get_owner_store),
):
    if not principal.is_admin:
        branch = principal.branch
    return store.list_owners(role=role, branch=branch)


@router.post("", response_model=Owner, status_code=201, summary="Register an owner")
def create_owner(
    request: OwnerCreate,
    principal: Principal = Depends(require_roles(Role.ADMIN)),
    store: OwnerStore = Depends(get_owner_store),
):
    return store.create_owner(request)
