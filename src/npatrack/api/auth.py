"""Static token auth and role checks for the recovery API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header

from npatrack.errors import AuthorizationError
from npatrack.services.customers.models import Role


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller resolved from the ``X-API-KEY`` header."""

    owner_id: str
    username: str
    role: Role
    branch: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


# Development tokens. A real deployment resolves callers through an identity provider.
_API_TOKENS = {
    "dev-admin-token": Principal(owner_id="owner-admin", username="admin", role=Role.ADMIN),
    "dev-manager-token": Principal(
        owner_id="owner-manager", username="manager_1", role=Role.MANAGER, branch="Main Branch"
    ),
    "dev-agent-token": Principal(owner_id="owner-agent", username="agent_1", role=Role.USER, branch="Main Branch"),
}


def require_token(x_api_key: Optional[str] = Header(None)) -> Principal:
    """Validate the API key header and return the caller.

    Raises:
        AuthorizationError: 401 when the header is missing, 403 when unknown.
    """

    if not x_api_key:
        raise AuthorizationError("Missing X-API-KEY", status_code=401)
    principal = _API_TOKENS.get(x_api_key)
    if principal is None:
        raise AuthorizationError("Invalid API key")
    return principal


def require_roles(*roles: Role) -> Callable[..., Principal]:
    """Dependency factory that admits admins and the listed roles."""

    allowed = set(roles) | {Role.ADMIN}

    def _checker(principal: Principal = Depends(require_token)) -> Principal:
        if principal.role in allowed:
            return principal
        raise AuthorizationError(f"Role '{principal.role.value}' is not allowed to perform this action")

    return _checker


def ensure_branch_access(principal: Principal, branch: str) -> None:
    """Reject non-admin callers acting outside their own branch."""

    if principal.is_admin:
        return
    if branch != principal.branch:
        raise AuthorizationError("Not authorized to access customers outside your branch")


__all__ = ["Principal", "ensure_branch_access", "require_roles", "require_token"]
