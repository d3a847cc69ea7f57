"""
Request identity and permission gates shared by the routers.

Identity arrives from the platform gateway as headers:
X-Tenant-ID (required), X-User-ID, X-User-Role.
"""
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request

from assurance.errors import ForbiddenError
from assurance.services.rbac import Permission, is_authorized
from assurance.services.storage import ArtifactStorage, get_storage


@dataclass(frozen=True)
class Principal:
    tenant_id: str
    user_id: str | None
    role: str | None
    ip: str | None = None
    user_agent: str | None = None


def get_principal(
    request: Request,
    x_tenant_id: str | None = Header(None),
    x_user_id: str | None = Header(None),
    x_user_role: str | None = Header(None),
) -> Principal:
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="Missing X-Tenant-ID header")
    return Principal(
        tenant_id=x_tenant_id,
        user_id=x_user_id,
        role=x_user_role,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def require_permission(permission: Permission):
    def _check(principal: Principal = Depends(get_principal)) -> Principal:
        if not is_authorized(principal.role, permission):
            raise ForbiddenError(f"Role {principal.role or 'anonymous'} lacks {permission.value}")
        return principal
    return _check


def get_artifact_storage() -> ArtifactStorage:
    return get_storage()
