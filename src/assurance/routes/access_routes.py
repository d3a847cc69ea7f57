# assurance/routes/access_routes.py
"""
Access log routes.
GET  /assurance/access-logs                   — filterable, paginated access history
GET  /assurance/cases/{case_id}/access-logs   — latest accesses for one case
POST /assurance/access-checks                 — check the caller's role and log the outcome
"""
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from assurance.database import get_db
from assurance.dao.log_dao import query_access_logs, recent_case_access_logs
from assurance.dependencies import Principal, get_principal, require_permission
from assurance.models.access_log import AccessLogEntry, AccessType, AccessResourceType, AccessOutcome
from assurance.services.access_log_service import check_and_log_access
from assurance.services.rbac import Permission

router = APIRouter(prefix="/assurance", tags=["Access Logs"])


class AccessCheckRequest(BaseModel):
    permission: Permission
    access_type: AccessType
    resource_type: AccessResourceType
    resource_id: str
    case_id: Optional[str] = None


def _serialize(a: AccessLogEntry) -> dict:
    return {
        "id"              : a.id,
        "user_id"         : a.user_id,
        "access_type"     : a.access_type.value,
        "resource_type"   : a.resource_type.value,
        "resource_id"     : a.resource_id,
        "case_id"         : a.case_id,
        "ip_hash"         : a.ip_hash,
        "user_agent_hash" : a.user_agent_hash,
        "outcome"         : a.outcome.value,
        "reason"          : a.reason,
        "timestamp"       : a.timestamp.isoformat(),
    }


@router.get("/access-logs")
def list_access_logs(
    resource_type: AccessResourceType | None = Query(None),
    case_id: str | None = Query(None),
    user_id: str | None = Query(None),
    outcome: AccessOutcome | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_VIEW)),
    db: Session = Depends(get_db),
):
    items, total = query_access_logs(
        db, principal.tenant_id,
        resource_type=resource_type, case_id=case_id, user_id=user_id, outcome=outcome,
        date_from=date_from, date_to=date_to, limit=limit, offset=offset,
    )
    return {"items": [_serialize(a) for a in items], "total": total, "limit": limit, "offset": offset}


@router.get("/cases/{case_id}/access-logs")
def case_access_logs(
    case_id: str,
    limit: int = Query(5, ge=1, le=100),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_VIEW)),
    db: Session = Depends(get_db),
):
    return [_serialize(a) for a in recent_case_access_logs(db, principal.tenant_id, case_id, limit)]


@router.post("/access-checks")
def access_check(
    body: AccessCheckRequest,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    decision = check_and_log_access(
        db, principal.tenant_id, principal.role, body.permission,
        body.access_type, body.resource_type, body.resource_id,
        user_id=principal.user_id, case_id=body.case_id,
        ip=principal.ip, user_agent=principal.user_agent,
    )
    return {"allowed": decision.allowed, "reason": decision.reason}
