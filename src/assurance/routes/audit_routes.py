# assurance/routes/audit_routes.py
"""
Audit chain routes.
POST /assurance/audit-events        — append an event to the caller's tenant chain
GET  /assurance/audit-events        — query events (newest first)
POST /assurance/audit-chain/verify  — replay and verify the tenant chain
"""
import logging
from datetime import datetime
from typing import Any, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from assurance.clock import isoformat_ms
from assurance.database import get_db
from assurance.dao.log_dao import query_audit_events
from assurance.dependencies import Principal, require_permission
from assurance.models.audit_event import AuditEvent, ActorType
from assurance.services.audit_service import append_event, verify_chain
from assurance.services.rbac import Permission

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/assurance", tags=["Audit"])


# ── Pydantic schemas ──────────────────────────────────────────────────────────

class AuditEventCreate(BaseModel):
    entity_type: str
    action: str
    entity_id: Optional[str] = None
    actor_type: ActorType = ActorType.USER
    diff: Any = None
    metadata: Any = None


# ── Serializer helper ─────────────────────────────────────────────────────────

def _serialize(e: AuditEvent) -> dict:
    return {
        "id"            : e.id,
        "sequence"      : e.sequence,
        "entity_type"   : e.entity_type,
        "entity_id"     : e.entity_id,
        "action"        : e.action,
        "actor_user_id" : e.actor_user_id,
        "actor_type"    : e.actor_type.value,
        "timestamp"     : isoformat_ms(e.timestamp),
        "diff"          : e.diff_json,
        "metadata"      : e.metadata_json,
        "prev_hash"     : e.prev_hash,
        "hash"          : e.hash,
    }


# ── Routes ────────────────────────────────────────────────────────────────────

@router.post("/audit-events", status_code=201)
def create_audit_event(
    body: AuditEventCreate,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_MANAGE)),
    db: Session = Depends(get_db),
):
    event = append_event(
        db, principal.tenant_id, body.entity_type, body.action,
        entity_id=body.entity_id,
        actor_user_id=principal.user_id,
        actor_type=body.actor_type,
        diff=body.diff,
        metadata=body.metadata,
    )
    return _serialize(event)


@router.get("/audit-events")
def list_audit_events(
    entity_type: str | None = Query(None),
    entity_id: str | None = Query(None),
    action: str | None = Query(None),
    actor_user_id: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_VIEW)),
    db: Session = Depends(get_db),
):
    items, total = query_audit_events(
        db, principal.tenant_id,
        entity_type=entity_type, entity_id=entity_id, action=action, actor_user_id=actor_user_id,
        date_from=date_from, date_to=date_to, limit=limit, offset=offset,
    )
    return {"items": [_serialize(e) for e in items], "total": total, "limit": limit, "offset": offset}


@router.post("/audit-chain/verify")
def verify_audit_chain(
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_AUDIT_VERIFY)),
    db: Session = Depends(get_db),
):
    result = verify_chain(db, principal.tenant_id)
    logger.info("Chain verification for tenant %s by %s: valid=%s entries=%d",
                principal.tenant_id, principal.user_id, result.valid, result.total_entries)
    return result.to_dict()
