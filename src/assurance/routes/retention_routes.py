# assurance/routes/retention_routes.py
"""
Retention policy, artifact registry and legal hold routes.
GET    /assurance/retention-policies                   — list tenant policies
GET    /assurance/retention-policies/{artifact_type}   — single policy
PUT    /assurance/retention-policies/{artifact_type}   — create or replace (one row per type)
DELETE /assurance/retention-policies/{artifact_type}   — remove policy
POST   /assurance/artifacts                            — register a retention-governed artifact
POST   /assurance/legal-holds                          — place a hold on a case
DELETE /assurance/legal-holds/{case_id}                — release the active hold
GET    /assurance/cases/{case_id}/retention-timers     — days remaining per policy
"""
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field
from assurance.clock import to_naive_utc
from assurance.database import get_db
from assurance.dao.retention_dao import (
    list_policies, get_policy, upsert_policy, delete_policy,
    register_artifact, place_legal_hold, release_legal_hold,
)
from assurance.dependencies import Principal, require_permission
from assurance.models.retention import RetentionPolicy, RetentionArtifactType, DeleteMode, LegalHold, RetainedArtifact
from assurance.services.audit_service import log_event
from assurance.services.rbac import Permission
from assurance.services.retention_service import case_retention_timers

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/assurance", tags=["Retention"])


# ── Pydantic schemas ──────────────────────────────────────────────────────────

class PolicyUpsert(BaseModel):
    retention_days: int = Field(..., ge=0)
    delete_mode: DeleteMode = DeleteMode.SOFT_DELETE
    legal_hold_respects: Optional[bool] = None
    enabled: Optional[bool] = None

class ArtifactRegister(BaseModel):
    artifact_type: RetentionArtifactType
    artifact_id: str
    created_at: datetime
    case_id: Optional[str] = None
    storage_key: Optional[str] = None

class LegalHoldCreate(BaseModel):
    case_id: str
    reason: str


# ── Serializer helpers ────────────────────────────────────────────────────────

def _serialize_policy(p: RetentionPolicy) -> dict:
    return {
        "id"                  : p.id,
        "artifact_type"       : p.artifact_type.value,
        "retention_days"      : p.retention_days,
        "delete_mode"         : p.delete_mode.value,
        "legal_hold_respects" : bool(p.legal_hold_respects),
        "enabled"             : bool(p.enabled),
        "updated_at"          : p.updated_at.isoformat() if p.updated_at else None,
    }

def _serialize_hold(h: LegalHold) -> dict:
    return {
        "id"          : h.id,
        "case_id"     : h.case_id,
        "reason"      : h.reason,
        "enabled_at"  : h.enabled_at.isoformat(),
        "enabled_by"  : h.enabled_by,
        "disabled_at" : h.disabled_at.isoformat() if h.disabled_at else None,
        "disabled_by" : h.disabled_by,
    }

def _serialize_artifact(a: RetainedArtifact) -> dict:
    return {
        "id"            : a.id,
        "artifact_type" : a.artifact_type.value,
        "artifact_id"   : a.artifact_id,
        "case_id"       : a.case_id,
        "storage_key"   : a.storage_key,
        "created_at"    : a.created_at.isoformat(),
    }


# ── Policies ──────────────────────────────────────────────────────────────────

@router.get("/retention-policies")
def get_retention_policies(
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_VIEW)),
    db: Session = Depends(get_db),
):
    return [_serialize_policy(p) for p in list_policies(db, principal.tenant_id)]


@router.get("/retention-policies/{artifact_type}")
def get_retention_policy(
    artifact_type: RetentionArtifactType,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_VIEW)),
    db: Session = Depends(get_db),
):
    policy = get_policy(db, principal.tenant_id, artifact_type)
    if not policy:
        raise HTTPException(status_code=404, detail="Retention policy not found")
    return _serialize_policy(policy)


@router.put("/retention-policies/{artifact_type}")
def put_retention_policy(
    artifact_type: RetentionArtifactType,
    body: PolicyUpsert,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_MANAGE)),
    db: Session = Depends(get_db),
):
    before = get_policy(db, principal.tenant_id, artifact_type)
    before = _serialize_policy(before) if before else None
    policy, created = upsert_policy(
        db, principal.tenant_id, artifact_type, body.retention_days, body.delete_mode,
        legal_hold_respects=body.legal_hold_respects, enabled=body.enabled,
    )
    after = _serialize_policy(policy)

    log_event(db, principal.tenant_id, "RetentionPolicy", "CREATE" if created else "UPDATE",
              entity_id=artifact_type.value, actor_user_id=principal.user_id,
              diff={"before": before, "after": {k: v for k, v in after.items() if k != "updated_at"}})

    logger.info("Retention policy %s %s for tenant %s", artifact_type.value,
                "created" if created else "updated", principal.tenant_id)
    return after


@router.delete("/retention-policies/{artifact_type}", status_code=204)
def remove_retention_policy(
    artifact_type: RetentionArtifactType,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_MANAGE)),
    db: Session = Depends(get_db),
):
    if not delete_policy(db, principal.tenant_id, artifact_type):
        raise HTTPException(status_code=404, detail="Retention policy not found")

    log_event(db, principal.tenant_id, "RetentionPolicy", "DELETE",
              entity_id=artifact_type.value, actor_user_id=principal.user_id)


# ── Artifacts ─────────────────────────────────────────────────────────────────

@router.post("/artifacts", status_code=201)
def create_artifact(
    body: ArtifactRegister,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_MANAGE)),
    db: Session = Depends(get_db),
):
    artifact = register_artifact(
        db, principal.tenant_id, body.artifact_type, body.artifact_id,
        created_at=to_naive_utc(body.created_at), case_id=body.case_id, storage_key=body.storage_key,
    )
    return _serialize_artifact(artifact)


# ── Legal holds ───────────────────────────────────────────────────────────────

@router.post("/legal-holds", status_code=201)
def create_legal_hold(
    body: LegalHoldCreate,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_MANAGE)),
    db: Session = Depends(get_db),
):
    hold = place_legal_hold(db, principal.tenant_id, body.case_id, body.reason,
                            enabled_by=principal.user_id or "unknown")

    log_event(db, principal.tenant_id, "LegalHold", "ENABLE", entity_id=body.case_id,
              actor_user_id=principal.user_id, metadata={"reason": body.reason, "legal_hold_id": hold.id})
    return _serialize_hold(hold)


@router.delete("/legal-holds/{case_id}")
def remove_legal_hold(
    case_id: str,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_MANAGE)),
    db: Session = Depends(get_db),
):
    hold = release_legal_hold(db, principal.tenant_id, case_id, released_by=principal.user_id or "unknown")
    if not hold:
        raise HTTPException(status_code=404, detail="No active legal hold for case")

    log_event(db, principal.tenant_id, "LegalHold", "DISABLE", entity_id=case_id,
              actor_user_id=principal.user_id, metadata={"legal_hold_id": hold.id})
    return _serialize_hold(hold)


@router.get("/cases/{case_id}/retention-timers")
def get_retention_timers(
    case_id: str,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_VIEW)),
    db: Session = Depends(get_db),
):
    return case_retention_timers(db, principal.tenant_id, case_id)
