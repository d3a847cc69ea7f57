# assurance/routes/sod_routes.py
"""
Separation-of-duties routes.
GET   /assurance/sod-policy                    — tenant policy (defaults on first read)
PUT   /assurance/sod-policy                    — replace enabled flag and / or rule list
PATCH /assurance/sod-policy/rules/{rule_id}    — toggle one rule
GET   /assurance/approvals                     — list approvals (filterable)
POST  /assurance/approvals                     — open an approval request
POST  /assurance/approvals/{id}/decision       — approve / reject, guarded by SoD
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from pydantic import BaseModel
from assurance.database import get_db
from assurance.dependencies import Principal, require_permission
from assurance.errors import ValidationError
from assurance.models.sod import SodPolicy, ApprovalRequest, ApprovalStatus, ApprovalScopeType
from assurance.services.rbac import Permission
from assurance.services.sod_service import (
    get_sod_policy, update_sod_policy, toggle_rule, request_approval, decide_approval, list_approvals,
)

router = APIRouter(prefix="/assurance", tags=["Separation of Duties"])


# ── Pydantic schemas ──────────────────────────────────────────────────────────

class SodRule(BaseModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True

class SodPolicyUpdate(BaseModel):
    enabled: Optional[bool] = None
    rules: Optional[list[SodRule]] = None

class RuleToggle(BaseModel):
    enabled: bool

class ApprovalCreate(BaseModel):
    rule_id: str
    scope_type: ApprovalScopeType
    scope_id: str
    reason: Optional[str] = None

class ApprovalDecision(BaseModel):
    decision: ApprovalStatus      # APPROVED | REJECTED
    reason: Optional[str] = None


# ── Serializer helpers ────────────────────────────────────────────────────────

def _serialize_policy(p: SodPolicy) -> dict:
    return {
        "enabled"    : bool(p.enabled),
        "rules"      : p.rules_json,
        "updated_at" : p.updated_at.isoformat() if p.updated_at else None,
        "updated_by" : p.updated_by,
    }

def _serialize_approval(a: ApprovalRequest) -> dict:
    return {
        "id"           : a.id,
        "rule_id"      : a.rule_id,
        "scope_type"   : a.scope_type.value,
        "scope_id"     : a.scope_id,
        "status"       : a.status.value,
        "requested_by" : a.requested_by,
        "requested_at" : a.requested_at.isoformat(),
        "decided_by"   : a.decided_by,
        "decided_at"   : a.decided_at.isoformat() if a.decided_at else None,
        "reason"       : a.reason,
    }


def _require_user(principal: Principal) -> str:
    if not principal.user_id:
        raise ValidationError("X-User-ID header is required for this action")
    return principal.user_id


# ── Policy ────────────────────────────────────────────────────────────────────

@router.get("/sod-policy")
def read_sod_policy(
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_VIEW)),
    db: Session = Depends(get_db),
):
    return _serialize_policy(get_sod_policy(db, principal.tenant_id))


@router.put("/sod-policy")
def write_sod_policy(
    body: SodPolicyUpdate,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_SOD_MANAGE)),
    db: Session = Depends(get_db),
):
    rules = [r.model_dump() for r in body.rules] if body.rules is not None else None
    policy = update_sod_policy(db, principal.tenant_id, _require_user(principal),
                               enabled=body.enabled, rules=rules)
    return _serialize_policy(policy)


@router.patch("/sod-policy/rules/{rule_id}")
def patch_sod_rule(
    rule_id: str,
    body: RuleToggle,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_SOD_MANAGE)),
    db: Session = Depends(get_db),
):
    policy = toggle_rule(db, principal.tenant_id, rule_id, body.enabled, _require_user(principal))
    return _serialize_policy(policy)


# ── Approvals ─────────────────────────────────────────────────────────────────

@router.get("/approvals")
def get_approvals(
    status: ApprovalStatus | None = Query(None),
    scope_type: ApprovalScopeType | None = Query(None),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_VIEW)),
    db: Session = Depends(get_db),
):
    return [_serialize_approval(a) for a in list_approvals(db, principal.tenant_id, status, scope_type)]


@router.post("/approvals", status_code=201)
def create_approval(
    body: ApprovalCreate,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_VIEW)),
    db: Session = Depends(get_db),
):
    approval = request_approval(db, principal.tenant_id, body.rule_id, body.scope_type, body.scope_id,
                                requested_by=_require_user(principal), reason=body.reason)
    return _serialize_approval(approval)


@router.post("/approvals/{approval_id}/decision")
def decide(
    approval_id: str,
    body: ApprovalDecision,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_APPROVAL_DECIDE)),
    db: Session = Depends(get_db),
):
    approval = decide_approval(db, principal.tenant_id, approval_id, _require_user(principal),
                               body.decision, reason=body.reason)
    return _serialize_approval(approval)
