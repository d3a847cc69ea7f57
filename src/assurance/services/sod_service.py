"""
SoD policy storage and the two-step approval flow guarded by check_sod().

    request_approval()  → REQUESTED (by the creator)
    decide_approval()   → APPROVED | REJECTED (by someone else)

Every policy mutation and every decision lands in the audit chain.
"""
import copy
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from assurance.clock import utcnow
from assurance.errors import ConflictError, NotFoundError, SodViolationError, ValidationError
from assurance.models.audit_event import ActorType
from assurance.models.sod import SodPolicy, ApprovalRequest, ApprovalStatus, ApprovalScopeType
from assurance.services.audit_service import log_event
from assurance.services.event_bus import EventBus, EventTypes, event_bus
from assurance.services.sod_guard import DEFAULT_SOD_RULES, check_sod, find_rule

logger = logging.getLogger(__name__)

_RULE_KEYS = ("id", "name", "description", "enabled")


# ── Policy ────────────────────────────────────────────────────────────────────

def get_sod_policy(db: Session, tenant_id: str) -> SodPolicy:
    """A tenant without a stored policy gets the default rule set, persisted on first read."""
    policy = db.query(SodPolicy).filter_by(tenant_id=tenant_id).first()
    if policy:
        return policy
    policy = SodPolicy(tenant_id=tenant_id, enabled=True, rules_json=copy.deepcopy(DEFAULT_SOD_RULES))
    db.add(policy)
    db.commit()
    db.refresh(policy)
    return policy


def _normalize_rules(rules: list[dict[str, Any]]) -> list[dict[str, Any]]:
    seen = set()
    normalized = []
    for rule in rules:
        rule_id = rule.get("id")
        if not rule_id or not isinstance(rule_id, str):
            raise ValidationError("Every SoD rule needs a string id")
        if rule_id in seen:
            raise ValidationError(f"Duplicate SoD rule id: {rule_id}")
        seen.add(rule_id)
        normalized.append({
            "id": rule_id,
            "name": rule.get("name") or rule_id,
            "description": rule.get("description") or "",
            "enabled": bool(rule.get("enabled", True)),
        })
    return normalized


def update_sod_policy(
        db: Session,
        tenant_id: str,
        updated_by: str,
        enabled: bool | None = None,
        rules: list[dict[str, Any]] | None = None,
) -> SodPolicy:
    policy = get_sod_policy(db, tenant_id)
    before = {"enabled": policy.enabled, "rules": policy.rules_json}

    if enabled is not None:
        policy.enabled = enabled
    if rules is not None:
        policy.rules_json = _normalize_rules(rules)
    policy.updated_by = updated_by
    policy.updated_at = utcnow()
    db.commit()
    db.refresh(policy)

    log_event(db, tenant_id, "SodPolicy", "UPDATE", entity_id=tenant_id, actor_user_id=updated_by,
              diff={"before": before, "after": {"enabled": policy.enabled, "rules": policy.rules_json}})
    return policy


def toggle_rule(db: Session, tenant_id: str, rule_id: str, enabled: bool, updated_by: str) -> SodPolicy:
    policy = get_sod_policy(db, tenant_id)
    rules = [dict(r) for r in policy.rules_json]
    rule = find_rule(rules, rule_id)
    if rule is None:
        raise NotFoundError(f"SoD rule {rule_id} not found")
    was = bool(rule.get("enabled", False))
    rule["enabled"] = enabled

    # Reassign so the JSON column is flagged dirty
    policy.rules_json = rules
    policy.updated_by = updated_by
    policy.updated_at = utcnow()
    db.commit()
    db.refresh(policy)

    log_event(db, tenant_id, "SodPolicy", "TOGGLE_RULE", entity_id=tenant_id, actor_user_id=updated_by,
              diff={"rule_id": rule_id, "before": was, "after": enabled})
    return policy


# ── Approvals ─────────────────────────────────────────────────────────────────

def request_approval(
        db: Session,
        tenant_id: str,
        rule_id: str,
        scope_type: ApprovalScopeType,
        scope_id: str,
        requested_by: str,
        reason: str | None = None,
        bus: EventBus = event_bus,
) -> ApprovalRequest:
    approval = ApprovalRequest(
        tenant_id=tenant_id,
        rule_id=rule_id,
        scope_type=scope_type,
        scope_id=scope_id,
        status=ApprovalStatus.REQUESTED,
        requested_by=requested_by,
        requested_at=utcnow(),
        reason=reason,
    )
    db.add(approval)
    db.commit()
    db.refresh(approval)

    log_event(db, tenant_id, "Approval", "REQUEST", entity_id=approval.id, actor_user_id=requested_by,
              metadata={"rule_id": rule_id, "scope_type": scope_type.value, "scope_id": scope_id}, bus=bus)
    bus.emit(EventTypes.SOD_APPROVAL_REQUESTED, tenant_id, {
        "approval_id": approval.id,
        "rule_id": rule_id,
        "scope_type": scope_type.value,
        "scope_id": scope_id,
        "requested_by": requested_by,
    })
    return approval


def decide_approval(
        db: Session,
        tenant_id: str,
        approval_id: str,
        decided_by: str,
        decision: ApprovalStatus,
        reason: str | None = None,
        bus: EventBus = event_bus,
) -> ApprovalRequest:
    """
    Raises NotFoundError (unknown or other tenant), ValidationError (decision
    is not terminal), SodViolationError (decider is the requester under an
    enabled rule) or ConflictError (already decided).
    """
    if decision not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
        raise ValidationError("Decision must be APPROVED or REJECTED")

    approval = db.query(ApprovalRequest).filter_by(id=approval_id, tenant_id=tenant_id).first()
    if not approval:
        raise NotFoundError("Approval not found")
    if approval.status != ApprovalStatus.REQUESTED:
        raise ConflictError(f"Approval already {approval.status.value}", status=approval.status.value)

    policy = get_sod_policy(db, tenant_id)
    result = check_sod(policy.rules_json, policy.enabled, approval.rule_id, decided_by, approval.requested_by)
    if not result.allowed:
        logger.warning("SoD blocked %s on approval %s (rule %s)", decided_by, approval_id, result.violated_rule)
        log_event(db, tenant_id, "Approval", "SOD_VIOLATION", entity_id=approval_id, actor_user_id=decided_by,
                  metadata={"rule_id": result.violated_rule, "attempted": decision.value}, bus=bus)
        bus.emit(EventTypes.SOD_VIOLATION_BLOCKED, tenant_id, {
            "approval_id": approval_id,
            "rule_id": result.violated_rule,
            "user_id": decided_by,
        })
        raise SodViolationError(
            result.violated_rule_description or "A different person must perform this action",
            violated_rule=result.violated_rule,
        )

    # Conditional on REQUESTED so two concurrent deciders cannot both win
    decided_at = utcnow()
    updated = db.execute(
        update(ApprovalRequest)
        .where(ApprovalRequest.id == approval_id,
               ApprovalRequest.tenant_id == tenant_id,
               ApprovalRequest.status == ApprovalStatus.REQUESTED)
        .values(status=decision, decided_by=decided_by, decided_at=decided_at,
                reason=reason if reason is not None else approval.reason)
        .execution_options(synchronize_session=False)
    ).rowcount
    db.commit()
    if not updated:
        raise ConflictError("Approval was decided concurrently")
    db.refresh(approval)

    action = "APPROVE" if decision == ApprovalStatus.APPROVED else "REJECT"
    log_event(db, tenant_id, "Approval", action, entity_id=approval_id, actor_user_id=decided_by,
              actor_type=ActorType.USER,
              diff={"status": {"before": ApprovalStatus.REQUESTED.value, "after": decision.value}},
              metadata={"rule_id": approval.rule_id, "scope_type": approval.scope_type.value,
                        "scope_id": approval.scope_id}, bus=bus)
    bus.emit(EventTypes.SOD_APPROVAL_DECIDED, tenant_id, {
        "approval_id": approval_id,
        "status": decision.value,
        "decided_by": decided_by,
    })
    return approval


def list_approvals(
        db: Session,
        tenant_id: str,
        status: ApprovalStatus | None = None,
        scope_type: ApprovalScopeType | None = None,
) -> list[ApprovalRequest]:
    q = db.query(ApprovalRequest).filter_by(tenant_id=tenant_id)
    if status:
        q = q.filter_by(status=status)
    if scope_type:
        q = q.filter_by(scope_type=scope_type)
    return q.order_by(ApprovalRequest.requested_at.desc()).all()
