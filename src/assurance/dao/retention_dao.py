from datetime import datetime

from sqlalchemy import asc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assurance.clock import utcnow
from assurance.errors import ConflictError
from assurance.models.retention import (
    RetentionPolicy, RetentionArtifactType, DeleteMode, LegalHold, RetainedArtifact,
)


# ── Policies ──────────────────────────────────────────────────────────────────

def list_policies(db: Session, tenant_id: str, enabled_only: bool = False) -> list[RetentionPolicy]:
    q = db.query(RetentionPolicy).filter_by(tenant_id = tenant_id)
    if enabled_only:
        q = q.filter_by(enabled = True)
    return q.order_by(asc(RetentionPolicy.artifact_type)).all()


def get_policy(db: Session, tenant_id: str, artifact_type: RetentionArtifactType) -> RetentionPolicy | None:
    return db.query(RetentionPolicy).filter_by(tenant_id = tenant_id, artifact_type = artifact_type).first()


def upsert_policy(
    db: Session,
    tenant_id: str,
    artifact_type: RetentionArtifactType,
    retention_days: int,
    delete_mode: DeleteMode,
    legal_hold_respects: bool | None = None,
    enabled: bool | None = None,
) -> tuple[RetentionPolicy, bool]:
    """Create or update the single policy row for (tenant, artifact_type). Returns (policy, created)."""
    policy = get_policy(db, tenant_id, artifact_type)
    created = policy is None
    if created:
        policy = RetentionPolicy(
            tenant_id=tenant_id,
            artifact_type=artifact_type,
            legal_hold_respects=True if legal_hold_respects is None else legal_hold_respects,
            enabled=True if enabled is None else enabled,
        )
        db.add(policy)
    else:
        if legal_hold_respects is not None:
            policy.legal_hold_respects = legal_hold_respects
        if enabled is not None:
            policy.enabled = enabled
    policy.retention_days = retention_days
    policy.delete_mode = delete_mode
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Retention policy for {artifact_type.value} was created concurrently")
    db.refresh(policy)
    return policy, created


def delete_policy(db: Session, tenant_id: str, artifact_type: RetentionArtifactType) -> bool:
    policy = get_policy(db, tenant_id, artifact_type)
    if not policy:
        return False
    db.delete(policy)
    db.commit()
    return True


# ── Artifact registry ─────────────────────────────────────────────────────────

def register_artifact(
    db: Session,
    tenant_id: str,
    artifact_type: RetentionArtifactType,
    artifact_id: str,
    created_at: datetime,
    case_id: str | None = None,
    storage_key: str | None = None,
) -> RetainedArtifact:
    artifact = RetainedArtifact(
        tenant_id=tenant_id,
        artifact_type=artifact_type,
        artifact_id=artifact_id,
        case_id=case_id,
        storage_key=storage_key,
        created_at=created_at,
    )
    db.add(artifact)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Artifact {artifact_type.value}:{artifact_id} is already registered")
    db.refresh(artifact)
    return artifact


def live_artifacts(db: Session, tenant_id: str, artifact_type: RetentionArtifactType) -> list[RetainedArtifact]:
    """Artifacts still subject to retention; deleted ones never come back into a scan."""
    return (
        db.query(RetainedArtifact)
        .filter_by(tenant_id = tenant_id, artifact_type = artifact_type)
        .filter(RetainedArtifact.deleted_at.is_(None))
        .order_by(asc(RetainedArtifact.created_at), asc(RetainedArtifact.id))
        .all()
    )


def oldest_case_artifact(
    db: Session, tenant_id: str, case_id: str, artifact_type: RetentionArtifactType
) -> RetainedArtifact | None:
    return (
        db.query(RetainedArtifact)
        .filter_by(tenant_id = tenant_id, case_id = case_id, artifact_type = artifact_type)
        .filter(RetainedArtifact.deleted_at.is_(None))
        .order_by(asc(RetainedArtifact.created_at))
        .first()
    )


# ── Legal holds ───────────────────────────────────────────────────────────────

def active_legal_hold(db: Session, tenant_id: str, case_id: str) -> LegalHold | None:
    return (
        db.query(LegalHold)
        .filter_by(tenant_id = tenant_id, case_id = case_id)
        .filter(LegalHold.disabled_at.is_(None))
        .first()
    )


def has_active_legal_hold(db: Session, tenant_id: str, case_id: str | None) -> bool:
    if not case_id:
        return False
    return active_legal_hold(db, tenant_id, case_id) is not None


def place_legal_hold(db: Session, tenant_id: str, case_id: str, reason: str, enabled_by: str) -> LegalHold:
    existing = active_legal_hold(db, tenant_id, case_id)
    if existing:
        raise ConflictError(f"Case {case_id} already has an active legal hold", legal_hold_id=existing.id)
    hold = LegalHold(
        tenant_id=tenant_id,
        case_id=case_id,
        reason=reason,
        enabled_at=utcnow(),
        enabled_by=enabled_by,
    )
    db.add(hold)
    db.commit()
    db.refresh(hold)
    return hold


def release_legal_hold(db: Session, tenant_id: str, case_id: str, released_by: str) -> LegalHold | None:
    hold = active_legal_hold(db, tenant_id, case_id)
    if not hold:
        return None
    hold.disabled_at = utcnow()
    hold.disabled_by = released_by
    db.commit()
    db.refresh(hold)
    return hold


def tenants_with_enabled_policies(db: Session) -> list[str]:
    rows = db.query(RetentionPolicy.tenant_id).filter_by(enabled = True).distinct().all()
    return [r.tenant_id for r in rows]
