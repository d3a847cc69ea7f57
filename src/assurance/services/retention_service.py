from datetime import datetime

from sqlalchemy.orm import Session

from assurance.clock import utcnow
from assurance.dao.retention_dao import list_policies, oldest_case_artifact, has_active_legal_hold
from assurance.services.retention_engine import days_remaining, retention_cutoff


def case_retention_timers(db: Session, tenant_id: str, case_id: str, now: datetime | None = None) -> dict:
    """Per enabled policy: how long until the case's oldest live artifact becomes eligible."""
    now = now or utcnow()
    on_hold = has_active_legal_hold(db, tenant_id, case_id)
    timers = []
    for policy in list_policies(db, tenant_id, enabled_only=True):
        oldest = oldest_case_artifact(db, tenant_id, case_id, policy.artifact_type)
        if oldest is None:
            continue
        timers.append({
            "artifact_type": policy.artifact_type.value,
            "retention_days": policy.retention_days,
            "delete_mode": policy.delete_mode.value,
            "oldest_artifact_id": oldest.artifact_id,
            "oldest_created_at": oldest.created_at.isoformat(),
            "days_remaining": days_remaining(oldest.created_at, now, policy.retention_days),
            "eligible": oldest.created_at < retention_cutoff(now, policy.retention_days),
            "blocked_by_legal_hold": on_hold and policy.legal_hold_respects,
        })
    return {"case_id": case_id, "legal_hold": on_hold, "timers": timers}
