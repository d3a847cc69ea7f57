"""
Retention deletion job: one synchronous batch per invocation.

    lease → job RUNNING → for each enabled policy, for each live artifact:
        evaluate → delete (+ proof, audit) | record legal-hold block | skip
    → job SUCCESS / FAILED → release lease

Per-artifact failures land in summary.errors and the batch moves on; only a
job-level failure (policies unreadable, unexpected crash) marks the job
FAILED. A job_leases row keeps two runs for the same tenant from
overlapping, across service instances.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from assurance.clock import utcnow
from assurance.config import settings
from assurance.dao.retention_dao import list_policies, live_artifacts, has_active_legal_hold
from assurance.errors import JobAlreadyRunningError, FatalJobFailure, NotFoundError
from assurance.models.audit_event import ActorType
from assurance.models.deletion import (
    DeletionJob, DeletionJobStatus, DeletionEvent, DeletionMethod, TriggerType, JobLease,
)
from assurance.models.retention import DeleteMode, RetentionPolicy, RetainedArtifact
from assurance.services.audit_service import log_event
from assurance.services.deletion_proof import build_proof_payload, create_proof, payload_from_event, verify_proof
from assurance.services.event_bus import EventBus, EventTypes, event_bus
from assurance.services.retention_engine import evaluate_deletion, RetentionDecision
from assurance.services.storage import ArtifactStorage, get_storage

logger = logging.getLogger(__name__)

JOB_NAME = "retention_deletion"

LegalHoldChecker = Callable[[str], bool]


@dataclass
class JobSummary:
    total_evaluated: int = 0
    total_deleted: int = 0
    total_blocked: int = 0
    errors: list[str] = field(default_factory=list)
    error_count: int = 0

    def add_error(self, message: str) -> None:
        self.error_count += 1
        if len(self.errors) < settings.max_job_errors:
            self.errors.append(message)

    def to_dict(self) -> dict:
        return {
            "total_evaluated": self.total_evaluated,
            "total_deleted": self.total_deleted,
            "total_blocked": self.total_blocked,
            "errors": list(self.errors),
            "error_count": self.error_count,
        }


# ── Single-flight lease ───────────────────────────────────────────────────────

def acquire_lease(db: Session, tenant_id: str, job_name: str, holder_id: str) -> None:
    now = utcnow()
    try:
        db.execute(insert(JobLease).values(
            tenant_id=tenant_id, job_name=job_name, holder_id=holder_id, acquired_at=now,
        ))
        db.commit()
        return
    except IntegrityError:
        db.rollback()

    # Someone holds it; take over only if the holder is long gone
    stale_before = now - timedelta(seconds=settings.deletion_job_lease_seconds)
    taken = (
        db.query(JobLease)
        .filter(JobLease.tenant_id == tenant_id, JobLease.job_name == job_name,
                JobLease.acquired_at < stale_before)
        .update({"holder_id": holder_id, "acquired_at": now}, synchronize_session=False)
    )
    db.commit()
    if not taken:
        raise JobAlreadyRunningError(f"A {job_name} job is already running for tenant {tenant_id}")
    logger.warning("Took over stale %s lease for tenant %s", job_name, tenant_id)


def renew_lease(db: Session, tenant_id: str, job_name: str, holder_id: str) -> bool:
    """Refresh acquired_at. False means another runner took the lease over."""
    renewed = (
        db.query(JobLease)
        .filter_by(tenant_id=tenant_id, job_name=job_name, holder_id=holder_id)
        .update({"acquired_at": utcnow()}, synchronize_session=False)
    )
    db.commit()
    return bool(renewed)


def release_lease(db: Session, tenant_id: str, job_name: str, holder_id: str) -> None:
    try:
        (
            db.query(JobLease)
            .filter_by(tenant_id=tenant_id, job_name=job_name, holder_id=holder_id)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not release %s lease for tenant %s", job_name, tenant_id)


# ── Job runner ────────────────────────────────────────────────────────────────

def run_retention_deletion_job(
        db: Session,
        tenant_id: str,
        triggered_by: TriggerType = TriggerType.SYSTEM,
        triggered_user_id: str | None = None,
        now: datetime | None = None,
        storage: ArtifactStorage | None = None,
        legal_hold_checker: LegalHoldChecker | None = None,
        bus: EventBus = event_bus,
) -> DeletionJob:
    """
    Run one retention pass for the tenant and return the finished job.
    Raises JobAlreadyRunningError if another pass holds the tenant lease.
    """
    now = now or utcnow()
    now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
    storage = storage or get_storage()
    if legal_hold_checker is None:
        def legal_hold_checker(case_id: str) -> bool:
            return has_active_legal_hold(db, tenant_id, case_id)

    holder_id = str(uuid.uuid4())
    acquire_lease(db, tenant_id, JOB_NAME, holder_id)
    try:
        job = DeletionJob(
            tenant_id=tenant_id,
            status=DeletionJobStatus.RUNNING,
            triggered_by=triggered_by,
            triggered_user_id=triggered_user_id,
            started_at=utcnow(),
        )
        db.add(job)
        db.commit()
        logger.info("[Retention] Job %s started for tenant %s (%s)", job.id, tenant_id, triggered_by.value)
        bus.emit(EventTypes.RETENTION_JOB_STARTED, tenant_id, {"job_id": job.id}, correlation_id=job.id)

        summary = JobSummary()
        fatal: str | None = None
        try:
            for policy in _load_policies(db, tenant_id):
                if not renew_lease(db, tenant_id, JOB_NAME, holder_id):
                    raise FatalJobFailure(f"Lost the {JOB_NAME} lease for tenant {tenant_id}")
                _run_policy(db, job, policy, now, summary, storage, legal_hold_checker, bus)
        except FatalJobFailure as e:
            fatal = e.message
            logger.error("[Retention] Job %s failed for tenant %s: %s", job.id, tenant_id, e.message)
        except Exception as e:
            db.rollback()
            fatal = f"Job aborted: {e}"
            logger.exception("[Retention] Job %s failed for tenant %s", job.id, tenant_id)

        return _finalize(db, job, summary, fatal, bus)
    finally:
        release_lease(db, tenant_id, JOB_NAME, holder_id)


def _load_policies(db: Session, tenant_id: str) -> list[RetentionPolicy]:
    try:
        return list_policies(db, tenant_id, enabled_only=True)
    except SQLAlchemyError as e:
        db.rollback()
        raise FatalJobFailure(f"Could not read retention policies: {e}")


def _run_policy(
        db: Session,
        job: DeletionJob,
        policy: RetentionPolicy,
        now: datetime,
        summary: JobSummary,
        storage: ArtifactStorage,
        legal_hold_checker: LegalHoldChecker,
        bus: EventBus,
) -> None:
    artifact_type = policy.artifact_type.value
    try:
        artifacts = live_artifacts(db, job.tenant_id, policy.artifact_type)
    except SQLAlchemyError as e:
        db.rollback()
        summary.add_error(f"Failed to evaluate {artifact_type}: {e}")
        logger.error("[Retention] Could not enumerate %s for tenant %s: %s", artifact_type, job.tenant_id, e)
        return

    for artifact in artifacts:
        artifact_id = artifact.artifact_id
        summary.total_evaluated += 1
        try:
            on_hold = bool(artifact.case_id) and legal_hold_checker(artifact.case_id)
            decision = evaluate_deletion(policy, artifact, now, on_hold)
            if not decision.eligible:
                continue
            if decision.blocked:
                _record_blocked(db, job, policy, artifact, now, decision, bus)
                summary.total_blocked += 1
            else:
                _delete_artifact(db, job, policy, artifact, now, decision, storage, bus)
                summary.total_deleted += 1
        except Exception as e:
            db.rollback()
            summary.add_error(f"Failed to delete {artifact_type}:{artifact_id}: {e}")
            logger.error("[Retention] %s:%s failed in job %s: %s", artifact_type, artifact_id, job.id, e)


def _actor(job: DeletionJob) -> dict:
    if job.triggered_by == TriggerType.USER:
        return {"actor_user_id": job.triggered_user_id, "actor_type": ActorType.USER}
    return {"actor_user_id": None, "actor_type": ActorType.SYSTEM}


def _delete_artifact(
        db: Session,
        job: DeletionJob,
        policy: RetentionPolicy,
        artifact: RetainedArtifact,
        now: datetime,
        decision: RetentionDecision,
        storage: ArtifactStorage,
        bus: EventBus,
) -> DeletionEvent:
    hard = policy.delete_mode == DeleteMode.HARD_DELETE
    method = DeletionMethod.HARD if hard else DeletionMethod.SOFT
    artifact_type = artifact.artifact_type.value
    artifact_id = artifact.artifact_id
    case_id = artifact.case_id
    storage_key = artifact.storage_key

    # Content first: a storage failure leaves metadata intact for the next run
    if hard and storage_key:
        storage.delete(storage_key)

    payload = build_proof_payload(job.tenant_id, artifact_type, artifact_id, case_id,
                                  now, method.value, False, decision.reason)
    event = DeletionEvent(
        tenant_id=job.tenant_id,
        job_id=job.id,
        artifact_type=artifact_type,
        artifact_id=artifact_id,
        case_id=case_id,
        storage_key=storage_key,
        deleted_at=now,
        deletion_method=method,
        proof_hash=create_proof(payload),
        legal_hold_blocked=False,
        reason=decision.reason,
    )
    db.add(event)
    if hard:
        db.delete(artifact)
    else:
        artifact.deleted_at = now
        artifact.deletion_method = method.value
    db.commit()

    bus.emit(EventTypes.DELETION_EVENT_CREATED, job.tenant_id, {
        "artifact_id": artifact_id,
        "artifact_type": artifact_type,
        "deletion_method": method.value,
    }, correlation_id=job.id)
    log_event(db, job.tenant_id, artifact_type, "DELETE", entity_id=artifact_id, **_actor(job),
              metadata={
                  "job_id": job.id,
                  "case_id": case_id,
                  "deletion_method": method.value,
                  "proof_hash": event.proof_hash,
              }, bus=bus)
    return event


def _record_blocked(
        db: Session,
        job: DeletionJob,
        policy: RetentionPolicy,
        artifact: RetainedArtifact,
        now: datetime,
        decision: RetentionDecision,
        bus: EventBus,
) -> DeletionEvent | None:
    """Record the legal-hold block once per artifact; later runs only count it."""
    artifact_type = artifact.artifact_type.value
    already = (
        db.query(DeletionEvent.id)
        .filter_by(tenant_id=job.tenant_id, artifact_type=artifact_type,
                   artifact_id=artifact.artifact_id, legal_hold_blocked=True)
        .first()
    )
    if already:
        return None

    method = DeletionMethod.HARD if policy.delete_mode == DeleteMode.HARD_DELETE else DeletionMethod.SOFT
    payload = build_proof_payload(job.tenant_id, artifact_type, artifact.artifact_id, artifact.case_id,
                                  now, method.value, True, decision.reason)
    event = DeletionEvent(
        tenant_id=job.tenant_id,
        job_id=job.id,
        artifact_type=artifact_type,
        artifact_id=artifact.artifact_id,
        case_id=artifact.case_id,
        storage_key=artifact.storage_key,
        deleted_at=now,
        deletion_method=method,
        proof_hash=create_proof(payload),
        legal_hold_blocked=True,
        reason=decision.reason,
    )
    db.add(event)
    db.commit()

    bus.emit(EventTypes.DELETION_BLOCKED_LEGAL_HOLD, job.tenant_id, {
        "artifact_id": event.artifact_id,
        "case_id": event.case_id,
    }, correlation_id=job.id)
    log_event(db, job.tenant_id, artifact_type, "DELETION_BLOCKED", entity_id=event.artifact_id, **_actor(job),
              metadata={"job_id": job.id, "case_id": event.case_id, "reason": decision.reason}, bus=bus)
    return event


def _finalize(db: Session, job: DeletionJob, summary: JobSummary, fatal: str | None, bus: EventBus) -> DeletionJob:
    if fatal:
        summary.add_error(fatal)
    status = DeletionJobStatus.FAILED if fatal else DeletionJobStatus.SUCCESS
    summary_json = summary.to_dict()

    job.status = status
    job.finished_at = utcnow()
    job.summary_json = summary_json
    db.commit()

    log_event(db, job.tenant_id, "DeletionJob",
              "DELETION_JOB_COMPLETE" if status == DeletionJobStatus.SUCCESS else "DELETION_JOB_FAILED",
              entity_id=job.id, **_actor(job), metadata=summary_json, bus=bus)
    bus.emit(
        EventTypes.RETENTION_JOB_COMPLETED if status == DeletionJobStatus.SUCCESS else EventTypes.RETENTION_JOB_FAILED,
        job.tenant_id, {"job_id": job.id, **summary_json}, correlation_id=job.id,
    )
    logger.info("[Retention] Job %s %s — evaluated=%d deleted=%d blocked=%d errors=%d",
                job.id, status.value, summary.total_evaluated, summary.total_deleted,
                summary.total_blocked, summary.error_count)
    db.refresh(job)
    return job


def verify_deletion_event(db: Session, tenant_id: str, event_id: int) -> dict:
    """Recompute the proof of a stored deletion event."""
    event = db.query(DeletionEvent).filter_by(id=event_id, tenant_id=tenant_id).first()
    if not event:
        raise NotFoundError("Deletion event not found")
    valid = verify_proof(payload_from_event(event), event.proof_hash)
    if not valid:
        logger.warning("Deletion proof mismatch for event %s (tenant %s)", event_id, tenant_id)
    return {"event_id": event.id, "proof_hash": event.proof_hash, "valid": valid}
