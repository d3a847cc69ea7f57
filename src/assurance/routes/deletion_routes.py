# assurance/routes/deletion_routes.py
"""
Deletion job routes.
POST /assurance/deletion-jobs                    — run a retention pass now (synchronous)
GET  /assurance/deletion-jobs                    — list jobs (newest first)
GET  /assurance/deletion-jobs/{job_id}           — job detail + summary
GET  /assurance/deletion-jobs/{job_id}/events    — deletion events of a job
GET  /assurance/deletion-events/export           — CSV / JSON evidence export
GET  /assurance/deletion-events/{event_id}/verify — recompute a deletion proof
"""
import logging
from typing import Literal
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session
from assurance.clock import isoformat_ms
from assurance.database import get_db
from assurance.dao.deletion_dao import (
    list_deletion_jobs, get_deletion_job, list_deletion_events, export_deletion_events,
)
from assurance.dependencies import Principal, require_permission, get_artifact_storage
from assurance.models.deletion import DeletionJob, DeletionJobStatus, DeletionEvent, TriggerType
from assurance.services.deletion_job import run_retention_deletion_job, verify_deletion_event
from assurance.services.rbac import Permission
from assurance.services.storage import ArtifactStorage

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/assurance", tags=["Deletion Jobs"])


def _serialize_job(j: DeletionJob) -> dict:
    return {
        "id"                : j.id,
        "status"            : j.status.value,
        "triggered_by"      : j.triggered_by.value,
        "triggered_user_id" : j.triggered_user_id,
        "started_at"        : j.started_at.isoformat(),
        "finished_at"       : j.finished_at.isoformat() if j.finished_at else None,
        "summary"           : j.summary_json,
    }


def _serialize_event(e: DeletionEvent) -> dict:
    return {
        "id"                 : e.id,
        "job_id"             : e.job_id,
        "artifact_type"      : e.artifact_type,
        "artifact_id"        : e.artifact_id,
        "case_id"            : e.case_id,
        "deleted_at"         : isoformat_ms(e.deleted_at),
        "deletion_method"    : e.deletion_method.value,
        "proof_hash"         : e.proof_hash,
        "legal_hold_blocked" : bool(e.legal_hold_blocked),
        "reason"             : e.reason,
    }


@router.post("/deletion-jobs", status_code=201)
def trigger_deletion_job(
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_RETENTION_RUN)),
    storage: ArtifactStorage = Depends(get_artifact_storage),
    db: Session = Depends(get_db),
):
    logger.info("Manual retention run for tenant %s by %s", principal.tenant_id, principal.user_id)
    job = run_retention_deletion_job(
        db, principal.tenant_id,
        triggered_by=TriggerType.USER,
        triggered_user_id=principal.user_id,
        storage=storage,
    )
    return _serialize_job(job)


@router.get("/deletion-jobs")
def get_deletion_jobs(
    status: DeletionJobStatus | None = Query(None),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_DELETION_VIEW)),
    db: Session = Depends(get_db),
):
    items, total = list_deletion_jobs(db, principal.tenant_id, status=status, limit=limit, offset=offset)
    return {"items": [_serialize_job(j) for j in items], "total": total, "limit": limit, "offset": offset}


@router.get("/deletion-jobs/{job_id}")
def get_deletion_job_detail(
    job_id: str,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_DELETION_VIEW)),
    db: Session = Depends(get_db),
):
    job = get_deletion_job(db, principal.tenant_id, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Deletion job not found")
    return _serialize_job(job)


@router.get("/deletion-jobs/{job_id}/events")
def get_deletion_job_events(
    job_id: str,
    artifact_type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_DELETION_VIEW)),
    db: Session = Depends(get_db),
):
    if not get_deletion_job(db, principal.tenant_id, job_id):
        raise HTTPException(status_code=404, detail="Deletion job not found")
    items, total = list_deletion_events(db, principal.tenant_id, job_id=job_id,
                                        artifact_type=artifact_type, limit=limit, offset=offset)
    return {"items": [_serialize_event(e) for e in items], "total": total, "limit": limit, "offset": offset}


@router.get("/deletion-events/export")
def export_events(
    format: Literal["csv", "json"] = Query("json"),
    job_id: str | None = Query(None),
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_DELETION_EXPORT)),
    db: Session = Depends(get_db),
):
    body = export_deletion_events(db, principal.tenant_id, fmt=format, job_id=job_id)
    media_type = "text/csv" if format == "csv" else "application/json"
    filename = f"deletion-events-{job_id or 'all'}.{format}"
    return Response(content=body, media_type=media_type,
                    headers={"Content-Disposition": f'attachment; filename="{filename}"'})


@router.get("/deletion-events/{event_id}/verify")
def verify_event_proof(
    event_id: int,
    principal: Principal = Depends(require_permission(Permission.ASSURANCE_DELETION_VIEW)),
    db: Session = Depends(get_db),
):
    return verify_deletion_event(db, principal.tenant_id, event_id)
