import csv
import io
import json

from sqlalchemy import desc, asc
from sqlalchemy.orm import Session

from assurance.clock import isoformat_ms
from assurance.models.deletion import DeletionJob, DeletionJobStatus, DeletionEvent

EXPORT_COLUMNS = (
    "artifactType", "artifactId", "caseId", "deletedAt",
    "deletionMethod", "proofHash", "legalHoldBlocked", "reason",
)


def list_deletion_jobs(
    db: Session,
    tenant_id: str,
    status: DeletionJobStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[DeletionJob], int]:
    q = db.query(DeletionJob).filter_by(tenant_id = tenant_id)
    if status:
        q = q.filter_by(status = status)
    total = q.count()
    items = q.order_by(desc(DeletionJob.started_at)).offset(offset).limit(limit).all()
    return items, total


def get_deletion_job(db: Session, tenant_id: str, job_id: str) -> DeletionJob | None:
    return db.query(DeletionJob).filter_by(id = job_id, tenant_id = tenant_id).first()


def list_deletion_events(
    db: Session,
    tenant_id: str,
    job_id: str | None = None,
    artifact_type: str | None = None,
    limit: int | None = 50,
    offset: int = 0,
) -> tuple[list[DeletionEvent], int]:
    q = db.query(DeletionEvent).filter_by(tenant_id = tenant_id)
    if job_id:
        q = q.filter_by(job_id = job_id)
    if artifact_type:
        q = q.filter_by(artifact_type = artifact_type)
    total = q.count()
    q = q.order_by(asc(DeletionEvent.id)).offset(offset)
    if limit is not None:
        q = q.limit(limit)
    return q.all(), total


def export_row(e: DeletionEvent) -> dict:
    return {
        "artifactType"    : e.artifact_type,
        "artifactId"      : e.artifact_id,
        "caseId"          : e.case_id,
        "deletedAt"       : isoformat_ms(e.deleted_at),
        "deletionMethod"  : e.deletion_method.value,
        "proofHash"       : e.proof_hash,
        "legalHoldBlocked": bool(e.legal_hold_blocked),
        "reason"          : e.reason,
    }


def export_deletion_events(db: Session, tenant_id: str, fmt: str = "json", job_id: str | None = None) -> str:
    """Render every matching deletion event with the fixed export columns, oldest first."""
    events, _ = list_deletion_events(db, tenant_id, job_id=job_id, limit=None)
    rows = [export_row(e) for e in events]
    if fmt == "json":
        return json.dumps(rows, ensure_ascii=False)

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({**row, "caseId": row["caseId"] or "",
                         "legalHoldBlocked": "true" if row["legalHoldBlocked"] else "false"})
    return buf.getvalue()
