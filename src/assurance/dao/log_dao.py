from datetime import datetime

from sqlalchemy import desc
from sqlalchemy.orm import Session, Query

from assurance.clock import to_naive_utc
from assurance.models.access_log import AccessLogEntry, AccessOutcome, AccessResourceType
from assurance.models.audit_event import AuditEvent


def _date_range(q: Query, column, date_from: datetime | None, date_to: datetime | None) -> Query:
    # Columns hold naive UTC
    if date_from:
        q = q.filter(column >= to_naive_utc(date_from))
    if date_to:
        q = q.filter(column <= to_naive_utc(date_to))
    return q


def query_audit_events(
    db: Session,
    tenant_id: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    actor_user_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditEvent], int]:
    q = db.query(AuditEvent).filter_by(tenant_id = tenant_id)
    if entity_type:
        q = q.filter_by(entity_type = entity_type)
    if entity_id:
        q = q.filter_by(entity_id = entity_id)
    if action:
        q = q.filter_by(action = action)
    if actor_user_id:
        q = q.filter_by(actor_user_id = actor_user_id)
    q = _date_range(q, AuditEvent.timestamp, date_from, date_to)
    total = q.count()
    items = q.order_by(desc(AuditEvent.sequence)).offset(offset).limit(limit).all()
    return items, total


def query_access_logs(
    db: Session,
    tenant_id: str,
    resource_type: AccessResourceType | None = None,
    case_id: str | None = None,
    user_id: str | None = None,
    outcome: AccessOutcome | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AccessLogEntry], int]:
    q = db.query(AccessLogEntry).filter_by(tenant_id = tenant_id)
    if resource_type:
        q = q.filter_by(resource_type = resource_type)
    if case_id:
        q = q.filter_by(case_id = case_id)
    if user_id:
        q = q.filter_by(user_id = user_id)
    if outcome:
        q = q.filter_by(outcome = outcome)
    q = _date_range(q, AccessLogEntry.timestamp, date_from, date_to)
    total = q.count()
    items = (
        q.order_by(desc(AccessLogEntry.timestamp), desc(AccessLogEntry.id))
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def recent_case_access_logs(db: Session, tenant_id: str, case_id: str, limit: int = 5) -> list[AccessLogEntry]:
    items, _ = query_access_logs(db, tenant_id, case_id=case_id, limit=limit)
    return items


def tenants_with_audit_events(db: Session) -> list[str]:
    return [r.tenant_id for r in db.query(AuditEvent.tenant_id).distinct().all()]
