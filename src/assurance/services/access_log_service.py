import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from assurance.clock import utcnow
from assurance.models.access_log import AccessLogEntry, AccessOutcome, AccessType, AccessResourceType
from assurance.models.audit_event import ActorType
from assurance.services.audit_service import log_event
from assurance.services.event_bus import EventBus, EventTypes, event_bus
from assurance.services.hashing import pseudonymize
from assurance.services.rbac import is_authorized

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None


def log_access(
        db: Session,
        tenant_id: str,
        access_type: AccessType,
        resource_type: AccessResourceType,
        resource_id: str,
        outcome: AccessOutcome,
        user_id: str | None = None,
        case_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        reason: str | None = None,
        bus: EventBus = event_bus,
) -> AccessLogEntry | None:
    """
    Record one access attempt, ALLOWED or DENIED, then mirror it into the
    audit chain as an ACCESS event and publish access.allowed/denied.

    Never raises: access logging must not fail the access it records.
    The mirror is a separate write, so an entry may exist without its ACCESS
    event after a crash in between, which chain verification ignores.
    """
    try:
        ip_hash = pseudonymize(ip)
        ua_hash = pseudonymize(user_agent)
        entry = AccessLogEntry(
            tenant_id=tenant_id,
            user_id=user_id,
            access_type=access_type,
            resource_type=resource_type,
            resource_id=resource_id,
            case_id=case_id,
            ip_hash=ip_hash,
            user_agent_hash=ua_hash,
            outcome=outcome,
            reason=reason,
            timestamp=utcnow(),
        )
        db.add(entry)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Access log write failed tenant=%s resource=%s/%s outcome=%s",
                         tenant_id, resource_type, resource_id, outcome)
        return None

    metadata = {
        "access_type": AccessType(access_type).value,
        "outcome": AccessOutcome(outcome).value,
        "ip_hash": ip_hash,
        "ua_hash": ua_hash,
        "reason": reason,
        "case_id": case_id,
    }
    log_event(
        db, tenant_id, AccessResourceType(resource_type).value, "ACCESS",
        entity_id=resource_id,
        actor_user_id=user_id,
        actor_type=ActorType.USER if user_id else ActorType.PUBLIC,
        metadata={k: v for k, v in metadata.items() if v is not None},
        bus=bus,
    )

    event_type = EventTypes.ACCESS_ALLOWED if outcome == AccessOutcome.ALLOWED else EventTypes.ACCESS_DENIED
    bus.emit(event_type, tenant_id, {
        "access_log_id": entry.id,
        "resource_type": AccessResourceType(resource_type).value,
        "resource_id": resource_id,
        "outcome": AccessOutcome(outcome).value,
        "user_id": user_id,
    })
    return entry


def check_and_log_access(
        db: Session,
        tenant_id: str,
        role: str | None,
        permission: str,
        access_type: AccessType,
        resource_type: AccessResourceType,
        resource_id: str,
        user_id: str | None = None,
        case_id: str | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        bus: EventBus = event_bus,
) -> AccessDecision:
    """Consult the authorization oracle and log the outcome either way."""
    allowed = is_authorized(role, permission)
    reason = None if allowed else "RBAC_DENY"
    log_access(
        db, tenant_id, access_type, resource_type, resource_id,
        AccessOutcome.ALLOWED if allowed else AccessOutcome.DENIED,
        user_id=user_id, case_id=case_id, ip=ip, user_agent=user_agent,
        reason=reason, bus=bus,
    )
    return AccessDecision(allowed=allowed, reason=reason)
