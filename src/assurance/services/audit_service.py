"""
Hash-chained, append-only audit log per tenant.

    hash = sha256(prev_hash-or-"" + canonical_serialize(envelope))

where the envelope is every event field except hash / prev_hash, with the
server-assigned timestamp rendered as ISO-8601 milliseconds. There is no
update or delete path for stored events.

Chain head serialization uses optimistic concurrency: (tenant_id, sequence)
is unique, so of two appends that read the same head only one commits; the
other rolls back and retries against the new head. Callers must commit
their own work BEFORE appending: a retry rolls the session back.
"""
import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any

from sqlalchemy import String, func, type_coerce
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assurance.clock import utcnow, isoformat_ms
from assurance.config import settings
from assurance.errors import ConflictError, IntegrityViolation, ValidationError
from assurance.models.audit_event import AuditEvent, ActorType
from assurance.services.canonical import canonical_serialize
from assurance.services.event_bus import EventBus, EventTypes, event_bus
from assurance.services.hashing import sha256

logger = logging.getLogger(__name__)


@dataclass
class ChainVerification:
    valid: bool
    total_entries: int
    checked_entries: int
    error: str | None = None
    first_invalid_index: int | None = None
    first_invalid_id: int | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def event_envelope(
        tenant_id: str,
        sequence: int,
        entity_type: str,
        entity_id: str | None,
        action: str,
        actor_user_id: str | None,
        actor_type: ActorType | str,
        timestamp: datetime,
        diff: Any,
        metadata: Any,
) -> dict[str, Any]:
    """The hashed form of an event. Optional fields are always present, as null."""
    return {
        "tenant_id": tenant_id,
        "sequence": sequence,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "actor_user_id": actor_user_id,
        "actor_type": ActorType(actor_type).value,
        "timestamp": isoformat_ms(timestamp),
        "diff": diff,
        "metadata": metadata,
    }


def compute_event_hash(prev_hash: str | None, envelope: dict[str, Any]) -> str:
    return sha256((prev_hash or "") + canonical_serialize(envelope))


def _read_head(db: Session, tenant_id: str) -> tuple[int, str | None]:
    head = (
        db.query(AuditEvent.sequence, AuditEvent.hash)
        .filter(AuditEvent.tenant_id == tenant_id)
        .order_by(AuditEvent.sequence.desc())
        .first()
    )
    if head is None:
        return 0, None
    return head.sequence, head.hash


def append_event(
        db: Session,
        tenant_id: str,
        entity_type: str,
        action: str,
        entity_id: str | None = None,
        actor_user_id: str | None = None,
        actor_type: ActorType = ActorType.USER,
        diff: Any = None,
        metadata: Any = None,
        bus: EventBus = event_bus,
) -> AuditEvent:
    """
    Append one event to the tenant chain and commit it.
    Raises ValidationError for non-serializable payloads and ConflictError
    when the head stays contended past the retry budget.
    """
    # Reject malformed payloads before touching the chain
    canonical_serialize(diff)
    canonical_serialize(metadata)

    for attempt in range(1, settings.audit_append_max_retries + 1):
        sequence, prev_hash = _read_head(db, tenant_id)
        timestamp = utcnow()
        envelope = event_envelope(tenant_id, sequence + 1, entity_type, entity_id, action,
                                  actor_user_id, actor_type, timestamp, diff, metadata)
        entry = AuditEvent(
            tenant_id=tenant_id,
            sequence=sequence + 1,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_user_id=actor_user_id,
            actor_type=ActorType(actor_type),
            timestamp=timestamp,
            diff_json=diff,
            metadata_json=metadata,
            prev_hash=prev_hash,
            hash=compute_event_hash(prev_hash, envelope),
        )
        db.add(entry)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("Audit chain head moved for tenant %s (attempt %d) — retrying", tenant_id, attempt)
            continue

        logger.info("AUDIT [%s] tenant=%s entity=%s/%s actor=%s seq=%d",
                    action, tenant_id, entity_type, entity_id, actor_user_id or actor_type, entry.sequence)
        bus.emit(EventTypes.AUDIT_LOG_CREATED, tenant_id, {
            "audit_event_id": entry.id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
        })
        return entry

    raise ConflictError(f"Audit chain head for tenant {tenant_id} still contended after "
                        f"{settings.audit_append_max_retries} attempts")


def log_event(db: Session, tenant_id: str, entity_type: str, action: str, **kwargs) -> AuditEvent | None:
    """
    Fail-open audit logging for call sites whose primary action already
    succeeded. Errors are logged for monitoring and never propagate.

    Usage:
        log_event(db, tenant_id, "SodPolicy", "UPDATE", entity_id=tenant_id,
                  actor_user_id=user_id, diff={"enabled": False})
    """
    try:
        return append_event(db, tenant_id, entity_type, action, **kwargs)
    except Exception:
        db.rollback()
        logger.exception("Audit append failed for tenant=%s action=%s entity=%s/%s",
                         tenant_id, action, entity_type, kwargs.get("entity_id"))
        return None


_VERIFY_COLUMNS = (
    AuditEvent.id, AuditEvent.sequence, AuditEvent.tenant_id, AuditEvent.entity_type,
    AuditEvent.entity_id, AuditEvent.action, AuditEvent.actor_user_id,
    # Raw stored values; decoded per row by _stored_envelope
    type_coerce(AuditEvent.actor_type, String).label("actor_type"),
    type_coerce(AuditEvent.timestamp, String).label("timestamp"),
    type_coerce(AuditEvent.diff_json, String).label("diff_json"),
    type_coerce(AuditEvent.metadata_json, String).label("metadata_json"),
    AuditEvent.prev_hash, AuditEvent.hash,
)


def _stored_json(raw):
    return None if raw is None else json.loads(raw)


def _stored_timestamp(raw) -> datetime:
    # MySQL drivers hand back datetime objects, SQLite hands back text
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(raw)


def _stored_envelope(row) -> dict[str, Any]:
    return event_envelope(row.tenant_id, row.sequence, row.entity_type, row.entity_id, row.action,
                          row.actor_user_id, row.actor_type, _stored_timestamp(row.timestamp),
                          _stored_json(row.diff_json), _stored_json(row.metadata_json))


def verify_chain(
        db: Session,
        tenant_id: str,
        batch_size: int | None = None,
        bus: EventBus = event_bus,
) -> ChainVerification:
    """
    Replay the tenant chain oldest-first and stop at the first broken link or
    recomputed-hash mismatch. Rows are streamed in keyset pages of
    batch_size plain tuples, so memory stays bounded for large tenants.
    """
    batch_size = batch_size or settings.chain_verify_batch_size
    total = db.query(func.count(AuditEvent.id)).filter(AuditEvent.tenant_id == tenant_id).scalar() or 0

    index = 0
    expected_prev: str | None = None
    last_sequence = 0

    while True:
        rows = (
            db.query(*_VERIFY_COLUMNS)
            .filter(AuditEvent.tenant_id == tenant_id, AuditEvent.sequence > last_sequence)
            .order_by(AuditEvent.sequence)
            .limit(batch_size)
            .all()
        )
        if not rows:
            break

        for row in rows:
            if row.prev_hash != expected_prev:
                return _invalid(bus, tenant_id, total, index, row.id,
                                f"Chain break at index {index}: expected prev_hash={expected_prev}, "
                                f"got {row.prev_hash}")

            try:
                expected_hash = compute_event_hash(expected_prev, _stored_envelope(row))
            except (ValueError, TypeError, ValidationError) as e:
                return _invalid(bus, tenant_id, total, index, row.id,
                                f"Undecodable stored value at index {index}: {e}")
            if row.hash != expected_hash:
                return _invalid(bus, tenant_id, total, index, row.id,
                                f"Hash mismatch at index {index}: expected={expected_hash}, got={row.hash}")

            expected_prev = row.hash
            last_sequence = row.sequence
            index += 1

    return ChainVerification(valid=True, total_entries=total, checked_entries=index)


def _invalid(bus: EventBus, tenant_id: str, total: int, index: int, event_id: int, error: str) -> ChainVerification:
    logger.error("Audit chain integrity violation for tenant %s: %s", tenant_id, error)
    bus.emit(EventTypes.AUDIT_INTEGRITY_VIOLATION, tenant_id, {
        "audit_event_id": event_id,
        "index": index,
        "error": error,
    })
    return ChainVerification(
        valid=False,
        total_entries=total,
        checked_entries=index + 1,
        error=error,
        first_invalid_index=index,
        first_invalid_id=event_id,
    )


def assert_chain_intact(db: Session, tenant_id: str) -> ChainVerification:
    result = verify_chain(db, tenant_id)
    if not result.valid:
        raise IntegrityViolation(result.error or "Audit chain invalid",
                                 first_invalid_index=result.first_invalid_index,
                                 first_invalid_id=result.first_invalid_id)
    return result
