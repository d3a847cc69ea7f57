"""
In-process domain event bus (audit, access, SoD, retention events).

Publishing is best-effort: a failing handler is logged and swallowed so the
operation that emitted the event is never affected. Forwarding to a message
queue or SIEM is done by subscribing a handler with on_all().
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from assurance.clock import utcnow

logger = logging.getLogger(__name__)


class EventTypes:
    AUDIT_LOG_CREATED = "audit.log.created"
    AUDIT_INTEGRITY_VIOLATION = "audit.integrity.violation"
    ACCESS_ALLOWED = "access.allowed"
    ACCESS_DENIED = "access.denied"
    SOD_VIOLATION_BLOCKED = "sod.violation.blocked"
    SOD_APPROVAL_REQUESTED = "sod.approval.requested"
    SOD_APPROVAL_DECIDED = "sod.approval.decided"
    RETENTION_JOB_STARTED = "retention.job.started"
    RETENTION_JOB_COMPLETED = "retention.job.completed"
    RETENTION_JOB_FAILED = "retention.job.failed"
    DELETION_EVENT_CREATED = "deletion.event.created"
    DELETION_BLOCKED_LEGAL_HOLD = "deletion.blocked.legal_hold"


@dataclass
class DomainEvent:
    type: str
    tenant_id: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)
    correlation_id: str | None = None


Handler = Callable[[DomainEvent], None]


class EventBus:
    def __init__(self):
        self._handlers: dict[str, list[Handler]] = {}
        self._global_handlers: list[Handler] = []

    def on(self, event_type: str, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def on_all(self, handler: Handler) -> None:
        self._global_handlers.append(handler)

    def off(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type] = [h for h in self._handlers.get(event_type, []) if h is not handler]

    def clear(self) -> None:
        self._handlers.clear()
        self._global_handlers = []

    def emit(self, event_type: str, tenant_id: str, payload: dict[str, Any],
             correlation_id: str | None = None) -> DomainEvent:
        event = DomainEvent(type=event_type, tenant_id=tenant_id, payload=payload,
                            correlation_id=correlation_id)
        for handler in [*self._handlers.get(event_type, []), *self._global_handlers]:
            try:
                handler(event)
            except Exception:
                logger.exception("[EventBus] handler error for %s", event_type)
        return event


event_bus = EventBus()
