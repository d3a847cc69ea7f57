from sqlalchemy.exc import OperationalError

from assurance.dao.log_dao import query_access_logs, recent_case_access_logs, query_audit_events
from assurance.models.access_log import AccessLogEntry, AccessType, AccessResourceType, AccessOutcome
from assurance.models.audit_event import ActorType
from assurance.services.access_log_service import log_access, check_and_log_access
from assurance.services.audit_service import verify_chain
from assurance.services.event_bus import EventTypes
from assurance.services.hashing import pseudonymize
from assurance.services.rbac import Permission


def test_ip_and_user_agent_are_pseudonymized(db, bus):
    entry = log_access(db, "T1", AccessType.DOWNLOAD, AccessResourceType.DOCUMENT, "doc-1",
                       AccessOutcome.ALLOWED, user_id="u-1", case_id="case-1",
                       ip="203.0.113.7", user_agent="Mozilla/5.0", bus=bus)

    assert entry.ip_hash == pseudonymize("203.0.113.7")
    assert entry.user_agent_hash == pseudonymize("Mozilla/5.0")
    stored = db.query(AccessLogEntry).one()
    assert "203.0.113.7" not in (stored.ip_hash, stored.user_agent_hash)


def test_access_is_mirrored_into_the_audit_chain(db, bus):
    log_access(db, "T1", AccessType.VIEW, AccessResourceType.IDV_ARTIFACT, "idv-9",
               AccessOutcome.DENIED, case_id="case-1", ip="10.0.0.1", reason="RBAC_DENY", bus=bus)

    events, total = query_audit_events(db, "T1", action="ACCESS")
    assert total == 1
    mirror = events[0]
    assert mirror.entity_type == "IDV_ARTIFACT"
    assert mirror.entity_id == "idv-9"
    assert mirror.actor_type == ActorType.PUBLIC
    assert mirror.metadata_json == {
        "access_type": "VIEW",
        "outcome": "DENIED",
        "ip_hash": pseudonymize("10.0.0.1"),
        "reason": "RBAC_DENY",
        "case_id": "case-1",
    }
    assert verify_chain(db, "T1", bus=bus).valid is True


def test_both_outcomes_publish_notifications(db, bus):
    log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1", AccessOutcome.ALLOWED,
               user_id="u-1", bus=bus)
    log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1", AccessOutcome.DENIED,
               user_id="u-2", bus=bus)

    types = [e.type for e in bus.seen]
    assert EventTypes.ACCESS_ALLOWED in types
    assert EventTypes.ACCESS_DENIED in types
    assert db.query(AccessLogEntry).count() == 2


def test_failing_subscriber_does_not_affect_logging(db, bus):
    def broken(event):
        raise RuntimeError("sink down")

    bus.on(EventTypes.ACCESS_ALLOWED, broken)
    entry = log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1",
                       AccessOutcome.ALLOWED, user_id="u-1", bus=bus)
    assert entry is not None


def test_write_failure_fails_open(db, bus, monkeypatch):
    def boom():
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(db, "commit", boom)
    assert log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1",
                      AccessOutcome.ALLOWED, bus=bus) is None


def test_unencodable_text_fails_open(db, bus):
    assert log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1",
                      AccessOutcome.DENIED, reason="bad \ud800", bus=bus) is None
    assert log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1",
                      AccessOutcome.ALLOWED, user_agent="agent \udfff", bus=bus) is None
    assert db.query(AccessLogEntry).count() == 0

    assert log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1",
                      AccessOutcome.ALLOWED, bus=bus) is not None


def test_mirror_metadata_uses_ua_hash_key(db, bus):
    log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1", AccessOutcome.ALLOWED,
               user_id="u-1", user_agent="Mozilla/5.0", bus=bus)

    events, _ = query_audit_events(db, "T1", action="ACCESS")
    assert events[0].metadata_json["ua_hash"] == pseudonymize("Mozilla/5.0")
    assert "user_agent_hash" not in events[0].metadata_json


def test_query_filters_and_pagination(db, bus):
    for i in range(4):
        log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, f"d-{i}",
                   AccessOutcome.ALLOWED, user_id="u-1", case_id="case-1", bus=bus)
    log_access(db, "T1", AccessType.EXPORT, AccessResourceType.EVIDENCE, "e-1",
               AccessOutcome.DENIED, user_id="u-2", case_id="case-2", bus=bus)
    log_access(db, "T2", AccessType.VIEW, AccessResourceType.DOCUMENT, "d-x",
               AccessOutcome.ALLOWED, user_id="u-1", case_id="case-1", bus=bus)

    items, total = query_access_logs(db, "T1", case_id="case-1", limit=3)
    assert total == 4
    assert len(items) == 3

    items, total = query_access_logs(db, "T1", outcome=AccessOutcome.DENIED)
    assert total == 1 and items[0].resource_id == "e-1"

    _, total = query_access_logs(db, "T1", resource_type=AccessResourceType.EVIDENCE, user_id="u-2")
    assert total == 1

    _, total = query_access_logs(db, "T1", user_id="u-1", offset=2)
    assert total == 4


def test_recent_case_access_logs_newest_first(db, bus):
    for i in range(7):
        log_access(db, "T1", AccessType.VIEW, AccessResourceType.DOCUMENT, f"d-{i}",
                   AccessOutcome.ALLOWED, case_id="case-1", bus=bus)

    recent = recent_case_access_logs(db, "T1", "case-1")
    assert len(recent) == 5
    assert recent[0].resource_id == "d-6"


def test_check_and_log_access_records_denials(db, bus):
    denied = check_and_log_access(db, "T1", "READ_ONLY", Permission.ASSURANCE_VIEW,
                                  AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1", user_id="u-1", bus=bus)
    allowed = check_and_log_access(db, "T1", "AUDITOR", Permission.ASSURANCE_VIEW,
                                   AccessType.VIEW, AccessResourceType.DOCUMENT, "d-1", user_id="u-2", bus=bus)

    assert denied.allowed is False and denied.reason == "RBAC_DENY"
    assert allowed.allowed is True and allowed.reason is None
    outcomes = {e.user_id: e.outcome for e in db.query(AccessLogEntry).all()}
    assert outcomes == {"u-1": AccessOutcome.DENIED, "u-2": AccessOutcome.ALLOWED}
