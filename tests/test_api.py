# tests/test_api.py
import csv
import io
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

PLUS_FIVE = timezone(timedelta(hours=5))


def _at_plus_five(delta):
    return (datetime.now(timezone.utc) + delta).astimezone(PLUS_FIVE).isoformat()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_missing_tenant_is_unauthorized(client):
    r = client.get("/assurance/audit-events", headers={"X-User-Role": "TENANT_ADMIN"})
    assert r.status_code == 401


def test_capability_denial_is_forbidden(client, auth):
    r = client.post("/assurance/audit-events", json={"entity_type": "Case", "action": "CREATE"},
                    headers=auth(role="READ_ONLY"))
    assert r.status_code == 403
    assert r.json()["code"] == "FORBIDDEN"


def test_append_query_and_verify_chain(client, auth):
    for action in ("CREATE", "UPDATE", "CLOSE"):
        r = client.post("/assurance/audit-events",
                        json={"entity_type": "Case", "entity_id": "c-1", "action": action,
                              "diff": {"b": 1, "a": [1, 2]}},
                        headers=auth())
        assert r.status_code == 201

    listing = client.get("/assurance/audit-events?action=UPDATE", headers=auth(role="AUDITOR")).json()
    assert listing["total"] == 1
    assert listing["items"][0]["actor_user_id"] == "user-1"

    verify = client.post("/assurance/audit-chain/verify", headers=auth(role="AUDITOR")).json()
    assert verify["valid"] is True
    assert verify["total_entries"] == 3

    denied = client.post("/assurance/audit-chain/verify", headers=auth(role="ANALYST"))
    assert denied.status_code == 403


def test_audit_event_without_action_is_rejected(client, auth):
    r = client.post("/assurance/audit-events", json={"entity_type": "Case"}, headers=auth())
    assert r.status_code == 422
    assert client.get("/assurance/audit-events", headers=auth()).json()["total"] == 0


def test_access_check_is_logged_either_way(client, auth):
    body = {"permission": "ASSURANCE_VIEW", "access_type": "VIEW",
            "resource_type": "DOCUMENT", "resource_id": "doc-1", "case_id": "case-1"}

    denied = client.post("/assurance/access-checks", json=body, headers=auth(user="u-9", role="READ_ONLY"))
    allowed = client.post("/assurance/access-checks", json=body, headers=auth(user="u-8", role="ANALYST"))

    assert denied.json() == {"allowed": False, "reason": "RBAC_DENY"}
    assert allowed.json() == {"allowed": True, "reason": None}

    logs = client.get("/assurance/access-logs?outcome=DENIED", headers=auth()).json()
    assert logs["total"] == 1
    assert logs["items"][0]["user_id"] == "u-9"
    assert logs["items"][0]["ip_hash"] is not None

    recent = client.get("/assurance/cases/case-1/access-logs", headers=auth()).json()
    assert len(recent) == 2


def test_date_filters_honour_utc_offsets(client, auth):
    body = {"permission": "ASSURANCE_VIEW", "access_type": "VIEW",
            "resource_type": "DOCUMENT", "resource_id": "doc-1"}
    client.post("/assurance/access-checks", json=body, headers=auth(role="ANALYST"))

    since_hour_ago = client.get("/assurance/access-logs", headers=auth(),
                                params={"date_from": _at_plus_five(timedelta(hours=-1))}).json()
    until_hour_ago = client.get("/assurance/access-logs", headers=auth(),
                                params={"date_to": _at_plus_five(timedelta(hours=-1))}).json()
    assert since_hour_ago["total"] == 1
    assert until_hour_ago["total"] == 0

    audit = client.get("/assurance/audit-events", headers=auth(),
                       params={"action": "ACCESS", "date_from": _at_plus_five(timedelta(hours=-1)),
                               "date_to": _at_plus_five(timedelta(hours=1))}).json()
    assert audit["total"] == 1


def test_undecodable_tampering_is_reported_over_http(client, auth, db):
    for action in ("CREATE", "UPDATE"):
        client.post("/assurance/audit-events", json={"entity_type": "Case", "action": action},
                    headers=auth())
    db.execute(text("UPDATE audit_events SET metadata_json = '{not json' WHERE sequence = 2"))
    db.commit()

    r = client.post("/assurance/audit-chain/verify", headers=auth(role="AUDITOR"))

    assert r.status_code == 200
    assert r.json()["valid"] is False
    assert r.json()["first_invalid_index"] == 1


def test_retention_policy_is_one_row_per_type(client, auth):
    r = client.put("/assurance/retention-policies/IDV_ARTIFACT",
                   json={"retention_days": 90, "delete_mode": "HARD_DELETE"}, headers=auth())
    assert r.status_code == 200
    r = client.put("/assurance/retention-policies/IDV_ARTIFACT",
                   json={"retention_days": 30, "delete_mode": "SOFT_DELETE", "enabled": False}, headers=auth())
    assert r.json()["retention_days"] == 30

    policies = client.get("/assurance/retention-policies", headers=auth(role="AUDITOR")).json()
    assert len(policies) == 1
    assert policies[0]["enabled"] is False
    assert policies[0]["legal_hold_respects"] is True

    audit = client.get("/assurance/audit-events?entity_type=RetentionPolicy", headers=auth()).json()
    assert [e["action"] for e in audit["items"]] == ["UPDATE", "CREATE"]

    assert client.delete("/assurance/retention-policies/IDV_ARTIFACT", headers=auth()).status_code == 204
    assert client.get("/assurance/retention-policies/IDV_ARTIFACT", headers=auth()).status_code == 404


def test_unknown_artifact_type_is_rejected(client, auth):
    r = client.put("/assurance/retention-policies/SPREADSHEET",
                   json={"retention_days": 90}, headers=auth())
    assert r.status_code == 422


def test_legal_hold_lifecycle(client, auth):
    r = client.post("/assurance/legal-holds", json={"case_id": "case-1", "reason": "litigation"}, headers=auth())
    assert r.status_code == 201
    again = client.post("/assurance/legal-holds", json={"case_id": "case-1", "reason": "again"}, headers=auth())
    assert again.status_code == 409
    assert again.json()["code"] == "CONFLICT"

    released = client.delete("/assurance/legal-holds/case-1", headers=auth())
    assert released.status_code == 200
    assert released.json()["disabled_by"] == "user-1"
    assert client.delete("/assurance/legal-holds/case-1", headers=auth()).status_code == 404

    actions = [e["action"] for e in client.get("/assurance/audit-events?entity_type=LegalHold",
                                               headers=auth()).json()["items"]]
    assert actions == ["DISABLE", "ENABLE"]


def test_deletion_job_end_to_end(client, auth, tmp_path):
    (tmp_path / "idv").mkdir()
    (tmp_path / "idv" / "passport.png").write_bytes(b"\x89PNG")
    client.put("/assurance/retention-policies/IDV_ARTIFACT",
               json={"retention_days": 90, "delete_mode": "HARD_DELETE"}, headers=auth())
    r = client.post("/assurance/artifacts",
                    json={"artifact_type": "IDV_ARTIFACT", "artifact_id": "idv-1", "case_id": "case-1",
                          "storage_key": "idv/passport.png", "created_at": "2020-01-01T00:00:00Z"},
                    headers=auth())
    assert r.status_code == 201

    job = client.post("/assurance/deletion-jobs", headers=auth()).json()
    assert job["status"] == "SUCCESS"
    assert job["triggered_by"] == "USER"
    assert job["summary"]["total_deleted"] == 1
    assert not (tmp_path / "idv" / "passport.png").exists()

    jobs = client.get("/assurance/deletion-jobs", headers=auth(role="AUDITOR")).json()
    assert jobs["total"] == 1

    events = client.get(f"/assurance/deletion-jobs/{job['id']}/events", headers=auth(role="AUDITOR")).json()
    event = events["items"][0]
    assert event["artifact_id"] == "idv-1"
    assert event["deletion_method"] == "HARD"

    proof = client.get(f"/assurance/deletion-events/{event['id']}/verify", headers=auth(role="DPO")).json()
    assert proof["valid"] is True

    export = client.get(f"/assurance/deletion-events/export?format=csv&job_id={job['id']}",
                        headers=auth(role="AUDITOR"))
    assert export.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(io.StringIO(export.text)))
    assert list(rows[0].keys()) == ["artifactType", "artifactId", "caseId", "deletedAt",
                                    "deletionMethod", "proofHash", "legalHoldBlocked", "reason"]
    assert rows[0]["proofHash"] == event["proof_hash"]

    as_json = client.get("/assurance/deletion-events/export?format=json", headers=auth(role="AUDITOR")).json()
    assert as_json[0]["legalHoldBlocked"] is False

    second = client.post("/assurance/deletion-jobs", headers=auth()).json()
    assert second["summary"]["total_deleted"] == 0


def test_deletion_jobs_are_tenant_scoped(client, auth):
    job = client.post("/assurance/deletion-jobs", headers=auth(tenant="t1")).json()
    r = client.get(f"/assurance/deletion-jobs/{job['id']}", headers=auth(tenant="t2"))
    assert r.status_code == 404


def test_running_jobs_needs_run_permission(client, auth):
    assert client.post("/assurance/deletion-jobs", headers=auth(role="AUDITOR")).status_code == 403


def test_retention_timers(client, auth):
    client.put("/assurance/retention-policies/EVIDENCE",
               json={"retention_days": 3650, "delete_mode": "SOFT_DELETE"}, headers=auth())
    client.post("/assurance/artifacts",
                json={"artifact_type": "EVIDENCE", "artifact_id": "ev-1", "case_id": "case-7",
                      "created_at": "2026-01-01T00:00:00"},
                headers=auth())

    timers = client.get("/assurance/cases/case-7/retention-timers", headers=auth(role="AUDITOR")).json()
    assert timers["timers"][0]["artifact_type"] == "EVIDENCE"
    assert timers["timers"][0]["days_remaining"] > 0


def test_sod_policy_and_guarded_approval(client, auth):
    policy = client.get("/assurance/sod-policy", headers=auth(role="ANALYST")).json()
    assert len(policy["rules"]) == 5

    created = client.post("/assurance/approvals",
                          json={"rule_id": "generator_cannot_approve_response",
                                "scope_type": "RESPONSE", "scope_id": "resp-1"},
                          headers=auth(user="alice")).json()
    assert created["status"] == "REQUESTED"

    url = f"/assurance/approvals/{created['id']}/decision"
    self_approve = client.post(url, json={"decision": "APPROVED"}, headers=auth(user="alice"))
    assert self_approve.status_code == 403
    assert self_approve.json()["code"] == "SOD_VIOLATION"
    assert self_approve.json()["violated_rule"] == "generator_cannot_approve_response"

    not_allowed = client.post(url, json={"decision": "APPROVED"}, headers=auth(user="bob", role="ANALYST"))
    assert not_allowed.status_code == 403
    assert not_allowed.json()["code"] == "FORBIDDEN"

    approved = client.post(url, json={"decision": "APPROVED"}, headers=auth(user="bob", role="DPO"))
    assert approved.json()["status"] == "APPROVED"

    again = client.post(url, json={"decision": "REJECTED"}, headers=auth(user="carol", role="DPO"))
    assert again.status_code == 409

    pending = client.get("/assurance/approvals?status=REQUESTED", headers=auth()).json()
    assert pending == []


def test_sod_rule_toggle_requires_manage(client, auth):
    url = "/assurance/sod-policy/rules/export_requester_cannot_approve"
    assert client.patch(url, json={"enabled": False}, headers=auth(role="DPO")).status_code == 403

    r = client.patch(url, json={"enabled": False}, headers=auth())
    rule = next(x for x in r.json()["rules"] if x["id"] == "export_requester_cannot_approve")
    assert rule["enabled"] is False
    assert client.patch("/assurance/sod-policy/rules/unknown", json={"enabled": False},
                        headers=auth()).status_code == 404
