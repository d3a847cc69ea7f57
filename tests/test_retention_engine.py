from datetime import datetime, timedelta
from types import SimpleNamespace

from assurance.services.retention_engine import evaluate_deletion, days_remaining

NOW = datetime(2026, 6, 15, 12, 0, 0)


def _policy(**overrides):
    values = dict(enabled=True, retention_days=90, legal_hold_respects=True)
    values.update(overrides)
    return SimpleNamespace(**values)


def _artifact(created_at):
    return SimpleNamespace(created_at=created_at)


def test_expired_idv_artifact_is_eligible_and_hold_blocks_it():
    artifact = _artifact(datetime(2026, 1, 1))

    free = evaluate_deletion(_policy(), artifact, NOW, has_legal_hold=False)
    held = evaluate_deletion(_policy(), artifact, NOW, has_legal_hold=True)

    assert (free.eligible, free.blocked) == (True, False)
    assert free.reason == "retention exceeded (90 days)"
    assert (held.eligible, held.blocked) == (True, True)
    assert held.reason == "legal hold active"


def test_boundary_is_exclusive():
    exactly = evaluate_deletion(_policy(), _artifact(NOW - timedelta(days=90)), NOW, False)
    one_day_older = evaluate_deletion(_policy(), _artifact(NOW - timedelta(days=91)), NOW, False)
    a_millisecond_older = evaluate_deletion(
        _policy(), _artifact(NOW - timedelta(days=90, milliseconds=1)), NOW, False)

    assert exactly.eligible is False
    assert exactly.reason == "within retention period"
    assert one_day_older.eligible is True
    assert a_millisecond_older.eligible is True


def test_disabled_policy_never_deletes():
    decision = evaluate_deletion(_policy(enabled=False), _artifact(datetime(2000, 1, 1)), NOW, True)
    assert decision.eligible is False
    assert decision.blocked is False
    assert decision.reason == "policy disabled"


def test_hold_ignored_when_policy_does_not_respect_it():
    decision = evaluate_deletion(_policy(legal_hold_respects=False), _artifact(datetime(2026, 1, 1)), NOW, True)
    assert (decision.eligible, decision.blocked) == (True, False)


def test_zero_day_retention():
    assert evaluate_deletion(_policy(retention_days=0), _artifact(NOW), NOW, False).eligible is False
    assert evaluate_deletion(_policy(retention_days=0), _artifact(NOW - timedelta(seconds=1)), NOW, False).eligible


def test_days_remaining_floors_elapsed_days():
    assert days_remaining(NOW - timedelta(days=10, hours=23), NOW, 30) == 20
    assert days_remaining(NOW - timedelta(days=45), NOW, 30) == 0
    assert days_remaining(NOW, NOW, 30) == 30
