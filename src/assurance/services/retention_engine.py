"""
Pure retention evaluation. No I/O, no mutable state, so safe to call
concurrently and repeatedly.

retention_days counts fixed 24h periods on naive UTC timestamps. The cutoff
boundary is exclusive: an artifact created exactly retention_days ago is
still within its retention period.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class RetentionDecision:
    eligible: bool
    blocked: bool
    reason: str


def retention_cutoff(now: datetime, retention_days: int) -> datetime:
    return now - timedelta(days=retention_days)


def evaluate_deletion(policy, artifact, now: datetime, has_legal_hold: bool) -> RetentionDecision:
    """
    policy needs enabled / retention_days / legal_hold_respects,
    artifact needs created_at. Both ORM rows and plain objects work.
    """
    if not policy.enabled:
        return RetentionDecision(False, False, "policy disabled")

    if artifact.created_at >= retention_cutoff(now, policy.retention_days):
        return RetentionDecision(False, False, "within retention period")

    if policy.legal_hold_respects and has_legal_hold:
        return RetentionDecision(True, True, "legal hold active")

    return RetentionDecision(True, False, f"retention exceeded ({policy.retention_days} days)")


def days_remaining(oldest_created_at: datetime, now: datetime, retention_days: int) -> int:
    elapsed = (now - oldest_created_at) // timedelta(days=1)
    return max(0, retention_days - elapsed)
