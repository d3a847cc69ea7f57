"""
Deletion proofs: sha256 over the canonical form of exactly these fields:
tenant_id, artifact_type, artifact_id, case_id, deleted_at, deletion_method,
legal_hold_blocked, reason. Nothing else about a deletion is covered.
"""
import hmac
from datetime import datetime
from typing import Any

from assurance.clock import isoformat_ms
from assurance.services.canonical import canonical_serialize
from assurance.services.hashing import sha256

PROOF_FIELDS = (
    "tenant_id", "artifact_type", "artifact_id", "case_id",
    "deleted_at", "deletion_method", "legal_hold_blocked", "reason",
)


def build_proof_payload(
        tenant_id: str,
        artifact_type: str,
        artifact_id: str,
        case_id: str | None,
        deleted_at: datetime,
        deletion_method: str,
        legal_hold_blocked: bool,
        reason: str,
) -> dict[str, Any]:
    return {
        "tenant_id": tenant_id,
        "artifact_type": artifact_type,
        "artifact_id": artifact_id,
        "case_id": case_id,
        "deleted_at": isoformat_ms(deleted_at),
        "deletion_method": deletion_method,
        "legal_hold_blocked": legal_hold_blocked,
        "reason": reason,
    }


def payload_from_event(event) -> dict[str, Any]:
    """Rebuild the proof payload from a stored DeletionEvent row."""
    return build_proof_payload(
        tenant_id=event.tenant_id,
        artifact_type=event.artifact_type,
        artifact_id=event.artifact_id,
        case_id=event.case_id,
        deleted_at=event.deleted_at,
        deletion_method=event.deletion_method.value,
        legal_hold_blocked=bool(event.legal_hold_blocked),
        reason=event.reason,
    )


def create_proof(payload: dict[str, Any]) -> str:
    return sha256(canonical_serialize({k: payload.get(k) for k in PROOF_FIELDS}))


def verify_proof(payload: dict[str, Any], proof_hash: str) -> bool:
    return hmac.compare_digest(create_proof(payload), proof_hash or "")
