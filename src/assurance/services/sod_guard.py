"""
Separation-of-duties guard.

Rules are tenant data ({id, name, description, enabled}), not code branches.
A new guarded action only needs a new rule id and a check_sod() call at its
decision point.
"""
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

DEFAULT_SOD_RULES: list[dict[str, Any]] = [
    {
        "id": "generator_cannot_approve_response",
        "name": "Response Generator ≠ Approver",
        "description": "The user who generated/drafted a response cannot be the same user who approves it.",
        "enabled": True,
    },
    {
        "id": "idv_reviewer_cannot_finalize_delivery",
        "name": "IDV Reviewer ≠ Delivery Finalizer",
        "description": "The user who reviewed IDV cannot finalize the delivery package.",
        "enabled": True,
    },
    {
        "id": "same_user_cannot_request_and_approve_legal_exception",
        "name": "Legal Exception Creator ≠ Approver",
        "description": "The user who proposed a legal exception cannot approve it.",
        "enabled": True,
    },
    {
        "id": "retention_override_requester_cannot_approve",
        "name": "Retention Override Requester ≠ Approver",
        "description": "The user who requested a retention override cannot approve it.",
        "enabled": True,
    },
    {
        "id": "export_requester_cannot_approve",
        "name": "Export Requester ≠ Approver",
        "description": "A sensitive export needs a second person to approve it.",
        "enabled": True,
    },
]


@dataclass(frozen=True)
class SodCheckResult:
    allowed: bool
    violated_rule: str | None = None
    violated_rule_description: str | None = None


def find_rule(rules: Iterable[Mapping[str, Any]], rule_id: str) -> Mapping[str, Any] | None:
    return next((r for r in rules if r.get("id") == rule_id), None)


def check_sod(
        rules: Iterable[Mapping[str, Any]],
        sod_enabled: bool,
        rule_id: str,
        actor_id: str,
        creator_id: str,
) -> SodCheckResult:
    if not sod_enabled:
        return SodCheckResult(allowed=True)

    rule = find_rule(rules, rule_id)
    if rule is None or not rule.get("enabled", False):
        return SodCheckResult(allowed=True)

    if actor_id == creator_id:
        return SodCheckResult(
            allowed=False,
            violated_rule=rule_id,
            violated_rule_description=rule.get("description"),
        )
    return SodCheckResult(allowed=True)
