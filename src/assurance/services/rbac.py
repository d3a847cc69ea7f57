"""
Default authorization oracle: is_authorized(role, permission).

The role → permission matrix itself belongs to the wider platform; this is
the assurance slice of it.
"""
import enum


class Permission(str, enum.Enum):
    ASSURANCE_VIEW = "ASSURANCE_VIEW"
    ASSURANCE_MANAGE = "ASSURANCE_MANAGE"
    ASSURANCE_AUDIT_VERIFY = "ASSURANCE_AUDIT_VERIFY"
    ASSURANCE_SOD_MANAGE = "ASSURANCE_SOD_MANAGE"
    ASSURANCE_RETENTION_VIEW = "ASSURANCE_RETENTION_VIEW"
    ASSURANCE_RETENTION_MANAGE = "ASSURANCE_RETENTION_MANAGE"
    ASSURANCE_RETENTION_RUN = "ASSURANCE_RETENTION_RUN"
    ASSURANCE_DELETION_VIEW = "ASSURANCE_DELETION_VIEW"
    ASSURANCE_DELETION_EXPORT = "ASSURANCE_DELETION_EXPORT"
    ASSURANCE_APPROVAL_DECIDE = "ASSURANCE_APPROVAL_DECIDE"


_ALL = frozenset(Permission)

_READ_AND_VERIFY = frozenset({
    Permission.ASSURANCE_VIEW,
    Permission.ASSURANCE_AUDIT_VERIFY,
    Permission.ASSURANCE_RETENTION_VIEW,
    Permission.ASSURANCE_DELETION_VIEW,
    Permission.ASSURANCE_DELETION_EXPORT,
})

ROLE_PERMISSIONS: dict[str, frozenset[Permission]] = {
    "SUPER_ADMIN": _ALL,
    "TENANT_ADMIN": _ALL,
    "DPO": _READ_AND_VERIFY | {Permission.ASSURANCE_APPROVAL_DECIDE},
    "AUDITOR": _READ_AND_VERIFY,
    "CASE_MANAGER": frozenset({Permission.ASSURANCE_VIEW}),
    "ANALYST": frozenset({Permission.ASSURANCE_VIEW}),
    "READ_ONLY": frozenset(),
}


def is_authorized(role: str | None, permission: Permission | str) -> bool:
    if not role:
        return False
    try:
        permission = Permission(permission)
    except ValueError:
        return False
    return permission in ROLE_PERMISSIONS.get(role.upper(), frozenset())
