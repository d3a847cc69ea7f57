import enum
import uuid
from sqlalchemy import Column, String, Boolean, Enum, JSON, Text, Index
from assurance.clock import utcnow
from assurance.database import Base, PreciseDateTime


class ApprovalStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApprovalScopeType(str, enum.Enum):
    RESPONSE = "RESPONSE"
    DELIVERY = "DELIVERY"
    LEGAL_EXCEPTION = "LEGAL_EXCEPTION"
    RETENTION_OVERRIDE = "RETENTION_OVERRIDE"
    EXPORT = "EXPORT"


class SodPolicy(Base):
    __tablename__ = "sod_policies"

    tenant_id = Column(String(64), primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    rules_json = Column(JSON, nullable=False)                # ordered [{id, name, description, enabled}]
    updated_at = Column(PreciseDateTime, default=utcnow, onupdate=utcnow)
    updated_by = Column(String(128), nullable=True)


class ApprovalRequest(Base):
    """REQUESTED → APPROVED | REJECTED. Terminal rows are never transitioned again."""
    __tablename__ = "approval_requests"
    __table_args__ = (
        Index("ix_approval_requests_tenant_status", "tenant_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(64), nullable=False)
    rule_id = Column(String(128), nullable=False)
    scope_type = Column(Enum(ApprovalScopeType), nullable=False)
    scope_id = Column(String(128), nullable=False)
    status = Column(Enum(ApprovalStatus), nullable=False, default=ApprovalStatus.REQUESTED)
    requested_by = Column(String(128), nullable=False)
    requested_at = Column(PreciseDateTime, nullable=False, default=utcnow)
    decided_by = Column(String(128), nullable=True)
    decided_at = Column(PreciseDateTime, nullable=True)
    reason = Column(Text, nullable=True)
