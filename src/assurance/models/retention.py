import enum
from assurance.clock import utcnow
from sqlalchemy import Column, Integer, String, Boolean, Enum, Text, UniqueConstraint, Index
from assurance.database import Base, PreciseDateTime


class RetentionArtifactType(str, enum.Enum):
    IDV_ARTIFACT = "IDV_ARTIFACT"
    INTAKE_ATTACHMENT = "INTAKE_ATTACHMENT"
    RESPONSE_DOC = "RESPONSE_DOC"
    DELIVERY_LOG = "DELIVERY_LOG"
    VENDOR_ARTIFACT = "VENDOR_ARTIFACT"
    EXPORT_ARTIFACT = "EXPORT_ARTIFACT"
    EVIDENCE = "EVIDENCE"


class DeleteMode(str, enum.Enum):
    HARD_DELETE = "HARD_DELETE"
    SOFT_DELETE = "SOFT_DELETE"


class RetentionPolicy(Base):
    """One row per (tenant, artifact_type); writes are upserts, never a second enabled row."""
    __tablename__ = "retention_policies"
    __table_args__ = (
        UniqueConstraint("tenant_id", "artifact_type", name="uq_retention_policies_tenant_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    artifact_type = Column(Enum(RetentionArtifactType), nullable=False)
    retention_days = Column(Integer, nullable=False)
    delete_mode = Column(Enum(DeleteMode), nullable=False, default=DeleteMode.SOFT_DELETE)
    legal_hold_respects = Column(Boolean, nullable=False, default=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(PreciseDateTime, default=utcnow)
    updated_at = Column(PreciseDateTime, default=utcnow, onupdate=utcnow)


class LegalHold(Base):
    __tablename__ = "legal_holds"
    __table_args__ = (
        Index("ix_legal_holds_tenant_case", "tenant_id", "case_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    case_id = Column(String(128), nullable=False)
    reason = Column(Text, nullable=False)
    enabled_at = Column(PreciseDateTime, nullable=False)
    enabled_by = Column(String(128), nullable=False)
    disabled_at = Column(PreciseDateTime, nullable=True)            # NULL while the hold is active
    disabled_by = Column(String(128), nullable=True)


class RetainedArtifact(Base):
    """
    Registry of retention-governed artifacts across the platform.
    HARD_DELETE removes the row, SOFT_DELETE stamps deleted_at; either way
    the artifact leaves future retention scans.
    """
    __tablename__ = "retained_artifacts"
    __table_args__ = (
        UniqueConstraint("tenant_id", "artifact_type", "artifact_id", name="uq_retained_artifacts_ref"),
        Index("ix_retained_artifacts_scan", "tenant_id", "artifact_type", "deleted_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    artifact_type = Column(Enum(RetentionArtifactType), nullable=False)
    artifact_id = Column(String(128), nullable=False)
    case_id = Column(String(128), nullable=True)
    storage_key = Column(String(512), nullable=True)
    created_at = Column(PreciseDateTime, nullable=False)
    deleted_at = Column(PreciseDateTime, nullable=True)
    deletion_method = Column(String(16), nullable=True)      # SOFT once soft-deleted
