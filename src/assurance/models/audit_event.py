import enum
from sqlalchemy import Column, Integer, String, JSON, Enum, UniqueConstraint, Index
from assurance.database import Base, PreciseDateTime


class ActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"
    PUBLIC = "PUBLIC"


class AuditEvent(Base):
    """
    INSERT-only, hash-chained per tenant. DB-level triggers installed in
    database.py reject UPDATE and DELETE at the engine level.

    (tenant_id, sequence) is unique: two writers that read the same chain
    head cannot both extend it.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sequence", name="uq_audit_events_tenant_sequence"),
        Index("ix_audit_events_tenant_timestamp", "tenant_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    sequence = Column(Integer, nullable=False)               # 1-based position in the tenant chain
    entity_type = Column(String(64), nullable=False)         # DeletionJob | SodPolicy | IDV_ARTIFACT ...
    entity_id = Column(String(128), nullable=True)
    action = Column(String(64), nullable=False)              # ACCESS, APPROVE, DELETION_JOB_COMPLETE ...
    actor_user_id = Column(String(128), nullable=True)
    actor_type = Column(Enum(ActorType), nullable=False, default=ActorType.USER)
    timestamp = Column(PreciseDateTime, nullable=False)
    diff_json = Column(JSON, nullable=True)                  # structured change description
    metadata_json = Column(JSON, nullable=True)              # structured side-data
    prev_hash = Column(String(64), nullable=True)
    hash = Column(String(64), nullable=False)
    signature_version = Column(String(8), nullable=False, default="v1")
