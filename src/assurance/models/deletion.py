import enum
import uuid
from sqlalchemy import (
    Column, Integer, String, Boolean, Enum, JSON, Text,
    ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from assurance.database import Base, PreciseDateTime


class DeletionJobStatus(str, enum.Enum):
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TriggerType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class DeletionMethod(str, enum.Enum):
    HARD = "HARD"
    SOFT = "SOFT"


def _new_id() -> str:
    return str(uuid.uuid4())


class DeletionJob(Base):
    __tablename__ = "deletion_jobs"
    __table_args__ = (
        Index("ix_deletion_jobs_tenant_started", "tenant_id", "started_at"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(64), nullable=False)
    status = Column(Enum(DeletionJobStatus), nullable=False, default=DeletionJobStatus.RUNNING)
    triggered_by = Column(Enum(TriggerType), nullable=False)
    triggered_user_id = Column(String(128), nullable=True)
    started_at = Column(PreciseDateTime, nullable=False)
    finished_at = Column(PreciseDateTime, nullable=True)
    summary_json = Column(JSON, nullable=True)               # {totalEvaluated, totalDeleted, totalBlocked, errors[]}

    events = relationship(
        "DeletionEvent",
        back_populates="job",
        order_by="DeletionEvent.id",
    )


class DeletionEvent(Base):
    """
    One row per processed artifact, immutable once written.
    A given artifact gets at most one blocked and one completed deletion row.
    """
    __tablename__ = "deletion_events"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "artifact_type", "artifact_id", "legal_hold_blocked",
            name="uq_deletion_events_artifact_outcome",
        ),
        Index("ix_deletion_events_job", "job_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    job_id = Column(String(36), ForeignKey("deletion_jobs.id"), nullable=False)
    artifact_type = Column(String(64), nullable=False)
    artifact_id = Column(String(128), nullable=False)
    case_id = Column(String(128), nullable=True)
    storage_key = Column(String(512), nullable=True)
    deleted_at = Column(PreciseDateTime, nullable=False)
    deletion_method = Column(Enum(DeletionMethod), nullable=False)
    proof_hash = Column(String(64), nullable=False)
    legal_hold_blocked = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=False)

    job = relationship("DeletionJob", back_populates="events")


class JobLease(Base):
    """Single-flight guard: a row exists while a job of this name runs for the tenant."""
    __tablename__ = "job_leases"

    tenant_id = Column(String(64), primary_key=True)
    job_name = Column(String(64), primary_key=True)
    holder_id = Column(String(36), nullable=False)
    acquired_at = Column(PreciseDateTime, nullable=False)
