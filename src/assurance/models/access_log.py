import enum
from sqlalchemy import Column, Integer, String, Enum, Text, Index
from assurance.database import Base, PreciseDateTime


class AccessType(str, enum.Enum):
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    EXPORT = "EXPORT"


class AccessResourceType(str, enum.Enum):
    IDV_ARTIFACT = "IDV_ARTIFACT"
    DOCUMENT = "DOCUMENT"
    RESPONSE_DOC = "RESPONSE_DOC"
    DELIVERY_PACKAGE = "DELIVERY_PACKAGE"
    VENDOR_ARTIFACT = "VENDOR_ARTIFACT"
    EXPORT_ARTIFACT = "EXPORT_ARTIFACT"
    EVIDENCE = "EVIDENCE"


class AccessOutcome(str, enum.Enum):
    ALLOWED = "ALLOWED"
    DENIED = "DENIED"


class AccessLogEntry(Base):
    """Append-only. Raw IP / user-agent never reach this table, only salted digests."""
    __tablename__ = "access_logs"
    __table_args__ = (
        Index("ix_access_logs_tenant_timestamp", "tenant_id", "timestamp"),
        Index("ix_access_logs_tenant_case", "tenant_id", "case_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    user_id = Column(String(128), nullable=True)
    access_type = Column(Enum(AccessType), nullable=False)
    resource_type = Column(Enum(AccessResourceType), nullable=False)
    resource_id = Column(String(128), nullable=False)
    case_id = Column(String(128), nullable=True)
    ip_hash = Column(String(64), nullable=True)
    user_agent_hash = Column(String(64), nullable=True)
    outcome = Column(Enum(AccessOutcome), nullable=False)
    reason = Column(Text, nullable=True)
    timestamp = Column(PreciseDateTime, nullable=False)
