import logging

from sqlalchemy import create_engine, text, DateTime
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from assurance.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_engine(settings.database_url, **_engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    """FastAPI dependency — yields a DB session and closes it after request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


_MYSQL_TRIGGERS = [
    "DROP TRIGGER IF EXISTS prevent_audit_event_update",
    """
    CREATE TRIGGER prevent_audit_event_update
    BEFORE UPDATE ON audit_events
    FOR EACH ROW
    SIGNAL SQLSTATE '45000'
    SET MESSAGE_TEXT = 'audit_events is immutable: UPDATE not allowed'
    """,
    "DROP TRIGGER IF EXISTS prevent_audit_event_delete",
    """
    CREATE TRIGGER prevent_audit_event_delete
    BEFORE DELETE ON audit_events
    FOR EACH ROW
    SIGNAL SQLSTATE '45000'
    SET MESSAGE_TEXT = 'audit_events is immutable: DELETE not allowed'
    """,
]

_SQLITE_TRIGGERS = [
    "DROP TRIGGER IF EXISTS prevent_audit_event_update",
    """
    CREATE TRIGGER prevent_audit_event_update
    BEFORE UPDATE ON audit_events
    BEGIN
        SELECT RAISE(ABORT, 'audit_events is immutable: UPDATE not allowed');
    END
    """,
    "DROP TRIGGER IF EXISTS prevent_audit_event_delete",
    """
    CREATE TRIGGER prevent_audit_event_delete
    BEFORE DELETE ON audit_events
    BEGIN
        SELECT RAISE(ABORT, 'audit_events is immutable: DELETE not allowed');
    END
    """,
]


def install_audit_log_immutability(bind: Engine) -> bool:
    """
    Install DB-level triggers on audit_events — immutability enforced at DB level.
    Must run after the table exists. Idempotent — drops and recreates on every startup.
    Returns False when the dialect has no trigger recipe.
    """
    statements = {"mysql": _MYSQL_TRIGGERS, "sqlite": _SQLITE_TRIGGERS}.get(bind.dialect.name)
    if statements is None:
        logger.warning("No audit immutability triggers for dialect '%s'", bind.dialect.name)
        return False
    with bind.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt))
    logger.info("Audit immutability triggers installed (%s)", bind.dialect.name)
    return True


# Millisecond precision must survive MySQL, whose DATETIME drops fractions by default
PreciseDateTime = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")
