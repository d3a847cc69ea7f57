import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session
from assurance.database import engine, SessionLocal, Base, install_audit_log_immutability
from assurance.models import audit_event, access_log, retention, deletion, sod  # noqa: F401 — ensure tables created
from assurance.config import settings
from assurance.dao.log_dao import tenants_with_audit_events
from assurance.dao.retention_dao import tenants_with_enabled_policies
from assurance.errors import AssuranceError, JobAlreadyRunningError, assurance_error_handler
from assurance.models.deletion import TriggerType
from assurance.routes.audit_routes import router as audit_router
from assurance.routes.access_routes import router as access_router
from assurance.routes.retention_routes import router as retention_router
from assurance.routes.deletion_routes import router as deletion_router
from assurance.routes.sod_routes import router as sod_router
from assurance.services.audit_service import verify_chain
from assurance.services.deletion_job import run_retention_deletion_job
import uvicorn

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _scheduled_retention_job():
    """Nightly retention pass for every tenant with an enabled policy."""
    db: Session = SessionLocal()
    try:
        tenants = tenants_with_enabled_policies(db)
        logger.info("[Scheduler] Retention run for %d tenants", len(tenants))
        for tenant_id in tenants:
            try:
                job = run_retention_deletion_job(db, tenant_id, triggered_by=TriggerType.SYSTEM)
                logger.info("[Scheduler] Retention job %s for tenant %s: %s", job.id, tenant_id, job.status.value)
            except JobAlreadyRunningError:
                logger.warning("[Scheduler] Retention already running for tenant %s — skipped", tenant_id)
            except Exception as e:
                db.rollback()
                logger.error("[Scheduler] Retention failed for tenant %s: %s", tenant_id, e)
    except Exception as e:
        logger.error("[Scheduler] Retention run aborted: %s", e)
    finally:
        db.close()


def _scheduled_chain_verification():
    """Nightly chain verification; a broken chain is reported, never raised."""
    db: Session = SessionLocal()
    try:
        for tenant_id in tenants_with_audit_events(db):
            try:
                result = verify_chain(db, tenant_id)
                if result.valid:
                    logger.info("[Scheduler] Audit chain intact for tenant %s (%d entries)",
                                tenant_id, result.total_entries)
            except Exception as e:
                db.rollback()
                logger.error("[Scheduler] Chain verification failed for tenant %s: %s", tenant_id, e)
    except Exception as e:
        logger.error("[Scheduler] Chain verification run aborted: %s", e)
    finally:
        db.close()


def _add_cron_job(func, cron: str, job_id: str, name: str):
    parts = cron.split()
    if len(parts) != 5:
        logger.error("[Scheduler] Invalid cron '%s' for %s — job not registered", cron, job_id)
        return
    minute, hour, day, month, day_of_week = parts
    scheduler.add_job(
        func,
        trigger="cron",
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=day_of_week,
        id=job_id,
        name=name,
        replace_existing=True,
    )
    logger.info("[Scheduler] Registered %s (%s)", job_id, cron)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created/verified")
    if settings.enforce_audit_immutability:
        install_audit_log_immutability(engine)
    _add_cron_job(_scheduled_retention_job, settings.retention_job_cron,
                  "retention_deletion", "Nightly retention deletion")
    _add_cron_job(_scheduled_chain_verification, settings.chain_verify_cron,
                  "audit_chain_verification", "Nightly audit chain verification")
    scheduler.start()
    logger.info("APScheduler started — %d jobs registered", len(scheduler.get_jobs()))
    yield
    # Shutdown
    scheduler.shutdown(wait=False)
    logger.info("APScheduler stopped")


app = FastAPI(
    title="Assurance Layer",
    description="Tamper-evident audit chain, access logging, retention and separation of duties",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_exception_handler(AssuranceError, assurance_error_handler)

app.include_router(audit_router)
app.include_router(access_router)
app.include_router(retention_router)
app.include_router(deletion_router)
app.include_router(sod_router)


@app.get("/health")
def health():
    return {"status": "ok", "scheduler_jobs": len(scheduler.get_jobs())}


def start():
    """Entry point for the `start` script"""
    uvicorn.run("assurance.main:app", host=settings.app_host, port=settings.app_port, reload=settings.debug)
