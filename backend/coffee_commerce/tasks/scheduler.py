"""
Scheduler for automatic Stripe id reconciliation.

Runs daily at the configured hour when RECONCILE_SCHEDULE_ENABLED is set.
"""
import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from coffee_commerce.config import get_settings
from coffee_commerce.database import SessionLocal
from coffee_commerce.schemas.admin import SyncReport
from coffee_commerce.services.provider import ProviderClient
from coffee_commerce.services.reconciler import Reconciler

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = BackgroundScheduler()

# Store last reconciliation results
last_reconciliation: dict = {
    "timestamp": None,
    "summary": None,
}


def record_reconciliation(report: SyncReport, started_at: datetime, trigger: str):
    global last_reconciliation
    last_reconciliation = {
        "timestamp": started_at.isoformat(),
        "duration_seconds": (datetime.now() - started_at).total_seconds(),
        "trigger": trigger,
        "total": report.total,
        "summary": report.summary.model_dump(),
    }


def get_last_reconciliation() -> Optional[dict]:
    return last_reconciliation if last_reconciliation["timestamp"] else None


def run_reconciliation(provider: ProviderClient):
    """Job function to reconcile Stripe ids for every product."""
    global last_reconciliation

    logger.info("Starting scheduled Stripe id reconciliation...")
    start_time = datetime.now()
    db = SessionLocal()
    try:
        report = Reconciler(db, provider, page_size=get_settings().reconcile_page_size).sync_provider_ids()
        record_reconciliation(report, start_time, trigger="scheduled")
        logger.info(f"Scheduled reconciliation completed: {report.summary.model_dump()}")
    except Exception as e:
        logger.error(f"Error in scheduled reconciliation: {e}")
        last_reconciliation = {
            "timestamp": start_time.isoformat(),
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
            "trigger": "scheduled",
            "summary": None,
            "error": str(e),
        }
    finally:
        db.close()


def start_scheduler(provider: ProviderClient):
    """Start the scheduler with the reconciliation job."""
    settings = get_settings()
    if not settings.reconcile_schedule_enabled:
        logger.info("Scheduled reconciliation disabled")
        return
    if scheduler.running:
        return

    scheduler.add_job(
        run_reconciliation,
        CronTrigger(hour=settings.reconcile_cron_hour, minute=0),
        args=[provider],
        id="reconcile_stripe_ids",
        name="Daily Stripe id reconciliation",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started - reconciliation daily at {settings.reconcile_cron_hour:02d}:00")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


def get_scheduler_status() -> dict:
    jobs = []
    if scheduler.running:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            })
    return {
        "running": scheduler.running,
        "jobs": jobs,
        "last_reconciliation": get_last_reconciliation(),
    }
