"""
Scheduler Service
Records the monthly linear forecast for every family using APScheduler
"""
import logging
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from household_analytics.core.config import settings
from household_analytics.utils.forecast import ExpensePredictor

logger = logging.getLogger(__name__)

FORECAST_JOB_ID = "monthly_expense_forecast"

# Scheduler instance (exported for the status endpoint)
scheduler: Optional[BackgroundScheduler] = None


def monthly_forecast_job(store: Any = None) -> Dict[str, Any]:
    """Append next month's linear prediction for each family with expenses."""
    if store is None:
        from household_analytics.db import dynamo as store

    family_ids = store.list_family_ids()
    logger.info(f"Executing monthly forecast job for {len(family_ids)} families...")

    recorded, failed = [], []
    for family_id in family_ids:
        try:
            prediction = ExpensePredictor(family_id, store).predict_next_month_linear()
            recorded.append(family_id)
            logger.info(
                f"Recorded forecast for family {family_id}: {prediction.predicted_amount} "
                f"for {prediction.predicted_year}-{prediction.predicted_month:02d}"
            )
        except Exception as e:
            # One family failing must not stop the rest of the run
            failed.append(family_id)
            logger.error(f"Monthly forecast failed for family {family_id}: {str(e)}")

    return {"success": not failed, "recorded": recorded, "failed": failed}


def start_scheduler(store: Any = None) -> None:
    """Start the background scheduler with the monthly forecast job"""
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler is already running")
        return

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        monthly_forecast_job,
        kwargs={"store": store},
        trigger=CronTrigger(
            day=settings.FORECAST_CRON_DAY,
            hour=settings.FORECAST_CRON_HOUR,
            minute=settings.FORECAST_CRON_MINUTE,
        ),
        id=FORECAST_JOB_ID,
        name="Monthly Expense Forecast",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started: day={settings.FORECAST_CRON_DAY}, hour={settings.FORECAST_CRON_HOUR}, "
        f"minute={settings.FORECAST_CRON_MINUTE}"
    )


def stop_scheduler() -> None:
    """Stop the background scheduler"""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Scheduler stopped")


def get_scheduler_status() -> Dict[str, Any]:
    """Get current scheduler status"""
    if scheduler is None:
        return {"running": False, "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": str(job.next_run_time) if job.next_run_time else None
        })

    return {
        "running": scheduler.running,
        "jobs": jobs
    }
