from datetime import UTC, datetime
import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from sqlalchemy.orm import Session, sessionmaker

from recordflow.config import Settings
from recordflow.pipeline import PipelineRunner


logger = logging.getLogger(__name__)


def run_scheduled_pipeline(settings: Settings, session_factory: sessionmaker[Session], pipeline_id: str) -> None:
    run_date = datetime.now(UTC).date()
    run_key = f"scheduled-{pipeline_id}-{run_date.isoformat()}"

    runner = PipelineRunner(settings, session_factory)
    result = runner.run(pipeline_id=pipeline_id, run_date=run_date, run_key=run_key, trigger_source="scheduled")
    context = {
        "pipeline_id": pipeline_id,
        "run_key": result.run_key,
        "status": result.status,
        "reused_existing_run": result.reused_existing_run,
    }
    if result.status == "failed":
        logger.error("scheduled pipeline run failed", extra={**context, "failed_step": result.failed_step})
        return
    logger.info("scheduled pipeline run completed", extra={**context, "output_records": result.output_records})


def build_scheduler(settings: Settings, session_factory: sessionmaker[Session], pipeline_id: str) -> BlockingScheduler:
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        run_scheduled_pipeline,
        "cron",
        args=[settings, session_factory, pipeline_id],
        hour=settings.schedule_hour_utc,
        minute=settings.schedule_minute_utc,
        id=f"daily-{pipeline_id}",
        replace_existing=True,
    )
    return scheduler


def start_scheduler(
    settings: Settings,
    session_factory: sessionmaker[Session],
    pipeline_id: str,
    *,
    run_now: bool = False,
) -> None:
    scheduler = build_scheduler(settings, session_factory, pipeline_id)
    logger.info(
        "scheduler started",
        extra={
            "pipeline_id": pipeline_id,
            "schedule_hour_utc": settings.schedule_hour_utc,
            "schedule_minute_utc": settings.schedule_minute_utc,
        },
    )

    if run_now:
        run_scheduled_pipeline(settings, session_factory, pipeline_id)

    scheduler.start()
