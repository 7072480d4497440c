from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from recordflow.db_models import PipelineRun, StepRun, utc_now
from recordflow.engine import StepTrace


def get_run_by_key(db: Session, run_key: str) -> PipelineRun | None:
    stmt = select(PipelineRun).where(PipelineRun.run_key == run_key)
    return db.execute(stmt).scalar_one_or_none()


def create_or_get_run(
    db: Session,
    *,
    run_key: str,
    pipeline_id: str,
    run_date: date,
    trigger_source: str,
) -> tuple[PipelineRun, bool]:
    run = PipelineRun(
        run_key=run_key,
        pipeline_id=pipeline_id,
        run_date=run_date,
        trigger_source=trigger_source,
        status="queued",
    )
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        # Unique run_key makes run creation idempotent.
        db.rollback()
        existing = get_run_by_key(db, run_key)
        if existing:
            return existing, False
        raise

    db.refresh(run)
    return run, True


def reset_failed_run_state(db: Session, run: PipelineRun) -> None:
    db.execute(delete(StepRun).where(StepRun.run_id == run.id))

    run.status = "queued"
    run.error = None
    run.completed_at = None
    run.input_records = 0
    run.output_records = 0
    run.quality_score = None
    run.failed_step_index = None
    run.failed_step_name = None
    db.commit()


def mark_run_running(db: Session, run: PipelineRun, *, input_records: int = 0) -> None:
    run.status = "running"
    run.started_at = utc_now()
    run.input_records = input_records
    run.error = None
    db.commit()


def mark_run_succeeded(db: Session, run: PipelineRun, *, output_records: int, quality_score: int | None) -> None:
    run.status = "succeeded"
    run.output_records = output_records
    run.quality_score = quality_score
    run.completed_at = utc_now()
    run.error = None
    db.commit()


def mark_run_failed(
    db: Session,
    run: PipelineRun,
    *,
    error: str,
    failed_step_index: int | None = None,
    failed_step_name: str | None = None,
) -> None:
    run.status = "failed"
    run.error = error
    run.failed_step_index = failed_step_index
    run.failed_step_name = failed_step_name
    run.completed_at = utc_now()
    db.commit()


def store_step_trace(db: Session, *, run_id: int, trace: list[StepTrace]) -> None:
    for entry in trace:
        db.add(
            StepRun(
                run_id=run_id,
                step_index=entry.index,
                step_name=entry.name,
                step_kind=entry.kind,
                status="succeeded",
                record_count=entry.record_count,
                duration_ms=entry.duration_ms,
            )
        )
    db.commit()


def store_step_failure(db: Session, *, run_id: int, step_index: int, step_name: str, step_kind: str, error: str) -> None:
    db.add(
        StepRun(
            run_id=run_id,
            step_index=step_index,
            step_name=step_name,
            step_kind=step_kind,
            status="failed",
            error=error,
        )
    )
    db.commit()


def list_step_runs(db: Session, run_id: int) -> list[StepRun]:
    stmt = select(StepRun).where(StepRun.run_id == run_id).order_by(StepRun.step_index)
    return list(db.execute(stmt).scalars().all())
