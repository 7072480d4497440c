from datetime import date
import logging
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from recordflow.batch_io import read_jsonl, write_json, write_jsonl
from recordflow.config import Settings
from recordflow.db_models import PipelineRun
from recordflow.engine import Pipeline, PipelineOutput, run_pipeline
from recordflow.errors import PipelineError, PipelineNotFoundError
from recordflow.pipeline_store import load_pipeline
from recordflow.quality import analyze_quality
from recordflow.run_store import (
    create_or_get_run,
    mark_run_failed,
    mark_run_running,
    mark_run_succeeded,
    reset_failed_run_state,
    store_step_failure,
    store_step_trace,
)
from recordflow.schemas import PipelineResult, QualityReport


logger = logging.getLogger(__name__)


class PipelineRunner:
    """Runs stored pipelines against dated input files and records every run."""

    def __init__(self, settings: Settings, session_factory: sessionmaker[Session]) -> None:
        self.settings = settings
        self.session_factory = session_factory

    def run(
        self,
        *,
        pipeline_id: str,
        run_date: date,
        run_key: str,
        trigger_source: str = "manual",
    ) -> PipelineResult:
        with self.session_factory() as db:
            run, created = create_or_get_run(
                db,
                run_key=run_key,
                pipeline_id=pipeline_id,
                run_date=run_date,
                trigger_source=trigger_source,
            )
            if not created:
                if run.status == "failed":
                    # Keep the same run key and clear prior failed state.
                    logger.info("retrying previously failed run", extra={"run_key": run_key})
                    reset_failed_run_state(db, run)
                else:
                    logger.info("idempotent run reused", extra={"run_key": run_key, "status": run.status})
                    return self._result_from_run(run, reused_existing_run=True)

            try:
                pipeline = load_pipeline(db, pipeline_id)
                if pipeline is None:
                    raise PipelineNotFoundError(f"pipeline not found: {pipeline_id}")

                records = read_jsonl(self._input_path(run_date))
                mark_run_running(db, run, input_records=len(records))

                output = run_pipeline(pipeline, records)
                store_step_trace(db, run_id=run.id, trace=output.trace)

                report = analyze_quality(output.records) if self.settings.analyze_output else None
                self._publish_outputs(run_key=run_key, run_date=run_date, pipeline=pipeline, output=output, report=report)

                mark_run_succeeded(
                    db,
                    run,
                    output_records=len(output.records),
                    quality_score=None if report is None else report.score,
                )
            except PipelineError as exc:
                store_step_trace(db, run_id=run.id, trace=exc.trace)
                store_step_failure(
                    db,
                    run_id=run.id,
                    step_index=exc.step_index,
                    step_name=exc.step_name,
                    step_kind=pipeline.steps[exc.step_index].kind,
                    error=str(exc.cause),
                )
                mark_run_failed(
                    db,
                    run,
                    error=str(exc),
                    failed_step_index=exc.step_index,
                    failed_step_name=exc.step_name,
                )
                logger.exception("pipeline step failed", extra={"run_key": run_key, "step_name": exc.step_name})
            except Exception as exc:
                mark_run_failed(db, run, error=str(exc))
                logger.exception("pipeline run failed", extra={"run_key": run_key})

            return self._result_from_run(run, reused_existing_run=False)

    def _input_path(self, run_date: date) -> Path:
        return Path(self.settings.input_dir) / f"records-{run_date.isoformat()}.jsonl"

    def _report_path(self, run_key: str) -> Path:
        return Path(self.settings.output_dir) / "reports" / f"{run_key}.json"

    def _publish_outputs(
        self,
        *,
        run_key: str,
        run_date: date,
        pipeline: Pipeline,
        output: PipelineOutput,
        report: QualityReport | None,
    ) -> None:
        publish_path = Path(self.settings.output_dir) / "published" / f"{run_key}.jsonl"
        write_jsonl(publish_path, output.records)
        write_json(
            self._report_path(run_key),
            {
                "run_key": run_key,
                "run_date": run_date.isoformat(),
                "pipeline_id": pipeline.id,
                "output_records": len(output.records),
                "published_output": str(publish_path),
                "trace": [
                    {"index": entry.index, "name": entry.name, "kind": entry.kind, "record_count": entry.record_count}
                    for entry in output.trace
                ],
                "quality": None if report is None else report.to_dict(),
            },
        )

    def _result_from_run(self, run: PipelineRun, *, reused_existing_run: bool) -> PipelineResult:
        report_path = self._report_path(run.run_key)
        return PipelineResult(
            run_id=run.id,
            run_key=run.run_key,
            pipeline_id=run.pipeline_id,
            run_date=run.run_date,
            trigger_source=run.trigger_source,
            status=run.status,
            input_records=run.input_records,
            output_records=run.output_records,
            quality_score=run.quality_score,
            failed_step=run.failed_step_name,
            report_path=str(report_path) if report_path.exists() else None,
            reused_existing_run=reused_existing_run,
        )
