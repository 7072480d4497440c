from datetime import date
import json
from pathlib import Path

from sqlalchemy import select

from recordflow.db_models import PipelineRun
from recordflow.engine import Pipeline
from recordflow.pipeline_store import delete_pipeline, list_pipelines, load_pipeline, save_pipeline
from recordflow.run_store import list_step_runs
from recordflow.templates import get_template


def write_input_file(root: Path, run_date: date) -> None:
    input_file = root / "data" / "input" / f"records-{run_date.isoformat()}.jsonl"
    rows = [
        {"id": 1, "category": "tools", "value": 12},
        {"id": 2, "category": "tools", "value": 8},
        {"id": 3, "category": "garden", "value": 30},
        {"id": 4, "category": "garden", "value": "n/a"},
    ]

    with input_file.open("w", encoding="utf-8") as outfile:
        for row in rows:
            outfile.write(json.dumps(row))
            outfile.write("\n")


def store_template(session_factory, name: str = "aggregation", pipeline_id: str | None = None) -> str:
    with session_factory() as db:
        return save_pipeline(db, get_template(name, pipeline_id=pipeline_id))


def test_pipeline_store_save_load_list_delete(session_factory) -> None:
    with session_factory() as db:
        save_pipeline(db, get_template("data_quality", pipeline_id="dq"))
        save_pipeline(db, get_template("aggregation"))
        renamed = Pipeline.from_dict({**get_template("data_quality", pipeline_id="dq").to_dict(), "name": "Renamed"})
        save_pipeline(db, renamed)

        assert load_pipeline(db, "dq") == renamed
        assert [pipeline.id for pipeline in list_pipelines(db)] == ["aggregation", "dq"]
        assert delete_pipeline(db, "dq") is True
        assert delete_pipeline(db, "dq") is False
        assert load_pipeline(db, "dq") is None


def test_full_run_lifecycle_and_idempotency(runner, session_factory, temp_workspace: Path) -> None:
    run_date = date(2026, 2, 22)
    run_key = "daily-2026-02-22"
    write_input_file(temp_workspace, run_date)
    pipeline_id = store_template(session_factory)

    first = runner.run(pipeline_id=pipeline_id, run_date=run_date, run_key=run_key)
    second = runner.run(pipeline_id=pipeline_id, run_date=run_date, run_key=run_key)

    assert first.status == "succeeded"
    assert first.input_records == 4
    assert first.output_records == 2
    assert first.quality_score is not None
    assert first.reused_existing_run is False
    assert second.reused_existing_run is True
    assert second.run_id == first.run_id

    published_path = temp_workspace / "outputs" / "published" / f"{run_key}.jsonl"
    report_path = temp_workspace / "outputs" / "reports" / f"{run_key}.json"
    published = [json.loads(line) for line in published_path.read_text(encoding="utf-8").splitlines()]
    report = json.loads(report_path.read_text(encoding="utf-8"))

    assert [row["category"] for row in published] == ["garden", "tools"]
    assert published[0]["total"] == 30
    assert report["pipeline_id"] == pipeline_id
    assert [entry["record_count"] for entry in report["trace"]] == [2, 2]
    assert first.report_path == str(report_path)

    with runner.session_factory() as db:
        run = db.execute(select(PipelineRun).where(PipelineRun.run_key == run_key)).scalar_one()
        steps = list_step_runs(db, run.id)
        assert run.status == "succeeded"
        assert [(step.step_name, step.record_count) for step in steps] == [
            ("Group by Category", 2),
            ("Sort by Total", 2),
        ]


def test_failed_run_can_be_retried_with_same_run_key(runner, session_factory, temp_workspace: Path) -> None:
    run_date = date(2026, 2, 24)
    run_key = "daily-2026-02-24"
    pipeline_id = store_template(session_factory)

    first = runner.run(pipeline_id=pipeline_id, run_date=run_date, run_key=run_key)
    assert first.status == "failed"

    write_input_file(temp_workspace, run_date)
    second = runner.run(pipeline_id=pipeline_id, run_date=run_date, run_key=run_key)
    assert second.status == "succeeded"
    assert second.reused_existing_run is False
    assert second.run_id == first.run_id


def test_unknown_pipeline_fails_the_run(runner, temp_workspace: Path) -> None:
    run_date = date(2026, 2, 25)
    write_input_file(temp_workspace, run_date)

    result = runner.run(pipeline_id="missing", run_date=run_date, run_key="missing-2026-02-25")

    assert result.status == "failed"
    assert result.report_path is None
    with runner.session_factory() as db:
        run = db.execute(select(PipelineRun).where(PipelineRun.run_key == "missing-2026-02-25")).scalar_one()
        assert "pipeline not found" in run.error


def test_step_failure_records_failing_step(runner, temp_workspace: Path, monkeypatch) -> None:
    run_date = date(2026, 2, 26)
    write_input_file(temp_workspace, run_date)
    pipeline = Pipeline.from_dict(
        {
            "id": "breaks",
            "name": "Breaks",
            "steps": [
                {"kind": "filter", "name": "keep values", "config": {"field": "value", "operator": "not_null"}},
                {"kind": "sort", "name": "sort", "config": {"field": "value"}},
            ],
        }
    )
    object.__setattr__(pipeline.steps[1], "config", {"field": "value"})

    monkeypatch.setattr("recordflow.pipeline.load_pipeline", lambda db, pipeline_id: pipeline)

    result = runner.run(pipeline_id="breaks", run_date=run_date, run_key="breaks-2026-02-26")

    assert result.status == "failed"
    assert result.failed_step == "sort"
    with runner.session_factory() as db:
        run = db.execute(select(PipelineRun).where(PipelineRun.run_key == "breaks-2026-02-26")).scalar_one()
        steps = list_step_runs(db, run.id)
        assert run.failed_step_index == 1
        assert [(step.step_name, step.status) for step in steps] == [("keep values", "succeeded"), ("sort", "failed")]
