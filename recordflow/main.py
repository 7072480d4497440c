import argparse
from datetime import date
import json
import logging
from pathlib import Path

from recordflow.batch_io import read_json, read_jsonl, write_json, write_jsonl
from recordflow.cleaning import clean_batch, normalize_field, standardize_field
from recordflow.config import get_settings
from recordflow.database import build_session_factory
from recordflow.engine import Pipeline
from recordflow.errors import ConfigError, RecordflowError
from recordflow.pipeline import PipelineRunner
from recordflow.pipeline_store import delete_pipeline, list_pipelines, load_pipeline, save_pipeline
from recordflow.quality import analyze_quality
from recordflow.scheduler import start_scheduler
from recordflow.schemas import FILL_STRATEGIES, CleanOptions, ValidationRule
from recordflow.templates import get_template, list_templates


logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run record pipelines and data quality checks")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="run a stored pipeline once")
    run_parser.add_argument("--pipeline-id", required=True, help="Id of a stored pipeline")
    run_parser.add_argument("--run-date", required=True, help="Run date in YYYY-MM-DD format")
    run_parser.add_argument("--run-key", required=False, help="Idempotency key for this run")
    run_parser.add_argument(
        "--trigger-source",
        default="manual",
        choices=["manual", "scheduled"],
        help="Metadata label for how this run was triggered",
    )

    schedule_parser = subparsers.add_parser("schedule", help="run a stored pipeline daily")
    schedule_parser.add_argument("--pipeline-id", required=True)
    schedule_parser.add_argument("--run-now", action="store_true", help="also run once immediately")

    pipelines_parser = subparsers.add_parser("pipelines", help="manage stored pipelines")
    pipeline_commands = pipelines_parser.add_subparsers(dest="pipeline_command", required=True)
    save_parser = pipeline_commands.add_parser("save", help="store a pipeline definition")
    source = save_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--file", type=Path, help="JSON pipeline definition")
    source.add_argument("--template", choices=list_templates(), help="built-in template")
    save_parser.add_argument("--id", dest="pipeline_id", help="override the pipeline id")
    pipeline_commands.add_parser("list", help="list stored pipelines")
    show_parser = pipeline_commands.add_parser("show", help="print a stored pipeline")
    show_parser.add_argument("pipeline_id")
    delete_parser = pipeline_commands.add_parser("delete", help="delete a stored pipeline")
    delete_parser.add_argument("pipeline_id")
    pipeline_commands.add_parser("templates", help="list built-in templates")

    analyze_parser = subparsers.add_parser("analyze", help="print a quality report for a JSONL batch")
    analyze_parser.add_argument("input", type=Path)
    analyze_parser.add_argument("--rules", type=Path, help="JSON list of validation rules")
    analyze_parser.add_argument("--output", type=Path, help="also write the report to this file")

    clean_parser = subparsers.add_parser("clean", help="clean a JSONL batch")
    clean_parser.add_argument("input", type=Path)
    clean_parser.add_argument("output", type=Path)
    clean_parser.add_argument("--remove-duplicates", action="store_true")
    clean_parser.add_argument("--remove-outliers", action="store_true")
    clean_parser.add_argument("--fill-missing", choices=FILL_STRATEGIES)
    clean_parser.add_argument("--fill-value", type=json.loads, help="JSON literal used with --fill-missing value")

    normalize_parser = subparsers.add_parser("normalize", help="rescale one numeric field of a JSONL batch")
    normalize_parser.add_argument("input", type=Path)
    normalize_parser.add_argument("output", type=Path)
    normalize_parser.add_argument("--field", required=True)
    normalize_parser.add_argument("--method", choices=["minmax", "zscore"], default="minmax")

    return parser.parse_args(argv)


def _run(args: argparse.Namespace, settings, session_factory) -> int:
    run_date = date.fromisoformat(args.run_date)
    run_key = args.run_key or f"{args.pipeline_id}-{run_date.isoformat()}"

    runner = PipelineRunner(settings, session_factory)
    result = runner.run(
        pipeline_id=args.pipeline_id,
        run_date=run_date,
        run_key=run_key,
        trigger_source=args.trigger_source,
    )

    print(
        "run_id={run_id} run_key={run_key} pipeline={pipeline} trigger={trigger} status={status} input={input} output={output} score={score} failed_step={failed} reused={reused} report={report}".format(
            run_id=result.run_id,
            run_key=result.run_key,
            pipeline=result.pipeline_id,
            trigger=result.trigger_source,
            status=result.status,
            input=result.input_records,
            output=result.output_records,
            score=result.quality_score,
            failed=result.failed_step,
            reused=result.reused_existing_run,
            report=result.report_path,
        )
    )
    return 1 if result.status == "failed" else 0


def _pipelines(args: argparse.Namespace, session_factory) -> int:
    with session_factory() as db:
        if args.pipeline_command == "templates":
            for name in list_templates():
                print(name)
            return 0

        if args.pipeline_command == "save":
            if args.template:
                pipeline = get_template(args.template, pipeline_id=args.pipeline_id)
            else:
                raw = read_json(args.file)
                if not isinstance(raw, dict):
                    raise ConfigError(f"pipeline definition in {args.file} must be a JSON object")
                if args.pipeline_id:
                    raw["id"] = args.pipeline_id
                pipeline = Pipeline.from_dict(raw)
            print(f"saved pipeline={save_pipeline(db, pipeline)} steps={len(pipeline.steps)}")
            return 0

        if args.pipeline_command == "list":
            for pipeline in list_pipelines(db):
                print(f"{pipeline.id}\t{pipeline.name}\tsteps={len(pipeline.steps)}")
            return 0

        if args.pipeline_command == "show":
            pipeline = load_pipeline(db, args.pipeline_id)
            if pipeline is None:
                print(f"pipeline not found: {args.pipeline_id}")
                return 1
            print(json.dumps(pipeline.to_dict(), indent=2, default=str))
            return 0

        if delete_pipeline(db, args.pipeline_id):
            print(f"deleted pipeline={args.pipeline_id}")
            return 0
        print(f"pipeline not found: {args.pipeline_id}")
        return 1


def _analyze(args: argparse.Namespace) -> int:
    rules = None
    if args.rules:
        rules = [ValidationRule.from_dict(raw) for raw in read_json(args.rules)]
    report = analyze_quality(read_jsonl(args.input), rules)
    payload = report.to_dict()
    if args.output:
        write_json(args.output, payload)
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))
    return 0


def _clean(args: argparse.Namespace) -> int:
    options = CleanOptions(
        remove_duplicates=args.remove_duplicates,
        remove_outliers=args.remove_outliers,
        fill_missing=args.fill_missing,
        fill_value=args.fill_value,
    )
    records = read_jsonl(args.input)
    cleaned = clean_batch(records, options)
    write_jsonl(args.output, cleaned)
    print(f"input={len(records)} output={len(cleaned)} path={args.output}")
    return 0


def _normalize(args: argparse.Namespace) -> int:
    records = read_jsonl(args.input)
    scale = normalize_field if args.method == "minmax" else standardize_field
    write_jsonl(args.output, scale(records, args.field))
    print(f"field={args.field} method={args.method} records={len(records)} path={args.output}")
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        if args.command == "analyze":
            raise SystemExit(_analyze(args))
        if args.command == "clean":
            raise SystemExit(_clean(args))
        if args.command == "normalize":
            raise SystemExit(_normalize(args))

        session_factory = build_session_factory(settings.database_url)
        if args.command == "schedule":
            start_scheduler(settings, session_factory, args.pipeline_id, run_now=args.run_now)
            return
        if args.command == "pipelines":
            raise SystemExit(_pipelines(args, session_factory))
        raise SystemExit(_run(args, settings, session_factory))
    except (RecordflowError, FileNotFoundError, json.JSONDecodeError) as exc:
        logger.error("command failed", extra={"command": args.command})
        print(f"error: {exc}")
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
