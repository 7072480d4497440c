"""Pipeline model and the in-memory pipeline runner.

A pipeline is an ordered tuple of steps applied one after another to a batch of
records. The runner is stateless: every call works on its own copy of the data
and hands back a fresh batch plus a per-step trace.
"""

from dataclasses import asdict, dataclass
import logging
import time

from recordflow.errors import ConfigError, PipelineError
from recordflow.records import Batch
from recordflow.step_configs import CONFIG_TYPES, StepConfig, parse_config
from recordflow.step_logic import execute_step


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    kind: str
    name: str
    config: StepConfig

    def __post_init__(self) -> None:
        expected = CONFIG_TYPES.get(self.kind)
        if expected is None:
            raise ConfigError(f"unknown step kind '{self.kind}'")
        if not isinstance(self.config, expected):
            raise ConfigError(
                f"{self.kind} step needs {expected.__name__}, got {type(self.config).__name__}"
            )

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "Step":
        kind = raw.get("kind", raw.get("type"))
        name = raw.get("name") or str(kind)
        return cls(kind=kind, name=name, config=parse_config(kind, raw.get("config")))

    def to_dict(self) -> dict[str, object]:
        config = asdict(self.config)
        if self.kind == "dedupe" and config["fields"] is None:
            config.pop("fields")
        return {"kind": self.kind, "name": self.name, "config": config}


@dataclass(frozen=True)
class Pipeline:
    id: str
    name: str
    steps: tuple[Step, ...] = ()
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "steps", tuple(self.steps))

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "Pipeline":
        raw_steps = raw.get("steps") or []
        if not isinstance(raw_steps, list):
            raise ConfigError("'steps' must be a list")

        steps: list[Step] = []
        for index, raw_step in enumerate(raw_steps):
            name = raw_step.get("name") if isinstance(raw_step, dict) else None
            try:
                if not isinstance(raw_step, dict):
                    raise ConfigError("step must be a mapping")
                steps.append(Step.from_dict(raw_step))
            except ConfigError as exc:
                raise ConfigError(exc.message, step_index=index, step_name=name) from exc

        return cls(
            id=str(raw.get("id") or raw.get("name") or ""),
            name=str(raw.get("name") or raw.get("id") or ""),
            steps=tuple(steps),
            description=raw.get("description"),
        )

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "id": self.id,
            "name": self.name,
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.description:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True)
class StepTrace:
    index: int
    name: str
    kind: str
    record_count: int
    duration_ms: float


@dataclass(frozen=True)
class PipelineOutput:
    records: Batch
    trace: list[StepTrace]


def run_pipeline(pipeline: Pipeline, records: Batch) -> PipelineOutput:
    data = list(records)
    trace: list[StepTrace] = []

    logger.info("executing pipeline", extra={"pipeline_id": pipeline.id, "input_records": len(data)})
    for index, step in enumerate(pipeline.steps):
        started = time.perf_counter()
        try:
            data = execute_step(data, step.config)
        except Exception as exc:
            logger.error(
                "pipeline step failed",
                extra={"pipeline_id": pipeline.id, "step_index": index, "step_name": step.name},
            )
            raise PipelineError(step_index=index, step_name=step.name, trace=trace, cause=exc) from exc

        trace.append(
            StepTrace(
                index=index,
                name=step.name,
                kind=step.kind,
                record_count=len(data),
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        )
        logger.info(
            "pipeline step completed",
            extra={"pipeline_id": pipeline.id, "step_name": step.name, "record_count": len(data)},
        )

    return PipelineOutput(records=data, trace=trace)
