from dataclasses import asdict, dataclass, field as dataclass_field
from datetime import date
import re

from recordflow.errors import ConfigError


RULE_KINDS = ("required", "type", "range", "pattern", "custom")
TYPE_NAMES = ("boolean", "number", "string", "date", "object", "array")
FILL_STRATEGIES = ("remove", "mean", "median", "mode", "value")


@dataclass(frozen=True)
class Outlier:
    field: str
    value: float
    reason: str


@dataclass(frozen=True)
class QualityReport:
    total_records: int
    valid_records: int
    invalid_records: int
    duplicates: int
    missing_fields: dict[str, int]
    data_types: dict[str, dict[str, int]]
    outliers: list[Outlier]
    suggestions: list[str]
    score: int
    rule_failures: dict[str, int] = dataclass_field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ValidationRule:
    field: str
    kind: str
    params: object = None
    message: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.field, str) or not self.field:
            raise ConfigError("validation rule needs a field name")
        if self.kind not in RULE_KINDS:
            raise ConfigError(f"unknown validation rule kind '{self.kind}'")

        if self.kind == "type" and self.params not in TYPE_NAMES:
            raise ConfigError(f"type rule for '{self.field}' needs one of {', '.join(TYPE_NAMES)}")
        if self.kind == "range":
            if not isinstance(self.params, dict) or ("min" not in self.params and "max" not in self.params):
                raise ConfigError(f"range rule for '{self.field}' needs a min and/or max")
            for bound in ("min", "max"):
                limit = self.params.get(bound)
                if limit is not None and (isinstance(limit, bool) or not isinstance(limit, (int, float))):
                    raise ConfigError(f"range rule for '{self.field}' needs a numeric {bound}")
        if self.kind == "pattern":
            if not isinstance(self.params, str):
                raise ConfigError(f"pattern rule for '{self.field}' needs a regular expression string")
            try:
                re.compile(self.params)
            except re.error as exc:
                raise ConfigError(f"pattern rule for '{self.field}' is not a valid expression: {exc}") from exc
        if self.kind == "custom" and not callable(self.params):
            raise ConfigError(f"custom rule for '{self.field}' needs a callable")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "ValidationRule":
        if not isinstance(raw, dict):
            raise ConfigError("validation rule must be a mapping")
        return cls(
            field=raw.get("field"),
            kind=raw.get("kind", raw.get("type")),
            params=raw.get("params"),
            message=raw.get("message"),
        )


@dataclass(frozen=True)
class CleanOptions:
    remove_duplicates: bool = False
    remove_outliers: bool = False
    fill_missing: str | None = None
    fill_value: object = None

    def __post_init__(self) -> None:
        if self.fill_missing is not None and self.fill_missing not in FILL_STRATEGIES:
            raise ConfigError(f"unknown fill strategy '{self.fill_missing}'")
        if self.fill_missing == "value" and self.fill_value is None:
            raise ConfigError("fill strategy 'value' needs a fill_value")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "CleanOptions":
        fill = raw.get("fill_missing", raw.get("fillMissing"))
        fill_value = raw.get("fill_value", raw.get("fillValue"))
        if fill is not None and fill not in FILL_STRATEGIES:
            # A bare literal means "fill with this value".
            fill, fill_value = "value", fill
        return cls(
            remove_duplicates=bool(raw.get("remove_duplicates", raw.get("removeDuplicates", False))),
            remove_outliers=bool(raw.get("remove_outliers", raw.get("removeOutliers", False))),
            fill_missing=fill,
            fill_value=fill_value,
        )


@dataclass(frozen=True)
class PipelineResult:
    run_id: int
    run_key: str
    pipeline_id: str
    run_date: date
    trigger_source: str
    status: str
    input_records: int
    output_records: int
    quality_score: int | None
    failed_step: str | None
    report_path: str | None
    reused_existing_run: bool


