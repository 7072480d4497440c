"""Typed step configurations.

Every step kind has its own frozen config dataclass. Configs validate their
shape on construction, so a pipeline that was built successfully only fails at
run time for per-record data problems. ``from_dict`` accepts snake_case keys
and the camelCase keys used by stored pipeline definitions.
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Union

from recordflow.errors import ConfigError


FILTER_OPERATORS = ("equals", "not_equals", "contains", "greater_than", "less_than", "in", "not_null")
TRANSFORMATIONS = (
    "uppercase",
    "lowercase",
    "trim",
    "replace",
    "substring",
    "parse_number",
    "parse_date",
    "concat",
    "multiply",
    "round",
)
AGGREGATE_OPERATIONS = ("sum", "avg", "min", "max", "count", "count_distinct")
JOIN_TYPES = ("inner", "left")
SORT_DIRECTIONS = ("asc", "desc")
ENRICHMENT_TYPES = ("timestamp", "hash", "sequence")
MAX_ROUND_DECIMALS = 15

_MISSING = object()


def _pick(raw: dict[str, object], *names: str, default: object = _MISSING) -> object:
    for name in names:
        if name in raw:
            return raw[name]
    if default is _MISSING:
        raise ConfigError(f"missing required key '{names[0]}'")
    return default


def _require_str(value: object, label: str) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{label}' must be a non-empty string")
    return value


def _require_int(value: object, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{label}' must be an integer")
    return value


def _require_str_list(value: object, label: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{label}' must be a list of field names")
    return tuple(_require_str(item, label) for item in value)


@dataclass(frozen=True)
class FilterConfig:
    field: str
    operator: str
    value: object = None

    def __post_init__(self) -> None:
        _require_str(self.field, "field")
        _require_str(self.operator, "operator")
        if self.operator == "in" and not isinstance(self.value, (list, tuple)):
            raise ConfigError("operator 'in' requires a list value")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "FilterConfig":
        return cls(field=_pick(raw, "field"), operator=_pick(raw, "operator"), value=_pick(raw, "value", default=None))


@dataclass(frozen=True)
class TransformConfig:
    field: str
    transformation: str
    params: dict[str, object] = dataclass_field(default_factory=dict)
    output_field: str | None = None

    def __post_init__(self) -> None:
        _require_str(self.field, "field")
        if self.transformation not in TRANSFORMATIONS:
            raise ConfigError(f"unknown transformation '{self.transformation}'")
        if not isinstance(self.params, dict):
            raise ConfigError("'params' must be a mapping")

        params = self.params
        if self.transformation == "replace":
            _require_str(_pick(params, "from"), "from")
            if not isinstance(params.get("to", ""), str):
                raise ConfigError("'to' must be a string")
        elif self.transformation == "substring":
            _require_int(_pick(params, "start"), "start")
            if params.get("end") is not None:
                _require_int(params["end"], "end")
        elif self.transformation == "concat":
            _require_str_list(_pick(params, "fields"), "fields")
            if not isinstance(params.get("separator", ""), str):
                raise ConfigError("'separator' must be a string")
        elif self.transformation == "multiply":
            factor = _pick(params, "factor")
            if isinstance(factor, bool) or not isinstance(factor, (int, float)):
                raise ConfigError("'factor' must be a number")
        elif self.transformation == "round":
            decimals = _require_int(params.get("decimals", 0), "decimals")
            if not -MAX_ROUND_DECIMALS <= decimals <= MAX_ROUND_DECIMALS:
                raise ConfigError(f"'decimals' must be between -{MAX_ROUND_DECIMALS} and {MAX_ROUND_DECIMALS}")

    @property
    def target_field(self) -> str:
        return self.output_field or self.params.get("outputField") or self.params.get("output_field") or self.field

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "TransformConfig":
        params = _pick(raw, "params", default=None)
        return cls(
            field=_pick(raw, "field"),
            transformation=_pick(raw, "transformation"),
            params={} if params is None else params,
            output_field=_pick(raw, "output_field", "outputField", default=None),
        )


@dataclass(frozen=True)
class Aggregation:
    field: str
    operation: str
    output_field: str

    def __post_init__(self) -> None:
        _require_str(self.field, "field")
        _require_str(self.output_field, "output_field")
        if self.operation not in AGGREGATE_OPERATIONS:
            raise ConfigError(f"unknown aggregate operation '{self.operation}'")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "Aggregation":
        if not isinstance(raw, dict):
            raise ConfigError("each aggregation must be a mapping")
        return cls(
            field=_pick(raw, "field"),
            operation=_pick(raw, "operation"),
            output_field=_pick(raw, "output_field", "outputField"),
        )


@dataclass(frozen=True)
class AggregateConfig:
    group_by: tuple[str, ...]
    aggregations: tuple[Aggregation, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "group_by", _require_str_list(self.group_by, "group_by"))
        if not isinstance(self.aggregations, (list, tuple)):
            raise ConfigError("'aggregations' must be a list")
        for aggregation in self.aggregations:
            if not isinstance(aggregation, Aggregation):
                raise ConfigError("'aggregations' must contain Aggregation entries")
        object.__setattr__(self, "aggregations", tuple(self.aggregations))

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "AggregateConfig":
        aggregations = _pick(raw, "aggregations")
        if not isinstance(aggregations, (list, tuple)):
            raise ConfigError("'aggregations' must be a list")
        return cls(
            group_by=_pick(raw, "group_by", "groupBy"),
            aggregations=tuple(Aggregation.from_dict(item) for item in aggregations),
        )


@dataclass(frozen=True)
class JoinConfig:
    source_field: str
    target_field: str
    target_data: list[dict[str, object]]
    join_type: str = "left"

    def __post_init__(self) -> None:
        _require_str(self.source_field, "source_field")
        _require_str(self.target_field, "target_field")
        if not isinstance(self.target_data, (list, tuple)) or not all(isinstance(row, dict) for row in self.target_data):
            raise ConfigError("'target_data' must be a list of records")
        if self.join_type not in JOIN_TYPES:
            raise ConfigError(f"unknown join type '{self.join_type}'")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "JoinConfig":
        return cls(
            source_field=_pick(raw, "source_field", "sourceField"),
            target_field=_pick(raw, "target_field", "targetField"),
            target_data=_pick(raw, "target_data", "targetData"),
            join_type=_pick(raw, "join_type", "joinType", default="left"),
        )


@dataclass(frozen=True)
class SortConfig:
    field: str
    direction: str = "asc"

    def __post_init__(self) -> None:
        _require_str(self.field, "field")
        if self.direction not in SORT_DIRECTIONS:
            raise ConfigError(f"unknown sort direction '{self.direction}'")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "SortConfig":
        return cls(field=_pick(raw, "field"), direction=_pick(raw, "direction", default="asc"))


@dataclass(frozen=True)
class DedupeConfig:
    fields: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if self.fields is not None:
            object.__setattr__(self, "fields", _require_str_list(self.fields, "fields"))

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "DedupeConfig":
        return cls(fields=_pick(raw, "fields", default=None))


@dataclass(frozen=True)
class EnrichConfig:
    enrichment_type: str
    params: dict[str, object] = dataclass_field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.enrichment_type not in ENRICHMENT_TYPES:
            raise ConfigError(f"unsupported enrichment type '{self.enrichment_type}'")
        if not isinstance(self.params, dict):
            raise ConfigError("'params' must be a mapping")
        if self.enrichment_type == "hash":
            _require_str(_pick(self.params, "field"), "field")

    @classmethod
    def from_dict(cls, raw: dict[str, object]) -> "EnrichConfig":
        params = _pick(raw, "params", default=None)
        return cls(
            enrichment_type=_pick(raw, "enrichment_type", "enrichmentType"),
            params={} if params is None else params,
        )


StepConfig = Union[FilterConfig, TransformConfig, AggregateConfig, JoinConfig, SortConfig, DedupeConfig, EnrichConfig]

CONFIG_TYPES: dict[str, type] = {
    "filter": FilterConfig,
    "transform": TransformConfig,
    "aggregate": AggregateConfig,
    "join": JoinConfig,
    "sort": SortConfig,
    "dedupe": DedupeConfig,
    "enrich": EnrichConfig,
}


def parse_config(kind: str, raw: object) -> StepConfig:
    config_type = CONFIG_TYPES.get(kind)
    if config_type is None:
        raise ConfigError(f"unknown step kind '{kind}'")
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{kind} config must be a mapping")
    return config_type.from_dict(raw)
