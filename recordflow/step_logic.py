from collections.abc import Callable
from datetime import UTC, datetime
import hashlib
import logging
import math

from recordflow.errors import ConfigError
from recordflow.records import (
    Batch,
    Record,
    canonical_json,
    fingerprint,
    ordering_key,
    parse_date,
    parse_number,
    to_text,
    value_key,
)
from recordflow.step_configs import (
    AggregateConfig,
    Aggregation,
    DedupeConfig,
    EnrichConfig,
    FILTER_OPERATORS,
    FilterConfig,
    JoinConfig,
    SortConfig,
    StepConfig,
    TransformConfig,
)


logger = logging.getLogger(__name__)


def _expect(config: object, config_type: type) -> None:
    if not isinstance(config, config_type):
        raise ConfigError(f"expected {config_type.__name__}, got {type(config).__name__}")


def _strict_equals(left: object, right: object) -> bool:
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _compare(left: object, right: object) -> int | None:
    left_key = ordering_key(left)
    right_key = ordering_key(right)
    # Only values of the same rank are comparable.
    if left_key is None or right_key is None or left_key[0] != right_key[0]:
        return None
    if left_key[1] < right_key[1]:
        return -1
    if left_key[1] > right_key[1]:
        return 1
    return 0


def _matches(record: Record, config: FilterConfig) -> bool:
    value = record.get(config.field)
    operator = config.operator

    if operator == "equals":
        return _strict_equals(value, config.value)
    if operator == "not_equals":
        return not _strict_equals(value, config.value)
    if operator == "contains":
        return to_text(config.value) in to_text(value)
    if operator == "greater_than":
        return _compare(value, config.value) == 1
    if operator == "less_than":
        return _compare(value, config.value) == -1
    if operator == "in":
        return any(_strict_equals(value, candidate) for candidate in config.value)
    if operator == "not_null":
        return value is not None
    return True


def filter_records(records: Batch, config: FilterConfig) -> Batch:
    _expect(config, FilterConfig)
    if config.operator not in FILTER_OPERATORS:
        logger.warning("unknown filter operator, keeping every record", extra={"operator": config.operator})
    return [dict(record) for record in records if _matches(record, config)]


def _round_half_up(value: float, decimals: int) -> float:
    scale = 10**decimals
    scaled = value * scale
    if not math.isfinite(scaled):
        return value
    return math.floor(scaled + 0.5) / scale


def _substring(text: str, start: int, end: int | None) -> str:
    start = max(0, start)
    end = len(text) if end is None else max(0, end)
    if start > end:
        start, end = end, start
    return text[start:end]


def _transform_value(record: Record, config: TransformConfig) -> object:
    value = record.get(config.field)
    params = config.params
    name = config.transformation

    if name == "parse_number":
        return parse_number(value)
    if name == "parse_date":
        return parse_date(value)
    if name == "multiply":
        return parse_number(value) * params["factor"]
    if name == "round":
        return _round_half_up(parse_number(value), params.get("decimals", 0))
    if name == "concat":
        return params.get("separator", "").join(to_text(record.get(field)) for field in params["fields"])

    # String transformations leave a missing value missing.
    if value is None:
        return None
    text = to_text(value)
    if name == "uppercase":
        return text.upper()
    if name == "lowercase":
        return text.lower()
    if name == "trim":
        return text.strip()
    if name == "replace":
        return text.replace(params["from"], params.get("to", ""), 1)
    if name == "substring":
        return _substring(text, params["start"], params.get("end"))
    raise ConfigError(f"unknown transformation '{name}'")


def transform_records(records: Batch, config: TransformConfig) -> Batch:
    _expect(config, TransformConfig)
    target = config.target_field
    transformed: Batch = []
    for record in records:
        value = _transform_value(record, config)
        if value is None or (isinstance(value, float) and math.isnan(value)):
            logger.debug("value could not be transformed", extra={"field": config.field, "transformation": config.transformation})
        transformed.append({**record, target: value})
    return transformed


def _as_plain_number(value: float) -> float | int:
    # Integral results stay ints so published batches read 3, not 3.0.
    if value.is_integer() and abs(value) < 2**53:
        return int(value)
    return value


def _aggregate(records: Batch, aggregation: Aggregation) -> object:
    operation = aggregation.operation
    if operation == "count":
        return len(records)
    if operation == "count_distinct":
        return len({value_key(record.get(aggregation.field)) for record in records})

    values = [parse_number(record.get(aggregation.field)) for record in records]
    values = [value for value in values if not math.isnan(value)]
    if operation == "sum":
        return _as_plain_number(float(sum(values)))
    if not values:
        return None
    if operation == "avg":
        return _as_plain_number(sum(values) / len(values))
    if operation == "min":
        return _as_plain_number(min(values))
    if operation == "max":
        return _as_plain_number(max(values))
    raise ConfigError(f"unknown aggregate operation '{operation}'")


def aggregate_records(records: Batch, config: AggregateConfig) -> Batch:
    _expect(config, AggregateConfig)
    # Tuple keys keep values such as "a|b" from colliding with a two-field group.
    groups: dict[tuple, tuple[tuple, Batch]] = {}
    for record in records:
        raw_values = tuple(record.get(field) for field in config.group_by)
        key = tuple(value_key(value) for value in raw_values)
        if key not in groups:
            groups[key] = (raw_values, [])
        groups[key][1].append(record)

    aggregated: Batch = []
    for raw_values, group_records in groups.values():
        row: Record = dict(zip(config.group_by, raw_values))
        for aggregation in config.aggregations:
            row[aggregation.output_field] = _aggregate(group_records, aggregation)
        aggregated.append(row)
    return aggregated


def join_records(records: Batch, config: JoinConfig) -> Batch:
    _expect(config, JoinConfig)
    lookup: dict[object, Record] = {}
    for target in config.target_data:
        target_value = target.get(config.target_field)
        if target_value is None:
            continue
        lookup[value_key(target_value)] = target

    joined: Batch = []
    misses = 0
    for record in records:
        source_value = record.get(config.source_field)
        match = None if source_value is None else lookup.get(value_key(source_value))
        if match is None:
            misses += 1
            if config.join_type == "inner":
                continue
            joined.append(dict(record))
            continue
        joined.append({**record, **match})

    if misses:
        logger.debug("join lookups without a match", extra={"misses": misses, "join_type": config.join_type})
    return joined


def sort_records(records: Batch, config: SortConfig) -> Batch:
    _expect(config, SortConfig)
    orderable: list[tuple[tuple[int, object], Record]] = []
    unorderable: Batch = []
    for record in records:
        key = ordering_key(record.get(config.field))
        if key is None:
            unorderable.append(dict(record))
        else:
            orderable.append((key, record))

    # sorted() is stable, including with reverse=True.
    ordered = sorted(orderable, key=lambda item: item[0], reverse=config.direction == "desc")
    return [dict(record) for _, record in ordered] + unorderable


def dedupe_records(records: Batch, config: DedupeConfig) -> Batch:
    _expect(config, DedupeConfig)
    seen: set[object] = set()
    kept: Batch = []
    for record in records:
        if config.fields:
            key = tuple(value_key(record.get(field)) for field in config.fields)
        else:
            key = fingerprint(record)
        if key in seen:
            continue
        seen.add(key)
        kept.append(dict(record))
    return kept


def _utc_timestamp() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def enrich_records(records: Batch, config: EnrichConfig) -> Batch:
    _expect(config, EnrichConfig)
    params = config.params

    if config.enrichment_type == "timestamp":
        field = params.get("field") or "enriched_at"
        stamp = _utc_timestamp()
        return [{**record, field: stamp} for record in records]

    if config.enrichment_type == "hash":
        source = params["field"]
        output = params.get("output_field") or params.get("outputField") or "hash"
        return [
            {**record, output: hashlib.sha256(canonical_json(record.get(source)).encode("utf-8")).hexdigest()}
            for record in records
        ]

    if config.enrichment_type == "sequence":
        field = params.get("field") or "sequence"
        return [{**record, field: index} for index, record in enumerate(records, start=1)]

    raise ConfigError(f"unsupported enrichment type '{config.enrichment_type}'")


EXECUTORS: dict[type, Callable[[Batch, StepConfig], Batch]] = {
    FilterConfig: filter_records,
    TransformConfig: transform_records,
    AggregateConfig: aggregate_records,
    JoinConfig: join_records,
    SortConfig: sort_records,
    DedupeConfig: dedupe_records,
    EnrichConfig: enrich_records,
}


def execute_step(records: Batch, config: StepConfig) -> Batch:
    executor = EXECUTORS.get(type(config))
    if executor is None:
        raise ConfigError(f"no executor for config type {type(config).__name__}")
    return executor(records, config)


