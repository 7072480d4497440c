from datetime import datetime
import hashlib
import math

import pytest

from recordflow.errors import ConfigError
from recordflow.step_configs import (
    AggregateConfig,
    Aggregation,
    DedupeConfig,
    EnrichConfig,
    FilterConfig,
    JoinConfig,
    SortConfig,
    TransformConfig,
    parse_config,
)
from recordflow.step_logic import (
    aggregate_records,
    dedupe_records,
    enrich_records,
    execute_step,
    filter_records,
    join_records,
    sort_records,
    transform_records,
)


def test_filter_operators() -> None:
    records = [{"n": 5, "s": "apple"}, {"n": 15, "s": "banana"}, {"n": "20", "s": None}]

    assert filter_records(records, FilterConfig("n", "equals", 5)) == [records[0]]
    assert filter_records(records, FilterConfig("n", "not_equals", 5)) == records[1:]
    assert filter_records(records, FilterConfig("s", "contains", "an")) == [records[1]]
    assert filter_records(records, FilterConfig("n", "greater_than", 10)) == [records[1]]
    assert filter_records(records, FilterConfig("n", "less_than", 10)) == [records[0]]
    assert filter_records(records, FilterConfig("s", "in", ["apple", "cherry"])) == [records[0]]


def test_filter_incompatible_comparison_is_false_not_an_error() -> None:
    records = [{"n": "abc"}, {"n": None}, {"other": 1}]

    assert filter_records(records, FilterConfig("n", "greater_than", 1)) == []
    assert filter_records(records, FilterConfig("n", "less_than", 1)) == []


def test_filter_equals_does_not_match_bool_with_number() -> None:
    records = [{"flag": True}, {"flag": 1}]

    assert filter_records(records, FilterConfig("flag", "equals", 1)) == [{"flag": 1}]


def test_filter_not_null_removes_null_and_absent_values() -> None:
    records = [{"value": 1}, {"value": None}, {"other": 2}, {"value": 0}, {"value": ""}]

    kept = filter_records(records, FilterConfig("value", "not_null"))

    assert kept == [{"value": 1}, {"value": 0}, {"value": ""}]


def test_filter_unknown_operator_keeps_every_record() -> None:
    records = [{"a": 1}, {"a": 2}]

    assert filter_records(records, FilterConfig("a", "resembles", 1)) == records


def test_filter_in_requires_a_list() -> None:
    with pytest.raises(ConfigError):
        FilterConfig("a", "in", "abc")


def test_string_transforms_write_to_output_field() -> None:
    records = [{"name": "  Ada  "}]

    trimmed = transform_records(records, TransformConfig("name", "trim"))
    upper = transform_records(records, TransformConfig("name", "uppercase", output_field="shout"))
    lower = transform_records([{"name": "ADA"}], TransformConfig("name", "lowercase", params={"outputField": "quiet"}))

    assert trimmed == [{"name": "Ada"}]
    assert upper == [{"name": "  Ada  ", "shout": "  ADA  "}]
    assert lower == [{"name": "ADA", "quiet": "ada"}]


def test_replace_and_substring() -> None:
    records = [{"code": "a-b-c"}]

    replaced = transform_records(records, TransformConfig("code", "replace", params={"from": "-", "to": "_"}))
    sliced = transform_records(records, TransformConfig("code", "substring", params={"start": 2, "end": 5}))

    assert replaced[0]["code"] == "a_b-c"
    assert sliced[0]["code"] == "b-c"


def test_parse_number_yields_nan_for_text() -> None:
    records = [{"v": "12.5kg"}, {"v": "abc"}, {"v": None}, {"v": 3}]

    parsed = [record["v"] for record in transform_records(records, TransformConfig("v", "parse_number"))]

    assert parsed[0] == 12.5
    assert math.isnan(parsed[1])
    assert math.isnan(parsed[2])
    assert parsed[3] == 3.0


def test_parse_date_returns_none_when_unparsable() -> None:
    records = [{"d": "2024-01-15T10:00:00"}, {"d": "not a date"}]

    parsed = transform_records(records, TransformConfig("d", "parse_date"))

    assert parsed[0]["d"] == datetime(2024, 1, 15, 10, 0, 0)
    assert parsed[1]["d"] is None


def test_concat_multiply_and_round() -> None:
    records = [{"first": "Ada", "last": "Lovelace", "price": "2.346"}]

    joined = transform_records(
        records,
        TransformConfig("first", "concat", params={"fields": ["first", "last"], "separator": " "}, output_field="full"),
    )
    scaled = transform_records(records, TransformConfig("price", "multiply", params={"factor": 100}))
    rounded = transform_records(records, TransformConfig("price", "round", params={"decimals": 2}))
    whole = transform_records([{"price": 2.5}], TransformConfig("price", "round"))

    assert joined[0]["full"] == "Ada Lovelace"
    assert scaled[0]["price"] == pytest.approx(234.6)
    assert rounded[0]["price"] == pytest.approx(2.35)
    assert whole[0]["price"] == 3


def test_round_leaves_values_too_large_to_scale_unchanged() -> None:
    records = [{"v": 1e308}, {"v": 1.234}, {"v": "n/a"}]

    rounded = transform_records(records, TransformConfig("v", "round", params={"decimals": 2}))

    assert rounded[0]["v"] == 1e308
    assert rounded[1]["v"] == pytest.approx(1.23)
    assert math.isnan(rounded[2]["v"])


def test_round_rejects_out_of_range_decimals() -> None:
    with pytest.raises(ConfigError):
        TransformConfig("v", "round", params={"decimals": 400})
    with pytest.raises(ConfigError):
        TransformConfig("v", "round", params={"decimals": -400})


def test_transform_rejects_unknown_transformation_and_missing_params() -> None:
    with pytest.raises(ConfigError):
        TransformConfig("a", "reverse")
    with pytest.raises(ConfigError):
        TransformConfig("a", "multiply")


def test_transform_does_not_mutate_input() -> None:
    records = [{"name": "ada"}]

    transform_records(records, TransformConfig("name", "uppercase"))

    assert records == [{"name": "ada"}]


def test_aggregate_sum_by_group() -> None:
    records = [{"a": 1, "cat": "x"}, {"a": 2, "cat": "x"}, {"a": 30, "cat": "y"}]
    config = AggregateConfig(group_by=("cat",), aggregations=(Aggregation("a", "sum", "total"),))

    assert aggregate_records(records, config) == [{"cat": "x", "total": 3}, {"cat": "y", "total": 30}]


def test_aggregate_operations_skip_non_numeric_values() -> None:
    records = [
        {"cat": "x", "v": 4, "id": "a"},
        {"cat": "x", "v": "6", "id": "a"},
        {"cat": "x", "v": "n/a", "id": "b"},
        {"cat": "y", "v": None, "id": "c"},
    ]
    config = AggregateConfig(
        group_by=("cat",),
        aggregations=(
            Aggregation("v", "avg", "avg"),
            Aggregation("v", "min", "min"),
            Aggregation("v", "max", "max"),
            Aggregation("v", "count", "count"),
            Aggregation("id", "count_distinct", "ids"),
            Aggregation("v", "sum", "sum"),
        ),
    )

    x_group, y_group = aggregate_records(records, config)

    assert x_group == {"cat": "x", "avg": 5.0, "min": 4.0, "max": 6.0, "count": 3, "ids": 2, "sum": 10.0}
    assert y_group == {"cat": "y", "avg": None, "min": None, "max": None, "count": 1, "ids": 1, "sum": 0}


def test_integral_aggregates_are_published_as_ints() -> None:
    records = [{"cat": "x", "v": 1}, {"cat": "x", "v": "2"}, {"cat": "y", "v": 0.5}, {"cat": "y", "v": 0.25}]
    config = AggregateConfig(
        group_by=("cat",),
        aggregations=(Aggregation("v", "sum", "total"), Aggregation("v", "max", "top")),
    )

    x_group, y_group = aggregate_records(records, config)

    assert x_group["total"] == 3 and isinstance(x_group["total"], int)
    assert x_group["top"] == 2 and isinstance(x_group["top"], int)
    assert y_group["total"] == 0.75


def test_aggregate_group_values_containing_separator_do_not_collide() -> None:
    records = [{"a": "x|y", "b": "z"}, {"a": "x", "b": "y|z"}]
    config = AggregateConfig(group_by=("a", "b"), aggregations=(Aggregation("a", "count", "n"),))

    assert len(aggregate_records(records, config)) == 2


def test_join_inner_and_left() -> None:
    records = [{"cid": 1, "amount": 10}, {"cid": 2, "amount": 20}, {"amount": 30}]
    targets = [{"id": 1, "name": "old"}, {"id": 1, "name": "Ada"}, {"id": 3, "name": "Grace"}]

    inner = join_records(records, JoinConfig("cid", "id", targets, "inner"))
    left = join_records(records, JoinConfig("cid", "id", targets, "left"))

    assert inner == [{"cid": 1, "amount": 10, "id": 1, "name": "Ada"}]
    assert left == [{"cid": 1, "amount": 10, "id": 1, "name": "Ada"}, {"cid": 2, "amount": 20}, {"amount": 30}]


def test_sort_is_stable_in_both_directions() -> None:
    records = [{"k": 2, "tag": "a"}, {"k": 1, "tag": "b"}, {"k": 2, "tag": "c"}, {"k": 1, "tag": "d"}]

    ascending = sort_records(records, SortConfig("k", "asc"))
    descending = sort_records(records, SortConfig("k", "desc"))

    assert [record["tag"] for record in ascending] == ["b", "d", "a", "c"]
    assert [record["tag"] for record in descending] == ["a", "c", "b", "d"]


def test_sort_puts_missing_values_last() -> None:
    records = [{"k": None, "tag": "a"}, {"k": "b", "tag": "b"}, {"tag": "c"}, {"k": "a", "tag": "d"}]

    ordered = sort_records(records, SortConfig("k", "desc"))

    assert [record["tag"] for record in ordered] == ["b", "d", "a", "c"]


def test_dedupe_by_fields_and_whole_record() -> None:
    records = [{"a": 1, "b": 1}, {"b": 1, "a": 1}, {"a": 1, "b": 2}]

    assert dedupe_records(records, DedupeConfig()) == [{"a": 1, "b": 1}, {"a": 1, "b": 2}]
    assert dedupe_records(records, DedupeConfig(fields=("a",))) == [{"a": 1, "b": 1}]


def test_enrich_sequence_hash_and_timestamp() -> None:
    records = [{"email": "ada@example.com"}, {"email": "grace@example.com"}]

    sequenced = enrich_records(records, EnrichConfig("sequence"))
    hashed = enrich_records(records, EnrichConfig("hash", params={"field": "email", "outputField": "digest"}))
    stamped = enrich_records(records, EnrichConfig("timestamp", params={"field": "seen_at"}))

    assert [record["sequence"] for record in sequenced] == [1, 2]
    assert hashed[0]["digest"] == hashlib.sha256(b'"ada@example.com"').hexdigest()
    assert datetime.fromisoformat(stamped[0]["seen_at"]).tzinfo is not None


def test_enrich_rejects_unknown_type() -> None:
    with pytest.raises(ConfigError):
        EnrichConfig("geo_ip")
    with pytest.raises(ConfigError):
        EnrichConfig("hash")


def test_executor_rejects_mismatched_config() -> None:
    with pytest.raises(ConfigError):
        filter_records([{"a": 1}], SortConfig("a"))
    with pytest.raises(ConfigError):
        execute_step([{"a": 1}], {"field": "a"})


def test_parse_config_accepts_camel_case_keys() -> None:
    config = parse_config(
        "aggregate",
        {"groupBy": ["cat"], "aggregations": [{"field": "v", "operation": "sum", "outputField": "total"}]},
    )

    assert config == AggregateConfig(group_by=("cat",), aggregations=(Aggregation("v", "sum", "total"),))
