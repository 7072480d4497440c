"""Data quality analysis for record batches.

The field set of a batch is taken from its first record. Fields that only show
up in later records are not counted as missing and are not type-profiled.
"""

import logging
import math
import re

from recordflow.records import Batch, Record, fingerprint, is_finite_number, is_missing, mean_and_std, type_name
from recordflow.schemas import Outlier, QualityReport, ValidationRule


logger = logging.getLogger(__name__)

OUTLIER_REASON = "statistical outlier (beyond 2 standard deviations)"
OUTLIER_Z_THRESHOLD = 2
MIN_OUTLIER_SAMPLE = 11
MISSING_RATE_THRESHOLD = 20
LOW_SCORE_THRESHOLD = 60


def check_rule(value: object, rule: ValidationRule) -> bool:
    if rule.kind == "required":
        return not is_missing(value)
    if rule.kind == "type":
        return value is not None and type_name(value) == rule.params
    if rule.kind == "range":
        if not is_finite_number(value):
            return False
        low = rule.params.get("min")
        high = rule.params.get("max")
        return (low is None or value >= low) and (high is None or value <= high)
    if rule.kind == "pattern":
        return isinstance(value, str) and re.search(rule.params, value) is not None
    if rule.kind == "custom":
        return bool(rule.params(value))
    return True


def find_outliers(records: Batch, fields: list[str]) -> list[tuple[int, str, float]]:
    """Return (record index, field, value) for every |z| > 2 value."""
    found: list[tuple[int, str, float]] = []
    for field in fields:
        observations = [
            (index, record[field]) for index, record in enumerate(records) if is_finite_number(record.get(field))
        ]
        if len(observations) < MIN_OUTLIER_SAMPLE:
            continue

        mean, std = mean_and_std([value for _, value in observations])
        if std == 0:
            continue
        for index, value in observations:
            if abs((value - mean) / std) > OUTLIER_Z_THRESHOLD:
                found.append((index, field, value))
    return found


def _quality_score(
    *,
    total: int,
    invalid: int,
    duplicates: int,
    missing_fields: dict[str, int],
    outlier_count: int,
) -> int:
    if total == 0:
        return 0

    missing_rate = 0.0
    if missing_fields:
        missing_rate = sum(missing_fields.values()) / (total * len(missing_fields))

    score = 100.0
    score -= 40 * invalid / total
    score -= 20 * duplicates / total
    score -= 30 * missing_rate
    score -= 10 * outlier_count / total
    return max(0, min(100, math.floor(score + 0.5)))


def _suggestions(
    *,
    total: int,
    duplicates: int,
    missing_fields: dict[str, int],
    data_types: dict[str, dict[str, int]],
    outlier_count: int,
    score: int,
) -> list[str]:
    suggestions: list[str] = []

    for field, count in missing_fields.items():
        rate = count / total * 100
        if rate > MISSING_RATE_THRESHOLD:
            suggestions.append(
                f'Field "{field}" has {rate:.1f}% missing values. Consider collecting this data or making it optional.'
            )

    if duplicates > 0:
        suggestions.append(
            f"{duplicates / total * 100:.1f}% duplicate records detected. Consider implementing deduplication."
        )

    for field, types in data_types.items():
        if len(types) > 1:
            suggestions.append(
                f'Field "{field}" has inconsistent data types: {", ".join(types)}. Standardize the data type.'
            )

    if outlier_count > 0:
        suggestions.append(
            f"{outlier_count} statistical outliers detected. Review these values for data entry errors."
        )

    if score < LOW_SCORE_THRESHOLD:
        suggestions.append(
            "Overall data quality is low. Consider implementing data validation at the collection stage."
        )
    return suggestions


def _record_is_complete(record: Record, fields: list[str], missing_fields: dict[str, int], data_types: dict) -> bool:
    complete = True
    for field in fields:
        value = record.get(field)
        if is_missing(value):
            missing_fields[field] += 1
            complete = False
            continue
        observed = type_name(value)
        data_types[field][observed] = data_types[field].get(observed, 0) + 1
    return complete


def analyze_quality(records: Batch, rules: list[ValidationRule] | None = None) -> QualityReport:
    total = len(records)
    if total == 0:
        return QualityReport(
            total_records=0,
            valid_records=0,
            invalid_records=0,
            duplicates=0,
            missing_fields={},
            data_types={},
            outliers=[],
            suggestions=["No data to validate"],
            score=0,
        )

    rules = rules or []
    fields = list(records[0].keys())
    missing_fields = {field: 0 for field in fields}
    data_types: dict[str, dict[str, int]] = {field: {} for field in fields}
    rule_failures: dict[str, int] = {}
    seen: set[str] = set()
    duplicates = 0
    valid = 0

    for record in records:
        is_valid = True

        key = fingerprint(record)
        if key in seen:
            duplicates += 1
            is_valid = False
        else:
            seen.add(key)

        if not _record_is_complete(record, fields, missing_fields, data_types):
            is_valid = False

        for rule in rules:
            if not check_rule(record.get(rule.field), rule):
                rule_failures[rule.field] = rule_failures.get(rule.field, 0) + 1
                is_valid = False

        if is_valid:
            valid += 1

    outliers = [Outlier(field=field, value=value, reason=OUTLIER_REASON) for _, field, value in find_outliers(records, fields)]
    invalid = total - valid
    score = _quality_score(
        total=total,
        invalid=invalid,
        duplicates=duplicates,
        missing_fields=missing_fields,
        outlier_count=len(outliers),
    )
    suggestions = _suggestions(
        total=total,
        duplicates=duplicates,
        missing_fields=missing_fields,
        data_types=data_types,
        outlier_count=len(outliers),
        score=score,
    )

    logger.info(
        "quality analysis completed",
        extra={"total_records": total, "invalid_records": invalid, "duplicates": duplicates, "score": score},
    )
    return QualityReport(
        total_records=total,
        valid_records=valid,
        invalid_records=invalid,
        duplicates=duplicates,
        missing_fields=missing_fields,
        data_types=data_types,
        outliers=outliers,
        suggestions=suggestions,
        score=score,
        rule_failures=rule_failures,
    )
