import logging

from recordflow.errors import ConfigError
from recordflow.quality import find_outliers
from recordflow.records import Batch, Record, fingerprint, is_finite_number, is_missing, is_number, mean_and_std, value_key
from recordflow.schemas import CleanOptions


logger = logging.getLogger(__name__)


def remove_duplicates(records: Batch) -> Batch:
    seen: set[str] = set()
    kept: Batch = []
    for record in records:
        key = fingerprint(record)
        if key in seen:
            continue
        seen.add(key)
        kept.append(dict(record))
    return kept


def mode(values: list[object]) -> object:
    """Most frequent value; ties go to the value encountered first."""
    counts: dict[object, int] = {}
    first_seen: dict[object, object] = {}
    for value in values:
        key = value_key(value)
        counts[key] = counts.get(key, 0) + 1
        first_seen.setdefault(key, value)

    best = max(counts.values())
    for key, count in counts.items():
        if count == best:
            return first_seen[key]
    return None


def _fill_value(values: list[object], options: CleanOptions) -> object:
    strategy = options.fill_missing
    if strategy == "mean":
        if all(is_number(value) for value in values):
            return sum(values) / len(values)
        return None
    if strategy in ("mode", "median"):
        # Median follows the mode rule so mixed-type fields can be filled too.
        return mode(values)
    if strategy == "value":
        return options.fill_value
    raise ConfigError(f"unknown fill strategy '{strategy}'")


def _has_missing(record: Record, fields: list[str]) -> bool:
    return any(is_missing(record.get(field)) for field in fields) or any(is_missing(value) for value in record.values())


def fill_missing(records: Batch, options: CleanOptions) -> Batch:
    if not records:
        return []

    fields = list(records[0].keys())
    if options.fill_missing == "remove":
        return [dict(record) for record in records if not _has_missing(record, fields)]

    filled = [dict(record) for record in records]
    for field in fields:
        values = [record.get(field) for record in filled if not is_missing(record.get(field))]
        if not values:
            continue
        replacement = _fill_value(values, options)
        if replacement is None:
            continue
        for record in filled:
            if is_missing(record.get(field)):
                record[field] = replacement
    return filled


def clean_batch(records: Batch, options: CleanOptions) -> Batch:
    cleaned = list(records)

    if options.remove_duplicates:
        cleaned = remove_duplicates(cleaned)

    if options.remove_outliers and cleaned:
        flagged = {index for index, _, _ in find_outliers(cleaned, list(cleaned[0].keys()))}
        cleaned = [dict(record) for index, record in enumerate(cleaned) if index not in flagged]

    if options.fill_missing is not None:
        cleaned = fill_missing(cleaned, options)

    logger.info(
        "batch cleaned",
        extra={"input_records": len(records), "output_records": len(cleaned), "fill_missing": options.fill_missing},
    )
    return cleaned


def normalize_field(records: Batch, field: str) -> Batch:
    """Min-max scale ``field`` into [0, 1]; non-numeric values are left alone."""
    values = [record[field] for record in records if is_finite_number(record.get(field))]
    if not values:
        return list(records)

    low = min(values)
    span = max(values) - low
    if span == 0:
        return list(records)

    return [
        {**record, field: (record[field] - low) / span} if is_finite_number(record.get(field)) else dict(record)
        for record in records
    ]


def standardize_field(records: Batch, field: str) -> Batch:
    """Z-score scale ``field``; non-numeric values are left alone."""
    values = [record[field] for record in records if is_finite_number(record.get(field))]
    if not values:
        return list(records)

    mean, std = mean_and_std(values)
    if std == 0:
        return list(records)

    return [
        {**record, field: (record[field] - mean) / std} if is_finite_number(record.get(field)) else dict(record)
        for record in records
    ]
