from datetime import UTC, date, datetime
import json
import math
import re


Record = dict[str, object]
Batch = list[Record]

_NUMBER_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|[+-]?Infinity)")


def is_missing(value: object) -> bool:
    return value is None or value == ""


def is_number(value: object) -> bool:
    # bool is an int subclass but never counts as numeric.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_finite_number(value: object) -> bool:
    return is_number(value) and math.isfinite(value)


def type_name(value: object) -> str:
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (date, datetime)):
        return "date"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


def _json_default(value: object) -> object:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(str(item) for item in value)
    return str(value)


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default)


def fingerprint(record: Record) -> str:
    """Key-order independent serialization used to spot duplicate records."""
    return canonical_json(record)


def value_key(value: object) -> object:
    """Hashable stand-in for a field value, keeping 1 and "1" distinct."""
    if isinstance(value, (dict, list, tuple, set)):
        return ("json", canonical_json(value))
    return (type_name(value), value)


def to_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return canonical_json(value)
    return str(value)


def parse_number(value: object) -> float:
    """Leading-numeric-prefix parse; anything else becomes NaN."""
    if is_number(value):
        return float(value)
    if not isinstance(value, str):
        return math.nan
    match = _NUMBER_PREFIX.match(value)
    if match is None:
        return math.nan
    token = match.group(1)
    if token.endswith("Infinity"):
        return -math.inf if token.startswith("-") else math.inf
    return float(token)


def parse_date(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if is_finite_number(value):
        # Numbers are epoch milliseconds.
        try:
            return datetime.fromtimestamp(value / 1000, UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def ordering_key(value: object) -> tuple[int, object] | None:
    """Rank values so mixed batches still sort; None means not orderable."""
    if isinstance(value, bool):
        return (3, value)
    if is_number(value):
        if math.isnan(value):
            return None
        return (0, value)
    if isinstance(value, str):
        return (1, value)
    if isinstance(value, (date, datetime)):
        moment = parse_date(value)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return (2, moment.timestamp())
    return None


def mean_and_std(values: list[float]) -> tuple[float, float]:
    """Population mean and standard deviation."""
    mean = sum(values) / len(values)
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return mean, math.sqrt(variance)
