from datetime import date, datetime
import json
from pathlib import Path

from recordflow.records import Batch


def _json_default(value: object) -> object:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def read_jsonl(input_path: Path) -> Batch:
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")

    records: Batch = []
    with input_path.open("r", encoding="utf-8") as infile:
        for line_number, line in enumerate(infile, start=1):
            line = line.strip()
            if not line:
                continue
            record = json.loads(line)
            if not isinstance(record, dict):
                raise ValueError(f"{input_path}:{line_number} is not a JSON object")
            records.append(record)
    return records


def read_json(input_path: Path) -> object:
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")
    with input_path.open("r", encoding="utf-8") as infile:
        return json.load(infile)


def write_jsonl(path: Path, rows: Batch) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        for row in rows:
            outfile.write(json.dumps(row, default=_json_default))
            outfile.write("\n")


def write_json(path: Path, payload: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as outfile:
        json.dump(payload, outfile, indent=2, sort_keys=True, default=_json_default)
        outfile.write("\n")
