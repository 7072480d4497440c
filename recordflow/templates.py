import copy

from recordflow.engine import Pipeline


PIPELINE_TEMPLATES: dict[str, dict[str, object]] = {
    "data_quality": {
        "name": "Data Quality Pipeline",
        "description": "Clean and validate data",
        "steps": [
            {"kind": "filter", "name": "Remove Nulls", "config": {"field": "value", "operator": "not_null"}},
            {"kind": "dedupe", "name": "Remove Duplicates", "config": {}},
            {"kind": "transform", "name": "Trim Strings", "config": {"field": "name", "transformation": "trim"}},
        ],
    },
    "aggregation": {
        "name": "Aggregation Pipeline",
        "description": "Group and summarize data",
        "steps": [
            {
                "kind": "aggregate",
                "name": "Group by Category",
                "config": {
                    "group_by": ["category"],
                    "aggregations": [
                        {"field": "value", "operation": "sum", "output_field": "total"},
                        {"field": "value", "operation": "avg", "output_field": "average"},
                        {"field": "id", "operation": "count", "output_field": "count"},
                    ],
                },
            },
            {"kind": "sort", "name": "Sort by Total", "config": {"field": "total", "direction": "desc"}},
        ],
    },
    "transformation": {
        "name": "Transformation Pipeline",
        "description": "Transform and enrich data",
        "steps": [
            {"kind": "transform", "name": "Parse Numbers", "config": {"field": "value", "transformation": "parse_number"}},
            {
                "kind": "transform",
                "name": "Multiply by 100",
                "config": {"field": "value", "transformation": "multiply", "params": {"factor": 100}},
            },
            {"kind": "enrich", "name": "Add Timestamp", "config": {"enrichment_type": "timestamp", "params": {}}},
        ],
    },
}


def list_templates() -> list[str]:
    return sorted(PIPELINE_TEMPLATES)


def get_template(name: str, *, pipeline_id: str | None = None) -> Pipeline:
    if name not in PIPELINE_TEMPLATES:
        raise KeyError(f"unknown pipeline template: {name}")
    raw = copy.deepcopy(PIPELINE_TEMPLATES[name])
    raw["id"] = pipeline_id or name
    return Pipeline.from_dict(raw)
