import json
import logging

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from recordflow.db_models import PipelineDefinition, utc_now
from recordflow.engine import Pipeline
from recordflow.errors import ConfigError


logger = logging.getLogger(__name__)


def save_pipeline(db: Session, pipeline: Pipeline) -> str:
    if not pipeline.id:
        raise ConfigError("pipeline needs an id to be stored")

    definition = json.dumps(pipeline.to_dict(), sort_keys=True, default=str)
    row = db.get(PipelineDefinition, pipeline.id)
    if row is None:
        row = PipelineDefinition(id=pipeline.id, name=pipeline.name, description=pipeline.description, definition=definition)
        db.add(row)
    else:
        row.name = pipeline.name
        row.description = pipeline.description
        row.definition = definition
        row.updated_at = utc_now()
    db.commit()
    logger.info("pipeline saved", extra={"pipeline_id": pipeline.id, "steps": len(pipeline.steps)})
    return pipeline.id


def load_pipeline(db: Session, pipeline_id: str) -> Pipeline | None:
    row = db.get(PipelineDefinition, pipeline_id)
    if row is None:
        return None
    return Pipeline.from_dict(json.loads(row.definition))


def list_pipelines(db: Session) -> list[Pipeline]:
    rows = db.execute(select(PipelineDefinition).order_by(PipelineDefinition.id)).scalars().all()
    return [Pipeline.from_dict(json.loads(row.definition)) for row in rows]


def delete_pipeline(db: Session, pipeline_id: str) -> bool:
    result = db.execute(delete(PipelineDefinition).where(PipelineDefinition.id == pipeline_id))
    db.commit()
    return result.rowcount > 0
