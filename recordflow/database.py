from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from recordflow.db_models import Base


def build_session_factory(database_url: str) -> sessionmaker[Session]:
    engine_args: dict[str, object] = {"future": True}
    if database_url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False}
        # An in-memory database only lives as long as its single connection.
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            engine_args["poolclass"] = StaticPool

    engine = create_engine(database_url, **engine_args)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
