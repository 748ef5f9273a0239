
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from sshauditor.db import models  # noqa: F401  # ensure models are registered with metadata


def normalize_database_url(database: str) -> str:
    """Accept either a SQLAlchemy URL or a bare SQLite file path."""
    if "://" in database:
        return database
    return f"sqlite:///{database}"


def build_engine(database: str, echo: bool = False) -> Engine:
    database_url = normalize_database_url(database)
    engine_kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            engine_kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **engine_kwargs)


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)

