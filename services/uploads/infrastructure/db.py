from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


def _engine_options(dsn: str):
    options = {
        "pool_pre_ping": True,
    }
    if dsn.startswith("sqlite"):
        # Chunk workers write from pool threads.
        options["connect_args"] = {"check_same_thread": False}
    return options


class Base(DeclarativeBase):
    pass


def create_session_factory(dsn: str):
    engine = create_engine(dsn, **_engine_options(dsn))
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
