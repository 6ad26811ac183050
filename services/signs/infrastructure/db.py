from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker


def _engine_options(dsn: str):
    options: dict[str, object] = {"pool_pre_ping": True}
    # Records are written from worker threads, not the thread that opened the file.
    if make_url(dsn).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    return options


class Base(DeclarativeBase):
    pass


def create_session_factory(dsn: str):
    engine = create_engine(dsn, **_engine_options(dsn))
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)
