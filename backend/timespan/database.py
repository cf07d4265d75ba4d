from __future__ import annotations

import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import models
from .config import settings
from .errors import StorageError

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str, timeout: float | None = None) -> Engine:
    engine = create_engine(
        url,
        connect_args={
            "check_same_thread": False,
            "timeout": settings.sqlite_timeout if timeout is None else timeout,
        },
        future=True,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


DATABASE_URL = f"sqlite:///{settings.sqlite_path}"

engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(bind: Engine | None = None) -> None:
    """Create the schema. Any failure here is fatal for the process."""
    target = bind or engine
    try:
        models.Base.metadata.create_all(bind=target)
    except (SQLAlchemyError, OSError) as exc:
        logger.exception("Unable to open the time store at %s", target.url)
        raise StorageError() from exc


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
