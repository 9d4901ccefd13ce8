# edgesync/storage/db.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from core.settings import DB_PATH

# Ensure SQLModel metadata is populated
import models.entities  # noqa: F401
import models.queue_item  # noqa: F401
import models.sync_cursor  # noqa: F401
from storage import migrations


def create_sqlite_engine(path: Union[str, Path, None] = None, *, echo: bool = False) -> Engine:
    """Engine over a single shared SQLite connection.

    ``":memory:"`` gives an in-memory store that survives across sessions
    because the pool hands out one connection.
    """

    target = DB_PATH if path is None else path
    if str(target) == ":memory:":
        url = "sqlite://"
    else:
        file_path = Path(target)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{file_path.as_posix()}"
    engine = create_engine(
        url,
        echo=echo,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


class Database:
    """Owns the engine and serialises access to the shared connection."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._lock = threading.RLock()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read session; writes must go through :meth:`transaction`."""
        with self._lock:
            with Session(self.engine, expire_on_commit=False) as session:
                yield session

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Session committed on success and rolled back on any exception."""
        with self._lock:
            with Session(self.engine, expire_on_commit=False) as session:
                try:
                    yield session
                    session.commit()
                except BaseException:
                    session.rollback()
                    raise

    def dispose(self) -> None:
        with self._lock:
            self.engine.dispose()


def init_db(database: Database) -> None:
    SQLModel.metadata.create_all(database.engine)
    migrations.run_all(database.engine)


def open_database(path: Union[str, Path, None] = None) -> Database:
    database = Database(create_sqlite_engine(path))
    init_db(database)
    return database


_default: Optional[Database] = None


def get_database() -> Database:
    """Return (and lazily create) the process-wide database on ``DB_PATH``."""

    global _default
    if _default is None:
        _default = open_database(DB_PATH)
    return _default


__all__ = [
    "Database",
    "create_sqlite_engine",
    "get_database",
    "init_db",
    "open_database",
]
