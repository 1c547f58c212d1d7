"""
Registry database client.

One explicitly constructed SQLAlchemy engine per process, opened at startup
and disposed at shutdown. Write transactions take the SQLite database lock up
front with ``BEGIN IMMEDIATE`` so concurrent callers, in this process or
another one sharing the file, serialize instead of racing.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def _sqlite_engine(path: Path, timeout: float) -> Engine:
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"timeout": timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        # Let the "begin" listener below emit BEGIN instead of the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class Database:
    """
    Engine and session factory owner.

    Usage:
        db = Database(path)
        db.open()
        with db.transaction() as session:
            session.add(...)
        db.close()
    """

    def __init__(self, path: Union[str, Path], timeout: float = 10.0):
        self.path = Path(path)
        self.timeout = timeout
        self.engine: Optional[Engine] = None
        self._sessions: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self) -> "Database":
        """Create the engine and ensure the schema exists."""
        if self.engine is not None:
            return self

        # Registers the mapped tables on Base.metadata
        from . import models  # noqa: F401

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = _sqlite_engine(self.path, self.timeout)
        Base.metadata.create_all(self.engine)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(f"Registry database opened: {self.path}")
        return self

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            self._sessions = None
            logger.info(f"Registry database closed: {self.path}")

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def transaction(self, session: Optional[Session] = None) -> Iterator[Session]:
        """
        Run a block atomically.

        Passing the caller's ``session`` joins its transaction; only the
        block that opened the session commits or rolls back.
        """
        if session is not None:
            yield session
            return

        if self._sessions is None:
            raise RuntimeError("Database is not open")
        with self._sessions.begin() as new_session:
            yield new_session
