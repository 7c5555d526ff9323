from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import settings


def is_sqlite(url: str) -> bool:
    return str(url).startswith("sqlite:")


def build_engine(url: str) -> Engine:
    """
    Engine for the complaint database. SQLite gets WAL + busy_timeout so
    report reads keep working while complaint writes and cache upserts land.
    """
    connect_args = {"check_same_thread": False, "timeout": 60} if is_sqlite(url) else {}
    eng = create_engine(url, connect_args=connect_args, pool_pre_ping=True)

    if is_sqlite(url):
        @event.listens_for(eng, "connect")
        def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
            cur = dbapi_connection.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
                cur.execute("PRAGMA foreign_keys=ON;")
                cur.execute("PRAGMA busy_timeout=60000;")  # ms
            finally:
                cur.close()

    return eng


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def init_db(*, recreate: bool = False) -> None:
    """Create tables for every model; drop them first when recreate is set."""
    from models import Base

    if recreate:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
