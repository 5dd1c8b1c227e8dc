from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from searchlog.config import get_settings


@event.listens_for(Engine, "connect")
def _set_sqlite_pragmas(dbapi_connection, connection_record):
    # The listener is global; only SQLite connections understand PRAGMA
    if type(dbapi_connection).__module__.split(".")[0] != "sqlite3":
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def _connect_args(db_url: str) -> dict:
    if db_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    get_settings().db_url,
    echo=False,
    pool_pre_ping=True,
    connect_args=_connect_args(get_settings().db_url),
)


def create_db_and_tables(eng: Engine | None = None) -> None:
    SQLModel.metadata.create_all(eng if eng is not None else engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
