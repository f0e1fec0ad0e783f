from __future__ import annotations
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from payment_inbox.config import get_settings


class Base(DeclarativeBase):
    pass


def _dsn() -> str:
    return get_settings().database_url


def _enable_sqlite_immediate_transactions(e: Engine) -> None:
    # SQLite has no row locks and ignores FOR UPDATE. Starting every transaction with
    # BEGIN IMMEDIATE takes the write lock up front, so lock_for_update() callers are
    # serialized at database granularity instead of row granularity.
    @event.listens_for(e, "connect")
    def _on_connect(dbapi_connection, connection_record):  # noqa
        dbapi_connection.isolation_level = None

    @event.listens_for(e, "begin")
    def _on_begin(conn):  # noqa
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        e = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30})
        _enable_sqlite_immediate_transactions(e)
        return e
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(_dsn())
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def override_engine(e):  # test helper
    global engine, SessionLocal
    engine = e
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def healthcheck() -> bool:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
        return True
