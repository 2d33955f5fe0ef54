"""Database engine creation for built test databases."""

from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine


def create_database_engine(url: str | URL, **kwargs: Any) -> Engine:
    """Create an engine; SQLite engines get explicit BEGIN handling."""
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        _apply_sqlite_transaction_hooks(engine)
    return engine


def _apply_sqlite_transaction_hooks(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first DML statement, which breaks
    # rollback of DDL and savepoints; take control of transactions instead.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")
