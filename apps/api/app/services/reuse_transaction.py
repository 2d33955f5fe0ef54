"""Reuse a database by wrapping each test in a transaction that is rolled back."""

from __future__ import annotations

import logging

from sqlalchemy.engine import Connection, Engine, RootTransaction

from apps.api.app.services.reuse_metadata import ReuseMetadataStore

logger = logging.getLogger("dbprep.transaction")


class ReuseTransaction:
    def __init__(self, engine: Engine, store: ReuseMetadataStore) -> None:
        self._engine = engine
        self._store = store
        self._connection: Connection | None = None
        self._transaction: RootTransaction | None = None

    @property
    def connection(self) -> Connection | None:
        return self._connection

    def begin(self) -> Connection:
        """Open the wrapping transaction; the test must run on the returned connection."""
        connection = self._engine.connect()
        self._transaction = connection.begin()
        self._store.arm_transaction(connection)
        self._connection = connection
        return connection

    def finish(self) -> bool:
        """Roll back and close. Returns ``True`` when the code under test committed."""
        if self._connection is None:
            return False
        try:
            if self._transaction is not None and self._transaction.is_active:
                self._transaction.rollback()
        finally:
            self._connection.close()
            self._connection = None
            self._transaction = None
        committed = self._store.transaction_was_committed()
        if committed:
            logger.warning("reuse transaction was committed by the code under test")
        return committed
