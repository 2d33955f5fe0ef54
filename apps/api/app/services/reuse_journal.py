"""Trigger-based change journal for reusing SQLite databases without a transaction.

Every user table gets AFTER INSERT/UPDATE/DELETE triggers writing to a global
journal (for ordering) and to a per-table shadow table (for old values, stored
with no column affinity so values round-trip untouched). Reversal replays the
journal newest-first. Structural changes cannot be undone, so they make
reversal report failure and the database gets rebuilt instead.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger("dbprep.journal")

INTERNAL_PREFIX = "____dbprep"
JOURNAL_TABLE = "____dbprep_journal____"
STATE_TABLE = "____dbprep_journal_state____"
SHADOW_PREFIX = "____dbprep_jr_"
TRIGGER_PREFIX = "____dbprep_jt_"
_WITHOUT_ROWID = re.compile(r"\)\s*WITHOUT\s+ROWID\s*;?\s*$", re.IGNORECASE)


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def structure_fingerprint(connection: Connection) -> str:
    rows = connection.exec_driver_sql(
        "SELECT type, name, tbl_name, sql FROM sqlite_master ORDER BY type, name"
    ).all()
    relevant = [
        list(row)
        for row in rows
        if not str(row[1]).startswith(("sqlite_", INTERNAL_PREFIX))
    ]
    return hashlib.sha256(json.dumps(relevant).encode("utf-8")).hexdigest()


class SQLiteJournal:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def start(self) -> bool:
        """Install the journal. Returns ``False`` when the schema can't be journaled."""
        started = time.monotonic()
        with self._engine.begin() as connection:
            tables = self._user_tables(connection)
            if tables is None:
                return False
            self._drop_objects(connection)
            connection.exec_driver_sql(
                f"CREATE TABLE {_quote(JOURNAL_TABLE)} ("
                "id INTEGER PRIMARY KEY, table_name TEXT NOT NULL, action TEXT NOT NULL, "
                "row_id INTEGER, new_row_id INTEGER)"
            )
            connection.exec_driver_sql(
                f"CREATE TABLE {_quote(STATE_TABLE)} (structure_checksum TEXT, sequences TEXT)"
            )
            connection.execute(
                text(
                    f"INSERT INTO {_quote(STATE_TABLE)} (structure_checksum, sequences) "
                    "VALUES (:structure, :sequences)"
                ),
                {
                    "structure": structure_fingerprint(connection),
                    "sequences": json.dumps(self._sequences(connection)),
                },
            )
            for table, columns in tables.items():
                self._install_table(connection, table, columns)
        logger.info(
            "journaling started tables=%d elapsed_ms=%d",
            len(tables),
            int((time.monotonic() - started) * 1000),
        )
        return True

    def reverse(self) -> bool:
        """Undo journaled changes. Returns ``False`` when they can't be undone."""
        started = time.monotonic()
        with self._engine.begin() as connection:
            state = self._state(connection)
            if state is None:
                return False
            structure_checksum, sequences = state
            if structure_fingerprint(connection) != structure_checksum:
                logger.warning("journal not reversed: the database structure changed")
                self._drop_objects(connection)
                return False

            self._drop_triggers(connection)
            connection.exec_driver_sql("PRAGMA defer_foreign_keys = ON")
            entries = connection.exec_driver_sql(
                f"SELECT id, table_name, action, row_id, new_row_id "
                f"FROM {_quote(JOURNAL_TABLE)} ORDER BY id DESC"
            ).all()
            for entry_id, table, action, row_id, new_row_id in entries:
                self._undo(connection, entry_id, table, action, row_id, new_row_id)
            self._restore_sequences(connection, sequences)
            self._drop_objects(connection)
        logger.info(
            "journal reversed changes=%d elapsed_ms=%d",
            len(entries),
            int((time.monotonic() - started) * 1000),
        )
        return True

    def _user_tables(self, connection: Connection) -> dict[str, list[str]] | None:
        rows = connection.exec_driver_sql(
            "SELECT name, sql FROM sqlite_master WHERE type = 'table' ORDER BY name"
        ).all()
        tables: dict[str, list[str]] = {}
        for name, sql in rows:
            if name.startswith("sqlite_") or name.startswith(INTERNAL_PREFIX):
                continue
            sql = sql or ""
            if sql.upper().startswith("CREATE VIRTUAL") or _WITHOUT_ROWID.search(sql):
                logger.info("journaling unavailable table=%s", name)
                return None
            columns = connection.exec_driver_sql(f"PRAGMA table_info({_quote(name)})").all()
            tables[name] = [column[1] for column in columns]
        return tables

    def _install_table(self, connection: Connection, table: str, columns: list[str]) -> None:
        shadow = _quote(SHADOW_PREFIX + table)
        column_list = ", ".join(_quote(column) for column in columns)
        old_values = ", ".join(f"OLD.{_quote(column)}" for column in columns)
        connection.exec_driver_sql(
            f"CREATE TABLE {shadow} (____journal_id INTEGER NOT NULL, ____row_id INTEGER, "
            f"{column_list})"
        )
        journal = _quote(JOURNAL_TABLE)
        name = _literal(table)
        connection.exec_driver_sql(
            f"CREATE TRIGGER {_quote(TRIGGER_PREFIX + table + '_insert')} "
            f"AFTER INSERT ON {_quote(table)} BEGIN "
            f"INSERT INTO {journal} (table_name, action, row_id) "
            f"VALUES ({name}, 'insert', NEW.rowid); END"
        )
        for action, new_row_id in (("update", "NEW.rowid"), ("delete", "NULL")):
            connection.exec_driver_sql(
                f"CREATE TRIGGER {_quote(TRIGGER_PREFIX + table + '_' + action)} "
                f"AFTER {action.upper()} ON {_quote(table)} BEGIN "
                f"INSERT INTO {journal} (table_name, action, row_id, new_row_id) "
                f"VALUES ({name}, '{action}', OLD.rowid, {new_row_id}); "
                f"INSERT INTO {shadow} VALUES (last_insert_rowid(), OLD.rowid, {old_values}); "
                "END"
            )

    def _undo(
        self,
        connection: Connection,
        entry_id: int,
        table: str,
        action: str,
        row_id: int | None,
        new_row_id: int | None,
    ) -> None:
        target = _quote(table)
        if action == "insert":
            connection.execute(
                text(f"DELETE FROM {target} WHERE rowid = :row_id"), {"row_id": row_id}
            )
            return

        shadow = _quote(SHADOW_PREFIX + table)
        info = connection.exec_driver_sql(f"PRAGMA table_info({target})").all()
        column_list = ", ".join(_quote(row[1]) for row in info)
        primary_keys = [row for row in info if row[5]]
        # an INTEGER PRIMARY KEY column already is the rowid
        has_rowid_alias = len(primary_keys) == 1 and str(primary_keys[0][2]).upper() == "INTEGER"
        insert_columns = column_list if has_rowid_alias else f"rowid, {column_list}"
        select_columns = column_list if has_rowid_alias else f"____row_id, {column_list}"
        if action == "update":
            connection.execute(
                text(f"DELETE FROM {target} WHERE rowid = :new_row_id"),
                {"new_row_id": new_row_id},
            )
        connection.execute(
            text(
                f"INSERT INTO {target} ({insert_columns}) "
                f"SELECT {select_columns} FROM {shadow} WHERE ____journal_id = :entry_id"
            ),
            {"entry_id": entry_id},
        )

    def _sequences(self, connection: Connection) -> list[list[object]] | None:
        if not self._has_sequence_table(connection):
            return None
        rows = connection.exec_driver_sql("SELECT name, seq FROM sqlite_sequence").all()
        return [[name, seq] for name, seq in rows]

    def _restore_sequences(
        self, connection: Connection, sequences: list[list[object]] | None
    ) -> None:
        if sequences is None or not self._has_sequence_table(connection):
            return
        connection.exec_driver_sql("DELETE FROM sqlite_sequence")
        for name, seq in sequences:
            connection.execute(
                text("INSERT INTO sqlite_sequence (name, seq) VALUES (:name, :seq)"),
                {"name": name, "seq": seq},
            )

    def _has_sequence_table(self, connection: Connection) -> bool:
        return (
            connection.exec_driver_sql(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'"
            ).first()
            is not None
        )

    def _state(self, connection: Connection) -> tuple[str, list[list[object]] | None] | None:
        exists = connection.execute(
            text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = :name"),
            {"name": STATE_TABLE},
        ).first()
        if exists is None:
            return None
        row = connection.exec_driver_sql(
            f"SELECT structure_checksum, sequences FROM {_quote(STATE_TABLE)}"
        ).first()
        if row is None:
            return None
        return row[0], json.loads(row[1])

    def _objects(self, connection: Connection, object_type: str, prefix: str) -> list[str]:
        names = connection.execute(
            text("SELECT name FROM sqlite_master WHERE type = :type ORDER BY name"),
            {"type": object_type},
        ).scalars().all()
        return [name for name in names if name.startswith(prefix)]

    def _drop_triggers(self, connection: Connection) -> None:
        for name in self._objects(connection, "trigger", TRIGGER_PREFIX):
            connection.exec_driver_sql(f"DROP TRIGGER IF EXISTS {_quote(name)}")

    def _drop_objects(self, connection: Connection) -> None:
        self._drop_triggers(connection)
        shadows = self._objects(connection, "table", SHADOW_PREFIX)
        for name in [*shadows, JOURNAL_TABLE, STATE_TABLE]:
            connection.exec_driver_sql(f"DROP TABLE IF EXISTS {_quote(name)}")
