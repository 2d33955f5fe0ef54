"""Structure and content fingerprints used to verify reused databases."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy import MetaData, inspect, select
from sqlalchemy.engine import Engine

_INTERNAL_PREFIXES = ("____dbprep", "sqlite_")


@dataclass(frozen=True)
class TableFingerprint:
    structure_hash: str
    row_count: int
    row_hash: str


@dataclass(frozen=True)
class DatabaseFingerprint:
    tables: dict[str, TableFingerprint]


def _normalize_scalar(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def _canonical(payload: object) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def _hash(payload: object) -> str:
    return hashlib.sha256(_canonical(payload).encode("utf-8")).hexdigest()


def _user_tables(engine: Engine) -> list[str]:
    names = inspect(engine).get_table_names()
    return sorted(name for name in names if not name.startswith(_INTERNAL_PREFIXES))


def _structure_hash(engine: Engine, table_name: str) -> str:
    inspector = inspect(engine)
    columns = [
        {
            "name": column["name"],
            "type": str(column["type"]),
            "nullable": bool(column.get("nullable", True)),
        }
        for column in inspector.get_columns(table_name)
    ]
    primary_key = inspector.get_pk_constraint(table_name).get("constrained_columns") or []
    indexes = sorted(
        (index["name"] or "", tuple(index["column_names"]), bool(index["unique"]))
        for index in inspector.get_indexes(table_name)
    )
    return _hash({"columns": columns, "primary_key": primary_key, "indexes": indexes})


def _row_fingerprint(engine: Engine, table_name: str) -> tuple[int, str]:
    metadata = MetaData()
    metadata.reflect(bind=engine, only=[table_name])
    db_table = metadata.tables[table_name]
    with engine.connect() as conn:
        rows = conn.execute(select(db_table)).mappings().all()
    normalized = sorted(
        _canonical({key: _normalize_scalar(value) for key, value in row.items()}) for row in rows
    )
    return len(normalized), _hash(normalized)


def capture_baseline(engine: Engine) -> DatabaseFingerprint:
    tables: dict[str, TableFingerprint] = {}
    for table_name in _user_tables(engine):
        row_count, row_hash = _row_fingerprint(engine, table_name)
        tables[table_name] = TableFingerprint(
            structure_hash=_structure_hash(engine, table_name),
            row_count=row_count,
            row_hash=row_hash,
        )
    return DatabaseFingerprint(tables=tables)


def compare_structure(engine: Engine, baseline: DatabaseFingerprint) -> list[str]:
    differences: list[str] = []
    current_tables = set(_user_tables(engine))
    expected_tables = set(baseline.tables)
    for table_name in sorted(current_tables - expected_tables):
        differences.append(f"table {table_name} was created")
    for table_name in sorted(expected_tables - current_tables):
        differences.append(f"table {table_name} was dropped")
    for table_name in sorted(current_tables & expected_tables):
        if _structure_hash(engine, table_name) != baseline.tables[table_name].structure_hash:
            differences.append(f"table {table_name} structure changed")
    return differences


def compare_data(engine: Engine, baseline: DatabaseFingerprint) -> list[str]:
    differences: list[str] = []
    current_tables = set(_user_tables(engine))
    for table_name in sorted(current_tables & set(baseline.tables)):
        expected = baseline.tables[table_name]
        row_count, row_hash = _row_fingerprint(engine, table_name)
        if row_count != expected.row_count:
            differences.append(
                f"table {table_name} has {row_count} rows, expected {expected.row_count}"
            )
        elif row_hash != expected.row_hash:
            differences.append(f"table {table_name} content changed")
    return differences


def compare_to_baseline(engine: Engine, baseline: DatabaseFingerprint) -> list[str]:
    """Return human-readable differences between the live database and ``baseline``."""
    return compare_structure(engine, baseline) + compare_data(engine, baseline)
