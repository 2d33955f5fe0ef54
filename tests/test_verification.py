from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from apps.api.app.db.session import create_database_engine
from apps.api.app.services.verification import (
    capture_baseline,
    compare_data,
    compare_structure,
    compare_to_baseline,
)


def _engine(tmp_path: Path) -> Engine:
    engine = create_database_engine(f"sqlite:///{tmp_path / 'verify.sqlite'}")
    with engine.begin() as connection:
        connection.exec_driver_sql(
            "CREATE TABLE author (id INTEGER PRIMARY KEY, name TEXT, joined DATETIME)"
        )
        connection.exec_driver_sql("CREATE TABLE ____dbprep____ (id INTEGER PRIMARY KEY)")
        connection.execute(
            text("INSERT INTO author (name, joined) VALUES ('Ada', '2026-01-01 10:00:00')")
        )
    return engine


def test_unchanged_database_matches_baseline(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    baseline = capture_baseline(engine)

    assert set(baseline.tables) == {"author"}
    assert baseline.tables["author"].row_count == 1
    assert compare_to_baseline(engine, baseline) == []
    engine.dispose()


def test_row_changes_are_reported(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    baseline = capture_baseline(engine)

    with engine.begin() as connection:
        connection.execute(text("UPDATE author SET name = 'Grace'"))
    assert compare_data(engine, baseline) == ["table author content changed"]

    with engine.begin() as connection:
        connection.execute(text("INSERT INTO author (name) VALUES ('Linus')"))
    assert compare_data(engine, baseline) == ["table author has 2 rows, expected 1"]
    engine.dispose()


def test_structure_changes_are_reported(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    baseline = capture_baseline(engine)

    with engine.begin() as connection:
        connection.exec_driver_sql("CREATE INDEX ix_author_name ON author (name)")
        connection.exec_driver_sql("CREATE TABLE tag (id INTEGER PRIMARY KEY)")

    assert compare_structure(engine, baseline) == [
        "table tag was created",
        "table author structure changed",
    ]
    engine.dispose()


def test_internal_tables_are_ignored(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    baseline = capture_baseline(engine)

    with engine.begin() as connection:
        connection.exec_driver_sql("INSERT INTO ____dbprep____ (id) VALUES (1)")
        connection.exec_driver_sql("CREATE TABLE ____dbprep_journal____ (id INTEGER)")

    assert compare_to_baseline(engine, baseline) == []
    engine.dispose()
