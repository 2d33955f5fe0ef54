from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from apps.api.app.db.session import create_database_engine
from apps.api.app.services import reuse_metadata
from apps.api.app.services.reuse_metadata import ARMED, ReuseMetadataStore, ReuseRecord
from apps.api.app.services.reuse_transaction import ReuseTransaction


def _store(tmp_path: Path) -> ReuseMetadataStore:
    engine = create_database_engine(f"sqlite:///{tmp_path / 'meta.sqlite'}")
    with engine.begin() as connection:
        connection.exec_driver_sql("CREATE TABLE author (id INTEGER PRIMARY KEY, name TEXT)")
    return ReuseMetadataStore(engine)


def _record(**overrides: object) -> ReuseRecord:
    values: dict[str, object] = {
        "project_name": "blog",
        "orig_db_name": "app.sqlite",
        "build_checksum": "b" * 64,
        "snapshot_checksum": "bbbbbb-cccccccccccc",
        "scenario_checksum": "s" * 64,
        "transaction_reusable": ARMED,
        "journal_reusable": None,
        "validation_passed": None,
        "last_used": datetime(2026, 1, 1),
    }
    values.update(overrides)
    return ReuseRecord(**values)


def _is_clean(store: ReuseMetadataStore, **overrides: object) -> bool:
    arguments: dict[str, object] = {
        "build_checksum": "b" * 64,
        "scenario_checksum": "s" * 64,
        "project_name": "blog",
        "mechanism": "transaction",
        "verify": False,
    }
    arguments.update(overrides)
    return store.is_clean(**arguments)


def test_missing_table_reads_as_none(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.read() is None
    assert _is_clean(store) is False
    assert "missing" in (store.cant_reuse_reason or "")


def test_written_record_is_clean_for_matching_inputs(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.write(_record())

    assert store.read() == _record()
    assert _is_clean(store) is True
    assert store.cant_reuse_reason is None


def test_every_mismatch_prevents_reuse(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.write(_record())

    assert _is_clean(store, build_checksum="x" * 64) is False
    assert _is_clean(store, scenario_checksum="x" * 64) is False
    assert _is_clean(store, project_name="shop") is False
    assert _is_clean(store, mechanism="journal") is False
    assert _is_clean(store, verify=True) is False
    assert _is_clean(store, mechanism="none") is False


def test_transaction_marker_survives_rollback_but_not_commit(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.write(_record())
    engine = store._engine

    rolled_back = ReuseTransaction(engine, store)
    connection = rolled_back.begin()
    connection.execute(text("INSERT INTO author (name) VALUES ('Ada')"))
    assert rolled_back.finish() is False
    assert _is_clean(store) is True

    committed = ReuseTransaction(engine, store)
    connection = committed.begin()
    connection.execute(text("INSERT INTO author (name) VALUES ('Ada')"))
    connection.commit()
    assert committed.finish() is True
    assert _is_clean(store) is False


def test_journal_and_validation_markers(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.write(_record(transaction_reusable=None, journal_reusable=ARMED, validation_passed=ARMED))

    store.arm_journal()
    assert _is_clean(store, mechanism="journal", verify=True) is False
    store.mark_journal_reversed()
    assert _is_clean(store, mechanism="journal", verify=True) is True
    store.mark_validation(False)
    assert _is_clean(store, mechanism="journal", verify=True) is False


def test_touch_updates_last_used(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.write(_record())

    store.touch()

    record = store.read()
    assert record is not None
    assert record.last_used > datetime(2026, 1, 1)


def test_remove_drops_the_table(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.write(_record())

    store.remove()

    assert store.read() is None


def test_driver_errors_while_reading_are_raised(tmp_path: Path, monkeypatch) -> None:
    store = _store(tmp_path)

    class _DeniedInspector:
        def has_table(self, name: str) -> bool:
            raise OperationalError("SELECT name FROM sqlite_master", {}, Exception("denied"))

    monkeypatch.setattr(reuse_metadata, "inspect", lambda engine: _DeniedInspector())

    with pytest.raises(OperationalError):
        store.read()
    with pytest.raises(OperationalError):
        store.is_clean(
            build_checksum="b" * 64,
            scenario_checksum="s" * 64,
            project_name="blog",
            mechanism="transaction",
            verify=False,
        )
