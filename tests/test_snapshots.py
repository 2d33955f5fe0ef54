import os
import time
from pathlib import Path

import pytest
from sqlalchemy import text

from apps.api.app.services.adapters import adapter_for_connection
from apps.api.app.services.adapters.sqlite import SQLiteAdapter
from apps.api.app.services.build_spec import BuildRequest
from apps.api.app.services.checksums import ChecksumEngine
from apps.api.app.services.errors import ConfigError
from apps.api.app.services.snapshots import SnapshotStore


def _store(settings, database: Path) -> tuple[SnapshotStore, SQLiteAdapter]:
    adapter = adapter_for_connection(settings.default_connection, settings)
    assert isinstance(adapter, SQLiteAdapter)
    spec = BuildRequest(seeders=["authors", "posts"], snapshots="!after_seeders").resolve(
        settings, capabilities=adapter.capabilities
    )
    store = SnapshotStore(spec, adapter, ChecksumEngine(spec), database=str(database))
    return store, adapter


def _author_names(adapter: SQLiteAdapter, database: Path) -> list[str]:
    with adapter.engine_for(str(database)).connect() as connection:
        return list(connection.execute(text("SELECT name FROM author ORDER BY id")).scalars())


def _create_authors(adapter: SQLiteAdapter, database: Path, *names: str) -> None:
    with adapter.engine_for(str(database)).begin() as connection:
        connection.exec_driver_sql("CREATE TABLE author (id INTEGER PRIMARY KEY, name TEXT)")
        for name in names:
            connection.execute(text("INSERT INTO author (name) VALUES (:name)"), {"name": name})


def test_take_and_restore_round_trip(make_settings, tmp_path: Path) -> None:
    database = tmp_path / "work.sqlite"
    store, adapter = _store(make_settings(), database)
    _create_authors(adapter, database, "Ada")

    path = store.take(["authors"])
    adapter.drop_database(str(database))

    assert path.parent == store.directory
    assert store.restore(path) is True
    assert _author_names(adapter, database) == ["Ada"]
    adapter.dispose()


def test_find_and_restore_falls_back_to_shorter_seeder_lists(
    make_settings, tmp_path: Path
) -> None:
    database = tmp_path / "work.sqlite"
    store, adapter = _store(make_settings(), database)
    _create_authors(adapter, database, "Ada")
    authors_snapshot = store.take(["authors"])
    adapter.drop_database(str(database))

    restored, left_to_run = store.find_and_restore(["authors", "posts"])

    assert restored == authors_snapshot
    assert left_to_run == ["posts"]
    assert _author_names(adapter, database) == ["Ada"]
    adapter.dispose()


def test_find_and_restore_reports_nothing_usable(make_settings, tmp_path: Path) -> None:
    store, adapter = _store(make_settings(), tmp_path / "work.sqlite")

    assert store.find_and_restore(["authors", "posts"]) == (None, ["authors", "posts"])
    adapter.dispose()


def test_restore_rejects_files_that_are_not_sqlite(make_settings, tmp_path: Path) -> None:
    store, adapter = _store(make_settings(), tmp_path / "work.sqlite")
    bogus = tmp_path / "bogus.sqlite"
    bogus.write_text("not a database")

    assert store.restore(bogus) is False


def test_purge_stale_respects_validity_and_grace(make_settings, tmp_path: Path) -> None:
    database = tmp_path / "work.sqlite"
    store, adapter = _store(make_settings(stale_grace_seconds=60), database)
    _create_authors(adapter, database)
    valid = store.take([])
    stale = store.directory / "snapshot.000000-aaaaaaaaaaaa.sqlite"
    recent = store.directory / "snapshot.000000-bbbbbbbbbbbb.sqlite"
    stale.write_bytes(b"old")
    recent.write_bytes(b"new")
    now = time.time()
    os.utime(stale, (now - 3600, now - 3600))
    os.utime(valid, (now - 3600, now - 3600))

    purged = store.purge_stale(now=now)

    assert [info.filename for info in purged] == [stale.name]
    assert valid.exists()
    assert recent.exists()
    assert not stale.exists()
    adapter.dispose()


def test_enumerate_describes_snapshots(make_settings, tmp_path: Path) -> None:
    database = tmp_path / "work.sqlite"
    store, adapter = _store(make_settings(), database)
    _create_authors(adapter, database)
    path = store.take(["authors"])
    (store.directory / "unrelated.txt").write_text("ignored")

    infos = list(store.enumerate())

    assert [info.path for info in infos] == [path]
    assert infos[0].is_valid is True
    assert infos[0].size() == path.stat().st_size
    adapter.dispose()


def test_storage_dir_that_is_a_file_is_a_config_error(make_settings, tmp_path: Path) -> None:
    storage = tmp_path / "storage"
    storage.write_text("oops")
    database = tmp_path / "work.sqlite"
    store, adapter = _store(make_settings(storage_dir=storage), database)
    _create_authors(adapter, database)

    with pytest.raises(ConfigError, match="storage_dir"):
        store.take([])
    adapter.dispose()
