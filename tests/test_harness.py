import json
from pathlib import Path

from sqlalchemy import text

from apps.api.app.services.build_caches import BuildCaches
from apps.api.app.services.build_spec import BuildRequest
from dbprep.harness import prepared_database


def test_parallel_workers_get_their_own_database(
    make_settings, monkeypatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("PYTEST_XDIST_WORKER", "gw3")
    settings = make_settings(scenarios=False)

    with prepared_database(BuildRequest(), caches=BuildCaches(), settings=settings) as db:
        assert db.resolved.database == str(tmp_path / "test_app-gw3.sqlite")
        assert db.resolved.is_parallel_test is True


def test_explicit_modifier_wins_over_worker_id(make_settings, monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PYTEST_XDIST_WORKER", "gw3")
    settings = make_settings(scenarios=False)

    with prepared_database(
        BuildRequest(database_modifier=""), caches=BuildCaches(), settings=settings
    ) as db:
        assert db.resolved.database == str(tmp_path / "test_app.sqlite")
        assert db.resolved.is_parallel_test is False


def test_bind_is_the_transaction_connection_when_reusing(make_settings) -> None:
    settings = make_settings()

    with prepared_database(BuildRequest(), caches=BuildCaches(), settings=settings) as db:
        assert db.bind is db.connection
        assert db.bind.execute(text("SELECT COUNT(*) FROM author")).scalar_one() == 0

    settings = make_settings(reuse_transaction=False)
    with prepared_database(BuildRequest(), caches=BuildCaches(), settings=settings) as db:
        assert db.bind is db.engine


def test_settings_default_to_the_environment(
    monkeypatch, tmp_path: Path, migrations_dir: Path
) -> None:
    connections = json.dumps({"default": f"sqlite:///{tmp_path / 'env.sqlite'}"})
    monkeypatch.setenv("DBPREP_CONNECTIONS", connections)
    monkeypatch.setenv("DBPREP_STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setenv("DBPREP_DEFAULT_MIGRATIONS_PATH", str(migrations_dir))

    with prepared_database(caches=BuildCaches()) as db:
        assert Path(db.resolved.database).parent == tmp_path / "storage" / "databases"
        assert db.resolved.database_was_reused is False
