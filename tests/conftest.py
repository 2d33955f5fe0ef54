from __future__ import annotations

import shutil
from collections.abc import Callable
from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Connection

from apps.api.app.core.config import Settings, get_settings

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()


@pytest.fixture
def seed_calls() -> list[str]:
    return []


@pytest.fixture
def seeder_registry(seed_calls: list[str]) -> dict[str, Callable[[Connection], None]]:
    def seed_authors(connection: Connection) -> None:
        seed_calls.append("authors")
        connection.execute(
            text("INSERT INTO author (name) VALUES (:name)"),
            [{"name": "Ada"}, {"name": "Grace"}],
        )

    def seed_posts(connection: Connection) -> None:
        seed_calls.append("posts")
        connection.execute(
            text("INSERT INTO post (author_id, title) VALUES (:author_id, :title)"),
            [{"author_id": 1, "title": "Notes"}, {"author_id": 2, "title": "Compilers"}],
        )

    return {"authors": seed_authors, "posts": seed_posts}


@pytest.fixture
def migrations_dir(tmp_path: Path) -> Path:
    target = tmp_path / "migrations"
    shutil.copytree(
        FIXTURES_DIR / "migrations", target, ignore=shutil.ignore_patterns("__pycache__")
    )
    return target


@pytest.fixture
def make_settings(tmp_path: Path, migrations_dir: Path) -> Callable[..., Settings]:
    def _make(**overrides: object) -> Settings:
        values: dict[str, object] = {
            "project_name": "blog",
            "connections": {"default": f"sqlite:///{tmp_path / 'app.sqlite'}"},
            "storage_dir": tmp_path / ".dbprep",
            "default_migrations_path": migrations_dir,
            "stale_grace_seconds": 60,
        }
        values.update(overrides)
        return Settings(**values)

    return _make
