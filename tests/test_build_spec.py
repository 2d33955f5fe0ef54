from pathlib import Path

import pytest

from apps.api.app.services.adapters import adapter_for_connection
from apps.api.app.services.build_spec import (
    BuildRequest,
    BuildSpec,
    driver_for_url,
    parse_snapshot_policy,
)
from apps.api.app.services.errors import RemoteShareError


def test_snapshot_policy_parsing() -> None:
    assert parse_snapshot_policy("after_migrations") == (None, "after_migrations")
    assert parse_snapshot_policy("!both") == ("both", "both")
    assert parse_snapshot_policy("sometimes") == (None, None)
    assert parse_snapshot_policy(None) == (None, None)
    assert parse_snapshot_policy(False) == (None, None)


def test_driver_aliases_are_normalized() -> None:
    assert driver_for_url("mariadb+pymysql://root@localhost/app") == "mysql"
    assert driver_for_url("postgresql+psycopg://app@db/app") == "postgresql"
    assert driver_for_url("sqlite:///app.sqlite") == "sqlite"


def _spec(make_settings, **request_fields) -> BuildSpec:
    settings = make_settings()
    adapter = adapter_for_connection(settings.default_connection, settings)
    return BuildRequest(**request_fields).resolve(settings, capabilities=adapter.capabilities)


def test_request_overrides_settings(make_settings) -> None:
    spec = _spec(make_settings, seeders=["authors"], reuse_transaction=False, scenarios=False)

    assert spec.seeders == ("authors",)
    assert spec.reuse_transaction is False
    assert spec.should_use_journal is False
    assert spec.reusing_db is False
    assert spec.using_scenarios is False


def test_unknown_connection_resolves_without_capabilities(make_settings) -> None:
    spec = BuildRequest(connection="missing").resolve(make_settings())

    assert spec.connection_exists is False
    assert spec.reuse_strategy.mechanism == "none"
    assert spec.snapshot_type is None


def test_snapshot_type_depends_on_reuse(make_settings) -> None:
    reusing = _spec(make_settings, snapshots="after_seeders")
    important = _spec(make_settings, snapshots="!after_seeders")
    not_reusing = _spec(
        make_settings, snapshots="after_seeders", reuse_transaction=False, reuse_journal=False
    )

    assert reusing.snapshot_type is None
    assert important.snapshot_type == "after_seeders"
    assert not_reusing.snapshot_type == "after_seeders"


def test_seeders_need_migrations_or_imports(make_settings) -> None:
    spec = _spec(make_settings, seeders=["authors"], migrations=False)

    assert spec.seeders_to_include == []
    assert spec.migrations_dir is None


def test_without_seeders_the_only_snapshot_is_after_migrations(make_settings) -> None:
    spec = _spec(make_settings, snapshots="!after_seeders")

    assert spec.should_take_snapshot_after_migrations is True
    assert spec.should_take_snapshot_after_seeders is False


def test_both_snapshots_with_seeders(make_settings) -> None:
    spec = _spec(make_settings, snapshots="!both", seeders=["authors"])

    assert spec.should_take_snapshot_after_migrations is True
    assert spec.should_take_snapshot_after_seeders is True


def test_custom_migrations_path(make_settings, tmp_path: Path) -> None:
    spec = _spec(make_settings, migrations=str(tmp_path / "db"))

    assert spec.migrations_dir == tmp_path / "db"


def test_payload_survives_transport(make_settings) -> None:
    spec = _spec(make_settings, seeders=["authors", "posts"], test_name="test_feed")

    assert BuildSpec.from_payload(spec.to_payload()) == spec


def test_payload_version_mismatch_is_rejected(make_settings) -> None:
    payload = _spec(make_settings).to_payload().replace('"spec_version":1', '"spec_version":2')

    with pytest.raises(RemoteShareError, match="version does not match"):
        BuildSpec.from_payload(payload)


def test_unreadable_payload_is_rejected() -> None:
    with pytest.raises(RemoteShareError):
        BuildSpec.from_payload("{not json")
    with pytest.raises(RemoteShareError):
        BuildSpec.from_payload('{"spec_version": 1}')


def test_for_remote_only_forces_rebuild_when_asked(make_settings) -> None:
    spec = _spec(make_settings)

    kept = spec.for_remote(force_rebuild=False, pre_calculated_build_checksum="abc")
    forced = spec.for_remote(force_rebuild=True, pre_calculated_build_checksum=None)

    assert kept.force_rebuild is False
    assert kept.pre_calculated_build_checksum == "abc"
    assert forced.force_rebuild is True
