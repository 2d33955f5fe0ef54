"""Record of what a build actually decided and used."""

from __future__ import annotations

from pydantic import BaseModel


class VersionInfo(BaseModel):
    driver: str
    server_version: str | None = None
    package_version: str | None = None


class ResolvedSettings(BaseModel):
    project_name: str | None = None
    test_name: str = ""
    connection: str
    driver: str
    host: str | None = None
    database: str
    storage_dir: str
    initial_imports: list[str] = []
    migrations: bool | str = True
    seeders: list[str] = []
    built_remotely: bool = False
    remote_build_url: str | None = None
    snapshot_type: str | None = None
    is_browser_test: bool = False
    is_parallel_test: bool = False
    using_transaction: bool = False
    using_journal: bool = False
    verify_database: bool = False
    force_rebuild: bool = False
    using_scenarios: bool = False
    build_checksum: str | None = None
    scenario_checksum: str | None = None
    snapshot_checksum: str | None = None
    database_existed_before: bool = False
    database_was_reused: bool = False
    preparation_seconds: float = 0.0
    versions: VersionInfo | None = None
    remote_versions: VersionInfo | None = None

    @property
    def is_reusable(self) -> bool:
        return self.using_transaction or self.using_journal
