"""Process-lifetime memoization shared by builders in one test run."""

from __future__ import annotations

from apps.api.app.services.resolved_settings import ResolvedSettings, VersionInfo


class BuildCaches:
    """Pure memoization: dropping any entry only costs time."""

    def __init__(self) -> None:
        self.resolved_settings: dict[str, ResolvedSettings] = {}
        self.remote_build_checksums: dict[str, str] = {}
        self.versions: dict[tuple[str, str], VersionInfo] = {}

    def remember_remote_build(self, remote_url: str, resolved: ResolvedSettings) -> None:
        if resolved.build_checksum:
            self.remote_build_checksums[remote_url] = resolved.build_checksum
        if resolved.scenario_checksum:
            self.resolved_settings[resolved.scenario_checksum] = resolved

    def clear(self) -> None:
        self.resolved_settings.clear()
        self.remote_build_checksums.clear()
        self.versions.clear()
