"""List snapshots and test databases for a configured connection."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from apps.api.app.core.config import get_settings
from apps.api.app.services.cache_inventory import cache_scope, list_databases, list_snapshots


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--connection", default=None, help="Connection name from settings.")
    args = parser.parse_args()

    scope = cache_scope(get_settings(), args.connection)
    try:
        snapshots = [
            {
                "filename": info.filename,
                "size": info.size(),
                "is_valid": info.is_valid,
                "should_purge": info.should_purge_now(),
            }
            for info in list_snapshots(scope.store)
        ]
        databases = [
            {
                "name": info.name,
                "is_valid": info.is_valid,
                "last_used": info.last_used.isoformat() if info.last_used else None,
                "should_purge": info.should_purge,
            }
            for info in list_databases(scope.adapter, scope.spec, scope.checksums)
        ]
    finally:
        scope.adapter.dispose()

    print(json.dumps({"snapshots": snapshots, "databases": databases}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
