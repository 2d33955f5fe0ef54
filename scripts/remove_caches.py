"""Remove snapshots and test databases for a configured connection."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from apps.api.app.core.config import get_settings
from apps.api.app.services.cache_inventory import cache_scope, remove_caches


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--connection", default=None, help="Connection name from settings.")
    parser.add_argument(
        "--stale",
        action="store_true",
        help="Only remove caches built from outdated inputs and past the grace period.",
    )
    args = parser.parse_args()

    scope = cache_scope(get_settings(), args.connection)
    try:
        removal = remove_caches(
            scope.store, scope.adapter, scope.spec, scope.checksums, stale_only=args.stale
        )
    finally:
        scope.adapter.dispose()

    print(
        json.dumps(
            {"removed_snapshots": removal.snapshots, "removed_databases": removal.databases},
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
