#!/usr/bin/env python3
"""
FocusLock - Main entry point.

    python . init                 # create home dirs and the database
    python . api                  # serve the REST + SSE API
    python . scheduler start      # scheduler only, push delivery only
    python . scheduler run-once
"""

import argparse
import sys
from pathlib import Path

# Ensure package is in path
sys.path.insert(0, str(Path(__file__).parent))

from focuslock import paths  # noqa: E402


def init() -> int:
    """Initialize the FocusLock home and database."""
    from focuslock.store import EnforcementStore

    print("═══════════════════════════════════════")
    print("  FocusLock - Setup")
    print("═══════════════════════════════════════")

    for d in (paths.data_dir(), paths.config_dir()):
        print(f"  ✓ {d}")

    print("\nInitializing database...")
    store = EnforcementStore()
    print(f"  ✓ {store.db_path}")

    print("\nChecking configuration...")
    config = paths.config_file()
    if config.exists():
        print(f"  ✓ {config}")
    else:
        print(f"  - {config} not present, using environment defaults")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="focuslock", description="FocusLock")
    parser.add_argument("command", choices=["init", "api", "scheduler"])
    args, rest = parser.parse_known_args(argv)

    if args.command == "init":
        return init()
    if args.command == "api":
        from focuslock_api.server import main as api_main

        api_main()
        return 0

    from focuslock.scheduler import main as scheduler_main

    return scheduler_main(rest)


if __name__ == "__main__":
    sys.exit(main())
