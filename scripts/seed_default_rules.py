#!/usr/bin/env python3
"""Load the default rule pack into the configured database.

Usage:
    python scripts/seed_default_rules.py
    python scripts/seed_default_rules.py --database-url sqlite+pysqlite:///qualitygate.db
    python scripts/seed_default_rules.py --dry-run
"""
from __future__ import annotations

import argparse
import sys

# Ensure the project root is importable
sys.path.insert(0, str(__import__("pathlib").Path(__file__).resolve().parents[1]))

from qualitygate.config import Settings  # noqa: E402
from qualitygate.db import create_db_engine, create_session_factory, init_db  # noqa: E402
from qualitygate.default_rules import DEFAULT_RULES, seed_default_rules  # noqa: E402
from qualitygate.logging_config import configure_logging  # noqa: E402
from qualitygate.store import SqlStore  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the default QualityGate validation rules")
    parser.add_argument("--database-url", help="Overrides QUALITYGATE_DATABASE_URL")
    parser.add_argument("--dry-run", action="store_true", help="List the rules without writing them")
    args = parser.parse_args(argv)

    if args.dry_run:
        for rule in DEFAULT_RULES:
            print(f"{rule['domain']:<13} {rule['execution_kind']:<6} {rule['name']}")
        return 0

    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)
    engine = create_db_engine(args.database_url or settings.database_url)
    init_db(engine)
    store = SqlStore(engine, create_session_factory(engine))

    created = seed_default_rules(store)
    print(f"Seeded {len(created)} of {len(DEFAULT_RULES)} default rules")
    for rule in created:
        print(f"  {rule['domain']}/{rule['name']} v{rule['version']}  {rule['id']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
