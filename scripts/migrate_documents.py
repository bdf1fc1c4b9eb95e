#!/usr/bin/env python
"""
Legacy Document Migration

Converts the flat ``documents`` table into document groups and versions.
Rows sharing (project_id, original_filename) become versions of one group, in
upload order. Storage objects are not copied or moved.

Usage:
    # Migrate (safe to re-run; groups that already exist are skipped)
    python scripts/migrate_documents.py

    # Compare row counts
    python scripts/migrate_documents.py --verify

    # Delete all groups and versions (legacy table untouched)
    python scripts/migrate_documents.py --rollback --confirm

Environment:
    DATABASE_URL: PostgreSQL connection string
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.pixelforge.modules.documents.migration import (  # noqa: E402
    MigrationCounts,
    migrate_legacy_documents,
    rollback_migration,
    verify_migration,
)
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402


def print_counts(counts: MigrationCounts) -> None:
    print(f"Legacy documents:  {counts.legacy_documents}")
    print(f"Document versions: {counts.document_versions}")
    print(f"Document groups:   {counts.document_groups}")


def run_migration(db_url: str) -> int:
    print("Starting legacy document migration...")
    with script_session(db_url) as s:
        result = migrate_legacy_documents(s)

    print(f"\nMigrated documents: {result.migrated_count}")
    print(f"Skipped documents:  {result.skipped_count}")
    print(f"Groups created:     {result.groups_created}")
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for err in result.errors:
            print(f"  - {err}")
        print("\nMigration finished with errors.")
        return 1
    print("\nMigration completed successfully.")
    return 0


def run_verify(db_url: str) -> int:
    with script_session(db_url) as s:
        counts = verify_migration(s)
    print_counts(counts)
    if counts.legacy_documents == counts.document_versions:
        print("\nCounts match.")
        return 0
    print("\nWARNING: counts differ. Re-run the migration or inspect the errors above.")
    return 1


def run_rollback(db_url: str) -> int:
    with script_session(db_url) as s:
        before = rollback_migration(s)
    print(f"Deleted {before.document_versions} versions and {before.document_groups} groups.")
    print(f"Legacy documents kept: {before.legacy_documents}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Migrate legacy documents into versioned document groups")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--verify", action="store_true", help="Print legacy vs versioned row counts")
    mode.add_argument("--rollback", action="store_true", help="Delete all document groups and versions")
    parser.add_argument("--confirm", action="store_true", help="Required with --rollback")
    parser.add_argument("--database-url", default=None, help="Overrides DATABASE_URL")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    db_url = resolve_db_url(args.database_url)

    if args.verify:
        return run_verify(db_url)
    if args.rollback:
        if not args.confirm:
            print("ERROR: --rollback deletes every document group and version. Re-run with --confirm.")
            return 1
        return run_rollback(db_url)
    return run_migration(db_url)


if __name__ == "__main__":
    sys.exit(main())
