"""Report how far the legacy blob migration has progressed."""
from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from dotenv import load_dotenv

from database import get_db_connection, init_db
from services.migration import (
    CHAT_TABLE,
    CONTENT_TABLE,
    IDEAS_TABLE,
    METADATA_TABLE,
    WORK_TABLE,
)
from services.record_store import RecordStore, SqliteRecordStore

LOGGER = logging.getLogger(__name__)

ACTIVITIES_TABLE = "activities"


@dataclass(frozen=True)
class MigrationStatus:
    old_records: int
    new_metadata: int
    new_ideas: int
    new_content: int
    new_chat: int
    orphaned_ideas: int
    orphaned_content: int
    orphaned_chat: int
    missing_metadata: int
    migration_percentage: float
    is_complete: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _count_orphans(store: RecordStore, table: str) -> int:
    """Count rows in *table* whose activity no longer exists."""
    return store.count_records_sql(
        f"""
        SELECT COUNT(*) FROM {table} t
        LEFT JOIN {ACTIVITIES_TABLE} a ON t.activity_id = a.id
        WHERE a.id IS NULL
        """
    )


def get_migration_status(store: RecordStore) -> MigrationStatus:
    old_records = store.count_records(WORK_TABLE)
    new_metadata = store.count_records(METADATA_TABLE)

    orphaned_ideas = _count_orphans(store, IDEAS_TABLE)
    orphaned_content = _count_orphans(store, CONTENT_TABLE)
    orphaned_chat = _count_orphans(store, CHAT_TABLE)
    missing_metadata = store.count_records_sql(
        f"""
        SELECT COUNT(*) FROM {WORK_TABLE} w
        LEFT JOIN {METADATA_TABLE} m
            ON w.activity_id = m.activity_id AND w.user_id = m.user_id
        WHERE m.id IS NULL
        """
    )

    percentage = round(new_metadata / old_records * 100, 2) if old_records > 0 else 0.0
    is_complete = (
        missing_metadata == 0
        and orphaned_ideas == 0
        and orphaned_content == 0
        and orphaned_chat == 0
    )

    return MigrationStatus(
        old_records=old_records,
        new_metadata=new_metadata,
        new_ideas=store.count_records(IDEAS_TABLE),
        new_content=store.count_records(CONTENT_TABLE),
        new_chat=store.count_records(CHAT_TABLE),
        orphaned_ideas=orphaned_ideas,
        orphaned_content=orphaned_content,
        orphaned_chat=orphaned_chat,
        missing_metadata=missing_metadata,
        migration_percentage=percentage,
        is_complete=is_complete,
    )


def format_status_report(status: MigrationStatus) -> str:
    lines = [
        "Migration Status Report",
        "======================",
        "",
        f"Records in old format (JSON blob): {status.old_records}",
        "Records in new format:",
        f"  Metadata: {status.new_metadata}",
        f"  Ideas: {status.new_ideas}",
        f"  Content: {status.new_content}",
        f"  Chat: {status.new_chat}",
        "",
        "Data Integrity Checks:",
        f"  Orphaned ideas: {status.orphaned_ideas}",
        f"  Orphaned content: {status.orphaned_content}",
        f"  Orphaned chat: {status.orphaned_chat}",
        f"  Missing metadata: {status.missing_metadata}",
        "",
        "Migration Progress:",
        f"  Migrated: {status.new_metadata} / {status.old_records} ({status.migration_percentage}%)",
        "",
        f"Migration Status: {'COMPLETE' if status.is_complete else 'INCOMPLETE'}",
    ]
    return "\n".join(lines)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry-point used by ``check_migration_status.py``."""

    load_dotenv()

    parser = argparse.ArgumentParser(description="Report the legacy project migration status.")
    parser.add_argument("--json", action="store_true", help="Also print the report as JSON")
    parser.add_argument("--database", type=Path, default=None, help="Path to the SQLite database")
    args = parser.parse_args(argv)

    conn = get_db_connection(args.database)
    try:
        init_db(conn)
        status = get_migration_status(SqliteRecordStore(conn))
    finally:
        conn.close()

    print(format_status_report(status))
    if args.json:
        print()
        print(json.dumps(status.to_dict(), indent=4))
    return 0


__all__ = ["MigrationStatus", "format_status_report", "get_migration_status"]


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
