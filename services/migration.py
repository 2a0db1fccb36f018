"""Migrate legacy project blobs into the normalised project tables.

Each ``(activity_id, user_id)`` pair owns one JSON blob in ``project_work``.
:class:`DataMigrator` decodes and parses that blob and writes the resulting
record groups inside a single transaction, so a pair is either migrated
completely or not at all.  The legacy row itself is never modified, which
keeps :meth:`DataMigrator.rollback` followed by another
:meth:`DataMigrator.migrate` a safe way to redo a migration.

The record groups are written with different policies on purpose.  Ideas and
chat messages have no stable natural key and are replaced wholesale, while
metadata and per-phase content are upserted by their natural key.
"""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv

from database import get_db_connection, init_db
from services.project_parser import DEFAULT_TAB, ParsedProject, ProjectDataParser
from services.record_store import RecordStore, SqliteRecordStore

LOGGER = logging.getLogger(__name__)

WORK_TABLE = "project_work"
METADATA_TABLE = "project_metadata"
IDEAS_TABLE = "project_ideas"
CONTENT_TABLE = "project_content"
CHAT_TABLE = "project_chat"

NORMALISED_TABLES = (METADATA_TABLE, IDEAS_TABLE, CONTENT_TABLE, CHAT_TABLE)

NO_DATA_MESSAGE = "No data found"
INVALID_JSON_MESSAGE = "Invalid JSON data"
ROLLBACK_MESSAGE = "Rollback completed successfully"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MigrationResult:
    """Outcome of :meth:`DataMigrator.migrate` for one pair."""

    success: bool
    message: Optional[str] = None
    ideas_migrated: Optional[int] = None
    chat_messages_migrated: Optional[int] = None
    content_records_migrated: Optional[int] = None
    metadata_records_migrated: Optional[int] = None

    @classmethod
    def failure(cls, message: str) -> "MigrationResult":
        return cls(success=False, message=message)

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass(frozen=True)
class RollbackResult:
    success: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Scope:
    activity_id: int
    user_id: int

    def as_filter(self) -> Dict[str, int]:
        return {"activity_id": self.activity_id, "user_id": self.user_id}


# ---------------------------------------------------------------------------
# Write strategies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpsertByKey:
    """Update the row matching scope plus ``key_fields`` in place, else insert."""

    table: str
    key_fields: Tuple[str, ...] = ()

    def apply(self, store: RecordStore, scope: Scope, rows: Sequence[Mapping[str, Any]]) -> int:
        written = 0
        for row in rows:
            record = {**scope.as_filter(), **row}
            lookup = scope.as_filter()
            lookup.update({name: row[name] for name in self.key_fields})
            existing = store.get_record(self.table, lookup)
            if existing:
                record["id"] = existing["id"]
                store.update_record(self.table, record)
            else:
                store.insert_record(self.table, record)
            written += 1
        return written


@dataclass(frozen=True)
class ReplaceAll:
    """Delete every row in scope, then insert the full set in order."""

    table: str

    def apply(self, store: RecordStore, scope: Scope, rows: Sequence[Mapping[str, Any]]) -> int:
        store.delete_records(self.table, scope.as_filter())
        for row in rows:
            store.insert_record(self.table, {**scope.as_filter(), **row})
        return len(rows)


def _timestamp_text(value: Any) -> str:
    """Chat timestamps are stored as given; only non-strings are serialised."""
    return value if isinstance(value, str) else json.dumps(value)


def _metadata_rows(parsed: ParsedProject) -> List[Dict[str, Any]]:
    metadata = parsed.metadata
    return [
        {
            "title": metadata.get("title", ""),
            "description": metadata.get("description", ""),
            "current_tab": metadata.get("current_tab", DEFAULT_TAB),
            "instructor_instructions": metadata.get("instructor_instructions", ""),
            "plan_outline": json.dumps(parsed.outline),
        }
    ]


def _idea_rows(parsed: ParsedProject) -> List[Dict[str, Any]]:
    rows = []
    for position, idea in enumerate(parsed.ideas):
        section_id = idea.get("section_id")
        rows.append(
            {
                "idea_id": idea["id"],
                "content": idea["content"],
                "location": idea["location"],
                "section_id": str(section_id) if section_id is not None else None,
                "ai_generated": 1 if idea["ai_generated"] else 0,
                "position": position,
            }
        )
    return rows


def _content_rows(parsed: ParsedProject) -> List[Dict[str, Any]]:
    return [
        {
            "phase": phase,
            "content": data["content"],
            "word_count": data.get("word_count", 0),
        }
        for phase, data in parsed.content.items()
        if data.get("content")
    ]


def _chat_rows(parsed: ParsedProject) -> List[Dict[str, Any]]:
    return [
        {
            "role": message["role"],
            "content": message["content"],
            "timestamp": _timestamp_text(message["timestamp"]),
            "position": position,
        }
        for position, message in enumerate(parsed.chat)
    ]


RowBuilder = Callable[[ParsedProject], List[Dict[str, Any]]]

# Applied in this order inside one transaction.
WRITE_GROUPS: Tuple[Tuple[str, Any, RowBuilder], ...] = (
    ("metadata", UpsertByKey(METADATA_TABLE), _metadata_rows),
    ("ideas", ReplaceAll(IDEAS_TABLE), _idea_rows),
    ("content", UpsertByKey(CONTENT_TABLE, ("phase",)), _content_rows),
    ("chat", ReplaceAll(CHAT_TABLE), _chat_rows),
)


def write_project(store: RecordStore, scope: Scope, parsed: ParsedProject) -> Dict[str, int]:
    """Write every record group for *scope*; the caller owns the transaction."""
    counts: Dict[str, int] = {}
    for group, strategy, build_rows in WRITE_GROUPS:
        counts[group] = strategy.apply(store, scope, build_rows(parsed))
        LOGGER.debug("Wrote %s %s row(s) for %s", counts[group], group, scope)
    return counts


# ---------------------------------------------------------------------------
# Migrator
# ---------------------------------------------------------------------------


class DataMigrator:
    """Moves one pair's legacy blob into the normalised tables."""

    def __init__(self, store: RecordStore, parser: Optional[ProjectDataParser] = None) -> None:
        self.store = store
        self.parser = parser or ProjectDataParser()

    def migrate(self, activity_id: int, user_id: int) -> MigrationResult:
        scope = Scope(activity_id, user_id)
        try:
            record = self.store.get_record(WORK_TABLE, scope.as_filter())
            if not record:
                return MigrationResult.failure(NO_DATA_MESSAGE)

            try:
                json_data = json.loads(record.get("content") or "null")
            except (TypeError, ValueError):
                json_data = None
            if not json_data:
                return MigrationResult.failure(INVALID_JSON_MESSAGE)

            parsed = self.parser.parse(json_data)

            transaction = self.store.start_transaction()
            try:
                write_project(self.store, scope, parsed)
                transaction.allow_commit()
            except Exception as exc:
                transaction.rollback(exc)

            LOGGER.info(
                "Migrated activity %s user %s: %s idea(s), %s chat message(s), %s content record(s)",
                activity_id,
                user_id,
                len(parsed.ideas),
                len(parsed.chat),
                len(parsed.content),
            )
            return MigrationResult(
                success=True,
                ideas_migrated=len(parsed.ideas),
                chat_messages_migrated=len(parsed.chat),
                content_records_migrated=len(parsed.content),
                metadata_records_migrated=1,
            )
        except Exception as exc:
            LOGGER.warning("Migration failed for activity %s user %s: %s", activity_id, user_id, exc)
            return MigrationResult.failure(str(exc))

    def rollback(self, activity_id: int, user_id: int) -> RollbackResult:
        scope = Scope(activity_id, user_id)
        try:
            transaction = self.store.start_transaction()
            try:
                for table in NORMALISED_TABLES:
                    self.store.delete_records(table, scope.as_filter())
                transaction.allow_commit()
            except Exception as exc:
                transaction.rollback(exc)
            LOGGER.info("Rolled back migration for activity %s user %s", activity_id, user_id)
            return RollbackResult(success=True, message=ROLLBACK_MESSAGE)
        except Exception as exc:
            LOGGER.warning("Rollback failed for activity %s user %s: %s", activity_id, user_id, exc)
            return RollbackResult(success=False, message=str(exc))


# ---------------------------------------------------------------------------
# Batch migration
# ---------------------------------------------------------------------------


@dataclass
class BatchMigrationReport:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    dry_run: bool = False
    errors: List[str] = field(default_factory=list)
    results: List[Tuple[int, int, MigrationResult]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def migrate_batch(
    store: RecordStore,
    migrator: Optional[DataMigrator] = None,
    *,
    activity_id: Optional[int] = None,
    user_id: Optional[int] = None,
    batch_size: int = 100,
    dry_run: bool = False,
    progress: Optional[Callable[[str], None]] = None,
) -> BatchMigrationReport:
    """Migrate every legacy blob matching the optional filters.

    One pair failing never stops the batch; the failure is recorded in the
    report instead.  With ``dry_run`` nothing is written and every pair is
    counted as a success.
    """

    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    migrator = migrator or DataMigrator(store)
    emit = progress or (lambda _line: None)

    filters: Dict[str, Any] = {}
    if user_id is not None:
        filters["user_id"] = user_id
    if activity_id is not None:
        filters["activity_id"] = activity_id
    records = store.get_records(WORK_TABLE, filters, order_by=("id",))

    report = BatchMigrationReport(total=len(records), dry_run=dry_run)
    emit(f"Found {len(records)} records to migrate")

    for batch in _chunks(records, batch_size):
        emit(f"Processing batch of {len(batch)} records...")
        for record in batch:
            pair_activity, pair_user = record["activity_id"], record["user_id"]
            if dry_run:
                emit(f"Would migrate: User {pair_user}, Activity {pair_activity}")
                report.succeeded += 1
                continue

            result = migrator.migrate(pair_activity, pair_user)
            report.results.append((pair_activity, pair_user, result))
            if result.success:
                report.succeeded += 1
                emit(f"Migrated: User {pair_user}, Activity {pair_activity}")
                emit(f"  - Ideas: {result.ideas_migrated}")
                emit(f"  - Chat messages: {result.chat_messages_migrated}")
                emit(f"  - Content records: {result.content_records_migrated}")
            else:
                report.failed += 1
                report.errors.append(
                    f"User {pair_user}, Activity {pair_activity}: {result.message}"
                )
                emit(f"Failed: User {pair_user}, Activity {pair_activity}")
                emit(f"  Error: {result.message}")
        emit(f"Batch complete. Success: {report.succeeded}, Errors: {report.failed}")

    return report


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry-point used by ``migrate_data.py``."""

    load_dotenv()

    parser = argparse.ArgumentParser(description="Migrate legacy project blobs into the normalised tables.")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be migrated without writing")
    parser.add_argument("--batch-size", type=int, default=100, help="Process N records at a time (default: 100)")
    parser.add_argument("--user-id", type=int, default=None, help="Migrate only this user")
    parser.add_argument("--activity-id", type=int, default=None, help="Migrate only this activity")
    parser.add_argument("--database", type=Path, default=None, help="Path to the SQLite database")
    args = parser.parse_args(argv)

    if args.batch_size < 1:
        parser.error("--batch-size must be at least 1")

    conn = get_db_connection(args.database)
    try:
        init_db(conn)
        print("Starting data migration...")
        print(f"Dry run: {'YES' if args.dry_run else 'NO'}")
        print(f"Batch size: {args.batch_size}\n")

        report = migrate_batch(
            SqliteRecordStore(conn),
            activity_id=args.activity_id,
            user_id=args.user_id,
            batch_size=args.batch_size,
            dry_run=args.dry_run,
            progress=print,
        )
    finally:
        conn.close()

    print("\nMigration complete!")
    print(f"Total records processed: {report.processed}")
    print(f"Successful migrations: {report.succeeded}")
    print(f"Failed migrations: {report.failed}")
    if report.errors:
        print("\nErrors:")
        for error in report.errors:
            print(f"- {error}")
    if args.dry_run:
        print("\nThis was a dry run. No data was actually migrated.")
        print("Run without --dry-run to perform the actual migration.")
    return 0 if report.failed == 0 else 1


__all__ = [
    "BatchMigrationReport",
    "DataMigrator",
    "MigrationResult",
    "ReplaceAll",
    "RollbackResult",
    "Scope",
    "UpsertByKey",
    "WRITE_GROUPS",
    "migrate_batch",
    "write_project",
]


if __name__ == "__main__":  # pragma: no cover - CLI behavior
    raise SystemExit(main())
