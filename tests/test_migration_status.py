import json
import sqlite3

import pytest

from database import create_schema, get_db_connection, init_db
from services import migration_status
from services.migration import DataMigrator
from services.migration_status import format_status_report, get_migration_status
from services.record_store import SqliteRecordStore

PROJECT = json.dumps(
    {
        "metadata": {"title": "Status"},
        "plan": {"ideas": [{"id": "i1", "content": "idea"}]},
        "write": {"content": "<p>body</p>", "wordCount": 1},
        "chatHistory": [{"role": "user", "content": "hi", "timestamp": "2025-01-27T10:30:00Z"}],
    }
)


def _seed(conn):
    conn.execute("INSERT INTO activities (id, name) VALUES (1, 'Essay')")
    conn.executemany(
        "INSERT INTO project_work (activity_id, user_id, content) VALUES (?, ?, ?)",
        [(1, 10, PROJECT), (1, 11, PROJECT), (2, 10, PROJECT)],
    )
    conn.commit()


@pytest.fixture()
def store():
    connection = sqlite3.connect(":memory:")
    connection.row_factory = sqlite3.Row
    create_schema(connection)
    connection.commit()
    yield SqliteRecordStore(connection)
    connection.close()


def test_status_of_empty_database(store):
    status = get_migration_status(store)

    assert status.old_records == 0
    assert status.new_metadata == 0
    assert status.migration_percentage == 0.0
    assert status.is_complete is True


def test_status_counts_progress_and_orphans(store):
    _seed(store.connection)
    migrator = DataMigrator(store)
    assert migrator.migrate(1, 10).success
    # Activity 2 does not exist, so everything it migrates is orphaned.
    assert migrator.migrate(2, 10).success

    status = get_migration_status(store)

    assert status.to_dict() == {
        "old_records": 3,
        "new_metadata": 2,
        "new_ideas": 2,
        "new_content": 2,
        "new_chat": 2,
        "orphaned_ideas": 1,
        "orphaned_content": 1,
        "orphaned_chat": 1,
        "missing_metadata": 1,
        "migration_percentage": 66.67,
        "is_complete": False,
    }


def test_status_complete_after_full_migration(store):
    store.connection.execute("INSERT INTO activities (id, name) VALUES (1, 'Essay')")
    store.connection.execute(
        "INSERT INTO project_work (activity_id, user_id, content) VALUES (1, 10, ?)",
        (PROJECT,),
    )
    store.connection.commit()
    assert DataMigrator(store).migrate(1, 10).success

    status = get_migration_status(store)

    assert status.migration_percentage == 100.0
    assert status.missing_metadata == 0
    assert status.is_complete is True


def test_format_status_report(store):
    _seed(store.connection)
    DataMigrator(store).migrate(1, 10)

    report = format_status_report(get_migration_status(store))

    assert report.startswith("Migration Status Report")
    assert "Records in old format (JSON blob): 3" in report
    assert "  Missing metadata: 2" in report
    assert "  Migrated: 1 / 3 (33.33%)" in report
    assert report.endswith("Migration Status: INCOMPLETE")


def test_cli_prints_json_report(tmp_path, capsys):
    db_file = tmp_path / "status.db"
    conn = get_db_connection(db_file)
    try:
        init_db(conn)
        _seed(conn)
    finally:
        conn.close()

    exit_code = migration_status.main(["--database", str(db_file), "--json"])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "Migration Status: INCOMPLETE" in out
    payload = json.loads(out[out.index("{"):])
    assert payload["old_records"] == 3
    assert payload["missing_metadata"] == 3
