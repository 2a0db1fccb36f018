import sqlite3

from database import (
    _ensure_project_chat_schema,
    _ensure_project_ideas_schema,
    _ensure_project_metadata_schema,
    create_schema,
    init_db,
)


def _columns(cursor, table):
    cursor.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


def _indexes(cursor, table):
    cursor.execute(f"PRAGMA index_list({table})")
    return {row[1] for row in cursor.fetchall()}


def test_ensure_project_ideas_schema_backfills_missing_columns():
    conn = sqlite3.connect(":memory:")
    cursor = conn.cursor()

    cursor.execute(
        """
        CREATE TABLE project_ideas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            location TEXT NOT NULL DEFAULT 'brainstorm',
            section_id TEXT,
            ai_generated INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
    cursor.executemany(
        "INSERT INTO project_ideas (activity_id, user_id, content) VALUES (?, ?, ?)",
        [(1, 2, "first"), (1, 2, "second")],
    )

    _ensure_project_ideas_schema(cursor)

    assert {"idea_id", "position"} <= _columns(cursor, "project_ideas")
    cursor.execute("SELECT content, position, idea_id FROM project_ideas ORDER BY id")
    assert [tuple(row) for row in cursor.fetchall()] == [("first", 1, None), ("second", 2, None)]
    assert {"idx_project_ideas_scope", "idx_project_ideas_location"} <= _indexes(cursor, "project_ideas")


def test_ensure_project_metadata_schema_adds_outline_column():
    conn = sqlite3.connect(":memory:")
    cursor = conn.cursor()

    cursor.execute(
        """
        CREATE TABLE project_metadata (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            title TEXT,
            description TEXT,
            current_tab TEXT DEFAULT 'plan',
            instructor_instructions TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
    cursor.execute(
        "INSERT INTO project_metadata (activity_id, user_id, title) VALUES (?, ?, ?)",
        (3, 4, "Essay"),
    )

    _ensure_project_metadata_schema(cursor)

    assert "plan_outline" in _columns(cursor, "project_metadata")
    cursor.execute("SELECT title, plan_outline FROM project_metadata")
    assert [tuple(row) for row in cursor.fetchall()] == [("Essay", None)]


def test_ensure_project_chat_schema_backfills_position():
    conn = sqlite3.connect(":memory:")
    cursor = conn.cursor()

    cursor.execute(
        """
        CREATE TABLE project_chat (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
    cursor.execute(
        "INSERT INTO project_chat (activity_id, user_id, role, content, timestamp) VALUES (?, ?, ?, ?, ?)",
        (1, 1, "user", "hi", "2025-01-27T10:30:00+00:00"),
    )

    _ensure_project_chat_schema(cursor)

    cursor.execute("SELECT position FROM project_chat")
    assert [row[0] for row in cursor.fetchall()] == [1]
    assert "idx_project_chat_scope" in _indexes(cursor, "project_chat")


def test_create_schema_is_idempotent():
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    conn.commit()
    create_schema(conn)
    conn.commit()

    cursor = conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    tables = {row[0] for row in cursor.fetchall()}
    assert {
        "activities",
        "project_work",
        "project_metadata",
        "project_ideas",
        "project_content",
        "project_chat",
    } <= tables


def test_updated_at_trigger_refreshes_timestamp():
    conn = sqlite3.connect(":memory:")
    create_schema(conn)
    conn.execute(
        "INSERT INTO project_content (activity_id, user_id, phase, content, updated_at) "
        "VALUES (1, 1, 'write', 'draft', '2000-01-01 00:00:00')"
    )
    conn.execute("UPDATE project_content SET content = 'revised' WHERE phase = 'write'")

    updated_at = conn.execute("SELECT updated_at FROM project_content").fetchone()[0]
    assert updated_at != '2000-01-01 00:00:00'


def test_init_db_uses_configured_database(tmp_path, monkeypatch):
    db_file = tmp_path / "configured.db"
    monkeypatch.setenv("RESEARCHFLOW_DATABASE", str(db_file))

    init_db()

    assert db_file.exists()
    conn = sqlite3.connect(str(db_file))
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert "project_metadata" in tables
