import sqlite3
import logging
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from data_paths import resolve_database_file


def get_db_connection(database_file: Optional[Path] = None):
    """Establishes a connection to the SQLite database."""
    target = database_file if database_file is not None else resolve_database_file()
    conn = sqlite3.connect(str(target), timeout=30.0, isolation_level='DEFERRED')
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
    except sqlite3.Error as e:
        logger.warning(f"Could not set PRAGMA settings: {e}")
    conn.row_factory = sqlite3.Row
    return conn


def _table_columns(cursor: sqlite3.Cursor, table_name: str) -> set:
    cursor.execute(f"PRAGMA table_info({table_name})")
    return {row[1] for row in cursor.fetchall()}


def _create_updated_at_trigger(cursor: sqlite3.Cursor, table_name: str) -> None:
    cursor.execute(
        f"""
        CREATE TRIGGER IF NOT EXISTS update_{table_name}_updated_at
        AFTER UPDATE ON {table_name}
        FOR EACH ROW
        BEGIN
            UPDATE {table_name} SET updated_at = CURRENT_TIMESTAMP WHERE id = OLD.id;
        END;
        """
    )


def _ensure_project_metadata_schema(cursor: sqlite3.Cursor) -> None:
    """Create ``project_metadata`` or backfill columns added after the first release."""
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS project_metadata (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            title TEXT,
            description TEXT,
            current_tab TEXT DEFAULT 'plan',
            instructor_instructions TEXT,
            plan_outline TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (activity_id, user_id)
        );
        """
    )
    columns = _table_columns(cursor, "project_metadata")
    if 'plan_outline' not in columns:
        cursor.execute("ALTER TABLE project_metadata ADD COLUMN plan_outline TEXT")
    _create_updated_at_trigger(cursor, "project_metadata")


def _ensure_project_ideas_schema(cursor: sqlite3.Cursor) -> None:
    """Create ``project_ideas`` or backfill the ordering and legacy id columns."""
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS project_ideas (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            idea_id TEXT,
            content TEXT NOT NULL,
            location TEXT NOT NULL DEFAULT 'brainstorm',
            section_id TEXT,
            ai_generated INTEGER NOT NULL DEFAULT 0,
            position INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
    columns = _table_columns(cursor, "project_ideas")
    if 'idea_id' not in columns:
        cursor.execute("ALTER TABLE project_ideas ADD COLUMN idea_id TEXT")
    if 'position' not in columns:
        cursor.execute("ALTER TABLE project_ideas ADD COLUMN position INTEGER NOT NULL DEFAULT 0")
        cursor.execute("UPDATE project_ideas SET position = id")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_project_ideas_scope ON project_ideas(activity_id, user_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_project_ideas_location ON project_ideas(location)")
    _create_updated_at_trigger(cursor, "project_ideas")


def _ensure_project_content_schema(cursor: sqlite3.Cursor) -> None:
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS project_content (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            phase TEXT NOT NULL,
            content TEXT,
            word_count INTEGER DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (activity_id, user_id, phase)
        );
        """
    )
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_project_content_phase ON project_content(phase)")
    _create_updated_at_trigger(cursor, "project_content")


def _ensure_project_chat_schema(cursor: sqlite3.Cursor) -> None:
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS project_chat (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            role TEXT NOT NULL,
            content TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            position INTEGER NOT NULL DEFAULT 0,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )
    columns = _table_columns(cursor, "project_chat")
    if 'position' not in columns:
        cursor.execute("ALTER TABLE project_chat ADD COLUMN position INTEGER NOT NULL DEFAULT 0")
        cursor.execute("UPDATE project_chat SET position = id")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_project_chat_scope ON project_chat(activity_id, user_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_project_chat_timestamp ON project_chat(timestamp)")


def create_schema(conn: sqlite3.Connection) -> None:
    """Create every table on *conn* without committing."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS activities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
    """)

    # Legacy JSON blobs; the migration only ever reads from this table.
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS project_work (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            activity_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            content TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (activity_id, user_id)
        );
    """)

    _ensure_project_metadata_schema(cursor)
    _ensure_project_ideas_schema(cursor)
    _ensure_project_content_schema(cursor)
    _ensure_project_chat_schema(cursor)


def init_db(conn: Optional[sqlite3.Connection] = None):
    """Initializes the database schema."""
    owns_connection = conn is None
    if owns_connection:
        conn = get_db_connection()
    try:
        create_schema(conn)
        conn.commit()
    finally:
        if owns_connection:
            conn.close()
    logger.info("Database initialized.")


if __name__ == '__main__':
    init_db()
