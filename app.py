import os
import sqlite3

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from database import get_db_connection, init_db
from services.migration import DataMigrator
from services.migration_status import get_migration_status
from services.project_data import ProjectDataManager
from services.project_parser import InvalidJsonData
from services.record_store import SqliteRecordStore

# Load environment variables from .env file
load_dotenv()

# --- App Initialization ---
app = Flask(__name__)
app.json.sort_keys = False
app.secret_key = os.urandom(24)

_db_bootstrapped = False


@app.before_request
def _ensure_database_initialized():
    """Guarantee the SQLite schema exists before serving any request."""
    global _db_bootstrapped
    if _db_bootstrapped:
        return
    try:
        init_db()
        _db_bootstrapped = True
    except Exception as exc:  # pragma: no cover - defensive logging
        app.logger.exception("Failed to initialize database before request: %s", exc)


@app.route('/api/projects/<int:activity_id>/<int:user_id>', methods=['GET'])
def api_load_project(activity_id, user_id):
    conn = get_db_connection()
    try:
        manager = ProjectDataManager(SqliteRecordStore(conn))
        project = manager.load_project(activity_id, user_id)
        return jsonify({'project': project, 'migrated': manager.is_migrated(activity_id, user_id)})
    except sqlite3.Error as exc:
        app.logger.exception("Failed to load project %s/%s: %s", activity_id, user_id, exc)
        return jsonify({'status': 'error', 'message': 'Database error'}), 500
    finally:
        conn.close()


@app.route('/api/projects/<int:activity_id>/<int:user_id>', methods=['PUT'])
def api_save_project(activity_id, user_id):
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({'status': 'error', 'message': 'Request must be JSON'}), 400
    conn = get_db_connection()
    try:
        manager = ProjectDataManager(SqliteRecordStore(conn))
        counts = manager.save_project(activity_id, user_id, payload)
        return jsonify({'status': 'success', 'counts': counts})
    except InvalidJsonData as exc:
        return jsonify({'status': 'error', 'message': str(exc)}), 400
    except sqlite3.Error as exc:
        app.logger.exception("Failed to save project %s/%s: %s", activity_id, user_id, exc)
        return jsonify({'status': 'error', 'message': 'Database error'}), 500
    finally:
        conn.close()


@app.route('/api/projects/<int:activity_id>/<int:user_id>/chat', methods=['GET'])
def api_load_chat_history(activity_id, user_id):
    limit = request.args.get('limit', type=int)
    conn = get_db_connection()
    try:
        messages = ProjectDataManager(SqliteRecordStore(conn)).load_chat_history(activity_id, user_id, limit)
        return jsonify({'chatHistory': messages})
    except sqlite3.Error as exc:
        app.logger.exception("Failed to load chat for %s/%s: %s", activity_id, user_id, exc)
        return jsonify({'status': 'error', 'message': 'Database error'}), 500
    finally:
        conn.close()


@app.route('/api/projects/<int:activity_id>/<int:user_id>/ideas/<idea_id>', methods=['DELETE'])
def api_delete_idea(activity_id, user_id, idea_id):
    conn = get_db_connection()
    try:
        deleted = ProjectDataManager(SqliteRecordStore(conn)).delete_idea(activity_id, user_id, idea_id)
    except sqlite3.Error as exc:
        app.logger.exception("Failed to delete idea %s for %s/%s: %s", idea_id, activity_id, user_id, exc)
        return jsonify({'status': 'error', 'message': 'Database error'}), 500
    finally:
        conn.close()
    if not deleted:
        return jsonify({'status': 'error', 'message': 'Idea not found'}), 404
    return jsonify({'status': 'success'})


@app.route('/api/migrations/<int:activity_id>/<int:user_id>', methods=['POST'])
def api_migrate_project(activity_id, user_id):
    conn = get_db_connection()
    try:
        result = DataMigrator(SqliteRecordStore(conn)).migrate(activity_id, user_id)
    finally:
        conn.close()
    return jsonify(result.to_dict()), (200 if result.success else 400)


@app.route('/api/migrations/<int:activity_id>/<int:user_id>', methods=['DELETE'])
def api_rollback_migration(activity_id, user_id):
    conn = get_db_connection()
    try:
        result = DataMigrator(SqliteRecordStore(conn)).rollback(activity_id, user_id)
    finally:
        conn.close()
    return jsonify(result.to_dict()), (200 if result.success else 500)


@app.route('/api/migrations/status', methods=['GET'])
def api_migration_status():
    conn = get_db_connection()
    try:
        status = get_migration_status(SqliteRecordStore(conn))
        return jsonify(status.to_dict())
    except sqlite3.Error as exc:
        app.logger.exception("Failed to compute migration status: %s", exc)
        return jsonify({'status': 'error', 'message': 'Database error'}), 500
    finally:
        conn.close()


def main():
    port = int(os.getenv('RESEARCHFLOW_PORT', '5002'))
    init_db()
    app.run(host='127.0.0.1', port=port, debug=False)


if __name__ == '__main__':
    main()
