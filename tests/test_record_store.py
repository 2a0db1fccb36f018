import sqlite3

import pytest

from database import create_schema
from services.record_store import SqliteRecordStore, TransactionError


@pytest.fixture()
def conn():
    connection = sqlite3.connect(":memory:")
    connection.row_factory = sqlite3.Row
    create_schema(connection)
    connection.commit()
    yield connection
    connection.close()


@pytest.fixture()
def store(conn):
    return SqliteRecordStore(conn)


def _add_idea(store, content, section_id=None, position=0):
    return store.insert_record(
        "project_ideas",
        {
            "activity_id": 1,
            "user_id": 2,
            "idea_id": content,
            "content": content,
            "section_id": section_id,
            "position": position,
        },
    )


def test_crud_operations_round_trip(store):
    first = _add_idea(store, "alpha", position=1)
    second = _add_idea(store, "beta", section_id="s1", position=0)

    assert store.get_record("project_ideas", {"idea_id": "alpha"})["id"] == first
    ordered = store.get_records("project_ideas", {"activity_id": 1}, order_by=("position", "id"))
    assert [row["content"] for row in ordered] == ["beta", "alpha"]
    assert [row["id"] for row in store.get_records("project_ideas", order_by=("id DESC",))] == [second, first]

    store.update_record("project_ideas", {"id": first, "content": "alpha v2"})
    assert store.get_record("project_ideas", {"id": first})["content"] == "alpha v2"

    assert store.count_records("project_ideas", {"section_id": None}) == 1
    assert store.delete_records("project_ideas", {"section_id": "s1"}) == 1
    assert store.count_records("project_ideas") == 1


def test_get_record_returns_none_when_nothing_matches(store):
    assert store.get_record("project_metadata", {"activity_id": 99, "user_id": 99}) is None


def test_update_record_requires_existing_id(store):
    with pytest.raises(ValueError):
        store.update_record("project_ideas", {"content": "missing id"})
    with pytest.raises(KeyError):
        store.update_record("project_ideas", {"id": 404, "content": "nobody home"})


def test_delete_records_requires_filters(store):
    with pytest.raises(ValueError):
        store.delete_records("project_ideas", {})


@pytest.mark.parametrize(
    "call",
    [
        lambda s: s.get_record("project_ideas; DROP TABLE activities", {}),
        lambda s: s.get_records("project_ideas", {"bad column": 1}),
        lambda s: s.get_records("project_ideas", order_by=("id sideways",)),
        lambda s: s.insert_record("project_ideas", {"content) VALUES (1); --": "x"}),
    ],
)
def test_unsafe_identifiers_are_rejected(store, call):
    with pytest.raises(ValueError):
        call(store)


def test_count_records_sql_handles_empty_results(store):
    assert store.count_records_sql("SELECT MAX(id) FROM project_chat") == 0
    _add_idea(store, "gamma")
    assert store.count_records_sql("SELECT COUNT(*) FROM project_ideas WHERE content = ?", ["gamma"]) == 1


def test_commit_persists_changes(conn, store):
    transaction = store.start_transaction()
    _add_idea(store, "kept")
    transaction.allow_commit()

    assert not conn.in_transaction
    assert store.count_records("project_ideas") == 1
    with pytest.raises(TransactionError):
        transaction.allow_commit()


def test_nested_transactions_are_rejected(store):
    transaction = store.start_transaction()
    with pytest.raises(TransactionError):
        store.start_transaction()
    transaction.allow_commit()

    # Once finished a new transaction can be started.
    store.start_transaction().allow_commit()


def test_uncommitted_connection_blocks_new_transaction(conn, store):
    conn.execute("INSERT INTO activities (name) VALUES ('pending')")
    with pytest.raises(TransactionError):
        store.start_transaction()
    conn.rollback()


def test_rollback_discards_writes_and_reraises(store):
    transaction = store.start_transaction()
    _add_idea(store, "discarded")

    with pytest.raises(RuntimeError, match="boom"):
        transaction.rollback(RuntimeError("boom"))

    assert store.count_records("project_ideas") == 0
    assert not transaction.is_active


def test_context_manager_rolls_back_without_commit(store):
    with pytest.raises(sqlite3.IntegrityError):
        with store.start_transaction():
            _add_idea(store, "partial")
            store.insert_record("project_ideas", {"activity_id": 1, "user_id": 2, "content": None})

    assert store.count_records("project_ideas") == 0

    with store.start_transaction():
        _add_idea(store, "forgotten")
    assert store.count_records("project_ideas") == 0


def test_get_records_limit(store):
    for position in range(4):
        _add_idea(store, f"idea {position}", position=position)

    newest = store.get_records("project_ideas", order_by=("position DESC",), limit=2)

    assert [row["content"] for row in newest] == ["idea 3", "idea 2"]
