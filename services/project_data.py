"""Read and write projects stored in the normalised tables."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from services.migration import (
    CHAT_TABLE,
    CONTENT_TABLE,
    IDEAS_TABLE,
    METADATA_TABLE,
    Scope,
    write_project,
)
from services.project_parser import CONTENT_PHASES, DEFAULT_TAB, ProjectDataParser
from services.record_store import RecordStore

LOGGER = logging.getLogger(__name__)


def _decode_outline(raw: Optional[str]) -> List[Any]:
    if not raw:
        return []
    try:
        outline = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring undecodable plan outline")
        return []
    return outline if isinstance(outline, list) else []


class ProjectDataManager:
    """Facade used by the API to load and save normalised projects.

    Projects are exchanged in the legacy camelCase shape so that clients
    written against the JSON blob keep working unchanged.
    """

    def __init__(self, store: RecordStore, parser: Optional[ProjectDataParser] = None) -> None:
        self.store = store
        self.parser = parser or ProjectDataParser()

    def is_migrated(self, activity_id: int, user_id: int) -> bool:
        return self.store.get_record(METADATA_TABLE, Scope(activity_id, user_id).as_filter()) is not None

    def load_project(self, activity_id: int, user_id: int) -> Dict[str, Any]:
        scope = Scope(activity_id, user_id).as_filter()
        metadata = self.store.get_record(METADATA_TABLE, scope) or {}
        ideas = self.store.get_records(IDEAS_TABLE, scope, order_by=("position", "id"))
        content = {
            row["phase"]: row for row in self.store.get_records(CONTENT_TABLE, scope)
        }
        chat = self.store.get_records(CHAT_TABLE, scope, order_by=("position", "id"))

        project: Dict[str, Any] = {
            "metadata": {
                "title": metadata.get("title") or "",
                "description": metadata.get("description") or "",
                "currentTab": metadata.get("current_tab") or DEFAULT_TAB,
                "instructorInstructions": metadata.get("instructor_instructions") or "",
            },
            "plan": {
                "ideas": [
                    {
                        "id": idea.get("idea_id") or str(idea["id"]),
                        "content": idea["content"],
                        "location": idea["location"],
                        "sectionId": idea.get("section_id"),
                        "aiGenerated": bool(idea.get("ai_generated")),
                    }
                    for idea in ideas
                ],
                "outline": _decode_outline(metadata.get("plan_outline")),
            },
            "chatHistory": [
                {
                    "role": message["role"],
                    "content": message["content"],
                    "timestamp": message["timestamp"],
                }
                for message in chat
            ],
        }
        for phase in CONTENT_PHASES:
            row = content.get(phase)
            project[phase] = {
                "content": row["content"] if row and row.get("content") else "",
                "wordCount": int(row["word_count"] or 0) if row else 0,
            }
        return project

    def load_chat_history(
        self, activity_id: int, user_id: int, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Return chat messages only, oldest first.

        With a positive *limit* only the most recent *limit* messages are
        returned.
        """

        scope = Scope(activity_id, user_id).as_filter()
        if limit is not None and limit > 0:
            rows = self.store.get_records(CHAT_TABLE, scope, order_by=("position DESC", "id DESC"), limit=limit)
            rows.reverse()
        else:
            rows = self.store.get_records(CHAT_TABLE, scope, order_by=("position", "id"))
        return [
            {
                "id": row["id"],
                "role": row["role"],
                "content": row["content"],
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    def delete_idea(self, activity_id: int, user_id: int, idea_id: Any) -> bool:
        """Delete one idea in scope by the id ``load_project`` reported for it."""
        if idea_id is None or idea_id == "":
            return False
        scope = Scope(activity_id, user_id).as_filter()
        with self.store.start_transaction() as transaction:
            deleted = self.store.delete_records(IDEAS_TABLE, {**scope, "idea_id": str(idea_id)})
            if not deleted and str(idea_id).isdigit():
                # Rows written before idea_id existed are addressed by row id.
                deleted = self.store.delete_records(
                    IDEAS_TABLE, {**scope, "id": int(idea_id), "idea_id": None}
                )
            transaction.allow_commit()
        return deleted > 0

    def save_project(self, activity_id: int, user_id: int, project_data: Any) -> Dict[str, int]:
        """Parse *project_data* and write it in one transaction.

        Raises :class:`~services.project_parser.InvalidJsonData` for a
        non-object payload.  Store errors roll the transaction back and
        propagate.
        """

        parsed = self.parser.parse(project_data)
        with self.store.start_transaction() as transaction:
            counts = write_project(self.store, Scope(activity_id, user_id), parsed)
            transaction.allow_commit()
        LOGGER.info("Saved project for activity %s user %s", activity_id, user_id)
        return counts


__all__ = ["ProjectDataManager"]
