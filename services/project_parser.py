"""Parse legacy ResearchFlow project blobs into normalised record groups.

Legacy projects were stored as a single free-form JSON document per activity
and user.  Older clients wrote whatever shape they had at the time, so the
parser is deliberately lenient: a malformed leaf value is replaced by its
documented default and an entry that lacks its identifying fields is dropped.
The only input that is rejected outright is a non-empty top-level value that
is not a JSON object.

The parser performs no I/O.  Apart from the default chat timestamp, which is
taken from an injectable clock, its output depends only on its input.
"""

from __future__ import annotations

import html
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

import bleach
import pytz

MAX_TEXT_LENGTH = 1000

VALID_TABS = ("plan", "write", "edit")
VALID_LOCATIONS = ("brainstorm", "outline")
VALID_ROLES = ("user", "assistant")
CONTENT_PHASES = ("write", "edit")

DEFAULT_TAB = "plan"
DEFAULT_LOCATION = "brainstorm"
DEFAULT_ROLE = "user"

LEADING_INTEGER_PATTERN = re.compile(r"^\s*([+-]?\d+)")


class InvalidJsonData(ValueError):
    """Raised when the top-level project payload is not a JSON object."""


@dataclass
class ParsedProject:
    """Normalised representation of a single legacy project blob."""

    metadata: Dict[str, str] = field(default_factory=dict)
    ideas: List[Dict[str, Any]] = field(default_factory=list)
    outline: List[Dict[str, Any]] = field(default_factory=list)
    content: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    chat: List[Dict[str, Any]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.metadata or self.ideas or self.outline or self.content or self.chat)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metadata": dict(self.metadata),
            "ideas": [dict(idea) for idea in self.ideas],
            "outline": [dict(section) for section in self.outline],
            "content": {phase: dict(data) for phase, data in self.content.items()},
            "chat": [dict(message) for message in self.chat],
        }


# ---------------------------------------------------------------------------
# Leaf helpers
# ---------------------------------------------------------------------------


def _is_missing(value: Any) -> bool:
    """Return ``True`` for absent, null or empty values.

    ``"0"`` counts as empty, matching how legacy clients treated it.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return value in ("", "0")
    if isinstance(value, (Mapping, list, tuple)):
        return len(value) == 0
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def sanitize_content(value: Any) -> str:
    """Strip markup, cap the length at ``MAX_TEXT_LENGTH`` and trim whitespace."""
    if _is_missing(value):
        return ""
    text = value if isinstance(value, str) else str(value)
    # A "<" that does not open a tag is kept as text.
    text = html.unescape(bleach.clean(text, tags=[], attributes={}, strip=True, strip_comments=True))
    if len(text) > MAX_TEXT_LENGTH:
        text = text[:MAX_TEXT_LENGTH]
    return text.strip()


def _validate_choice(value: Any, choices: tuple, default: str) -> str:
    if isinstance(value, str) and value in choices:
        return value
    return default


def validate_tab(value: Any) -> str:
    return _validate_choice(value, VALID_TABS, DEFAULT_TAB)


def validate_location(value: Any) -> str:
    return _validate_choice(value, VALID_LOCATIONS, DEFAULT_LOCATION)


def validate_role(value: Any) -> str:
    return _validate_choice(value, VALID_ROLES, DEFAULT_ROLE)


def coerce_word_count(value: Any) -> int:
    """Loosely cast *value* to a non-negative integer."""
    if isinstance(value, bool):
        count = int(value)
    elif isinstance(value, int):
        count = value
    elif isinstance(value, float):
        try:
            count = int(value)
        except (OverflowError, ValueError):
            count = 0
    elif isinstance(value, str):
        match = LEADING_INTEGER_PATTERN.match(value)
        count = int(match.group(1)) if match else 0
    else:
        count = 0
    return max(count, 0)


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _utc_now() -> datetime:
    return datetime.now(pytz.utc)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class ProjectDataParser:
    """Turns a decoded legacy blob into a :class:`ParsedProject`."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utc_now

    def parse(self, json_data: Any) -> ParsedProject:
        if _is_missing(json_data):
            return ParsedProject()

        if not isinstance(json_data, Mapping):
            raise InvalidJsonData("Invalid JSON data structure")

        plan = _as_mapping(json_data.get("plan"))
        return ParsedProject(
            metadata=self._parse_metadata(_as_mapping(json_data.get("metadata"))),
            ideas=self._parse_ideas(plan.get("ideas")),
            outline=self._parse_outline(plan.get("outline")),
            content=self._parse_content(
                _as_mapping(json_data.get("write")),
                _as_mapping(json_data.get("edit")),
            ),
            chat=self._parse_chat(json_data.get("chatHistory")),
        )

    def _parse_metadata(self, metadata: Mapping[str, Any]) -> Dict[str, str]:
        return {
            "title": sanitize_content(metadata.get("title")),
            "description": sanitize_content(metadata.get("description")),
            "current_tab": validate_tab(metadata.get("currentTab")),
            "instructor_instructions": sanitize_content(metadata.get("instructorInstructions")),
        }

    def _parse_ideas(self, ideas: Any) -> List[Dict[str, Any]]:
        parsed: List[Dict[str, Any]] = []
        for idea in _as_list(ideas):
            if not isinstance(idea, Mapping):
                continue
            if _is_missing(idea.get("id")) or _is_missing(idea.get("content")):
                continue
            parsed.append(
                {
                    "id": sanitize_content(idea["id"]),
                    "content": sanitize_content(idea["content"]),
                    "location": validate_location(idea.get("location")),
                    "section_id": idea.get("sectionId"),
                    "ai_generated": bool(idea.get("aiGenerated", False)),
                }
            )
        return parsed

    def _parse_outline(self, outline: Any) -> List[Dict[str, Any]]:
        parsed: List[Dict[str, Any]] = []
        for section in _as_list(outline):
            if not isinstance(section, Mapping):
                continue
            if _is_missing(section.get("id")):
                continue
            bubbles = section.get("bubbles")
            parsed.append(
                {
                    "id": sanitize_content(section["id"]),
                    "title": sanitize_content(section.get("title")),
                    "description": sanitize_content(section.get("description")),
                    "bubbles": bubbles if bubbles is not None else [],
                }
            )
        return parsed

    def _parse_content(
        self, write_data: Mapping[str, Any], edit_data: Mapping[str, Any]
    ) -> Dict[str, Dict[str, Any]]:
        content: Dict[str, Dict[str, Any]] = {}
        for phase, data in zip(CONTENT_PHASES, (write_data, edit_data)):
            body = data.get("content")
            if _is_missing(body):
                continue
            # Phase bodies carry their own markup and are stored verbatim.
            content[phase] = {
                "content": body if isinstance(body, str) else json.dumps(body),
                "word_count": coerce_word_count(data.get("wordCount", 0)),
            }
        return content

    def _parse_chat(self, chat_history: Any) -> List[Dict[str, Any]]:
        parsed: List[Dict[str, Any]] = []
        for message in _as_list(chat_history):
            if not isinstance(message, Mapping):
                continue
            if _is_missing(message.get("role")) or _is_missing(message.get("content")):
                continue
            timestamp = message.get("timestamp")
            if timestamp is None:
                timestamp = self._clock().isoformat()
            parsed.append(
                {
                    "role": validate_role(message["role"]),
                    "content": sanitize_content(message["content"]),
                    "timestamp": timestamp,
                }
            )
        return parsed


__all__ = [
    "InvalidJsonData",
    "ParsedProject",
    "ProjectDataParser",
    "coerce_word_count",
    "sanitize_content",
    "validate_location",
    "validate_role",
    "validate_tab",
]
