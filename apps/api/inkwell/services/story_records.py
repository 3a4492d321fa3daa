from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from inkwell.core.config import settings
from inkwell.core.errors import PartialContextFetchError
from inkwell.services.story_context import (
    EXCERPT_SOURCES,
    IMPORTANCE_WEIGHT,
    KEY_ROLE_TAGS,
    ContextExcerpt,
    ProjectMetadata,
    StoryBibleEntry,
    TimelineEvent,
    ensure_utc,
    parse_timestamp,
)

_MAIN_ROLES = {"protagonist", "antagonist", "main", "lead", "primary", "deuteragonist"}
_SUPPORTING_ROLES = {"supporting", "secondary", "ally", "mentor", "love_interest", "sidekick", "rival"}
_MAJOR_EVENT_LEVELS = {"major", "high", "critical", "key"}


class RecordTranslationError(ValueError):
    pass


@dataclass(frozen=True)
class RawStorySources:
    """Loosely typed rows as returned by storage, plus the sources that failed to load."""

    project: Any = None
    characters: Sequence[Any] = ()
    locations: Sequence[Any] = ()
    world_elements: Sequence[Any] = ()
    events: Sequence[Any] = ()
    documents: Sequence[Any] = ()
    snapshots: Sequence[Any] = ()
    failures: tuple[PartialContextFetchError, ...] = ()


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def _text(record: Any, *names: str) -> str:
    for name in names:
        value = _field(record, name)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def _optional_text(record: Any, *names: str) -> str | None:
    return _text(record, *names) or None


def _string_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        return ()
    cleaned: list[str] = []
    for item in items:
        text = str(item or "").strip()
        if text and text not in cleaned:
            cleaned.append(text)
    return tuple(cleaned)


def _record_id(record: Any, prefix: str) -> str:
    raw = _field(record, "id")
    if raw is None or not str(raw).strip():
        raise RecordTranslationError(f"{prefix} record is missing an id")
    return f"{prefix}-{str(raw).strip()}"


def _updated_at(record: Any) -> datetime | None:
    value = _field(record, "updated_at") or _field(record, "created_at")
    if isinstance(value, datetime):
        return ensure_utc(value)
    return parse_timestamp(value) if value else None


def _bible_importance(record: Any, role: str | None) -> str:
    explicit = _text(record, "importance").lower()
    if explicit in IMPORTANCE_WEIGHT:
        return explicit
    normalized_role = str(role or "").strip().lower().replace(" ", "_")
    if normalized_role in _MAIN_ROLES:
        return "main"
    if normalized_role in _SUPPORTING_ROLES:
        return "supporting"
    return "minor"


def _tail(content: str, max_chars: int) -> str:
    text = content.strip()
    if len(text) <= max_chars:
        return text
    return "..." + text[-max_chars:].lstrip()


class StoryRecordTranslator:
    """Converts storage rows (ORM objects or dicts) into canonical context entries.

    Each method raises ``RecordTranslationError`` for records that lack the
    fields an entry cannot exist without; callers decide whether to skip them.
    """

    def __init__(self, *, excerpt_max_chars: int | None = None) -> None:
        self.excerpt_max_chars = excerpt_max_chars

    def _excerpt_limit(self) -> int:
        return int(self.excerpt_max_chars or settings.context_excerpt_max_chars)

    def project(self, record: Any) -> ProjectMetadata:
        raw_id = _field(record, "id")
        if raw_id is None:
            raise RecordTranslationError("project record is missing an id")
        return ProjectMetadata(
            project_id=str(raw_id),
            title=_text(record, "title", "name") or "Untitled Project",
            genre=_optional_text(record, "genre"),
            pov=_optional_text(record, "pov"),
            tone=_optional_text(record, "tone"),
            setting=_optional_text(record, "setting"),
        )

    def character(self, record: Any) -> StoryBibleEntry:
        name = _text(record, "name")
        if not name:
            raise RecordTranslationError("character record is missing a name")
        role = _optional_text(record, "role")
        tags = list(_string_tuple(_field(record, "tags")))
        normalized_role = str(role or "").strip().lower()
        if normalized_role in KEY_ROLE_TAGS and normalized_role not in tags:
            tags.append(normalized_role)
        summary = _text(record, "description", "summary", "backstory")
        if role and not summary:
            summary = f"{role.capitalize()} character."
        return StoryBibleEntry(
            id=_record_id(record, "character"),
            name=name,
            entity_type="character",
            summary=summary or "No description yet.",
            importance=_bible_importance(record, role),
            traits=_string_tuple(_field(record, "traits") or _field(record, "personality_traits")),
            tags=tuple(tags),
            status=_optional_text(record, "status", "last_known_status"),
            updated_at=_updated_at(record),
        )

    def location(self, record: Any) -> StoryBibleEntry:
        name = _text(record, "name")
        if not name:
            raise RecordTranslationError("location record is missing a name")
        return StoryBibleEntry(
            id=_record_id(record, "location"),
            name=name,
            entity_type="location",
            summary=_text(record, "description", "summary") or "No description yet.",
            importance=_bible_importance(record, None),
            traits=_string_tuple(_field(record, "features")),
            tags=_string_tuple(_field(record, "tags")),
            updated_at=_updated_at(record),
        )

    def world_element(self, record: Any) -> StoryBibleEntry:
        name = _text(record, "name")
        if not name:
            raise RecordTranslationError("world element record is missing a name")
        category = _optional_text(record, "category")
        tags = list(_string_tuple(_field(record, "tags")))
        if category and category not in tags:
            tags.insert(0, category)
        return StoryBibleEntry(
            id=_record_id(record, "world"),
            name=name,
            entity_type="world_element",
            summary=_text(record, "description", "summary") or "No description yet.",
            importance=_bible_importance(record, None),
            tags=tuple(tags),
            updated_at=_updated_at(record),
        )

    def event(self, record: Any) -> TimelineEvent:
        title = _text(record, "title", "name")
        if not title:
            raise RecordTranslationError("timeline event record is missing a title")
        level = _text(record, "importance").lower()
        importance = "major" if level in _MAJOR_EVENT_LEVELS else "minor"
        timestamp = _field(record, "event_date") or _field(record, "timestamp")
        if isinstance(timestamp, datetime):
            timestamp = ensure_utc(timestamp).isoformat()
        return TimelineEvent(
            id=_record_id(record, "event"),
            title=title,
            summary=_text(record, "description", "summary"),
            timestamp=str(timestamp or "").strip(),
            importance=importance,
            location=_optional_text(record, "location_name", "location"),
        )

    def document(self, record: Any) -> ContextExcerpt:
        content = _text(record, "content")
        if not content:
            raise RecordTranslationError("document record has no content")
        # "selection" is reserved for the live request selection.
        source = _text(record, "document_type").lower()
        return ContextExcerpt(
            id=_record_id(record, "document"),
            label=_text(record, "title") or "Untitled document",
            content=_tail(content, self._excerpt_limit()),
            source=source if source in EXCERPT_SOURCES and source != "selection" else "document",
            created_at=_updated_at(record),
        )

    def snapshot(self, record: Any) -> ContextExcerpt:
        content = _text(record, "content")
        if not content:
            raise RecordTranslationError("snapshot record has no content")
        document_id = _field(record, "document_id")
        created_at = _field(record, "created_at")
        return ContextExcerpt(
            id=_record_id(record, "snapshot"),
            label=_text(record, "label") or f"Snapshot of document {document_id}",
            content=_tail(content, self._excerpt_limit()),
            source="snapshot",
            created_at=ensure_utc(created_at) if isinstance(created_at, datetime) else parse_timestamp(created_at),
        )


DEFAULT_TRANSLATOR = StoryRecordTranslator()
