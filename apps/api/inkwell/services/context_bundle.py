from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, TypeVar

from inkwell.services.story_context import (
    EVENT_WEIGHT,
    IMPORTANCE_WEIGHT,
    KEY_ROLE_TAGS,
    ContextBundle,
    ContextEntry,
    ContextExcerpt,
    ProjectMetadata,
    StoryBibleEntry,
    TimelineEvent,
    entry_token_cost,
    parse_timestamp,
    selection_excerpt,
)
from inkwell.services.story_records import (
    DEFAULT_TRANSLATOR,
    RawStorySources,
    StoryRecordTranslator,
)

TRUNCATION_WARNING = "Some context entries were omitted to stay within token limits."

_LOGGER = logging.getLogger(__name__)
_T = TypeVar("_T")

_SOURCE_LABELS: dict[str, str] = {
    "project": "Project details",
    "characters": "Characters",
    "locations": "Locations",
    "world_elements": "World elements",
    "events": "Timeline events",
    "documents": "Recent documents",
    "snapshots": "Document snapshots",
}


def _recency_key(value: datetime | None) -> tuple[int, float]:
    # Newest first; undated entries sort last.
    if value is None:
        return (1, 0.0)
    return (0, -value.timestamp())


def _story_bible_key(entry: StoryBibleEntry) -> tuple[Any, ...]:
    has_key_role = bool(KEY_ROLE_TAGS.intersection(tag.lower() for tag in entry.tags))
    return (
        -IMPORTANCE_WEIGHT.get(entry.importance, 1),
        0 if has_key_role else 1,
        _recency_key(entry.updated_at),
        entry.id,
    )


def _timeline_key(event: TimelineEvent) -> tuple[Any, ...]:
    return (
        -EVENT_WEIGHT.get(event.importance, 1),
        _recency_key(parse_timestamp(event.timestamp)),
        event.id,
    )


def _excerpt_key(excerpt: ContextExcerpt) -> tuple[Any, ...]:
    return (_recency_key(excerpt.created_at), excerpt.id)


def _translate_all(
    records: Iterable[Any],
    convert: Callable[[Any], _T],
    *,
    label: str,
    warnings: list[str],
) -> list[_T]:
    translated: list[_T] = []
    skipped = 0
    for record in records or ():
        try:
            translated.append(convert(record))
        except (TypeError, ValueError) as exc:
            skipped += 1
            _LOGGER.warning("skipping malformed %s record: %s", label, exc)
    if skipped:
        warnings.append(f"Skipped {skipped} malformed {label} record(s).")
    return translated


def _translate_project(
    record: Any,
    translator: StoryRecordTranslator,
    warnings: list[str],
) -> ProjectMetadata | None:
    if record is None:
        return None
    if isinstance(record, ProjectMetadata):
        return record
    try:
        return translator.project(record)
    except (TypeError, ValueError) as exc:
        _LOGGER.warning("skipping malformed project record: %s", exc)
        warnings.append("Project details could not be read.")
        return None


def build_context_bundle(
    sources: RawStorySources | None,
    *,
    token_budget: int,
    selection: str | None = None,
    translator: StoryRecordTranslator | None = None,
) -> ContextBundle:
    """Rank every available entry and admit them greedily under ``token_budget``.

    Priority: active selection, story bible (importance, key role, recency, id),
    timeline (importance, recency, id), then prior excerpts (recency, id).
    Entries that do not fit are skipped, not truncated; later, smaller entries
    may still be admitted.
    """
    sources = sources or RawStorySources()
    translator = translator or DEFAULT_TRANSLATOR
    budget = max(int(token_budget or 0), 0)
    warnings: list[str] = []

    for failure in sources.failures:
        _LOGGER.warning(
            "context source unavailable source=%s timed_out=%s reason=%s",
            failure.source,
            failure.timed_out,
            failure.reason,
        )
        label = _SOURCE_LABELS.get(failure.source, failure.source)
        warnings.append(f"{label} could not be loaded; continuing without them.")

    project = _translate_project(sources.project, translator, warnings)
    story_bible: list[StoryBibleEntry] = [
        *_translate_all(sources.characters, translator.character, label="character", warnings=warnings),
        *_translate_all(sources.locations, translator.location, label="location", warnings=warnings),
        *_translate_all(sources.world_elements, translator.world_element, label="world element", warnings=warnings),
    ]
    timeline = _translate_all(sources.events, translator.event, label="timeline event", warnings=warnings)
    excerpts: list[ContextExcerpt] = [
        *_translate_all(sources.documents, translator.document, label="document", warnings=warnings),
        *_translate_all(sources.snapshots, translator.snapshot, label="snapshot", warnings=warnings),
    ]

    candidates: list[ContextEntry] = []
    selection_text = str(selection or "").strip()
    if selection_text:
        candidates.append(selection_excerpt(selection_text))
    candidates.extend(sorted(story_bible, key=_story_bible_key))
    candidates.extend(sorted(timeline, key=_timeline_key))
    candidates.extend(sorted(excerpts, key=_excerpt_key))

    admitted: list[ContextEntry] = []
    omitted: list[ContextEntry] = []
    used_tokens = 0
    for entry in candidates:
        cost = entry_token_cost(entry)
        if used_tokens + cost <= budget:
            admitted.append(entry)
            used_tokens += cost
        else:
            omitted.append(entry)

    if omitted:
        warnings.append(TRUNCATION_WARNING)
        _LOGGER.info(
            "context bundle trimmed budget=%s used=%s admitted=%s omitted=%s",
            budget,
            used_tokens,
            len(admitted),
            len(omitted),
        )

    return ContextBundle(
        project=project,
        story_bible=tuple(item for item in admitted if isinstance(item, StoryBibleEntry)),
        timeline=tuple(item for item in admitted if isinstance(item, TimelineEvent)),
        recent_excerpts=tuple(item for item in admitted if isinstance(item, ContextExcerpt)),
        warnings=tuple(warnings),
        omitted_entries=tuple(omitted),
        used_tokens=used_tokens,
        token_budget=budget,
    )
