from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Sequence

from inkwell.core.config import settings
from inkwell.services.context_bundle import TRUNCATION_WARNING
from inkwell.services.story_context import (
    ContextBundle,
    ContextEntry,
    ProjectMetadata,
    StoryBibleEntry,
    TimelineEvent,
    entry_token_cost,
    estimate_tokens,
    format_date,
    parse_timestamp,
    render_entry,
    render_project,
)


@dataclass(frozen=True)
class GeneratedContext:
    prompt: str
    used_tokens: int
    omitted_entries: tuple[ContextEntry, ...]
    reserve_tokens: int = 0


@dataclass(frozen=True)
class PreviewItem:
    id: str
    label: str
    detail: str
    meta: str | None = None


@dataclass(frozen=True)
class ContextPreview:
    project: ProjectMetadata | None
    top_characters: tuple[PreviewItem, ...] = ()
    top_locations: tuple[PreviewItem, ...] = ()
    top_world_elements: tuple[PreviewItem, ...] = ()
    upcoming_events: tuple[PreviewItem, ...] = ()
    recent_excerpts: tuple[PreviewItem, ...] = ()


def resolve_reserve_tokens(max_tokens: int, reserve_tokens: int | None = None) -> int:
    limit = max(int(max_tokens), 0)
    if reserve_tokens is None:
        reserve = int(math.ceil(limit * float(settings.context_reserve_ratio)))
    else:
        reserve = int(reserve_tokens)
    return min(max(reserve, 0), limit)


def _render_section(
    title: str,
    entries: Sequence[ContextEntry],
    remaining: int,
    omitted: list[ContextEntry],
    *,
    joiner: str = "\n\n",
) -> tuple[str | None, int]:
    # Word counts are additive across whitespace joins, so per-part estimates
    # bound the estimate of the joined prompt.
    header_cost = estimate_tokens(title)
    rendered: list[str] = []
    for entry in entries:
        text = render_entry(entry)
        cost = estimate_tokens(text) + (0 if rendered else header_cost)
        if cost <= remaining:
            rendered.append(text)
            remaining -= cost
        else:
            omitted.append(entry)
    if not rendered:
        return None, remaining
    return title + "\n" + joiner.join(rendered), remaining


def generate_context_prompt(
    bundle: ContextBundle,
    *,
    max_tokens: int,
    reserve_tokens: int | None = None,
    include_timeline: bool = True,
    include_excerpts: bool = True,
) -> GeneratedContext:
    """Render ``bundle`` as plain-text model context.

    ``used_tokens + reserve_tokens <= max_tokens`` always holds. Only entries
    already admitted into the bundle are considered.
    """
    limit = max(int(max_tokens), 0)
    reserve = resolve_reserve_tokens(limit, reserve_tokens)
    remaining = limit - reserve
    sections: list[str] = []
    omitted: list[ContextEntry] = []

    if bundle.project is not None:
        header = render_project(bundle.project)
        header_cost = estimate_tokens(header)
        if header_cost <= remaining:
            sections.append(header)
            remaining -= header_cost

    selection = bundle.selection
    planned: list[tuple[str, Sequence[ContextEntry], str]] = [
        ("ACTIVE SELECTION", [selection] if selection is not None else [], "\n\n"),
        ("STORY BIBLE", bundle.story_bible, "\n\n"),
    ]
    if include_timeline:
        planned.append(("TIMELINE SNAPSHOT", bundle.timeline, "\n"))
    if include_excerpts:
        planned.append(("RECENT EXCERPTS", bundle.prior_excerpts, "\n\n"))

    for title, entries, joiner in planned:
        section, remaining = _render_section(title, entries, remaining, omitted, joiner=joiner)
        if section:
            sections.append(section)

    prompt = "\n\n".join(sections)
    return GeneratedContext(
        prompt=prompt,
        used_tokens=estimate_tokens(prompt),
        omitted_entries=tuple(omitted),
        reserve_tokens=reserve,
    )


def reconcile_bundle(bundle: ContextBundle, generated: GeneratedContext) -> ContextBundle:
    """Narrow ``bundle`` to the entries ``generated`` actually rendered.

    Entries dropped while rendering count as omitted and raise the same
    truncation warning as entries the bundle rejected.
    """
    dropped = generated.omitted_entries
    if not dropped:
        return bundle

    def kept(entries):
        return tuple(entry for entry in entries if entry not in dropped)

    warnings = bundle.warnings
    if TRUNCATION_WARNING not in warnings:
        warnings = (*warnings, TRUNCATION_WARNING)
    return replace(
        bundle,
        story_bible=kept(bundle.story_bible),
        timeline=kept(bundle.timeline),
        recent_excerpts=kept(bundle.recent_excerpts),
        warnings=warnings,
        omitted_entries=(*bundle.omitted_entries, *dropped),
        used_tokens=max(bundle.used_tokens - sum(entry_token_cost(entry) for entry in dropped), 0),
    )


def _truncate_text(text: str | None, max_chars: int) -> str:
    content = (text or "").strip()
    if len(content) <= max_chars:
        return content
    return content[:max_chars].rstrip() + "..."


def _bible_item(entry: StoryBibleEntry, max_chars: int) -> PreviewItem:
    return PreviewItem(
        id=entry.id,
        label=_truncate_text(entry.name, max_chars),
        detail=_truncate_text(entry.summary, max_chars),
        meta=entry.importance,
    )


def _bounded_project(project: ProjectMetadata | None, max_chars: int) -> ProjectMetadata | None:
    if project is None:
        return None
    return replace(
        project,
        title=_truncate_text(project.title, max_chars),
        setting=_truncate_text(project.setting, max_chars) or None,
    )


def _event_sort_key(event: TimelineEvent) -> tuple[Any, ...]:
    parsed = parse_timestamp(event.timestamp)
    return (parsed is None, parsed.timestamp() if parsed else 0.0, event.id)


def build_context_preview(bundle: ContextBundle, *, max_per_category: int | None = None) -> ContextPreview:
    limit = max(int(max_per_category or settings.context_preview_max_items), 1)
    max_chars = int(settings.context_preview_max_chars)

    def top(entity_type: str) -> tuple[PreviewItem, ...]:
        matching = [entry for entry in bundle.story_bible if entry.entity_type == entity_type]
        return tuple(_bible_item(entry, max_chars) for entry in matching[:limit])

    events = sorted(bundle.timeline, key=_event_sort_key)[:limit]
    excerpts = sorted(
        bundle.prior_excerpts,
        key=lambda item: (item.created_at is None, -(item.created_at.timestamp() if item.created_at else 0.0), item.id),
    )[:limit]

    return ContextPreview(
        project=_bounded_project(bundle.project, max_chars),
        top_characters=top("character"),
        top_locations=top("location"),
        top_world_elements=top("world_element"),
        upcoming_events=tuple(
            PreviewItem(
                id=event.id,
                label=_truncate_text(event.title, max_chars),
                detail=_truncate_text(event.summary, max_chars),
                meta=format_date(event.timestamp),
            )
            for event in events
        ),
        recent_excerpts=tuple(
            PreviewItem(
                id=excerpt.id,
                label=_truncate_text(excerpt.label, max_chars),
                detail=_truncate_text(excerpt.content, max_chars),
                meta=excerpt.source,
            )
            for excerpt in excerpts
        ),
    )
