from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from inkwell.core.config import settings

IMPORTANCE_WEIGHT: dict[str, int] = {
    "main": 3,
    "supporting": 2,
    "minor": 1,
}
EVENT_WEIGHT: dict[str, int] = {
    "major": 2,
    "minor": 1,
}
ENTITY_LABELS: dict[str, str] = {
    "character": "Character",
    "location": "Location",
    "world_element": "World",
}
EXCERPT_SOURCES = ("selection", "document", "snapshot", "scene", "chapter", "note", "analysis")
KEY_ROLE_TAGS = frozenset({"protagonist", "antagonist"})


@dataclass(frozen=True)
class ProjectMetadata:
    project_id: str
    title: str
    genre: str | None = None
    pov: str | None = None
    tone: str | None = None
    setting: str | None = None


@dataclass(frozen=True)
class StoryBibleEntry:
    id: str
    name: str
    entity_type: str
    summary: str
    importance: str = "minor"
    traits: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    status: str | None = None
    updated_at: datetime | None = None

    @property
    def kind(self) -> str:
        return "story_bible"

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class TimelineEvent:
    id: str
    title: str
    summary: str
    timestamp: str
    importance: str = "minor"
    location: str | None = None

    @property
    def kind(self) -> str:
        return "timeline"

    @property
    def label(self) -> str:
        return self.title


@dataclass(frozen=True)
class ContextExcerpt:
    id: str
    label: str
    content: str
    source: str
    created_at: datetime | None = None

    @property
    def kind(self) -> str:
        return "selection" if self.source == "selection" else "excerpt"


ContextEntry = Union[StoryBibleEntry, TimelineEvent, ContextExcerpt]


@dataclass(frozen=True)
class ContextBundle:
    project: ProjectMetadata | None = None
    story_bible: tuple[StoryBibleEntry, ...] = ()
    timeline: tuple[TimelineEvent, ...] = ()
    recent_excerpts: tuple[ContextExcerpt, ...] = ()
    warnings: tuple[str, ...] = ()
    omitted_entries: tuple[ContextEntry, ...] = ()
    used_tokens: int = 0
    token_budget: int = 0

    @property
    def selection(self) -> ContextExcerpt | None:
        for excerpt in self.recent_excerpts:
            if excerpt.source == "selection":
                return excerpt
        return None

    @property
    def prior_excerpts(self) -> tuple[ContextExcerpt, ...]:
        return tuple(item for item in self.recent_excerpts if item.source != "selection")

    def entries(self) -> tuple[ContextEntry, ...]:
        return (*self.story_bible, *self.timeline, *self.recent_excerpts)


def estimate_tokens(text: str | None, factor: float | None = None) -> int:
    words = len(str(text or "").split())
    if words == 0:
        return 0
    ratio = settings.token_estimate_factor if factor is None else factor
    return int(math.ceil(words * ratio))


def ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if isinstance(value, datetime):
        return ensure_utc(value)
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def format_date(value: str | datetime | None) -> str:
    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed.date().isoformat()
    return str(value or "").strip() or "undated"


def selection_excerpt(text: str) -> ContextExcerpt:
    content = str(text or "").strip()
    digest = hashlib.sha1(content.encode("utf-8")).hexdigest()[:12]
    return ContextExcerpt(
        id=f"selection-{digest}",
        label="Active selection",
        content=content,
        source="selection",
    )


def _indent(text: str, spaces: int) -> str:
    pad = " " * spaces
    return "\n".join(pad + line if line.strip() else line for line in text.splitlines())


def render_project(project: ProjectMetadata) -> str:
    lines = [f"PROJECT: {project.title}"]
    if project.genre:
        lines.append(f"Genre: {project.genre}")
    if project.pov:
        lines.append(f"POV: {project.pov}")
    if project.tone:
        lines.append(f"Tone: {project.tone}")
    if project.setting:
        lines.append(f"Setting: {project.setting}")
    return "\n".join(lines)


def render_story_bible_entry(entry: StoryBibleEntry) -> str:
    lines = [f"[{ENTITY_LABELS.get(entry.entity_type, 'Entry')}] {entry.name}"]
    if entry.traits:
        lines.append(f"Traits: {', '.join(entry.traits)}")
    if entry.status:
        lines.append(f"Status: {entry.status}")
    lines.append(f"Summary: {entry.summary}")
    return "\n".join(lines)


def render_timeline_event(event: TimelineEvent) -> str:
    where = f" @ {event.location}" if event.location else ""
    return f"- [{format_date(event.timestamp)}] {event.title}{where}: {event.summary}"


def render_excerpt(excerpt: ContextExcerpt) -> str:
    if excerpt.source == "selection":
        return excerpt.content.strip()
    header = f"- {excerpt.label} ({excerpt.source}, {format_date(excerpt.created_at)}):"
    return f"{header}\n{_indent(excerpt.content.strip(), 2)}"


def render_entry(entry: ContextEntry) -> str:
    if isinstance(entry, StoryBibleEntry):
        return render_story_bible_entry(entry)
    if isinstance(entry, TimelineEvent):
        return render_timeline_event(entry)
    return render_excerpt(entry)


def entry_token_cost(entry: ContextEntry) -> int:
    return estimate_tokens(render_entry(entry))
