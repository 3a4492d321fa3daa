from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable

from sqlmodel import Session, select

from inkwell.core.auth import ensure_owner
from inkwell.core.config import settings
from inkwell.core.errors import AuthorizationError, PartialContextFetchError
from inkwell.models import (
    Character,
    Document,
    DocumentSnapshot,
    Location,
    Project,
    StoryEvent,
    WorldElement,
)
from inkwell.services.story_records import RawStorySources

_FETCH_EXECUTOR = ThreadPoolExecutor(
    max_workers=max(int(settings.context_fetch_max_workers), 1),
    thread_name_prefix="story-fetch",
)
_LOGGER = logging.getLogger(__name__)

SOURCE_NAMES = ("project", "characters", "locations", "world_elements", "events", "documents", "snapshots")


class StoryRepository:
    """Read-only story data scoped to one owner.

    Every fetch opens its own session from ``session_factory`` so the fan-out
    can run queries on worker threads.
    """

    def __init__(self, session_factory: Callable[[], Session], *, excerpt_limit: int | None = None) -> None:
        self._session_factory = session_factory
        self._excerpt_limit = excerpt_limit

    def _limit(self) -> int:
        return max(int(self._excerpt_limit if self._excerpt_limit is not None else settings.context_excerpt_limit), 0)

    def _all(self, statement: Any) -> list[Any]:
        with self._session_factory() as session:
            rows = list(session.exec(statement).all())
            for row in rows:
                session.expunge(row)
            return rows

    def get_project(self, project_id: int, user_id: str) -> Project | None:
        with self._session_factory() as session:
            project = session.get(Project, project_id)
            if project is None:
                return None
            ensure_owner(user_id, project.user_id, resource="project")
            session.expunge(project)
            return project

    def get_document(self, document_id: int, user_id: str) -> Document | None:
        with self._session_factory() as session:
            document = session.get(Document, document_id)
            if document is None:
                return None
            ensure_owner(user_id, document.user_id, resource="document")
            session.expunge(document)
            return document

    def list_characters(self, project_id: int, user_id: str) -> list[Character]:
        return self._all(
            select(Character)
            .where(Character.project_id == project_id, Character.user_id == user_id)
            .order_by(Character.id.asc())
        )

    def list_locations(self, project_id: int, user_id: str) -> list[Location]:
        return self._all(
            select(Location)
            .where(Location.project_id == project_id, Location.user_id == user_id)
            .order_by(Location.id.asc())
        )

    def list_world_elements(self, project_id: int, user_id: str) -> list[WorldElement]:
        return self._all(
            select(WorldElement)
            .where(WorldElement.project_id == project_id, WorldElement.user_id == user_id)
            .order_by(WorldElement.id.asc())
        )

    def list_events(self, project_id: int, user_id: str) -> list[StoryEvent]:
        return self._all(
            select(StoryEvent)
            .where(StoryEvent.project_id == project_id, StoryEvent.user_id == user_id)
            .order_by(StoryEvent.id.asc())
        )

    def list_recent_documents(
        self,
        project_id: int,
        user_id: str,
        *,
        exclude_document_id: int | None = None,
    ) -> list[Document]:
        limit = self._limit()
        if limit <= 0:
            return []
        stmt = select(Document).where(Document.project_id == project_id, Document.user_id == user_id)
        if exclude_document_id is not None:
            stmt = stmt.where(Document.id != exclude_document_id)
        stmt = stmt.order_by(Document.updated_at.desc(), Document.id.desc()).limit(limit)
        return self._all(stmt)

    def list_recent_snapshots(self, project_id: int, user_id: str, *, document_id: int | None = None) -> list[DocumentSnapshot]:
        limit = self._limit()
        if limit <= 0:
            return []
        stmt = select(DocumentSnapshot).where(
            DocumentSnapshot.project_id == project_id,
            DocumentSnapshot.user_id == user_id,
        )
        if document_id is not None:
            stmt = stmt.where(DocumentSnapshot.document_id == document_id)
        stmt = stmt.order_by(DocumentSnapshot.created_at.desc(), DocumentSnapshot.id.desc()).limit(limit)
        return self._all(stmt)


async def _run_source(
    name: str,
    loader: Callable[[], Any],
    timeout_seconds: float,
) -> Any:
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(loop.run_in_executor(_FETCH_EXECUTOR, loader), timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise PartialContextFetchError(name, f"timed out after {timeout_seconds}s", timed_out=True) from exc
    except AuthorizationError:
        raise
    except Exception as exc:
        raise PartialContextFetchError(name, str(exc) or exc.__class__.__name__) from exc


def _rows(value: Any) -> Iterable[Any]:
    return value if isinstance(value, (list, tuple)) else ()


async def fetch_story_sources(
    repository: StoryRepository,
    *,
    project_id: int,
    user_id: str,
    document_id: int | None = None,
    timeout_seconds: float | None = None,
) -> RawStorySources:
    """Load every context source concurrently; a failing source becomes a recorded failure."""
    timeout = float(settings.context_source_timeout_seconds if timeout_seconds is None else timeout_seconds)
    loaders: dict[str, Callable[[], Any]] = {
        "project": lambda: repository.get_project(project_id, user_id),
        "characters": lambda: repository.list_characters(project_id, user_id),
        "locations": lambda: repository.list_locations(project_id, user_id),
        "world_elements": lambda: repository.list_world_elements(project_id, user_id),
        "events": lambda: repository.list_events(project_id, user_id),
        "documents": lambda: repository.list_recent_documents(
            project_id,
            user_id,
            exclude_document_id=document_id,
        ),
        "snapshots": lambda: repository.list_recent_snapshots(project_id, user_id, document_id=document_id),
    }
    outcomes = await asyncio.gather(
        *(_run_source(name, loaders[name], timeout) for name in SOURCE_NAMES),
        return_exceptions=True,
    )

    results: dict[str, Any] = {}
    failures: list[PartialContextFetchError] = []
    for name, outcome in zip(SOURCE_NAMES, outcomes):
        if isinstance(outcome, AuthorizationError):
            raise outcome
        if isinstance(outcome, PartialContextFetchError):
            _LOGGER.warning("context source failed source=%s reason=%s", name, outcome.reason)
            failures.append(outcome)
            continue
        if isinstance(outcome, BaseException):
            failures.append(PartialContextFetchError(name, str(outcome) or outcome.__class__.__name__))
            continue
        results[name] = outcome

    return RawStorySources(
        project=results.get("project"),
        characters=tuple(_rows(results.get("characters"))),
        locations=tuple(_rows(results.get("locations"))),
        world_elements=tuple(_rows(results.get("world_elements"))),
        events=tuple(_rows(results.get("events"))),
        documents=tuple(_rows(results.get("documents"))),
        snapshots=tuple(_rows(results.get("snapshots"))),
        failures=tuple(failures),
    )
