from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, Index, Text
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Project(SQLModel, table=True):
    __table_args__ = (Index("ix_project_user_id_id", "user_id", "id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    title: str = Field(default="Untitled Project", max_length=255)
    genre: Optional[str] = Field(default=None, max_length=128)
    pov: Optional[str] = Field(default=None, max_length=64)
    tone: Optional[str] = Field(default=None, max_length=128)
    setting: Optional[str] = Field(default=None, max_length=512)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class Character(SQLModel, table=True):
    __table_args__ = (Index("ix_character_project_user", "project_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    user_id: str = Field(index=True, max_length=128)
    name: str = Field(max_length=255)
    role: Optional[str] = Field(default=None, max_length=64)
    importance: Optional[str] = Field(default=None, max_length=32)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    traits: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    status: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class Location(SQLModel, table=True):
    __table_args__ = (Index("ix_location_project_user", "project_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    user_id: str = Field(index=True, max_length=128)
    name: str = Field(max_length=255)
    importance: Optional[str] = Field(default=None, max_length=32)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    features: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class WorldElement(SQLModel, table=True):
    __table_args__ = (Index("ix_world_element_project_user", "project_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    user_id: str = Field(index=True, max_length=128)
    name: str = Field(max_length=255)
    category: Optional[str] = Field(default=None, max_length=64)
    importance: Optional[str] = Field(default=None, max_length=32)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    properties: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class StoryEvent(SQLModel, table=True):
    __table_args__ = (Index("ix_story_event_project_user", "project_id", "user_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    user_id: str = Field(index=True, max_length=128)
    title: str = Field(max_length=255)
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    event_date: Optional[str] = Field(default=None, max_length=64)
    importance: Optional[str] = Field(default=None, max_length=32)
    location_name: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class Document(SQLModel, table=True):
    __table_args__ = (Index("ix_document_project_user_updated", "project_id", "user_id", "updated_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    user_id: str = Field(index=True, max_length=128)
    title: str = Field(default="Untitled", max_length=255)
    document_type: str = Field(default="chapter", max_length=32)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    word_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class DocumentSnapshot(SQLModel, table=True):
    __table_args__ = (Index("ix_document_snapshot_document_created", "document_id", "created_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    document_id: int = Field(foreign_key="document.id", index=True)
    project_id: int = Field(index=True)
    user_id: str = Field(index=True, max_length=128)
    label: Optional[str] = Field(default=None, max_length=255)
    content: str = Field(default="", sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
