from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UserProfile(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", name="uq_user_profile_user"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, max_length=128)
    subscription_tier: str = Field(default="free", max_length=32)
    ai_words_used_this_month: int = Field(default=0, nullable=False)
    usage_period: str = Field(default="", max_length=7)
    updated_at: datetime = Field(default_factory=utc_now, nullable=False)


class AIRequestLog(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("request_id", name="uq_ai_request_log_request_id"),
        Index("ix_ai_request_log_user_created", "user_id", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: str = Field(index=True, max_length=64)
    user_id: str = Field(index=True, max_length=128)
    project_id: Optional[int] = Field(default=None, index=True)
    document_id: Optional[int] = Field(default=None, index=True)
    status: str = Field(default="failed", max_length=16, index=True)
    state: str = Field(default="received", max_length=32)
    failure_reason: Optional[str] = Field(default=None, max_length=1000)
    error_code: Optional[str] = Field(default=None, max_length=64)
    command: Optional[str] = Field(default=None, max_length=32)
    intent: Optional[str] = Field(default=None, max_length=64)
    classification_confidence: Optional[float] = Field(default=None)
    requested_model: Optional[str] = Field(default=None, max_length=64)
    selected_model: Optional[str] = Field(default=None, max_length=64)
    routing_confidence: Optional[float] = Field(default=None)
    routing_rationale: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    routing_alternatives: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    explicit_context_tokens: int = Field(default=0)
    generated_context_tokens: int = Field(default=0)
    selection_tokens: int = Field(default=0)
    context_warnings: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)
    total_cost: float = Field(default=0.0)
    words_generated: int = Field(default=0)
    latency_ms: int = Field(default=0)
    prompt_preview: str = Field(default="", sa_column=Column(Text, nullable=False))
    selection_preview: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    extra: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utc_now, nullable=False, index=True)
