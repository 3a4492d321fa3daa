from typing import Optional

from pydantic import BaseModel, Field

from inkwell.services.ensemble_blender import BlendStrategy


class GenerateRequest(BaseModel):
    prompt: str = Field(max_length=20000)
    project_id: Optional[int] = Field(default=None, ge=1)
    document_id: Optional[int] = Field(default=None, ge=1)
    command: Optional[str] = Field(default=None, max_length=32)
    selection: Optional[str] = Field(default=None, max_length=20000)
    context: Optional[str] = Field(default=None, max_length=20000)
    model: Optional[str] = Field(default=None, max_length=64)
    max_tokens: Optional[int] = None


class RoutePreviewRequest(BaseModel):
    prompt: str = Field(max_length=20000)
    project_id: Optional[int] = Field(default=None, ge=1)
    document_id: Optional[int] = Field(default=None, ge=1)
    command: Optional[str] = Field(default=None, max_length=32)
    selection: Optional[str] = Field(default=None, max_length=20000)
    context: Optional[str] = Field(default=None, max_length=20000)
    model: Optional[str] = Field(default=None, max_length=64)


class SuggestionIn(BaseModel):
    model: str = Field(min_length=1, max_length=64)
    content: str = Field(default="", max_length=20000)


class BlendSuggestionsRequest(BaseModel):
    prompt: str = Field(max_length=20000)
    context: Optional[str] = Field(default=None, max_length=20000)
    suggestions: list[SuggestionIn] = Field(default_factory=list, max_length=16)
    additional_instructions: Optional[str] = Field(default=None, max_length=2000)
    strategy: BlendStrategy = BlendStrategy.MERGE
    target_length: Optional[int] = Field(default=None, ge=1, le=5000)


class EnsembleRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=20000)
    context: Optional[str] = Field(default=None, max_length=20000)
    model_count: int = Field(default=2, ge=1, le=3)
    max_tokens: Optional[int] = None


class UsageRead(BaseModel):
    input_tokens: int
    output_tokens: int
    total_cost: float
    words_generated: int = 0
    monthly_used: Optional[int] = None
    monthly_limit: Optional[int] = None
    percent_used: Optional[float] = None


class ClassificationRead(BaseModel):
    command: str
    intent: str
    confidence: float
    rationale: str


class RoutingRead(BaseModel):
    model: str
    confidence: float
    rationale: str
    alternatives: list[str]
    intent: str
    allow_manual_override: bool = True


class PreviewItemRead(BaseModel):
    id: str
    label: str
    detail: str
    meta: Optional[str] = None


class ProjectPreviewRead(BaseModel):
    project_id: Optional[str] = None
    title: str
    genre: Optional[str] = None
    pov: Optional[str] = None
    tone: Optional[str] = None
    setting: Optional[str] = None


class ContextPreviewRead(BaseModel):
    project: Optional[ProjectPreviewRead] = None
    top_characters: list[PreviewItemRead] = Field(default_factory=list)
    top_locations: list[PreviewItemRead] = Field(default_factory=list)
    top_world_elements: list[PreviewItemRead] = Field(default_factory=list)
    upcoming_events: list[PreviewItemRead] = Field(default_factory=list)
    recent_excerpts: list[PreviewItemRead] = Field(default_factory=list)


class ContextTokensRead(BaseModel):
    explicit: int
    generated: int
    selection: int


class GenerateResponse(BaseModel):
    content: str
    usage: UsageRead
    model: str
    command: str
    intent: str
    request_id: str
    routing: RoutingRead
    context_preview: ContextPreviewRead
    context_warnings: list[str]
    context_tokens: ContextTokensRead


class BlendResponse(BaseModel):
    content: str
    model: str
    usage: UsageRead
    strategy: BlendStrategy
    source_models: list[str]


class SuggestionRead(BaseModel):
    model: str
    content: str


class EnsembleResponse(BaseModel):
    suggestions: list[SuggestionRead]
    failed_models: list[str]
    usage: UsageRead


class RoutePreviewResponse(BaseModel):
    tier: str
    classification: ClassificationRead
    routing: RoutingRead
