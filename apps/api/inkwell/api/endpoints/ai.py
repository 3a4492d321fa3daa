import logging
from typing import Callable
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from inkwell.core.auth import AuthPrincipal, get_current_principal
from inkwell.core.config import settings
from inkwell.core.database import get_session, get_session_factory
from inkwell.core.errors import InkwellError, UpstreamModelError
from inkwell.schemas.generation import (
    BlendResponse,
    BlendSuggestionsRequest,
    ClassificationRead,
    ContextPreviewRead,
    ContextTokensRead,
    EnsembleRequest,
    EnsembleResponse,
    GenerateRequest,
    GenerateResponse,
    PreviewItemRead,
    ProjectPreviewRead,
    RoutePreviewRequest,
    RoutePreviewResponse,
    RoutingRead,
    SuggestionRead,
    UsageRead,
)
from inkwell.services.context_prompt import ContextPreview, PreviewItem
from inkwell.services.ensemble_blender import (
    BlendCandidate,
    BlendRequest,
    blend_suggestions,
    generate_ensemble_suggestions,
    validate_blend_request,
)
from inkwell.services.generation_pipeline import GenerationCommand, GenerationPipeline
from inkwell.services.intent_classifier import Classification
from inkwell.services.llm_provider import invoke_model
from inkwell.services.model_router import RoutingDecision, tier_eligible_models
from inkwell.services.quota import count_words, enforce_generation_quota, record_word_usage, resolve_user_tier

router = APIRouter(prefix="/ai", tags=["ai"])
_LOGGER = logging.getLogger(__name__)


def _raise_http(exc: InkwellError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


def _routing_read(decision: RoutingDecision) -> RoutingRead:
    return RoutingRead(
        model=decision.model,
        confidence=decision.confidence,
        rationale=decision.rationale,
        alternatives=list(decision.alternatives),
        intent=decision.intent,
        allow_manual_override=decision.allow_manual_override,
    )


def _classification_read(classification: Classification) -> ClassificationRead:
    return ClassificationRead(
        command=classification.command.value,
        intent=classification.intent,
        confidence=classification.confidence,
        rationale=classification.rationale,
    )


def _items(values: tuple[PreviewItem, ...]) -> list[PreviewItemRead]:
    return [PreviewItemRead(id=item.id, label=item.label, detail=item.detail, meta=item.meta) for item in values]


def _preview_read(preview: ContextPreview) -> ContextPreviewRead:
    project = preview.project
    return ContextPreviewRead(
        project=(
            ProjectPreviewRead(
                project_id=project.project_id,
                title=project.title,
                genre=project.genre,
                pov=project.pov,
                tone=project.tone,
                setting=project.setting,
            )
            if project is not None
            else None
        ),
        top_characters=_items(preview.top_characters),
        top_locations=_items(preview.top_locations),
        top_world_elements=_items(preview.top_world_elements),
        upcoming_events=_items(preview.upcoming_events),
        recent_excerpts=_items(preview.recent_excerpts),
    )


def _build_pipeline(session_factory: Callable[[], Session]) -> GenerationPipeline:
    return GenerationPipeline(session_factory, invoke=invoke_model)


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    payload: GenerateRequest,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    pipeline = _build_pipeline(session_factory)
    try:
        outcome = await pipeline.run(
            GenerationCommand(
                principal=principal,
                prompt=payload.prompt,
                project_id=payload.project_id,
                document_id=payload.document_id,
                command_hint=payload.command,
                selection=payload.selection,
                context=payload.context,
                model=payload.model,
                max_tokens=payload.max_tokens,
            )
        )
    except InkwellError as exc:
        _raise_http(exc)

    return GenerateResponse(
        content=outcome.content,
        usage=UsageRead(
            input_tokens=outcome.usage.input_tokens,
            output_tokens=outcome.usage.output_tokens,
            total_cost=outcome.usage.total_cost,
            words_generated=outcome.words_generated,
            monthly_used=outcome.monthly_used,
            monthly_limit=outcome.monthly_limit,
            percent_used=outcome.percent_used,
        ),
        model=outcome.model,
        command=outcome.classification.command.value,
        intent=outcome.classification.intent,
        request_id=outcome.request_id,
        routing=_routing_read(outcome.routing),
        context_preview=_preview_read(outcome.context_preview),
        context_warnings=list(outcome.context_warnings),
        context_tokens=ContextTokensRead(
            explicit=outcome.context_tokens.explicit,
            generated=outcome.context_tokens.generated,
            selection=outcome.context_tokens.selection,
        ),
    )


@router.post("/route-preview", response_model=RoutePreviewResponse)
def route_preview(
    payload: RoutePreviewRequest,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    pipeline = _build_pipeline(session_factory)
    try:
        preview = pipeline.preview_route(
            GenerationCommand(
                principal=principal,
                prompt=payload.prompt,
                project_id=payload.project_id,
                document_id=payload.document_id,
                command_hint=payload.command,
                selection=payload.selection,
                context=payload.context,
                model=payload.model,
            )
        )
    except InkwellError as exc:
        _raise_http(exc)
    return RoutePreviewResponse(
        tier=preview.tier,
        classification=_classification_read(preview.classification),
        routing=_routing_read(preview.routing),
    )


@router.post("/blend", response_model=BlendResponse)
async def blend(
    payload: BlendSuggestionsRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    request = BlendRequest(
        prompt=payload.prompt,
        suggestions=tuple(BlendCandidate(model=item.model, content=item.content) for item in payload.suggestions),
        context=payload.context,
        additional_instructions=payload.additional_instructions,
        strategy=payload.strategy,
        target_length=payload.target_length,
    )
    try:
        validate_blend_request(request)
        tier = resolve_user_tier(db, principal)
        quota = enforce_generation_quota(db, principal.user_id, tier)
        result = await blend_suggestions(request, invoke=invoke_model)
    except UpstreamModelError as exc:
        exc.correlation_id = exc.correlation_id or uuid4().hex
        _LOGGER.warning("blend failed correlation_id=%s model=%s: %s", exc.correlation_id, exc.model, exc.message)
        _raise_http(exc)
    except InkwellError as exc:
        _raise_http(exc)

    words = count_words(result.content)
    profile = record_word_usage(db, principal.user_id, words)
    return BlendResponse(
        content=result.content,
        model=result.model,
        usage=UsageRead(
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
            total_cost=result.usage.total_cost,
            words_generated=words,
            monthly_used=profile.ai_words_used_this_month,
            monthly_limit=quota.limit,
        ),
        strategy=result.strategy,
        source_models=list(result.source_models),
    )


@router.post("/ensemble", response_model=EnsembleResponse)
async def ensemble(
    payload: EnsembleRequest,
    db: Session = Depends(get_session),
    principal: AuthPrincipal = Depends(get_current_principal),
):
    try:
        tier = resolve_user_tier(db, principal)
        quota = enforce_generation_quota(db, principal.user_id, tier)
    except InkwellError as exc:
        _raise_http(exc)

    count = min(int(payload.model_count), int(settings.ensemble_max_models))
    models = tier_eligible_models(tier)[:count]
    result = await generate_ensemble_suggestions(
        payload.prompt,
        models,
        context=payload.context,
        max_tokens=payload.max_tokens,
        invoke=invoke_model,
    )
    if not result.suggestions:
        correlation_id = uuid4().hex
        _LOGGER.warning("ensemble produced no suggestions correlation_id=%s models=%s", correlation_id, models)
        _raise_http(UpstreamModelError("all ensemble members failed", model=",".join(models), correlation_id=correlation_id))

    words = sum(count_words(item.content) for item in result.suggestions)
    profile = record_word_usage(db, principal.user_id, words)
    return EnsembleResponse(
        suggestions=[SuggestionRead(model=item.model, content=item.content) for item in result.suggestions],
        failed_models=list(result.failed_models),
        usage=UsageRead(
            input_tokens=sum(item.input_tokens for item in result.usage),
            output_tokens=sum(item.output_tokens for item in result.usage),
            total_cost=round(sum(item.total_cost for item in result.usage), 6),
            words_generated=words,
            monthly_used=profile.ai_words_used_this_month,
            monthly_limit=quota.limit,
        ),
    )
