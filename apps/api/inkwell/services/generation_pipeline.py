from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

from sqlmodel import Session

from inkwell.core.auth import AuthPrincipal
from inkwell.core.config import settings
from inkwell.core.errors import (
    AuthorizationError,
    InkwellError,
    ResourceNotFoundError,
    UpstreamModelError,
    ValidationError,
)
from inkwell.services.context_bundle import TRUNCATION_WARNING, build_context_bundle
from inkwell.services.context_prompt import (
    ContextPreview,
    GeneratedContext,
    build_context_preview,
    generate_context_prompt,
    reconcile_bundle,
    resolve_reserve_tokens,
)
from inkwell.services.intent_classifier import Classification, classify_intent
from inkwell.services.llm_provider import ModelInvoker, ModelUsage, clamp_max_tokens, invoke_model
from inkwell.services.model_router import (
    MODEL_CATALOG,
    ModelOverride,
    RoutingDecision,
    RoutingInput,
    RoutingPolicy,
    route_request,
)
from inkwell.services.quota import count_words, enforce_generation_quota, record_word_usage, resolve_user_tier
from inkwell.services.story_context import ContextBundle, estimate_tokens
from inkwell.services.story_repository import StoryRepository, fetch_story_sources
from inkwell.services.telemetry import (
    ContextTokens,
    RequestStage,
    RequestTelemetry,
    emit_generation_trace,
    persist_request_telemetry,
)

_LOGGER = logging.getLogger(__name__)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass(frozen=True)
class GenerationCommand:
    principal: AuthPrincipal
    prompt: str
    project_id: int | None = None
    document_id: int | None = None
    command_hint: str | None = None
    selection: str | None = None
    context: str | None = None
    model: str | None = None
    max_tokens: int | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class ValidatedRequest:
    prompt: str
    selection: str | None
    context: str | None
    max_tokens: int
    override: ModelOverride | None
    tier: str
    project_id: int | None
    document_id: int | None
    document_tokens: int


@dataclass(frozen=True)
class ContextStageResult:
    bundle: ContextBundle
    generated: GeneratedContext
    tokens: ContextTokens
    warnings: tuple[str, ...]
    model_context: str | None
    selection_in_context: bool


@dataclass(frozen=True)
class GenerationOutcome:
    request_id: str
    content: str
    model: str
    classification: Classification
    routing: RoutingDecision
    usage: ModelUsage
    words_generated: int
    monthly_used: int
    monthly_limit: int
    percent_used: float
    context_preview: ContextPreview
    context_warnings: tuple[str, ...]
    context_tokens: ContextTokens


@dataclass(frozen=True)
class RoutePreview:
    classification: Classification
    routing: RoutingDecision
    tier: str


def sanitize_text(value: str | None) -> str:
    return _CONTROL_CHARS.sub("", str(value or "")).strip()


def _optional_text(value: str | None, *, field: str, max_chars: int) -> str | None:
    text = sanitize_text(value)
    if not text:
        return None
    if len(text) > max_chars:
        raise ValidationError(f"{field} must be at most {max_chars} characters", field=field, max_chars=max_chars)
    return text


def cap_warnings(warnings: tuple[str, ...], limit: int) -> tuple[str, ...]:
    capped = warnings[: max(limit, 0)]
    if capped and TRUNCATION_WARNING in warnings and TRUNCATION_WARNING not in capped:
        capped = (*capped[:-1], TRUNCATION_WARNING)
    return capped


def generated_context_budget(token_budget: int, explicit_tokens: int) -> int:
    return max(int(token_budget) - max(int(explicit_tokens), 0), 0)


def compose_model_context(generated_prompt: str, explicit_context: str | None) -> str | None:
    parts = [generated_prompt.strip()] if generated_prompt.strip() else []
    if explicit_context:
        parts.append(f"ADDITIONAL CONTEXT:\n{explicit_context}")
    return "\n\n".join(parts) or None


def compose_model_prompt(prompt: str, selection: str | None, *, selection_in_context: bool) -> str:
    if not selection or selection_in_context:
        return prompt
    return f"{prompt}\n\nSelected text:\n{selection}"


class GenerationPipeline:
    """Runs one generation request through its stages.

    received -> validated -> classified -> context_built -> routed ->
    generated -> persisted -> responded, or failed from any stage. Telemetry
    is written exactly once, in ``_finalize``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        invoke: ModelInvoker = invoke_model,
        policy: RoutingPolicy | None = None,
        repository: StoryRepository | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._invoke = invoke
        self._policy = policy
        self._repository = repository or StoryRepository(session_factory)

    def _routing_policy(self) -> RoutingPolicy:
        return self._policy or RoutingPolicy.from_settings()

    def _validate(self, command: GenerationCommand, session: Session) -> ValidatedRequest:
        principal = command.principal
        if not str(principal.user_id or "").strip():
            raise AuthorizationError("authentication required", authenticated=False)

        prompt = sanitize_text(command.prompt)
        if not prompt:
            raise ValidationError("prompt is required", field="prompt")
        max_prompt = int(settings.max_prompt_chars)
        if len(prompt) > max_prompt:
            raise ValidationError(
                f"prompt must be at most {max_prompt} characters",
                field="prompt",
                max_chars=max_prompt,
            )
        selection = _optional_text(command.selection, field="selection", max_chars=int(settings.max_selection_chars))
        context = _optional_text(command.context, field="context", max_chars=int(settings.max_context_chars))

        override: ModelOverride | None = None
        requested_model = str(command.model or "").strip()
        policy = self._routing_policy()
        tier = resolve_user_tier(session, principal)
        if requested_model:
            if requested_model not in MODEL_CATALOG:
                raise ValidationError(f"unknown model {requested_model}", field="model")
            if requested_model not in policy.eligible_models(tier):
                raise AuthorizationError(
                    f"model {requested_model} is not available on the {tier} tier",
                    model=requested_model,
                    tier=tier,
                    upgrade_required=True,
                )
            override = ModelOverride(forced_model=requested_model, reason="requested by user")

        project_id = command.project_id
        document_tokens = 0
        if command.document_id is not None:
            document = self._repository.get_document(command.document_id, principal.user_id)
            if document is None:
                raise ResourceNotFoundError("document not found", resource="document")
            if project_id is not None and document.project_id != project_id:
                raise ValidationError("document does not belong to project", field="document_id")
            project_id = document.project_id
            document_tokens = estimate_tokens(document.content)
        elif project_id is not None:
            if self._repository.get_project(project_id, principal.user_id) is None:
                raise ResourceNotFoundError("project not found", resource="project")

        return ValidatedRequest(
            prompt=prompt,
            selection=selection,
            context=context,
            max_tokens=clamp_max_tokens(command.max_tokens),
            override=override,
            tier=tier,
            project_id=project_id,
            document_id=command.document_id,
            document_tokens=document_tokens,
        )

    async def _build_context(self, request: ValidatedRequest, user_id: str) -> ContextStageResult:
        explicit_tokens = estimate_tokens(request.context)
        selection_tokens = estimate_tokens(request.selection)
        budget = generated_context_budget(int(settings.context_token_budget), explicit_tokens)

        sources = None
        if request.project_id is not None:
            sources = await fetch_story_sources(
                self._repository,
                project_id=request.project_id,
                user_id=user_id,
                document_id=request.document_id,
            )
        # Bundle admission leaves room for the reserve the prompt renderer holds back.
        bundle = build_context_bundle(
            sources,
            token_budget=budget - resolve_reserve_tokens(budget),
            selection=request.selection,
        )
        generated = generate_context_prompt(bundle, max_tokens=budget)
        bundle = reconcile_bundle(bundle, generated)
        warnings = cap_warnings(bundle.warnings, int(settings.context_max_warnings))
        return ContextStageResult(
            bundle=bundle,
            generated=generated,
            tokens=ContextTokens(
                explicit=explicit_tokens,
                generated=generated.used_tokens,
                selection=selection_tokens,
            ),
            warnings=warnings,
            model_context=compose_model_context(generated.prompt, request.context),
            selection_in_context=bundle.selection is not None,
        )

    def _route(
        self,
        classification: Classification,
        request: ValidatedRequest,
        tokens: ContextTokens,
    ) -> RoutingDecision:
        return route_request(
            RoutingInput(
                classification=classification,
                selection_length_tokens=tokens.selection,
                document_length_tokens=request.document_tokens,
                estimated_context_tokens=tokens.explicit + tokens.generated,
                user_tier=request.tier,
                override=request.override,
                policy=self._routing_policy(),
            )
        )

    def _finalize(self, telemetry: RequestTelemetry) -> RequestTelemetry:
        if not telemetry.failed:
            telemetry = telemetry.advance(RequestStage.PERSISTED)
        telemetry = telemetry.finish()
        persist_request_telemetry(self._session_factory, telemetry)
        try:
            emit_generation_trace(telemetry)
        except Exception:
            _LOGGER.exception("generation trace failed request_id=%s", telemetry.request_id)
        return telemetry

    async def run(self, command: GenerationCommand) -> GenerationOutcome:
        request_id = command.request_id or uuid4().hex
        user_id = command.principal.user_id
        telemetry = RequestTelemetry.start(
            request_id,
            user_id,
            prompt=command.prompt,
            selection=command.selection,
            project_id=command.project_id,
            document_id=command.document_id,
            requested_model=command.model,
        )
        try:
            with self._session_factory() as session:
                request = self._validate(command, session)
                quota = enforce_generation_quota(session, user_id, request.tier)
            telemetry = telemetry.advance(RequestStage.VALIDATED, project_id=request.project_id)

            classification = classify_intent(
                request.prompt,
                command_hint=command.command_hint,
                selection=request.selection,
                context=request.context,
            )
            telemetry = telemetry.advance(RequestStage.CLASSIFIED, classification=classification)

            context_stage = await self._build_context(request, user_id)
            telemetry = telemetry.advance(
                RequestStage.CONTEXT_BUILT,
                tokens=context_stage.tokens,
                context_warnings=context_stage.warnings,
            )

            decision = self._route(classification, request, context_stage.tokens)
            telemetry = telemetry.advance(RequestStage.ROUTED, routing=decision)
            _LOGGER.info(
                "routed request_id=%s model=%s confidence=%s intent=%s",
                request_id,
                decision.model,
                decision.confidence,
                decision.intent,
                extra={"request_id": request_id, "model": decision.model},
            )

            try:
                result = await self._invoke(
                    decision.model,
                    compose_model_prompt(
                        request.prompt,
                        request.selection,
                        selection_in_context=context_stage.selection_in_context,
                    ),
                    context_stage.model_context,
                    request.max_tokens,
                )
            except UpstreamModelError as exc:
                exc.correlation_id = request_id
                raise
            except Exception as exc:
                raise UpstreamModelError(
                    str(exc) or exc.__class__.__name__,
                    model=decision.model,
                    correlation_id=request_id,
                ) from exc

            words = count_words(result.content)
            telemetry = telemetry.advance(RequestStage.GENERATED, usage=result.usage, words_generated=words)

            with self._session_factory() as session:
                profile = record_word_usage(session, user_id, words)
                monthly_used = int(profile.ai_words_used_this_month)
        except InkwellError as exc:
            _LOGGER.warning(
                "generation failed request_id=%s stage=%s code=%s: %s",
                request_id,
                telemetry.state.value,
                exc.code,
                exc.message,
            )
            self._finalize(telemetry.fail(exc.message, error_code=exc.code))
            raise
        except Exception as exc:
            _LOGGER.exception("generation crashed request_id=%s stage=%s", request_id, telemetry.state.value)
            self._finalize(telemetry.fail(str(exc) or exc.__class__.__name__, error_code="internal_error"))
            raise

        telemetry = self._finalize(telemetry)
        monthly_limit = quota.limit
        percent_used = round(min(monthly_used / monthly_limit, 1.0) * 100, 2) if monthly_limit > 0 else 0.0
        telemetry = telemetry.advance(RequestStage.RESPONDED)
        _LOGGER.info(
            "generation complete request_id=%s model=%s latency_ms=%s words=%s",
            request_id,
            decision.model,
            telemetry.latency_ms,
            words,
        )
        return GenerationOutcome(
            request_id=request_id,
            content=result.content,
            model=decision.model,
            classification=classification,
            routing=decision,
            usage=result.usage,
            words_generated=words,
            monthly_used=monthly_used,
            monthly_limit=monthly_limit,
            percent_used=percent_used,
            context_preview=build_context_preview(context_stage.bundle),
            context_warnings=context_stage.warnings,
            context_tokens=context_stage.tokens,
        )

    def preview_route(self, command: GenerationCommand) -> RoutePreview:
        """Classify and route without fetching story data or calling a model."""
        with self._session_factory() as session:
            request = self._validate(command, session)
        classification = classify_intent(
            request.prompt,
            command_hint=command.command_hint,
            selection=request.selection,
            context=request.context,
        )
        tokens = ContextTokens(
            explicit=estimate_tokens(request.context),
            generated=0,
            selection=estimate_tokens(request.selection),
        )
        return RoutePreview(
            classification=classification,
            routing=self._route(classification, request, tokens),
            tier=request.tier,
        )
