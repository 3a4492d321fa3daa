from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from threading import Lock
from typing import Any, Callable

from sqlmodel import Session

from inkwell.core.config import settings
from inkwell.models import AIRequestLog
from inkwell.services.intent_classifier import Classification
from inkwell.services.llm_provider import ModelUsage
from inkwell.services.model_router import RoutingDecision

_CLIENT_LOCK = Lock()
_LANGFUSE_CLIENT: Any | None = None
_LANGFUSE_INIT_ERROR: str | None = None
_LOGGER = logging.getLogger(__name__)


class RequestStage(str, Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    CLASSIFIED = "classified"
    CONTEXT_BUILT = "context_built"
    ROUTED = "routed"
    GENERATED = "generated"
    PERSISTED = "persisted"
    RESPONDED = "responded"
    FAILED = "failed"


STAGE_ORDER: tuple[RequestStage, ...] = (
    RequestStage.RECEIVED,
    RequestStage.VALIDATED,
    RequestStage.CLASSIFIED,
    RequestStage.CONTEXT_BUILT,
    RequestStage.ROUTED,
    RequestStage.GENERATED,
    RequestStage.PERSISTED,
    RequestStage.RESPONDED,
)


class StageTransitionError(RuntimeError):
    pass


@dataclass(frozen=True)
class ContextTokens:
    explicit: int = 0
    generated: int = 0
    selection: int = 0


def preview_text(value: str | None, limit: int | None = None) -> str:
    max_chars = int(settings.telemetry_preview_chars if limit is None else limit)
    text = str(value or "")
    return text[:max_chars]


@dataclass(frozen=True)
class RequestTelemetry:
    """Request-scoped record, advanced one stage at a time and persisted once."""

    request_id: str
    user_id: str
    started_at: datetime
    started_clock: float
    project_id: int | None = None
    document_id: int | None = None
    state: RequestStage = RequestStage.RECEIVED
    last_completed: RequestStage = RequestStage.RECEIVED
    status: str = "pending"
    failure_reason: str | None = None
    error_code: str | None = None
    requested_model: str | None = None
    classification: Classification | None = None
    routing: RoutingDecision | None = None
    tokens: ContextTokens = field(default_factory=ContextTokens)
    context_warnings: tuple[str, ...] = ()
    usage: ModelUsage | None = None
    words_generated: int = 0
    prompt_preview: str = ""
    selection_preview: str | None = None
    latency_ms: int = 0

    @classmethod
    def start(
        cls,
        request_id: str,
        user_id: str,
        *,
        prompt: str | None = None,
        selection: str | None = None,
        project_id: int | None = None,
        document_id: int | None = None,
        requested_model: str | None = None,
    ) -> RequestTelemetry:
        return cls(
            request_id=request_id,
            user_id=user_id,
            started_at=datetime.now(timezone.utc),
            started_clock=time.perf_counter(),
            project_id=project_id,
            document_id=document_id,
            requested_model=requested_model,
            prompt_preview=preview_text(prompt),
            selection_preview=preview_text(selection) if selection else None,
        )

    @property
    def failed(self) -> bool:
        return self.state is RequestStage.FAILED

    def advance(self, stage: RequestStage, **changes: Any) -> RequestTelemetry:
        if self.failed:
            raise StageTransitionError(f"request {self.request_id} already failed")
        current = STAGE_ORDER.index(self.state)
        if stage is RequestStage.FAILED or STAGE_ORDER.index(stage) != current + 1:
            raise StageTransitionError(f"cannot move from {self.state.value} to {stage.value}")
        return replace(self, state=stage, last_completed=stage, **changes)

    def fail(self, reason: str, *, error_code: str | None = None) -> RequestTelemetry:
        if self.failed:
            return self
        return replace(
            self,
            state=RequestStage.FAILED,
            status="failed",
            failure_reason=str(reason or "unknown failure")[:1000],
            error_code=error_code,
        )

    def finish(self) -> RequestTelemetry:
        elapsed = int(round((time.perf_counter() - self.started_clock) * 1000))
        status = "failed" if self.failed else "succeeded"
        return replace(self, status=status, latency_ms=max(elapsed, 0))


def build_request_log(telemetry: RequestTelemetry) -> AIRequestLog:
    classification = telemetry.classification
    routing = telemetry.routing
    usage = telemetry.usage
    return AIRequestLog(
        request_id=telemetry.request_id,
        user_id=telemetry.user_id,
        project_id=telemetry.project_id,
        document_id=telemetry.document_id,
        status=telemetry.status,
        state=telemetry.state.value,
        failure_reason=telemetry.failure_reason,
        error_code=telemetry.error_code,
        command=classification.command.value if classification else None,
        intent=classification.intent if classification else None,
        classification_confidence=classification.confidence if classification else None,
        requested_model=telemetry.requested_model,
        selected_model=routing.model if routing else None,
        routing_confidence=routing.confidence if routing else None,
        routing_rationale=routing.rationale if routing else None,
        routing_alternatives=list(routing.alternatives) if routing else [],
        explicit_context_tokens=telemetry.tokens.explicit,
        generated_context_tokens=telemetry.tokens.generated,
        selection_tokens=telemetry.tokens.selection,
        context_warnings=list(telemetry.context_warnings),
        input_tokens=usage.input_tokens if usage else 0,
        output_tokens=usage.output_tokens if usage else 0,
        total_cost=usage.total_cost if usage else 0.0,
        words_generated=telemetry.words_generated,
        latency_ms=telemetry.latency_ms,
        prompt_preview=telemetry.prompt_preview,
        selection_preview=telemetry.selection_preview,
        extra={
            "last_completed_stage": telemetry.last_completed.value,
            "routing_signals": list(routing.signals) if routing else [],
            "classification_signals": list(classification.signals) if classification else [],
        },
        created_at=telemetry.started_at,
    )


def persist_request_telemetry(
    session_factory: Callable[[], Session],
    telemetry: RequestTelemetry,
) -> bool:
    """Write one ``AIRequestLog`` row. Failures are logged and never raised."""
    try:
        with session_factory() as session:
            session.add(build_request_log(telemetry))
            session.commit()
        return True
    except Exception:
        _LOGGER.exception(
            "failed to persist request telemetry request_id=%s status=%s",
            telemetry.request_id,
            telemetry.status,
        )
        return False


def _get_langfuse_client() -> Any | None:
    global _LANGFUSE_CLIENT
    global _LANGFUSE_INIT_ERROR
    if not settings.langfuse_enabled:
        return None
    if _LANGFUSE_CLIENT is not None:
        return _LANGFUSE_CLIENT
    if _LANGFUSE_INIT_ERROR is not None:
        return None

    with _CLIENT_LOCK:
        if _LANGFUSE_CLIENT is not None:
            return _LANGFUSE_CLIENT
        if _LANGFUSE_INIT_ERROR is not None:
            return None
        try:
            from langfuse import Langfuse  # type: ignore

            _LANGFUSE_CLIENT = Langfuse(
                public_key=settings.langfuse_public_key,
                secret_key=settings.langfuse_secret_key,
                host=settings.langfuse_host,
            )
            return _LANGFUSE_CLIENT
        except Exception as exc:  # pragma: no cover - optional dependency/network
            _LANGFUSE_INIT_ERROR = str(exc)
            _LOGGER.warning("langfuse client unavailable: %s", exc)
            return None


def emit_generation_trace(telemetry: RequestTelemetry) -> None:
    client = _get_langfuse_client()
    if client is None:
        return

    routing = telemetry.routing
    classification = telemetry.classification
    usage = telemetry.usage
    metadata = {
        "request_id": telemetry.request_id,
        "project_id": telemetry.project_id,
        "document_id": telemetry.document_id,
        "status": telemetry.status,
        "state": telemetry.state.value,
        "failure_reason": telemetry.failure_reason,
        "intent": classification.intent if classification else None,
        "routing_confidence": routing.confidence if routing else None,
        "routing_rationale": routing.rationale if routing else None,
        "alternatives": list(routing.alternatives) if routing else [],
        "context_tokens": {
            "explicit": telemetry.tokens.explicit,
            "generated": telemetry.tokens.generated,
            "selection": telemetry.tokens.selection,
        },
        "context_warnings": list(telemetry.context_warnings),
        "latency_ms": telemetry.latency_ms,
    }
    usage_payload = (
        {"input": usage.input_tokens, "output": usage.output_tokens, "total_cost": usage.total_cost}
        if usage
        else {}
    )
    try:
        trace = client.trace(
            name="ai_generate",
            id=telemetry.request_id,
            user_id=telemetry.user_id,
            input={"prompt": telemetry.prompt_preview, "model": telemetry.requested_model},
            output={"words_generated": telemetry.words_generated, "usage": usage_payload},
            metadata=metadata,
        )
        if trace is not None and hasattr(trace, "generation"):
            trace.generation(
                name="model_completion",
                model=routing.model if routing else "",
                input=telemetry.prompt_preview,
                metadata=metadata,
                usage=usage_payload,
            )
        if hasattr(client, "flush"):
            client.flush()
    except Exception as exc:
        _LOGGER.debug("langfuse trace failed request_id=%s: %s", telemetry.request_id, exc)
