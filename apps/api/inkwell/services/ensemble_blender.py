from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from inkwell.core.config import settings
from inkwell.core.errors import BlendInputError, UpstreamModelError
from inkwell.services.llm_provider import ModelInvocationResult, ModelInvoker, ModelUsage, invoke_model

_LOGGER = logging.getLogger(__name__)


class BlendStrategy(str, Enum):
    MERGE = "merge"
    BEST_OF = "best_of"
    CREATIVE_MIX = "creative_mix"


_STRATEGY_INSTRUCTIONS: dict[BlendStrategy, str] = {
    BlendStrategy.MERGE: (
        "Merge the strongest elements of every candidate into one cohesive passage. "
        "Keep the best phrasing, resolve contradictions, and remove repetition."
    ),
    BlendStrategy.BEST_OF: (
        "Pick the single strongest candidate and refine it, borrowing a detail from the others "
        "only where it clearly improves the result."
    ),
    BlendStrategy.CREATIVE_MIX: (
        "Use the candidates as raw material for a fresh passage that combines their most "
        "surprising ideas while staying consistent with the story context."
    ),
}


@dataclass(frozen=True)
class BlendCandidate:
    model: str
    content: str


@dataclass(frozen=True)
class BlendRequest:
    prompt: str
    suggestions: tuple[BlendCandidate, ...]
    context: str | None = None
    additional_instructions: str | None = None
    strategy: BlendStrategy = BlendStrategy.MERGE
    target_length: int | None = None
    model: str | None = None


@dataclass(frozen=True)
class BlendResult:
    content: str
    model: str
    usage: ModelUsage
    strategy: BlendStrategy
    source_models: tuple[str, ...]


@dataclass(frozen=True)
class EnsembleResult:
    suggestions: tuple[BlendCandidate, ...]
    failed_models: tuple[str, ...] = ()
    usage: tuple[ModelUsage, ...] = field(default_factory=tuple)


def validate_blend_request(request: BlendRequest) -> tuple[BlendCandidate, ...]:
    candidates = tuple(item for item in request.suggestions if str(item.content or "").strip())
    if len(candidates) < 2:
        raise BlendInputError(
            "At least two non-empty suggestions are required to blend",
            received=len(candidates),
        )
    max_suggestions = int(settings.ensemble_max_suggestions)
    if len(candidates) > max_suggestions:
        raise BlendInputError(
            f"At most {max_suggestions} suggestions can be blended",
            received=len(candidates),
        )
    if not str(request.prompt or "").strip():
        raise BlendInputError("The original prompt is required to blend suggestions")
    return candidates


def build_blend_prompt(request: BlendRequest, candidates: tuple[BlendCandidate, ...]) -> str:
    lines = [
        "You are combining several draft responses to the same writing request.",
        f"Original request:\n{request.prompt.strip()}",
        "",
        "Candidates:",
    ]
    for index, candidate in enumerate(candidates, start=1):
        lines.append(f"--- Candidate {index} (from {candidate.model}) ---")
        lines.append(candidate.content.strip())
    lines.append("")
    lines.append(f"Strategy: {_STRATEGY_INSTRUCTIONS[request.strategy]}")
    if request.target_length:
        lines.append(f"Aim for roughly {int(request.target_length)} words.")
    instructions = str(request.additional_instructions or "").strip()
    if instructions:
        lines.append(f"Additional instructions from the author: {instructions}")
    lines.append("Return only the final passage, with no commentary about the candidates.")
    return "\n".join(lines)


async def blend_suggestions(
    request: BlendRequest,
    *,
    invoke: ModelInvoker = invoke_model,
    max_tokens: int | None = None,
) -> BlendResult:
    candidates = validate_blend_request(request)
    model = request.model or settings.ensemble_blend_model
    result = await invoke(model, build_blend_prompt(request, candidates), request.context, max_tokens)
    return BlendResult(
        content=result.content.strip(),
        model=result.model,
        usage=result.usage,
        strategy=request.strategy,
        source_models=tuple(item.model for item in candidates),
    )


async def generate_ensemble_suggestions(
    prompt: str,
    models: tuple[str, ...],
    *,
    context: str | None = None,
    max_tokens: int | None = None,
    invoke: ModelInvoker = invoke_model,
) -> EnsembleResult:
    """Ask each model for its own draft concurrently; failures are reported, not raised."""
    outcomes = await asyncio.gather(
        *(invoke(model, prompt, context, max_tokens) for model in models),
        return_exceptions=True,
    )
    suggestions: list[BlendCandidate] = []
    usage: list[ModelUsage] = []
    failed: list[str] = []
    for model, outcome in zip(models, outcomes):
        if isinstance(outcome, ModelInvocationResult):
            suggestions.append(BlendCandidate(model=outcome.model, content=outcome.content))
            usage.append(outcome.usage)
            continue
        if isinstance(outcome, UpstreamModelError):
            _LOGGER.warning("ensemble member failed model=%s retryable=%s: %s", model, outcome.retryable, outcome)
        elif isinstance(outcome, BaseException):
            _LOGGER.error("ensemble member crashed model=%s", model, exc_info=outcome)
        failed.append(model)
    return EnsembleResult(suggestions=tuple(suggestions), failed_models=tuple(failed), usage=tuple(usage))
