from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from inkwell.core.config import settings
from inkwell.services.intent_classifier import AICommand, Classification

OVERRIDE_RATIONALE = "User selected model"
CONFIDENCE_FLOOR = 0.55
CONFIDENCE_CEILING = 0.99


@dataclass(frozen=True)
class ModelCapability:
    name: str
    provider: str
    cost_weight: float
    speed_weight: float
    max_context_tokens: int
    strengths: tuple[str, ...] = ()


MODEL_CATALOG: dict[str, ModelCapability] = {
    "claude-sonnet-4.5": ModelCapability(
        name="claude-sonnet-4.5",
        provider="anthropic",
        cost_weight=0.6,
        speed_weight=0.7,
        max_context_tokens=200_000,
        strengths=("creative prose", "long-range continuity", "brainstorming"),
    ),
    "gpt-5": ModelCapability(
        name="gpt-5",
        provider="openai",
        cost_weight=1.0,
        speed_weight=0.6,
        max_context_tokens=128_000,
        strengths=("precise rewriting", "tone control", "editorial feedback"),
    ),
    "deepseek": ModelCapability(
        name="deepseek",
        provider="deepseek",
        cost_weight=0.2,
        speed_weight=0.9,
        max_context_tokens=64_000,
        strengths=("fast edits", "summaries", "low cost"),
    ),
}

COMMAND_MODEL_MAP: dict[str, str] = {
    AICommand.CONTINUE.value: "claude-sonnet-4.5",
    AICommand.EXPAND.value: "claude-sonnet-4.5",
    AICommand.BRAINSTORM.value: "claude-sonnet-4.5",
    AICommand.GENERATE.value: "claude-sonnet-4.5",
    AICommand.REWRITE.value: "gpt-5",
    AICommand.TONE_SHIFT.value: "gpt-5",
    AICommand.NOTES.value: "gpt-5",
    AICommand.ANALYZE.value: "gpt-5",
    AICommand.SHORTEN.value: "deepseek",
    AICommand.SUMMARIZE.value: "deepseek",
}

QUICK_EDIT_COMMANDS = frozenset({"rewrite", "shorten", "tone_shift"})
COST_SENSITIVE_COMMANDS = frozenset({"summarize", "shorten"})
_ALL_MODELS = tuple(MODEL_CATALOG)
DEFAULT_TIER_MODELS: dict[str, tuple[str, ...]] = {
    "free": ("claude-sonnet-4.5",),
    "hobbyist": _ALL_MODELS,
    "professional": _ALL_MODELS,
    "studio": _ALL_MODELS,
}


@dataclass(frozen=True)
class RoutingPolicy:
    default_model: str = "claude-sonnet-4.5"
    command_models: Mapping[str, str] = field(default_factory=lambda: dict(COMMAND_MODEL_MAP))
    tier_models: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_TIER_MODELS))
    catalog: Mapping[str, ModelCapability] = field(default_factory=lambda: dict(MODEL_CATALOG))
    quick_edit_model: str = "deepseek"
    quick_edit_ratio: float = 0.05
    quick_edit_commands: frozenset[str] = QUICK_EDIT_COMMANDS
    cost_sensitive_tiers: frozenset[str] = frozenset({"hobbyist"})
    cost_sensitive_commands: frozenset[str] = COST_SENSITIVE_COMMANDS
    capacity_confidence_cap: float = 0.75
    tier_confidence_cap: float = 0.65
    cost_confidence_cap: float = 0.7
    fallback_confidence_cap: float = 0.5
    unknown_intent_confidence: float = 0.3

    @classmethod
    def from_settings(cls) -> RoutingPolicy:
        free_models = tuple(settings.tier_free_models)
        paid_models = tuple(settings.tier_paid_models)
        return cls(
            default_model=str(settings.router_default_model),
            tier_models={
                "free": free_models,
                "hobbyist": paid_models,
                "professional": paid_models,
                "studio": paid_models,
            },
            quick_edit_model=str(settings.router_quick_edit_model),
            quick_edit_ratio=float(settings.router_quick_edit_ratio),
            cost_sensitive_tiers=frozenset(item.lower() for item in settings.router_cost_sensitive_tiers),
            capacity_confidence_cap=float(settings.router_capacity_confidence_cap),
            tier_confidence_cap=float(settings.router_tier_confidence_cap),
            cost_confidence_cap=float(settings.router_cost_confidence_cap),
            fallback_confidence_cap=float(settings.router_fallback_confidence_cap),
            unknown_intent_confidence=float(settings.router_unknown_intent_confidence),
        )

    def normalize_tier(self, tier: str | None) -> str:
        value = str(tier or "").strip().lower()
        return value if value in self.tier_models else "free"

    def eligible_models(self, tier: str | None) -> tuple[str, ...]:
        allowed = set(self.tier_models.get(self.normalize_tier(tier), ()))
        eligible = tuple(name for name in self.catalog if name in allowed)
        if eligible:
            return eligible
        return (self.default_model,)


@dataclass(frozen=True)
class ModelOverride:
    forced_model: str
    reason: str | None = None


@dataclass(frozen=True)
class RoutingInput:
    classification: Classification | None
    selection_length_tokens: int = 0
    document_length_tokens: int = 0
    estimated_context_tokens: int = 0
    user_tier: str | None = "free"
    override: ModelOverride | None = None
    policy: RoutingPolicy | None = None


@dataclass(frozen=True)
class RoutingDecision:
    model: str
    confidence: float
    rationale: str
    alternatives: tuple[str, ...]
    intent: str
    signals: tuple[str, ...] = ()
    allow_manual_override: bool = True


def tier_eligible_models(tier: str | None, policy: RoutingPolicy | None = None) -> tuple[str, ...]:
    return (policy or RoutingPolicy.from_settings()).eligible_models(tier)


def _alternatives(policy: RoutingPolicy, chosen: str) -> tuple[str, ...]:
    return tuple(name for name in policy.catalog if name != chosen)


def _fits(policy: RoutingPolicy, model: str, total_tokens: int) -> bool:
    capability = policy.catalog.get(model)
    if capability is None:
        return True
    return total_tokens <= capability.max_context_tokens


def _window(policy: RoutingPolicy, model: str) -> int:
    capability = policy.catalog.get(model)
    return capability.max_context_tokens if capability else 0


def _cost(policy: RoutingPolicy, model: str) -> float:
    capability = policy.catalog.get(model)
    return capability.cost_weight if capability else float("inf")


def _pick_fitting(policy: RoutingPolicy, candidates: tuple[str, ...], total_tokens: int) -> str | None:
    fitting = [name for name in candidates if _fits(policy, name, total_tokens)]
    if not fitting:
        return None
    if policy.default_model in fitting:
        return policy.default_model
    return min(fitting, key=lambda name: (_window(policy, name), candidates.index(name)))


def route_request(routing_input: RoutingInput) -> RoutingDecision:
    """Select a model. Pure: the outcome depends only on ``routing_input``.

    Rules, applied in order: manual override, per-command preference,
    quick-edit, cost-sensitive tier, context capacity, tier eligibility,
    largest-window fallback.
    """
    policy = routing_input.policy or RoutingPolicy.from_settings()
    classification = routing_input.classification
    intent = classification.intent if classification is not None else "unknown"

    override = routing_input.override
    forced_model = str(override.forced_model or "").strip() if override is not None else ""
    if forced_model:
        return RoutingDecision(
            model=forced_model,
            confidence=1.0,
            rationale=OVERRIDE_RATIONALE,
            alternatives=_alternatives(policy, forced_model),
            intent=intent,
            signals=("override",),
        )

    tier = policy.normalize_tier(routing_input.user_tier)
    eligible = policy.eligible_models(tier)
    selection_tokens = max(int(routing_input.selection_length_tokens or 0), 0)
    document_tokens = max(int(routing_input.document_length_tokens or 0), 0)
    total_tokens = selection_tokens + document_tokens + max(int(routing_input.estimated_context_tokens or 0), 0)
    command = classification.command.value if classification is not None else ""
    notes: list[str] = []
    signals: list[str] = [f"tier:{tier}"]

    preferred = policy.command_models.get(command)
    if preferred is None or preferred not in policy.catalog:
        model = policy.default_model
        confidence = policy.unknown_intent_confidence
        notes.append(f"No routing rule for intent {intent!r}; using default model {model}")
        signals.append("unknown_intent")
    else:
        model = preferred
        confidence = min(max(classification.confidence, CONFIDENCE_FLOOR), CONFIDENCE_CEILING)
        notes.append(f"Intent {intent!r} prefers {model}")

    if (
        command in policy.quick_edit_commands
        and selection_tokens > 0
        and document_tokens > 0
        and policy.quick_edit_model in policy.catalog
        and selection_tokens / document_tokens < policy.quick_edit_ratio
        and model != policy.quick_edit_model
    ):
        model = policy.quick_edit_model
        notes.append(f"Selection is under {policy.quick_edit_ratio:.0%} of the document; using {model} for a quick edit")
        signals.append("quick_edit")

    if tier in policy.cost_sensitive_tiers and command in policy.cost_sensitive_commands:
        cheapest = min(eligible, key=lambda name: (_cost(policy, name), eligible.index(name)))
        if cheapest != model:
            model = cheapest
            confidence = min(confidence, policy.cost_confidence_cap)
            notes.append(f"{tier} tier {command} request; switching to lower-cost {model}")
            signals.append("cost_sensitive")

    if not _fits(policy, model, total_tokens):
        replacement = _pick_fitting(policy, eligible, total_tokens)
        if replacement is not None:
            notes.append(f"{total_tokens} tokens exceed the {model} window; falling back to {replacement}")
            model = replacement
            confidence = min(confidence, policy.capacity_confidence_cap)
            signals.append("capacity")

    if model not in eligible:
        replacement = _pick_fitting(policy, eligible, total_tokens)
        if replacement is not None:
            notes.append(f"{model} is not available on the {tier} tier; using {replacement}")
            model = replacement
            confidence = min(confidence, policy.tier_confidence_cap)
            signals.append("tier_restricted")

    if model not in eligible or not _fits(policy, model, total_tokens):
        largest = max(eligible, key=lambda name: (_window(policy, name), -eligible.index(name)))
        notes.append(f"No eligible model fits {total_tokens} tokens; using largest window {largest}")
        model = largest
        confidence = min(confidence, policy.fallback_confidence_cap)
        signals.append("fallback")

    return RoutingDecision(
        model=model,
        confidence=round(min(max(confidence, 0.0), 1.0), 4),
        rationale="; ".join(notes),
        alternatives=_alternatives(policy, model),
        intent=intent,
        signals=tuple(signals),
    )
