from __future__ import annotations

from typing import Any


class PolicySettings:
    """Proxy view for request limits, context budgeting, routing and tier policy on root Settings."""

    FIELD_NAMES: tuple[str, ...] = (
        "max_prompt_chars",
        "max_context_chars",
        "max_selection_chars",
        "intent_min_prompt_chars",
        "intent_large_context_chars",
        "context_token_budget",
        "context_reserve_ratio",
        "token_estimate_factor",
        "context_excerpt_max_chars",
        "context_excerpt_limit",
        "context_preview_max_items",
        "context_preview_max_chars",
        "context_max_warnings",
        "router_default_model",
        "router_quick_edit_model",
        "router_quick_edit_ratio",
        "router_cost_sensitive_tiers",
        "router_capacity_confidence_cap",
        "router_tier_confidence_cap",
        "router_cost_confidence_cap",
        "router_fallback_confidence_cap",
        "router_unknown_intent_confidence",
        "ensemble_blend_model",
        "ensemble_max_suggestions",
        "ensemble_max_models",
        "tier_free_models",
        "tier_paid_models",
        "tier_monthly_word_limits",
        "tier_monthly_request_limits",
    )

    def __init__(self, root: Any) -> None:
        object.__setattr__(self, "_root", root)

    def __getattr__(self, name: str) -> Any:
        if name in self.FIELD_NAMES:
            return getattr(self._root, name)
        raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self.FIELD_NAMES:
            setattr(self._root, name, value)
            return
        object.__setattr__(self, name, value)
