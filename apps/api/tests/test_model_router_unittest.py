import unittest

from inkwell.core.config import settings
from inkwell.services.intent_classifier import classify_intent
from inkwell.services.model_router import (
    COMMAND_MODEL_MAP,
    MODEL_CATALOG,
    OVERRIDE_RATIONALE,
    ModelOverride,
    RoutingInput,
    RoutingPolicy,
    route_request,
    tier_eligible_models,
)


class ModelRouterTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "router_default_model": settings.router_default_model,
            "tier_free_models": settings.tier_free_models,
        }
        self.policy = RoutingPolicy()

    def tearDown(self) -> None:
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def _route(self, prompt: str, **kwargs):
        selection = kwargs.pop("selection", None)
        classification = classify_intent(prompt, command_hint=kwargs.pop("command_hint", None), selection=selection)
        kwargs.setdefault("policy", self.policy)
        return route_request(RoutingInput(classification=classification, **kwargs))

    def test_free_tier_continue_uses_default_model(self) -> None:
        selection = " ".join(["tide"] * 50)
        decision = self._route(
            "continue this scene",
            selection=selection,
            selection_length_tokens=65,
            user_tier="free",
        )
        self.assertEqual(decision.model, "claude-sonnet-4.5")
        self.assertTrue(decision.alternatives)
        self.assertNotIn(decision.model, decision.alternatives)
        self.assertGreater(decision.confidence, 0.0)
        self.assertLessEqual(decision.confidence, 1.0)
        self.assertEqual(decision.intent, "draft_continuation")

    def test_override_wins_regardless_of_other_inputs(self) -> None:
        for tier in ("free", "studio", "unknown"):
            for tokens in (0, 10_000_000):
                decision = self._route(
                    "summarize",
                    user_tier=tier,
                    estimated_context_tokens=tokens,
                    override=ModelOverride(forced_model="gpt-5"),
                )
                self.assertEqual(decision.model, "gpt-5")
                self.assertEqual(decision.rationale, OVERRIDE_RATIONALE)
                self.assertEqual(decision.confidence, 1.0)
                self.assertEqual(decision.alternatives, ("claude-sonnet-4.5", "deepseek"))

    def test_router_is_pure(self) -> None:
        routing_input = RoutingInput(
            classification=classify_intent("rewrite this", selection="A sentence."),
            selection_length_tokens=4,
            document_length_tokens=2000,
            user_tier="professional",
            policy=self.policy,
        )
        first = route_request(routing_input)
        settings.router_default_model = "gpt-5"
        settings.tier_free_models = ["deepseek"]
        second = route_request(routing_input)
        self.assertEqual(first, second)

    def test_quick_edit_prefers_fast_model(self) -> None:
        decision = self._route(
            "rewrite this line",
            selection="One line.",
            selection_length_tokens=10,
            document_length_tokens=1000,
            user_tier="professional",
        )
        self.assertEqual(decision.model, "deepseek")
        self.assertIn("quick_edit", decision.signals)

        large_selection = self._route(
            "rewrite this passage",
            selection="Many lines.",
            selection_length_tokens=400,
            document_length_tokens=1000,
            user_tier="professional",
        )
        self.assertEqual(large_selection.model, "gpt-5")

    def test_cost_sensitive_tier_uses_cheapest_model(self) -> None:
        policy = RoutingPolicy(command_models={**COMMAND_MODEL_MAP, "summarize": "gpt-5"})
        decision = self._route("summarize the chapter", user_tier="hobbyist", policy=policy)
        self.assertEqual(decision.model, "deepseek")
        self.assertLessEqual(decision.confidence, policy.cost_confidence_cap)
        self.assertIn("cost_sensitive", decision.signals)

        professional = self._route("summarize the chapter", user_tier="professional", policy=policy)
        self.assertEqual(professional.model, "gpt-5")

    def test_capacity_switches_to_fitting_model(self) -> None:
        decision = self._route(
            "analyze the pacing",
            user_tier="professional",
            estimated_context_tokens=150_000,
        )
        self.assertEqual(decision.model, "claude-sonnet-4.5")
        self.assertLessEqual(decision.confidence, 0.75)
        self.assertIn("capacity", decision.signals)

    def test_tier_restriction_replaces_ineligible_model(self) -> None:
        decision = self._route("rewrite the dialogue", selection="Hi.", user_tier="free")
        self.assertEqual(decision.model, "claude-sonnet-4.5")
        self.assertLessEqual(decision.confidence, 0.65)
        self.assertIn("tier_restricted", decision.signals)

    def test_fallback_to_largest_window_when_nothing_fits(self) -> None:
        decision = self._route("continue", user_tier="free", estimated_context_tokens=500_000)
        self.assertEqual(decision.model, "claude-sonnet-4.5")
        self.assertLessEqual(decision.confidence, 0.5)
        self.assertIn("fallback", decision.signals)

    def test_missing_classification_uses_default_model(self) -> None:
        decision = route_request(RoutingInput(classification=None, policy=self.policy))
        self.assertEqual(decision.model, self.policy.default_model)
        self.assertLessEqual(decision.confidence, 0.3)
        self.assertEqual(decision.intent, "unknown")

    def test_unknown_tier_is_treated_as_free(self) -> None:
        self.assertEqual(tier_eligible_models("platinum", self.policy), ("claude-sonnet-4.5",))
        self.assertEqual(tier_eligible_models("studio", self.policy), tuple(MODEL_CATALOG))


if __name__ == "__main__":
    unittest.main()
