import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine, select

from inkwell.core.auth import AuthPrincipal
from inkwell.core.config import settings
from inkwell.core.errors import (
    AuthorizationError,
    QuotaExceededError,
    ResourceNotFoundError,
    UpstreamModelError,
    ValidationError,
)
from inkwell.models import AIRequestLog, Character, Document, Project, StoryEvent, UserProfile
from inkwell.services.context_bundle import TRUNCATION_WARNING
from inkwell.services.generation_pipeline import GenerationCommand, GenerationPipeline, cap_warnings
from inkwell.services.llm_provider import ModelInvocationResult, ModelUsage
from inkwell.services.quota import current_period


def _result(content: str = "The gulls screamed over the harbor.", model: str = "claude-sonnet-4.5") -> ModelInvocationResult:
    return ModelInvocationResult(
        content=content,
        usage=ModelUsage(input_tokens=900, output_tokens=12, total_cost=0.00288),
        model=model,
        provider="stub",
    )


class GenerationPipelineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "auth_enabled": settings.auth_enabled,
            "context_token_budget": settings.context_token_budget,
            "langfuse_enabled": settings.langfuse_enabled,
            "tier_monthly_word_limits": settings.tier_monthly_word_limits,
        }
        settings.auth_enabled = True
        settings.context_token_budget = 4000
        settings.langfuse_enabled = False
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        SQLModel.metadata.create_all(self.engine)
        self.project_id, self.document_id = self._seed()
        self.invoke = AsyncMock(return_value=_result())
        self.pipeline = GenerationPipeline(self._session_factory, invoke=self.invoke)

    def tearDown(self) -> None:
        SQLModel.metadata.drop_all(self.engine)
        self.engine.dispose()
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def _session_factory(self) -> Session:
        return Session(self.engine)

    def _seed(self) -> tuple[int, int]:
        with Session(self.engine) as db:
            project = Project(user_id="alice", title="Salt Maps", genre="Adventure")
            db.add(project)
            db.commit()
            db.refresh(project)
            project_id = int(project.id or 0)
            db.add(Character(project_id=project_id, user_id="alice", name="Mira", role="protagonist", description="A cartographer."))
            db.add(StoryEvent(project_id=project_id, user_id="alice", title="Storm", importance="major", event_date="2025-01-05"))
            document = Document(project_id=project_id, user_id="alice", title="Chapter 1", content="Mira ran along the quay. " * 40)
            db.add(document)
            db.commit()
            db.refresh(document)
            return project_id, int(document.id or 0)

    def _command(self, **overrides) -> GenerationCommand:
        values = {
            "principal": AuthPrincipal(user_id="alice", tier="free"),
            "prompt": "continue this scene",
            "document_id": self.document_id,
            "request_id": "req-test",
        }
        values.update(overrides)
        return GenerationCommand(**values)

    def _logs(self) -> list[AIRequestLog]:
        with Session(self.engine) as db:
            return list(db.exec(select(AIRequestLog)).all())

    def test_successful_run_persists_telemetry_once(self) -> None:
        outcome = asyncio.run(self.pipeline.run(self._command(selection="Mira paused.")))

        self.assertEqual(outcome.content, "The gulls screamed over the harbor.")
        self.assertEqual(outcome.model, "claude-sonnet-4.5")
        self.assertEqual(outcome.classification.command.value, "continue")
        self.assertTrue(outcome.routing.alternatives)
        self.assertEqual(outcome.words_generated, 6)
        self.assertEqual(outcome.monthly_used, 6)
        self.assertEqual(outcome.monthly_limit, 25000)
        self.assertEqual(outcome.context_preview.project.title, "Salt Maps")
        self.assertEqual(outcome.context_preview.top_characters[0].label, "Mira")

        model, prompt, context, max_tokens = self.invoke.await_args.args
        self.assertEqual(model, "claude-sonnet-4.5")
        self.assertEqual(prompt, "continue this scene")
        self.assertIn("ACTIVE SELECTION\nMira paused.", context)
        self.assertIn("[Character] Mira", context)
        self.assertEqual(max_tokens, settings.llm_default_max_tokens)

        logs = self._logs()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].status, "succeeded")
        self.assertEqual(logs[0].state, "persisted")
        self.assertEqual(logs[0].selected_model, "claude-sonnet-4.5")
        self.assertEqual(logs[0].project_id, self.project_id)
        self.assertEqual(logs[0].words_generated, 6)

    def test_explicit_context_shrinks_generated_budget(self) -> None:
        settings.context_token_budget = 2200
        explicit = " ".join(["a"] * 1538)
        selection = " ".join(["b"] * 231)
        outcome = asyncio.run(self.pipeline.run(self._command(context=explicit, selection=selection)))

        self.assertEqual(outcome.context_tokens.explicit, 2000)
        self.assertEqual(outcome.context_tokens.selection, 301)
        self.assertLessEqual(outcome.context_tokens.generated, 200)
        self.assertIn(TRUNCATION_WARNING, outcome.context_warnings)
        _model, prompt, context, _max_tokens = self.invoke.await_args.args
        self.assertIn("Selected text:", prompt)
        self.assertIn("ADDITIONAL CONTEXT:", context)

    def test_tight_budget_preview_matches_rendered_context(self) -> None:
        settings.context_token_budget = 300
        with Session(self.engine) as db:
            for index in range(8):
                db.add(
                    Character(
                        project_id=self.project_id,
                        user_id="alice",
                        name=f"Sailor {index}",
                        role="protagonist",
                        description=" ".join(["weathered"] * 25),
                    )
                )
            db.commit()

        outcome = asyncio.run(self.pipeline.run(self._command()))

        self.assertIn(TRUNCATION_WARNING, outcome.context_warnings)
        self.assertLessEqual(outcome.context_tokens.generated, 300)
        _model, _prompt, context, _max_tokens = self.invoke.await_args.args
        for item in outcome.context_preview.top_characters:
            self.assertIn(f"[Character] {item.label}", context)
        for item in outcome.context_preview.recent_excerpts:
            self.assertIn(item.label, context)

    def test_warning_cap_keeps_truncation_notice(self) -> None:
        warnings = ("first", "second", "third", TRUNCATION_WARNING)
        self.assertEqual(cap_warnings(warnings, 2), ("first", TRUNCATION_WARNING))
        self.assertEqual(cap_warnings(warnings, 0), ())
        self.assertEqual(cap_warnings(("first",), 5), ("first",))

    def test_validation_failure_short_circuits_before_classification(self) -> None:
        with patch("inkwell.services.generation_pipeline.classify_intent") as classify:
            with self.assertRaises(ValidationError):
                asyncio.run(self.pipeline.run(self._command(prompt="   ")))
            classify.assert_not_called()
        self.invoke.assert_not_awaited()

        logs = self._logs()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].status, "failed")
        self.assertEqual(logs[0].error_code, "validation_error")
        self.assertEqual(logs[0].extra["last_completed_stage"], "received")

    def test_oversized_context_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            asyncio.run(self.pipeline.run(self._command(context="x" * (settings.max_context_chars + 1))))

    def test_quota_exhaustion_stops_before_classification(self) -> None:
        with Session(self.engine) as db:
            db.add(UserProfile(user_id="alice", ai_words_used_this_month=25000, usage_period=current_period()))
            db.commit()
        with self.assertRaises(QuotaExceededError) as ctx:
            asyncio.run(self.pipeline.run(self._command()))
        self.assertEqual(ctx.exception.limit, 25000)
        self.invoke.assert_not_awaited()
        self.assertIsNone(self._logs()[0].command)

    def test_override_outside_tier_is_forbidden(self) -> None:
        with self.assertRaises(AuthorizationError) as ctx:
            asyncio.run(self.pipeline.run(self._command(model="gpt-5")))
        self.assertEqual(ctx.exception.status_code, 403)

        with self.assertRaises(ValidationError):
            asyncio.run(self.pipeline.run(self._command(model="not-a-model", request_id="req-2")))

    def test_override_is_honored_for_eligible_tier(self) -> None:
        principal = AuthPrincipal(user_id="alice", tier="professional")
        outcome = asyncio.run(self.pipeline.run(self._command(principal=principal, model="deepseek")))
        self.assertEqual(outcome.model, "deepseek")
        self.assertEqual(outcome.routing.rationale, "User selected model")

    def test_cross_tenant_document_is_rejected(self) -> None:
        principal = AuthPrincipal(user_id="mallory", tier="free")
        with self.assertRaises(AuthorizationError):
            asyncio.run(self.pipeline.run(self._command(principal=principal)))
        with self.assertRaises(ResourceNotFoundError):
            asyncio.run(self.pipeline.run(self._command(document_id=424242, request_id="req-3")))

    def test_upstream_failure_is_recorded_with_correlation_id(self) -> None:
        self.invoke.side_effect = UpstreamModelError("provider exploded", model="claude-sonnet-4.5")
        with self.assertRaises(UpstreamModelError) as ctx:
            asyncio.run(self.pipeline.run(self._command()))
        self.assertEqual(ctx.exception.correlation_id, "req-test")
        self.assertNotIn("exploded", str(ctx.exception.to_detail()))

        row = self._logs()[0]
        self.assertEqual(row.status, "failed")
        self.assertEqual(row.selected_model, "claude-sonnet-4.5")
        self.assertEqual(row.command, "continue")
        self.assertEqual(row.extra["last_completed_stage"], "routed")

    def test_telemetry_failure_does_not_fail_request(self) -> None:
        with patch(
            "inkwell.services.telemetry.build_request_log",
            side_effect=RuntimeError("sink down"),
        ) as build_log:
            with self.assertLogs("inkwell.services.telemetry", level="ERROR"):
                outcome = asyncio.run(self.pipeline.run(self._command()))
        build_log.assert_called_once()
        self.assertEqual(outcome.model, "claude-sonnet-4.5")
        self.assertEqual(self._logs(), [])

    def test_route_preview_skips_model_call(self) -> None:
        preview = self.pipeline.preview_route(self._command(prompt="summarize the chapter"))
        self.assertEqual(preview.classification.command.value, "summarize")
        self.assertEqual(preview.routing.model, "claude-sonnet-4.5")
        self.assertEqual(preview.tier, "free")
        self.invoke.assert_not_awaited()


if __name__ == "__main__":
    unittest.main()
