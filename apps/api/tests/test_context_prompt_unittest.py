import unittest
from datetime import datetime, timezone

from inkwell.core.config import settings
from inkwell.services.context_bundle import TRUNCATION_WARNING
from inkwell.services.context_prompt import (
    build_context_preview,
    generate_context_prompt,
    reconcile_bundle,
    resolve_reserve_tokens,
)
from inkwell.services.story_context import (
    ContextBundle,
    ContextExcerpt,
    ProjectMetadata,
    StoryBibleEntry,
    TimelineEvent,
    estimate_tokens,
    selection_excerpt,
)


def _bundle() -> ContextBundle:
    return ContextBundle(
        project=ProjectMetadata(project_id="7", title="Salt Maps", genre="Adventure", pov="Third person"),
        story_bible=(
            StoryBibleEntry(
                id="character-1",
                name="Mira",
                entity_type="character",
                summary="A cartographer chasing a lost coast.",
                importance="main",
                traits=("stubborn", "curious"),
            ),
            StoryBibleEntry(
                id="location-10",
                name="Gull Harbor",
                entity_type="location",
                summary="A crooked port town full of " + "salt-stained " * 30 + "docks.",
            ),
        ),
        timeline=(
            TimelineEvent(id="event-30", title="Storm", summary="The fleet scatters.", timestamp="2025-01-05", importance="major"),
        ),
        recent_excerpts=(
            selection_excerpt("Mira folded the chart twice."),
            ContextExcerpt(
                id="document-40",
                label="Chapter 1",
                content="Mira unrolled the map.",
                source="chapter",
                created_at=datetime(2025, 2, 1, tzinfo=timezone.utc),
            ),
        ),
    )


class ContextPromptGeneratorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._snapshot = {
            "context_reserve_ratio": settings.context_reserve_ratio,
            "context_preview_max_chars": settings.context_preview_max_chars,
            "context_preview_max_items": settings.context_preview_max_items,
        }
        settings.context_reserve_ratio = 0.1

    def tearDown(self) -> None:
        for key, value in self._snapshot.items():
            setattr(settings, key, value)

    def test_sections_render_in_order(self) -> None:
        result = generate_context_prompt(_bundle(), max_tokens=4000)
        prompt = result.prompt
        self.assertTrue(prompt.startswith("PROJECT: Salt Maps"))
        positions = [prompt.index(title) for title in ("ACTIVE SELECTION", "STORY BIBLE", "TIMELINE SNAPSHOT", "RECENT EXCERPTS")]
        self.assertEqual(positions, sorted(positions))
        self.assertIn("[Character] Mira\nTraits: stubborn, curious", prompt)
        self.assertIn("- [2025-01-05] Storm: The fleet scatters.", prompt)
        self.assertEqual(result.omitted_entries, ())

    def test_used_plus_reserve_never_exceeds_max(self) -> None:
        bundle = _bundle()
        for max_tokens in (0, 3, 10, 25, 60, 120, 400):
            with self.subTest(max_tokens=max_tokens):
                result = generate_context_prompt(bundle, max_tokens=max_tokens)
                self.assertEqual(result.used_tokens, estimate_tokens(result.prompt))
                self.assertLessEqual(result.used_tokens + result.reserve_tokens, max_tokens)

    def test_omitted_entries_are_reported(self) -> None:
        result = generate_context_prompt(_bundle(), max_tokens=45)
        omitted_ids = {entry.id for entry in result.omitted_entries}
        self.assertIn("location-10", omitted_ids)
        self.assertNotIn("Gull Harbor", result.prompt)

    def test_reconcile_drops_unrendered_entries_and_warns(self) -> None:
        bundle = _bundle()
        generated = generate_context_prompt(bundle, max_tokens=45)
        reconciled = reconcile_bundle(bundle, generated)

        self.assertIn(TRUNCATION_WARNING, reconciled.warnings)
        self.assertNotIn("location-10", [entry.id for entry in reconciled.story_bible])
        for entry in reconciled.story_bible + reconciled.timeline + reconciled.recent_excerpts:
            self.assertNotIn(entry, generated.omitted_entries)
        self.assertIn("location-10", {entry.id for entry in reconciled.omitted_entries})
        self.assertLessEqual(reconciled.used_tokens, bundle.used_tokens)
        preview = build_context_preview(reconciled)
        self.assertEqual(preview.top_locations, ())
        for item in preview.top_characters:
            self.assertIn(item.label, generated.prompt)

    def test_reconcile_without_drops_keeps_bundle(self) -> None:
        bundle = _bundle()
        generated = generate_context_prompt(bundle, max_tokens=4000)
        self.assertIs(reconcile_bundle(bundle, generated), bundle)

    def test_disabled_sections_are_not_counted_as_omitted(self) -> None:
        result = generate_context_prompt(_bundle(), max_tokens=4000, include_timeline=False, include_excerpts=False)
        self.assertNotIn("TIMELINE SNAPSHOT", result.prompt)
        self.assertNotIn("RECENT EXCERPTS", result.prompt)
        self.assertEqual(result.omitted_entries, ())

    def test_generation_is_idempotent(self) -> None:
        bundle = _bundle()
        self.assertEqual(
            generate_context_prompt(bundle, max_tokens=80),
            generate_context_prompt(bundle, max_tokens=80),
        )

    def test_reserve_resolution(self) -> None:
        self.assertEqual(resolve_reserve_tokens(100), 10)
        self.assertEqual(resolve_reserve_tokens(100, 250), 100)
        self.assertEqual(resolve_reserve_tokens(100, -5), 0)
        self.assertEqual(resolve_reserve_tokens(0), 0)

    def test_preview_is_bounded(self) -> None:
        settings.context_preview_max_chars = 20
        settings.context_preview_max_items = 1
        preview = build_context_preview(_bundle())
        self.assertEqual(len(preview.top_characters), 1)
        self.assertEqual(preview.top_locations[0].label, "Gull Harbor")
        self.assertLessEqual(len(preview.top_locations[0].detail), 23)
        self.assertEqual(len(preview.recent_excerpts), 1)
        self.assertEqual(preview.recent_excerpts[0].id, "document-40")
        self.assertEqual(preview.upcoming_events[0].meta, "2025-01-05")


if __name__ == "__main__":
    unittest.main()
