from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from inkwell.core.config import settings


class AICommand(str, Enum):
    CONTINUE = "continue"
    REWRITE = "rewrite"
    SHORTEN = "shorten"
    EXPAND = "expand"
    TONE_SHIFT = "tone_shift"
    SUMMARIZE = "summarize"
    BRAINSTORM = "brainstorm"
    NOTES = "notes"
    ANALYZE = "analyze"
    GENERATE = "generate"


COMMAND_INTENTS: dict[AICommand, str] = {
    AICommand.CONTINUE: "draft_continuation",
    AICommand.REWRITE: "revision",
    AICommand.SHORTEN: "condensation",
    AICommand.EXPAND: "elaboration",
    AICommand.TONE_SHIFT: "tone_adjustment",
    AICommand.SUMMARIZE: "summary",
    AICommand.BRAINSTORM: "ideation",
    AICommand.NOTES: "critique",
    AICommand.ANALYZE: "analysis",
    AICommand.GENERATE: "freeform",
}

COMMAND_ALIASES: dict[str, AICommand] = {
    "continue": AICommand.CONTINUE,
    "expand": AICommand.EXPAND,
    "extend": AICommand.EXPAND,
    "rewrite": AICommand.REWRITE,
    "revise": AICommand.REWRITE,
    "edit": AICommand.REWRITE,
    "shorten": AICommand.SHORTEN,
    "compress": AICommand.SHORTEN,
    "tone": AICommand.TONE_SHIFT,
    "tone_shift": AICommand.TONE_SHIFT,
    "retone": AICommand.TONE_SHIFT,
    "summarize": AICommand.SUMMARIZE,
    "summary": AICommand.SUMMARIZE,
    "brainstorm": AICommand.BRAINSTORM,
    "ideas": AICommand.BRAINSTORM,
    "notes": AICommand.NOTES,
    "feedback": AICommand.NOTES,
    "analyze": AICommand.ANALYZE,
    "analyse": AICommand.ANALYZE,
    "analysis": AICommand.ANALYZE,
    "generate": AICommand.GENERATE,
    "write": AICommand.GENERATE,
}

HINT_CONFIDENCE = 0.95
KEYWORD_CONFIDENCE = 0.8
SELECTION_CUE_CONFIDENCE = 0.7
SELECTION_ONLY_CONFIDENCE = 0.55
LARGE_CONTEXT_CONFIDENCE = 0.4
AMBIGUOUS_CONFIDENCE = 0.3
EMPTY_PROMPT_CONFIDENCE = 0.1


def _patterns(*raw: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(item, re.IGNORECASE) for item in raw)


# First match wins; order encodes precedence between overlapping cues.
_KEYWORD_RULES: tuple[tuple[AICommand, tuple[re.Pattern[str], ...], str], ...] = (
    (
        AICommand.CONTINUE,
        _patterns(r"\bcontinue\b", r"\bnext scene\b", r"\bkeep going\b", r"\bwhat happens next\b"),
        "Prompt references continuing the draft",
    ),
    (
        AICommand.REWRITE,
        _patterns(r"\brewrite\b", r"\brephrase\b", r"\bclean up\b", r"\bpolish\b", r"\breword\b"),
        "Prompt asks for rewriting or polishing",
    ),
    (
        AICommand.SHORTEN,
        _patterns(r"\bshorten\b", r"\bcondense\b", r"\bmake it shorter\b", r"\btrim\b"),
        "Prompt requests a shorter version",
    ),
    (
        AICommand.EXPAND,
        _patterns(r"\bexpand\b", r"\belaborate\b", r"\bmake it longer\b", r"\badd detail\b"),
        "Prompt asks to elaborate or add detail",
    ),
    (
        AICommand.TONE_SHIFT,
        _patterns(
            r"\bchange the tone\b",
            r"\badjust (?:the )?tone\b",
            r"\bmake it (?:darker|lighter|happier|scarier|funnier|more formal|more casual)\b",
        ),
        "Prompt requests tone adjustments",
    ),
    (
        AICommand.SUMMARIZE,
        _patterns(r"\bsummari[sz]e\b", r"\bgive me a summary\b", r"\bbullet points\b", r"\btl;dr\b"),
        "Prompt explicitly asks for a summary",
    ),
    (
        AICommand.BRAINSTORM,
        _patterns(r"\bideas\b", r"\bbrainstorm\b", r"\bwhat if\b", r"\bconcepts\b"),
        "Prompt seeks idea generation",
    ),
    (
        AICommand.NOTES,
        _patterns(r"\bfeedback\b", r"\bnotes\b", r"\bcritique\b", r"\bwhat'?s wrong\b"),
        "Prompt seeks critique or notes",
    ),
    (
        AICommand.ANALYZE,
        _patterns(r"\banaly[sz]e\b", r"\banalysis\b", r"\bpacing\b", r"\bplot holes?\b", r"\bconsisten(?:t|cy)\b"),
        "Prompt asks for structural analysis",
    ),
)

_SELECTION_SHORTEN_CUES = _patterns(r"\bshort", r"\btighten\b", r"\btrim\b", r"\bcut\b")
_SELECTION_EXPAND_CUES = _patterns(r"\bexpand", r"\badd detail\b", r"\bmore vivid\b", r"\bflesh out\b")


@dataclass(frozen=True)
class Classification:
    command: AICommand
    intent: str
    confidence: float
    rationale: str
    signals: tuple[str, ...] = ()


def normalize_command(value: str | None) -> AICommand | None:
    key = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
    if not key:
        return None
    return COMMAND_ALIASES.get(key)


def _build(command: AICommand, rationale: str, confidence: float, *signals: str) -> Classification:
    return Classification(
        command=command,
        intent=COMMAND_INTENTS[command],
        confidence=round(min(max(float(confidence), 0.0), 1.0), 4),
        rationale=rationale,
        signals=tuple(signals),
    )


def _any_match(patterns: tuple[re.Pattern[str], ...], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def classify_intent(
    prompt: str | None,
    *,
    command_hint: str | None = None,
    selection: str | None = None,
    context: str | None = None,
) -> Classification:
    """Map a free-form prompt to a command; never raises."""
    text = str(prompt or "").strip()
    selected = str(selection or "").strip()
    hinted = normalize_command(command_hint)

    if hinted is not None:
        return _build(hinted, f'Explicit command hint "{command_hint}"', HINT_CONFIDENCE, "command_hint")

    min_chars = int(settings.intent_min_prompt_chars)
    if len("".join(text.split())) < min_chars and not selected:
        return _build(AICommand.GENERATE, "Prompt too short to infer intent", EMPTY_PROMPT_CONFIDENCE, "short_prompt")

    for command, patterns, rationale in _KEYWORD_RULES:
        if _any_match(patterns, text):
            return _build(command, rationale, KEYWORD_CONFIDENCE, "keyword", f"keyword:{command.value}")

    if selected:
        if _any_match(_SELECTION_SHORTEN_CUES, text):
            return _build(
                AICommand.SHORTEN,
                "Selection provided with shortening cues",
                SELECTION_CUE_CONFIDENCE,
                "selection",
                "selection_cue:shorten",
            )
        if _any_match(_SELECTION_EXPAND_CUES, text):
            return _build(
                AICommand.EXPAND,
                "Selection provided with expansion cues",
                SELECTION_CUE_CONFIDENCE,
                "selection",
                "selection_cue:expand",
            )
        return _build(
            AICommand.REWRITE,
            "Selection detected without explicit instruction; leaning rewrite",
            SELECTION_ONLY_CONFIDENCE,
            "selection",
        )

    if context and len(context) > int(settings.intent_large_context_chars):
        return _build(
            AICommand.SUMMARIZE,
            "Very large context provided; assuming summary",
            LARGE_CONTEXT_CONFIDENCE,
            "large_context",
        )

    return _build(AICommand.GENERATE, "No clear intent signal; using general generation", AMBIGUOUS_CONFIDENCE, "fallback")
