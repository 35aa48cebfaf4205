"""Generation orchestrator — turns one request into a narrative beat.

Request flow:
  1. Render the prompt for the segment kind. The world view is passed in with
     the request or read through an injected lookup, never from shared state.
  2. Call the LLM. On failure classify the error:
       retryable and budget left → back off (no delay by default), call again
       otherwise                 → stop trying
  3. On success, normalise the output: plain text, a JSON object carrying
     choices, or a GeneratedContent from a structured backend.
  4. When no attempt succeeded, ask the fallback selector for curated content
     matching the theme and tags; if it has nothing, serve a minimal built-in
     text.

The caller always gets a result. Failures show up only as
is_ai_generated=False, a fallback_reason, and the attempt log in the
metadata.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from datetime import datetime

from rpg_narrator.errors import ClassifiedError, classify_error
from rpg_narrator.fallback.content import default_entries
from rpg_narrator.fallback.selector import GENERIC_THEME, FallbackContentSelector
from rpg_narrator.llm import LLM, LLMError
from rpg_narrator.models import (
    CharacterView,
    Choice,
    ErrorKind,
    FallbackContentEntry,
    GeneratedContent,
    GenerationAttempt,
    GenerationContext,
    GenerationMetadata,
    GenerationParameters,
    GenerationRequest,
    GenerationResult,
    SegmentKind,
    WorldView,
    utcnow,
)
from rpg_narrator.pipeline.backoff import BackoffStrategy, no_backoff
from rpg_narrator.prompts import build_prompt

logger = logging.getLogger(__name__)

WorldLookup = Callable[[str], WorldView | None]
CharacterLookup = Callable[[str], CharacterView | None]

DEFAULT_MAX_RETRIES = 2

MINIMAL_CONTENT = (
    "The story pauses for a moment while you gather your thoughts. "
    "Whatever comes next, the choice is still yours."
)

GENERIC_CHOICES: tuple[Choice, ...] = (
    Choice(text="Continue onward", outcome="You press on to see what lies ahead.", tags=["continue"]),
    Choice(text="Take a careful look around", outcome="You pause and study your surroundings.", tags=["explore"]),
    Choice(text="Wait and listen", outcome="You stay still and let the moment unfold.", tags=["cautious"]),
)

# Choices that can be offered whenever a curated entry carries the tag.
_TAG_CHOICES: dict[str, Choice] = {
    "forest": Choice(text="Search the undergrowth", outcome="You part the ferns and look for tracks.", tags=["forest", "explore"]),
    "night": Choice(text="Find shelter until dawn", outcome="You look for somewhere safe to wait out the dark.", tags=["rest"]),
    "combat": Choice(text="Stand your ground", outcome="You brace yourself for the fight.", tags=["combat", "brave"]),
    "creature": Choice(text="Try to scare it off", outcome="You make yourself look as large and loud as you can.", tags=["intimidation"]),
    "city": Choice(text="Ask the locals for news", outcome="A passer-by stops long enough to share some gossip.", tags=["information", "social"]),
    "marketplace": Choice(text="Browse the stalls", outcome="You drift from stall to stall, eyes open for bargains.", tags=["shopping"]),
    "tavern": Choice(text="Order a drink and listen", outcome="You settle in and let the conversations wash over you.", tags=["information"]),
    "social": Choice(text="Strike up a conversation", outcome="You introduce yourself to the nearest friendly face.", tags=["social"]),
    "mysterious": Choice(text="Investigate more closely", outcome="You step closer to get a better look.", tags=["mysterious"]),
    "travel": Choice(text="Keep moving", outcome="You set a steady pace and cover good ground.", tags=["travel"]),
    "mountain": Choice(text="Look for a safer path", outcome="You scan the slopes for an easier way up.", tags=["cautious"]),
    "river": Choice(text="Follow the water", outcome="You stay close to the riverbank as it winds onward.", tags=["travel"]),
    "station": Choice(text="Check the nearest terminal", outcome="The screen flickers to life under your hand.", tags=["information"]),
}
_MAX_DERIVED_CHOICES = 3


class GenerationOrchestrator:
    """Bounded-retry generation with deterministic fallback.

    Args:
        llm:              Injected generation collaborator.
        selector:         Curated fallback content. Defaults to the shipped content.
        world_lookup:     Returns a read-only view of a world by id.
        character_lookup: Returns a read-only view of a character by id.
        max_retries:      Retries after the first attempt (2 → up to 3 calls).
        backoff:          Delay before each retry; none by default.
    """

    def __init__(
        self,
        llm: LLM,
        selector: FallbackContentSelector | None = None,
        *,
        world_lookup: WorldLookup | None = None,
        character_lookup: CharacterLookup | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff: BackoffStrategy = no_backoff,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self._llm = llm
        self.selector = selector if selector is not None else FallbackContentSelector(default_entries())
        self._world_lookup = world_lookup
        self._character_lookup = character_lookup
        self.max_retries = max_retries
        self._backoff = backoff
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate_segment(
        self, request: GenerationRequest, world: WorldView | None = None
    ) -> GenerationResult:
        """Generate one beat. Never raises for generation failures.

        `world` is used as given for this call only; without it the world is
        read through world_lookup.
        """
        ctx = request.context
        if world is None:
            world = self._world(ctx.world_id)
        characters = self._characters(ctx.character_ids)
        return await self._run(request, world, characters)

    async def generate_initial_scene(
        self,
        world_id: str,
        character_ids: Sequence[str],
        world: WorldView | None = None,
    ) -> GenerationResult:
        """Generate the opening scene; the result is always tagged with the world's theme."""
        if world is None:
            world = self._world(world_id)
        theme = world.theme if world and world.theme else GENERIC_THEME
        request = GenerationRequest(
            segment_kind=SegmentKind.INITIAL_SCENE,
            context=GenerationContext(
                theme=theme,
                tags=["beginning"],
                world_id=world_id,
                character_ids=list(character_ids),
            ),
            parameters=GenerationParameters(include_choices=True),
        )
        result = await self._run(request, world, self._characters(character_ids))
        if theme not in result.tags:
            result = result.model_copy(update={"tags": [theme, *result.tags]})
        return result

    # ------------------------------------------------------------------
    # Attempt loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        request: GenerationRequest,
        world: WorldView | None,
        characters: list[CharacterView],
    ) -> GenerationResult:
        kind = request.segment_kind
        attempts: list[GenerationAttempt] = []
        failure: ClassifiedError | None = None

        for index in range(self.max_retries + 1):
            if index:
                delay = self._backoff(index)
                if delay > 0:
                    logger.debug("backing off %.2fs before retry %d", delay, index)
                    await self._sleep(delay)

            started = self._clock()
            external = False
            try:
                prompt = build_prompt(request, world, characters)
                external = True
                output = await self._llm(kind.value, prompt)
                external = False
                generated = _normalise(output, request.parameters.include_choices)
            except Exception as e:
                failure = classify_error(e, external=external)
                attempts.append(GenerationAttempt(
                    index=index, timestamp=started, outcome="failure",
                    error_kind=failure.kind, error_message=failure.message,
                ))
                logger.warning(
                    "generation attempt %d/%d for %s failed: %s (retryable=%s): %s",
                    index + 1, self.max_retries + 1, kind.value,
                    failure.kind.value, failure.retryable, failure.message,
                )
                if not failure.retryable:
                    break
                continue

            attempts.append(GenerationAttempt(index=index, timestamp=started, outcome="success"))
            return self._ai_result(request, generated, attempts)

        return self._fallback_result(request, world, failure, attempts)

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------

    def _metadata(
        self,
        request: GenerationRequest,
        attempts: list[GenerationAttempt],
        content_id: str | None = None,
    ) -> GenerationMetadata:
        return GenerationMetadata(
            retry_attempts=len(attempts) - 1,
            attempts=attempts,
            content_id=content_id,
            world_id=request.context.world_id,
            character_ids=list(request.context.character_ids),
            timestamp=self._clock(),
        )

    def _ai_result(
        self,
        request: GenerationRequest,
        generated: GeneratedContent,
        attempts: list[GenerationAttempt],
    ) -> GenerationResult:
        choices: list[Choice] | None = [c.model_copy(deep=True) for c in generated.choices] or None
        if request.parameters.include_choices and not choices:
            choices = [c.model_copy(deep=True) for c in GENERIC_CHOICES]
        return GenerationResult(
            content=generated.content,
            is_ai_generated=True,
            segment_kind=request.segment_kind,
            tags=list(generated.tags or request.context.tags),
            choices=choices,
            metadata=self._metadata(request, attempts),
        )

    def _fallback_result(
        self,
        request: GenerationRequest,
        world: WorldView | None,
        failure: ClassifiedError | None,
        attempts: list[GenerationAttempt],
    ) -> GenerationResult:
        reason = failure.kind if failure else ErrorKind.UNKNOWN
        ctx = request.context
        theme = ctx.theme or (world.theme if world else "") or GENERIC_THEME

        entry = self.selector.select(theme, request.segment_kind, ctx.tags, ctx.session_id)
        if entry is None:
            logger.warning(
                "no curated content for %s/%s; serving minimal text (reason=%s)",
                theme, request.segment_kind.value, reason.value,
            )
            content, tags, content_id = MINIMAL_CONTENT, [theme], None
        else:
            logger.info(
                "serving fallback %s for %s (reason=%s)",
                entry.id, request.segment_kind.value, reason.value,
            )
            content, tags, content_id = entry.body, list(entry.tags), entry.id

        return GenerationResult(
            content=content,
            is_ai_generated=False,
            fallback_reason=reason,
            segment_kind=request.segment_kind,
            tags=tags,
            choices=_fallback_choices(entry, request.parameters.include_choices),
            metadata=self._metadata(request, attempts, content_id),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _world(self, world_id: str | None) -> WorldView | None:
        if not world_id or self._world_lookup is None:
            return None
        try:
            world = self._world_lookup(world_id)
        except Exception:
            logger.exception("world lookup failed for %s", world_id)
            return None
        if world is None:
            logger.warning("world %s not found; using generic context", world_id)
        return world

    def _characters(self, character_ids: Iterable[str]) -> list[CharacterView]:
        if self._character_lookup is None:
            return []
        found: list[CharacterView] = []
        for cid in character_ids:
            try:
                character = self._character_lookup(cid)
            except Exception:
                logger.exception("character lookup failed for %s", cid)
                continue
            if character is not None:
                found.append(character)
        return found


# ---------------------------------------------------------------------------
# Output normalisation
# ---------------------------------------------------------------------------

def _normalise(output: str | GeneratedContent, include_choices: bool) -> GeneratedContent:
    if isinstance(output, GeneratedContent):
        generated = output
    else:
        text = str(output).strip()
        generated = (_parse_structured(text) if include_choices else None) or GeneratedContent(content=text)
    if not generated.content.strip():
        raise LLMError("LLM backend returned an empty response")
    return generated


def _parse_structured(text: str) -> GeneratedContent | None:
    """Read {"content": ..., "choices": [...]} out of model output, if present."""
    body = text
    if body.startswith("```"):
        body = body.strip("`")
        if body.startswith("json"):
            body = body[4:]
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.debug("structured output expected but got plain text (%d chars)", len(text))
        return None
    if not isinstance(data, dict) or not isinstance(data.get("content"), str):
        return None

    choices: list[Choice] = []
    for raw in data.get("choices") or []:
        if isinstance(raw, dict) and isinstance(raw.get("text"), str) and raw["text"].strip():
            choices.append(Choice(
                text=raw["text"].strip(),
                outcome=raw.get("outcome") if isinstance(raw.get("outcome"), str) else None,
            ))
        elif isinstance(raw, str) and raw.strip():
            choices.append(Choice(text=raw.strip()))
    return GeneratedContent(content=data["content"].strip(), choices=choices)


def _fallback_choices(
    entry: FallbackContentEntry | None, include_choices: bool
) -> list[Choice] | None:
    curated = [c.model_copy(deep=True) for c in entry.choices] if entry else []
    if not include_choices:
        return curated or None
    if curated:
        return curated

    derived: list[Choice] = []
    for tag in entry.tags if entry else ():
        choice = _TAG_CHOICES.get(tag.lower())
        if choice is not None:
            derived.append(choice.model_copy(deep=True))
        if len(derived) == _MAX_DERIVED_CHOICES:
            break
    return derived or [c.model_copy(deep=True) for c in GENERIC_CHOICES]
