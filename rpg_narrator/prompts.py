"""Handlebars prompt rendering for narrative segments."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pybars

from rpg_narrator.models import CharacterView, GenerationRequest, SegmentKind, WorldView

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


# ── Templates ────────────────────────────────────────────

# Triple-stash for free text so quotes and ampersands reach the model unescaped.
_PREAMBLE = (
    "You are the narrator of a {{{genre}}} role-playing game set in {{{world.name}}}.\n"
    "{{#if world.description}}World: {{{world.description}}}\n{{/if}}"
    "{{#if tone}}Tone: {{{tone}}}\n{{/if}}"
    "{{#if characters}}Characters: {{#each characters}}{{{name}}}{{#if background}} ({{{background}}}){{/if}}; {{/each}}\n{{/if}}"
    "{{#if tags}}Current situation: {{{tags}}}\n{{/if}}"
    "{{#if recent}}\nStory so far:\n{{#last recent 5}}- {{{this}}}\n{{/last}}{{/if}}\n"
)

_CHOICES_SUFFIX = (
    "{{#if include_choices}}\n"
    "Return a JSON object: "
    '{"content": "<the narrative text>", '
    '"choices": [{"text": "<what the player does>", "outcome": "<short hint of what follows>"}]}. '
    "Offer two to four choices. Return only the JSON object.\n"
    "{{else}}\nReturn only the narrative text.\n{{/if}}"
    "{{#if max_length}}Keep it under {{max_length}} words.\n{{/if}}"
)

TEMPLATES: dict[SegmentKind, str] = {
    SegmentKind.SCENE: _PREAMBLE + "Describe the next scene in vivid second person." + _CHOICES_SUFFIX,
    SegmentKind.DIALOGUE: _PREAMBLE + "Write the next line of dialogue, in character." + _CHOICES_SUFFIX,
    SegmentKind.ACTION: _PREAMBLE + "Narrate the outcome of the player's action." + _CHOICES_SUFFIX,
    SegmentKind.TRANSITION: _PREAMBLE + "Bridge the story to the next location or moment in time." + _CHOICES_SUFFIX,
    SegmentKind.CHOICE: _PREAMBLE + "Present a decision point for the player." + _CHOICES_SUFFIX,
    SegmentKind.INITIAL_SCENE: (
        _PREAMBLE
        + "Write the opening scene of the adventure"
        + "{{#if player.name}}, introducing {{{player.name}}}{{#if player.background}}, {{{player.background}}}{{/if}}{{/if}}."
        + _CHOICES_SUFFIX
    ),
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_context(
    request: GenerationRequest,
    world: WorldView | None = None,
    characters: Sequence[CharacterView] = (),
) -> dict[str, Any]:
    """Assemble template variables from the request and read-only views."""
    ctx = request.context
    params = request.parameters
    genre = ctx.theme or (world.theme if world else "") or "adventure"
    return {
        "genre": genre,
        "world": {
            "name": world.name if world and world.name else "an unnamed world",
            "description": world.description if world else "",
        },
        "tone": params.tone or "",
        "characters": [c.model_dump() for c in characters],
        "player": characters[0].model_dump() if characters else {},
        "tags": ", ".join(ctx.tags),
        "recent": list(ctx.recent_segments),
        "include_choices": params.include_choices,
        "max_length": params.max_length,
    }


def build_prompt(
    request: GenerationRequest,
    world: WorldView | None = None,
    characters: Sequence[CharacterView] = (),
) -> str:
    template = TEMPLATES[request.segment_kind]
    return render_prompt(template, build_context(request, world, characters))
