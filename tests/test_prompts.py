"""Tests for Handlebars prompt rendering: template compilation, context building,
the `last` helper, per-kind templates and error handling."""

import pytest

from rpg_narrator.models import (
    CharacterView,
    GenerationContext,
    GenerationParameters,
    GenerationRequest,
    SegmentKind,
    WorldView,
)
from rpg_narrator.prompts import TEMPLATES, PromptError, build_context, build_prompt, render_prompt


def _request(kind=SegmentKind.SCENE, include_choices=False, **context):
    return GenerationRequest(
        segment_kind=kind,
        context=GenerationContext(**context),
        parameters=GenerationParameters(include_choices=include_choices),
    )


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    result = render_prompt("Hello {{name}}!", {"name": "World"})
    assert result == "Hello World!"


def test_render_if_conditional():
    tpl = "{{#if show}}yes{{else}}no{{/if}}"
    assert render_prompt(tpl, {"show": True}) == "yes"
    assert render_prompt(tpl, {"show": False}) == "no"


def test_render_missing_variable():
    result = render_prompt("Hello {{name}}!", {})
    assert result == "Hello !"


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


# ── helper: last ────────────────────────────────────────────


def test_last_n():
    tpl = "{{#last items 2}}{{this}} {{/last}}"
    result = render_prompt(tpl, {"items": ["a", "b", "c", "d"]})
    assert result == "c d "


def test_last_more_than_length():
    tpl = "{{#last items 10}}{{this}} {{/last}}"
    result = render_prompt(tpl, {"items": ["a", "b"]})
    assert result == "a b "


# ── build_context ────────────────────────────────────────────


def test_build_context_basic():
    world = WorldView(id="w1", name="Eldoria", description="A land of old magic", theme="fantasy")
    ctx = build_context(_request(tags=["forest", "day"], recent_segments=["You wake."]), world)

    assert ctx["genre"] == "fantasy"
    assert ctx["world"] == {"name": "Eldoria", "description": "A land of old magic"}
    assert ctx["tags"] == "forest, day"
    assert ctx["recent"] == ["You wake."]
    assert ctx["characters"] == []
    assert ctx["player"] == {}


def test_build_context_theme_beats_world_theme():
    world = WorldView(id="w1", theme="fantasy")
    ctx = build_context(_request(theme="sci-fi"), world)
    assert ctx["genre"] == "sci-fi"


def test_build_context_without_world():
    ctx = build_context(_request())
    assert ctx["genre"] == "adventure"
    assert ctx["world"]["name"] == "an unnamed world"


def test_build_context_first_character_is_player():
    chars = [CharacterView(id="c1", name="Aria"), CharacterView(id="c2", name="Borin")]
    ctx = build_context(_request(), None, chars)
    assert ctx["player"]["name"] == "Aria"
    assert [c["name"] for c in ctx["characters"]] == ["Aria", "Borin"]


# ── build_prompt ─────────────────────────────────────────────


def test_every_kind_has_a_template():
    assert set(TEMPLATES) == set(SegmentKind)


def test_scene_prompt_mentions_world_and_tags():
    world = WorldView(id="w1", name="Eldoria", theme="fantasy")
    prompt = build_prompt(_request(tags=["forest", "night"]), world)
    assert "fantasy role-playing game set in Eldoria" in prompt
    assert "Current situation: forest, night" in prompt
    assert "Return only the narrative text." in prompt


def test_free_text_is_not_html_escaped():
    world = WorldView(id="w1", name="Tom & Jerry's Keep")
    prompt = build_prompt(_request(), world)
    assert "Tom & Jerry's Keep" in prompt


def test_choices_requested_as_json():
    prompt = build_prompt(_request(include_choices=True))
    assert '"choices"' in prompt
    assert "Return only the JSON object." in prompt


def test_recent_segments_limited_to_last_five():
    recent = [f"beat {i}" for i in range(8)]
    prompt = build_prompt(_request(recent_segments=recent))
    assert "- beat 2" not in prompt
    assert "- beat 3" in prompt
    assert "- beat 7" in prompt


def test_initial_scene_introduces_player():
    chars = [CharacterView(id="c1", name="Aria", background="a wandering bard")]
    prompt = build_prompt(_request(SegmentKind.INITIAL_SCENE), None, chars)
    assert "opening scene of the adventure, introducing Aria, a wandering bard." in prompt
