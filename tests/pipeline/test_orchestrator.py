"""Tests for GenerationOrchestrator — bounded retries and curated fallback.

The LLM is replaced by the scripted StubLLM from conftest, so every attempt
is deterministic and no network is touched.
"""

import json
from unittest.mock import patch

import pytest

from conftest import FIXED_TIME, StubLLM
from rpg_narrator.fallback.selector import FallbackContentSelector
from rpg_narrator.llm import LLMError
from rpg_narrator.models import (
    CharacterView,
    ErrorKind,
    GeneratedContent,
    GenerationContext,
    GenerationParameters,
    GenerationRequest,
    SegmentKind,
    WorldView,
)
from rpg_narrator.pipeline.orchestrator import (
    GENERIC_CHOICES,
    MINIMAL_CONTENT,
    GenerationOrchestrator,
)
from rpg_narrator.prompts import PromptError

WORLDS = {
    "w-fantasy": WorldView(id="w-fantasy", name="Eldoria", theme="fantasy"),
    "w-scifi": WorldView(id="w-scifi", name="Kepler Reach", theme="sci-fi"),
}
CHARACTERS = {"c1": CharacterView(id="c1", name="Aria", background="a wandering bard")}


def _request(kind=SegmentKind.SCENE, include_choices=False, **context):
    return GenerationRequest(
        segment_kind=kind,
        context=GenerationContext(**context),
        parameters=GenerationParameters(include_choices=include_choices),
    )


@pytest.fixture
def make_orchestrator(selector, fixed_clock):
    def _make(llm, **kwargs):
        kwargs.setdefault("world_lookup", WORLDS.get)
        kwargs.setdefault("character_lookup", CHARACTERS.get)
        kwargs.setdefault("clock", fixed_clock)
        return GenerationOrchestrator(llm, kwargs.pop("selector", selector), **kwargs)
    return _make


# ── success path ────────────────────────────────────────────


class TestSuccess:
    async def test_first_attempt_succeeds(self, make_orchestrator):
        llm = StubLLM(["  The forest hums with life.  "])
        result = await make_orchestrator(llm).generate_segment(_request(tags=["forest"]))

        assert result.is_ai_generated is True
        assert result.fallback_reason is None
        assert result.content == "The forest hums with life."
        assert result.tags == ["forest"]
        assert result.choices is None
        assert result.metadata.retry_attempts == 0
        assert [a.outcome for a in result.metadata.attempts] == ["success"]
        assert result.metadata.timestamp == FIXED_TIME

    async def test_llm_called_with_segment_kind(self, make_orchestrator):
        llm = StubLLM(["Hello, traveller."])
        await make_orchestrator(llm).generate_segment(_request(SegmentKind.DIALOGUE))
        assert llm.calls[0][0] == "dialogue"

    async def test_prompt_uses_world_and_characters(self, make_orchestrator):
        llm = StubLLM(["ok"])
        await make_orchestrator(llm).generate_segment(
            _request(world_id="w-fantasy", character_ids=["c1", "missing"])
        )
        prompt = llm.calls[0][1]
        assert "Eldoria" in prompt
        assert "Aria" in prompt

    async def test_fails_twice_then_succeeds(self, make_orchestrator):
        llm = StubLLM([
            LLMError("Cannot connect to LLM backend at http://localhost:5001"),
            LLMError("LLM backend timed out after 120.0s"),
            "At last, the fog lifts.",
        ])
        result = await make_orchestrator(llm).generate_segment(_request())

        assert result.is_ai_generated is True
        assert result.content == "At last, the fog lifts."
        assert result.metadata.retry_attempts == 2
        attempts = result.metadata.attempts
        assert [a.outcome for a in attempts] == ["failure", "failure", "success"]
        assert [a.error_kind for a in attempts] == [ErrorKind.NETWORK, ErrorKind.TIMEOUT, None]
        assert [a.index for a in attempts] == [0, 1, 2]

    async def test_structured_json_choices(self, make_orchestrator):
        payload = {
            "content": "Two paths split before you.",
            "choices": [
                {"text": "Take the left path", "outcome": "It climbs into the hills."},
                "Take the right path",
            ],
        }
        llm = StubLLM(["```json\n" + json.dumps(payload) + "\n```"])
        result = await make_orchestrator(llm).generate_segment(_request(include_choices=True))

        assert result.content == "Two paths split before you."
        assert [c.text for c in result.choices] == ["Take the left path", "Take the right path"]
        assert result.choices[0].outcome == "It climbs into the hills."

    async def test_plain_text_with_choices_requested_gets_generic_choices(self, make_orchestrator):
        llm = StubLLM(["Just prose, no JSON."])
        result = await make_orchestrator(llm).generate_segment(_request(include_choices=True))
        assert result.content == "Just prose, no JSON."
        assert [c.text for c in result.choices] == [c.text for c in GENERIC_CHOICES]

    async def test_generated_content_passes_through(self, make_orchestrator):
        llm = StubLLM([GeneratedContent(content="Structured.", tags=["custom"])])
        result = await make_orchestrator(llm).generate_segment(_request(tags=["forest"]))
        assert result.content == "Structured."
        assert result.tags == ["custom"]


# ── retry policy ────────────────────────────────────────────


class TestRetries:
    async def test_budget_is_max_retries_plus_one(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(_request())
        assert len(failing_llm.calls) == 3
        assert result.metadata.retry_attempts == 2
        assert result.fallback_reason is ErrorKind.SERVICE_UNAVAILABLE

    async def test_custom_retry_budget(self, make_orchestrator, failing_llm):
        await make_orchestrator(failing_llm, max_retries=0).generate_segment(_request())
        assert len(failing_llm.calls) == 1

    async def test_auth_failure_is_not_retried(self, make_orchestrator):
        llm = StubLLM([LLMError("LLM backend returned HTTP 401"), "never reached"])
        result = await make_orchestrator(llm).generate_segment(_request())

        assert len(llm.calls) == 1
        assert result.is_ai_generated is False
        assert result.fallback_reason is ErrorKind.AUTH
        assert result.metadata.retry_attempts == 0

    async def test_unclassified_llm_exception_is_retried(self, make_orchestrator):
        llm = StubLLM([RuntimeError("boom")])
        result = await make_orchestrator(llm).generate_segment(_request())

        assert len(llm.calls) == 3
        assert result.fallback_reason is ErrorKind.SERVICE_UNAVAILABLE
        assert [a.error_kind for a in result.metadata.attempts] == [ErrorKind.SERVICE_UNAVAILABLE] * 3

    async def test_prompt_error_is_unknown_and_not_retried(self, make_orchestrator, stub_llm):
        with patch(
            "rpg_narrator.pipeline.orchestrator.build_prompt",
            side_effect=PromptError("Template error: unclosed block"),
        ):
            result = await make_orchestrator(stub_llm).generate_segment(_request())

        assert stub_llm.calls == []
        assert result.is_ai_generated is False
        assert result.fallback_reason is ErrorKind.UNKNOWN
        assert result.metadata.retry_attempts == 0

    async def test_builtin_timeout_is_classified(self, make_orchestrator):
        llm = StubLLM([TimeoutError()])
        result = await make_orchestrator(llm).generate_segment(_request())
        assert result.fallback_reason is ErrorKind.TIMEOUT
        assert len(llm.calls) == 3

    async def test_empty_output_counts_as_failure(self, make_orchestrator):
        llm = StubLLM(["   ", "Now with words."])
        result = await make_orchestrator(llm).generate_segment(_request())
        assert result.content == "Now with words."
        assert result.metadata.retry_attempts == 1

    async def test_backoff_delays_each_retry(self, make_orchestrator, failing_llm):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        orchestrator = make_orchestrator(
            failing_llm, backoff=lambda retry: retry * 0.5, sleep=fake_sleep,
        )
        await orchestrator.generate_segment(_request())
        assert delays == [0.5, 1.0]

    async def test_no_delay_by_default(self, make_orchestrator, failing_llm):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        await make_orchestrator(failing_llm, sleep=fake_sleep).generate_segment(_request())
        assert delays == []

    def test_negative_retry_budget_rejected(self, stub_llm):
        with pytest.raises(ValueError):
            GenerationOrchestrator(stub_llm, max_retries=-1)


# ── fallback path ───────────────────────────────────────────


class TestFallback:
    async def test_forest_day_scene_served_and_recorded(self, make_orchestrator, failing_llm, selector):
        request = _request(theme="fantasy", tags=["forest", "day"], session_id="s1")
        result = await make_orchestrator(failing_llm).generate_segment(request)

        assert result.is_ai_generated is False
        assert result.metadata.content_id == "fantasy-forest-day"
        assert result.tags == ["forest", "day", "peaceful"]
        assert result.segment_kind is SegmentKind.SCENE
        assert selector.usage_history("s1") == ["fantasy-forest-day"]

    async def test_fallback_does_not_repeat_within_session(self, make_orchestrator, failing_llm):
        orchestrator = make_orchestrator(failing_llm)
        request = _request(theme="fantasy", tags=["forest", "day"], session_id="s1")
        first = await orchestrator.generate_segment(request)
        second = await orchestrator.generate_segment(request)
        assert first.metadata.content_id != second.metadata.content_id

    async def test_theme_taken_from_world(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(SegmentKind.DIALOGUE, world_id="w-scifi")
        )
        assert result.metadata.content_id == "scifi-dialogue-captain"

    async def test_unknown_world_uses_generic(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(SegmentKind.TRANSITION, world_id="nowhere")
        )
        assert result.metadata.content_id == "generic-transition-1"

    async def test_empty_store_serves_minimal_content(self, make_orchestrator, failing_llm):
        orchestrator = make_orchestrator(failing_llm, selector=FallbackContentSelector())
        result = await orchestrator.generate_segment(_request(theme="fantasy", include_choices=True))

        assert result.content == MINIMAL_CONTENT
        assert result.is_ai_generated is False
        assert result.tags == ["fantasy"]
        assert result.metadata.content_id is None
        assert len(result.choices) == len(GENERIC_CHOICES)

    async def test_curated_choices_preferred(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(theme="fantasy", tags=["forest", "mysterious"], include_choices=True)
        )
        assert result.metadata.content_id == "fantasy-forest-deep"
        assert result.choices

    async def test_choices_derived_from_tags(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(theme="fantasy", tags=["forest", "day"], include_choices=True)
        )
        assert result.metadata.content_id == "fantasy-forest-day"
        assert [c.text for c in result.choices] == ["Search the undergrowth"]

    async def test_no_choices_unless_requested(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(theme="fantasy", tags=["forest", "day"])
        )
        assert result.choices is None

    async def test_metadata_records_ids(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(world_id="w-fantasy", character_ids=["c1"])
        )
        assert result.metadata.world_id == "w-fantasy"
        assert result.metadata.character_ids == ["c1"]
        assert all(a.outcome == "failure" for a in result.metadata.attempts)

    async def test_lookup_errors_do_not_escape(self, make_orchestrator, stub_llm):
        def broken(world_id):
            raise RuntimeError("db gone")

        result = await make_orchestrator(stub_llm, world_lookup=broken).generate_segment(
            _request(world_id="w-fantasy")
        )
        assert result.is_ai_generated is True


# ── result isolation ──────────────────────────────────────


class TestChoiceIsolation:
    async def test_generic_choices_not_shared_between_results(self, make_orchestrator):
        orchestrator = make_orchestrator(StubLLM(["Plain prose."]))
        first = await orchestrator.generate_segment(_request(include_choices=True))
        first.choices[0].tags.append("POISON")

        second = await orchestrator.generate_segment(_request(include_choices=True))
        assert "POISON" not in second.choices[0].tags
        assert "POISON" not in GENERIC_CHOICES[0].tags

    async def test_curated_choices_not_shared_between_results(self, make_orchestrator, failing_llm, selector):
        orchestrator = make_orchestrator(failing_llm)
        request = _request(theme="fantasy", tags=["forest", "mysterious"], include_choices=True)
        first = await orchestrator.generate_segment(request)
        first.choices[0].tags.append("POISON")

        selector.clear_usage_history()
        second = await orchestrator.generate_segment(request)
        assert second.metadata.content_id == first.metadata.content_id
        assert second.choices[0].tags == ["left_path", "mysterious"]

    async def test_derived_choices_not_shared_between_results(self, make_orchestrator, failing_llm, selector):
        orchestrator = make_orchestrator(failing_llm)
        request = _request(theme="fantasy", tags=["forest", "day"], include_choices=True)
        first = await orchestrator.generate_segment(request)
        first.choices[0].tags.append("POISON")

        selector.clear_usage_history()
        second = await orchestrator.generate_segment(request)
        assert second.choices[0].tags == ["forest", "explore"]


# ── per-call world ──────────────────────────────────────────


class TestPostedWorld:
    WORLD = WorldView(id="posted", name="Hollow Moon", theme="sci-fi")

    async def test_world_passed_with_call_is_used(self, make_orchestrator):
        llm = StubLLM(["ok"])
        await make_orchestrator(llm).generate_segment(_request(world_id="posted"), world=self.WORLD)
        assert "Hollow Moon" in llm.calls[0][1]

    async def test_world_passed_with_call_sets_fallback_theme(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_segment(
            _request(SegmentKind.DIALOGUE, world_id="posted"), world=self.WORLD,
        )
        assert result.metadata.content_id == "scifi-dialogue-captain"

    async def test_world_is_not_remembered(self, make_orchestrator, failing_llm):
        orchestrator = make_orchestrator(failing_llm)
        await orchestrator.generate_segment(_request(world_id="posted"), world=self.WORLD)
        result = await orchestrator.generate_segment(_request(SegmentKind.DIALOGUE, world_id="posted"))
        assert result.metadata.content_id == "generic-dialogue-1"

    async def test_initial_scene_with_posted_world(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_initial_scene(
            "posted", [], world=self.WORLD,
        )
        assert result.metadata.content_id == "scifi-init-station"
        assert result.tags[0] == "sci-fi"


# ── initial scene ───────────────────────────────────────────


class TestInitialScene:
    async def test_tagged_with_world_theme(self, make_orchestrator, stub_llm):
        result = await make_orchestrator(stub_llm).generate_initial_scene("w-fantasy", ["c1"])

        assert result.segment_kind is SegmentKind.INITIAL_SCENE
        assert result.is_ai_generated is True
        assert "fantasy" in result.tags
        assert result.choices
        assert stub_llm.calls[0][0] == "initial-scene"
        assert "introducing Aria" in stub_llm.calls[0][1]

    async def test_fallback_uses_themed_opening(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_initial_scene("w-scifi", [])

        assert result.metadata.content_id == "scifi-init-station"
        assert result.tags[0] == "sci-fi"
        assert result.choices

    async def test_unknown_world_gets_generic_opening(self, make_orchestrator, failing_llm):
        result = await make_orchestrator(failing_llm).generate_initial_scene("nowhere", [])
        assert result.metadata.content_id == "generic-init-1"
        assert "generic" in result.tags
