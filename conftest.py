from collections.abc import Iterable
from datetime import datetime, timezone

import pytest

from rpg_narrator.fallback.content import default_entries
from rpg_narrator.fallback.selector import FallbackContentSelector
from rpg_narrator.llm import LLMError

FIXED_TIME = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class StubLLM:
    """Scripted LLM: returns (or raises) the queued responses in order.

    The last response repeats once the queue is exhausted. Every call is
    recorded as a (kind, prompt) pair.
    """

    def __init__(self, responses: Iterable = ("The road winds on.",)) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, kind: str, prompt: str):
        self.calls.append((kind, prompt))
        index = min(len(self.calls), len(self._responses)) - 1
        response = self._responses[index]
        if isinstance(response, BaseException):
            raise response
        return response


@pytest.fixture
def stub_llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def failing_llm() -> StubLLM:
    return StubLLM([LLMError("LLM backend returned HTTP 503")])


@pytest.fixture
def selector() -> FallbackContentSelector:
    return FallbackContentSelector(default_entries())


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_TIME


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data-tests"
    path.mkdir()
    return path
