from __future__ import annotations

import json
import re
import sys
from pathlib import Path
from typing import Callable

import pytest

# Ensure project root is on sys.path for test imports
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from commit_categoriser.llm.provider_registry import ProviderRegistry, default_descriptors
from commit_categoriser.models import ProviderName

_PROMPT_SHA_RE = re.compile(r"^\d+\. (\S+): ", re.MULTILINE)


def shas_in_prompt(prompt: str) -> list[str]:
    """Return the short SHAs listed in a rendered categorisation prompt."""
    return _PROMPT_SHA_RE.findall(prompt)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """In-memory provider client.

    With no responder it answers every commit in the prompt with
    ``categories``. A responder receives the prompt and returns the raw text.
    """

    def __init__(
        self,
        name: str,
        responder: Callable[[str], str] | None = None,
        *,
        error: Exception | None = None,
        categories: list[str] | None = None,
    ) -> None:
        self.name = name
        self.prompts: list[str] = []
        self.closed = False
        self._responder = responder
        self._error = error
        self._categories = categories or ["feature"]

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._error is not None:
            raise self._error
        if self._responder is not None:
            return self._responder(prompt)
        return json.dumps(
            [{"sha": sha, "categories": self._categories} for sha in shas_in_prompt(prompt)]
        )

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_registry(clock: FakeClock):
    """Build an isolated registry where only the named providers are configured."""

    def _make(*names: str, allocation=None) -> ProviderRegistry:
        credentials = {ProviderName(name): True for name in names}
        descriptors = default_descriptors(credentials=credentials, huggingface_enabled=True)
        return ProviderRegistry(descriptors, allocation=allocation, clock=clock)

    return _make


@pytest.fixture
def fake_provider() -> type[FakeProvider]:
    return FakeProvider


@pytest.fixture
def prompt_shas() -> Callable[[str], list[str]]:
    return shas_in_prompt
