from __future__ import annotations

import asyncio
import json
import re

import pytest

from commit_categoriser.categoriser import orchestrator
from commit_categoriser.categoriser.batch_processor import BatchProcessor
from commit_categoriser.categoriser.orchestrator import (
    CategorisationEngine,
    DispatchMode,
    categorize_commits,
    categorize_keywords_only,
)
from commit_categoriser.llm.provider import NoProvidersAvailable
from commit_categoriser.llm.service import ProviderService
from commit_categoriser.models import (
    KEYWORD_FALLBACK,
    KEYWORD_TRIAGE,
    Commit,
    CommitCategory,
)


_PROMPT_SHA_RE = re.compile(r"^\d+\. (\S+): ", re.MULTILINE)


def _answer(prompt: str, category: str) -> str:
    return json.dumps(
        [{"sha": sha, "categories": [category]} for sha in _PROMPT_SHA_RE.findall(prompt)]
    )


def _commits(count: int, message: str = "update things") -> list[Commit]:
    return [Commit(sha=f"{i:08x}{'c' * 32}", message=f"{message} {i}") for i in range(count)]


def _engine(registry, *clients, processor_cls=BatchProcessor, **kwargs) -> CategorisationEngine:
    service = ProviderService(registry, {client.name: client for client in clients})
    return CategorisationEngine(registry, processor_cls(service), **kwargs)


def _assert_each_once_in_order(result, commits) -> None:
    assert [c.sha for c in result.categorized_commits] == [c.sha for c in commits]


@pytest.mark.asyncio
async def test_single_provider_single_commit(make_registry, fake_provider):
    registry = make_registry("groq")
    groq = fake_provider("groq", lambda p: '[{"sha":"a1","categories":["bugfix"]}]')
    engine = _engine(registry, groq)

    result = await engine.categorize([{"sha": "a1", "message": "fix: null pointer"}])

    assert len(result.categorized_commits) == 1
    commit = result.categorized_commits[0]
    assert commit.sha == "a1"
    assert commit.categories == [CommitCategory.BUGFIX]
    assert commit.provider == "groq"
    assert result.stats.ai_successful == 1
    assert result.stats.failed == 0
    assert result.stats.parallel_batches == 1


@pytest.mark.asyncio
async def test_truncated_response_is_repaired(make_registry, fake_provider):
    registry = make_registry("groq")
    groq = fake_provider("groq", lambda p: '[{"sha":"a1","categories":["bugfix"]')
    engine = _engine(registry, groq)

    result = await engine.categorize([Commit(sha="a1", message="fix: crash")])

    assert result.categorized_commits[0].provider == "groq"
    assert result.categorized_commits[0].categories == [CommitCategory.BUGFIX]
    assert result.stats.keyword_fallback == 0


@pytest.mark.asyncio
async def test_no_providers_raises_before_dispatch(make_registry, fake_provider):
    registry = make_registry()
    groq = fake_provider("groq")
    engine = _engine(registry, groq)

    with pytest.raises(NoProvidersAvailable, match="No AI providers available"):
        await engine.categorize(_commits(3))

    assert groq.prompts == []


@pytest.mark.asyncio
async def test_no_providers_raises_even_for_empty_input(make_registry):
    engine = _engine(make_registry())
    with pytest.raises(NoProvidersAvailable):
        await engine.categorize([])


@pytest.mark.asyncio
async def test_failed_provider_fails_over_to_successful_one(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    groq = fake_provider("groq", error=RuntimeError("HTTP 500"))
    gemini = fake_provider("gemini", categories=["refactor"])
    engine = _engine(registry, groq, gemini)
    commits = _commits(10)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert {c.provider for c in result.categorized_commits} == {"gemini"}
    assert result.stats.ai_successful == 10
    assert result.stats.keyword_fallback == 0
    assert result.stats.failed == 0
    assert result.stats.parallel_batches == 2
    assert result.stats.failover_batches == 1
    assert result.stats.provider_breakdown == {"gemini": 10}
    assert not registry.get("groq").is_available
    assert registry.get("groq").last_error == "HTTP 500"

    progress = result.progress_updates
    assert "Available providers: groq, gemini" in progress
    assert "Created 2 batches:" in progress
    assert "   groq: 5 commits (50.0%)" in progress
    assert "Failover: Redistributing 5 commits from groq to gemini..." in progress
    assert "Failover successful: 5 commits processed by gemini" in progress
    assert progress[-1] == "Final breakdown: 10 AI (100.0%), 0 keyword (0.0%)"


@pytest.mark.asyncio
async def test_failover_sends_whole_bucket_as_one_batch(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    gemini = fake_provider("gemini")
    engine = _engine(registry, fake_provider("groq", error=RuntimeError("down")), gemini)
    commits = _commits(20)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert result.stats.parallel_batches == 3
    assert result.stats.failover_batches == 1
    # Ten failed commits exceed gemini's max_batch_size of 8 but go over in one request
    assert len(gemini.prompts) == 3
    assert len(_PROMPT_SHA_RE.findall(gemini.prompts[-1])) == 10
    assert result.stats.provider_breakdown == {"gemini": 20}


@pytest.mark.asyncio
async def test_all_providers_failing_falls_back_to_keywords(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    engine = _engine(
        registry,
        fake_provider("groq", error=RuntimeError("down")),
        fake_provider("gemini", error=RuntimeError("down")),
    )
    commits = _commits(10, message="fix: crash")

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert {c.provider for c in result.categorized_commits} == {KEYWORD_FALLBACK}
    assert all(c.categories == [CommitCategory.BUGFIX] for c in result.categorized_commits)
    assert result.stats.ai_successful == 0
    assert result.stats.keyword_fallback == 10
    assert result.stats.failover_batches == 0
    assert any(
        m.startswith("No failover available: 5 commits from groq") for m in result.progress_updates
    )
    assert "Applying keyword fallback to 10 commits where all AI failed..." in (
        result.progress_updates
    )
    assert result.progress_updates[-1] == "Final breakdown: 0 AI (0.0%), 10 keyword (100.0%)"


@pytest.mark.asyncio
async def test_failover_failure_leaves_bucket_to_keywords(make_registry, fake_provider):
    calls = {"gemini": 0}

    def gemini_responder(prompt: str) -> str:
        calls["gemini"] += 1
        if calls["gemini"] > 1:
            raise RuntimeError("quota exhausted")
        return _answer(prompt, "feature")

    registry = make_registry("groq", "gemini")
    engine = _engine(
        registry,
        fake_provider("groq", error=RuntimeError("down")),
        fake_provider("gemini", gemini_responder),
    )
    commits = _commits(10)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert result.stats.ai_successful == 5
    assert result.stats.keyword_fallback == 5
    assert result.stats.failover_batches == 1
    assert "Failover failed: 5 commits from groq still need keyword fallback" in (
        result.progress_updates
    )


@pytest.mark.asyncio
async def test_same_provider_cannot_be_its_own_failover(make_registry, fake_provider):
    registry = make_registry("groq")
    engine = _engine(registry, fake_provider("groq", error=RuntimeError("down")))

    result = await engine.categorize(_commits(2))

    assert "No failover available: 2 commits from groq need keyword fallback" in (
        result.progress_updates
    )
    assert result.stats.keyword_fallback == 2


@pytest.mark.asyncio
async def test_partially_answered_batch_sweeps_rest_into_fallback(make_registry, fake_provider):
    commits = [
        Commit(sha="aaaaaaaa11", message="feat: add search"),
        Commit(sha="bbbbbbbb22", message="docs: readme"),
    ]
    registry = make_registry("groq")
    engine = _engine(
        registry, fake_provider("groq", lambda p: '[{"sha":"aaaaaaaa","categories":["feature"]}]')
    )

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    first, second = result.categorized_commits
    assert first.provider == "groq"
    assert second.provider == KEYWORD_FALLBACK
    assert second.categories == [CommitCategory.DOCUMENTATION]
    assert result.stats.ai_successful == 1
    assert result.stats.keyword_fallback == 1
    assert result.stats.failover_batches == 0


class _CrashingProcessor(BatchProcessor):
    async def process(self, distribution, *, batch_index=0, total_batches=1):
        if distribution.provider == "groq":
            raise RuntimeError("processor bug")
        return await super().process(
            distribution, batch_index=batch_index, total_batches=total_batches
        )


@pytest.mark.asyncio
async def test_crashed_batch_is_failed_over(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    engine = _engine(
        registry,
        fake_provider("groq"),
        fake_provider("gemini"),
        processor_cls=_CrashingProcessor,
    )
    commits = _commits(10)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert result.stats.provider_breakdown == {"gemini": 10}
    assert any(m.startswith("Batch 1 crashed: 5 commits from groq") for m in result.progress_updates)


class _ConcurrencyProbe:
    """Provider client that records how many calls are in flight at once."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0

    async def complete(self, prompt: str) -> str:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.in_flight -= 1
        return _answer(prompt, "chore")

    async def aclose(self) -> None:
        return None


@pytest.mark.asyncio
async def test_waves_cap_concurrent_batches(make_registry):
    registry = make_registry("groq")
    probe = _ConcurrencyProbe("groq")
    engine = _engine(
        registry,
        probe,
        dispatch_mode=DispatchMode.WAVES,
        max_concurrent_batches=2,
        wave_delay=0,
    )
    commits = _commits(60)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert result.stats.parallel_batches == 6
    assert probe.calls == 6
    assert probe.max_in_flight == 2
    assert "Processing 6 batches in waves of 2..." in result.progress_updates


@pytest.mark.asyncio
async def test_parallel_dispatches_everything_at_once(make_registry):
    registry = make_registry("groq")
    probe = _ConcurrencyProbe("groq")
    engine = _engine(registry, probe, dispatch_mode="parallel")

    result = await engine.categorize(_commits(60))

    assert probe.max_in_flight == 6
    assert "Processing 6 batches in parallel..." in result.progress_updates


@pytest.mark.asyncio
async def test_wave_delay_only_between_waves(make_registry, fake_provider, monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr(orchestrator.asyncio, "sleep", fake_sleep)
    registry = make_registry("groq")
    engine = _engine(
        registry,
        fake_provider("groq"),
        dispatch_mode=DispatchMode.WAVES,
        max_concurrent_batches=2,
        wave_delay=0.25,
    )

    await engine.categorize(_commits(60))

    assert delays == [0.25, 0.25]


@pytest.mark.asyncio
async def test_keyword_triage_sends_only_ambiguous_commits_to_ai(make_registry, fake_provider):
    commits = [
        Commit(sha="1111111111", message="fix: crash in parser"),
        Commit(sha="2222222222", message="misc"),
        Commit(sha="3333333333", message="wip"),
    ]
    registry = make_registry("groq")
    groq = fake_provider("groq")
    engine = _engine(registry, groq, keyword_triage=True)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    assert len(groq.prompts) == 1
    assert "11111111" not in groq.prompts[0]
    assert result.categorized_commits[0].provider == KEYWORD_TRIAGE
    assert result.stats.keyword_triaged == 1
    assert result.stats.ai_successful == 2
    assert result.stats.provider_breakdown == {KEYWORD_TRIAGE: 1, "groq": 2}
    assert result.progress_updates[-1] == "Final breakdown: 2 AI (66.7%), 1 keyword (33.3%)"


@pytest.mark.asyncio
async def test_repeated_shas_are_categorised_once(make_registry, fake_provider):
    registry = make_registry("groq")
    engine = _engine(registry, fake_provider("groq"))

    result = await engine.categorize(
        [
            {"sha": "a1", "message": "first"},
            {"sha": "a1", "message": "second"},
            {"sha": "b2", "message": "third"},
        ]
    )

    assert [c.sha for c in result.categorized_commits] == ["a1", "b2"]
    assert result.categorized_commits[0].message == "first"
    assert result.stats.total == 2


@pytest.mark.asyncio
async def test_empty_input_returns_empty_result(make_registry, fake_provider):
    groq = fake_provider("groq")
    engine = _engine(make_registry("groq"), groq)

    result = await engine.categorize([])

    assert result.categorized_commits == []
    assert result.stats.total == 0
    assert result.stats.failed == 0
    assert groq.prompts == []


@pytest.mark.asyncio
@pytest.mark.parametrize("size", [1, 7, 8, 13, 25, 49])
async def test_every_commit_categorised_exactly_once(make_registry, fake_provider, size):
    registry = make_registry("groq", "gemini", "huggingface")
    engine = _engine(
        registry, fake_provider("groq"), fake_provider("gemini"), fake_provider("huggingface")
    )
    commits = _commits(size)

    result = await engine.categorize(commits)

    _assert_each_once_in_order(result, commits)
    stats = result.stats
    assert stats.total == size
    assert stats.ai_successful + stats.keyword_fallback == size
    assert stats.failed == 0
    assert sum(stats.provider_breakdown.values()) == size


def test_categorize_commits_runs_supplied_engine(make_registry, fake_provider):
    groq = fake_provider("groq")
    engine = _engine(make_registry("groq"), groq)

    result = categorize_commits(_commits(3), engine=engine)

    assert len(result.categorized_commits) == 3
    # Caller owns the engine it passed in
    assert not groq.closed


def test_categorize_keywords_only():
    result = categorize_keywords_only(
        [
            {"sha": "a1", "message": "fix: crash"},
            {"sha": "b2", "message": "docs: update readme"},
            {"sha": "c3", "message": "misc"},
        ]
    )

    assert [c.category_values for c in result.categorized_commits] == [
        ["bugfix"],
        ["documentation"],
        ["other"],
    ]
    assert result.stats.keyword_fallback == 3
    assert result.stats.provider_breakdown == {KEYWORD_FALLBACK: 3}
