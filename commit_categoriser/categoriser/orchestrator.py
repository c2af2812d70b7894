"""Coordinate a categorisation run across providers.

A run moves through these stages:

1. Check that at least one provider is available. This is the only failure
   `categorize` lets escape, as `NoProvidersAvailable`.
2. Optionally triage: commits the keyword classifier is sure about skip the
   models entirely.
3. Distribute the remaining commits into provider-tagged batches.
4. Dispatch every batch, all at once or in waves, and wait for all of them.
5. Bucket the commits of failed batches by the provider that failed them.
6. Fail each bucket over, once and as a single batch, to a provider that
   succeeded during this run.
7. Categorise whatever is still missing with keywords.

Every input commit comes back exactly once, in input order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Sequence

from commit_categoriser.config import CategoriserConfiguration
from commit_categoriser.llm.provider import NoProvidersAvailable
from commit_categoriser.llm.provider_registry import (
    ProviderRegistry,
    create_default_registry,
    create_provider_clients,
)
from commit_categoriser.llm.service import ProviderService
from commit_categoriser.models import (
    KEYWORD_FALLBACK,
    KEYWORD_TRIAGE,
    BatchDistribution,
    BatchResult,
    CategorisationResult,
    CategorizedCommit,
    Commit,
    OrchestrationStats,
)

from .batch_processor import BatchProcessor
from .distributor import BatchDistributor
from .keywords import categorize_with_keywords, is_ambiguous

logger = logging.getLogger(__name__)


class DispatchMode(str, Enum):
    PARALLEL = "parallel"
    WAVES = "waves"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]


def _coerce_commits(commits: Iterable[Commit | dict[str, Any]]) -> list[Commit]:
    """Validate input and collapse repeated SHAs, keeping the first."""
    unique: dict[str, Commit] = {}
    for item in commits:
        commit = item if isinstance(item, Commit) else Commit.from_mapping(item)
        if commit.sha not in unique:
            unique[commit.sha] = commit
    return list(unique.values())


class _Run:
    """Mutable bookkeeping for a single `categorize` call."""

    def __init__(self, commits: list[Commit]) -> None:
        self.commits = commits
        self.stats = OrchestrationStats(total=len(commits))
        self.progress: list[str] = []
        self.results: dict[str, CategorizedCommit] = {}
        self.started = time.monotonic()

    def say(self, message: str) -> None:
        logger.info(message)
        self.progress.append(message)

    def accept(self, categorized: Iterable[CategorizedCommit]) -> int:
        """Store results for commits not yet seen; return how many were new."""
        added = 0
        for commit in categorized:
            if commit.sha in self.results:
                continue
            self.results[commit.sha] = commit
            added += 1
        return added

    def missing(self, commits: Iterable[Commit] | None = None) -> list[Commit]:
        source = self.commits if commits is None else commits
        return [c for c in source if c.sha not in self.results]


class CategorisationEngine:
    """Run batches across providers with failover and keyword fallback."""

    def __init__(
        self,
        registry: ProviderRegistry,
        processor: BatchProcessor,
        *,
        distributor: BatchDistributor | None = None,
        dispatch_mode: DispatchMode | str = DispatchMode.PARALLEL,
        max_concurrent_batches: int = 3,
        wave_delay: float = 0.5,
        keyword_triage: bool = False,
    ) -> None:
        self._registry = registry
        self._processor = processor
        self._distributor = distributor or BatchDistributor(registry)
        self._dispatch_mode = DispatchMode(dispatch_mode)
        self._max_concurrent = max(1, max_concurrent_batches)
        self._wave_delay = max(0.0, wave_delay)
        self._keyword_triage = keyword_triage

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def categorize(
        self, commits: Iterable[Commit | dict[str, Any]]
    ) -> CategorisationResult:
        """Categorise every commit exactly once.

        Raises:
            NoProvidersAvailable: No provider can take work. Nothing is
                dispatched.
        """
        run = _Run(_coerce_commits(commits))
        run.say(f"Starting multi-provider categorisation of {len(run.commits)} commits...")

        available = self._registry.get_available_providers()
        if not available:
            run.say("No AI providers available")
            raise NoProvidersAvailable()
        run.say(f"Available providers: {', '.join(p.name.value for p in available)}")

        ai_commits = run.commits
        if self._keyword_triage and ai_commits:
            ai_commits = self._triage(run)

        if ai_commits:
            await self._categorise_with_providers(run, ai_commits)

        leftovers = run.missing()
        if leftovers:
            run.say(
                f"Applying keyword fallback to {len(leftovers)} commits where all AI failed..."
            )
            added = run.accept(
                categorize_with_keywords(
                    leftovers,
                    provider=KEYWORD_FALLBACK,
                    max_categories=self._processor.max_categories,
                )
            )
            run.stats.keyword_fallback += added
            run.stats.record(KEYWORD_FALLBACK, added)
            run.say(f"Keyword fallback completed: {added} commits categorised")

        return self._finish(run)

    def _triage(self, run: _Run) -> list[Commit]:
        clear: list[Commit] = []
        ambiguous: list[Commit] = []
        for commit in run.commits:
            (ambiguous if is_ambiguous(commit.message) else clear).append(commit)
        added = run.accept(
            categorize_with_keywords(
                clear, provider=KEYWORD_TRIAGE, max_categories=self._processor.max_categories
            )
        )
        run.stats.keyword_triaged += added
        run.stats.record(KEYWORD_TRIAGE, added)
        run.say(
            f"Keyword triage: {added} commits categorised by keywords, "
            f"{len(ambiguous)} ambiguous commits sent to AI"
        )
        return ambiguous

    async def _categorise_with_providers(self, run: _Run, commits: list[Commit]) -> None:
        distributions = self._distributor.distribute(commits)
        run.stats.parallel_batches = len(distributions)
        run.say(f"Created {len(distributions)} batches:")
        counts: dict[str, int] = {}
        for distribution in distributions:
            counts[distribution.provider] = (
                counts.get(distribution.provider, 0) + distribution.batch_size
            )
        for provider, count in counts.items():
            run.say(f"   {provider}: {count} commits ({count / len(commits) * 100:.1f}%)")

        if self._dispatch_mode is DispatchMode.WAVES:
            run.say(
                f"Processing {len(distributions)} batches in waves of {self._max_concurrent}..."
            )
        else:
            run.say(f"Processing {len(distributions)} batches in parallel...")

        outcomes = await self._dispatch(distributions)

        succeeded: list[str] = []
        failed: dict[str, list[Commit]] = {}
        for index, (distribution, outcome) in enumerate(zip(distributions, outcomes)):
            if isinstance(outcome, BaseException):
                run.say(
                    f"Batch {index + 1} crashed: {distribution.batch_size} commits from "
                    f"{distribution.provider} need failover"
                )
                failed.setdefault(distribution.provider, []).extend(distribution.commits)
            elif outcome.success:
                added = run.accept(outcome.results)
                run.stats.ai_successful += added
                run.stats.record(outcome.provider, added)
                if outcome.provider not in succeeded:
                    succeeded.append(outcome.provider)
                run.say(
                    f"Batch {index + 1} completed: {added} commits via {outcome.provider} "
                    f"({outcome.processing_time_ms / 1000:.1f}s)"
                )
            else:
                run.say(
                    f"Batch {index + 1} AI failed: {distribution.batch_size} commits from "
                    f"{distribution.provider} need failover"
                )
                failed.setdefault(distribution.provider, []).extend(distribution.commits)

        for failed_provider, bucket in failed.items():
            await self._failover(run, failed_provider, run.missing(bucket), succeeded)

    async def _failover(
        self,
        run: _Run,
        failed_provider: str,
        commits: list[Commit],
        succeeded: Sequence[str],
    ) -> None:
        if not commits:
            return
        target = next(
            (
                name
                for name in succeeded
                if name != failed_provider and self._registry.get(name).is_available
            ),
            None,
        )
        if target is None:
            run.say(
                f"No failover available: {len(commits)} commits from {failed_provider} "
                "need keyword fallback"
            )
            return

        run.say(
            f"Failover: Redistributing {len(commits)} commits from {failed_provider} "
            f"to {target}..."
        )
        # The whole bucket goes over as one batch, even past the target's max_batch_size.
        run.stats.failover_batches += 1
        outcomes = await self._dispatch([BatchDistribution(provider=target, commits=commits)])

        recovered = 0
        for outcome in outcomes:
            if isinstance(outcome, BaseException) or not outcome.success:
                continue
            added = run.accept(outcome.results)
            recovered += added
            run.stats.ai_successful += added
            run.stats.record(outcome.provider, added)

        if recovered:
            run.say(f"Failover successful: {recovered} commits processed by {target}")
        remaining = len(run.missing(commits))
        if remaining:
            run.say(
                f"Failover failed: {remaining} commits from {failed_provider} "
                "still need keyword fallback"
            )

    async def _dispatch(
        self, distributions: Sequence[BatchDistribution]
    ) -> list[BatchResult | BaseException]:
        total = len(distributions)
        if self._dispatch_mode is DispatchMode.PARALLEL:
            return list(
                await asyncio.gather(
                    *(
                        self._processor.process(d, batch_index=i, total_batches=total)
                        for i, d in enumerate(distributions)
                    ),
                    return_exceptions=True,
                )
            )

        outcomes: list[BatchResult | BaseException] = []
        for start in range(0, total, self._max_concurrent):
            wave = distributions[start : start + self._max_concurrent]
            outcomes.extend(
                await asyncio.gather(
                    *(
                        self._processor.process(d, batch_index=start + i, total_batches=total)
                        for i, d in enumerate(wave)
                    ),
                    return_exceptions=True,
                )
            )
            if start + self._max_concurrent < total and self._wave_delay:
                await asyncio.sleep(self._wave_delay)
        return outcomes

    def _finish(self, run: _Run) -> CategorisationResult:
        stats = run.stats
        ordered = [run.results[c.sha] for c in run.commits if c.sha in run.results]
        stats.failed = stats.total - len(ordered)
        stats.total_processing_time_ms = int((time.monotonic() - run.started) * 1000)
        stats.average_time_per_commit_ms = (
            stats.total_processing_time_ms / stats.total if stats.total else 0.0
        )

        run.say(
            f"Categorisation completed: {len(ordered)}/{stats.total} commits in "
            f"{stats.total_processing_time_ms / 1000:.1f}s"
        )
        if stats.total:
            keyword_total = stats.keyword_fallback + stats.keyword_triaged
            run.say(
                f"Final breakdown: {stats.ai_successful} AI "
                f"({stats.ai_successful / stats.total * 100:.1f}%), "
                f"{keyword_total} keyword ({keyword_total / stats.total * 100:.1f}%)"
            )
        return CategorisationResult(
            categorized_commits=ordered, stats=stats, progress_updates=run.progress
        )

    async def aclose(self) -> None:
        await self._processor.service.aclose()


def categorize_keywords_only(
    commits: Iterable[Commit | dict[str, Any]],
    *,
    max_categories: int = 2,
) -> CategorisationResult:
    """Categorise with the keyword classifier alone; no provider is contacted."""
    run = _Run(_coerce_commits(commits))
    run.say(f"Keyword-only categorisation of {len(run.commits)} commits")
    added = run.accept(
        categorize_with_keywords(
            run.commits, provider=KEYWORD_FALLBACK, max_categories=max_categories
        )
    )
    run.stats.keyword_fallback = added
    run.stats.record(KEYWORD_FALLBACK, added)
    ordered = [run.results[c.sha] for c in run.commits]
    run.stats.total_processing_time_ms = int((time.monotonic() - run.started) * 1000)
    if run.stats.total:
        run.stats.average_time_per_commit_ms = (
            run.stats.total_processing_time_ms / run.stats.total
        )
    return CategorisationResult(
        categorized_commits=ordered, stats=run.stats, progress_updates=run.progress
    )


def create_engine(
    config: CategoriserConfiguration | None = None,
    *,
    registry: ProviderRegistry | None = None,
    dotenv_path: str | Path | None = None,
) -> CategorisationEngine:
    """Wire a registry, provider clients and processor from configuration."""
    config = config or CategoriserConfiguration.from_env(dotenv_path=dotenv_path)
    registry = registry or create_default_registry(dotenv_path=dotenv_path)
    clients = create_provider_clients(registry, timeout=config.request_timeout)
    service = ProviderService(registry, clients)
    processor = BatchProcessor(
        service,
        max_categories=config.max_categories,
        max_message_length=config.max_message_length,
        log_raw_responses=config.log_raw_responses,
        log_response_dir=config.log_response_dir,
    )
    return CategorisationEngine(
        registry,
        processor,
        dispatch_mode=config.dispatch_mode,
        max_concurrent_batches=config.max_concurrent_batches,
        wave_delay=config.wave_delay,
        keyword_triage=config.keyword_triage,
    )


def categorize_commits(
    commits: Iterable[Commit | dict[str, Any]],
    *,
    config: CategoriserConfiguration | None = None,
    engine: CategorisationEngine | None = None,
    dotenv_path: str | Path | None = None,
) -> CategorisationResult:
    """Synchronous entry point: build an engine if needed and run it once."""
    commits = list(commits)

    async def _run() -> CategorisationResult:
        active = engine or create_engine(config, dotenv_path=dotenv_path)
        try:
            return await active.categorize(commits)
        finally:
            if engine is None:
                await active.aclose()

    return asyncio.run(_run())
