"""Split a run's commits into provider-tagged batches."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from commit_categoriser.llm.provider import NoProvidersAvailable
from commit_categoriser.llm.provider_registry import ProviderDescriptor, ProviderRegistry
from commit_categoriser.models import BatchDistribution, Commit

logger = logging.getLogger(__name__)


def chunk_commits(provider: str, commits: Sequence[Commit], size: int) -> list[BatchDistribution]:
    size = max(1, size)
    return [
        BatchDistribution(provider=provider, commits=list(commits[i : i + size]))
        for i in range(0, len(commits), size)
    ]


class BatchDistributor:
    """Allocate commits to providers by share, then round-robin the rest.

    Each available provider, in priority order, takes ``ceil(total * share)``
    commits from the front of the list, split into batches no larger than its
    ``max_batch_size``. Whatever is left is dealt out one batch per provider
    in turn. Every input commit lands in exactly one batch.
    """

    def __init__(self, registry: ProviderRegistry) -> None:
        self._registry = registry

    def distribute(self, commits: Sequence[Commit]) -> list[BatchDistribution]:
        providers = self._registry.get_available_providers()
        if not providers:
            raise NoProvidersAvailable()

        commits = list(commits)
        total = len(commits)
        if total == 0:
            return []

        smallest = min(p.max_batch_size for p in providers)
        if total < smallest:
            top = providers[0]
            logger.debug("Only %d commits; single batch for %s", total, top.name.value)
            return [BatchDistribution(provider=top.name.value, commits=commits)]

        batches: list[BatchDistribution] = []
        remaining = commits
        for descriptor in providers:
            if not remaining:
                break
            share = self._registry.allocation_for(descriptor.name)
            take = min(math.ceil(total * share), len(remaining))
            if take <= 0:
                continue
            allocated, remaining = remaining[:take], remaining[take:]
            batches.extend(chunk_commits(descriptor.name.value, allocated, descriptor.max_batch_size))

        batches.extend(self._round_robin(remaining, providers))
        return batches

    @staticmethod
    def _round_robin(
        commits: list[Commit], providers: Sequence[ProviderDescriptor]
    ) -> list[BatchDistribution]:
        batches: list[BatchDistribution] = []
        index = 0
        position = 0
        while position < len(commits):
            descriptor = providers[index % len(providers)]
            size = max(1, descriptor.max_batch_size)
            batches.append(
                BatchDistribution(
                    provider=descriptor.name.value,
                    commits=commits[position : position + size],
                )
            )
            position += size
            index += 1
        return batches
