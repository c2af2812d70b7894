"""Run-scoped containers produced while orchestrating a categorisation run."""

from __future__ import annotations

from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Sequence

from .commit import CategorizedCommit, Commit
from .enums import CommitCategory

KEYWORD_FALLBACK = "keyword-fallback"
KEYWORD_TRIAGE = "keyword-triage"


@dataclass
class BatchDistribution:
    """A provider-tagged slice of commits dispatched as one request.

    Attributes:
        provider: Provider name the batch is allocated to (e.g. "groq")
        commits: Contiguous commits taken from the input list
        batch_size: Number of commits in the batch
    """

    provider: str
    commits: list[Commit]
    batch_size: int = 0

    def __post_init__(self) -> None:
        self.batch_size = len(self.commits)


@dataclass
class BatchResult:
    """Outcome of processing one `BatchDistribution`."""

    results: list[CategorizedCommit]
    provider: str
    processing_time_ms: int
    success: bool


@dataclass
class OrchestrationStats:
    """Counters accumulated over a single run; never merged across runs."""

    total: int = 0
    ai_successful: int = 0
    keyword_fallback: int = 0
    keyword_triaged: int = 0
    failed: int = 0
    provider_breakdown: dict[str, int] = field(default_factory=dict)
    total_processing_time_ms: int = 0
    average_time_per_commit_ms: float = 0.0
    parallel_batches: int = 0
    failover_batches: int = 0

    def record(self, provider: str, count: int) -> None:
        if count <= 0:
            return
        self.provider_breakdown[provider] = self.provider_breakdown.get(provider, 0) + count

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CategorisationResult:
    """Everything the engine hands back to its caller."""

    categorized_commits: list[CategorizedCommit]
    stats: OrchestrationStats
    progress_updates: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "categorized_commits": [
                c.model_dump(mode="json", exclude_none=True)
                for c in self.categorized_commits
            ],
            "stats": self.stats.to_dict(),
            "progress_updates": list(self.progress_updates),
        }


@dataclass(frozen=True)
class CategoryStat:
    category: CommitCategory
    count: int
    percentage: float


def calculate_category_stats(
    categorized_commits: Sequence[CategorizedCommit] | Iterable[CategorizedCommit],
) -> list[CategoryStat]:
    """Count how often each category occurs, most frequent first.

    A commit with two categories contributes to both, so percentages can sum
    to more than 100.
    """
    commits = list(categorized_commits)
    counts: Counter[CommitCategory] = Counter()
    for commit in commits:
        counts.update(commit.categories)

    total = len(commits)
    stats = [
        CategoryStat(
            category=category,
            count=count,
            percentage=(count / total) * 100 if total else 0.0,
        )
        for category, count in counts.items()
    ]
    # Ties keep enum order so output is stable.
    order = {c: i for i, c in enumerate(CommitCategory)}
    stats.sort(key=lambda s: (-s.count, order[s.category]))
    return stats
