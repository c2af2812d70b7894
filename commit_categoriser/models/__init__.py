"""Public model exports for the project.

Tests and other modules should import
``from commit_categoriser.models import Commit, CommitCategory``.
"""

from __future__ import annotations

from .commit import CategorizedCommit, Commit
from .enums import CommitCategory, ProviderName
from .results import (
    KEYWORD_FALLBACK,
    KEYWORD_TRIAGE,
    BatchDistribution,
    BatchResult,
    CategorisationResult,
    CategoryStat,
    OrchestrationStats,
    calculate_category_stats,
)

__all__ = [
    "Commit",
    "CategorizedCommit",
    "CommitCategory",
    "ProviderName",
    "BatchDistribution",
    "BatchResult",
    "OrchestrationStats",
    "CategorisationResult",
    "CategoryStat",
    "calculate_category_stats",
    "KEYWORD_FALLBACK",
    "KEYWORD_TRIAGE",
]
