"""Deterministic keyword categorisation used when no model answer is available.

The table is ordered: earlier rows win when a message matches more than
``max_categories`` of them.
"""

from __future__ import annotations

import re
from typing import Iterable

from commit_categoriser.models import KEYWORD_FALLBACK, CategorizedCommit, Commit, CommitCategory

_KEYWORD_PATTERNS: tuple[tuple[CommitCategory, re.Pattern[str]], ...] = (
    (
        CommitCategory.BUGFIX,
        re.compile(
            r"(?i)\b(fix(es|ed)?|bugs?|bugfix|hotfix|quickfix|errors?|crash(es)?|"
            r"broken|repair|resolve[sd]?|patch)\b"
        ),
    ),
    (
        CommitCategory.FEATURE,
        re.compile(r"(?i)\b(feat|features?|add(s|ed)?|new|implement(s|ed)?|introduce[sd]?)\b"),
    ),
    (
        CommitCategory.REFACTOR,
        re.compile(
            r"(?i)\b(refactor(s|ed|ing)?|restructure[sd]?|reorgani[sz]e[sd]?|"
            r"simplif(y|ies|ied)|modernise|modernize)\b"
        ),
    ),
    (
        CommitCategory.DOCUMENTATION,
        re.compile(r"(?i)\b(docs?|documentation|readme|comments?|guide|tutorial|changelog)\b"),
    ),
    (
        CommitCategory.TEST,
        re.compile(r"(?i)\b(tests?|testing|specs?|unit|e2e|coverage|mocks?|stubs?)\b"),
    ),
    (
        CommitCategory.CHORE,
        re.compile(
            r"(?i)\b(chore|gitignore|clean\s?up|housekeeping|maintenance|tidy|"
            r"bump(ed)?|typos?)\b"
        ),
    ),
    (
        CommitCategory.STYLING,
        re.compile(
            r"(?i)\b(style[sd]?|styling|css|scss|sass|theme|formatting|format|prettier|"
            r"lint(ing)?|whitespace)\b"
        ),
    ),
    (
        CommitCategory.PERFORMANCE,
        re.compile(
            r"(?i)\b(perf|performance|speed\s?up|faster|optimi[sz](e|es|ed|ation)|"
            r"cach(e|ing)|latency|memory)\b"
        ),
    ),
    (
        CommitCategory.SECURITY,
        re.compile(
            r"(?i)\b(security|auth|authentication|authori[sz]ation|permissions?|"
            r"vulnerab(le|ility|ilities)|exploit|secure|encrypt(ion)?|cve-\d{4}-\d+)\b"
        ),
    ),
    (
        CommitCategory.BUILD,
        re.compile(r"(?i)\b(build|compile|bundl(e|ing)|webpack|rollup|vite|makefile)\b"),
    ),
    (
        CommitCategory.CI_CD,
        re.compile(
            r"(?i)\b(ci|cd|deploy(s|ed|ment)?|pipelines?|workflows?|github\s+actions|"
            r"jenkins|travis)\b"
        ),
    ),
    (
        CommitCategory.DEPENDENCIES,
        re.compile(
            r"(?i)\b(deps?|dependency|dependencies|packages?|npm|yarn|pip|poetry|"
            r"requirements|upgrade[sd]?|downgrade[sd]?)\b"
        ),
    ),
)


def classify(message: str, *, max_categories: int = 2) -> list[CommitCategory]:
    """Return the first ``max_categories`` matching categories, else ``[OTHER]``."""
    text = message or ""
    matches = [category for category, pattern in _KEYWORD_PATTERNS if pattern.search(text)]
    if not matches:
        return [CommitCategory.OTHER]
    return matches[: max(1, max_categories)]


def is_ambiguous(message: str) -> bool:
    """True when no keyword rule claims the message."""
    return classify(message) == [CommitCategory.OTHER]


def categorize_with_keywords(
    commits: Iterable[Commit],
    *,
    provider: str = KEYWORD_FALLBACK,
    max_categories: int = 2,
) -> list[CategorizedCommit]:
    return [
        CategorizedCommit(
            sha=commit.sha,
            message=commit.message,
            categories=classify(commit.message, max_categories=max_categories),
            provider=provider,
        )
        for commit in commits
    ]
