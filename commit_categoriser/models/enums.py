"""Enumerations shared by the categoriser, the provider layer and the prompts.

`CommitCategory` values must match the wording used in
`commit_categoriser/prompt/promptFiles/category_definitions.md`.
"""

from __future__ import annotations

import re
from enum import Enum


class CommitCategory(str, Enum):
    """All valid labels a commit can be assigned.

    Values are serialised as-is into JSON output, so the mixed casing of
    ``API``, ``UI`` and ``UX`` is intentional.
    """

    BUGFIX = "bugfix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    DOCUMENTATION = "documentation"
    TEST = "test"
    CHORE = "chore"
    STYLING = "styling"
    PERFORMANCE = "performance"
    SECURITY = "security"
    BACKEND = "backend"
    FRONTEND = "frontend"
    DATABASE = "database"
    API = "API"
    UI = "UI"
    UX = "UX"
    BUILD = "build"
    CI_CD = "ci/cd"
    DEPENDENCIES = "dependencies"
    OTHER = "other"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]

    @classmethod
    def from_label(cls, label: object) -> CommitCategory | None:
        """Map a free-form model label onto a known category.

        Returns ``None`` for anything that cannot be recognised.
        """
        if isinstance(label, CommitCategory):
            return label
        if not isinstance(label, str):
            return None
        cleaned = _LABEL_NOISE_RE.sub("", label).strip().lower()
        if not cleaned:
            return None
        cleaned = _CATEGORY_ALIASES.get(cleaned, cleaned)
        return _CATEGORY_LOOKUP.get(cleaned.lower())


class ProviderName(str, Enum):
    """The LLM backends the categoriser knows how to call."""

    GROQ = "groq"
    GEMINI = "gemini"
    HUGGINGFACE = "huggingface"

    @classmethod
    def all_values(cls) -> list[str]:
        return [m.value for m in cls]


# Emoji, brackets and other decoration models like to add around labels.
# "/" and "-" survive so that "ci/cd" and "ci-cd" can still be recognised.
_LABEL_NOISE_RE = re.compile(r"[^\w\s/-]")

_CATEGORY_ALIASES: dict[str, str] = {
    "feat": "feature",
    "features": "feature",
    "bug": "bugfix",
    "bugs": "bugfix",
    "fix": "bugfix",
    "fixes": "bugfix",
    "bug fix": "bugfix",
    "bug-fix": "bugfix",
    "style": "styling",
    "styles": "styling",
    "perf": "performance",
    "optimize": "performance",
    "optimization": "performance",
    "doc": "documentation",
    "docs": "documentation",
    "testing": "test",
    "tests": "test",
    "refactoring": "refactor",
    "ci": "ci/cd",
    "cd": "ci/cd",
    "cicd": "ci/cd",
    "ci-cd": "ci/cd",
    "ci cd": "ci/cd",
    "deps": "dependencies",
    "dependency": "dependencies",
    "chores": "chore",
}

_CATEGORY_LOOKUP: dict[str, CommitCategory] = {
    member.value.lower(): member for member in CommitCategory
}
