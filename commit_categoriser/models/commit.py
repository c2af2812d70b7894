"""Commit input and categorised output models.

`Commit` is the immutable input record handed to the engine. `CategorizedCommit`
is produced exactly once per input commit, by an AI batch, a failover batch or
the keyword classifier.
"""

from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, field_validator

from .enums import CommitCategory


class Commit(BaseModel):
    """A commit to categorise. Identity is the SHA."""

    model_config = ConfigDict(frozen=True)

    sha: str
    message: str

    @field_validator("sha", mode="before")
    def _strip_sha(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("sha must not be empty")
        return result

    @field_validator("message", mode="before")
    def _coerce_message(cls, value: object) -> str:
        return "" if value is None else str(value)

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> Commit:
        """Build a commit from either a flat record or a GitHub API commit object.

        GitHub's list-commits endpoint nests the message under ``commit.message``.
        """
        message = data.get("message")
        if message is None and isinstance(data.get("commit"), dict):
            message = data["commit"].get("message")
        return cls(sha=data.get("sha"), message=message)


class CategorizedCommit(BaseModel):
    """A commit annotated with its categories and attribution."""

    model_config = ConfigDict(extra="forbid")

    sha: str
    message: str
    categories: List[CommitCategory]
    provider: str | None = None
    processing_time_ms: int | None = None

    @field_validator("categories", mode="before")
    def _normalise_categories(cls, value: object) -> list[CommitCategory]:
        if value is None:
            return [CommitCategory.OTHER]
        if isinstance(value, (str, CommitCategory)):
            value = [value]
        categories: list[CommitCategory] = []
        for raw in value:  # type: ignore[union-attr]
            category = CommitCategory.from_label(raw)
            if category is not None and category not in categories:
                categories.append(category)
        return categories or [CommitCategory.OTHER]

    @property
    def category_values(self) -> list[str]:
        return [c.value for c in self.categories]
