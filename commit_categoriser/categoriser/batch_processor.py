"""Turn one provider-tagged batch into categorised commits.

A batch either resolves at least one of its commits, or fails as a whole and
returns an empty, unsuccessful `BatchResult`. Nothing raised while prompting,
calling or parsing escapes `BatchProcessor.process`; the orchestrator decides
what happens to a failed batch.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

from commit_categoriser.llm.json_utils import parse_json_array
from commit_categoriser.llm.service import ProviderService
from commit_categoriser.models import (
    BatchDistribution,
    BatchResult,
    CategorizedCommit,
    Commit,
    CommitCategory,
)

from .prompt_factory import build_prompt

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path("data/llm_categoriser_responses")


def normalise_categories(raw: Any, max_categories: int) -> list[CommitCategory]:
    """Map model labels to known categories, capped at ``max_categories``.

    Unknown labels are dropped; an empty result becomes ``[OTHER]``.
    """
    if isinstance(raw, (str, CommitCategory)):
        raw = [raw]
    categories: list[CommitCategory] = []
    for label in raw or []:
        category = CommitCategory.from_label(label)
        if category is not None and category not in categories:
            categories.append(category)
    if not categories:
        return [CommitCategory.OTHER]
    return categories[: max(1, max_categories)]


def match_commit(record_sha: str, commits: Sequence[Commit]) -> Commit | None:
    """Find the input commit a model record refers to.

    Exact SHA match wins; otherwise the first commit whose SHA is a prefix of
    the record's SHA, or the other way round.
    """
    needle = record_sha.strip().lower()
    if not needle:
        return None
    for commit in commits:
        if commit.sha.lower() == needle:
            return commit
    for commit in commits:
        candidate = commit.sha.lower()
        if candidate.startswith(needle) or needle.startswith(candidate):
            return commit
    return None


class BatchProcessor:
    """Prompt a provider with one batch and reconcile its answer by SHA."""

    def __init__(
        self,
        service: ProviderService,
        *,
        max_categories: int = 2,
        max_message_length: int = 100,
        log_raw_responses: bool = False,
        log_response_dir: Path | str | None = None,
    ) -> None:
        if max_categories < 1:
            raise ValueError("max_categories must be at least 1")
        self._service = service
        self._max_categories = max_categories
        self._max_message_length = max_message_length
        self._log_raw_responses = log_raw_responses
        self._log_response_dir = Path(log_response_dir) if log_response_dir else DEFAULT_LOG_DIR

    @property
    def service(self) -> ProviderService:
        return self._service

    @property
    def max_categories(self) -> int:
        return self._max_categories

    async def process(
        self,
        distribution: BatchDistribution,
        *,
        batch_index: int = 0,
        total_batches: int = 1,
    ) -> BatchResult:
        provider = distribution.provider
        commits = distribution.commits
        logger.info(
            "Processing batch %d/%d with %s (%d commits)",
            batch_index + 1,
            total_batches,
            provider,
            len(commits),
        )
        start = time.monotonic()

        try:
            prompt = build_prompt(
                commits,
                max_categories=self._max_categories,
                max_message_length=self._max_message_length,
            )
            response = await self._service.call(provider, prompt)
            self._maybe_log_response(provider, batch_index, response.content, commits)
            records = parse_json_array(response.content)
            elapsed_ms = int((time.monotonic() - start) * 1000)
            results = self.resolve_records(
                records, commits, provider=response.provider, processing_time_ms=elapsed_ms
            )
        except Exception as exc:  # any failure fails the whole batch
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Batch %d via %s failed: %s", batch_index + 1, provider, exc)
            return BatchResult(
                results=[], provider=provider, processing_time_ms=elapsed_ms, success=False
            )

        if not results:
            logger.warning(
                "Batch %d via %s resolved none of its %d commits",
                batch_index + 1,
                provider,
                len(commits),
            )
            return BatchResult(
                results=[], provider=provider, processing_time_ms=elapsed_ms, success=False
            )

        logger.info(
            "%s processed %d/%d commits in %.1fs",
            provider,
            len(results),
            len(commits),
            elapsed_ms / 1000,
        )
        return BatchResult(
            results=results, provider=provider, processing_time_ms=elapsed_ms, success=True
        )

    def resolve_records(
        self,
        records: Sequence[Any],
        commits: Sequence[Commit],
        *,
        provider: str,
        processing_time_ms: int | None = None,
    ) -> list[CategorizedCommit]:
        """Attach each parsed record to its input commit.

        Records without a usable ``sha`` or that resolve to an already
        categorised commit are skipped. The original commit message is kept.
        """
        results: list[CategorizedCommit] = []
        resolved: set[str] = set()
        for record in records:
            if not isinstance(record, dict):
                continue
            record_sha = record.get("sha")
            if not isinstance(record_sha, str):
                continue
            commit = match_commit(record_sha, commits)
            if commit is None or commit.sha in resolved:
                continue
            resolved.add(commit.sha)
            results.append(
                CategorizedCommit(
                    sha=commit.sha,
                    message=commit.message,
                    categories=normalise_categories(
                        record.get("categories"), self._max_categories
                    ),
                    provider=provider,
                    processing_time_ms=processing_time_ms,
                )
            )
        return results

    def _maybe_log_response(
        self,
        provider: str,
        batch_index: int,
        response: str,
        commits: Sequence[Commit],
    ) -> None:
        if not self._log_raw_responses:
            return

        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
        log_dir = self._log_response_dir / provider
        log_file = log_dir / f"batch-{batch_index + 1}.{timestamp}.json"

        log_data = {
            "timestamp": timestamp,
            "provider": provider,
            "batch_index": batch_index,
            "commits": [c.model_dump() for c in commits],
            "response": response,
        }

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            with open(log_file, "w", encoding="utf-8") as f:
                json.dump(log_data, f, indent=2)
        except OSError as e:
            logger.warning("Could not log raw response: %s", e)
