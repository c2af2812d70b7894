"""Build categorisation prompts from the mustache templates.

This module renders commit_categoriser.md with the batch's commits. Messages
are flattened onto one line, double quotes become single quotes so they do not
clash with the JSON example, and SHAs are shortened to the 8-character form
the model is asked to echo back.
"""

from __future__ import annotations

import re
from typing import Sequence

from commit_categoriser.models import Commit
from commit_categoriser.prompt.render_prompt import render_template

SHORT_SHA_LENGTH = 8

_WHITESPACE_RE = re.compile(r"[\n\r\t]")


def short_sha(sha: str) -> str:
    return sha[:SHORT_SHA_LENGTH]


def clean_message(message: str, max_length: int = 100) -> str:
    cleaned = _WHITESPACE_RE.sub(" ", message or "").replace('"', "'")
    return cleaned[:max_length]


def build_prompt(
    commits: Sequence[Commit],
    *,
    max_categories: int = 2,
    max_message_length: int = 100,
) -> str:
    """Render the prompt for one batch.

    Args:
        commits: Commits in the batch, in dispatch order
        max_categories: Upper bound on categories the model may return
        max_message_length: Messages are cut to this many characters

    Returns:
        The rendered prompt text.
    """
    context = {
        "commit_count": len(commits),
        "max_categories": max_categories,
        "example_sha": short_sha(commits[0].sha) if commits else "",
        "commits": [
            {
                "index": index,
                "short_sha": short_sha(commit.sha),
                "message": clean_message(commit.message, max_message_length),
            }
            for index, commit in enumerate(commits, start=1)
        ],
    }
    return render_template("commit_categoriser.md", context)
