"""Command-line interface for the commit categoriser.

Reads commits as JSON, categorises them across the configured providers and
writes the result (categorised commits, statistics and progress log) as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from commit_categoriser.config import CategoriserConfiguration
from commit_categoriser.llm.provider import LLMProviderError, NoProvidersAvailable
from commit_categoriser.llm.provider_registry import create_default_registry
from commit_categoriser.models import CategorisationResult, Commit, calculate_category_stats

from .orchestrator import DispatchMode, categorize_commits, categorize_keywords_only


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Categorise commit messages using multiple LLM providers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Categorise commits exported from the GitHub API
  python -m commit_categoriser.categoriser commits.json --output categorised.json

  # Read from stdin and dispatch in waves of two batches
  cat commits.json | python -m commit_categoriser.categoriser --dispatch-mode waves --max-concurrent 2

  # Only send commits the keyword rules cannot place to the models
  python -m commit_categoriser.categoriser commits.json --keyword-triage

  # Show which providers are configured
  python -m commit_categoriser.categoriser --provider-status

Environment Variables:
  GROQ_API_KEY, GEMINI_API_KEY, HUGGINGFACE_API_KEY   Provider credentials
  HUGGINGFACE_ENABLED                  Opt in to the Hugging Face backend
  LLM_CATEGORISER_DISPATCH_MODE        parallel or waves (default: parallel)
  LLM_CATEGORISER_MAX_CONCURRENT       Batches per wave (default: 3)
  LLM_CATEGORISER_WAVE_DELAY           Seconds between waves (default: 0.5)
  LLM_CATEGORISER_MAX_CATEGORIES       Categories per commit (default: 2)
  LLM_CATEGORISER_KEYWORD_TRIAGE       Enable keyword triage (default: false)
  LLM_CATEGORISER_LOG_RESPONSES        Set to true/1 to dump raw LLM responses
  LLM_CATEGORISER_LOG_DIR              Response log directory (default: data/llm_categoriser_responses)
  LLM_REQUEST_TIMEOUT                  HTTP timeout in seconds (default: 60)
        """,
    )

    parser.add_argument(
        "input",
        nargs="?",
        default="-",
        help="JSON file with a list of commits, or '-' for stdin (default: stdin)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write the result JSON here instead of stdout",
    )

    # Dispatch options
    parser.add_argument(
        "--dispatch-mode",
        choices=DispatchMode.all_values(),
        help="Dispatch all batches at once or in waves (default: LLM_CATEGORISER_DISPATCH_MODE)",
    )
    parser.add_argument(
        "--max-concurrent",
        type=int,
        help="Batches per wave in waves mode (default: LLM_CATEGORISER_MAX_CONCURRENT)",
    )
    parser.add_argument(
        "--wave-delay",
        type=float,
        help="Seconds to wait between waves (default: LLM_CATEGORISER_WAVE_DELAY)",
    )
    parser.add_argument(
        "--max-categories",
        type=int,
        help="Maximum categories per commit (default: LLM_CATEGORISER_MAX_CATEGORIES)",
    )

    # Special modes
    parser.add_argument(
        "--keyword-triage",
        action="store_true",
        default=None,
        help="Categorise unambiguous commits by keywords and send only the rest to AI",
    )
    parser.add_argument(
        "--keyword-only",
        action="store_true",
        help="Skip all providers and categorise with keywords only",
    )
    parser.add_argument(
        "--provider-status",
        action="store_true",
        help="Print provider availability and exit",
    )

    parser.add_argument(
        "--dotenv",
        type=Path,
        help="Path to .env file for API keys",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(args)


def load_commits(source: str) -> list[Commit]:
    """Load commits from a JSON file path or ``-`` for stdin.

    Accepts a list of ``{sha, message}`` records, GitHub API commit objects
    (``{sha, commit: {message}}``) or an object with a ``commits`` list.
    """
    if source == "-":
        raw = sys.stdin.read()
    else:
        raw = Path(source).read_text(encoding="utf-8")

    data: Any = json.loads(raw)
    if isinstance(data, dict):
        data = data.get("commits")
    if not isinstance(data, list):
        raise ValueError("Expected a JSON list of commits")
    return [Commit.from_mapping(item) for item in data]


def apply_overrides(
    config: CategoriserConfiguration, parsed_args: argparse.Namespace
) -> CategoriserConfiguration:
    overrides: dict[str, Any] = {}
    if parsed_args.dispatch_mode is not None:
        overrides["dispatch_mode"] = parsed_args.dispatch_mode
    if parsed_args.max_concurrent is not None:
        overrides["max_concurrent_batches"] = max(1, parsed_args.max_concurrent)
    if parsed_args.wave_delay is not None:
        overrides["wave_delay"] = max(0.0, parsed_args.wave_delay)
    if parsed_args.max_categories is not None:
        overrides["max_categories"] = max(1, parsed_args.max_categories)
    if parsed_args.keyword_triage is not None:
        overrides["keyword_triage"] = parsed_args.keyword_triage
    return replace(config, **overrides) if overrides else config


def render_result(result: CategorisationResult) -> str:
    payload = result.to_dict()
    payload["category_stats"] = [
        {"category": s.category.value, "count": s.count, "percentage": round(s.percentage, 1)}
        for s in calculate_category_stats(result.categorized_commits)
    ]
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _write_output(text: str, output: Path | None) -> None:
    if output is None:
        print(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text + "\n", encoding="utf-8")
    print(f"Wrote results to {output}", file=sys.stderr)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for error, 130 when interrupted)
    """
    parsed_args = parse_args(args)
    logging.basicConfig(
        level=getattr(logging, parsed_args.log_level),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = apply_overrides(
            CategoriserConfiguration.from_env(dotenv_path=parsed_args.dotenv), parsed_args
        )

        if parsed_args.provider_status:
            registry = create_default_registry(dotenv_path=parsed_args.dotenv)
            _write_output(json.dumps(registry.status(), indent=2), parsed_args.output)
            return 0

        commits = load_commits(parsed_args.input)

        if parsed_args.keyword_only:
            result = categorize_keywords_only(commits, max_categories=config.max_categories)
        else:
            result = categorize_commits(commits, config=config, dotenv_path=parsed_args.dotenv)

        _write_output(render_result(result), parsed_args.output)
        return 0

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except NoProvidersAvailable as e:
        print(f"Error: {e}. Set GROQ_API_KEY or GEMINI_API_KEY.", file=sys.stderr)
        return 1
    except (LLMProviderError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
