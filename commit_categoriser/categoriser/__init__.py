"""Commit categorisation across multiple LLM providers.

Main entry point:
    python -m commit_categoriser.categoriser

Key modules:
    - keywords: Deterministic keyword classifier (final fallback and triage)
    - distributor: Split commits into provider-tagged batches
    - prompt_factory: Render prompts for a batch
    - batch_processor: Call a provider for one batch and reconcile by SHA
    - orchestrator: Dispatch, failover and keyword fallback for a whole run
    - cli: Command-line interface
"""

from __future__ import annotations

__all__ = [
    "keywords",
    "distributor",
    "prompt_factory",
    "batch_processor",
    "orchestrator",
    "cli",
]
