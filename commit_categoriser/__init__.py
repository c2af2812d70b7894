"""Multi-provider LLM commit categoriser."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = [
    "categoriser",
    "llm",
    "models",
    "prompt",
]
