from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _read_float_env(var_name: str, *, default: float) -> float:
    try:
        raw = os.environ.get(var_name)
        if raw is None:
            return default
        value = float(raw)
    except ValueError:
        return default
    return value


def _read_int_env(var_name: str, *, default: int, minimum: int = 1) -> int:
    try:
        raw = os.environ.get(var_name)
        if raw is None:
            return default
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _read_bool_env(var_name: str, *, default: bool = False) -> bool:
    raw = os.environ.get(var_name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass
class CategoriserConfiguration:
    """Settings for one categorisation run.

    Every field can be supplied from the environment via `from_env`; CLI flags
    override individual values afterwards.
    """

    # Dispatch
    dispatch_mode: str = "parallel"
    max_concurrent_batches: int = 3
    wave_delay: float = 0.5
    keyword_triage: bool = False

    # Prompting
    max_categories: int = 2
    max_message_length: int = 100

    # Transport
    request_timeout: float = 60.0

    # Logging
    log_raw_responses: bool = False
    log_response_dir: Path = Path("data/llm_categoriser_responses")

    @classmethod
    def from_env(cls, *, dotenv_path: str | Path | None = None) -> CategoriserConfiguration:
        """Read settings from the environment, loading ``.env`` first.

        Values that cannot be parsed fall back to the defaults.
        """
        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        dispatch_mode = os.environ.get("LLM_CATEGORISER_DISPATCH_MODE", "parallel").strip().lower()
        if dispatch_mode not in {"parallel", "waves"}:
            dispatch_mode = "parallel"

        wave_delay = _read_float_env("LLM_CATEGORISER_WAVE_DELAY", default=0.5)
        timeout = _read_float_env("LLM_REQUEST_TIMEOUT", default=60.0)

        return cls(
            dispatch_mode=dispatch_mode,
            max_concurrent_batches=_read_int_env("LLM_CATEGORISER_MAX_CONCURRENT", default=3),
            wave_delay=wave_delay if wave_delay >= 0 else 0.5,
            keyword_triage=_read_bool_env("LLM_CATEGORISER_KEYWORD_TRIAGE"),
            max_categories=_read_int_env("LLM_CATEGORISER_MAX_CATEGORIES", default=2),
            max_message_length=_read_int_env("LLM_CATEGORISER_MAX_MESSAGE_LENGTH", default=100),
            request_timeout=timeout if timeout > 0 else 60.0,
            log_raw_responses=_read_bool_env("LLM_CATEGORISER_LOG_RESPONSES"),
            log_response_dir=Path(
                os.environ.get("LLM_CATEGORISER_LOG_DIR", "data/llm_categoriser_responses")
            ),
        )
