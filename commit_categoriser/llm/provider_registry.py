from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Mapping

from dotenv import load_dotenv

from commit_categoriser.models import ProviderName

from .provider import LLMProvider

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60.0

# Share of each run's commits handed to a provider before round-robin.
DEFAULT_ALLOCATION: dict[ProviderName, float] = {
    ProviderName.GROQ: 0.50,
    ProviderName.GEMINI: 0.50,
    ProviderName.HUGGINGFACE: 0.00,
}

CREDENTIAL_ENV_VARS: dict[ProviderName, str] = {
    ProviderName.GROQ: "GROQ_API_KEY",
    ProviderName.GEMINI: "GEMINI_API_KEY",
    ProviderName.HUGGINGFACE: "HUGGINGFACE_API_KEY",
}


@dataclass
class ProviderDescriptor:
    """Static limits plus mutable quota state for one backend."""

    name: ProviderName
    display_name: str
    priority: int
    max_batch_size: int
    requests_per_minute: int
    avg_response_time_ms: int
    is_available: bool = True
    configured: bool = True
    request_count: int = 0
    last_reset_time: float = 0.0
    last_error: str | None = None

    def snapshot(self) -> dict[str, object]:
        return {
            "name": self.name.value,
            "display_name": self.display_name,
            "priority": self.priority,
            "max_batch_size": self.max_batch_size,
            "requests_per_minute": self.requests_per_minute,
            "avg_response_time_ms": self.avg_response_time_ms,
            "is_available": self.is_available,
            "configured": self.configured,
            "request_count": self.request_count,
            "last_error": self.last_error,
        }


_DEFAULT_DESCRIPTORS: tuple[ProviderDescriptor, ...] = (
    ProviderDescriptor(
        name=ProviderName.GROQ,
        display_name="Groq",
        priority=1,
        max_batch_size=12,
        requests_per_minute=100,
        avg_response_time_ms=800,
    ),
    ProviderDescriptor(
        name=ProviderName.GEMINI,
        display_name="Google Gemini",
        priority=2,
        max_batch_size=8,
        requests_per_minute=14,
        avg_response_time_ms=1500,
    ),
    ProviderDescriptor(
        name=ProviderName.HUGGINGFACE,
        display_name="Hugging Face",
        priority=3,
        max_batch_size=5,
        requests_per_minute=10,
        avg_response_time_ms=3000,
    ),
)

_NAME_NOISE_RE = re.compile(r"[^a-z]")

_NAME_ALIASES: dict[str, ProviderName] = {
    "groq": ProviderName.GROQ,
    "gemini": ProviderName.GEMINI,
    "googlegemini": ProviderName.GEMINI,
    "google": ProviderName.GEMINI,
    "huggingface": ProviderName.HUGGINGFACE,
    "hf": ProviderName.HUGGINGFACE,
}


def resolve_provider_name(value: str | ProviderName) -> ProviderName:
    """Resolve any spelling of a provider name to its `ProviderName`.

    Matching ignores case, whitespace and punctuation, so "Google Gemini",
    "googlegemini" and "GEMINI" all resolve to `ProviderName.GEMINI`.
    """
    if isinstance(value, ProviderName):
        return value
    key = _NAME_NOISE_RE.sub("", str(value).lower())
    try:
        return _NAME_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unknown LLM provider '{value}'") from None


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class ProviderRegistry:
    """Process-scoped provider state shared by every batch in a run.

    Instances are injected into the engine rather than held in a module-level
    singleton so tests can build an isolated registry per case. All mutation
    happens on the event loop thread.
    """

    def __init__(
        self,
        descriptors: Iterable[ProviderDescriptor],
        *,
        allocation: Mapping[ProviderName | str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        now = clock()
        self._providers: dict[ProviderName, ProviderDescriptor] = {}
        for descriptor in descriptors:
            descriptor.last_reset_time = now
            self._providers[descriptor.name] = descriptor

        source = DEFAULT_ALLOCATION if allocation is None else allocation
        self._allocation: dict[ProviderName, float] = {
            resolve_provider_name(name): float(share) for name, share in source.items()
        }

    def __contains__(self, name: object) -> bool:
        try:
            return resolve_provider_name(name) in self._providers  # type: ignore[arg-type]
        except ValueError:
            return False

    def get(self, name: str | ProviderName) -> ProviderDescriptor:
        resolved = resolve_provider_name(name)
        try:
            return self._providers[resolved]
        except KeyError:
            raise ValueError(f"Provider '{resolved.value}' is not registered") from None

    def allocation_for(self, name: str | ProviderName) -> float:
        return self._allocation.get(resolve_provider_name(name), 0.0)

    def _refresh_window(self, descriptor: ProviderDescriptor, now: float) -> None:
        if now - descriptor.last_reset_time > RATE_LIMIT_WINDOW_SECONDS:
            descriptor.request_count = 0
            descriptor.last_reset_time = now

    def get_available_providers(self) -> list[ProviderDescriptor]:
        """Return usable providers, most preferred (lowest priority) first."""
        now = self._clock()
        available: list[ProviderDescriptor] = []
        for descriptor in self._providers.values():
            self._refresh_window(descriptor, now)
            if not descriptor.is_available:
                continue
            if descriptor.request_count >= descriptor.requests_per_minute:
                continue
            available.append(descriptor)
        return sorted(available, key=lambda d: d.priority)

    def get_best_available(self) -> ProviderDescriptor | None:
        available = self.get_available_providers()
        return available[0] if available else None

    def has_quota(self, name: str | ProviderName) -> bool:
        descriptor = self.get(name)
        self._refresh_window(descriptor, self._clock())
        return descriptor.request_count < descriptor.requests_per_minute

    def record_request(self, name: str | ProviderName) -> None:
        descriptor = self.get(name)
        self._refresh_window(descriptor, self._clock())
        descriptor.request_count += 1

    def mark_unavailable(self, name: str | ProviderName, error: str | None = None) -> None:
        descriptor = self.get(name)
        if descriptor.is_available:
            logger.warning("Marking provider %s unavailable: %s", descriptor.name.value, error)
        descriptor.is_available = False
        descriptor.last_error = error

    def reset_provider_availability(self) -> None:
        """Make every configured provider available again.

        Failed providers are never revived automatically; this is the manual
        recovery path. Providers without credentials stay unavailable.
        """
        for descriptor in self._providers.values():
            descriptor.is_available = descriptor.configured
            descriptor.last_error = None

    def status(self) -> list[dict[str, object]]:
        return [d.snapshot() for d in sorted(self._providers.values(), key=lambda d: d.priority)]


def default_descriptors(
    *,
    credentials: Mapping[ProviderName, bool] | None = None,
    huggingface_enabled: bool | None = None,
) -> list[ProviderDescriptor]:
    """Build fresh descriptors whose availability follows the environment.

    A provider without a credential is unavailable for the process lifetime.
    Hugging Face also needs ``HUGGINGFACE_ENABLED`` because its free models
    rarely return usable JSON.
    """
    if credentials is None:
        credentials = {
            name: bool(os.environ.get(env_var))
            for name, env_var in CREDENTIAL_ENV_VARS.items()
        }
    if huggingface_enabled is None:
        huggingface_enabled = _env_flag("HUGGINGFACE_ENABLED")

    descriptors: list[ProviderDescriptor] = []
    for template in _DEFAULT_DESCRIPTORS:
        configured = bool(credentials.get(template.name, False))
        if template.name is ProviderName.HUGGINGFACE:
            configured = configured and huggingface_enabled
        descriptors.append(replace(template, is_available=configured, configured=configured))
    return descriptors


def create_default_registry(
    *,
    dotenv_path: str | Path | None = None,
    allocation: Mapping[ProviderName | str, float] | None = None,
) -> ProviderRegistry:
    """Load `.env` and build a registry for the three known providers."""
    if dotenv_path is not None:
        load_dotenv(dotenv_path=str(dotenv_path), override=True)
    else:
        load_dotenv()

    descriptors = default_descriptors()
    for descriptor in descriptors:
        logger.info(
            "Provider %s: %s",
            descriptor.display_name,
            "available" if descriptor.is_available else "missing credential or disabled",
        )
    return ProviderRegistry(descriptors, allocation=allocation)


ProviderFactory = Callable[..., LLMProvider]


def _groq_factory(*, timeout: float) -> LLMProvider:
    from .groq_llm import GroqLLM

    return GroqLLM(timeout=timeout)


def _gemini_factory(*, timeout: float) -> LLMProvider:
    from .gemini_llm import GeminiLLM

    return GeminiLLM(timeout=timeout)


def _huggingface_factory(*, timeout: float) -> LLMProvider:
    from .huggingface_llm import HuggingFaceLLM

    return HuggingFaceLLM(timeout=timeout)


_PROVIDER_FACTORIES: dict[ProviderName, ProviderFactory] = {
    ProviderName.GROQ: _groq_factory,
    ProviderName.GEMINI: _gemini_factory,
    ProviderName.HUGGINGFACE: _huggingface_factory,
}


def create_provider_clients(
    registry: ProviderRegistry,
    *,
    timeout: float = 60.0,
) -> dict[ProviderName, LLMProvider]:
    """Instantiate a client for every configured provider in the registry."""
    clients: dict[ProviderName, LLMProvider] = {}
    for entry in registry.status():
        name = ProviderName(entry["name"])
        if not entry["configured"]:
            continue
        clients[name] = _PROVIDER_FACTORIES[name](timeout=timeout)
    return clients


__all__ = [
    "CREDENTIAL_ENV_VARS",
    "DEFAULT_ALLOCATION",
    "ProviderDescriptor",
    "ProviderRegistry",
    "create_default_registry",
    "create_provider_clients",
    "default_descriptors",
    "resolve_provider_name",
]
