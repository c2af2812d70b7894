from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

ProviderReporter = Callable[[str, "ProviderStatus", Exception | None], None]


class ProviderStatus(str, Enum):
    """Status used when reporting the outcome of a provider call."""

    SUCCESS = "success"
    QUOTA = "quota"
    FAILURE = "failure"
    UNAVAILABLE = "unavailable"


class LLMProviderError(Exception):
    """Generic failure raised by the provider layer."""


class NoProvidersAvailable(LLMProviderError):
    """Raised when no provider can take work. Fatal for a categorisation run."""

    def __init__(self, message: str = "No AI providers available") -> None:
        super().__init__(message)


class LLMProviderConfigurationError(LLMProviderError):
    """Raised when a provider cannot be configured or authenticated."""


class ProviderCallFailed(LLMProviderError):
    """A single provider request failed; recoverable at batch scope."""

    def __init__(
        self,
        provider: str,
        message: str | None = None,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.provider = provider
        self.cause = cause
        if message is None:
            message = f"{provider} call failed"
            if cause is not None:
                message = f"{message}: {cause}"
        super().__init__(message)


class ProviderUnavailable(ProviderCallFailed):
    """The provider is flagged unavailable and was not called."""


class LLMQuotaError(ProviderCallFailed):
    """Raised when a provider's per-minute request quota is exhausted."""


class UnrecoverableParseError(LLMProviderError):
    """Raised when a model response cannot be turned into a JSON array.

    The raw response text is attached to aid debugging when the model returns
    unexpected content.
    """

    def __init__(
        self,
        message: str,
        *,
        response_text: str | None = None,
    ) -> None:
        super().__init__(message)
        self.response_text = response_text

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.response_text is not None:
            # Truncate very long responses for readability
            text = self.response_text
            if len(text) > 2000:
                text = text[:2000] + "... [truncated]"
            parts.append(f"\n--- LLM Response ---\n{text}")
        return "".join(parts)


@dataclass(frozen=True)
class AIResponse:
    """Uniform shape every backend response is normalised into."""

    content: str
    provider: str
    response_time_ms: int


class LLMProvider(Protocol):
    """Shared contract for LLM backend clients."""

    name: str

    async def complete(self, prompt: str) -> str:
        """Send a single prompt and return the model's text output."""
        ...

    async def aclose(self) -> None:
        """Release any network resources held by the client."""
        ...
