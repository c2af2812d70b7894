from __future__ import annotations

import logging
import time
from typing import Mapping

from commit_categoriser.models import ProviderName

from .provider import (
    AIResponse,
    LLMProvider,
    LLMQuotaError,
    NoProvidersAvailable,
    ProviderCallFailed,
    ProviderReporter,
    ProviderStatus,
    ProviderUnavailable,
)
from .provider_registry import ProviderRegistry, resolve_provider_name

logger = logging.getLogger(__name__)


class ProviderService:
    """Sends one prompt to one named provider and keeps the registry honest.

    Every provider name passes through `resolve_provider_name`, so callers can
    use any spelling. A failed call marks the provider unavailable for the rest
    of the process; a successful one counts against its per-minute quota.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        clients: Mapping[ProviderName | str, LLMProvider],
        *,
        reporter: ProviderReporter | None = None,
    ) -> None:
        self._registry = registry
        self._clients: dict[ProviderName, LLMProvider] = {
            resolve_provider_name(name): client for name, client in clients.items()
        }
        self._reporter = reporter

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def call(self, provider: str | ProviderName, prompt: str) -> AIResponse:
        """Send ``prompt`` to ``provider`` once.

        Raises:
            ProviderUnavailable: The provider is flagged unavailable.
            LLMQuotaError: The provider's per-minute quota is used up.
            ProviderCallFailed: The request failed; the provider is now
                flagged unavailable.
        """
        name = resolve_provider_name(provider)
        descriptor = self._registry.get(name)

        if not descriptor.is_available:
            exc: ProviderCallFailed = ProviderUnavailable(
                name.value, f"{descriptor.display_name} is not available"
            )
            self._report(name.value, ProviderStatus.UNAVAILABLE, exc)
            raise exc

        if not self._registry.has_quota(name):
            exc = LLMQuotaError(
                name.value,
                f"{descriptor.display_name} rate limit of "
                f"{descriptor.requests_per_minute} requests per minute reached",
            )
            self._report(name.value, ProviderStatus.QUOTA, exc)
            raise exc

        client = self._clients.get(name)
        if client is None:
            error = f"No client configured for {descriptor.display_name}"
            self._registry.mark_unavailable(name, error)
            exc = ProviderCallFailed(name.value, error)
            self._report(name.value, ProviderStatus.FAILURE, exc)
            raise exc

        start = time.monotonic()
        try:
            content = await client.complete(prompt)
            if not isinstance(content, str) or not content.strip():
                raise ValueError("empty response content")
        except Exception as cause:  # SDK and transport errors vary per backend
            self._registry.mark_unavailable(name, str(cause) or type(cause).__name__)
            exc = ProviderCallFailed(name.value, cause=cause)
            self._report(name.value, ProviderStatus.FAILURE, exc)
            raise exc from cause

        elapsed_ms = int((time.monotonic() - start) * 1000)
        self._registry.record_request(name)
        self._report(name.value, ProviderStatus.SUCCESS)
        logger.debug("%s answered in %d ms", descriptor.display_name, elapsed_ms)
        return AIResponse(content=content, provider=name.value, response_time_ms=elapsed_ms)

    async def generate(
        self,
        prompt: str,
        *,
        preferred: str | ProviderName | None = None,
    ) -> AIResponse:
        """Try the preferred provider, then the best available ones in turn."""
        tried: set[ProviderName] = set()

        if preferred is not None:
            name = resolve_provider_name(preferred)
            tried.add(name)
            try:
                return await self.call(name, prompt)
            except ProviderCallFailed as exc:
                logger.info("Preferred provider %s failed: %s", name.value, exc)

        while True:
            candidates = [
                d for d in self._registry.get_available_providers() if d.name not in tried
            ]
            if not candidates:
                raise NoProvidersAvailable()
            descriptor = candidates[0]
            tried.add(descriptor.name)
            try:
                return await self.call(descriptor.name, prompt)
            except ProviderCallFailed as exc:
                logger.info("Provider %s failed: %s", descriptor.name.value, exc)

    def status(self) -> list[dict[str, object]]:
        return self._registry.status()

    def reset_provider_availability(self) -> None:
        self._registry.reset_provider_availability()

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()

    def _report(
        self,
        provider_name: str,
        status: ProviderStatus,
        error: Exception | None = None,
    ) -> None:
        if self._reporter is None:
            return
        self._reporter(provider_name, status, error)
