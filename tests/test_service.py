from __future__ import annotations

import pytest

from commit_categoriser.llm.provider import (
    AIResponse,
    LLMQuotaError,
    NoProvidersAvailable,
    ProviderCallFailed,
    ProviderStatus,
    ProviderUnavailable,
)
from commit_categoriser.llm.service import ProviderService


@pytest.mark.asyncio
async def test_call_returns_response_and_counts_request(make_registry, fake_provider):
    registry = make_registry("groq")
    client = fake_provider("groq", lambda prompt: "[]")
    service = ProviderService(registry, {"groq": client})

    response = await service.call("Groq", "hello")

    assert isinstance(response, AIResponse)
    assert response.content == "[]"
    assert response.provider == "groq"
    assert response.response_time_ms >= 0
    assert client.prompts == ["hello"]
    assert registry.get("groq").request_count == 1


@pytest.mark.asyncio
async def test_failed_call_marks_provider_unavailable(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    cause = RuntimeError("HTTP 500")
    service = ProviderService(registry, {"groq": fake_provider("groq", error=cause)})

    with pytest.raises(ProviderCallFailed) as excinfo:
        await service.call("groq", "hello")

    assert excinfo.value.provider == "groq"
    assert excinfo.value.cause is cause
    assert excinfo.value.__cause__ is cause
    descriptor = registry.get("groq")
    assert not descriptor.is_available
    assert descriptor.last_error == "HTTP 500"
    assert descriptor.request_count == 0


@pytest.mark.asyncio
async def test_empty_content_is_a_failure(make_registry, fake_provider):
    registry = make_registry("gemini")
    service = ProviderService(registry, {"gemini": fake_provider("gemini", lambda p: "  ")})

    with pytest.raises(ProviderCallFailed):
        await service.call("gemini", "hello")
    assert not registry.get("gemini").is_available


@pytest.mark.asyncio
async def test_unavailable_provider_is_not_called(make_registry, fake_provider):
    registry = make_registry("groq")
    registry.mark_unavailable("groq", "earlier failure")
    client = fake_provider("groq")
    service = ProviderService(registry, {"groq": client})

    with pytest.raises(ProviderUnavailable):
        await service.call("groq", "hello")
    assert client.prompts == []


@pytest.mark.asyncio
async def test_quota_exhaustion_does_not_mark_unavailable(make_registry, fake_provider):
    registry = make_registry("gemini")
    registry.get("gemini").request_count = 14
    client = fake_provider("gemini")
    service = ProviderService(registry, {"gemini": client})

    with pytest.raises(LLMQuotaError):
        await service.call("gemini", "hello")
    assert registry.get("gemini").is_available
    assert client.prompts == []


@pytest.mark.asyncio
async def test_missing_client_marks_provider_unavailable(make_registry):
    registry = make_registry("groq")
    service = ProviderService(registry, {})

    with pytest.raises(ProviderCallFailed):
        await service.call("groq", "hello")
    assert not registry.get("groq").is_available


@pytest.mark.asyncio
async def test_generate_falls_back_from_preferred(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    service = ProviderService(
        registry,
        {
            "groq": fake_provider("groq", lambda p: "from groq"),
            "gemini": fake_provider("gemini", error=RuntimeError("down")),
        },
    )

    response = await service.generate("hello", preferred="Google Gemini")

    assert response.provider == "groq"
    assert response.content == "from groq"


@pytest.mark.asyncio
async def test_generate_raises_when_everything_fails(make_registry, fake_provider):
    registry = make_registry("groq", "gemini")
    service = ProviderService(
        registry,
        {
            "groq": fake_provider("groq", error=RuntimeError("a")),
            "gemini": fake_provider("gemini", error=RuntimeError("b")),
        },
    )

    with pytest.raises(NoProvidersAvailable, match="No AI providers available"):
        await service.generate("hello")


@pytest.mark.asyncio
async def test_reporter_receives_outcomes(make_registry, fake_provider):
    events: list[tuple[str, ProviderStatus]] = []
    registry = make_registry("groq", "gemini")
    service = ProviderService(
        registry,
        {
            "groq": fake_provider("groq", lambda p: "ok"),
            "gemini": fake_provider("gemini", error=RuntimeError("down")),
        },
        reporter=lambda name, status, error: events.append((name, status)),
    )

    await service.call("groq", "hello")
    with pytest.raises(ProviderCallFailed):
        await service.call("gemini", "hello")
    with pytest.raises(ProviderUnavailable):
        await service.call("gemini", "hello")

    assert events == [
        ("groq", ProviderStatus.SUCCESS),
        ("gemini", ProviderStatus.FAILURE),
        ("gemini", ProviderStatus.UNAVAILABLE),
    ]


@pytest.mark.asyncio
async def test_reset_and_close(make_registry, fake_provider):
    registry = make_registry("groq")
    client = fake_provider("groq")
    service = ProviderService(registry, {"groq": client})
    registry.mark_unavailable("groq", "x")

    service.reset_provider_availability()
    assert service.status()[0]["is_available"] is True

    await service.aclose()
    assert client.closed
