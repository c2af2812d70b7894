from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import httpx
from dotenv import load_dotenv

from .provider import LLMProviderConfigurationError, LLMProviderError


class GroqLLM:
    """Async client for Groq's OpenAI-compatible chat completions endpoint."""

    name = "groq"
    MODEL = "llama-3.1-8b-instant"
    BASE_URL = "https://api.groq.com/openai/v1"
    TEMPERATURE = 0.1
    MAX_TOKENS = 2048

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        client: httpx.AsyncClient | None = None,
        dotenv_path: str | Path | None = None,
        timeout: float = 60.0,
    ) -> None:
        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        api_key = api_key or os.environ.get("GROQ_API_KEY")
        if not api_key:
            raise LLMProviderConfigurationError(
                "GROQ_API_KEY environment variable is required but not set. "
                "Please set it in your .env file or environment."
            )

        self._model = model or os.environ.get("GROQ_MODEL") or self.MODEL
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, prompt: str) -> str:
        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.TEMPERATURE,
            "max_tokens": self.MAX_TOKENS,
        }
        response = await self._client.post(
            f"{self.BASE_URL}/chat/completions", json=payload, headers=self._headers
        )
        response.raise_for_status()
        return self._extract_text(response.json())

    @staticmethod
    def _extract_text(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMProviderError("Groq response did not contain a message") from exc
        if not isinstance(content, str) or not content.strip():
            raise LLMProviderError("Groq returned an empty message")
        return content

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GroqLLM:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()
