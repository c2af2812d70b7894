from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Sequence

import httpx
from dotenv import load_dotenv

from .provider import LLMProviderConfigurationError, LLMProviderError

logger = logging.getLogger(__name__)


class HuggingFaceLLM:
    """Async client for the Hugging Face inference API.

    The free text-generation models are unreliable, so each request walks
    ``MODELS`` in order and returns the first usable completion.
    """

    name = "huggingface"
    BASE_URL = "https://api-inference.huggingface.co/models"
    MODELS: tuple[str, ...] = (
        "gpt2",
        "distilgpt2",
        "microsoft/DialoGPT-medium",
        "facebook/opt-350m",
        "EleutherAI/gpt-neo-125M",
    )
    TEMPERATURE = 0.1
    MAX_NEW_TOKENS = 100

    def __init__(
        self,
        *,
        api_key: str | None = None,
        models: Sequence[str] | None = None,
        client: httpx.AsyncClient | None = None,
        dotenv_path: str | Path | None = None,
        timeout: float = 60.0,
    ) -> None:
        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        api_key = api_key or os.environ.get("HUGGINGFACE_API_KEY")
        if not api_key:
            raise LLMProviderConfigurationError(
                "HUGGINGFACE_API_KEY environment variable is required but not set. "
                "Please set it in your .env file or environment."
            )

        self._models = tuple(models) if models else self.MODELS
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def models(self) -> tuple[str, ...]:
        return self._models

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": self.MAX_NEW_TOKENS,
                "temperature": self.TEMPERATURE,
                "do_sample": True,
                "return_full_text": False,
                "pad_token_id": 50256,
            },
            "options": {"wait_for_model": True, "use_cache": False},
        }

    async def complete(self, prompt: str) -> str:
        payload = self._payload(prompt)
        last_error: Exception | None = None
        for model in self._models:
            try:
                response = await self._client.post(
                    f"{self.BASE_URL}/{model}", json=payload, headers=self._headers
                )
                response.raise_for_status()
                text = self._extract_text(response.json())
            except (httpx.HTTPError, ValueError, LLMProviderError) as exc:
                logger.debug("Hugging Face model %s failed: %s", model, exc)
                last_error = exc
                continue
            logger.debug("Hugging Face model %s answered", model)
            return text

        raise LLMProviderError(
            f"All Hugging Face models failed. Last error: {last_error}"
        ) from last_error

    @staticmethod
    def _extract_text(data: Any) -> str:
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise LLMProviderError("Unexpected Hugging Face response shape")
        if "error" in data:
            raise LLMProviderError(f"Hugging Face error: {data['error']}")
        text = data.get("generated_text") or data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise LLMProviderError("Hugging Face returned no generated text")
        return text

    async def aclose(self) -> None:
        await self._client.aclose()
