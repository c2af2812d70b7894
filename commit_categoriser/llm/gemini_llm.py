from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from google import genai
from google.genai import types

from .provider import LLMProviderConfigurationError, LLMProviderError


class GeminiLLM:
    """Async wrapper around the google-genai SDK.

    A pre-built ``client`` can be injected; tests pass an object exposing
    ``aio.models.generate_content``.
    """

    name = "gemini"
    MODEL = "gemini-1.5-flash"
    TEMPERATURE = 0.1
    MAX_OUTPUT_TOKENS = 2048

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        client: genai.Client | None = None,
        dotenv_path: str | Path | None = None,
        timeout: float = 60.0,
    ) -> None:
        if dotenv_path is not None:
            load_dotenv(dotenv_path=Path(dotenv_path))
        else:
            load_dotenv()

        if client is None:
            api_key = api_key or os.environ.get("GEMINI_API_KEY")
            if not api_key:
                raise LLMProviderConfigurationError(
                    "GEMINI_API_KEY environment variable is required but not set. "
                    "Please set it in your .env file or environment."
                )
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout * 1000)),
            )
        self._client = client
        self._model = model or os.environ.get("GEMINI_MODEL") or self.MODEL

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, prompt: str) -> str:
        config = types.GenerateContentConfig(
            temperature=self.TEMPERATURE,
            max_output_tokens=self.MAX_OUTPUT_TOKENS,
        )
        response = await self._client.aio.models.generate_content(
            model=self._model,
            contents=prompt,
            config=config,
        )
        text = getattr(response, "text", None)
        if not isinstance(text, str) or not text.strip():
            raise LLMProviderError("Gemini returned an empty response")
        return text

    async def aclose(self) -> None:
        closer = getattr(self._client.aio, "aclose", None)
        if closer is not None:
            await closer()
