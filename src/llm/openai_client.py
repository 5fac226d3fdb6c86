"""OpenAI chat completion client wrapper."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from openai import AsyncOpenAI

from config.settings import get_settings
from llm.base import BaseLLMClient

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion API."""

    def __init__(self) -> None:
        settings = get_settings()
        if not settings.extraction_api_key:
            raise ValueError("LLM API key must be configured for OpenAI client.")

        self._client = AsyncOpenAI(
            api_key=settings.extraction_api_key,
            base_url=settings.llm_endpoint or None,
        )
        self._model = settings.extraction_model

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.1,
        response_format: dict[str, Any] | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {}
        if response_format is not None:
            kwargs["response_format"] = response_format

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=list(messages),
            temperature=temperature,
            max_tokens=768,
            **kwargs,
        )
        LOGGER.debug("OpenAI chat completion id=%s", response.id)
        return response.choices[0].message.content or ""
