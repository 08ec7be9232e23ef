"""OpenRouter chat-completions provider."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from chatkeeper.chatbot.base import ChatProvider
from chatkeeper.errors import ProviderError

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 2
_RETRY_BACKOFF_SECONDS = [1, 3]

_SYSTEM_PROMPT = (
    "You are a friendly chat assistant replying inside a messaging app. "
    "Keep answers short and in plain text."
)


class OpenRouterProvider(ChatProvider):
    """Provider using OpenRouter's OpenAI-compatible chat endpoint."""

    name = "openrouter"

    def __init__(self, api_key: str, model: str, base_url: str, timeout_seconds: float) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds

    async def respond(self, prompt: str, context: dict[str, Any]) -> str:
        messages: list[dict[str, str]] = [{"role": "system", "content": _SYSTEM_PROMPT}]
        for turn in context.get("history", [])[:-1]:
            messages.append({"role": turn["role"], "content": turn["content"]})
        messages.append({"role": "user", "content": prompt})

        timeout = httpx.Timeout(self._timeout_seconds)
        async with httpx.AsyncClient(base_url=self._base_url, timeout=timeout) as client:
            for attempt in range(_MAX_RETRIES + 1):
                response = await client.post(
                    "/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"model": self._model, "messages": messages},
                )
                if response.status_code == 429 and attempt < _MAX_RETRIES:
                    wait = _RETRY_BACKOFF_SECONDS[attempt]
                    _LOGGER.warning(
                        "OpenRouter rate limited (429), retrying in %ds (attempt %d/%d)",
                        wait,
                        attempt + 1,
                        _MAX_RETRIES,
                    )
                    await asyncio.sleep(wait)
                    continue
                response.raise_for_status()
                break
            data = response.json()

        try:
            content = data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderError(f"Malformed OpenRouter response: {exc}") from exc
        if not content.strip():
            raise ProviderError("OpenRouter returned an empty reply")
        return content
