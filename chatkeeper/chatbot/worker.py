"""Providers backed by a prompt-style inference worker endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from chatkeeper.chatbot.base import ChatProvider
from chatkeeper.errors import ProviderError

_LOGGER = logging.getLogger(__name__)


class WorkerProvider(ChatProvider):
    """POSTs ``{prompt, model, context}`` and reads ``data.response`` from the reply."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        model: str,
        timeout_seconds: float,
        enhanced: bool = False,
    ) -> None:
        self.name = name
        self._endpoint = endpoint
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._enhanced = enhanced

    async def respond(self, prompt: str, context: dict[str, Any]) -> str:
        payload: dict[str, Any] = {"model": self._model}
        if self._enhanced:
            payload["prompt"] = (
                f"Context: {json.dumps(context, default=str)}\n\nUser: {prompt}\n\nAssistant:"
            )
            payload["temperature"] = 0.7
            payload["max_tokens"] = 500
        else:
            payload["prompt"] = prompt
            payload["context"] = context

        timeout = httpx.Timeout(self._timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(self._endpoint, json=payload)
            response.raise_for_status()
            data = response.json()

        inner = data.get("data") if isinstance(data, dict) else None
        text = inner.get("response") if isinstance(inner, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise ProviderError(f"{self.name} returned no response text")
        _LOGGER.info("Worker response from %s: %r", self.name, text[:200])
        return f"✨ {text}" if self._enhanced else text


def worker_tiers(endpoint: str, timeout_seconds: float) -> list[WorkerProvider]:
    """Return the fast, base and ultra tiers served by one worker endpoint."""

    return [
        WorkerProvider("fast", endpoint, "@cf/meta/llama-3.1-8b-instruct", min(timeout_seconds, 10.0)),
        WorkerProvider("base", endpoint, "@hf/thebloke/llama-2-13b-chat-awq", timeout_seconds),
        WorkerProvider(
            "ultra", endpoint, "@cf/meta/llama-3.1-8b-instruct", max(timeout_seconds, 20.0), enhanced=True
        ),
    ]
