"""Chat-response provider interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ChatProvider(ABC):
    """Abstract HTTP-backed provider used by the chatbot."""

    name: str

    @abstractmethod
    async def respond(self, prompt: str, context: dict[str, Any]) -> str:
        """Return reply text, or raise ProviderError/httpx.HTTPError on failure."""
