"""Chat-response collaborator with provider fallback."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import OrderedDict, deque
from typing import Any, Callable, Iterable

from chatkeeper.chatbot.base import ChatProvider
from chatkeeper.models import ChatReply

LOGGER = logging.getLogger(__name__)

MAX_HISTORY = 10
# Users whose history is kept; the least recently active are dropped first.
MAX_USERS = 500

_FALLBACK_RESPONSES = (
    'I understand you said: "{short}..."',
    "Thanks for your message! How can I assist you further?",
    'I heard: "{shorter}" - could you elaborate?',
    "That's interesting! Tell me more.",
    "I'm here to help! What else would you like to know?",
    "Got it! Is there anything specific you'd like me to help with?",
)


class Chatbot:
    """Routes prompts to providers, walking the fallback chain on failure.

    Every provider call is bounded by ``timeout_seconds``. When every provider
    fails a canned reply is returned; ``chat`` never raises.
    """

    def __init__(
        self,
        providers: Iterable[ChatProvider],
        default_provider: str,
        fallback_order: list[str],
        timeout_seconds: float,
        choose: Callable[[tuple[str, ...]], str] = random.choice,
        max_users: int = MAX_USERS,
    ) -> None:
        self._providers = {provider.name: provider for provider in providers}
        self._default_provider = default_provider
        self._fallback_order = fallback_order
        self._timeout_seconds = timeout_seconds
        self._choose = choose
        self._max_users = max_users
        self._history: OrderedDict[str, deque[dict[str, Any]]] = OrderedDict()

    @property
    def provider_names(self) -> list[str]:
        return list(self._providers)

    def history(self, user_id: str) -> list[dict[str, Any]]:
        return list(self._history.get(user_id, ()))

    def clear_history(self, user_id: str) -> None:
        self._history.pop(user_id, None)

    def provider_chain(self, requested: str | None = None) -> list[str]:
        chain: list[str] = []
        for name in (requested or self._default_provider, *self._fallback_order):
            if name and name in self._providers and name not in chain:
                chain.append(name)
        return chain

    async def chat(
        self,
        prompt: str,
        user_id: str,
        provider: str | None = None,
        is_group: bool = False,
        group_id: str | None = None,
    ) -> ChatReply:
        self._remember(user_id, "user", prompt)
        context = {
            "user_id": user_id,
            "is_group": is_group,
            "group_id": group_id,
            "history": self.history(user_id),
            "timestamp": int(time.time() * 1000),
        }

        for name in self.provider_chain(provider):
            try:
                text = await asyncio.wait_for(
                    self._providers[name].respond(prompt, context),
                    timeout=self._timeout_seconds,
                )
            except asyncio.TimeoutError:
                LOGGER.warning("Provider %s timed out after %.0fs", name, self._timeout_seconds)
                continue
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Provider %s failed: %s", name, exc)
                continue
            self._remember(user_id, "assistant", text)
            return ChatReply(success=True, text=text, provider=name)

        return ChatReply(success=False, text=self.fallback_response(prompt), provider="fallback")

    def fallback_response(self, prompt: str) -> str:
        template = self._choose(_FALLBACK_RESPONSES)
        return template.format(short=prompt[:50], shorter=prompt[:30])

    def _remember(self, user_id: str, role: str, content: str) -> None:
        history = self._history.get(user_id)
        if history is None:
            history = self._history[user_id] = deque(maxlen=MAX_HISTORY)
            while len(self._history) > self._max_users:
                self._history.popitem(last=False)
        else:
            self._history.move_to_end(user_id)
        history.append({"role": role, "content": content, "timestamp": int(time.time() * 1000)})
