"""Application entrypoint."""

from __future__ import annotations

import asyncio
import importlib
import logging
from datetime import timedelta

from chatkeeper.chatbot.base import ChatProvider
from chatkeeper.chatbot.chatbot import Chatbot
from chatkeeper.chatbot.openrouter import OpenRouterProvider
from chatkeeper.chatbot.worker import worker_tiers
from chatkeeper.config import Settings, fallback_providers, load_settings
from chatkeeper.db import Database
from chatkeeper.errors import FatalError, TransportConfigError
from chatkeeper.message_cache import MessageCache
from chatkeeper.orchestrator import Orchestrator
from chatkeeper.transport.base import Transport

LOGGER = logging.getLogger(__name__)


def load_transport(factory_path: str, settings: Settings) -> Transport:
    """Resolve a ``module:callable`` factory and build the transport with ``settings``."""

    hint = "Set TRANSPORT_FACTORY to 'package.module:callable'."
    module_name, _, attr = factory_path.partition(":")
    if not module_name or not attr:
        raise TransportConfigError(
            f"TRANSPORT_FACTORY must look like 'package.module:callable', got {factory_path!r}",
            user_message=hint,
        )
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise TransportConfigError(
            f"Cannot resolve transport factory {factory_path!r}: {exc}", user_message=hint
        ) from exc
    transport = factory(settings)
    if not isinstance(transport, Transport):
        raise TransportConfigError(f"{factory_path} did not return a Transport", user_message=hint)
    return transport


def build_chatbot(settings: Settings) -> Chatbot:
    providers: list[ChatProvider] = []
    if settings.ai_worker_url:
        providers.extend(worker_tiers(settings.ai_worker_url, settings.ai_timeout_seconds))
    if settings.openrouter_api_key:
        providers.append(
            OpenRouterProvider(
                api_key=settings.openrouter_api_key,
                model=settings.openrouter_model,
                base_url=settings.openrouter_base_url,
                timeout_seconds=settings.ai_timeout_seconds,
            )
        )
    if not providers:
        LOGGER.warning("No chat providers configured; chat replies will use canned fallbacks")
    return Chatbot(
        providers=providers,
        default_provider=settings.ai_provider.lower(),
        fallback_order=fallback_providers(settings),
        timeout_seconds=settings.ai_timeout_seconds,
    )


async def run(settings: Settings) -> None:
    """Initialize app layers and run until a fatal condition."""

    orchestrator = Orchestrator(
        settings=settings,
        db=Database(settings.database_path),
        cache=MessageCache(
            settings.message_cache_path,
            retention=timedelta(hours=settings.message_retention_hours),
        ),
        chatbot=build_chatbot(settings),
        transport=load_transport(settings.transport_factory, settings),
    )
    LOGGER.info("Starting %s", settings.bot_name)
    await orchestrator.run_forever()


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s :: %(message)s",
    )
    try:
        asyncio.run(run(settings))
    except FatalError as exc:
        LOGGER.error("%s (%s)", exc.user_message or "Fatal error", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


if __name__ == "__main__":
    main()
