"""Session orchestrator wiring the lifecycle manager, router, cache and commands."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Any, Callable, Sequence

from chatkeeper.chatbot.chatbot import Chatbot
from chatkeeper.commands.builtin import builtin_source
from chatkeeper.commands.loader import discover_sources
from chatkeeper.commands.registry import CommandRegistry, CommandSource
from chatkeeper.config import Settings
from chatkeeper.db import Database
from chatkeeper.errors import NotConnectedError
from chatkeeper.lifecycle import ConnectionManager
from chatkeeper.message_cache import MessageCache
from chatkeeper.models import ConnectionState, InboundMessage, RuntimeStats, Session
from chatkeeper.router import EventRouter
from chatkeeper.scheduler import PeriodicTask
from chatkeeper.transport.base import Transport, TransportConnection

LOGGER = logging.getLogger(__name__)

_ADMIN_ROLES = ("admin", "superadmin")


class Orchestrator:
    """Owns every component and is the only path for side-effecting transport calls.

    Components receive this object and use it to send messages or issue admin
    operations; they never reach into each other's internals.
    """

    def __init__(
        self,
        settings: Settings,
        db: Database,
        cache: MessageCache,
        chatbot: Chatbot,
        transport: Transport,
        command_sources: Callable[[], list[CommandSource]] | None = None,
    ) -> None:
        self.settings = settings
        self.db = db
        self.cache = cache
        self.chatbot = chatbot
        self.stats = RuntimeStats()
        self._started_at = time.monotonic()
        self.registry = CommandRegistry(
            self,
            prefix=settings.command_prefix,
            sources=command_sources or self._default_sources,
            bot_name=settings.bot_name,
        )
        self.router = EventRouter(self)
        self.connection = ConnectionManager(
            self,
            transport,
            credentials_path=settings.credentials_path,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            base_delay_seconds=settings.reconnect_base_delay_seconds,
            max_delay_seconds=settings.reconnect_max_delay_seconds,
            announce_delay_seconds=settings.startup_announce_delay_seconds,
        )
        self._periodic = [
            PeriodicTask("cache-sweep", cache.cleanup_old_messages, settings.cache_cleanup_interval_seconds),
            PeriodicTask("stats-flush", cache.flush_stats, settings.stats_flush_interval_seconds),
        ]
        self._periodic_tasks: list[asyncio.Task[None]] = []

    @property
    def session(self) -> Session:
        return self.connection.session

    def _default_sources(self) -> list[CommandSource]:
        return [builtin_source(), *discover_sources(self.settings.commands_dir, self.settings.command_prefix)]

    async def start(self) -> None:
        """Initialize stores, load commands, start timers and open the connection."""

        self.db.initialize()
        self.cache.initialize()
        self.registry.load()
        self._periodic_tasks = [
            asyncio.create_task(job.run_forever(), name=job.name) for job in self._periodic
        ]
        await self.connection.connect()

    async def run_forever(self) -> None:
        """Start and block until a fatal condition, which is re-raised."""

        try:
            await self.start()
            await self.connection.wait_until_fatal()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        LOGGER.warning("Shutting down %s", self.settings.bot_name)
        for job in self._periodic:
            job.stop()
        for task in self._periodic_tasks:
            task.cancel()
        await asyncio.gather(*self._periodic_tasks, return_exceptions=True)
        self._periodic_tasks = []
        await self.connection.close()
        await self.router.drain()
        self.cache.flush_stats()
        LOGGER.info("Shutdown complete")

    def on_connected(self, connection: TransportConnection) -> None:
        self.router.attach(connection)
        LOGGER.info(
            "%s is online (prefix %s, %d commands)",
            self.settings.bot_name,
            self.settings.command_prefix,
            len(self.registry),
        )

    def uptime(self) -> str:
        elapsed = int(time.monotonic() - self._started_at)
        hours, remainder = divmod(elapsed, 3600)
        return f"{hours}h {remainder // 60}m"

    # --- identity ---------------------------------------------------------

    def is_owner(self, user_id: str) -> bool:
        sender = _digits(user_id)
        if not sender:
            return False
        return sender in (_digits(self.settings.owner_id), _digits(self.session.account_id))

    def is_self(self, user_id: str) -> bool:
        own = _digits(self.session.account_id)
        return bool(own) and _digits(user_id) == own

    # --- transport side effects ------------------------------------------

    def _require_connection(self) -> TransportConnection:
        connection = self.session.connection
        if connection is None or self.session.state is not ConnectionState.CONNECTED:
            raise NotConnectedError("Transport is not connected")
        return connection

    async def send_text(self, chat_id: str, text: str, quoted: InboundMessage | None = None) -> Any:
        connection = self._require_connection()
        footer = self.settings.message_footer
        if footer and footer not in text:
            text = f"{text}\n\n{footer}"
        options = {"quoted": quoted.to_dict()} if quoted is not None else None
        result = await connection.send(chat_id, {"text": text}, options)
        LOGGER.debug("Sent message to %s", chat_id)
        return result

    async def announce_startup(self) -> None:
        if not self.settings.owner_id:
            LOGGER.info("No owner id configured; skipping startup announcement")
            return
        stats = self.cache.get_stats()
        session = self.session
        text = "\n".join(
            [
                f"🚀 *{self.settings.bot_name.upper()} STARTUP COMPLETE*",
                "",
                f"📱 Bot account: {_digits(session.account_id) or 'unknown'}",
                f"👤 Bot name: {session.account_name or 'Unknown'}",
                f"👑 Owner: {self.settings.owner_name}",
                f"⚡ Prefix: {self.settings.command_prefix}",
                f"⌨️ Commands: {len(self.registry)}",
                f"💾 Cache: {stats.cache_size} messages",
                "",
                "✅ Status: Online and ready!",
            ]
        )
        await self.send_text(self.settings.owner_id, text)
        LOGGER.info("Startup notification sent to owner")

    async def fetch_group_metadata(self, group_id: str) -> dict[str, Any]:
        connection = self._require_connection()
        return await asyncio.wait_for(
            connection.fetch_group_metadata(group_id),
            timeout=self.settings.metadata_timeout_seconds,
        )

    async def refresh_group_metadata(self, group_id: str) -> dict[str, Any]:
        metadata = await self.fetch_group_metadata(group_id)
        self.db.upsert_group(group_id, name=metadata.get("subject"), metadata=metadata)
        return metadata

    async def is_group_admin(self, group_id: str, user_id: str) -> bool:
        try:
            metadata = await self.fetch_group_metadata(group_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.warning("Admin check for %s failed: %s", group_id, exc)
            cached = self.db.get_group(group_id)
            if cached is None:
                return False
            metadata = cached["metadata"]
        wanted = _digits(user_id)
        for participant in metadata.get("participants", []):
            if _digits(participant.get("id")) == wanted:
                return participant.get("admin") in _ADMIN_ROLES
        return False

    async def update_group_participants(self, group_id: str, participant_ids: Sequence[str], action: str) -> Any:
        connection = self._require_connection()
        return await connection.update_group_participants(group_id, list(participant_ids), action)

    async def reject_call(self, call_id: str, from_id: str) -> None:
        connection = self._require_connection()
        await connection.reject_call(call_id, from_id)

    async def fetch_invite_code(self, group_id: str) -> str:
        connection = self._require_connection()
        return await asyncio.wait_for(
            connection.fetch_invite_code(group_id),
            timeout=self.settings.metadata_timeout_seconds,
        )


def _digits(identifier: str | None) -> str:
    """Return the digits of the user part of a transport id (``123:4@host`` -> ``123``)."""

    if not identifier:
        return ""
    user = identifier.split("@")[0].split(":")[0]
    return re.sub(r"\D", "", user)
