"""Transport event routing."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from chatkeeper.content import extract_text, revoked_message_id
from chatkeeper.models import (
    CallReceived,
    ChatMetadataChanged,
    EventKind,
    GroupMembershipChanged,
    GroupMetadataChanged,
    InboundMessage,
    MessageBatch,
    PresenceChanged,
    ReactionReceived,
    TransportEvent,
)

if TYPE_CHECKING:
    from chatkeeper.orchestrator import Orchestrator
    from chatkeeper.transport.base import TransportConnection

LOGGER = logging.getLogger(__name__)

LIVE_BATCH_KIND = "notify"


class EventRouter:
    """Demultiplexes transport events to handlers, one failure boundary per event.

    Each event runs in its own task. Messages inside a batch are handled in
    delivery order and a failure in one never stops its siblings.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator
        self._attached: TransportConnection | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._handlers: dict[EventKind, Callable[[Any], Awaitable[None]]] = {
            EventKind.MESSAGES_UPSERT: self._handle_messages_upsert,
            EventKind.GROUPS_UPDATE: self._handle_groups_update,
            EventKind.GROUP_PARTICIPANTS_UPDATE: self._handle_group_participants_update,
            EventKind.REACTION: self._handle_reactions,
            EventKind.CALL: self._handle_calls,
            EventKind.PRESENCE: self._handle_presence,
            EventKind.CHATS_UPDATE: self._handle_chats_update,
        }

    def attach(self, connection: TransportConnection) -> None:
        """Subscribe to every routed event kind once per connection handle."""

        if connection is self._attached:
            return
        for kind in self._handlers:
            connection.subscribe(kind, self.dispatch)
        self._attached = connection
        LOGGER.info("Event handlers registered")

    async def dispatch(self, event: TransportEvent) -> None:
        """Accept an event and process it in its own task."""

        task = asyncio.create_task(self.process_event(event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for in-flight event tasks."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def process_event(self, event: TransportEvent) -> None:
        handler = self._handlers.get(getattr(event, "kind", None))  # type: ignore[arg-type]
        if handler is None:
            return
        try:
            await handler(event)
        except asyncio.CancelledError:
            raise
        except Exception:
            LOGGER.exception("Handler for %s failed", event.kind.value)
            self._orchestrator.stats.errors += 1

    async def _handle_messages_upsert(self, event: MessageBatch) -> None:
        if event.batch_kind != LIVE_BATCH_KIND:
            return
        for message in event.messages:
            try:
                await self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Failed to process message %s", message.id)
                self._orchestrator.stats.errors += 1

    async def handle_message(self, message: InboundMessage) -> None:
        """Cache one live message, then route it to a command or the chatbot."""

        orchestrator = self._orchestrator
        orchestrator.cache.add_message(message)
        orchestrator.stats.messages_processed += 1

        revoked_id = revoked_message_id(message.content)
        if revoked_id is not None:
            await self._recover_revoked(message, revoked_id)
            return

        text = extract_text(message.content)
        prefix = orchestrator.settings.command_prefix
        if text and text.startswith(prefix):
            LOGGER.info("Command from %s: %r", message.resolved_sender, text[:80])
            result = await orchestrator.registry.handle_command(text[len(prefix):], message)
            if result.success:
                orchestrator.stats.commands_executed += 1
            if result.message:
                await orchestrator.send_text(message.chat_id, result.message, quoted=message)
            return

        if message.from_me or not text.strip():
            return
        if not self.chatbot_enabled(message):
            return

        user_settings = orchestrator.db.get_user_settings(message.resolved_sender)
        reply = await orchestrator.chatbot.chat(
            text,
            message.resolved_sender,
            provider=user_settings.get("ai_provider"),
            is_group=message.is_group,
            group_id=message.chat_id if message.is_group else None,
        )
        LOGGER.info("Chat reply via %s (success=%s)", reply.provider, reply.success)
        footer = orchestrator.settings.chat_footer
        body = f"{reply.text}\n\n{footer}" if footer else reply.text
        await orchestrator.send_text(message.chat_id, body, quoted=message)

    def chatbot_enabled(self, message: InboundMessage) -> bool:
        """Group and user toggles must both allow auto-response."""

        db = self._orchestrator.db
        user_enabled = db.get_user_settings(message.resolved_sender)["chatbot_enabled"]
        if not message.is_group:
            return user_enabled
        return db.get_group_settings(message.chat_id)["chatbot_enabled"] and user_enabled

    async def _recover_revoked(self, message: InboundMessage, revoked_id: str) -> None:
        orchestrator = self._orchestrator
        cached = orchestrator.cache.recover_message(revoked_id, message.chat_id)
        if cached is None:
            LOGGER.info("Revoked message %s was not cached", revoked_id)
            return
        LOGGER.info("Recovered revoked message %s from %s", revoked_id, cached.sender_name)
        if not orchestrator.settings.anti_delete or not orchestrator.settings.owner_id:
            return
        if orchestrator.is_self(cached.sender_id):
            return
        lines = [
            "🗑️ *Deleted message recovered*",
            f"From: {cached.sender_name} ({cached.sender_id})",
            f"Chat: {cached.chat_id}",
            f"Type: {cached.kind.value}",
        ]
        if cached.text:
            lines.append(f"Text: {cached.text}")
        await orchestrator.send_text(orchestrator.settings.owner_id, "\n".join(lines))

    async def _handle_groups_update(self, event: GroupMetadataChanged) -> None:
        for update in event.updates:
            group_id = update.get("id")
            if not group_id:
                continue
            try:
                await self._orchestrator.refresh_group_metadata(group_id)
                LOGGER.info("Group updated: %s", update.get("subject") or group_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.error("Failed to update group cache for %s: %s", group_id, exc)

    async def _handle_group_participants_update(self, event: GroupMembershipChanged) -> None:
        await self._orchestrator.refresh_group_metadata(event.group_id)
        LOGGER.info(
            "Group %s: %d participants in %s", event.action, len(event.participant_ids), event.group_id
        )

    async def _handle_reactions(self, event: ReactionReceived) -> None:
        for reaction in event.reactions:
            LOGGER.info("Reaction %s from %s", reaction.get("text") or "removed", reaction.get("sender_id"))

    async def _handle_calls(self, event: CallReceived) -> None:
        for call in event.calls:
            caller = str(call.get("from") or "unknown")
            if not self._orchestrator.settings.auto_reject_calls:
                LOGGER.info("Incoming call from %s", caller)
                continue
            try:
                await self._orchestrator.reject_call(str(call.get("id")), caller)
                LOGGER.info("Auto-rejected call from %s", caller)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.error("Failed to reject call from %s: %s", caller, exc)

    async def _handle_presence(self, event: PresenceChanged) -> None:
        LOGGER.debug("Presence update in %s: %s", event.chat_id, event.presences)

    async def _handle_chats_update(self, event: ChatMetadataChanged) -> None:
        for update in event.updates:
            LOGGER.debug("Chat updated: %s", update.get("id"))
