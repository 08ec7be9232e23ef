"""Commands that ship with the bot.

Plugins loaded later may override any of these by name.
"""

from __future__ import annotations

from datetime import datetime, timezone

from chatkeeper.commands.registry import CommandSource
from chatkeeper.errors import CommandError
from chatkeeper.models import CommandCategory, CommandDescriptor, CommandInvocationContext

_PARTICIPANT_ACTIONS = {
    "add": ("add", "Added", "Add members to the group"),
    "kick": ("remove", "Removed", "Remove members from the group"),
    "promote": ("promote", "Promoted", "Make members group admins"),
    "demote": ("demote", "Demoted", "Revoke group admin rights"),
}


def _require_owner(ctx: CommandInvocationContext) -> None:
    if not ctx.orchestrator.is_owner(ctx.sender_id):
        raise CommandError("This command is restricted to the owner.")


async def _require_group_admin(ctx: CommandInvocationContext) -> None:
    if not ctx.is_group:
        raise CommandError("This command only works in groups.")
    if ctx.orchestrator.is_owner(ctx.sender_id):
        return
    if not await ctx.orchestrator.is_group_admin(ctx.chat_id, ctx.sender_id):
        raise CommandError("Only group admins can use this command.")


def _menu(ctx: CommandInvocationContext) -> str:
    return ctx.orchestrator.registry.generate_help_menu()


def _ping(ctx: CommandInvocationContext) -> str:
    return "pong"


def _stats(ctx: CommandInvocationContext) -> str:
    orchestrator = ctx.orchestrator
    cache = orchestrator.cache.get_stats()
    session = orchestrator.session
    runtime = orchestrator.stats
    return "\n".join(
        [
            f"📊 *{orchestrator.settings.bot_name.upper()} STATISTICS*",
            "",
            f"• Connection: {session.state.value}",
            f"• Uptime: {orchestrator.uptime()}",
            f"• Reconnects: {session.total_reconnects}",
            f"• Messages: {runtime.messages_processed}",
            f"• Commands: {runtime.commands_executed}",
            f"• Errors: {runtime.errors}",
            f"• Cached messages: {cache.cache_size} in {cache.unique_chats} chats",
            f"• View-once cached: {cache.view_once_messages}",
            f"• Deleted recovered: {cache.deleted_recovered}",
            f"• Registered commands: {len(orchestrator.registry)}",
        ]
    )


def _reload(ctx: CommandInvocationContext) -> str:
    _require_owner(ctx)
    count = ctx.orchestrator.registry.reload()
    return f"♻️ Reloaded {count} commands."


def _chatbot(ctx: CommandInvocationContext) -> str:
    """Toggle auto-response: ``chatbot on|off`` for yourself, ``chatbot group on|off`` for the group."""

    args = [a.lower() for a in ctx.args]
    db = ctx.orchestrator.db
    if args and args[0] == "group":
        if not ctx.is_group:
            raise CommandError("Group toggle only works in groups.")
        if len(args) < 2 or args[1] not in ("on", "off"):
            return f"Usage: {ctx.prefix}chatbot group on|off"
        db.set_group_chatbot(ctx.chat_id, args[1] == "on")
        return f"🤖 Chatbot {'enabled' if args[1] == 'on' else 'disabled'} for this group."
    if args and args[0] == "provider":
        if len(args) < 2:
            return f"Usage: {ctx.prefix}chatbot provider <name>|default"
        name = None if args[1] == "default" else args[1]
        if name is not None and name not in ctx.orchestrator.chatbot.provider_names:
            raise CommandError(f"Unknown provider '{args[1]}'.")
        db.set_user_provider(ctx.sender_id, name)
        return f"🤖 Provider set to {name or 'default'}."
    if not args or args[0] not in ("on", "off"):
        enabled = db.get_user_settings(ctx.sender_id)["chatbot_enabled"]
        return f"🤖 Chatbot is {'on' if enabled else 'off'} for you. Usage: {ctx.prefix}chatbot on|off"
    db.set_user_chatbot(ctx.sender_id, args[0] == "on")
    return f"🤖 Chatbot {'enabled' if args[0] == 'on' else 'disabled'} for you."


def _recover(ctx: CommandInvocationContext) -> str:
    _require_owner(ctx)
    if not ctx.args:
        return f"Usage: {ctx.prefix}recover <message-id>"
    cached = ctx.orchestrator.cache.get_message(ctx.args[0], ctx.chat_id if len(ctx.args) < 2 else ctx.args[1])
    if cached is None:
        return "Message not found in cache."
    sent_at = datetime.fromtimestamp(cached.timestamp / 1000, tz=timezone.utc).isoformat()
    return "\n".join(
        [
            f"From: {cached.sender_name} ({cached.sender_id})",
            f"Sent: {sent_at}",
            f"Type: {cached.kind.value}",
            f"Text: {cached.text or '(none)'}",
        ]
    )


async def _link(ctx: CommandInvocationContext) -> str:
    await _require_group_admin(ctx)
    code = await ctx.orchestrator.fetch_invite_code(ctx.chat_id)
    return f"🔗 Invite code: {code}"


def _participant_command(name: str) -> CommandDescriptor:
    action, verb, description = _PARTICIPANT_ACTIONS[name]

    async def execute(ctx: CommandInvocationContext) -> str:
        await _require_group_admin(ctx)
        targets = [arg for arg in ctx.args if arg]
        if not targets:
            raise CommandError(f"Usage: {ctx.prefix}{name} <participant-id> [...]")
        await ctx.orchestrator.update_group_participants(ctx.chat_id, targets, action)
        return f"✅ {verb} {len(targets)} participant(s)."

    return CommandDescriptor(
        name=name,
        execute=execute,
        description=description,
        usage=f"{name} <participant-id> [...]",
        category=CommandCategory.GROUP,
    )


def builtin_commands() -> list[CommandDescriptor]:
    commands = [
        CommandDescriptor("menu", _menu, "Show this menu", "menu", CommandCategory.GENERAL),
        CommandDescriptor("ping", _ping, "Check the bot is alive", "ping", CommandCategory.GENERAL),
        CommandDescriptor("stats", _stats, "Bot and cache statistics", "stats", CommandCategory.GENERAL),
        CommandDescriptor("chatbot", _chatbot, "Toggle AI auto-replies", "chatbot on|off", CommandCategory.GENERAL),
        CommandDescriptor("link", _link, "Get the group invite link", "link", CommandCategory.ADMIN),
        CommandDescriptor("recover", _recover, "Show a cached message", "recover <id>", CommandCategory.OWNER),
        CommandDescriptor("reload", _reload, "Reload command plugins", "reload", CommandCategory.OWNER),
    ]
    commands.extend(_participant_command(name) for name in _PARTICIPANT_ACTIONS)
    return commands


def builtin_source() -> CommandSource:
    return CommandSource(name="builtin", load=builtin_commands)
