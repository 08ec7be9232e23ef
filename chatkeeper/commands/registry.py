"""Registry of invocable commands and prefixed-input dispatch."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable

from chatkeeper.models import (
    CATEGORY_TITLES,
    CommandDescriptor,
    CommandInvocationContext,
    CommandResult,
    InboundMessage,
)

if TYPE_CHECKING:
    from chatkeeper.orchestrator import Orchestrator

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandSource:
    """A named, pre-resolved producer of command descriptors."""

    name: str
    load: Callable[[], Iterable[CommandDescriptor]]


def parse_command(text: str) -> tuple[str, list[str]]:
    """Split post-prefix text into (command, args); the command is case-folded."""

    parts = text.split()
    if not parts:
        return "", []
    return parts[0].casefold(), parts[1:]


class CommandRegistry:
    """Name to CommandDescriptor table built from command sources.

    When two sources define the same name the most recently loaded one wins.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        prefix: str,
        sources: Callable[[], list[CommandSource]],
        bot_name: str = "Chatkeeper",
    ) -> None:
        self._orchestrator = orchestrator
        self._prefix = prefix
        self._sources = sources
        self._bot_name = bot_name
        self._commands: dict[str, CommandDescriptor] = {}

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: str) -> bool:
        return name.casefold() in self._commands

    def get(self, name: str) -> CommandDescriptor | None:
        return self._commands.get(name.casefold())

    def commands(self) -> list[CommandDescriptor]:
        return list(self._commands.values())

    def load(self) -> int:
        """Load every source; a failing source is logged and skipped."""

        for source in self._sources():
            try:
                descriptors = list(source.load())
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Failed to load command source %s: %s", source.name, exc)
                continue
            for descriptor in descriptors:
                key = descriptor.name.casefold()
                if key in self._commands:
                    LOGGER.debug("Command %s overridden by %s", key, source.name)
                self._commands[key] = descriptor
            LOGGER.debug("Loaded %d commands from %s", len(descriptors), source.name)
        LOGGER.info("Loaded %d commands", len(self._commands))
        return len(self._commands)

    def reload(self) -> int:
        """Clear the table and rebuild it from freshly resolved sources."""

        LOGGER.info("Reloading commands")
        self._commands.clear()
        return self.load()

    async def handle_command(self, text: str, message: InboundMessage) -> CommandResult:
        """Run the command named by the first token of ``text``; never raises."""

        name, args = parse_command(text)
        command = self._commands.get(name)
        if command is None:
            return CommandResult(
                success=False,
                message=f"❌ Unknown command. Type {self._prefix}menu for available commands.",
            )

        context = CommandInvocationContext(
            message=message,
            chat_id=message.chat_id,
            sender_id=message.resolved_sender,
            args=args,
            is_group=message.is_group,
            command=name,
            prefix=self._prefix,
            orchestrator=self._orchestrator,
        )
        LOGGER.info("Command dispatch: command=%r args=%r", name, args)
        try:
            result = command.execute(context)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("Command %s failed", name)
            return CommandResult(success=False, message=f"❌ Error: {exc}", command=name)

        return CommandResult(success=True, message=result or "✅ Command executed.", command=name)

    def generate_help_menu(self) -> str:
        lines = [f"📋 *{self._bot_name.upper()} COMMANDS*", ""]
        for category, title in CATEGORY_TITLES.items():
            entries = sorted(
                (cmd for cmd in self._commands.values() if cmd.category is category),
                key=lambda cmd: cmd.name,
            )
            if not entries:
                continue
            lines.append(f"*{title}:*")
            for cmd in entries:
                line = f"• {self._prefix}{cmd.name}"
                if cmd.description and cmd.description != "No description":
                    line += f" - {cmd.description}"
                lines.append(line)
            lines.append("")
        lines.append(f"📊 Total: {len(self._commands)} commands")
        lines.append(f"🔧 Prefix: {self._prefix}")
        return "\n".join(lines)
