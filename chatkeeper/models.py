"""Core domain models used across layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, Union

if TYPE_CHECKING:
    from chatkeeper.orchestrator import Orchestrator
    from chatkeeper.transport.base import TransportConnection


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    TERMINAL_INVALID = "terminal-invalid"


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    UNKNOWN = "unknown"


class CommandCategory(str, Enum):
    GENERAL = "general"
    GROUP = "group-management"
    ADMIN = "administrative"
    OWNER = "owner-only"


# Display order and titles used by the help menu.
CATEGORY_TITLES: dict[CommandCategory, str] = {
    CommandCategory.GENERAL: "👤 General Commands",
    CommandCategory.GROUP: "👥 Group Commands",
    CommandCategory.ADMIN: "⭐ Admin Commands",
    CommandCategory.OWNER: "👑 Owner Commands",
}


class EventKind(str, Enum):
    CONNECTION_UPDATE = "connection-status-changed"
    MESSAGES_UPSERT = "message-batch-received"
    GROUPS_UPDATE = "group-metadata-changed"
    GROUP_PARTICIPANTS_UPDATE = "group-membership-changed"
    REACTION = "reaction-received"
    CALL = "call-received"
    PRESENCE = "presence-changed"
    CHATS_UPDATE = "chat-metadata-changed"


@dataclass(slots=True)
class Session:
    """Process-wide connection state, mutated only by the ConnectionManager."""

    max_reconnect_attempts: int
    state: ConnectionState = ConnectionState.DISCONNECTED
    reconnect_attempts: int = 0
    total_reconnects: int = 0
    connection: TransportConnection | None = None
    account_id: str | None = None
    account_name: str | None = None


@dataclass(slots=True)
class InboundMessage:
    """Message record as delivered by the transport.

    ``content`` maps content-type keys (``conversation``, ``extended_text``,
    ``image``, ``video``, ``audio``, ``document``, ``sticker``, ``view_once``,
    ``protocol``) to their bodies. A record without content carries no payload.
    """

    id: str
    chat_id: str
    sender_id: str | None = None
    from_me: bool = False
    push_name: str | None = None
    is_group: bool = False
    timestamp: int | None = None
    content: dict[str, Any] | None = None

    @property
    def resolved_sender(self) -> str:
        return self.sender_id or self.chat_id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InboundMessage:
        return cls(
            id=str(data["id"]),
            chat_id=str(data["chat_id"]),
            sender_id=data.get("sender_id"),
            from_me=bool(data.get("from_me", False)),
            push_name=data.get("push_name"),
            is_group=bool(data.get("is_group", False)),
            timestamp=data.get("timestamp"),
            content=data.get("content"),
        )


@dataclass(slots=True)
class CachedMessage:
    """One observed message as stored by the message cache."""

    id: str
    chat_id: str
    sender_id: str
    sender_name: str
    timestamp: int
    kind: MessageKind
    text: str
    is_view_once: bool
    payload: dict[str, Any] | None = None


@dataclass(slots=True)
class CacheStats:
    total_messages: int = 0
    deleted_recovered: int = 0
    last_cleanup: str | None = None
    cache_size: int = 0
    unique_chats: int = 0
    view_once_messages: int = 0


@dataclass(slots=True)
class RuntimeStats:
    messages_processed: int = 0
    commands_executed: int = 0
    errors: int = 0


# --- Transport events -------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ConnectionUpdate:
    kind: ClassVar[EventKind] = EventKind.CONNECTION_UPDATE

    status: str
    close_code: int | None = None
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class MessageBatch:
    kind: ClassVar[EventKind] = EventKind.MESSAGES_UPSERT

    messages: tuple[InboundMessage, ...]
    batch_kind: str = "notify"


@dataclass(frozen=True, slots=True)
class GroupMetadataChanged:
    kind: ClassVar[EventKind] = EventKind.GROUPS_UPDATE

    updates: tuple[dict[str, Any], ...]


@dataclass(frozen=True, slots=True)
class GroupMembershipChanged:
    kind: ClassVar[EventKind] = EventKind.GROUP_PARTICIPANTS_UPDATE

    group_id: str
    participant_ids: tuple[str, ...]
    action: str


@dataclass(frozen=True, slots=True)
class ReactionReceived:
    kind: ClassVar[EventKind] = EventKind.REACTION

    reactions: tuple[dict[str, Any], ...]


@dataclass(frozen=True, slots=True)
class CallReceived:
    kind: ClassVar[EventKind] = EventKind.CALL

    calls: tuple[dict[str, Any], ...]


@dataclass(frozen=True, slots=True)
class PresenceChanged:
    kind: ClassVar[EventKind] = EventKind.PRESENCE

    chat_id: str
    presences: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ChatMetadataChanged:
    kind: ClassVar[EventKind] = EventKind.CHATS_UPDATE

    updates: tuple[dict[str, Any], ...]


TransportEvent = Union[
    ConnectionUpdate,
    MessageBatch,
    GroupMetadataChanged,
    GroupMembershipChanged,
    ReactionReceived,
    CallReceived,
    PresenceChanged,
    ChatMetadataChanged,
]

EventHandler = Callable[[TransportEvent], Awaitable[None]]


# --- Commands ---------------------------------------------------------------


@dataclass(slots=True)
class CommandInvocationContext:
    """Per-invocation values handed to a command's entry point."""

    message: InboundMessage
    chat_id: str
    sender_id: str
    args: list[str]
    is_group: bool
    command: str
    prefix: str
    orchestrator: Orchestrator


# Entry points may be plain functions or coroutines returning the reply text.
CommandExecute = Callable[[CommandInvocationContext], Any]


@dataclass(frozen=True, slots=True)
class CommandDescriptor:
    name: str
    execute: CommandExecute
    description: str = "No description"
    usage: str = ""
    category: CommandCategory = CommandCategory.GENERAL


@dataclass(frozen=True, slots=True)
class CommandResult:
    success: bool
    message: str
    command: str | None = None


@dataclass(frozen=True, slots=True)
class ChatReply:
    """Result from the chat-response collaborator."""

    success: bool
    text: str
    provider: str
