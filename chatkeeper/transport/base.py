"""Transport interface consumed by the orchestrator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Sequence

from chatkeeper.models import EventHandler, EventKind

# Close code the transport reports when the session is no longer authorized.
UNAUTHORIZED_CLOSE_CODE = 401


class TransportConnection(ABC):
    """One live connection handle; a new handle is issued per connect."""

    account_id: str | None = None
    account_name: str | None = None

    @abstractmethod
    def subscribe(self, kind: EventKind, handler: EventHandler) -> None:
        """Register ``handler`` for every future event of ``kind``."""

    @abstractmethod
    async def send(self, chat_id: str, content: dict[str, Any], options: dict[str, Any] | None = None) -> Any:
        """Send a message and return the delivery result."""

    @abstractmethod
    async def fetch_group_metadata(self, group_id: str) -> dict[str, Any]:
        """Return group metadata including ``subject`` and ``participants``."""

    @abstractmethod
    async def update_group_participants(
        self, group_id: str, participant_ids: Sequence[str], action: str
    ) -> Any:
        """Apply ``add``, ``remove``, ``promote`` or ``demote`` to participants."""

    @abstractmethod
    async def reject_call(self, call_id: str, from_id: str) -> None:
        """Reject an incoming call."""

    @abstractmethod
    async def fetch_invite_code(self, group_id: str) -> str:
        """Return the group's invite code."""

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying connection."""


class Transport(ABC):
    """Factory for transport connections."""

    @abstractmethod
    async def connect(self, credentials_path: Path) -> TransportConnection:
        """Open a connection using the stored session credentials."""
