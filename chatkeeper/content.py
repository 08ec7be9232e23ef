"""Helpers that classify message content bodies."""

from __future__ import annotations

from typing import Any

from chatkeeper.models import MessageKind

# Checked in order; the first key present decides the kind.
_MEDIA_KINDS: tuple[tuple[str, MessageKind], ...] = (
    ("image", MessageKind.IMAGE),
    ("video", MessageKind.VIDEO),
    ("audio", MessageKind.AUDIO),
    ("document", MessageKind.DOCUMENT),
    ("sticker", MessageKind.STICKER),
)
_CAPTIONED = ("image", "video", "document")


def detect_kind(content: dict[str, Any] | None) -> MessageKind:
    if not content:
        return MessageKind.UNKNOWN
    for key, kind in _MEDIA_KINDS:
        if content.get(key):
            return kind
    if content.get("conversation") or content.get("extended_text"):
        return MessageKind.TEXT
    return MessageKind.UNKNOWN


def extract_text(content: dict[str, Any] | None) -> str:
    """Return the plain text of a message body.

    Priority: conversation text, then the caption of image, video or document
    media, then the extended (quoted) text body. Empty string when none apply.
    """
    if not content:
        return ""
    conversation = content.get("conversation")
    if isinstance(conversation, str) and conversation:
        return conversation
    for key in _CAPTIONED:
        media = content.get(key)
        if isinstance(media, dict):
            caption = media.get("caption")
            if isinstance(caption, str) and caption:
                return caption
    extended = content.get("extended_text")
    if isinstance(extended, dict):
        text = extended.get("text")
        if isinstance(text, str) and text:
            return text
    return ""


def is_view_once(content: dict[str, Any] | None) -> bool:
    if not content:
        return False
    if content.get("view_once"):
        return True
    for key in ("image", "video", "audio"):
        media = content.get(key)
        if isinstance(media, dict) and media.get("view_once"):
            return True
    return False


def revoked_message_id(content: dict[str, Any] | None) -> str | None:
    """Return the target id when the body is a sender revocation notice."""

    if not content:
        return None
    protocol = content.get("protocol")
    if not isinstance(protocol, dict) or protocol.get("type") != "revoke":
        return None
    target = protocol.get("id")
    return str(target) if target else None
