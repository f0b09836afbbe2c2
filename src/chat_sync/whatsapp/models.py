"""Data models for the WhatsApp module."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple


class MessageStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    ERROR = "error"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    CONTACT = "contact"
    LOCATION = "location"
    REACTION = "reaction"
    UNKNOWN = "unknown"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_PAIRING = "awaiting-pairing"
    CONNECTED = "connected"


class Content(NamedTuple):
    """A flattened (body, type) pair extracted from a message envelope."""

    body: str
    type: MessageType

    @property
    def is_empty(self) -> bool:
        return not self.body

    def preview(self) -> str:
        """Conversation-list preview: the body, or a bracketed type tag."""
        return self.body or f"[{self.type.value}]"


# Protocol noise: nothing user-visible, the caller drops the event.
NO_CONTENT = Content("", MessageType.UNKNOWN)


@dataclass
class Chat:
    """A conversation row as read back from the store."""

    jid: str
    name: str
    last_message: str = ""
    last_message_at: int = 0  # unix ms
    unread_count: int = 0
    is_group: bool = False


@dataclass
class Contact:
    """Addressbook name (synced from the phone) and self-declared push name."""

    jid: str
    name: str = ""
    notify: str = ""


@dataclass
class Message:
    """A single flattened message, scoped to one conversation."""

    id: str
    chat_jid: str
    sender_jid: str  # "me" for the owner
    sender_name: str
    body: str
    timestamp: int  # unix ms
    is_from_me: bool
    status: MessageStatus = MessageStatus.SENT
    type: MessageType = MessageType.TEXT
