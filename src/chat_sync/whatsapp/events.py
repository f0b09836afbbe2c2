"""Inbound transport events and outbound engine signals."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class DisconnectReason(IntEnum):
    """Close status codes reported by the transport."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


# ------------------------------------------------------------------
# Transport -> engine
# ------------------------------------------------------------------


@dataclass
class ConnectionUpdate:
    """A change in transport connection state.

    ``connection`` is "connecting", "open" or "close"; ``qr`` carries a
    pairing challenge; ``status_code`` is the close reason.
    """

    connection: str | None = None
    qr: str | None = None
    status_code: int | None = None

    @property
    def is_logged_out(self) -> bool:
        return self.status_code == DisconnectReason.LOGGED_OUT


@dataclass
class HistorySync:
    """Bulk snapshot of chats, contacts and messages (raw provider dicts)."""

    chats: list[dict[str, Any]] = field(default_factory=list)
    contacts: list[dict[str, Any]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ChatsUpsert:
    chats: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ChatsUpdate:
    chats: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ContactsUpsert:
    contacts: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ContactsUpdate:
    contacts: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class MessagesUpsert:
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class MessagesUpdate:
    """Status-only redeliveries: ``[{"key": {...}, "update": {"status": 3}}]``."""

    updates: list[dict[str, Any]] = field(default_factory=list)


TransportEvent = (
    ConnectionUpdate
    | HistorySync
    | ChatsUpsert
    | ChatsUpdate
    | ContactsUpsert
    | ContactsUpdate
    | MessagesUpsert
    | MessagesUpdate
)


# ------------------------------------------------------------------
# Engine -> observers
# ------------------------------------------------------------------


class Signal(str, Enum):
    CONNECTION_STATE = "connection-state"  # payload: ConnectionState
    PAIRING_CHALLENGE = "pairing-challenge"  # payload: str (QR data)
    READY = "ready"  # payload: None
    MESSAGE = "message"  # payload: Message
    CHATS_CHANGED = "chats-changed"  # payload: None (debounced)


Listener = Callable[[Any], None]


class SignalBus:
    """Synchronous observer registry for a fixed set of signals."""

    def __init__(self) -> None:
        self._listeners: dict[Signal, list[Listener]] = defaultdict(list)

    def on(self, signal: Signal, listener: Listener) -> None:
        self._listeners[Signal(signal)].append(listener)

    def off(self, signal: Signal, listener: Listener) -> None:
        listeners = self._listeners[Signal(signal)]
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, signal: Signal, payload: Any = None) -> None:
        for listener in list(self._listeners[signal]):
            try:
                listener(payload)
            except Exception:
                logger.exception(f"Listener for {signal.value} failed")
