"""Abstract interface for the WhatsApp session/transport collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from chat_sync.whatsapp.events import TransportEvent

EventHandler = Callable[[TransportEvent], None]


class BaseTransport(ABC):
    """One live socket session.

    Implementations own the wire protocol, crypto and credentials. They
    deliver events to the handler passed to ``open`` (on any thread, one
    at a time) and are discarded after a close; reconnecting builds a
    fresh instance.
    """

    @abstractmethod
    def open(self, handler: EventHandler) -> None:
        """Start the session and begin delivering events to ``handler``."""
        ...

    @abstractmethod
    def close(self) -> None:
        """End the session. Must be safe to call on an already-closed session."""
        ...

    @abstractmethod
    def send_text(self, jid: str, text: str) -> str:
        """Send a text message and return the provider-assigned message ID.

        Raises on failure.
        """
        ...

    @abstractmethod
    def read_messages(self, jid: str, message_ids: list[str]) -> None:
        """Send read receipts for messages in a chat."""
        ...
