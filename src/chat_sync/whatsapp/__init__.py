"""WhatsApp event ingestion, reconciliation and local storage."""

from chat_sync.whatsapp.config import EngineConfig, get_data_dir, get_db_path
from chat_sync.whatsapp.connection import ConnectionManager, ConnectionSession
from chat_sync.whatsapp.content import extract_content
from chat_sync.whatsapp.events import (
    ChatsUpdate,
    ChatsUpsert,
    ConnectionUpdate,
    ContactsUpdate,
    ContactsUpsert,
    DisconnectReason,
    HistorySync,
    MessagesUpdate,
    MessagesUpsert,
    Signal,
)
from chat_sync.whatsapp.models import (
    Chat,
    ConnectionState,
    Contact,
    Content,
    Message,
    MessageStatus,
    MessageType,
)
from chat_sync.whatsapp.names import NameResolver, resolve_display_name
from chat_sync.whatsapp.notifier import ChangeNotifier
from chat_sync.whatsapp.store import ChatStore
from chat_sync.whatsapp.transport import BaseTransport

__all__ = [
    "ConnectionManager",
    "ConnectionSession",
    "ChatStore",
    "ChangeNotifier",
    "NameResolver",
    "resolve_display_name",
    "extract_content",
    "BaseTransport",
    "EngineConfig",
    "get_data_dir",
    "get_db_path",
    "Signal",
    "DisconnectReason",
    "ConnectionUpdate",
    "HistorySync",
    "ChatsUpsert",
    "ChatsUpdate",
    "ContactsUpsert",
    "ContactsUpdate",
    "MessagesUpsert",
    "MessagesUpdate",
    "Chat",
    "Contact",
    "Content",
    "Message",
    "MessageStatus",
    "MessageType",
    "ConnectionState",
]
