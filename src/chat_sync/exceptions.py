"""Unified exception hierarchy for chat-sync."""


class ChatSyncError(Exception):
    """Base exception for all chat-sync errors."""


# WhatsApp
class WhatsAppError(ChatSyncError):
    """Base exception for WhatsApp operations."""


class WhatsAppStoreError(WhatsAppError):
    """Failed to open or initialise the local store.db."""


class WhatsAppSendError(WhatsAppError):
    """Failed to send a WhatsApp message."""


class WhatsAppNotConnectedError(WhatsAppSendError):
    """No live transport session to send through."""
