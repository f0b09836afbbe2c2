"""Identifier helpers and best-effort display-name resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from chat_sync.whatsapp.store import ChatStore

# Status updates pseudo-chat; never a real conversation.
STATUS_BROADCAST_JID = "status@broadcast"

GROUP_SUFFIX = "@g.us"


def jid_to_phone_number(jid: str) -> str:
    """Derive a phone-number-shaped label from a JID.

    "919876543210@s.whatsapp.net" -> "+919876543210". Device suffixes
    ("9198...:12@s.whatsapp.net") are stripped.
    """
    user = jid.split("@", 1)[0]
    user = user.split(":", 1)[0]
    if user:
        return f"+{user}"
    return jid


def is_group_jid(jid: str) -> bool:
    return jid.endswith(GROUP_SUFFIX)


def resolve_display_name(
    jid: str,
    contact_name: str = "",
    notify_name: str = "",
    chat_name: str = "",
) -> str:
    """Pick the best human label for a conversation.

    Priority: addressbook name, then the contact's self-declared notify
    name, then the conversation's stored name, then a phone number
    derived from the JID (always available).
    """
    for candidate in (contact_name, notify_name, chat_name):
        if candidate and candidate.strip():
            return candidate
    return jid_to_phone_number(jid)


class NameResolver:
    """Resolve display names against the contacts and chats in a store."""

    def __init__(self, store: ChatStore):
        self.store = store

    def resolve(self, jid: str) -> str:
        contact = self.store.get_contact(jid)
        chat = self.store.get_chat(jid)
        return resolve_display_name(
            jid,
            contact_name=contact.name if contact else "",
            notify_name=contact.notify if contact else "",
            chat_name=chat.name if chat else "",
        )

    def known_name(self, jid: str) -> str:
        """Contact-derived name only, or "" when the contact is unknown."""
        return self.store.get_contact_name(jid) or ""
