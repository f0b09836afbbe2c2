"""Flatten nested WhatsApp message envelopes into a (body, type) pair.

Works on the dict form of a ``proto.Message`` (camelCase keys, as the
transport renders it). Pure functions, no store access, never raises.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from chat_sync.whatsapp.models import NO_CONTENT, Content, MessageType

logger = logging.getLogger(__name__)

MAX_UNWRAP_DEPTH = 16

UNSUPPORTED = Content("💬 [Unsupported message]", MessageType.UNKNOWN)

# Wrapper envelopes carrying an inner ``message``; the wrapper itself is discarded.
_WRAPPER_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
    "editedMessage",
)

# proto.Message.ProtocolMessage.Type.MESSAGE_EDIT
_PROTOCOL_MESSAGE_EDIT = (14, "MESSAGE_EDIT")


def extract_content(
    content: dict[str, Any] | None,
    max_depth: int = MAX_UNWRAP_DEPTH,
) -> Content:
    """Extract the visible body and content type from a message envelope.

    Returns NO_CONTENT for protocol/system envelopes and when more than
    ``max_depth`` envelope levels (the outermost included) are nested.
    """
    try:
        return _extract(content, 0, max_depth)
    except (AttributeError, TypeError, ValueError) as e:
        logger.warning(f"Malformed message content, treating as unsupported: {e}")
        return UNSUPPORTED


def _extract(content: Any, depth: int, max_depth: int) -> Content:
    if not content or not isinstance(content, dict):
        return NO_CONTENT

    if depth >= max_depth:
        logger.warning(f"Message envelope nested deeper than {max_depth} levels, dropping")
        return NO_CONTENT

    inner = _unwrap(content)
    if inner is not None:
        return _extract(inner, depth + 1, max_depth)

    protocol = content.get("protocolMessage")
    if protocol is not None:
        # Deletes, disappearing-mode changes, key changes: nothing to show,
        # except an edit, which carries the replacement content.
        if not isinstance(protocol, dict):
            return NO_CONTENT
        if protocol.get("type") in _PROTOCOL_MESSAGE_EDIT and protocol.get("editedMessage"):
            return _extract(protocol["editedMessage"], depth + 1, max_depth)
        return NO_CONTENT

    # Key distribution sometimes rides along with real text; only skip it alone.
    if content.get("senderKeyDistributionMessage") and not (
        content.get("conversation") or content.get("extendedTextMessage")
    ):
        return NO_CONTENT

    for key, classify in _TERMINAL_KINDS:
        value = content.get(key)
        if not value and value != {}:
            continue
        result = classify(value)
        if result is not None:
            return result

    logger.debug(f"Unsupported message kinds: {sorted(content)}")
    return UNSUPPORTED


def _unwrap(content: dict[str, Any]) -> dict[str, Any] | None:
    for key in _WRAPPER_KEYS:
        wrapper = content.get(key)
        if isinstance(wrapper, dict) and wrapper.get("message"):
            return wrapper["message"]
    return None


# ------------------------------------------------------------------
# Terminal content classification
# ------------------------------------------------------------------


def _text(value: Any) -> Content | None:
    if isinstance(value, str) and value:
        return Content(value, MessageType.TEXT)
    return None


def _extended_text(value: dict) -> Content | None:
    text = value.get("text")
    if text:
        return Content(text, MessageType.TEXT)
    return None


def _image(value: dict) -> Content:
    return Content(value.get("caption") or "📷 Photo", MessageType.IMAGE)


def _video(value: dict) -> Content:
    return Content(value.get("caption") or "🎥 Video", MessageType.VIDEO)


def _audio(value: dict) -> Content:
    if value.get("ptt"):
        return Content("🎤 Voice message", MessageType.AUDIO)
    return Content("🎵 Audio", MessageType.AUDIO)


def _document(value: dict) -> Content:
    return Content(value.get("fileName") or "📄 Document", MessageType.DOCUMENT)


def _contact(value: dict) -> Content:
    return Content(value.get("displayName") or "👤 Contact", MessageType.CONTACT)


def _contacts_array(value: dict) -> Content:
    count = len(value.get("contacts") or [])
    return Content(f"👥 {count} contacts", MessageType.CONTACT)


def _reaction(value: dict) -> Content:
    return Content(value.get("text") or "❤️", MessageType.REACTION)


def _poll(value: dict) -> Content:
    return Content(f"📊 Poll: {value.get('name') or 'Poll'}", MessageType.TEXT)


def _list(value: dict) -> Content:
    body = value.get("title") or value.get("description") or "📋 List"
    return Content(body, MessageType.TEXT)


def _buttons(value: dict) -> Content:
    return Content(value.get("contentText") or "🔘 Buttons", MessageType.TEXT)


def _group_invite(value: dict) -> Content:
    return Content(
        f"📨 Group invite: {value.get('groupName') or 'Group'}", MessageType.TEXT
    )


def _interactive(value: dict) -> Content:
    body = (value.get("body") or {}).get("text") or (value.get("header") or {}).get("title")
    return Content(body or "🔲 Interactive message", MessageType.TEXT)


def _fixed(body: str, type_: MessageType) -> Callable[[Any], Content]:
    return lambda _value: Content(body, type_)


# Priority order matters: the first kind present wins.
_TERMINAL_KINDS: tuple[tuple[str, Callable[[Any], Content | None]], ...] = (
    ("conversation", _text),
    ("extendedTextMessage", _extended_text),
    ("imageMessage", _image),
    ("videoMessage", _video),
    ("audioMessage", _audio),
    ("documentMessage", _document),
    ("stickerMessage", _fixed("🏷️ Sticker", MessageType.STICKER)),
    ("contactMessage", _contact),
    ("contactsArrayMessage", _contacts_array),
    ("locationMessage", _fixed("📍 Location", MessageType.LOCATION)),
    ("liveLocationMessage", _fixed("📍 Live location", MessageType.LOCATION)),
    ("reactionMessage", _reaction),
    ("pollCreationMessage", _poll),
    ("pollCreationMessageV2", _poll),
    ("pollCreationMessageV3", _poll),
    ("pollUpdateMessage", _fixed("📊 Poll vote", MessageType.TEXT)),
    ("listMessage", _list),
    ("buttonsMessage", _buttons),
    ("templateMessage", _fixed("📝 Template", MessageType.TEXT)),
    ("groupInviteMessage", _group_invite),
    ("interactiveMessage", _interactive),
    ("orderMessage", _fixed("🛒 Order", MessageType.TEXT)),
    ("paymentInviteMessage", _fixed("💰 Payment", MessageType.TEXT)),
    ("pinInChatMessage", _fixed("📌 Pinned a message", MessageType.TEXT)),
    ("keepInChatMessage", _fixed("📌 Kept a message", MessageType.TEXT)),
)
