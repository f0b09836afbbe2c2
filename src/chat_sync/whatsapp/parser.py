"""Parse raw transport payloads (WebMessageInfo / Chat / Contact dicts)."""

from __future__ import annotations

import logging
import time
from typing import Any

import dateutil.parser as parser

from chat_sync.whatsapp.content import MAX_UNWRAP_DEPTH, extract_content
from chat_sync.whatsapp.models import Content, Message, MessageStatus
from chat_sync.whatsapp.names import jid_to_phone_number

logger = logging.getLogger(__name__)

OWNER_SENDER_JID = "me"
OWNER_SENDER_NAME = "You"

# proto.WebMessageInfo.Status
_STATUS_MAP = {
    0: MessageStatus.ERROR,
    1: MessageStatus.PENDING,
    2: MessageStatus.SENT,  # SERVER_ACK
    3: MessageStatus.DELIVERED,
    4: MessageStatus.READ,
    5: MessageStatus.READ,  # PLAYED
    "ERROR": MessageStatus.ERROR,
    "PENDING": MessageStatus.PENDING,
    "SERVER_ACK": MessageStatus.SENT,
    "DELIVERY_ACK": MessageStatus.DELIVERED,
    "READ": MessageStatus.READ,
    "PLAYED": MessageStatus.READ,
}


def now_ms() -> int:
    return int(time.time() * 1000)


def to_millis(value: Any, default: int | None = None) -> int | None:
    """Coerce a provider timestamp in seconds to unix milliseconds.

    Accepts ints, numeric strings, int64 ``{"low", "high"}`` pairs and
    ISO-8601 strings. Returns ``default`` when nothing usable is present.
    """
    if value is None or value == "" or value == 0:
        return default
    if isinstance(value, dict):
        low = int(value.get("low") or 0) & 0xFFFFFFFF
        high = int(value.get("high") or 0)
        value = (high << 32) | low
        return value * 1000 if value else default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value * 1000)
    text = str(value).strip()
    try:
        return int(float(text) * 1000)
    except ValueError:
        pass
    try:
        return int(parser.isoparse(text).timestamp() * 1000)
    except (ValueError, OverflowError):
        pass
    try:
        return int(parser.parse(text).timestamp() * 1000)
    except (ValueError, OverflowError) as e:
        logger.warning(f"Unparseable timestamp {value!r}: {e}")
        return default


def map_status(status: Any) -> MessageStatus:
    return _STATUS_MAP.get(status, MessageStatus.SENT)


def parse_message(
    raw: dict[str, Any],
    max_depth: int = MAX_UNWRAP_DEPTH,
) -> tuple[Message, Content] | None:
    """Flatten a WebMessageInfo dict into a Message.

    Returns None when the payload has no chat JID. The extracted Content
    is returned alongside so callers can drop protocol noise
    (``content.is_empty``) without re-extracting.
    """
    key = raw.get("key") or {}
    chat_jid = key.get("remoteJid")
    if not chat_jid:
        return None

    is_from_me = bool(key.get("fromMe"))
    sender_jid = OWNER_SENDER_JID if is_from_me else (key.get("participant") or chat_jid)
    timestamp = to_millis(raw.get("messageTimestamp")) or now_ms()
    content = extract_content(raw.get("message"), max_depth=max_depth)

    if is_from_me:
        sender_name = OWNER_SENDER_NAME
    else:
        sender_name = raw.get("pushName") or jid_to_phone_number(sender_jid)

    message = Message(
        id=key.get("id") or f"msg-{timestamp}",
        chat_jid=chat_jid,
        sender_jid=sender_jid,
        sender_name=sender_name,
        body=content.body,
        timestamp=timestamp,
        is_from_me=is_from_me,
        status=map_status(raw.get("status")),
        type=content.type,
    )
    return message, content


def sender_push_name(raw: dict[str, Any]) -> tuple[str, str] | None:
    """(sender JID, push name) for a received message that carries one."""
    key = raw.get("key") or {}
    push_name = raw.get("pushName")
    if key.get("fromMe") or not push_name:
        return None
    sender_jid = key.get("participant") or key.get("remoteJid")
    if not sender_jid:
        return None
    return sender_jid, push_name


def parse_chat(raw: dict[str, Any]) -> dict[str, Any]:
    """Map a provider Chat dict onto ``ChatStore.upsert_chat`` keyword arguments."""
    unread = raw.get("unreadCount")
    return {
        "jid": raw.get("id") or "",
        "name": raw.get("name") or "",
        "last_message_at": to_millis(raw.get("conversationTimestamp"), default=0),
        "unread_count": int(unread) if unread is not None else None,
    }


def parse_contact(raw: dict[str, Any]) -> dict[str, str]:
    """Map a provider Contact dict onto ``ChatStore.upsert_contact`` keyword arguments."""
    return {
        "jid": raw.get("id") or "",
        "name": raw.get("name") or "",
        "notify": raw.get("notify") or "",
    }
