"""Durable SQLite store for chats, contacts, messages and auth keys.

Every write is an idempotent upsert so at-least-once redelivery from the
transport is harmless. Writes run inside ``transaction()``; nested calls
join the outer transaction, so a whole inbound event commits or rolls
back as one unit.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from chat_sync.exceptions import WhatsAppStoreError
from chat_sync.whatsapp.config import get_db_path
from chat_sync.whatsapp.models import Chat, Contact, Message, MessageStatus, MessageType
from chat_sync.whatsapp.names import resolve_display_name

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS auth_keys (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contacts (
    jid    TEXT PRIMARY KEY,
    name   TEXT NOT NULL DEFAULT '',
    notify TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS chats (
    jid             TEXT PRIMARY KEY,
    name            TEXT NOT NULL DEFAULT '',
    last_message    TEXT NOT NULL DEFAULT '',
    last_message_at INTEGER NOT NULL DEFAULT 0,
    unread_count    INTEGER NOT NULL DEFAULT 0,
    is_group        INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS messages (
    id          TEXT NOT NULL,
    chat_jid    TEXT NOT NULL,
    sender_jid  TEXT NOT NULL DEFAULT '',
    sender_name TEXT NOT NULL DEFAULT '',
    body        TEXT NOT NULL DEFAULT '',
    timestamp   INTEGER NOT NULL DEFAULT 0,
    is_from_me  INTEGER NOT NULL DEFAULT 0,
    status      TEXT NOT NULL DEFAULT 'sent',
    type        TEXT NOT NULL DEFAULT 'text',
    PRIMARY KEY (chat_jid, id)
);

CREATE INDEX IF NOT EXISTS idx_chats_last_message_at
    ON chats(last_message_at, jid);

CREATE INDEX IF NOT EXISTS idx_messages_chat_jid
    ON messages(chat_jid, timestamp);

CREATE INDEX IF NOT EXISTS idx_messages_timestamp
    ON messages(timestamp);
"""

# The stored timestamp is the max seen and the preview belongs to it, so
# upserts commute. At an equal timestamp only an empty preview is filled.
_UPSERT_CHAT = """
INSERT INTO chats (jid, name, last_message, last_message_at, unread_count, is_group)
VALUES (:jid, :name, :last_message, :last_message_at, COALESCE(:unread_count, 0), :is_group)
ON CONFLICT(jid) DO UPDATE SET
    name = CASE WHEN excluded.name != '' THEN excluded.name ELSE chats.name END,
    last_message = CASE
        WHEN excluded.last_message_at > chats.last_message_at THEN excluded.last_message
        WHEN excluded.last_message_at = chats.last_message_at
             AND chats.last_message = '' THEN excluded.last_message
        ELSE chats.last_message END,
    last_message_at = MAX(excluded.last_message_at, chats.last_message_at),
    unread_count = CASE WHEN :unread_count IS NULL
        THEN chats.unread_count ELSE excluded.unread_count END,
    is_group = excluded.is_group
"""

_MESSAGE_COLUMNS = "id, chat_jid, sender_jid, sender_name, body, timestamp, is_from_me, status, type"


def _fold(text: str | None) -> str:
    """Unicode case folding; SQLite's own LIKE and lower() only fold ASCII."""
    return (text or "").casefold()


class ChatStore:
    """Keyed local storage with merge-safe upserts and ordered read views."""

    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path if db_path is not None else get_db_path()
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = self._connect()
        self._init_tables()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.create_function("fold", 1, _fold, deterministic=True)
            if str(self.db_path) != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
            return conn
        except (sqlite3.OperationalError, sqlite3.DatabaseError) as e:
            raise WhatsAppStoreError(f"Failed to open store at {self.db_path}: {e}") from e

    def _init_tables(self) -> None:
        try:
            with self._lock:
                self._conn.executescript(_SCHEMA)
                self._conn.commit()
        except sqlite3.DatabaseError as e:
            raise WhatsAppStoreError(f"Failed to initialise store at {self.db_path}: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialize writers and commit once the outermost block exits."""
        with self._lock:
            self._depth += 1
            try:
                yield self._conn
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> ChatStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Auth keys
    # ------------------------------------------------------------------

    def get_auth_key(self, key: str) -> str | None:
        row = self._query_one("SELECT value FROM auth_keys WHERE key = ?", (key,))
        return row["value"] if row else None

    def set_auth_key(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO auth_keys (key, value) VALUES (?, ?)", (key, value)
            )

    def remove_auth_key(self, key: str) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM auth_keys WHERE key = ?", (key,))

    def get_all_auth_keys(self) -> dict[str, str]:
        rows = self._query_all("SELECT key, value FROM auth_keys")
        return {row["key"]: row["value"] for row in rows}

    def clear_auth_keys(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM auth_keys")

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def upsert_contact(self, jid: str, name: str = "", notify: str = "") -> None:
        """Merge a contact; each name field only changes when the new value is non-empty."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO contacts (jid, name, notify)
                VALUES (?, ?, ?)
                ON CONFLICT(jid) DO UPDATE SET
                    name = CASE WHEN excluded.name != '' THEN excluded.name ELSE contacts.name END,
                    notify = CASE WHEN excluded.notify != '' THEN excluded.notify ELSE contacts.notify END
                """,
                (jid, name or "", notify or ""),
            )

    def get_contact(self, jid: str) -> Contact | None:
        row = self._query_one("SELECT jid, name, notify FROM contacts WHERE jid = ?", (jid,))
        if not row:
            return None
        return Contact(jid=row["jid"], name=row["name"], notify=row["notify"])

    def get_contact_name(self, jid: str) -> str | None:
        """Addressbook name, else notify name, else None."""
        contact = self.get_contact(jid)
        if not contact:
            return None
        return contact.name or contact.notify or None

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------

    def upsert_chat(
        self,
        jid: str,
        name: str = "",
        last_message: str = "",
        last_message_at: int = 0,
        is_group: bool = False,
        unread_count: int | None = None,
    ) -> None:
        """Merge a chat row.

        ``unread_count`` is written verbatim when given; ``None`` keeps the
        stored counter (0 for a new row).
        """
        with self.transaction() as conn:
            conn.execute(
                _UPSERT_CHAT,
                {
                    "jid": jid,
                    "name": name or "",
                    "last_message": last_message or "",
                    "last_message_at": int(last_message_at or 0),
                    "unread_count": unread_count,
                    "is_group": 1 if is_group else 0,
                },
            )

    def increment_unread(self, jid: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE chats SET unread_count = unread_count + 1 WHERE jid = ?", (jid,)
            )

    def reset_unread(self, jid: str) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE chats SET unread_count = 0 WHERE jid = ?", (jid,))

    def get_chat(self, jid: str) -> Chat | None:
        """The stored chat row, without contact-name resolution."""
        row = self._query_one("SELECT * FROM chats WHERE jid = ?", (jid,))
        return self._row_to_chat(row, row["name"]) if row else None

    def get_chats(self) -> list[Chat]:
        """All chats, most recent first, named by the best available source."""
        rows = self._query_all(
            """
            SELECT c.*,
                   COALESCE(ct.name, '')   AS contact_name,
                   COALESCE(ct.notify, '') AS contact_notify
            FROM chats c
            LEFT JOIN contacts ct ON ct.jid = c.jid
            ORDER BY c.last_message_at DESC, c.jid ASC
            """
        )
        return [
            self._row_to_chat(
                row,
                resolve_display_name(
                    row["jid"],
                    contact_name=row["contact_name"],
                    notify_name=row["contact_notify"],
                    chat_name=row["name"],
                ),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def upsert_message(self, msg: Message) -> None:
        """Insert or fully replace a message keyed by (chat, id)."""
        with self.transaction() as conn:
            conn.execute(
                f"INSERT OR REPLACE INTO messages ({_MESSAGE_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    msg.id,
                    msg.chat_jid,
                    msg.sender_jid,
                    msg.sender_name,
                    msg.body,
                    int(msg.timestamp),
                    1 if msg.is_from_me else 0,
                    MessageStatus(msg.status).value,
                    MessageType(msg.type).value,
                ),
            )

    def update_message_status(
        self, chat_jid: str, message_id: str, status: MessageStatus
    ) -> bool:
        """Change the status of a stored message. Returns False if it is unknown."""
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE messages SET status = ? WHERE chat_jid = ? AND id = ?",
                (MessageStatus(status).value, chat_jid, message_id),
            )
            return cur.rowcount > 0

    def get_messages(self, chat_jid: str, limit: int = 100) -> list[Message]:
        """The most recent ``limit`` messages of a chat, oldest first."""
        rows = self._query_all(
            f"""
            SELECT * FROM (
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE chat_jid = ?
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            ) ORDER BY timestamp ASC, id ASC
            """,
            (chat_jid, limit),
        )
        return [self._row_to_message(row) for row in rows]

    def search_messages(self, chat_jid: str, query: str, limit: int = 100) -> list[Message]:
        """Case-insensitive substring search within one chat, oldest first."""
        rows = self._query_all(
            f"""
            SELECT * FROM (
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE chat_jid = ? AND instr(fold(body), ?) > 0
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
            ) ORDER BY timestamp ASC, id ASC
            """,
            (chat_jid, _fold(query), limit),
        )
        return [self._row_to_message(row) for row in rows]

    def search_all_messages(self, query: str, limit: int = 10) -> list[Message]:
        """Case-insensitive substring search across all chats, most recent first."""
        rows = self._query_all(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE instr(fold(body), ?) > 0
            ORDER BY timestamp DESC, chat_jid ASC, id DESC
            LIMIT ?
            """,
            (_fold(query), limit),
        )
        return [self._row_to_message(row) for row in rows]

    def count_messages(self, chat_jid: str | None = None) -> int:
        if chat_jid is None:
            row = self._query_one("SELECT COUNT(*) FROM messages")
        else:
            row = self._query_one("SELECT COUNT(*) FROM messages WHERE chat_jid = ?", (chat_jid,))
        return row[0] if row else 0

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def clear_all_data(self) -> None:
        """Full reset: the only way chats and contacts are ever deleted."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM messages")
            conn.execute("DELETE FROM chats")
            conn.execute("DELETE FROM contacts")
            conn.execute("DELETE FROM auth_keys")
        logger.info(f"Cleared all data in {self.db_path}")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _query_one(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _query_all(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    @staticmethod
    def _row_to_chat(row: sqlite3.Row, name: str) -> Chat:
        return Chat(
            jid=row["jid"],
            name=name,
            last_message=row["last_message"],
            last_message_at=row["last_message_at"],
            unread_count=row["unread_count"],
            is_group=bool(row["is_group"]),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            chat_jid=row["chat_jid"],
            sender_jid=row["sender_jid"],
            sender_name=row["sender_name"],
            body=row["body"],
            timestamp=row["timestamp"],
            is_from_me=bool(row["is_from_me"]),
            status=MessageStatus(row["status"]),
            type=MessageType(row["type"]),
        )
