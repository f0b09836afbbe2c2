"""Connection lifecycle and reconciliation of inbound WhatsApp events.

ConnectionManager owns one ConnectionSession at a time. Transport events
are handled one at a time in arrival order; each data event is applied
to the store inside a single transaction, then observers are signalled
and the debounced chats-changed notification is (re)armed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

from chat_sync.exceptions import WhatsAppNotConnectedError, WhatsAppSendError
from chat_sync.whatsapp.config import EngineConfig
from chat_sync.whatsapp.events import (
    ChatsUpdate,
    ChatsUpsert,
    ConnectionUpdate,
    ContactsUpdate,
    ContactsUpsert,
    HistorySync,
    Listener,
    MessagesUpdate,
    MessagesUpsert,
    Signal,
    SignalBus,
    TransportEvent,
)
from chat_sync.whatsapp.models import (
    Chat,
    ConnectionState,
    Message,
    MessageStatus,
    MessageType,
)
from chat_sync.whatsapp.names import STATUS_BROADCAST_JID, NameResolver, is_group_jid
from chat_sync.whatsapp.notifier import Cancellable, ChangeNotifier, TimerFactory, thread_timer
from chat_sync.whatsapp.parser import (
    OWNER_SENDER_JID,
    OWNER_SENDER_NAME,
    map_status,
    now_ms,
    parse_chat,
    parse_contact,
    parse_message,
    sender_push_name,
)
from chat_sync.whatsapp.store import ChatStore
from chat_sync.whatsapp.transport import BaseTransport

logger = logging.getLogger(__name__)

TransportFactory = Callable[[], BaseTransport]


@dataclass
class ConnectionSession:
    """Process-wide connection state owned by one ConnectionManager."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    retry_count: int = 0
    transport: BaseTransport | None = None
    retry_timer: Cancellable | None = None
    # Bumped on every (re)connect and close; events from older handles are ignored.
    generation: int = 0


class ConnectionManager:
    """Drive the WhatsApp session and reconcile its events into a ChatStore."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        store: ChatStore | None = None,
        config: EngineConfig | None = None,
        timer_factory: TimerFactory = thread_timer,
    ):
        self.config = config or EngineConfig()
        self.store = store if store is not None else ChatStore()
        self.names = NameResolver(self.store)
        self.signals = SignalBus()
        self.notifier = ChangeNotifier(
            lambda: self.signals.emit(Signal.CHATS_CHANGED),
            window=self.config.debounce_window,
            timer_factory=timer_factory,
        )
        self._transport_factory = transport_factory
        self._timer_factory = timer_factory
        self._session = ConnectionSession()
        self._lock = threading.RLock()
        self._handlers: dict[type, Callable[[Any], list[Message]]] = {
            HistorySync: self._apply_history_sync,
            ChatsUpsert: self._apply_chats,
            ChatsUpdate: self._apply_chats,
            ContactsUpsert: self._apply_contacts,
            ContactsUpdate: self._apply_contacts,
            MessagesUpsert: self._apply_messages_upsert,
            MessagesUpdate: self._apply_messages_update,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def retry_count(self) -> int:
        return self._session.retry_count

    def on(self, signal: Signal, listener: Listener) -> None:
        self.signals.on(signal, listener)

    def off(self, signal: Signal, listener: Listener) -> None:
        self.signals.off(signal, listener)

    def start(self) -> None:
        """Connect, or explicitly restart after settling in Disconnected."""
        with self._lock:
            self._session.retry_count = 0
            self._connect()

    def shutdown(self) -> None:
        with self._lock:
            self._cancel_retry()
            self.notifier.cancel()
            self._drop_transport()
            self._session.retry_count = 0
            self._set_state(ConnectionState.DISCONNECTED)
        logger.info("WhatsApp session shut down")

    def send_message(self, jid: str, text: str) -> Message:
        """Send a text message and record it locally.

        Raises WhatsAppSendError if the transport rejects it; nothing is
        written to the store in that case.
        """
        transport = self._session.transport
        if transport is None:
            raise WhatsAppNotConnectedError(f"Cannot send to {jid}: not connected")

        try:
            message_id = transport.send_text(jid, text)
        except Exception as e:
            logger.error(f"Failed to send message to {jid}: {e}")
            raise WhatsAppSendError(f"Failed to send message to {jid}: {e}") from e

        timestamp = now_ms()
        msg = Message(
            id=message_id or f"local-{timestamp}",
            chat_jid=jid,
            sender_jid=OWNER_SENDER_JID,
            sender_name=OWNER_SENDER_NAME,
            body=text,
            timestamp=timestamp,
            is_from_me=True,
            status=MessageStatus.SENT,
            type=MessageType.TEXT,
        )
        with self.store.transaction():
            self.store.upsert_chat(
                jid,
                name=self.names.known_name(jid),
                last_message=text,
                last_message_at=timestamp,
                is_group=is_group_jid(jid),
            )
            self.store.upsert_message(msg)
        logger.info(f"Sent message {msg.id} to {jid}")
        self.notifier.notify()
        return msg

    def mark_chat_read(self, jid: str, message_ids: list[str]) -> None:
        """Best-effort read receipts; failures are logged and dropped."""
        transport = self._session.transport
        if transport is None or not message_ids:
            return
        try:
            transport.read_messages(jid, message_ids)
        except Exception as e:
            logger.warning(f"Read receipt for {jid} failed: {e}")

    def reset_unread(self, jid: str) -> None:
        self.store.reset_unread(jid)
        self.notifier.notify()

    def get_chats(self) -> list[Chat]:
        return self.store.get_chats()

    def get_messages(self, jid: str, limit: int | None = None) -> list[Message]:
        return self.store.get_messages(jid, limit or self.config.message_window)

    def search_messages(self, jid: str, query: str, limit: int | None = None) -> list[Message]:
        return self.store.search_messages(jid, query, limit or self.config.search_limit)

    def search_all_messages(self, query: str, limit: int | None = None) -> list[Message]:
        return self.store.search_all_messages(query, limit or self.config.global_search_limit)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, event: TransportEvent, generation: int | None = None) -> None:
        """Apply one transport event. ``generation`` identifies the delivering session."""
        with self._lock:
            if generation is not None and generation != self._session.generation:
                logger.debug(f"Ignoring {type(event).__name__} from a superseded session")
                return

            if isinstance(event, ConnectionUpdate):
                self._handle_connection_update(event)
                return

            handler = self._handlers.get(type(event))
            if handler is None:
                logger.warning(f"Unhandled transport event {type(event).__name__}")
                return

            try:
                with self.store.transaction():
                    available = handler(event)
            except Exception:
                logger.exception(f"Failed to apply {type(event).__name__}; rolled back")
                return

            for msg in available:
                self.signals.emit(Signal.MESSAGE, msg)
            self.notifier.notify()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        self._cancel_retry()
        self._drop_transport()
        self._session.generation += 1
        generation = self._session.generation
        self._set_state(ConnectionState.CONNECTING)
        logger.info(f"Connecting to WhatsApp (attempt {self._session.retry_count + 1})")

        try:
            transport = self._transport_factory()
            self._session.transport = transport
            transport.open(lambda event: self.handle_event(event, generation))
        except Exception as e:
            logger.error(f"Failed to open WhatsApp transport: {e}")
            if self._session.generation == generation:
                self._handle_close(ConnectionUpdate(connection="close"))

    def _handle_connection_update(self, event: ConnectionUpdate) -> None:
        state = self._session.state

        if event.qr and state in (ConnectionState.CONNECTING, ConnectionState.AWAITING_PAIRING):
            logger.info("Pairing challenge issued, waiting for device approval")
            self._set_state(ConnectionState.AWAITING_PAIRING)
            self.signals.emit(Signal.PAIRING_CHALLENGE, event.qr)

        if event.connection == "close":
            self._handle_close(event)
        elif event.connection == "open":
            if self._session.state not in (
                ConnectionState.CONNECTING,
                ConnectionState.AWAITING_PAIRING,
            ):
                logger.debug(f"Ignoring open while {self._session.state.value}")
                return
            self._cancel_retry()
            self._session.retry_count = 0
            self._set_state(ConnectionState.CONNECTED)
            logger.info("WhatsApp connection open")
            self.signals.emit(Signal.READY)

    def _handle_close(self, event: ConnectionUpdate) -> None:
        self._drop_transport()
        self._session.generation += 1
        status_code = event.status_code

        if event.is_logged_out:
            logger.info("Logged out by the server; not reconnecting")
            self._cancel_retry()
            self._set_state(ConnectionState.DISCONNECTED)
            return

        if self._session.retry_count < self.config.max_retries:
            self._session.retry_count += 1
            delay = self.config.retry_delay(self._session.retry_count)
            logger.info(
                f"Connection closed (status {status_code}); retry "
                f"{self._session.retry_count}/{self.config.max_retries} in {delay:.1f}s"
            )
            self._set_state(ConnectionState.CONNECTING)
            self._schedule_retry(delay)
        else:
            logger.warning(
                f"Connection closed (status {status_code}); "
                f"giving up after {self.config.max_retries} retries"
            )
            self._set_state(ConnectionState.DISCONNECTED)

    def _schedule_retry(self, delay: float) -> None:
        self._cancel_retry()
        timer = self._timer_factory(delay, lambda: self._reconnect(timer))
        self._session.retry_timer = timer
        timer.start()

    def _reconnect(self, timer: Cancellable) -> None:
        with self._lock:
            if self._session.retry_timer is not timer:
                return
            self._session.retry_timer = None
            if self._session.state != ConnectionState.CONNECTING:
                return
            self._connect()

    def _cancel_retry(self) -> None:
        if self._session.retry_timer is not None:
            self._session.retry_timer.cancel()
            self._session.retry_timer = None

    def _drop_transport(self) -> None:
        transport = self._session.transport
        self._session.transport = None
        if transport is None:
            return
        try:
            transport.close()
        except Exception as e:
            logger.warning(f"Error closing WhatsApp transport: {e}")

    def _set_state(self, state: ConnectionState) -> None:
        if self._session.state == state:
            return
        self._session.state = state
        self.signals.emit(Signal.CONNECTION_STATE, state)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _apply_history_sync(self, event: HistorySync) -> list[Message]:
        # Chats first so contact and message writes have a row to land on.
        self._apply_chats(ChatsUpsert(chats=event.chats))
        self._apply_contacts(ContactsUpsert(contacts=event.contacts))

        kept = 0
        for raw in event.messages:
            if self._apply_message(raw, count_unread=False) is not None:
                kept += 1
        logger.debug(
            f"History sync: {len(event.chats)} chats, {len(event.contacts)} contacts, "
            f"{kept}/{len(event.messages)} messages kept"
        )
        return []

    def _apply_chats(self, event: ChatsUpsert | ChatsUpdate) -> list[Message]:
        for raw in event.chats:
            fields = parse_chat(raw)
            jid = fields["jid"]
            if not jid or jid == STATUS_BROADCAST_JID:
                continue
            self.store.upsert_chat(
                jid,
                name=fields["name"],
                last_message_at=fields["last_message_at"],
                is_group=is_group_jid(jid),
                unread_count=fields["unread_count"],
            )
        return []

    def _apply_contacts(self, event: ContactsUpsert | ContactsUpdate) -> list[Message]:
        for raw in event.contacts:
            fields = parse_contact(raw)
            if not fields["jid"] or fields["jid"] == STATUS_BROADCAST_JID:
                continue
            self.store.upsert_contact(**fields)
        return []

    def _apply_messages_upsert(self, event: MessagesUpsert) -> list[Message]:
        available = []
        for raw in event.messages:
            msg = self._apply_message(raw, count_unread=True)
            if msg is not None:
                available.append(msg)
        return available

    def _apply_messages_update(self, event: MessagesUpdate) -> list[Message]:
        for item in event.updates:
            key = item.get("key") or {}
            update = item.get("update") or {}
            if "status" not in update or not key.get("remoteJid") or not key.get("id"):
                continue
            status = map_status(update["status"])
            if not self.store.update_message_status(key["remoteJid"], key["id"], status):
                logger.debug(f"Status update for unknown message {key['id']}")
        return []

    def _apply_message(self, raw: dict[str, Any], count_unread: bool) -> Message | None:
        chat_jid = (raw.get("key") or {}).get("remoteJid")
        if not chat_jid or chat_jid == STATUS_BROADCAST_JID:
            return None

        parsed = parse_message(raw, max_depth=self.config.max_unwrap_depth)
        if parsed is None:
            return None
        msg, content = parsed
        if content.is_empty:
            logger.debug(f"Dropping message {msg.id} with no visible content")
            return None

        pushed = sender_push_name(raw)
        if pushed is not None and pushed[0] != STATUS_BROADCAST_JID:
            self.store.upsert_contact(pushed[0], notify=pushed[1])

        # The owner's own messages never name the chat after the owner.
        if msg.is_from_me:
            name = self.names.known_name(chat_jid)
        else:
            name = self.names.resolve(chat_jid)

        self.store.upsert_chat(
            chat_jid,
            name=name,
            last_message=content.preview(),
            last_message_at=msg.timestamp,
            is_group=is_group_jid(chat_jid),
        )
        self.store.upsert_message(msg)

        if count_unread and not msg.is_from_me:
            self.store.increment_unread(chat_jid)
        return msg
