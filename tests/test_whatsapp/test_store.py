"""Tests for the WhatsApp chat store."""

import sqlite3

import pytest

from chat_sync.exceptions import WhatsAppStoreError
from chat_sync.whatsapp.models import Message, MessageStatus, MessageType
from chat_sync.whatsapp.store import ChatStore

ALICE = "15550000001@s.whatsapp.net"
BOB = "15550000002@s.whatsapp.net"


@pytest.fixture
def store(tmp_path):
    s = ChatStore(tmp_path / "store.db")
    yield s
    s.close()


def _msg(id, body="hello", timestamp=1000, chat_jid=ALICE, **overrides):
    fields = dict(
        id=id,
        chat_jid=chat_jid,
        sender_jid=chat_jid,
        sender_name="Alice",
        body=body,
        timestamp=timestamp,
        is_from_me=False,
    )
    fields.update(overrides)
    return Message(**fields)


def test_schema_created(store, tmp_path):
    conn = sqlite3.connect(tmp_path / "store.db")
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"auth_keys", "contacts", "chats", "messages"} <= tables


def test_unopenable_path_raises(tmp_path):
    with pytest.raises(WhatsAppStoreError):
        ChatStore(tmp_path / "missing-dir" / "store.db")


# Chats


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_chat_timestamp_never_regresses(store, order):
    upserts = [
        dict(last_message="older", last_message_at=1000),
        dict(last_message="newer", last_message_at=2000),
    ]
    for i in order:
        store.upsert_chat(ALICE, **upserts[i])
    chat = store.get_chat(ALICE)
    assert chat.last_message_at == 2000
    assert chat.last_message == "newer"


def test_equal_timestamp_keeps_existing_preview(store):
    store.upsert_chat(ALICE, last_message="first", last_message_at=1000)
    store.upsert_chat(ALICE, last_message="second", last_message_at=1000)
    assert store.get_chat(ALICE).last_message == "first"


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_newer_empty_preview_wins_in_either_order(store, order):
    upserts = [
        dict(last_message="hi", last_message_at=1000),
        dict(last_message="", last_message_at=5000),
    ]
    for i in order:
        store.upsert_chat(ALICE, **upserts[i])
    chat = store.get_chat(ALICE)
    assert chat.last_message_at == 5000
    assert chat.last_message == ""


@pytest.mark.parametrize("order", [(0, 1), (1, 0)])
def test_equal_timestamp_fills_empty_preview(store, order):
    upserts = [
        dict(name="Alice", last_message_at=1000),
        dict(last_message="hi", last_message_at=1000),
    ]
    for i in order:
        store.upsert_chat(ALICE, **upserts[i])
    chat = store.get_chat(ALICE)
    assert chat.last_message_at == 1000
    assert chat.last_message == "hi"
    assert chat.name == "Alice"


def test_empty_name_never_overwrites(store):
    store.upsert_chat(ALICE, name="Alice")
    store.upsert_chat(ALICE, name="")
    assert store.get_chat(ALICE).name == "Alice"
    store.upsert_chat(ALICE, name="Alice B")
    assert store.get_chat(ALICE).name == "Alice B"


def test_unread_none_keeps_counter(store):
    store.upsert_chat(ALICE, unread_count=3)
    store.upsert_chat(ALICE, last_message="x", last_message_at=10)
    assert store.get_chat(ALICE).unread_count == 3
    store.upsert_chat(ALICE, unread_count=0)
    assert store.get_chat(ALICE).unread_count == 0


def test_new_chat_without_unread_starts_at_zero(store):
    store.upsert_chat(ALICE)
    assert store.get_chat(ALICE).unread_count == 0


def test_increment_and_reset_unread(store):
    store.upsert_chat(ALICE)
    store.increment_unread(ALICE)
    store.increment_unread(ALICE)
    assert store.get_chat(ALICE).unread_count == 2
    store.reset_unread(ALICE)
    assert store.get_chat(ALICE).unread_count == 0


def test_increment_unknown_chat_is_noop(store):
    store.increment_unread(BOB)
    assert store.get_chat(BOB) is None


def test_get_chats_ordered_by_recency_then_jid(store):
    store.upsert_chat(BOB, last_message="b", last_message_at=1000)
    store.upsert_chat(ALICE, last_message="a", last_message_at=1000)
    store.upsert_chat("g@g.us", last_message="g", last_message_at=3000, is_group=True)
    chats = store.get_chats()
    assert [c.jid for c in chats] == ["g@g.us", ALICE, BOB]
    assert chats[0].is_group


def test_get_chats_prefers_contact_names(store):
    store.upsert_chat(ALICE, name="Chat Name")
    store.upsert_chat(BOB)
    store.upsert_contact(ALICE, name="Alice Smith")
    names = {c.jid: c.name for c in store.get_chats()}
    assert names[ALICE] == "Alice Smith"
    assert names[BOB] == "+15550000002"


# Contacts


def test_contact_fields_merge_independently(store):
    store.upsert_contact(ALICE, name="Alice", notify="")
    store.upsert_contact(ALICE, name="", notify="ally")
    store.upsert_contact(ALICE, name="", notify="")
    contact = store.get_contact(ALICE)
    assert contact.name == "Alice"
    assert contact.notify == "ally"


def test_contact_name_lookup(store):
    assert store.get_contact_name(ALICE) is None
    store.upsert_contact(ALICE, notify="ally")
    assert store.get_contact_name(ALICE) == "ally"
    store.upsert_contact(ALICE, name="Alice")
    assert store.get_contact_name(ALICE) == "Alice"


# Messages


def test_redelivery_replaces_without_duplicating(store):
    store.upsert_message(_msg("m1", status=MessageStatus.SENT))
    store.upsert_message(_msg("m1", status=MessageStatus.READ))
    assert store.count_messages(ALICE) == 1
    assert store.get_messages(ALICE)[0].status == MessageStatus.READ


def test_same_id_in_different_chats_is_distinct(store):
    store.upsert_message(_msg("m1", chat_jid=ALICE))
    store.upsert_message(_msg("m1", chat_jid=BOB))
    assert store.count_messages() == 2


def test_update_message_status(store):
    store.upsert_message(_msg("m1"))
    assert store.update_message_status(ALICE, "m1", MessageStatus.DELIVERED) is True
    assert store.get_messages(ALICE)[0].status == MessageStatus.DELIVERED
    assert store.update_message_status(ALICE, "nope", MessageStatus.READ) is False


def test_message_window_is_latest_n_ascending(store):
    for i in range(5):
        store.upsert_message(_msg(f"m{i}", body=f"b{i}", timestamp=1000 * (i + 1)))
    window = store.get_messages(ALICE, limit=3)
    assert [m.body for m in window] == ["b2", "b3", "b4"]


def test_message_roundtrip_fields(store):
    store.upsert_message(
        _msg("m1", is_from_me=True, sender_jid="me", type=MessageType.IMAGE, body="📷 Photo")
    )
    msg = store.get_messages(ALICE)[0]
    assert msg.is_from_me is True
    assert msg.type == MessageType.IMAGE
    assert msg.sender_jid == "me"


def test_search_in_chat_is_case_insensitive_and_ascending(store):
    store.upsert_message(_msg("m1", body="Lunch today?", timestamp=1000))
    store.upsert_message(_msg("m2", body="no", timestamp=2000))
    store.upsert_message(_msg("m3", body="LUNCH tomorrow", timestamp=3000))
    store.upsert_message(_msg("m4", body="lunch", timestamp=4000, chat_jid=BOB))
    results = store.search_messages(ALICE, "lunch")
    assert [m.id for m in results] == ["m1", "m3"]


def test_search_in_chat_limits_to_most_recent(store):
    for i in range(4):
        store.upsert_message(_msg(f"m{i}", body="ping", timestamp=1000 * (i + 1)))
    results = store.search_messages(ALICE, "ping", limit=2)
    assert [m.id for m in results] == ["m2", "m3"]


def test_search_all_orders_by_recency(store):
    store.upsert_message(_msg("m1", body="deploy done", timestamp=1000))
    store.upsert_message(_msg("m2", body="Deploy failed", timestamp=3000, chat_jid=BOB))
    store.upsert_message(_msg("m3", body="unrelated", timestamp=4000))
    results = store.search_all_messages("deploy", limit=10)
    assert [m.id for m in results] == ["m2", "m1"]


def test_search_folds_non_ascii_case(store):
    store.upsert_message(_msg("m1", body="ÉTÉ à Paris", timestamp=1000))
    store.upsert_message(_msg("m2", body="Straße", timestamp=2000, chat_jid=BOB))
    assert [m.id for m in store.search_messages(ALICE, "été")] == ["m1"]
    assert [m.id for m in store.search_all_messages("STRASSE")] == ["m2"]


def test_search_treats_wildcards_literally(store):
    store.upsert_message(_msg("m1", body="100% sure"))
    store.upsert_message(_msg("m2", body="1000 sure"))
    assert [m.id for m in store.search_messages(ALICE, "0%")] == ["m1"]


# Auth keys and reset


def test_auth_keys(store):
    assert store.get_auth_key("creds") is None
    store.set_auth_key("creds", "{}")
    store.set_auth_key("pre-key-1", "abc")
    assert store.get_auth_key("creds") == "{}"
    assert store.get_all_auth_keys() == {"creds": "{}", "pre-key-1": "abc"}
    store.remove_auth_key("pre-key-1")
    assert store.get_all_auth_keys() == {"creds": "{}"}
    store.clear_auth_keys()
    assert store.get_all_auth_keys() == {}


def test_clear_all_data(store):
    store.upsert_chat(ALICE)
    store.upsert_contact(ALICE, name="Alice")
    store.upsert_message(_msg("m1"))
    store.set_auth_key("creds", "{}")
    store.clear_all_data()
    assert store.get_chats() == []
    assert store.get_contact(ALICE) is None
    assert store.count_messages() == 0
    assert store.get_all_auth_keys() == {}


# Transactions


def test_transaction_rolls_back_as_a_unit(store):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.upsert_chat(ALICE, last_message="partial", last_message_at=1)
            store.upsert_message(_msg("m1"))
            raise RuntimeError("boom")
    assert store.get_chat(ALICE) is None
    assert store.count_messages() == 0


def test_data_survives_reopen(tmp_path):
    path = tmp_path / "store.db"
    with ChatStore(path) as s:
        s.upsert_chat(ALICE, name="Alice", last_message="hi", last_message_at=1000)
    with ChatStore(path) as s:
        assert s.get_chat(ALICE).last_message == "hi"
