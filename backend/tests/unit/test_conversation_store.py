"""
Tests for the conversation store.

WHAT: Append ordering/idempotency, read flags, flagging, unread counts
WHY: The store is the single writer every surface depends on
HOW: In-memory repository with a fake clock
"""

from datetime import timedelta

import pytest

from marketplace_chat.core.repository import InMemoryConversationRepository
from marketplace_chat.models.conversation import conversation_key
from marketplace_chat.models.message import make_offer_message, make_system_message, make_text_message
from marketplace_chat.services.conversation_store import ConversationStore
from marketplace_chat.utils.exceptions import ConversationNotFoundException, MessageNotFoundException


@pytest.mark.unit
class TestOpenConversation:
    """Get-or-create by customer/seller/vehicle."""

    def test_key_format(self, conversation):
        assert conversation.id == "c1_s1_42"
        assert conversation.vehicle_id == "42"
        assert conversation_key("c1", "s1", 42) == conversation.id

    def test_open_is_idempotent(self, store, conversation):
        again = store.open_conversation(customer_id="c1", seller_id="s1", vehicle_id="42")

        assert again is conversation

    def test_unknown_conversation(self, store):
        with pytest.raises(ConversationNotFoundException):
            store.get("missing")

    def test_unknown_message(self, store, conversation):
        with pytest.raises(MessageNotFoundException):
            store.get_message(conversation.id, "nope")


@pytest.mark.unit
class TestAppend:
    """Ordering and idempotency of append_message."""

    def test_duplicate_id_is_noop(self, store, conversation):
        message = make_text_message("customer", "Hi", message_id="m1")

        assert store.append_message(conversation.id, message) is True
        assert store.append_message(conversation.id, make_text_message("customer", "Hi again", message_id="m1")) is False

        assert [m.text for m in store.get(conversation.id).messages] == ["Hi"]

    def test_inserted_by_timestamp(self, store, conversation, clock):
        t0 = clock.now
        late = make_text_message("customer", "second", timestamp=t0 + timedelta(seconds=10))
        early = make_text_message("seller", "first", timestamp=t0 + timedelta(seconds=5))

        store.append_message(conversation.id, late)
        store.append_message(conversation.id, early)

        assert [m.text for m in store.get(conversation.id).messages] == ["first", "second"]
        assert store.get(conversation.id).last_message_at == late.timestamp

    def test_equal_timestamps_keep_arrival_order(self, store, conversation, clock):
        ts = clock.now
        for text in ("a", "b", "c"):
            store.append_message(conversation.id, make_text_message("customer", text, timestamp=ts))

        assert [m.text for m in store.get(conversation.id).messages] == ["a", "b", "c"]

    def test_append_makes_unread_for_recipient(self, store, conversation):
        store.mark_read(conversation.id, "seller")
        assert store.get(conversation.id).is_read_by_seller is True

        store.append_message(conversation.id, make_text_message("customer", "Price?"))

        assert store.get(conversation.id).is_read_by_seller is False

    def test_system_message_does_not_touch_read_flags(self, store, conversation):
        store.mark_read(conversation.id, "customer")
        store.mark_read(conversation.id, "seller")

        store.append_message(conversation.id, make_system_message("Offer accepted! The deal is confirmed."))

        conv = store.get(conversation.id)
        assert conv.is_read_by_customer is True
        assert conv.is_read_by_seller is True

    def test_append_saves_to_repository(self, clock):
        repository = InMemoryConversationRepository()
        store = ConversationStore(repository, clock=clock)
        conv = store.open_conversation(customer_id="c9", seller_id="s9", vehicle_id="v9")
        store.append_message(conv.id, make_text_message("seller", "Hello"))

        reloaded = ConversationStore(repository, clock=clock).get(conv.id)
        assert [m.text for m in reloaded.messages] == ["Hello"]


@pytest.mark.unit
class TestMarkRead:
    """Read flag monotonicity."""

    def test_marks_only_counterpart_messages(self, store, conversation):
        store.append_message(conversation.id, make_text_message("customer", "Hi", message_id="c-msg"))
        store.append_message(conversation.id, make_text_message("seller", "Hello", message_id="s-msg"))
        store.append_message(conversation.id, make_system_message("notice"))

        changed = store.mark_read(conversation.id, "customer")

        assert [m.id for m in changed] == ["s-msg"]
        conv = store.get(conversation.id)
        assert conv.find_message("c-msg").is_read is False
        assert conv.is_read_by_customer is True

    def test_repeat_is_idempotent(self, store, conversation):
        store.append_message(conversation.id, make_text_message("seller", "Hello"))

        assert len(store.mark_read(conversation.id, "customer")) == 1
        assert store.mark_read(conversation.id, "customer") == []

    def test_system_role_rejected(self, store, conversation):
        with pytest.raises(ValueError):
            store.mark_read(conversation.id, "system")


@pytest.mark.unit
class TestFlag:
    """Moderation flag."""

    def test_flag_once(self, store, conversation, clock):
        assert store.flag(conversation.id, "Spam") is True
        assert store.flag(conversation.id, "Again") is False

        conv = store.get(conversation.id)
        assert conv.is_flagged is True
        assert conv.flag_reason == "Spam"
        assert conv.flagged_at == clock.now

    def test_empty_reason_gets_default(self, store, conversation):
        store.flag(conversation.id, "")

        assert store.get(conversation.id).flag_reason == "No reason provided"


@pytest.mark.unit
class TestUnreadCount:
    """Derived unread counts."""

    def test_counts_counterpart_unread_only(self, store, conversation):
        store.append_message(conversation.id, make_text_message("seller", "one"))
        store.append_message(conversation.id, make_offer_message("seller", 800000))
        store.append_message(conversation.id, make_text_message("customer", "mine"))
        store.append_message(conversation.id, make_system_message("notice"))

        assert store.unread_count(conversation.id, "customer") == 2
        assert store.unread_count(conversation.id, "seller") == 1
        # Pure: asking again changes nothing
        assert store.unread_count(conversation.id, "customer") == 2

        store.mark_read(conversation.id, "customer")
        assert store.unread_count(conversation.id, "customer") == 0


@pytest.mark.unit
def test_list_for_participant(store, clock):
    older = store.open_conversation(customer_id="c1", seller_id="s1", vehicle_id="a")
    clock.advance(60)
    newer = store.open_conversation(customer_id="c1", seller_id="s2", vehicle_id="b")
    store.open_conversation(customer_id="c2", seller_id="s1", vehicle_id="c")

    listed = store.list_for_participant("c1", "customer")

    assert [c.id for c in listed] == [newer.id, older.id]
