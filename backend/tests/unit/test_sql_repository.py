"""
Tests for the SQL conversation repository.

WHAT: Round-trip of conversations, messages, and offer payloads through SQLite
WHY: A restarted process must see the same thread, offers, and read flags
HOW: In-memory SQLite with the real schema via sql_session_factory
"""

import pytest

from marketplace_chat.core.repository import SQLConversationRepository
from marketplace_chat.models.message import OfferMessage, make_text_message
from marketplace_chat.services.conversation_store import ConversationStore
from marketplace_chat.services.offer_machine import OfferStateMachine


@pytest.fixture
def repository(sql_session_factory):
    return SQLConversationRepository(sql_session_factory)


def open_conversation(store, seller_id="s1"):
    return store.open_conversation(
        customer_id="c1",
        seller_id=seller_id,
        vehicle_id=42,
        vehicle_name="2019 Honda City",
        vehicle_price=850000,
        customer_name="Asha",
    )


@pytest.mark.unit
class TestSQLRepository:

    def test_load_missing(self, repository):
        assert repository.load("nope") is None

    def test_round_trip_with_offer(self, repository, clock):
        store = ConversationStore(repository, clock=clock)
        conversation = open_conversation(store)
        store.append_message(conversation.id, make_text_message("customer", "Hi", timestamp=clock()))
        clock.advance(1)
        offer = OfferStateMachine(store, clock=clock).make_offer(conversation.id, "customer", 800000)

        loaded = repository.load(conversation.id)

        assert loaded.vehicle_id == "42"
        assert loaded.vehicle_price == 850000
        assert [m.id for m in loaded.messages] == [m.id for m in conversation.messages]
        stored_offer = loaded.find_message(offer.id)
        assert isinstance(stored_offer, OfferMessage)
        assert stored_offer.payload.offer_price == 800000
        assert stored_offer.payload.status == "pending"
        assert loaded.messages[0].timestamp.tzinfo is not None

    def test_in_place_updates_persisted(self, repository, clock):
        store = ConversationStore(repository, clock=clock)
        conversation = open_conversation(store)
        machine = OfferStateMachine(store, clock=clock)
        offer = machine.make_offer(conversation.id, "customer", 800000)
        clock.advance(1)

        machine.respond(conversation.id, offer.id, "seller", "countered", 830000)
        store.mark_read(conversation.id, "seller")
        store.flag(conversation.id, "spam")

        loaded = repository.load(conversation.id)
        original = loaded.find_message(offer.id)
        assert original.payload.status == "countered"
        assert original.payload.counter_price == 830000
        assert original.is_read is True
        assert loaded.messages[-1].payload.offer_price == 830000
        assert loaded.messages[-1].sender == "seller"
        assert loaded.is_flagged is True
        assert loaded.flag_reason == "spam"
        assert loaded.is_read_by_seller is True

    def test_list_newest_first(self, repository, clock):
        store = ConversationStore(repository, clock=clock)
        older = open_conversation(store, seller_id="s1")
        clock.advance(10)
        newer = open_conversation(store, seller_id="s2")

        listed = repository.list_for_participant("c1", "customer")

        assert [c.id for c in listed] == [newer.id, older.id]
        assert repository.list_for_participant("s2", "seller")[0].id == newer.id
        assert repository.list_for_participant("c1", "seller") == []

    def test_store_state_survives_new_instance(self, repository, clock):
        first = ConversationStore(repository, clock=clock)
        conversation = open_conversation(first)
        message = make_text_message("seller", "Still available", timestamp=clock())
        first.append_message(conversation.id, message)

        second = ConversationStore(repository, clock=clock)

        assert second.get(conversation.id).messages[0].id == message.id
        assert second.unread_count(conversation.id, "customer") == 1
        assert open_conversation(second).id == conversation.id
        assert len(second.get(conversation.id).messages) == 1
