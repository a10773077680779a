"""
Tests for the chat service facade.

WHAT: Command ordering, collaborator callbacks, prefill, flagging, transport relay
WHY: Callbacks see committed state and never undo it
HOW: ChatService over the in-memory store; FakeConnector sessions for relay
"""

import pytest

from marketplace_chat.services.chat_service import ChatCallbacks, ChatService, PrefillContext
from marketplace_chat.services.presence import PresenceTracker
from marketplace_chat.services.widget_state import ChatWidgetState
from marketplace_chat.transport.session import Identity, TransportSession
from marketplace_chat.utils.exceptions import InvalidMessage, InvalidOfferAmount, StaleOfferAction
from tests.fixtures.fake_channel import FakeConnector, settle


class Recorder:
    """Callback double that records calls and what the store held at call time."""

    def __init__(self, store=None, conversation_id=None):
        self.calls = []
        self.store = store
        self.conversation_id = conversation_id
        self.seen_lengths = []

    def __call__(self, *args):
        self.calls.append(args)
        if self.store is not None:
            self.seen_lengths.append(len(self.store.get(self.conversation_id).messages))


@pytest.fixture
def presence(monotonic):
    return PresenceTracker(timeout_seconds=4, now_func=monotonic)


@pytest.fixture
def service(store, presence, clock):
    return ChatService(store, presence=presence, clock=clock)


@pytest.mark.unit
@pytest.mark.asyncio
class TestSendMessage:

    async def test_callback_sees_appended_message(self, store, presence, clock, conversation):
        recorder = Recorder(store, conversation.id)
        service = ChatService(store, presence=presence, clock=clock,
                              callbacks=ChatCallbacks(on_send_message=recorder))

        message = await service.send_message(conversation.id, "customer", "  Is it available?  ")

        assert message.text == "Is it available?"
        assert recorder.calls == [("Is it available?", "text", None)]
        assert recorder.seen_lengths == [1]

    async def test_async_callback_awaited(self, store, conversation):
        seen = []

        async def on_send(text, message_type, payload):
            seen.append(text)

        service = ChatService(store, callbacks=ChatCallbacks(on_send_message=on_send))
        await service.send_message(conversation.id, "seller", "Yes it is")

        assert seen == ["Yes it is"]

    async def test_failing_callback_does_not_roll_back(self, store, conversation):
        def broken(*args):
            raise RuntimeError("analytics down")

        service = ChatService(store, callbacks=ChatCallbacks(on_send_message=broken))
        message = await service.send_message(conversation.id, "customer", "still saved")

        assert store.get(conversation.id).messages == [message]

    async def test_blank_text_rejected_before_storing(self, service, store, conversation):
        with pytest.raises(InvalidMessage):
            await service.send_message(conversation.id, "customer", "   ")

        assert store.get(conversation.id).messages == []

    async def test_send_clears_own_typing(self, service, conversation):
        await service.signal_typing(conversation.id, "customer")
        assert service.is_typing(conversation.id, "customer") is True

        await service.send_message(conversation.id, "customer", "done typing")

        assert service.is_typing(conversation.id, "customer") is False

    async def test_offer_type_routes_to_offer_machine(self, store, conversation):
        recorder = Recorder()
        service = ChatService(store, callbacks=ChatCallbacks(on_send_message=recorder))

        offer = await service.send_message(conversation.id, "customer", "", "offer", {"offerPrice": 800000})

        assert offer.type == "offer"
        assert offer.payload.offer_price == 800000
        assert recorder.calls == [(offer.text, "offer", {"offerPrice": 800000, "status": "pending"})]

    async def test_offer_with_bad_amount_stores_nothing(self, service, store, conversation):
        with pytest.raises(InvalidOfferAmount):
            await service.send_message(conversation.id, "customer", "", "offer", {"offerPrice": -5})

        assert store.get(conversation.id).messages == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestOffers:

    async def test_respond_invokes_callback_after_transition(self, store, clock, conversation):
        responses = Recorder()
        service = ChatService(store, clock=clock, callbacks=ChatCallbacks(on_offer_response=responses))
        offer = await service.make_offer(conversation.id, "customer", 800000)

        transition = await service.respond_to_offer(conversation.id, offer.id, "seller", "countered", 830000)

        assert transition.counter_offer.payload.offer_price == 830000
        assert responses.calls == [(conversation.id, offer.id, "countered", 830000)]

    async def test_stale_response_skips_callback(self, store, clock, conversation):
        responses = Recorder()
        service = ChatService(store, clock=clock, callbacks=ChatCallbacks(on_offer_response=responses))
        offer = await service.make_offer(conversation.id, "customer", 800000)
        await service.respond_to_offer(conversation.id, offer.id, "seller", "accepted")

        with pytest.raises(StaleOfferAction):
            await service.respond_to_offer(conversation.id, offer.id, "seller", "rejected")

        assert len(responses.calls) == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestReadFlagTyping:

    async def test_mark_read_callback(self, store, conversation):
        reads = Recorder()
        service = ChatService(store, callbacks=ChatCallbacks(on_mark_messages_as_read=reads))
        await service.send_message(conversation.id, "seller", "Hello")

        changed = await service.mark_messages_as_read(conversation.id, "customer")

        assert len(changed) == 1
        assert reads.calls == [(conversation.id, "customer")]
        assert service.unread_count(conversation.id, "customer") == 0

    async def test_flag_conversation_once(self, store, conversation):
        flags = Recorder()
        service = ChatService(store, callbacks=ChatCallbacks(on_flag_content=flags))

        assert await service.flag_content("conversation", conversation.id, "spam") is True
        assert await service.flag_content("conversation", conversation.id, "again") is False

        assert store.get(conversation.id).flag_reason == "spam"
        assert len(flags.calls) == 2

    async def test_flag_vehicle_only_notifies(self, store, conversation):
        flags = Recorder()
        service = ChatService(store, callbacks=ChatCallbacks(on_flag_content=flags))

        assert await service.flag_content("vehicle", "42") is False

        assert store.get(conversation.id).is_flagged is False
        assert flags.calls == [("vehicle", "42", "No reason provided")]

    async def test_typing_callback(self, store, presence, conversation):
        typing = Recorder()
        service = ChatService(store, presence=presence, callbacks=ChatCallbacks(on_user_typing=typing))

        await service.signal_typing(conversation.id, "seller")

        assert typing.calls == [(conversation.id, "seller")]
        assert service.is_typing(conversation.id, "seller") is True


@pytest.mark.unit
def test_prefill_consumed_once(store):
    service = ChatService(store, prefill=PrefillContext(draft_text="Is this still available?", offer_price=800000))

    first = service.consume_prefill()
    assert first.draft_text == "Is this still available?"
    assert first.offer_price == 800000
    assert service.consume_prefill() is None


@pytest.mark.unit
@pytest.mark.asyncio
class TestRelay:

    async def _attached(self, service, store, conversation, role="customer"):
        connector = FakeConnector()
        session = TransportSession(
            store=store,
            conversation_id=conversation.id,
            identity=Identity(role=role, user_id="c1", user_name="Asha"),
            connector=connector,
            reconnect_delay=0.01,
        )
        await session.open()
        service.attach_transport(session)
        return session, connector

    async def test_own_messages_relayed(self, service, store, conversation):
        session, connector = await self._attached(service, store, conversation)

        message = await service.send_message(conversation.id, "customer", "Hi there")
        await service.signal_typing(conversation.id, "customer")

        frames = connector.current.sent
        assert [f["type"] for f in frames] == ["init", "message", "typing"]
        assert frames[1]["id"] == message.id
        assert frames[2]["isTyping"] is True
        assert message.id in session.pending
        await service.close()

    async def test_other_role_not_relayed(self, service, store, conversation):
        _, connector = await self._attached(service, store, conversation)

        await service.send_message(conversation.id, "seller", "typed on the seller console")

        assert connector.current.sent_of_type("message") == []
        await service.close()

    async def test_read_receipt_relayed_only_when_changed(self, service, store, conversation):
        _, connector = await self._attached(service, store, conversation)
        await service.send_message(conversation.id, "seller", "Hello")

        await service.mark_messages_as_read(conversation.id, "customer")
        await service.mark_messages_as_read(conversation.id, "customer")

        assert connector.current.sent_of_type("read") == [{"type": "read", "reader": "customer"}]
        await service.close()

    async def test_close_detaches_sessions(self, service, store, conversation):
        session, connector = await self._attached(service, store, conversation)

        await service.close()

        assert service.transport_for(conversation.id) is None
        assert connector.current.closed is True

    async def test_connect_drives_widget(self, service, store, conversation):
        connector = FakeConnector()
        widget = ChatWidgetState(store, conversation.id, "customer")

        session = await service.connect(
            conversation.id,
            Identity(role="customer", user_id="c1", user_name="Asha"),
            widget=widget,
            connector=connector,
            reconnect_delay=0.01,
        )

        assert service.transport_for(conversation.id) is session
        assert session.receipts is service.receipts
        assert widget.connected is True
        assert widget.is_open is True

        widget.minimize()
        connector.current.push({
            "type": "message", "id": "s-1", "text": "Still available",
            "sender": "seller", "timestamp": "2024-05-01T12:00:30Z",
        })
        await settle()

        assert widget.is_open is True
        assert widget.unread_count == 1

        await service.close()
        assert widget.connected is False

    async def test_connect_keeps_manually_closed_widget_closed(self, service, store, conversation):
        connector = FakeConnector()
        widget = ChatWidgetState(store, conversation.id, "customer")
        widget.attach()
        widget.close()

        await service.connect(
            conversation.id,
            Identity(role="customer", user_id="c1"),
            widget=widget,
            connector=connector,
        )
        connector.current.push({
            "type": "message", "id": "s-1", "text": "Hello?",
            "sender": "seller", "timestamp": "2024-05-01T12:00:30Z",
        })
        await settle()

        assert widget.is_open is False
        await service.close()
