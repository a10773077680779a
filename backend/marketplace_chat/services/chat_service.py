"""
Chat service facade.

WHAT: Single entry point for UI commands (send, offer, respond, read, typing, flag)
WHY: Every command follows the same order: local mutation, collaborator callback, transport relay
HOW: Composes store, offer machine, receipts, presence, and per-conversation transport sessions
"""

import inspect
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from .conversation_store import ConversationStore
from .offer_machine import OfferStateMachine, OfferTransition
from .presence import PresenceTracker
from .read_receipts import ReadReceiptTracker
from .widget_state import ChatWidgetState
from ..models.message import Message, MessageType, OfferMessage, make_message, utc_now
from ..transport.session import Identity, SendOutcome, TransportSession
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ChatCallbacks:
    """
    Optional collaborator hooks, sync or async.

    Called after the local state change; a failing hook is logged and does
    not roll the change back.
    """
    on_send_message: Callable[..., Any] | None = None          # (text, type, payload)
    on_user_typing: Callable[..., Any] | None = None           # (conversation_id, role)
    on_mark_messages_as_read: Callable[..., Any] | None = None  # (conversation_id, role)
    on_flag_content: Callable[..., Any] | None = None          # (kind, target_id, reason)
    on_offer_response: Callable[..., Any] | None = None        # (conversation_id, message_id, response, counter_price)


@dataclass
class PrefillContext:
    """Draft text and/or offer price handed over by the page that opened the chat."""
    draft_text: str | None = None
    offer_price: int | None = None


class ChatService:
    """Command facade over the chat core."""

    def __init__(
        self,
        store: ConversationStore,
        *,
        presence: PresenceTracker | None = None,
        callbacks: ChatCallbacks | None = None,
        prefill: PrefillContext | None = None,
        clock: Callable[[], datetime] = utc_now,
        post_offer_notices: bool = True,
    ):
        self.store = store
        self.presence = presence or PresenceTracker()
        self.callbacks = callbacks or ChatCallbacks()
        self.offers = OfferStateMachine(store, clock=clock, post_notices=post_offer_notices)
        self.receipts = ReadReceiptTracker(store)
        self._prefill = prefill
        self._transports: dict[str, TransportSession] = {}

    # ========== Wiring ==========

    def attach_transport(self, session: TransportSession) -> None:
        """Relay commands for session.conversation_id through session."""
        self._transports[session.conversation_id] = session

    async def detach_transport(self, conversation_id: str) -> None:
        session = self._transports.pop(conversation_id, None)
        if session is not None:
            await session.close()

    def transport_for(self, conversation_id: str) -> TransportSession | None:
        return self._transports.get(conversation_id)

    async def connect(
        self,
        conversation_id: str,
        identity: Identity,
        *,
        widget: ChatWidgetState | None = None,
        **transport_options,
    ) -> TransportSession:
        """
        Open a transport session for conversation_id and attach it.

        The session shares this service's receipts and presence. With a
        widget, inbound counterpart messages expand it and connection changes
        update its indicator; a widget the user closed stays closed.

        Args:
            transport_options: Passed to TransportSession (connector, rest_client, url, ...)
        """
        self.store.get(conversation_id)
        await self.detach_transport(conversation_id)

        session = TransportSession(
            store=self.store,
            conversation_id=conversation_id,
            identity=identity,
            receipts=self.receipts,
            presence=self.presence,
            on_message=widget.on_inbound_message if widget is not None else None,
            on_state_change=widget.on_transport_state if widget is not None else None,
            **transport_options,
        )
        self.attach_transport(session)
        await session.open()
        if widget is not None:
            widget.attach()
        return session

    def consume_prefill(self) -> PrefillContext | None:
        """Return the prefill once; later calls get None."""
        prefill, self._prefill = self._prefill, None
        return prefill

    async def _invoke(self, name: str, *args) -> None:
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Callback {name} failed: {e}", exc_info=True)

    async def _relay(self, conversation_id: str, role: str, messages: list[Message]) -> list[SendOutcome]:
        session = self._transports.get(conversation_id)
        if session is None or session.identity.role != role:
            return []
        return [await session.send(message) for message in messages]

    # ========== Commands ==========

    async def send_message(
        self,
        conversation_id: str,
        sender: str,
        text: str,
        message_type: MessageType = "text",
        payload: dict[str, Any] | None = None,
    ) -> Message:
        """
        Create a message, append it, notify, and relay.

        Raises:
            InvalidMessage / InvalidOfferAmount: before anything is stored
        """
        if message_type == "offer":
            price = (payload or {}).get("offer_price", (payload or {}).get("offerPrice"))
            # Validates the whole payload first, status included
            make_message(sender, text, message_type, payload)
            return await self.make_offer(conversation_id, sender, price)

        message = make_message(sender, text, message_type, payload)
        self.store.append_message(conversation_id, message)
        if self.presence.clear_typing(conversation_id, sender):
            logger.debug(f"Typing cleared for {sender} on send")
        await self._invoke("on_send_message", message.text, message.type, None)
        await self._relay(conversation_id, sender, [message])
        return message

    async def make_offer(self, conversation_id: str, sender: str, offer_price: int) -> OfferMessage:
        offer = self.offers.make_offer(conversation_id, sender, offer_price)
        await self._invoke(
            "on_send_message",
            offer.text,
            "offer",
            {"offerPrice": offer.payload.offer_price, "status": "pending"},
        )
        await self._relay(conversation_id, sender, [offer])
        return offer

    async def respond_to_offer(
        self,
        conversation_id: str,
        message_id: str,
        responder: str,
        response: str,
        counter_price: int | None = None,
    ) -> OfferTransition:
        """
        Accept, reject, or counter a pending offer.

        Raises:
            StaleOfferAction: nothing changed; the caller should refresh its view
        """
        transition = self.offers.respond(conversation_id, message_id, responder, response, counter_price)
        await self._invoke("on_offer_response", conversation_id, message_id, response, counter_price)

        follow_ups = [m for m in (transition.counter_offer, transition.notice) if m is not None]
        await self._relay(conversation_id, responder, follow_ups)
        return transition

    async def mark_messages_as_read(self, conversation_id: str, reader_role: str) -> list[Message]:
        changed = self.receipts.mark_messages_as_read(conversation_id, reader_role)
        await self._invoke("on_mark_messages_as_read", conversation_id, reader_role)

        session = self._transports.get(conversation_id)
        if changed and session is not None and session.identity.role == reader_role:
            await session.send_read_receipt()
        return changed

    async def signal_typing(self, conversation_id: str, role: str) -> None:
        self.store.get(conversation_id)
        self.presence.signal_typing(conversation_id, role)
        await self._invoke("on_user_typing", conversation_id, role)

        session = self._transports.get(conversation_id)
        if session is not None and session.identity.role == role:
            await session.send_typing(True)

    async def flag_content(self, kind: str, target_id: str, reason: str = "") -> bool:
        """
        Report content for moderation.

        Only conversations are flagged locally; other kinds (e.g. vehicle
        listings) are passed to the collaborator only.

        Returns:
            True if a conversation was newly flagged
        """
        flagged = False
        if kind == "conversation":
            flagged = self.store.flag(target_id, reason)
        await self._invoke("on_flag_content", kind, target_id, reason or "No reason provided")
        return flagged

    def unread_count(self, conversation_id: str, viewer_role: str) -> int:
        return self.store.unread_count(conversation_id, viewer_role)

    def is_typing(self, conversation_id: str, role: str) -> bool:
        return self.presence.is_typing(conversation_id, role)

    async def close(self) -> None:
        """Tear down every attached transport session."""
        for conversation_id in list(self._transports):
            await self.detach_transport(conversation_id)
