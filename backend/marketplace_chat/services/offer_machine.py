"""
Offer negotiation state machine.

WHAT: Lifecycle of offer messages (pending -> accepted / rejected / countered)
WHY: Keep the full offer history auditable and block self-acceptance
HOW: Validate the transition, mutate the payload in place, append follow-ups via the store
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .conversation_store import ConversationStore, PARTICIPANT_ROLES
from ..models.conversation import Conversation
from ..models.message import (
    OfferMessage,
    OfferResponse,
    SystemMessage,
    make_offer_message,
    make_system_message,
    require_positive_amount,
    utc_now,
)
from ..utils.exceptions import InvalidMessage, StaleOfferAction
from ..utils.logger import get_logger

logger = get_logger(__name__)

OFFER_RESPONSES = ("accepted", "rejected", "countered")

OFFER_NOTICES = {
    "accepted": "Offer accepted! The deal is confirmed.",
    "rejected": "Offer declined. Thank you for your interest.",
}


@dataclass
class OfferTransition:
    """Outcome of a successful offer response."""
    offer: OfferMessage
    response: OfferResponse
    counter_offer: OfferMessage | None = None
    notice: SystemMessage | None = None


def latest_pending_offer(conversation: Conversation) -> OfferMessage | None:
    """
    Most recent offer still awaiting an answer.

    Several offers may be pending at once; surfaces that want a single
    "active" offer highlight this one.
    """
    pending = [o for o in conversation.offers() if o.payload.status == "pending"]
    return pending[-1] if pending else None


class OfferStateMachine:
    """
    Apply offer transitions against a ConversationStore.

    Transition table:
        pending + accepted/rejected/countered by responder != sender -> applied
        terminal + anything -> StaleOfferAction, no change
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        clock: Callable[[], datetime] = utc_now,
        post_notices: bool = True,
    ):
        self.store = store
        self._clock = clock
        self.post_notices = post_notices

    def _next_timestamp(self, conversation: Conversation) -> datetime:
        # Follow-ups must sort after everything already in the thread
        now = self._clock()
        if conversation.messages and conversation.messages[-1].timestamp > now:
            return conversation.messages[-1].timestamp
        return now

    def make_offer(self, conversation_id: str, sender: str, offer_price: int) -> OfferMessage:
        """
        Append a new pending offer.

        Raises:
            InvalidOfferAmount: offer_price is not a positive integer
            InvalidMessage: sender is not a participant
        """
        conversation = self.store.get(conversation_id)
        offer = make_offer_message(sender, offer_price, timestamp=self._next_timestamp(conversation))
        self.store.append_message(conversation_id, offer)
        logger.info(f"Offer {offer.id} of {offer.payload.offer_price} by {sender} in {conversation_id}")
        return offer

    def respond(
        self,
        conversation_id: str,
        message_id: str,
        responder: str,
        response: str,
        counter_price: int | None = None,
    ) -> OfferTransition:
        """
        Answer a pending offer.

        Args:
            conversation_id: Conversation holding the offer
            message_id: Offer message id
            responder: Role answering the offer
            response: accepted, rejected, or countered
            counter_price: Required positive amount when countering

        Returns:
            OfferTransition describing the applied change

        Raises:
            StaleOfferAction: offer is terminal or responder made the offer
            InvalidOfferAmount: counter_price missing or not positive
            InvalidMessage: message is not an offer, or response/responder unknown
        """
        if response not in OFFER_RESPONSES:
            raise InvalidMessage(f"Unknown offer response: {response!r}")
        if responder not in PARTICIPANT_ROLES:
            raise InvalidMessage(f"Offers can only be answered by a customer or seller, not {responder!r}")

        conversation = self.store.get(conversation_id)
        offer = self.store.get_message(conversation_id, message_id)
        if not isinstance(offer, OfferMessage):
            raise InvalidMessage(f"Message {message_id} is not an offer")

        payload = offer.payload
        if payload.is_terminal:
            logger.info(f"Stale action {response} on {payload.status} offer {message_id}")
            raise StaleOfferAction(message_id, payload.status, f"offer is already {payload.status}")
        if responder == offer.sender:
            logger.info(f"{responder} tried to answer own offer {message_id}")
            raise StaleOfferAction(message_id, payload.status, "the offer's sender cannot answer it")

        if response == "countered":
            price = require_positive_amount(counter_price)
            counter_offer = make_offer_message(
                responder, price, timestamp=self._next_timestamp(conversation)
            )
            payload.status = "countered"
            payload.counter_price = price
            self.store.append_message(conversation_id, counter_offer)
            logger.info(f"Offer {message_id} countered at {price} by {responder} (new offer {counter_offer.id})")
            return OfferTransition(offer=offer, response="countered", counter_offer=counter_offer)

        payload.status = response
        notice = None
        if self.post_notices:
            notice = make_system_message(OFFER_NOTICES[response], timestamp=self._next_timestamp(conversation))
            self.store.append_message(conversation_id, notice)
        else:
            self.store.save(conversation_id)
        logger.info(f"Offer {message_id} {response} by {responder}")
        return OfferTransition(offer=offer, response=response, notice=notice)
