"""
Conversation command endpoints.

WHAT: Open/get/list conversations and run chat commands against them
WHY: HTTP surface for the marketplace pages (vehicle detail, seller dashboard)
HOW: FastAPI router delegating to ChatService; errors mapped by the error middleware
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query, status

from ...deps import get_chat_service
from ....models.api_schemas import (
    OpenConversationRequest,
    SendMessageRequest,
    MakeOfferRequest,
    OfferResponseRequest,
    OfferResponseResult,
    MarkReadRequest,
    MarkReadResponse,
    FlagRequest,
    FlagResponse,
    TypingRequest,
    TypingResponse,
    UnreadCountResponse,
)
from ....models.conversation import Conversation
from ....models.message import dump_message
from ....services.chat_service import ChatService
from ....services.offer_machine import latest_pending_offer
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _dump_conversation(conversation: Conversation) -> dict:
    data = conversation.model_dump(by_alias=True, mode="json", exclude={"messages"})
    data["messages"] = [dump_message(m) for m in conversation.messages]
    pending = latest_pending_offer(conversation)
    data["activeOfferId"] = pending.id if pending else None
    return data


@router.post("/conversations", status_code=status.HTTP_201_CREATED)
async def open_conversation(
    request: OpenConversationRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Get or create the thread for a customer/seller/vehicle triple."""
    conversation = service.store.open_conversation(
        customer_id=request.customer_id,
        seller_id=request.seller_id,
        vehicle_id=request.vehicle_id,
        vehicle_name=request.vehicle_name,
        vehicle_price=request.vehicle_price,
        customer_name=request.customer_name,
    )
    return _dump_conversation(conversation)


@router.get("/conversations")
async def list_conversations(
    user_id: str = Query(..., alias="userId"),
    role: Literal["customer", "seller"] = Query(...),
    service: ChatService = Depends(get_chat_service),
):
    """Conversations a participant takes part in, most recent first."""
    conversations = service.store.list_for_participant(user_id, role)
    return {
        "conversations": [
            {**c.summary(), "unread": service.unread_count(c.id, role)}
            for c in conversations
        ],
        "count": len(conversations),
    }


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    return _dump_conversation(service.store.get(conversation_id))


@router.post("/conversations/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    service: ChatService = Depends(get_chat_service),
):
    """Append a text message (or an offer, when type is offer)."""
    message = await service.send_message(
        conversation_id, request.sender, request.text, request.type, request.payload
    )
    return dump_message(message)


@router.post("/conversations/{conversation_id}/offers", status_code=status.HTTP_201_CREATED)
async def make_offer(
    conversation_id: str,
    request: MakeOfferRequest,
    service: ChatService = Depends(get_chat_service),
):
    offer = await service.make_offer(conversation_id, request.sender, request.offer_price)
    return dump_message(offer)


@router.post(
    "/conversations/{conversation_id}/offers/{message_id}/respond",
    response_model=OfferResponseResult,
)
async def respond_to_offer(
    conversation_id: str,
    message_id: str,
    request: OfferResponseRequest,
    service: ChatService = Depends(get_chat_service),
):
    """
    Accept, reject, or counter a pending offer.

    409 when the offer is no longer pending or the responder made it.
    """
    transition = await service.respond_to_offer(
        conversation_id, message_id, request.responder, request.response, request.counter_price
    )
    return OfferResponseResult(
        offer=dump_message(transition.offer),
        response=transition.response,
        counter_offer=dump_message(transition.counter_offer) if transition.counter_offer else None,
        notice=dump_message(transition.notice) if transition.notice else None,
    )


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: str,
    request: MarkReadRequest,
    service: ChatService = Depends(get_chat_service),
):
    changed = await service.mark_messages_as_read(conversation_id, request.reader)
    return MarkReadResponse(
        conversation_id=conversation_id,
        reader=request.reader,
        marked=[m.id for m in changed],
    )


@router.post("/conversations/{conversation_id}/flag", response_model=FlagResponse)
async def flag_conversation(
    conversation_id: str,
    request: FlagRequest,
    service: ChatService = Depends(get_chat_service),
):
    newly_flagged = await service.flag_content("conversation", conversation_id, request.reason)
    conversation = service.store.get(conversation_id)
    return FlagResponse(
        conversation_id=conversation_id,
        flagged=conversation.is_flagged,
        newly_flagged=newly_flagged,
        reason=conversation.flag_reason,
    )


@router.post("/conversations/{conversation_id}/typing", response_model=TypingResponse)
async def signal_typing(
    conversation_id: str,
    request: TypingRequest,
    service: ChatService = Depends(get_chat_service),
):
    await service.signal_typing(conversation_id, request.role)
    return TypingResponse(
        conversation_id=conversation_id,
        role=request.role,
        is_typing=service.is_typing(conversation_id, request.role),
    )


@router.get("/conversations/{conversation_id}/typing")
async def get_typing(conversation_id: str, service: ChatService = Depends(get_chat_service)):
    """Who is typing in this conversation right now, if anyone."""
    service.store.get(conversation_id)
    signal = service.presence.current()
    typing_role = signal.role if signal and signal.conversation_id == conversation_id else None
    return {"conversationId": conversation_id, "typingRole": typing_role}


@router.get("/conversations/{conversation_id}/unread", response_model=UnreadCountResponse)
async def unread_count(
    conversation_id: str,
    viewer: Literal["customer", "seller"] = Query(...),
    service: ChatService = Depends(get_chat_service),
):
    return UnreadCountResponse(
        conversation_id=conversation_id,
        viewer=viewer,
        unread=service.unread_count(conversation_id, viewer),
    )
