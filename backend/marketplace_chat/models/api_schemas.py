"""
Pydantic API schemas for the chat endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and camelCase serialization matching the chat widget
HOW: Pydantic v2 models with aliases and constraints
"""

from typing import Optional, List, Dict, Literal, Any
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Support chat (REST fallback peer) ==========

class ChatPostRequest(_CamelModel):
    """Body of POST /api/chat."""
    message: str = Field(..., max_length=5000, description="Visitor message text")
    user_id: Optional[str] = Field(default=None, description="Signed-in user id")
    user_name: Optional[str] = Field(default=None, max_length=100, description="Display name")
    session_id: Optional[str] = Field(default=None, description="Existing session id")
    role: Literal["customer", "seller"] = Field(default="customer", description="Sender role")
    message_id: Optional[str] = Field(default=None, max_length=100, description="Client message id")


class ChatPostResponse(_CamelModel):
    success: bool
    response: Optional[str] = None
    session_id: Optional[str] = None
    message_id: Optional[str] = None


class ChatHistoryResponse(_CamelModel):
    success: bool
    messages: List[Dict[str, Any]]
    count: int


class ChatSessionsResponse(_CamelModel):
    success: bool
    sessions: List[Dict[str, Any]]
    count: int


# ========== Conversations ==========

class OpenConversationRequest(_CamelModel):
    """Start (or resume) the thread for a customer/seller/vehicle triple."""
    customer_id: str = Field(..., min_length=1, max_length=100)
    seller_id: str = Field(..., min_length=1, max_length=100)
    vehicle_id: str = Field(..., min_length=1, max_length=100)
    vehicle_name: str = Field(default="", max_length=200)
    vehicle_price: Optional[int] = Field(default=None, ge=0)
    customer_name: str = Field(default="", max_length=100)


class SendMessageRequest(_CamelModel):
    sender: Literal["customer", "seller"]
    text: str = Field(default="", max_length=5000)
    type: Literal["text", "offer"] = "text"
    payload: Optional[Dict[str, Any]] = None


class MakeOfferRequest(_CamelModel):
    sender: Literal["customer", "seller"]
    offer_price: int = Field(..., description="Positive whole-currency amount")


class OfferResponseRequest(_CamelModel):
    responder: Literal["customer", "seller"]
    response: Literal["accepted", "rejected", "countered"]
    counter_price: Optional[int] = None


class OfferResponseResult(_CamelModel):
    offer: Dict[str, Any]
    response: str
    counter_offer: Optional[Dict[str, Any]] = None
    notice: Optional[Dict[str, Any]] = None


class MarkReadRequest(_CamelModel):
    reader: Literal["customer", "seller"]


class MarkReadResponse(_CamelModel):
    conversation_id: str
    reader: str
    marked: List[str] = Field(description="Ids whose read flag flipped on this call")


class FlagRequest(_CamelModel):
    reason: str = Field(default="", max_length=500)


class FlagResponse(_CamelModel):
    conversation_id: str
    flagged: bool
    newly_flagged: bool
    reason: Optional[str] = None


class TypingRequest(_CamelModel):
    role: Literal["customer", "seller"]


class TypingResponse(_CamelModel):
    conversation_id: str
    role: str
    is_typing: bool


class UnreadCountResponse(_CamelModel):
    conversation_id: str
    viewer: str
    unread: int
