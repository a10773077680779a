"""
Message protocol for marketplace conversations.

WHAT: Tagged-variant chat entries (text / offer / system) and the offer payload
WHY: Every component folds the same message shape into its own state
HOW: Pydantic v2 discriminated union on `type`, camelCase aliases for the wire
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from ..utils.exceptions import InvalidMessage, InvalidOfferAmount


Role = Literal["customer", "seller", "system"]
ParticipantRole = Literal["customer", "seller"]
MessageType = Literal["text", "offer", "system"]
DeliveryStatus = Literal["sent", "delivered", "read"]
OfferStatus = Literal["pending", "accepted", "rejected", "countered"]
OfferResponse = Literal["accepted", "rejected", "countered"]

STATUS_RANK: dict[str, int] = {"sent": 0, "delivered": 1, "read": 2}
TERMINAL_OFFER_STATUSES = frozenset({"accepted", "rejected", "countered"})


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    """Provisional client-side message id."""
    return uuid4().hex


def counterpart(role: str) -> ParticipantRole:
    """Return the other participant of a customer/seller pair."""
    if role == "customer":
        return "seller"
    if role == "seller":
        return "customer"
    raise ValueError(f"Role {role!r} has no counterpart")


class OfferPayload(BaseModel):
    """Negotiable price proposal carried by the offer arm."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    offer_price: int = Field(gt=0)
    status: OfferStatus = "pending"
    counter_price: int | None = Field(default=None, gt=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OFFER_STATUSES


class _MessageBase(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=new_message_id, min_length=1)
    sender: Role
    timestamp: datetime = Field(default_factory=utc_now)
    is_read: bool = False
    status: DeliveryStatus = "sent"

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Accept numeric ids from older clients."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive timestamps are treated as UTC so ordering never mixes kinds."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class TextMessage(_MessageBase):
    """Plain chat text."""

    type: Literal["text"] = "text"
    text: str = Field(min_length=1, max_length=5000)

    @field_validator("text")
    @classmethod
    def require_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        return v


class OfferMessage(_MessageBase):
    """Price proposal with its own lifecycle."""

    type: Literal["offer"] = "offer"
    text: str = ""
    payload: OfferPayload


class SystemMessage(_MessageBase):
    """Notice generated by the platform, never counted as unread."""

    type: Literal["system"] = "system"
    sender: Literal["system"] = "system"
    text: str = Field(min_length=1, max_length=5000)


Message = Annotated[Union[TextMessage, OfferMessage, SystemMessage], Field(discriminator="type")]

MessageAdapter: TypeAdapter[Message] = TypeAdapter(Message)


def _error_summary(exc: ValidationError) -> list[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]


def require_positive_amount(amount: Any) -> int:
    """
    Validate an offer or counter amount.

    Raises:
        InvalidOfferAmount: amount is not an int greater than zero
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidOfferAmount(amount)
    return amount


def make_text_message(
    sender: Role,
    text: str,
    *,
    message_id: str | None = None,
    timestamp: datetime | None = None,
) -> TextMessage:
    """
    Build a validated text message.

    Raises:
        InvalidMessage: text is missing or blank, or sender is unknown
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidMessage("Text message requires non-empty text")
    data: dict[str, Any] = {"sender": sender, "text": text.strip()}
    if message_id is not None:
        data["id"] = message_id
    if timestamp is not None:
        data["timestamp"] = timestamp
    try:
        return TextMessage(**data)
    except ValidationError as e:
        raise InvalidMessage("Invalid text message", details=_error_summary(e)) from e


def make_offer_message(
    sender: ParticipantRole,
    offer_price: int,
    *,
    message_id: str | None = None,
    timestamp: datetime | None = None,
) -> OfferMessage:
    """
    Build a new pending offer message.

    Raises:
        InvalidOfferAmount: offer_price is not a positive integer
        InvalidMessage: sender is not a customer or seller
    """
    if sender not in ("customer", "seller"):
        raise InvalidMessage(f"Offers can only be made by a customer or seller, not {sender!r}")
    price = require_positive_amount(offer_price)
    data: dict[str, Any] = {
        "sender": sender,
        "text": f"Offer: {price}",
        "payload": OfferPayload(offer_price=price, status="pending"),
    }
    if message_id is not None:
        data["id"] = message_id
    if timestamp is not None:
        data["timestamp"] = timestamp
    try:
        return OfferMessage(**data)
    except ValidationError as e:
        raise InvalidMessage("Invalid offer message", details=_error_summary(e)) from e


def make_system_message(text: str, *, timestamp: datetime | None = None) -> SystemMessage:
    """Build a system notice."""
    if not isinstance(text, str) or not text.strip():
        raise InvalidMessage("System message requires non-empty text")
    if timestamp is None:
        return SystemMessage(text=text)
    return SystemMessage(text=text, timestamp=timestamp)


def make_message(
    sender: Role,
    text: str,
    message_type: MessageType = "text",
    payload: dict[str, Any] | OfferPayload | None = None,
) -> Message:
    """
    Build a message from the `on_send_message(text, type, payload)` contract.

    Offer payloads must be pending at creation; any price in them goes
    through the same positive-amount check as `make_offer_message`.
    """
    if message_type == "text":
        return make_text_message(sender, text)
    if message_type == "system":
        return make_system_message(text)
    if message_type == "offer":
        if payload is None:
            raise InvalidMessage("Offer message requires a payload")
        if isinstance(payload, OfferPayload):
            payload = payload.model_dump()
        status = payload.get("status", "pending")
        if status != "pending":
            raise InvalidMessage(f"New offers must be pending, got {status!r}")
        price = payload.get("offer_price", payload.get("offerPrice"))
        return make_offer_message(sender, price)
    raise InvalidMessage(f"Unknown message type: {message_type!r}")


def parse_message(data: dict[str, Any]) -> Message:
    """
    Validate an inbound message dict (wire or storage shape).

    Messages without a `type` are treated as text, matching peers that only
    ever relay plain chat.

    Raises:
        InvalidMessage: data does not describe a valid message
    """
    if not isinstance(data, dict):
        raise InvalidMessage("Message must be an object")
    if "type" not in data:
        data = {**data, "type": "text"}
    try:
        return MessageAdapter.validate_python(data)
    except ValidationError as e:
        raise InvalidMessage("Invalid message", details=_error_summary(e)) from e


def dump_message(message: Message) -> dict[str, Any]:
    """Serialize a message to its camelCase JSON-ready form."""
    return message.model_dump(by_alias=True, mode="json", exclude_none=True)
