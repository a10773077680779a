"""
Conversation model.

WHAT: A thread between one customer and one seller about one vehicle listing
WHY: Owns the ordered messages plus read/flag state for both parties
HOW: Pydantic v2 model; the store is the only writer
"""

from datetime import datetime
from typing import Any, Iterator

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .message import Message, OfferMessage, utc_now


def conversation_key(customer_id: str, seller_id: str, vehicle_id: Any) -> str:
    """Stable conversation id for a customer/seller/vehicle triple."""
    return f"{customer_id}_{seller_id}_{vehicle_id}"


class Conversation(BaseModel):
    """Persistent thread state."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    vehicle_id: str
    vehicle_name: str = ""
    vehicle_price: int | None = None
    customer_id: str
    customer_name: str = ""
    seller_id: str
    messages: list[Message] = Field(default_factory=list)
    is_flagged: bool = False
    flag_reason: str | None = None
    flagged_at: datetime | None = None
    is_read_by_customer: bool = False
    is_read_by_seller: bool = False
    last_message_at: datetime = Field(default_factory=utc_now)

    @field_validator("vehicle_id", mode="before")
    @classmethod
    def coerce_vehicle_id(cls, v):
        return str(v) if isinstance(v, int) else v

    def find_message(self, message_id: str) -> Message | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def has_message(self, message_id: str) -> bool:
        return self.find_message(message_id) is not None

    def offers(self) -> Iterator[OfferMessage]:
        for message in self.messages:
            if isinstance(message, OfferMessage):
                yield message

    def participant_id(self, role: str) -> str:
        if role == "customer":
            return self.customer_id
        if role == "seller":
            return self.seller_id
        raise ValueError(f"Unknown participant role: {role}")

    def summary(self) -> dict[str, Any]:
        """Listing view without the message bodies."""
        return {
            "id": self.id,
            "vehicleId": self.vehicle_id,
            "vehicleName": self.vehicle_name,
            "customerId": self.customer_id,
            "sellerId": self.seller_id,
            "messageCount": len(self.messages),
            "isFlagged": self.is_flagged,
            "lastMessageAt": self.last_message_at.isoformat(),
        }
