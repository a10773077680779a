"""
Conversation repository.

WHAT: Load/save interface for conversations plus in-memory and SQL implementations
WHY: Persistence is an explicit collaborator handed to the store, never an ambient lookup
HOW: Protocol for the contract; SQLAlchemy rows mapped to/from pydantic models
"""

from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from .database import SessionLocal, session_scope
from .models import ConversationRecord, ConversationMessageRecord
from ..models.conversation import Conversation
from ..models.message import Message, OfferMessage, parse_message
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConversationRepository(Protocol):
    """Protocol every conversation persistence backend implements."""

    def load(self, conversation_id: str) -> Conversation | None:
        """Return the stored conversation or None."""
        ...

    def save(self, conversation: Conversation) -> None:
        """Persist the full conversation state."""
        ...

    def list_for_participant(self, user_id: str, role: str) -> list[Conversation]:
        """Conversations where user_id takes part as role, newest activity first."""
        ...


class InMemoryConversationRepository:
    """Process-local repository; stores deep copies so callers cannot alias saved state."""

    def __init__(self):
        self._items: dict[str, Conversation] = {}

    def load(self, conversation_id: str) -> Conversation | None:
        stored = self._items.get(conversation_id)
        return stored.model_copy(deep=True) if stored else None

    def save(self, conversation: Conversation) -> None:
        self._items[conversation.id] = conversation.model_copy(deep=True)

    def list_for_participant(self, user_id: str, role: str) -> list[Conversation]:
        matches = [
            c.model_copy(deep=True)
            for c in self._items.values()
            if c.participant_id(role) == user_id
        ]
        return sorted(matches, key=lambda c: c.last_message_at, reverse=True)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_message(row: ConversationMessageRecord) -> Message:
    data = {
        "id": row.message_id,
        "sender": row.sender,
        "type": row.message_type,
        "text": row.text,
        "timestamp": _aware(row.timestamp),
        "is_read": row.is_read,
        "status": row.status,
    }
    if row.message_type == "offer":
        data["payload"] = {
            "offer_price": row.offer_price,
            "status": row.offer_status,
            "counter_price": row.counter_price,
        }
    return parse_message(data)


def _record_to_conversation(record: ConversationRecord) -> Conversation:
    return Conversation(
        id=record.id,
        vehicle_id=record.vehicle_id,
        vehicle_name=record.vehicle_name,
        vehicle_price=record.vehicle_price,
        customer_id=record.customer_id,
        customer_name=record.customer_name,
        seller_id=record.seller_id,
        messages=[_row_to_message(row) for row in record.messages],
        is_flagged=record.is_flagged,
        flag_reason=record.flag_reason,
        flagged_at=_aware(record.flagged_at),
        is_read_by_customer=record.is_read_by_customer,
        is_read_by_seller=record.is_read_by_seller,
        last_message_at=_aware(record.last_message_at),
    )


def _apply_message(row: ConversationMessageRecord, message: Message, position: int) -> None:
    row.position = position
    row.sender = message.sender
    row.message_type = message.type
    row.text = message.text
    row.timestamp = message.timestamp
    row.is_read = message.is_read
    row.status = message.status
    if isinstance(message, OfferMessage):
        row.offer_price = message.payload.offer_price
        row.offer_status = message.payload.status
        row.counter_price = message.payload.counter_price


class SQLConversationRepository:
    """
    SQLAlchemy-backed repository.

    WHAT: Persist conversations into the conversations/conversation_messages tables
    WHY: Conversations survive process restarts
    HOW: Full-state upsert per save; rows keyed by (conversation_id, message_id)
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def load(self, conversation_id: str) -> Conversation | None:
        with session_scope(self._session_factory) as db:
            record = db.execute(
                select(ConversationRecord)
                .options(selectinload(ConversationRecord.messages))
                .where(ConversationRecord.id == conversation_id)
            ).scalar_one_or_none()
            if record is None:
                return None
            return _record_to_conversation(record)

    def save(self, conversation: Conversation) -> None:
        with session_scope(self._session_factory) as db:
            record = db.get(ConversationRecord, conversation.id)
            if record is None:
                record = ConversationRecord(id=conversation.id)
                db.add(record)

            record.vehicle_id = conversation.vehicle_id
            record.vehicle_name = conversation.vehicle_name
            record.vehicle_price = conversation.vehicle_price
            record.customer_id = conversation.customer_id
            record.customer_name = conversation.customer_name
            record.seller_id = conversation.seller_id
            record.is_flagged = conversation.is_flagged
            record.flag_reason = conversation.flag_reason
            record.flagged_at = conversation.flagged_at
            record.is_read_by_customer = conversation.is_read_by_customer
            record.is_read_by_seller = conversation.is_read_by_seller
            record.last_message_at = conversation.last_message_at

            existing = {row.message_id: row for row in record.messages}
            for position, message in enumerate(conversation.messages):
                row = existing.get(message.id)
                if row is None:
                    row = ConversationMessageRecord(message_id=message.id)
                    record.messages.append(row)
                _apply_message(row, message, position)

        logger.debug(f"Saved conversation {conversation.id} ({len(conversation.messages)} messages)")

    def list_for_participant(self, user_id: str, role: str) -> list[Conversation]:
        column = ConversationRecord.customer_id if role == "customer" else ConversationRecord.seller_id
        with session_scope(self._session_factory) as db:
            records = db.execute(
                select(ConversationRecord)
                .options(selectinload(ConversationRecord.messages))
                .where(column == user_id)
                .order_by(ConversationRecord.last_message_at.desc())
            ).scalars().all()
            return [_record_to_conversation(r) for r in records]
