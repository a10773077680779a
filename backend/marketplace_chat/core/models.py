"""
ORM models for chat persistence.

WHAT: SQLAlchemy models for conversations, their messages, and support-chat sessions
WHY: Back the Conversation Repository and the REST/websocket support peer
HOW: Declarative models with constraints, relationships, and indexes
"""

from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationRecord(Base):
    """
    Conversation table - one thread per customer/seller/vehicle.

    WHAT: Conversation header with read and moderation flags
    WHY: Conversations outlive a single application session
    HOW: Primary key is the stable conversation key
    """
    __tablename__ = "conversations"

    id = Column(String(255), primary_key=True)
    vehicle_id = Column(String(100), nullable=False)
    vehicle_name = Column(String(200), nullable=False, default="")
    vehicle_price = Column(Integer, nullable=True)
    customer_id = Column(String(100), nullable=False)
    customer_name = Column(String(100), nullable=False, default="")
    seller_id = Column(String(100), nullable=False)
    is_flagged = Column(Boolean, nullable=False, default=False)
    flag_reason = Column(Text, nullable=True)
    flagged_at = Column(DateTime(timezone=True), nullable=True)
    is_read_by_customer = Column(Boolean, nullable=False, default=False)
    is_read_by_seller = Column(Boolean, nullable=False, default=False)
    last_message_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    messages = relationship(
        "ConversationMessageRecord",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMessageRecord.position"
    )

    __table_args__ = (
        Index("idx_conversations_seller_last", "seller_id", "last_message_at"),
        Index("idx_conversations_customer_last", "customer_id", "last_message_at"),
        Index("idx_conversations_vehicle_customer", "vehicle_id", "customer_id"),
    )

    def __repr__(self):
        return f"<ConversationRecord(id={self.id}, messages={len(self.messages)})>"


class ConversationMessageRecord(Base):
    """
    Message table - messages of a conversation in stored order.

    WHAT: One row per message, offer payload flattened into columns
    WHY: Query offers and unread state without decoding blobs
    HOW: Foreign key to ConversationRecord, unique (conversation, message id)
    """
    __tablename__ = "conversation_messages"

    row_id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(255), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    message_id = Column(String(100), nullable=False)
    position = Column(Integer, nullable=False)
    sender = Column(String(20), nullable=False)
    message_type = Column(String(20), nullable=False)
    text = Column(Text, nullable=False, default="")
    timestamp = Column(DateTime(timezone=True), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="sent")
    offer_price = Column(Integer, nullable=True)
    offer_status = Column(String(20), nullable=True)
    counter_price = Column(Integer, nullable=True)

    conversation = relationship("ConversationRecord", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("conversation_id", "message_id", name="uq_conversation_message"),
        CheckConstraint("sender IN ('customer', 'seller', 'system')", name="check_sender_valid"),
        CheckConstraint("offer_price IS NULL OR offer_price > 0", name="check_offer_price_positive"),
        CheckConstraint("counter_price IS NULL OR counter_price > 0", name="check_counter_price_positive"),
    )

    def __repr__(self):
        return f"<ConversationMessageRecord(id={self.message_id}, type={self.message_type})>"


class ChatSession(Base):
    """
    Support-chat session table.

    WHAT: One row per websocket/REST support session
    WHY: Anonymous and signed-in visitors resume their history by session id
    HOW: Primary key on session_id, messages cascade
    """
    __tablename__ = "chat_sessions"

    session_id = Column(String(100), primary_key=True)
    user_id = Column(String(200), nullable=True, index=True)
    user_name = Column(String(100), nullable=False, default="Guest")
    role = Column(String(20), nullable=False, default="customer")
    status = Column(String(20), nullable=False, default="active")
    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    metadata_json = Column(JSON, nullable=True)

    messages = relationship("ChatMessageRecord", back_populates="session", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<ChatSession(session_id={self.session_id}, status={self.status})>"


class ChatMessageRecord(Base):
    """
    Support-chat message table.

    WHAT: Messages exchanged between a visitor and the support bot
    WHY: History replay on init and via GET /chat/history
    HOW: Foreign key to ChatSession, message id chosen by the sender
    """
    __tablename__ = "chat_messages"

    id = Column(String(100), primary_key=True, default=lambda: uuid4().hex)
    session_id = Column(String(100), ForeignKey("chat_sessions.session_id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(200), nullable=True, index=True)
    user_name = Column(String(100), nullable=False, default="Guest")
    sender = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    is_read = Column(Boolean, nullable=False, default=False)

    session = relationship("ChatSession", back_populates="messages")

    __table_args__ = (
        Index("idx_chat_messages_session_ts", "session_id", "timestamp"),
    )

    def __repr__(self):
        return f"<ChatMessageRecord(id={self.id}, sender={self.sender})>"
