"""
Read receipt tracking.

WHAT: Per-message delivery status (sent -> delivered -> read) and read marking
WHY: Receipts arrive out of order over the transport and must never regress
HOW: Rank comparison against the held status; regressions are logged and dropped
"""

from .conversation_store import ConversationStore
from ..models.message import DeliveryStatus, Message, STATUS_RANK
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ReadReceiptTracker:
    """Escalate message status monotonically."""

    def __init__(self, store: ConversationStore):
        self.store = store

    def advance(self, conversation_id: str, message_id: str, status: DeliveryStatus) -> bool:
        """
        Move a message to status if that is a step forward.

        Returns:
            True if the status changed; False for unknown ids, repeats, and regressions
        """
        if status not in STATUS_RANK:
            raise ValueError(f"Unknown delivery status: {status!r}")

        message = self.store.get(conversation_id).find_message(message_id)
        if message is None:
            logger.debug(f"Receipt for unknown message {message_id} in {conversation_id}")
            return False

        current = STATUS_RANK[message.status]
        target = STATUS_RANK[status]
        if target < current:
            logger.debug(f"Rejected status regression {message.status} -> {status} for {message_id}")
            return False
        if target == current:
            return False

        message.status = status
        if status == "read":
            message.is_read = True
        self.store.save(conversation_id)
        return True

    def mark_delivered(self, conversation_id: str, message_id: str) -> bool:
        """Transport confirmed the message reached the peer."""
        return self.advance(conversation_id, message_id, "delivered")

    def mark_messages_as_read(self, conversation_id: str, reader_role: str) -> list[Message]:
        """
        Reader has seen the conversation.

        Delegates to the store's mark_read, then escalates every counterpart
        message to `read`. Repeating the call changes nothing.

        Returns:
            Messages whose is_read flipped on this call
        """
        changed = self.store.mark_read(conversation_id, reader_role)

        escalated = 0
        for message in self.store.get(conversation_id).messages:
            if message.sender in (reader_role, "system"):
                continue
            if STATUS_RANK[message.status] < STATUS_RANK["read"]:
                message.status = "read"
                escalated += 1

        if escalated:
            self.store.save(conversation_id)
            logger.debug(f"{escalated} message(s) in {conversation_id} read by {reader_role}")
        return changed
