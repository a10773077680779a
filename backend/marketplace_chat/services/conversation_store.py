"""
Conversation store.

WHAT: Owns ordered message lists per conversation plus read/flag state
WHY: Single writer for every optimistic mutation the chat surfaces make
HOW: In-memory cache in front of a ConversationRepository, saved after each change
"""

from bisect import bisect_right
from datetime import datetime
from typing import Any, Callable

from ..core.repository import ConversationRepository, InMemoryConversationRepository
from ..models.conversation import Conversation, conversation_key
from ..models.message import Message, counterpart, utc_now
from ..utils.exceptions import ConversationNotFoundException, MessageNotFoundException
from ..utils.logger import get_logger

logger = get_logger(__name__)

PARTICIPANT_ROLES = ("customer", "seller")


def _require_participant(role: str) -> None:
    if role not in PARTICIPANT_ROLES:
        raise ValueError(f"Role must be customer or seller, got {role!r}")


class ConversationStore:
    """
    Conversation state holder.

    All mutations are synchronous single steps on the event loop, so no
    locking is needed; ordering is by message timestamp, stable for ties.
    """

    def __init__(
        self,
        repository: ConversationRepository | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._repository = repository if repository is not None else InMemoryConversationRepository()
        self._clock = clock
        self._conversations: dict[str, Conversation] = {}

    # ========== Lookup ==========

    def find(self, conversation_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            conversation = self._repository.load(conversation_id)
            if conversation is not None:
                self._conversations[conversation_id] = conversation
        return conversation

    def get(self, conversation_id: str) -> Conversation:
        conversation = self.find(conversation_id)
        if conversation is None:
            raise ConversationNotFoundException(conversation_id)
        return conversation

    def get_message(self, conversation_id: str, message_id: str) -> Message:
        message = self.get(conversation_id).find_message(message_id)
        if message is None:
            raise MessageNotFoundException(conversation_id, message_id)
        return message

    def list_for_participant(self, user_id: str, role: str) -> list[Conversation]:
        _require_participant(role)
        listed = self._repository.list_for_participant(user_id, role)
        return [self._conversations.get(c.id, c) for c in listed]

    # ========== Commands ==========

    def open_conversation(
        self,
        *,
        customer_id: str,
        seller_id: str,
        vehicle_id: Any,
        vehicle_name: str = "",
        vehicle_price: int | None = None,
        customer_name: str = "",
    ) -> Conversation:
        """
        Get or create the conversation for a customer/seller/vehicle triple.

        Returns:
            The existing conversation if one is stored, otherwise a new one
        """
        key = conversation_key(customer_id, seller_id, vehicle_id)
        existing = self.find(key)
        if existing is not None:
            return existing

        conversation = Conversation(
            id=key,
            vehicle_id=vehicle_id,
            vehicle_name=vehicle_name,
            vehicle_price=vehicle_price,
            customer_id=customer_id,
            customer_name=customer_name,
            seller_id=seller_id,
            last_message_at=self._clock(),
        )
        self._conversations[key] = conversation
        self._repository.save(conversation)
        logger.info(f"Opened conversation {key}")
        return conversation

    def append_message(self, conversation_id: str, message: Message) -> bool:
        """
        Insert a message at its timestamp position.

        Makes the conversation unread for the recipient. Re-appending an id
        already present changes nothing.

        Returns:
            True if inserted, False if the id was already stored
        """
        conversation = self.get(conversation_id)
        if conversation.has_message(message.id):
            logger.debug(f"Duplicate message {message.id} ignored in {conversation_id}")
            return False

        index = bisect_right(conversation.messages, message.timestamp, key=lambda m: m.timestamp)
        conversation.messages.insert(index, message)
        conversation.last_message_at = conversation.messages[-1].timestamp

        if message.sender in PARTICIPANT_ROLES:
            setattr(conversation, f"is_read_by_{counterpart(message.sender)}", False)

        self._repository.save(conversation)
        return True

    def mark_read(self, conversation_id: str, reader_role: str) -> list[Message]:
        """
        Mark the conversation and every counterpart message read for reader_role.

        Returns:
            Messages whose is_read flipped on this call (empty when repeated)
        """
        _require_participant(reader_role)
        conversation = self.get(conversation_id)

        flag_name = f"is_read_by_{reader_role}"
        flag_changed = not getattr(conversation, flag_name)
        setattr(conversation, flag_name, True)

        changed = []
        for message in conversation.messages:
            if message.sender in (reader_role, "system") or message.is_read:
                continue
            message.is_read = True
            changed.append(message)

        if changed or flag_changed:
            self._repository.save(conversation)
        return changed

    def flag(self, conversation_id: str, reason: str) -> bool:
        """
        Flag the conversation for moderation.

        Returns:
            True if newly flagged, False if it already was
        """
        conversation = self.get(conversation_id)
        if conversation.is_flagged:
            logger.debug(f"Conversation {conversation_id} already flagged")
            return False

        conversation.is_flagged = True
        conversation.flag_reason = reason or "No reason provided"
        conversation.flagged_at = self._clock()
        self._repository.save(conversation)
        logger.info(f"Conversation {conversation_id} flagged: {conversation.flag_reason}")
        return True

    def save(self, conversation_id: str) -> None:
        """Persist in-place message changes made by the offer machine or receipts."""
        self._repository.save(self.get(conversation_id))

    # ========== Derived ==========

    def unread_count(self, conversation_id: str, viewer_role: str) -> int:
        """Count counterpart messages the viewer has not read. No side effects."""
        _require_participant(viewer_role)
        conversation = self.get(conversation_id)
        return sum(
            1
            for m in conversation.messages
            if m.sender not in (viewer_role, "system") and not m.is_read
        )
