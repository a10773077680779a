"""
Custom exceptions for the chat core.

WHAT: Domain-specific exceptions for validation, offers, and transport
WHY: Callers need to tell recoverable validation failures from transport faults
HOW: Exception classes carrying an error code, message, and details
"""

from typing import Optional, Any


class ChatException(Exception):
    """Base class for chat core exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


# ========== Validation (local, recoverable) ==========

class InvalidMessage(ChatException):
    """Raised when a text/offer/system message is malformed."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            message=message,
            code="INVALID_MESSAGE",
            details=details
        )


class InvalidOfferAmount(ChatException):
    """Raised when an offer or counter price is not a positive integer."""

    def __init__(self, amount: Any):
        super().__init__(
            message=f"Offer amount must be a positive integer, got {amount!r}",
            code="INVALID_OFFER_AMOUNT",
            details={"amount": amount}
        )


class StaleOfferAction(ChatException):
    """Raised when responding to a non-pending offer or to one's own offer."""

    def __init__(self, message_id: str, current_status: str, reason: str):
        super().__init__(
            message=f"Offer {message_id} cannot be answered: {reason}",
            code="STALE_OFFER_ACTION",
            details={"message_id": message_id, "current_status": current_status, "reason": reason}
        )


class ConversationNotFoundException(ChatException):
    """Raised when a conversation is not found."""

    def __init__(self, conversation_id: str):
        super().__init__(
            message=f"Conversation not found: {conversation_id}",
            code="CONVERSATION_NOT_FOUND",
            details={"conversation_id": conversation_id}
        )


class MessageNotFoundException(ChatException):
    """Raised when a message id is not present in a conversation."""

    def __init__(self, conversation_id: str, message_id: str):
        super().__init__(
            message=f"Message {message_id} not found in conversation {conversation_id}",
            code="MESSAGE_NOT_FOUND",
            details={"conversation_id": conversation_id, "message_id": message_id}
        )


# ========== Transport (recovered automatically) ==========

class TransportUnavailable(ChatException):
    """Raised when the realtime channel is not CONNECTED at send time."""

    def __init__(self, state: str):
        super().__init__(
            message=f"Realtime channel unavailable (state={state})",
            code="TRANSPORT_UNAVAILABLE",
            details={"state": state}
        )


class TransportError(ChatException):
    """Raised on socket errors or unexpected close."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(
            message=message,
            code="TRANSPORT_ERROR",
            details=details
        )


class HistoryParseError(ChatException):
    """Raised when an inbound frame cannot be parsed."""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(
            message=message,
            code="FRAME_PARSE_ERROR",
            details={"raw": raw[:200] if raw else None}
        )


class DeliveryFailed(ChatException):
    """Raised when both the realtime channel and the REST fallback failed."""

    def __init__(self, message_id: str, reason: str):
        super().__init__(
            message=f"Message {message_id} not delivered: {reason}",
            code="MESSAGE_NOT_DELIVERED",
            details={"message_id": message_id, "reason": reason}
        )
