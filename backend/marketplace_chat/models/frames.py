"""
Realtime wire frames.

WHAT: JSON frames exchanged with the realtime peer (init/message/typing/history/session/read/error)
WHY: One codec shared by the client transport session and the websocket endpoint
HOW: Pydantic discriminated union on `type`; malformed input raises HistoryParseError
"""

import json
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from .message import (
    Message,
    MessageType,
    OfferPayload,
    OfferMessage,
    ParticipantRole,
    Role,
    dump_message,
    parse_message,
    utc_now,
)
from ..utils.exceptions import HistoryParseError, InvalidMessage


class _Frame(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitFrame(_Frame):
    """Client handshake: authenticated identity or anonymous session id."""
    type: Literal["init"] = "init"
    user_id: str | None = None
    user_name: str | None = None
    role: ParticipantRole | None = None
    session_id: str | None = None


class MessageFrame(_Frame):
    """A chat entry travelling in either direction."""
    type: Literal["message"] = "message"
    id: str
    text: str = ""
    sender: Role
    timestamp: datetime = Field(default_factory=utc_now)
    message_type: MessageType | None = None
    payload: OfferPayload | None = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageFrame":
        return cls(
            id=message.id,
            text=message.text,
            sender=message.sender,
            timestamp=message.timestamp,
            message_type=message.type,
            payload=message.payload.model_copy() if isinstance(message, OfferMessage) else None,
        )

    def to_message(self) -> Message:
        """
        Convert to a stored message.

        Raises:
            HistoryParseError: frame does not describe a valid message
        """
        data: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "sender": self.sender,
            "timestamp": self.timestamp,
            "type": self.message_type or ("system" if self.sender == "system" else "text"),
        }
        if self.payload is not None:
            data["payload"] = self.payload.model_dump()
        try:
            return parse_message(data)
        except InvalidMessage as e:
            raise HistoryParseError(f"Invalid message frame {self.id}: {e.details}") from e


class TypingFrame(_Frame):
    """Presence relay from the server."""
    type: Literal["typing"] = "typing"
    is_typing: bool
    role: ParticipantRole | None = None


class HistoryFrame(_Frame):
    """Full message replay sent after init."""
    type: Literal["history"] = "history"
    messages: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_messages(cls, messages: list[Message]) -> "HistoryFrame":
        return cls(messages=[dump_message(m) for m in messages])

    def to_messages(self) -> list[Message]:
        """
        Parse every replayed message.

        Raises:
            HistoryParseError: any entry is malformed (the whole frame is dropped)
        """
        parsed = []
        for index, item in enumerate(self.messages):
            try:
                parsed.append(parse_message(item))
            except InvalidMessage as e:
                raise HistoryParseError(f"Invalid history entry at {index}: {e.details}") from e
        return parsed


class SessionFrame(_Frame):
    """Server assigns or echoes the session id."""
    type: Literal["session"] = "session"
    session_id: str


class ReadFrame(_Frame):
    """Counterpart marked the conversation read."""
    type: Literal["read"] = "read"
    reader: ParticipantRole


class ErrorFrame(_Frame):
    """Server-side processing failure."""
    type: Literal["error"] = "error"
    message: str


Frame = Annotated[
    Union[InitFrame, MessageFrame, TypingFrame, HistoryFrame, SessionFrame, ReadFrame, ErrorFrame],
    Field(discriminator="type"),
]

FrameAdapter: TypeAdapter[Frame] = TypeAdapter(Frame)


def parse_frame(raw: str | bytes) -> Frame:
    """
    Decode one inbound frame.

    Raises:
        HistoryParseError: not JSON, not an object, or not a known frame shape
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise HistoryParseError(f"Frame is not valid JSON: {e}", raw=text) from e
    if not isinstance(data, dict):
        raise HistoryParseError("Frame must be a JSON object", raw=text)
    try:
        return FrameAdapter.validate_python(data)
    except ValidationError as e:
        raise HistoryParseError(f"Unrecognized frame: {e.error_count()} validation error(s)", raw=text) from e


def encode_frame(frame: _Frame) -> str:
    """Encode a frame as compact camelCase JSON."""
    return frame.model_dump_json(by_alias=True, exclude_none=True)
