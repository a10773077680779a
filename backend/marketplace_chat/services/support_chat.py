"""
Support chat peer.

WHAT: Server side of the realtime/REST chat protocol (sessions, history, bot replies)
WHY: The transport session needs a peer that speaks init/history/session/message frames
HOW: SQLAlchemy sessions and messages, deterministic reply ids for idempotent retries
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from .bot_responder import generate_bot_response
from ..core.config import settings
from ..core.database import SessionLocal, session_scope
from ..core.models import ChatMessageRecord, ChatSession
from ..models.message import TextMessage, counterpart, dump_message, new_message_id
from ..transport.session import generate_anonymous_session_id
from ..utils.exceptions import InvalidMessage
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id(user_id: str | None = None) -> str:
    """user_<id>_<ms> for signed-in visitors, anon_<ms>_<9 base36> otherwise."""
    now_ms = int(time.time() * 1000)
    if user_id:
        return f"user_{user_id}_{now_ms}"
    return generate_anonymous_session_id(now_ms)


def reply_id_for(message_id: str) -> str:
    """Id of the bot reply to message_id; a retried message maps to the same reply."""
    return f"reply_{message_id}"


def _format(record: ChatMessageRecord) -> dict[str, Any]:
    message = TextMessage(
        id=record.id,
        sender=record.sender,
        text=record.message,
        timestamp=record.timestamp,
        is_read=record.is_read,
    )
    return dump_message(message)


@dataclass
class SupportExchange:
    """One visitor message and the reply it produced."""
    session_id: str
    message: dict[str, Any]
    reply: dict[str, Any] | None
    duplicate: bool = False


class SupportChatService:
    """
    Persistence and reply generation for support sessions.

    Visitor messages are stored with the visitor's role as sender and the
    bot answers as the counterpart role, so history replays parse as
    ordinary conversation messages on the client.
    """

    def __init__(self, session_factory=None, *, history_limit: int | None = None, bot_name: str | None = None):
        self._session_factory = session_factory or SessionLocal
        self.history_limit = history_limit or settings.HISTORY_LIMIT
        self.bot_name = bot_name or settings.SUPPORT_BOT_NAME

    # ========== Sessions ==========

    def init_session(
        self,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        user_name: str | None = None,
        role: str = "customer",
    ) -> tuple[str, list[dict[str, Any]]]:
        """
        Create or refresh a session and return its history.

        Returns:
            (session_id, messages in timestamp order, at most history_limit)
        """
        session_id = session_id or new_session_id(user_id)
        with session_scope(self._session_factory) as db:
            self._upsert_session(db, session_id, user_id, user_name, role)
        logger.info(f"Support session initialized: {session_id}")
        return session_id, self.history(session_id=session_id)

    def _upsert_session(self, db, session_id, user_id, user_name, role) -> ChatSession:
        chat_session = db.get(ChatSession, session_id)
        if chat_session is None:
            chat_session = ChatSession(session_id=session_id, message_count=0)
            db.add(chat_session)
        if user_id:
            chat_session.user_id = user_id
        chat_session.user_name = user_name or chat_session.user_name or "Guest"
        chat_session.role = role
        chat_session.status = "active"
        chat_session.last_message_at = _now()
        return chat_session

    def list_sessions(self, *, user_id: str | None = None, status: str | None = "active", limit: int = 50) -> list[dict[str, Any]]:
        with session_scope(self._session_factory) as db:
            stmt = select(ChatSession)
            if user_id:
                stmt = stmt.where(ChatSession.user_id == user_id)
            if status:
                stmt = stmt.where(ChatSession.status == status)
            stmt = stmt.order_by(ChatSession.last_message_at.desc()).limit(limit)
            return [
                {
                    "sessionId": s.session_id,
                    "userId": s.user_id,
                    "userName": s.user_name,
                    "role": s.role,
                    "status": s.status,
                    "messageCount": s.message_count,
                    "lastMessageAt": s.last_message_at.isoformat() if s.last_message_at else None,
                }
                for s in db.scalars(stmt)
            ]

    # ========== Messages ==========

    def record_user_message(
        self,
        session_id: str,
        text: str,
        *,
        user_id: str | None = None,
        user_name: str | None = None,
        role: str = "customer",
        message_id: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """
        Store a visitor message.

        Returns:
            (stored message, created) - created is False when message_id was already stored

        Raises:
            InvalidMessage: text is blank
        """
        if not text or not text.strip():
            raise InvalidMessage("Message is required")
        message_id = message_id or new_message_id()

        with session_scope(self._session_factory) as db:
            existing = db.get(ChatMessageRecord, message_id)
            if existing is not None:
                logger.debug(f"Duplicate support message {message_id} in {session_id}")
                return _format(existing), False

            chat_session = self._upsert_session(db, session_id, user_id, user_name, role)
            record = ChatMessageRecord(
                id=message_id,
                session_id=session_id,
                user_id=chat_session.user_id,
                user_name=chat_session.user_name,
                sender=role,
                message=text.strip(),
                timestamp=_now(),
            )
            db.add(record)
            chat_session.message_count = (chat_session.message_count or 0) + 1
            db.flush()
            return _format(record), True

    def record_reply(self, session_id: str, message_id: str, text: str, *, user_name: str | None = None, role: str = "customer") -> dict[str, Any]:
        """
        Store the bot reply to message_id, or return the one already stored.
        """
        reply_id = reply_id_for(message_id)
        with session_scope(self._session_factory) as db:
            existing = db.get(ChatMessageRecord, reply_id)
            if existing is not None:
                return _format(existing)

            chat_session = db.get(ChatSession, session_id)
            record = ChatMessageRecord(
                id=reply_id,
                session_id=session_id,
                user_id=chat_session.user_id if chat_session else None,
                user_name=self.bot_name,
                sender=counterpart(role),
                message=generate_bot_response(text, user_name or "Guest"),
                timestamp=_now(),
            )
            db.add(record)
            if chat_session is not None:
                chat_session.last_message_at = record.timestamp
            db.flush()
            return _format(record)

    def exchange(
        self,
        text: str,
        *,
        session_id: str | None = None,
        user_id: str | None = None,
        user_name: str | None = None,
        role: str = "customer",
        message_id: str | None = None,
    ) -> SupportExchange:
        """Store a visitor message and its reply in one call (REST path)."""
        session_id = session_id or new_session_id(user_id)
        message, created = self.record_user_message(
            session_id, text, user_id=user_id, user_name=user_name, role=role, message_id=message_id
        )
        reply = self.record_reply(session_id, message["id"], message["text"], user_name=user_name, role=role)
        return SupportExchange(session_id=session_id, message=message, reply=reply, duplicate=not created)

    def history(self, *, user_id: str | None = None, session_id: str | None = None) -> list[dict[str, Any]]:
        """Oldest-first messages for a user or a session, at most history_limit."""
        if not user_id and not session_id:
            raise InvalidMessage("userId or sessionId is required")
        with session_scope(self._session_factory) as db:
            stmt = select(ChatMessageRecord)
            if user_id:
                stmt = stmt.where(ChatMessageRecord.user_id == user_id)
            else:
                stmt = stmt.where(ChatMessageRecord.session_id == session_id)
            stmt = stmt.order_by(ChatMessageRecord.timestamp.asc(), ChatMessageRecord.id.asc()).limit(self.history_limit)
            return [_format(r) for r in db.scalars(stmt)]

    def mark_read(self, session_id: str, reader_role: str) -> int:
        """Mark counterpart messages in a session read; returns how many flipped."""
        with session_scope(self._session_factory) as db:
            stmt = select(ChatMessageRecord).where(
                ChatMessageRecord.session_id == session_id,
                ChatMessageRecord.sender != reader_role,
                ChatMessageRecord.is_read.is_(False),
            )
            records = list(db.scalars(stmt))
            for record in records:
                record.is_read = True
            return len(records)
