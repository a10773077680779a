"""
Support chat REST endpoints.

WHAT: POST /api/chat, GET /api/chat/history, GET /api/chat/sessions
WHY: Synchronous fallback for clients whose realtime channel is down
HOW: FastAPI router over SupportChatService
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...deps import get_support_chat
from ....models.api_schemas import (
    ChatPostRequest,
    ChatPostResponse,
    ChatHistoryResponse,
    ChatSessionsResponse,
)
from ....services.support_chat import SupportChatService
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/chat", response_model=ChatPostResponse)
async def post_chat_message(
    request: ChatPostRequest,
    support: SupportChatService = Depends(get_support_chat),
):
    """
    Send one message and get the bot reply synchronously.

    Re-posting the same messageId returns the reply stored the first time.
    """
    exchange = support.exchange(
        request.message,
        session_id=request.session_id,
        user_id=request.user_id,
        user_name=request.user_name,
        role=request.role,
        message_id=request.message_id,
    )
    if exchange.duplicate:
        logger.info(f"Replayed reply for duplicate message {exchange.message['id']}")

    return ChatPostResponse(
        success=True,
        response=exchange.reply["text"] if exchange.reply else None,
        session_id=exchange.session_id,
        message_id=exchange.reply["id"] if exchange.reply else None,
    )


@router.get("/chat/history", response_model=ChatHistoryResponse)
async def get_chat_history(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    support: SupportChatService = Depends(get_support_chat),
):
    """Chat history for a user or a session, oldest first."""
    if not user_id and not session_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="userId or sessionId is required"
        )

    messages = support.history(user_id=user_id, session_id=session_id)
    return ChatHistoryResponse(success=True, messages=messages, count=len(messages))


@router.get("/chat/sessions", response_model=ChatSessionsResponse)
async def list_chat_sessions(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    session_status: Optional[str] = Query(default="active", alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    support: SupportChatService = Depends(get_support_chat),
):
    """Support sessions, most recently active first."""
    sessions = support.list_sessions(user_id=user_id, status=session_status, limit=limit)
    return ChatSessionsResponse(success=True, sessions=sessions, count=len(sessions))
