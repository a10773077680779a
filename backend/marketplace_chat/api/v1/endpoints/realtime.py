"""
Realtime support chat endpoint.

WHAT: Websocket /chat speaking the init/message/typing/history/session/read frames
WHY: Peer for TransportSession clients; same storage as the REST fallback
HOW: One receive loop per socket; every visitor message is echoed (ack), then answered
"""

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ....core.config import settings
from ....models.frames import (
    ErrorFrame,
    HistoryFrame,
    InitFrame,
    MessageFrame,
    ReadFrame,
    SessionFrame,
    TypingFrame,
    encode_frame,
    parse_frame,
)
from ....models.message import counterpart, parse_message
from ....services.support_chat import SupportChatService
from ....utils.exceptions import ChatException, HistoryParseError
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


class _Connection:
    """Per-socket state between frames."""

    def __init__(self, websocket: WebSocket, support: SupportChatService):
        self.websocket = websocket
        self.support = support
        self.session_id: str | None = None
        self.user_id: str | None = None
        self.user_name = "Guest"
        self.role = "customer"

    async def send(self, frame) -> None:
        await self.websocket.send_text(encode_frame(frame))

    async def on_init(self, frame: InitFrame) -> None:
        self.user_id = frame.user_id
        self.user_name = frame.user_name or "Guest"
        self.role = frame.role or "customer"
        self.session_id, history = self.support.init_session(
            session_id=frame.session_id,
            user_id=self.user_id,
            user_name=self.user_name,
            role=self.role,
        )
        await self.send(HistoryFrame(messages=history))
        await self.send(SessionFrame(session_id=self.session_id))

    async def on_message(self, frame: MessageFrame) -> None:
        if self.session_id is None:
            await self.send(ErrorFrame(message="Session not initialized"))
            return
        if frame.message_type not in (None, "text"):
            await self.send(ErrorFrame(message="Only text messages are supported"))
            return
        if not frame.text.strip():
            return

        stored, created = self.support.record_user_message(
            self.session_id,
            frame.text,
            user_id=self.user_id,
            user_name=self.user_name,
            role=self.role,
            message_id=frame.id,
        )
        # Echo with the client's id acknowledges delivery
        await self.send(MessageFrame.from_message(parse_message(stored)))

        bot_role = counterpart(self.role)
        await self.send(TypingFrame(is_typing=True, role=bot_role))
        if created and settings.BOT_REPLY_DELAY_SECONDS > 0:
            await asyncio.sleep(settings.BOT_REPLY_DELAY_SECONDS)
        reply = self.support.record_reply(
            self.session_id, stored["id"], stored["text"], user_name=self.user_name, role=self.role
        )
        await self.send(MessageFrame.from_message(parse_message(reply)))
        await self.send(TypingFrame(is_typing=False, role=bot_role))
        logger.info(f"Message processed: {self.session_id}")

    async def on_read(self, frame: ReadFrame) -> None:
        if self.session_id is not None:
            self.support.mark_read(self.session_id, frame.reader)


@router.websocket("/chat")
async def chat_socket(websocket: WebSocket):
    """Realtime support chat."""
    await websocket.accept()
    connection = _Connection(websocket, websocket.app.state.support_chat)
    logger.info("Client connected")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = parse_frame(raw)
            except HistoryParseError as e:
                logger.warning(f"Dropped malformed frame: {e.message}")
                await connection.send(ErrorFrame(message="Malformed frame"))
                continue

            try:
                if isinstance(frame, InitFrame):
                    await connection.on_init(frame)
                elif isinstance(frame, MessageFrame):
                    await connection.on_message(frame)
                elif isinstance(frame, ReadFrame):
                    await connection.on_read(frame)
                elif isinstance(frame, TypingFrame):
                    logger.debug(f"Typing from {connection.session_id}: {frame.is_typing}")
                else:
                    await connection.send(ErrorFrame(message=f"Unexpected {frame.type} frame"))
            except ChatException as e:
                logger.error(f"Error processing {frame.type} frame: {e.message}", exc_info=True)
                await connection.send(TypingFrame(is_typing=False, role=counterpart(connection.role)))
                await connection.send(ErrorFrame(message=f"Failed to process {frame.type}"))
    except WebSocketDisconnect:
        logger.info(f"Client disconnected: {connection.session_id}")
