"""
Transport session.

WHAT: Realtime channel lifecycle (connect / reconnect / fallback / teardown) for one conversation
WHY: Chat must survive disconnects without dropping or duplicating messages
HOW: State machine on the event loop; reconnect is an owned TimerHandle; REST fallback when not CONNECTED
"""

import asyncio
import enum
import random
import string
import time
from dataclasses import dataclass
from typing import Callable, Literal

from .rest_client import ChatRestClient
from .ws_client import Connector, RealtimeChannel, connect_websocket
from ..core.config import settings
from ..models.frames import (
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
from ..models.message import (
    Message,
    OfferMessage,
    ParticipantRole,
    STATUS_RANK,
    counterpart,
    make_text_message,
)
from ..services.conversation_store import ConversationStore
from ..services.presence import PresenceTracker
from ..services.read_receipts import ReadReceiptTracker
from ..utils.exceptions import (
    HistoryParseError,
    InvalidMessage,
    MessageNotFoundException,
    TransportError,
    TransportUnavailable,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


class TransportState(str, enum.Enum):
    """Realtime channel states; CLOSED is terminal."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


def generate_anonymous_session_id(now_ms: int | None = None) -> str:
    """Anonymous session id: anon_<epoch ms>_<9 base36 chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"anon_{now_ms}_{suffix}"


@dataclass
class Identity:
    """Who this session speaks for."""
    role: ParticipantRole = "customer"
    user_id: str | None = None
    user_name: str | None = None

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None


@dataclass
class SendOutcome:
    """Result of a send attempt."""
    message: Message
    via: Literal["realtime", "fallback"]
    failed: bool = False
    reply: Message | None = None
    error: str | None = None


class TransportSession:
    """
    Realtime session bound to one conversation.

    WHAT: Connect, hand-shake, fold inbound frames into the store, relay sends
    WHY: Ordering discipline around disconnects and user-initiated close
    HOW: asyncio tasks for connect/read, TimerHandle for reconnect, REST fallback on send
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        conversation_id: str,
        identity: Identity,
        receipts: ReadReceiptTracker | None = None,
        presence: PresenceTracker | None = None,
        connector: Connector = connect_websocket,
        rest_client: ChatRestClient | None = None,
        url: str | None = None,
        reconnect_delay: float | None = None,
        session_id: str | None = None,
        on_state_change: Callable[[TransportState], None] | None = None,
        on_message: Callable[[Message], None] | None = None,
    ):
        self.store = store
        self.conversation_id = conversation_id
        self.identity = identity
        self.receipts = receipts or ReadReceiptTracker(store)
        self.presence = presence
        self.url = url or settings.CHAT_WS_URL
        self.reconnect_delay = reconnect_delay if reconnect_delay is not None else settings.RECONNECT_DELAY_SECONDS
        self.session_id = session_id
        self._connector = connector
        self._rest_client = rest_client
        self._on_state_change = on_state_change
        self._on_message = on_message

        self._state = TransportState.DISCONNECTED
        self._closed = False
        self._channel: RealtimeChannel | None = None
        self._reader_task: asyncio.Task | None = None
        self._connect_task: asyncio.Task | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None

        # Sent over realtime, not yet echoed back; re-sent after every (re)connect
        self.pending: dict[str, Message] = {}
        # Both paths failed; kept so the user can retry without re-typing
        self.undelivered: dict[str, Message] = {}

    # ========== State ==========

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def remote_typing(self) -> bool:
        """Whether the other party is typing in this conversation right now."""
        if self.presence is None:
            return False
        return self.presence.is_typing(self.conversation_id, counterpart(self.identity.role))

    def _set_state(self, state: TransportState) -> None:
        if state == self._state:
            return
        logger.info(f"Transport {self.conversation_id}: {self._state.value} -> {state.value}")
        self._state = state
        self._notify(self._on_state_change, state)

    def _notify(self, callback, *args) -> None:
        # Observer failures are logged; transport state is already applied
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Transport callback failed for {self.conversation_id}: {e}", exc_info=True)

    # ========== Lifecycle ==========

    async def open(self) -> None:
        """Start connecting. A closed session never reopens."""
        if self._closed:
            logger.warning(f"Transport {self.conversation_id} is closed; open() ignored")
            return
        await self._connect()

    async def _connect(self) -> None:
        if self._closed or self._state in (TransportState.CONNECTING, TransportState.CONNECTED):
            return

        self._set_state(TransportState.CONNECTING)
        try:
            channel = await self._connector(self.url)
        except TransportError as e:
            logger.warning(f"Connect failed for {self.conversation_id}: {e.message}")
            if not self._closed:
                self._set_state(TransportState.DISCONNECTED)
                self._schedule_reconnect()
                await self.sync_history()
            return

        if self._closed:
            # User closed while the connect was in flight
            await channel.close()
            return

        self._channel = channel
        self._set_state(TransportState.CONNECTED)
        try:
            await self._send_init(channel)
        except TransportError as e:
            self._on_channel_lost(channel, f"init failed: {e.message}")
            return
        # The peer may not replay history, so unacknowledged sends go out again here
        if not await self._resend_pending():
            return
        self._reader_task = asyncio.create_task(self._read_loop(channel))

    async def _send_init(self, channel: RealtimeChannel) -> None:
        if self.identity.authenticated:
            frame = InitFrame(
                user_id=self.identity.user_id,
                user_name=self.identity.user_name,
                role=self.identity.role,
            )
        else:
            if self.session_id is None:
                self.session_id = generate_anonymous_session_id()
            frame = InitFrame(session_id=self.session_id, role=self.identity.role)
        await channel.send(encode_frame(frame))

    async def _read_loop(self, channel: RealtimeChannel) -> None:
        try:
            while channel is self._channel:
                raw = await channel.recv()
                try:
                    await self.handle_frame(raw)
                except Exception as e:
                    logger.error(f"Failed to apply frame for {self.conversation_id}: {e}", exc_info=True)
        except TransportError as e:
            self._on_channel_lost(channel, e.message)

    def _on_channel_lost(self, channel: RealtimeChannel, reason: str) -> None:
        if channel is not self._channel:
            return
        self._channel = None
        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
        if self._closed:
            return
        logger.warning(f"Transport {self.conversation_id} lost: {reason}")
        self._set_state(TransportState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closed or self._reconnect_handle is not None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._fire_reconnect)
        logger.info(f"Reconnect for {self.conversation_id} in {self.reconnect_delay}s")

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closed:
            return
        self._connect_task = asyncio.ensure_future(self._connect())

    async def close(self) -> None:
        """
        User-initiated teardown.

        Cancels the reconnect timer and reader, closes the socket, and moves
        to CLOSED. Late frames and fallback responses are ignored afterwards.
        """
        if self._closed:
            return
        self._closed = True

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        current = asyncio.current_task()
        tasks = [
            task for task in (self._reader_task, self._connect_task)
            if task is not None and task is not current and not task.done()
        ]
        self._reader_task = None
        self._connect_task = None
        for task in tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except TransportError as e:
                logger.debug(f"Error closing channel for {self.conversation_id}: {e.message}")

        self._set_state(TransportState.CLOSED)

    # ========== Inbound ==========

    async def handle_frame(self, raw: str | bytes) -> None:
        """Decode and apply one inbound frame. Malformed frames are dropped."""
        if self._closed:
            logger.debug(f"Ignoring frame after close for {self.conversation_id}")
            return
        try:
            frame = parse_frame(raw)
        except HistoryParseError as e:
            logger.warning(f"Dropped malformed frame for {self.conversation_id}: {e.message}")
            return

        if isinstance(frame, MessageFrame):
            try:
                message = frame.to_message()
            except HistoryParseError as e:
                logger.warning(f"Dropped message frame: {e.message}")
                return
            self._fold_inbound(message)
        elif isinstance(frame, HistoryFrame):
            await self._merge_history(frame)
        elif isinstance(frame, SessionFrame):
            self.session_id = frame.session_id
        elif isinstance(frame, TypingFrame):
            self._apply_typing(frame)
        elif isinstance(frame, ReadFrame):
            self.receipts.mark_messages_as_read(self.conversation_id, frame.reader)
        elif isinstance(frame, ErrorFrame):
            logger.warning(f"Peer error for {self.conversation_id}: {frame.message}")
        else:
            logger.debug(f"Unexpected {frame.type} frame from peer")

    def _fold_inbound(self, message: Message) -> bool:
        """
        Apply one inbound message.

        An echo of a pending send acknowledges it (delivered). Known ids only
        move forward: receipt fields advance and a pending offer adopts the
        terminal status the peer reports. New ids are appended.

        Returns:
            True if a new message was appended
        """
        if self.pending.pop(message.id, None) is not None:
            self.receipts.mark_delivered(self.conversation_id, message.id)

        conversation = self.store.get(self.conversation_id)
        existing = conversation.find_message(message.id)
        if existing is not None:
            changed = self._merge_offer_state(existing, message)
            if STATUS_RANK[message.status] > STATUS_RANK[existing.status]:
                self.receipts.advance(self.conversation_id, message.id, message.status)
            elif message.is_read and not existing.is_read:
                existing.is_read = True
                changed = True
            if changed:
                self.store.save(self.conversation_id)
            return False

        self.store.append_message(self.conversation_id, message)
        if message.sender != self.identity.role and message.sender != "system":
            if self.presence is not None:
                self.presence.clear_typing(self.conversation_id, message.sender)
            self._notify(self._on_message, message)
        return True

    def _merge_offer_state(self, existing: Message, message: Message) -> bool:
        """Adopt a terminal offer status from the peer. A terminal local offer never changes."""
        if not (isinstance(existing, OfferMessage) and isinstance(message, OfferMessage)):
            return False
        local, remote = existing.payload, message.payload
        if local.is_terminal:
            if remote.status != local.status:
                logger.debug(f"Ignoring {remote.status} for offer {existing.id}; already {local.status}")
            return False
        if not remote.is_terminal:
            return False

        if remote.counter_price is not None:
            local.counter_price = remote.counter_price
        local.status = remote.status
        logger.info(f"Offer {existing.id} is {remote.status} per peer replay")
        return True

    async def _merge_history(self, frame: HistoryFrame) -> None:
        """
        Merge a replay with local state; never overwrite.

        Optimistic messages the replay does not contain stay in the store and
        are re-sent so the server eventually acknowledges them.
        """
        try:
            messages = frame.to_messages()
        except HistoryParseError as e:
            logger.warning(f"Dropped history frame for {self.conversation_id}: {e.message}")
            return

        for message in messages:
            self._fold_inbound(message)

        await self._resend_pending()

    async def _resend_pending(self) -> bool:
        """
        Re-send every unacknowledged message over the current channel.

        Stops at the first failure; that message and the rest stay pending
        for the next connect or a manual retry.

        Returns:
            False if the channel failed mid-way
        """
        unacknowledged = list(self.pending.values())
        if unacknowledged:
            logger.info(f"Re-sending {len(unacknowledged)} unacknowledged message(s) for {self.conversation_id}")
        for message in unacknowledged:
            try:
                await self._send_realtime(message, resend=True)
            except TransportUnavailable:
                return False
        return True

    async def sync_history(self) -> int:
        """
        Catch up over REST while the realtime channel is down.

        Fetched messages go through the same merge as a history frame, so
        echoes of pending sends count as acknowledgements.

        Returns:
            Number of messages newly appended
        """
        if self._rest_client is None or not (self.identity.user_id or self.session_id):
            return 0
        try:
            messages = await self._rest_client.fetch_history(
                user_id=self.identity.user_id, session_id=self.session_id
            )
        except TransportError as e:
            logger.warning(f"History catch-up failed for {self.conversation_id}: {e.message}")
            return 0
        if self._closed:
            return 0
        appended = sum(1 for message in messages if self._fold_inbound(message))
        if appended:
            logger.info(f"Caught up {appended} message(s) over REST for {self.conversation_id}")
        return appended

    def _apply_typing(self, frame: TypingFrame) -> None:
        if self.presence is None:
            return
        role = frame.role or counterpart(self.identity.role)
        if frame.is_typing:
            self.presence.signal_typing(self.conversation_id, role)
        else:
            self.presence.clear_typing(self.conversation_id, role)

    # ========== Outbound ==========

    async def send(self, message: Message) -> SendOutcome:
        """
        Relay a locally created message.

        The message is appended to the store first (idempotent). Uses the
        realtime channel when CONNECTED, otherwise the REST fallback.
        """
        self.store.append_message(self.conversation_id, message)
        try:
            await self._send_realtime(message)
            return SendOutcome(message=message, via="realtime")
        except TransportUnavailable as e:
            logger.info(f"Realtime unavailable ({e.details['state']}); using REST fallback for {message.id}")
            return await self._send_fallback(message)

    async def retry(self, message_id: str) -> SendOutcome:
        """Re-send an undelivered or still unacknowledged message without re-typing it."""
        message = self.undelivered.get(message_id) or self.pending.get(message_id)
        if message is None:
            raise MessageNotFoundException(self.conversation_id, message_id)
        return await self.send(message)

    async def _send_realtime(self, message: Message, *, resend: bool = False) -> None:
        """
        Write one message frame.

        A failed first send leaves pending so the caller can fall back;
        a failed resend stays pending for the next connect.
        """
        channel = self._channel
        if self._state != TransportState.CONNECTED or channel is None:
            raise TransportUnavailable(self._state.value)

        self.pending[message.id] = message
        try:
            await channel.send(encode_frame(MessageFrame.from_message(message)))
        except TransportError as e:
            if not resend:
                self.pending.pop(message.id, None)
            self._on_channel_lost(channel, e.message)
            raise TransportUnavailable(self._state.value) from e
        self.undelivered.pop(message.id, None)

    async def _send_fallback(self, message: Message) -> SendOutcome:
        if self._rest_client is None:
            self.undelivered[message.id] = message
            return SendOutcome(message=message, via="fallback", failed=True, error="no fallback configured")

        try:
            reply = await self._rest_client.post_message(
                message.text,
                user_id=self.identity.user_id,
                user_name=self.identity.user_name,
                session_id=self.session_id,
                role=self.identity.role,
                message_id=message.id,
            )
        except TransportError as e:
            logger.error(f"Fallback failed for {message.id}: {e.message}")
            self.undelivered[message.id] = message
            return SendOutcome(message=message, via="fallback", failed=True, error=e.message)

        if self._closed:
            logger.debug(f"Ignoring fallback response for {message.id} after close")
            return SendOutcome(message=message, via="fallback")

        if not reply.success:
            logger.error(f"Fallback rejected {message.id}: {reply.error}")
            self.undelivered[message.id] = message
            return SendOutcome(message=message, via="fallback", failed=True, error=reply.error)

        self.undelivered.pop(message.id, None)
        self.pending.pop(message.id, None)
        if reply.session_id and self.session_id is None:
            self.session_id = reply.session_id
        self.receipts.mark_delivered(self.conversation_id, message.id)

        reply_message = None
        if reply.response:
            # Deterministic id so a repeated response is appended once
            reply_id = reply.message_id or f"reply_{message.id}"
            try:
                reply_message = make_text_message(
                    counterpart(self.identity.role), reply.response, message_id=reply_id
                )
            except InvalidMessage as e:
                logger.warning(f"Fallback reply for {message.id} unusable: {e.message}")
            else:
                if not self._fold_inbound(reply_message):
                    reply_message = None
        return SendOutcome(message=message, via="fallback", reply=reply_message)

    async def send_read_receipt(self) -> bool:
        """Tell the peer this side read the conversation. Skipped when not connected."""
        return await self._send_control(ReadFrame(reader=self.identity.role))

    async def send_typing(self, is_typing: bool = True) -> bool:
        """Relay this side's typing state. Skipped when not connected."""
        return await self._send_control(TypingFrame(is_typing=is_typing, role=self.identity.role))

    async def _send_control(self, frame) -> bool:
        channel = self._channel
        if self._state != TransportState.CONNECTED or channel is None:
            return False
        try:
            await channel.send(encode_frame(frame))
        except TransportError as e:
            self._on_channel_lost(channel, e.message)
            return False
        return True


