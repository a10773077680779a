"""
Typing presence tracker.

WHAT: Single advisory "who is typing where" slot with an inactivity expiry
WHY: Typing indicators must clear on their own when the typist pauses
HOW: Last-writer-wins slot, lazy expiry on read plus an optional asyncio sweeper
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TypingSignal:
    conversation_id: str
    role: str
    expires_at: float


class PresenceTracker:
    """
    Holds at most one typing signal at a time.

    Not part of the durable conversation record; nothing here is persisted.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        *,
        now_func: Callable[[], float] = time.monotonic,
        sweep_interval_seconds: float | None = None,
        on_change: Callable[[TypingSignal | None], None] | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.TYPING_TIMEOUT_SECONDS
        self.sweep_interval_seconds = (
            sweep_interval_seconds if sweep_interval_seconds is not None else settings.TYPING_SWEEP_INTERVAL_SECONDS
        )
        self._now = now_func
        self._on_change = on_change
        self._slot: TypingSignal | None = None
        self._sweeper_task: asyncio.Task | None = None

    def _set(self, signal: TypingSignal | None) -> None:
        self._slot = signal
        if self._on_change is not None:
            self._on_change(signal)

    def signal_typing(self, conversation_id: str, role: str) -> TypingSignal:
        """Replace the slot; the previous typist, if any, is dropped."""
        signal = TypingSignal(conversation_id, role, self._now() + self.timeout_seconds)
        self._set(signal)
        return signal

    def clear_typing(self, conversation_id: str | None = None, role: str | None = None) -> bool:
        """
        Clear the slot, optionally only if it belongs to conversation_id/role.

        Returns:
            True if a signal was cleared
        """
        slot = self._slot
        if slot is None:
            return False
        if conversation_id is not None and slot.conversation_id != conversation_id:
            return False
        if role is not None and slot.role != role:
            return False
        self._set(None)
        return True

    def expire(self) -> bool:
        """Clear the slot once its window has passed."""
        slot = self._slot
        if slot is not None and self._now() > slot.expires_at:
            logger.debug(f"Typing expired for {slot.role} in {slot.conversation_id}")
            self._set(None)
            return True
        return False

    def current(self) -> TypingSignal | None:
        self.expire()
        return self._slot

    def is_typing(self, conversation_id: str, role: str) -> bool:
        slot = self.current()
        return slot is not None and slot.conversation_id == conversation_id and slot.role == role

    # ========== Sweeper ==========

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper_task is not None and not self._sweeper_task.done()

    def start_sweeper(self) -> None:
        if self._sweeper_task is None:
            self._sweeper_task = asyncio.create_task(self._sweep())

    async def stop_sweeper(self) -> None:
        if self._sweeper_task is None:
            return
        self._sweeper_task.cancel()
        try:
            await self._sweeper_task
        except asyncio.CancelledError:
            pass
        self._sweeper_task = None

    async def _sweep(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.expire()
