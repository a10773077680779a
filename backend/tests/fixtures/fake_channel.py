"""
Fake realtime channel for deterministic transport tests.

WHAT: In-memory RealtimeChannel plus a connector that hands them out
WHY: Test TransportSession without a websocket server
HOW: asyncio.Queue inbox; scripted connect failures; sent frames kept as dicts
"""

import asyncio
import json
from typing import Any, Dict, List

from marketplace_chat.utils.exceptions import TransportError


class FakeChannel:
    """RealtimeChannel double that records what was sent."""

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.fail_send = False

    async def send(self, data: str) -> None:
        if self.closed or self.fail_send:
            raise TransportError("fake channel closed")
        self.sent.append(json.loads(data))

    async def recv(self) -> str:
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True

    def push(self, frame: Dict[str, Any] | str) -> None:
        """Queue an inbound frame (dict is JSON-encoded, str is sent raw)."""
        self.inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def drop(self, reason: str = "peer went away") -> None:
        """Simulate the peer closing the socket."""
        self.inbox.put_nowait(TransportError(reason))

    def sent_of_type(self, frame_type: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f.get("type") == frame_type]


class FakeConnector:
    """
    Connector double.

    Args:
        fail_times: Number of initial connect attempts that fail
    """

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.attempts = 0
        self.channels: List[FakeChannel] = []
        self.gate: asyncio.Event | None = None

    async def __call__(self, url: str) -> FakeChannel:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.attempts <= self.fail_times:
            raise TransportError(f"connection refused ({url})")
        channel = FakeChannel()
        self.channels.append(channel)
        return channel

    @property
    def current(self) -> FakeChannel:
        return self.channels[-1]


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
