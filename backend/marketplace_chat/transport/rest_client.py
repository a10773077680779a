"""
REST fallback client.

WHAT: Synchronous request/response path used when the realtime channel is down
WHY: User input must never be silently dropped
HOW: HTTPX async client with retries and exponential backoff
"""

import asyncio
import json
from dataclasses import dataclass

import httpx

from ..core.config import settings
from ..models.message import Message, parse_message
from ..utils.exceptions import InvalidMessage, TransportError
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class FallbackReply:
    """Body of POST /chat."""
    success: bool
    response: str | None = None
    session_id: str | None = None
    message_id: str | None = None
    error: str | None = None


class ChatRestClient:
    """REST fallback with retry logic."""

    def __init__(self, base_url: str | None = None, *, client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or settings.CHAT_API_BASE_URL).rstrip("/")
        self.max_retries = settings.CHAT_HTTP_MAX_RETRIES
        self.retry_delay = settings.CHAT_HTTP_RETRY_DELAY
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=settings.CHAT_HTTP_TIMEOUT),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        """
        Perform a request, retrying timeouts, refused connections, and 5xx.

        Raises:
            TransportError: retries exhausted, client error, or invalid JSON
        """
        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries):
            try:
                response = await self.client.request(method, url, **kwargs)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                logger.warning(f"Chat API timeout on {path} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise TransportError(f"Request timed out after {self.max_retries} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.warning(f"Chat API unreachable on {path} (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise TransportError("Chat API is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500:
                    logger.error(f"Chat API server error {e.response.status_code} (attempt {attempt + 1}/{self.max_retries})")
                    if attempt == self.max_retries - 1:
                        raise TransportError(f"Server error: {e.response.status_code}") from e
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    # Client errors don't retry
                    raise TransportError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON from chat API on {path}: {e}")
                raise TransportError(f"Invalid response format: {e}") from e

        raise TransportError("Chat API request was not attempted (max_retries < 1)")

    async def post_message(
        self,
        message: str,
        *,
        user_id: str | None = None,
        user_name: str | None = None,
        session_id: str | None = None,
        role: str = "customer",
        message_id: str | None = None,
    ) -> FallbackReply:
        """
        POST /chat with one user message.

        Returns:
            FallbackReply; success=False when the server reported a failure
        """
        body = {
            "message": message,
            "userId": user_id,
            "userName": user_name or "Guest",
            "sessionId": session_id,
            "role": role,
            "messageId": message_id,
        }
        data = await self._request("POST", "/chat", json=body)
        return FallbackReply(
            success=bool(data.get("success")),
            response=data.get("response"),
            session_id=data.get("sessionId"),
            message_id=data.get("messageId"),
            error=data.get("error"),
        )

    async def fetch_history(self, *, user_id: str | None = None, session_id: str | None = None) -> list[Message]:
        """
        GET /chat/history for a user or session.

        Entries that fail validation are skipped and logged.
        """
        if not user_id and not session_id:
            raise ValueError("user_id or session_id is required")
        params = {"userId": user_id} if user_id else {"sessionId": session_id}
        data = await self._request("GET", "/chat/history", params=params)
        if not data.get("success"):
            raise TransportError(f"History request failed: {data.get('error')}")

        messages = []
        for item in data.get("messages", []):
            try:
                messages.append(parse_message(item))
            except InvalidMessage as e:
                logger.warning(f"Skipping invalid history entry: {e.details}")
        return messages

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
