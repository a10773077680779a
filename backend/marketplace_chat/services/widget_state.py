"""
Chat widget state.

WHAT: Open / minimized / manually-closed flags for one chat surface
WHY: A user who closed the chat must not have it pop back open on every inbound message
HOW: Plain state object; ChatService.connect feeds it the transport callbacks. No rendering
"""

from .conversation_store import ConversationStore
from ..models.message import Message
from ..transport.session import TransportState
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ChatWidgetState:
    """
    View-model behind a chat widget.

    Transport reconnects only toggle `connected`; they never reopen a
    widget the user closed.
    """

    def __init__(
        self,
        store: ConversationStore,
        conversation_id: str,
        viewer_role: str,
        *,
        inline_launch: bool = False,
    ):
        self.store = store
        self.viewer_role = viewer_role
        self.conversation_id = conversation_id
        self.is_minimized = not inline_launch
        self.manually_closed = False
        self.is_closing = False
        self.connected = False
        self._has_opened_once = False

    @property
    def is_open(self) -> bool:
        return not self.is_minimized and not self.is_closing

    def attach(self) -> None:
        """Conversation became the active one; auto-opens the first time."""
        if self.manually_closed or self.is_closing:
            return
        if not self._has_opened_once:
            self.is_minimized = False
            self._has_opened_once = True

    def switch_conversation(self, conversation_id: str) -> None:
        """Point the widget at another conversation and forget the manual close."""
        self.conversation_id = conversation_id
        self._has_opened_once = False
        self.manually_closed = False
        self.is_closing = False
        self.attach()

    def toggle_minimize(self) -> None:
        if self.is_minimized:
            self.open()
        else:
            self.minimize()

    def open(self) -> None:
        """User opened the widget explicitly."""
        self.is_minimized = False
        self.is_closing = False
        self.manually_closed = False
        self._has_opened_once = True

    def minimize(self) -> None:
        self.is_minimized = True

    def close(self) -> None:
        """User closed the widget. Repeated calls while closing are ignored."""
        if self.is_closing:
            return
        self.manually_closed = True
        self.is_closing = True
        self.is_minimized = True
        logger.debug(f"Widget for {self.conversation_id} closed by user")

    def on_inbound_message(self, message: Message) -> bool:
        """
        React to a new message in the conversation.

        Returns:
            True if the widget expanded because of it
        """
        if message.sender == self.viewer_role:
            return False
        if self.manually_closed or self.is_closing:
            return False
        if self.is_minimized:
            self.is_minimized = False
            self._has_opened_once = True
            return True
        return False

    def on_transport_state(self, state: TransportState) -> None:
        self.connected = state == TransportState.CONNECTED

    @property
    def unread_count(self) -> int:
        return self.store.unread_count(self.conversation_id, self.viewer_role)

    @property
    def unread_badge(self) -> str | None:
        """Badge text shown while minimized; capped at 9+."""
        count = self.unread_count
        if count == 0 or not self.is_minimized:
            return None
        return "9+" if count > 9 else str(count)
