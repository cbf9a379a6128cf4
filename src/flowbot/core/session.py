"""Session store mapping (chatbot_id, contact) to conversation state."""

from __future__ import annotations

from flowbot.forms.state import IDLE, Idle, SessionState
from flowbot.log import get_logger

logger = get_logger(__name__)


class SessionManager:
    """In-memory conversation state per (chatbot_id, contact) pair.

    Absence of an entry means the contact is idle.
    """

    def __init__(self) -> None:
        self._states: dict[tuple[str, str], SessionState] = {}

    def get(self, chatbot_id: str, contact: str) -> SessionState:
        return self._states.get((chatbot_id, contact), IDLE)

    def set(self, chatbot_id: str, contact: str, state: SessionState) -> None:
        if isinstance(state, Idle):
            self.clear(chatbot_id, contact)
            return
        key = (chatbot_id, contact)
        if key not in self._states:
            logger.info("session_started", chatbot_id=chatbot_id, contact=contact)
        self._states[key] = state

    def clear(self, chatbot_id: str, contact: str) -> None:
        if self._states.pop((chatbot_id, contact), None) is not None:
            logger.info("session_cleared", chatbot_id=chatbot_id, contact=contact)

    def active_count(self) -> int:
        return len(self._states)
