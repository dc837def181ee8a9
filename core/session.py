"""
Session Management for Use Cases.

Provides session context tracking for multi-step workflows.
This enables:
- Keeping per-workflow state between user actions
- Discarding state when a workflow ends
- Looking up the open workflow for a given key
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)


@dataclass
class SessionContext:
    """
    Base session context that tracks workflow state.

    Each use case should extend this with use-case-specific fields.
    The session context is:
    - Scoped to a single workflow key
    - Discarded when the workflow ends
    """
    session_id: str = ""

    # Timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def _touch(self):
        """Update the timestamp."""
        self.updated_at = datetime.now(timezone.utc)

    def to_context_string(self) -> str:
        """
        Summarize the session for logs.

        Override in subclasses for use-case-specific formatting.
        """
        return f"Session {self.session_id}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


S = TypeVar("S", bound=SessionContext)


class SessionManager(Generic[S]):
    """
    Manages session contexts by key.

    This is a simple in-memory manager. For production, extend
    this to persist sessions to a database.
    """

    def __init__(self):
        self._sessions: Dict[str, S] = {}

    def register(self, session: S) -> S:
        """
        Store a session under its id, replacing any previous one.

        Args:
            session: The session to register

        Returns:
            The registered session
        """
        if session.session_id in self._sessions:
            logger.debug(f"Replacing open session {session.session_id}")
        self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> Optional[S]:
        """Get an existing session, or None."""
        return self._sessions.get(session_id)

    def ids(self) -> List[str]:
        return list(self._sessions.keys())

    def clear(self, session_id: str) -> bool:
        """
        Clear a session.

        Args:
            session_id: The session ID to clear

        Returns:
            True if a session was removed
        """
        if session_id in self._sessions:
            del self._sessions[session_id]
            logger.debug(f"Cleared session {session_id}")
            return True
        return False

    def clear_all(self):
        """Clear all sessions."""
        self._sessions.clear()
        logger.debug("Cleared all sessions")
