"""Session context tracking.

A SessionContext identifies one signed-in session. Work started on behalf of
a session is tagged with its context and checked against the registry before
its result is applied, so results for signed-out sessions are discarded.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import pytz

from config import ACCESS_TOKEN_EXPIRE_MINUTES

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(pytz.utc)


@dataclass(frozen=True)
class SessionContext:
    session_id: str
    user_id: str
    issued_at: datetime


class SessionRegistry:
    """In-process table of active sessions.

    A session lives until it is closed or until it is older than ``max_age``,
    the lifetime of the access token that carries it. Expired sessions are
    pruned whenever a new one is opened.
    """

    def __init__(
        self,
        max_age: timedelta = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.max_age = max_age
        self._clock = clock
        self._sessions: Dict[str, SessionContext] = {}
        self._close_listeners: List[Callable[[str], None]] = []

    def __len__(self) -> int:
        return len(self._sessions)

    def add_close_listener(self, listener: Callable[[str], None]) -> None:
        """Call ``listener`` with the id of every session that ends."""
        self._close_listeners.append(listener)

    def _expired(self, context: SessionContext) -> bool:
        return self._clock() - context.issued_at >= self.max_age

    def open(self, user_id: str) -> SessionContext:
        self.prune()
        context = SessionContext(
            session_id=uuid.uuid4().hex, user_id=user_id, issued_at=self._clock()
        )
        self._sessions[context.session_id] = context
        logger.info("Opened session %s for user %s", context.session_id, user_id)
        return context

    def get(self, session_id: str) -> Optional[SessionContext]:
        context = self._sessions.get(session_id)
        if context is not None and self._expired(context):
            self.close(session_id)
            return None
        return context

    def is_current(self, context: SessionContext) -> bool:
        return self.get(context.session_id) == context

    def close(self, session_id: str) -> bool:
        """Close a session.

        Args:
            session_id: Session to close.

        Returns:
            True if the session was open.
        """
        context = self._sessions.pop(session_id, None)
        if context is None:
            return False
        logger.info("Closed session %s for user %s", session_id, context.user_id)
        for listener in self._close_listeners:
            listener(session_id)
        return True

    def close_user(self, user_id: str) -> int:
        """Close every session of a user and return how many were closed."""
        session_ids: List[str] = [
            sid for sid, ctx in self._sessions.items() if ctx.user_id == user_id
        ]
        for session_id in session_ids:
            self.close(session_id)
        return len(session_ids)

    def prune(self) -> int:
        """Close every expired session and return how many were closed."""
        expired = [sid for sid, ctx in self._sessions.items() if self._expired(ctx)]
        for session_id in expired:
            self.close(session_id)
        if expired:
            logger.info("Pruned %d expired sessions", len(expired))
        return len(expired)
