"""Course access service.

Composes enrollment resolution and access projection for a signed-in session,
keeping one course board per session and discarding results that arrive after
the session has ended.
"""

import logging
from typing import Callable, Dict, FrozenSet, Optional

from core.exceptions import ResolveFailure, StaleSessionError
from core.session_context import SessionContext, SessionRegistry
from schemas.course import CourseAccessReport
from schemas.user import UserAccount
from utils.course_access import CourseAccessProjector, CourseBoard
from utils.enrollment_resolver import EnrollmentResolver

logger = logging.getLogger(__name__)


class CourseAccessService:
    """Resolves per-course access for a session, locking on any failure."""

    def __init__(
        self,
        resolver: EnrollmentResolver,
        projector: CourseAccessProjector,
        registry: SessionRegistry,
        on_unlock_data_loaded: Optional[Callable[[FrozenSet[str]], None]] = None,
        on_all_courses_locked: Optional[Callable[[], None]] = None,
    ):
        """Initialize CourseAccessService.

        Args:
            resolver: Computes unlocked course sets.
            projector: Maps unlocked sets onto the catalog.
            registry: Tells whether a session is still current.
            on_unlock_data_loaded: Called with the unlocked set after a
                successful resolution.
            on_all_courses_locked: Called whenever a session falls back to
                everything locked.
        """
        self.resolver = resolver
        self.projector = projector
        self.registry = registry
        self._on_unlock_data_loaded = on_unlock_data_loaded
        self._on_all_courses_locked = on_all_courses_locked
        self._boards: Dict[str, CourseBoard] = {}
        registry.add_close_listener(self.discard)

    def board_for(self, context: SessionContext) -> CourseBoard:
        board = self._boards.get(context.session_id)
        if board is None:
            board = CourseBoard(c.course_id for c in self.projector.canonical_catalog())
            self._boards[context.session_id] = board
        return board

    def discard(self, session_id: str) -> None:
        self._boards.pop(session_id, None)

    @property
    def board_count(self) -> int:
        return len(self._boards)

    def _check_current(self, context: SessionContext) -> None:
        if not self.registry.is_current(context):
            self.discard(context.session_id)
            logger.info("Discarding access result for ended session %s", context.session_id)
            raise StaleSessionError(context.session_id)

    def _lock_all(self, context: SessionContext) -> CourseAccessReport:
        self._check_current(context)
        self.board_for(context).lock_all()
        if self._on_all_courses_locked is not None:
            self._on_all_courses_locked()
        return self.projector.report(self.projector.locked_access())

    async def resolve_access(
        self, context: SessionContext, account: Optional[UserAccount]
    ) -> CourseAccessReport:
        """Resolve the course decisions for a session.

        Guests, unverified accounts and failed resolutions get everything
        locked.

        Args:
            context: Session the request was issued for.
            account: Signed-in account, or None for a guest.

        Returns:
            CourseAccessReport for the configured catalog.

        Raises:
            StaleSessionError: If the session ended before the result was ready.
        """
        self._check_current(context)
        if account is None or account.user_id != context.user_id:
            return self._lock_all(context)
        if not account.email_verified:
            logger.info("Locking courses for unverified user %s", account.user_id)
            return self._lock_all(context)

        try:
            unlocked = await self.resolver.resolve_unlocked_courses(account.user_id)
        except ResolveFailure as e:
            logger.warning("Resolution failed for %s: %s", account.user_id, e)
            return self._lock_all(context)
        except Exception:
            logger.exception("Unexpected error resolving courses for %s", account.user_id)
            return self._lock_all(context)

        self._check_current(context)
        if self._on_unlock_data_loaded is not None:
            self._on_unlock_data_loaded(unlocked)
        mapping = self.projector.project_access(unlocked)
        self.board_for(context).apply(mapping)
        return self.projector.report(mapping)
