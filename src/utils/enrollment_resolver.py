"""Enrollment resolution.

This module computes the set of courses a user has unlocked from the classes
they are enrolled in, and manages enrollment itself. Classes are looked up by
their human-entered join code, never by the store's internal document id.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

import pytz

from config import CLASSES_COLLECTION, RESOLVE_COOLDOWN_SECONDS, USERS_COLLECTION
from core.exceptions import (
    ClassExpiredError,
    ClassFullError,
    ClassInactiveError,
    ClassNotFoundError,
    DuplicateClassCodeError,
    EnrollmentStoreError,
    NoUserError,
    ResolveStoreError,
    StoreError,
    ValidationError,
)
from schemas.class_schema import ClassRecord, normalize_course_id, normalize_course_ids
from schemas.user import UserAccount
from utils.activity_log import ActivityLog
from utils.document_store import DocumentStore
from utils.keyed_locks import KeyedLocks

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(pytz.utc)


@dataclass
class EnrollmentResult:
    class_record: ClassRecord
    already_enrolled: bool = False


@dataclass
class _InFlight:
    task: "asyncio.Task[FrozenSet[str]]"
    started: float


class EnrollmentResolver:
    """Resolves unlocked courses and manages class enrollment.

    Concurrent resolutions for the same user share one in-flight fetch. A
    fetch older than ``cooldown`` seconds is no longer joined, and once a
    fetch completes the next call always fetches again.
    """

    def __init__(
        self,
        store: DocumentStore,
        activity_log: Optional[ActivityLog] = None,
        clock: Callable[[], datetime] = _utcnow,
        cooldown: float = RESOLVE_COOLDOWN_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        """Initialize EnrollmentResolver.

        Args:
            store: Document store holding ``users`` and ``classes``.
            activity_log: Receives enrollment events; optional.
            clock: Returns the current UTC time, used for due dates.
            cooldown: Maximum age in seconds of a joinable in-flight fetch.
            monotonic: Monotonic time source for the cooldown.
        """
        self.store = store
        self.activity_log = activity_log
        self._clock = clock
        self._cooldown = cooldown
        self._monotonic = monotonic
        self._inflight: Dict[str, _InFlight] = {}
        self._class_locks = KeyedLocks()

    # --- Resolution ---

    async def resolve_unlocked_courses(self, user_id: str) -> FrozenSet[str]:
        """Compute the lower-cased course ids unlocked for a user.

        Args:
            user_id: User to resolve.

        Returns:
            Union of the unlock lists of every class the user is enrolled in.

        Raises:
            NoUserError: If the user document does not exist.
            ResolveStoreError: If the user document cannot be fetched.
        """
        now = self._monotonic()
        entry = self._inflight.get(user_id)
        if entry is not None and not entry.task.done() and now - entry.started < self._cooldown:
            logger.debug("Joining in-flight resolution for %s", user_id)
            return await asyncio.shield(entry.task)

        task = asyncio.ensure_future(self._resolve(user_id))
        self._inflight[user_id] = _InFlight(task=task, started=now)

        def _done(finished: asyncio.Task) -> None:
            current = self._inflight.get(user_id)
            if current is not None and current.task is finished:
                del self._inflight[user_id]
            if not finished.cancelled():
                finished.exception()

        task.add_done_callback(_done)
        return await asyncio.shield(task)

    def is_resolving(self, user_id: str) -> bool:
        entry = self._inflight.get(user_id)
        return entry is not None and not entry.task.done()

    async def _load_user(self, user_id: str) -> UserAccount:
        try:
            snapshot = await self.store.get_document(USERS_COLLECTION, user_id)
        except StoreError as e:
            raise ResolveStoreError(f"Could not fetch user '{user_id}': {e}") from e
        if snapshot is None:
            raise NoUserError(user_id)
        return UserAccount.from_document(user_id, snapshot.data)

    async def _resolve(self, user_id: str) -> FrozenSet[str]:
        account = await self._load_user(user_id)
        codes = account.distinct_classes()
        if not codes:
            logger.info("User %s is not enrolled in any class", user_id)
            return frozenset()

        records = await asyncio.gather(*(self._fetch_class(code) for code in codes))
        unlocked = set()
        for record in records:
            if record is not None:
                unlocked.update(normalize_course_ids(record.unlocked_courses))
        logger.info(
            "Resolved %d unlocked courses for %s from %d classes",
            len(unlocked), user_id, len(codes),
        )
        return frozenset(unlocked)

    async def _fetch_class(self, class_code: str) -> Optional[ClassRecord]:
        """Fetch one enrolled class; missing or unreadable classes are skipped."""
        try:
            record = await self.find_class_by_code(class_code)
        except StoreError as e:
            logger.warning("Skipping class %s: fetch failed: %s", class_code, e)
            return None
        if record is None:
            logger.warning("Skipping class %s: no class has this code", class_code)
        return record

    async def find_class_by_code(self, class_code: str) -> Optional[ClassRecord]:
        """Look up a class by its join code.

        When several classes share the code, an active one is preferred, then
        the lowest internal id.
        """
        code = str(class_code).strip()
        if not code:
            return None
        snapshots = await self.store.query_documents(CLASSES_COLLECTION, "code", code)
        if not snapshots:
            return None
        records = [ClassRecord.from_document(s.doc_id, s.data) for s in snapshots]
        records.sort(key=lambda r: (not r.is_active, r.class_id))
        return records[0]

    @staticmethod
    def is_course_unlocked(unlocked_courses: Iterable[str], course_id: str) -> bool:
        """Case-insensitive membership test of ``course_id``."""
        wanted = normalize_course_id(course_id)
        if not wanted:
            return False
        return any(normalize_course_id(course) == wanted for course in unlocked_courses)

    async def list_enrolled_classes(self, user_id: str) -> List[ClassRecord]:
        """Classes a user is enrolled in, skipping codes with no class."""
        account = await self._load_user(user_id)
        records = await asyncio.gather(
            *(self._fetch_class(code) for code in account.distinct_classes())
        )
        return [record for record in records if record is not None]

    # --- Enrollment ---

    async def _load_enrollment(self, user_id: str, code: str):
        try:
            record = await self.find_class_by_code(code)
            user_snapshot = await self.store.get_document(USERS_COLLECTION, user_id)
        except StoreError as e:
            raise EnrollmentStoreError(str(e)) from e
        if user_snapshot is None:
            raise EnrollmentStoreError(f"User '{user_id}' not found")
        return record, UserAccount.from_document(user_id, user_snapshot.data)

    async def _write_students(self, record: ClassRecord, students: List[str]) -> None:
        fields = {"students": students, "currentEnrollment": len(students)}
        try:
            await self.store.set_document(CLASSES_COLLECTION, record.class_id, fields, merge=True)
        except StoreError as e:
            raise EnrollmentStoreError(f"Could not update class '{record.code}': {e}") from e

    async def _write_enrolled_classes(self, user_id: str, codes: List[str]) -> None:
        try:
            await self.store.set_document(
                USERS_COLLECTION, user_id, {"enrolledClasses": codes}, merge=True
            )
        except StoreError as e:
            raise EnrollmentStoreError(
                f"Could not update enrollments of '{user_id}', please retry: {e}"
            ) from e

    async def _log(self, user_id: str, event_type: str, class_code: str) -> None:
        if self.activity_log is None:
            return
        try:
            await self.activity_log.record(user_id, event_type, classCode=class_code)
        except StoreError as e:
            logger.warning("Could not record %s for %s: %s", event_type, user_id, e)

    async def enroll_user_in_class(self, user_id: str, class_code: str) -> EnrollmentResult:
        """Enroll a user in the class with the given join code.

        The class side is written first, then the user side. Enrolling again
        is a no-op success, and repairs a missing user-side entry.

        Args:
            user_id: User to enroll.
            class_code: Join code entered by the user.

        Returns:
            EnrollmentResult with the class and whether the user was already
            enrolled.

        Raises:
            ValidationError: If the code is blank.
            ClassNotFoundError: If no class has the code.
            ClassExpiredError: If the due date has passed.
            ClassFullError: If the class is at capacity.
            ClassInactiveError: If the class is not active.
            EnrollmentStoreError: If a store read or write fails.
        """
        code = (class_code or "").strip()
        if not code:
            raise ValidationError("Class code cannot be empty")

        async with self._class_locks.hold(code):
            record, account = await self._load_enrollment(user_id, code)
            if record is None:
                raise ClassNotFoundError(code)

            enrolled_codes = account.distinct_classes()
            if record.has_student(user_id):
                if record.code not in enrolled_codes:
                    logger.info("Repairing enrollment of %s in %s", user_id, record.code)
                    await self._write_enrolled_classes(user_id, enrolled_codes + [record.code])
                return EnrollmentResult(class_record=record, already_enrolled=True)

            now = self._clock()
            if record.is_expired(now):
                raise ClassExpiredError(code)
            if record.is_full():
                raise ClassFullError(code)
            if not record.is_active:
                raise ClassInactiveError(code)

            students = list(dict.fromkeys(record.students)) + [user_id]
            await self._write_students(record, students)
            if record.code not in enrolled_codes:
                await self._write_enrolled_classes(user_id, enrolled_codes + [record.code])

        logger.info("Enrolled %s in class %s", user_id, record.code)
        await self._log(user_id, "ClassEnrolled", record.code)
        updated = record.model_copy(
            update={"students": students, "current_enrollment": len(students)}
        )
        return EnrollmentResult(class_record=updated)

    async def unenroll_user_from_class(self, user_id: str, class_code: str) -> bool:
        """Remove a user from a class.

        Returns:
            True if anything changed; leaving a class one is not in is a no-op.
        """
        code = (class_code or "").strip()
        if not code:
            raise ValidationError("Class code cannot be empty")

        async with self._class_locks.hold(code):
            record, account = await self._load_enrollment(user_id, code)
            changed = False
            if record is not None and record.has_student(user_id):
                students = [s for s in dict.fromkeys(record.students) if s != user_id]
                await self._write_students(record, students)
                changed = True
            enrolled_codes = account.distinct_classes()
            if code in enrolled_codes:
                await self._write_enrolled_classes(
                    user_id, [c for c in enrolled_codes if c != code]
                )
                changed = True

        if changed:
            logger.info("Unenrolled %s from class %s", user_id, code)
            await self._log(user_id, "ClassUnenrolled", code)
        return changed

    async def create_class(
        self,
        code: str,
        name: Optional[str] = None,
        unlocked_courses: Iterable[str] = (),
        is_active: bool = True,
        due_date: Optional[datetime] = None,
        max_students: Optional[int] = None,
    ) -> ClassRecord:
        """Create a class document.

        Raises:
            ValidationError: If the code is blank or the capacity is invalid.
            DuplicateClassCodeError: If an active class already uses the code.
            EnrollmentStoreError: If the store fails.
        """
        code = (code or "").strip()
        if not code:
            raise ValidationError("Class code cannot be empty")
        if max_students is not None and max_students < 1:
            raise ValidationError("maxStudents must be at least 1")
        if due_date is not None and due_date.tzinfo is None:
            due_date = pytz.utc.localize(due_date)

        async with self._class_locks.hold(code):
            try:
                existing = await self.store.query_documents(CLASSES_COLLECTION, "code", code)
                if is_active and any(
                    ClassRecord.from_document(s.doc_id, s.data).is_active for s in existing
                ):
                    raise DuplicateClassCodeError(code)

                class_id = secrets.token_hex(8)
                fields = {
                    "code": code,
                    "name": name,
                    "unlockedCourses": normalize_course_ids(list(unlocked_courses)),
                    "isActive": is_active,
                    "dueDate": due_date.isoformat() if due_date else None,
                    "maxStudents": max_students,
                    "currentEnrollment": 0,
                    "students": [],
                    "createdAt": self._clock().isoformat(),
                }
                await self.store.set_document(CLASSES_COLLECTION, class_id, fields)
            except StoreError as e:
                raise EnrollmentStoreError(f"Could not create class '{code}': {e}") from e

        logger.info("Created class %s (%s)", code, class_id)
        return ClassRecord.from_document(class_id, fields)
