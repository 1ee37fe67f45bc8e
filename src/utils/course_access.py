"""Course access projection.

Maps a set of unlocked course ids onto the fixed course catalog, producing one
locked/unlocked decision per catalog entry.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from schemas.class_schema import normalize_course_id
from schemas.course import AccessSummary, CourseAccessReport, CourseCatalogEntry, load_catalog

logger = logging.getLogger(__name__)


class CourseState(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


def status_message(summary: AccessSummary) -> str:
    if summary.unlocked_count == 0:
        return "No courses available"
    return f"{summary.unlocked_count}/{summary.total_count} courses available"


class CourseAccessProjector:
    """Projects unlocked course sets onto a course catalog."""

    def __init__(self, catalog: Optional[Sequence[CourseCatalogEntry]] = None):
        self.catalog: List[CourseCatalogEntry] = (
            list(catalog) if catalog is not None else load_catalog()
        )

    def _entries(
        self, catalog: Optional[Sequence[CourseCatalogEntry]]
    ) -> Dict[str, CourseCatalogEntry]:
        # Entries differing only by case share a key; the first one is kept.
        entries: Dict[str, CourseCatalogEntry] = {}
        for entry in self.catalog if catalog is None else catalog:
            key = entry.canonical_id
            if not key:
                continue
            if key in entries:
                logger.debug("Catalog entry %r duplicates %r", entry.course_id, entries[key].course_id)
                continue
            entries[key] = entry
        return entries

    def canonical_catalog(
        self, catalog: Optional[Sequence[CourseCatalogEntry]] = None
    ) -> List[CourseCatalogEntry]:
        """Catalog entries with case duplicates removed, in catalog order."""
        return list(self._entries(catalog).values())

    def project_access(
        self,
        unlocked_courses: Iterable[str],
        catalog: Optional[Sequence[CourseCatalogEntry]] = None,
    ) -> Dict[str, bool]:
        """Decide per catalog entry whether it is unlocked.

        Every entry gets exactly one decision; an empty set locks everything.

        Args:
            unlocked_courses: Course ids in any case.
            catalog: Catalog to project onto. Defaults to this projector's.

        Returns:
            Canonical course id -> unlocked, in catalog order.
        """
        unlocked = {normalize_course_id(course) for course in unlocked_courses}
        return {key: key in unlocked for key in self._entries(catalog)}

    def locked_access(
        self, catalog: Optional[Sequence[CourseCatalogEntry]] = None
    ) -> Dict[str, bool]:
        return {key: False for key in self._entries(catalog)}

    @staticmethod
    def summarize(mapping: Mapping[str, bool]) -> AccessSummary:
        return AccessSummary(
            unlocked_count=sum(1 for unlocked in mapping.values() if unlocked),
            total_count=len(mapping),
        )

    @staticmethod
    def locked_courses(mapping: Mapping[str, bool]) -> List[str]:
        return [course for course, unlocked in mapping.items() if not unlocked]

    @staticmethod
    def unlocked_courses(mapping: Mapping[str, bool]) -> List[str]:
        return [course for course, unlocked in mapping.items() if unlocked]

    def report(self, mapping: Mapping[str, bool]) -> CourseAccessReport:
        """Wrap a projection with its summary and status line."""
        summary = self.summarize(mapping)
        return CourseAccessReport(
            courses=dict(mapping),
            summary=summary,
            status=status_message(summary),
            unlocked_courses=self.unlocked_courses(mapping),
        )


class CourseBoard:
    """Locked/unlocked state of each course button.

    Every course starts locked. ``apply`` sets each course to its projected
    decision; ``lock_all`` is the fallback on failure or sign-out.
    """

    def __init__(self, course_ids: Iterable[str]):
        self._states: Dict[str, CourseState] = {}
        for course_id in course_ids:
            self._states.setdefault(normalize_course_id(course_id), CourseState.LOCKED)

    def apply(self, mapping: Mapping[str, bool]) -> None:
        decisions = {normalize_course_id(k): v for k, v in mapping.items()}
        for course_id in self._states:
            unlocked = decisions.get(course_id, False)
            self._states[course_id] = CourseState.UNLOCKED if unlocked else CourseState.LOCKED

    def lock_all(self) -> None:
        for course_id in self._states:
            self._states[course_id] = CourseState.LOCKED

    def state(self, course_id: str) -> CourseState:
        # Unknown courses are never unlocked
        return self._states.get(normalize_course_id(course_id), CourseState.LOCKED)

    def is_unlocked(self, course_id: str) -> bool:
        return self.state(course_id) == CourseState.UNLOCKED

    def snapshot(self) -> Dict[str, bool]:
        return {k: v == CourseState.UNLOCKED for k, v in self._states.items()}
