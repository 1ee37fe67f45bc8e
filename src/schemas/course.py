"""Course schema definitions.

This module defines the statically configured course catalog entries and the
access report returned to clients.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from config import COURSE_CATALOG, COURSE_SCENES
from schemas.class_schema import normalize_course_id


class CourseCatalogEntry(BaseModel):
    """A fixed course identifier with its UI affordance."""

    course_id: str = Field(description="Course id as configured; compared case-insensitively.")
    display_name: Optional[str] = Field(default=None)
    scene_name: Optional[str] = Field(
        default=None,
        description="AR scene opened when the course button is pressed.",
    )

    @property
    def canonical_id(self) -> str:
        return normalize_course_id(self.course_id)


class AccessSummary(BaseModel):
    unlocked_count: int
    total_count: int


class CourseAccessReport(BaseModel):
    """Per-course decisions for one resolution pass."""

    courses: Dict[str, bool] = Field(description="Canonical course id -> unlocked.")
    summary: AccessSummary
    status: str = Field(description="Status line shown above the course list.")
    unlocked_courses: List[str] = Field(default_factory=list)


def load_catalog(course_ids: Optional[List[str]] = None) -> List[CourseCatalogEntry]:
    """Build catalog entries for the configured course ids.

    Args:
        course_ids: Course ids to use. Defaults to ``config.COURSE_CATALOG``.

    Returns:
        Catalog entries in configuration order.
    """
    entries = []
    for course_id in course_ids if course_ids is not None else COURSE_CATALOG:
        scene = COURSE_SCENES.get(normalize_course_id(course_id), {})
        entries.append(
            CourseCatalogEntry(
                course_id=course_id,
                display_name=scene.get("display_name", course_id),
                scene_name=scene.get("scene_name"),
            )
        )
    return entries
