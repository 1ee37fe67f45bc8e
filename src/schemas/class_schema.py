"""Class schema definitions.

This module defines the ClassRecord data model decoded from ``classes``
documents, and the request/response models of the class routes.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytz
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def normalize_course_id(course_id: Any) -> str:
    """Canonical form of a course identifier: trimmed and lower-cased."""
    return str(course_id).strip().lower()


def normalize_course_ids(course_ids: Any) -> List[str]:
    """Normalize a list of course ids, dropping blanks and duplicates."""
    if course_ids is None:
        return []
    if not isinstance(course_ids, (list, tuple, set)):
        raise ValueError("unlockedCourses must be a list")
    result: List[str] = []
    for course_id in course_ids:
        normalized = normalize_course_id(course_id)
        if normalized and normalized not in result:
            result.append(normalized)
    return result


class ClassRecord(BaseModel):
    """An enrollable class, addressed by its human-entered join code.

    ``class_id`` is the store's internal document id and is never used as the
    join code.
    """

    model_config = ConfigDict(populate_by_name=True)

    class_id: str = Field(description="Internal document id in the store.")
    code: str = Field(description="Human-entered join code.")
    name: Optional[str] = Field(default=None)
    unlocked_courses: List[str] = Field(
        default_factory=list,
        alias="unlockedCourses",
        description="Lower-cased course ids this class unlocks.",
    )
    is_active: bool = Field(default=True, alias="isActive")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")
    max_students: Optional[int] = Field(default=None, alias="maxStudents")
    current_enrollment: Optional[int] = Field(default=None, alias="currentEnrollment")
    students: List[str] = Field(default_factory=list)
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_unlock_field(cls, data: Any) -> Any:
        # Older class documents store the list under "unlockCourse".
        if isinstance(data, dict) and "unlockedCourses" not in data and "unlocked_courses" not in data:
            if "unlockCourse" in data:
                data = dict(data)
                data["unlockedCourses"] = data.pop("unlockCourse")
        return data

    @field_validator("code", mode="before")
    @classmethod
    def _code_to_str(cls, value: Any) -> str:
        return str(value).strip()

    @field_validator("unlocked_courses", mode="before")
    @classmethod
    def _normalize_unlocks(cls, value: Any) -> List[str]:
        return normalize_course_ids(value)

    @field_validator("students", mode="before")
    @classmethod
    def _coerce_students(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, (list, tuple, set)):
            raise ValueError("students must be a list")
        return [str(student) for student in value]

    @field_validator("is_active", mode="before")
    @classmethod
    def _default_active(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator("due_date", mode="after")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return pytz.utc.localize(value)
        return value

    @classmethod
    def from_document(cls, class_id: str, data: Dict[str, Any]) -> "ClassRecord":
        """Decode a ``classes`` document.

        Args:
            class_id: Internal document id.
            data: Raw document fields.

        Returns:
            Decoded ClassRecord.
        """
        fields = dict(data)
        fields.pop("class_id", None)
        return cls(class_id=class_id, **fields)

    @property
    def enrollment_count(self) -> int:
        if self.current_enrollment is not None:
            return self.current_enrollment
        return len(set(self.students))

    def is_expired(self, now: datetime) -> bool:
        return self.due_date is not None and self.due_date < now

    def is_full(self) -> bool:
        return self.max_students is not None and self.enrollment_count >= self.max_students

    def is_joinable(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now) and not self.is_full()

    def has_student(self, user_id: str) -> bool:
        return user_id in self.students


class CreateClassRequest(BaseModel):
    code: str
    name: Optional[str] = None
    unlocked_courses: List[str] = Field(default_factory=list)
    is_active: bool = True
    due_date: Optional[datetime] = None
    max_students: Optional[int] = Field(default=None, ge=1)


class JoinClassRequest(BaseModel):
    class_code: str


class ClassInfo(BaseModel):
    """Public view of a class returned by the API."""

    class_id: str
    code: str
    name: Optional[str] = None
    unlocked_courses: List[str]
    is_active: bool
    due_date: Optional[str] = None
    max_students: Optional[int] = None
    current_enrollment: int

    @classmethod
    def from_record(cls, record: ClassRecord) -> "ClassInfo":
        return cls(
            class_id=record.class_id,
            code=record.code,
            name=record.name,
            unlocked_courses=record.unlocked_courses,
            is_active=record.is_active,
            due_date=record.due_date.isoformat() if record.due_date else None,
            max_students=record.max_students,
            current_enrollment=record.enrollment_count,
        )
