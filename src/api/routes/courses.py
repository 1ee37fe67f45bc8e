"""Course catalog and access routes."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.routes.auth import get_current_account, get_current_session
from core.dependencies import AccessServiceDep, CourseProjectorDep
from core.session_context import SessionContext
from schemas.class_schema import normalize_course_id
from schemas.course import CourseAccessReport, CourseCatalogEntry
from schemas.user import UserAccount

router = APIRouter(prefix="/api/courses", tags=["Course"])


@router.get("/catalog", response_model=List[CourseCatalogEntry], summary="课程目录")
def get_catalog(projector: CourseProjectorDep) -> List[CourseCatalogEntry]:
    return projector.canonical_catalog()


@router.get("/access", response_model=CourseAccessReport, summary="课程解锁状态")
async def get_access(
    access_service: AccessServiceDep,
    context: SessionContext = Depends(get_current_session),
    account: UserAccount = Depends(get_current_account),
) -> CourseAccessReport:
    """Resolve which catalog courses the current user has unlocked.

    Unverified users and failed resolutions get every course locked rather
    than an error.

    Returns:
        CourseAccessReport with one decision per catalog course.
    """
    return await access_service.resolve_access(context, account)


@router.get("/{course_id}/access", summary="单个课程解锁状态")
async def get_course_access(
    course_id: str,
    access_service: AccessServiceDep,
    projector: CourseProjectorDep,
    context: SessionContext = Depends(get_current_session),
    account: UserAccount = Depends(get_current_account),
) -> dict:
    canonical = normalize_course_id(course_id)
    entry = next(
        (e for e in projector.canonical_catalog() if e.canonical_id == canonical), None
    )
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Course '{course_id}' not found.",
        )
    report = await access_service.resolve_access(context, account)
    unlocked = report.courses.get(canonical, False)
    return {
        "course_id": canonical,
        "display_name": entry.display_name,
        "scene_name": entry.scene_name if unlocked else None,
        "unlocked": unlocked,
    }
