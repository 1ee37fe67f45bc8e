"""Class enrollment routes."""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.routes.auth import get_current_account, get_verified_account
from core.dependencies import EnrollmentResolverDep
from schemas.class_schema import ClassInfo, CreateClassRequest, JoinClassRequest
from schemas.user import UserAccount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classes", tags=["Class"])


@router.get("", response_model=List[ClassInfo], summary="列出已加入的班级")
async def list_classes(
    resolver: EnrollmentResolverDep,
    account: UserAccount = Depends(get_current_account),
) -> List[ClassInfo]:
    records = await resolver.list_enrolled_classes(account.user_id)
    return [ClassInfo.from_record(record) for record in records]


@router.post("/join", summary="通过班级代码加入班级")
async def join_class(
    req: JoinClassRequest,
    resolver: EnrollmentResolverDep,
    account: UserAccount = Depends(get_verified_account),
) -> dict:
    """Join a class using its class code.

    Joining a class the user is already in succeeds without changes.

    Args:
        req: Join request with the class code.
        resolver: Injected EnrollmentResolver instance.
        account: Current verified account.

    Returns:
        Dictionary with the joined class and whether it was already joined.
    """
    result = await resolver.enroll_user_in_class(account.user_id, req.class_code)
    message = (
        "You are already enrolled in this class"
        if result.already_enrolled
        else "Successfully enrolled in class!"
    )
    return {
        "success": True,
        "message": message,
        "already_enrolled": result.already_enrolled,
        "class": ClassInfo.from_record(result.class_record).model_dump(),
    }


@router.post("/leave", summary="退出班级")
async def leave_class(
    req: JoinClassRequest,
    resolver: EnrollmentResolverDep,
    account: UserAccount = Depends(get_verified_account),
) -> dict:
    changed = await resolver.unenroll_user_from_class(account.user_id, req.class_code)
    return {
        "success": True,
        "message": "Left class" if changed else "You are not enrolled in this class",
    }


@router.post("", response_model=ClassInfo, summary="创建班级")
async def create_class(
    req: CreateClassRequest,
    resolver: EnrollmentResolverDep,
    account: UserAccount = Depends(get_verified_account),
) -> ClassInfo:
    if account.role not in ["admin", "teacher"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only teachers can create classes.",
        )
    record = await resolver.create_class(
        code=req.code,
        name=req.name,
        unlocked_courses=req.unlocked_courses,
        is_active=req.is_active,
        due_date=req.due_date,
        max_students=req.max_students,
    )
    return ClassInfo.from_record(record)
