"""Profile routes.

This module handles HTTP endpoints for the statistics page and the user's
activity history.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from api.routes.auth import get_current_account
from core.dependencies import ActivityLogDep
from schemas.activity import ActivityEntry, RecordActivityRequest, UserStatistics
from schemas.user import UserAccount

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["Profile"])


@router.get("/statistics", response_model=UserStatistics, summary="用户统计信息")
async def get_statistics(
    activity_log: ActivityLogDep,
    account: UserAccount = Depends(get_current_account),
) -> UserStatistics:
    return await activity_log.build_statistics(account)


@router.get("/activity", response_model=List[ActivityEntry], summary="活动记录")
async def list_activity(
    activity_log: ActivityLogDep,
    limit: int = Query(default=50, ge=1, le=500),
    account: UserAccount = Depends(get_current_account),
) -> List[ActivityEntry]:
    return await activity_log.list_entries(account.user_id, limit=limit)


@router.post("/activity", summary="记录活动")
async def record_activity(
    req: RecordActivityRequest,
    activity_log: ActivityLogDep,
    account: UserAccount = Depends(get_current_account),
) -> dict:
    """Record a client-side event such as a scene load or button click.

    Args:
        req: Event type and its scene or button name.
        activity_log: Injected ActivityLog instance.
        account: Current account.

    Returns:
        Dictionary with the new entry id.
    """
    entry_id = await activity_log.record(
        account.user_id,
        req.event_type,
        sceneName=req.scene_name,
        buttonName=req.button_name,
    )
    return {"success": True, "entry_id": entry_id}
