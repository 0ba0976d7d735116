"""
Per-user read surface

- GET /api/v1/users/{user_id}/profile
- GET /api/v1/users/{user_id}/achievements?status=all|completed|in_progress
- GET /api/v1/users/{user_id}/progress?limit=50
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query

from progress_engine.logic import achievement_service, ledger, profile_service
from progress_engine.schemas import (
    AchievementStatusFilter,
    AchievementView,
    GamificationProfile,
    ProgressHistoryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Profile"])


@router.get("/{user_id}/profile", response_model=GamificationProfile)
async def get_profile(user_id: str):
    """Profile of the user; a default level-1 profile for users with no activity yet."""
    try:
        return profile_service.get_profile(user_id)
    except Exception as e:
        logger.error(f"Error getting profile for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{user_id}/achievements", response_model=List[AchievementView])
async def get_achievements(
    user_id: str,
    status: AchievementStatusFilter = Query(AchievementStatusFilter.ALL, description="all, completed or in_progress"),
):
    try:
        return achievement_service.get_achievements(user_id, status)
    except Exception as e:
        logger.error(f"Error getting achievements for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{user_id}/progress", response_model=ProgressHistoryResponse)
async def get_progress_history(user_id: str, limit: int = Query(50, ge=1, le=500)):
    try:
        records = ledger.get_history(user_id, limit)
        return ProgressHistoryResponse(userId=user_id, records=records, count=len(records))
    except Exception as e:
        logger.error(f"Error getting progress history for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
