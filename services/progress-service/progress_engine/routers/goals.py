"""
Study goals

- GET   /api/v1/users/{user_id}/goals/active
- GET   /api/v1/users/{user_id}/goals?status=
- POST  /api/v1/users/{user_id}/goals
- PATCH /api/v1/users/{user_id}/goals/{goal_id}/status
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from progress_engine.exceptions import GamificationError
from progress_engine.logic import goal_service
from progress_engine.schemas import GoalCreate, GoalStatus, GoalStatusUpdate, StudyGoal

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Goals"])


@router.get("/{user_id}/goals/active", response_model=List[StudyGoal])
async def get_active_goals(user_id: str):
    try:
        return goal_service.get_active_goals(user_id)
    except Exception as e:
        logger.error(f"Error getting active goals for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{user_id}/goals", response_model=List[StudyGoal])
async def list_goals(user_id: str, goal_status: Optional[GoalStatus] = Query(None, alias="status")):
    try:
        return goal_service.list_goals(user_id, goal_status)
    except Exception as e:
        logger.error(f"Error listing goals for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{user_id}/goals", response_model=StudyGoal, status_code=status.HTTP_201_CREATED)
async def create_goal(user_id: str, payload: GoalCreate):
    try:
        return goal_service.create_goal(user_id, payload)
    except GamificationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error creating goal for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.patch("/{user_id}/goals/{goal_id}/status", response_model=StudyGoal)
async def update_goal_status(user_id: str, goal_id: str, request: GoalStatusUpdate):
    """Pause, resume or cancel a goal"""
    try:
        return goal_service.update_goal_status(user_id, goal_id, request.status)
    except GamificationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error updating goal {goal_id} for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
