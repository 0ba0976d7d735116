"""
Leaderboards

- GET  /api/v1/leaderboards/{leaderboard_id}?limit=50
- GET  /api/v1/leaderboards/{leaderboard_id}/users/{user_id}
- POST /api/v1/leaderboards/{leaderboard_id}/recompute
"""
import logging

from fastapi import APIRouter, HTTPException, Query

from progress_engine.exceptions import GamificationError
from progress_engine.logic import leaderboard_service
from progress_engine.schemas import LeaderboardPosition, LeaderboardSnapshot

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leaderboards", tags=["Leaderboards"])


@router.get("/{leaderboard_id}", response_model=LeaderboardSnapshot)
async def get_leaderboard(leaderboard_id: str, limit: int = Query(50, ge=1, le=1000)):
    try:
        return leaderboard_service.get_leaderboard(leaderboard_id, limit)
    except GamificationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error getting leaderboard {leaderboard_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{leaderboard_id}/users/{user_id}", response_model=LeaderboardPosition)
async def get_user_position(leaderboard_id: str, user_id: str):
    try:
        return leaderboard_service.get_user_position(leaderboard_id, user_id)
    except GamificationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error getting position of {user_id} on {leaderboard_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{leaderboard_id}/recompute", response_model=LeaderboardSnapshot)
async def recompute_leaderboard(leaderboard_id: str):
    """On-demand refresh, outside the scheduled cadence"""
    try:
        return leaderboard_service.recompute_leaderboard(leaderboard_id)
    except GamificationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error recomputing leaderboard {leaderboard_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
