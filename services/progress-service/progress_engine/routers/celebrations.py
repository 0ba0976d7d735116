"""
Celebrations

- GET  /api/v1/users/{user_id}/celebrations/pending
- POST /api/v1/users/{user_id}/celebrations/{celebration_id}/shown
"""
import logging
from typing import List

from fastapi import APIRouter, HTTPException

from progress_engine.exceptions import GamificationError
from progress_engine.logic import celebrations
from progress_engine.schemas import CelebrationEvent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Celebrations"])


@router.get("/{user_id}/celebrations/pending", response_model=List[CelebrationEvent])
async def get_pending_celebrations(user_id: str):
    """Not yet shown and not expired, oldest first"""
    try:
        return celebrations.get_pending(user_id)
    except Exception as e:
        logger.error(f"Error getting pending celebrations for user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{user_id}/celebrations/{celebration_id}/shown", response_model=CelebrationEvent)
async def mark_celebration_shown(user_id: str, celebration_id: str):
    try:
        return celebrations.mark_shown(user_id, celebration_id)
    except GamificationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error marking celebration {celebration_id} shown: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
