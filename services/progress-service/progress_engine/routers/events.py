"""
Activity ingestion

- POST /api/v1/events/activity
"""
import logging

from fastapi import APIRouter, HTTPException

from progress_engine.exceptions import GamificationError
from progress_engine.logic import pipeline
from progress_engine.schemas import ActivityEvent, ProcessingResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/activity", response_model=ProcessingResult)
async def ingest_activity(event: ActivityEvent):
    """
    Process one learning activity: points, ledger, streak, profile,
    achievements, goals and celebrations.

    Answers 409 when concurrent updates kept conflicting; the event should be
    redelivered with the same eventId and occurredAt. The redelivery picks up
    where the failed attempt stopped and reports `resumed`.
    """
    try:
        return await pipeline.process_activity(event)
    except GamificationError as e:
        logger.warning(f"Activity for user {event.userId} rejected: {e.detail}")
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except Exception as e:
        logger.error(f"Error processing activity for user {event.userId}: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
