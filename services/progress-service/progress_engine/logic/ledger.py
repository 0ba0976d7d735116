"""
Progress ledger

One immutable record per activity event. Corrections are new records, never
updates. A record is stamped processedAt once every stage ran for it; a
redelivered event whose record is not stamped yet resumes from that record.
"""
import logging
import uuid
from datetime import datetime
from typing import List, Optional, Tuple

from progress_engine import dynamo_ledger
from progress_engine.config import get_settings
from progress_engine.exceptions import DuplicateEventError
from progress_engine.logic.points import calculate_points
from progress_engine.schemas import ActivityEvent, ProgressRecord, RecordPoints

settings = get_settings()
logger = logging.getLogger(__name__)


def build_record(event: ActivityEvent, streak_before: int, streak_after: int = 0) -> ProgressRecord:
    """
    Build the ledger entry for an event.

    Args:
        event: Incoming activity
        streak_before: Streak value read before the streak tracker runs for this event
        streak_after: Streak value this event leaves behind
    """
    data = event.activityData
    performance = data.performance()
    points = calculate_points(event.activityType, performance)

    return ProgressRecord(
        id=event.eventId or str(uuid.uuid4()),
        userId=event.userId,
        subject=data.subject or "General",
        grade=data.grade or "Unknown",
        topic=data.topic,
        activityType=event.activityType,
        performance=performance,
        points=RecordPoints(earned=points.base, bonus=points.bonus, total=points.total),
        streak=streak_before,
        streakAfter=streak_after,
        date=event.occurredAt,
        eventId=event.eventId,
    )


def record_activity(event: ActivityEvent, streak_before: int, streak_after: int = 0) -> Tuple[ProgressRecord, bool]:
    """
    Append the event to the ledger.

    Returns:
        Tuple of (record, resumed). `resumed` is True when the event was
        recorded earlier but never finished; the stored record is returned.

    Raises:
        DuplicateEventError: the eventId was already recorded and processed
    """
    record = build_record(event, streak_before, streak_after)
    try:
        dynamo_ledger.append_record(record)
    except DuplicateEventError:
        stored = dynamo_ledger.get_record(record.userId, record.date, record.id)
        if stored is None or stored.processedAt is not None:
            raise
        logger.info(f"Resuming unfinished event {record.id} for user {record.userId}")
        return stored, True

    logger.info(
        f"Recorded {record.activityType} for user {record.userId}: "
        f"{record.points.total} points ({record.points.earned} + {record.points.bonus} bonus)"
    )
    return record, False


def mark_processed(record: ProgressRecord, processed_at: datetime) -> ProgressRecord:
    return dynamo_ledger.mark_processed(record, processed_at)


def remember(applied: List[str], key: str) -> List[str]:
    """Append `key` to a bounded most-recent-last list of applied ids"""
    return (applied + [key])[-settings.IDEMPOTENCY_WINDOW:]


def get_history(user_id: str, limit: Optional[int] = None) -> List[ProgressRecord]:
    """Most recent records first"""
    return dynamo_ledger.get_user_records(user_id, limit=limit or settings.DEFAULT_PAGE_LIMIT)
