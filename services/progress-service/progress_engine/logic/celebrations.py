"""
Celebration emitter

Builds one CelebrationEvent per qualifying transition, persists it once and
hands it to the delivery channel (SNS). Delivery failures never fail the
transition that produced the celebration.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from progress_engine import dynamo_celebrations
from progress_engine.aws_client import aws_client
from progress_engine.config import get_settings
from progress_engine.exceptions import NotFoundError
from progress_engine.schemas import (
    CelebrationData,
    CelebrationEvent,
    CelebrationPriority,
    CelebrationType,
)

settings = get_settings()
logger = logging.getLogger(__name__)

# type -> (animation, sound, priority)
CELEBRATION_STYLES: Dict[CelebrationType, Tuple[str, str, CelebrationPriority]] = {
    CelebrationType.ACHIEVEMENT_EARNED: ("confetti", "cheer", CelebrationPriority.MEDIUM),
    CelebrationType.GOAL_COMPLETED: ("fireworks", "fanfare", CelebrationPriority.HIGH),
    CelebrationType.LEVEL_UP: ("stars", "applause", CelebrationPriority.EPIC),
    CelebrationType.STREAK_MILESTONE: ("balloons", "ding", CelebrationPriority.MEDIUM),
    CelebrationType.LEADERBOARD_POSITION: ("trophy", "bell", CelebrationPriority.HIGH),
}
DEFAULT_STYLE = ("confetti", "cheer", CelebrationPriority.MEDIUM)


def celebration_id(celebration_type: CelebrationType, key: str) -> str:
    """Deterministic id for one transition, e.g. achievement_earned:first_lesson"""
    return f"{celebration_type.value}:{key}"


def build_celebration(
    user_id: str,
    celebration_type: CelebrationType,
    key: str,
    title: str,
    message: str,
    data: Optional[CelebrationData] = None,
    now: Optional[datetime] = None,
) -> CelebrationEvent:
    now = now or datetime.now(timezone.utc)
    animation, sound, priority = CELEBRATION_STYLES.get(celebration_type, DEFAULT_STYLE)
    return CelebrationEvent(
        id=celebration_id(celebration_type, key),
        userId=user_id,
        type=celebration_type,
        title=title,
        message=message,
        data=data or CelebrationData(),
        animation=animation,
        sound=sound,
        priority=priority,
        createdAt=now,
        expiresAt=now + timedelta(days=settings.CELEBRATION_TTL_DAYS),
    )


def emit(
    user_id: str,
    celebration_type: CelebrationType,
    key: str,
    title: str,
    message: str,
    data: Optional[CelebrationData] = None,
    now: Optional[datetime] = None,
) -> Optional[CelebrationEvent]:
    """
    Record a celebration for a transition.

    Returns:
        The new celebration, or None if this transition was already celebrated
    """
    celebration = build_celebration(user_id, celebration_type, key, title, message, data, now)
    if not dynamo_celebrations.create_celebration(celebration):
        return None

    logger.info(f"Celebration {celebration.id} emitted for user {user_id}")
    return celebration


async def publish(celebrations: List[CelebrationEvent]) -> int:
    """
    Deliver celebrations to the notification channel.

    Returns:
        Number of celebrations the channel accepted
    """
    delivered = 0
    for celebration in celebrations:
        try:
            if await aws_client.publish_celebration(celebration):
                delivered += 1
        except Exception as e:
            logger.error(f"Error publishing celebration {celebration.id}: {str(e)}", exc_info=True)
    return delivered


def get_pending(user_id: str, now: Optional[datetime] = None) -> List[CelebrationEvent]:
    """Celebrations not yet shown and not expired, oldest first"""
    now = now or datetime.now(timezone.utc)
    pending = [
        c for c in dynamo_celebrations.list_celebrations(user_id)
        if not c.isShown and c.expiresAt > now
    ]
    return sorted(pending, key=lambda c: c.createdAt)


def mark_shown(user_id: str, celebration_id: str, now: Optional[datetime] = None) -> CelebrationEvent:
    now = now or datetime.now(timezone.utc)
    celebration = dynamo_celebrations.mark_shown(user_id, celebration_id, now)
    if celebration is None:
        raise NotFoundError(f"Celebration {celebration_id} not found")
    return celebration
