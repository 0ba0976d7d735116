"""
Activity event pipeline

ActivityEvent -> points -> ledger append -> streak tracker -> profile aggregator
-> achievement evaluator -> goal tracker -> processed stamp -> celebration delivery

Events of one user are processed strictly one at a time, in arrival order
(per-user asyncio.Lock); different users never wait on each other. Across
processes, every per-user record is written with compare-and-swap.

Failure isolation:
- Ledger append errors abort the event (nothing else has happened yet)
- ConcurrencyConflictError aborts the event so the caller can redeliver it
- Any other error in one stage is logged, reported in `errors`, and the
  remaining stages still run

Redelivery: the ledger record is stamped processedAt after the last stage.
A redelivered event whose record is not stamped resumes from the stored
record; the profile, achievement progress and goals remember the record ids
they applied, so each stage takes effect once.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, Optional

from progress_engine.exceptions import ConcurrencyConflictError, DuplicateEventError
from progress_engine.logic import (
    achievement_service,
    celebrations,
    goal_service,
    ledger,
    profile_service,
    streak_service,
)
from progress_engine.logic.points import calculate_points
from progress_engine.schemas import ActivityEvent, ProcessingResult

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """
    One asyncio.Lock per user with events in flight.

    Entries are reference counted and dropped when the last holder or waiter
    for a user leaves.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]
                del self._locks[user_id]

    def __len__(self) -> int:
        return len(self._locks)


user_locks = UserLockRegistry()


def emit_metric(metric_name: str, value: float):
    """Metrics are log lines picked up by the log pipeline"""
    logger.info(f"METRIC: {metric_name} = {value}")


def _run_stage(name: str, result: ProcessingResult, log_context: dict, stage: Callable[[], None]) -> None:
    try:
        stage()
    except ConcurrencyConflictError:
        raise
    except Exception as e:
        logger.error(f"Stage {name} failed: {str(e)}", extra=log_context, exc_info=True)
        emit_metric('PipelineStageErrors', 1)
        result.errors.append(f"{name}: {str(e)}")


def process_event_sync(event: ActivityEvent, now: Optional[datetime] = None) -> ProcessingResult:
    """
    Run every stage for one event. Callers must hold the user's lock.

    Raises:
        ConcurrencyConflictError: retries exhausted on a per-user record
    """
    now = now or datetime.now(timezone.utc)
    user_id = event.userId
    log_context = {
        'event': 'activity',
        'user_id': user_id,
        'activity_type': event.activityType,
        'event_id': event.eventId,
    }
    logger.info("Activity event received", extra=log_context)
    result = ProcessingResult(userId=user_id)

    # 1. Ledger append (streak read before the streak tracker runs)
    streaks = profile_service.get_profile(user_id).streaks
    streak_after, _, _ = streak_service.calculate_streak_state(streaks, event.occurredAt.date())
    try:
        record, resumed = ledger.record_activity(event, streaks.current, streak_after.current)
    except DuplicateEventError:
        logger.info("Duplicate event skipped", extra=log_context)
        emit_metric('DuplicateEvents', 1)
        result.duplicate = True
        return result

    if resumed:
        log_context['resumed'] = True
        emit_metric('ResumedEvents', 1)
    result.record = record
    result.resumed = resumed
    result.points = calculate_points(record.activityType, record.performance)

    # 2. Streak tracker (+ streak achievements / goals)
    def streak_stage():
        outcome = streak_service.process_streak(user_id, record.date, now)
        result.streak = outcome.streak
        result.achievementsUnlocked.extend(outcome.achievements_unlocked)
        result.goalsCompleted.extend(outcome.goals_completed)
        result.celebrations.extend(outcome.celebrations)
        result.errors.extend(outcome.errors)

    # 3. Profile aggregator
    def profile_stage():
        update = profile_service.apply_activity(
            user_id, record.activityType, record.points.total, record.performance, record.date,
            record_id=record.id,
        )
        result.levelUps.extend(update.level_ups)
        result.celebrations.extend(update.celebrations)

    # 4. Achievement evaluator
    def achievement_stage():
        evaluation = achievement_service.evaluate_event(user_id, event, now, record_id=record.id)
        result.achievementsUnlocked.extend(evaluation.unlocked)
        result.celebrations.extend(evaluation.celebrations)
        result.errors.extend(evaluation.errors)

    # 5. Goal tracker
    def goal_stage():
        evaluation = goal_service.evaluate_event(user_id, event, now, record_id=record.id)
        result.goalsCompleted.extend(evaluation.completed)
        result.celebrations.extend(evaluation.celebrations)
        result.errors.extend(evaluation.errors)

    _run_stage('streak', result, log_context, streak_stage)
    _run_stage('profile', result, log_context, profile_stage)
    _run_stage('achievements', result, log_context, achievement_stage)
    _run_stage('goals', result, log_context, goal_stage)

    result.record = ledger.mark_processed(record, now)

    log_context['achievements_unlocked'] = result.achievementsUnlocked
    log_context['celebrations'] = len(result.celebrations)
    logger.info("Activity event processed", extra=log_context)
    emit_metric('PointsAwarded', record.points.total)
    emit_metric('AchievementsUnlocked', len(result.achievementsUnlocked))
    return result


async def process_activity(event: ActivityEvent, now: Optional[datetime] = None) -> ProcessingResult:
    """
    Process one activity event for its user, in FIFO order with that user's other events,
    then deliver the celebrations it produced.
    """
    async with user_locks.hold(event.userId):
        result = await asyncio.to_thread(process_event_sync, event, now)

    if result.celebrations:
        await celebrations.publish(result.celebrations)
    return result
