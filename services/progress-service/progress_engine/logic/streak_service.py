"""
Streak tracker

Consecutive UTC calendar days with at least one activity. The streak lives on
the profile (current, longest, lastActivityDate) and changes at most once per
day. Whenever the activity falls on the streak's latest day, study_streak
achievements and streak_maintenance goals are re-checked and milestone days are
celebrated. Both checks are idempotent, so a redelivered event repeats them safely.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional, Tuple

from progress_engine.exceptions import ConcurrencyConflictError
from progress_engine.logic import achievement_service, celebrations, goal_service, profile_service
from progress_engine.schemas import (
    CelebrationData,
    CelebrationEvent,
    CelebrationType,
    GamificationProfile,
    StreakInfo,
)

logger = logging.getLogger(__name__)

STREAK_MILESTONES = [7, 14, 30, 50, 100, 365]


@dataclass
class StreakOutcome:
    streak: StreakInfo
    increased: bool = False
    reset: bool = False
    celebrations: List[CelebrationEvent] = field(default_factory=list)
    achievements_unlocked: List[str] = field(default_factory=list)
    goals_completed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def calculate_streak_state(streak: StreakInfo, activity_day: date) -> Tuple[StreakInfo, bool, bool]:
    """
    Calculate the new streak state for an activity on `activity_day`

    Returns:
        Tuple of (new_state, increased, reset)

    Logic:
        - First activity ever: streak starts at 1
        - Same day (or an older, late-arriving day): unchanged
        - Day after the last activity: +1
        - Any gap: restarts at 1
    """
    today = activity_day.isoformat()

    if not streak.lastActivityDate:
        logger.info("First activity ever, starting streak at 1")
        return StreakInfo(current=1, longest=max(streak.longest, 1), lastActivityDate=today), True, False

    last_day = date.fromisoformat(streak.lastActivityDate)

    if activity_day <= last_day:
        return streak.model_copy(), False, False

    if activity_day - last_day == timedelta(days=1):
        new_current = streak.current + 1
        logger.info(f"Consecutive day activity: streak incremented from {streak.current} to {new_current}")
        return StreakInfo(current=new_current, longest=max(streak.longest, new_current), lastActivityDate=today), True, False

    logger.info(f"Streak broken: last activity {streak.lastActivityDate}, current day {today}")
    return StreakInfo(current=1, longest=max(streak.longest, 1), lastActivityDate=today), False, True


def is_milestone(streak: int) -> bool:
    return streak in STREAK_MILESTONES


def update_streak(user_id: str, occurred_at: datetime) -> Tuple[StreakInfo, bool, bool]:
    """Persist the streak change for one activity (CAS on the profile)"""
    def apply(profile: GamificationProfile) -> Tuple[bool, bool]:
        new_state, increased, reset = calculate_streak_state(profile.streaks, occurred_at.date())
        profile.streaks = new_state
        return increased, reset

    profile, (increased, reset) = profile_service.mutate_profile(user_id, apply, "streak update")
    return profile.streaks, increased, reset


def process_streak(user_id: str, occurred_at: datetime, now: Optional[datetime] = None) -> StreakOutcome:
    """
    Update the streak, then re-check streak driven achievements and goals.

    Errors in the downstream checks are logged and reported. ConcurrencyConflictError
    propagates so the event can be redelivered.
    """
    streak, increased, reset = update_streak(user_id, occurred_at)
    outcome = StreakOutcome(streak=streak, increased=increased, reset=reset)

    if streak.lastActivityDate != occurred_at.date().isoformat():
        # Late event for an earlier day
        return outcome

    if is_milestone(streak.current):
        celebration = celebrations.emit(
            user_id,
            CelebrationType.STREAK_MILESTONE,
            key=f"{streak.current}:{streak.lastActivityDate}",
            title="Streak Milestone!",
            message=f"Amazing! You have studied {streak.current} days in a row",
            data=CelebrationData(streak=streak.current),
        )
        if celebration:
            outcome.celebrations.append(celebration)

    try:
        evaluation = achievement_service.evaluate_streak(user_id, streak.current)
        outcome.achievements_unlocked.extend(evaluation.unlocked)
        outcome.celebrations.extend(evaluation.celebrations)
        outcome.errors.extend(evaluation.errors)
    except ConcurrencyConflictError:
        raise
    except Exception as e:
        logger.error(f"Streak achievement check failed for user {user_id}: {str(e)}", exc_info=True)
        outcome.errors.append(f"streak achievements: {str(e)}")

    try:
        evaluation = goal_service.apply_streak(user_id, streak.current, now)
        outcome.goals_completed.extend(evaluation.completed)
        outcome.celebrations.extend(evaluation.celebrations)
        outcome.errors.extend(evaluation.errors)
    except ConcurrencyConflictError:
        raise
    except Exception as e:
        logger.error(f"Streak goal check failed for user {user_id}: {str(e)}", exc_info=True)
        outcome.errors.append(f"streak goals: {str(e)}")

    return outcome
