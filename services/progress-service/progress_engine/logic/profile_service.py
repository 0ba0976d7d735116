"""
Profile aggregator

Applies each activity's deltas (points, experience, statistics) to the user's
GamificationProfile and runs the level-up loop. Every change goes through
mutate_profile, a read-modify-write guarded by the profile version.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple, TypeVar

from progress_engine import dynamo, dynamo_profiles
from progress_engine.config import get_settings
from progress_engine.logic import celebrations, ledger
from progress_engine.logic.points import experience_for
from progress_engine.logic.windows import start_of_week
from progress_engine.schemas import (
    ActivityType,
    CelebrationData,
    CelebrationEvent,
    CelebrationType,
    EarnedAchievement,
    ExperienceInfo,
    GamificationProfile,
    LevelInfo,
    PerformanceData,
    Statistics,
)

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")

SOCIAL_ACTIVITIES = {ActivityType.QUESTION_ANSWERED.value, ActivityType.RESOURCE_SHARED.value}


@dataclass
class ProfileUpdate:
    profile: GamificationProfile
    level_ups: List[int] = field(default_factory=list)
    celebrations: List[CelebrationEvent] = field(default_factory=list)


def new_profile(user_id: str) -> GamificationProfile:
    return GamificationProfile(
        userId=user_id,
        level=LevelInfo(experience=ExperienceInfo(required=settings.XP_BASE_REQUIRED)),
    )


def get_profile(user_id: str) -> GamificationProfile:
    """Stored profile, or a fresh default one (not persisted) for unknown users"""
    return dynamo_profiles.get_profile(user_id) or new_profile(user_id)


def mutate_profile(
    user_id: str,
    mutator: Callable[[GamificationProfile], T],
    description: str = "profile",
) -> Tuple[GamificationProfile, T]:
    """
    Read the profile, apply `mutator` to a copy and write it back with CAS.
    On a version conflict the whole read-apply-write is repeated.

    Raises:
        ConcurrencyConflictError: retries exhausted
    """
    def attempt():
        working = get_profile(user_id).model_copy(deep=True)
        outcome = mutator(working)
        working.updatedAt = datetime.now(timezone.utc)
        return dynamo_profiles.save_profile(working), outcome

    return dynamo.retry_on_conflict(attempt, f"{description} of user {user_id}")


def apply_experience(profile: GamificationProfile, xp: int) -> List[int]:
    """
    Add experience and level up while the bar is full.

    Returns:
        Levels reached, in order
    """
    experience = profile.level.experience
    experience.current += xp
    experience.total += xp

    reached = []
    while experience.current >= experience.required:
        experience.current -= experience.required
        profile.level.current += 1
        experience.required = max(1, math.floor(experience.required * settings.XP_GROWTH_FACTOR))
        reached.append(profile.level.current)
    return reached


def update_statistics(statistics: Statistics, activity_type: str, performance: PerformanceData,
                      occurred_at: datetime) -> None:
    if activity_type == ActivityType.LESSON_COMPLETED.value:
        statistics.lessonsCompleted += 1
    elif activity_type == ActivityType.QUIZ_TAKEN.value:
        statistics.quizzesCompleted += 1
        if performance.score is not None:
            count = statistics.quizzesCompleted
            statistics.averageScore = round(
                (statistics.averageScore * (count - 1) + performance.score) / count, 2
            )
    elif activity_type == ActivityType.HELP_GIVEN.value:
        statistics.helpGiven += 1
    elif activity_type in SOCIAL_ACTIVITIES:
        statistics.socialInteractions += 1

    if performance.timeSpent:
        _add_study_time(statistics, performance.timeSpent, occurred_at.date())


def _add_study_time(statistics: Statistics, minutes: float, day: date) -> None:
    study_time = statistics.studyTime
    study_time.total += minutes

    last = date.fromisoformat(study_time.lastStudyDate) if study_time.lastStudyDate else None
    if last is not None and day < last:
        # Late event: only the running total moves
        return

    if last != day:
        study_time.daily = 0
    if last is None or start_of_week(last) != start_of_week(day):
        study_time.weekly = 0
    if last is None or (last.year, last.month) != (day.year, day.month):
        study_time.monthly = 0

    study_time.daily += minutes
    study_time.weekly += minutes
    study_time.monthly += minutes
    study_time.lastStudyDate = day.isoformat()


def apply_activity(user_id: str, activity_type: str, points: int, performance: PerformanceData,
                   occurred_at: datetime, record_id: Optional[str] = None) -> ProfileUpdate:
    """
    Apply one activity to the profile: points, experience, statistics, levels.

    With a `record_id` the activity is applied at most once: the id is stored
    on the profile in the same write.

    Emits one level_up celebration per level reached.
    """
    xp = experience_for(activity_type)

    def apply(profile: GamificationProfile) -> List[int]:
        if record_id:
            if record_id in profile.appliedRecords:
                logger.info(f"Record {record_id} already applied to profile of user {user_id}")
                return []
            profile.appliedRecords = ledger.remember(profile.appliedRecords, record_id)
        profile.points.total += points
        profile.points.available += points
        profile.points.lifetime += points
        update_statistics(profile.statistics, activity_type, performance, occurred_at)
        return apply_experience(profile, xp)

    profile, level_ups = mutate_profile(user_id, apply, "activity update")

    update = ProfileUpdate(profile=profile, level_ups=level_ups)
    for level in level_ups:
        logger.info(f"User {user_id} reached level {level}")
        celebration = celebrations.emit(
            user_id,
            CelebrationType.LEVEL_UP,
            key=str(level),
            title="Level Up!",
            message=f"Congratulations! You reached level {level}",
            data=CelebrationData(level=level, points=0),
        )
        if celebration:
            update.celebrations.append(celebration)
    return update


def award_points(
    user_id: str,
    points: int,
    achievement_id: Optional[str] = None,
    title: Optional[str] = None,
    earned_at: Optional[datetime] = None,
    reward_key: Optional[str] = None,
) -> GamificationProfile:
    """
    Credit reward points (achievements, goals, milestones).

    Optionally records the earned achievement and unlocked title on the profile.
    A reward is credited once: an achievement already on the profile, or a
    `reward_key` already in appliedRewards, leaves the profile unchanged.
    """
    earned_at = earned_at or datetime.now(timezone.utc)

    def apply(profile: GamificationProfile) -> bool:
        if reward_key and reward_key in profile.appliedRewards:
            return False
        if achievement_id and any(e.achievementId == achievement_id for e in profile.achievements.earned):
            return False

        profile.points.total += points
        profile.points.available += points
        profile.points.lifetime += points

        if achievement_id:
            profile.achievements.earned.append(EarnedAchievement(achievementId=achievement_id, earnedAt=earned_at))
            profile.achievements.total = len(profile.achievements.earned)

        if title and title not in profile.title.earned:
            profile.title.earned.append(title)
        if reward_key:
            profile.appliedRewards = ledger.remember(profile.appliedRewards, reward_key)
        return True

    profile, credited = mutate_profile(user_id, apply, "reward")
    if credited:
        logger.info(f"Awarded {points} points to user {user_id}")
    else:
        logger.info(f"Reward {reward_key or achievement_id} already credited to user {user_id}")
    return profile
