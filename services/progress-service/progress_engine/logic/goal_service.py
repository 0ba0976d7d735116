"""
Goal tracker

Study goals advance from qualifying events (or from the streak tracker for
streak_maintenance goals). Milestones fire once each, completion fires once,
and active goals past their end date move to failed. Reaching a milestone or
completion and paying its reward are separate writes: the reward flags on the
goal record what has been paid, and every evaluation pays what is still owed.

Status transitions:
    active -> completed | failed | paused | cancelled
    paused -> active | cancelled
    completed, failed, cancelled are terminal
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from progress_engine import dynamo, dynamo_goals
from progress_engine.exceptions import (
    ConcurrencyConflictError,
    GoalValidationError,
    InvalidTransitionError,
    NotFoundError,
)
from progress_engine.logic import celebrations, ledger, profile_service
from progress_engine.schemas import (
    ActivityEvent,
    ActivityType,
    CelebrationData,
    CelebrationEvent,
    CelebrationType,
    GoalCategory,
    GoalCreate,
    GoalCurrent,
    GoalMilestone,
    GoalStatus,
    StudyGoal,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[GoalStatus, set] = {
    GoalStatus.ACTIVE: {GoalStatus.COMPLETED, GoalStatus.FAILED, GoalStatus.PAUSED, GoalStatus.CANCELLED},
    GoalStatus.PAUSED: {GoalStatus.ACTIVE, GoalStatus.CANCELLED},
    GoalStatus.COMPLETED: set(),
    GoalStatus.FAILED: set(),
    GoalStatus.CANCELLED: set(),
}

SOCIAL_ACTIVITIES = {
    ActivityType.HELP_GIVEN.value,
    ActivityType.QUESTION_ANSWERED.value,
    ActivityType.RESOURCE_SHARED.value,
}


@dataclass
class GoalEvaluation:
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    celebrations: List[CelebrationEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class GoalChange:
    """What one CAS write of a goal did"""
    goal: StudyGoal
    failed: bool = False


# ============= CONTRIBUTIONS =============
# Each returns the new (value, attempts) or None when the event does not count

Contribution = Callable[[GoalCurrent, ActivityEvent], Optional[Tuple[float, int]]]


def _study_time(current: GoalCurrent, event: ActivityEvent) -> Optional[Tuple[float, int]]:
    minutes = event.activityData.timeSpent
    if not minutes:
        return None
    return current.value + minutes, current.attempts + 1


def _lessons_completed(current: GoalCurrent, event: ActivityEvent) -> Optional[Tuple[float, int]]:
    if event.activityType != ActivityType.LESSON_COMPLETED.value:
        return None
    return current.value + 1, current.attempts + 1


def _quiz_score(current: GoalCurrent, event: ActivityEvent) -> Optional[Tuple[float, int]]:
    score = event.activityData.score
    if event.activityType != ActivityType.QUIZ_TAKEN.value or score is None:
        return None
    attempts = current.attempts + 1
    return round((current.value * current.attempts + score) / attempts, 2), attempts


def _social_interaction(current: GoalCurrent, event: ActivityEvent) -> Optional[Tuple[float, int]]:
    if event.activityType not in SOCIAL_ACTIVITIES:
        return None
    return current.value + 1, current.attempts + 1


CONTRIBUTIONS: Dict[GoalCategory, Contribution] = {
    GoalCategory.STUDY_TIME: _study_time,
    GoalCategory.LESSONS_COMPLETED: _lessons_completed,
    GoalCategory.QUIZ_SCORE: _quiz_score,
    GoalCategory.SOCIAL_INTERACTION: _social_interaction,
    # streak_maintenance is set by the streak tracker; skill_mastery is updated manually
}


# ============= PURE STATE CHANGES =============

def apply_value(goal: StudyGoal, value: float, attempts: int, now: datetime) -> GoalChange:
    """Set the goal's progress, mark newly reached milestones and completion"""
    goal.current.value = value
    goal.current.attempts = attempts
    goal.current.percentage = min(round(value / goal.target.value * 100, 2), 100.0)

    for milestone in goal.milestones:
        if not milestone.achieved and goal.current.percentage >= milestone.percentage:
            milestone.achieved = True
            milestone.achievedAt = now

    if goal.current.percentage >= 100:
        goal.status = GoalStatus.COMPLETED
        goal.completedAt = now

    return GoalChange(goal=goal)


def is_expired(goal: StudyGoal, now: datetime) -> bool:
    return now > goal.timeframe.end and goal.current.percentage < 100


def in_window(goal: StudyGoal, moment: datetime) -> bool:
    return goal.timeframe.start <= moment <= goal.timeframe.end


# ============= PERSISTENCE + EFFECTS =============

def _mutate_goal(user_id: str, goal_id: str, mutator: Callable[[StudyGoal], Optional[GoalChange]]) -> Optional[GoalChange]:
    """Re-read the goal, apply `mutator`, write back with CAS. A None change skips the write."""
    def attempt() -> Optional[GoalChange]:
        goal = dynamo_goals.get_goal(user_id, goal_id)
        if goal is None:
            raise NotFoundError(f"Goal {goal_id} not found")
        change = mutator(goal)
        if change is None:
            return None
        change.goal = dynamo_goals.save_goal(change.goal)
        return change

    return dynamo.retry_on_conflict(attempt, f"goal {goal_id} of user {user_id}")


def _expire_if_due(goal: StudyGoal, now: datetime) -> Optional[GoalChange]:
    if goal.status == GoalStatus.ACTIVE and is_expired(goal, now):
        goal.status = GoalStatus.FAILED
        return GoalChange(goal=goal, failed=True)
    return None


def _settle_rewards(goal: StudyGoal, evaluation: GoalEvaluation, now: datetime) -> None:
    """
    Credit and celebrate reached milestones and completion not yet rewarded,
    then flag them on the goal.

    Credits are keyed per goal and milestone on the profile and celebrations
    have fixed ids, so a settle interrupted before the flags are written is
    simply repeated by the next evaluation.
    """
    pending = [m for m in goal.milestones if m.achieved and not m.rewarded]
    completion_pending = goal.status == GoalStatus.COMPLETED and not goal.rewardsApplied
    if not pending and not completion_pending:
        return

    for milestone in pending:
        if milestone.reward.points:
            profile_service.award_points(
                goal.userId, milestone.reward.points, earned_at=now,
                reward_key=f"goal:{goal.id}:{milestone.percentage:g}",
            )
        celebration = celebrations.emit(
            goal.userId,
            CelebrationType.GOAL_COMPLETED,
            key=f"{goal.id}:{milestone.percentage:g}",
            title="Milestone Reached!",
            message=milestone.reward.message or f"You reached {milestone.percentage:g}% of '{goal.title}'",
            data=CelebrationData(goal=goal.id, points=milestone.reward.points, milestone=milestone.percentage),
            now=now,
        )
        if celebration:
            evaluation.celebrations.append(celebration)

    if completion_pending:
        if goal.rewards.points:
            profile_service.award_points(goal.userId, goal.rewards.points, earned_at=now, reward_key=f"goal:{goal.id}")
        logger.info(f"User {goal.userId} completed goal {goal.id}")
        evaluation.completed.append(goal.id)
        celebration = celebrations.emit(
            goal.userId,
            CelebrationType.GOAL_COMPLETED,
            key=goal.id,
            title="Goal Completed!",
            message=f"You completed '{goal.title}'",
            data=CelebrationData(goal=goal.id, points=goal.rewards.points),
            now=now,
        )
        if celebration:
            evaluation.celebrations.append(celebration)

    settled = {m.percentage for m in pending}

    def mark_rewarded(stored: StudyGoal) -> GoalChange:
        for milestone in stored.milestones:
            if milestone.percentage in settled:
                milestone.rewarded = True
        if completion_pending:
            stored.rewardsApplied = True
        return GoalChange(goal=stored)

    _mutate_goal(goal.userId, goal.id, mark_rewarded)


def _run_for_goals(user_id: str, goals: List[StudyGoal], mutator: Callable[[StudyGoal], Optional[GoalChange]],
                   now: datetime) -> GoalEvaluation:
    """Apply `mutator` to each active goal, then settle any rewards the goal still owes"""
    evaluation = GoalEvaluation()
    for goal in goals:
        try:
            current = goal
            if goal.status == GoalStatus.ACTIVE:
                change = _mutate_goal(user_id, goal.id, mutator)
                if change:
                    current = change.goal
                    if change.failed:
                        logger.info(f"Goal {goal.id} of user {user_id} expired and failed")
                        evaluation.failed.append(goal.id)
            _settle_rewards(current, evaluation, now)
        except ConcurrencyConflictError:
            raise
        except Exception as e:
            logger.error(
                f"Error updating goal {goal.id} for user {user_id}: {str(e)}",
                exc_info=True,
                extra={'user_id': user_id, 'goal_id': goal.id},
            )
            evaluation.errors.append(f"goal {goal.id}: {str(e)}")
    return evaluation


def evaluate_event(user_id: str, event: ActivityEvent, now: Optional[datetime] = None,
                   record_id: Optional[str] = None) -> GoalEvaluation:
    """Feed one activity into every active goal of the user (each ledger record counts once)"""
    now = now or datetime.now(timezone.utc)

    def mutator(goal: StudyGoal) -> Optional[GoalChange]:
        if goal.status != GoalStatus.ACTIVE:
            return None
        expired = _expire_if_due(goal, now)
        if expired:
            return expired
        if not in_window(goal, event.occurredAt):
            return None
        if goal.subject and goal.subject != event.activityData.subject:
            return None
        if record_id and record_id in goal.appliedRecords:
            return None

        contribution = CONTRIBUTIONS.get(goal.category)
        result = contribution(goal.current, event) if contribution else None
        if result is None:
            return None
        if record_id:
            goal.appliedRecords = ledger.remember(goal.appliedRecords, record_id)
        return apply_value(goal, result[0], result[1], now)

    return _run_for_goals(user_id, dynamo_goals.list_goals(user_id), mutator, now)


def apply_streak(user_id: str, streak: int, now: Optional[datetime] = None) -> GoalEvaluation:
    """streak_maintenance goals track the current streak length"""
    now = now or datetime.now(timezone.utc)

    def mutator(goal: StudyGoal) -> Optional[GoalChange]:
        if goal.status != GoalStatus.ACTIVE or goal.category != GoalCategory.STREAK_MAINTENANCE:
            return None
        expired = _expire_if_due(goal, now)
        if expired:
            return expired
        if not in_window(goal, now) or goal.current.value == streak:
            return None
        return apply_value(goal, streak, goal.current.attempts + 1, now)

    goals = [g for g in dynamo_goals.list_goals(user_id) if g.category == GoalCategory.STREAK_MAINTENANCE]
    return _run_for_goals(user_id, goals, mutator, now)


def expire_goals(now: Optional[datetime] = None) -> int:
    """
    Sweep every user's active goals and fail the ones past their end date.

    Returns:
        Number of goals moved to failed
    """
    now = now or datetime.now(timezone.utc)
    failed = 0
    for goal in dynamo_goals.scan_goals_by_status(GoalStatus.ACTIVE):
        if not is_expired(goal, now):
            continue
        evaluation = _run_for_goals(goal.userId, [goal], lambda g: _expire_if_due(g, now), now)
        failed += len(evaluation.failed)
    logger.info(f"Goal expiry sweep failed {failed} goals")
    return failed


# ============= CRUD =============

def validate_goal(payload: GoalCreate) -> None:
    """
    Raises:
        GoalValidationError: non-positive target, bad milestones or empty timeframe
    """
    if payload.target.value <= 0:
        raise GoalValidationError("Goal target must be greater than 0")
    if payload.timeframe.start >= payload.timeframe.end:
        raise GoalValidationError("Goal timeframe start must be before its end")
    for milestone in payload.milestones:
        if not 0 < milestone.percentage <= 100:
            raise GoalValidationError(f"Milestone percentage {milestone.percentage} must be within (0, 100]")
    percentages = [m.percentage for m in payload.milestones]
    if len(set(percentages)) != len(percentages):
        raise GoalValidationError("Milestone percentages must be unique")


def create_goal(user_id: str, payload: GoalCreate) -> StudyGoal:
    validate_goal(payload)

    timeframe = payload.timeframe.model_copy()
    if timeframe.duration is None:
        timeframe.duration = max(1, (timeframe.end - timeframe.start).days)

    goal = StudyGoal(
        id=str(uuid.uuid4()),
        userId=user_id,
        title=payload.title,
        description=payload.description,
        type=payload.type,
        category=payload.category,
        target=payload.target,
        timeframe=timeframe,
        subject=payload.subject,
        milestones=sorted(
            (GoalMilestone(percentage=m.percentage, reward=m.reward) for m in payload.milestones),
            key=lambda m: m.percentage,
        ),
        rewards=payload.rewards,
        priority=payload.priority,
    )
    saved = dynamo_goals.save_goal(goal)
    logger.info(f"Created goal {saved.id} ({saved.category.value}) for user {user_id}")
    return saved


def get_goal(user_id: str, goal_id: str) -> StudyGoal:
    goal = dynamo_goals.get_goal(user_id, goal_id)
    if goal is None:
        raise NotFoundError(f"Goal {goal_id} not found")
    return goal


def list_goals(user_id: str, status: Optional[GoalStatus] = None) -> List[StudyGoal]:
    goals = dynamo_goals.list_goals(user_id)
    if status is not None:
        goals = [g for g in goals if g.status == status]
    return sorted(goals, key=lambda g: g.createdAt)


def get_active_goals(user_id: str) -> List[StudyGoal]:
    return list_goals(user_id, GoalStatus.ACTIVE)


def update_goal_status(user_id: str, goal_id: str, status: GoalStatus, now: Optional[datetime] = None) -> StudyGoal:
    """
    Move a goal to a new status (pause, resume, cancel...)

    Raises:
        NotFoundError: unknown goal
        InvalidTransitionError: transition not allowed from the current status
    """
    now = now or datetime.now(timezone.utc)

    def mutator(goal: StudyGoal) -> GoalChange:
        if status not in ALLOWED_TRANSITIONS[goal.status]:
            raise InvalidTransitionError(f"Goal {goal_id} cannot move from {goal.status.value} to {status.value}")
        goal.status = status
        if status == GoalStatus.COMPLETED:
            goal.completedAt = now
        return GoalChange(goal=goal)

    change = _mutate_goal(user_id, goal_id, mutator)
    logger.info(f"Goal {goal_id} of user {user_id} moved to {status.value}")
    if status == GoalStatus.COMPLETED:
        _settle_rewards(change.goal, GoalEvaluation(), now)
        return get_goal(user_id, goal_id)
    return change.goal
