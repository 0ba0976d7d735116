"""
Achievement evaluator

Per (user, achievement) state machine: NotStarted -> InProgress -> Completed.

Workflow per event:
1. Load active definitions, dropping any caught in a prerequisite cycle
2. Walk them prerequisite-first so an unlock can feed its dependents in the same pass
3. Skip ones whose prerequisite is not completed or whose criteria do not
   match the event; completed ones go straight to step 5
4. Advance progress with a compare-and-swap write (each ledger record counts once)
5. Completed progress not yet marked rewarded gets its reward, celebration
   and totalEarned bump; the flag and the counter move in one transaction

Step 5 also picks up completions whose rewards failed on an earlier event.
A failure on one definition is logged and recorded; evaluation carries on with
the next one. ConcurrencyConflictError aborts the evaluation.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Tuple

from progress_engine import dynamo, dynamo_achievements
from progress_engine.catalog import DEFAULT_ACHIEVEMENTS
from progress_engine.exceptions import ConcurrencyConflictError, DefinitionError
from progress_engine.logic import celebrations, ledger, profile_service
from progress_engine.schemas import (
    AchievementCriteria,
    AchievementDefinition,
    AchievementProgress,
    AchievementStatusFilter,
    AchievementView,
    ActivityEvent,
    ActivityType,
    CelebrationData,
    CelebrationEvent,
    CelebrationType,
    CriteriaAction,
)

logger = logging.getLogger(__name__)

EARLY_STUDY_BEFORE_HOUR = 8
LATE_STUDY_FROM_HOUR = 22
PERFECT_SCORE = 100


@dataclass
class EventContext:
    """The parts of an activity event that criteria look at"""
    activity_type: str
    occurred_at: datetime
    subject: Optional[str] = None
    grade: Optional[str] = None
    score: Optional[float] = None

    @classmethod
    def from_event(cls, event: ActivityEvent) -> "EventContext":
        return cls(
            activity_type=event.activityType,
            occurred_at=event.occurredAt,
            subject=event.activityData.subject,
            grade=event.activityData.grade,
            score=event.activityData.score,
        )


@dataclass
class AchievementEvaluation:
    unlocked: List[str] = field(default_factory=list)
    celebrations: List[CelebrationEvent] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


# ============= CRITERIA MATCHING =============

def _activity_is(activity_type: str) -> Callable[[EventContext], bool]:
    return lambda ctx: ctx.activity_type == activity_type


CRITERIA_MATCHERS: Dict[CriteriaAction, Callable[[EventContext], bool]] = {
    **{CriteriaAction(t.value): _activity_is(t.value) for t in ActivityType},
    CriteriaAction.ANY: lambda ctx: True,
    CriteriaAction.QUIZ_PERFECT: lambda ctx: (
        ctx.activity_type == ActivityType.QUIZ_TAKEN.value and ctx.score == PERFECT_SCORE
    ),
    CriteriaAction.EARLY_STUDY: lambda ctx: ctx.occurred_at.hour < EARLY_STUDY_BEFORE_HOUR,
    CriteriaAction.LATE_STUDY: lambda ctx: ctx.occurred_at.hour >= LATE_STUDY_FROM_HOUR,
    # Driven by the streak tracker, never by a single event
    CriteriaAction.STUDY_STREAK: lambda ctx: False,
}


def criteria_matches(criteria: AchievementCriteria, ctx: EventContext) -> bool:
    if criteria.subject and criteria.subject != ctx.subject:
        return False
    if criteria.grade and criteria.grade != ctx.grade:
        return False
    return CRITERIA_MATCHERS[criteria.action](ctx)


# ============= PREREQUISITE GRAPH =============

def find_cycles(definitions: Dict[str, AchievementDefinition]) -> Set[str]:
    """Ids of definitions that sit on a prerequisite cycle"""
    cyclic: Set[str] = set()
    settled: Set[str] = set()

    for start in definitions:
        path: List[str] = []
        node = start
        while node in definitions and node not in settled and node not in path:
            path.append(node)
            node = definitions[node].prerequisite
        if node in path:
            cyclic.update(path[path.index(node):])
        settled.update(path)

    return cyclic


def _depth(definition: AchievementDefinition, definitions: Dict[str, AchievementDefinition]) -> int:
    depth = 0
    node = definition.prerequisite
    while node in definitions:
        depth += 1
        node = definitions[node].prerequisite
    return depth


def order_by_prerequisites(definitions: List[AchievementDefinition]) -> List[AchievementDefinition]:
    """Prerequisites before dependents, ties by id. Input must be acyclic."""
    by_id = {d.id: d for d in definitions}
    return sorted(definitions, key=lambda d: (_depth(d, by_id), d.id))


def load_definitions() -> List[AchievementDefinition]:
    """Active, acyclic definitions in evaluation order"""
    definitions = [d for d in dynamo_achievements.list_definitions() if d.isActive]
    by_id = {d.id: d for d in definitions}

    cyclic = find_cycles(by_id)
    if cyclic:
        logger.error(f"Achievement prerequisite cycle detected, excluding: {sorted(cyclic)}")
        definitions = [d for d in definitions if d.id not in cyclic]

    return order_by_prerequisites(definitions)


def upsert_definition(definition: AchievementDefinition) -> AchievementDefinition:
    """
    Validate and store a definition.

    Raises:
        DefinitionError: self-referencing prerequisite or a prerequisite cycle
    """
    if definition.prerequisite == definition.id:
        raise DefinitionError(f"Achievement {definition.id} cannot be its own prerequisite")

    by_id = {d.id: d for d in dynamo_achievements.list_definitions()}
    by_id[definition.id] = definition
    if definition.id in find_cycles(by_id):
        raise DefinitionError(f"Achievement {definition.id} would create a prerequisite cycle")

    if definition.prerequisite and definition.prerequisite not in by_id:
        logger.warning(f"Achievement {definition.id} references unknown prerequisite {definition.prerequisite}")

    return dynamo_achievements.put_definition(definition)


def seed_default_achievements() -> int:
    for definition in DEFAULT_ACHIEVEMENTS:
        upsert_definition(definition)
    logger.info(f"Seeded {len(DEFAULT_ACHIEVEMENTS)} default achievements")
    return len(DEFAULT_ACHIEVEMENTS)


# ============= EVALUATION =============

def _prerequisite_met(definition: AchievementDefinition, active: Dict[str, AchievementDefinition],
                      progress: Dict[str, AchievementProgress]) -> bool:
    if not definition.prerequisite:
        return True
    if definition.prerequisite not in active:
        logger.warning(
            f"Achievement {definition.id} skipped: prerequisite {definition.prerequisite} is missing or inactive"
        )
        return False
    required = progress.get(definition.prerequisite)
    return bool(required and required.isCompleted)


def advance_progress(user_id: str, definition: AchievementDefinition, now: datetime,
                     increment: int = 1, value: Optional[int] = None,
                     record_id: Optional[str] = None) -> Tuple[AchievementProgress, bool]:
    """
    Move one user's progress forward with CAS.

    Args:
        increment: Added to current (counting achievements)
        value: Absolute candidate value, current becomes max(current, value) (streaks)
        record_id: Ledger record driving the increment; a record already counted is skipped

    Returns:
        Tuple of (progress, just_completed)
    """
    target = definition.criteria.threshold

    def attempt() -> Tuple[AchievementProgress, bool]:
        progress = dynamo_achievements.get_progress(user_id, definition.id) or AchievementProgress(
            userId=user_id, achievementId=definition.id, target=target
        )
        if progress.isCompleted:
            return progress, False
        if record_id and record_id in progress.appliedRecords:
            return progress, False

        candidate = progress.current + increment if value is None else max(progress.current, value)
        new_current = min(candidate, target)
        if new_current <= progress.current:
            return progress, False

        progress.current = new_current
        progress.target = target
        progress.percentage = min(round(new_current / target * 100, 2), 100.0)
        progress.lastUpdated = now
        if record_id:
            progress.appliedRecords = ledger.remember(progress.appliedRecords, record_id)
        just_completed = new_current >= target
        if just_completed:
            progress.isCompleted = True
            progress.completedAt = now
            progress.rewardsApplied = False

        return dynamo_achievements.save_progress(progress), just_completed

    return dynamo.retry_on_conflict(attempt, f"achievement {definition.id} of user {user_id}")


def complete_achievement(user_id: str, definition: AchievementDefinition, progress: AchievementProgress,
                         now: datetime) -> Tuple[bool, Optional[CelebrationEvent]]:
    """
    Apply the one-time effects of an unlock: reward, celebration, earned counter.

    Every step can be repeated until the progress is marked rewarded: the
    credit is keyed by achievement id on the profile, the celebration id is
    fixed, and the counter moves in the same transaction as the flag.

    Returns:
        Tuple of (counted, celebration). counted is False when another writer
        finished the unlock first.
    """
    rewards = definition.rewards
    earned_at = progress.completedAt or now
    profile_service.award_points(
        user_id, rewards.points, achievement_id=definition.id, title=rewards.title, earned_at=earned_at
    )

    celebration = celebrations.emit(
        user_id,
        CelebrationType.ACHIEVEMENT_EARNED,
        key=definition.id,
        title="Achievement Unlocked!",
        message=f"You earned '{definition.name}'",
        data=CelebrationData(achievement=definition.id, points=rewards.points),
        now=now,
    )

    counted = dynamo_achievements.finalize_unlock(user_id, definition.id, earned_at)
    if counted:
        logger.info(f"User {user_id} earned achievement {definition.id}")
    return counted, celebration


def _evaluate(user_id: str, should_advance: Callable[[AchievementDefinition], bool],
              now: datetime, value: Optional[int] = None, record_id: Optional[str] = None) -> AchievementEvaluation:
    evaluation = AchievementEvaluation()
    definitions = load_definitions()
    active = {d.id: d for d in definitions}
    progress = {p.achievementId: p for p in dynamo_achievements.list_progress(user_id)}

    for definition in definitions:
        existing = progress.get(definition.id)
        try:
            if existing and existing.isCompleted:
                updated = existing
            elif not should_advance(definition) or not _prerequisite_met(definition, active, progress):
                continue
            else:
                updated, _ = advance_progress(user_id, definition, now, value=value, record_id=record_id)
                progress[definition.id] = updated

            # Completed but not yet rewarded: unlocked now, or left over by an earlier failure
            if updated.isCompleted and not updated.rewardsApplied:
                counted, celebration = complete_achievement(user_id, definition, updated, now)
                if counted:
                    evaluation.unlocked.append(definition.id)
                if celebration:
                    evaluation.celebrations.append(celebration)
        except ConcurrencyConflictError:
            raise
        except Exception as e:
            logger.error(
                f"Error evaluating achievement {definition.id} for user {user_id}: {str(e)}",
                exc_info=True,
                extra={'user_id': user_id, 'achievement_id': definition.id},
            )
            evaluation.errors.append(f"achievement {definition.id}: {str(e)}")

    return evaluation


def evaluate_event(user_id: str, event: ActivityEvent, now: Optional[datetime] = None,
                   record_id: Optional[str] = None) -> AchievementEvaluation:
    """Advance every event-driven achievement the activity qualifies for"""
    ctx = EventContext.from_event(event)
    return _evaluate(
        user_id,
        lambda d: criteria_matches(d.criteria, ctx),
        now or datetime.now(timezone.utc),
        record_id=record_id,
    )


def evaluate_streak(user_id: str, streak: int, now: Optional[datetime] = None) -> AchievementEvaluation:
    """Raise study_streak achievements to the current streak length"""
    return _evaluate(
        user_id,
        lambda d: d.criteria.action == CriteriaAction.STUDY_STREAK,
        now or datetime.now(timezone.utc),
        value=streak,
    )


# ============= READS =============

def get_achievements(user_id: str, status: AchievementStatusFilter = AchievementStatusFilter.ALL) -> List[AchievementView]:
    """
    Achievements merged with the user's progress.

    Hidden achievements only appear once completed.
    """
    progress = {p.achievementId: p for p in dynamo_achievements.list_progress(user_id)}
    views = []

    for definition in dynamo_achievements.list_definitions():
        if not definition.isActive:
            continue
        p = progress.get(definition.id)
        completed = bool(p and p.isCompleted)
        started = bool(p and p.current > 0)

        if definition.isHidden and not completed:
            continue
        if status == AchievementStatusFilter.COMPLETED and not completed:
            continue
        if status == AchievementStatusFilter.IN_PROGRESS and (completed or not started):
            continue

        views.append(AchievementView(
            achievement=definition,
            current=p.current if p else 0,
            target=definition.criteria.threshold,
            percentage=p.percentage if p else 0.0,
            isCompleted=completed,
            completedAt=p.completedAt if p else None,
        ))

    return views
