"""
Leaderboard aggregator

Recomputes rankings out of band from the ledger:
window start -> filter -> group by user -> reduce per metric -> sort -> truncate
-> trend against previous snapshot -> replace snapshot (single put).
"""
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from progress_engine import dynamo_achievements, dynamo_leaderboards, dynamo_ledger
from progress_engine.catalog import DEFAULT_LEADERBOARDS
from progress_engine.config import get_settings
from progress_engine.exceptions import NotFoundError
from progress_engine.logic.windows import (
    start_of_day,
    start_of_month,
    start_of_quarter,
    start_of_week,
    to_datetime,
)
from progress_engine.schemas import (
    ActivityType,
    LeaderboardDefinition,
    LeaderboardEntry,
    LeaderboardMetric,
    LeaderboardPosition,
    LeaderboardSnapshot,
    LeaderboardTimeframe,
    ProgressRecord,
    Trend,
    UpdateFrequency,
)

settings = get_settings()
logger = logging.getLogger(__name__)


def window_start(timeframe: LeaderboardTimeframe, now: datetime) -> Optional[datetime]:
    """Start of the aggregation window, None for all_time"""
    today = now.date()
    if timeframe == LeaderboardTimeframe.DAILY:
        return start_of_day(now)
    if timeframe == LeaderboardTimeframe.WEEKLY:
        return to_datetime(start_of_week(today))
    if timeframe == LeaderboardTimeframe.MONTHLY:
        return to_datetime(start_of_month(today))
    if timeframe == LeaderboardTimeframe.QUARTERLY:
        return to_datetime(start_of_quarter(today))
    if timeframe == LeaderboardTimeframe.YEARLY:
        return to_datetime(today.replace(month=1, day=1))
    return None


# ============= METRIC REDUCERS =============
# Each maps one user's records (oldest first) to a score, None to leave the user out

Reducer = Callable[[List[ProgressRecord]], Optional[float]]


def _count_of(activity_type: str) -> Reducer:
    def reduce(records: List[ProgressRecord]) -> Optional[float]:
        count = sum(1 for r in records if r.activityType == activity_type)
        return count or None
    return reduce


def _total_points(records: List[ProgressRecord]) -> Optional[float]:
    return sum(r.points.total for r in records)


def _study_time(records: List[ProgressRecord]) -> Optional[float]:
    minutes = sum(r.performance.timeSpent or 0 for r in records)
    return minutes or None


def _quiz_average(records: List[ProgressRecord]) -> Optional[float]:
    scores = [
        r.performance.score for r in records
        if r.activityType == ActivityType.QUIZ_TAKEN.value and r.performance.score is not None
    ]
    if not scores:
        return None
    return sum(scores) / len(scores)


def _streak_length(records: List[ProgressRecord]) -> Optional[float]:
    """Longest streak reached by any event in the window"""
    return max(r.streakAfter for r in records) or None


def _improvement_rate(records: List[ProgressRecord]) -> Optional[float]:
    """Mean score of the later half minus mean score of the earlier half"""
    scores = [r.performance.score for r in records if r.performance.score is not None]
    if len(scores) < 2:
        return None
    middle = len(scores) // 2
    earlier, later = scores[:middle], scores[middle:]
    return sum(later) / len(later) - sum(earlier) / len(earlier)


METRIC_REDUCERS: Dict[LeaderboardMetric, Reducer] = {
    LeaderboardMetric.TOTAL_POINTS: _total_points,
    LeaderboardMetric.STUDY_TIME: _study_time,
    LeaderboardMetric.LESSONS_COMPLETED: _count_of(ActivityType.LESSON_COMPLETED.value),
    LeaderboardMetric.HELP_GIVEN: _count_of(ActivityType.HELP_GIVEN.value),
    LeaderboardMetric.QUIZ_AVERAGE: _quiz_average,
    LeaderboardMetric.STREAK_LENGTH: _streak_length,
    LeaderboardMetric.IMPROVEMENT_RATE: _improvement_rate,
}


def collect_scores(definition: LeaderboardDefinition, since: Optional[datetime]) -> Dict[str, float]:
    """Per-user score for the definition's metric inside the window"""
    if definition.filters.school or definition.filters.classId:
        logger.warning(f"Leaderboard {definition.id}: school/class filters are not tracked on records, ignoring")

    if definition.metric == LeaderboardMetric.ACHIEVEMENTS_EARNED:
        counts: Dict[str, float] = defaultdict(float)
        for progress in dynamo_achievements.scan_completed_progress(since):
            counts[progress.userId] += 1
        return dict(counts)

    records = dynamo_ledger.scan_records(since, definition.filters.subject, definition.filters.grade)
    by_user: Dict[str, List[ProgressRecord]] = defaultdict(list)
    for record in sorted(records, key=lambda r: r.date):
        by_user[record.userId].append(record)

    reducer = METRIC_REDUCERS[definition.metric]
    scores = {}
    for user_id, user_records in by_user.items():
        score = reducer(user_records)
        if score is not None:
            scores[user_id] = round(float(score), 2)
    return scores


def rank_participants(scores: Dict[str, float], max_participants: int,
                      previous: Optional[LeaderboardSnapshot] = None) -> List[LeaderboardEntry]:
    """Score descending, user id ascending on ties, truncated, with trend vs previous ranks"""
    previous_ranks = {p.userId: p.rank for p in previous.participants} if previous else {}
    ordered = sorted(scores.items(), key=lambda item: (-item[1], item[0]))[:max_participants]

    entries = []
    for index, (user_id, score) in enumerate(ordered, start=1):
        previous_rank = previous_ranks.get(user_id)
        if previous_rank is None:
            trend = Trend.NEW
        elif index < previous_rank:
            trend = Trend.UP
        elif index > previous_rank:
            trend = Trend.DOWN
        else:
            trend = Trend.SAME
        entries.append(LeaderboardEntry(
            userId=user_id, rank=index, score=score, previousRank=previous_rank, trend=trend
        ))
    return entries


def recompute_leaderboard(definition_id: str, now: Optional[datetime] = None) -> LeaderboardSnapshot:
    """
    Rebuild and replace one leaderboard snapshot.

    Raises:
        NotFoundError: unknown leaderboard definition
    """
    now = now or datetime.now(timezone.utc)
    definition = dynamo_leaderboards.get_definition(definition_id)
    if definition is None:
        raise NotFoundError(f"Leaderboard {definition_id} not found")

    since = window_start(definition.timeframe, now)
    scores = collect_scores(definition, since)
    previous = dynamo_leaderboards.get_snapshot(definition_id)
    participants = rank_participants(scores, definition.settings.maxParticipants, previous)

    snapshot = LeaderboardSnapshot(
        leaderboardId=definition_id,
        participants=participants,
        totalParticipants=len(participants),
        generatedAt=now,
        windowStart=since,
    )
    dynamo_leaderboards.replace_snapshot(snapshot)
    logger.info(f"Leaderboard {definition_id} recomputed: {len(participants)} participants")
    return snapshot


def recompute_all(frequency: Optional[UpdateFrequency] = None, now: Optional[datetime] = None) -> int:
    """
    Recompute every active, auto-updating leaderboard (optionally of one update frequency).
    One failing leaderboard does not stop the others.

    Returns:
        Number of leaderboards refreshed
    """
    refreshed = 0
    for definition in dynamo_leaderboards.list_definitions():
        if not (definition.settings.isActive and definition.settings.autoUpdate):
            continue
        if frequency is not None and definition.settings.updateFrequency != frequency:
            continue
        try:
            recompute_leaderboard(definition.id, now)
            refreshed += 1
        except Exception as e:
            logger.error(f"Error recomputing leaderboard {definition.id}: {str(e)}", exc_info=True)
    return refreshed


def upsert_definition(definition: LeaderboardDefinition) -> LeaderboardDefinition:
    return dynamo_leaderboards.put_definition(definition)


def seed_default_leaderboards() -> int:
    for definition in DEFAULT_LEADERBOARDS:
        upsert_definition(definition)
    logger.info(f"Seeded {len(DEFAULT_LEADERBOARDS)} default leaderboards")
    return len(DEFAULT_LEADERBOARDS)


# ============= READS =============

def get_leaderboard(definition_id: str, limit: Optional[int] = None) -> LeaderboardSnapshot:
    """Current snapshot, top `limit` entries. Empty if never computed."""
    if dynamo_leaderboards.get_definition(definition_id) is None:
        raise NotFoundError(f"Leaderboard {definition_id} not found")

    snapshot = dynamo_leaderboards.get_snapshot(definition_id) or LeaderboardSnapshot(leaderboardId=definition_id)
    if limit is not None:
        snapshot.participants = snapshot.participants[:limit]
    return snapshot


def get_user_position(definition_id: str, user_id: str) -> LeaderboardPosition:
    snapshot = get_leaderboard(definition_id)
    position = LeaderboardPosition(
        leaderboardId=definition_id, userId=user_id, totalParticipants=snapshot.totalParticipants
    )
    for entry in snapshot.participants:
        if entry.userId == user_id:
            position.rank = entry.rank
            position.score = entry.score
            position.trend = entry.trend
            break
    return position
