"""
Points and experience calculation for learning activities

Pure functions, no storage access.
"""
import math
from typing import Dict, Optional

from progress_engine.schemas import PerformanceData, PointsResult

# Base points per activity type; unknown types earn nothing
BASE_POINTS: Dict[str, int] = {
    "lesson_completed": 10,
    "quiz_taken": 15,
    "assignment_submitted": 20,
    "video_watched": 5,
    "book_read": 25,
    "practice_session": 8,
    "help_given": 30,
    "question_answered": 12,
    "resource_shared": 18,
}

EXPERIENCE_POINTS: Dict[str, int] = {
    "lesson_completed": 50,
    "quiz_taken": 75,
    "assignment_submitted": 100,
}
DEFAULT_EXPERIENCE = 20

# (minimum score, bonus fraction of base), checked top-down
SCORE_BONUS_TIERS = [(90, 0.5), (80, 0.3), (70, 0.1)]
SPEED_BONUS = 0.2
SPEED_RATIO = 0.8
FIRST_ATTEMPT_BONUS = 0.1


def base_points(activity_type: str) -> int:
    return BASE_POINTS.get(activity_type, 0)


def experience_for(activity_type: str) -> int:
    """XP granted for one activity"""
    return EXPERIENCE_POINTS.get(activity_type, DEFAULT_EXPERIENCE)


def calculate_points(activity_type: str, performance: Optional[PerformanceData] = None) -> PointsResult:
    """
    Compute points for one activity.

    Bonus fractions are accumulated and floored once at the end, so a 95 score
    on first attempt over a base of 10 yields 5 + 1 = 6 bonus points.

    Args:
        activity_type: Activity type string (unknown types give base 0)
        performance: Optional score/timing data

    Returns:
        PointsResult(base, bonus, total)
    """
    base = base_points(activity_type)
    performance = performance or PerformanceData()
    bonus = 0.0

    if performance.score is not None:
        for min_score, fraction in SCORE_BONUS_TIERS:
            if performance.score >= min_score:
                bonus += base * fraction
                break

    if performance.timeSpent is not None and performance.expectedTime:
        if performance.timeSpent <= performance.expectedTime * SPEED_RATIO:
            bonus += base * SPEED_BONUS

    if performance.attempts == 1:
        bonus += base * FIRST_ATTEMPT_BONUS

    bonus_points = math.floor(bonus)
    return PointsResult(base=base, bonus=bonus_points, total=base + bonus_points)
