"""
Tests for the achievement evaluator
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from progress_engine import dynamo_achievements, dynamo_profiles
from progress_engine.exceptions import ConcurrencyConflictError, DefinitionError
from progress_engine.logic import achievement_service, profile_service
from progress_engine.logic.achievement_service import EventContext, criteria_matches, find_cycles
from progress_engine.schemas import (
    AchievementCriteria,
    AchievementDefinition,
    AchievementRewards,
    AchievementStatusFilter,
)

NOON = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)


def definition(id, action="lesson_completed", threshold=1, prerequisite=None, points=10, **kwargs):
    return AchievementDefinition(
        id=id,
        name=id.replace("_", " ").title(),
        criteria=AchievementCriteria(action=action, threshold=threshold),
        rewards=AchievementRewards(points=points),
        prerequisite=prerequisite,
        **kwargs,
    )


class TestCriteriaMatching:
    def test_activity_type_action(self):
        criteria = AchievementCriteria(action="help_given", threshold=5)
        assert criteria_matches(criteria, EventContext("help_given", NOON))
        assert not criteria_matches(criteria, EventContext("lesson_completed", NOON))

    def test_quiz_perfect_needs_score_100(self):
        criteria = AchievementCriteria(action="quiz_perfect", threshold=1)
        assert criteria_matches(criteria, EventContext("quiz_taken", NOON, score=100))
        assert not criteria_matches(criteria, EventContext("quiz_taken", NOON, score=99))
        assert not criteria_matches(criteria, EventContext("lesson_completed", NOON, score=100))

    def test_early_and_late_study_use_utc_hour(self):
        early = AchievementCriteria(action="early_study", threshold=1)
        late = AchievementCriteria(action="late_study", threshold=1)

        assert criteria_matches(early, EventContext("video_watched", datetime(2026, 3, 10, 7, 59, tzinfo=timezone.utc)))
        assert not criteria_matches(early, EventContext("video_watched", datetime(2026, 3, 10, 8, tzinfo=timezone.utc)))
        assert criteria_matches(late, EventContext("video_watched", datetime(2026, 3, 10, 22, tzinfo=timezone.utc)))
        assert not criteria_matches(late, EventContext("video_watched", datetime(2026, 3, 10, 21, 59, tzinfo=timezone.utc)))

    def test_subject_filter(self):
        criteria = AchievementCriteria(action="lesson_completed", threshold=1, subject="math")
        assert criteria_matches(criteria, EventContext("lesson_completed", NOON, subject="math"))
        assert not criteria_matches(criteria, EventContext("lesson_completed", NOON, subject="history"))

    def test_study_streak_never_matches_an_event(self):
        criteria = AchievementCriteria(action="study_streak", threshold=1)
        assert not criteria_matches(criteria, EventContext("lesson_completed", NOON))


class TestPrerequisiteGraph:
    def test_find_cycles(self):
        defs = {
            "a": definition("a", prerequisite="b"),
            "b": definition("b", prerequisite="a"),
            "c": definition("c", prerequisite="a"),
            "d": definition("d"),
        }
        assert find_cycles(defs) == {"a", "b"}

    def test_chain_without_cycle(self):
        defs = {
            "a": definition("a"),
            "b": definition("b", prerequisite="a"),
            "c": definition("c", prerequisite="b"),
        }
        assert find_cycles(defs) == set()
        ordered = achievement_service.order_by_prerequisites(list(reversed(defs.values())))
        assert [d.id for d in ordered] == ["a", "b", "c"]

    def test_upsert_rejects_self_reference(self, dynamodb_tables):
        with pytest.raises(DefinitionError):
            achievement_service.upsert_definition(definition("a", prerequisite="a"))

    def test_upsert_rejects_cycle(self, dynamodb_tables):
        achievement_service.upsert_definition(definition("a", prerequisite="b"))
        with pytest.raises(DefinitionError):
            achievement_service.upsert_definition(definition("b", prerequisite="a"))
        assert dynamo_achievements.get_definition("b") is None

    def test_cyclic_definitions_excluded_at_load(self, dynamodb_tables):
        # Written straight to the store, bypassing validation
        dynamo_achievements.put_definition(definition("a", prerequisite="b"))
        dynamo_achievements.put_definition(definition("b", prerequisite="a"))
        dynamo_achievements.put_definition(definition("c"))

        assert [d.id for d in achievement_service.load_definitions()] == ["c"]


class TestEvaluation:
    def test_first_lesson_unlocks_once(self, seeded, make_event):
        first = achievement_service.evaluate_event("user-1", make_event(), NOON)
        second = achievement_service.evaluate_event("user-1", make_event(), NOON)

        assert first.unlocked == ["first_lesson"]
        assert [c.id for c in first.celebrations] == ["achievement_earned:first_lesson"]
        assert second.unlocked == []

        profile = dynamo_profiles.get_profile("user-1")
        assert profile.points.total == 50
        assert profile.title.earned == ["Beginner"]
        assert dynamo_achievements.get_definition("first_lesson").totalEarned == 1

    def test_progress_counts_and_caps_at_target(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("three_lessons", threshold=3))
        for _ in range(5):
            achievement_service.evaluate_event("user-1", make_event(), NOON)

        progress = dynamo_achievements.get_progress("user-1", "three_lessons")
        assert progress.current == 3
        assert progress.percentage == 100.0
        assert progress.isCompleted
        assert progress.completedAt == NOON

    def test_prerequisite_gates_until_completed(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("quiz_first", action="quiz_taken"))
        achievement_service.upsert_definition(definition("lesson_after", prerequisite="quiz_first"))

        blocked = achievement_service.evaluate_event("user-1", make_event(), NOON)
        assert blocked.unlocked == []
        assert dynamo_achievements.get_progress("user-1", "lesson_after") is None

        achievement_service.evaluate_event("user-1", make_event(activity_type="quiz_taken", score=70), NOON)
        unlocked = achievement_service.evaluate_event("user-1", make_event(), NOON)
        assert unlocked.unlocked == ["lesson_after"]

    def test_dependent_can_unlock_in_same_event(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("z_base"))
        achievement_service.upsert_definition(definition("a_next", prerequisite="z_base"))

        evaluation = achievement_service.evaluate_event("user-1", make_event(), NOON)
        assert evaluation.unlocked == ["z_base", "a_next"]

    def test_missing_prerequisite_skips(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("orphan", prerequisite="gone"))
        evaluation = achievement_service.evaluate_event("user-1", make_event(), NOON)
        assert evaluation.unlocked == []
        assert evaluation.errors == []

    def test_inactive_definitions_ignored(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("off", isActive=False))
        assert achievement_service.evaluate_event("user-1", make_event(), NOON).unlocked == []

    def test_total_earned_counts_distinct_users(self, seeded, make_event):
        for user in ["user-1", "user-2", "user-3"]:
            achievement_service.evaluate_event(user, make_event(user_id=user), NOON)

        stored = dynamo_achievements.get_definition("first_lesson")
        assert stored.totalEarned == 3
        assert stored.firstEarnedDate == NOON

    def test_reseeding_keeps_counters(self, seeded, make_event):
        achievement_service.evaluate_event("user-1", make_event(), NOON)
        achievement_service.seed_default_achievements()
        assert dynamo_achievements.get_definition("first_lesson").totalEarned == 1


class TestGetAchievements:
    def test_status_filters(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("one", threshold=1))
        achievement_service.upsert_definition(definition("two", threshold=2))
        achievement_service.upsert_definition(definition("quiz", action="quiz_taken"))
        achievement_service.evaluate_event("user-1", make_event(), NOON)

        def ids(status):
            return sorted(v.achievement.id for v in achievement_service.get_achievements("user-1", status))

        assert ids(AchievementStatusFilter.ALL) == ["one", "quiz", "two"]
        assert ids(AchievementStatusFilter.COMPLETED) == ["one"]
        assert ids(AchievementStatusFilter.IN_PROGRESS) == ["two"]

    def test_hidden_shown_only_when_completed(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("secret", action="quiz_taken", isHidden=True))
        assert achievement_service.get_achievements("user-1") == []

        achievement_service.evaluate_event("user-1", make_event(activity_type="quiz_taken"), NOON)
        views = achievement_service.get_achievements("user-1")
        assert [v.achievement.id for v in views] == ["secret"]
        assert views[0].isCompleted


class TestRewardSettlement:
    """Completion and its reward are separate writes; the reward is applied once"""

    def test_conflict_while_rewarding_propagates(self, seeded, make_event):
        with patch.object(profile_service, "award_points", side_effect=ConcurrencyConflictError()):
            with pytest.raises(ConcurrencyConflictError):
                achievement_service.evaluate_event("user-1", make_event(), NOON)

        progress = dynamo_achievements.get_progress("user-1", "first_lesson")
        assert progress.isCompleted
        assert not progress.rewardsApplied

    def test_next_evaluation_settles_pending_reward(self, seeded, make_event):
        with patch.object(profile_service, "award_points", side_effect=ConcurrencyConflictError()):
            with pytest.raises(ConcurrencyConflictError):
                achievement_service.evaluate_event("user-1", make_event(), NOON)

        later = achievement_service.evaluate_event("user-1", make_event(activity_type="video_watched"), NOON)

        assert later.unlocked == ["first_lesson"]
        assert [c.id for c in later.celebrations] == ["achievement_earned:first_lesson"]
        assert dynamo_profiles.get_profile("user-1").points.total == 50
        assert dynamo_achievements.get_definition("first_lesson").totalEarned == 1
        assert dynamo_achievements.get_progress("user-1", "first_lesson").rewardsApplied

    def test_settling_twice_counts_once(self, dynamodb_tables):
        solo = achievement_service.upsert_definition(definition("solo", points=25))
        progress, just_completed = achievement_service.advance_progress("user-1", solo, NOON)
        assert just_completed

        first = achievement_service.complete_achievement("user-1", solo, progress, NOON)
        second = achievement_service.complete_achievement("user-1", solo, progress, NOON)

        assert first[0] is True
        assert second == (False, None)
        assert dynamo_achievements.get_definition("solo").totalEarned == 1
        assert dynamo_profiles.get_profile("user-1").points.total == 25

    def test_same_record_counted_once(self, dynamodb_tables, make_event):
        achievement_service.upsert_definition(definition("three_lessons", threshold=3))
        achievement_service.evaluate_event("user-1", make_event(), NOON, record_id="rec-1")
        achievement_service.evaluate_event("user-1", make_event(), NOON, record_id="rec-1")
        achievement_service.evaluate_event("user-1", make_event(), NOON, record_id="rec-2")

        progress = dynamo_achievements.get_progress("user-1", "three_lessons")
        assert progress.current == 2
        assert progress.appliedRecords == ["rec-1", "rec-2"]
