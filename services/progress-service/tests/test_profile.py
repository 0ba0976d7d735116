"""
Tests for the profile aggregator: leveling, statistics, rewards, CAS retries
"""
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from progress_engine import dynamo_celebrations, dynamo_profiles
from progress_engine.exceptions import ConcurrencyConflictError, VersionConflictError
from progress_engine.logic import profile_service
from progress_engine.schemas import PerformanceData, Statistics


class TestLeveling:
    """Level-up loop with a 1.2 growth factor"""

    def test_250_xp_from_scratch_is_two_levels(self):
        profile = profile_service.new_profile("user-1")
        reached = profile_service.apply_experience(profile, 250)

        assert reached == [2, 3]
        assert profile.level.current == 3
        assert profile.level.experience.current == 30
        assert profile.level.experience.required == 144
        assert profile.level.experience.total == 250

    def test_below_threshold_no_level(self):
        profile = profile_service.new_profile("user-1")
        assert profile_service.apply_experience(profile, 99) == []
        assert profile.level.current == 1

    def test_exact_threshold_levels_up(self):
        profile = profile_service.new_profile("user-1")
        assert profile_service.apply_experience(profile, 100) == [2]
        assert profile.level.experience.current == 0
        assert profile.level.experience.required == 120


class TestStatistics:
    def test_quiz_average_is_running_mean(self):
        stats = Statistics()
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        profile_service.update_statistics(stats, "quiz_taken", PerformanceData(score=80), when)
        profile_service.update_statistics(stats, "quiz_taken", PerformanceData(score=100), when)

        assert stats.quizzesCompleted == 2
        assert stats.averageScore == 90

    def test_counters(self):
        stats = Statistics()
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        for activity in ["lesson_completed", "lesson_completed", "help_given", "question_answered"]:
            profile_service.update_statistics(stats, activity, PerformanceData(), when)

        assert stats.lessonsCompleted == 2
        assert stats.helpGiven == 1
        assert stats.socialInteractions == 1

    def test_study_time_daily_resets_on_new_day(self):
        stats = Statistics()
        monday = datetime(2026, 3, 9, 12, tzinfo=timezone.utc)
        tuesday = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        profile_service.update_statistics(stats, "video_watched", PerformanceData(timeSpent=30), monday)
        profile_service.update_statistics(stats, "video_watched", PerformanceData(timeSpent=20), tuesday)

        assert stats.studyTime.total == 50
        assert stats.studyTime.daily == 20
        assert stats.studyTime.weekly == 50
        assert stats.studyTime.monthly == 50

    def test_study_time_weekly_resets_on_sunday(self):
        stats = Statistics()
        saturday = datetime(2026, 3, 14, 12, tzinfo=timezone.utc)
        sunday = datetime(2026, 3, 15, 12, tzinfo=timezone.utc)
        profile_service.update_statistics(stats, "video_watched", PerformanceData(timeSpent=30), saturday)
        profile_service.update_statistics(stats, "video_watched", PerformanceData(timeSpent=10), sunday)

        assert stats.studyTime.weekly == 10
        assert stats.studyTime.monthly == 40


class TestApplyActivity:
    def test_creates_profile_on_first_activity(self, dynamodb_tables):
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        update = profile_service.apply_activity("user-1", "lesson_completed", 16, PerformanceData(), when)

        stored = dynamo_profiles.get_profile("user-1")
        assert stored is not None
        assert stored.points.total == 16
        assert stored.points.available == 16
        assert stored.points.lifetime == 16
        assert stored.level.experience.current == 50
        assert stored.version == 1
        assert update.level_ups == []

    def test_level_up_emits_one_celebration_per_level(self, dynamodb_tables):
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        first = profile_service.apply_activity("user-1", "lesson_completed", 10, PerformanceData(), when)
        update = profile_service.apply_activity("user-1", "lesson_completed", 10, PerformanceData(), when)

        assert first.level_ups == []

        assert update.level_ups == [2]
        assert [c.id for c in update.celebrations] == ["level_up:2"]
        assert dynamo_celebrations.get_celebration("user-1", "level_up:2") is not None

    def test_points_total_only_grows(self, dynamodb_tables):
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        totals = []
        for points in [5, 0, 12]:
            update = profile_service.apply_activity("user-1", "video_watched", points, PerformanceData(), when)
            totals.append(update.profile.points.total)
        assert totals == sorted(totals)
        assert totals[-1] == 17

    def test_same_record_applied_once(self, dynamodb_tables):
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        profile_service.apply_activity("user-1", "lesson_completed", 10, PerformanceData(), when, record_id="rec-1")
        update = profile_service.apply_activity("user-1", "lesson_completed", 10, PerformanceData(), when,
                                                record_id="rec-1")

        assert update.level_ups == []
        assert update.profile.points.total == 10
        assert update.profile.statistics.lessonsCompleted == 1
        assert update.profile.appliedRecords == ["rec-1"]

    def test_applied_records_are_bounded(self, dynamodb_tables, monkeypatch):
        monkeypatch.setattr(profile_service.ledger.settings, "IDEMPOTENCY_WINDOW", 2)
        when = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        for record_id in ["rec-1", "rec-2", "rec-3"]:
            update = profile_service.apply_activity("user-1", "video_watched", 1, PerformanceData(), when,
                                                    record_id=record_id)

        assert update.profile.appliedRecords == ["rec-2", "rec-3"]


class TestAwardPoints:
    def test_credits_achievement_and_title_once(self, dynamodb_tables):
        profile_service.award_points("user-1", 50, achievement_id="first_lesson", title="Beginner")
        profile = profile_service.award_points("user-1", 50, achievement_id="first_lesson", title="Beginner")

        assert profile.points.total == 50
        assert profile.achievements.total == 1
        assert [e.achievementId for e in profile.achievements.earned] == ["first_lesson"]
        assert profile.title.earned == ["Beginner"]

    def test_keyed_reward_credited_once(self, dynamodb_tables):
        profile_service.award_points("user-1", 40, reward_key="goal:g-1")
        profile_service.award_points("user-1", 40, reward_key="goal:g-1")
        profile = profile_service.award_points("user-1", 5, reward_key="goal:g-1:50")

        assert profile.points.total == 45
        assert profile.appliedRewards == ["goal:g-1", "goal:g-1:50"]

    def test_unkeyed_rewards_always_credit(self, dynamodb_tables):
        profile_service.award_points("user-1", 10)
        assert profile_service.award_points("user-1", 10).points.total == 20


class TestOptimisticLocking:
    """Version conflicts are retried, then surfaced as ConcurrencyConflictError"""

    def test_retries_after_conflict(self, dynamodb_tables):
        real_save = dynamo_profiles.save_profile
        calls = {"n": 0}

        def flaky_save(profile):
            calls["n"] += 1
            if calls["n"] == 1:
                raise VersionConflictError()
            return real_save(profile)

        with patch.object(dynamo_profiles, "save_profile", side_effect=flaky_save):
            profile = profile_service.award_points("user-1", 10)

        assert calls["n"] == 2
        assert profile.points.total == 10

    def test_gives_up_after_max_attempts(self, dynamodb_tables):
        with patch.object(dynamo_profiles, "save_profile", side_effect=VersionConflictError()):
            with pytest.raises(ConcurrencyConflictError):
                profile_service.award_points("user-1", 10)

    def test_stale_version_is_rejected_by_store(self, dynamodb_tables):
        profile_service.award_points("user-1", 10)
        stale = dynamo_profiles.get_profile("user-1")
        profile_service.award_points("user-1", 5)

        stale.points.total += 100
        with pytest.raises(VersionConflictError):
            dynamo_profiles.save_profile(stale)

        assert dynamo_profiles.get_profile("user-1").points.total == 15
