"""
Default achievement and leaderboard catalogue

Seeded by scripts/seed_definitions.py and by the lifespan hook in local
environments. Upserts keep the earned counters of existing definitions.
"""
from progress_engine.schemas import (
    AchievementCriteria,
    AchievementDefinition,
    AchievementRewards,
    LeaderboardDefinition,
    LeaderboardSettings,
)

DEFAULT_ACHIEVEMENTS = [
    # Learning
    AchievementDefinition(
        id="first_lesson", name="First Steps", description="Complete your first lesson", icon="🎯",
        category="learning", type="milestone", tier="bronze",
        criteria=AchievementCriteria(action="lesson_completed", threshold=1),
        rewards=AchievementRewards(points=50, badge="first_lesson", title="Beginner"),
    ),
    AchievementDefinition(
        id="lesson_master_10", name="Quick Learner", description="Complete 10 lessons", icon="📚",
        category="learning", type="progress", tier="silver",
        criteria=AchievementCriteria(action="lesson_completed", threshold=10),
        rewards=AchievementRewards(points=200, badge="lesson_master_10"),
    ),
    AchievementDefinition(
        id="lesson_master_50", name="Knowledge Seeker", description="Complete 50 lessons", icon="🎓",
        category="learning", type="progress", tier="gold", rarity="rare",
        criteria=AchievementCriteria(action="lesson_completed", threshold=50),
        rewards=AchievementRewards(points=500, badge="lesson_master_50", title="Scholar"),
    ),
    # Consistency
    AchievementDefinition(
        id="streak_7", name="Week Warrior", description="Study for 7 days in a row", icon="🔥",
        category="consistency", type="streak", tier="silver", rarity="uncommon",
        criteria=AchievementCriteria(action="study_streak", threshold=7),
        rewards=AchievementRewards(points=300, badge="streak_7"),
    ),
    AchievementDefinition(
        id="streak_30", name="Month Master", description="Study for 30 days in a row", icon="⚡",
        category="consistency", type="streak", tier="gold", rarity="epic",
        criteria=AchievementCriteria(action="study_streak", threshold=30),
        rewards=AchievementRewards(points=1000, badge="streak_30", title="Dedicated"),
    ),
    # Mastery
    AchievementDefinition(
        id="quiz_ace", name="Quiz Ace", description="Score 100% on a quiz", icon="💯",
        category="mastery", type="milestone", tier="gold", rarity="uncommon",
        criteria=AchievementCriteria(action="quiz_perfect", threshold=1),
        rewards=AchievementRewards(points=150, badge="quiz_ace"),
    ),
    # Social
    AchievementDefinition(
        id="helper_5", name="Helpful Friend", description="Help 5 fellow students", icon="🤝",
        category="social", type="progress", tier="silver",
        criteria=AchievementCriteria(action="help_given", threshold=5),
        rewards=AchievementRewards(points=250, badge="helper_5", title="Helper"),
    ),
    # Special
    AchievementDefinition(
        id="early_bird", name="Early Bird", description="Study before 8 AM", icon="🌅",
        category="special", type="milestone", tier="bronze",
        criteria=AchievementCriteria(action="early_study", threshold=1),
        rewards=AchievementRewards(points=100, badge="early_bird"),
    ),
    AchievementDefinition(
        id="night_owl", name="Night Owl", description="Study after 10 PM", icon="🦉",
        category="special", type="milestone", tier="bronze",
        criteria=AchievementCriteria(action="late_study", threshold=1),
        rewards=AchievementRewards(points=100, badge="night_owl"),
    ),
]

DEFAULT_LEADERBOARDS = [
    LeaderboardDefinition(
        id="global_points_all_time", name="Top Learners", type="global",
        metric="total_points", timeframe="all_time",
        settings=LeaderboardSettings(updateFrequency="hourly"),
    ),
    LeaderboardDefinition(
        id="global_points_weekly", name="This Week's Top Learners", type="global",
        metric="total_points", timeframe="weekly",
        settings=LeaderboardSettings(updateFrequency="realtime"),
    ),
    LeaderboardDefinition(
        id="study_time_monthly", name="Most Dedicated This Month", type="global",
        metric="study_time", timeframe="monthly",
        settings=LeaderboardSettings(updateFrequency="daily"),
    ),
    LeaderboardDefinition(
        id="helpers_all_time", name="Most Helpful", type="global",
        metric="help_given", timeframe="all_time",
        settings=LeaderboardSettings(maxParticipants=50, updateFrequency="daily"),
    ),
]
