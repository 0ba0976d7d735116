"""
Pydantic schemas for progress-service

Persisted records (ledger entries, profiles, achievement progress, goals,
celebrations, snapshots) and the request/response models of the API.
Field names are camelCase so items round-trip between DynamoDB and the API.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============= ENUMS =============

class ActivityType(str, Enum):
    LESSON_COMPLETED = "lesson_completed"
    QUIZ_TAKEN = "quiz_taken"
    ASSIGNMENT_SUBMITTED = "assignment_submitted"
    VIDEO_WATCHED = "video_watched"
    BOOK_READ = "book_read"
    PRACTICE_SESSION = "practice_session"
    HELP_GIVEN = "help_given"
    QUESTION_ANSWERED = "question_answered"
    RESOURCE_SHARED = "resource_shared"


class CriteriaAction(str, Enum):
    """What an achievement counts: any activity type plus derived actions"""
    LESSON_COMPLETED = "lesson_completed"
    QUIZ_TAKEN = "quiz_taken"
    ASSIGNMENT_SUBMITTED = "assignment_submitted"
    VIDEO_WATCHED = "video_watched"
    BOOK_READ = "book_read"
    PRACTICE_SESSION = "practice_session"
    HELP_GIVEN = "help_given"
    QUESTION_ANSWERED = "question_answered"
    RESOURCE_SHARED = "resource_shared"
    ANY = "any"
    STUDY_STREAK = "study_streak"
    QUIZ_PERFECT = "quiz_perfect"
    EARLY_STUDY = "early_study"
    LATE_STUDY = "late_study"


class CriteriaTimeframe(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"
    NONE = "none"


class AchievementCategory(str, Enum):
    LEARNING = "learning"
    CONSISTENCY = "consistency"
    SOCIAL = "social"
    MASTERY = "mastery"
    EXPLORATION = "exploration"
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"
    SPECIAL = "special"


class AchievementType(str, Enum):
    PROGRESS = "progress"
    MILESTONE = "milestone"
    STREAK = "streak"
    SOCIAL = "social"
    SPECIAL = "special"


class AchievementTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"
    DIAMOND = "diamond"


class Rarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class AchievementStatusFilter(str, Enum):
    ALL = "all"
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"


class GoalType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"
    MILESTONE = "milestone"


class GoalCategory(str, Enum):
    STUDY_TIME = "study_time"
    LESSONS_COMPLETED = "lessons_completed"
    QUIZ_SCORE = "quiz_score"
    STREAK_MAINTENANCE = "streak_maintenance"
    SKILL_MASTERY = "skill_mastery"
    SOCIAL_INTERACTION = "social_interaction"


class GoalUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    LESSONS = "lessons"
    QUIZZES = "quizzes"
    POINTS = "points"
    PERCENTAGE = "percentage"
    DAYS = "days"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class LeaderboardType(str, Enum):
    GLOBAL = "global"
    CLASS = "class"
    SCHOOL = "school"
    SUBJECT = "subject"
    GRADE = "grade"
    CUSTOM = "custom"


class LeaderboardMetric(str, Enum):
    TOTAL_POINTS = "total_points"
    STUDY_TIME = "study_time"
    LESSONS_COMPLETED = "lessons_completed"
    QUIZ_AVERAGE = "quiz_average"
    STREAK_LENGTH = "streak_length"
    ACHIEVEMENTS_EARNED = "achievements_earned"
    HELP_GIVEN = "help_given"
    IMPROVEMENT_RATE = "improvement_rate"


class LeaderboardTimeframe(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ALL_TIME = "all_time"


class UpdateFrequency(str, Enum):
    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    SAME = "same"
    NEW = "new"


class CelebrationType(str, Enum):
    ACHIEVEMENT_EARNED = "achievement_earned"
    GOAL_COMPLETED = "goal_completed"
    STREAK_MILESTONE = "streak_milestone"
    LEVEL_UP = "level_up"
    LEADERBOARD_POSITION = "leaderboard_position"
    FIRST_TIME = "first_time"
    ANNIVERSARY = "anniversary"


class CelebrationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EPIC = "epic"


# ============= ACTIVITY / LEDGER =============

class PerformanceData(BaseModel):
    score: Optional[float] = Field(None, ge=0, le=100)
    accuracy: Optional[float] = Field(None, ge=0, le=100)
    timeSpent: Optional[float] = Field(None, ge=0, description="Minutes")
    attempts: Optional[int] = Field(None, ge=1)
    expectedTime: Optional[float] = Field(None, ge=0, description="Minutes")


class ActivityData(PerformanceData):
    subject: Optional[str] = None
    grade: Optional[str] = None
    topic: Optional[str] = None

    def performance(self) -> PerformanceData:
        return PerformanceData(**self.model_dump(include=set(PerformanceData.model_fields)))


class ActivityEvent(BaseModel):
    """Incoming learning activity. Unknown activity types are accepted and earn no base points."""
    userId: str = Field(..., min_length=1)
    activityType: str = Field(..., min_length=1)
    activityData: ActivityData = Field(default_factory=ActivityData)
    occurredAt: datetime = Field(default_factory=utc_now)
    eventId: Optional[str] = Field(None, min_length=1, description="Idempotency key for redelivered events")

    @field_validator('occurredAt')
    @classmethod
    def normalize_occurred_at(cls, v: datetime) -> datetime:
        return as_utc(v)


class PointsResult(BaseModel):
    base: int
    bonus: int
    total: int


class RecordPoints(BaseModel):
    earned: int
    bonus: int
    total: int


class ProgressRecord(BaseModel):
    id: str
    userId: str
    subject: str = "General"
    grade: str = "Unknown"
    topic: Optional[str] = None
    activityType: str
    performance: PerformanceData = Field(default_factory=PerformanceData)
    points: RecordPoints
    streak: int = 0
    streakAfter: int = 0
    date: datetime
    eventId: Optional[str] = None
    processedAt: Optional[datetime] = None


class ProgressHistoryResponse(BaseModel):
    userId: str
    records: List[ProgressRecord]
    count: int


# ============= ACHIEVEMENTS =============

class AchievementCriteria(BaseModel):
    action: CriteriaAction
    threshold: int = Field(..., ge=1)
    timeframe: CriteriaTimeframe = CriteriaTimeframe.ALL_TIME
    subject: Optional[str] = None
    grade: Optional[str] = None


class AchievementRewards(BaseModel):
    points: int = Field(0, ge=0)
    badge: Optional[str] = None
    title: Optional[str] = None


class AchievementDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    icon: str = ""
    category: AchievementCategory = AchievementCategory.LEARNING
    type: AchievementType = AchievementType.PROGRESS
    tier: AchievementTier = AchievementTier.BRONZE
    criteria: AchievementCriteria
    rewards: AchievementRewards = Field(default_factory=AchievementRewards)
    prerequisite: Optional[str] = None
    isActive: bool = True
    isHidden: bool = False
    rarity: Rarity = Rarity.COMMON
    totalEarned: int = 0
    firstEarnedDate: Optional[datetime] = None
    lastEarnedDate: Optional[datetime] = None


class AchievementProgress(BaseModel):
    userId: str
    achievementId: str
    current: int = 0
    target: int
    percentage: float = 0.0
    isCompleted: bool = False
    completedAt: Optional[datetime] = None
    lastUpdated: Optional[datetime] = None
    rewardsApplied: bool = False
    appliedRecords: List[str] = []
    version: int = 0


class AchievementView(BaseModel):
    """Definition merged with the caller's progress"""
    achievement: AchievementDefinition
    current: int
    target: int
    percentage: float
    isCompleted: bool
    completedAt: Optional[datetime] = None


# ============= GOALS =============

class GoalTarget(BaseModel):
    value: float
    unit: GoalUnit


class GoalCurrent(BaseModel):
    value: float = 0
    percentage: float = 0
    attempts: int = 0


class GoalTimeframe(BaseModel):
    start: datetime
    end: datetime
    duration: Optional[int] = Field(None, description="Days")

    @field_validator('start', 'end')
    @classmethod
    def normalize_bounds(cls, v: datetime) -> datetime:
        return as_utc(v)


class MilestoneReward(BaseModel):
    points: int = Field(0, ge=0)
    message: Optional[str] = None
    badge: Optional[str] = None


class GoalMilestone(BaseModel):
    percentage: float
    reward: MilestoneReward = Field(default_factory=MilestoneReward)
    achieved: bool = False
    achievedAt: Optional[datetime] = None
    rewarded: bool = False


class GoalRewards(BaseModel):
    points: int = Field(0, ge=0)
    badges: List[str] = []
    unlocks: List[str] = []


class StudyGoal(BaseModel):
    id: str
    userId: str
    title: str
    description: str = ""
    type: GoalType = GoalType.CUSTOM
    category: GoalCategory
    target: GoalTarget
    current: GoalCurrent = Field(default_factory=GoalCurrent)
    timeframe: GoalTimeframe
    subject: Optional[str] = None
    milestones: List[GoalMilestone] = []
    rewards: GoalRewards = Field(default_factory=GoalRewards)
    status: GoalStatus = GoalStatus.ACTIVE
    priority: GoalPriority = GoalPriority.MEDIUM
    createdAt: datetime = Field(default_factory=utc_now)
    completedAt: Optional[datetime] = None
    rewardsApplied: bool = False
    appliedRecords: List[str] = []
    version: int = 0


class GoalCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    type: GoalType = GoalType.CUSTOM
    category: GoalCategory
    target: GoalTarget
    timeframe: GoalTimeframe
    subject: Optional[str] = None
    milestones: List[GoalMilestone] = []
    rewards: GoalRewards = Field(default_factory=GoalRewards)
    priority: GoalPriority = GoalPriority.MEDIUM


class GoalStatusUpdate(BaseModel):
    status: GoalStatus


# ============= PROFILE =============

class ExperienceInfo(BaseModel):
    current: int = 0
    required: int = 100
    total: int = 0


class LevelInfo(BaseModel):
    current: int = 1
    experience: ExperienceInfo = Field(default_factory=ExperienceInfo)


class PointsBalance(BaseModel):
    total: int = 0
    available: int = 0
    spent: int = 0
    lifetime: int = 0


class EarnedAchievement(BaseModel):
    achievementId: str
    earnedAt: datetime


class AchievementsSummary(BaseModel):
    earned: List[EarnedAchievement] = []
    total: int = 0


class StreakInfo(BaseModel):
    current: int = 0
    longest: int = 0
    lastActivityDate: Optional[str] = Field(None, description="UTC calendar day, YYYY-MM-DD")


class StudyTimeStats(BaseModel):
    total: float = 0
    daily: float = 0
    weekly: float = 0
    monthly: float = 0
    lastStudyDate: Optional[str] = None


class Statistics(BaseModel):
    studyTime: StudyTimeStats = Field(default_factory=StudyTimeStats)
    lessonsCompleted: int = 0
    quizzesCompleted: int = 0
    averageScore: float = 0
    helpGiven: int = 0
    socialInteractions: int = 0


class TitleInfo(BaseModel):
    current: str = "Student"
    earned: List[str] = []


class GamificationProfile(BaseModel):
    userId: str
    level: LevelInfo = Field(default_factory=LevelInfo)
    points: PointsBalance = Field(default_factory=PointsBalance)
    achievements: AchievementsSummary = Field(default_factory=AchievementsSummary)
    streaks: StreakInfo = Field(default_factory=StreakInfo)
    statistics: Statistics = Field(default_factory=Statistics)
    title: TitleInfo = Field(default_factory=TitleInfo)
    appliedRecords: List[str] = []
    appliedRewards: List[str] = []
    createdAt: datetime = Field(default_factory=utc_now)
    updatedAt: datetime = Field(default_factory=utc_now)
    version: int = 0


# ============= LEADERBOARDS =============

class LeaderboardFilters(BaseModel):
    subject: Optional[str] = None
    grade: Optional[str] = None
    school: Optional[str] = None
    classId: Optional[str] = None


class LeaderboardSettings(BaseModel):
    maxParticipants: int = Field(100, ge=1)
    isActive: bool = True
    isPublic: bool = True
    autoUpdate: bool = True
    updateFrequency: UpdateFrequency = UpdateFrequency.DAILY


class LeaderboardDefinition(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    type: LeaderboardType = LeaderboardType.GLOBAL
    metric: LeaderboardMetric
    timeframe: LeaderboardTimeframe = LeaderboardTimeframe.ALL_TIME
    filters: LeaderboardFilters = Field(default_factory=LeaderboardFilters)
    settings: LeaderboardSettings = Field(default_factory=LeaderboardSettings)


class LeaderboardEntry(BaseModel):
    userId: str
    rank: int
    score: float
    previousRank: Optional[int] = None
    trend: Trend = Trend.NEW


class LeaderboardSnapshot(BaseModel):
    leaderboardId: str
    participants: List[LeaderboardEntry] = []
    totalParticipants: int = 0
    generatedAt: Optional[datetime] = None
    windowStart: Optional[datetime] = None


class LeaderboardPosition(BaseModel):
    leaderboardId: str
    userId: str
    rank: Optional[int] = None
    score: Optional[float] = None
    trend: Optional[Trend] = None
    totalParticipants: int = 0


# ============= CELEBRATIONS =============

class CelebrationData(BaseModel):
    achievement: Optional[str] = None
    goal: Optional[str] = None
    points: int = 0
    level: Optional[int] = None
    rank: Optional[int] = None
    streak: Optional[int] = None
    milestone: Optional[float] = None


class CelebrationEvent(BaseModel):
    id: str
    userId: str
    type: CelebrationType
    title: str
    message: str
    data: CelebrationData = Field(default_factory=CelebrationData)
    animation: str = "confetti"
    sound: str = "cheer"
    priority: CelebrationPriority = CelebrationPriority.MEDIUM
    isShown: bool = False
    shownAt: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utc_now)
    expiresAt: datetime


# ============= PIPELINE RESULT =============

class ProcessingResult(BaseModel):
    userId: str
    duplicate: bool = False
    resumed: bool = False
    record: Optional[ProgressRecord] = None
    points: Optional[PointsResult] = None
    streak: Optional[StreakInfo] = None
    levelUps: List[int] = []
    achievementsUnlocked: List[str] = []
    goalsCompleted: List[str] = []
    celebrations: List[CelebrationEvent] = []
    errors: List[str] = []


class HealthResponse(BaseModel):
    status: str
    dynamodb: str
    details: Optional[Dict[str, Any]] = None
