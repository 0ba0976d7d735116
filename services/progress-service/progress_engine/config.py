"""
Configuration settings for Progress Service
"""
from functools import lru_cache
from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # App
    APP_NAME: str = "Progress Service"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "local"
    LOG_LEVEL: str = "INFO"

    # AWS
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles
    AWS_SECRET_ACCESS_KEY: Optional[str] = None  # Only for LocalStack, ECS uses IAM roles

    # DynamoDB
    DYNAMODB_ENDPOINT: Optional[str] = None  # None uses AWS, set for LocalStack
    DYNAMODB_GAMIFICATION_TABLE: str = "progress-engine-dev-gamification"  # profiles, progress, goals, definitions, snapshots
    DYNAMODB_LEDGER_TABLE: str = "progress-engine-dev-progress-ledger"  # append-only activity records
    CREATE_TABLES_ON_STARTUP: bool = False

    # SNS (celebration transport)
    SNS_TOPIC_ARN: Optional[str] = None

    # Leveling
    XP_BASE_REQUIRED: int = 100
    XP_GROWTH_FACTOR: float = 1.2

    # Engine
    CELEBRATION_TTL_DAYS: int = 7
    MAX_CONFLICT_RETRIES: int = 5
    DEFAULT_LEADERBOARD_SIZE: int = 100
    DEFAULT_PAGE_LIMIT: int = 50
    IDEMPOTENCY_WINDOW: int = 100  # applied record ids / reward keys kept per stored item

    # Scheduler
    SCHEDULER_ENABLED: bool = False

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Returns cached settings instance (singleton)"""
    return Settings()
