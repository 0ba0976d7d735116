"""
Pytest configuration for progress-service tests

Every test touching storage runs against moto's in-memory DynamoDB with
freshly created tables.
"""
import os
import uuid
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from progress_engine import dynamo, dynamo_ledger  # noqa: E402
from progress_engine.aws_client import aws_client  # noqa: E402
from progress_engine.logic import achievement_service, leaderboard_service  # noqa: E402
from progress_engine.schemas import (  # noqa: E402
    ActivityData,
    ActivityEvent,
    PerformanceData,
    ProgressRecord,
    RecordPoints,
)


@pytest.fixture(scope="function")
def aws_credentials(monkeypatch):
    """Mock AWS Credentials"""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture(scope="function")
def dynamodb_tables(aws_credentials):
    """Mock DynamoDB with the gamification and ledger tables"""
    with mock_aws():
        dynamo.db_client.reset()
        aws_client.reset()
        dynamo.create_tables_if_not_exist()
        yield dynamo.db_client
        dynamo.db_client.reset()
        aws_client.reset()


@pytest.fixture(scope="function")
def seeded(dynamodb_tables):
    """Tables plus the default achievement and leaderboard catalogue"""
    achievement_service.seed_default_achievements()
    leaderboard_service.seed_default_leaderboards()
    return dynamodb_tables


@pytest.fixture(scope="function")
def client(dynamodb_tables):
    """HTTP test client (lifespan not started: no scheduler, no seeding)"""
    from progress_engine.main import app
    return TestClient(app)


@pytest.fixture
def noon():
    return datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_event():
    """Factory for activity events"""
    def _make(user_id="user-1", activity_type="lesson_completed", occurred_at=None, event_id=None, **data):
        return ActivityEvent(
            userId=user_id,
            activityType=activity_type,
            activityData=ActivityData(**data),
            occurredAt=occurred_at or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
            eventId=event_id,
        )
    return _make


@pytest.fixture
def add_record(dynamodb_tables):
    """Factory that appends a ledger record directly"""
    def _add(user_id, activity_type="lesson_completed", date=None, total=10, score=None,
             time_spent=None, subject="General", grade="Unknown", streak=0, streak_after=0):
        record = ProgressRecord(
            id=str(uuid.uuid4()),
            userId=user_id,
            subject=subject,
            grade=grade,
            activityType=activity_type,
            performance=PerformanceData(score=score, timeSpent=time_spent),
            points=RecordPoints(earned=total, bonus=0, total=total),
            streak=streak,
            streakAfter=streak_after,
            date=date or datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
        )
        return dynamo_ledger.append_record(record)
    return _add
