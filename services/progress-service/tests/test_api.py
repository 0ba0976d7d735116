"""
API tests for the progress service endpoints
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from progress_engine.exceptions import ConcurrencyConflictError
from progress_engine.logic import achievement_service, leaderboard_service, pipeline, profile_service

API = "/api/v1"
OCCURRED_AT = "2026-03-10T12:00:00Z"


def activity(user_id="user-1", activity_type="lesson_completed", event_id=None, **data):
    payload = {
        "userId": user_id,
        "activityType": activity_type,
        "activityData": data,
        "occurredAt": OCCURRED_AT,
    }
    if event_id:
        payload["eventId"] = event_id
    return payload


def goal_body(target=3, category="lessons_completed", days=7):
    # Opens before the pinned activity time, stays open past the real clock
    now = datetime.now(timezone.utc)
    return {
        "title": "Three lessons this week",
        "category": category,
        "target": {"value": target, "unit": "lessons"},
        "timeframe": {
            "start": "2026-03-09T00:00:00Z",
            "end": (now + timedelta(days=days)).isoformat(),
        },
        "milestones": [{"percentage": 50, "reward": {"points": 5}}],
        "rewards": {"points": 20},
    }


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "progress-service"

    def test_health_reports_dynamodb(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["dynamodb"] == "connected"


class TestActivityEndpoint:
    def test_ingest_activity(self, client):
        achievement_service.seed_default_achievements()
        response = client.post(f"{API}/events/activity", json=activity(score=100, attempts=1, event_id="evt-1"))

        assert response.status_code == 200
        data = response.json()
        assert data["points"]["total"] == 16
        assert data["streak"]["current"] == 1
        assert data["achievementsUnlocked"] == ["first_lesson"]
        assert data["duplicate"] is False

    def test_redelivery_reports_duplicate(self, client):
        body = activity(event_id="evt-1")
        client.post(f"{API}/events/activity", json=body)
        response = client.post(f"{API}/events/activity", json=body)

        assert response.status_code == 200
        assert response.json()["duplicate"] is True

    def test_invalid_payload(self, client):
        response = client.post(f"{API}/events/activity", json=activity(score=150))
        assert response.status_code == 422

    def test_conflict_maps_to_409(self, client):
        with patch.object(pipeline, "process_event_sync", side_effect=ConcurrencyConflictError()):
            response = client.post(f"{API}/events/activity", json=activity())
        assert response.status_code == 409

    def test_redelivery_after_409_resumes(self, client):
        body = activity(event_id="evt-409", timeSpent=20)
        with patch.object(profile_service, "apply_activity", side_effect=ConcurrencyConflictError()):
            assert client.post(f"{API}/events/activity", json=body).status_code == 409

        response = client.post(f"{API}/events/activity", json=body)
        assert response.status_code == 200
        assert response.json()["resumed"] is True

        profile = client.get(f"{API}/users/user-1/profile").json()
        assert profile["points"]["total"] == 10
        assert profile["statistics"]["studyTime"]["total"] == 20


class TestProfileEndpoints:
    def test_unknown_user_gets_default_profile(self, client):
        response = client.get(f"{API}/users/nobody/profile")
        assert response.status_code == 200
        data = response.json()
        assert data["level"]["current"] == 1
        assert data["points"]["total"] == 0
        assert data["title"]["current"] == "Student"

    def test_profile_after_activity(self, client):
        client.post(f"{API}/events/activity", json=activity(timeSpent=25))
        data = client.get(f"{API}/users/user-1/profile").json()

        assert data["points"]["total"] == 10
        assert data["statistics"]["studyTime"]["total"] == 25
        assert data["streaks"]["current"] == 1

    def test_achievements_with_status(self, client):
        achievement_service.seed_default_achievements()
        client.post(f"{API}/events/activity", json=activity())

        completed = client.get(f"{API}/users/user-1/achievements", params={"status": "completed"}).json()
        assert [a["achievement"]["id"] for a in completed] == ["first_lesson"]

        in_progress = client.get(f"{API}/users/user-1/achievements", params={"status": "in_progress"}).json()
        assert "lesson_master_10" in [a["achievement"]["id"] for a in in_progress]

        bad = client.get(f"{API}/users/user-1/achievements", params={"status": "maybe"})
        assert bad.status_code == 422

    def test_progress_history(self, client):
        for i in range(3):
            client.post(f"{API}/events/activity", json=activity(event_id=f"evt-{i}"))
        response = client.get(f"{API}/users/user-1/progress", params={"limit": 2})

        assert response.status_code == 200
        assert response.json()["count"] == 2


class TestGoalEndpoints:
    def test_create_and_progress_goal(self, client):
        created = client.post(f"{API}/users/user-1/goals", json=goal_body(target=2))
        assert created.status_code == 201
        goal_id = created.json()["id"]

        client.post(f"{API}/events/activity", json=activity())
        active = client.get(f"{API}/users/user-1/goals/active").json()
        assert [g["id"] for g in active] == [goal_id]
        assert active[0]["current"]["value"] == 1
        assert active[0]["milestones"][0]["achieved"] is True

        client.post(f"{API}/events/activity", json=activity())
        assert client.get(f"{API}/users/user-1/goals/active").json() == []
        completed = client.get(f"{API}/users/user-1/goals", params={"status": "completed"}).json()
        assert [g["id"] for g in completed] == [goal_id]

    def test_invalid_goal_is_422(self, client):
        response = client.post(f"{API}/users/user-1/goals", json=goal_body(target=0))
        assert response.status_code == 422

    def test_status_transitions(self, client):
        goal_id = client.post(f"{API}/users/user-1/goals", json=goal_body()).json()["id"]

        paused = client.patch(f"{API}/users/user-1/goals/{goal_id}/status", json={"status": "paused"})
        assert paused.json()["status"] == "paused"

        cancelled = client.patch(f"{API}/users/user-1/goals/{goal_id}/status", json={"status": "cancelled"})
        assert cancelled.status_code == 200

        resumed = client.patch(f"{API}/users/user-1/goals/{goal_id}/status", json={"status": "active"})
        assert resumed.status_code == 409

    def test_unknown_goal_is_404(self, client):
        response = client.patch(f"{API}/users/user-1/goals/missing/status", json={"status": "paused"})
        assert response.status_code == 404


class TestLeaderboardEndpoints:
    def test_unknown_leaderboard_is_404(self, client):
        assert client.get(f"{API}/leaderboards/nope").status_code == 404

    def test_recompute_and_read(self, client):
        leaderboard_service.seed_default_leaderboards()
        client.post(f"{API}/events/activity", json=activity(user_id="alice", activity_type="help_given"))
        client.post(f"{API}/events/activity", json=activity(user_id="bob", activity_type="lesson_completed"))

        recomputed = client.post(f"{API}/leaderboards/global_points_all_time/recompute")
        assert recomputed.status_code == 200

        board = client.get(f"{API}/leaderboards/global_points_all_time", params={"limit": 1}).json()
        assert [(p["userId"], p["score"]) for p in board["participants"]] == [("alice", 30)]
        assert board["totalParticipants"] == 2

        position = client.get(f"{API}/leaderboards/global_points_all_time/users/bob").json()
        assert position["rank"] == 2
        assert position["trend"] == "new"


class TestCelebrationEndpoints:
    def test_pending_then_shown(self, client):
        achievement_service.seed_default_achievements()
        client.post(f"{API}/events/activity", json=activity())

        pending = client.get(f"{API}/users/user-1/celebrations/pending").json()
        assert [c["id"] for c in pending] == ["achievement_earned:first_lesson"]

        shown = client.post(f"{API}/users/user-1/celebrations/achievement_earned:first_lesson/shown")
        assert shown.status_code == 200
        assert shown.json()["isShown"] is True
        assert client.get(f"{API}/users/user-1/celebrations/pending").json() == []

    def test_mark_unknown_celebration_is_404(self, client):
        response = client.post(f"{API}/users/user-1/celebrations/nope/shown")
        assert response.status_code == 404
