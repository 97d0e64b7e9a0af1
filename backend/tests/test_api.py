from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from habitloop.api.deps import get_engine
from habitloop.errors import DecodingFailure, NetworkFailure
from habitloop.main import app


@pytest.fixture()
def client(engine):
    app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _start_plan(client: TestClient, *titles: str) -> dict:
    response = client.put("/plan/goals", json={"goals": [{"title": title} for title in titles or ("Exercise",)]})
    assert response.status_code == 200
    response = client.post("/plan/generate")
    assert response.status_code == 200
    return response.json()


def test_catalog_lists_predefined_goals(client) -> None:
    response = client.get("/goals/catalog")

    assert response.status_code == 200
    body = response.json()
    assert len(body) == 20
    assert {"title", "emoji"} <= set(body[0])


def test_profile_round_trip(client) -> None:
    response = client.put(
        "/profile",
        json={"name": "Sam", "age": 31, "wakeTime": "07:00:00", "notificationPreference": "Often"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Sam"
    assert body["formattedWakeTime"] == "7:00 AM"
    assert body["formattedSleepTime"] == "10:00 PM"
    assert body["notificationPreference"] == "Often"
    assert client.get("/profile").json()["age"] == 31


def test_profile_rejects_invalid_values(client) -> None:
    assert client.put("/profile", json={"age": -1}).status_code == 422


def test_generate_plan_and_read_state(client) -> None:
    body = _start_plan(client, "Exercise", "Read")

    assert body["state"] == "plan_ready"
    assert body["currentDay"] == 1
    assert body["planDuration"] == 21
    assert body["goals"][0]["strategy"] == "Build Exercise gradually"
    assert body["goals"][1]["subPlans"] == ["Read step 1", "Read step 2", "Read step 3"]
    assert body["requestId"]


def test_generate_plan_without_goals_conflicts(client) -> None:
    response = client.post("/plan/generate")

    assert response.status_code == 409
    assert response.json()["error"] == "LifecycleError"


@pytest.mark.parametrize(
    "error,status_code",
    [(NetworkFailure("offline"), 503), (DecodingFailure("bad"), 502)],
)
def test_coach_failures_map_to_gateway_errors(client, coach, error, status_code) -> None:
    client.put("/plan/goals", json={"goals": [{"title": "Exercise"}]})
    coach.fail_with = error

    response = client.post("/plan/generate")

    assert response.status_code == status_code
    assert response.json()["error"] == type(error).__name__
    assert client.get("/plan").json()["state"] == "no_plan"


def test_today_without_plan_conflicts(client) -> None:
    response = client.get("/tasks/today")

    assert response.status_code == 409
    assert response.json()["error"] == "NoActivePlan"


def test_today_generates_once_and_reports_stats(client, coach) -> None:
    _start_plan(client)

    first = client.get("/tasks/today").json()
    second = client.get("/tasks/today").json()

    assert len(coach.task_requests) == 1
    assert first["day"] == 1
    assert first["total"] == 2
    assert first["completed"] == 0
    assert first["summary"] == "Day 1 of 21: keep going."
    assert [task["id"] for task in first["tasks"]] == [task["id"] for task in second["tasks"]]


def test_toggle_and_notes(client) -> None:
    _start_plan(client)
    task_id = client.get("/tasks/today").json()["tasks"][0]["id"]

    toggled = client.post(f"/tasks/{task_id}/toggle")
    assert toggled.status_code == 200
    assert toggled.json()["isCompleted"] is True
    assert toggled.json()["completedAt"]

    noted = client.patch(f"/tasks/{task_id}/notes", json={"notes": "  easy  "})
    assert noted.json()["notes"] == "easy"

    today = client.get("/tasks/today").json()
    assert today["completed"] == 1
    assert today["percentage"] == 0.5


def test_toggle_unknown_task_is_404(client) -> None:
    _start_plan(client)
    client.get("/tasks/today")

    response = client.post("/tasks/00000000-0000-0000-0000-000000000000/toggle")

    assert response.status_code == 404
    assert response.json()["error"] == "TaskNotFound"


def test_yesterdays_task_cannot_be_toggled_after_failed_rollover(client, coach, clock) -> None:
    _start_plan(client)
    task_id = client.get("/tasks/today").json()["tasks"][0]["id"]
    clock.advance(days=1)
    coach.fail_with = DecodingFailure("bad")

    assert client.get("/tasks/today").status_code == 502
    response = client.post(f"/tasks/{task_id}/toggle")

    assert response.status_code == 409
    assert response.json()["error"] == "LifecycleError"


def test_history_is_newest_first(client, clock) -> None:
    _start_plan(client)
    client.get("/tasks/today")
    clock.advance(days=1)
    client.get("/tasks/today")

    entries = client.get("/tasks/history").json()["entries"]

    assert [entry["day"] for entry in entries] == [2, 1]


def test_goal_editing(client) -> None:
    created = client.post("/plan/goals", json={"title": "Journal", "emoji": "📓", "isCustom": True})
    assert created.status_code == 201
    goal_id = created.json()["id"]
    assert created.json()["isCustom"] is True

    assert client.delete(f"/plan/goals/{goal_id}").status_code == 204
    assert client.delete(f"/plan/goals/{goal_id}").status_code == 404


def test_sub_plan_edit(client) -> None:
    body = _start_plan(client)
    goal_id = body["goals"][0]["id"]

    response = client.patch(
        f"/plan/goals/{goal_id}/sub-plans",
        json={"oldPlan": "Exercise step 1", "newPlan": "Walk 10 minutes"},
    )

    assert response.status_code == 200
    assert response.json()["goals"][0]["subPlans"][0] == "Walk 10 minutes"
    missing = client.patch(f"/plan/goals/{goal_id}/sub-plans", json={"oldPlan": "nope", "newPlan": "x"})
    assert missing.status_code == 404


def test_duration_validation(client) -> None:
    assert client.put("/plan/duration", json={"days": 30}).json()["planDuration"] == 30
    assert client.put("/plan/duration", json={"days": 0}).status_code == 422


def test_journal_and_weekly_summary(client, clock) -> None:
    old = client.post(
        "/journal",
        json={"content": "Rough start", "completedTasks": ["Walk"], "date": (clock.now - timedelta(days=8)).isoformat()},
    )
    assert old.status_code == 201
    client.post("/journal", json={"content": "Better today"})

    listing = client.get("/journal").json()
    assert [entry["content"] for entry in listing["visible"]] == ["Rough start"]
    assert [entry["content"] for entry in listing["currentWeek"]] == ["Better today"]

    summaries = client.get("/journal/summaries").json()["summaries"]
    assert len(summaries) == 1
    assert summaries[0]["aiAnalysis"] == "1 entries reviewed"


def test_reset_archives_challenge(client) -> None:
    _start_plan(client, "Exercise", "Read")
    client.get("/tasks/today")

    response = client.post("/plan/reset")

    assert response.status_code == 200
    assert response.json()["archived"]["duration"] == 21
    assert client.get("/plan").json()["state"] == "no_plan"
    challenges = client.get("/challenges").json()
    assert len(challenges) == 1
    assert [goal["title"] for goal in challenges[0]["goals"]] == ["Exercise", "Read"]


def test_reset_without_goals_archives_nothing(client) -> None:
    response = client.post("/plan/reset")

    assert response.json()["archived"] is None
