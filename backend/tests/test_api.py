from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from repeet import main
from repeet.auth import AuthenticatedUser, get_optional_current_user
from repeet.remote_storage import RemoteProblemStore


@pytest.fixture
def client(local_store, clock):
    main.app.dependency_overrides[main.get_local_store] = lambda: local_store
    main.app.dependency_overrides[main.get_clock] = lambda: clock
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def add_problem(client, name="Two Sum", difficulty="Easy", **extra):
    response = client.post("/api/problems", json={"problem_name": name, "difficulty": difficulty, **extra})
    assert response.status_code == 201
    return response.json()


def test_health_and_version(client):
    assert client.get("/api/health").json() == {"status": "healthy"}
    version = client.get("/api/version").json()
    assert version["service_name"] == "Repeet API"
    assert version["api_version"] == main.APP_VERSION


def test_two_sum_walkthrough(client, clock):
    problem = add_problem(client, topic="Array")
    assert problem["status"] == "queued"
    assert problem["queue_position"] == 1

    queue = client.get("/api/problems/queue").json()["problems"]
    assert [item["id"] for item in queue] == [problem["id"]]

    response = client.post(f"/api/problems/{problem['id']}/rate", json={"rating": 4})
    assert response.status_code == 204

    review = client.get("/api/problems/review").json()["problems"]
    assert review[0]["status"] == "active"
    assert review[0]["attempt_count"] == 1
    assert review[0]["consecutive_fives"] == 0
    assert review[0]["next_review_label"] == "In 4 days"

    clock.advance(days=4)
    review = client.get("/api/problems/review").json()["problems"]
    assert review[0]["next_review_label"] == "Today"

    client.post(f"/api/problems/{problem['id']}/rate", json={"rating": 5})
    rated = client.get(f"/api/problems/{problem['id']}").json()
    assert rated["status"] == "active"
    assert rated["consecutive_fives"] == 1

    client.post(f"/api/problems/{problem['id']}/rate", json={"rating": 5, "notes": "clean"})
    mastered = client.get("/api/problems/mastered").json()["problems"]
    assert [item["id"] for item in mastered] == [problem["id"]]
    assert mastered[0]["mastered_at"] is not None
    assert mastered[0]["next_review_date"] is None
    assert mastered[0]["next_review_label"] is None
    assert client.get("/api/problems/review").json()["problems"] == []

    stats = client.get("/api/stats").json()
    assert stats == {"total": 1, "queued": 0, "active": 0, "mastered": 1, "dueToday": 0, "masteryRate": 100}


def test_invalid_problem_is_a_bad_request(client):
    response = client.post("/api/problems", json={"problem_name": "Two Sum", "difficulty": "Trivial"})

    assert response.status_code == 400
    assert "difficulty" in response.json()["detail"]


@pytest.mark.parametrize("rating", [0, 6])
def test_out_of_range_rating(client, rating):
    problem = add_problem(client)

    response = client.post(f"/api/problems/{problem['id']}/rate", json={"rating": rating})

    assert response.status_code == 400
    assert client.get(f"/api/problems/{problem['id']}").json()["status"] == "queued"


def test_unknown_problem_is_not_found(client):
    assert client.post("/api/problems/missing/rate", json={"rating": 3}).status_code == 404
    assert client.delete("/api/problems/missing").status_code == 404
    assert client.get("/api/problems/missing").status_code == 404


def test_delete_problem(client):
    problem = add_problem(client)

    assert client.delete(f"/api/problems/{problem['id']}").status_code == 204
    assert client.get("/api/problems").json()["problems"] == []


def test_bulk_create_from_objects_and_text(client):
    response = client.post(
        "/api/problems/bulk",
        json={
            "problems": [{"problem_name": "Two Sum", "difficulty": "Easy"}],
            "text": "Group Anagrams,Medium,Hash Table\nLRU Cache,hard",
            "source": "pasted",
        },
    )

    assert response.status_code == 201
    body = response.json()
    assert body["count"] == 3
    assert [item["queue_position"] for item in body["problems"]] == [1, 2, 3]
    assert body["problems"][2]["source"] == "pasted"


def test_name_only_lines_are_imported_as_medium(client):
    response = client.post("/api/problems/bulk", json={"text": "Two Sum,Easy,Array,https://x\nLRU Cache\n"})

    assert response.status_code == 201
    body = response.json()
    assert body["count"] == 2
    assert [item["difficulty"] for item in body["problems"]] == ["Easy", "Medium"]


def test_bulk_create_rejects_everything_on_one_bad_line(client):
    response = client.post("/api/problems/bulk", json={"text": "Two Sum,Easy\nMystery,Impossible\nLRU Cache,Hard"})

    assert response.status_code == 400
    assert "Problem 2" in response.json()["detail"]
    assert client.get("/api/problems").json()["problems"] == []


def test_import_curated_list(client):
    assert client.get("/api/import-lists").json() == {"lists": ["grind-75", "neetcode-150"]}

    response = client.post("/api/problems/import/neetcode-150")

    assert response.status_code == 201
    assert response.json()["count"] == 150
    assert client.get("/api/stats").json()["queued"] == 150
    assert client.post("/api/problems/import/unknown").status_code == 404


def test_dashboard_and_audit(client):
    first = add_problem(client, "Two Sum")
    add_problem(client, "Valid Anagram")
    client.post(f"/api/problems/{first['id']}/rate", json={"rating": 2})

    dashboard = client.get("/api/dashboard").json()

    assert [item["problem_name"] for item in dashboard["queue"]] == ["Valid Anagram"]
    assert [item["id"] for item in dashboard["review"]] == [first["id"]]
    assert dashboard["review"][0]["next_review_label"] == "In 2 days"
    assert dashboard["mastered"] == []
    assert dashboard["stats"]["dueToday"] == 1
    assert dashboard["audit"] is None
    assert client.get("/api/audit").json() == {"audit": None}


def test_signed_in_requests_use_the_remote_store(client, clock, monkeypatch):
    main.app.dependency_overrides[get_optional_current_user] = lambda: AuthenticatedUser(sub="user-1")
    monkeypatch.setattr(
        main,
        "RemoteProblemStore",
        lambda user_id, clock=None: RemoteProblemStore(
            user_id, clock=clock, pool_getter=AsyncMock(side_effect=ConnectionRefusedError("refused"))
        ),
    )

    response = client.get("/api/problems/queue")

    assert response.status_code == 503
    assert "unavailable" in response.json()["detail"]
