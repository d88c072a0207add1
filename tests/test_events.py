from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient


def _register(client: TestClient, username: str) -> dict[str, str]:
    resp = client.post("/v1/users/register", json={"username": username})
    assert resp.status_code == 200
    return {"X-API-Key": resp.json()["api_key"]}


def _create_battle(client: TestClient, headers: dict[str, str], name: str) -> dict:
    start = datetime.now(timezone.utc)
    resp = client.post(
        "/v1/battles",
        json={
            "name": name,
            "theme": "Anything goes",
            "submission_deadline": (start + timedelta(hours=1)).isoformat(),
            "voting_deadline": (start + timedelta(hours=2)).isoformat(),
        },
        headers=headers,
    )
    assert resp.status_code == 200
    return resp.json()


def test_battle_activity_is_logged(client: TestClient) -> None:
    host = _register(client, "host")
    created = _create_battle(client, host, "Logged")

    resp = client.get("/v1/events?limit=50")
    assert resp.status_code == 200
    body = resp.json()
    types = [item["type"] for item in body["items"]]
    assert "battle_created" in types
    assert "round_activated" in types
    assert all(item["battle_id"] == created["battle_id"] for item in body["items"])


def test_events_filter_by_battle(client: TestClient) -> None:
    host = _register(client, "host")
    first = _create_battle(client, host, "First")
    second = _create_battle(client, host, "Second")

    resp = client.get(f"/v1/events?battle_id={second['battle_id']}")
    assert resp.status_code == 200
    battle_ids = {item["battle_id"] for item in resp.json()["items"]}
    assert battle_ids == {second["battle_id"]}
    assert first["battle_id"] not in battle_ids


def test_pagination_two_pages(client: TestClient) -> None:
    host = _register(client, "host")
    for i in range(2):
        _create_battle(client, host, f"Battle {i}")

    first = client.get("/v1/events?limit=2")
    assert first.status_code == 200
    first_body = first.json()
    assert len(first_body["items"]) == 2
    assert first_body["next_cursor"] is not None

    second = client.get(f"/v1/events?cursor={first_body['next_cursor']}&limit=2")
    assert second.status_code == 200
    second_body = second.json()
    assert 1 <= len(second_body["items"]) <= 2
    first_ids = {item["id"] for item in first_body["items"]}
    assert not first_ids & {item["id"] for item in second_body["items"]}


def test_invalid_cursor_is_rejected(client: TestClient) -> None:
    resp = client.get("/v1/events?cursor=not-a-cursor")
    assert resp.status_code == 400
