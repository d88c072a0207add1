from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from conftest import TestingSessionLocal, track

from songbattle.api.responses import STATUS_BY_KIND, outcome_response
from songbattle.services.outcome import ErrorKind, Outcome
from songbattle.services.scheduler import check_phase_transitions


def _register(client: TestClient, username: str) -> dict[str, str]:
    resp = client.post("/v1/users/register", json={"username": username})
    assert resp.status_code == 200
    return {"X-API-Key": resp.json()["api_key"]}


def _create_battle(client: TestClient, headers: dict[str, str], **overrides) -> dict:
    start = datetime.now(timezone.utc)
    body = {
        "name": "Friday Showdown",
        "max_participants": 3,
        "theme": "One-hit wonders",
        "submission_deadline": (start + timedelta(hours=1)).isoformat(),
        "voting_deadline": (start + timedelta(hours=2)).isoformat(),
    }
    body.update(overrides)
    resp = client.post("/v1/battles", json=body, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_every_error_kind_has_a_status() -> None:
    assert set(STATUS_BY_KIND) == set(ErrorKind)
    assert outcome_response(Outcome.fail(ErrorKind.QUOTA, "no")).status_code == 409
    assert outcome_response(Outcome.fail(ErrorKind.AUTHORIZATION, "no")).status_code == 403
    assert outcome_response(Outcome.ok("fine")).status_code == 200


def test_register_and_me(client: TestClient) -> None:
    headers = _register(client, "dj_one")
    assert headers["X-API-Key"].count(".") == 1

    me = client.get("/v1/users/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["username"] == "dj_one"

    taken = client.post("/v1/users/register", json={"username": "dj_one"})
    assert taken.status_code == 409


def test_missing_or_bad_api_key_is_unauthorized(client: TestClient) -> None:
    assert client.get("/v1/users/me").status_code == 401
    assert client.get("/v1/users/me", headers={"X-API-Key": "invalid"}).status_code == 401
    assert client.get("/v1/users/me", headers={"X-API-Key": "0123456789ab.nope"}).status_code == 401


def test_battle_flow_over_http(client: TestClient) -> None:
    host = _register(client, "host")
    guest = _register(client, "guest")
    stranger = _register(client, "stranger")

    created = _create_battle(client, host)
    battle_id = created["battle_id"]
    round_id = created["round_id"]

    joined = client.post("/v1/battles/join", json={"invite_code": created["invite_code"]}, headers=guest)
    assert joined.status_code == 200
    assert joined.json()["success"] is True

    mine = client.get("/v1/battles", headers=guest)
    assert [b["id"] for b in mine.json()["battles"]] == [battle_id]

    current = client.get(f"/v1/battles/{battle_id}/current-round")
    assert current.json()["round"]["phase"] == "submission"

    first = client.post("/v1/submissions", json={"round_id": round_id, "track_url": track(1)}, headers=host)
    assert first.status_code == 200
    again = client.post("/v1/submissions", json={"round_id": round_id, "track_url": track(2)}, headers=host)
    assert again.status_code == 409
    assert again.json()["kind"] == "quota"

    duplicate = client.post("/v1/submissions", json={"round_id": round_id, "track_url": track(1)}, headers=guest)
    assert duplicate.status_code == 409
    assert duplicate.json()["message"] == "This song was already submitted by host"

    outsider = client.post(
        "/v1/submissions", json={"round_id": round_id, "track_url": track(3)}, headers=stranger
    )
    assert outsider.status_code == 403

    bad_url = client.post(
        "/v1/submissions", json={"round_id": round_id, "track_url": "https://example.com"}, headers=guest
    )
    assert bad_url.status_code == 400

    second = client.post("/v1/submissions", json={"round_id": round_id, "track_url": track(2)}, headers=guest)
    assert second.status_code == 200

    early = client.post("/v1/votes", json={"submission_id": second.json()["submission_id"]}, headers=host)
    assert early.status_code == 409
    assert early.json()["message"] == "Voting hasn't started yet"

    with TestingSessionLocal() as db:
        check_phase_transitions(db, now=datetime.now(timezone.utc) + timedelta(hours=1, minutes=1))

    vote = client.post("/v1/votes", json={"submission_id": second.json()["submission_id"]}, headers=host)
    assert vote.status_code == 200
    assert vote.json()["votes_remaining"] == 2

    own = client.post("/v1/votes", json={"submission_id": second.json()["submission_id"]}, headers=guest)
    assert own.status_code == 403

    state = client.get(f"/v1/rounds/{round_id}/votes", headers=host)
    assert state.json()["voted_submission_ids"] == [second.json()["submission_id"]]

    removed = client.delete(f"/v1/votes/{second.json()['submission_id']}", headers=host)
    assert removed.status_code == 200
    assert removed.json()["votes_remaining"] == 3

    results = client.get(f"/v1/rounds/{round_id}/results")
    assert results.status_code == 200
    assert len(results.json()["submissions"]) == 2

    players = client.get(f"/v1/battles/{battle_id}/players")
    assert {p["username"] for p in players.json()["players"]} == {"host", "guest"}


def test_round_management_over_http(client: TestClient) -> None:
    host = _register(client, "host")
    guest = _register(client, "guest")
    created = _create_battle(client, host)
    battle_id = created["battle_id"]
    start = datetime.now(timezone.utc)
    body = {
        "theme": "B-sides",
        "submission_deadline": (start + timedelta(days=1)).isoformat(),
        "voting_deadline": (start + timedelta(days=2)).isoformat(),
    }

    assert client.post(f"/v1/battles/{battle_id}/rounds", json=body, headers=guest).status_code == 403
    added = client.post(f"/v1/battles/{battle_id}/rounds", json=body, headers=host)
    assert added.status_code == 200
    assert added.json()["round_number"] == 2

    patched = client.patch(f"/v1/rounds/{added.json()['round_id']}", json={"theme": "Deep cuts"}, headers=host)
    assert patched.status_code == 200
    started = client.patch(f"/v1/rounds/{created['round_id']}", json={"theme": "Too late"}, headers=host)
    assert started.status_code == 409

    reversed_deadlines = dict(body, voting_deadline=(start + timedelta(hours=1)).isoformat())
    invalid = client.post(f"/v1/battles/{battle_id}/rounds", json=reversed_deadlines, headers=host)
    assert invalid.status_code == 400

    rounds = client.get(f"/v1/battles/{battle_id}/rounds")
    assert [r["phase"] for r in rounds.json()["rounds"]] == ["submission", "pending"]
    assert rounds.json()["rounds"][1]["theme"] == "Deep cuts"


def test_unknown_resources_are_404(client: TestClient) -> None:
    headers = _register(client, "host")
    missing = "00000000-0000-0000-0000-000000000000"
    assert client.get(f"/v1/battles/{missing}", headers=headers).status_code == 404
    assert client.get(f"/v1/rounds/{missing}/results").status_code == 404
    assert client.post("/v1/votes", json={"submission_id": missing}, headers=headers).status_code == 404
    assert client.post("/v1/battles/join", json={"invite_code": "ZZZZZZZZ"}, headers=headers).status_code == 404


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
