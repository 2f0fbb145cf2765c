"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from tourney.webapp.app import create_app


@pytest.fixture
def client(engine):
    """Create a test client around the test engine."""
    return TestClient(create_app(engine))


def register(client, tournament_id, *names, category_id=None):
    response = client.post(
        f"/tournaments/{tournament_id}/participants",
        json={"category_id": category_id, "participants": [{"id": n, "display_name": n} for n in names]},
    )
    assert response.status_code == 201
    return response


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"result": "ok", "meta": "OK"}


def test_register_participants(client):
    response = register(client, "t1", "A", "B")
    assert response.json() == {"result": {"registered": 2}, "meta": "PARTICIPANTS_REGISTERED"}

    duplicate = client.post(
        "/tournaments/t1/participants",
        json={"participants": [{"id": "A", "display_name": "A"}]},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["meta"] == "PARTICIPANT_EXISTS"


def test_generate_and_fetch_bracket(client):
    register(client, "t1", "A", "B", "C", "D", category_id="open")

    response = client.post("/tournaments/t1/bracket", json={"category_id": "open", "kind": "single_elimination"})

    assert response.status_code == 201
    body = response.json()
    assert body["meta"] == "BRACKET_GENERATED"
    assert body["result"]["bracket"]["total_rounds"] == 2
    assert body["result"]["bracket"]["status"] == "generated"
    assert len(body["result"]["matches"]) == 2
    assert [p["id"] for p in body["result"]["participants"]] == ["A", "B", "C", "D"]

    fetched = client.get("/tournaments/t1/bracket", params={"category_id": "open"})
    assert fetched.status_code == 200
    assert fetched.json()["meta"] == "BRACKET_FETCHED"

    by_category = client.get("/categories/open/bracket")
    assert by_category.json()["result"]["bracket"]["id"] == body["result"]["bracket"]["id"]

    listed = client.get("/tournaments/t1/brackets")
    assert listed.json()["meta"] == "BRACKETS_FETCHED"
    assert len(listed.json()["result"]) == 1


def test_bracket_errors(client):
    register(client, "t1", "A")

    too_few = client.post("/tournaments/t1/bracket", json={})
    assert too_few.status_code == 400
    assert too_few.json()["meta"] == "INSUFFICIENT_PARTICIPANTS"

    register(client, "t2", "A", "B")
    swiss = client.post("/tournaments/t2/bracket", json={"kind": "swiss"})
    assert swiss.status_code == 400
    assert swiss.json()["meta"] == "UNSUPPORTED_BRACKET_KIND"

    assert client.post("/tournaments/t2/bracket", json={}).status_code == 201
    again = client.post("/tournaments/t2/bracket", json={})
    assert again.status_code == 409
    assert again.json() == {"error": again.json()["error"], "meta": "BRACKET_EXISTS"}

    missing = client.get("/categories/nope/bracket")
    assert missing.status_code == 404
    assert missing.json()["meta"] == "BRACKET_NOT_FOUND"


def test_invalid_request_body(client):
    response = client.post("/tournaments/t1/bracket", json={"kind": "ladder"})
    assert response.status_code == 422
    assert response.json()["meta"] == "INVALID_REQUEST"


def test_record_result_and_standings(client):
    register(client, "t1", "A", "B", "C")
    generated = client.post("/tournaments/t1/bracket", json={"kind": "round_robin"}).json()["result"]
    match_id = generated["matches"][0]["id"]

    result = client.post(
        f"/matches/{match_id}/result",
        json={"sets": [
            {"set_number": 1, "participant1_score": 11, "participant2_score": 7},
            {"set_number": 2, "participant1_score": 11, "participant2_score": 9},
        ]},
    )
    assert result.status_code == 200
    assert result.json()["meta"] == "RESULT_RECORDED"
    assert result.json()["result"]["winner_id"] == "A"

    invalid = client.post(f"/matches/{match_id}/result", json={"sets": []})
    assert invalid.status_code == 400
    assert invalid.json()["meta"] == "INVALID_RESULT"

    update = client.post("/tournaments/t1/standings", json={})
    assert update.json() == {"result": {"updated_records": 3}, "meta": "STANDINGS_UPDATED"}

    standings = client.get("/tournaments/t1/standings").json()
    assert standings["meta"] == "STANDINGS_FETCHED"
    entries = standings["result"]["entries"]
    assert entries[0]["participant_id"] == "A"
    assert entries[0]["points"] == 3
    assert entries[0]["win_percentage"] == 100.0
    assert entries[0]["set_ratio"] is None
    assert standings["result"]["last_updated"] is not None


def test_incremental_update_and_adjustment(client):
    register(client, "t1", "A", "B", category_id="open")
    generated = client.post("/tournaments/t1/bracket", json={"category_id": "open", "kind": "round_robin"}).json()
    match_id = generated["result"]["matches"][0]["id"]
    client.post(f"/matches/{match_id}/result", json={"winner_id": "B", "is_walkover": True})

    update = client.post(
        "/tournaments/t1/standings",
        json={"category_id": "open", "recalculate_all": False, "match_ids": [match_id]},
    )
    assert update.json()["result"]["updated_records"] == 2

    adjusted = client.patch("/tournaments/t1/standings/A", json={"category_id": "open", "penalty_points": 2})
    assert adjusted.status_code == 200
    assert adjusted.json()["meta"] == "STANDING_ADJUSTED"
    assert adjusted.json()["result"]["points"] == -2

    by_category = client.get("/categories/open/standings").json()["result"]["entries"]
    assert [e["participant_id"] for e in by_category] == ["B", "A"]


def test_unknown_match_and_missing_standings(client):
    missing = client.post("/matches/42/result", json={"sets": []})
    assert missing.status_code == 404
    assert missing.json()["meta"] == "MATCH_NOT_FOUND"

    none = client.get("/tournaments/t9/standings")
    assert none.status_code == 404
    assert none.json()["meta"] == "STANDINGS_NOT_FOUND"


def test_reset_bracket(client):
    register(client, "t1", "A", "B")
    client.post("/tournaments/t1/bracket", json={})

    response = client.delete("/tournaments/t1/bracket")

    assert response.json() == {"result": {"deleted_matches": 1}, "meta": "BRACKET_RESET"}
    assert client.get("/tournaments/t1/bracket").status_code == 404
