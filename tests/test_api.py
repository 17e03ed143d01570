"""Tests for the HTTP routes, using FastAPI's TestClient."""

import base64
import io
import json

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from api.events import format_event
from engine.errors import GenerationError
from main import app, build_service
from storage.kv import MemoryStore

ROLE_TEXT = ["pirate hat", "sweater", "skates", "jumping", "neon city"]


def _data_url(colour=(200, 30, 30)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (80, 120), colour).save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


async def _fake_generator(api_key, prompt, goal_image_base64, goal_image_mime_type="image/jpeg"):
    if "cursed" in prompt:
        raise GenerationError("quota exceeded")
    return _data_url((0, 200, 0)).split(",", 1)[1]


@pytest.fixture(autouse=True)
def _fresh_service():
    """Each test gets an empty in-memory service."""
    app.state.sessions = build_service(MemoryStore(), generator=_fake_generator, default_api_key="test-key")
    yield


@pytest.fixture
def client():
    return TestClient(app)


def _create(client: TestClient) -> tuple[str, dict]:
    """Helper: create a session, return (session_id, host headers)."""
    resp = client.post("/sessions", json={"host_name": "Host"})
    assert resp.status_code == 201
    body = resp.json()
    return body["session"]["id"], {"X-Session-Host-Secret": body["host_secret"]}


def _join(client: TestClient, session_id: str, name: str) -> str:
    resp = client.post(f"/sessions/{session_id}/join", json={"name": name})
    assert resp.status_code == 201
    return resp.json()["player"]["id"]


def _start(client: TestClient, session_id: str, host: dict) -> None:
    resp = client.post(f"/sessions/{session_id}/rounds/0/goal-image", json={"data_url": _data_url()}, headers=host)
    assert resp.status_code == 200
    resp = client.post(f"/sessions/{session_id}/rounds/0/start", headers=host)
    assert resp.status_code == 200


def _submit_all(client: TestClient, session_id: str, player_id: str, texts=ROLE_TEXT) -> dict:
    for text in texts:
        resp = client.post(
            f"/sessions/{session_id}/rounds/0/prompts",
            json={"player_id": player_id, "prompt": text},
        )
        assert resp.status_code == 200
    return resp.json()


class TestServerInfo:
    """Tests for the root and health endpoints."""

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_health(self, client):
        assert client.get("/health").json() == {"healthy": True}


class TestLobbyRoutes:
    """Tests for create / get / join / settings / reset."""

    def test_create_returns_secret_once(self, client):
        resp = client.post("/sessions", json={"host_name": "Host"})
        body = resp.json()
        assert body["host_secret"]
        assert "host_secret" not in body["session"]
        assert "api_key" not in body["session"]
        assert body["session"]["status"] == "waiting"
        assert body["session"]["current_round_index"] == -1

        again = client.get(f"/sessions/{body['session']['id']}").json()
        assert "host_secret" not in again["session"]

    def test_blank_host_name(self, client):
        resp = client.post("/sessions", json={"host_name": "   "})
        assert resp.status_code == 400

    def test_unknown_session_is_404(self, client):
        resp = client.get("/sessions/ZZZZZZ")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Session not found", "code": "not_found"}

    def test_get_with_wrong_credentials(self, client):
        session_id, _ = _create(client)
        assert client.get(f"/sessions/{session_id}", headers={"X-Session-Host-Secret": "nope"}).status_code == 403
        assert client.get(f"/sessions/{session_id}", params={"player_id": "ghost"}).status_code == 403

    def test_get_as_player(self, client):
        session_id, _ = _create(client)
        player_id = _join(client, session_id, "Alice")
        resp = client.get(f"/sessions/{session_id}", params={"player_id": player_id})
        assert resp.status_code == 200

    def test_join_full_session(self, client):
        session_id, _ = _create(client)
        for n in range(6):
            _join(client, session_id, f"P{n}")
        resp = client.post(f"/sessions/{session_id}/join", json={"name": "Seventh"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "capacity_exceeded"

    def test_settings_requires_host(self, client):
        session_id, host = _create(client)
        resp = client.patch(f"/sessions/{session_id}/settings", json={"api_key": "k"})
        assert resp.status_code == 403
        resp = client.patch(f"/sessions/{session_id}/settings", json={"api_key": "k"}, headers=host)
        assert resp.status_code == 200
        assert resp.json()["session"]["has_api_key"] is True

    def test_host_routes_on_unknown_session_are_403(self, client):
        _, host = _create(client)
        assert client.post("/sessions/ZZZZZZ/reset", headers=host).status_code == 403

    def test_reset(self, client):
        session_id, host = _create(client)
        _join(client, session_id, "Alice")
        _start(client, session_id, host)
        resp = client.post(f"/sessions/{session_id}/reset", headers=host)
        assert resp.status_code == 200
        session = resp.json()["session"]
        assert session["status"] == "waiting"
        assert session["current_round_index"] == -1
        assert len(session["players"]) == 1


class TestRoundRoutes:
    """Tests for goal image, start, prompts, score, advance."""

    def test_bad_data_url(self, client):
        session_id, host = _create(client)
        resp = client.post(
            f"/sessions/{session_id}/rounds/0/goal-image", json={"data_url": "not-a-data-url"}, headers=host,
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_image"

    def test_start_without_goal_image(self, client):
        session_id, host = _create(client)
        resp = client.post(f"/sessions/{session_id}/rounds/0/start", headers=host)
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_state"

    def test_start_requires_host(self, client):
        session_id, _ = _create(client)
        assert client.post(f"/sessions/{session_id}/rounds/0/start").status_code == 403

    def test_prompts_until_ready(self, client):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        _start(client, session_id, host)

        session = _submit_all(client, session_id, alice)["session"]

        entry = session["rounds"][0]["entries"][alice]
        assert entry["status"] == "ready"
        assert entry["current_role_index"] == 5
        assert entry["prompts"]["background"] == "neon city"
        assert session["status"] == "ready"

        resp = client.post(
            f"/sessions/{session_id}/rounds/0/prompts", json={"player_id": alice, "prompt": "extra"},
        )
        assert resp.status_code == 400

    def test_empty_prompt(self, client):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        _start(client, session_id, host)
        resp = client.post(f"/sessions/{session_id}/rounds/0/prompts", json={"player_id": alice, "prompt": " "})
        assert resp.status_code == 400

    @pytest.mark.parametrize("score,status", [(0, 400), (1, 200), (5, 200), (6, 400)])
    def test_score_bounds(self, client, score, status):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        resp = client.post(
            f"/sessions/{session_id}/rounds/0/score", json={"player_id": alice, "score": score}, headers=host,
        )
        assert resp.status_code == status

    def test_advance_and_scoreboard(self, client):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        _start(client, session_id, host)
        client.post(f"/sessions/{session_id}/rounds/0/score", json={"player_id": alice, "score": 4}, headers=host)

        resp = client.post(f"/sessions/{session_id}/rounds/advance", headers=host)
        assert resp.json()["session"]["current_round_index"] == 1

        scores = client.get(f"/sessions/{session_id}/scoreboard").json()["scores"]
        assert scores == [{"player_id": alice, "name": "Alice", "round_scores": [4, None, None, None], "total": 4}]

    def test_advance_before_start(self, client):
        session_id, host = _create(client)
        resp = client.post(f"/sessions/{session_id}/rounds/advance", headers=host)
        assert resp.status_code == 400


class TestGenerationRoutes:
    """Tests for single and batch generation."""

    def test_generate(self, client):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        _start(client, session_id, host)
        _submit_all(client, session_id, alice)

        resp = client.post(f"/sessions/{session_id}/rounds/0/generate", json={"player_id": alice}, headers=host)

        assert resp.status_code == 200
        entry = resp.json()["session"]["rounds"][0]["entries"][alice]
        assert entry["status"] == "completed"
        assert entry["result_image"]

    def test_generate_failure_is_502(self, client):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        _start(client, session_id, host)
        _submit_all(client, session_id, alice, ["cursed"] + ROLE_TEXT[1:])

        resp = client.post(f"/sessions/{session_id}/rounds/0/generate", json={"player_id": alice}, headers=host)

        assert resp.status_code == 502
        assert resp.json() == {"detail": "quota exceeded", "code": "generation_failed"}

    def test_batch(self, client):
        session_id, host = _create(client)
        alice = _join(client, session_id, "Alice")
        bob = _join(client, session_id, "Bob")
        _start(client, session_id, host)
        _submit_all(client, session_id, alice)

        resp = client.post(
            f"/sessions/{session_id}/rounds/0/generate-batch", json={"player_ids": [alice, bob]}, headers=host,
        )

        assert resp.status_code == 200
        results = {row["player_id"]: row for row in resp.json()["results"]}
        assert results[alice]["success"] is True
        assert results[bob]["success"] is False

    def test_batch_empty_list(self, client):
        session_id, host = _create(client)
        resp = client.post(f"/sessions/{session_id}/rounds/0/generate-batch", json={"player_ids": []}, headers=host)
        assert resp.status_code == 400


class TestEventsRoute:
    """Tests for the SSE endpoint's terminating cases and framing."""

    def test_unknown_session_stream(self, client):
        resp = client.get("/sessions/ZZZZZZ/events")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.headers["cache-control"] == "no-cache, no-transform"
        assert resp.text == 'retry: 3000\n\ndata: {"type": "session_not_found"}\n\n'

    def test_forbidden_stream(self, client):
        session_id, _ = _create(client)
        resp = client.get(f"/sessions/{session_id}/events", params={"host_secret": "wrong"})
        assert resp.text.endswith('data: {"type": "forbidden"}\n\n')

    def test_format_event(self):
        assert format_event({"type": "heartbeat"}) == ": heartbeat\n\n"
        frame = format_event({"type": "session_update", "session": {"id": "ABCDEF"}})
        assert frame.startswith("data: ")
        assert json.loads(frame[len("data: "):]) == {"type": "session_update", "session": {"id": "ABCDEF"}}
