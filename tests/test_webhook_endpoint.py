import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from talkbot.database import get_db
from talkbot.dependencies import get_pipeline
from talkbot.main import app
from talkbot.models import ConversationTurn, RoomSession
from talkbot.services.errors import PersistenceError
from talkbot.services.webhook_verifier import NONCE_HEADER, SIGNATURE_HEADER, compute_signature, generate_nonce

SECRET = "test-secret"


def _body(message="hello", room="room-1", actor="users/alice") -> bytes:
    return json.dumps(
        {
            "type": "Create",
            "actor": {"type": "Person", "id": actor, "name": "Alice"},
            "object": {
                "type": "Note",
                "id": "17",
                "name": "message",
                "content": json.dumps({"message": message, "parameters": []}),
            },
            "target": {"type": "Collection", "id": room, "name": "Room"},
        }
    ).encode("utf-8")


def _signed_headers(body: bytes, secret: str = SECRET) -> dict:
    nonce = generate_nonce()
    return {
        NONCE_HEADER: nonce,
        SIGNATURE_HEADER: compute_signature(nonce, body, secret),
        "Content-Type": "application/json",
    }


@pytest.fixture
def client(db, make_pipeline):
    pipeline = make_pipeline()

    def _get_db():
        yield db

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app), pipeline
    app.dependency_overrides.clear()


class TestWebhookEndpoint:
    def test_health(self, client):
        http, _ = client
        response = http.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_invalid_signature_is_rejected_without_side_effects(self, client, db, make_persona, dispatcher):
        http, _ = client
        make_persona()
        body = _body()

        response = http.post("/webhook", content=body, headers=_signed_headers(body, secret="wrong"))

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid signature"
        assert db.query(RoomSession).count() == 0
        assert db.query(ConversationTurn).count() == 0
        dispatcher.send.assert_not_called()

    def test_missing_headers_are_rejected(self, client):
        http, _ = client
        response = http.post("/webhook", content=_body())
        assert response.status_code == 401

    def test_malformed_body_is_bad_request(self, client, make_persona):
        http, _ = client
        make_persona()
        body = b'{"type": "Create"}'

        response = http.post("/webhook", content=body, headers=_signed_headers(body))

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid webhook payload"

    def test_no_personas_is_service_unavailable(self, client, dispatcher):
        http, _ = client
        body = _body()

        response = http.post("/webhook", content=body, headers=_signed_headers(body))

        assert response.status_code == 503
        dispatcher.send.assert_not_called()

    def test_first_message_starts_onboarding(self, client, db, make_persona, dispatcher):
        http, _ = client
        make_persona()
        body = _body()

        response = http.post("/webhook", content=body, headers=_signed_headers(body))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "onboarding"
        assert data["persona"] == "Edu"
        assert data["stage"] == "asking_group"
        assert data["delivered"] is True
        assert db.query(RoomSession).one().room_token == "room-1"
        assert dispatcher.send.call_args.kwargs["reply_to"] == 17

    def test_persistence_failure_hides_details(self, client, make_persona):
        http, pipeline = client
        make_persona()
        body = _body()

        with patch.object(pipeline, "handle", side_effect=PersistenceError("password=hunter2 rejected")):
            response = http.post("/webhook", content=body, headers=_signed_headers(body))

        assert response.status_code == 500
        assert response.json()["detail"] == "Internal error"


class TestAdminEndpoints:
    @pytest.fixture
    def admin_settings(self, settings):
        admin_settings = settings.model_copy(update={"admin_token": "admin-secret"})
        with patch("talkbot.routers.admin.get_settings", return_value=admin_settings):
            yield admin_settings

    def test_requires_token(self, client, admin_settings):
        http, _ = client
        assert http.get("/admin/usage").status_code == 401
        assert http.get("/admin/usage", headers={"X-Admin-Token": "nope"}).status_code == 401

    def test_usage_summary(self, client, admin_settings):
        http, _ = client
        response = http.get("/admin/usage?days=3", headers={"X-Admin-Token": "admin-secret"})
        assert response.status_code == 200
        assert response.json() == {"days": 3, "usage": []}

    def test_onboarding_progress(self, client, make_persona, admin_settings):
        http, _ = client
        make_persona()
        body = _body()
        http.post("/webhook", content=body, headers=_signed_headers(body))

        response = http.get("/admin/rooms/room-1/onboarding", headers={"X-Admin-Token": "admin-secret"})

        assert response.status_code == 200
        data = response.json()
        assert data["persona"] == "Edu"
        assert data["stage"] == "asking_group"
        assert data["completed"] is False
        assert data["step"] == 0

    def test_unknown_room(self, client, admin_settings):
        http, _ = client
        response = http.get("/admin/rooms/nope/onboarding", headers={"X-Admin-Token": "admin-secret"})
        assert response.status_code == 404
