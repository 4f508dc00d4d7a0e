import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from promptgraph.api import schemas
from promptgraph.api.error_handling import _error_code_for_status
from promptgraph.app import create_app
from promptgraph.config import Settings
from promptgraph.service.context_store import ContextStore


@pytest.fixture
def store():
    return ContextStore()


@pytest.fixture
def client(store):
    app = create_app(Settings(cors_allow_origins="http://localhost:3000"), context_store=store)
    return TestClient(app)


def test_create_app_keeps_injected_empty_store():
    store = ContextStore()

    app = create_app(Settings(), context_store=store)

    assert len(store) == 0
    assert app.state.context_store is store


def test_health_and_request_id(client):
    response = client.get(
        "/health",
        headers={"Origin": "http://localhost:3000", "X-Request-ID": "req-123"},
    )

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers["X-Request-ID"] == "req-123"
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


def test_context_update_then_get(client, store):
    update = client.post(
        "/context",
        json={
            "userId": "u1",
            "action": "update",
            "data": {"preferences": {"tone": "casual", "interests": ["ai"]}},
        },
    )
    fetched = client.post("/context", json={"userId": "u1", "action": "get"})

    assert update.status_code == 200
    body = fetched.json()
    assert body["success"] is True
    assert body["message"] == "Context retrieved successfully"
    assert body["data"]["userId"] == "u1"
    assert body["data"]["preferences"] == {
        "language": "en",
        "tone": "casual",
        "interests": ["ai"],
    }
    assert body["data"]["conversationHistory"] == []
    assert store.get("u1").preferences.tone == "casual"


def test_context_clear(client):
    client.post(
        "/context",
        json={"userId": "u1", "action": "update", "data": {"preferences": {"tone": "formal"}}},
    )

    response = client.post("/context", json={"userId": "u1", "action": "clear"})

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Context cleared successfully"}


def test_context_missing_fields(client):
    response = client.post("/context", json={"action": "get"})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Missing required fields: userId and action",
    }


def test_context_invalid_action(client):
    response = client.post("/context", json={"userId": "u1", "action": "purge"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid action"


def test_context_invalid_update(client):
    response = client.post(
        "/context",
        json={"userId": "u1", "action": "update", "data": {"preferences": {"tone": "angry"}}},
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_context_malformed_request_uses_error_envelope(client):
    response = client.post(
        "/context", json={"userId": "u1", "action": "update", "data": "not-an-object"}
    )

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "validation_error"
    assert body["request_id"]


def test_context_non_object_body(client):
    response = client.post("/context", json=["userId", "action"])

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "validation_error"


def test_error_code_mapping():
    assert _error_code_for_status(400) == "validation_error"
    assert _error_code_for_status(502) == "upstream_error"
    assert _error_code_for_status(503) == "upstream_unavailable"
    assert _error_code_for_status(418) == "server_error"


def test_error_body_rejects_unknown_code():
    with pytest.raises(ValidationError):
        schemas.ErrorBody(code="teapot", message="nope")


def test_envelope_status_pattern():
    with pytest.raises(ValidationError):
        schemas.Envelope(status="maybe")
    assert schemas.Envelope(status="ok", data={"x": 1}).request_id
