"""API tests for the chat endpoints."""

import uuid
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from knowledge_chat.chat.registry import ControllerRegistry
from knowledge_chat.chat.types import DailyUsage
from knowledge_chat.collaborators.exceptions import CollaboratorError
from knowledge_chat.config import Settings
from knowledge_chat.main import create_app


@pytest.fixture
def registry(make_controller):
    return ControllerRegistry(make_controller, ttl_seconds=600, reap_interval=600)


@pytest.fixture
def client(registry):
    """Test client with the registry wired to in-memory collaborators."""
    settings = Settings(_env_file=None, enable_metrics=True)
    app = create_app(settings)
    app.state.controller_registry = registry
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def headers(user_id):
    return {"X-User-Id": str(user_id)}


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "ok"

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

        generated = client.get("/health")
        assert len(generated.headers["X-Request-ID"]) == 32

    def test_metrics(self, client, headers):
        client.post("/api/v1/chat/messages", json={"message": "Hello"}, headers=headers)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "knowledge_chat_messages_total" in response.text


class TestChatState:

    def test_requires_user(self, client):
        response = client.get("/api/v1/chat/state")
        assert response.status_code == 401

    def test_initial_state(self, client, headers):
        response = client.get("/api/v1/chat/state", headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["sessions"] == []
        assert data["active_session_id"] is None
        assert data["is_sending"] is False
        assert data["usage"]["tokens_remaining"] == 100_000
        assert data["uploads"]["pdf"] == {"used": 0, "limit": 2}

    def test_categories(self, client):
        response = client.get("/api/v1/chat/categories")

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == ["ict-skills", "business", "education", "career"]

    def test_set_category(self, client, headers):
        response = client.put("/api/v1/chat/category", json={"category": "business"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["selected_category"] == "business"

        response = client.put("/api/v1/chat/category", json={"category": "bogus"}, headers=headers)
        assert response.status_code == 400


class TestMessages:

    def test_first_message_creates_session(self, client, headers):
        response = client.post("/api/v1/chat/messages", json={"message": "Hello"}, headers=headers)

        assert response.status_code == 200
        data = response.json()
        assert data["content"] == "Hi there!"
        assert data["tokens_used"] == 100
        assert [e["role"] for e in data["transcript"]] == ["user", "assistant"]

        sessions = client.get("/api/v1/chat/sessions", headers=headers).json()
        assert sessions[0]["label"] == "Today"
        assert sessions[0]["sessions"][0]["id"] == data["session_id"]
        assert sessions[0]["sessions"][0]["message_count"] == 2

    def test_empty_message(self, client, headers):
        response = client.post("/api/v1/chat/messages", json={"message": "  "}, headers=headers)

        assert response.status_code == 400
        assert response.json()["reason"] == "VALIDATION"

    def test_token_cooldown_returns_429(self, client, headers, usage_store, clock):
        usage_store.rows[clock().date()] = DailyUsage(
            day=clock().date(),
            tokens_used=100_000,
            cooldown_ends_at=clock() + timedelta(hours=1),
        )

        response = client.post("/api/v1/chat/messages", json={"message": "Hello"}, headers=headers)

        assert response.status_code == 429
        assert response.json()["reason"] == "TOKEN_LIMIT"
        assert response.json()["retry_after"] == 3600
        assert response.headers["Retry-After"] == "3600"

    def test_session_limit_returns_429(self, client, headers, session_store):
        full = session_store.add_session(message_count=500)

        selected = client.post(f"/api/v1/chat/sessions/{full.id}/select", headers=headers)
        response = client.post("/api/v1/chat/messages", json={"message": "More"}, headers=headers)

        assert selected.status_code == 200
        assert response.status_code == 429
        assert response.json()["reason"] == "SESSION_LIMIT"

    def test_send_in_progress_returns_409(self, client, headers, registry, user_id):
        client.get("/api/v1/chat/state", headers=headers)
        controller = registry.get(user_id)
        controller.is_sending = True

        response = client.post("/api/v1/chat/messages", json={"message": "Hello"}, headers=headers)

        assert response.status_code == 409
        controller.is_sending = False

    def test_service_failure_returns_502(self, client, headers, completion):
        completion.error = CollaboratorError("upstream unavailable")

        response = client.post("/api/v1/chat/messages", json={"message": "Hello"}, headers=headers)

        assert response.status_code == 502
        assert response.json()["reason"] == "SERVICE_FAILURE"
        state = client.get("/api/v1/chat/state", headers=headers).json()
        assert state["transcript"] == []


class TestSessions:

    def test_rename_and_delete(self, client, headers):
        session_id = client.post(
            "/api/v1/chat/messages", json={"message": "Hello"}, headers=headers
        ).json()["session_id"]

        renamed = client.patch(
            f"/api/v1/chat/sessions/{session_id}", json={"title": "Greetings"}, headers=headers
        )
        assert renamed.status_code == 200
        assert renamed.json()["title"] == "Greetings"

        deleted = client.delete(f"/api/v1/chat/sessions/{session_id}", headers=headers)
        assert deleted.status_code == 200
        assert client.get("/api/v1/chat/sessions", headers=headers).json() == []

    def test_unknown_session(self, client, headers):
        response = client.delete(f"/api/v1/chat/sessions/{uuid.uuid4()}", headers=headers)
        assert response.status_code == 404

    def test_new_session(self, client, headers):
        client.post("/api/v1/chat/messages", json={"message": "Hello"}, headers=headers)

        response = client.post("/api/v1/chat/sessions/new", headers=headers)

        assert response.status_code == 200
        state = client.get("/api/v1/chat/state", headers=headers).json()
        assert state["active_session_id"] is None
        assert state["transcript"] == []


class TestUploads:

    def test_pdf_allowance(self, client, headers, upload_storage):
        files = {"file": ("notes.pdf", b"%PDF-1.4", "application/pdf")}

        assert client.post("/api/v1/chat/uploads", files=files, headers=headers).status_code == 201
        assert client.post("/api/v1/chat/uploads", files=files, headers=headers).status_code == 201
        response = client.post("/api/v1/chat/uploads", files=files, headers=headers)

        assert response.status_code == 429
        assert response.json()["reason"] == "DAILY_LIMIT"
        assert len(upload_storage.stored) == 2

    def test_oversize_upload_rejected(self, client, headers, upload_storage):
        client.app.state.settings.max_upload_bytes = 4
        files = {"file": ("big.pdf", b"%PDF-1.4 too large", "application/pdf")}

        response = client.post("/api/v1/chat/uploads", files=files, headers=headers)

        assert response.status_code == 413
        assert upload_storage.stored == []
        usage = client.get("/api/v1/chat/usage", headers=headers).json()
        assert usage["uploads"]["pdf"]["used"] == 0

    def test_unsupported_type(self, client, headers):
        files = {"file": ("notes.txt", b"plain", "text/plain")}

        response = client.post("/api/v1/chat/uploads", files=files, headers=headers)

        assert response.status_code == 415

    def test_storage_failure(self, client, headers, upload_storage):
        upload_storage.error = CollaboratorError("bucket unavailable")
        files = {"file": ("photo.png", b"\x89PNG", "image/png")}

        response = client.post("/api/v1/chat/uploads", files=files, headers=headers)

        assert response.status_code == 502
        usage = client.get("/api/v1/chat/usage", headers=headers).json()
        assert usage["uploads"]["image"]["used"] == 0

    def test_list_and_delete_uploads(self, client, headers):
        session_id = client.post(
            "/api/v1/chat/messages", json={"message": "Review my CV"}, headers=headers
        ).json()["session_id"]
        files = {"file": ("cv.pdf", b"%PDF-1.4", "application/pdf")}
        upload_id = client.post("/api/v1/chat/uploads", files=files, headers=headers).json()["id"]

        listed = client.get("/api/v1/chat/uploads", params={"session_id": session_id}, headers=headers)
        assert [u["id"] for u in listed.json()] == [upload_id]

        deleted = client.delete(f"/api/v1/chat/uploads/{upload_id}", headers=headers)
        assert deleted.status_code == 200
        assert client.get("/api/v1/chat/usage", headers=headers).json()["uploads"]["pdf"]["used"] == 0

        missing = client.delete(f"/api/v1/chat/uploads/{upload_id}", headers=headers)
        assert missing.status_code == 404
