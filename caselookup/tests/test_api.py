import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from caselookup.main import app
from caselookup.db.models import FetchStatus
from caselookup.db.session import get_db
from caselookup.services.case_status import CaseRecord
from caselookup.db import crud
from caselookup.utils.crypto import CredentialCipher

HEADERS = {"X-API-KEY": "test-key", "X-User-Id": "u1"}


@pytest.fixture
def client(monkeypatch, settings, store, session_factory):
    monkeypatch.setattr("caselookup.core.security.get_app_settings", lambda: settings)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    orchestrator = AsyncMock()
    app.dependency_overrides[get_db] = override_get_db
    app.state.settings = settings
    app.state.service_ready = True
    app.state.case_store = store
    app.state.request_orchestrator = orchestrator
    app.state.playwright_instance = None
    app.state.credential_cipher = CredentialCipher.from_settings(settings)
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.service_ready = False


def test_search_parses_free_text_and_returns_results(client):
    orchestrator = app.state.request_orchestrator
    orchestrator.process_case_search_request = AsyncMock(return_value={
        "22CR714844-590": CaseRecord(case_number="22CR714844-590", status=FetchStatus.QUEUED),
    })

    response = client.post(
        "/api/v1/search",
        json={"search": "please check 22cr714844-590 and 22CR714844-590", "user_agent": "Mozilla/5.0 Body"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["results"]["22CR714844-590"]["fetch_status"]["status"] == "queued"
    orchestrator.process_case_search_request.assert_awaited_once_with(["22CR714844-590"], "u1", "Mozilla/5.0 Body")


def test_search_requires_api_key(client):
    response = client.post("/api/v1/search", json={"search": "22CR714844-590"}, headers={"X-User-Id": "u1"})
    assert response.status_code == 403


def test_search_requires_user_id(client):
    response = client.post("/api/v1/search", json={"search": "22CR714844-590"}, headers={"X-API-KEY": "test-key"})
    assert response.status_code == 401


def test_search_unavailable_when_service_not_ready(client):
    app.state.service_ready = False
    response = client.post("/api/v1/search", json={"search": "22CR714844-590"}, headers=HEADERS)
    assert response.status_code == 503


def test_status_poll_is_read_only(client, store):
    store.upsert("22CR714844-590", status=FetchStatus.NOT_FOUND)

    response = client.post(
        "/api/v1/status", json={"case_numbers": ["22cr714844-590", "99CR000000-100"]}, headers=HEADERS
    )

    assert response.status_code == 200
    results = response.json()["results"]
    assert list(results) == ["22CR714844-590"]
    assert results["22CR714844-590"]["fetch_status"]["status"] == "notFound"
    app.state.request_orchestrator.process_case_search_request.assert_not_called()


def test_credentials_round_trip_never_returns_password(client):
    assert client.get("/api/v1/portal-credentials", headers=HEADERS).status_code == 404

    saved = client.put(
        "/api/v1/portal-credentials", json={"username": " clerk@example.test ", "password": "secret"}, headers=HEADERS
    )
    fetched = client.get("/api/v1/portal-credentials", headers=HEADERS)

    assert saved.status_code == 200
    assert fetched.json()["username"] == "clerk@example.test"
    assert fetched.json()["is_bad"] is False
    assert "password" not in fetched.json()


def test_health_reports_degraded_without_browser(client):
    response = client.get("/api/v1/healthz")
    assert response.json()["status"] == "degraded"


def test_saved_password_is_encrypted_at_rest(client, session_factory):
    client.put("/api/v1/portal-credentials", json={"username": "clerk@example.test", "password": "secret"}, headers=HEADERS)

    db = session_factory()
    stored = crud.get_portal_credentials(db, "u1").encrypted_password
    db.close()

    assert stored != "secret"
    assert app.state.credential_cipher.decrypt(stored) == "secret"
