"""
Tests for the HTTP surface.
"""

import hashlib
import hmac
import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from graphbug.api.fastapi.middlewares.auth import get_current_user, get_optional_user
from graphbug.core.config import settings
from graphbug.core.database import get_db
from graphbug.main import app
from graphbug.models.db.github_installations import GithubInstallation
from graphbug.models.db.repositories import IngestionStatus
from graphbug.services.ingestion.ingestion_client import get_ingestion_client
from graphbug.utils.clock import utcnow
from graphbug.utils.exception import IngestionServiceError

WEBHOOK_SECRET = "route-test-secret"


@pytest.fixture
def ingestion_client():
    client = AsyncMock()
    client.ingest.return_value = {"status": "success"}
    client.delete_repository_data.return_value = True
    return client


@pytest.fixture
def client(session_factory, user, ingestion_client, monkeypatch):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(settings, "GITHUB_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "FRONTEND_URL", "http://frontend.test")

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_optional_user] = lambda: user
    app.dependency_overrides[get_ingestion_client] = lambda: ingestion_client
    with patch("graphbug.services.ingestion.ingestion_service.SessionLocal", session_factory), \
            patch("graphbug.services.ingestion.ingestion_service.get_ingestion_client", return_value=ingestion_client):
        yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _signed(body):
    raw = json.dumps(body).encode()
    digest = hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()
    return raw, f"sha256={digest}"


def _post_webhook(client, event, body, signature=None):
    raw, valid_signature = _signed(body)
    headers = {"X-Hub-Signature-256": signature or valid_signature, "Content-Type": "application/json"}
    if event:
        headers["X-GitHub-Event"] = event
    return client.post("/github/events", content=raw, headers=headers)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_setup_links_installation_and_redirects(client, db, user):
    response = client.get(
        "/github/setup",
        params={"installation_id": "42", "setup_action": "install"},
        follow_redirects=False,
    )

    assert response.status_code in (302, 307)
    assert response.headers["location"] == "http://frontend.test/dashboard?setup=success"
    installation = db.query(GithubInstallation).filter(GithubInstallation.installation_id == 42).one()
    assert installation.user_id == user.user_id


def test_setup_without_installation_id(client):
    response = client.get("/github/setup", follow_redirects=False)

    assert response.headers["location"] == "http://frontend.test/dashboard?error=no_installation"


def test_setup_without_session_redirects_to_login(client, db):
    app.dependency_overrides[get_optional_user] = lambda: None

    response = client.get("/github/setup", params={"installation_id": "42"}, follow_redirects=False)

    assert response.headers["location"] == "http://frontend.test/login"
    assert db.query(GithubInstallation).count() == 0


def test_webhook_rejects_bad_signature(client, db):
    body = {"action": "created", "installation": {"id": 42}}

    response = _post_webhook(client, "installation", body, signature="sha256=" + "0" * 64)

    assert response.status_code == 401
    assert db.query(GithubInstallation).count() == 0


def test_webhook_requires_event_header(client):
    response = _post_webhook(client, None, {"action": "created"})

    assert response.status_code == 400


def test_webhook_rejects_invalid_json(client):
    raw = b"{not json"
    digest = hmac.new(WEBHOOK_SECRET.encode(), raw, hashlib.sha256).hexdigest()

    response = client.post(
        "/github/events",
        content=raw,
        headers={"X-GitHub-Event": "installation", "X-Hub-Signature-256": f"sha256={digest}"},
    )

    assert response.status_code == 400


def test_webhook_installation_created(client, db):
    body = {
        "action": "created",
        "installation": {
            "id": 42,
            "account": {"login": "acme", "type": "Organization"},
            "target_type": "Organization",
            "repository_selection": "selected",
        },
        "repositories": [{"id": 1, "name": "api", "full_name": "acme/api", "private": True}],
    }

    response = _post_webhook(client, "installation", body)

    assert response.status_code == 200
    installation = db.query(GithubInstallation).filter(GithubInstallation.installation_id == 42).one()
    assert installation.account_login == "acme"
    assert [repo.full_name for repo in installation.repositories] == ["acme/api"]


def test_webhook_merged_pull_request_reingests_in_background(client, db, make_repository, ingestion_client):
    repository = make_repository(
        ingestion_status=IngestionStatus.COMPLETED.value,
        ingestion_completed_at=utcnow(),
    )
    body = {
        "action": "closed",
        "pull_request": {"number": 3, "merged": True},
        "repository": {"full_name": "acme/api"},
        "installation": {"id": 42},
    }

    response = _post_webhook(client, "pull_request", body)

    assert response.status_code == 200
    ingestion_client.ingest.assert_awaited_once()
    db.expire_all()
    assert db.get(type(repository), repository.id).ingestion_status == IngestionStatus.COMPLETED.value


def test_list_repositories_with_stats(client, user, make_repository):
    make_repository(full_name="acme/a", user_id=user.user_id)
    make_repository(
        full_name="acme/b",
        ingestion_status=IngestionStatus.FAILED.value,
        ingestion_error="AI Service returned 500: boom",
    )
    make_repository(full_name="acme/c", ingestion_status=IngestionStatus.COMPLETED.value)

    response = client.get("/repository/")

    assert response.status_code == 200
    payload = response.json()
    assert payload["stats"] == {
        "total": 3,
        "not_started": 1,
        "processing": 0,
        "completed": 1,
        "failed": 1,
    }
    assert len(payload["installations"]) == 1
    assert sorted(repo["full_name"] for repo in payload["installations"][0]["repositories"]) == [
        "acme/a", "acme/b", "acme/c",
    ]


def test_list_repositories_hides_other_users_installations(client, other_user, make_repository):
    make_repository(installation_id=7, user_id=other_user.user_id)

    response = client.get("/repository/")

    assert response.json()["stats"]["total"] == 0
    assert response.json()["installations"] == []


def test_ingest_repository_completed(client, user, make_repository):
    repository = make_repository(user_id=user.user_id)

    response = client.post(f"/repository/{repository.id}/ingest")

    assert response.status_code == 200
    assert response.json() == {
        "repository_id": str(repository.id),
        "status": "completed",
        "result": {"status": "success"},
        "error": None,
    }


def test_ingest_repository_failed_returns_bad_gateway(client, user, make_repository, ingestion_client):
    repository = make_repository(user_id=user.user_id)
    ingestion_client.ingest.side_effect = IngestionServiceError("AI Service returned 500: boom", status_code=500)

    response = client.post(f"/repository/{repository.id}/ingest")

    assert response.status_code == 502
    assert response.json()["status"] == "failed"
    assert response.json()["error"] == "AI Service returned 500: boom"


def test_ingest_repository_conflict(client, user, make_repository, ingestion_client):
    repository = make_repository(
        user_id=user.user_id,
        ingestion_status=IngestionStatus.PROCESSING.value,
        ingestion_started_at=utcnow(),
    )

    response = client.post(f"/repository/{repository.id}/ingest")

    assert response.status_code == 409
    assert response.json()["status"] == "error"
    ingestion_client.ingest.assert_not_awaited()


def test_ingest_repository_not_found(client):
    response = client.post(f"/repository/{uuid.uuid4()}/ingest")

    assert response.status_code == 404


def test_ingest_repository_forbidden(client, other_user, make_repository):
    repository = make_repository(installation_id=7, user_id=other_user.user_id)

    response = client.post(f"/repository/{repository.id}/ingest")

    assert response.status_code == 403


def test_webhook_signature_verification():
    from graphbug.api.fastapi.middlewares.github import GithubMiddleware

    middleware = GithubMiddleware()
    raw, signature = _signed({"action": "created"})

    assert middleware.verify_webhook_signature(raw, signature, WEBHOOK_SECRET) is True
    assert middleware.verify_webhook_signature(raw + b" ", signature, WEBHOOK_SECRET) is False
    assert middleware.verify_webhook_signature(raw, None, WEBHOOK_SECRET) is False
    assert middleware.verify_webhook_signature(raw, signature.replace("sha256=", "sha1="), WEBHOOK_SECRET) is False
