import json

import httpx
import pytest

from graphbug.services.ingestion.ingestion_client import IngestionServiceClient
from graphbug.utils.exception import IngestionServiceError


def _client(handler):
    return IngestionServiceClient(
        base_url="http://ai-service.test",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_ingest_posts_repository_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success", "files": 3})

    result = await _client(handler).ingest(
        repo_url="https://github.com/acme/api.git",
        repo_id="repo-1",
        installation_id="42",
    )

    assert result == {"status": "success", "files": 3}
    assert seen == {
        "method": "POST",
        "path": "/ingest",
        "body": {
            "repo_url": "https://github.com/acme/api.git",
            "repo_id": "repo-1",
            "installation_id": "42",
        },
    }


@pytest.mark.asyncio
async def test_ingest_error_response_uses_detail():
    def handler(request):
        return httpx.Response(500, json={"detail": "clone failed"})

    with pytest.raises(IngestionServiceError) as exc_info:
        await _client(handler).ingest("https://github.com/acme/api.git", "repo-1", "42")

    assert exc_info.value.message == "AI Service returned 500: clone failed"
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_ingest_error_response_falls_back_to_text():
    def handler(request):
        return httpx.Response(503, text="upstream unavailable")

    with pytest.raises(IngestionServiceError) as exc_info:
        await _client(handler).ingest("https://github.com/acme/api.git", "repo-1", "42")

    assert exc_info.value.message == "AI Service returned 503: upstream unavailable"


@pytest.mark.asyncio
async def test_ingest_timeout_is_reported():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(IngestionServiceError) as exc_info:
        await _client(handler).ingest("https://github.com/acme/api.git", "repo-1", "42")

    assert "timed out after 5 seconds" in exc_info.value.message


@pytest.mark.asyncio
async def test_ingest_connection_error_is_reported():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(IngestionServiceError) as exc_info:
        await _client(handler).ingest("https://github.com/acme/api.git", "repo-1", "42")

    assert exc_info.value.message.startswith("Could not reach ingestion service")


@pytest.mark.asyncio
async def test_delete_repository_data_is_best_effort():
    def ok(request):
        assert request.method == "DELETE"
        assert request.url.path == "/repos/repo-1"
        return httpx.Response(204)

    def failing(request):
        raise httpx.ConnectError("connection refused", request=request)

    assert await _client(ok).delete_repository_data("repo-1") is True
    assert await _client(failing).delete_repository_data("repo-1") is False
    assert await _client(lambda request: httpx.Response(404)).delete_repository_data("repo-1") is False
