"""
HTTP client for the external ingestion (knowledge graph) service.

The service clones a repository and builds its graph and embeddings. A
single request can take minutes; the caller bounds it with its own timeout.
"""

from typing import Any, Dict, Optional

import httpx

from graphbug.core.config import settings
from graphbug.utils.exception import IngestionServiceError
from graphbug.utils.logging import get_logger

logger = get_logger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or response.text)
    return response.text


class IngestionServiceClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.AI_SERVICE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.INGESTION_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Content-Type": "application/json"},
        )

    async def ingest(self, repo_url: str, repo_id: str, installation_id: str) -> Dict[str, Any]:
        """
        Ask the service to ingest a repository.

        Returns:
            The service's JSON result payload

        Raises:
            IngestionServiceError: on a non-2xx response, a timeout or a transport error
        """
        payload = {
            "repo_url": repo_url,
            "repo_id": repo_id,
            "installation_id": installation_id,
        }
        logger.info(f"Sending ingestion request for {repo_url} (repo_id={repo_id}) to {self.base_url}/ingest")

        try:
            async with self._client() as client:
                response = await client.post("/ingest", json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"Ingestion request for {repo_id} timed out: {e}")
            raise IngestionServiceError(f"Ingestion request timed out after {self.timeout:g} seconds")
        except httpx.HTTPError as e:
            logger.error(f"Ingestion request for {repo_id} failed: {e}")
            raise IngestionServiceError(f"Could not reach ingestion service: {e}")

        if response.is_error:
            detail = _error_detail(response)
            logger.error(f"Ingestion service returned {response.status_code} for {repo_id}: {detail}")
            raise IngestionServiceError(
                f"AI Service returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError:
            result = {"raw": response.text}
        logger.info(f"Ingestion succeeded for {repo_id}")
        return result if isinstance(result, dict) else {"result": result}

    async def delete_repository_data(self, repo_id: str) -> bool:
        """
        Remove the service's stored graph/vector data for a repository.

        Best effort: failures are logged and reported as False, never raised.
        """
        try:
            async with self._client() as client:
                response = await client.delete(f"/repos/{repo_id}")
        except httpx.HTTPError as e:
            logger.error(f"Ingestion service delete error for {repo_id}: {e}")
            return False

        if response.is_error:
            logger.error(f"Failed to delete ingestion data for {repo_id}: {response.status_code}")
            return False
        logger.info(f"Ingestion data deleted for {repo_id}")
        return True


def get_ingestion_client() -> IngestionServiceClient:
    return IngestionServiceClient()
