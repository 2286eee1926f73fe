import time
from pathlib import Path
from typing import Any, Dict, List

import httpx
import jwt

from graphbug.core.config import settings
from graphbug.utils.exception import GithubApiError
from graphbug.utils.logging import get_logger
from graphbug.utils.retry import retry_with_backoff

logger = get_logger(__name__)

RETRYABLE_GITHUB_ERRORS = (httpx.TransportError, ConnectionError, TimeoutError)
PER_PAGE = 100


def load_private_key(raw: str) -> str:
    """Load the App private key from a PEM string or a path to a PEM file."""
    if "BEGIN" in raw and "PRIVATE KEY" in raw:
        return raw.replace("\\n", "\n")
    path = Path(raw.strip().strip('"'))
    if raw and path.exists():
        return path.read_text()
    raise GithubApiError("GITHUB_APP_PRIVATE_KEY must be a PEM string or a path to a private key file")


class GithubAppHelpers:
    """Authenticates as the GitHub App and lists what an installation can see."""

    def __init__(
        self,
        app_id: str | None = None,
        private_key: str | None = None,
        api_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.app_id = app_id or settings.GITHUB_APP_ID
        self.private_key = private_key if private_key is not None else settings.GITHUB_APP_PRIVATE_KEY
        self.api_url = (api_url or settings.GITHUB_API_URL).rstrip("/")
        self._transport = transport

    def generate_app_jwt(self) -> str:
        now = int(time.time())
        payload = {
            "iat": now - 60,
            "exp": now + 600,
            "iss": self.app_id,
        }
        return jwt.encode(payload, load_private_key(self.private_key), algorithm="RS256")

    async def generate_installation_token(self, installation_id: int) -> str:
        """Exchange the App JWT for an installation access token."""
        headers = {
            "Authorization": f"Bearer {self.generate_app_jwt()}",
            "Accept": "application/vnd.github+json",
        }

        async def _request() -> httpx.Response:
            async with httpx.AsyncClient(timeout=15, transport=self._transport) as client:
                return await client.post(
                    f"{self.api_url}/app/installations/{installation_id}/access_tokens",
                    headers=headers,
                )

        response = await retry_with_backoff(_request, retryable_exceptions=RETRYABLE_GITHUB_ERRORS)
        if response.status_code != 201:
            logger.error(
                f"Failed to create installation token for {installation_id}: "
                f"{response.status_code} {response.text}"
            )
            raise GithubApiError(f"GitHub refused an installation token ({response.status_code})")

        token = response.json().get("token")
        if not token:
            raise GithubApiError("GitHub installation token response did not contain a token")
        return token

    async def list_installation_repositories(self, installation_id: int) -> List[Dict[str, Any]]:
        """Fetch every repository accessible to the installation, following pagination."""
        token = await self.generate_installation_token(installation_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        }
        repositories: List[Dict[str, Any]] = []
        page = 1

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            while True:
                response = await retry_with_backoff(
                    client.get,
                    f"{self.api_url}/installation/repositories",
                    headers=headers,
                    params={"per_page": PER_PAGE, "page": page},
                    retryable_exceptions=RETRYABLE_GITHUB_ERRORS,
                )
                if response.status_code != 200:
                    logger.error(
                        f"Failed to list repositories for installation {installation_id}: "
                        f"{response.status_code} {response.text}"
                    )
                    raise GithubApiError(f"Failed to fetch repositories from GitHub ({response.status_code})")

                batch = response.json().get("repositories", [])
                repositories.extend(batch)
                if len(batch) < PER_PAGE:
                    break
                page += 1

        logger.info(f"Found {len(repositories)} repositories for installation {installation_id}")
        return repositories
