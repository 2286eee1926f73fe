from .responses import ErrorResponse
from .repositories import (
    RepositoryRead,
    IngestionStats,
    RepositorySyncResult,
    IngestRepositoryResponse,
)
from .github_installations import (
    GithubAccount,
    WebhookRepository,
    InstallationPayload,
    InstallationEvent,
    InstallationRepositoriesEvent,
    Installation as GithubInstallation,
    InstallationWithRepositories,
    RepositoryListResponse,
)

__all__ = [
    'ErrorResponse',
    'RepositoryRead',
    'IngestionStats',
    'RepositorySyncResult',
    'IngestRepositoryResponse',
    'GithubAccount',
    'WebhookRepository',
    'InstallationPayload',
    'InstallationEvent',
    'InstallationRepositoriesEvent',
    'GithubInstallation',
    'InstallationWithRepositories',
    'RepositoryListResponse',
]
