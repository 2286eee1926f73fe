# Import all models to ensure SQLAlchemy can resolve relationships
from .users import User
from .github_installations import GithubInstallation, PENDING
from .repositories import Repository, IngestionStatus

# Export all models
__all__ = [
    'User',
    'GithubInstallation',
    'PENDING',
    'Repository',
    'IngestionStatus',
]
