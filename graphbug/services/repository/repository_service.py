from collections import Counter
from typing import List

from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from graphbug.core.database import get_db
from graphbug.models.db.github_installations import GithubInstallation
from graphbug.models.db.repositories import IngestionStatus, Repository
from graphbug.models.db.users import User
from graphbug.models.schemas.github_installations import (
    InstallationWithRepositories,
    RepositoryListResponse,
)
from graphbug.models.schemas.repositories import IngestionStats
from graphbug.utils.exception import DatabaseOperationError
from graphbug.utils.logging.otel_logger import logger


class RepositoryService:
    def __init__(self, db: Session = Depends(get_db)):
        self.db = db

    def list_user_repositories(self, current_user: User) -> RepositoryListResponse:
        """Get the user's installations with their repositories and ingestion counts."""
        try:
            installations: List[GithubInstallation] = (
                self.db.query(GithubInstallation)
                .options(selectinload(GithubInstallation.repositories))
                .filter(GithubInstallation.user_id == current_user.user_id)
                .order_by(GithubInstallation.installed_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error getting repositories for user {current_user.email}: {str(e)}")
            raise DatabaseOperationError("A database error occurred while fetching repositories.")

        repositories: List[Repository] = [
            repo for installation in installations for repo in installation.repositories
        ]
        counts = Counter(repo.ingestion_status for repo in repositories)
        stats = IngestionStats(
            total=len(repositories),
            **{status.value: counts.get(status.value, 0) for status in IngestionStatus},
        )

        logger.info(
            f"Listing {stats.total} repositories across {len(installations)} installations "
            f"for user {current_user.email}"
        )
        return RepositoryListResponse(
            installations=[
                InstallationWithRepositories.model_validate(installation)
                for installation in installations
            ],
            stats=stats,
        )
