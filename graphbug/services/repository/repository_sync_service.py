"""
Keeps the stored repository set of an installation in line with GitHub.

Repository rows are keyed by (installation, full_name). Synchronization only
inserts and deletes rows; ingestion columns belong to IngestionService and are
never written here, so churn on the selection does not reset ingestion state.
"""

from typing import Any, Dict, Iterable, List, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from graphbug.models.db.github_installations import GithubInstallation
from graphbug.models.db.repositories import IngestionStatus, Repository
from graphbug.models.schemas.github_installations import WebhookRepository
from graphbug.models.schemas.repositories import RepositorySyncResult
from graphbug.services.github.installation_service import InstallationService
from graphbug.utils.clock import utcnow
from graphbug.utils.db import insert_ignore_returning
from graphbug.utils.exception import DatabaseOperationError
from graphbug.utils.logging import get_logger

logger = get_logger(__name__)

RepoInput = Union[WebhookRepository, Dict[str, Any]]


def _as_webhook_repository(repo: RepoInput) -> WebhookRepository:
    if isinstance(repo, WebhookRepository):
        return repo
    full_name = repo["full_name"]
    return WebhookRepository(
        id=repo.get("id"),
        name=repo.get("name") or full_name.split("/", 1)[-1],
        full_name=full_name,
        private=bool(repo.get("private", False)),
    )


class RepositorySyncService:
    def __init__(self, db: Session):
        self.db = db
        self.installation_service = InstallationService(db)

    def add_repositories(self, installation_id: int, repos: Sequence[RepoInput]) -> List[Repository]:
        """
        Insert each repository not yet stored for the installation.

        Already-present repositories are left untouched, so duplicate deliveries
        are no-ops. Returns only the rows that were created.
        """
        installation = self.installation_service.ensure_installation(installation_id)
        repositories = [_as_webhook_repository(repo) for repo in repos]
        logger.info(f"Adding {len(repositories)} repositories to installation {installation_id}")

        try:
            inserted_ids = []
            for repo in repositories:
                inserted_id = self._insert_repository(installation, repo)
                if inserted_id is None:
                    logger.info(f"{repo.full_name} already exists, skipping")
                    continue
                inserted_ids.append(inserted_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error adding repositories to installation {installation_id}: {e}")
            raise DatabaseOperationError("A database error occurred while adding repositories.")

        logger.info(f"Added {len(inserted_ids)}/{len(repositories)} repositories to installation {installation_id}")
        if not inserted_ids:
            return []
        return self.db.query(Repository).filter(Repository.id.in_(inserted_ids)).all()

    def remove_repositories(self, installation_id: int, full_names: Iterable[str]) -> int:
        """Delete the named repositories; names that are not stored are ignored."""
        names = list(full_names)
        if not names:
            return 0
        installation = self.installation_service.get_by_installation_id(installation_id)
        if not installation:
            logger.warning(
                f"Installation {installation_id} not found while removing repositories, nothing to remove"
            )
            return 0

        try:
            removed = (
                self.db.query(Repository)
                .filter(
                    Repository.installation_id == installation.id,
                    Repository.full_name.in_(names),
                )
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error removing repositories from installation {installation_id}: {e}")
            raise DatabaseOperationError("A database error occurred while removing repositories.")

        logger.info(f"Removed {removed}/{len(names)} repositories from installation {installation_id}")
        return removed

    def replace_all(self, installation_id: int, repos: Sequence[RepoInput]) -> RepositorySyncResult:
        """
        Converge the stored set to exactly ``repos``.

        Missing repositories are inserted, extra ones deleted, and the
        intersection is left as is (ingestion state included).
        """
        installation = self.installation_service.ensure_installation(installation_id)
        desired = {repo.full_name: repo for repo in map(_as_webhook_repository, repos)}

        try:
            stored = {
                full_name
                for (full_name,) in self.db.query(Repository.full_name)
                .filter(Repository.installation_id == installation.id)
                .all()
            }
            to_add = [desired[name] for name in sorted(desired.keys() - stored)]
            to_remove = sorted(stored - desired.keys())

            added = []
            for repo in to_add:
                if self._insert_repository(installation, repo) is not None:
                    added.append(repo.full_name)
            if to_remove:
                self.db.query(Repository).filter(
                    Repository.installation_id == installation.id,
                    Repository.full_name.in_(to_remove),
                ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error synchronizing repositories for installation {installation_id}: {e}")
            raise DatabaseOperationError("A database error occurred while synchronizing repositories.")

        result = RepositorySyncResult(
            added=added,
            removed=to_remove,
            unchanged=sorted(stored & desired.keys()),
        )
        logger.info(
            f"Synchronized installation {installation_id}: "
            f"+{len(result.added)} -{len(result.removed)} ={len(result.unchanged)}"
        )
        return result

    def _insert_repository(self, installation: GithubInstallation, repo: WebhookRepository):
        return insert_ignore_returning(
            self.db,
            Repository,
            values={
                "installation_id": installation.id,
                "github_repo_id": repo.id,
                "name": repo.name,
                "full_name": repo.full_name,
                "private": repo.private,
                "added_at": utcnow(),
                "ingestion_status": IngestionStatus.NOT_STARTED.value,
            },
            index_elements=["installation_id", "full_name"],
            returning=Repository.id,
        )
