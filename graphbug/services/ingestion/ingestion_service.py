"""
Ingestion state machine for repositories.

    not_started -> processing -> completed | failed
    failed      -> processing   (retry)
    completed   -> processing   (re-ingest)

Every transition is one conditional UPDATE, so two requests racing on the
same repository cannot both enter ``processing``. The external call happens
between two committed transitions and never holds a transaction open.
"""

import asyncio
import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import Depends
from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from graphbug.core.config import settings
from graphbug.core.database import SessionLocal, get_db
from graphbug.models.db.github_installations import GithubInstallation
from graphbug.models.db.repositories import IngestionStatus, Repository
from graphbug.models.db.users import User
from graphbug.services.ingestion.ingestion_client import IngestionServiceClient, get_ingestion_client
from graphbug.utils.clock import utcnow
from graphbug.utils.exception import (
    DatabaseOperationError,
    ForbiddenException,
    IngestionInProgressError,
    IngestionServiceError,
    IngestionSupersededError,
    RepositoryNotFoundError,
)
from graphbug.utils.logging import get_logger

logger = get_logger(__name__)

UNKNOWN_ERROR = "Unknown error"


@dataclass
class IngestionOutcome:
    repository_id: UUID
    status: IngestionStatus
    result: Optional[Dict[str, Any]] = field(default=None)
    error: Optional[str] = None


class IngestionService:
    def __init__(
        self,
        db: Session = Depends(get_db),
        client: IngestionServiceClient = Depends(get_ingestion_client),
    ):
        self.db = db
        self.client = client
        self.timeout = settings.INGESTION_TIMEOUT_SECONDS
        self.stale_after = settings.INGESTION_STALE_AFTER_SECONDS

    async def ingest(self, repository_id: UUID, user: Optional[User] = None) -> IngestionOutcome:
        """
        Run one ingestion for a repository and record its outcome.

        Raises:
            RepositoryNotFoundError: unknown repository
            ForbiddenException: repository belongs to another user's installation
            IngestionInProgressError: an ingestion is already in flight
            IngestionSupersededError: the row was taken over or reaped while
                this attempt was running, so its outcome was not recorded
        """
        if user is not None:
            self._authorize(repository_id, user)

        repository = self.start_ingestion(repository_id)
        # Identifies this attempt; a takeover rewrites it
        started_at = repository.ingestion_started_at
        repo_url = f"https://github.com/{repository.full_name}.git"
        external_installation_id = repository.installation.installation_id

        try:
            result = await asyncio.wait_for(
                self.client.ingest(
                    repo_url=repo_url,
                    repo_id=str(repository_id),
                    installation_id=str(external_installation_id),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            message = f"Ingestion request timed out after {self.timeout:g} seconds"
        except IngestionServiceError as e:
            message = e.message
        except asyncio.CancelledError:
            self.mark_failed(repository_id, "Ingestion was cancelled before the service responded", started_at)
            raise
        except Exception as e:
            logger.error(f"Unexpected error ingesting repository {repository_id}: {e}", exc_info=True)
            message = str(e) or e.__class__.__name__
        else:
            if not self.mark_completed(repository_id, started_at):
                raise IngestionSupersededError()
            return IngestionOutcome(
                repository_id=repository_id,
                status=IngestionStatus.COMPLETED,
                result=result,
            )

        if not self.mark_failed(repository_id, message, started_at):
            raise IngestionSupersededError()
        return IngestionOutcome(
            repository_id=repository_id,
            status=IngestionStatus.FAILED,
            error=message or UNKNOWN_ERROR,
        )

    def start_ingestion(self, repository_id: UUID) -> Repository:
        """
        Move a repository into ``processing``.

        Allowed from any state except a live ``processing``; a ``processing``
        row older than the stale window counts as abandoned and may be taken over.
        """
        now = utcnow()
        stale_cutoff = now - datetime.timedelta(seconds=self.stale_after)
        stmt = (
            update(Repository)
            .where(
                and_(
                    Repository.id == repository_id,
                    or_(
                        Repository.ingestion_status != IngestionStatus.PROCESSING.value,
                        Repository.ingestion_started_at.is_(None),
                        Repository.ingestion_started_at < stale_cutoff,
                    ),
                )
            )
            .values(
                ingestion_status=IngestionStatus.PROCESSING.value,
                ingestion_started_at=now,
                ingestion_completed_at=None,
                ingestion_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        updated = self._execute_transition(stmt, repository_id, "processing")

        if updated == 0:
            if self.db.get(Repository, repository_id) is None:
                raise RepositoryNotFoundError(f"Repository {repository_id} not found")
            logger.warning(f"Rejected ingestion request for {repository_id}: already processing")
            raise IngestionInProgressError()

        repository = self.db.get(Repository, repository_id)
        self.db.refresh(repository)
        logger.info(f"Ingestion started for {repository.full_name} ({repository_id})")
        return repository

    def mark_completed(self, repository_id: UUID, started_at: Optional[datetime.datetime] = None) -> bool:
        """
        ``processing -> completed``.

        With ``started_at`` only the attempt that started at that instant may
        record its outcome. Returns False when nothing was recorded.
        """
        now = utcnow()
        stmt = (
            update(Repository)
            .where(*self._attempt_filter(repository_id, started_at))
            .values(
                ingestion_status=IngestionStatus.COMPLETED.value,
                ingestion_completed_at=now,
                last_synced_at=now,
                ingestion_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        updated = self._execute_transition(stmt, repository_id, "completed")
        if updated == 0:
            logger.warning(f"Repository {repository_id} left processing before completion was recorded")
            return False
        logger.info(f"Ingestion completed for repository {repository_id}")
        return True

    def mark_failed(
        self,
        repository_id: UUID,
        message: Optional[str],
        started_at: Optional[datetime.datetime] = None,
    ) -> bool:
        stmt = (
            update(Repository)
            .where(*self._attempt_filter(repository_id, started_at))
            .values(
                ingestion_status=IngestionStatus.FAILED.value,
                ingestion_error=message or UNKNOWN_ERROR,
                ingestion_completed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        updated = self._execute_transition(stmt, repository_id, "failed")
        if updated == 0:
            logger.warning(f"Repository {repository_id} left processing before failure was recorded")
            return False
        logger.warning(f"Ingestion failed for repository {repository_id}: {message}")
        return True

    def reap_stale_ingestions(self, max_age_seconds: Optional[float] = None) -> int:
        """
        Fail every ``processing`` row that started longer ago than the stale window.

        Covers a process that died between entering ``processing`` and
        recording the service's response.
        """
        max_age = max_age_seconds if max_age_seconds is not None else self.stale_after
        cutoff = utcnow() - datetime.timedelta(seconds=max_age)
        stmt = (
            update(Repository)
            .where(
                Repository.ingestion_status == IngestionStatus.PROCESSING.value,
                or_(
                    Repository.ingestion_started_at.is_(None),
                    Repository.ingestion_started_at < cutoff,
                ),
            )
            .values(
                ingestion_status=IngestionStatus.FAILED.value,
                ingestion_error=f"Ingestion did not finish within {max_age:g} seconds",
                ingestion_completed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            reaped = self.db.execute(stmt).rowcount
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error reaping stale ingestions: {e}")
            raise DatabaseOperationError("A database error occurred while reaping stale ingestions.")
        if reaped:
            logger.warning(f"Marked {reaped} stale ingestion(s) as failed")
        return reaped

    def _authorize(self, repository_id: UUID, user: User) -> None:
        try:
            owner_id = (
                self.db.query(GithubInstallation.user_id)
                .join(Repository, Repository.installation_id == GithubInstallation.id)
                .filter(Repository.id == repository_id)
                .scalar()
            )
            exists = owner_id is not None or self.db.get(Repository, repository_id) is not None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error loading repository {repository_id}: {e}")
            raise DatabaseOperationError("A database error occurred while loading the repository.")

        if not exists:
            raise RepositoryNotFoundError(f"Repository {repository_id} not found")
        if owner_id != user.user_id:
            logger.warning(f"User {user.user_id} attempted to ingest repository {repository_id} they do not own")
            raise ForbiddenException("You do not have access to this repository")

    @staticmethod
    def _attempt_filter(repository_id: UUID, started_at: Optional[datetime.datetime]) -> list:
        criteria = [
            Repository.id == repository_id,
            Repository.ingestion_status == IngestionStatus.PROCESSING.value,
        ]
        if started_at is not None:
            criteria.append(Repository.ingestion_started_at == started_at)
        return criteria

    def _execute_transition(self, stmt, repository_id: UUID, target: str) -> int:
        try:
            updated = self.db.execute(stmt).rowcount
            self.db.commit()
            return updated
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error moving repository {repository_id} to {target}: {e}")
            raise DatabaseOperationError("A database error occurred while updating ingestion status.")


async def ingest_in_background(repository_id: UUID) -> None:
    """
    Re-ingest a repository outside any request, with its own session.

    Used by webhook handlers; conflicts and failures are logged, not raised.
    """
    db: Session = SessionLocal()
    try:
        service = IngestionService(db=db, client=get_ingestion_client())
        outcome = await service.ingest(repository_id)
        logger.info(f"Background ingestion for {repository_id} finished: {outcome.status.value}")
    except IngestionInProgressError:
        logger.info(f"Skipping background ingestion for {repository_id}: already processing")
    except IngestionSupersededError:
        logger.warning(f"Background ingestion for {repository_id} was superseded, outcome not recorded")
    except Exception as e:
        logger.error(f"Background ingestion for {repository_id} failed: {e}")
    finally:
        db.close()
