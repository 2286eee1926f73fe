from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends
from pydantic import ValidationError
from sqlalchemy.orm import Session

from graphbug.core.database import get_db
from graphbug.models.db.github_installations import GithubInstallation
from graphbug.models.db.repositories import IngestionStatus, Repository
from graphbug.models.db.users import User
from graphbug.models.schemas.github_installations import (
    InstallationEvent,
    InstallationRepositoriesEvent,
)
from graphbug.services.github.helpers import GithubAppHelpers
from graphbug.services.github.installation_service import InstallationService
from graphbug.services.ingestion.ingestion_client import IngestionServiceClient, get_ingestion_client
from graphbug.services.ingestion.ingestion_service import ingest_in_background
from graphbug.services.repository.repository_sync_service import RepositorySyncService
from graphbug.utils.exception import AppException, BadRequestException, GithubApiError
from graphbug.utils.logging.otel_logger import logger


class GithubService:
    def __init__(
        self,
        db: Session = Depends(get_db),
        ingestion_client: IngestionServiceClient = Depends(get_ingestion_client),
    ):
        self.db = db
        self.installation_service = InstallationService(db)
        self.sync_service = RepositorySyncService(db)
        self.ingestion_client = ingestion_client
        self.app_helpers = GithubAppHelpers()

    def handle_setup(self, user: User, installation_id: int, setup_action: Optional[str] = None) -> GithubInstallation:
        """Link the installation GitHub redirected back with to the signed-in user."""
        logger.info(
            f"Setup callback from user {user.email} for installation {installation_id} "
            f"(action: {setup_action})"
        )
        installation = self.installation_service.reconcile_from_callback(user.user_id, installation_id)
        if installation.is_pending:
            logger.info(f"Installation {installation_id} awaiting its webhook for account details")
        return installation

    async def process_webhook(
        self,
        body: Dict[str, Any],
        event_type: str,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Dict[str, Any]:
        """Process GitHub webhook events"""
        action = body.get("action")
        logger.info(f"Processing GitHub webhook event: {event_type}.{action or 'n/a'}")

        try:
            if event_type == "installation":
                await self._handle_installation_event(InstallationEvent.model_validate(body))

            elif event_type == "installation_repositories":
                await self._handle_installation_repositories_event(
                    InstallationRepositoriesEvent.model_validate(body)
                )

            elif event_type == "pull_request":
                result = self._handle_pull_request_webhook(body, background_tasks)
                if result:
                    return result

            else:
                logger.info(f"Unhandled webhook event type: {event_type}")

            return {
                "status": "success",
                "message": f"Webhook '{event_type}' processed successfully"
            }

        except ValidationError as e:
            logger.error(f"Webhook payload validation error for event '{event_type}': {e}")
            raise BadRequestException(f"Invalid webhook payload for event '{event_type}'.")

        except Exception as e:
            logger.error(f"Error processing webhook {event_type}: {str(e)}")
            if not isinstance(e, AppException):
                raise AppException(status_code=500, message=f"Failed to process webhook '{event_type}'")
            raise e

    async def _handle_installation_event(self, event: InstallationEvent) -> None:
        installation = event.installation
        installation_id = installation.id
        account = installation.account

        if event.action == "created":
            logger.info(
                f"App installed on {account.login if account else 'unknown'} "
                f"(installation {installation_id}, selection: {installation.repository_selection})"
            )
            self.installation_service.reconcile_from_webhook(
                installation_id=installation_id,
                account_login=account.login if account else None,
                account_type=account.type if account else None,
                target_type=installation.target_type,
                permissions=installation.permissions,
                repository_selection=installation.repository_selection,
                suspended=False,
            )
            await self._sync_initial_repositories(event)

        elif event.action == "deleted":
            logger.info(f"App uninstalled, installation ID: {installation_id}")
            existing = self.installation_service.get_by_installation_id(installation_id)
            if existing:
                for repo in list(existing.repositories):
                    await self.ingestion_client.delete_repository_data(str(repo.id))
            self.installation_service.delete_installation(installation_id)

        elif event.action in ("suspend", "unsuspend"):
            self.installation_service.reconcile_from_webhook(
                installation_id=installation_id,
                account_login=account.login if account else None,
                account_type=account.type if account else None,
                target_type=installation.target_type,
                suspended=event.action == "suspend",
            )
            logger.info(f"Installation {installation_id} {event.action}ed")

        else:
            logger.warning(f"Unhandled installation action: {event.action}")

    async def _sync_initial_repositories(self, event: InstallationEvent) -> None:
        installation_id = event.installation.id
        selection = event.installation.repository_selection

        if selection == "selected":
            self.sync_service.replace_all(installation_id, event.repositories or [])
        elif selection == "all":
            repos = await self._fetch_all_repositories(installation_id)
            if repos is not None:
                self.sync_service.replace_all(installation_id, repos)
        else:
            logger.warning(f"Unknown repository selection for installation {installation_id}: {selection}")
            if event.repositories:
                self.sync_service.add_repositories(installation_id, event.repositories)

    async def _fetch_all_repositories(self, installation_id: int) -> Optional[List[Dict[str, Any]]]:
        """List every repository the installation can see, or None if GitHub could not be reached."""
        try:
            return await self.app_helpers.list_installation_repositories(installation_id)
        except GithubApiError as e:
            logger.error(f"Failed to fetch repositories for installation {installation_id}: {e}")
            return None

    def _record_repository_selection(self, event: InstallationRepositoriesEvent) -> None:
        account = event.installation.account
        self.installation_service.reconcile_from_webhook(
            installation_id=event.installation.id,
            account_login=account.login if account else None,
            account_type=account.type if account else None,
            target_type=event.installation.target_type,
            repository_selection=event.repository_selection,
        )
        logger.info(
            f"Installation {event.installation.id} repository selection is now '{event.repository_selection}'"
        )

    async def _handle_installation_repositories_event(self, event: InstallationRepositoriesEvent) -> None:
        installation_id = event.installation.id

        if event.repository_selection:
            self._record_repository_selection(event)

        if event.action == "added":
            if event.repository_selection == "all":
                repos = await self._fetch_all_repositories(installation_id)
                if repos is not None:
                    self.sync_service.replace_all(installation_id, repos)
                    return
                # GitHub unreachable: keep at least what the event carried
            if event.repositories_added:
                self.sync_service.add_repositories(installation_id, event.repositories_added)
            else:
                self.installation_service.ensure_installation(installation_id)

        elif event.action == "removed":
            full_names = [repo.full_name for repo in event.repositories_removed]
            installation = self.installation_service.get_by_installation_id(installation_id)
            if installation:
                doomed = (
                    self.db.query(Repository)
                    .filter(
                        Repository.installation_id == installation.id,
                        Repository.full_name.in_(full_names),
                    )
                    .all()
                )
                for repo in doomed:
                    await self.ingestion_client.delete_repository_data(str(repo.id))
                self.sync_service.remove_repositories(installation_id, full_names)
            else:
                # Nothing stored to remove yet, but the installation must not be lost
                self.installation_service.ensure_installation(installation_id)

        else:
            logger.warning(f"Unhandled installation_repositories action: {event.action}")

    def _handle_pull_request_webhook(
        self,
        payload: Dict[str, Any],
        background_tasks: Optional[BackgroundTasks],
    ) -> Optional[Dict[str, Any]]:
        """
        Re-ingest a repository after a pull request is merged into it.

        Returns:
            Response dict if handled, None if ignored
        """
        action = payload.get("action")
        pr_data = payload.get("pull_request", {}) or {}
        repo_data = payload.get("repository", {}) or {}
        installation_id = (payload.get("installation") or {}).get("id")

        if action != "closed" or not pr_data.get("merged"):
            logger.info(f"Ignoring pull_request action: {action}")
            return None

        full_name = repo_data.get("full_name")
        if not installation_id or not full_name:
            logger.warning(
                f"Missing required fields in pull_request webhook: "
                f"installation_id={installation_id}, full_name={full_name}"
            )
            return {"status": "ignored", "reason": "Missing required fields in webhook payload"}

        repository = (
            self.db.query(Repository)
            .join(GithubInstallation, Repository.installation_id == GithubInstallation.id)
            .filter(
                GithubInstallation.installation_id == installation_id,
                Repository.full_name == full_name,
            )
            .first()
        )
        if not repository:
            logger.info(f"Repository {full_name} not found in database, skipping re-ingestion")
            return {"status": "ignored", "reason": f"Repository {full_name} is not tracked"}

        if repository.ingestion_status == IngestionStatus.PROCESSING.value:
            logger.info(f"Repository {full_name} is already being ingested, skipping re-ingestion")
            return {"status": "ignored", "reason": f"Repository {full_name} is already processing"}

        if background_tasks is None:
            logger.warning(f"No background task runner available, skipping re-ingestion of {full_name}")
            return {"status": "ignored", "reason": "Re-ingestion unavailable"}

        background_tasks.add_task(ingest_in_background, repository.id)
        logger.info(f"Scheduled re-ingestion of {full_name} after PR #{pr_data.get('number')} merge")
        return {
            "status": "success",
            "message": f"Re-ingestion scheduled for {full_name}",
            "repository_id": str(repository.id),
        }
