"""
Reconciles GitHub App installations from the setup callback and from webhooks.

The two signals arrive in any order, possibly more than once and possibly
concurrently. Each one owns a disjoint set of columns:

- setup callback: ``user_id``
- webhook: ``account_login``, ``account_type``, ``target_type``,
  ``permissions``, ``repository_selection``, ``suspended``

Every reconcile is a single ``INSERT ... ON CONFLICT (installation_id) DO
UPDATE`` that writes only the caller's own columns, so the merge is
commutative and idempotent, and two racing inserts collapse into one row.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from graphbug.models.db.github_installations import GithubInstallation, PENDING
from graphbug.utils.clock import utcnow
from graphbug.utils.db import insert_ignore_returning, upsert_returning
from graphbug.utils.exception import DatabaseOperationError
from graphbug.utils.logging import get_logger

logger = get_logger(__name__)

METADATA_COLUMNS = ("account_login", "account_type", "target_type")


def _metadata_value(value: Optional[str]) -> str:
    return value if value else PENDING


class InstallationService:
    def __init__(self, db: Session):
        self.db = db

    def get_by_installation_id(self, installation_id: int) -> Optional[GithubInstallation]:
        try:
            return (
                self.db.query(GithubInstallation)
                .filter(GithubInstallation.installation_id == installation_id)
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error looking up installation {installation_id}: {e}")
            raise DatabaseOperationError("A database error occurred while fetching the installation.")

    def reconcile_from_callback(self, user_id: UUID, installation_id: int) -> GithubInstallation:
        """
        Link an installation to the user who completed the setup redirect.

        Inserts a placeholder (metadata "pending") when the webhook has not been
        processed yet, otherwise sets only ``user_id``.
        """
        now = utcnow()
        values = {
            "installation_id": installation_id,
            "user_id": user_id,
            "account_login": PENDING,
            "account_type": PENDING,
            "target_type": PENDING,
            "installed_at": now,
            "updated_at": now,
        }
        table = GithubInstallation.__table__

        def _on_conflict(stmt) -> Dict[str, Any]:
            return {
                "user_id": func.coalesce(stmt.excluded.user_id, table.c.user_id),
                "updated_at": stmt.excluded.updated_at,
            }

        row_id = self._upsert(values, _on_conflict, source="setup callback")
        logger.info(f"Linked installation {installation_id} to user {user_id}")
        return self._load(row_id)

    def reconcile_from_webhook(
        self,
        installation_id: int,
        account_login: Optional[str],
        account_type: Optional[str],
        target_type: Optional[str],
        permissions: Optional[Dict[str, Any]] = None,
        repository_selection: Optional[str] = None,
        suspended: Optional[bool] = None,
    ) -> GithubInstallation:
        """
        Record installation metadata delivered by a webhook.

        Inserts with ``user_id`` null when the setup callback has not run yet,
        otherwise updates metadata only. Missing fields never replace stored
        values: empty account fields become "pending" and a "pending" never
        overwrites a real value; None for the optional fields keeps what is stored.
        """
        now = utcnow()
        values = {
            "installation_id": installation_id,
            "account_login": _metadata_value(account_login),
            "account_type": _metadata_value(account_type),
            "target_type": _metadata_value(target_type),
            "permissions": permissions,
            "repository_selection": repository_selection,
            "suspended": bool(suspended),
            "installed_at": now,
            "updated_at": now,
        }
        table = GithubInstallation.__table__

        def _on_conflict(stmt) -> Dict[str, Any]:
            update: Dict[str, Any] = {
                column: case(
                    (getattr(stmt.excluded, column) == PENDING, table.c[column]),
                    else_=getattr(stmt.excluded, column),
                )
                for column in METADATA_COLUMNS
            }
            if permissions is not None:
                update["permissions"] = stmt.excluded.permissions
            if repository_selection is not None:
                update["repository_selection"] = stmt.excluded.repository_selection
            if suspended is not None:
                update["suspended"] = stmt.excluded.suspended
            update["updated_at"] = stmt.excluded.updated_at
            return update

        row_id = self._upsert(values, _on_conflict, source="webhook")
        logger.info(
            f"Reconciled installation {installation_id} from webhook "
            f"(account: {account_login}, type: {account_type})"
        )
        return self._load(row_id)

    def ensure_installation(self, installation_id: int) -> GithubInstallation:
        """
        Return the installation row, creating a pending placeholder if absent.

        Used when a repository event arrives before anything else has been
        recorded for the installation.
        """
        now = utcnow()
        try:
            inserted_id = insert_ignore_returning(
                self.db,
                GithubInstallation,
                values={
                    "installation_id": installation_id,
                    "account_login": PENDING,
                    "account_type": PENDING,
                    "target_type": PENDING,
                    "suspended": False,
                    "installed_at": now,
                    "updated_at": now,
                },
                index_elements=["installation_id"],
                returning=GithubInstallation.id,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error creating placeholder installation {installation_id}: {e}")
            raise DatabaseOperationError("A database error occurred while recording the installation.")

        if inserted_id is not None:
            logger.info(f"Created placeholder installation {installation_id} ahead of its installation event")
            return self._load(inserted_id)
        return self.get_by_installation_id(installation_id)

    def delete_installation(self, installation_id: int) -> bool:
        """Delete an installation and, by cascade, all of its repositories."""
        try:
            installation = (
                self.db.query(GithubInstallation)
                .filter(GithubInstallation.installation_id == installation_id)
                .first()
            )
            if not installation:
                logger.info(f"Installation {installation_id} already absent, nothing to delete")
                return False
            self.db.delete(installation)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error deleting installation {installation_id}: {e}")
            raise DatabaseOperationError("A database error occurred while deleting the installation.")

        logger.info(f"Installation {installation_id} removed from database")
        return True

    def _upsert(self, values: Dict[str, Any], on_conflict, source: str) -> UUID:
        try:
            row_id = upsert_returning(
                self.db,
                GithubInstallation,
                values=values,
                index_elements=["installation_id"],
                set_=on_conflict,
                returning=GithubInstallation.id,
            )
            self.db.commit()
            return row_id
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                f"Database error reconciling installation {values['installation_id']} from {source}: {e}"
            )
            raise DatabaseOperationError("A database error occurred while reconciling the installation.")

    def _load(self, row_id: UUID) -> GithubInstallation:
        installation = self.db.get(GithubInstallation, row_id)
        # The upsert bypasses the identity map, so drop any stale copy
        self.db.refresh(installation)
        return installation
