"""
Pydantic models for GitHub App installation webhooks and installation reads.

Only the fields the service consumes are declared; GitHub sends many more and
they are ignored.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from graphbug.models.schemas.repositories import IngestionStats, RepositoryRead


class GithubAccount(BaseModel):
    login: Optional[str] = None
    id: Optional[int] = None
    type: Optional[str] = None


class WebhookRepository(BaseModel):
    """Repository entry as it appears in installation webhooks."""
    id: Optional[int] = None
    name: str
    full_name: str
    private: bool = False


class InstallationPayload(BaseModel):
    id: int
    account: Optional[GithubAccount] = None
    target_type: Optional[str] = None
    repository_selection: Optional[str] = None
    permissions: Optional[Dict[str, Any]] = None


class InstallationEvent(BaseModel):
    """`installation` webhook (created, deleted, suspend, unsuspend, ...)."""
    action: str
    installation: InstallationPayload
    repositories: Optional[List[WebhookRepository]] = None


class InstallationRepositoriesEvent(BaseModel):
    """`installation_repositories` webhook (added, removed)."""
    action: str
    installation: InstallationPayload
    repository_selection: Optional[str] = None
    repositories_added: List[WebhookRepository] = Field(default_factory=list)
    repositories_removed: List[WebhookRepository] = Field(default_factory=list)


class Installation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    installation_id: int
    user_id: Optional[UUID] = None
    account_login: str
    account_type: str
    target_type: str
    repository_selection: Optional[str] = None
    suspended: bool = False
    installed_at: datetime
    updated_at: datetime


class InstallationWithRepositories(Installation):
    repositories: List[RepositoryRead] = Field(default_factory=list)


class RepositoryListResponse(BaseModel):
    installations: List[InstallationWithRepositories] = Field(default_factory=list)
    stats: IngestionStats = Field(default_factory=IngestionStats)
