from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class RepositoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    installation_id: UUID
    github_repo_id: Optional[int] = None
    name: str
    full_name: str
    private: bool = False
    added_at: datetime
    ingestion_status: str
    ingestion_started_at: Optional[datetime] = None
    ingestion_completed_at: Optional[datetime] = None
    ingestion_error: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class IngestionStats(BaseModel):
    total: int = 0
    not_started: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class RepositorySyncResult(BaseModel):
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)


class IngestRepositoryResponse(BaseModel):
    repository_id: UUID
    status: str
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
