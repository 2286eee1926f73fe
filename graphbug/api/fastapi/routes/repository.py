"""
API Routes for Repository Management.

Listing of the user's tracked repositories and on-demand ingestion.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from graphbug.api.fastapi.middlewares.auth import get_current_user
from graphbug.models.db.repositories import IngestionStatus
from graphbug.models.db.users import User
from graphbug.models.schemas.github_installations import RepositoryListResponse
from graphbug.models.schemas.repositories import IngestRepositoryResponse
from graphbug.services.ingestion.ingestion_service import IngestionService
from graphbug.services.repository.repository_service import RepositoryService
from graphbug.utils.logging.otel_logger import logger


router = APIRouter(
    prefix="/repository",
    tags=["Repository"],
)


@router.get("/", response_model=RepositoryListResponse)
async def list_repositories(
    current_user: User = Depends(get_current_user),
    repository_service: RepositoryService = Depends(RepositoryService)
) -> RepositoryListResponse:
    """Get the user's installations, their repositories and ingestion counts"""
    return repository_service.list_user_repositories(current_user)


@router.post(
    "/{repository_id}/ingest",
    response_model=IngestRepositoryResponse,
    summary="Ingest a repository",
    description="Send the repository to the ingestion service and wait for the outcome. "
                "Returns 409 while another ingestion of the same repository is running.",
    responses={
        status.HTTP_502_BAD_GATEWAY: {"model": IngestRepositoryResponse},
    },
)
async def ingest_repository(
    repository_id: UUID,
    current_user: User = Depends(get_current_user),
    ingestion_service: IngestionService = Depends(IngestionService)
):
    """
    Ingest a repository.

    Args:
        repository_id: UUID of the repository
        current_user: The authenticated user (injected)
        ingestion_service: Ingestion service (injected)

    Returns:
        200 with the service result when ingestion completed,
        502 with the recorded error when it failed

    Raises:
        404: Repository not found
        403: Repository belongs to another user
        409: Ingestion already in progress, or this attempt was superseded
             before its outcome could be recorded
    """
    logger.info(f"Ingestion requested for repository {repository_id} by {current_user.email}")
    outcome = await ingestion_service.ingest(repository_id, current_user)

    response = IngestRepositoryResponse(
        repository_id=outcome.repository_id,
        status=outcome.status.value,
        result=outcome.result,
        error=outcome.error,
    )
    if outcome.status == IngestionStatus.FAILED:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=response.model_dump(mode="json"),
        )
    return response
