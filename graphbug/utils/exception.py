from logging import Logger
from fastapi import Request, status
from fastapi.responses import JSONResponse
import traceback

from graphbug.models.schemas.responses import ErrorResponse


class AppException(Exception):
    """Base application exception."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(self.message)

class NotFoundException(AppException):
    """Raised when a resource is not found."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message=message)

class BadRequestException(AppException):
    """Raised for bad client requests."""
    def __init__(self, message: str = "Bad Request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, message=message)

class ConflictException(AppException):
    """Raised when a request conflicts with the current state of a resource."""
    def __init__(self, message: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, message=message)

class UnauthorizedException(AppException):
    """Raised for authentication failures (user not authenticated)."""
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, message=message)

class ForbiddenException(AppException):
    """Raised for authorization failures (user authenticated but lacks permission)."""
    def __init__(self, message: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, message=message)

class DatabaseOperationError(AppException):
    """Raised when a read or write against the database fails."""
    def __init__(self, message: str = "A database error occurred."):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, message=message)

class RepositoryNotFoundError(NotFoundException):
    def __init__(self, message: str = "Repository not found"):
        super().__init__(message=message)

class UserNotFoundError(NotFoundException):
    def __init__(self, message: str = "User not found"):
        super().__init__(message=message)

class IngestionInProgressError(ConflictException):
    def __init__(self, message: str = "Ingestion is already in progress for this repository"):
        super().__init__(message=message)

class IngestionSupersededError(ConflictException):
    """Raised when an attempt's outcome could not be recorded because a newer attempt or the reaper took the row."""
    def __init__(self, message: str = "Ingestion was superseded before its outcome could be recorded"):
        super().__init__(message=message)

class IngestionServiceError(Exception):
    """Failure response, timeout or transport error from the external ingestion service."""
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)

class GithubApiError(Exception):
    """Raised when the GitHub API rejects a request or is misconfigured."""
    pass

class AppExceptionHandler:
    def __init__(self, logger: Logger):
        self.logger = logger

    async def handle_app_exception(self, request: Request, exc: AppException):
        self.logger.warning(f"Application error: {exc.message} for request {request.method} {request.url.path}")
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                errorMessage=exc.message
            ).model_dump(),
        )

    async def handle_generic_exception(self, request: Request, exc: Exception):
        self.logger.error(
            f"An unexpected error occurred: {exc} for request {request.method} {request.url.path}\n{traceback.format_exc()}"
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                errorMessage="An unexpected internal server error occurred."
            ).model_dump(),
        )

def add_exception_handlers(app, logger: Logger):
    handler = AppExceptionHandler(logger)
    app.add_exception_handler(AppException, handler.handle_app_exception)
    app.add_exception_handler(Exception, handler.handle_generic_exception)
