from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Header
from fastapi.requests import Request
from fastapi.responses import JSONResponse, RedirectResponse
import json
from typing import Optional
from graphbug.api.fastapi.middlewares.auth import get_optional_user
from graphbug.api.fastapi.middlewares.github import GithubMiddleware
from graphbug.models.db.users import User
from graphbug.utils.exception import AppException
from graphbug.utils.logging.otel_logger import logger
from graphbug.services.github.github_service import GithubService
from graphbug.core.config import settings

router = APIRouter(
    prefix="/github",
    tags=["Github"],
)

@router.get("/setup")
async def github_setup(
    installation_id: Optional[str] = None,
    setup_action: Optional[str] = None,
    current_user: Optional[User] = Depends(get_optional_user),
    github_service: GithubService = Depends(GithubService)
):
    """
    Handle GitHub App installation setup callback

    GitHub redirects the browser here after the user installs the app. The
    installation is linked to the signed-in user, then the browser is sent
    back to the frontend dashboard.
    """
    frontend_url = settings.FRONTEND_URL.rstrip("/")

    if current_user is None:
        logger.warning("Setup callback received without an authenticated session")
        return RedirectResponse(url=f"{frontend_url}/login")

    if not installation_id or not installation_id.isdigit():
        logger.warning(f"Invalid installation_id in setup callback: {installation_id!r}")
        return RedirectResponse(url=f"{frontend_url}/dashboard?error=no_installation")

    try:
        github_service.handle_setup(current_user, int(installation_id), setup_action)
    except AppException as e:
        logger.error(f"Setup callback failed for installation {installation_id}: {e.message}")
        return RedirectResponse(url=f"{frontend_url}/dashboard?error=setup_failed")

    return RedirectResponse(url=f"{frontend_url}/dashboard?setup=success")

@router.post("/events")
async def github_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: Optional[str] = Header(None),
    x_hub_signature_256: Optional[str] = Header(None),
    github_service: GithubService = Depends(GithubService)
):
    """Handle GitHub webhook events"""
    github_middleware = GithubMiddleware()
    try:
        body_bytes = await request.body()

        webhook_secret = settings.GITHUB_WEBHOOK_SECRET if settings.GITHUB_WEBHOOK_SECRET else None

        if webhook_secret and not github_middleware.verify_webhook_signature(body_bytes, x_hub_signature_256, webhook_secret):
            logger.warning("Invalid webhook signature")
            raise HTTPException(status_code=401, detail="Invalid signature")
        if not webhook_secret:
            logger.warning("GITHUB_WEBHOOK_SECRET is not set, accepting unsigned webhook")

        try:
            body = json.loads(body_bytes.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Invalid JSON payload")

        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")

        logger.info(f"GitHub webhook received - event: {x_github_event}")

        result = await github_service.process_webhook(body, x_github_event, background_tasks)

        return JSONResponse(content=result, status_code=200)

    except (HTTPException, AppException):
        raise
    except Exception as e:
        logger.error(f"Error processing webhook: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error")
