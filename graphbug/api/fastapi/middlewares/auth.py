from fastapi import Depends, Request, Cookie, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session, joinedload
from supabase import Client
from typing import Optional

from graphbug.core.database import get_db
from graphbug.core.supabase_client import get_supabase_client
from graphbug.models.db.users import User
from graphbug.utils.exception import UnauthorizedException, UserNotFoundError
from graphbug.utils.logging.otel_logger import logger

bearer_scheme = HTTPBearer(auto_error=False)


def _extract_token(
    access_token: Optional[str],
    token_query: Optional[str],
    authorization: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    # Authorization header, then cookie, then query parameter
    if authorization:
        return authorization.credentials
    if access_token:
        return access_token
    return token_query


def _resolve_user(token_val: str, db: Session, supabase: Client) -> User:
    try:
        auth_response = supabase.auth.get_user(token_val)
    except Exception as e:
        logger.error(f"Authentication error: {str(e)}")
        raise UnauthorizedException(f"Could not validate credentials: {str(e)}")

    supabase_user = auth_response.user if auth_response else None
    if not supabase_user:
        logger.error("No user found in Supabase auth response")
        raise UnauthorizedException("Invalid token or user not found in Supabase")

    local_user = (
        db.query(User)
        .options(joinedload(User.github_installations))
        .filter(User.email == supabase_user.email)
        .first()
    )
    if not local_user:
        logger.error(f"User {supabase_user.email} not found in local database")
        raise UserNotFoundError("Authenticated user not found in our database")

    return local_user


def get_current_user(
    request: Request,
    access_token: Optional[str] = Cookie(None),
    token_query: Optional[str] = Query(None, alias="token"),
    authorization: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    supabase: Client = Depends(get_supabase_client)
) -> User:
    """
    Validates the JWT access token from the Authorization header, cookies or
    query string using Supabase.

    Raises:
        UnauthorizedException: If the token is missing or invalid.
        UserNotFoundError: If the Supabase user has no local account.

    Returns:
        User: The authenticated user object from the database.
    """
    token_val = _extract_token(access_token, token_query, authorization)
    if not token_val:
        logger.error("No token found in Authorization header, cookies or query parameters")
        raise UnauthorizedException(
            "Authentication token is missing from Authorization header, cookies and query parameters"
        )

    local_user = _resolve_user(token_val, db, supabase)
    logger.info(f"Authentication successful for user: {local_user.email}")
    request.state.user = local_user
    return local_user


def get_optional_user(
    request: Request,
    access_token: Optional[str] = Cookie(None),
    token_query: Optional[str] = Query(None, alias="token"),
    authorization: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    supabase: Client = Depends(get_supabase_client)
) -> Optional[User]:
    """Same lookup as ``get_current_user`` but yields None instead of failing."""
    token_val = _extract_token(access_token, token_query, authorization)
    if not token_val:
        return None

    try:
        local_user = _resolve_user(token_val, db, supabase)
    except (UnauthorizedException, UserNotFoundError) as e:
        logger.warning(f"Optional authentication failed: {e.message}")
        return None

    request.state.user = local_user
    return local_user
