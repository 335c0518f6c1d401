"""
API dependencies for authentication.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.security.tokens import TokenPayload, TokenService
from infrastructure.config.settings import settings
from infrastructure.database.connection import get_db
from infrastructure.database.models.user import User

token_service = TokenService(
    secret_key=settings.auth_jwt_secret,
    algorithm=settings.auth_jwt_algorithm,
    audience=settings.auth_jwt_audience,
)


def _read_access_token(request: Request, authorization: str | None) -> str | None:
    """
    Checks the Authorization header (Bearer token) first and falls back to
    the ``access_token`` cookie set by the web client.
    """
    token = None
    if authorization and authorization.startswith("Bearer "):
        parts = authorization.split(" ", 1)
        token = parts[1] if len(parts) > 1 and parts[1] else None

    return token or request.cookies.get("access_token")


async def get_current_identity(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> TokenPayload:
    """Dependency resolving the caller's identity from the access token."""
    token = _read_access_token(request, authorization)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = token_service.verify_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


async def get_optional_identity(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> TokenPayload | None:
    """Like get_current_identity, but returns None instead of raising."""
    token = _read_access_token(request, authorization)
    if not token:
        return None
    return token_service.verify_access_token(token)


async def get_current_account(
    identity: Annotated[TokenPayload, Depends(get_current_identity)],
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency loading the caller's account row; 404 when no profile exists yet."""
    result = await db.execute(select(User).where(User.id == identity.sub))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User profile not found",
        )

    return user
