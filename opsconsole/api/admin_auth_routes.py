"""
Operator authentication routes.

Password login issuing a JWT in both the response body and an HttpOnly cookie.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from opsconsole.api.admin_dependencies import get_admin_auth_service, get_current_admin
from opsconsole.config import get_settings
from opsconsole.db.models import AdminUser
from opsconsole.db.session import get_write_db
from opsconsole.exceptions import AuthenticationError
from opsconsole.services.admin_auth import AdminAuthService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/auth", tags=["admin-auth"])


class LoginRequest(BaseModel):
    """POST /admin/auth/login request body."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class AdminUserResponse(BaseModel):
    """Authenticated operator."""

    id: UUID
    email: str
    name: str
    role: str


class LoginResponse(BaseModel):
    """Login result."""

    access_token: str
    token_type: str = "bearer"
    user: AdminUserResponse


def _user_response(admin_user: AdminUser) -> AdminUserResponse:
    return AdminUserResponse(
        id=admin_user.id,
        email=admin_user.email,
        name=admin_user.full_name,
        role=admin_user.role,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> LoginResponse:
    """Exchange email and password for an access token."""
    try:
        admin_user, access_token = await auth_service.login(db, body.email, body.password)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    settings = get_settings()
    response.set_cookie(
        key="admin_token",
        value=access_token,
        httponly=True,
        secure=True,  # HTTPS only
        samesite="strict",
        max_age=settings.admin_jwt_expire_hours * 3600,
    )

    return LoginResponse(access_token=access_token, user=_user_response(admin_user))


@router.post("/logout")
async def logout(response: Response) -> dict[str, str]:
    """Clear the JWT cookie."""
    response.delete_cookie(key="admin_token")
    logger.info("admin_user_logout")
    return {"message": "Logged out successfully"}


@router.get("/me", response_model=AdminUserResponse)
async def get_me(admin: AdminUser = Depends(get_current_admin)) -> AdminUserResponse:
    """Current authenticated operator."""
    return _user_response(admin)
