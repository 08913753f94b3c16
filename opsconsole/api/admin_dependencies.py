"""
Admin authentication dependencies for protecting admin routes.

Provides FastAPI dependencies for JWT validation, role checking and the
request context recorded in audit entries.
"""

from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from opsconsole.config import get_settings
from opsconsole.db.models import AdminUser
from opsconsole.db.session import get_write_db
from opsconsole.exceptions import AuthorizationError
from opsconsole.models.api import AdminRole
from opsconsole.models.domain import RequestContext
from opsconsole.services.admin_auth import AdminAuthService, check_role
from opsconsole.services.confirmation import ConfirmationGate, confirmation_gate
from opsconsole.services.disclosure import DisclosureRegistry, disclosure_registry

logger = get_logger(__name__)


def get_admin_auth_service() -> AdminAuthService:
    """Get admin auth service instance."""
    settings = get_settings()
    return AdminAuthService(
        jwt_secret=settings.ADMIN_JWT_SECRET,
        jwt_expire_hours=settings.admin_jwt_expire_hours,
    )


def get_confirmation_gate() -> ConfirmationGate:
    """Process-wide confirmation gate."""
    return confirmation_gate


def get_disclosure_registry() -> DisclosureRegistry:
    """Process-wide registry of open disclosure dialogs."""
    return disclosure_registry


def get_request_context(request: Request) -> RequestContext:
    """Client address and user agent for audit records."""
    forwarded = request.headers.get("x-forwarded-for")
    ip_address = forwarded.split(",")[0].strip() if forwarded else None
    if not ip_address and request.client:
        ip_address = request.client.host
    return RequestContext(ip_address=ip_address, user_agent=request.headers.get("user-agent"))


async def get_current_admin(
    request: Request,
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_write_db),
    auth_service: AdminAuthService = Depends(get_admin_auth_service),
) -> AdminUser:
    """
    Get current authenticated admin user.

    Checks Authorization header first, then cookie.
    Validates JWT token and retrieves user from database.

    Raises:
        HTTPException(401): If no token provided or token is invalid
        HTTPException(403): If user account is deactivated
    """
    # Try Authorization header first
    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.removeprefix("Bearer ")

    # Try cookie if no header
    if not token:
        token = request.cookies.get("admin_token")

    if not token:
        logger.warning("admin_auth_no_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Verify JWT
    payload = auth_service.verify_jwt_token(token)
    if not payload:
        logger.warning("admin_auth_invalid_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user_id = UUID(str(payload["sub"]))
    except (ValueError, KeyError) as e:
        logger.warning("admin_auth_invalid_user_id", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        ) from e

    admin_user = await auth_service.get_admin_user_by_id(db, user_id)

    if not admin_user:
        logger.warning("admin_auth_user_not_found", user_id=str(user_id))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not admin_user.is_active:
        logger.warning("admin_auth_user_inactive", user_id=str(user_id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return admin_user


async def require_admin_role(
    admin: AdminUser = Depends(get_current_admin),
) -> AdminUser:
    """
    Require admin role (not just viewer).

    Use this dependency for routes that mutate credits, secrets or incidents.

    Raises:
        HTTPException(403): If user is not an admin
    """
    try:
        check_role(admin, AdminRole.ADMIN)
    except AuthorizationError as e:
        logger.warning(
            "admin_auth_insufficient_role",
            user_id=str(admin.id),
            role=admin.role,
            required=e.required_permission,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Admin role required. Your role: {admin.role} (read-only)",
        ) from e

    return admin
