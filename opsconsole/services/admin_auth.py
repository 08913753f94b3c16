"""
Operator authentication service.

Email and password login against Argon2id hashes, issuing HS256 JWTs.
The same hash later serves as the re-authentication check for secret reveal.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import jwt
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from opsconsole.db.models import AdminUser
from opsconsole.exceptions import AuthenticationError, AuthorizationError, ValidationError
from opsconsole.models.api import AdminRole
from opsconsole.services.crypto import CryptoService

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 12
LOGIN_FAILURE_MESSAGE = "Invalid email or password"


def check_role(admin_user: AdminUser, required: AdminRole) -> None:
    """Raise AuthorizationError unless the operator holds the required role."""
    if admin_user.role != required.value:
        raise AuthorizationError(required.value)


class AdminAuthService:
    """Operator authentication service."""

    def __init__(
        self,
        jwt_secret: str,
        jwt_expire_hours: int = 8,
        crypto: CryptoService | None = None,
    ):
        self.jwt_secret = jwt_secret
        self.jwt_expire_hours = jwt_expire_hours
        self.crypto = crypto or CryptoService()

    async def login(self, db: AsyncSession, email: str, password: str) -> tuple[AdminUser, str]:
        """
        Check an operator's password and issue a token.

        Raises:
            AuthenticationError: unknown email, wrong password or inactive account
        """
        stmt = select(AdminUser).where(AdminUser.email == email.strip().lower())
        admin_user = (await db.execute(stmt)).scalar_one_or_none()

        if admin_user is None:
            logger.warning("admin_login_unknown_email")
            raise AuthenticationError(LOGIN_FAILURE_MESSAGE)

        try:
            self.crypto.verify_credential(password, admin_user.password_hash)
        except AuthenticationError as e:
            logger.warning("admin_login_bad_password", user_id=str(admin_user.id))
            raise AuthenticationError(LOGIN_FAILURE_MESSAGE) from e

        if not admin_user.is_active:
            logger.warning("inactive_user_login_attempt", user_id=str(admin_user.id))
            raise AuthenticationError(LOGIN_FAILURE_MESSAGE)

        # Update last login
        admin_user.last_login_at = datetime.now(UTC)
        await db.commit()

        logger.info(
            "admin_login_success",
            email=admin_user.email,
            role=admin_user.role,
            user_id=str(admin_user.id),
        )
        return admin_user, self._create_jwt_token(admin_user)

    async def create_admin_user(
        self,
        db: AsyncSession,
        email: str,
        full_name: str,
        password: str,
        role: AdminRole = AdminRole.VIEWER,
    ) -> AdminUser:
        """Create an operator account."""
        email = email.strip().lower()
        if "@" not in email:
            raise ValidationError(f"Invalid email: {email}", field="email")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )

        new_admin = AdminUser(
            id=uuid4(),
            email=email,
            full_name=full_name,
            password_hash=self.crypto.hash_credential(password),
            role=role.value,
            is_active=True,
        )
        db.add(new_admin)
        try:
            await db.commit()
        except IntegrityError as e:
            await db.rollback()
            raise ValidationError(f"Operator {email} already exists", field="email") from e

        logger.info(
            "new_admin_user_created",
            email=new_admin.email,
            role=new_admin.role,
            user_id=str(new_admin.id),
        )
        return new_admin

    def _create_jwt_token(self, admin_user: AdminUser) -> str:
        """Create JWT token for admin user."""
        now = datetime.now(UTC)
        payload = {
            "sub": str(admin_user.id),
            "email": admin_user.email,
            "role": admin_user.role,
            "iat": now,
            "exp": now + timedelta(hours=self.jwt_expire_hours),
        }

        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def verify_jwt_token(self, token: str) -> dict[str, Any] | None:
        """Verify JWT token and return payload."""
        try:
            payload: dict[str, Any] = jwt.decode(token, self.jwt_secret, algorithms=["HS256"])
            return payload
        except jwt.ExpiredSignatureError:
            logger.warning("jwt_token_expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning("jwt_token_invalid", error=str(e))
            return None

    async def get_admin_user_by_id(self, db: AsyncSession, user_id: UUID) -> AdminUser | None:
        """Get admin user by ID."""
        stmt = select(AdminUser).where(AdminUser.id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()
