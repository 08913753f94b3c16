"""
Provider Secret Service - Encrypted storage and audited reveal of provider API keys.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from opsconsole.config import settings
from opsconsole.db.models import AdminUser, ProviderSecret
from opsconsole.exceptions import (
    AuthenticationError,
    DecryptionError,
    RateLimitExceededError,
    SecretNotFoundError,
    ValidationError,
    WriteVerificationError,
)
from opsconsole.models.api import AuditAction, AuditTargetType
from opsconsole.models.domain import MaskedSecret, RequestContext, RevealedSecret, RotatedSecret
from opsconsole.observability.logging import get_logger
from opsconsole.observability.metrics import metrics
from opsconsole.observability.tracing import trace_operation
from opsconsole.services.audit import AuditService
from opsconsole.services.crypto import CryptoService, mask_secret

logger = get_logger(__name__)

RATE_LIMIT_WINDOW = timedelta(hours=1)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class ProviderSecretService:
    """Service for provider secret rotation and reveal."""

    def __init__(self, session: AsyncSession, crypto: CryptoService | None = None) -> None:
        self.session = session
        self.crypto = crypto or CryptoService()
        self.audit = AuditService(session)

    async def rotate_secret(
        self,
        provider_id: str,
        plaintext: str,
        actor_id: str,
        context: RequestContext | None = None,
    ) -> RotatedSecret:
        """
        Encrypt and store a new secret, replacing the previous ciphertext.

        The value is stored exactly as given. The old value is not kept anywhere.
        """
        if not provider_id or not provider_id.strip():
            raise ValidationError("provider_id cannot be empty", field="provider_id")
        if not plaintext or not plaintext.strip():
            raise ValidationError("Secret cannot be empty", field="secret")

        ciphertext = self.crypto.encrypt(plaintext)
        preview = mask_secret(plaintext)
        encrypted_at = _utc_now()

        row = await self._find_secret(provider_id)
        old_preview = row.masked_preview if row else None

        if row is None:
            row = ProviderSecret(
                provider_id=provider_id,
                ciphertext=ciphertext,
                masked_preview=preview,
                encrypted_at=encrypted_at,
                updated_by=actor_id,
            )
            self.session.add(row)
            try:
                await self.session.flush()
            except IntegrityError as e:
                # Race condition - secret created by another request
                logger.warning("secret_creation_race", provider_id=provider_id, error=str(e))
                await self.session.rollback()
                row = await self._find_secret(provider_id)
                if row is None:
                    raise WriteVerificationError(f"Secret creation failed: {e}") from e
                old_preview = row.masked_preview

        row.ciphertext = ciphertext
        row.masked_preview = preview
        row.encrypted_at = encrypted_at
        row.updated_by = actor_id

        self.audit.record(
            action=AuditAction.SECRET_ROTATED,
            target_type=AuditTargetType.PROVIDER_SECRET,
            target_id=provider_id,
            actor_id=actor_id,
            old_value=old_preview,
            new_value=preview,
            context=context,
        )
        await self.session.flush()

        # Verify secret was written
        verified = await self.session.get(ProviderSecret, row.id)
        if verified is None or verified.ciphertext != ciphertext:
            raise WriteVerificationError(f"Secret for {provider_id} not stored")

        await self.session.commit()
        metrics.secret_rotations_total.inc()
        logger.info(
            "secret_rotated",
            provider_id=provider_id,
            masked_preview=preview,
            actor_id=actor_id,
        )

        return RotatedSecret(
            provider_id=provider_id,
            ciphertext=ciphertext,
            masked_preview=preview,
            encrypted_at=encrypted_at,
        )

    async def get_masked(self, provider_id: str) -> MaskedSecret:
        """Masked preview for display without decrypting."""
        row = await self._find_secret(provider_id)
        if row is None:
            raise SecretNotFoundError(provider_id)
        return self._to_masked(row)

    async def list_masked(self) -> list[MaskedSecret]:
        """Masked previews for every configured provider."""
        stmt = select(ProviderSecret).order_by(ProviderSecret.provider_id)
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._to_masked(row) for row in rows]

    async def reveal_secret(
        self,
        provider_id: str,
        credential: str,
        operator_id: UUID,
        context: RequestContext | None = None,
    ) -> RevealedSecret:
        """
        Re-authenticate the operator and decrypt a secret.

        Authentication and decryption are one operation. On success exactly
        one secret_decrypted audit record is committed before the plaintext
        is returned. Failures write no audit record.

        Raises:
            RateLimitExceededError: too many reveals in the last hour
            AuthenticationError: wrong credential (generic message)
            DecryptionError: anything else (same generic message)
        """
        actor_id = str(operator_id)

        with trace_operation("secrets.reveal", provider_id=provider_id):
            since = _utc_now() - RATE_LIMIT_WINDOW
            recent = await self.audit.count_recent(actor_id, AuditAction.SECRET_DECRYPTED, since)
            if recent >= settings.secret_reveal_limit_per_hour:
                metrics.record_reveal("rate_limited")
                logger.warning(
                    "secret_reveal_rate_limited",
                    provider_id=provider_id,
                    actor_id=actor_id,
                    recent=recent,
                )
                raise RateLimitExceededError(
                    settings.secret_reveal_limit_per_hour,
                    int(RATE_LIMIT_WINDOW.total_seconds()),
                )

            try:
                plaintext = await self._authenticate_and_decrypt(
                    provider_id, credential, operator_id
                )
            except AuthenticationError:
                metrics.record_reveal("auth_failed")
                logger.warning("secret_reveal_auth_failed", provider_id=provider_id, actor_id=actor_id)
                raise
            except DecryptionError as e:
                metrics.record_reveal("failed")
                logger.error(
                    "secret_reveal_failed",
                    provider_id=provider_id,
                    actor_id=actor_id,
                    reason=e.reason,
                )
                raise

            self.audit.record(
                action=AuditAction.SECRET_DECRYPTED,
                target_type=AuditTargetType.PROVIDER_SECRET,
                target_id=provider_id,
                actor_id=actor_id,
                details={
                    "ip": (context.ip_address or "") if context else "",
                    "user_agent": (context.user_agent or "") if context else "",
                },
                context=context,
            )
            await self.session.commit()

        metrics.record_reveal("success")
        logger.info("secret_decrypted", provider_id=provider_id, actor_id=actor_id)
        return RevealedSecret(provider_id=provider_id, plaintext=plaintext, revealed_at=_utc_now())

    async def _authenticate_and_decrypt(
        self, provider_id: str, credential: str, operator_id: UUID
    ) -> str:
        operator = await self.session.get(AdminUser, operator_id)
        if operator is None or not operator.is_active:
            raise AuthenticationError()

        row = await self._find_secret(provider_id)
        if row is None:
            # Credential is checked before a missing secret is reported
            self.crypto.verify_credential(credential, operator.password_hash)
            raise DecryptionError(provider_id, "no secret stored")

        return self.crypto.decrypt(
            row.ciphertext, credential, operator.password_hash, provider_id=provider_id
        )

    async def _find_secret(self, provider_id: str) -> ProviderSecret | None:
        stmt = (
            select(ProviderSecret)
            .where(ProviderSecret.provider_id == provider_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _to_masked(self, row: ProviderSecret) -> MaskedSecret:
        return MaskedSecret(
            provider_id=row.provider_id,
            masked_preview=row.masked_preview,
            encrypted_at=row.encrypted_at,
            updated_by=row.updated_by,
        )
