"""
Tests for ProviderSecretService.

Reveal is the only path to plaintext, so these tests pin down its audit
behavior: exactly one record per success, none per failure.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opsconsole.config import settings
from opsconsole.db.models import AdminAuditLog, AdminUser, ProviderSecret
from opsconsole.exceptions import (
    GENERIC_REVEAL_FAILURE,
    AuthenticationError,
    DecryptionError,
    RateLimitExceededError,
    SecretNotFoundError,
    ValidationError,
)
from opsconsole.models.api import AuditAction
from opsconsole.models.domain import RequestContext
from opsconsole.services.crypto import MASK_PREFIX, CryptoService
from opsconsole.services.provider_secrets import ProviderSecretService

SECRET = "sk-live-abcdef1234"

SessionMaker = async_sessionmaker[AsyncSession]


async def audit_records(session_factory: SessionMaker, action: AuditAction) -> list[AdminAuditLog]:
    async with session_factory() as session:
        stmt = select(AdminAuditLog).where(AdminAuditLog.action == action.value)
        return list((await session.execute(stmt)).scalars().all())


@pytest.fixture
async def stored_secret(
    session_factory: SessionMaker, crypto: CryptoService, operator: AdminUser
) -> str:
    """Store SECRET for provider "openai" and return the provider id."""
    async with session_factory() as session:
        await ProviderSecretService(session, crypto).rotate_secret(
            "openai", SECRET, actor_id=str(operator.id)
        )
    return "openai"


# ============================================================================
# Rotation
# ============================================================================


class TestRotateSecret:
    """Tests for storing and replacing secrets."""

    async def test_first_rotation_creates_secret(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        request_context: RequestContext,
    ) -> None:
        async with session_factory() as session:
            rotated = await ProviderSecretService(session, crypto).rotate_secret(
                "anthropic", SECRET, actor_id=str(operator.id), context=request_context
            )

        assert rotated.masked_preview == MASK_PREFIX + "1234"
        assert SECRET not in rotated.ciphertext
        assert SECRET not in repr(rotated)

        records = await audit_records(session_factory, AuditAction.SECRET_ROTATED)
        assert len(records) == 1
        assert records[0].old_value is None
        assert records[0].new_value == MASK_PREFIX + "1234"
        assert records[0].target_id == "anthropic"

    async def test_rotation_replaces_ciphertext(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        stored_secret: str,
    ) -> None:
        async with session_factory() as session:
            await ProviderSecretService(session, crypto).rotate_secret(
                stored_secret, "sk-live-new-key-9876", actor_id=str(operator.id)
            )

        async with session_factory() as session:
            rows = (await session.execute(select(ProviderSecret))).scalars().all()
        assert len(rows) == 1
        assert rows[0].masked_preview == MASK_PREFIX + "9876"

        records = await audit_records(session_factory, AuditAction.SECRET_ROTATED)
        latest = [r for r in records if r.new_value == MASK_PREFIX + "9876"]
        assert latest[0].old_value == MASK_PREFIX + "1234"

    async def test_audit_never_contains_plaintext(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
        stored_secret: str,
    ) -> None:
        async with session_factory() as session:
            await ProviderSecretService(session, crypto).reveal_secret(
                stored_secret, operator_password, operator.id
            )

        async with session_factory() as session:
            rows = (await session.execute(select(AdminAuditLog))).scalars().all()
        for row in rows:
            stored = " ".join(
                str(v) for v in (row.old_value, row.new_value, row.details, row.target_id)
            )
            assert SECRET not in stored

    async def test_blank_provider_rejected(
        self, session_factory: SessionMaker, crypto: CryptoService, operator: AdminUser
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError):
                await ProviderSecretService(session, crypto).rotate_secret(
                    "  ", SECRET, actor_id=str(operator.id)
                )

    async def test_secret_stored_exactly(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
    ) -> None:
        async with session_factory() as session:
            await ProviderSecretService(session, crypto).rotate_secret(
                "openai", "  sk-live-padded-5678\n", actor_id=str(operator.id)
            )

        async with session_factory() as session:
            revealed = await ProviderSecretService(session, crypto).reveal_secret(
                "openai", operator_password, operator.id
            )
        assert revealed.plaintext == "  sk-live-padded-5678\n"

    @pytest.mark.parametrize("plaintext", ["", "   ", "\n"])
    async def test_blank_secret_rejected(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        plaintext: str,
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(ValidationError) as exc_info:
                await ProviderSecretService(session, crypto).rotate_secret(
                    "openai", plaintext, actor_id=str(operator.id)
                )

        assert exc_info.value.field == "secret"
        assert await audit_records(session_factory, AuditAction.SECRET_ROTATED) == []
# ============================================================================
# Masked Reads
# ============================================================================


class TestMaskedReads:
    """Masked previews never require a credential."""

    async def test_get_masked(
        self, session_factory: SessionMaker, crypto: CryptoService, stored_secret: str
    ) -> None:
        async with session_factory() as session:
            masked = await ProviderSecretService(session, crypto).get_masked(stored_secret)

        assert masked.masked_preview == MASK_PREFIX + "1234"
        assert masked.provider_id == "openai"

    async def test_get_masked_missing(self, session: AsyncSession, crypto: CryptoService) -> None:
        with pytest.raises(SecretNotFoundError):
            await ProviderSecretService(session, crypto).get_masked("nobody")

    async def test_list_masked_sorted(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        stored_secret: str,
    ) -> None:
        async with session_factory() as session:
            await ProviderSecretService(session, crypto).rotate_secret(
                "anthropic", "sk-ant-5678", actor_id=str(operator.id)
            )
        async with session_factory() as session:
            secrets = await ProviderSecretService(session, crypto).list_masked()

        assert [s.provider_id for s in secrets] == ["anthropic", "openai"]


# ============================================================================
# Reveal
# ============================================================================


class TestRevealSecret:
    """Re-authenticated decryption."""

    async def test_reveal_writes_one_audit_record(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
        stored_secret: str,
        request_context: RequestContext,
    ) -> None:
        async with session_factory() as session:
            revealed = await ProviderSecretService(session, crypto).reveal_secret(
                stored_secret, operator_password, operator.id, request_context
            )

        assert revealed.plaintext == SECRET
        assert SECRET not in repr(revealed)

        records = await audit_records(session_factory, AuditAction.SECRET_DECRYPTED)
        assert len(records) == 1
        assert records[0].actor_id == str(operator.id)
        assert records[0].target_id == "openai"
        assert records[0].details == {"ip": "203.0.113.7", "user_agent": "pytest-console/1.0"}

    async def test_wrong_credential_writes_nothing(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        stored_secret: str,
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(AuthenticationError) as exc_info:
                await ProviderSecretService(session, crypto).reveal_secret(
                    stored_secret, "wrong-password", operator.id
                )

        assert str(exc_info.value) == GENERIC_REVEAL_FAILURE
        assert await audit_records(session_factory, AuditAction.SECRET_DECRYPTED) == []

    async def test_unknown_operator(
        self, session_factory: SessionMaker, crypto: CryptoService, stored_secret: str
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(AuthenticationError):
                await ProviderSecretService(session, crypto).reveal_secret(
                    stored_secret, "anything", uuid4()
                )

    async def test_inactive_operator(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
        stored_secret: str,
    ) -> None:
        async with session_factory() as session:
            row = await session.get(AdminUser, operator.id)
            assert row is not None
            row.is_active = False
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(AuthenticationError):
                await ProviderSecretService(session, crypto).reveal_secret(
                    stored_secret, operator_password, operator.id
                )

    async def test_missing_secret_with_valid_credential(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
    ) -> None:
        """Same generic message as a wrong credential."""
        async with session_factory() as session:
            with pytest.raises(DecryptionError) as exc_info:
                await ProviderSecretService(session, crypto).reveal_secret(
                    "nobody", operator_password, operator.id
                )

        assert str(exc_info.value) == GENERIC_REVEAL_FAILURE
        assert await audit_records(session_factory, AuditAction.SECRET_DECRYPTED) == []

    async def test_missing_secret_with_wrong_credential(
        self, session_factory: SessionMaker, crypto: CryptoService, operator: AdminUser
    ) -> None:
        async with session_factory() as session:
            with pytest.raises(AuthenticationError):
                await ProviderSecretService(session, crypto).reveal_secret(
                    "nobody", "wrong-password", operator.id
                )

    async def test_corrupt_ciphertext(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
        stored_secret: str,
    ) -> None:
        async with session_factory() as session:
            row = (await session.execute(select(ProviderSecret))).scalar_one()
            row.ciphertext = "AAAA" + row.ciphertext[4:]
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(DecryptionError) as exc_info:
                await ProviderSecretService(session, crypto).reveal_secret(
                    stored_secret, operator_password, operator.id
                )

        assert str(exc_info.value) == GENERIC_REVEAL_FAILURE
        assert await audit_records(session_factory, AuditAction.SECRET_DECRYPTED) == []


class TestRevealRateLimit:
    """Per-operator limit on successful reveals."""

    async def test_limit_reached(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
        stored_secret: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings, "secret_reveal_limit_per_hour", 2)

        for _ in range(2):
            async with session_factory() as session:
                await ProviderSecretService(session, crypto).reveal_secret(
                    stored_secret, operator_password, operator.id
                )

        async with session_factory() as session:
            with pytest.raises(RateLimitExceededError) as exc_info:
                await ProviderSecretService(session, crypto).reveal_secret(
                    stored_secret, operator_password, operator.id
                )

        assert exc_info.value.limit == 2
        assert exc_info.value.window_seconds == 3600
        assert len(await audit_records(session_factory, AuditAction.SECRET_DECRYPTED)) == 2

    async def test_failed_attempts_do_not_count(
        self,
        session_factory: SessionMaker,
        crypto: CryptoService,
        operator: AdminUser,
        operator_password: str,
        stored_secret: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(settings, "secret_reveal_limit_per_hour", 1)

        for _ in range(3):
            async with session_factory() as session:
                with pytest.raises(AuthenticationError):
                    await ProviderSecretService(session, crypto).reveal_secret(
                        stored_secret, "wrong-password", operator.id
                    )

        async with session_factory() as session:
            revealed = await ProviderSecretService(session, crypto).reveal_secret(
                stored_secret, operator_password, operator.id
            )
        assert revealed.plaintext == SECRET
