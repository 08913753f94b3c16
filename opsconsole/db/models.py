"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UserBalance(Base):
    """
    ORM model for user_credits table.

    One row per user. Mutated only by the ledger service through a
    version-guarded conditional update, never deleted.
    """

    __tablename__ = "user_credits"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True)

    # Balance
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Daily allowance
    daily_allowance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency token, bumped on every balance write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),
        CheckConstraint("daily_allowance >= 0", name="ck_user_credits_daily_non_negative"),
        Index("idx_user_credits_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserBalance(user_id={self.user_id}, balance={self.balance}, "
            f"version={self.version})>"
        )


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Immutable, append-only ledger. Rows are never updated or deleted.
    """

    __tablename__ = "credit_transactions"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Foreign Key to balance row
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("user_credits.user_id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Mutation
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    signed_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Balance snapshots
    balance_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Who and what
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    related_image_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "kind IN ('add', 'deduct', 'refund', 'expire', 'daily_reset', 'generation')",
            name="ck_credit_transactions_kind",
        ),
        CheckConstraint("signed_amount <> 0", name="ck_credit_transactions_amount_non_zero"),
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_after_non_negative"),
        CheckConstraint(
            "balance_after = balance_before + signed_amount",
            name="ck_credit_transactions_snapshot_consistent",
        ),
        CheckConstraint(
            "kind <> 'deduct' OR (reason IS NOT NULL AND length(trim(reason)) > 0)",
            name="ck_credit_transactions_deduct_reason",
        ),
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
        Index("idx_credit_transactions_kind", "kind"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, kind={self.kind}, "
            f"amount={self.signed_amount}, after={self.balance_after})>"
        )


class ProviderSecret(Base):
    """
    ORM model for provider_secrets table.

    Holds one encrypted API key per image provider. Plaintext is never stored.
    """

    __tablename__ = "provider_secrets"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    provider_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    # base64(nonce || AES-256-GCM ciphertext)
    ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    masked_preview: Mapped[str] = mapped_column(String(32), nullable=False)
    encrypted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Audit
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ProviderSecret(provider_id={self.provider_id}, preview={self.masked_preview})>"


class AdminAuditLog(Base):
    """
    ORM model for admin_audit_logs table.

    Immutable audit trail of all operator actions.
    """

    __tablename__ = "admin_audit_logs"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Operator id, or "system" for automated actions
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    target_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Before/after values
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    details: Mapped[dict[str, str] | None] = mapped_column(JSONType, nullable=True)

    # Request context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_admin_audit_logs_created_at", "created_at", postgresql_using="brin"),
        Index("idx_admin_audit_logs_action", "action"),
        Index("idx_admin_audit_logs_target", "target_type", "target_id"),
        Index("idx_admin_audit_logs_actor_action", "actor_id", "action", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<AdminAuditLog(id={self.id}, action={self.action}, "
            f"target={self.target_type}/{self.target_id})>"
        )


class SecurityEvent(Base):
    """
    ORM model for security_events table.

    Incidents raised by abuse detection, reviewed and resolved by operators.
    """

    __tablename__ = "security_events"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Subject
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    details: Mapped[dict[str, str] | None] = mapped_column(JSONType, nullable=True)

    # Resolution
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_security_events_severity",
        ),
        Index("idx_security_events_resolved", "resolved"),
        Index("idx_security_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<SecurityEvent(id={self.id}, type={self.event_type}, "
            f"severity={self.severity}, resolved={self.resolved})>"
        )


class IpBlock(Base):
    """
    ORM model for ip_blocklist table.

    Addresses blocked by operators, usually from a security incident.
    """

    __tablename__ = "ip_blocklist"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, unique=True)
    reason: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_by: Mapped[str] = mapped_column(String(255), nullable=False)

    # Timestamp
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<IpBlock(ip={self.ip_address}, reason={self.reason}, by={self.blocked_by})>"


class UserBan(Base):
    """
    ORM model for user_bans table.

    A row means the user is banned. Lifting a ban is not done from the console.
    """

    __tablename__ = "user_bans"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, unique=True)
    ban_reason: Mapped[str] = mapped_column(Text, nullable=False)
    banned_by: Mapped[str] = mapped_column(String(255), nullable=False)
    banned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UserBan(user_id={self.user_id}, by={self.banned_by})>"


class AdminUser(Base):
    """
    ORM model for admin_users table.

    Operator accounts. Passwords are stored as Argon2id hashes.
    """

    __tablename__ = "admin_users"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Role (simplified to 2 roles)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="viewer")

    # Status
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'viewer')", name="ck_admin_users_role"),
        Index("idx_admin_users_role", "role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<AdminUser(id={self.id}, email={self.email}, "
            f"role={self.role}, active={self.is_active})>"
        )
