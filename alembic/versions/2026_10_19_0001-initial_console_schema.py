"""initial console schema

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates the operator console tables:
- user_credits: one balance row per user, version-guarded
- credit_transactions: append-only ledger with balance snapshots
- provider_secrets: AES-GCM encrypted provider API keys
- admin_users: operator accounts (Argon2id password hashes)
- admin_audit_logs: operator audit trail
- security_events: incidents reviewed in the console
- ip_blocklist: addresses blocked from incidents
- user_bans: users banned from incidents
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("NOW()"),
    )


def upgrade() -> None:
    # Balances
    op.create_table(
        "user_credits",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("daily_allowance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        _created_at_column(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint("balance >= 0", name="ck_user_credits_balance_non_negative"),
        sa.CheckConstraint("daily_allowance >= 0", name="ck_user_credits_daily_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )
    op.create_index("idx_user_credits_updated_at", "user_credits", ["updated_at"])

    # Ledger
    op.create_table(
        "credit_transactions",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("signed_amount", sa.BigInteger(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("balance_before", sa.BigInteger(), nullable=False),
        sa.Column("balance_after", sa.BigInteger(), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("related_image_id", postgresql.UUID(as_uuid=True), nullable=True),
        _created_at_column(),
        sa.CheckConstraint(
            "kind IN ('add', 'deduct', 'refund', 'expire', 'daily_reset', 'generation')",
            name="ck_credit_transactions_kind",
        ),
        sa.CheckConstraint("signed_amount <> 0", name="ck_credit_transactions_amount_non_zero"),
        sa.CheckConstraint("balance_after >= 0", name="ck_credit_transactions_after_non_negative"),
        sa.CheckConstraint(
            "balance_after = balance_before + signed_amount",
            name="ck_credit_transactions_snapshot_consistent",
        ),
        sa.CheckConstraint(
            "kind <> 'deduct' OR (reason IS NOT NULL AND length(trim(reason)) > 0)",
            name="ck_credit_transactions_deduct_reason",
        ),
        sa.ForeignKeyConstraint(["user_id"], ["user_credits.user_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_credit_transactions_user_created",
        "credit_transactions",
        ["user_id", "created_at"],
    )
    op.create_index("idx_credit_transactions_kind", "credit_transactions", ["kind"])

    # Provider secrets
    op.create_table(
        "provider_secrets",
        _id_column(),
        sa.Column("provider_id", sa.String(length=100), nullable=False),
        sa.Column("ciphertext", sa.Text(), nullable=False),
        sa.Column("masked_preview", sa.String(length=32), nullable=False),
        sa.Column("encrypted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_id"),
    )

    # Operators
    op.create_table(
        "admin_users",
        _id_column(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="viewer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        _created_at_column(),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("role IN ('admin', 'viewer')", name="ck_admin_users_role"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index("idx_admin_users_role", "admin_users", ["role"])

    # Audit trail
    op.create_table(
        "admin_audit_logs",
        _id_column(),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_id", sa.String(length=255), nullable=True),
        sa.Column("old_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),  # type: ignore[no-untyped-call]
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_admin_audit_logs_created_at",
        "admin_audit_logs",
        ["created_at"],
        postgresql_using="brin",
    )
    op.create_index("idx_admin_audit_logs_action", "admin_audit_logs", ["action"])
    op.create_index(
        "idx_admin_audit_logs_target", "admin_audit_logs", ["target_type", "target_id"]
    )
    op.create_index(
        "idx_admin_audit_logs_actor_action",
        "admin_audit_logs",
        ["actor_id", "action", "created_at"],
    )

    # Security incidents
    op.create_table(
        "security_events",
        _id_column(),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),  # type: ignore[no-untyped-call]
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.String(length=255), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        _created_at_column(),
        sa.CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')",
            name="ck_security_events_severity",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_security_events_resolved", "security_events", ["resolved"])
    op.create_index("idx_security_events_created_at", "security_events", ["created_at"])

    # Incident actions
    op.create_table(
        "ip_blocklist",
        _id_column(),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("reason", sa.String(length=20), nullable=False, server_default="manual"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("blocked_by", sa.String(length=255), nullable=False),
        _created_at_column(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ip_address"),
    )
    op.create_table(
        "user_bans",
        _id_column(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ban_reason", sa.Text(), nullable=False),
        sa.Column("banned_by", sa.String(length=255), nullable=False),
        sa.Column(
            "banned_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id"),
    )


def downgrade() -> None:
    op.drop_table("user_bans")
    op.drop_table("ip_blocklist")
    op.drop_table("security_events")
    op.drop_table("admin_audit_logs")
    op.drop_table("admin_users")
    op.drop_table("provider_secrets")
    op.drop_table("credit_transactions")
    op.drop_table("user_credits")
