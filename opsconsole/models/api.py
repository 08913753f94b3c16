"""
API Models - Pydantic models and enumerations shared across the console.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class TransactionKind(str, Enum):
    """Credit transaction kind enumeration."""

    ADD = "add"
    DEDUCT = "deduct"
    REFUND = "refund"
    EXPIRE = "expire"
    DAILY_RESET = "daily_reset"
    GENERATION = "generation"


class OperatorCreditKind(str, Enum):
    """Kinds an operator may submit. Expiry, daily resets and generation charges are system-only."""

    ADD = "add"
    DEDUCT = "deduct"
    REFUND = "refund"

    @property
    def transaction_kind(self) -> TransactionKind:
        return TransactionKind(self.value)


class DisclosureState(str, Enum):
    """States of a secret disclosure dialog."""

    HIDDEN = "hidden"
    PENDING_REAUTH = "pending_reauth"
    DECRYPTING = "decrypting"
    VISIBLE = "visible"


class IncidentSeverity(str, Enum):
    """Security incident severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    """Incident status filter."""

    ALL = "all"
    OPEN = "open"
    RESOLVED = "resolved"


class AdminRole(str, Enum):
    """Operator roles."""

    ADMIN = "admin"
    VIEWER = "viewer"


class AuditAction(str, Enum):
    """Actions written to the admin audit log."""

    CREDITS_ADDED = "credits_added"
    CREDITS_DEDUCTED = "credits_deducted"
    CREDITS_REFUNDED = "credits_refunded"
    CREDITS_EXPIRED = "credits_expired"
    DAILY_CREDITS_RESET = "daily_credits_reset"
    GENERATION_CHARGED = "generation_charged"
    LEDGER_WRITE_FAILED = "ledger_write_failed"
    SECRET_DECRYPTED = "secret_decrypted"
    SECRET_ROTATED = "secret_rotated"
    INCIDENT_RESOLVED = "incident_resolved"
    INCIDENT_REOPENED = "incident_reopened"
    IP_BLOCKED = "ip_blocked"
    USER_BANNED = "user_banned"


class AuditTargetType(str, Enum):
    """Kinds of objects audit records point at."""

    USER_CREDITS = "user_credits"
    PROVIDER_SECRET = "provider_secret"
    SECURITY_EVENT = "security_event"
    IP_ADDRESS = "ip_address"
    USER = "user"


# ============================================================================
# Credit Models
# ============================================================================


class CreditMutationRequest(BaseModel):
    """POST /admin/credits/mutations request body."""

    user_id: UUID
    kind: OperatorCreditKind
    amount: int = Field(..., description="Credit count, always positive")
    reason: str | None = Field(None, max_length=1000)


class CreditPreviewResponse(BaseModel):
    """Balance-after preview rendered before confirmation."""

    user_id: UUID
    kind: TransactionKind
    current_balance: int
    delta: int
    resulting_balance: int
    reason: str | None
    creates_balance: bool
    summary: list[str]


class BalanceResponse(BaseModel):
    """Current balance for a user."""

    user_id: UUID
    balance: int
    daily_allowance: int
    last_reset_at: datetime | None
    updated_at: datetime


class TransactionItem(BaseModel):
    """Single ledger transaction."""

    id: UUID
    user_id: UUID
    kind: TransactionKind
    signed_amount: int
    balance_before: int
    balance_after: int
    reason: str | None
    actor_id: str
    related_image_id: UUID | None
    created_at: datetime


class TransactionListResponse(BaseModel):
    """Paginated transactions."""

    transactions: list[TransactionItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class MutationResultResponse(BaseModel):
    """Result of an applied credit mutation."""

    user_id: UUID
    transaction_id: UUID
    new_balance: int


# ============================================================================
# Error Models
# ============================================================================


class ErrorDetail(BaseModel):
    """Standard error response detail."""

    detail: str


class ValidationErrorDetail(BaseModel):
    """Validation error location."""

    loc: list[str | int]
    msg: str
    type: str


class ValidationErrorResponse(BaseModel):
    """422 Validation Error response."""

    detail: list[ValidationErrorDetail]
