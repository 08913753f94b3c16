"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.

Credit mutations form a closed set: one frozen dataclass per transaction
kind, each carrying exactly the fields that kind needs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar
from uuid import UUID

from opsconsole.config import settings
from opsconsole.exceptions import ValidationError
from opsconsole.models.api import AuditAction, IncidentSeverity, TransactionKind

SYSTEM_ACTOR = "system"


def _validate_amount(amount: int, upper: int | None) -> None:
    """Amounts are whole credits within the configured range."""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Amount must be a whole number of credits", field="amount")
    if amount < settings.credit_min_amount:
        raise ValidationError(
            f"Amount must be at least {settings.credit_min_amount}", field="amount"
        )
    if upper is not None and amount > upper:
        raise ValidationError(f"Amount cannot exceed {upper:,}", field="amount")


# ============================================================================
# Credit Mutations
# ============================================================================


@dataclass(frozen=True)
class _CreditMutation:
    """Fields shared by every mutation kind."""

    user_id: UUID
    amount: int
    actor_id: str

    kind: ClassVar[TransactionKind]
    audit_action: ClassVar[AuditAction]
    # +1 credits the balance, -1 debits it
    direction: ClassVar[int]
    requires_confirmation: ClassVar[bool] = False

    def __post_init__(self) -> None:
        """Validate amount and actor."""
        # Debits are bounded by the live balance, checked by the ledger
        upper = settings.credit_max_amount if self.direction > 0 else None
        _validate_amount(self.amount, upper)
        if not self.actor_id:
            raise ValidationError("actor_id cannot be empty", field="actor_id")

    @property
    def signed_amount(self) -> int:
        """Amount with the sign this kind applies to the balance."""
        return self.direction * self.amount

    @property
    def is_debit(self) -> bool:
        return self.direction < 0


@dataclass(frozen=True)
class AddCredits(_CreditMutation):
    """Operator grant of credits."""

    reason: str | None = None

    kind: ClassVar[TransactionKind] = TransactionKind.ADD
    audit_action: ClassVar[AuditAction] = AuditAction.CREDITS_ADDED
    direction: ClassVar[int] = 1


@dataclass(frozen=True)
class RefundCredits(_CreditMutation):
    """Return of previously spent credits."""

    reason: str | None = None

    kind: ClassVar[TransactionKind] = TransactionKind.REFUND
    audit_action: ClassVar[AuditAction] = AuditAction.CREDITS_REFUNDED
    direction: ClassVar[int] = 1


@dataclass(frozen=True)
class DeductCredits(_CreditMutation):
    """Operator removal of credits. Always needs a reason and typed confirmation."""

    reason: str = ""

    kind: ClassVar[TransactionKind] = TransactionKind.DEDUCT
    audit_action: ClassVar[AuditAction] = AuditAction.CREDITS_DEDUCTED
    direction: ClassVar[int] = -1
    requires_confirmation: ClassVar[bool] = True

    def __post_init__(self) -> None:
        """Deductions must say why."""
        super().__post_init__()
        if not self.reason or not self.reason.strip():
            raise ValidationError("A reason is required to deduct credits", field="reason")


@dataclass(frozen=True)
class ExpireCredits(_CreditMutation):
    """Removal of credits that passed their validity period."""

    reason: str | None = None

    kind: ClassVar[TransactionKind] = TransactionKind.EXPIRE
    audit_action: ClassVar[AuditAction] = AuditAction.CREDITS_EXPIRED
    direction: ClassVar[int] = -1


@dataclass(frozen=True)
class DailyReset(_CreditMutation):
    """Daily allowance grant. Also stamps last_reset_at on the balance."""

    reason: str | None = None

    kind: ClassVar[TransactionKind] = TransactionKind.DAILY_RESET
    audit_action: ClassVar[AuditAction] = AuditAction.DAILY_CREDITS_RESET
    direction: ClassVar[int] = 1


@dataclass(frozen=True)
class GenerationCharge(_CreditMutation):
    """Credits consumed by an image generation."""

    related_image_id: UUID | None = None
    reason: str | None = None

    kind: ClassVar[TransactionKind] = TransactionKind.GENERATION
    audit_action: ClassVar[AuditAction] = AuditAction.GENERATION_CHARGED
    direction: ClassVar[int] = -1


CreditMutation = (
    AddCredits | RefundCredits | DeductCredits | ExpireCredits | DailyReset | GenerationCharge
)

_MUTATION_TYPES: dict[TransactionKind, type[_CreditMutation]] = {
    cls.kind: cls
    for cls in (AddCredits, RefundCredits, DeductCredits, ExpireCredits, DailyReset, GenerationCharge)
}


def build_mutation(
    kind: TransactionKind,
    user_id: UUID,
    amount: int,
    actor_id: str,
    reason: str | None = None,
    related_image_id: UUID | None = None,
) -> CreditMutation:
    """Build the mutation dataclass for a transaction kind from request fields."""
    cls = _MUTATION_TYPES[kind]
    reason = reason.strip() if reason else None
    if cls is GenerationCharge:
        return GenerationCharge(
            user_id=user_id,
            amount=amount,
            actor_id=actor_id,
            related_image_id=related_image_id,
            reason=reason,
        )
    if related_image_id is not None:
        raise ValidationError(
            "related_image_id only applies to generation charges", field="related_image_id"
        )
    if cls is DeductCredits:
        return DeductCredits(user_id=user_id, amount=amount, actor_id=actor_id, reason=reason or "")
    return cls(user_id=user_id, amount=amount, actor_id=actor_id, reason=reason)  # type: ignore[call-arg,return-value]


@dataclass(frozen=True)
class CreditPreview:
    """
    Validated outcome of a mutation against a freshly read balance.

    The confirmation summary and the persisted values both come from here.
    """

    mutation: CreditMutation
    current_balance: int
    balance_version: int
    creates_balance: bool

    def __post_init__(self) -> None:
        """A preview never describes a negative balance."""
        if self.resulting_balance < 0:
            raise ValueError(f"Resulting balance cannot be negative: {self.resulting_balance}")

    @property
    def user_id(self) -> UUID:
        return self.mutation.user_id

    @property
    def delta(self) -> int:
        return self.mutation.signed_amount

    @property
    def resulting_balance(self) -> int:
        return self.current_balance + self.delta

    def summary_lines(self) -> list[str]:
        """Human readable lines shown in the confirmation dialog."""
        verb = "Deducting" if self.mutation.is_debit else "Adding"
        lines = [
            f"User: {self.user_id}",
            f"Current Balance: {self.current_balance:,} credits",
            f"{verb}: {self.mutation.amount:,} credits",
            f"New Balance: {self.resulting_balance:,} credits",
        ]
        if self.mutation.reason:
            lines.append(f"Reason: {self.mutation.reason}")
        return lines


# ============================================================================
# Ledger Snapshots
# ============================================================================


@dataclass(frozen=True)
class BalanceData:
    """Immutable balance snapshot."""

    user_id: UUID
    balance: int
    daily_allowance: int
    last_reset_at: datetime | None
    version: int
    created_at: datetime
    updated_at: datetime

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.balance < 0:
            raise ValueError(f"Balance cannot be negative: {self.balance}")


@dataclass(frozen=True)
class TransactionData:
    """Immutable ledger transaction after persistence."""

    transaction_id: UUID
    user_id: UUID
    kind: TransactionKind
    signed_amount: int
    balance_before: int
    balance_after: int
    reason: str | None
    actor_id: str
    related_image_id: UUID | None
    created_at: datetime


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of an applied mutation."""

    transaction_id: UUID
    user_id: UUID
    kind: TransactionKind
    balance_before: int
    new_balance: int
    created_at: datetime


@dataclass(frozen=True)
class LedgerReconciliation:
    """Stored balance compared with the sum of its transactions."""

    user_id: UUID
    stored_balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def drift(self) -> int:
        return self.stored_balance - self.ledger_sum

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


# ============================================================================
# Provider Secrets
# ============================================================================


@dataclass(frozen=True)
class RequestContext:
    """Where an operator request came from."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class MaskedSecret:
    """What the console may show without decrypting."""

    provider_id: str
    masked_preview: str
    encrypted_at: datetime
    updated_by: str | None


@dataclass(frozen=True)
class RevealedSecret:
    """Decrypted secret. Plaintext is kept out of repr so it never reaches logs."""

    provider_id: str
    plaintext: str = field(repr=False)
    revealed_at: datetime


@dataclass(frozen=True)
class RotatedSecret:
    """Result of storing a new secret."""

    provider_id: str
    ciphertext: str = field(repr=False)
    masked_preview: str
    encrypted_at: datetime


# ============================================================================
# Audit and Incidents
# ============================================================================


@dataclass(frozen=True)
class AuditRecordData:
    """Immutable audit log entry."""

    record_id: UUID
    actor_id: str | None
    action: str
    target_type: str
    target_id: str | None
    old_value: str | None
    new_value: str | None
    details: dict[str, str] | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime


@dataclass(frozen=True)
class IncidentData:
    """Security incident snapshot."""

    incident_id: UUID
    event_type: str
    severity: IncidentSeverity
    description: str
    user_id: UUID | None
    ip_address: str | None
    resolved: bool
    resolved_at: datetime | None
    resolved_by: str | None
    resolution_notes: str | None
    created_at: datetime


@dataclass(frozen=True)
class IncidentStats:
    """Incident counters shown above the incident table."""

    total: int
    unresolved: int
    critical_unresolved: int
    last_24h: int
    blocked_ips: int = 0


@dataclass(frozen=True)
class BlockedIp:
    """Address added to the blocklist from an incident."""

    ip_address: str
    reason: str
    notes: str | None
    blocked_by: str
    incident_id: UUID
    created_at: datetime


@dataclass(frozen=True)
class BannedUser:
    """User banned from an incident."""

    user_id: UUID
    ban_reason: str
    banned_by: str
    incident_id: UUID
    banned_at: datetime
