"""
Tests for domain models.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from opsconsole.exceptions import ValidationError
from opsconsole.models.api import AuditAction, TransactionKind
from opsconsole.models.domain import (
    AddCredits,
    BalanceData,
    CreditPreview,
    DailyReset,
    DeductCredits,
    ExpireCredits,
    GenerationCharge,
    LedgerReconciliation,
    RefundCredits,
    RevealedSecret,
    build_mutation,
)


class TestCreditMutations:
    """Tests for the closed set of mutation kinds."""

    @pytest.mark.parametrize(
        "cls,kind,direction",
        [
            (AddCredits, TransactionKind.ADD, 1),
            (RefundCredits, TransactionKind.REFUND, 1),
            (DailyReset, TransactionKind.DAILY_RESET, 1),
            (ExpireCredits, TransactionKind.EXPIRE, -1),
            (GenerationCharge, TransactionKind.GENERATION, -1),
        ],
    )
    def test_kind_and_sign(self, cls, kind, direction):
        mutation = cls(user_id=uuid4(), amount=10, actor_id="op")
        assert mutation.kind == kind
        assert mutation.signed_amount == 10 * direction

    def test_deduct_is_negative_and_confirmed(self):
        mutation = DeductCredits(user_id=uuid4(), amount=40, actor_id="op", reason="refund abuse")
        assert mutation.signed_amount == -40
        assert mutation.requires_confirmation is True
        assert mutation.audit_action == AuditAction.CREDITS_DEDUCTED

    def test_only_deduct_requires_confirmation(self):
        mutation = AddCredits(user_id=uuid4(), amount=40, actor_id="op")
        assert mutation.requires_confirmation is False

    def test_deduct_without_reason(self):
        with pytest.raises(ValidationError) as exc_info:
            DeductCredits(user_id=uuid4(), amount=40, actor_id="op")
        assert exc_info.value.field == "reason"

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True, "10"])
    def test_invalid_amounts(self, amount):
        with pytest.raises(ValidationError) as exc_info:
            AddCredits(user_id=uuid4(), amount=amount, actor_id="op")
        assert exc_info.value.field == "amount"

    def test_credit_maximum(self):
        AddCredits(user_id=uuid4(), amount=1_000_000, actor_id="op")
        with pytest.raises(ValidationError):
            AddCredits(user_id=uuid4(), amount=1_000_001, actor_id="op")

    def test_debits_have_no_fixed_maximum(self):
        """Debits are bounded by the live balance instead."""
        mutation = ExpireCredits(user_id=uuid4(), amount=5_000_000, actor_id="system")
        assert mutation.amount == 5_000_000

    def test_actor_required(self):
        with pytest.raises(ValidationError):
            AddCredits(user_id=uuid4(), amount=1, actor_id="")

    def test_mutations_are_frozen(self):
        mutation = AddCredits(user_id=uuid4(), amount=1, actor_id="op")
        with pytest.raises(AttributeError):
            mutation.amount = 2  # type: ignore[misc]


class TestBuildMutation:
    def test_builds_matching_class(self):
        mutation = build_mutation(TransactionKind.REFUND, uuid4(), 25, "op", reason=" goodwill ")
        assert isinstance(mutation, RefundCredits)
        assert mutation.reason == "goodwill"

    def test_generation_carries_image(self):
        image_id = uuid4()
        mutation = build_mutation(
            TransactionKind.GENERATION, uuid4(), 3, "system", related_image_id=image_id
        )
        assert isinstance(mutation, GenerationCharge)
        assert mutation.related_image_id == image_id

    def test_image_only_for_generation(self):
        with pytest.raises(ValidationError) as exc_info:
            build_mutation(TransactionKind.ADD, uuid4(), 3, "op", related_image_id=uuid4())
        assert exc_info.value.field == "related_image_id"

    def test_blank_deduct_reason(self):
        with pytest.raises(ValidationError):
            build_mutation(TransactionKind.DEDUCT, uuid4(), 3, "op", reason="   ")


class TestCreditPreview:
    def test_summary_for_credit(self):
        user_id = uuid4()
        preview = CreditPreview(
            mutation=AddCredits(user_id=user_id, amount=2500, actor_id="op"),
            current_balance=0,
            balance_version=0,
            creates_balance=True,
        )
        assert preview.resulting_balance == 2500
        assert preview.summary_lines() == [
            f"User: {user_id}",
            "Current Balance: 0 credits",
            "Adding: 2,500 credits",
            "New Balance: 2,500 credits",
        ]

    def test_negative_result_rejected(self):
        with pytest.raises(ValueError):
            CreditPreview(
                mutation=DeductCredits(user_id=uuid4(), amount=51, actor_id="op", reason="x"),
                current_balance=50,
                balance_version=3,
                creates_balance=False,
            )


class TestSnapshots:
    def test_negative_balance_rejected(self):
        now = datetime.now(UTC)
        with pytest.raises(ValueError):
            BalanceData(uuid4(), -1, 0, None, 1, now, now)

    def test_reconciliation_drift(self):
        reconciliation = LedgerReconciliation(
            user_id=uuid4(), stored_balance=110, ledger_sum=100, transaction_count=4
        )
        assert reconciliation.drift == 10
        assert not reconciliation.is_consistent

    def test_revealed_secret_repr_hides_plaintext(self):
        revealed = RevealedSecret("openai", "sk-live-abcdef1234", datetime.now(UTC))
        assert "sk-live-abcdef1234" not in repr(revealed)
