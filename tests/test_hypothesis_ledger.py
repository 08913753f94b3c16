"""
Hypothesis Property-Based Tests for the credit ledger.

Domain rules are checked directly; ledger invariants are checked by
replaying generated mutation sequences against a fresh SQLite database.
"""

from uuid import UUID, uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from opsconsole.db.models import Base, CreditTransaction
from opsconsole.exceptions import InsufficientBalanceError, ValidationError
from opsconsole.models.api import TransactionKind
from opsconsole.models.domain import (
    AddCredits,
    CreditPreview,
    DeductCredits,
    build_mutation,
)
from opsconsole.services.ledger import LedgerService

# ============================================================================
# Hypothesis Strategies
# ============================================================================

positive_amounts = st.integers(min_value=1, max_value=1_000_000)
small_amounts = st.integers(min_value=1, max_value=500)
reasons = st.text(min_size=1, max_size=100).filter(lambda x: x.strip())
blank_reasons = st.sampled_from([None, "", " ", "\t", "\n  "])
transaction_kinds = st.sampled_from(list(TransactionKind))


@st.composite
def mutation_steps(draw):
    """(kind, amount) pairs to replay against one user."""
    kind = draw(transaction_kinds)
    return kind, draw(small_amounts)


def make_mutation(user_id: UUID, kind: TransactionKind, amount: int):
    reason = "generated" if kind == TransactionKind.DEDUCT else None
    return build_mutation(kind, user_id, amount, actor_id="hypothesis", reason=reason)


# ============================================================================
# Domain Properties
# ============================================================================


class TestMutationProperties:
    """Validation rules hold for every generated input."""

    @given(kind=transaction_kinds, amount=positive_amounts)
    def test_signed_amount_matches_direction(self, kind: TransactionKind, amount: int) -> None:
        mutation = make_mutation(uuid4(), kind, amount)

        assert abs(mutation.signed_amount) == amount
        assert (mutation.signed_amount < 0) == mutation.is_debit
        assert mutation.kind == kind

    @given(amount=st.integers(max_value=0))
    def test_non_positive_amounts_rejected(self, amount: int) -> None:
        with pytest.raises(ValidationError):
            AddCredits(user_id=uuid4(), amount=amount, actor_id="hypothesis")

    @given(amount=st.integers(min_value=1_000_001, max_value=10**12))
    def test_credit_above_max_rejected(self, amount: int) -> None:
        with pytest.raises(ValidationError):
            AddCredits(user_id=uuid4(), amount=amount, actor_id="hypothesis")

    @given(amount=positive_amounts, reason=blank_reasons)
    def test_deduct_requires_reason(self, amount: int, reason: str | None) -> None:
        with pytest.raises(ValidationError):
            build_mutation(TransactionKind.DEDUCT, uuid4(), amount, "hypothesis", reason=reason)

    @given(amount=positive_amounts, reason=reasons)
    def test_deduct_reason_is_stripped(self, amount: int, reason: str) -> None:
        mutation = build_mutation(
            TransactionKind.DEDUCT, uuid4(), amount, "hypothesis", reason=f"  {reason}  "
        )

        assert mutation.reason == reason.strip()

    @given(balance=st.integers(min_value=0, max_value=10_000), amount=small_amounts)
    def test_preview_never_negative(self, balance: int, amount: int) -> None:
        mutation = DeductCredits(user_id=uuid4(), amount=amount, actor_id="h", reason="r")

        if amount > balance:
            with pytest.raises(ValueError):
                CreditPreview(mutation, balance, 1, False)
        else:
            preview = CreditPreview(mutation, balance, 1, False)
            assert preview.resulting_balance == balance - amount


# ============================================================================
# Ledger Invariants
# ============================================================================


class TestLedgerInvariants:
    """Replay generated sequences and check the stored state after each one."""

    @settings(max_examples=25, deadline=None)
    @given(steps=st.lists(mutation_steps(), min_size=1, max_size=12))
    async def test_balance_equals_transaction_sum(self, steps) -> None:
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        user_id = uuid4()
        expected = 0

        try:
            for kind, amount in steps:
                mutation = make_mutation(user_id, kind, amount)
                async with session_factory() as session:
                    try:
                        result = await LedgerService(session).apply_mutation(mutation)
                    except InsufficientBalanceError:
                        assert mutation.is_debit
                        assert amount > expected
                        continue
                expected += mutation.signed_amount
                assert result.new_balance == expected
                assert result.new_balance >= 0

            async with session_factory() as session:
                service = LedgerService(session)
                deduct_reasons = (
                    await session.execute(
                        select(CreditTransaction.reason).where(
                            CreditTransaction.kind == TransactionKind.DEDUCT.value
                        )
                    )
                ).scalars().all()
                row_count = (
                    await session.execute(select(func.count(CreditTransaction.id)))
                ).scalar_one()

                if row_count:
                    reconciliation = await service.reconcile(user_id)
                    assert reconciliation.is_consistent
                    assert reconciliation.stored_balance == expected
                    assert reconciliation.transaction_count == row_count

            assert all(reason and reason.strip() for reason in deduct_reasons)
        finally:
            await engine.dispose()
