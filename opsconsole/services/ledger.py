"""
Ledger Service - Credit balance mutations with an append-only transaction trail.

NO DICTIONARIES - All operations use strongly typed domain models.

Every mutation is one database transaction:
1. Read the balance fresh (column select, never the identity map)
2. Validate against that value
3. Conditional UPDATE guarded by the row version and the non-negative rule
4. Append the transaction row and one audit record
5. Flush, read back and verify, commit

A zero-row UPDATE means another writer got there first. Unconfirmed
mutations re-read and retry; confirmed ones raise ConcurrencyError so an
operator never commits numbers they did not see.
"""

import time
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from opsconsole.config import settings
from opsconsole.db.models import CreditTransaction, UserBalance
from opsconsole.exceptions import (
    BalanceNotFoundError,
    ConcurrencyError,
    DataIntegrityError,
    InsufficientBalanceError,
    PartialWriteError,
    ValidationError,
    WriteVerificationError,
)
from opsconsole.models.api import AuditAction, AuditTargetType, TransactionKind
from opsconsole.models.domain import (
    BalanceData,
    CreditMutation,
    CreditPreview,
    DailyReset,
    LedgerReconciliation,
    LedgerResult,
    RequestContext,
    TransactionData,
)
from opsconsole.observability.logging import get_logger
from opsconsole.observability.metrics import metrics
from opsconsole.observability.tracing import trace_operation
from opsconsole.services.audit import AuditService

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class _WriteConflict(Exception):
    """The guarded balance write matched no row."""


class LedgerService:
    """
    Credit ledger with server-side atomic balance writes.

    All write operations follow the pattern:
    1. Execute conditional write
    2. Flush to database
    3. Read back and verify
    4. Validate invariants
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger service with database session."""
        self.session = session
        self.audit = AuditService(session)

    # ========================================================================
    # Validation
    # ========================================================================

    async def validate_mutation(self, mutation: CreditMutation) -> CreditPreview:
        """
        Preview a mutation against the current balance. Performs no writes.

        Raises:
            InsufficientBalanceError: a debit larger than the balance
        """
        current = await self._read_balance(mutation.user_id)

        if current is None:
            if mutation.is_debit:
                raise InsufficientBalanceError(balance=0, required=mutation.amount)
            return CreditPreview(
                mutation=mutation, current_balance=0, balance_version=0, creates_balance=True
            )

        balance, version = current
        if mutation.is_debit and mutation.amount > balance:
            raise InsufficientBalanceError(balance=balance, required=mutation.amount)

        return CreditPreview(
            mutation=mutation,
            current_balance=balance,
            balance_version=version,
            creates_balance=False,
        )

    # ========================================================================
    # Mutation
    # ========================================================================

    async def apply_mutation(
        self,
        mutation: CreditMutation,
        expected: CreditPreview | None = None,
        context: RequestContext | None = None,
    ) -> LedgerResult:
        """
        Apply a credit mutation.

        When expected is given (a preview the operator confirmed), the
        balance must still be exactly what that preview showed.

        Raises:
            ValidationError: expected preview belongs to another mutation
            InsufficientBalanceError: debit larger than the fresh balance
            ConcurrencyError: balance moved since the confirmed preview,
                or retries exhausted
            PartialWriteError: failure after the balance write; rolled back
                and escalated to the audit log
        """
        if expected is not None and expected.mutation != mutation:
            raise ValidationError("Confirmed preview does not match the mutation")

        start = time.perf_counter()
        kind = mutation.kind.value

        with trace_operation(
            "ledger.apply_mutation", user_id=str(mutation.user_id), kind=kind
        ) as span:
            for attempt in range(1, settings.ledger_max_retries + 1):
                try:
                    preview = await self.validate_mutation(mutation)
                except InsufficientBalanceError as e:
                    metrics.record_mutation(kind, "rejected", mutation.amount, 0.0)
                    logger.info(
                        "credit_mutation_rejected",
                        user_id=str(mutation.user_id),
                        kind=kind,
                        amount=mutation.amount,
                        balance=e.balance,
                    )
                    raise

                if expected is not None and (
                    preview.current_balance != expected.current_balance
                    or preview.balance_version != expected.balance_version
                ):
                    self._record_conflict(mutation, attempt)
                    raise ConcurrencyError(f"user_credits:{mutation.user_id}")

                try:
                    result = await self._write(preview, context)
                except _WriteConflict:
                    await self.session.rollback()
                    self._record_conflict(mutation, attempt)
                    if expected is not None:
                        raise ConcurrencyError(f"user_credits:{mutation.user_id}")
                    continue

                duration = time.perf_counter() - start
                metrics.record_mutation(kind, "applied", mutation.amount, duration)
                span.set_attribute("new_balance", result.new_balance)
                logger.info(
                    "credit_mutation_applied",
                    user_id=str(mutation.user_id),
                    kind=kind,
                    signed_amount=mutation.signed_amount,
                    balance_before=result.balance_before,
                    new_balance=result.new_balance,
                    transaction_id=str(result.transaction_id),
                    actor_id=mutation.actor_id,
                    attempt=attempt,
                )
                return result

        metrics.record_mutation(kind, "conflict", mutation.amount, time.perf_counter() - start)
        raise ConcurrencyError(f"user_credits:{mutation.user_id}")

    async def apply_preview(
        self, preview: CreditPreview, context: RequestContext | None = None
    ) -> LedgerResult:
        """Apply exactly what a confirmed preview showed."""
        return await self.apply_mutation(preview.mutation, expected=preview, context=context)

    async def _write(self, preview: CreditPreview, context: RequestContext | None) -> LedgerResult:
        mutation = preview.mutation
        user_id = mutation.user_id

        if preview.creates_balance:
            await self._create_balance_row(user_id)

        now = _utc_now()
        values: dict[str, object] = {
            "balance": UserBalance.balance + mutation.signed_amount,
            "version": UserBalance.version + 1,
            "updated_at": now,
        }
        if isinstance(mutation, DailyReset):
            values["last_reset_at"] = now

        stmt = (
            update(UserBalance)
            .where(
                UserBalance.user_id == user_id,
                UserBalance.version == preview.balance_version,
                UserBalance.balance + mutation.signed_amount >= 0,
            )
            .values(**values)
            .returning(UserBalance.balance, UserBalance.version)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            raise _WriteConflict()

        # Balance is written. Anything failing from here on is a partial write.
        stage = "verify_balance"
        try:
            new_balance, new_version = row
            if new_balance != preview.resulting_balance:
                raise DataIntegrityError(
                    f"Balance mismatch: expected {preview.resulting_balance}, got {new_balance}"
                )

            stage = "append_transaction"
            transaction = CreditTransaction(
                id=uuid4(),
                user_id=user_id,
                kind=mutation.kind.value,
                signed_amount=mutation.signed_amount,
                reason=mutation.reason,
                balance_before=preview.current_balance,
                balance_after=new_balance,
                actor_id=mutation.actor_id,
                related_image_id=getattr(mutation, "related_image_id", None),
                created_at=now,
            )
            self.session.add(transaction)

            stage = "append_audit"
            self.audit.record(
                action=mutation.audit_action,
                target_type=AuditTargetType.USER_CREDITS,
                target_id=user_id,
                actor_id=mutation.actor_id,
                old_value=str(preview.current_balance),
                new_value=str(new_balance),
                details={
                    "transaction_id": str(transaction.id),
                    "kind": mutation.kind.value,
                    "amount": str(mutation.amount),
                    "reason": mutation.reason or "",
                },
                context=context,
            )
            await self.session.flush()

            stage = "verify_transaction"
            verified = await self.session.get(CreditTransaction, transaction.id)
            if verified is None:
                raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")
            if verified.balance_after != new_balance:
                raise DataIntegrityError(
                    f"Transaction snapshot mismatch: expected {new_balance}, "
                    f"got {verified.balance_after}"
                )

            stage = "commit"
            await self.session.commit()
            metrics.db_write_verifications_total.labels(success="True").inc()

        except (SQLAlchemyError, WriteVerificationError, DataIntegrityError) as e:
            metrics.db_write_verifications_total.labels(success="False").inc()
            await self._escalate_partial_write(preview, stage, e, context)
            raise PartialWriteError(user_id=user_id, stage=stage, cause=str(e)) from e

        return LedgerResult(
            transaction_id=verified.id,
            user_id=user_id,
            kind=mutation.kind,
            balance_before=preview.current_balance,
            new_balance=new_balance,
            created_at=verified.created_at,
        )

    async def _create_balance_row(self, user_id: UUID) -> None:
        """Insert an empty balance row. A concurrent insert counts as a conflict."""
        self.session.add(UserBalance(user_id=user_id, balance=0, version=0))
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning("balance_row_creation_race", user_id=str(user_id), error=str(e))
            raise _WriteConflict() from e

    async def _escalate_partial_write(
        self,
        preview: CreditPreview,
        stage: str,
        error: Exception,
        context: RequestContext | None,
    ) -> None:
        """Roll back, then record the failed write in its own transaction."""
        mutation = preview.mutation
        metrics.ledger_partial_writes_total.inc()
        metrics.record_error(type(error).__name__, "ledger_apply_mutation")
        logger.error(
            "ledger_partial_write",
            user_id=str(mutation.user_id),
            kind=mutation.kind.value,
            amount=mutation.amount,
            stage=stage,
            balance_before=preview.current_balance,
            expected_balance=preview.resulting_balance,
            actor_id=mutation.actor_id,
            error=str(error),
            exc_info=True,
        )

        await self.session.rollback()
        self.audit.record(
            action=AuditAction.LEDGER_WRITE_FAILED,
            target_type=AuditTargetType.USER_CREDITS,
            target_id=mutation.user_id,
            actor_id=mutation.actor_id,
            old_value=str(preview.current_balance),
            new_value=str(preview.resulting_balance),
            details={
                "kind": mutation.kind.value,
                "amount": str(mutation.amount),
                "stage": stage,
                "error": type(error).__name__,
            },
            context=context,
        )
        try:
            await self.session.commit()
        except SQLAlchemyError as audit_error:
            await self.session.rollback()
            logger.critical(
                "ledger_partial_write_escalation_failed",
                user_id=str(mutation.user_id),
                stage=stage,
                error=str(audit_error),
            )

    def _record_conflict(self, mutation: CreditMutation, attempt: int) -> None:
        metrics.ledger_write_conflicts_total.inc()
        logger.warning(
            "ledger_write_conflict",
            user_id=str(mutation.user_id),
            kind=mutation.kind.value,
            attempt=attempt,
        )

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_balance(self, user_id: UUID) -> BalanceData:
        """Get the current balance row, bypassing any cached instance."""
        stmt = (
            select(UserBalance)
            .where(UserBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        row = (await self.session.execute(stmt)).scalar_one_or_none()
        if row is None:
            raise BalanceNotFoundError(user_id)
        return self._balance_to_domain(row)

    async def list_transactions(
        self,
        user_id: UUID | None = None,
        kind: TransactionKind | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[TransactionData], int]:
        """List transactions newest first. Returns (transactions, total)."""
        stmt = select(CreditTransaction)
        if user_id is not None:
            stmt = stmt.where(CreditTransaction.user_id == user_id)
        if kind is not None:
            stmt = stmt.where(CreditTransaction.kind == kind.value)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._transaction_to_domain(row) for row in rows], total

    async def reconcile(self, user_id: UUID) -> LedgerReconciliation:
        """Compare the stored balance with the sum of its transactions."""
        current = await self._read_balance(user_id)
        if current is None:
            raise BalanceNotFoundError(user_id)

        stmt = select(
            func.coalesce(func.sum(CreditTransaction.signed_amount), 0),
            func.count(CreditTransaction.id),
        ).where(CreditTransaction.user_id == user_id)
        ledger_sum, count = (await self.session.execute(stmt)).one()

        reconciliation = LedgerReconciliation(
            user_id=user_id,
            stored_balance=current[0],
            ledger_sum=int(ledger_sum),
            transaction_count=int(count),
        )
        if not reconciliation.is_consistent:
            logger.warning(
                "ledger_drift_detected",
                user_id=str(user_id),
                stored_balance=reconciliation.stored_balance,
                ledger_sum=reconciliation.ledger_sum,
                drift=reconciliation.drift,
            )
        return reconciliation

    async def reconcile_all(self) -> list[LedgerReconciliation]:
        """Reconcile every balance row in one grouped query."""
        totals = (
            select(
                CreditTransaction.user_id.label("user_id"),
                func.sum(CreditTransaction.signed_amount).label("ledger_sum"),
                func.count(CreditTransaction.id).label("tx_count"),
            )
            .group_by(CreditTransaction.user_id)
            .subquery()
        )
        stmt = (
            select(
                UserBalance.user_id,
                UserBalance.balance,
                func.coalesce(totals.c.ledger_sum, 0),
                func.coalesce(totals.c.tx_count, 0),
            )
            .outerjoin(totals, totals.c.user_id == UserBalance.user_id)
            .order_by(UserBalance.user_id)
        )
        rows = (await self.session.execute(stmt)).all()
        return [
            LedgerReconciliation(
                user_id=user_id,
                stored_balance=balance,
                ledger_sum=int(ledger_sum),
                transaction_count=int(tx_count),
            )
            for user_id, balance, ledger_sum, tx_count in rows
        ]

    # ========================================================================
    # Helpers
    # ========================================================================

    async def _read_balance(self, user_id: UUID) -> tuple[int, int] | None:
        """Fresh (balance, version) straight from the database."""
        stmt = select(UserBalance.balance, UserBalance.version).where(
            UserBalance.user_id == user_id
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return int(row[0]), int(row[1])

    def _balance_to_domain(self, row: UserBalance) -> BalanceData:
        return BalanceData(
            user_id=row.user_id,
            balance=row.balance,
            daily_allowance=row.daily_allowance,
            last_reset_at=row.last_reset_at,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _transaction_to_domain(self, row: CreditTransaction) -> TransactionData:
        return TransactionData(
            transaction_id=row.id,
            user_id=row.user_id,
            kind=TransactionKind(row.kind),
            signed_amount=row.signed_amount,
            balance_before=row.balance_before,
            balance_after=row.balance_after,
            reason=row.reason,
            actor_id=row.actor_id,
            related_image_id=row.related_image_id,
            created_at=row.created_at,
        )
