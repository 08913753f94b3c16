"""
Confirmation Gate - Type-the-word barrier in front of destructive actions.

The gate never computes anything. Callers hand it the word to type, a
preview to show and the action to release. The action fires only when the
typed text, stripped of surrounding whitespace, equals the word exactly.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from opsconsole.config import settings
from opsconsole.exceptions import (
    ConfirmationNotFoundError,
    InsufficientBalanceError,
    OperationInProgressError,
    ValidationError,
)
from opsconsole.observability.logging import get_logger
from opsconsole.observability.metrics import metrics

logger = get_logger(__name__)

DEDUCT_CONFIRM_WORD = "DEDUCT"
ROTATE_CONFIRM_WORD = "ROTATE"

ConfirmationAction = Callable[[], Awaitable[Any]]

# Errors the operator can fix by editing input; the gate stays open for them
RECOVERABLE_ERRORS = (ValidationError, InsufficientBalanceError)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class ConfirmationOutcome(str, Enum):
    """Result of a confirmation attempt."""

    CONFIRMED = "confirmed"
    MISMATCH = "mismatch"
    CANCELLED = "cancelled"


@dataclass
class PendingConfirmation:
    """An action waiting for its confirmation word."""

    confirmation_id: UUID
    expected_word: str
    owner_id: UUID
    summary: list[str]
    payload: Any = field(repr=False)
    action: ConfirmationAction = field(repr=False)
    created_at: datetime = field(default_factory=_utc_now)
    expires_at: datetime = field(default_factory=_utc_now)
    in_flight: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of submit(). result holds the action's return value when confirmed."""

    confirmation_id: UUID
    outcome: ConfirmationOutcome
    result: Any = None
    message: str | None = None


class ConfirmationGate:
    """Holds pending confirmations until they are confirmed, cancelled or expire."""

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self.ttl = timedelta(seconds=ttl_seconds or settings.confirmation_ttl_seconds)
        self._pending: dict[UUID, PendingConfirmation] = {}

    def require(
        self,
        expected_word: str,
        payload: Any,
        summary: list[str],
        action: ConfirmationAction,
        owner_id: UUID,
    ) -> PendingConfirmation:
        """Register an action behind a confirmation word."""
        if not expected_word or expected_word != expected_word.strip():
            raise ValueError("expected_word must be a non-empty word without surrounding spaces")

        self.purge_expired()
        now = _utc_now()
        pending = PendingConfirmation(
            confirmation_id=uuid4(),
            expected_word=expected_word,
            owner_id=owner_id,
            summary=list(summary),
            payload=payload,
            action=action,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._pending[pending.confirmation_id] = pending
        logger.info(
            "confirmation_required",
            confirmation_id=str(pending.confirmation_id),
            expected_word=expected_word,
            owner_id=str(owner_id),
        )
        return pending

    def get(self, confirmation_id: UUID, owner_id: UUID) -> PendingConfirmation:
        pending = self._pending.get(confirmation_id)
        if pending is None or pending.owner_id != owner_id:
            raise ConfirmationNotFoundError(confirmation_id)
        if pending.is_expired(_utc_now()) and not pending.in_flight:
            self._pending.pop(confirmation_id, None)
            metrics.record_confirmation("expired")
            raise ConfirmationNotFoundError(confirmation_id)
        return pending

    async def submit(
        self, confirmation_id: UUID, typed_text: str, owner_id: UUID
    ) -> ConfirmationResult:
        """
        Release the action if the typed text matches.

        A mismatch keeps the gate open. ValidationError and
        InsufficientBalanceError from the action keep it open and are
        re-raised; any other error closes it and propagates.
        """
        pending = self.get(confirmation_id, owner_id)
        if pending.in_flight:
            raise OperationInProgressError(f"confirmation:{confirmation_id}")

        if (typed_text or "").strip() != pending.expected_word:
            metrics.record_confirmation("mismatch")
            return ConfirmationResult(
                confirmation_id=confirmation_id,
                outcome=ConfirmationOutcome.MISMATCH,
                message=f'Type "{pending.expected_word}" to confirm',
            )

        pending.in_flight = True
        try:
            result = await pending.action()
        except RECOVERABLE_ERRORS as e:
            pending.in_flight = False
            metrics.record_confirmation("action_rejected")
            logger.info(
                "confirmation_action_rejected",
                confirmation_id=str(confirmation_id),
                error=str(e),
            )
            raise
        except BaseException:
            self._pending.pop(confirmation_id, None)
            metrics.record_confirmation("action_failed")
            raise

        self._pending.pop(confirmation_id, None)
        metrics.record_confirmation("confirmed")
        logger.info("confirmation_completed", confirmation_id=str(confirmation_id))
        return ConfirmationResult(
            confirmation_id=confirmation_id,
            outcome=ConfirmationOutcome.CONFIRMED,
            result=result,
        )

    def cancel(self, confirmation_id: UUID, owner_id: UUID) -> ConfirmationResult:
        """Discard the pending action and its preview."""
        pending = self.get(confirmation_id, owner_id)
        if pending.in_flight:
            raise OperationInProgressError(f"confirmation:{confirmation_id}")
        self._pending.pop(confirmation_id, None)
        metrics.record_confirmation("cancelled")
        logger.info("confirmation_cancelled", confirmation_id=str(confirmation_id))
        return ConfirmationResult(
            confirmation_id=confirmation_id, outcome=ConfirmationOutcome.CANCELLED
        )

    def purge_expired(self) -> int:
        """Drop expired confirmations that are not running."""
        now = _utc_now()
        expired = [
            cid for cid, p in self._pending.items() if p.is_expired(now) and not p.in_flight
        ]
        for cid in expired:
            del self._pending[cid]
        return len(expired)

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)


# Global gate for the API process
confirmation_gate = ConfirmationGate()
