"""
Disclosure Controller - Timed, re-authenticated reveal of provider secrets.

One controller per open dialog:

    HIDDEN --request_reveal--> PENDING_REAUTH
    PENDING_REAUTH --valid credential--> DECRYPTING --success--> VISIBLE
    PENDING_REAUTH --invalid credential--> PENDING_REAUTH
    DECRYPTING --failure--> HIDDEN
    VISIBLE --countdown ends / hide--> HIDDEN
    ANY --close--> HIDDEN

Plaintext lives only on the controller and only while VISIBLE. The
countdown timer belongs to the controller and every exit path goes
through _teardown(), which cancels it and drops the plaintext.
"""

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from uuid import UUID, uuid4

from opsconsole.config import settings
from opsconsole.db.session import SessionFactory
from opsconsole.exceptions import (
    AuthenticationError,
    ConsoleError,
    DialogNotFoundError,
    OperationInProgressError,
    ValidationError,
)
from opsconsole.models.api import DisclosureState
from opsconsole.models.domain import MaskedSecret, RequestContext, RevealedSecret
from opsconsole.observability.logging import get_logger
from opsconsole.observability.metrics import metrics
from opsconsole.services.crypto import CryptoService
from opsconsole.services.provider_secrets import ProviderSecretService

logger = get_logger(__name__)

ClipboardWriter = Callable[[str], Awaitable[None] | None]


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


# ============================================================================
# Countdown Timer
# ============================================================================


class CountdownTimer:
    """
    Cancellable countdown owned by a single dialog.

    Runs as one asyncio task that wakes every tick and checks its
    cancellation event. on_expire fires at most once, and never after
    cancel() has been called.
    """

    def __init__(
        self,
        duration: float,
        tick: float,
        on_expire: Callable[[], None],
    ) -> None:
        if duration <= 0 or tick <= 0:
            raise ValueError("duration and tick must be positive")
        self.duration = duration
        self.tick = tick
        self._on_expire = on_expire
        self._cancelled = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._deadline: float = 0.0

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("CountdownTimer already started")
        loop = asyncio.get_running_loop()
        self._deadline = loop.time() + self.duration
        self._task = loop.create_task(self._run())

    @property
    def remaining(self) -> float:
        if self._task is None or self._cancelled.is_set():
            return 0.0
        return max(0.0, self._deadline - asyncio.get_running_loop().time())

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done() and not self._cancelled.is_set()

    def cancel(self) -> None:
        """Stop the countdown. Safe to call repeatedly and from on_expire."""
        self._cancelled.set()
        task = self._task
        # The expiry callback runs inside the task; let it finish on its own
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def wait_closed(self) -> None:
        """Wait until the underlying task has finished."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while not self._cancelled.is_set():
            remaining = self._deadline - loop.time()
            if remaining <= 0:
                break
            try:
                await asyncio.wait_for(self._cancelled.wait(), timeout=min(self.tick, remaining))
            except asyncio.TimeoutError:
                continue
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._on_expire()


# ============================================================================
# Disclosure Controller
# ============================================================================


@dataclass(frozen=True)
class DisclosureSnapshot:
    """What the dialog renders. plaintext is set only while VISIBLE."""

    dialog_id: UUID
    provider_id: str
    state: DisclosureState
    masked_preview: str | None
    plaintext: str | None = field(repr=False)
    expires_at: datetime | None
    seconds_remaining: int
    error: str | None


class DisclosureController:
    """Reveal state machine for one dialog instance."""

    def __init__(
        self,
        provider_id: str,
        operator_id: UUID,
        session_factory: SessionFactory,
        crypto: CryptoService | None = None,
        window_seconds: float | None = None,
        tick_seconds: float | None = None,
        context: RequestContext | None = None,
    ) -> None:
        self.dialog_id = uuid4()
        self.provider_id = provider_id
        self.operator_id = operator_id
        self.context = context
        self._session_factory = session_factory
        self._crypto = crypto
        self.window_seconds = window_seconds or settings.disclosure_window_seconds
        self.tick_seconds = tick_seconds or settings.disclosure_tick_seconds

        self.state = DisclosureState.HIDDEN
        self.masked: MaskedSecret | None = None
        self.error: str | None = None
        self.closed = False

        self._plaintext: str | None = None
        self._expires_at: datetime | None = None
        self._timer: CountdownTimer | None = None
        # Bumped on every teardown so late reveal results can be recognised
        self._generation = 0
        self._in_flight = False
        self.last_seen_at = _utc_now()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def open(self) -> MaskedSecret:
        """Load the masked preview shown while HIDDEN."""
        self._ensure_open()
        async with self._session_factory() as session:
            self.masked = await ProviderSecretService(session, self._crypto).get_masked(
                self.provider_id
            )
        return self.masked

    def request_reveal(self) -> DisclosureState:
        """Ask for the operator's credential. A no-op while already VISIBLE."""
        self._ensure_open()
        if self.state == DisclosureState.HIDDEN:
            self.state = DisclosureState.PENDING_REAUTH
            self.error = None
        return self.state

    async def submit_credential(self, credential: str) -> DisclosureState:
        """
        Re-authenticate and decrypt.

        Wrong credential returns to PENDING_REAUTH. Any other failure ends
        in HIDDEN with a generic error. A result that arrives after the
        dialog was hidden or closed is dropped.
        """
        self._ensure_open()
        if self._in_flight or self.state == DisclosureState.DECRYPTING:
            raise OperationInProgressError(f"disclosure:{self.dialog_id}")
        if self.state == DisclosureState.VISIBLE:
            return self.state
        if self.state != DisclosureState.PENDING_REAUTH:
            raise ValidationError("Request a reveal before entering your password")

        generation = self._generation
        self._in_flight = True
        self.state = DisclosureState.DECRYPTING
        self.error = None

        # Shielded so the audit record commits even if this caller goes away
        reveal = asyncio.ensure_future(self._reveal(credential))
        try:
            revealed = await asyncio.shield(reveal)
        except AuthenticationError as e:
            if self._is_current(generation):
                self.state = DisclosureState.PENDING_REAUTH
                self.error = str(e)
            return self.state
        except ConsoleError as e:
            if self._is_current(generation):
                self.state = DisclosureState.HIDDEN
                self.error = str(e)
            return self.state
        except BaseException:
            # Caller cancelled or unexpected failure. The reveal task may still
            # finish; its outcome is retrieved and dropped.
            reveal.add_done_callback(lambda t: t.cancelled() or t.exception())
            if self._is_current(generation):
                self._teardown("reveal_error")
            raise
        finally:
            self._in_flight = False

        if not self._is_current(generation):
            logger.info(
                "secret_reveal_discarded",
                dialog_id=str(self.dialog_id),
                provider_id=self.provider_id,
            )
            return self.state

        self._show(revealed)
        return self.state

    def hide(self) -> DisclosureState:
        """Manual hide. Cancels the countdown and drops the plaintext."""
        self._ensure_open()
        self._teardown("manual_hide")
        return self.state

    async def copy(self, writer: ClipboardWriter) -> bool:
        """
        Best-effort copy of the visible plaintext.

        Never changes state. Returns False if nothing is visible or the
        writer fails.
        """
        if self.closed or self.state != DisclosureState.VISIBLE or self._plaintext is None:
            return False
        try:
            result = writer(self._plaintext)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(
                "secret_copy_failed",
                dialog_id=str(self.dialog_id),
                provider_id=self.provider_id,
                error=type(e).__name__,
            )
            return False
        logger.info(
            "secret_copied",
            dialog_id=str(self.dialog_id),
            provider_id=self.provider_id,
            actor_id=str(self.operator_id),
        )
        return True

    def close(self) -> None:
        """Dialog closed. Idempotent."""
        if self.closed:
            return
        self._teardown("dialog_closed")
        self.closed = True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def seconds_remaining(self) -> int:
        if self.state != DisclosureState.VISIBLE or self._timer is None:
            return 0
        return math.ceil(self._timer.remaining)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and self._timer.active

    @property
    def has_plaintext(self) -> bool:
        return self._plaintext is not None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def snapshot(self) -> DisclosureSnapshot:
        visible = self.state == DisclosureState.VISIBLE
        return DisclosureSnapshot(
            dialog_id=self.dialog_id,
            provider_id=self.provider_id,
            state=self.state,
            masked_preview=self.masked.masked_preview if self.masked else None,
            plaintext=self._plaintext if visible else None,
            expires_at=self._expires_at if visible else None,
            seconds_remaining=self.seconds_remaining,
            error=self.error,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _reveal(self, credential: str) -> RevealedSecret:
        async with self._session_factory() as session:
            service = ProviderSecretService(session, self._crypto)
            return await service.reveal_secret(
                self.provider_id, credential, self.operator_id, self.context
            )

    def _show(self, revealed: RevealedSecret) -> None:
        self._plaintext = revealed.plaintext
        self._expires_at = _utc_now() + timedelta(seconds=self.window_seconds)
        self._timer = CountdownTimer(self.window_seconds, self.tick_seconds, self._on_expired)
        self._timer.start()
        self.state = DisclosureState.VISIBLE
        logger.info(
            "secret_visible",
            dialog_id=str(self.dialog_id),
            provider_id=self.provider_id,
            window_seconds=self.window_seconds,
        )

    def _on_expired(self) -> None:
        self._teardown("window_expired")

    def _teardown(self, reason: str) -> None:
        """Single exit path: cancel the timer, drop plaintext, go HIDDEN."""
        was_visible = self.state == DisclosureState.VISIBLE
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._plaintext = None
        self._expires_at = None
        self.state = DisclosureState.HIDDEN
        if was_visible:
            logger.info(
                "secret_hidden",
                dialog_id=str(self.dialog_id),
                provider_id=self.provider_id,
                reason=reason,
            )

    def _is_current(self, generation: int) -> bool:
        return not self.closed and generation == self._generation

    def _ensure_open(self) -> None:
        if self.closed:
            raise DialogNotFoundError(self.dialog_id)


# ============================================================================
# Registry
# ============================================================================


class DisclosureRegistry:
    """
    Open dialogs keyed by id. Only the operator who opened a dialog can reach it.

    Dialogs left untouched for longer than the idle TTL are closed and dropped
    on the next add or lookup. A dialog with a reveal in flight is kept.
    """

    def __init__(self, idle_ttl_seconds: float | None = None) -> None:
        self._dialogs: dict[UUID, DisclosureController] = {}
        self.idle_ttl_seconds = idle_ttl_seconds or settings.disclosure_idle_ttl_seconds

    def add(self, controller: DisclosureController) -> None:
        self.purge_expired()
        controller.last_seen_at = _utc_now()
        self._dialogs[controller.dialog_id] = controller
        metrics.disclosure_dialogs_open.set(len(self._dialogs))

    def get(self, dialog_id: UUID, operator_id: UUID) -> DisclosureController:
        self.purge_expired()
        controller = self._dialogs.get(dialog_id)
        if controller is None or controller.operator_id != operator_id:
            raise DialogNotFoundError(dialog_id)
        controller.last_seen_at = _utc_now()
        return controller

    def close(self, dialog_id: UUID, operator_id: UUID) -> None:
        controller = self.get(dialog_id, operator_id)
        controller.close()
        self._dialogs.pop(dialog_id, None)
        metrics.disclosure_dialogs_open.set(len(self._dialogs))

    def purge_expired(self) -> int:
        """Close and drop dialogs that are closed or idle past the TTL."""
        cutoff = _utc_now() - timedelta(seconds=self.idle_ttl_seconds)
        stale = [
            did
            for did, c in self._dialogs.items()
            if c.closed or (c.last_seen_at < cutoff and not c.in_flight)
        ]
        for did in stale:
            controller = self._dialogs.pop(did)
            controller.close()
            logger.info(
                "disclosure_dialog_evicted",
                dialog_id=str(did),
                provider_id=controller.provider_id,
            )
        if stale:
            metrics.disclosure_dialogs_open.set(len(self._dialogs))
        return len(stale)

    def close_all(self) -> int:
        """Close every dialog, e.g. on shutdown. Returns how many were open."""
        count = len(self._dialogs)
        for controller in list(self._dialogs.values()):
            controller.close()
        self._dialogs.clear()
        metrics.disclosure_dialogs_open.set(0)
        return count

    def __len__(self) -> int:
        return len(self._dialogs)


# Global registry for the API process
disclosure_registry = DisclosureRegistry()
