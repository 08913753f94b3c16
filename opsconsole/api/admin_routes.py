"""
Admin API routes for the operator console.

Protected by JWT authentication.
Read routes accept admin and viewer roles; anything that changes credits,
secrets or incidents requires the admin role.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from opsconsole.api.admin_dependencies import (
    get_confirmation_gate,
    get_current_admin,
    get_disclosure_registry,
    get_request_context,
    require_admin_role,
)
from opsconsole.db.models import AdminUser
from opsconsole.db.session import SessionFactory, get_read_db, get_session_factory, get_write_db
from opsconsole.exceptions import (
    BalanceNotFoundError,
    ConcurrencyError,
    ConfirmationNotFoundError,
    DataIntegrityError,
    DialogNotFoundError,
    IncidentNotFoundError,
    InsufficientBalanceError,
    OperationInProgressError,
    PartialWriteError,
    SecretNotFoundError,
    ValidationError,
    WriteVerificationError,
)
from opsconsole.models.api import (
    BalanceResponse,
    CreditMutationRequest,
    CreditPreviewResponse,
    DisclosureState,
    IncidentSeverity,
    IncidentStatus,
    MutationResultResponse,
    TransactionItem,
    TransactionKind,
    TransactionListResponse,
)
from opsconsole.models.domain import (
    CreditPreview,
    IncidentData,
    LedgerResult,
    MaskedSecret,
    RequestContext,
    build_mutation,
)
from opsconsole.services.audit import AuditService
from opsconsole.services.confirmation import (
    DEDUCT_CONFIRM_WORD,
    ROTATE_CONFIRM_WORD,
    ConfirmationGate,
    ConfirmationOutcome,
    PendingConfirmation,
)
from opsconsole.services.crypto import mask_secret
from opsconsole.services.disclosure import (
    DisclosureController,
    DisclosureRegistry,
    DisclosureSnapshot,
)
from opsconsole.services.incidents import IncidentService
from opsconsole.services.ledger import LedgerService
from opsconsole.services.provider_secrets import ProviderSecretService

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Request/Response Models
# ============================================================================


class ReconciliationResponse(BaseModel):
    """Stored balance compared with its transaction history."""

    user_id: UUID
    stored_balance: int
    ledger_sum: int
    transaction_count: int
    drift: int
    is_consistent: bool


class PendingConfirmationResponse(BaseModel):
    """Action waiting for its confirmation word (202)."""

    confirmation_id: UUID
    expected_word: str
    summary: list[str]
    expires_at: datetime


class ConfirmRequest(BaseModel):
    """Typed confirmation word."""

    typed_text: str = Field(..., max_length=64)


class SecretResponse(BaseModel):
    """Masked provider secret. Never carries plaintext."""

    provider_id: str
    masked_preview: str
    encrypted_at: datetime
    updated_by: str | None = None


class ConfirmationResponse(BaseModel):
    """Outcome of a confirmation submit or cancel."""

    confirmation_id: UUID
    outcome: ConfirmationOutcome
    message: str | None = None
    result: MutationResultResponse | SecretResponse | None = None


class RotateSecretRequest(BaseModel):
    """New value for a provider secret."""

    secret: str = Field(..., min_length=1, max_length=4096)


class CredentialRequest(BaseModel):
    """Operator password for re-authentication."""

    credential: str = Field(..., min_length=1, max_length=1024)


class DialogResponse(BaseModel):
    """Disclosure dialog state. plaintext is only present while visible."""

    dialog_id: UUID
    provider_id: str
    state: DisclosureState
    masked_preview: str | None
    plaintext: str | None
    expires_at: datetime | None
    seconds_remaining: int
    error: str | None


class IncidentResponse(BaseModel):
    """Security incident."""

    id: UUID
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


class IncidentListResponse(BaseModel):
    """Paginated incidents."""

    incidents: list[IncidentResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class IncidentStatsResponse(BaseModel):
    """Incident counters."""

    total: int
    unresolved: int
    critical_unresolved: int
    last_24h: int
    blocked_ips: int


class ResolveIncidentRequest(BaseModel):
    """Resolution notes. Required for high and critical incidents."""

    notes: str | None = Field(None, max_length=5000)


class ReopenIncidentRequest(BaseModel):
    """Why a resolved incident is being reopened."""

    reason: str | None = Field(None, max_length=5000)


class BlockIpRequest(BaseModel):
    """Optional notes stored with the block."""

    notes: str | None = Field(None, max_length=5000)


class BlockIpResponse(BaseModel):
    """Address added to the blocklist."""

    ip_address: str
    reason: str
    notes: str | None
    blocked_by: str
    incident_id: UUID
    created_at: datetime


class BanUserRequest(BaseModel):
    """Optional ban reason shown to support staff."""

    reason: str | None = Field(None, max_length=5000)


class BanUserResponse(BaseModel):
    """User banned from an incident."""

    user_id: UUID
    ban_reason: str
    banned_by: str
    incident_id: UUID
    banned_at: datetime


class AuditLogResponse(BaseModel):
    """Single audit record."""

    id: UUID
    actor_id: str | None
    action: str
    target_type: str
    target_id: str | None
    old_value: str | None
    new_value: str | None
    details: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Paginated audit records."""

    records: list[AuditLogResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============================================================================
# Helpers
# ============================================================================


def _total_pages(total: int, page_size: int) -> int:
    return (total + page_size - 1) // page_size


def _preview_response(preview: CreditPreview) -> CreditPreviewResponse:
    return CreditPreviewResponse(
        user_id=preview.user_id,
        kind=preview.mutation.kind,
        current_balance=preview.current_balance,
        delta=preview.delta,
        resulting_balance=preview.resulting_balance,
        reason=preview.mutation.reason,
        creates_balance=preview.creates_balance,
        summary=preview.summary_lines(),
    )


def _mutation_response(result: LedgerResult) -> MutationResultResponse:
    return MutationResultResponse(
        user_id=result.user_id,
        transaction_id=result.transaction_id,
        new_balance=result.new_balance,
    )


def _pending_response(pending: PendingConfirmation) -> PendingConfirmationResponse:
    return PendingConfirmationResponse(
        confirmation_id=pending.confirmation_id,
        expected_word=pending.expected_word,
        summary=pending.summary,
        expires_at=pending.expires_at,
    )


def _secret_response(secret: MaskedSecret) -> SecretResponse:
    return SecretResponse(
        provider_id=secret.provider_id,
        masked_preview=secret.masked_preview,
        encrypted_at=secret.encrypted_at,
        updated_by=secret.updated_by,
    )


def _dialog_response(snapshot: DisclosureSnapshot) -> DialogResponse:
    return DialogResponse(
        dialog_id=snapshot.dialog_id,
        provider_id=snapshot.provider_id,
        state=snapshot.state,
        masked_preview=snapshot.masked_preview,
        plaintext=snapshot.plaintext,
        expires_at=snapshot.expires_at,
        seconds_remaining=snapshot.seconds_remaining,
        error=snapshot.error,
    )


def _get_dialog(
    registry: DisclosureRegistry, dialog_id: UUID, admin: AdminUser
) -> DisclosureController:
    try:
        return registry.get(dialog_id, admin.id)
    except DialogNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


# ============================================================================
# Credits
# ============================================================================


@router.get("/credits/transactions", response_model=TransactionListResponse)
async def list_transactions(
    user_id: UUID | None = Query(None, description="Filter by user"),
    kind: TransactionKind | None = Query(None, description="Filter by transaction kind"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),  # Both admin and viewer can view
) -> TransactionListResponse:
    """
    List ledger transactions, newest first.

    Accessible by: admin, viewer
    """
    transactions, total = await LedgerService(db).list_transactions(
        user_id=user_id, kind=kind, page=page, page_size=page_size
    )
    return TransactionListResponse(
        transactions=[
            TransactionItem(
                id=tx.transaction_id,
                user_id=tx.user_id,
                kind=tx.kind,
                signed_amount=tx.signed_amount,
                balance_before=tx.balance_before,
                balance_after=tx.balance_after,
                reason=tx.reason,
                actor_id=tx.actor_id,
                related_image_id=tx.related_image_id,
                created_at=tx.created_at,
            )
            for tx in transactions
        ],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=_total_pages(total, page_size),
    )


@router.get("/credits/{user_id}", response_model=BalanceResponse)
async def get_balance(
    user_id: UUID,
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),
) -> BalanceResponse:
    """
    Current balance for a user.

    Accessible by: admin, viewer
    """
    try:
        balance = await LedgerService(db).get_balance(user_id)
    except BalanceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return BalanceResponse(
        user_id=balance.user_id,
        balance=balance.balance,
        daily_allowance=balance.daily_allowance,
        last_reset_at=balance.last_reset_at,
        updated_at=balance.updated_at,
    )


@router.get("/credits/{user_id}/reconciliation", response_model=ReconciliationResponse)
async def reconcile_balance(
    user_id: UUID,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(get_current_admin),
) -> ReconciliationResponse:
    """
    Compare a stored balance with the sum of its transactions.

    Reads the primary so the balance and the history are consistent.
    Accessible by: admin, viewer
    """
    try:
        reconciliation = await LedgerService(db).reconcile(user_id)
    except BalanceNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    return ReconciliationResponse(
        user_id=reconciliation.user_id,
        stored_balance=reconciliation.stored_balance,
        ledger_sum=reconciliation.ledger_sum,
        transaction_count=reconciliation.transaction_count,
        drift=reconciliation.drift,
        is_consistent=reconciliation.is_consistent,
    )


@router.post("/credits/preview", response_model=CreditPreviewResponse)
async def preview_mutation(
    request: CreditMutationRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
) -> CreditPreviewResponse:
    """
    Validate a credit mutation against the live balance. Writes nothing.

    Accessible by: admin only
    """
    try:
        mutation = build_mutation(
            kind=request.kind.transaction_kind,
            user_id=request.user_id,
            amount=request.amount,
            actor_id=str(admin.id),
            reason=request.reason,
        )
        preview = await LedgerService(db).validate_mutation(mutation)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except InsufficientBalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return _preview_response(preview)


@router.post(
    "/credits/mutations",
    response_model=MutationResultResponse | PendingConfirmationResponse,
)
async def create_mutation(
    request: CreditMutationRequest,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> MutationResultResponse | PendingConfirmationResponse:
    """
    Apply a credit mutation.

    Deductions are not applied here. They return 202 with a pending
    confirmation; the operator types DEDUCT to commit exactly the previewed
    numbers through POST /admin/confirmations/{id}. Only add, refund and
    deduct are accepted; expiry, daily resets and generation charges are
    written by the system and are rejected with 422.

    Accessible by: admin only
    """
    service = LedgerService(db)

    try:
        mutation = build_mutation(
            kind=request.kind.transaction_kind,
            user_id=request.user_id,
            amount=request.amount,
            actor_id=str(admin.id),
            reason=request.reason,
        )

        if mutation.requires_confirmation:
            preview = await service.validate_mutation(mutation)

            async def apply_confirmed() -> MutationResultResponse:
                async with session_factory() as session:
                    result = await LedgerService(session).apply_preview(preview, context)
                return _mutation_response(result)

            pending = gate.require(
                expected_word=DEDUCT_CONFIRM_WORD,
                payload=preview,
                summary=preview.summary_lines(),
                action=apply_confirmed,
                owner_id=admin.id,
            )
            response.status_code = status.HTTP_202_ACCEPTED
            return _pending_response(pending)

        result = await service.apply_mutation(mutation, context=context)

    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    except InsufficientBalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    except ConcurrencyError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    except (PartialWriteError, WriteVerificationError, DataIntegrityError) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Ledger write failed and was rolled back",
        ) from e

    logger.info(
        "admin_credit_mutation",
        admin_email=admin.email,
        user_id=str(result.user_id),
        kind=result.kind.value,
        new_balance=result.new_balance,
    )
    return _mutation_response(result)


# ============================================================================
# Confirmations
# ============================================================================


@router.get("/confirmations/{confirmation_id}", response_model=PendingConfirmationResponse)
async def get_confirmation(
    confirmation_id: UUID,
    admin: AdminUser = Depends(require_admin_role),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
) -> PendingConfirmationResponse:
    """Pending confirmation with its preview summary."""
    try:
        pending = gate.get(confirmation_id, admin.id)
    except ConfirmationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return _pending_response(pending)


@router.post("/confirmations/{confirmation_id}", response_model=ConfirmationResponse)
async def submit_confirmation(
    confirmation_id: UUID,
    body: ConfirmRequest,
    admin: AdminUser = Depends(require_admin_role),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
) -> ConfirmationResponse:
    """
    Submit the typed confirmation word.

    A wrong word returns outcome "mismatch" and the confirmation stays open.
    Accessible by: admin only
    """
    try:
        result = await gate.submit(confirmation_id, body.typed_text, admin.id)

    except ConfirmationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    except OperationInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    except InsufficientBalanceError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    except ConcurrencyError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Balance changed since the preview. Review the new values and retry.",
        ) from e

    except (PartialWriteError, WriteVerificationError, DataIntegrityError) as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Write failed and was rolled back",
        ) from e

    if result.outcome == ConfirmationOutcome.CONFIRMED:
        logger.info(
            "admin_confirmation_completed",
            admin_email=admin.email,
            confirmation_id=str(confirmation_id),
        )

    return ConfirmationResponse(
        confirmation_id=result.confirmation_id,
        outcome=result.outcome,
        message=result.message,
        result=result.result,
    )


@router.delete("/confirmations/{confirmation_id}", response_model=ConfirmationResponse)
async def cancel_confirmation(
    confirmation_id: UUID,
    admin: AdminUser = Depends(require_admin_role),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
) -> ConfirmationResponse:
    """Cancel a pending confirmation. Nothing is written."""
    try:
        result = gate.cancel(confirmation_id, admin.id)
    except ConfirmationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OperationInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return ConfirmationResponse(confirmation_id=result.confirmation_id, outcome=result.outcome)


# ============================================================================
# Provider Secrets
# ============================================================================


@router.get("/secrets", response_model=list[SecretResponse])
async def list_secrets(
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),
) -> list[SecretResponse]:
    """
    Masked previews of every provider secret.

    Accessible by: admin, viewer
    """
    secrets = await ProviderSecretService(db).list_masked()
    return [_secret_response(secret) for secret in secrets]


@router.get("/secrets/{provider_id}", response_model=SecretResponse)
async def get_secret(
    provider_id: str,
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),
) -> SecretResponse:
    """
    Masked preview of one provider secret.

    Accessible by: admin, viewer
    """
    try:
        secret = await ProviderSecretService(db).get_masked(provider_id)
    except SecretNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return _secret_response(secret)


@router.put(
    "/secrets/{provider_id}",
    response_model=PendingConfirmationResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def rotate_secret(
    provider_id: str,
    body: RotateSecretRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
    gate: ConfirmationGate = Depends(get_confirmation_gate),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> PendingConfirmationResponse:
    """
    Stage a secret rotation behind the ROTATE confirmation word.

    The secret is stored exactly as submitted. Blank input is rejected.

    Accessible by: admin only
    """
    new_secret = body.secret
    if not new_secret.strip():
        raise HTTPException(
            status_code=422,
            detail="Secret cannot be empty",
        )

    try:
        current = await ProviderSecretService(db).get_masked(provider_id)
        current_preview = current.masked_preview
    except SecretNotFoundError:
        current_preview = "(not set)"

    async def apply_rotation() -> SecretResponse:
        async with session_factory() as session:
            rotated = await ProviderSecretService(session).rotate_secret(
                provider_id, new_secret, str(admin.id), context
            )
        return SecretResponse(
            provider_id=rotated.provider_id,
            masked_preview=rotated.masked_preview,
            encrypted_at=rotated.encrypted_at,
            updated_by=str(admin.id),
        )

    pending = gate.require(
        expected_word=ROTATE_CONFIRM_WORD,
        payload=provider_id,
        summary=[
            f"Provider: {provider_id}",
            f"Current Secret: {current_preview}",
            f"New Secret: {mask_secret(new_secret)}",
        ],
        action=apply_rotation,
        owner_id=admin.id,
    )
    return _pending_response(pending)


# ============================================================================
# Disclosure Dialogs
# ============================================================================


@router.post(
    "/secrets/{provider_id}/dialogs",
    response_model=DialogResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_dialog(
    provider_id: str,
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
    registry: DisclosureRegistry = Depends(get_disclosure_registry),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> DialogResponse:
    """
    Open a disclosure dialog showing the masked secret.

    Accessible by: admin only
    """
    controller = DisclosureController(
        provider_id=provider_id,
        operator_id=admin.id,
        session_factory=session_factory,
        context=context,
    )
    try:
        await controller.open()
    except SecretNotFoundError as e:
        controller.close()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    registry.add(controller)
    logger.info(
        "admin_disclosure_opened",
        admin_email=admin.email,
        provider_id=provider_id,
        dialog_id=str(controller.dialog_id),
    )
    return _dialog_response(controller.snapshot())


@router.get("/secrets/dialogs/{dialog_id}", response_model=DialogResponse)
async def get_dialog(
    dialog_id: UUID,
    admin: AdminUser = Depends(require_admin_role),
    registry: DisclosureRegistry = Depends(get_disclosure_registry),
) -> DialogResponse:
    """Dialog state and countdown."""
    controller = _get_dialog(registry, dialog_id, admin)
    return _dialog_response(controller.snapshot())


@router.post("/secrets/dialogs/{dialog_id}/reveal", response_model=DialogResponse)
async def request_reveal(
    dialog_id: UUID,
    admin: AdminUser = Depends(require_admin_role),
    registry: DisclosureRegistry = Depends(get_disclosure_registry),
) -> DialogResponse:
    """Ask for re-authentication. No effect while the secret is visible."""
    controller = _get_dialog(registry, dialog_id, admin)
    controller.request_reveal()
    return _dialog_response(controller.snapshot())


@router.post("/secrets/dialogs/{dialog_id}/credential", response_model=DialogResponse)
async def submit_credential(
    dialog_id: UUID,
    body: CredentialRequest,
    admin: AdminUser = Depends(require_admin_role),
    registry: DisclosureRegistry = Depends(get_disclosure_registry),
) -> DialogResponse:
    """
    Re-authenticate and decrypt.

    Reveal failures are reported in the dialog state and error, with one
    generic message whatever the cause.
    """
    controller = _get_dialog(registry, dialog_id, admin)
    try:
        await controller.submit_credential(body.credential)
    except DialogNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except OperationInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return _dialog_response(controller.snapshot())


@router.post("/secrets/dialogs/{dialog_id}/hide", response_model=DialogResponse)
async def hide_secret(
    dialog_id: UUID,
    admin: AdminUser = Depends(require_admin_role),
    registry: DisclosureRegistry = Depends(get_disclosure_registry),
) -> DialogResponse:
    """Hide the secret now and stop the countdown."""
    controller = _get_dialog(registry, dialog_id, admin)
    controller.hide()
    return _dialog_response(controller.snapshot())


@router.delete("/secrets/dialogs/{dialog_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_dialog(
    dialog_id: UUID,
    admin: AdminUser = Depends(require_admin_role),
    registry: DisclosureRegistry = Depends(get_disclosure_registry),
) -> None:
    """Close the dialog. The plaintext and its countdown go with it."""
    try:
        registry.close(dialog_id, admin.id)
    except DialogNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


# ============================================================================
# Security Incidents
# ============================================================================


def _incident_response(incident: IncidentData) -> IncidentResponse:
    return IncidentResponse(
        id=incident.incident_id,
        event_type=incident.event_type,
        severity=incident.severity,
        description=incident.description,
        user_id=incident.user_id,
        ip_address=incident.ip_address,
        resolved=incident.resolved,
        resolved_at=incident.resolved_at,
        resolved_by=incident.resolved_by,
        resolution_notes=incident.resolution_notes,
        created_at=incident.created_at,
    )


@router.get("/incidents", response_model=IncidentListResponse)
async def list_incidents(
    status_filter: IncidentStatus = Query(IncidentStatus.ALL, alias="status"),
    severity: IncidentSeverity | None = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),
) -> IncidentListResponse:
    """
    List security incidents, newest first.

    Accessible by: admin, viewer
    """
    incidents, total = await IncidentService(db).list_incidents(
        status=status_filter, severity=severity, page=page, page_size=page_size
    )
    return IncidentListResponse(
        incidents=[_incident_response(incident) for incident in incidents],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=_total_pages(total, page_size),
    )


@router.get("/incidents/stats", response_model=IncidentStatsResponse)
async def get_incident_stats(
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),
) -> IncidentStatsResponse:
    """Incident counters for the dashboard header."""
    stats = await IncidentService(db).get_stats()
    return IncidentStatsResponse(
        total=stats.total,
        unresolved=stats.unresolved,
        critical_unresolved=stats.critical_unresolved,
        last_24h=stats.last_24h,
        blocked_ips=stats.blocked_ips,
    )


@router.post("/incidents/{incident_id}/resolve", response_model=IncidentResponse)
async def resolve_incident(
    incident_id: UUID,
    body: ResolveIncidentRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
) -> IncidentResponse:
    """
    Resolve an incident.

    Accessible by: admin only
    """
    try:
        incident = await IncidentService(db).resolve(
            incident_id, body.notes, str(admin.id), context
        )
    except IncidentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return _incident_response(incident)


@router.post("/incidents/{incident_id}/reopen", response_model=IncidentResponse)
async def reopen_incident(
    incident_id: UUID,
    body: ReopenIncidentRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
) -> IncidentResponse:
    """
    Reopen a resolved incident.

    Accessible by: admin only
    """
    try:
        incident = await IncidentService(db).reopen(
            incident_id, body.reason, str(admin.id), context
        )
    except IncidentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return _incident_response(incident)


@router.post("/incidents/{incident_id}/block-ip", response_model=BlockIpResponse)
async def block_incident_ip(
    incident_id: UUID,
    body: BlockIpRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
) -> BlockIpResponse:
    """
    Block the incident's source IP address.

    Accessible by: admin only
    """
    try:
        blocked = await IncidentService(db).block_ip(
            incident_id, str(admin.id), notes=body.notes, context=context
        )
    except IncidentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return BlockIpResponse(
        ip_address=blocked.ip_address,
        reason=blocked.reason,
        notes=blocked.notes,
        blocked_by=blocked.blocked_by,
        incident_id=blocked.incident_id,
        created_at=blocked.created_at,
    )


@router.post("/incidents/{incident_id}/ban-user", response_model=BanUserResponse)
async def ban_incident_user(
    incident_id: UUID,
    body: BanUserRequest,
    db: AsyncSession = Depends(get_write_db),
    admin: AdminUser = Depends(require_admin_role),  # Admin only
    context: RequestContext = Depends(get_request_context),
) -> BanUserResponse:
    """
    Ban the user the incident was raised for.

    Accessible by: admin only
    """
    try:
        banned = await IncidentService(db).ban_user(
            incident_id, str(admin.id), reason=body.reason, context=context
        )
    except IncidentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return BanUserResponse(
        user_id=banned.user_id,
        ban_reason=banned.ban_reason,
        banned_by=banned.banned_by,
        incident_id=banned.incident_id,
        banned_at=banned.banned_at,
    )


# ============================================================================
# Audit Log
# ============================================================================


@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    action: str | None = Query(None, description="Filter by action"),
    actor_id: str | None = Query(None, description="Filter by operator"),
    target_type: str | None = Query(None, description="Filter by target type"),
    target_id: str | None = Query(None, description="Filter by target"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    db: AsyncSession = Depends(get_read_db),
    admin: AdminUser = Depends(get_current_admin),
) -> AuditLogListResponse:
    """
    Browse the admin audit trail.

    Accessible by: admin, viewer
    """
    records, total = await AuditService(db).list_records(
        action=action,
        actor_id=actor_id,
        target_type=target_type,
        target_id=target_id,
        page=page,
        page_size=page_size,
    )
    return AuditLogListResponse(
        records=[
            AuditLogResponse(
                id=record.record_id,
                actor_id=record.actor_id,
                action=record.action,
                target_type=record.target_type,
                target_id=record.target_id,
                old_value=record.old_value,
                new_value=record.new_value,
                details=record.details,
                ip_address=record.ip_address,
                user_agent=record.user_agent,
                created_at=record.created_at,
            )
            for record in records
        ],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=_total_pages(total, page_size),
    )
