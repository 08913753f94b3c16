"""
Incident Service - Review and resolution of security events.

Resolve and reopen are conditional updates on the resolved flag, so two
operators acting on the same incident cannot both succeed. Blocking an
address and banning a user are taken from an incident and audited
against it.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

import ipaddress
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from opsconsole.config import settings
from opsconsole.db.models import IpBlock, SecurityEvent, UserBan
from opsconsole.exceptions import IncidentNotFoundError, ValidationError
from opsconsole.models.api import (
    AuditAction,
    AuditTargetType,
    IncidentSeverity,
    IncidentStatus,
)
from opsconsole.models.domain import (
    BannedUser,
    BlockedIp,
    IncidentData,
    IncidentStats,
    RequestContext,
)
from opsconsole.observability.logging import get_logger
from opsconsole.services.audit import AuditService

logger = get_logger(__name__)

# Resolving these without notes is not allowed
NOTES_REQUIRED_SEVERITIES = frozenset({IncidentSeverity.HIGH, IncidentSeverity.CRITICAL})

BLOCK_REASON = "manual"
DEFAULT_BLOCK_NOTES = "Blocked from security incident"
DEFAULT_BAN_REASON = "Banned from security incident"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class IncidentService:
    """Lists, resolves and reopens security incidents with audit."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.audit = AuditService(session)

    async def list_incidents(
        self,
        status: IncidentStatus = IncidentStatus.ALL,
        severity: IncidentSeverity | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[IncidentData], int]:
        """List incidents newest first. Returns (incidents, total)."""
        stmt = select(SecurityEvent)
        if status == IncidentStatus.OPEN:
            stmt = stmt.where(SecurityEvent.resolved.is_(False))
        elif status == IncidentStatus.RESOLVED:
            stmt = stmt.where(SecurityEvent.resolved.is_(True))
        if severity is not None:
            stmt = stmt.where(SecurityEvent.severity == severity.value)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(SecurityEvent.created_at.desc(), SecurityEvent.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._to_domain(row) for row in rows], total

    async def get_stats(self) -> IncidentStats:
        since = _utc_now() - timedelta(hours=24)
        unresolved = SecurityEvent.resolved.is_(False)
        stmt = select(
            func.count(SecurityEvent.id),
            func.count(SecurityEvent.id).filter(unresolved),
            func.count(SecurityEvent.id).filter(
                unresolved, SecurityEvent.severity == IncidentSeverity.CRITICAL.value
            ),
            func.count(SecurityEvent.id).filter(SecurityEvent.created_at >= since),
        )
        total, open_count, critical, last_24h = (await self.session.execute(stmt)).one()
        blocked = (await self.session.execute(select(func.count(IpBlock.id)))).scalar_one()
        return IncidentStats(
            total=int(total),
            unresolved=int(open_count),
            critical_unresolved=int(critical),
            last_24h=int(last_24h),
            blocked_ips=int(blocked),
        )

    # ========================================================================
    # Resolution
    # ========================================================================

    async def resolve(
        self,
        incident_id: UUID,
        notes: str | None,
        actor_id: str,
        context: RequestContext | None = None,
    ) -> IncidentData:
        """
        Mark an incident resolved.

        Raises:
            IncidentNotFoundError: unknown incident
            ValidationError: already resolved (including by a concurrent
                request), notes missing for high or critical severity, or
                notes too long
        """
        incident = await self._get(incident_id)
        if incident.resolved:
            raise ValidationError("Incident is already resolved")

        notes = notes.strip() if notes else None
        if IncidentSeverity(incident.severity) in NOTES_REQUIRED_SEVERITIES and not notes:
            raise ValidationError(
                f"Resolution notes are required for {incident.severity} severity incidents",
                field="notes",
            )
        if notes and len(notes) > settings.incident_notes_max_length:
            raise ValidationError(
                f"Resolution notes cannot exceed {settings.incident_notes_max_length} characters",
                field="notes",
            )

        event_type, severity = incident.event_type, incident.severity
        if not await self._set_resolution(
            incident_id,
            expect_resolved=False,
            resolved=True,
            resolved_at=_utc_now(),
            resolved_by=actor_id,
            resolution_notes=notes,
        ):
            logger.warning(
                "incident_resolve_conflict", incident_id=str(incident_id), actor_id=actor_id
            )
            raise ValidationError("Incident is already resolved")

        self.audit.record(
            action=AuditAction.INCIDENT_RESOLVED,
            target_type=AuditTargetType.SECURITY_EVENT,
            target_id=incident_id,
            actor_id=actor_id,
            old_value="open",
            new_value="resolved",
            details={
                "event_type": event_type,
                "severity": severity,
                "notes": notes or "",
            },
            context=context,
        )
        await self.session.commit()
        logger.info(
            "incident_resolved",
            incident_id=str(incident_id),
            severity=severity,
            actor_id=actor_id,
        )
        return self._to_domain(await self._get(incident_id))

    async def reopen(
        self,
        incident_id: UUID,
        reason: str | None,
        actor_id: str,
        context: RequestContext | None = None,
    ) -> IncidentData:
        """Reopen a resolved incident and clear its resolution."""
        incident = await self._get(incident_id)
        if not incident.resolved:
            raise ValidationError("Only resolved incidents can be reopened")

        reason = reason.strip() if reason else None
        if reason and len(reason) > settings.incident_notes_max_length:
            raise ValidationError(
                f"Reopen reason cannot exceed {settings.incident_notes_max_length} characters",
                field="reason",
            )

        previous_notes = incident.resolution_notes
        if not await self._set_resolution(
            incident_id,
            expect_resolved=True,
            resolved=False,
            resolved_at=None,
            resolved_by=None,
            resolution_notes=None,
        ):
            logger.warning(
                "incident_reopen_conflict", incident_id=str(incident_id), actor_id=actor_id
            )
            raise ValidationError("Only resolved incidents can be reopened")

        self.audit.record(
            action=AuditAction.INCIDENT_REOPENED,
            target_type=AuditTargetType.SECURITY_EVENT,
            target_id=incident_id,
            actor_id=actor_id,
            old_value="resolved",
            new_value="open",
            details={
                "reason": reason or "",
                "previous_notes": previous_notes or "",
            },
            context=context,
        )
        await self.session.commit()
        logger.info("incident_reopened", incident_id=str(incident_id), actor_id=actor_id)
        return self._to_domain(await self._get(incident_id))

    # ========================================================================
    # Incident Actions
    # ========================================================================

    async def block_ip(
        self,
        incident_id: UUID,
        actor_id: str,
        notes: str | None = None,
        context: RequestContext | None = None,
    ) -> BlockedIp:
        """
        Add the incident's source address to the blocklist.

        Raises:
            IncidentNotFoundError: unknown incident
            ValidationError: incident has no valid address, the address is
                already blocked, or notes too long
        """
        incident = await self._get(incident_id)
        if not incident.ip_address:
            raise ValidationError("Incident has no IP address to block", field="ip_address")
        try:
            ip = str(ipaddress.ip_address(incident.ip_address.strip()))
        except ValueError as e:
            raise ValidationError(
                f"Incident IP address is not valid: {incident.ip_address}", field="ip_address"
            ) from e

        notes = notes.strip() if notes else None
        if notes and len(notes) > settings.incident_notes_max_length:
            raise ValidationError(
                f"Notes cannot exceed {settings.incident_notes_max_length} characters",
                field="notes",
            )
        notes = notes or DEFAULT_BLOCK_NOTES

        existing = await self.session.execute(
            select(IpBlock.id).where(IpBlock.ip_address == ip)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"IP address {ip} is already blocked", field="ip_address")

        block = IpBlock(ip_address=ip, reason=BLOCK_REASON, notes=notes, blocked_by=actor_id)
        self.session.add(block)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Blocked by another request in the meantime
            await self.session.rollback()
            raise ValidationError(
                f"IP address {ip} is already blocked", field="ip_address"
            ) from e

        self.audit.record(
            action=AuditAction.IP_BLOCKED,
            target_type=AuditTargetType.IP_ADDRESS,
            target_id=ip,
            actor_id=actor_id,
            new_value=BLOCK_REASON,
            details={
                "incident_id": str(incident_id),
                "event_type": incident.event_type,
                "notes": notes,
            },
            context=context,
        )
        await self.session.commit()
        logger.info("ip_blocked", ip_address=ip, incident_id=str(incident_id), actor_id=actor_id)
        return BlockedIp(
            ip_address=ip,
            reason=BLOCK_REASON,
            notes=notes,
            blocked_by=actor_id,
            incident_id=incident_id,
            created_at=block.created_at,
        )

    async def ban_user(
        self,
        incident_id: UUID,
        actor_id: str,
        reason: str | None = None,
        context: RequestContext | None = None,
    ) -> BannedUser:
        """
        Ban the user the incident was raised for.

        Raises:
            IncidentNotFoundError: unknown incident
            ValidationError: incident has no user, the user is already
                banned, or reason too long
        """
        incident = await self._get(incident_id)
        if incident.user_id is None:
            raise ValidationError("Incident has no user to ban", field="user_id")
        user_id = incident.user_id

        reason = reason.strip() if reason else None
        if reason and len(reason) > settings.incident_notes_max_length:
            raise ValidationError(
                f"Ban reason cannot exceed {settings.incident_notes_max_length} characters",
                field="reason",
            )
        reason = reason or DEFAULT_BAN_REASON

        existing = await self.session.execute(
            select(UserBan.id).where(UserBan.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"User {user_id} is already banned", field="user_id")

        ban = UserBan(user_id=user_id, ban_reason=reason, banned_by=actor_id, banned_at=_utc_now())
        self.session.add(ban)
        try:
            await self.session.flush()
        except IntegrityError as e:
            # Banned by another request in the meantime
            await self.session.rollback()
            raise ValidationError(f"User {user_id} is already banned", field="user_id") from e

        self.audit.record(
            action=AuditAction.USER_BANNED,
            target_type=AuditTargetType.USER,
            target_id=user_id,
            actor_id=actor_id,
            old_value="active",
            new_value="banned",
            details={
                "incident_id": str(incident_id),
                "event_type": incident.event_type,
                "reason": reason,
            },
            context=context,
        )
        await self.session.commit()
        logger.info(
            "user_banned", user_id=str(user_id), incident_id=str(incident_id), actor_id=actor_id
        )
        return BannedUser(
            user_id=user_id,
            ban_reason=reason,
            banned_by=actor_id,
            incident_id=incident_id,
            banned_at=ban.banned_at,
        )

    # ========================================================================
    # Internals
    # ========================================================================

    async def _set_resolution(
        self,
        incident_id: UUID,
        expect_resolved: bool,
        resolved: bool,
        resolved_at: datetime | None,
        resolved_by: str | None,
        resolution_notes: str | None,
    ) -> bool:
        """Write the resolution only if the row is still in the expected state."""
        stmt = (
            update(SecurityEvent)
            .where(
                SecurityEvent.id == incident_id,
                SecurityEvent.resolved.is_(expect_resolved),
            )
            .values(
                resolved=resolved,
                resolved_at=resolved_at,
                resolved_by=resolved_by,
                resolution_notes=resolution_notes,
            )
            .returning(SecurityEvent.id)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        return row is not None

    async def _get(self, incident_id: UUID) -> SecurityEvent:
        stmt = (
            select(SecurityEvent)
            .where(SecurityEvent.id == incident_id)
            .execution_options(populate_existing=True)
        )
        incident = (await self.session.execute(stmt)).scalar_one_or_none()
        if incident is None:
            raise IncidentNotFoundError(incident_id)
        return incident

    @staticmethod
    def _to_domain(row: SecurityEvent) -> IncidentData:
        return IncidentData(
            incident_id=row.id,
            event_type=row.event_type,
            severity=IncidentSeverity(row.severity),
            description=row.description,
            user_id=row.user_id,
            ip_address=row.ip_address,
            resolved=row.resolved,
            resolved_at=row.resolved_at,
            resolved_by=row.resolved_by,
            resolution_notes=row.resolution_notes,
            created_at=row.created_at,
        )
