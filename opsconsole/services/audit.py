"""
Audit Service - Append-only operator audit trail.

Records are added to the caller's session and committed together with the
change they describe, so a mutation and its audit entry land atomically.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from opsconsole.db.models import AdminAuditLog
from opsconsole.models.api import AuditAction, AuditTargetType
from opsconsole.models.domain import AuditRecordData, RequestContext


class AuditService:
    """Writes and queries admin_audit_logs. Never updates or deletes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def record(
        self,
        action: AuditAction,
        target_type: AuditTargetType,
        target_id: str | UUID | None,
        actor_id: str | None,
        old_value: str | None = None,
        new_value: str | None = None,
        details: dict[str, str] | None = None,
        context: RequestContext | None = None,
    ) -> AdminAuditLog:
        """Stage one audit record in the current unit of work."""
        entry = AdminAuditLog(
            actor_id=actor_id,
            action=action.value,
            target_type=target_type.value,
            target_id=str(target_id) if target_id is not None else None,
            old_value=old_value,
            new_value=new_value,
            details=details,
            ip_address=context.ip_address if context else None,
            user_agent=context.user_agent if context else None,
        )
        self.session.add(entry)
        return entry

    async def count_recent(self, actor_id: str, action: AuditAction, since: datetime) -> int:
        """Count an operator's records of one action since a point in time."""
        stmt = select(func.count(AdminAuditLog.id)).where(
            AdminAuditLog.actor_id == actor_id,
            AdminAuditLog.action == action.value,
            AdminAuditLog.created_at >= since,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_records(
        self,
        action: str | None = None,
        actor_id: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[AuditRecordData], int]:
        """List audit records newest first. Returns (records, total)."""
        stmt = select(AdminAuditLog)
        if action:
            stmt = stmt.where(AdminAuditLog.action == action)
        if actor_id:
            stmt = stmt.where(AdminAuditLog.actor_id == actor_id)
        if target_type:
            stmt = stmt.where(AdminAuditLog.target_type == target_type)
        if target_id:
            stmt = stmt.where(AdminAuditLog.target_id == target_id)

        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            stmt.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [self._to_domain(row) for row in rows], total

    @staticmethod
    def _to_domain(row: AdminAuditLog) -> AuditRecordData:
        return AuditRecordData(
            record_id=row.id,
            actor_id=row.actor_id,
            action=row.action,
            target_type=row.target_type,
            target_id=row.target_id,
            old_value=row.old_value,
            new_value=row.new_value,
            details=row.details,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            created_at=row.created_at,
        )
