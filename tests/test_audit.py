"""
Tests for AuditService.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opsconsole.models.api import AuditAction, AuditTargetType
from opsconsole.models.domain import RequestContext
from opsconsole.services.audit import AuditService

SessionMaker = async_sessionmaker[AsyncSession]


async def seed(session_factory: SessionMaker) -> None:
    async with session_factory() as session:
        audit = AuditService(session)
        audit.record(
            AuditAction.SECRET_DECRYPTED,
            AuditTargetType.PROVIDER_SECRET,
            "openai",
            actor_id="op-a",
            context=RequestContext(ip_address="203.0.113.7", user_agent="pytest"),
        )
        audit.record(
            AuditAction.SECRET_DECRYPTED,
            AuditTargetType.PROVIDER_SECRET,
            "anthropic",
            actor_id="op-b",
        )
        audit.record(
            AuditAction.CREDITS_ADDED,
            AuditTargetType.USER_CREDITS,
            uuid4(),
            actor_id="op-a",
            old_value="0",
            new_value="10",
        )
        await session.commit()


class TestRecord:
    async def test_record_is_staged_not_committed(self, session_factory: SessionMaker) -> None:
        """Nothing lands until the caller commits its unit of work."""
        async with session_factory() as session:
            AuditService(session).record(
                AuditAction.SECRET_ROTATED, AuditTargetType.PROVIDER_SECRET, "openai", "op-a"
            )
            await session.rollback()

        async with session_factory() as session:
            _, total = await AuditService(session).list_records()
        assert total == 0

    async def test_uuid_target_stored_as_text(self, session_factory: SessionMaker) -> None:
        target = uuid4()
        async with session_factory() as session:
            AuditService(session).record(
                AuditAction.CREDITS_ADDED, AuditTargetType.USER_CREDITS, target, "op-a"
            )
            await session.commit()

        async with session_factory() as session:
            records, _ = await AuditService(session).list_records()
        assert records[0].target_id == str(target)


class TestQueries:
    async def test_count_recent(self, session_factory: SessionMaker) -> None:
        await seed(session_factory)
        since = datetime.now(UTC) - timedelta(hours=1)

        async with session_factory() as session:
            audit = AuditService(session)
            assert await audit.count_recent("op-a", AuditAction.SECRET_DECRYPTED, since) == 1
            assert await audit.count_recent("op-a", AuditAction.SECRET_ROTATED, since) == 0
            future = datetime.now(UTC) + timedelta(minutes=5)
            assert await audit.count_recent("op-a", AuditAction.SECRET_DECRYPTED, future) == 0

    async def test_list_filters(self, session_factory: SessionMaker) -> None:
        await seed(session_factory)

        async with session_factory() as session:
            audit = AuditService(session)
            by_actor, actor_total = await audit.list_records(actor_id="op-a")
            by_action, action_total = await audit.list_records(
                action=AuditAction.SECRET_DECRYPTED.value
            )
            by_target, _ = await audit.list_records(
                target_type=AuditTargetType.PROVIDER_SECRET.value, target_id="openai"
            )

        assert actor_total == 2
        assert {r.actor_id for r in by_actor} == {"op-a"}
        assert action_total == 2
        assert len(by_target) == 1
        assert by_target[0].ip_address == "203.0.113.7"

    async def test_list_pagination(self, session_factory: SessionMaker) -> None:
        await seed(session_factory)

        async with session_factory() as session:
            page, total = await AuditService(session).list_records(page=2, page_size=2)

        assert total == 3
        assert len(page) == 1
