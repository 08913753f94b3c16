"""
Migration Runner - Runs Alembic migrations at application startup.

Migrations run over the application's own async engine, so no separate
synchronous driver is needed. Enabled with RUN_MIGRATIONS_ON_STARTUP.
"""

from pathlib import Path

from sqlalchemy import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from opsconsole.observability.logging import get_logger

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def _get_current_revision(connection: Connection) -> str | None:
    """Get the current database revision."""
    context = MigrationContext.configure(connection)
    return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def _upgrade(connection: Connection, alembic_cfg: Config) -> None:
    # alembic/env.py picks the connection up from config attributes
    alembic_cfg.attributes["connection"] = connection
    command.upgrade(alembic_cfg, "head")


async def run_migrations(engine: AsyncEngine) -> None:
    """
    Run pending Alembic migrations.

    Only runs migrations if there are pending ones.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    head = _get_head_revision(alembic_cfg)

    try:
        async with engine.begin() as conn:
            current = await conn.run_sync(_get_current_revision)

            if current == head:
                logger.info("database_schema_up_to_date", revision=current)
                return

            logger.info("database_migration_started", from_revision=current, to_revision=head)
            await conn.run_sync(_upgrade, alembic_cfg)

        async with engine.connect() as conn:
            new_current = await conn.run_sync(_get_current_revision)
        logger.info("database_migration_completed", revision=new_current)

    except Exception as e:
        logger.error("database_migration_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
