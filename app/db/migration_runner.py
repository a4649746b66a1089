"""
Migration Runner - Runs Alembic migrations at application startup.

alembic/env.py drives the async engine with asyncio.run, so the upgrade must
run outside the application's event loop (see `run_migrations_async`).
"""

import asyncio
from pathlib import Path

from structlog import get_logger

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from app.config import settings

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"


def _alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI_PATH.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    # Keep structlog's configuration; don't let fileConfig replace it
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations(database_url: str | None = None) -> None:
    """
    Upgrade the database to the latest revision.

    Alembic skips revisions that are already applied, so this is safe to call
    on every startup.

    Raises:
        RuntimeError: A migration failed
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    alembic_cfg = _alembic_config(database_url or settings.database_url)
    head = ScriptDirectory.from_config(alembic_cfg).get_current_head()

    logger.info("migrations_starting", head_revision=head)
    try:
        command.upgrade(alembic_cfg, "head")
    except Exception as e:
        logger.error("migrations_failed", error=str(e))
        raise RuntimeError(f"Database migration failed: {e}") from e
    logger.info("migrations_complete", head_revision=head)


async def run_migrations_async(database_url: str | None = None) -> None:
    """Run `run_migrations` in a worker thread from inside a running loop."""
    await asyncio.to_thread(run_migrations, database_url)
