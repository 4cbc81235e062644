"""
Bootstrap script for creating an initial workspace and its owner.

Idempotent: skips if the workspace already has members.
Run via: python -m tollgate.cli.bootstrap

Reads configuration from environment variables:
  TOLLGATE_BOOTSTRAP_WORKSPACE_ID - Workspace id (required)
  TOLLGATE_BOOTSTRAP_OWNER_ID     - User id of the owner (required)
  DATABASE_URL                    - PostgreSQL connection URL (from Helm)
"""

import asyncio
import logging
import os
import sys

from sqlalchemy import text

from tollgate.db.session import build_engine, build_session_factory
from tollgate.services.membership_service import create_workspace, workspace_exists

# Use stdlib logging - structlog isn't configured yet during bootstrap
logger = logging.getLogger("tollgate.bootstrap")
logging.basicConfig(level=logging.INFO, format="%(message)s")


async def bootstrap() -> None:
    workspace_id = os.environ.get("TOLLGATE_BOOTSTRAP_WORKSPACE_ID", "").strip()
    owner_id = os.environ.get("TOLLGATE_BOOTSTRAP_OWNER_ID", "").strip()
    database_url = os.environ.get("DATABASE_URL", "").strip()

    if not workspace_id:
        logger.error("TOLLGATE_BOOTSTRAP_WORKSPACE_ID is required")
        sys.exit(1)

    if not owner_id:
        logger.error("TOLLGATE_BOOTSTRAP_OWNER_ID is required")
        sys.exit(1)

    if not database_url:
        logger.error("DATABASE_URL is required")
        sys.exit(1)

    engine = build_engine(database_url)

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        logger.info("Connected to database")

    async with build_session_factory(engine)() as session:
        if await workspace_exists(session, workspace_id):
            logger.info("Workspace %s already exists, skipping", workspace_id)
        else:
            # Audited like any other mutation; the owner is recorded as the actor
            await create_workspace(session, owner_id, workspace_id, owner_id)
            logger.info("Created workspace %s owned by %s", workspace_id, owner_id)

    await engine.dispose()
    logger.info("Bootstrap complete")


def main() -> None:
    asyncio.run(bootstrap())


if __name__ == "__main__":
    main()
