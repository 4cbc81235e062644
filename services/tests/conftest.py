"""
Top-level test configuration for Tollgate.
"""

import os

# Ensure test-friendly defaults
os.environ.setdefault("TOLLGATE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TOLLGATE_LOCKING__BACKEND", "local")
os.environ.setdefault("TOLLGATE_JSON_LOGS", "false")
os.environ.setdefault("TOLLGATE_LOG_LEVEL", "DEBUG")

from collections.abc import AsyncIterator, Awaitable, Callable  # noqa: E402
from dataclasses import dataclass  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import func, select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from tollgate.db.models import AuditEntry, Base  # noqa: E402
from tollgate.db.session import build_session_factory  # noqa: E402
from tollgate.services import membership_service  # noqa: E402


@dataclass(frozen=True)
class SeededWorkspace:
    id: str
    owner: str
    admin: str
    member: str
    viewer: str


@pytest.fixture
async def db() -> AsyncIterator[AsyncSession]:
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        yield session

    await engine.dispose()


async def seed_workspace(db: AsyncSession, workspace_id: str = "ws-1") -> SeededWorkspace:
    ws = SeededWorkspace(
        id=workspace_id,
        owner="owner-1",
        admin="admin-1",
        member="member-1",
        viewer="viewer-1",
    )
    await membership_service.create_workspace(db, ws.owner, ws.id, ws.owner)
    await membership_service.add_member(db, ws.owner, ws.id, ws.admin, "admin")
    await membership_service.add_member(db, ws.owner, ws.id, ws.member, "member")
    await membership_service.add_member(db, ws.owner, ws.id, ws.viewer, "viewer")
    return ws


@pytest.fixture
async def ws(db: AsyncSession) -> SeededWorkspace:
    """Workspace ws-1 with one member per workspace role."""
    return await seed_workspace(db)


@pytest.fixture
def audit_count(db: AsyncSession) -> Callable[[str], Awaitable[int]]:
    async def _count(workspace_id: str) -> int:
        result = await db.execute(
            select(func.count())
            .select_from(AuditEntry)
            .where(AuditEntry.workspace_id == workspace_id)
        )
        return result.scalar_one()

    return _count
