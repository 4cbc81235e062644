"""Permission audit log endpoint.

Endpoints:
    GET /api/v1/workspaces/{ws}/audit    - newest first, cursor-paged

Query parameters: ``action`` (repeatable), ``target-type``, ``target-id``,
``performed-by``, ``since``, ``until`` (ISO-8601), ``cursor``, ``limit``.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import AuthenticatedUser, require_permission
from tollgate.db.session import get_db
from tollgate.services.audit_service import AuditFilters, audit_entry_json, query_audit

router = APIRouter(tags=["audit"])


@router.get("/workspaces/{workspace_id}/audit")
async def list_audit_entries(
    workspace_id: str = Path(...),
    action: list[str] | None = Query(None),
    target_type: str | None = Query(None, alias="target-type"),
    target_id: str | None = Query(None, alias="target-id"),
    performed_by: str | None = Query(None, alias="performed-by"),
    since: datetime | None = Query(None),
    until: datetime | None = Query(None),
    cursor: str | None = Query(None),
    limit: int | None = Query(None),
    user: AuthenticatedUser = Depends(require_permission("workspace.audit.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    filters = AuditFilters.build(
        actions=action,
        target_type=target_type,
        target_id=target_id,
        performed_by=performed_by,
        since=since,
        until=until,
    )
    page = await query_audit(db, workspace_id, filters, cursor=cursor, limit=limit)
    return JSONResponse(
        content={
            "data": [audit_entry_json(e) for e in page.entries],
            "meta": {"next-cursor": page.next_cursor},
        }
    )
