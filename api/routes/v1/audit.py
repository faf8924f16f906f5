"""
api/routes/v1/audit.py -- Read access to the audit trail.

Routes:
  GET /api/v1/admin/audit -- filtered, paginated, newest first (VIEW_AUDIT_LOGS)

Query parameters: action, user_id, user_email (substring, case-insensitive),
resource_type, resource_id, from, to (ISO 8601; a bare date in "to" means the
end of that day), page, limit. limit is clamped to 100 rather than rejected.

There is deliberately no write route here: entries are only ever created by
the code paths that perform the audited effect.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse, AuditQueryResponse, Pagination
from audit.models import AuditFilters
from audit.store import DEFAULT_PAGE_SIZE, AuditStore
from auth.dependencies import require_permission
from auth.models import Principal
from auth.permissions import Permission
from core.errors import InvalidInput

router = APIRouter()


def _parse_bound(value: Optional[str], end_of_day: bool) -> Optional[datetime]:
    """Parse a from/to bound. Naive values are UTC; a bare date covers the whole day."""
    if not value:
        return None
    text = value.strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidInput(f"Invalid date: {value!r}. Use ISO 8601.") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@router.get("/admin/audit", response_model=AuditQueryResponse)
def list_audit_logs(
    request: Request,
    action: Optional[str] = Query(default=None, max_length=100),
    user_id: Optional[int] = Query(default=None),
    user_email: Optional[str] = Query(default=None, max_length=255),
    resource_type: Optional[str] = Query(default=None, max_length=50),
    resource_id: Optional[str] = Query(default=None, max_length=255),
    created_from: Optional[str] = Query(default=None, alias="from"),
    created_to: Optional[str] = Query(default=None, alias="to"),
    page: int = Query(default=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE),
    principal: Principal = Depends(require_permission(Permission.VIEW_AUDIT_LOGS)),
) -> AuditQueryResponse:
    audit_store: AuditStore = request.app.state.audit_store
    filters = AuditFilters(
        action=action,
        user_id=user_id,
        user_email=user_email,
        resource_type=resource_type,
        resource_id=resource_id,
        created_from=_parse_bound(created_from, end_of_day=False),
        created_to=_parse_bound(created_to, end_of_day=True),
    )
    result = audit_store.query(filters, page=page, limit=limit)
    return AuditQueryResponse(
        logs=[AuditEntryResponse.from_entry(e) for e in result.entries],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total=result.total,
            total_pages=result.total_pages,
        ),
    )
