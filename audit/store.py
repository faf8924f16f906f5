"""
audit/store.py -- SQLAlchemy Core persistence for the append-only audit log.

Pattern: Repository + Data Mapper (same as auth/store.py).

Append-only:
  AuditStore exposes record(), query() and count(). There is no update or
  delete method, and nothing else in the code base holds a reference to the
  audit_logs table. Retention and archival are a deployment concern handled
  outside the application.

Write semantics:
  record() is called AFTER the business effect it describes. It performs the
  INSERT synchronously, so later steps of the same request (the anomaly
  detector in particular) see the row. If the INSERT fails the exception is
  logged and swallowed and record() returns None -- that None is the degraded
  signal. An audit failure never fails the request that triggered it.

Timestamps:
  Assigned here from self.clock, never taken from the caller. Stored as
  fixed-width UTC ISO text (core.db.to_iso), so string comparison in range
  filters and ORDER BY is chronological. Ties are broken by the id sequence.

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from audit.models import Actor, AuditEntry, AuditFilters, AuditPage, RequestContext
from core.db import create_store_engine, to_iso, utc_now

logger = logging.getLogger("storefront.audit")

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("created_at", String(32), nullable=False),
    Column("user_id", Integer),
    Column("user_email", String(255)),
    Column("action", String(100), nullable=False),
    Column("resource_type", String(50)),
    Column("resource_id", String(255)),
    Column("details", Text),  # JSON object serialized as text
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Index("ix_audit_logs_action", "action"),
    Index("ix_audit_logs_user_id", "user_id"),
    Index("ix_audit_logs_created_at", "created_at"),
    Index("ix_audit_logs_ip_address", "ip_address"),
    Index("ix_audit_logs_resource", "resource_type", "resource_id"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditStore:
    """Append-only repository for AuditEntry rows.

    Usage:
        audit = AuditStore("sqlite:///storefront.db")
        audit.record("login_success", actor=Actor(1, "a@b.c"), context=ctx)
        page = audit.query(AuditFilters(action="login_failed"), page=1, limit=20)
    """

    def __init__(self, db_url: str, clock: Callable[[], datetime] = utc_now) -> None:
        self.engine: Engine = create_store_engine(db_url)
        self.clock = clock
        _metadata.create_all(self.engine)

    def record(
        self,
        action: str,
        *,
        actor: Actor | None = None,
        resource_type: str | None = None,
        resource_id: Any = None,
        details: dict[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> AuditEntry | None:
        """Append one entry. Returns the stored entry, or None if the write failed."""
        action_value = getattr(action, "value", action)
        ctx = context or RequestContext()
        values = {
            "created_at": to_iso(self.clock()),
            "user_id": actor.id if actor else None,
            "user_email": actor.email if actor else None,
            "action": action_value,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "details": dict(details or {}),
            "ip_address": ctx.ip_address,
            "user_agent": ctx.user_agent,
        }
        try:
            row = {**values, "details": json.dumps(values["details"], default=str)}
            with self.engine.begin() as conn:
                result = conn.execute(_audit_logs.insert().values(**row))
                entry_id = result.inserted_primary_key[0]
        except Exception:
            logger.exception("Audit write failed (action=%s) -- continuing without an audit entry", action_value)
            return None
        return AuditEntry(id=entry_id, **values)

    def query(self, filters: AuditFilters | None = None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> AuditPage:
        """Newest-first page of entries matching filters, plus the total match count.

        page is clamped to >= 1 and limit to 1..MAX_PAGE_SIZE.
        """
        page = max(1, page)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        conditions = _filter_conditions(filters or AuditFilters())

        stmt = _audit_logs.select()
        count_stmt = select(func.count()).select_from(_audit_logs)
        for cond in conditions:
            stmt = stmt.where(cond)
            count_stmt = count_stmt.where(cond)
        stmt = (
            stmt.order_by(_audit_logs.c.created_at.desc(), _audit_logs.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )

        with self.engine.connect() as conn:
            total = conn.execute(count_stmt).scalar() or 0
            rows = conn.execute(stmt).fetchall()
        return AuditPage(entries=[_row_to_entry(r) for r in rows], total=total, page=page, limit=limit)

    def count(self, action: str, *, since: datetime, ip_address: str | None = None) -> int:
        """Number of entries with this action at or after since (optionally from one IP)."""
        stmt = (
            select(func.count())
            .select_from(_audit_logs)
            .where(_audit_logs.c.action == getattr(action, "value", action))
            .where(_audit_logs.c.created_at >= to_iso(since))
        )
        if ip_address is not None:
            stmt = stmt.where(_audit_logs.c.ip_address == ip_address)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


def _filter_conditions(filters: AuditFilters) -> list:
    c = _audit_logs.c
    conditions = []
    if filters.action:
        conditions.append(c.action == filters.action)
    if filters.user_id is not None:
        conditions.append(c.user_id == filters.user_id)
    if filters.user_email:
        # LIKE wildcards in user input are escaped, not honoured.
        conditions.append(func.lower(c.user_email).contains(filters.user_email.lower(), autoescape=True))
    if filters.resource_type:
        conditions.append(c.resource_type == filters.resource_type)
    if filters.resource_id:
        conditions.append(c.resource_id == filters.resource_id)
    if filters.created_from is not None:
        conditions.append(c.created_at >= to_iso(filters.created_from))
    if filters.created_to is not None:
        conditions.append(c.created_at <= to_iso(filters.created_to))
    return conditions


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        created_at=row.created_at,
        action=row.action,
        user_id=row.user_id,
        user_email=row.user_email,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        details=json.loads(row.details) if row.details else {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
    )
