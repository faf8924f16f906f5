"""
api/routes/v1/csp.py -- Content-Security-Policy violation report sink.

Routes:
  POST /api/v1/csp-report  -- browser-submitted report -> 204 (public, rate-limited)

Browsers send application/csp-report (legacy {"csp-report": {...}}) or
application/reports+json (a list of {"type": "csp-violation", "body": {...}}).
Both are accepted. Each report becomes one csp_violation audit entry;
reports whose blocked URI or sample look like script injection are flagged
suspicious so they stand out in the audit view.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from fastapi import APIRouter, Request, Response

from api.limiter import CSP_REPORT_LIMIT, limiter
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import request_context
from core.errors import InvalidInput

logger = logging.getLogger("storefront.api")

router = APIRouter()

_MAX_BODY_BYTES = 16 * 1024
_MAX_FIELD_CHARS = 500

_SUSPICIOUS_PATTERNS = (
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
    re.compile(r"<script", re.IGNORECASE),
)

# Legacy report keys -> reporting-API keys.
_FIELDS = {
    "document-uri": "documentURL",
    "blocked-uri": "blockedURL",
    "violated-directive": "effectiveDirective",
    "original-policy": "originalPolicy",
    "source-file": "sourceFile",
    "line-number": "lineNumber",
    "script-sample": "sample",
}


def _extract_reports(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict) and isinstance(payload.get("csp-report"), dict):
        return [payload["csp-report"]]
    if isinstance(payload, list):
        return [r["body"] for r in payload if isinstance(r, dict) and isinstance(r.get("body"), dict)]
    return []


def _clip(value: Any) -> Any:
    if isinstance(value, str) and len(value) > _MAX_FIELD_CHARS:
        return value[:_MAX_FIELD_CHARS]
    return value


def _normalize(report: dict[str, Any]) -> dict[str, Any]:
    details = {}
    for legacy, modern in _FIELDS.items():
        value = report.get(legacy, report.get(modern))
        if value is not None:
            details[legacy.replace("-", "_")] = _clip(value)
    return details


def is_suspicious(details: dict[str, Any]) -> bool:
    haystack = " ".join(str(details.get(k, "")) for k in ("blocked_uri", "script_sample"))
    return any(p.search(haystack) for p in _SUSPICIOUS_PATTERNS)


@limiter.limit(CSP_REPORT_LIMIT)
@router.post("/csp-report", status_code=204)
async def csp_report(request: Request) -> Response:
    raw = await request.body()
    if len(raw) > _MAX_BODY_BYTES:
        raise InvalidInput("Report too large.")
    try:
        payload = json.loads(raw or b"null")
    except ValueError as exc:
        raise InvalidInput("Malformed report.") from exc

    audit_store: AuditStore = request.app.state.audit_store
    ctx = request_context(request)
    for report in _extract_reports(payload)[:10]:
        details = _normalize(report)
        details["suspicious"] = is_suspicious(details)
        if details["suspicious"]:
            logger.warning("Suspicious CSP violation from %s: %s", ctx.ip_address, details.get("blocked_uri"))
        audit_store.record(AuditAction.CSP_VIOLATION, resource_type="csp", details=details, context=ctx)
    return Response(status_code=204)
