"""
api/routes/v1/gift_cards.py -- Public gift card balance check.

Routes:
  POST /api/v1/gift-cards/check  -- {code} -> balance (public, rate-limited)

Every failed lookup (bad format or unknown code) is recorded as
gift_card_check_failed and then handed to the enumeration detector. The
tried code is stored masked; the full code never reaches the audit log.
"""

from __future__ import annotations

import re
from datetime import datetime

from fastapi import APIRouter, Request

from api.limiter import GIFT_CARD_CHECK_LIMIT, limiter
from api.models import GIFT_CARD_PATTERN, GiftCardBalanceResponse, GiftCardCheckRequest
from audit.anomaly import AnomalyDetector, mask_gift_card_code
from audit.models import AuditAction, RequestContext
from audit.store import AuditStore
from auth.dependencies import request_context
from catalog.store import CatalogStore
from core.db import utc_now
from core.errors import InvalidInput, NotFound

router = APIRouter()

_GIFT_CARD_RE = re.compile(GIFT_CARD_PATTERN)


def _record_failure(request: Request, ctx: RequestContext, code: str, reason: str) -> None:
    audit_store: AuditStore = request.app.state.audit_store
    detector: AnomalyDetector = request.app.state.anomaly_detector
    entry = audit_store.record(
        AuditAction.GIFT_CARD_CHECK_FAILED,
        resource_type="gift_card",
        details={"code": mask_gift_card_code(code), "reason": reason},
        context=ctx,
    )
    detector.check_gift_card_enumeration(ctx.ip_address, code, trigger_persisted=entry is not None)


def _is_expired(expires_at: str | None) -> bool:
    if not expires_at:
        return False
    try:
        return datetime.fromisoformat(expires_at.replace("Z", "+00:00")) <= utc_now()
    except ValueError:
        return False


@limiter.limit(GIFT_CARD_CHECK_LIMIT)
@router.post("/gift-cards/check", response_model=GiftCardBalanceResponse)
def check_gift_card(request: Request, body: GiftCardCheckRequest) -> GiftCardBalanceResponse:
    catalog: CatalogStore = request.app.state.catalog
    ctx = request_context(request)

    if not _GIFT_CARD_RE.match(body.code):
        _record_failure(request, ctx, body.code, "invalid_format")
        raise InvalidInput("Invalid gift card code format.")

    card = catalog.get_gift_card_by_code(body.code)
    if card is None:
        _record_failure(request, ctx, body.code, "not_found")
        raise NotFound("Gift card not found. Please check the code and try again.")

    if card.status == "pending":
        raise InvalidInput("This gift card has not been activated yet.")

    status = card.status
    balance = card.current_balance
    if status != "expired" and _is_expired(card.expires_at):
        status, balance = "expired", 0.0

    return GiftCardBalanceResponse(
        code=card.code,
        current_balance=balance,
        initial_balance=card.initial_balance,
        currency=card.currency,
        status=status,
        expires_at=card.expires_at,
    )
