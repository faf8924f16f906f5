"""
audit/anomaly.py -- Threshold detectors that read the audit trail and write alerts.

Three rules, all of the same shape: count matching rows inside a sliding
window; at or above the threshold, append a security_alert_<type> entry.

  brute_force_login      login_failed from one IP           5 / 1h   high
  gift_card_enumeration  gift_card_check_failed from one IP 10 / 1h  medium
  price_manipulation     orders noted AMOUNT MISMATCH       3 / 24h  critical

Ordering: a check runs AFTER its trigger has been recorded, so the count
includes the trigger itself. Callers pass trigger_persisted=False when that
record() returned None; the check still runs but the count is one short and
the log says so.

Re-firing: every trigger at or past the threshold appends another alert.
Deduplication is left to whoever reads the alerts.

Failure: a detector never raises. Anything that goes wrong is logged and
the check returns None, exactly as if nothing had been detected.

Layer rule: no imports from api/, auth/, or catalog/. The order-mismatch
count comes from catalog/ through the mismatch_counter callable.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from audit.models import ALERT_PREFIX, AuditAction, AuditEntry, RequestContext
from audit.store import AuditStore
from core.db import to_iso

logger = logging.getLogger("storefront.anomaly")

BRUTE_FORCE_LOGIN = "brute_force_login"
GIFT_CARD_ENUMERATION = "gift_card_enumeration"
PRICE_MANIPULATION = "price_manipulation"

_LOG_PREFIX = {
    "critical": "CRITICAL SECURITY ALERT",
    "high": "HIGH SECURITY ALERT",
}


@dataclass(frozen=True)
class DetectorRule:
    threshold: int
    window: timedelta

    @property
    def window_hours(self) -> float:
        hours = self.window.total_seconds() / 3600
        return int(hours) if hours.is_integer() else hours


@dataclass(frozen=True)
class AnomalyThresholds:
    brute_force: DetectorRule = DetectorRule(5, timedelta(hours=1))
    gift_card: DetectorRule = DetectorRule(10, timedelta(hours=1))
    price_mismatch: DetectorRule = DetectorRule(3, timedelta(hours=24))

    @classmethod
    def from_settings(cls, settings) -> "AnomalyThresholds":
        return cls(
            brute_force=DetectorRule(
                settings.brute_force_threshold, timedelta(seconds=settings.brute_force_window_seconds)
            ),
            gift_card=DetectorRule(settings.gift_card_threshold, timedelta(seconds=settings.gift_card_window_seconds)),
            price_mismatch=DetectorRule(
                settings.price_mismatch_threshold, timedelta(seconds=settings.price_mismatch_window_seconds)
            ),
        )


def mask_gift_card_code(code: str | None) -> str | None:
    """Keep enough of a tried code to correlate attempts, not enough to reuse it."""
    if not code:
        return code
    if len(code) <= 4:
        return "*" * len(code)
    return "*" * (len(code) - 4) + code[-4:]


class AnomalyDetector:
    """Runs the three detectors against an AuditStore.

    mismatch_counter(since) must return how many orders created at or after
    since carry the amount-mismatch marker.
    """

    def __init__(
        self,
        audit_store: AuditStore,
        mismatch_counter: Callable[[datetime], int],
        thresholds: AnomalyThresholds | None = None,
    ) -> None:
        self.audit_store = audit_store
        self.mismatch_counter = mismatch_counter
        self.thresholds = thresholds or AnomalyThresholds()

    def _since(self, rule: DetectorRule) -> datetime:
        return self.audit_store.clock() - rule.window

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    def check_brute_force_login(
        self, ip: str | None, email: str | None, trigger_persisted: bool = True
    ) -> AuditEntry | None:
        if not ip:
            return None
        rule = self.thresholds.brute_force
        try:
            self._note_degraded(trigger_persisted, BRUTE_FORCE_LOGIN)
            count = self.audit_store.count(AuditAction.LOGIN_FAILED, ip_address=ip, since=self._since(rule))
            if count < rule.threshold:
                return None
            return self._raise_alert(
                BRUTE_FORCE_LOGIN,
                "high",
                f"Possible brute force attack: {count} failed login attempts from IP {ip}",
                {"ip": ip, "email": email, "failedAttempts": count, "windowHours": rule.window_hours},
                ip,
            )
        except Exception:
            logger.exception("Brute-force check failed for %s", ip)
            return None

    def check_gift_card_enumeration(
        self, ip: str | None, code: str | None, trigger_persisted: bool = True
    ) -> AuditEntry | None:
        if not ip:
            return None
        rule = self.thresholds.gift_card
        try:
            self._note_degraded(trigger_persisted, GIFT_CARD_ENUMERATION)
            count = self.audit_store.count(AuditAction.GIFT_CARD_CHECK_FAILED, ip_address=ip, since=self._since(rule))
            if count < rule.threshold:
                return None
            return self._raise_alert(
                GIFT_CARD_ENUMERATION,
                "medium",
                f"Possible gift card enumeration: {count} invalid checks from IP {ip}",
                {
                    "ip": ip,
                    "lastCodeTried": mask_gift_card_code(code),
                    "attemptCount": count,
                    "windowHours": rule.window_hours,
                },
                ip,
            )
        except Exception:
            logger.exception("Gift card enumeration check failed for %s", ip)
            return None

    def check_price_manipulation(
        self,
        order_number: str,
        expected_amount: float,
        actual_amount: float,
        customer_email: str | None,
        trigger_persisted: bool = True,
        ip: str | None = None,
    ) -> AuditEntry | None:
        rule = self.thresholds.price_mismatch
        try:
            self._note_degraded(trigger_persisted, PRICE_MANIPULATION)
            count = self.mismatch_counter(self._since(rule))
            if count < rule.threshold:
                return None
            return self._raise_alert(
                PRICE_MANIPULATION,
                "critical",
                f"CRITICAL: {count} orders with amount mismatches in {rule.window_hours}h "
                "- possible price manipulation attack",
                {
                    "orderNumber": order_number,
                    "expectedAmount": expected_amount,
                    "actualAmount": actual_amount,
                    "customerEmail": customer_email,
                    "mismatchCount": count,
                    "windowHours": rule.window_hours,
                },
                ip,
            )
        except Exception:
            logger.exception("Price manipulation check failed for order %s", order_number)
            return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _note_degraded(self, trigger_persisted: bool, alert_type: str) -> None:
        if not trigger_persisted:
            logger.warning("Audit trigger for %s was not persisted; count may be short by one", alert_type)

    def _raise_alert(
        self, alert_type: str, severity: str, message: str, cause: dict[str, Any], ip: str | None
    ) -> AuditEntry | None:
        details = {
            "alert_type": alert_type,
            "severity": severity,
            "message": message,
            **cause,
            "timestamp": to_iso(self.audit_store.clock()),
        }
        entry = self.audit_store.record(
            ALERT_PREFIX + alert_type,
            resource_type="security",
            details=details,
            context=RequestContext(ip_address=ip),
        )
        logger.warning("[%s] %s", _LOG_PREFIX.get(severity, "SECURITY ALERT"), message)
        return entry
