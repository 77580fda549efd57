"""Rule-based anomaly detectors.

Each detector scans its candidates sequentially, records every finding and
then alerts the responders for its role. Query errors propagate to the sweep,
which contains them per detector.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import AuditLog
from app.schemas.anomaly import AuthFailureDetails, Finding, HighPurchaseDetails, UnusualAccessDetails
from app.schemas.notification import NotificationPayload
from app.services.anomaly_gateway import AnomalyDataGateway, OrderStats
from app.services.anomaly_service import record_anomaly
from app.services.baseline_service import ACCESS_BASELINE_GAP, access_baseline, purchase_baselines
from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger(__name__)

HIGH_PURCHASE_LOOKBACK: timedelta = timedelta(hours=1)
AVERAGE_MULTIPLIER: Decimal = Decimal("3")
MAXIMUM_MULTIPLIER: Decimal = Decimal("1.5")

AUTH_FAILURE_WINDOW: timedelta = timedelta(minutes=30)
AUTH_FAILURE_THRESHOLD: int = 5

# Recent window ends where the access baseline starts, so the two never overlap.
UNUSUAL_ACCESS_LOOKBACK: timedelta = ACCESS_BASELINE_GAP

Alert = tuple[Finding, NotificationPayload]


class Detector(ABC):
    """Base class wiring findings to the recorder and the dispatcher."""

    name: str = ""
    responder_role: str = "admin"

    def __init__(self, dispatcher: NotificationDispatcher, channels: Sequence[str] | None = None) -> None:
        self.dispatcher = dispatcher
        self.channels = list(channels) if channels is not None else dispatcher.channel_names

    @abstractmethod
    def detect(self, gateway: AnomalyDataGateway, now: datetime) -> Iterator[Alert]:
        """Yield one finding and its alert per anomaly seen at ``now``."""

    def run(self, db: Session, now: datetime) -> int:
        """Scan once and return the number of findings raised."""
        logger.info("[ANOMALY] %s detection started", self.name)
        gateway = AnomalyDataGateway(db)
        raised = 0
        for finding, payload in self.detect(gateway, now):
            self._raise(db, gateway, finding, payload, now)
            raised += 1
        logger.info("[ANOMALY] %s detection finished with %d finding(s)", self.name, raised)
        return raised

    def _raise(
        self,
        db: Session,
        gateway: AnomalyDataGateway,
        finding: Finding,
        payload: NotificationPayload,
        now: datetime,
    ) -> None:
        try:
            record_anomaly(db, finding, detected_at=now)
        except SQLAlchemyError:
            logger.exception("[ANOMALY] Failed to record %s finding; alerting anyway.", finding.type)
            db.rollback()

        recipients = gateway.administrators(self.responder_role)
        self.dispatcher.notify(self.channels, recipients, payload)

    @staticmethod
    def _metadata(finding: Finding, now: datetime) -> dict:
        return {
            "anomaly_type": finding.type,
            "user_id": finding.user_id,
            **finding.stored_details(),
            "timestamp": now.isoformat(),
        }


def is_high_value(amount: Decimal, stats: OrderStats) -> bool:
    """Both margins must hold: over 3x the average and over 1.5x the maximum."""
    if stats.count:
        # amount > 3 * (total / count), compared without dividing.
        over_average = amount * stats.count > stats.total * AVERAGE_MULTIPLIER
    else:
        over_average = amount > stats.average * AVERAGE_MULTIPLIER
    return over_average and amount > stats.maximum * MAXIMUM_MULTIPLIER


class HighValuePurchaseDetector(Detector):
    name = "high_purchase"
    responder_role = "purchase_admin"

    def detect(self, gateway: AnomalyDataGateway, now: datetime) -> Iterator[Alert]:
        orders = gateway.recent_pending_orders(now - HIGH_PURCHASE_LOOKBACK)
        if not orders:
            return
        # One grouped query instead of one aggregate per order; same baseline window.
        baselines = purchase_baselines(gateway, (order.user_id for order in orders), now)

        for order in orders:
            stats = baselines[order.user_id]
            if not is_high_value(order.total_amount, stats):
                continue
            logger.warning(
                "[ANOMALY] High purchase: user=%s amount=%s average=%s max=%s order=%s",
                order.username,
                order.total_amount,
                stats.average,
                stats.maximum,
                order.order_number,
            )
            finding = Finding(
                severity="high",
                user_id=order.user_id,
                details=HighPurchaseDetails(
                    order_id=order.id,
                    order_number=order.order_number,
                    amount=order.total_amount,
                    avg_amount=stats.average,
                    max_amount=stats.maximum,
                ),
            )
            payload = NotificationPayload(
                subject="[WARNING] Unusually high purchase detected",
                message=(
                    f"User {order.username} placed an order well above their usual spend.\n\n"
                    f"Amount: {order.total_amount:,.2f}\n"
                    f"Average amount: {stats.average:,.0f}\n"
                    f"Order: {order.order_number} (id {order.id})\n\n"
                    "Please review this purchase."
                ),
                severity="high",
                metadata=self._metadata(finding, now),
            )
            yield finding, payload


class AuthFailureDetector(Detector):
    name = "auth_failure"
    responder_role = "security_admin"

    def detect(self, gateway: AnomalyDataGateway, now: datetime) -> Iterator[Alert]:
        for group in gateway.grouped_auth_failures(now - AUTH_FAILURE_WINDOW, AUTH_FAILURE_THRESHOLD):
            logger.warning(
                "[ANOMALY] Login failure burst: ip=%s user=%s count=%d",
                group.ip_address,
                group.user_id if group.user_id is not None else "unknown",
                group.count,
            )
            finding = Finding(
                severity="high",
                user_id=group.user_id,
                details=AuthFailureDetails(ip_address=group.ip_address, user_id=group.user_id, count=group.count),
            )
            target = f" against user {group.user_id}" if group.user_id is not None else ""
            payload = NotificationPayload(
                subject="[WARNING] Repeated login failures detected",
                message=(
                    f"Repeated failed logins from IP {group.ip_address}{target}.\n\n"
                    f"Failures: {group.count} (last 30 minutes)\n\n"
                    "This may be an attempt at unauthorized access. Please investigate."
                ),
                severity="high",
                metadata=self._metadata(finding, now),
            )
            yield finding, payload


@dataclass
class RecentAccess:
    resources: set[str] = field(default_factory=set)
    ip_addresses: set[str] = field(default_factory=set)
    timestamps: list[datetime] = field(default_factory=list)


def collect_recent_access(events: Sequence[AuditLog]) -> dict[int, RecentAccess]:
    """Group recent events per user, keeping the order users first appear in."""
    access_by_user: dict[int, RecentAccess] = {}
    for event in events:
        if event.user_id is None:
            continue
        access = access_by_user.setdefault(event.user_id, RecentAccess())
        access.resources.add(event.resource)
        access.ip_addresses.add(event.ip_address)
        access.timestamps.append(event.timestamp)
    return access_by_user


class UnusualAccessDetector(Detector):
    name = "unusual_access"
    responder_role = "security_admin"

    def detect(self, gateway: AnomalyDataGateway, now: datetime) -> Iterator[Alert]:
        recent = collect_recent_access(gateway.recent_authenticated_events(now - UNUSUAL_ACCESS_LOOKBACK))

        for user_id, access in recent.items():
            baseline = access_baseline(gateway, user_id, now)
            unusual_resources = sorted(access.resources - baseline.resources)
            unusual_ips = sorted(ip for ip in access.ip_addresses if baseline.ip_frequency[ip] == 0)
            if not unusual_resources and not unusual_ips:
                continue

            username = self._display_name(gateway, user_id)
            logger.warning(
                "[ANOMALY] Unusual access: user=%s resources=%s ips=%s",
                username,
                unusual_resources,
                unusual_ips,
            )
            finding = Finding(
                severity="medium",
                user_id=user_id,
                details=UnusualAccessDetails(
                    username=username,
                    unusual_resources=unusual_resources,
                    unusual_ips=unusual_ips,
                ),
            )
            sections: list[str] = []
            if unusual_resources:
                sections.append("Resources not normally accessed:\n" + ", ".join(unusual_resources))
            if unusual_ips:
                sections.append("New IP addresses:\n" + ", ".join(unusual_ips))
            payload = NotificationPayload(
                subject="[WARNING] Unusual access pattern detected",
                message=(
                    f"Unusual access pattern detected for user {username}.\n\n"
                    + "\n\n".join(sections)
                    + "\n\nThe account may be compromised. Please investigate."
                ),
                severity="medium",
                metadata=self._metadata(finding, now),
            )
            yield finding, payload

    @staticmethod
    def _display_name(gateway: AnomalyDataGateway, user_id: int) -> str:
        try:
            user = gateway.get_user(user_id)
        except SQLAlchemyError:
            logger.exception("[ANOMALY] Username lookup failed for user_id=%s", user_id)
            gateway.db.rollback()
            return str(user_id)
        return user.username if user is not None else str(user_id)


def default_detectors(dispatcher: NotificationDispatcher, channels: Sequence[str] | None = None) -> list[Detector]:
    return [
        HighValuePurchaseDetector(dispatcher, channels),
        AuthFailureDetector(dispatcher, channels),
        UnusualAccessDetector(dispatcher, channels),
    ]
