"""Read-only queries feeding the anomaly detectors."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import AuditLog, Order, User
from app.models.user import ALWAYS_NOTIFIED_ROLES
from app.utils.time import ensure_utc

logger = logging.getLogger(__name__)

ZERO: Decimal = Decimal("0")
CENT: Decimal = Decimal("0.01")


@dataclass(frozen=True)
class PendingOrder:
    id: int
    order_number: str
    user_id: int
    username: str
    total_amount: Decimal
    created_at: datetime


@dataclass(frozen=True)
class OrderStats:
    """Aggregate of a user's historical orders.

    ``total`` and ``count`` keep the exact sum so threshold checks never go
    through a rounded average.
    """

    average: Decimal = ZERO
    maximum: Decimal = ZERO
    total: Decimal = ZERO
    count: int = 0


@dataclass(frozen=True)
class AuthFailureGroup:
    ip_address: str
    user_id: int | None
    count: int


def _to_decimal(value: object) -> Decimal:
    """Normalize numeric results; SQLite may hand aggregates back as float."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _order_stats(total: object, count: object, maximum: object) -> OrderStats:
    count = int(count or 0)
    if not count:
        return OrderStats()
    # Amounts are stored with cent scale; re-quantize in case the driver summed floats.
    exact_total = _to_decimal(total).quantize(CENT)
    return OrderStats(
        average=exact_total / count,
        maximum=_to_decimal(maximum),
        total=exact_total,
        count=count,
    )


class AnomalyDataGateway:
    """Windowed reads over orders, users and audit events.

    Empty result sets are normal. Only ``administrators`` swallows query errors.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def recent_pending_orders(self, since: datetime) -> list[PendingOrder]:
        rows = self.db.execute(
            select(Order, User.username)
            .join(User, Order.user_id == User.id)
            .where(Order.status == "pending", Order.created_at >= since)
            .order_by(Order.created_at.asc(), Order.id.asc())
        ).all()
        return [
            PendingOrder(
                id=order.id,
                order_number=order.order_number,
                user_id=order.user_id,
                username=username,
                total_amount=_to_decimal(order.total_amount),
                created_at=ensure_utc(order.created_at),
            )
            for order, username in rows
        ]

    def user_order_stats(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
        status: str = "approved",
    ) -> OrderStats:
        row = self.db.execute(
            select(func.sum(Order.total_amount), func.count(Order.id), func.max(Order.total_amount)).where(
                Order.user_id == user_id,
                Order.status == status,
                Order.created_at >= start,
                Order.created_at < end,
            )
        ).one()
        return _order_stats(*row)

    def order_stats_by_user(
        self,
        user_ids: Iterable[int],
        start: datetime,
        end: datetime,
        status: str = "approved",
    ) -> dict[int, OrderStats]:
        """Batched ``user_order_stats``; users without rows are left out."""
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        rows = self.db.execute(
            select(Order.user_id, func.sum(Order.total_amount), func.count(Order.id), func.max(Order.total_amount))
            .where(
                Order.user_id.in_(ids),
                Order.status == status,
                Order.created_at >= start,
                Order.created_at < end,
            )
            .group_by(Order.user_id)
        ).all()
        return {
            int(user_id): _order_stats(total, count, maximum)
            for user_id, total, count, maximum in rows
        }

    def grouped_auth_failures(self, since: datetime, min_count: int) -> list[AuthFailureGroup]:
        failures = func.count(AuditLog.id)
        rows = self.db.execute(
            select(AuditLog.ip_address, AuditLog.user_id, failures)
            .where(
                AuditLog.action.contains("login"),
                AuditLog.response_status >= 400,
                AuditLog.timestamp >= since,
            )
            .group_by(AuditLog.ip_address, AuditLog.user_id)
            .having(failures > min_count)
            .order_by(failures.desc(), AuditLog.ip_address.asc())
        ).all()
        return [AuthFailureGroup(ip_address=ip, user_id=user_id, count=int(count)) for ip, user_id, count in rows]

    def recent_authenticated_events(self, since: datetime) -> list[AuditLog]:
        return list(
            self.db.scalars(
                select(AuditLog)
                .where(AuditLog.user_id.is_not(None), AuditLog.timestamp >= since)
                .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            ).all()
        )

    def historical_user_activity(self, user_id: int, start: datetime, end: datetime) -> list[AuditLog]:
        return list(
            self.db.scalars(
                select(AuditLog)
                .where(AuditLog.user_id == user_id, AuditLog.timestamp >= start, AuditLog.timestamp < end)
                .order_by(AuditLog.timestamp.desc())
            ).all()
        )

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def administrators(self, required_role: str) -> list[int]:
        """Return ids of active users who should hear about ``required_role`` alerts."""
        roles = {required_role, *ALWAYS_NOTIFIED_ROLES}
        try:
            return list(
                self.db.scalars(
                    select(User.id).where(User.role.in_(roles), User.is_active.is_(True)).order_by(User.id)
                ).all()
            )
        except SQLAlchemyError:
            logger.exception("[ANOMALY] Administrator lookup failed for role=%s; continuing without recipients.", required_role)
            self.db.rollback()
            return []
