"""Historical baselines for purchase amounts and access patterns."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from app.services.anomaly_gateway import AnomalyDataGateway, OrderStats

PURCHASE_BASELINE_WINDOW: timedelta = timedelta(days=90)
# Keeps the orders under evaluation out of their own baseline.
PURCHASE_BASELINE_GAP: timedelta = timedelta(hours=1)

ACCESS_BASELINE_WINDOW: timedelta = timedelta(days=30)
ACCESS_BASELINE_GAP: timedelta = timedelta(hours=2)


@dataclass
class AccessBaseline:
    resources: set[str] = field(default_factory=set)
    ip_frequency: Counter[str] = field(default_factory=Counter)


def purchase_window(now: datetime) -> tuple[datetime, datetime]:
    """Return the ``[start, end)`` window of approved orders used as baseline."""
    return now - PURCHASE_BASELINE_WINDOW, now - PURCHASE_BASELINE_GAP


def access_window(now: datetime) -> tuple[datetime, datetime]:
    return now - ACCESS_BASELINE_WINDOW, now - ACCESS_BASELINE_GAP


def purchase_baseline(gateway: AnomalyDataGateway, user_id: int, now: datetime) -> OrderStats:
    start, end = purchase_window(now)
    return gateway.user_order_stats(user_id, start, end, status="approved")


def purchase_baselines(gateway: AnomalyDataGateway, user_ids: Iterable[int], now: datetime) -> dict[int, OrderStats]:
    """Batched ``purchase_baseline``; users without history get zero stats."""
    ids = set(user_ids)
    start, end = purchase_window(now)
    found = gateway.order_stats_by_user(ids, start, end, status="approved")
    return {user_id: found.get(user_id, OrderStats()) for user_id in ids}


def access_baseline(gateway: AnomalyDataGateway, user_id: int, now: datetime) -> AccessBaseline:
    start, end = access_window(now)
    baseline = AccessBaseline()
    for event in gateway.historical_user_activity(user_id, start, end):
        if event.resource:
            baseline.resources.add(event.resource)
        if event.ip_address:
            baseline.ip_frequency[event.ip_address] += 1
    return baseline
