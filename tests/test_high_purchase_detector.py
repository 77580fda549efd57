"""High-value purchase detector tests."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.orm import Session

from app.models import AnomalyLog
from app.services.anomaly_gateway import OrderStats
from app.services.detectors import HighValuePurchaseDetector, is_high_value
from app.services.notification_service import NotificationDispatcher
from tests.factories import NOW, RecordingChannel, add_order, add_user


def _seed_history(db: Session, username: str = "buyer"):
    """Approved history with average 1000 and maximum 1500."""
    buyer = add_user(db, username)
    add_order(db, buyer, "500.00", status="approved", created_at=NOW - timedelta(days=20))
    add_order(db, buyer, "1500.00", status="approved", created_at=NOW - timedelta(days=10))
    return buyer


@pytest.mark.parametrize(
    ("amount", "expected"),
    [("4600", True), ("3100", True), ("2200", False), ("3000", False)],
)
def test_is_high_value_requires_both_margins(amount: str, expected: bool) -> None:
    stats = OrderStats(average=Decimal("1000"), maximum=Decimal("1500"))

    assert is_high_value(Decimal(amount), stats) is expected


def test_is_high_value_needs_margin_over_maximum() -> None:
    # 3x the average but not 1.5x a high historical maximum.
    stats = OrderStats(average=Decimal("100"), maximum=Decimal("1000"))

    assert is_high_value(Decimal("1200"), stats) is False


def test_flags_pending_orders_above_baseline(
    db: Session,
    dispatcher: NotificationDispatcher,
    channel: RecordingChannel,
) -> None:
    buyer = _seed_history(db)
    big = add_order(db, buyer, "4600.00", status="pending", created_at=NOW - timedelta(minutes=20))
    add_order(db, buyer, "2200.00", status="pending", created_at=NOW - timedelta(minutes=10))
    purchasing = add_user(db, "purchasing", role="purchase_admin")
    admin = add_user(db, "root", role="admin")
    add_user(db, "security", role="security_admin")

    raised = HighValuePurchaseDetector(dispatcher, channels=["test"]).run(db, NOW)

    assert raised == 1
    row = db.query(AnomalyLog).one()
    assert row.type == "high_purchase"
    assert row.severity == "high"
    assert row.user_id == buyer.id
    assert row.is_resolved is False
    assert row.details["order_id"] == big.id
    assert Decimal(row.details["amount"]) == Decimal("4600")
    assert Decimal(row.details["avg_amount"]) == Decimal("1000")

    recipients, payload = channel.deliveries[0]
    assert recipients == sorted([purchasing.id, admin.id])
    assert payload.severity == "high"
    assert payload.metadata["anomaly_type"] == "high_purchase"
    assert payload.metadata["order_id"] == big.id
    assert "buyer" in payload.message


def test_cold_start_user_is_flagged_on_any_positive_amount(
    db: Session,
    dispatcher: NotificationDispatcher,
) -> None:
    newcomer = add_user(db, "newcomer")
    add_order(db, newcomer, "12.50", status="pending", created_at=NOW - timedelta(minutes=5))
    add_order(db, newcomer, "0.00", status="pending", created_at=NOW - timedelta(minutes=4))

    raised = HighValuePurchaseDetector(dispatcher, channels=["test"]).run(db, NOW)

    assert raised == 1
    row = db.query(AnomalyLog).one()
    assert Decimal(row.details["amount"]) == Decimal("12.50")
    assert Decimal(row.details["avg_amount"]) == 0
    assert Decimal(row.details["max_amount"]) == 0


def test_ignores_orders_outside_last_hour_and_non_pending(
    db: Session,
    dispatcher: NotificationDispatcher,
) -> None:
    buyer = _seed_history(db)
    add_order(db, buyer, "9000.00", status="pending", created_at=NOW - timedelta(minutes=61))
    add_order(db, buyer, "9000.00", status="rejected", created_at=NOW - timedelta(minutes=5))

    raised = HighValuePurchaseDetector(dispatcher, channels=["test"]).run(db, NOW)

    assert raised == 0
    assert db.query(AnomalyLog).count() == 0


def test_orders_under_evaluation_do_not_feed_their_own_baseline(
    db: Session,
    dispatcher: NotificationDispatcher,
) -> None:
    buyer = _seed_history(db)
    # Approved in the last hour: outside the baseline window, so the average stays 1000.
    add_order(db, buyer, "5000.00", status="approved", created_at=NOW - timedelta(minutes=30))
    add_order(db, buyer, "4600.00", status="pending", created_at=NOW - timedelta(minutes=15))

    assert HighValuePurchaseDetector(dispatcher, channels=["test"]).run(db, NOW) == 1


def test_is_high_value_compares_exact_sum_at_three_times_average() -> None:
    # Average is 1000/3, so 3x the average is exactly 1000.00.
    stats = OrderStats(average=Decimal("1000") / 3, maximum=Decimal("333.34"), total=Decimal("1000.00"), count=3)

    assert is_high_value(Decimal("1000.00"), stats) is False
    assert is_high_value(Decimal("1000.01"), stats) is True


def test_amount_equal_to_three_times_non_terminating_average_is_not_flagged(
    db: Session,
    dispatcher: NotificationDispatcher,
) -> None:
    buyer = add_user(db, "buyer")
    for days_ago, amount in ((30, "333.33"), (20, "333.33"), (10, "333.34")):
        add_order(db, buyer, amount, status="approved", created_at=NOW - timedelta(days=days_ago))
    add_order(db, buyer, "1000.00", status="pending", created_at=NOW - timedelta(minutes=10))

    raised = HighValuePurchaseDetector(dispatcher, channels=["test"]).run(db, NOW)

    assert raised == 0
    assert db.query(AnomalyLog).count() == 0


def test_detector_defaults_to_every_dispatcher_channel(dispatcher: NotificationDispatcher) -> None:
    assert HighValuePurchaseDetector(dispatcher).channels == dispatcher.channel_names == ["test"]
