"""Authentication failure burst detector tests."""

from datetime import timedelta

from sqlalchemy.orm import Session

from app.models import AnomalyLog
from app.services.detectors import AuthFailureDetector
from app.services.notification_service import NotificationDispatcher
from tests.factories import NOW, RecordingChannel, add_failed_logins, add_user


def test_five_failures_do_not_flag(db: Session, dispatcher: NotificationDispatcher) -> None:
    victim = add_user(db, "victim")
    add_failed_logins(db, ip_address="10.0.0.5", user_id=victim.id, times=5, timestamp=NOW - timedelta(minutes=3))

    assert AuthFailureDetector(dispatcher, channels=["test"]).run(db, NOW) == 0
    assert db.query(AnomalyLog).count() == 0


def test_six_failures_flag_with_details(
    db: Session,
    dispatcher: NotificationDispatcher,
    channel: RecordingChannel,
) -> None:
    victim = add_user(db, "victim")
    security = add_user(db, "security", role="security_admin")
    add_user(db, "purchasing", role="purchase_admin")
    add_failed_logins(db, ip_address="10.0.0.6", user_id=victim.id, times=6, timestamp=NOW - timedelta(minutes=3))

    assert AuthFailureDetector(dispatcher, channels=["test"]).run(db, NOW) == 1

    row = db.query(AnomalyLog).one()
    assert row.type == "auth_failure"
    assert row.severity == "high"
    assert row.user_id == victim.id
    assert row.details == {"ip_address": "10.0.0.6", "user_id": victim.id, "count": 6}
    recipients, payload = channel.deliveries[0]
    assert recipients == [security.id]
    assert "10.0.0.6" in payload.message


def test_failures_against_unknown_accounts_aggregate_per_ip(
    db: Session,
    dispatcher: NotificationDispatcher,
) -> None:
    add_failed_logins(db, ip_address="198.51.100.7", user_id=None, times=8, timestamp=NOW - timedelta(minutes=29))

    assert AuthFailureDetector(dispatcher, channels=["test"]).run(db, NOW) == 1

    row = db.query(AnomalyLog).one()
    assert row.user_id is None
    assert row.details["user_id"] is None
    assert row.details["count"] == 8


def test_failures_older_than_window_are_ignored(db: Session, dispatcher: NotificationDispatcher) -> None:
    add_failed_logins(db, ip_address="10.0.0.7", user_id=None, times=10, timestamp=NOW - timedelta(minutes=31))

    assert AuthFailureDetector(dispatcher, channels=["test"]).run(db, NOW) == 0
