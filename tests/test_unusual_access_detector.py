"""Unusual access pattern detector tests."""

from datetime import timedelta

from sqlalchemy.orm import Session

from app.models import AnomalyLog
from app.services.detectors import UnusualAccessDetector, collect_recent_access
from app.services.notification_service import NotificationDispatcher
from tests.factories import NOW, RecordingChannel, add_event, add_user


def _seed_history(db: Session, user_id: int) -> None:
    for days_ago in (2, 5, 9):
        add_event(db, user_id=user_id, resource="orders", ip_address="10.0.0.1", timestamp=NOW - timedelta(days=days_ago))
    add_event(db, user_id=user_id, resource="reports", ip_address="10.0.0.2", timestamp=NOW - timedelta(hours=5))


def test_familiar_activity_is_not_flagged(db: Session, dispatcher: NotificationDispatcher) -> None:
    user = add_user(db, "regular")
    _seed_history(db, user.id)
    add_event(db, user_id=user.id, resource="orders", ip_address="10.0.0.2", timestamp=NOW - timedelta(minutes=30))
    add_event(db, user_id=user.id, resource="reports", ip_address="10.0.0.1", timestamp=NOW - timedelta(minutes=10))

    assert UnusualAccessDetector(dispatcher, channels=["test"]).run(db, NOW) == 0
    assert db.query(AnomalyLog).count() == 0


def test_new_resource_and_ip_are_flagged(
    db: Session,
    dispatcher: NotificationDispatcher,
    channel: RecordingChannel,
) -> None:
    user = add_user(db, "regular")
    security = add_user(db, "security", role="security_admin")
    _seed_history(db, user.id)
    add_event(db, user_id=user.id, resource="orders", ip_address="10.0.0.1", timestamp=NOW - timedelta(minutes=40))
    add_event(db, user_id=user.id, resource="admin/users", ip_address="192.0.2.44", timestamp=NOW - timedelta(minutes=5))

    assert UnusualAccessDetector(dispatcher, channels=["test"]).run(db, NOW) == 1

    row = db.query(AnomalyLog).one()
    assert row.type == "unusual_access"
    assert row.severity == "medium"
    assert row.user_id == user.id
    assert row.details == {
        "username": "regular",
        "unusual_resources": ["admin/users"],
        "unusual_ips": ["192.0.2.44"],
    }
    recipients, payload = channel.deliveries[0]
    assert recipients == [security.id]
    assert payload.severity == "medium"


def test_only_new_ip_is_enough_to_flag(db: Session, dispatcher: NotificationDispatcher) -> None:
    user = add_user(db, "traveller")
    _seed_history(db, user.id)
    add_event(db, user_id=user.id, resource="orders", ip_address="172.16.0.3", timestamp=NOW - timedelta(minutes=15))

    assert UnusualAccessDetector(dispatcher, channels=["test"]).run(db, NOW) == 1
    row = db.query(AnomalyLog).one()
    assert row.details["unusual_resources"] == []
    assert row.details["unusual_ips"] == ["172.16.0.3"]


def test_cold_start_user_has_everything_flagged(db: Session, dispatcher: NotificationDispatcher) -> None:
    newcomer = add_user(db, "newcomer")
    add_event(db, user_id=newcomer.id, resource="orders", ip_address="10.9.9.9", timestamp=NOW - timedelta(minutes=50))
    add_event(db, user_id=newcomer.id, resource="profile", ip_address="10.9.9.9", timestamp=NOW - timedelta(minutes=20))

    assert UnusualAccessDetector(dispatcher, channels=["test"]).run(db, NOW) == 1
    row = db.query(AnomalyLog).one()
    assert row.details["unusual_resources"] == ["orders", "profile"]
    assert row.details["unusual_ips"] == ["10.9.9.9"]


def test_recent_window_does_not_count_as_history(db: Session, dispatcher: NotificationDispatcher) -> None:
    user = add_user(db, "repeat")
    add_event(db, user_id=user.id, resource="exports", ip_address="10.2.2.2", timestamp=NOW - timedelta(minutes=90))
    add_event(db, user_id=user.id, resource="exports", ip_address="10.2.2.2", timestamp=NOW - timedelta(minutes=10))

    assert UnusualAccessDetector(dispatcher, channels=["test"]).run(db, NOW) == 1


def test_missing_user_record_falls_back_to_id(db: Session, dispatcher: NotificationDispatcher) -> None:
    add_event(db, user_id=4242, resource="orders", ip_address="10.3.3.3", timestamp=NOW - timedelta(minutes=5))

    assert UnusualAccessDetector(dispatcher, channels=["test"]).run(db, NOW) == 1
    row = db.query(AnomalyLog).one()
    assert row.user_id == 4242
    assert row.details["username"] == "4242"


def test_collect_recent_access_groups_by_user(db: Session) -> None:
    first = add_user(db, "first")
    second = add_user(db, "second")
    events = [
        add_event(db, user_id=first.id, resource="orders", ip_address="10.0.0.1", timestamp=NOW - timedelta(minutes=1)),
        add_event(db, user_id=second.id, resource="users", ip_address="10.0.0.2", timestamp=NOW - timedelta(minutes=2)),
        add_event(db, user_id=first.id, resource="reports", ip_address="10.0.0.1", timestamp=NOW - timedelta(minutes=3)),
    ]

    grouped = collect_recent_access(events)

    assert list(grouped) == [first.id, second.id]
    assert grouped[first.id].resources == {"orders", "reports"}
    assert grouped[first.id].ip_addresses == {"10.0.0.1"}
    assert len(grouped[first.id].timestamps) == 2
