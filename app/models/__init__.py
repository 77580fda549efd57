"""Application models package."""

from app.models.anomaly import AnomalyLog
from app.models.audit_log import AuditLog
from app.models.notification import Notification
from app.models.order import Order
from app.models.user import User

__all__ = ["AnomalyLog", "AuditLog", "Notification", "Order", "User"]
