"""Schema exports."""

from app.schemas.anomaly import (
    AnomalyRead,
    AnomalyResolve,
    AuthFailureDetails,
    Finding,
    HighPurchaseDetails,
    SweepReportRead,
    UnusualAccessDetails,
)
from app.schemas.notification import NotificationPayload

__all__ = [
    "AnomalyRead",
    "AnomalyResolve",
    "AuthFailureDetails",
    "Finding",
    "HighPurchaseDetails",
    "NotificationPayload",
    "SweepReportRead",
    "UnusualAccessDetails",
]
