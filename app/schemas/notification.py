"""Notification payload schema."""

from typing import Any

from pydantic import BaseModel, Field

from app.schemas.anomaly import Severity


class NotificationPayload(BaseModel):
    """Alert content shared by every channel."""

    subject: str
    message: str
    severity: Severity
    metadata: dict[str, Any] = Field(default_factory=dict)
