"""Anomaly finding schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Severity = Literal["low", "medium", "high"]


class HighPurchaseDetails(BaseModel):
    """Pending order far above the purchaser's approved-order history."""

    kind: Literal["high_purchase"] = "high_purchase"
    order_id: int
    order_number: str
    amount: Decimal
    avg_amount: Decimal
    max_amount: Decimal


class AuthFailureDetails(BaseModel):
    """Burst of failed logins from one IP against one (possibly unknown) account."""

    kind: Literal["auth_failure"] = "auth_failure"
    ip_address: str
    user_id: int | None = None
    count: int


class UnusualAccessDetails(BaseModel):
    """Resources or source IPs never seen in the user's history."""

    kind: Literal["unusual_access"] = "unusual_access"
    username: str
    unusual_resources: list[str] = Field(default_factory=list)
    unusual_ips: list[str] = Field(default_factory=list)


FindingDetails = Annotated[
    Union[HighPurchaseDetails, AuthFailureDetails, UnusualAccessDetails],
    Field(discriminator="kind"),
]

finding_details_adapter: TypeAdapter[FindingDetails] = TypeAdapter(FindingDetails)


class Finding(BaseModel):
    """Detector output before it is persisted."""

    severity: Severity
    user_id: int | None = None
    details: FindingDetails

    @property
    def type(self) -> str:
        return self.details.kind

    def stored_details(self) -> dict[str, Any]:
        """Return the untyped JSON document kept in ``anomaly_logs.details``."""
        return self.details.model_dump(mode="json", exclude={"kind"})


class AnomalyRead(BaseModel):
    """Serialized anomaly log row."""

    id: int
    type: str
    severity: str
    user_id: int | None
    details: dict[str, Any]
    detected_at: datetime
    is_resolved: bool
    resolved_at: datetime | None
    resolved_by: int | None
    notes: str | None

    model_config = ConfigDict(from_attributes=True)


class AnomalyResolve(BaseModel):
    """Resolution request for a finding."""

    resolved_by: int
    notes: str | None = None


class DetectorOutcomeRead(BaseModel):
    status: str
    findings: int
    error: str | None = None


class SweepReportRead(BaseModel):
    """Serialized sweep report."""

    started_at: datetime
    finished_at: datetime | None
    skipped: bool
    outcomes: dict[str, DetectorOutcomeRead]
