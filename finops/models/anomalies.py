"""
Anomaly models emitted by the detection rule battery.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from .enums import AnomalyType, Severity
from .types import NonEmptyStr, ProjectId, TenantId, Timestamp


class Anomaly(BaseModel):
    """
    A single detected anomaly.

    ``anomaly_id`` is derived from the anomaly type, tenant, project and a
    discriminating key, so re-running detection over the same data yields
    the same ids.
    """

    anomaly_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    anomaly_type: AnomalyType
    severity: Severity
    detected_at: Timestamp
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    description: str
    affected_events: list[str] = Field(default_factory=list)
    expected_value: Optional[float] = None
    observed_value: Optional[float] = None
    difference: Optional[float] = None
    confidence: float = Field(ge=0.0, le=1.0)
    recommended_action: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AnomalyStats(BaseModel):
    total: int = Field(ge=0)
    by_severity: dict[str, int]
    by_type: dict[str, int]


class AnomalyResult(BaseModel):
    anomalies: list[Anomaly] = Field(default_factory=list)
    stats: AnomalyStats
