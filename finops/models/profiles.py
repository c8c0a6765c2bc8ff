"""
Threshold profile models.

A profile bundles the anomaly and churn thresholds for one application
family together with its alert routing preferences.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import AlertChannel, Severity
from .types import NonEmptyStr


class AnomalyThreshold(BaseModel):
    refund_spike_threshold_cents: int = Field(default=100000, ge=0)
    refund_spike_threshold_pct: float = Field(default=10, ge=0, le=100)
    dispute_spike_threshold: int = Field(default=5, ge=0)
    payment_failure_spike_threshold: float = Field(default=0.25, ge=0, le=1)
    duplicate_event_window_seconds: int = Field(default=300, ge=0)
    usage_drop_threshold_pct: float = Field(default=50, ge=0, le=100)


class ChurnThreshold(BaseModel):
    payment_failure_weight: float = Field(default=0.3, ge=0, le=1)
    usage_drop_weight: float = Field(default=0.25, ge=0, le=1)
    support_ticket_weight: float = Field(default=0.2, ge=0, le=1)
    plan_downgrade_weight: float = Field(default=0.15, ge=0, le=1)
    inactivity_weight: float = Field(default=0.1, ge=0, le=1)
    risk_score_low_threshold: float = Field(default=30, ge=0, le=100)
    risk_score_medium_threshold: float = Field(default=50, ge=0, le=100)
    risk_score_high_threshold: float = Field(default=75, ge=0, le=100)


class AlertRouting(BaseModel):
    channels: list[AlertChannel] = Field(default_factory=list)
    severity_filter: list[Severity] = Field(
        default_factory=lambda: [Severity.HIGH, Severity.CRITICAL]
    )


class Profile(BaseModel):
    """
    Per-application threshold profile.

    Attributes:
        profile_id: Lookup key (``base``, ``jobforge``, ...)
        tenant_id: Tenant the profile was tuned for, if any
        plan_ids: Plan identifiers known to the application
        anomaly_thresholds: Thresholds consumed by the anomaly detector
        churn_thresholds: Weights and score buckets for the churn scorer
        alert_routing: Where alerts go and which severities are forwarded
        redact_sensitive_data: Whether downstream sinks must redact PII
    """

    profile_id: NonEmptyStr
    tenant_id: Optional[str] = None
    project_id: Optional[str] = None
    name: NonEmptyStr
    description: Optional[str] = None
    plan_ids: Optional[list[str]] = None
    anomaly_thresholds: AnomalyThreshold = Field(default_factory=AnomalyThreshold)
    churn_thresholds: ChurnThreshold = Field(default_factory=ChurnThreshold)
    alert_routing: AlertRouting = Field(default_factory=AlertRouting)
    redact_sensitive_data: bool = True
    version: str = "1.0.0"


class ProfileValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
