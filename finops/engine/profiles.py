"""
Threshold profiles.

A profile bundles the anomaly and churn thresholds tuned for one application
family. Lookups by unknown id fall back to the ``base`` profile.
"""

from typing import Any, Optional

from finops.errors import InputValidationError
from finops.models.enums import AlertChannel, Severity
from finops.models.profiles import (
    AlertRouting,
    AnomalyThreshold,
    ChurnThreshold,
    Profile,
    ProfileValidation,
)
from finops.models.validation import validate_record
from finops.utils.logging import get_logger, log_event

logger = get_logger(__name__)

BASE_PROFILE_ID = "base"

_DEFAULT_ANOMALY = AnomalyThreshold()
_DEFAULT_CHURN = ChurnThreshold()


def _anomaly(**overrides: Any) -> AnomalyThreshold:
    return _DEFAULT_ANOMALY.model_copy(update=overrides)


def _churn(**overrides: Any) -> ChurnThreshold:
    return _DEFAULT_CHURN.model_copy(update=overrides)


def _routing(channels: list[AlertChannel], severities: list[Severity]) -> AlertRouting:
    return AlertRouting(channels=channels, severity_filter=severities)


# =============================================================================
# Profile Definitions
# =============================================================================

PROFILES: dict[str, Profile] = {
    "base": Profile(
        profile_id="base",
        name="Base Profile",
        description="Default configuration suitable for most SaaS applications",
        anomaly_thresholds=_anomaly(),
        churn_thresholds=_churn(),
        alert_routing=_routing([AlertChannel.EMAIL], [Severity.HIGH, Severity.CRITICAL]),
    ),
    "jobforge": Profile(
        profile_id="jobforge",
        tenant_id="jobforge",
        name="JobForge Profile",
        description="Optimized for JobForge batch processing platform",
        plan_ids=["starter", "professional", "enterprise"],
        anomaly_thresholds=_anomaly(
            refund_spike_threshold_cents=50000,
            payment_failure_spike_threshold=0.2,
        ),
        churn_thresholds=_churn(payment_failure_weight=0.35, usage_drop_weight=0.3),
        alert_routing=_routing(
            [AlertChannel.EMAIL, AlertChannel.SLACK],
            [Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL],
        ),
    ),
    "settler": Profile(
        profile_id="settler",
        tenant_id="settler",
        name="Settler Profile",
        description="Optimized for Settler payment reconciliation service",
        plan_ids=["basic", "business", "enterprise"],
        anomaly_thresholds=_anomaly(
            refund_spike_threshold_cents=25000,
            dispute_spike_threshold=3,
            duplicate_event_window_seconds=60,
        ),
        churn_thresholds=_churn(payment_failure_weight=0.4, risk_score_high_threshold=70),
        alert_routing=_routing(
            [AlertChannel.EMAIL, AlertChannel.PAGERDUTY], [Severity.HIGH, Severity.CRITICAL]
        ),
    ),
    "readylayer": Profile(
        profile_id="readylayer",
        tenant_id="readylayer",
        name="Readylayer Profile",
        description="Optimized for Readylayer infrastructure platform",
        plan_ids=["developer", "team", "organization"],
        anomaly_thresholds=_anomaly(usage_drop_threshold_pct=30, refund_spike_threshold_pct=5),
        churn_thresholds=_churn(usage_drop_weight=0.35, support_ticket_weight=0.25),
        alert_routing=_routing(
            [AlertChannel.SLACK], [Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]
        ),
    ),
    "aias": Profile(
        profile_id="aias",
        tenant_id="aias",
        name="AIAS Profile",
        description="Optimized for AIAS AI/ML platform",
        plan_ids=["hobby", "pro", "scale"],
        anomaly_thresholds=_anomaly(usage_drop_threshold_pct=40, refund_spike_threshold_cents=75000),
        churn_thresholds=_churn(usage_drop_weight=0.4, inactivity_weight=0.15),
        alert_routing=_routing(
            [AlertChannel.EMAIL, AlertChannel.SLACK, AlertChannel.WEBHOOK],
            [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL],
        ),
    ),
    "keys": Profile(
        profile_id="keys",
        tenant_id="keys",
        name="Keys Profile",
        description="Optimized for Keys authentication/authorization service",
        plan_ids=["free", "starter", "growth", "enterprise"],
        anomaly_thresholds=_anomaly(
            duplicate_event_window_seconds=180,
            payment_failure_spike_threshold=0.15,
        ),
        churn_thresholds=_churn(payment_failure_weight=0.25, support_ticket_weight=0.3),
        alert_routing=_routing(
            [AlertChannel.EMAIL, AlertChannel.SLACK], [Severity.HIGH, Severity.CRITICAL]
        ),
    ),
}


# =============================================================================
# Lookup
# =============================================================================


def get_profile(profile_id: Optional[str]) -> Profile:
    """
    Look up a profile by id.

    Args:
        profile_id: One of the ids in PROFILES

    Returns:
        The matching profile, or the base profile for unknown ids
    """
    profile = PROFILES.get(profile_id or BASE_PROFILE_ID)
    if profile is None:
        log_event(logger, "warning", "profile_not_found", profile_id=profile_id, fallback=BASE_PROFILE_ID)
        return PROFILES[BASE_PROFILE_ID]
    return profile


def list_profiles() -> list[Profile]:
    return list(PROFILES.values())


def merge_profile_with_overrides(profile: Profile, overrides: dict[str, Any]) -> Profile:
    """
    Overlay threshold overrides onto a profile.

    Only ``anomaly_thresholds`` and ``churn_thresholds`` are merged; each is
    updated key by key, so partial overrides keep the remaining defaults.

    Raises:
        InputValidationError: If the merged profile violates its contract
    """
    merged = profile.model_dump(mode="json")
    for section in ("anomaly_thresholds", "churn_thresholds"):
        merged[section].update(overrides.get(section) or {})

    outcome = validate_record(Profile, merged)
    if not outcome.success:
        raise InputValidationError(
            f"Merged profile validation failed: {', '.join(outcome.errors)}",
            details={"profile_id": profile.profile_id, "errors": outcome.errors},
        )
    return outcome.value


def validate_profile(data: Any) -> ProfileValidation:
    outcome = validate_record(Profile, data)
    return ProfileValidation(valid=outcome.success, errors=outcome.errors)
