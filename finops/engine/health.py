"""
Health and capability metadata advertised to the job runner registry.

Checks are run in-process: every registered contract must produce a JSON
schema with a known version, and every built-in profile must pass its own
contract.
"""

from typing import Optional

import structlog

from finops.engine.profiles import list_profiles, validate_profile
from finops.models import MODEL_REGISTRY, SCHEMA_VERSIONS
from finops.models.enums import HealthState, JobType
from finops.models.jobs import MODULE_ID
from finops.models.system import (
    CapabilityMetadata,
    DLQSemantics,
    HealthChecks,
    HealthStatus,
    JobTypeCapability,
    RetryPolicy,
)
from finops.models.types import live_timestamp

logger = structlog.get_logger()

MODULE_VERSION = "0.1.0"
SCHEMA_VERSION = "1.0.0"

CAPABILITIES = [
    "billing_ingest",
    "mrr_reconcile",
    "anomaly_detect",
    "churn_assess",
    "jobforge_emit",
]


def _contracts_ok() -> bool:
    for name, model in MODEL_REGISTRY.items():
        if not model.model_json_schema():
            logger.warning("contract_schema_empty", contract=name)
            return False
    return True


def _schemas_ok() -> bool:
    missing = sorted(set(MODEL_REGISTRY) - set(SCHEMA_VERSIONS))
    if missing:
        logger.warning("schema_version_missing", contracts=missing)
    return not missing


def _profiles_ok() -> bool:
    for profile in list_profiles():
        result = validate_profile(profile.model_dump(mode="json"))
        if not result.valid:
            logger.warning("profile_invalid", profile_id=profile.profile_id, errors=result.errors)
            return False
    return True


def get_health_status(stable_output: bool = False) -> HealthStatus:
    """
    Run the self-checks and report module health.

    Returns:
        HealthStatus that is ``healthy`` when every check passes and
        ``degraded`` otherwise
    """
    checks = HealthChecks(contracts=_contracts_ok(), schemas=_schemas_ok(), profiles=_profiles_ok())
    healthy = checks.contracts and checks.schemas and checks.profiles
    status = HealthStatus(
        status=HealthState.HEALTHY if healthy else HealthState.DEGRADED,
        module_id=MODULE_ID,
        module_version=MODULE_VERSION,
        timestamp=live_timestamp(stable_output),
        checks=checks,
        capabilities=list(CAPABILITIES),
    )
    logger.info("health_checked", status=status.status.value)
    return status


def get_capability_metadata() -> CapabilityMetadata:
    return CapabilityMetadata(
        module_id=MODULE_ID,
        module_version=MODULE_VERSION,
        schema_version=SCHEMA_VERSION,
        job_types=[
            JobTypeCapability(
                job_type=JobType.RECONCILE.value,
                description="Reconcile MRR from billing events",
                input_schema="BillingEvent[]",
                output_schema="ReconReport",
                timeout_seconds=300,
                required_context=["tenant_id", "project_id", "period_start", "period_end"],
            ),
            JobTypeCapability(
                job_type=JobType.ANOMALY_SCAN.value,
                description="Detect anomalies in ledger data",
                input_schema="LedgerState",
                output_schema="Anomaly[]",
                timeout_seconds=300,
                required_context=["tenant_id", "project_id", "reference_date"],
            ),
            JobTypeCapability(
                job_type=JobType.CHURN_RISK_REPORT.value,
                description="Assess churn risk for customers",
                input_schema="ChurnInputs",
                output_schema="ChurnRisk[]",
                timeout_seconds=600,
                required_context=["tenant_id", "project_id", "reference_date"],
            ),
        ],
        input_formats=["json"],
        output_formats=["json", "markdown"],
        features=[
            "deterministic_output",
            "canonical_hashing",
            "multi_tenant",
            "profile_based_thresholds",
            "jobforge_compatible",
        ],
        dlq_semantics=DLQSemantics(
            dead_letter_destination="./dlq/finops",
            retryable_errors=["io_error", "timeout", "temporary_failure"],
            non_retryable_errors=["validation_error", "schema_error", "security_error", "tenant_mismatch"],
        ),
    )


def is_supported_job_type(job_type: str) -> bool:
    return job_type in {item.value for item in JobType}


def get_retry_policy(error_category: str, dlq: Optional[DLQSemantics] = None) -> RetryPolicy:
    """
    Retry policy the runner should apply to a failed job.

    Args:
        error_category: Lower-case error category (``io_error``, ``schema_error``, ...)
        dlq: DLQ semantics to consult; defaults to this module's own

    Returns:
        RetryPolicy; unknown categories get a single cautious retry
    """
    dlq = dlq or get_capability_metadata().dlq_semantics
    if error_category in dlq.non_retryable_errors:
        return RetryPolicy(retryable=False, max_attempts=0, backoff_seconds=0)
    if error_category in dlq.retryable_errors:
        return RetryPolicy(
            retryable=True,
            max_attempts=dlq.max_attempts,
            backoff_seconds=dlq.backoff_initial_seconds,
        )
    return RetryPolicy(retryable=True, max_attempts=1, backoff_seconds=dlq.backoff_initial_seconds)
