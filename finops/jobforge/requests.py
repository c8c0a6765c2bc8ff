"""
Job request builders.

This module only creates request payloads for the external job runner; it
never executes jobs. Every request is stamped with an idempotency key over
(job_type, tenant_id, project_id, payload) and its ``job_id`` is derived
from that key, so rebuilding the same request yields the same identity.
"""

from typing import Any, Iterable, Optional

from pydantic import BaseModel, Field

from finops.config import get_settings
from finops.engine.canonical import hash_canonical, serialize_canonical
from finops.jobforge.hooks import (
    ANOMALY_CAPABILITY,
    CHURN_CAPABILITY,
    RECONCILE_CAPABILITY,
    finops_hooks,
)
from finops.models.anomalies import Anomaly
from finops.models.churn import ChurnRisk
from finops.models.enums import JobPriority, JobType, RiskLevel, Severity
from finops.models.jobs import KeyedJobRequest
from finops.models.reconciliation import ReconReport
from finops.models.types import live_timestamp

TRIGGERED_BY = "finops-autopilot"
INPUT_DIR = "./input"
DEFAULT_TIMEOUT_SECONDS = 300
CHURN_TIMEOUT_SECONDS = 600

DEFAULT_ANOMALY_SCAN_THRESHOLDS = {
    "refund_spike_threshold_cents": 100000,
    "dispute_spike_threshold": 5,
    "payment_failure_spike_threshold": 0.25,
}

DEFAULT_CHURN_WEIGHTS = {
    "payment_failure": 0.3,
    "usage_drop": 0.25,
    "support_tickets": 0.2,
    "plan_downgrade": 0.15,
    "inactivity": 0.1,
}


class JobOptions(BaseModel):
    """
    Per-request options shared by every builder.

    Attributes:
        tenant_id: Tenant the job runs for
        project_id: Project the job runs for
        priority: Runner queue priority
        max_retries: Retry budget, also echoed into the payload
        timeout_seconds: Timeout override; each job type has its own default
        metadata: Caller metadata copied into the payload
        stable_output: Stamp ``requested_at`` with the fixed sentinel
    """

    tenant_id: str
    project_id: str
    priority: JobPriority = JobPriority.NORMAL
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: Optional[int] = Field(default=None, ge=0)
    metadata: Optional[dict[str, Any]] = None
    stable_output: bool = False


def idempotency_key(job_type: str, tenant_id: str, project_id: str, payload: dict[str, Any]) -> str:
    """Content hash identifying a job request independently of when it was built."""
    return hash_canonical(
        {
            "job_type": job_type,
            "tenant_id": tenant_id,
            "project_id": project_id,
            "payload": payload,
        }
    )


def job_id_for(key: str) -> str:
    return f"job-{key[:16]}"


def file_source(path: str) -> dict[str, str]:
    return {"type": "file", "path": path, "format": "json"}


def output_path(kind: str, tenant_id: str, project_id: str) -> str:
    """Artifact path a job writes to, rooted at the configured ``output_dir``."""
    root = get_settings().output_dir.rstrip("/")
    return f"{root}/{kind}-{tenant_id}-{project_id}.json"


def build_job_request(
    job_type: str,
    tenant_id: str,
    project_id: str,
    payload: dict[str, Any],
    priority: JobPriority = JobPriority.NORMAL,
    max_retries: int = 3,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    metadata: Optional[dict[str, Any]] = None,
    stable_output: bool = False,
) -> KeyedJobRequest:
    """
    Assemble a keyed job request.

    Args:
        job_type: Runner job type
        tenant_id: Tenant the job runs for
        project_id: Project the job runs for
        payload: Job-specific payload; the only content besides identity
            that feeds the idempotency key
        priority: Runner queue priority
        max_retries: Retry budget
        timeout_seconds: Runner timeout
        metadata: Request metadata (not hashed)
        stable_output: Stamp ``requested_at`` with the fixed sentinel

    Returns:
        KeyedJobRequest with ``job_id`` derived from its idempotency key
    """
    key = idempotency_key(job_type, tenant_id, project_id, payload)
    return KeyedJobRequest(
        job_type=job_type,
        job_id=job_id_for(key),
        tenant_id=tenant_id,
        project_id=project_id,
        requested_at=live_timestamp(stable_output),
        payload=payload,
        priority=priority,
        max_retries=max_retries,
        timeout_seconds=timeout_seconds,
        metadata=metadata or {},
        idempotency_key=key,
    )


def _request_metadata(notes: Optional[str] = None) -> dict[str, Any]:
    metadata: dict[str, Any] = {"triggered_by": TRIGGERED_BY}
    if notes is not None:
        metadata["notes"] = notes
    return metadata


def _runtime_fields(options: JobOptions, default_timeout: int) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "max_retries": options.max_retries,
        "timeout_seconds": options.timeout_seconds or default_timeout,
    }
    if options.metadata:
        fields["metadata"] = options.metadata
    return fields


# =============================================================================
# Builders
# =============================================================================


def create_reconcile_job(
    period_start: str, period_end: str, events_path: str, options: JobOptions
) -> KeyedJobRequest:
    """Request a reconciliation run over ``events_path`` for one period."""
    tenant_id, project_id = options.tenant_id, options.project_id
    payload = {
        "period_start": period_start,
        "period_end": period_end,
        "operation": "reconcile",
        "finops_hooks": finops_hooks(tenant_id, project_id, RECONCILE_CAPABILITY),
        "events_source": file_source(events_path),
        "output": {
            "ledger_path": output_path("ledger", tenant_id, project_id),
            "report_path": output_path("recon", tenant_id, project_id),
        },
        **_runtime_fields(options, DEFAULT_TIMEOUT_SECONDS),
    }
    return build_job_request(
        JobType.RECONCILE.value,
        tenant_id,
        project_id,
        payload,
        priority=options.priority,
        max_retries=options.max_retries,
        timeout_seconds=options.timeout_seconds or DEFAULT_TIMEOUT_SECONDS,
        metadata=_request_metadata(f"Events source: {events_path}"),
        stable_output=options.stable_output,
    )


def create_anomaly_scan_job(
    ledger_path: str, options: JobOptions, extra_payload: Optional[dict[str, Any]] = None
) -> KeyedJobRequest:
    """Request an anomaly scan over the ledger stored at ``ledger_path``."""
    tenant_id, project_id = options.tenant_id, options.project_id
    payload = {
        "ledger_path": ledger_path,
        "operation": "anomaly_scan",
        "finops_hooks": finops_hooks(tenant_id, project_id, ANOMALY_CAPABILITY),
        "ledger_source": file_source(ledger_path),
        "thresholds": dict(DEFAULT_ANOMALY_SCAN_THRESHOLDS),
        "output": {"anomalies_path": output_path("anomalies", tenant_id, project_id)},
        **_runtime_fields(options, DEFAULT_TIMEOUT_SECONDS),
        **(extra_payload or {}),
    }
    return build_job_request(
        JobType.ANOMALY_SCAN.value,
        tenant_id,
        project_id,
        payload,
        priority=options.priority,
        max_retries=options.max_retries,
        timeout_seconds=options.timeout_seconds or DEFAULT_TIMEOUT_SECONDS,
        metadata=_request_metadata(),
        stable_output=options.stable_output,
    )


def create_churn_risk_job(
    ledger_path: str,
    options: JobOptions,
    usage_metrics_path: Optional[str] = None,
    support_tickets_path: Optional[str] = None,
    extra_payload: Optional[dict[str, Any]] = None,
) -> KeyedJobRequest:
    """Request a churn risk report; optional signal files are referenced when given."""
    tenant_id, project_id = options.tenant_id, options.project_id
    inputs: dict[str, Any] = {"ledger": file_source(ledger_path)}
    if usage_metrics_path:
        inputs["usage_metrics"] = file_source(usage_metrics_path)
    if support_tickets_path:
        inputs["support_tickets"] = file_source(support_tickets_path)

    payload = {
        "operation": "churn_risk_report",
        "finops_hooks": finops_hooks(tenant_id, project_id, CHURN_CAPABILITY),
        "inputs": inputs,
        "weights": dict(DEFAULT_CHURN_WEIGHTS),
        "output": {"report_path": output_path("churn", tenant_id, project_id)},
        **_runtime_fields(options, CHURN_TIMEOUT_SECONDS),
        **(extra_payload or {}),
    }
    return build_job_request(
        JobType.CHURN_RISK_REPORT.value,
        tenant_id,
        project_id,
        payload,
        priority=options.priority,
        max_retries=options.max_retries,
        timeout_seconds=options.timeout_seconds or CHURN_TIMEOUT_SECONDS,
        metadata=_request_metadata("Operational insights only - not financial advice"),
        stable_output=options.stable_output,
    )


def create_job_from_report(report: ReconReport, options: JobOptions) -> KeyedJobRequest:
    """Re-run reconciliation for the period a report covered."""
    return create_reconcile_job(
        report.period_start,
        report.period_end,
        f"{INPUT_DIR}/events-{report.tenant_id}-{report.project_id}.json",
        options,
    )


def create_job_from_anomalies(
    anomalies: Iterable[Anomaly], ledger_path: str, options: JobOptions
) -> KeyedJobRequest:
    """Anomaly scan that prioritizes the critical anomalies already found."""
    priority_ids = [item.anomaly_id for item in anomalies if item.severity == Severity.CRITICAL]
    return create_anomaly_scan_job(
        ledger_path, options, extra_payload={"priority_anomaly_ids": priority_ids}
    )


def create_job_from_churn_risks(
    risks: Iterable[ChurnRisk], ledger_path: str, options: JobOptions
) -> KeyedJobRequest:
    """Churn report that prioritizes customers already at critical risk."""
    priority_ids = [risk.customer_id for risk in risks if risk.risk_level == RiskLevel.CRITICAL]
    return create_churn_risk_job(
        ledger_path, options, extra_payload={"priority_customer_ids": priority_ids}
    )


def serialize_job_request(job: KeyedJobRequest) -> str:
    return serialize_canonical(job)


def serialize_job_requests(jobs: Iterable[KeyedJobRequest]) -> str:
    return serialize_canonical(list(jobs))
