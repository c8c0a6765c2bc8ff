"""
Job request, bundle and report envelope models exchanged with the job runner.

Bundles and report envelopes carry a canonicalization block whose hash is
computed over the whole document minus the block itself.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from .churn import ChurnInputs
from .enums import FindingSeverity, JobPriority
from .events import NormalizedEvent
from .ledger import LedgerState
from .types import NonEmptyStr, ProjectId, TenantId, Timestamp

JOBFORGE_SCHEMA_VERSION = "1.0.0"
MODULE_ID = "finops"


class JobRequest(BaseModel):
    """
    A request for the runner to execute one batch job.

    ``job_type`` is a plain string so that bundles naming job types unknown
    to this module can still be parsed and then rejected by bundle validation.
    """

    job_type: NonEmptyStr
    job_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    requested_at: Timestamp
    payload: dict[str, Any]
    priority: JobPriority = JobPriority.NORMAL
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: int = Field(default=300, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class KeyedJobRequest(JobRequest):
    """JobRequest stamped with its idempotency key."""

    idempotency_key: NonEmptyStr


class Canonicalization(BaseModel):
    algorithm: Literal["sha256"] = "sha256"
    canonical_format: Literal["json-stable"] = "json-stable"
    canonical_hash: NonEmptyStr


class JobRequestBundle(BaseModel):
    schema_version: NonEmptyStr
    module_id: Literal["finops"] = MODULE_ID
    tenant_id: TenantId
    project_id: ProjectId
    trace_id: NonEmptyStr
    requests: list[KeyedJobRequest] = Field(default_factory=list)
    canonicalization: Canonicalization
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReportFinding(BaseModel):
    finding_id: NonEmptyStr
    title: NonEmptyStr
    description: NonEmptyStr
    severity: FindingSeverity
    category: NonEmptyStr
    evidence: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReportSummary(BaseModel):
    period_start: Optional[Timestamp] = None
    period_end: Optional[Timestamp] = None
    event_count: int = Field(default=0, ge=0)
    normalized_event_count: int = Field(default=0, ge=0)
    ledger_customer_count: int = Field(default=0, ge=0)
    ledger_mrr_cents: int = Field(default=0, ge=0)
    reconciliation_discrepancies: int = Field(default=0, ge=0)
    anomaly_count: int = Field(default=0, ge=0)
    churn_risk_count: int = Field(default=0, ge=0)
    job_request_count: int = Field(default=0, ge=0)


class ReportEnvelope(BaseModel):
    """Human- and machine-readable summary of one analysis run."""

    schema_version: NonEmptyStr
    module_id: Literal["finops"] = MODULE_ID
    tenant_id: TenantId
    project_id: ProjectId
    trace_id: NonEmptyStr
    report_id: NonEmptyStr
    generated_at: Timestamp
    report_type: Literal["finops"] = "finops"
    summary: ReportSummary
    findings: list[ReportFinding] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    canonicalization: Canonicalization
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReconcileJobInput(BaseModel):
    events_path: NonEmptyStr


class AnomalyScanJobInput(BaseModel):
    ledger_path: NonEmptyStr


class ChurnRiskJobInput(BaseModel):
    ledger_path: NonEmptyStr
    usage_metrics_path: Optional[NonEmptyStr] = None
    support_tickets_path: Optional[NonEmptyStr] = None


class JobRequestInputs(BaseModel):
    reconcile: Optional[ReconcileJobInput] = None
    anomaly_scan: Optional[AnomalyScanJobInput] = None
    churn_risk: Optional[ChurnRiskJobInput] = None


class AnalyzeInputs(BaseModel):
    """
    Input envelope for a full analysis run.

    ``billing_events`` holds raw export records; they are validated one by
    one during normalization so a single bad record never rejects the run.
    ``event_envelopes`` and ``run_manifests`` are only counted.
    """

    schema_version: NonEmptyStr = JOBFORGE_SCHEMA_VERSION
    module_id: Literal["finops"] = MODULE_ID
    tenant_id: TenantId
    project_id: ProjectId
    trace_id: NonEmptyStr
    period_start: Optional[Timestamp] = None
    period_end: Optional[Timestamp] = None
    reference_date: Optional[Timestamp] = None
    event_envelopes: Optional[list[dict[str, Any]]] = None
    run_manifests: Optional[list[dict[str, Any]]] = None
    billing_events: Optional[list[Any]] = None
    normalized_events: Optional[list[NormalizedEvent]] = None
    ledger: Optional[LedgerState] = None
    churn_inputs: Optional[ChurnInputs] = None
    job_requests: JobRequestInputs = Field(default_factory=JobRequestInputs)
    profile: Optional[str] = None


class BundleValidation(BaseModel):
    success: bool
    errors: list[str] = Field(default_factory=list)
