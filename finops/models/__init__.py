"""
Pydantic v2 data contracts for the FinOps pipeline.

Every artifact the pipeline reads or writes is described here, so a JSON
file can be checked against its contract by name through MODEL_REGISTRY.

Model Organization:
    - enums: Enumeration types shared by all contracts
    - types: Constrained identifiers and ISO timestamp helpers
    - validation: Non-raising validate-and-project helpers
    - events: Billing events and ingestion results
    - ledger: Subscription, customer and ledger state
    - reconciliation: MRR discrepancies and reconciliation reports
    - anomalies: Anomaly records and detection results
    - churn: External churn signals and churn risk assessments
    - profiles: Threshold profiles
    - jobs: Job requests, bundles, report envelopes and analyze inputs
    - cost: Cost snapshot inputs and reports
    - system: Health and capability metadata

Usage:
    >>> from finops.models import BillingEvent
    >>> event = BillingEvent.model_validate(record)
"""

from .enums import (
    AlertChannel,
    AnomalyType,
    BillingEventType,
    ChurnSignalType,
    CostCategory,
    DiscrepancyReason,
    FindingSeverity,
    HealthState,
    JobPriority,
    JobType,
    JobTypeStatus,
    RiskLevel,
    Severity,
    SubscriptionStatus,
    TicketStatus,
)
from .events import (
    SOURCE_HASH_KEYS,
    BillingEvent,
    IngestError,
    IngestResult,
    IngestStats,
    NormalizedEvent,
)
from .ledger import CustomerLedger, LedgerState, ReconcileOptions, SubscriptionState
from .reconciliation import MrrDiscrepancy, ReconReport
from .anomalies import Anomaly, AnomalyResult, AnomalyStats
from .churn import (
    ChurnInputs,
    ChurnResult,
    ChurnRisk,
    ChurnSignal,
    ChurnStats,
    PlanDowngrade,
    SupportTicket,
    UsageMetrics,
)
from .profiles import AlertRouting, AnomalyThreshold, ChurnThreshold, Profile, ProfileValidation
from .jobs import (
    JOBFORGE_SCHEMA_VERSION,
    AnalyzeInputs,
    BundleValidation,
    Canonicalization,
    JobRequest,
    JobRequestBundle,
    JobRequestInputs,
    KeyedJobRequest,
    ReportEnvelope,
    ReportFinding,
    ReportSummary,
)
from .cost import (
    CostBreakdown,
    CostLineItem,
    CostSnapshotInput,
    CostSnapshotRefusal,
    CostSnapshotReport,
    CostSnapshotResult,
)
from .system import CapabilityMetadata, DLQSemantics, HealthStatus, JobTypeCapability, RetryPolicy
from .types import STABLE_TIMESTAMP
from .validation import ValidationOutcome, validate_record, validate_tenant_context

__all__ = [
    # Enumerations
    "AlertChannel",
    "AnomalyType",
    "BillingEventType",
    "ChurnSignalType",
    "CostCategory",
    "DiscrepancyReason",
    "FindingSeverity",
    "HealthState",
    "JobPriority",
    "JobType",
    "JobTypeStatus",
    "RiskLevel",
    "Severity",
    "SubscriptionStatus",
    "TicketStatus",
    # Event models
    "SOURCE_HASH_KEYS",
    "BillingEvent",
    "IngestError",
    "IngestResult",
    "IngestStats",
    "NormalizedEvent",
    # Ledger models
    "CustomerLedger",
    "LedgerState",
    "ReconcileOptions",
    "SubscriptionState",
    # Reconciliation models
    "MrrDiscrepancy",
    "ReconReport",
    # Anomaly models
    "Anomaly",
    "AnomalyResult",
    "AnomalyStats",
    # Churn models
    "ChurnInputs",
    "ChurnResult",
    "ChurnRisk",
    "ChurnSignal",
    "ChurnStats",
    "PlanDowngrade",
    "SupportTicket",
    "UsageMetrics",
    # Profile models
    "AlertRouting",
    "AnomalyThreshold",
    "ChurnThreshold",
    "Profile",
    "ProfileValidation",
    # Job and report models
    "JOBFORGE_SCHEMA_VERSION",
    "AnalyzeInputs",
    "BundleValidation",
    "Canonicalization",
    "JobRequest",
    "JobRequestBundle",
    "JobRequestInputs",
    "KeyedJobRequest",
    "ReportEnvelope",
    "ReportFinding",
    "ReportSummary",
    # Cost snapshot models
    "CostBreakdown",
    "CostLineItem",
    "CostSnapshotInput",
    "CostSnapshotRefusal",
    "CostSnapshotReport",
    "CostSnapshotResult",
    # System models
    "CapabilityMetadata",
    "DLQSemantics",
    "HealthStatus",
    "JobTypeCapability",
    "RetryPolicy",
    # Helpers
    "STABLE_TIMESTAMP",
    "ValidationOutcome",
    "validate_record",
    "validate_tenant_context",
]

# Contract version registry
SCHEMA_VERSIONS = {
    "billing_event": "1.0.0",
    "normalized_event": "1.0.0",
    "ledger_state": "1.0.0",
    "recon_report": "1.0.0",
    "anomaly": "1.0.0",
    "churn_inputs": "1.0.0",
    "churn_risk": "1.0.0",
    "profile": "1.0.0",
    "job_request_bundle": JOBFORGE_SCHEMA_VERSION,
    "report_envelope": JOBFORGE_SCHEMA_VERSION,
    "analyze_inputs": JOBFORGE_SCHEMA_VERSION,
    "cost_snapshot_input": "1.0.0",
    "cost_snapshot_report": "1.0.0",
}

# Model registry mapping contract names to classes
MODEL_REGISTRY = {
    "billing_event": BillingEvent,
    "normalized_event": NormalizedEvent,
    "ledger_state": LedgerState,
    "recon_report": ReconReport,
    "anomaly": Anomaly,
    "churn_inputs": ChurnInputs,
    "churn_risk": ChurnRisk,
    "profile": Profile,
    "job_request_bundle": JobRequestBundle,
    "report_envelope": ReportEnvelope,
    "analyze_inputs": AnalyzeInputs,
    "cost_snapshot_input": CostSnapshotInput,
    "cost_snapshot_report": CostSnapshotReport,
}


def get_schema_version(model_name: str) -> str:
    """
    Get the current schema version for a contract.

    Args:
        model_name: Contract name (e.g., "billing_event", "ledger_state")

    Returns:
        Schema version string (e.g., "1.0.0")

    Raises:
        KeyError: If model_name is not recognized
    """
    return SCHEMA_VERSIONS[model_name]


def get_model_class(model_name: str):
    """
    Get the Pydantic model class by contract name.

    Raises:
        KeyError: If model_name is not recognized
    """
    return MODEL_REGISTRY[model_name]
