"""
Job runner integration: request builders, cost hooks and analysis packaging.

Nothing in this package executes jobs; it only produces deterministic,
hash-stamped request documents and validates them.
"""

from finops.jobforge.hooks import finops_hooks
from finops.jobforge.packaging import analyze, render_report, validate_bundle
from finops.jobforge.requests import (
    JobOptions,
    build_job_request,
    create_anomaly_scan_job,
    create_churn_risk_job,
    create_job_from_anomalies,
    create_job_from_churn_risks,
    create_job_from_report,
    create_reconcile_job,
    idempotency_key,
    serialize_job_request,
    serialize_job_requests,
)

__all__ = [
    "JobOptions",
    "analyze",
    "build_job_request",
    "create_anomaly_scan_job",
    "create_churn_risk_job",
    "create_job_from_anomalies",
    "create_job_from_churn_risks",
    "create_job_from_report",
    "create_reconcile_job",
    "finops_hooks",
    "idempotency_key",
    "render_report",
    "serialize_job_request",
    "serialize_job_requests",
    "validate_bundle",
]
