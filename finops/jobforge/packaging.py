"""
Analysis packaging for the job runner.

``analyze`` runs the full pipeline (normalize, build ledger, reconcile,
detect anomalies, score churn) over an AnalyzeInputs envelope and returns a
ReportEnvelope plus a JobRequestBundle. Both documents carry a
canonicalization block whose hash covers the whole document except the
block itself; ``validate_bundle`` re-checks that hash along with the
runner-side safety rules.
"""

from typing import Any, Optional, TypeVar, Union

from pydantic import BaseModel

from finops.config import get_settings
from finops.engine.anomaly_detector import AnomalyDetector
from finops.engine.canonical import document_hash, hash_canonical, serialize_canonical
from finops.engine.churn_scorer import ChurnRiskScorer
from finops.engine.health import is_supported_job_type
from finops.engine.ledger_builder import LedgerBuilder
from finops.engine.normalizer import EventNormalizer
from finops.engine.profiles import get_profile
from finops.engine.reconciliation import ReconciliationEngine
from finops.errors import InputValidationError
from finops.jobforge.requests import (
    CHURN_TIMEOUT_SECONDS,
    build_job_request,
    file_source,
    output_path,
)
from finops.models.anomalies import Anomaly
from finops.models.churn import ChurnRisk
from finops.models.enums import FindingSeverity, JobType, JobTypeStatus
from finops.models.events import NormalizedEvent
from finops.models.jobs import (
    JOBFORGE_SCHEMA_VERSION,
    MODULE_ID,
    AnalyzeInputs,
    BundleValidation,
    Canonicalization,
    JobRequestBundle,
    KeyedJobRequest,
    ReportEnvelope,
    ReportFinding,
    ReportSummary,
)
from finops.models.ledger import LedgerState, ReconcileOptions
from finops.models.reconciliation import MrrDiscrepancy
from finops.models.types import STABLE_TIMESTAMP, live_timestamp, try_parse_timestamp
from finops.models.validation import validate_record
from finops.utils.logging import get_logger, log_event

logger = get_logger(__name__)

DEFAULT_PERIOD_START = "2024-01-01T00:00:00.000Z"
DEFAULT_PERIOD_END = "2024-01-31T23:59:59.999Z"
ACTION_KEYS = ("action", "action_type", "action_name")
SEVERITY_ORDER = [
    FindingSeverity.CRITICAL,
    FindingSeverity.HIGH,
    FindingSeverity.MEDIUM,
    FindingSeverity.LOW,
    FindingSeverity.INFO,
]
# Reconciliation findings above this absolute difference are high severity.
HIGH_DISCREPANCY_CENTS = 1000
_PENDING_HASH = "pending"

DocumentT = TypeVar("DocumentT", JobRequestBundle, ReportEnvelope)


def stamp_canonicalization(document: DocumentT) -> DocumentT:
    """Return a copy of ``document`` with its canonicalization block filled in."""
    block = Canonicalization(canonical_hash=document_hash(document))
    return document.model_copy(update={"canonicalization": block})


def derive_period(records: list[Any]) -> tuple[str, str]:
    """Earliest and latest parseable event timestamps, or the default January window."""
    stamps = []
    for record in records:
        raw = record.get("timestamp") if isinstance(record, dict) else getattr(record, "timestamp", None)
        instant = try_parse_timestamp(raw) if isinstance(raw, str) else None
        if instant is not None:
            stamps.append((instant, raw))
    if not stamps:
        return DEFAULT_PERIOD_START, DEFAULT_PERIOD_END
    stamps.sort(key=lambda item: item[0])
    return stamps[0][1], stamps[-1][1]


# =============================================================================
# Findings
# =============================================================================


def reconciliation_finding(discrepancy: MrrDiscrepancy) -> ReportFinding:
    return ReportFinding(
        finding_id=f"recon-{discrepancy.subscription_id}",
        title=f"MRR discrepancy for {discrepancy.subscription_id}",
        description=(
            f"Detected {discrepancy.reason.value} with "
            f"{discrepancy.difference_cents} cents difference."
        ),
        severity=(
            FindingSeverity.HIGH
            if abs(discrepancy.difference_cents) > HIGH_DISCREPANCY_CENTS
            else FindingSeverity.MEDIUM
        ),
        category="reconciliation",
        evidence=[
            f"subscription_id: {discrepancy.subscription_id}",
            f"difference_cents: {discrepancy.difference_cents}",
            f"reason: {discrepancy.reason.value}",
        ],
    )


def anomaly_finding(anomaly: Anomaly) -> ReportFinding:
    return ReportFinding(
        finding_id=anomaly.anomaly_id,
        title=f"Anomaly: {anomaly.anomaly_type.value.replace('_', ' ')}",
        description=anomaly.description,
        severity=FindingSeverity(anomaly.severity.value),
        category="anomaly",
        evidence=[f"anomaly_id: {anomaly.anomaly_id}", f"type: {anomaly.anomaly_type.value}"],
    )


def churn_finding(risk: ChurnRisk) -> ReportFinding:
    return ReportFinding(
        finding_id=risk.risk_id,
        title=f"Churn risk: {risk.customer_id}",
        description=risk.explanation,
        severity=FindingSeverity(risk.risk_level.value),
        category="churn",
        evidence=[f"customer_id: {risk.customer_id}", f"risk_level: {risk.risk_level.value}"],
    )


def sort_findings(findings: list[ReportFinding]) -> list[ReportFinding]:
    """Most severe first; equal severities ordered by finding_id."""
    return sorted(findings, key=lambda item: (SEVERITY_ORDER.index(item.severity), item.finding_id))


def collect_recommendations(anomalies: list[Anomaly], risks: list[ChurnRisk]) -> list[str]:
    recommendations = {anomaly.recommended_action for anomaly in anomalies if anomaly.recommended_action}
    for risk in risks:
        recommendations.update(risk.recommended_actions)
    return sorted(recommendations)


# =============================================================================
# Analyze
# =============================================================================


def _analysis_job_requests(
    parsed: AnalyzeInputs, period_start: str, period_end: str, stable_output: bool
) -> list[KeyedJobRequest]:
    tenant_id, project_id = parsed.tenant_id, parsed.project_id
    wanted = parsed.job_requests
    specs: list[tuple[JobType, dict[str, Any], int]] = []

    if wanted.reconcile:
        specs.append(
            (
                JobType.RECONCILE,
                {
                    "operation": "reconcile",
                    "period_start": period_start,
                    "period_end": period_end,
                    "events_source": file_source(wanted.reconcile.events_path),
                    "output": {
                        "ledger_path": output_path("ledger", tenant_id, project_id),
                        "report_path": output_path("recon", tenant_id, project_id),
                    },
                },
                300,
            )
        )
    if wanted.anomaly_scan:
        specs.append(
            (
                JobType.ANOMALY_SCAN,
                {
                    "operation": "anomaly_scan",
                    "ledger_source": file_source(wanted.anomaly_scan.ledger_path),
                    "output": {"anomalies_path": output_path("anomalies", tenant_id, project_id)},
                },
                300,
            )
        )
    if wanted.churn_risk:
        inputs: dict[str, Any] = {"ledger": file_source(wanted.churn_risk.ledger_path)}
        if wanted.churn_risk.usage_metrics_path:
            inputs["usage_metrics"] = file_source(wanted.churn_risk.usage_metrics_path)
        if wanted.churn_risk.support_tickets_path:
            inputs["support_tickets"] = file_source(wanted.churn_risk.support_tickets_path)
        specs.append(
            (
                JobType.CHURN_RISK_REPORT,
                {
                    "operation": "churn_risk_report",
                    "inputs": inputs,
                    "output": {"report_path": output_path("churn", tenant_id, project_id)},
                },
                CHURN_TIMEOUT_SECONDS,
            )
        )

    requests = [
        build_job_request(
            job_type.value,
            tenant_id,
            project_id,
            payload,
            timeout_seconds=timeout,
            metadata={
                "trace_id": parsed.trace_id,
                "module_id": MODULE_ID,
                "jobforge_dry_run": True,
                "requires_policy_token": False,
                "job_type_status": JobTypeStatus.AVAILABLE.value,
            },
            stable_output=stable_output,
        )
        for job_type, payload, timeout in specs
    ]
    return sorted(requests, key=lambda request: request.job_type)


def _normalized_events(parsed: AnalyzeInputs, stable_output: bool) -> list[NormalizedEvent]:
    if parsed.normalized_events is not None:
        if stable_output:
            return [
                event.model_copy(update={"normalized_at": STABLE_TIMESTAMP})
                for event in parsed.normalized_events
            ]
        return list(parsed.normalized_events)
    if parsed.billing_events is not None:
        normalizer = EventNormalizer(
            parsed.tenant_id, parsed.project_id, stable_output=stable_output
        )
        return normalizer.ingest(parsed.billing_events).events
    return []


def _ledger(
    parsed: AnalyzeInputs,
    events: list[NormalizedEvent],
    options: ReconcileOptions,
    stable_output: bool,
) -> Optional[LedgerState]:
    if parsed.ledger is not None:
        if stable_output:
            return parsed.ledger.model_copy(update={"computed_at": STABLE_TIMESTAMP})
        return parsed.ledger
    if events:
        return LedgerBuilder(options, stable_output=stable_output).build(events)
    return None


def analyze(
    inputs: Union[AnalyzeInputs, dict[str, Any]], stable_output: bool = False
) -> tuple[ReportEnvelope, JobRequestBundle]:
    """
    Run the full pipeline and package its results.

    Args:
        inputs: AnalyzeInputs envelope, or its JSON form
        stable_output: Freeze every live timestamp to the fixed sentinel

    Returns:
        (ReportEnvelope, JobRequestBundle), both canonicalization-stamped

    Raises:
        InputValidationError: If the input envelope is malformed
    """
    if isinstance(inputs, AnalyzeInputs):
        parsed = inputs
    else:
        outcome = validate_record(AnalyzeInputs, inputs)
        if not outcome.success:
            raise InputValidationError(
                "Invalid analyze inputs", details={"errors": outcome.errors}
            )
        parsed = outcome.value

    tenant_id, project_id = parsed.tenant_id, parsed.project_id
    derived_start, derived_end = derive_period(
        parsed.normalized_events if parsed.normalized_events is not None else parsed.billing_events or []
    )
    period_start = parsed.period_start or derived_start
    period_end = parsed.period_end or derived_end
    options = ReconcileOptions(
        tenant_id=tenant_id, project_id=project_id, period_start=period_start, period_end=period_end
    )

    events = _normalized_events(parsed, stable_output)
    ledger = _ledger(parsed, events, options, stable_output)
    recon = ReconciliationEngine(options, stable_output=stable_output).reconcile(ledger) if ledger else None

    reference_date = parsed.reference_date or period_end
    profile = get_profile(parsed.profile or get_settings().default_profile)

    anomalies: list[Anomaly] = []
    if ledger is not None:
        detector = AnomalyDetector(tenant_id, project_id, profile.anomaly_thresholds)
        anomalies = detector.detect(events, ledger, reference_date).anomalies

    risks: list[ChurnRisk] = []
    if parsed.churn_inputs is not None:
        risks = ChurnRiskScorer(profile.churn_thresholds).assess(parsed.churn_inputs).risks

    requests = _analysis_job_requests(parsed, period_start, period_end, stable_output)
    bundle = stamp_canonicalization(
        JobRequestBundle(
            schema_version=parsed.schema_version,
            tenant_id=tenant_id,
            project_id=project_id,
            trace_id=parsed.trace_id,
            requests=requests,
            canonicalization=Canonicalization(canonical_hash=_PENDING_HASH),
            metadata={"job_count": len(requests)},
        )
    )

    discrepancies = recon.discrepancies if recon else []
    findings = sort_findings(
        [reconciliation_finding(item) for item in discrepancies]
        + [anomaly_finding(item) for item in anomalies]
        + [churn_finding(item) for item in risks]
    )
    report_hash = hash_canonical({"tenant_id": tenant_id, "project_id": project_id, "trace_id": parsed.trace_id})
    report = stamp_canonicalization(
        ReportEnvelope(
            schema_version=parsed.schema_version,
            tenant_id=tenant_id,
            project_id=project_id,
            trace_id=parsed.trace_id,
            report_id=f"finops-report-{report_hash[:12]}",
            generated_at=live_timestamp(stable_output),
            summary=ReportSummary(
                period_start=period_start,
                period_end=period_end,
                event_count=len(parsed.billing_events or []),
                normalized_event_count=len(events),
                ledger_customer_count=len(ledger.customers) if ledger else 0,
                ledger_mrr_cents=ledger.total_mrr_cents if ledger else 0,
                reconciliation_discrepancies=len(discrepancies),
                anomaly_count=len(anomalies),
                churn_risk_count=len(risks),
                job_request_count=len(requests),
            ),
            findings=findings,
            recommendations=collect_recommendations(anomalies, risks),
            canonicalization=Canonicalization(canonical_hash=_PENDING_HASH),
            metadata={
                "event_envelope_count": len(parsed.event_envelopes or []),
                "run_manifest_count": len(parsed.run_manifests or []),
            },
        )
    )

    logger.info(
        "analysis_packaged",
        tenant_id=tenant_id,
        project_id=project_id,
        trace_id=parsed.trace_id,
        findings=len(findings),
        job_requests=len(requests),
        report_hash=report.canonicalization.canonical_hash,
    )
    return report, bundle


# =============================================================================
# Bundle validation
# =============================================================================


def validate_bundle(bundle: Union[JobRequestBundle, dict[str, Any]]) -> BundleValidation:
    """
    Check a job request bundle before it is handed to the runner.

    Never raises; every problem found is returned in ``errors``.

    Rules:
        - the bundle matches the JobRequestBundle contract
        - ``schema_version`` is the supported version
        - every request belongs to the bundle's tenant and project
        - a payload naming an action must require a policy token
        - unknown job types must be explicitly marked UNAVAILABLE
        - the canonical hash matches the bundle content
    """
    data = bundle.model_dump(mode="json") if isinstance(bundle, BaseModel) else bundle
    outcome = validate_record(JobRequestBundle, data)
    if not outcome.success:
        return BundleValidation(success=False, errors=outcome.errors)
    parsed = outcome.value

    errors: list[str] = []
    if parsed.schema_version != JOBFORGE_SCHEMA_VERSION:
        errors.append(f"Unsupported schema_version: {parsed.schema_version}")

    for request in parsed.requests:
        if request.tenant_id != parsed.tenant_id:
            errors.append(f"Request tenant_id mismatch for {request.job_id}")
        if request.project_id != parsed.project_id:
            errors.append(f"Request project_id mismatch for {request.job_id}")
        has_action = any(key in request.payload for key in ACTION_KEYS)
        if has_action and request.metadata.get("requires_policy_token") is not True:
            errors.append(f"Action request missing policy token requirement for {request.job_id}")
        status = request.metadata.get("job_type_status")
        if not is_supported_job_type(request.job_type) and status != JobTypeStatus.UNAVAILABLE.value:
            errors.append(f"Unrecognized job type without UNAVAILABLE status: {request.job_type}")

    expected = document_hash(parsed)
    if parsed.canonicalization.canonical_hash != expected:
        errors.append(
            f"Canonical hash mismatch: expected {expected}, "
            f"got {parsed.canonicalization.canonical_hash}"
        )

    if errors:
        log_event(logger, "warning", "bundle_rejected", trace_id=parsed.trace_id, errors=len(errors))
    return BundleValidation(success=not errors, errors=errors)


# =============================================================================
# Rendering
# =============================================================================


def render_report(report: ReportEnvelope, fmt: str = "md") -> str:
    """
    Render a report envelope as Markdown (``md``/``markdown``) or canonical JSON (``json``).
    """
    if fmt == "json":
        return serialize_canonical(report)

    summary = report.summary
    lines = [
        "# FinOps Autopilot Report",
        "",
        f"- Tenant: {report.tenant_id}",
        f"- Project: {report.project_id}",
        f"- Trace: {report.trace_id}",
        f"- Generated: {report.generated_at}",
        "",
        "## Summary",
        "",
        f"- Period: {summary.period_start or 'n/a'} to {summary.period_end or 'n/a'}",
        f"- Events: {summary.event_count}",
        f"- Normalized events: {summary.normalized_event_count}",
        f"- Customers: {summary.ledger_customer_count}",
        f"- MRR (cents): {summary.ledger_mrr_cents}",
        f"- Reconciliation discrepancies: {summary.reconciliation_discrepancies}",
        f"- Anomalies: {summary.anomaly_count}",
        f"- Churn risks: {summary.churn_risk_count}",
        f"- Job requests: {summary.job_request_count}",
        "",
        "## Findings",
        "",
    ]
    if not report.findings:
        lines.append("- No findings produced.")
    for finding in report.findings:
        lines.append(f"- [{finding.severity.value.upper()}] {finding.title}")
        lines.append(f"  - {finding.description}")
        if finding.evidence:
            lines.append(f"  - Evidence: {'; '.join(finding.evidence)}")

    lines.extend(["", "## Recommendations", ""])
    if not report.recommendations:
        lines.append("- No recommendations generated.")
    lines.extend(f"- {item}" for item in report.recommendations)

    lines.extend(
        [
            "",
            "## Canonicalization",
            "",
            f"- Algorithm: {report.canonicalization.algorithm}",
            f"- Format: {report.canonicalization.canonical_format}",
            f"- Hash: {report.canonicalization.canonical_hash}",
        ]
    )
    return "\n".join(lines)
