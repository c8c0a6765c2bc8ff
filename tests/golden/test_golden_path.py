"""
Golden Path (End-to-End) Tests for FinOps Autopilot.

These tests run fixed billing exports through the whole pipeline and pin
the exact figures a reviewer would check by hand: MRR, discrepancies,
anomalies and the packaged job requests.
"""

from finops.engine.canonical import document_hash, serialize_canonical
from finops.engine.cost_snapshot import CostSnapshotBuilder
from finops.engine.reconciliation import ReconciliationEngine
from finops.jobforge.packaging import analyze, render_report, validate_bundle
from finops.models.cost import CostSnapshotInput
from finops.models.enums import AnomalyType, DiscrepancyReason, FindingSeverity, SubscriptionStatus
from tests.conftest import (
    JAN_END,
    JAN_START,
    PROJECT,
    TENANT,
    build_ledger,
    january_records,
    make_analyze_inputs,
    make_event,
    make_options,
    make_raw_event,
)


# ============================================================================
# Scenario 1: Clean January export
# ============================================================================


def test_golden_clean_month_ledger():
    """
    One customer subscribes, is invoiced and pays in January.

    Verifies:
    - A single active subscription carrying 5000 cents MRR
    - Paid totals come from the invoice
    - Reconciliation balances
    """
    ledger = build_ledger(january_records())

    assert ledger.total_customers == 1
    assert ledger.active_subscriptions == 1
    assert ledger.total_mrr_cents == 5000
    assert ledger.event_count == 3

    customer = ledger.customers["cus_1"]
    assert customer.subscriptions[0].plan_id == "pro"
    assert customer.last_invoice_at == "2024-01-02T00:00:00.000Z"

    report = ReconciliationEngine(make_options(), stable_output=True).reconcile(ledger)
    assert report.is_balanced is True
    assert report.total_difference_cents == 0
    assert report.report_id == f"recon-{TENANT}-{PROJECT}-{JAN_START}-{JAN_END}"


def test_golden_clean_month_analysis():
    """
    The packaged analysis of a clean month has no findings and three jobs.
    """
    report, bundle = analyze(make_analyze_inputs(), stable_output=True)

    summary = report.summary
    assert summary.event_count == 3
    assert summary.normalized_event_count == 3
    assert summary.ledger_customer_count == 1
    assert summary.ledger_mrr_cents == 5000
    assert summary.reconciliation_discrepancies == 0
    assert summary.anomaly_count == 0
    assert summary.job_request_count == 3
    assert report.findings == []

    assert [request.job_type for request in bundle.requests] == [
        "autopilot.finops.anomaly_scan",
        "autopilot.finops.churn_risk_report",
        "autopilot.finops.reconcile",
    ]
    assert validate_bundle(bundle).success is True
    assert bundle.canonicalization.canonical_hash == document_hash(bundle)


def test_golden_analysis_is_reproducible():
    """
    Stable runs over the same export produce byte-identical artifacts.
    """
    first_report, first_bundle = analyze(make_analyze_inputs(), stable_output=True)
    second_report, second_bundle = analyze(make_analyze_inputs(), stable_output=True)

    assert serialize_canonical(first_report) == serialize_canonical(second_report)
    assert serialize_canonical(first_bundle) == serialize_canonical(second_bundle)
    assert render_report(first_report) == render_report(second_report)


# ============================================================================
# Scenario 2: Mid-month cancellation
# ============================================================================


def test_golden_cancellation_clears_mrr():
    """
    A cancel on January 15th leaves no active MRR and nothing to reconcile.
    """
    ledger = build_ledger(january_records(cancel=True))

    subscription = ledger.customers["cus_1"].subscriptions[0]
    assert subscription.status == SubscriptionStatus.CANCELED
    assert subscription.canceled_at == "2024-01-15T00:00:00.000Z"
    assert ledger.active_subscriptions == 0
    assert ledger.total_mrr_cents == 0

    report = ReconciliationEngine(make_options(), stable_output=True).reconcile(ledger)
    assert report.is_balanced is True
    assert report.discrepancies == []


# ============================================================================
# Scenario 3: Subscription never invoiced
# ============================================================================


def test_golden_missing_invoice():
    """
    An active subscription with no invoice or payment in the window.

    Verifies:
    - Reconciliation reports the full MRR as a missing-invoice discrepancy
    - The anomaly scan flags the same subscription
    - The report ranks the high reconciliation finding before the medium anomaly
    """
    records = [make_raw_event("evt_001", "subscription_created", "2024-01-01T00:00:00.000Z", plan_id="pro")]

    report, _ = analyze(make_analyze_inputs(billing_events=records), stable_output=True)

    assert report.summary.reconciliation_discrepancies == 1
    assert report.summary.anomaly_count == 1
    assert [finding.category for finding in report.findings] == ["reconciliation", "anomaly"]
    assert [finding.severity for finding in report.findings] == [FindingSeverity.HIGH, FindingSeverity.MEDIUM]
    assert report.findings[0].evidence == [
        "subscription_id: sub_1",
        "difference_cents: 5000",
        "reason: missing_invoice",
    ]

    recon = ReconciliationEngine(make_options(), stable_output=True).reconcile(build_ledger(records))
    assert recon.discrepancies[0].reason == DiscrepancyReason.MISSING_INVOICE
    assert recon.discrepancies[0].observed_mrr_cents == 0


# ============================================================================
# Scenario 4: Invoice paid twice
# ============================================================================


def test_golden_double_charge():
    """
    The same invoice is paid twice; the scan raises a critical double charge.
    """
    records = january_records() + [
        make_raw_event("evt_005", "invoice_paid", "2024-01-03T00:00:00.000Z", invoice_id="inv_1")
    ]

    report, _ = analyze(make_analyze_inputs(billing_events=records), stable_output=True)

    assert report.summary.reconciliation_discrepancies == 0
    assert report.summary.anomaly_count == 1
    finding = report.findings[0]
    assert finding.severity == FindingSeverity.CRITICAL
    assert finding.evidence[1] == f"type: {AnomalyType.DOUBLE_CHARGE.value}"
    assert "Process refund for duplicate charge immediately" in report.recommendations


# ============================================================================
# Scenario 5: Cost snapshot
# ============================================================================


def test_golden_cost_snapshot():
    """
    Subscription, usage and refund lines net to 4000 cents.
    """
    events = [
        make_event(event_id="evt_1", plan_id="pro"),
        make_event(event_id="evt_2", event_type="usage_recorded", subscription_id=None, amount_cents=1500),
        make_event(event_id="evt_3", event_type="invoice_refunded", invoice_id="inv_1", amount_cents=-2500),
    ]
    snapshot_input = CostSnapshotInput(
        tenant_id=TENANT, project_id=PROJECT, period_start=JAN_START, period_end=JAN_END, billing_events=events
    )

    result = CostSnapshotBuilder(stable_output=True).generate(snapshot_input)

    assert result.report.total_cost_cents == 4000
    assert result.report.currency == "USD"
    assert len(result.report.breakdown.line_items) == 3
