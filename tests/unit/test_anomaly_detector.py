"""
Unit tests for the AnomalyDetector rule battery.
"""

import pytest

from finops.engine.anomaly_detector import AnomalyDetector, anomaly_id
from finops.models.enums import AnomalyType, Severity
from finops.models.profiles import AnomalyThreshold
from tests.conftest import (
    JAN_END,
    PROJECT,
    TENANT,
    build_ledger,
    january_records,
    make_customer,
    make_ledger,
    make_raw_event,
    normalize,
)


def _detect(records, thresholds=None, ledger=None):
    detector = AnomalyDetector(TENANT, PROJECT, thresholds)
    return detector.detect(normalize(records), ledger or build_ledger(records), JAN_END)


def _of_type(result, anomaly_type):
    return [item for item in result.anomalies if item.anomaly_type == anomaly_type]


# =============================================================================
# Clean data
# =============================================================================


class TestCleanData:
    """A well-formed month produces nothing."""

    def test_no_anomalies_for_clean_month(self):
        result = _detect(january_records())

        assert result.anomalies == []
        assert result.stats.total == 0

    def test_stats_cover_every_type_and_severity(self):
        stats = _detect(january_records()).stats

        assert set(stats.by_type) == {kind.value for kind in AnomalyType}
        assert set(stats.by_severity) == {level.value for level in Severity}


# =============================================================================
# Duplicate events
# =============================================================================


class TestDuplicateEvents:
    """Tests for the duplicate window check."""

    def _pair(self, second_timestamp):
        return [
            make_raw_event("evt_dup", "usage_recorded", "2024-01-05T00:00:00.000Z"),
            make_raw_event("evt_dup", "usage_recorded", second_timestamp),
        ]

    def test_inside_window_is_flagged(self):
        result = _detect(self._pair("2024-01-05T00:04:59.000Z"))

        duplicates = _of_type(result, AnomalyType.DUPLICATE_EVENT)
        assert len(duplicates) == 1
        assert duplicates[0].severity == Severity.HIGH
        assert duplicates[0].description == "Duplicate event detected: evt_dup appeared 2 times"
        assert duplicates[0].metadata["time_diff_seconds"] == 299

    def test_window_boundary_is_exclusive(self):
        """A gap equal to the window is not a duplicate."""
        result = _detect(self._pair("2024-01-05T00:05:00.000Z"))

        assert _of_type(result, AnomalyType.DUPLICATE_EVENT) == []

    def test_just_past_window_is_not_flagged(self):
        """A repeat 301 seconds after the first delivery is a new event."""
        result = _detect(self._pair("2024-01-05T00:05:01.000Z"))

        assert _of_type(result, AnomalyType.DUPLICATE_EVENT) == []
        assert result.stats.by_type[AnomalyType.DUPLICATE_EVENT.value] == 0

    def test_window_comes_from_thresholds(self):
        result = _detect(
            self._pair("2024-01-05T00:04:59.000Z"),
            AnomalyThreshold(duplicate_event_window_seconds=60),
        )

        assert _of_type(result, AnomalyType.DUPLICATE_EVENT) == []

    def test_one_report_per_event_id(self):
        records = self._pair("2024-01-05T00:00:10.000Z") + [
            make_raw_event("evt_dup", "usage_recorded", "2024-01-05T00:00:20.000Z"),
        ]

        duplicates = _of_type(_detect(records), AnomalyType.DUPLICATE_EVENT)

        assert len(duplicates) == 1
        assert duplicates[0].description.endswith("appeared 3 times")


# =============================================================================
# Missing invoices and double charges
# =============================================================================


class TestInvoices:
    """Tests for invoice-level detectors."""

    def test_active_subscription_without_invoice(self):
        result = _detect([make_raw_event(plan_id="pro")])

        missing = _of_type(result, AnomalyType.MISSING_INVOICE)
        assert len(missing) == 1
        assert missing[0].severity == Severity.MEDIUM
        assert missing[0].subscription_id == "sub_1"
        assert missing[0].expected_value == 5000
        assert missing[0].affected_events == ["evt_001"]

    def test_failed_invoice_counts_as_invoiced(self):
        records = [
            make_raw_event("evt_1"),
            make_raw_event("evt_2", "invoice_failed", "2024-01-02T00:00:00.000Z", invoice_id="inv_1"),
        ]

        assert _of_type(_detect(records), AnomalyType.MISSING_INVOICE) == []

    def test_zero_mrr_subscription_is_not_missing_an_invoice(self):
        assert _of_type(_detect([make_raw_event(amount_cents=0)]), AnomalyType.MISSING_INVOICE) == []

    def test_double_charge(self):
        records = [
            make_raw_event("evt_1", "invoice_paid", "2024-01-02T00:00:00.000Z", invoice_id="inv_1"),
            make_raw_event("evt_2", "invoice_paid", "2024-01-03T00:00:00.000Z", invoice_id="inv_1"),
        ]

        charges = _of_type(_detect(records), AnomalyType.DOUBLE_CHARGE)

        assert len(charges) == 1
        charge = charges[0]
        assert charge.severity == Severity.CRITICAL
        assert charge.confidence == 0.9
        assert charge.expected_value == 5000
        assert charge.observed_value == 10000
        assert charge.difference == 5000
        assert charge.affected_events == ["evt_1", "evt_2"]

    def test_different_amounts_are_not_a_double_charge(self):
        records = [
            make_raw_event("evt_1", "invoice_paid", "2024-01-02T00:00:00.000Z", invoice_id="inv_1"),
            make_raw_event(
                "evt_2", "invoice_paid", "2024-01-03T00:00:00.000Z", invoice_id="inv_1", amount_cents=1000
            ),
        ]

        assert _of_type(_detect(records), AnomalyType.DOUBLE_CHARGE) == []


# =============================================================================
# Spikes
# =============================================================================


class TestSpikes:
    """Tests for refund, dispute and payment failure spikes."""

    def test_refund_spike_above_both_thresholds_is_critical(self):
        records = [
            make_raw_event("evt_1", "invoice_paid", "2024-01-02T00:00:00.000Z", invoice_id="inv_1", amount_cents=10000),
            make_raw_event("evt_2", "invoice_refunded", "2024-01-03T00:00:00.000Z", amount_cents=2000),
        ]

        spikes = _of_type(
            _detect(records, AnomalyThreshold(refund_spike_threshold_cents=1000)), AnomalyType.REFUND_SPIKE
        )

        assert len(spikes) == 1
        assert spikes[0].severity == Severity.CRITICAL
        assert spikes[0].metadata["refund_pct"] == pytest.approx(20.0)
        assert spikes[0].confidence == 1.0

    def test_refund_spike_below_percentage_is_high(self):
        records = [
            make_raw_event("evt_1", "invoice_paid", "2024-01-02T00:00:00.000Z", invoice_id="inv_1", amount_cents=100000),
            make_raw_event("evt_2", "refund_issued", "2024-01-03T00:00:00.000Z", amount_cents=2000),
        ]

        spikes = _of_type(
            _detect(records, AnomalyThreshold(refund_spike_threshold_cents=1000)), AnomalyType.REFUND_SPIKE
        )

        assert spikes[0].severity == Severity.HIGH
        assert spikes[0].confidence == pytest.approx(0.2)

    def test_refund_total_at_threshold_is_not_a_spike(self):
        records = [make_raw_event("evt_1", "invoice_refunded", amount_cents=1000)]

        result = _detect(records, AnomalyThreshold(refund_spike_threshold_cents=1000))

        assert _of_type(result, AnomalyType.REFUND_SPIKE) == []

    @pytest.mark.parametrize("count,severity", [(2, Severity.HIGH), (5, Severity.CRITICAL)])
    def test_dispute_spike(self, count, severity):
        records = [
            make_raw_event(f"evt_{i}", "dispute_created", f"2024-01-0{i + 1}T00:00:00.000Z")
            for i in range(count)
        ]

        spikes = _of_type(
            _detect(records, AnomalyThreshold(dispute_spike_threshold=2)), AnomalyType.DISPUTE_SPIKE
        )

        assert len(spikes) == 1
        assert spikes[0].severity == severity
        assert spikes[0].observed_value == count

    def test_dispute_below_threshold(self):
        records = [make_raw_event("evt_1", "invoice_disputed")]

        result = _detect(records, AnomalyThreshold(dispute_spike_threshold=2))

        assert _of_type(result, AnomalyType.DISPUTE_SPIKE) == []

    def test_payment_failures_without_success_are_critical(self):
        records = [
            make_raw_event("evt_1", "payment_failed", "2024-01-02T00:00:00.000Z"),
            make_raw_event("evt_2", "payment_failed", "2024-01-03T00:00:00.000Z"),
        ]

        spikes = _of_type(_detect(records), AnomalyType.PAYMENT_FAILURE_SPIKE)

        assert len(spikes) == 1
        assert spikes[0].severity == Severity.CRITICAL
        assert spikes[0].observed_value == 1.0
        assert spikes[0].description == "High payment failure rate: 100% (2 failures)"

    def test_half_failure_rate_is_high(self):
        ledger = make_ledger([make_customer(payment_failure_count_30d=1)])

        result = AnomalyDetector(TENANT, PROJECT).detect([], ledger, JAN_END)

        spikes = _of_type(result, AnomalyType.PAYMENT_FAILURE_SPIKE)
        assert spikes[0].severity == Severity.HIGH
        assert spikes[0].confidence == 0.5

    def test_customer_without_attempts_is_skipped(self):
        ledger = make_ledger([make_customer(last_payment_at=None)])

        result = AnomalyDetector(TENANT, PROJECT).detect([], ledger, JAN_END)

        assert _of_type(result, AnomalyType.PAYMENT_FAILURE_SPIKE) == []


# =============================================================================
# Sequence
# =============================================================================


class TestOutOfSequence:
    """Tests for lifecycle ordering checks."""

    def test_cancel_before_create(self):
        records = [
            make_raw_event("evt_1", "subscription_cancelled", "2024-01-02T00:00:00.000Z"),
            make_raw_event("evt_2", "subscription_created", "2024-01-03T00:00:00.000Z"),
        ]

        found = _of_type(_detect(records), AnomalyType.OUT_OF_SEQUENCE)

        assert len(found) == 1
        assert found[0].severity == Severity.MEDIUM
        assert found[0].metadata == {"sequence_issue": "cancel_before_create"}

    def test_payment_after_cancel(self):
        records = [
            make_raw_event("evt_1", "subscription_created", "2024-01-01T00:00:00.000Z"),
            make_raw_event("evt_2", "subscription_cancelled", "2024-01-05T00:00:00.000Z"),
            make_raw_event("evt_3", "invoice_paid", "2024-01-10T00:00:00.000Z", invoice_id="inv_1"),
        ]

        found = _of_type(_detect(records), AnomalyType.OUT_OF_SEQUENCE)

        assert len(found) == 1
        assert found[0].severity == Severity.LOW
        assert found[0].affected_events == ["evt_3"]


# =============================================================================
# Identity
# =============================================================================


class TestAnomalyIdentity:
    """Tests for deterministic ids and stamps."""

    def test_ids_are_deterministic(self):
        records = [
            make_raw_event("evt_1", "invoice_paid", "2024-01-02T00:00:00.000Z", invoice_id="inv_1"),
            make_raw_event("evt_2", "invoice_paid", "2024-01-03T00:00:00.000Z", invoice_id="inv_1"),
        ]

        first = _of_type(_detect(records), AnomalyType.DOUBLE_CHARGE)[0]
        second = _of_type(_detect(records), AnomalyType.DOUBLE_CHARGE)[0]

        assert first.anomaly_id == second.anomaly_id == anomaly_id("double_charge", TENANT, PROJECT, "inv_1")
        assert first.anomaly_id.startswith("anomaly-double_charge-")
        assert len(first.anomaly_id) == len("anomaly-double_charge-") + 16

    def test_ids_are_tenant_scoped(self):
        assert anomaly_id("refund_spike", "acme", "billing", "total") != anomaly_id(
            "refund_spike", "other", "billing", "total"
        )

    def test_detected_at_is_reference_date(self):
        result = _detect([make_raw_event()])

        assert all(item.detected_at == JAN_END for item in result.anomalies)
