"""
Anomaly Detector - rule battery over normalized events and the ledger.

Seven independent detectors run over shared indices built once per call:

- duplicate_event: same event_id seen twice inside the duplicate window
- missing_invoice: active paid subscription without invoice events
- double_charge: several payments of the same amount for one invoice
- refund_spike: refund volume above the absolute and relative thresholds
- dispute_spike: dispute count at or above the threshold
- payment_failure_spike: per-customer failure rate above the threshold
- out_of_sequence: cancellation before creation, payment after cancellation

Anomaly ids are ``anomaly-{type}-{sha256("type:tenant:project:key")[:16]}``
so repeated scans produce the same ids. Detection is best-effort per item:
a candidate that fails the Anomaly contract is dropped and logged, the rest
of the batch is still returned.
"""

from collections import Counter, defaultdict
from functools import lru_cache
from typing import Any, Iterable, Optional

import structlog

from finops.engine.canonical import sha256_text
from finops.engine.normalizer import sort_events
from finops.models.anomalies import Anomaly, AnomalyResult, AnomalyStats
from finops.models.enums import AnomalyType, BillingEventType, Severity, SubscriptionStatus
from finops.models.events import BillingEvent
from finops.models.ledger import LedgerState
from finops.models.profiles import AnomalyThreshold
from finops.models.types import try_parse_timestamp
from finops.models.validation import validate_record

REFUND_EVENT_TYPES = frozenset({BillingEventType.INVOICE_REFUNDED, BillingEventType.REFUND_ISSUED})
DISPUTE_EVENT_TYPES = frozenset(
    {
        BillingEventType.INVOICE_DISPUTED,
        BillingEventType.DISPUTE_CREATED,
        BillingEventType.DISPUTE_LOST,
    }
)
PAYMENT_EVENT_TYPES = frozenset({BillingEventType.INVOICE_PAID, BillingEventType.PAYMENT_SUCCEEDED})
INVOICE_EVENT_TYPES = frozenset({BillingEventType.INVOICE_PAID, BillingEventType.INVOICE_FAILED})


@lru_cache(maxsize=4096)
def anomaly_id(anomaly_type: str, tenant_id: str, project_id: str, reference: str) -> str:
    """Deterministic anomaly identifier."""
    digest = sha256_text(f"{anomaly_type}:{tenant_id}:{project_id}:{reference}")
    return f"anomaly-{anomaly_type}-{digest[:16]}"


class _EventIndex:
    """Groupings shared by all detectors, in replay order."""

    def __init__(self, events: list[BillingEvent]):
        self.by_event_id: dict[str, list[BillingEvent]] = defaultdict(list)
        self.by_subscription: dict[str, list[BillingEvent]] = defaultdict(list)
        self.by_invoice: dict[str, list[BillingEvent]] = defaultdict(list)
        self.refunds: list[BillingEvent] = []
        self.disputes: list[BillingEvent] = []

        for event in events:
            self.by_event_id[event.event_id].append(event)
            if event.subscription_id:
                self.by_subscription[event.subscription_id].append(event)
            if event.invoice_id:
                self.by_invoice[event.invoice_id].append(event)
            if event.event_type in REFUND_EVENT_TYPES:
                self.refunds.append(event)
            if event.event_type in DISPUTE_EVENT_TYPES:
                self.disputes.append(event)


class AnomalyDetector:
    """
    Runs the anomaly rule battery for one tenant/project.

    Attributes:
        tenant_id: Tenant scope of the scan
        project_id: Project scope of the scan
        thresholds: Anomaly thresholds, usually from a profile

    Example:
        >>> detector = AnomalyDetector("acme", "billing", profile.anomaly_thresholds)
        >>> result = detector.detect(events, ledger, "2024-01-31T23:59:59.999Z")
        >>> result.stats.by_type["double_charge"]
        1
    """

    def __init__(
        self,
        tenant_id: str,
        project_id: str,
        thresholds: Optional[AnomalyThreshold] = None,
    ):
        self.tenant_id = tenant_id
        self.project_id = project_id
        self.thresholds = thresholds or AnomalyThreshold()
        self.logger = structlog.get_logger()

    def detect(
        self,
        events: Iterable[BillingEvent],
        ledger: LedgerState,
        reference_date: str,
    ) -> AnomalyResult:
        """
        Run every detector and collect the valid anomalies.

        Args:
            events: Normalized events for the scan window
            ledger: Ledger built from the same events
            reference_date: Stamp used as ``detected_at`` on every anomaly

        Returns:
            AnomalyResult with anomalies in detector order and counts
        """
        ordered = sort_events(events)
        index = _EventIndex(ordered)

        candidates: list[dict[str, Any]] = []
        candidates.extend(self._duplicate_events(index))
        candidates.extend(self._missing_invoices(index, ledger))
        candidates.extend(self._double_charges(index))
        candidates.extend(self._refund_spike(index, ledger))
        candidates.extend(self._dispute_spike(index))
        candidates.extend(self._payment_failure_spikes(ledger))
        candidates.extend(self._out_of_sequence(index))

        anomalies: list[Anomaly] = []
        for candidate in candidates:
            candidate["detected_at"] = reference_date
            outcome = validate_record(Anomaly, candidate)
            if outcome.success:
                anomalies.append(outcome.value)
            else:
                self.logger.debug(
                    "anomaly_dropped",
                    anomaly_id=candidate.get("anomaly_id"),
                    errors=outcome.errors,
                )

        by_severity = Counter(anomaly.severity.value for anomaly in anomalies)
        by_type = Counter(anomaly.anomaly_type.value for anomaly in anomalies)
        stats = AnomalyStats(
            total=len(anomalies),
            by_severity={severity.value: by_severity[severity.value] for severity in Severity},
            by_type={kind.value: by_type[kind.value] for kind in AnomalyType},
        )
        self.logger.info(
            "anomalies_detected",
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            total=stats.total,
            dropped=len(candidates) - len(anomalies),
        )
        return AnomalyResult(anomalies=anomalies, stats=stats)

    def _base(self, anomaly_type: AnomalyType, reference: str, **fields: Any) -> dict[str, Any]:
        return {
            "anomaly_id": anomaly_id(anomaly_type.value, self.tenant_id, self.project_id, reference),
            "tenant_id": self.tenant_id,
            "project_id": self.project_id,
            "anomaly_type": anomaly_type,
            **fields,
        }

    # =========================================================================
    # Detectors
    # =========================================================================

    def _duplicate_events(self, index: _EventIndex) -> list[dict[str, Any]]:
        window = self.thresholds.duplicate_event_window_seconds
        found = []
        for event_id, occurrences in index.by_event_id.items():
            if len(occurrences) < 2:
                continue
            for i in range(1, len(occurrences)):
                current, previous = occurrences[i], occurrences[i - 1]
                current_at = try_parse_timestamp(current.timestamp)
                previous_at = try_parse_timestamp(previous.timestamp)
                if current_at is None or previous_at is None:
                    continue
                gap = (current_at - previous_at).total_seconds()
                if gap >= window:
                    continue
                found.append(
                    self._base(
                        AnomalyType.DUPLICATE_EVENT,
                        event_id,
                        severity=Severity.HIGH,
                        customer_id=current.customer_id,
                        subscription_id=current.subscription_id,
                        description=f"Duplicate event detected: {event_id} appeared {len(occurrences)} times",
                        affected_events=[current.event_id, previous.event_id],
                        expected_value=1,
                        observed_value=i + 1,
                        difference=i,
                        confidence=1.0,
                        recommended_action="Review event ingestion pipeline for duplicate processing",
                        metadata={
                            "time_diff_seconds": gap,
                            "first_timestamp": previous.timestamp,
                            "duplicate_timestamp": current.timestamp,
                        },
                    )
                )
                break
        return found

    def _missing_invoices(self, index: _EventIndex, ledger: LedgerState) -> list[dict[str, Any]]:
        found = []
        for customer in ledger.customers.values():
            for subscription in customer.subscriptions:
                if subscription.status != SubscriptionStatus.ACTIVE or subscription.mrr_cents <= 0:
                    continue
                related = index.by_subscription.get(subscription.subscription_id, [])
                if any(event.event_type in INVOICE_EVENT_TYPES for event in related):
                    continue
                found.append(
                    self._base(
                        AnomalyType.MISSING_INVOICE,
                        subscription.subscription_id,
                        severity=Severity.MEDIUM,
                        customer_id=customer.customer_id,
                        subscription_id=subscription.subscription_id,
                        description=(
                            f"Active subscription {subscription.subscription_id} has no invoices in period"
                        ),
                        affected_events=[event.event_id for event in related],
                        expected_value=subscription.mrr_cents,
                        observed_value=0,
                        difference=subscription.mrr_cents,
                        confidence=0.8,
                        recommended_action="Verify billing system is generating invoices for this subscription",
                        metadata={
                            "plan_id": subscription.plan_id,
                            "mrr_cents": subscription.mrr_cents,
                        },
                    )
                )
        return found

    def _double_charges(self, index: _EventIndex) -> list[dict[str, Any]]:
        found = []
        for invoice_id, related in index.by_invoice.items():
            payments = [event for event in related if event.event_type in PAYMENT_EVENT_TYPES]
            if len(payments) < 2:
                continue
            first_amount = payments[0].amount_cents
            if first_amount is None:
                continue
            same_amount = [event for event in payments if event.amount_cents == first_amount]
            if len(same_amount) <= 1:
                continue
            total_paid = sum(event.amount_cents or 0 for event in payments)
            found.append(
                self._base(
                    AnomalyType.DOUBLE_CHARGE,
                    invoice_id,
                    severity=Severity.CRITICAL,
                    customer_id=payments[0].customer_id,
                    subscription_id=payments[0].subscription_id,
                    description=(
                        f"{len(same_amount)} payments of {first_amount} cents for invoice {invoice_id}"
                    ),
                    affected_events=[event.event_id for event in same_amount],
                    expected_value=first_amount,
                    observed_value=total_paid,
                    difference=total_paid - first_amount,
                    confidence=0.9,
                    recommended_action="Process refund for duplicate charge immediately",
                    metadata={
                        "invoice_id": invoice_id,
                        "payment_count": len(same_amount),
                    },
                )
            )
        return found

    def _refund_spike(self, index: _EventIndex, ledger: LedgerState) -> list[dict[str, Any]]:
        total_refunds = sum(event.amount_cents or 0 for event in index.refunds)
        if total_refunds <= self.thresholds.refund_spike_threshold_cents:
            return []

        revenue = sum(customer.total_paid_cents for customer in ledger.customers.values())
        refund_pct = total_refunds / revenue * 100 if revenue > 0 else 0.0
        pct_threshold = self.thresholds.refund_spike_threshold_pct
        severity = Severity.CRITICAL if refund_pct > pct_threshold else Severity.HIGH
        confidence = min(refund_pct / pct_threshold, 1.0) if pct_threshold > 0 else 1.0

        return [
            self._base(
                AnomalyType.REFUND_SPIKE,
                "total",
                severity=severity,
                description=f"Refund spike: {total_refunds} cents ({refund_pct:.1f}% of revenue)",
                affected_events=[event.event_id for event in index.refunds],
                expected_value=revenue * pct_threshold / 100,
                observed_value=total_refunds,
                difference=total_refunds - revenue * pct_threshold / 100,
                confidence=confidence,
                recommended_action="Investigate refund reasons and check for fraud or product issues",
                metadata={
                    "refund_count": len(index.refunds),
                    "total_refunds_cents": total_refunds,
                    "refund_pct": refund_pct,
                },
            )
        ]

    def _dispute_spike(self, index: _EventIndex) -> list[dict[str, Any]]:
        count = len(index.disputes)
        threshold = self.thresholds.dispute_spike_threshold
        if count == 0 or count < threshold:
            return []

        severity = Severity.CRITICAL if count > threshold * 2 else Severity.HIGH
        confidence = min(count / (threshold * 2), 1.0) if threshold > 0 else 1.0
        return [
            self._base(
                AnomalyType.DISPUTE_SPIKE,
                "total",
                severity=severity,
                description=f"Dispute spike: {count} disputes detected",
                affected_events=[event.event_id for event in index.disputes],
                expected_value=threshold,
                observed_value=count,
                difference=count - threshold,
                confidence=confidence,
                recommended_action="Review disputed transactions and improve fraud prevention",
                metadata={"dispute_count": count},
            )
        ]

    def _payment_failure_spikes(self, ledger: LedgerState) -> list[dict[str, Any]]:
        threshold = self.thresholds.payment_failure_spike_threshold
        found = []
        for customer in ledger.customers.values():
            failures = customer.payment_failure_count_30d
            attempts = failures + (1 if customer.last_payment_at else 0)
            if attempts == 0:
                continue
            rate = failures / attempts
            if rate < threshold:
                continue
            found.append(
                self._base(
                    AnomalyType.PAYMENT_FAILURE_SPIKE,
                    customer.customer_id,
                    severity=Severity.CRITICAL if rate > 0.5 else Severity.HIGH,
                    customer_id=customer.customer_id,
                    description=(
                        f"High payment failure rate: {rate * 100:.0f}% ({failures} failures)"
                    ),
                    affected_events=[],
                    expected_value=threshold,
                    observed_value=rate,
                    difference=rate - threshold,
                    confidence=rate,
                    recommended_action="Contact customer to update payment method",
                    metadata={
                        "failure_count": failures,
                        "attempts": attempts,
                        "last_payment_at": customer.last_payment_at,
                    },
                )
            )
        return found

    def _out_of_sequence(self, index: _EventIndex) -> list[dict[str, Any]]:
        found = []
        for subscription_id, related in index.by_subscription.items():
            if len(related) < 2:
                continue
            seen_created = False
            seen_cancelled = False
            for event in related:
                if event.event_type == BillingEventType.SUBSCRIPTION_CREATED:
                    seen_created = True
                elif event.event_type == BillingEventType.SUBSCRIPTION_CANCELLED:
                    if not seen_created:
                        found.append(
                            self._base(
                                AnomalyType.OUT_OF_SEQUENCE,
                                event.event_id,
                                severity=Severity.MEDIUM,
                                customer_id=event.customer_id,
                                subscription_id=subscription_id,
                                description=(
                                    f"Subscription {subscription_id} cancelled before creation"
                                ),
                                affected_events=[event.event_id],
                                confidence=0.9,
                                recommended_action="Check event ordering and data integrity",
                                metadata={"sequence_issue": "cancel_before_create"},
                            )
                        )
                    seen_cancelled = True
                elif event.event_type in PAYMENT_EVENT_TYPES and seen_cancelled:
                    found.append(
                        self._base(
                            AnomalyType.OUT_OF_SEQUENCE,
                            event.event_id,
                            severity=Severity.LOW,
                            customer_id=event.customer_id,
                            subscription_id=subscription_id,
                            description=(
                                f"Payment received for cancelled subscription {subscription_id}"
                            ),
                            affected_events=[event.event_id],
                            confidence=0.6,
                            recommended_action="Verify if refund is needed for post-cancellation payment",
                            metadata={"sequence_issue": "payment_after_cancel"},
                        )
                    )
        return found
