"""
Reconciliation Engine - expected versus observed MRR.

Observed MRR per subscription is approximated as
``min(expected, customer.total_paid_cents)`` (or 0 when nothing was paid).
The proxy cannot tell a customer paying for several subscriptions from one
overpaying on a single subscription; it is kept as-is on purpose.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from finops.engine.canonical import hash_canonical
from finops.errors import SchemaError
from finops.models.enums import BillingEventType, DiscrepancyReason, SubscriptionStatus
from finops.models.events import BillingEvent
from finops.models.ledger import LedgerState, ReconcileOptions
from finops.models.reconciliation import MrrDiscrepancy, ReconReport
from finops.models.types import live_timestamp
from finops.models.validation import format_validation_errors

# Differences at or below this many cents are treated as rounding noise.
DISCREPANCY_TOLERANCE_CENTS = 100


class ReconciliationEngine:
    """
    Compares ledger MRR with payments and produces a hashed ReconReport.

    Attributes:
        options: Tenant scope and reconciliation window
        stable_output: Stamp ``generated_at`` with the fixed sentinel
        tolerance_cents: Minimum absolute difference reported as a discrepancy
    """

    def __init__(
        self,
        options: ReconcileOptions,
        stable_output: bool = False,
        tolerance_cents: int = DISCREPANCY_TOLERANCE_CENTS,
    ):
        self.options = options
        self.stable_output = stable_output
        self.tolerance_cents = tolerance_cents
        self.logger = structlog.get_logger()

    def reconcile(self, ledger: LedgerState, generated_at: Optional[str] = None) -> ReconReport:
        """
        Reconcile every non-canceled subscription in ``ledger``.

        Args:
            ledger: Ledger produced by LedgerBuilder for the same window
            generated_at: Override for the report stamp

        Returns:
            Validated ReconReport with its ``report_hash`` filled in

        Raises:
            SchemaError: If the constructed report violates its contract
        """
        discrepancies: list[MrrDiscrepancy] = []
        missing_events: list[dict] = []

        for customer in ledger.customers.values():
            for subscription in customer.subscriptions:
                if subscription.status == SubscriptionStatus.CANCELED:
                    continue
                expected = subscription.mrr_cents
                observed = min(expected, customer.total_paid_cents) if customer.total_paid_cents > 0 else 0
                difference = expected - observed
                if abs(difference) <= self.tolerance_cents:
                    continue
                reason = (
                    DiscrepancyReason.MISSING_INVOICE
                    if difference > 0
                    else DiscrepancyReason.DOUBLE_CHARGE
                )
                discrepancies.append(
                    MrrDiscrepancy(
                        customer_id=customer.customer_id,
                        subscription_id=subscription.subscription_id,
                        expected_mrr_cents=expected,
                        observed_mrr_cents=observed,
                        difference_cents=difference,
                        currency=subscription.currency,
                        reason=reason,
                        description=(
                            f"Expected {expected} cents, observed {observed} cents "
                            f"(difference: {difference} cents)"
                        ),
                        events_involved=[],
                    )
                )

            if customer.payment_failure_count_30d > 0 and not customer.last_payment_at:
                missing_events.append(self._missing_payment(customer.customer_id, customer.payment_failure_count_30d))

        total_expected = ledger.total_mrr_cents
        total_observed = sum(customer.total_paid_cents for customer in ledger.customers.values())
        total_difference = total_expected - total_observed

        candidate = {
            "report_id": self.report_id,
            "tenant_id": self.options.tenant_id,
            "project_id": self.options.project_id,
            "generated_at": generated_at or live_timestamp(self.stable_output),
            "period_start": self.options.period_start,
            "period_end": self.options.period_end,
            "total_expected_mrr_cents": total_expected,
            "total_observed_mrr_cents": total_observed,
            "total_difference_cents": total_difference,
            "discrepancies": [item.model_dump(mode="json") for item in discrepancies],
            "missing_events": missing_events,
            "unmatched_observations": [],
            "is_balanced": total_difference == 0 and not discrepancies,
            "report_hash": self.report_hash(discrepancies),
        }
        try:
            report = ReconReport.model_validate(candidate)
        except ValidationError as exc:
            raise SchemaError(
                "Reconciliation report validation failed",
                details={"errors": format_validation_errors(exc)},
            ) from exc

        self.logger.info(
            "mrr_reconciled",
            report_id=report.report_id,
            discrepancies=len(report.discrepancies),
            missing_events=len(report.missing_events),
            total_difference_cents=report.total_difference_cents,
            is_balanced=report.is_balanced,
        )
        return report

    @property
    def report_id(self) -> str:
        return (
            f"recon-{self.options.tenant_id}-{self.options.project_id}"
            f"-{self.options.period_start}-{self.options.period_end}"
        )

    def report_hash(self, discrepancies: list[MrrDiscrepancy]) -> str:
        """Hash over the report identity and the essential discrepancy fields only."""
        return hash_canonical(
            {
                "tenant_id": self.options.tenant_id,
                "project_id": self.options.project_id,
                "period_start": self.options.period_start,
                "period_end": self.options.period_end,
                "discrepancies": [
                    {
                        "subscription_id": item.subscription_id,
                        "difference_cents": item.difference_cents,
                        "reason": item.reason.value,
                    }
                    for item in discrepancies
                ],
            }
        )

    def _missing_payment(self, customer_id: str, failure_count: int) -> dict:
        event = BillingEvent(
            tenant_id=self.options.tenant_id,
            project_id=self.options.project_id,
            event_id=f"missing-payment-{customer_id}",
            event_type=BillingEventType.PAYMENT_SUCCEEDED,
            timestamp=self.options.period_end,
            customer_id=customer_id,
            metadata={
                "note": "Expected payment not found",
                "failure_count": failure_count,
            },
            raw_payload={},
        )
        return event.model_dump(mode="json")
