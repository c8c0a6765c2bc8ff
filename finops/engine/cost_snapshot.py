"""
Cost Snapshot - deterministic per-period cost breakdown.

Billing events (or, without events, subscriptions derived from a ledger) are
turned into categorized line items and summed. Weak evidence produces a
refusal instead of a report. The result carries a cache key over the input
and whether it may be served from cache: snapshots for periods that ended
more than 24 hours ago are frozen.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

import structlog

from finops.engine.canonical import hash_canonical
from finops.models.cost import (
    CostBreakdown,
    CostLineItem,
    CostSnapshotInput,
    CostSnapshotMetadata,
    CostSnapshotRefusal,
    CostSnapshotReport,
    CostSnapshotResult,
)
from finops.models.enums import BillingEventType, CostCategory
from finops.models.events import BillingEvent
from finops.models.ledger import LedgerState
from finops.models.types import live_timestamp, parse_timestamp

CAPABILITY = "finops.cost_snapshot"
DEFAULT_CURRENCY = "USD"
CACHE_FREEZE_HOURS = 24

_CATEGORIES = {
    BillingEventType.SUBSCRIPTION_CREATED: CostCategory.SUBSCRIPTION,
    BillingEventType.SUBSCRIPTION_UPDATED: CostCategory.SUBSCRIPTION,
    BillingEventType.INVOICE_PAID: CostCategory.SUBSCRIPTION,
    BillingEventType.INVOICE_REFUNDED: CostCategory.REFUND,
    BillingEventType.REFUND_ISSUED: CostCategory.REFUND,
    BillingEventType.INVOICE_DISPUTED: CostCategory.DISPUTE,
    BillingEventType.DISPUTE_CREATED: CostCategory.DISPUTE,
    BillingEventType.USAGE_RECORDED: CostCategory.USAGE,
}


def should_invalidate_cache(
    period_end: str, explicit: bool = False, now: Optional[datetime] = None
) -> bool:
    """
    Decide whether a cached snapshot for ``period_end`` must be recomputed.

    Data for a period that ended more than 24 hours before ``now`` is
    considered frozen; anything more recent may still change.
    """
    if explicit:
        return True
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=CACHE_FREEZE_HOURS)
    return parse_timestamp(period_end) >= cutoff


def derive_events(ledger: LedgerState) -> list[BillingEvent]:
    """One synthetic subscription_created event per ledger subscription."""
    events = []
    for customer in ledger.customers.values():
        for subscription in customer.subscriptions:
            events.append(
                BillingEvent(
                    tenant_id=customer.tenant_id,
                    project_id=customer.project_id,
                    event_id=f"derived_{subscription.subscription_id}",
                    event_type=BillingEventType.SUBSCRIPTION_CREATED,
                    timestamp=subscription.created_at,
                    customer_id=customer.customer_id,
                    subscription_id=subscription.subscription_id,
                    amount_cents=subscription.mrr_cents,
                    currency=subscription.currency,
                    plan_id=subscription.plan_id,
                    raw_payload={},
                )
            )
    return events


def describe(event: BillingEvent, amount_cents: int) -> str:
    invoice = event.invoice_id or "unknown"
    event_type = event.event_type
    if event_type in (BillingEventType.SUBSCRIPTION_CREATED, BillingEventType.SUBSCRIPTION_UPDATED):
        return f"Subscription {event.subscription_id} - {event.plan_id or 'unknown'}"
    if event_type == BillingEventType.INVOICE_PAID:
        return f"Invoice payment {invoice}"
    if event_type in (BillingEventType.INVOICE_REFUNDED, BillingEventType.REFUND_ISSUED):
        return f"Refund {invoice} - {amount_cents} cents"
    if event_type in (BillingEventType.INVOICE_DISPUTED, BillingEventType.DISPUTE_CREATED):
        return f"Dispute {invoice}"
    if event_type == BillingEventType.USAGE_RECORDED:
        return f"Usage record {event.customer_id}"
    return f"Event {event_type.value}"


class CostSnapshotBuilder:
    """
    Builds cost snapshots for one tenant/project period.

    Example:
        >>> builder = CostSnapshotBuilder(stable_output=True)
        >>> result = builder.generate(snapshot_input)
        >>> result.report.breakdown.by_category["refund"]
        -2500
    """

    def __init__(self, stable_output: bool = False):
        self.stable_output = stable_output
        self.logger = structlog.get_logger()

    def generate(
        self, snapshot_input: CostSnapshotInput, now: Optional[datetime] = None
    ) -> Union[CostSnapshotResult, CostSnapshotRefusal]:
        """
        Generate a snapshot or refuse on weak evidence.

        Args:
            snapshot_input: Validated snapshot request
            now: Clock override for the cache freshness check

        Returns:
            CostSnapshotResult, or CostSnapshotRefusal with a coded reason
        """
        if snapshot_input.billing_events is not None:
            events = list(snapshot_input.billing_events)
        elif snapshot_input.ledger is not None:
            events = derive_events(snapshot_input.ledger)
        else:
            events = []

        refusal = self.check_evidence(snapshot_input, events)
        if refusal is not None:
            self.logger.warning(
                "cost_snapshot_refused",
                tenant_id=snapshot_input.tenant_id,
                project_id=snapshot_input.project_id,
                reason=refusal,
            )
            return CostSnapshotRefusal(refusal=refusal)

        currency = next((event.currency for event in events if event.currency), DEFAULT_CURRENCY)
        line_items = [self._line_item(event, currency) for event in events]
        breakdown = self._breakdown(line_items, snapshot_input.include_breakdown)

        scope = {
            "tenant_id": snapshot_input.tenant_id,
            "project_id": snapshot_input.project_id,
            "period_start": snapshot_input.period_start,
            "period_end": snapshot_input.period_end,
        }
        cache_key = hash_canonical(
            {**scope, "input_hash": hash_canonical(snapshot_input), "capability": CAPABILITY}
        )

        report = CostSnapshotReport(
            **scope,
            report_id=f"cost-snapshot-{hash_canonical(scope)[:16]}",
            generated_at=live_timestamp(self.stable_output),
            total_cost_cents=sum(item.amount_cents for item in line_items),
            currency=currency,
            breakdown=breakdown,
            metadata=CostSnapshotMetadata(
                event_count=len(events),
                customer_count=len({event.customer_id for event in events}),
                subscription_count=len({event.subscription_id for event in events if event.subscription_id}),
                cache_key=cache_key,
            ),
        )
        cached = not should_invalidate_cache(snapshot_input.period_end, now=now)

        self.logger.info(
            "cost_snapshot_generated",
            report_id=report.report_id,
            total_cost_cents=report.total_cost_cents,
            line_items=len(line_items),
            cached=cached,
        )
        return CostSnapshotResult(report=report, cache_key=cache_key, cached=cached)

    @staticmethod
    def check_evidence(
        snapshot_input: CostSnapshotInput, events: list[BillingEvent]
    ) -> Optional[str]:
        """Return a refusal reason, or None when the evidence is sufficient."""
        if not events and snapshot_input.ledger is None:
            return "INSUFFICIENT_DATA: No billing events or ledger provided"
        if not events:
            return "INSUFFICIENT_EVENTS: At least one billing event required"
        if len({event.currency for event in events if event.currency}) > 1:
            return "CURRENCY_MISMATCH: Multiple currencies detected"
        if parse_timestamp(snapshot_input.period_start) >= parse_timestamp(snapshot_input.period_end):
            return "INVALID_PERIOD: period_start must be before period_end"
        return None

    @staticmethod
    def _line_item(event: BillingEvent, currency: str) -> CostLineItem:
        amount = event.amount_cents or 0
        return CostLineItem(
            category=_CATEGORIES.get(event.event_type, CostCategory.OTHER),
            customer_id=event.customer_id,
            subscription_id=event.subscription_id,
            amount_cents=amount,
            currency=currency,
            description=describe(event, amount),
        )

    @staticmethod
    def _breakdown(line_items: list[CostLineItem], include_breakdown: bool) -> CostBreakdown:
        by_category = {category.value: 0 for category in CostCategory}
        by_customer: dict[str, int] = {}
        by_subscription: dict[str, int] = {}
        for item in line_items:
            by_category[item.category.value] += item.amount_cents
            if item.customer_id:
                by_customer[item.customer_id] = by_customer.get(item.customer_id, 0) + item.amount_cents
            if item.subscription_id:
                by_subscription[item.subscription_id] = (
                    by_subscription.get(item.subscription_id, 0) + item.amount_cents
                )
        return CostBreakdown(
            by_category=by_category,
            by_customer=by_customer if include_breakdown else None,
            by_subscription=by_subscription if include_breakdown else None,
            line_items=line_items,
        )
