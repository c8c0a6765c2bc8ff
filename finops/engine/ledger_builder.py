"""
Ledger Builder - replays normalized events into subscription and customer state.

Each subscription follows ``uninitialized -> active -> canceled`` and never
moves backwards: once canceled, later created/updated events leave it alone.
Events outside [period_start, period_end] never touch state, so a ledger is
always scoped to exactly one reconciliation window.

After replay, customer MRR, ``total_mrr_cents`` and ``active_subscriptions``
are recomputed from active subscriptions rather than tracked incrementally.
"""

from typing import Callable, Iterable, Optional

import structlog
from pydantic import ValidationError

from finops.engine.normalizer import event_sort_key
from finops.errors import SchemaError
from finops.models.enums import BillingEventType, SubscriptionStatus
from finops.models.events import BillingEvent
from finops.models.ledger import CustomerLedger, LedgerState, ReconcileOptions, SubscriptionState
from finops.models.types import live_timestamp, parse_timestamp, try_parse_timestamp
from finops.models.validation import format_validation_errors

DEFAULT_CURRENCY = "USD"
UNKNOWN_PLAN = "unknown"


class _Replay:
    """Working maps for a single build call."""

    def __init__(self, tenant_id: str, project_id: str):
        self.tenant_id = tenant_id
        self.project_id = project_id
        self.customers: dict[str, CustomerLedger] = {}
        self.subscriptions: dict[str, SubscriptionState] = {}

    def customer(self, event: BillingEvent) -> CustomerLedger:
        ledger = self.customers.get(event.customer_id)
        if ledger is None:
            ledger = CustomerLedger.model_construct(
                customer_id=event.customer_id,
                tenant_id=self.tenant_id,
                project_id=self.project_id,
                updated_at=event.timestamp,
            )
            self.customers[event.customer_id] = ledger
        return ledger


Handler = Callable[[_Replay, BillingEvent], None]


def _subscription_created(replay: _Replay, event: BillingEvent) -> None:
    if not event.subscription_id:
        return
    customer = replay.customer(event)
    customer.updated_at = event.timestamp
    if event.subscription_id in replay.subscriptions:
        # created is only valid from uninitialized
        return
    subscription = SubscriptionState.model_construct(
        subscription_id=event.subscription_id,
        customer_id=event.customer_id,
        plan_id=event.plan_id or UNKNOWN_PLAN,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=event.period_start or event.timestamp,
        current_period_end=event.period_end or event.timestamp,
        mrr_cents=event.amount_cents or 0,
        currency=event.currency or DEFAULT_CURRENCY,
        created_at=event.timestamp,
    )
    replay.subscriptions[event.subscription_id] = subscription
    customer.subscriptions.append(subscription)


def _subscription_updated(replay: _Replay, event: BillingEvent) -> None:
    subscription = replay.subscriptions.get(event.subscription_id or "")
    if subscription is None:
        return
    replay.customer(event).updated_at = event.timestamp
    if subscription.status == SubscriptionStatus.CANCELED:
        return
    if event.plan_id:
        subscription.plan_id = event.plan_id
    if event.amount_cents is not None:
        subscription.mrr_cents = event.amount_cents
    if event.period_start:
        subscription.current_period_start = event.period_start
    if event.period_end:
        subscription.current_period_end = event.period_end
    if event.currency:
        subscription.currency = event.currency


def _subscription_cancelled(replay: _Replay, event: BillingEvent) -> None:
    subscription = replay.subscriptions.get(event.subscription_id or "")
    if subscription is None:
        return
    replay.customer(event).updated_at = event.timestamp
    if subscription.status == SubscriptionStatus.CANCELED:
        return
    subscription.status = SubscriptionStatus.CANCELED
    subscription.canceled_at = event.timestamp


def _invoice_paid(replay: _Replay, event: BillingEvent) -> None:
    customer = replay.customer(event)
    if event.amount_cents:
        customer.total_paid_cents += event.amount_cents
    customer.last_invoice_at = event.timestamp
    customer.updated_at = event.timestamp


def _invoice_refunded(replay: _Replay, event: BillingEvent) -> None:
    customer = replay.customer(event)
    if event.amount_cents:
        customer.total_refunded_cents += event.amount_cents
    customer.updated_at = event.timestamp


def _invoice_disputed(replay: _Replay, event: BillingEvent) -> None:
    customer = replay.customer(event)
    if event.amount_cents:
        customer.total_disputed_cents += event.amount_cents
    customer.updated_at = event.timestamp


def _payment_succeeded(replay: _Replay, event: BillingEvent) -> None:
    customer = replay.customer(event)
    customer.last_payment_at = event.timestamp
    customer.updated_at = event.timestamp


def _payment_failed(replay: _Replay, event: BillingEvent) -> None:
    customer = replay.customer(event)
    customer.payment_failure_count_30d += 1
    customer.updated_at = event.timestamp


# Event types missing from this table do not affect ledger state.
TRANSITIONS: dict[BillingEventType, Handler] = {
    BillingEventType.SUBSCRIPTION_CREATED: _subscription_created,
    BillingEventType.SUBSCRIPTION_UPDATED: _subscription_updated,
    BillingEventType.SUBSCRIPTION_CANCELLED: _subscription_cancelled,
    BillingEventType.INVOICE_PAID: _invoice_paid,
    BillingEventType.INVOICE_REFUNDED: _invoice_refunded,
    BillingEventType.INVOICE_DISPUTED: _invoice_disputed,
    BillingEventType.PAYMENT_SUCCEEDED: _payment_succeeded,
    BillingEventType.PAYMENT_FAILED: _payment_failed,
}


class LedgerBuilder:
    """
    Reconstructs a LedgerState for one tenant/project window.

    Example:
        >>> options = ReconcileOptions(
        ...     tenant_id="acme", project_id="billing",
        ...     period_start="2024-01-01T00:00:00.000Z",
        ...     period_end="2024-01-31T23:59:59.999Z",
        ... )
        >>> ledger = LedgerBuilder(options).build(result.events)
        >>> ledger.total_mrr_cents
        5000
    """

    def __init__(self, options: ReconcileOptions, stable_output: bool = False):
        self.options = options
        self.stable_output = stable_output
        self.period_start = parse_timestamp(options.period_start)
        self.period_end = parse_timestamp(options.period_end)
        self.logger = structlog.get_logger()

    def build(
        self, events: Iterable[BillingEvent], computed_at: Optional[str] = None
    ) -> LedgerState:
        """
        Replay events in timestamp order and return the validated ledger.

        Args:
            events: Normalized (or plain billing) events for this tenant
            computed_at: Override for the computation stamp

        Returns:
            LedgerState with customers keyed in ascending customer_id order

        Raises:
            SchemaError: If the reconstructed ledger violates its contract
        """
        ordered = sorted(events, key=event_sort_key)
        replay = _Replay(self.options.tenant_id, self.options.project_id)
        skipped = 0

        for event in ordered:
            instant = try_parse_timestamp(event.timestamp)
            if instant is None or instant < self.period_start or instant > self.period_end:
                skipped += 1
                continue
            handler = TRANSITIONS.get(event.event_type)
            if handler is not None:
                handler(replay, event)

        customers = {key: replay.customers[key] for key in sorted(replay.customers)}
        total_mrr = 0
        active = 0
        for customer in customers.values():
            live = [sub for sub in customer.subscriptions if sub.is_active]
            customer.total_mrr_cents = sum(sub.mrr_cents for sub in live)
            total_mrr += customer.total_mrr_cents
            active += len(live)

        candidate = {
            "tenant_id": self.options.tenant_id,
            "project_id": self.options.project_id,
            "computed_at": computed_at or live_timestamp(self.stable_output),
            "customers": {key: value.model_dump(mode="json") for key, value in customers.items()},
            "total_mrr_cents": total_mrr,
            "total_customers": len(customers),
            "active_subscriptions": active,
            "event_count": len(ordered),
        }
        try:
            ledger = LedgerState.model_validate(candidate)
        except ValidationError as exc:
            raise SchemaError(
                "Ledger validation failed",
                details={"errors": format_validation_errors(exc)},
            ) from exc

        self.logger.info(
            "ledger_built",
            tenant_id=ledger.tenant_id,
            project_id=ledger.project_id,
            customers=ledger.total_customers,
            active_subscriptions=ledger.active_subscriptions,
            total_mrr_cents=ledger.total_mrr_cents,
            events=ledger.event_count,
            skipped_out_of_window=skipped,
        )
        return ledger
