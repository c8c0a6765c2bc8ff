"""
Pytest configuration and shared fixtures for the FinOps test suite.

Factories build valid records with sensible defaults; every keyword
argument overrides one field, and passing None drops an optional field
from raw records. Shared across unit, integration, golden and
property-based tests.
"""

from typing import Any, Optional

import pytest

from finops.config import get_settings
from finops.engine.canonical import clear_hash_cache
from finops.engine.ledger_builder import LedgerBuilder
from finops.engine.normalizer import EventNormalizer
from finops.models.churn import ChurnInputs, PlanDowngrade, SupportTicket, UsageMetrics
from finops.models.enums import Severity, SubscriptionStatus, TicketStatus
from finops.models.events import BillingEvent, NormalizedEvent
from finops.models.ledger import CustomerLedger, LedgerState, ReconcileOptions, SubscriptionState

TENANT = "acme"
PROJECT = "billing"
JAN_START = "2024-01-01T00:00:00.000Z"
JAN_END = "2024-01-31T23:59:59.999Z"


# ---------------------------------------------------------------------------
# Billing event factories
# ---------------------------------------------------------------------------


def make_raw_event(
    event_id: str = "evt_001",
    event_type: str = "subscription_created",
    timestamp: str = "2024-01-01T00:00:00.000Z",
    customer_id: str = "cus_1",
    **overrides: Any,
) -> dict[str, Any]:
    """Factory for raw export records (no tenant context attached)."""
    defaults: dict[str, Any] = dict(
        event_id=event_id,
        event_type=event_type,
        timestamp=timestamp,
        customer_id=customer_id,
        subscription_id="sub_1",
        amount_cents=5000,
        currency="USD",
    )
    defaults.update(overrides)
    return {key: value for key, value in defaults.items() if value is not None}


def make_event(**overrides: Any) -> BillingEvent:
    """Factory for validated BillingEvent objects."""
    record = make_raw_event(**overrides)
    data = dict(record, tenant_id=TENANT, project_id=PROJECT, raw_payload=dict(record))
    return BillingEvent.model_validate(data)


def normalize(records: list[Any], **kwargs: Any) -> list[NormalizedEvent]:
    """Run records through a stable-output normalizer and return the events."""
    normalizer = EventNormalizer(TENANT, PROJECT, stable_output=True, **kwargs)
    return normalizer.ingest(records).events


def make_options(
    period_start: str = JAN_START, period_end: str = JAN_END, **overrides: Any
) -> ReconcileOptions:
    defaults = dict(tenant_id=TENANT, project_id=PROJECT, period_start=period_start, period_end=period_end)
    defaults.update(overrides)
    return ReconcileOptions(**defaults)


def build_ledger(records: list[dict[str, Any]], options: Optional[ReconcileOptions] = None) -> LedgerState:
    """Normalize raw records and replay them into a ledger."""
    return LedgerBuilder(options or make_options(), stable_output=True).build(normalize(records))


def january_records(cancel: bool = False) -> list[dict[str, Any]]:
    """
    One customer on a 5000-cent plan, invoiced and paid in January.

    With ``cancel`` the subscription is cancelled on January 15th.
    """
    records = [
        make_raw_event("evt_001", "subscription_created", "2024-01-01T00:00:00.000Z", plan_id="pro"),
        make_raw_event(
            "evt_002", "invoice_paid", "2024-01-02T00:00:00.000Z", invoice_id="inv_1"
        ),
        make_raw_event(
            "evt_003",
            "payment_succeeded",
            "2024-01-02T00:00:01.000Z",
            subscription_id=None,
            amount_cents=None,
        ),
    ]
    if cancel:
        records.append(
            make_raw_event(
                "evt_004", "subscription_cancelled", "2024-01-15T00:00:00.000Z", amount_cents=None
            )
        )
    return records


# ---------------------------------------------------------------------------
# Ledger factories
# ---------------------------------------------------------------------------


def make_subscription(
    subscription_id: str = "sub_1",
    customer_id: str = "cus_1",
    mrr_cents: int = 5000,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    **overrides: Any,
) -> SubscriptionState:
    """Factory function for creating test SubscriptionState objects."""
    defaults = dict(
        subscription_id=subscription_id,
        customer_id=customer_id,
        plan_id="pro",
        status=status,
        current_period_start=JAN_START,
        current_period_end=JAN_END,
        mrr_cents=mrr_cents,
        currency="USD",
        created_at=JAN_START,
    )
    defaults.update(overrides)
    return SubscriptionState(**defaults)


def make_customer(
    customer_id: str = "cus_1",
    subscriptions: Optional[list[SubscriptionState]] = None,
    payment_failure_count_30d: int = 0,
    last_payment_at: Optional[str] = "2024-01-25T00:00:00.000Z",
    **overrides: Any,
) -> CustomerLedger:
    """
    Factory function for creating test CustomerLedger objects.

    MRR defaults to the sum over active subscriptions; the default customer
    paid recently, so no inactivity signal fires against ``JAN_END``.
    """
    if subscriptions is None:
        subscriptions = [make_subscription(subscription_id=f"sub_{customer_id}", customer_id=customer_id)]
    defaults = dict(
        customer_id=customer_id,
        tenant_id=TENANT,
        project_id=PROJECT,
        subscriptions=subscriptions,
        total_mrr_cents=sum(sub.mrr_cents for sub in subscriptions if sub.is_active),
        total_paid_cents=sum(sub.mrr_cents for sub in subscriptions),
        last_payment_at=last_payment_at,
        payment_failure_count_30d=payment_failure_count_30d,
        updated_at=JAN_START,
    )
    defaults.update(overrides)
    return CustomerLedger(**defaults)


def make_ledger(customers: Optional[list[CustomerLedger]] = None, **overrides: Any) -> LedgerState:
    """Factory function for creating test LedgerState objects with consistent totals."""
    if customers is None:
        customers = [make_customer()]
    by_id = {customer.customer_id: customer for customer in sorted(customers, key=lambda c: c.customer_id)}
    defaults = dict(
        tenant_id=TENANT,
        project_id=PROJECT,
        computed_at=JAN_END,
        customers=by_id,
        total_mrr_cents=sum(customer.total_mrr_cents for customer in customers),
        total_customers=len(customers),
        active_subscriptions=sum(
            1 for customer in customers for sub in customer.subscriptions if sub.is_active
        ),
        event_count=0,
    )
    defaults.update(overrides)
    return LedgerState(**defaults)


# ---------------------------------------------------------------------------
# Churn signal factories
# ---------------------------------------------------------------------------


def make_usage(
    customer_id: str = "cus_1",
    current_value: float = 40.0,
    previous_value: float = 100.0,
    metric_name: str = "api_calls",
    **overrides: Any,
) -> UsageMetrics:
    defaults = dict(
        customer_id=customer_id,
        tenant_id=TENANT,
        project_id=PROJECT,
        metric_name=metric_name,
        current_value=current_value,
        previous_value=previous_value,
        period_days=30,
        measured_at=JAN_END,
    )
    defaults.update(overrides)
    return UsageMetrics(**defaults)


def make_ticket(
    ticket_id: str = "tkt_1",
    customer_id: str = "cus_1",
    severity: Severity = Severity.LOW,
    status: TicketStatus = TicketStatus.OPEN,
    **overrides: Any,
) -> SupportTicket:
    defaults = dict(
        ticket_id=ticket_id,
        customer_id=customer_id,
        tenant_id=TENANT,
        project_id=PROJECT,
        created_at="2024-01-20T00:00:00.000Z",
        severity=severity,
        status=status,
        category="billing",
    )
    defaults.update(overrides)
    return SupportTicket(**defaults)


def make_downgrade(
    customer_id: str = "cus_1", changed_at: str = "2024-01-20T00:00:00.000Z", **overrides: Any
) -> PlanDowngrade:
    defaults = dict(customer_id=customer_id, from_plan="pro", to_plan="starter", changed_at=changed_at)
    defaults.update(overrides)
    return PlanDowngrade(**defaults)


def make_churn_inputs(
    ledger: Optional[LedgerState] = None,
    usage_metrics: Optional[list[UsageMetrics]] = None,
    support_tickets: Optional[list[SupportTicket]] = None,
    plan_downgrades: Optional[list[PlanDowngrade]] = None,
    reference_date: str = JAN_END,
) -> ChurnInputs:
    """Factory function for creating test ChurnInputs objects."""
    return ChurnInputs(
        tenant_id=TENANT,
        project_id=PROJECT,
        ledger=ledger or make_ledger(),
        usage_metrics=usage_metrics or [],
        support_tickets=support_tickets or [],
        plan_downgrades=plan_downgrades or [],
        reference_date=reference_date,
    )


# ---------------------------------------------------------------------------
# Analyze envelope factory
# ---------------------------------------------------------------------------


def make_analyze_inputs(**overrides: Any) -> dict[str, Any]:
    """Factory for AnalyzeInputs in their JSON form."""
    defaults: dict[str, Any] = dict(
        schema_version="1.0.0",
        module_id="finops",
        tenant_id=TENANT,
        project_id=PROJECT,
        trace_id="trace-001",
        period_start=JAN_START,
        period_end=JAN_END,
        billing_events=january_records(),
        job_requests={
            "reconcile": {"events_path": "./input/events.json"},
            "anomaly_scan": {"ledger_path": "./output/ledger.json"},
            "churn_risk": {"ledger_path": "./output/ledger.json"},
        },
    )
    defaults.update(overrides)
    return defaults


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class RecordingLogger:
    """Stands in for a bound logger and keeps (level, event, fields) tuples."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def _record(self, level: str):
        def emit(event: str, **kwargs: Any) -> None:
            self.records.append((level, event, kwargs))

        return emit

    def __getattr__(self, level: str):
        if level not in ("debug", "info", "warning", "error", "critical"):
            raise AttributeError(level)
        return self._record(level)


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Fresh settings per test; environment overrides from the host are ignored."""
    env_vars = ("LOG_LEVEL", "LOG_FORMAT", "DEFAULT_PROFILE", "STABLE_OUTPUT", "MAX_INPUT_BYTES", "DEV_MODE", "OUTPUT_DIR")
    for name in env_vars:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    clear_hash_cache()


@pytest.fixture
def ledger() -> LedgerState:
    return make_ledger()


@pytest.fixture
def options() -> ReconcileOptions:
    return make_options()
