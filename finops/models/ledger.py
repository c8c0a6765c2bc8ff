"""
Ledger state models reconstructed from billing events.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import SubscriptionStatus
from .types import CurrencyCode, NonEmptyStr, ProjectId, TenantId, Timestamp


class SubscriptionState(BaseModel):
    """
    Current state of one subscription.

    Only the ledger builder mutates these objects, and only while replaying
    events in timestamp order.
    """

    subscription_id: NonEmptyStr
    customer_id: NonEmptyStr
    plan_id: str
    status: SubscriptionStatus
    current_period_start: Timestamp
    current_period_end: Timestamp
    mrr_cents: int = Field(ge=0, description="Monthly recurring revenue in cents")
    currency: CurrencyCode
    created_at: Timestamp
    canceled_at: Optional[Timestamp] = None
    cancel_at_period_end: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class CustomerLedger(BaseModel):
    """
    Per-customer running totals and subscriptions.

    Attributes:
        subscriptions: Subscriptions in order of creation
        total_mrr_cents: Sum of MRR over active subscriptions
        total_paid_cents: Sum of paid invoice amounts
        total_refunded_cents: Sum of refunded invoice amounts
        total_disputed_cents: Sum of disputed invoice amounts
        payment_failure_count_30d: Failed payments seen in the window
    """

    customer_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    subscriptions: list[SubscriptionState] = Field(default_factory=list)
    total_mrr_cents: int = Field(default=0, ge=0)
    total_paid_cents: int = Field(default=0, ge=0)
    total_refunded_cents: int = Field(default=0, ge=0)
    total_disputed_cents: int = Field(default=0, ge=0)
    last_invoice_at: Optional[Timestamp] = None
    last_payment_at: Optional[Timestamp] = None
    payment_failure_count_30d: int = Field(default=0, ge=0)
    updated_at: Timestamp


class LedgerState(BaseModel):
    """
    Point-in-time ledger for one tenant/project and one reconciliation window.

    ``total_mrr_cents`` and ``active_subscriptions`` are recomputed from the
    customer map after every build. ``customers`` is keyed by customer_id in
    ascending order.
    """

    tenant_id: TenantId
    project_id: ProjectId
    computed_at: Timestamp
    customers: dict[str, CustomerLedger] = Field(default_factory=dict)
    total_mrr_cents: int = Field(ge=0)
    total_customers: int = Field(ge=0)
    active_subscriptions: int = Field(ge=0)
    event_count: int = Field(ge=0)
    version: str = "1.0.0"


class ReconcileOptions(BaseModel):
    """Tenant scope and window shared by ledger building and reconciliation."""

    tenant_id: TenantId
    project_id: ProjectId
    period_start: Timestamp
    period_end: Timestamp
