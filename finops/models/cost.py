"""
Cost snapshot models.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import CostCategory
from .events import BillingEvent
from .ledger import LedgerState
from .types import CurrencyCode, NonEmptyStr, ProjectId, TenantId, Timestamp


class CostSnapshotInput(BaseModel):
    tenant_id: TenantId
    project_id: ProjectId
    period_start: Timestamp
    period_end: Timestamp
    billing_events: Optional[list[BillingEvent]] = None
    ledger: Optional[LedgerState] = None
    include_breakdown: bool = True
    include_forecast: bool = False


class CostLineItem(BaseModel):
    category: CostCategory
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    amount_cents: int
    currency: CurrencyCode
    description: str


class CostBreakdown(BaseModel):
    by_category: dict[str, int]
    by_customer: Optional[dict[str, int]] = None
    by_subscription: Optional[dict[str, int]] = None
    line_items: list[CostLineItem] = Field(default_factory=list)


class CostSnapshotMetadata(BaseModel):
    event_count: int = Field(ge=0)
    customer_count: int = Field(ge=0)
    subscription_count: int = Field(ge=0)
    deterministic: bool = True
    cacheable: bool = True
    cache_key: NonEmptyStr


class CostSnapshotReport(BaseModel):
    tenant_id: TenantId
    project_id: ProjectId
    report_id: NonEmptyStr
    period_start: Timestamp
    period_end: Timestamp
    generated_at: Timestamp
    total_cost_cents: int
    currency: CurrencyCode
    breakdown: CostBreakdown
    metadata: CostSnapshotMetadata
    version: str = "1.0.0"


class CostSnapshotResult(BaseModel):
    report: CostSnapshotReport
    cache_key: str
    cached: bool


class CostSnapshotRefusal(BaseModel):
    """Returned instead of a report when the evidence is too weak."""

    refusal: str
