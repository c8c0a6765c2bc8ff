"""
MRR reconciliation report models.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import DiscrepancyReason
from .events import BillingEvent
from .types import CurrencyCode, NonEmptyStr, ProjectId, TenantId, Timestamp


class MrrDiscrepancy(BaseModel):
    """Expected versus observed MRR for one subscription."""

    customer_id: NonEmptyStr
    subscription_id: NonEmptyStr
    expected_mrr_cents: int
    observed_mrr_cents: int
    difference_cents: int = Field(description="expected - observed")
    currency: CurrencyCode
    reason: DiscrepancyReason
    description: str
    events_involved: list[str] = Field(default_factory=list)


class ReconReport(BaseModel):
    """
    Reconciliation outcome for one tenant/project window.

    Totals are computed independently of the discrepancy list so they can
    be cross-checked. ``report_hash`` covers only the identifying fields and
    the (subscription_id, difference_cents, reason) triple of each discrepancy.
    """

    report_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    generated_at: Timestamp
    period_start: Timestamp
    period_end: Timestamp
    total_expected_mrr_cents: int
    total_observed_mrr_cents: int
    total_difference_cents: int
    discrepancies: list[MrrDiscrepancy] = Field(default_factory=list)
    missing_events: list[BillingEvent] = Field(default_factory=list)
    unmatched_observations: list[str] = Field(default_factory=list)
    is_balanced: bool
    report_hash: Optional[str] = None
    version: str = "1.0.0"
