"""
Billing event models.

A BillingEvent is one record of a provider export after tenant context has
been attached. A NormalizedEvent adds the ingestion stamp and a content hash.
Both are immutable once constructed.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt

from .enums import BillingEventType
from .types import CurrencyCode, NonEmptyStr, ProjectId, TenantId, Timestamp

# Keys hashed into NormalizedEvent.source_hash. Volatile fields are excluded.
SOURCE_HASH_KEYS = (
    "tenant_id",
    "project_id",
    "event_id",
    "event_type",
    "timestamp",
    "customer_id",
    "subscription_id",
    "invoice_id",
    "amount_cents",
    "currency",
    "plan_id",
)


class BillingEvent(BaseModel):
    """
    A single billing lifecycle event scoped to a tenant and project.

    Attributes:
        tenant_id: Owning tenant (lowercase alphanumerics and hyphens)
        project_id: Owning project (tenant alphabet plus underscores)
        event_id: Provider event identifier; not guaranteed unique in exports
        event_type: Billing lifecycle event type
        timestamp: When the event happened (ISO-8601 with offset)
        customer_id: Customer the event belongs to
        subscription_id: Subscription, when the event concerns one
        invoice_id: Invoice, when the event concerns one
        amount_cents: Signed integer amount in minor units
        currency: ISO 4217 code in upper case
        plan_id: Plan identifier for subscription events
        period_start: Billing period start for subscription events
        period_end: Billing period end for subscription events
        metadata: Free-form provider metadata
        raw_payload: The record exactly as it was received
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "tenant_id": "acme",
                "project_id": "billing",
                "event_id": "evt_001",
                "event_type": "invoice_paid",
                "timestamp": "2024-01-05T12:00:00.000Z",
                "customer_id": "cus_1",
                "subscription_id": "sub_1",
                "invoice_id": "inv_1",
                "amount_cents": 5000,
                "currency": "USD",
                "metadata": {},
                "raw_payload": {},
            }
        },
    )

    tenant_id: TenantId
    project_id: ProjectId
    event_id: NonEmptyStr
    event_type: BillingEventType
    timestamp: Timestamp
    customer_id: NonEmptyStr
    subscription_id: Optional[NonEmptyStr] = None
    invoice_id: Optional[NonEmptyStr] = None
    amount_cents: Optional[StrictInt] = Field(
        default=None, description="Signed amount in minor currency units"
    )
    currency: Optional[CurrencyCode] = None
    plan_id: Optional[str] = None
    period_start: Optional[Timestamp] = None
    period_end: Optional[Timestamp] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    raw_payload: dict[str, Any] = Field(
        description="Original record as received from the export"
    )


class NormalizedEvent(BillingEvent):
    """
    BillingEvent stamped by the normalizer.

    ``validation_errors`` is only non-empty when ingestion ran with
    validation skipped and the record did not match the BillingEvent shape.
    """

    normalized_at: Timestamp = Field(description="When the event was normalized")
    source_hash: NonEmptyStr = Field(
        description="SHA-256 over the billing content fields of the event"
    )
    validation_errors: list[str] = Field(default_factory=list)


class IngestError(BaseModel):
    """A raw record that failed validation, addressed by its input index."""

    index: int = Field(ge=0)
    raw_event: Any = None
    error: str


class IngestStats(BaseModel):
    total: int = Field(ge=0)
    valid: int = Field(ge=0)
    invalid: int = Field(ge=0)
    by_type: dict[str, int] = Field(default_factory=dict)


class IngestResult(BaseModel):
    """Normalized events in replay order plus the per-record errors."""

    events: list[NormalizedEvent] = Field(default_factory=list)
    errors: list[IngestError] = Field(default_factory=list)
    stats: IngestStats
