"""
Churn risk models and the external signal inputs they are scored from.
"""

from typing import Any

from pydantic import BaseModel, Field

from .enums import ChurnSignalType, RiskLevel, Severity, TicketStatus
from .ledger import LedgerState
from .types import NonEmptyStr, ProjectId, TenantId, Timestamp


class UsageMetrics(BaseModel):
    """Usage of one metric for one customer over two consecutive periods."""

    customer_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    metric_name: NonEmptyStr
    current_value: float
    previous_value: float
    period_days: int = Field(gt=0)
    measured_at: Timestamp


class SupportTicket(BaseModel):
    ticket_id: NonEmptyStr
    customer_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    created_at: Timestamp
    severity: Severity
    status: TicketStatus
    category: str

    @property
    def is_open(self) -> bool:
        return self.status in (TicketStatus.OPEN, TicketStatus.IN_PROGRESS)


class PlanDowngrade(BaseModel):
    customer_id: NonEmptyStr
    from_plan: str
    to_plan: str
    changed_at: Timestamp


class ChurnInputs(BaseModel):
    """
    Everything the churn scorer reads for one tenant/project.

    ``reference_date`` anchors every "days since" and "recent" computation,
    so scoring never reads the wall clock.
    """

    tenant_id: TenantId
    project_id: ProjectId
    ledger: LedgerState
    usage_metrics: list[UsageMetrics] = Field(default_factory=list)
    support_tickets: list[SupportTicket] = Field(default_factory=list)
    plan_downgrades: list[PlanDowngrade] = Field(default_factory=list)
    reference_date: Timestamp


class ChurnSignal(BaseModel):
    signal_type: ChurnSignalType
    weight: float = Field(ge=0.0, le=1.0)
    evidence: list[str] = Field(default_factory=list)
    raw_values: dict[str, Any] = Field(default_factory=dict)


class ChurnRisk(BaseModel):
    """
    Churn risk assessment for one customer.

    ``contributing_signals`` is ordered by weight descending; explanation and
    recommended actions are derived from that list only.
    """

    risk_id: NonEmptyStr
    tenant_id: TenantId
    project_id: ProjectId
    customer_id: NonEmptyStr
    calculated_at: Timestamp
    risk_score: int = Field(ge=0, le=100)
    risk_level: RiskLevel
    contributing_signals: list[ChurnSignal] = Field(default_factory=list)
    explanation: str
    recommended_actions: list[str] = Field(default_factory=list)
    supporting_data: dict[str, Any] = Field(default_factory=dict)
    version: str = "1.0.0"


class ChurnStats(BaseModel):
    total_assessed: int = Field(ge=0)
    by_level: dict[str, int]
    average_score: float = Field(ge=0.0)


class ChurnResult(BaseModel):
    risks: list[ChurnRisk] = Field(default_factory=list)
    stats: ChurnStats
