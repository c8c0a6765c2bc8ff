"""
Enumeration types for the FinOps data contracts.

All enums inherit from (str, Enum) so they serialize to their plain string
values and compare equal to raw strings read from JSON exports.
"""

from enum import Enum


class BillingEventType(str, Enum):
    """Billing lifecycle events accepted from provider exports."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    INVOICE_PAID = "invoice_paid"
    INVOICE_FAILED = "invoice_failed"
    INVOICE_REFUNDED = "invoice_refunded"
    INVOICE_DISPUTED = "invoice_disputed"
    USAGE_RECORDED = "usage_recorded"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    REFUND_ISSUED = "refund_issued"
    DISPUTE_CREATED = "dispute_created"
    DISPUTE_WON = "dispute_won"
    DISPUTE_LOST = "dispute_lost"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status. CANCELED is terminal."""

    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PAUSED = "paused"


class DiscrepancyReason(str, Enum):
    """Classification of an MRR reconciliation discrepancy."""

    MISSING_INVOICE = "missing_invoice"
    DOUBLE_CHARGE = "double_charge"
    INCORRECT_PLAN = "incorrect_plan"
    CURRENCY_MISMATCH = "currency_mismatch"
    PERIOD_MISMATCH = "period_mismatch"
    OTHER = "other"


class AnomalyType(str, Enum):
    """Anomaly categories emitted by the rule battery."""

    MISSING_INVOICE = "missing_invoice"
    DOUBLE_CHARGE = "double_charge"
    REFUND_SPIKE = "refund_spike"
    DISPUTE_SPIKE = "dispute_spike"
    PAYMENT_FAILURE_SPIKE = "payment_failure_spike"
    USAGE_DROP = "usage_drop"
    MRR_DISCREPANCY = "mrr_discrepancy"
    DUPLICATE_EVENT = "duplicate_event"
    OUT_OF_SEQUENCE = "out_of_sequence"


class Severity(str, Enum):
    """Severity for anomalies and support tickets."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FindingSeverity(str, Enum):
    """Severity of a report finding. Adds INFO below LOW."""

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, Enum):
    """Churn risk bucket derived from the aggregate score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ChurnSignalType(str, Enum):
    """Kinds of evidence contributing to a churn risk score."""

    PAYMENT_FAILURES = "payment_failures"
    USAGE_DROP = "usage_drop"
    SUPPORT_TICKETS = "support_tickets"
    PLAN_DOWNGRADE = "plan_downgrade"
    NO_RECENT_LOGIN = "no_recent_login"
    DISPUTE_FILED = "dispute_filed"
    REFUND_REQUESTED = "refund_requested"


class TicketStatus(str, Enum):
    """Support ticket workflow status."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class JobType(str, Enum):
    """Batch job types this module can request from the job runner."""

    RECONCILE = "autopilot.finops.reconcile"
    ANOMALY_SCAN = "autopilot.finops.anomaly_scan"
    CHURN_RISK_REPORT = "autopilot.finops.churn_risk_report"


class JobPriority(str, Enum):
    """Queue priority for a job request."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class JobTypeStatus(str, Enum):
    """Availability of a job type in the runner registry."""

    AVAILABLE = "AVAILABLE"
    UNAVAILABLE = "UNAVAILABLE"


class AlertChannel(str, Enum):
    """Alert delivery channels configured per profile."""

    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
    PAGERDUTY = "pagerduty"


class CostCategory(str, Enum):
    """Cost snapshot line item categories."""

    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    REFUND = "refund"
    DISPUTE = "dispute"
    OTHER = "other"


class HealthState(str, Enum):
    """Overall module health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
