"""
Churn Risk Scorer - weighted multi-signal risk model per customer.

Up to five signals are computed for each customer in the ledger:

    payment_failures  min(w * min(failures * 0.2, 2), 0.9)
    usage_drop        w * min(drop_pct / 100, 1), largest drop above 30%
    support_tickets   min(w * severity_multiplier * sqrt(tickets), 0.9)
    plan_downgrade    min(w * (1 + recent * 0.5), 0.8), recent = 30 days
    no_recent_login   w * min(days / 90, 1), paying customers idle >= 35 days

The aggregate score is ``min(sum(weight * 100) * (1 + 0.1 * (n - 1)), 100)``
rounded half up. The ``(n - 1)`` amplifier rewards corroborating signals.
All "days since" arithmetic is anchored on ``reference_date``.
"""

import math
from collections import Counter, defaultdict
from datetime import datetime
from typing import Optional

import structlog

from finops.engine.canonical import sha256_text
from finops.models.churn import (
    ChurnInputs,
    ChurnResult,
    ChurnRisk,
    ChurnSignal,
    ChurnStats,
    PlanDowngrade,
    SupportTicket,
    UsageMetrics,
)
from finops.models.enums import ChurnSignalType, RiskLevel, Severity
from finops.models.ledger import CustomerLedger
from finops.models.profiles import ChurnThreshold
from finops.models.types import parse_timestamp
from finops.models.validation import validate_record

SECONDS_PER_DAY = 86400
USAGE_DROP_MIN_PCT = 30
INACTIVITY_MIN_DAYS = 35
INACTIVITY_FULL_DAYS = 90
DOWNGRADE_RECENT_DAYS = 30

LEVEL_ACTIONS = {
    RiskLevel.CRITICAL: "Immediate: Contact customer success team for intervention",
    RiskLevel.HIGH: "Schedule proactive customer outreach within 48 hours",
    RiskLevel.MEDIUM: "Monitor for additional signals; include in next health review",
}

SIGNAL_ACTIONS = {
    ChurnSignalType.PAYMENT_FAILURES: "Payment: Review billing settings and payment methods",
    ChurnSignalType.USAGE_DROP: "Usage: Investigate adoption blockers with customer",
    ChurnSignalType.SUPPORT_TICKETS: "Support: Ensure all tickets resolved satisfactorily",
    ChurnSignalType.PLAN_DOWNGRADE: "Revenue: Explore upgrade incentives or alternative plans",
    ChurnSignalType.NO_RECENT_LOGIN: "Engagement: Send re-activation campaign",
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / SECONDS_PER_DAY


def churn_risk_id(tenant_id: str, project_id: str, customer_id: str, reference_date: str) -> str:
    return f"churn-{sha256_text(f'{tenant_id}:{project_id}:{customer_id}:{reference_date}')[:16]}"


def aggregate_score(signals: list[ChurnSignal]) -> int:
    """Combine signal weights into a 0-100 integer score."""
    if not signals:
        return 0
    base = sum(signal.weight * 100 for signal in signals)
    amplifier = 1 + 0.1 * (len(signals) - 1)
    return round_half_up(min(base * amplifier, 100))


def risk_level_for(score: float, thresholds: ChurnThreshold) -> RiskLevel:
    """Bucket a score: the highest threshold maps to CRITICAL, below the lowest is LOW."""
    if score >= thresholds.risk_score_high_threshold:
        return RiskLevel.CRITICAL
    if score >= thresholds.risk_score_medium_threshold:
        return RiskLevel.HIGH
    if score >= thresholds.risk_score_low_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class ChurnRiskScorer:
    """
    Scores churn risk for every customer of a ledger.

    Attributes:
        thresholds: Signal weights and score buckets, usually from a profile

    Example:
        >>> scorer = ChurnRiskScorer(profile.churn_thresholds)
        >>> result = scorer.assess(churn_inputs)
        >>> result.risks[0].risk_level
        <RiskLevel.CRITICAL: 'critical'>
    """

    def __init__(self, thresholds: Optional[ChurnThreshold] = None):
        self.thresholds = thresholds or ChurnThreshold()
        self.logger = structlog.get_logger()

    def assess(self, inputs: ChurnInputs) -> ChurnResult:
        """
        Assess every customer in ``inputs.ledger``.

        Returns:
            ChurnResult with risks sorted by score descending, then customer_id
        """
        usage: dict[str, list[UsageMetrics]] = defaultdict(list)
        for metric in inputs.usage_metrics:
            usage[metric.customer_id].append(metric)
        tickets: dict[str, list[SupportTicket]] = defaultdict(list)
        for ticket in inputs.support_tickets:
            tickets[ticket.customer_id].append(ticket)
        downgrades: dict[str, list[PlanDowngrade]] = defaultdict(list)
        for downgrade in inputs.plan_downgrades:
            downgrades[downgrade.customer_id].append(downgrade)

        risks: list[ChurnRisk] = []
        for customer in inputs.ledger.customers.values():
            risk = self.assess_customer(
                inputs,
                customer,
                usage.get(customer.customer_id, []),
                tickets.get(customer.customer_id, []),
                downgrades.get(customer.customer_id, []),
            )
            if risk is not None:
                risks.append(risk)

        risks.sort(key=lambda risk: (-risk.risk_score, risk.customer_id))

        by_level = Counter(risk.risk_level.value for risk in risks)
        average = sum(risk.risk_score for risk in risks) / len(risks) if risks else 0.0
        stats = ChurnStats(
            total_assessed=len(risks),
            by_level={level.value: by_level[level.value] for level in RiskLevel},
            average_score=average,
        )
        self.logger.info(
            "churn_risk_assessed",
            tenant_id=inputs.tenant_id,
            project_id=inputs.project_id,
            assessed=stats.total_assessed,
            average_score=round(stats.average_score, 2),
        )
        return ChurnResult(risks=risks, stats=stats)

    def assess_customer(
        self,
        inputs: ChurnInputs,
        customer: CustomerLedger,
        usage: list[UsageMetrics],
        tickets: list[SupportTicket],
        downgrades: list[PlanDowngrade],
    ) -> Optional[ChurnRisk]:
        """Score one customer; returns None if the assessment fails its contract."""
        reference = parse_timestamp(inputs.reference_date)
        signals = [
            signal
            for signal in (
                self.payment_failure_signal(customer),
                self.usage_drop_signal(usage),
                self.support_ticket_signal(tickets),
                self.plan_downgrade_signal(downgrades, reference),
                self.inactivity_signal(customer, reference),
            )
            if signal is not None
        ]
        # stable: equal weights keep signal computation order
        signals.sort(key=lambda signal: -signal.weight)

        score = aggregate_score(signals)
        level = risk_level_for(score, self.thresholds)
        candidate = {
            "risk_id": churn_risk_id(
                inputs.tenant_id, inputs.project_id, customer.customer_id, inputs.reference_date
            ),
            "tenant_id": inputs.tenant_id,
            "project_id": inputs.project_id,
            "customer_id": customer.customer_id,
            "calculated_at": inputs.reference_date,
            "risk_score": score,
            "risk_level": level,
            "contributing_signals": [signal.model_dump() for signal in signals],
            "explanation": self.explain(customer.customer_id, score, signals),
            "recommended_actions": self.recommend(level, signals),
            "supporting_data": {
                "mrr_cents": customer.total_mrr_cents,
                "subscription_count": len(customer.subscriptions),
                "payment_failures_30d": customer.payment_failure_count_30d,
                "usage_metrics_count": len(usage),
                "support_tickets_count": len(tickets),
                "plan_downgrades_count": len(downgrades),
            },
        }
        outcome = validate_record(ChurnRisk, candidate)
        if not outcome.success:
            self.logger.debug(
                "churn_risk_dropped", customer_id=customer.customer_id, errors=outcome.errors
            )
            return None
        return outcome.value

    # =========================================================================
    # Signals
    # =========================================================================

    def payment_failure_signal(self, customer: CustomerLedger) -> Optional[ChurnSignal]:
        failures = customer.payment_failure_count_30d
        if failures <= 0:
            return None
        base_weight = self.thresholds.payment_failure_weight
        weight = min(base_weight * min(failures * 0.2, 2), 0.9)
        return ChurnSignal(
            signal_type=ChurnSignalType.PAYMENT_FAILURES,
            weight=weight,
            evidence=[
                f"{failures} payment failure(s) in last 30 days",
                "Payment failures correlate with involuntary churn risk",
            ],
            raw_values={"failure_count": failures, "base_weight": base_weight},
        )

    def usage_drop_signal(self, usage: list[UsageMetrics]) -> Optional[ChurnSignal]:
        drops: list[tuple[float, UsageMetrics]] = []
        for metric in usage:
            if metric.previous_value <= 0:
                continue
            drop_pct = (metric.previous_value - metric.current_value) / metric.previous_value * 100
            if drop_pct > USAGE_DROP_MIN_PCT:
                drops.append((drop_pct, metric))
        if not drops:
            return None

        # max keeps the first of equal drops
        drop_pct, metric = max(drops, key=lambda item: item[0])
        weight = self.thresholds.usage_drop_weight * min(drop_pct / 100, 1)
        return ChurnSignal(
            signal_type=ChurnSignalType.USAGE_DROP,
            weight=weight,
            evidence=[
                f'Usage metric "{metric.metric_name}" dropped {drop_pct:.1f}%',
                f"From {metric.previous_value:.2f} to {metric.current_value:.2f}",
                "Usage drops often precede voluntary churn",
            ],
            raw_values={
                "metric_name": metric.metric_name,
                "drop_percentage": drop_pct,
                "period_days": metric.period_days,
            },
        )

    def support_ticket_signal(self, tickets: list[SupportTicket]) -> Optional[ChurnSignal]:
        if not tickets:
            return None
        open_tickets = [ticket for ticket in tickets if ticket.is_open]
        critical = [ticket for ticket in tickets if ticket.severity == Severity.CRITICAL]
        if critical:
            multiplier = 2.0
        elif any(ticket.severity == Severity.HIGH for ticket in tickets):
            multiplier = 1.5
        elif len(open_tickets) > 3:
            multiplier = 1.3
        else:
            multiplier = 1.0

        weight = min(self.thresholds.support_ticket_weight * multiplier * math.sqrt(len(tickets)), 0.9)
        evidence = [f"{len(tickets)} support ticket(s), {len(open_tickets)} open"]
        if critical:
            evidence.append(f"{len(critical)} critical severity")
        evidence.append("Support friction correlates with churn intent")
        return ChurnSignal(
            signal_type=ChurnSignalType.SUPPORT_TICKETS,
            weight=weight,
            evidence=evidence,
            raw_values={
                "total_tickets": len(tickets),
                "open_tickets": len(open_tickets),
                "critical_tickets": len(critical),
            },
        )

    def plan_downgrade_signal(
        self, downgrades: list[PlanDowngrade], reference: datetime
    ) -> Optional[ChurnSignal]:
        if not downgrades:
            return None
        recent = [
            item
            for item in downgrades
            if _days_between(parse_timestamp(item.changed_at), reference) <= DOWNGRADE_RECENT_DAYS
        ]
        weight = min(self.thresholds.plan_downgrade_weight * (1 + len(recent) * 0.5), 0.8)
        return ChurnSignal(
            signal_type=ChurnSignalType.PLAN_DOWNGRADE,
            weight=weight,
            evidence=[
                f"{len(downgrades)} plan downgrade(s) recorded",
                f"{len(recent)} downgrade(s) in last 30 days"
                if recent
                else "Most recent downgrade >30 days ago",
                "Downgrades often precede full cancellation",
            ],
            raw_values={
                "total_downgrades": len(downgrades),
                "recent_downgrades": len(recent),
                "last_downgrade_at": downgrades[-1].changed_at,
            },
        )

    def inactivity_signal(self, customer: CustomerLedger, reference: datetime) -> Optional[ChurnSignal]:
        if customer.total_mrr_cents <= 0:
            return None
        if customer.last_payment_at:
            days = _days_between(parse_timestamp(customer.last_payment_at), reference)
        else:
            days = math.inf
        if days < INACTIVITY_MIN_DAYS:
            return None

        weight = self.thresholds.inactivity_weight * min(days / INACTIVITY_FULL_DAYS, 1)
        never_paid = math.isinf(days)
        return ChurnSignal(
            signal_type=ChurnSignalType.NO_RECENT_LOGIN,
            weight=weight,
            evidence=[
                "No recorded payment activity"
                if never_paid
                else f"No payment in {round_half_up(days)} days",
                "Inactivity indicates potential disengagement",
            ],
            raw_values={
                "days_since_payment": None if never_paid else round_half_up(days),
                "mrr_cents": customer.total_mrr_cents,
            },
        )

    # =========================================================================
    # Explanation
    # =========================================================================

    @staticmethod
    def explain(customer_id: str, score: int, signals: list[ChurnSignal]) -> str:
        if not signals:
            return f"Customer {customer_id} shows no significant churn risk signals."
        parts = [
            f"{signal.signal_type.value.replace('_', ' ')} ({round_half_up(signal.weight * 100)}% impact)"
            for signal in signals
        ]
        return f"Customer {customer_id} has risk score {score}/100 based on: {', '.join(parts)}."

    @staticmethod
    def recommend(level: RiskLevel, signals: list[ChurnSignal]) -> list[str]:
        actions: list[str] = []
        if level in LEVEL_ACTIONS:
            actions.append(LEVEL_ACTIONS[level])
        for signal in signals:
            action = SIGNAL_ACTIONS.get(signal.signal_type)
            if action:
                actions.append(action)
        return actions

