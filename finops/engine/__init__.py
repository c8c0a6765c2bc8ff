"""
FinOps analysis engines.

This package contains the algorithmic components of the pipeline:

- Canonicalization: key-sorted JSON and SHA-256 content hashes
- Normalization: raw export records to ordered NormalizedEvents
- Ledger building: event replay into subscription and customer state
- Reconciliation: expected versus observed MRR
- Anomaly detection: rule-based detector battery
- Churn scoring: weighted multi-signal risk model
- Cost snapshots, threshold profiles and health metadata

Every component is deterministic for identical inputs; live timestamps are
replaced by a fixed sentinel when stable output is requested.
"""

__all__ = [
    "AnomalyDetector",
    "ChurnRiskScorer",
    "CostSnapshotBuilder",
    "EventNormalizer",
    "LedgerBuilder",
    "ReconciliationEngine",
]

from finops.engine.anomaly_detector import AnomalyDetector
from finops.engine.churn_scorer import ChurnRiskScorer
from finops.engine.cost_snapshot import CostSnapshotBuilder
from finops.engine.ledger_builder import LedgerBuilder
from finops.engine.normalizer import EventNormalizer
from finops.engine.reconciliation import ReconciliationEngine
