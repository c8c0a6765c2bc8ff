"""
FinOps Autopilot - offline billing ledger reconstruction and analysis.

Billing exports are normalized, replayed into a per-tenant ledger,
reconciled against payments, scanned for anomalies and scored for churn
risk. Results are packaged as deterministic, hash-stamped job requests.
"""

__version__ = "0.1.0"
