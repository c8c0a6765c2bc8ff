"""
Cost-attribution hooks embedded in every job payload.
"""

from typing import Any

from finops.models.jobs import MODULE_ID

RECONCILE_CAPABILITY = "mrr_reconcile"
ANOMALY_CAPABILITY = "anomaly_detect"
CHURN_CAPABILITY = "churn_assess"


def finops_hooks(tenant_id: str, project_id: str, capability: str) -> dict[str, Any]:
    """
    Hooks the runner uses to attribute job cost back to a tenant.

    Example:
        >>> finops_hooks("acme", "billing", "mrr_reconcile")["cost_context"]
        {'cost_center': 'acme:billing', 'tags': ['finops', 'mrr_reconcile']}
    """
    return {
        "module_id": MODULE_ID,
        "capability": capability,
        "tenant_id": tenant_id,
        "project_id": project_id,
        "cost_context": {
            "cost_center": f"{tenant_id}:{project_id}",
            "tags": [MODULE_ID, capability],
        },
    }
