"""Plan entitlement gates.

The engine never reads plan flags from the environment: a PlanPolicy is
fetched once per operation and handed to these helpers, which raise typed,
user-actionable errors the API layer maps to upgrade prompts.
"""

from catalog_compliance.core.types import AI_SOURCES, PlanPolicy
from catalog_compliance.errors import EntitlementError, QuotaExceededError

_FEATURE_FLAGS = {
    "auto_fix": "auto_fix_enabled",
    "drift_monitoring": "drift_monitoring_enabled",
    "reports": "reports_enabled",
    "version_history": "version_history_enabled",
}


def has_feature(policy: PlanPolicy, feature: str) -> bool:
    """Return whether the plan includes a gated feature.

    Args:
        policy: The tenant's plan facts.
        feature: One of auto_fix, drift_monitoring, reports, version_history.

    Returns:
        True if the feature is enabled.

    Raises:
        KeyError: If ``feature`` is not a known gated feature.
    """
    return bool(getattr(policy, _FEATURE_FLAGS[feature]))


def require_feature(policy: PlanPolicy, feature: str) -> None:
    """Raise EntitlementError unless the plan includes ``feature``."""
    if not has_feature(policy, feature):
        raise EntitlementError(feature=feature, plan=policy.plan)


def require_ai_quota(policy: PlanPolicy, source: str) -> None:
    """Raise QuotaExceededError when an AI-sourced edit has no credits left.

    Manual edits are never quota-limited.
    """
    if source in AI_SOURCES and policy.ai_quota_remaining <= 0:
        raise QuotaExceededError(quota="ai_credits", remaining=policy.ai_quota_remaining)
