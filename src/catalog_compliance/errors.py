"""Error taxonomy for catalog-compliance.

- Rule evaluation and remediation failures are NOT exceptions: they are
  contained and reported inside AuditRecord items and FixResult values.
- EntitlementError and QuotaExceededError are user-actionable outcomes the
  calling layer turns into an upgrade prompt.
- NotFoundError is raised only for explicit lookups; steady-state absences
  (no audit yet, no baseline yet) are returned as None.
- DataIntegrityError signals a broken invariant and is never swallowed.
"""


class CatalogComplianceError(Exception):
    """Base error for the compliance engine.

    Attributes:
        message: Human-readable error description.
        code: Stable machine-readable error code.
    """

    code = "CATALOG_COMPLIANCE_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        """Initialize CatalogComplianceError.

        Args:
            message: Error description.
            code: Optional override for the class-level code.
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class NotFoundError(CatalogComplianceError):
    """Raised when an explicitly requested resource does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, resource_id: str) -> None:
        """Initialize NotFoundError.

        Args:
            resource: Resource type name, e.g. FieldVersion.
            resource_id: Identifier that was looked up.
        """
        super().__init__(f"{resource} '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(CatalogComplianceError):
    """Raised when caller input is malformed."""

    code = "VALIDATION_ERROR"


class EntitlementError(CatalogComplianceError):
    """Raised when the tenant's plan does not include a gated feature.

    Attributes:
        feature: The gated feature name (auto_fix, drift_monitoring, ...).
        plan: The tenant's current plan identifier.
    """

    _FEATURE_CODES = {
        "auto_fix": "AUTOFIX_LOCKED",
        "drift_monitoring": "MONITORING_LOCKED",
        "reports": "REPORTS_LOCKED",
        "version_history": "VERSION_HISTORY_LOCKED",
        "ai_generation": "AI_FEATURE_LOCKED",
    }

    def __init__(self, feature: str, plan: str) -> None:
        """Initialize EntitlementError.

        Args:
            feature: The gated feature name.
            plan: The tenant's current plan identifier.
        """
        super().__init__(
            f"Feature '{feature}' is not available on the '{plan}' plan",
            code=self._FEATURE_CODES.get(feature, "FEATURE_LOCKED"),
        )
        self.feature = feature
        self.plan = plan


class QuotaExceededError(CatalogComplianceError):
    """Raised when a quota-limited operation has no remaining allowance."""

    code = "AI_LIMIT_REACHED"

    def __init__(self, quota: str, remaining: int) -> None:
        """Initialize QuotaExceededError.

        Args:
            quota: Quota name, e.g. ai_credits.
            remaining: Allowance left (zero or negative).
        """
        super().__init__(f"Quota '{quota}' exhausted ({remaining} remaining)")
        self.quota = quota
        self.remaining = remaining


class DataIntegrityError(CatalogComplianceError):
    """Raised when a persistence invariant is violated.

    Indicates that write serialization was not honored. Never recovered locally.
    """

    code = "DATA_INTEGRITY_ERROR"


class CatalogClientError(CatalogComplianceError):
    """Raised by catalog collaborators when a fetch or mutation cannot complete."""

    code = "CATALOG_CLIENT_ERROR"
