"""Service settings for catalog-compliance.

All settings use the CATALOG_COMPLIANCE_ prefix and cover:
- Logging
- Persistence (SQLAlchemy async URL and pool tuning)
- Outbound notifications (report-ready, drift-alert webhooks)
- Remediation and report aggregation limits
- Drift and SEO length thresholds

Plan entitlements are not settings. They are looked up per tenant through
the PlanPolicyProvider collaborator, never from the environment.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for catalog-compliance.

    Environment variable prefix: CATALOG_COMPLIANCE_
    """

    service_name: str = "catalog-compliance"

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Root log level name.")
    json_logs: bool = Field(
        default=False,
        description="Render log lines as JSON instead of the console renderer.",
    )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="",
        description="SQLAlchemy async database URL, e.g. postgresql+asyncpg://... "
        "Leave empty to run on in-memory repositories.",
    )
    db_pool_size: int = Field(default=5, description="Connection pool size.")
    db_max_overflow: int = Field(default=5, description="Max overflow connections above db_pool_size.")
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a pooled connection before raising an error.",
    )

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    notification_webhook_url: str = Field(
        default="",
        description="Endpoint receiving report-ready and drift-alert notifications. "
        "Leave empty to disable notifications.",
    )
    notification_timeout_ms: int = Field(
        default=2000,
        description="Hard timeout for a single notification delivery in milliseconds.",
    )

    # -------------------------------------------------------------------------
    # Remediation
    # -------------------------------------------------------------------------

    remediation_timeout_ms: int = Field(
        default=10_000,
        description="Bounded timeout for each catalog fetch or mutation issued by a remediation.",
    )

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    report_batch_size: int = Field(
        default=200,
        description="Number of audit records pulled per batch while aggregating a report.",
    )
    report_at_risk_limit: int = Field(default=5, description="Cap for products at risk.")
    report_most_improved_limit: int = Field(default=5, description="Cap for most improved products.")
    report_top_issues_limit: int = Field(default=5, description="Cap for top issues.")

    # -------------------------------------------------------------------------
    # Thresholds shared by rules, remediations and drift classification
    # -------------------------------------------------------------------------

    seo_title_min_length: int = Field(default=30, description="SEO titles shorter than this are flagged as drift.")
    seo_title_max_length: int = Field(default=60, description="SEO titles longer than this are flagged as drift.")
    seo_description_min_length: int = Field(
        default=80,
        description="Lower bound of the SEO description length band.",
    )
    seo_description_max_length: int = Field(
        default=160,
        description="Upper bound of the SEO description length band.",
    )
    description_shortened_ratio: float = Field(
        default=0.5,
        description="A monitored text shrinking below this ratio of its baseline is a medium drift.",
    )
    min_image_count: int = Field(default=3, description="Image count below which drift is medium severity.")

    model_config = SettingsConfigDict(env_prefix="CATALOG_COMPLIANCE_")
