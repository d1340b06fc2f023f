"""Domain types for the catalog compliance engine.

All values crossing a component boundary are immutable Pydantic models.
Updates produce new instances via ``model_copy(update=...)``; repositories
convert to and from ORM rows at the storage boundary only.

Models:
- Snapshot          — point-in-time read of one product's audited fields
- AuditItemResult   — result of one rule against one snapshot
- AuditRecord       — materialized audit projection, one per (tenant, product)
- ProductBaseline   — last known-good monitored field values
- FieldVersion      — append-only field history entry
- DriftRecord       — observed deviation from a baseline
- CatalogReport     — immutable periodic health report
- PlanPolicy        — per-tenant entitlement facts (read-only to the engine)
"""

import re
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ItemStatus = Literal["passed", "failed", "auto_fixed"]
RuleStatus = Literal["passed", "failed"]
AuditStatus = Literal["ready", "incomplete"]
VersionSource = Literal["manual_edit", "ai_generate", "ai_expand", "ai_improve", "ai_replace"]
Severity = Literal["high", "medium", "low"]
ResolvedBy = Literal["user", "auto", "ignored"]

AI_SOURCES: frozenset[str] = frozenset({"ai_generate", "ai_expand", "ai_improve", "ai_replace"})

# Fields whose edits are tracked by the version store
VERSIONED_FIELDS: frozenset[str] = frozenset(
    {"title", "description", "seo_title", "seo_description", "tags"}
)
# Versioned fields holding a list; stored as a JSON array string
LIST_FIELDS: frozenset[str] = frozenset({"tags"})

_HTML_TAG = re.compile(r"<[^>]*>")


class ProductImage(BaseModel):
    """One product image with its alt text."""

    model_config = ConfigDict(frozen=True)

    id: str
    url: str
    alt_text: str | None = None


class Collection(BaseModel):
    """A collection the product belongs to."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""


class Snapshot(BaseModel):
    """Point-in-time view of one catalog item's audited fields.

    Produced by the catalog collaborator and never persisted directly.
    ``updated_at`` is the platform's own modification timestamp and orders
    concurrent recomputations of the same product.
    """

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(..., min_length=1)
    title: str = ""
    description_html: str = ""
    vendor: str = ""
    product_type: str = ""
    tags: tuple[str, ...] = ()
    seo_title: str | None = None
    seo_description: str | None = None
    images: tuple[ProductImage, ...] = ()
    collections: tuple[Collection, ...] = ()
    status: str = "active"
    updated_at: datetime

    def plain_description(self) -> str:
        """Return the description with HTML tags stripped and whitespace trimmed."""
        return _HTML_TAG.sub("", self.description_html or "").strip()


class AuditItemResult(BaseModel):
    """Result of a single rule evaluated against a snapshot."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    status: ItemStatus
    details: str | None = None
    category: str = "content"
    can_auto_fix: bool = False


class AuditRecord(BaseModel):
    """Materialized audit of one product.

    Invariants: ``total_count`` equals the size of the rule set,
    ``passed_count + failed_count == total_count`` and ``status`` is ready
    iff ``failed_count == 0``.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    product_id: str
    product_title: str = ""
    status: AuditStatus
    passed_count: int
    failed_count: int
    total_count: int
    score: int = Field(..., ge=0, le=100, description="passed_count / total_count as a rounded percentage")
    items: tuple[AuditItemResult, ...]
    source_updated_at: datetime = Field(..., description="Timestamp of the snapshot the audit was built from")
    updated_at: datetime = Field(..., description="When this record was last written")

    def item(self, key: str) -> AuditItemResult | None:
        """Return the item result for a rule key, or None."""
        return next((i for i in self.items if i.key == key), None)

    def failed_fixable_keys(self) -> list[str]:
        """Rule keys that failed and have an automated remediation, in item order."""
        return [i.key for i in self.items if i.status == "failed" and i.can_auto_fix]


class ProductBaseline(BaseModel):
    """Last known-good values of the monitored fields of one product."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    product_id: str
    field_values: dict[str, str]
    source_updated_at: datetime
    captured_at: datetime


class FieldVersion(BaseModel):
    """The value a field held immediately before change ``version`` was applied."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: str
    product_id: str
    field: str
    value: str
    version: int = Field(..., ge=1)
    source: VersionSource
    ai_model: str | None = None
    created_at: datetime


class DriftRecord(BaseModel):
    """A monitored field observed away from its baseline value."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: str
    product_id: str
    product_title: str = ""
    field: str
    drift_type: str
    severity: Severity
    previous_value: str
    observed_value: str
    detected_at: datetime
    is_resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: ResolvedBy | None = None


class DriftCheckResult(BaseModel):
    """Outcome of one drift check for a product.

    ``drifts`` holds every open drift of the product after the check,
    ``created`` the subset opened by this check and ``resolved`` the drifts
    this check closed because the field matched its baseline again.
    """

    detected: bool
    drifts: list[DriftRecord] = Field(default_factory=list)
    created: list[DriftRecord] = Field(default_factory=list)
    resolved: list[DriftRecord] = Field(default_factory=list)
    baseline_missing: bool = False


class DriftSummary(BaseModel):
    """Drift totals for a tenant dashboard."""

    total: int
    unresolved: int
    products_affected: int
    by_type: dict[str, int]
    recent: list[DriftRecord]


class TopIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    issue: str
    count: int


class ProductAtRisk(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    title: str
    score: int
    issue_count: int


class ImprovedProduct(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    title: str
    previous_score: int
    score: int
    score_change: int


class Suggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    priority: Severity
    message: str


class CatalogReport(BaseModel):
    """Immutable catalog health report, one per tenant per period.

    ``product_scores`` maps every audited product to its score at generation
    time; the next report uses it to compute ``most_improved``.
    """

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    tenant_id: str
    period_start: datetime
    period_end: datetime
    total_products: int
    ready_products: int
    incomplete_products: int
    average_score: float
    previous_average_score: float | None = None
    top_issues: tuple[TopIssue, ...] = ()
    products_at_risk: tuple[ProductAtRisk, ...] = ()
    most_improved: tuple[ImprovedProduct, ...] = ()
    drifts_detected: int = 0
    drifts_resolved: int = 0
    drifts_unresolved: int = 0
    suggestions: tuple[Suggestion, ...] = ()
    product_scores: dict[str, int] = Field(default_factory=dict)
    generated_at: datetime


class RemediationConfig(BaseModel):
    """Per-tenant defaults consumed by remediations."""

    model_config = ConfigDict(frozen=True)

    default_collection_id: str | None = None
    default_tags: tuple[str, ...] = ()


class PlanPolicy(BaseModel):
    """Entitlement facts for one tenant, looked up once per operation."""

    model_config = ConfigDict(frozen=True)

    plan: str = "free"
    retention_days: int = 0
    version_history_enabled: bool = False
    ai_quota_remaining: int = 0
    auto_fix_enabled: bool = False
    drift_monitoring_enabled: bool = False
    reports_enabled: bool = False
    remediation: RemediationConfig = Field(default_factory=RemediationConfig)


class ProductPatch(BaseModel):
    """Partial update sent to the catalog mutation collaborator.

    Only non-None fields are written.
    """

    model_config = ConfigDict(frozen=True)

    title: str | None = None
    description_html: str | None = None
    seo_title: str | None = None
    seo_description: str | None = None
    tags: tuple[str, ...] | None = None
    add_collection_ids: tuple[str, ...] | None = None
    image_alt_texts: dict[str, str] | None = None


class MutationResult(BaseModel):
    """Result of a catalog mutation; an empty error list means success."""

    errors: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class FixResult(BaseModel):
    """Outcome of one remediation."""

    item_key: str
    success: bool
    message: str
    fixed: int = 0
    attempted: int = 0


class BatchFixResult(BaseModel):
    """Outcome of applying every available remediation for a product."""

    results: list[FixResult]
    succeeded: int
    failed: int
    message: str


class DashboardStats(BaseModel):
    total_audited: int
    ready_count: int
    incomplete_count: int
    avg_completion: int


class ProductRef(BaseModel):
    product_id: str
    product_title: str


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


class RevertResult(BaseModel):
    """Outcome of restoring a field to a stored version."""

    field: str
    version: int
    value: str | list[str]
    audit: AuditRecord
