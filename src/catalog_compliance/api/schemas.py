"""Pydantic request and response schemas for the catalog compliance API.

Domain models in ``core.types`` are already immutable Pydantic models and are
returned directly where their shape is the response; the schemas here cover
request bodies and the responses that wrap or summarize domain values.

Resources:
- Audits — recompute, lookup, incomplete navigation, dashboard stats
- Fixes — available and applied remediations
- Field versions — history recording and revert
- Drifts — drift checks, resolution and summary
- Reports — health report generation and history
- Webhooks — platform product update / delete notifications
"""

from typing import Literal

from pydantic import BaseModel, Field

from catalog_compliance.core.types import AuditRecord, ProductRef, VersionSource

# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


class IncompleteAuditsResponse(BaseModel):
    """Incomplete audits of a tenant, least recently updated first."""

    count: int = Field(description="Number of incomplete products")
    items: list[AuditRecord] = Field(description="Incomplete audit records")


class IncompleteNavigationResponse(BaseModel):
    """Neighbor of the current product in the incomplete list."""

    product: ProductRef | None = Field(description="The next or previous incomplete product, if any")
    remaining: int = Field(description="Number of incomplete products")


# ---------------------------------------------------------------------------
# Field versions
# ---------------------------------------------------------------------------


class FieldVersionCreateRequest(BaseModel):
    """Request body recording the value a field holds before an edit."""

    current_value: str | list[str] | None = Field(
        default=None,
        description="The value about to be replaced; a list of strings for tags",
    )
    source: VersionSource = Field(
        default="manual_edit",
        description="manual_edit | ai_generate | ai_expand | ai_improve | ai_replace",
    )
    ai_model: str | None = Field(default=None, max_length=255, description="Model identifier for AI sources")


class FieldVersionRecordedResponse(BaseModel):
    """Result of recording a field version."""

    recorded: bool = Field(description="False when the plan has no version history")
    version: int | None = Field(default=None, description="The new version number")


class FieldRevertRequest(BaseModel):
    """Request body restoring a field to a stored version."""

    version: int = Field(ge=1, description="Version number to restore")


# ---------------------------------------------------------------------------
# Drifts
# ---------------------------------------------------------------------------


class DriftResolveRequest(BaseModel):
    """Request body closing a drift manually."""

    resolved_by: Literal["user", "ignored"] = Field(
        default="user",
        description="user accepts the change, ignored dismisses the alert",
    )


class DriftsResolvedResponse(BaseModel):
    resolved: int = Field(description="Number of drifts closed")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportGenerateRequest(BaseModel):
    """Request body generating the report of the current period."""

    period: Literal["weekly", "monthly"] = Field(default="weekly", description="weekly | monthly")


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class ProductWebhookRequest(BaseModel):
    """Platform notification about one product."""

    product_id: str = Field(min_length=1, max_length=255, description="Platform product identifier")


class ProductWebhookResponse(BaseModel):
    """Outcome of processing a product webhook."""

    product_id: str
    deleted: bool = Field(description="True if the product was forgotten")
    audit: AuditRecord | None = Field(default=None, description="The recomputed audit, if the product exists")


class ErrorResponse(BaseModel):
    """Body returned for every handled engine error."""

    error: str = Field(description="Stable machine-readable error code")
    message: str = Field(description="Human-readable description")
