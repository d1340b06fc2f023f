"""API router for catalog-compliance.

All endpoints are registered here and included in main.py under the /api/v1
prefix. Routes are thin: every operation is a single ComplianceEngine call.
The tenant comes from the X-Tenant-ID header, authenticated upstream.

Endpoints:
- POST/GET    /products/{id}/audit                       — Recompute / read a product audit
- GET         /audits/incomplete                         — List incomplete audits
- GET         /audits/incomplete/next, /previous         — Incomplete-product navigation
- GET         /audits/stats                              — Dashboard totals
- GET/POST    /products/{id}/fixes                       — Available fixes / apply all
- POST        /products/{id}/fixes/{item_key}            — Apply one fix
- POST/GET    /products/{id}/fields/{field}/versions     — Record / list field history
- POST        /products/{id}/fields/{field}/revert       — Restore a stored version
- POST        /products/{id}/drift                       — Run a drift check
- POST        /products/{id}/drifts/resolve              — Resolve all drifts of a product
- GET         /drifts                                    — List unresolved drifts
- GET         /drifts/summary                            — Drift totals
- POST        /drifts/{id}/resolve                       — Resolve one drift
- POST/GET    /reports                                   — Generate / list reports
- GET         /reports/latest                            — Most recent report
- POST        /webhooks/products/update, /delete         — Platform product notifications
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from catalog_compliance.api.schemas import (
    DriftResolveRequest,
    DriftsResolvedResponse,
    ErrorResponse,
    FieldRevertRequest,
    FieldVersionCreateRequest,
    FieldVersionRecordedResponse,
    IncompleteAuditsResponse,
    IncompleteNavigationResponse,
    ProductWebhookRequest,
    ProductWebhookResponse,
    ReportGenerateRequest,
)
from catalog_compliance.core.engine import ComplianceEngine
from catalog_compliance.core.types import (
    AuditItemResult,
    AuditRecord,
    BatchFixResult,
    CatalogReport,
    DashboardStats,
    DriftCheckResult,
    DriftRecord,
    DriftSummary,
    FieldVersion,
    FixResult,
    RevertResult,
)
from catalog_compliance.errors import NotFoundError
from catalog_compliance.observability import get_logger

logger = get_logger(__name__)

router = APIRouter(
    tags=["catalog-compliance"],
    responses={
        402: {"model": ErrorResponse, "description": "Feature not included in the plan"},
        404: {"model": ErrorResponse, "description": "Resource not found"},
        429: {"model": ErrorResponse, "description": "AI quota exhausted"},
        502: {"model": ErrorResponse, "description": "Catalog unavailable"},
    },
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_engine(request: Request) -> ComplianceEngine:
    """Return the engine wired by the application lifespan."""
    return request.app.state.engine


def get_tenant_id(x_tenant_id: Annotated[str, Header(min_length=1, max_length=255)]) -> str:
    """Return the tenant identifier set by the upstream auth layer."""
    return x_tenant_id


Engine = Annotated[ComplianceEngine, Depends(get_engine)]
TenantId = Annotated[str, Depends(get_tenant_id)]


# ---------------------------------------------------------------------------
# Audit endpoints
# ---------------------------------------------------------------------------


@router.post("/products/{product_id}/audit", response_model=AuditRecord)
async def recompute_audit(product_id: str, tenant_id: TenantId, engine: Engine) -> AuditRecord:
    """Re-read a product from the catalog and recompute its audit.

    Args:
        product_id: Platform product identifier.
        tenant_id: Tenant from the X-Tenant-ID header.
        engine: Injected ComplianceEngine.

    Returns:
        The stored audit record.
    """
    logger.info("POST /products/audit", tenant_id=tenant_id, product_id=product_id)
    return await engine.recompute_audit(tenant_id, product_id)


@router.get("/products/{product_id}/audit", response_model=AuditRecord)
async def get_audit(product_id: str, tenant_id: TenantId, engine: Engine) -> AuditRecord:
    """Return the stored audit of a product.

    Raises:
        NotFoundError: If the product has never been audited.
    """
    record = await engine.get_audit(tenant_id, product_id)
    if record is None:
        raise NotFoundError(resource="AuditRecord", resource_id=product_id)
    return record


@router.get("/audits/incomplete", response_model=IncompleteAuditsResponse)
async def list_incomplete(
    tenant_id: TenantId,
    engine: Engine,
    limit: int = Query(default=50, ge=1, le=500),
) -> IncompleteAuditsResponse:
    """List incomplete audits, least recently updated first."""
    items = await engine.list_incomplete(tenant_id, limit=limit)
    count = await engine.count_incomplete(tenant_id)
    return IncompleteAuditsResponse(count=count, items=items)


@router.get("/audits/incomplete/next", response_model=IncompleteNavigationResponse)
async def next_incomplete(
    tenant_id: TenantId,
    engine: Engine,
    current: str | None = Query(default=None, description="Product currently shown"),
) -> IncompleteNavigationResponse:
    """Return the incomplete product after ``current``, wrapping around."""
    product = await engine.next_incomplete(tenant_id, current)
    return IncompleteNavigationResponse(product=product, remaining=await engine.count_incomplete(tenant_id))


@router.get("/audits/incomplete/previous", response_model=IncompleteNavigationResponse)
async def previous_incomplete(
    tenant_id: TenantId,
    engine: Engine,
    current: str | None = Query(default=None, description="Product currently shown"),
) -> IncompleteNavigationResponse:
    """Return the incomplete product before ``current``, wrapping around."""
    product = await engine.previous_incomplete(tenant_id, current)
    return IncompleteNavigationResponse(product=product, remaining=await engine.count_incomplete(tenant_id))


@router.get("/audits/stats", response_model=DashboardStats)
async def dashboard_stats(tenant_id: TenantId, engine: Engine) -> DashboardStats:
    return await engine.get_dashboard_stats(tenant_id)


# ---------------------------------------------------------------------------
# Fix endpoints
# ---------------------------------------------------------------------------


@router.get("/products/{product_id}/fixes", response_model=list[AuditItemResult])
async def available_fixes(product_id: str, tenant_id: TenantId, engine: Engine) -> list[AuditItemResult]:
    """List the failed items of a product that have an automated fix."""
    return await engine.get_available_fixes(tenant_id, product_id)


@router.post("/products/{product_id}/fixes", response_model=BatchFixResult)
async def apply_all_fixes(product_id: str, tenant_id: TenantId, engine: Engine) -> BatchFixResult:
    """Apply every available fix of a product.

    Individual failures are reported in the result; the request itself only
    fails when the plan does not include auto-fix.
    """
    logger.info("POST /products/fixes", tenant_id=tenant_id, product_id=product_id)
    return await engine.apply_all_fixes(tenant_id, product_id)


@router.post("/products/{product_id}/fixes/{item_key}", response_model=FixResult)
async def apply_fix(product_id: str, item_key: str, tenant_id: TenantId, engine: Engine) -> FixResult:
    """Apply the automated fix of one checklist item."""
    logger.info("POST /products/fixes/item", tenant_id=tenant_id, product_id=product_id, item_key=item_key)
    return await engine.apply_fix(tenant_id, product_id, item_key)


# ---------------------------------------------------------------------------
# Field history endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/products/{product_id}/fields/{field}/versions",
    response_model=FieldVersionRecordedResponse,
    status_code=201,
)
async def record_field_version(
    product_id: str,
    field: str,
    request: FieldVersionCreateRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> FieldVersionRecordedResponse:
    """Record the value a field holds before the caller edits it.

    Args:
        product_id: Edited product.
        field: title | description | seo_title | seo_description | tags.
        request: Current value and edit source.
        tenant_id: Tenant from the X-Tenant-ID header.
        engine: Injected ComplianceEngine.

    Returns:
        Whether a version was recorded and its number.
    """
    version = await engine.record_field_edit(
        tenant_id,
        product_id,
        field,
        request.current_value,
        source=request.source,
        ai_model=request.ai_model,
    )
    if version is None:
        return FieldVersionRecordedResponse(recorded=False)
    return FieldVersionRecordedResponse(recorded=True, version=version.version)


@router.get("/products/{product_id}/fields/{field}/versions", response_model=list[FieldVersion])
async def field_history(
    product_id: str,
    field: str,
    tenant_id: TenantId,
    engine: Engine,
    limit: int = Query(default=20, ge=1, le=100),
) -> list[FieldVersion]:
    """Return the stored versions of a field, newest first."""
    return await engine.get_field_history(tenant_id, product_id, field, limit=limit)


@router.post("/products/{product_id}/fields/{field}/revert", response_model=RevertResult)
async def revert_field(
    product_id: str,
    field: str,
    request: FieldRevertRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> RevertResult:
    """Restore a field to a stored version and re-audit the product."""
    logger.info("POST /products/fields/revert", tenant_id=tenant_id, product_id=product_id, field=field)
    return await engine.revert_field(tenant_id, product_id, field, request.version)


# ---------------------------------------------------------------------------
# Drift endpoints
# ---------------------------------------------------------------------------


@router.post("/products/{product_id}/drift", response_model=DriftCheckResult)
async def check_for_drift(product_id: str, tenant_id: TenantId, engine: Engine) -> DriftCheckResult:
    """Compare the live product with its last known-good baseline."""
    return await engine.check_for_drift(tenant_id, product_id)


@router.post("/products/{product_id}/drifts/resolve", response_model=DriftsResolvedResponse)
async def resolve_product_drifts(
    product_id: str,
    request: DriftResolveRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> DriftsResolvedResponse:
    """Close every open drift of a product."""
    resolved = await engine.resolve_product_drifts(tenant_id, product_id, request.resolved_by)
    return DriftsResolvedResponse(resolved=resolved)


@router.get("/drifts", response_model=list[DriftRecord])
async def list_drifts(
    tenant_id: TenantId,
    engine: Engine,
    product_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
) -> list[DriftRecord]:
    """List unresolved drifts, newest first."""
    return await engine.list_unresolved_drifts(tenant_id, product_id=product_id, limit=limit)


@router.get("/drifts/summary", response_model=DriftSummary)
async def drift_summary(
    tenant_id: TenantId,
    engine: Engine,
    days: int = Query(default=30, ge=1, le=365),
) -> DriftSummary:
    return await engine.get_drift_summary(tenant_id, days=days)


@router.post("/drifts/{drift_id}/resolve", response_model=DriftRecord)
async def resolve_drift(
    drift_id: uuid.UUID,
    request: DriftResolveRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> DriftRecord:
    """Close one drift and accept its observed value as the new baseline."""
    return await engine.resolve_drift(tenant_id, drift_id, request.resolved_by)


# ---------------------------------------------------------------------------
# Report endpoints
# ---------------------------------------------------------------------------


@router.post("/reports", response_model=CatalogReport, status_code=201)
async def generate_report(request: ReportGenerateRequest, tenant_id: TenantId, engine: Engine) -> CatalogReport:
    """Generate the report of the current period, or return the stored one."""
    logger.info("POST /reports", tenant_id=tenant_id, period=request.period)
    return await engine.generate_report(tenant_id, request.period)


@router.get("/reports/latest", response_model=CatalogReport)
async def latest_report(tenant_id: TenantId, engine: Engine) -> CatalogReport:
    """Return the most recent report.

    Raises:
        NotFoundError: If no report was generated yet.
    """
    report = await engine.get_latest_report(tenant_id)
    if report is None:
        raise NotFoundError(resource="CatalogReport", resource_id="latest")
    return report


@router.get("/reports", response_model=list[CatalogReport])
async def report_history(
    tenant_id: TenantId,
    engine: Engine,
    limit: int = Query(default=12, ge=1, le=100),
) -> list[CatalogReport]:
    return await engine.get_report_history(tenant_id, limit=limit)


# ---------------------------------------------------------------------------
# Webhook endpoints
# ---------------------------------------------------------------------------


@router.post("/webhooks/products/update", response_model=ProductWebhookResponse)
async def product_updated(
    request: ProductWebhookRequest,
    tenant_id: TenantId,
    engine: Engine,
) -> ProductWebhookResponse:
    """Process a product-update notification: drift check, then re-audit.

    Deliveries are at-least-once; replaying one is harmless.
    """
    audit = await engine.handle_product_update(tenant_id, request.product_id)
    return ProductWebhookResponse(product_id=request.product_id, deleted=audit is None, audit=audit)


@router.post("/webhooks/products/delete", status_code=204)
async def product_deleted(request: ProductWebhookRequest, tenant_id: TenantId, engine: Engine) -> Response:
    """Forget a product deleted on the platform."""
    await engine.handle_product_delete(tenant_id, request.product_id)
    return Response(status_code=204)
