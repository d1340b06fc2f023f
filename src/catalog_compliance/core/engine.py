"""ComplianceEngine: the operations exposed to route handlers and webhooks.

The engine is a thin orchestration layer. For every operation it looks up
the tenant's PlanPolicy exactly once, enforces entitlements, reads the
product through the catalog collaborator where needed and delegates to the
component that owns the behavior:

- AuditService          — audit recompute, lookup and navigation
- FieldVersionService   — field history and revert targets
- DriftDetector         — baseline comparison and drift lifecycle
- RemediationDispatcher — automated fixes
- ReportAggregator      — periodic health reports

Notification failures never fail the operation that triggered them.
"""

import uuid
from typing import Any

from catalog_compliance.checklist.rules import build_rules
from catalog_compliance.core.concurrency import KeyedLock
from catalog_compliance.core.entitlements import has_feature, require_ai_quota, require_feature
from catalog_compliance.core.interfaces import (
    IAuditRepository,
    IBaselineRepository,
    ICatalogClient,
    IDriftRepository,
    IFieldVersionRepository,
    INotifier,
    IPlanPolicyProvider,
    IReportRepository,
)
from catalog_compliance.core.services import AuditService, FieldVersionService, encode_field_value
from catalog_compliance.core.types import (
    AuditItemResult,
    AuditRecord,
    BatchFixResult,
    CatalogReport,
    Clock,
    DashboardStats,
    DriftCheckResult,
    DriftRecord,
    DriftSummary,
    FieldVersion,
    FixResult,
    ProductPatch,
    ProductRef,
    ResolvedBy,
    RevertResult,
    Snapshot,
    VersionSource,
    utcnow,
)
from catalog_compliance.errors import CatalogClientError, DataIntegrityError, NotFoundError
from catalog_compliance.monitoring.drift import DriftDetector
from catalog_compliance.observability import get_logger
from catalog_compliance.remediation.dispatcher import RemediationDispatcher
from catalog_compliance.remediation.fixes import build_remediations
from catalog_compliance.reporting.aggregator import ReportAggregator, ReportPeriod
from catalog_compliance.settings import Settings

logger = get_logger(__name__)

# Versioned field name -> (Snapshot attribute, ProductPatch attribute)
_FIELD_ATTRIBUTES: dict[str, str] = {
    "title": "title",
    "description": "description_html",
    "seo_title": "seo_title",
    "seo_description": "seo_description",
    "tags": "tags",
}


class ComplianceEngine:
    """Facade over the compliance components.

    Args:
        catalog: Catalog read/write collaborator.
        plans: Plan policy lookup.
        notifier: Best-effort notification channel.
        audits: Audit Store.
        versions: Version Store.
        drift: Drift Detector.
        remediation: Remediation Dispatcher.
        reports: Report Aggregator.
    """

    def __init__(
        self,
        catalog: ICatalogClient,
        plans: IPlanPolicyProvider,
        notifier: INotifier,
        audits: AuditService,
        versions: FieldVersionService,
        drift: DriftDetector,
        remediation: RemediationDispatcher,
        reports: ReportAggregator,
    ) -> None:
        self._catalog = catalog
        self._plans = plans
        self._notifier = notifier
        self.audits = audits
        self.versions = versions
        self.drift = drift
        self.remediation = remediation
        self.reports = reports

    @classmethod
    def build(
        cls,
        catalog: ICatalogClient,
        plans: IPlanPolicyProvider,
        notifier: INotifier,
        audit_repo: IAuditRepository,
        baseline_repo: IBaselineRepository,
        version_repo: IFieldVersionRepository,
        drift_repo: IDriftRepository,
        report_repo: IReportRepository,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> "ComplianceEngine":
        """Wire every component from a set of repositories.

        Raises:
            DataIntegrityError: If the remediation registry does not match the rule set.
        """
        settings = settings or Settings()
        rules = build_rules(seo_description_min_length=settings.seo_description_min_length)
        remediations = build_remediations(
            seo_description_min_length=settings.seo_description_min_length,
            seo_description_max_length=settings.seo_description_max_length,
        )
        product_locks = KeyedLock()
        audits = AuditService(audit_repo, baseline_repo, clock=clock, rules=rules, locks=product_locks)
        return cls(
            catalog=catalog,
            plans=plans,
            notifier=notifier,
            audits=audits,
            versions=FieldVersionService(version_repo, clock=clock),
            drift=DriftDetector(drift_repo, baseline_repo, settings=settings, clock=clock, locks=product_locks),
            remediation=RemediationDispatcher(
                catalog,
                audits,
                timeout_ms=settings.remediation_timeout_ms,
                rules=rules,
                remediations=remediations,
            ),
            reports=ReportAggregator(audit_repo, drift_repo, report_repo, notifier, settings=settings, clock=clock),
        )

    # ------------------------------------------------------------------
    # Audits
    # ------------------------------------------------------------------

    async def recompute_audit(self, tenant_id: str, product_id: str) -> AuditRecord:
        """Re-read a product and recompute its audit.

        Raises:
            NotFoundError: If the product no longer exists in the catalog.
            CatalogClientError: If the catalog cannot be reached.
        """
        snapshot = await self._fetch(tenant_id, product_id)
        return await self.audits.recompute(tenant_id, snapshot)

    async def get_audit(self, tenant_id: str, product_id: str) -> AuditRecord | None:
        """Return the stored audit, or None if the product was never audited."""
        return await self.audits.get(tenant_id, product_id)

    async def list_incomplete(self, tenant_id: str, limit: int | None = None) -> list[AuditRecord]:
        return await self.audits.list_incomplete(tenant_id, limit=limit)

    async def next_incomplete(self, tenant_id: str, current_product_id: str | None = None) -> ProductRef | None:
        return await self.audits.next_incomplete(tenant_id, current_product_id)

    async def previous_incomplete(self, tenant_id: str, current_product_id: str | None = None) -> ProductRef | None:
        return await self.audits.previous_incomplete(tenant_id, current_product_id)

    async def count_incomplete(self, tenant_id: str) -> int:
        return await self.audits.count_incomplete(tenant_id)

    async def get_dashboard_stats(self, tenant_id: str) -> DashboardStats:
        return await self.audits.get_dashboard_stats(tenant_id)

    # ------------------------------------------------------------------
    # Remediation
    # ------------------------------------------------------------------

    async def get_available_fixes(self, tenant_id: str, product_id: str) -> list[AuditItemResult]:
        return await self.remediation.get_available_fixes(tenant_id, product_id)

    async def apply_fix(self, tenant_id: str, product_id: str, item_key: str) -> FixResult:
        """Apply one automated fix.

        Raises:
            EntitlementError: If the plan does not include auto-fix.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "auto_fix")
        return await self.remediation.apply_fix(tenant_id, product_id, item_key, policy.remediation)

    async def apply_all_fixes(self, tenant_id: str, product_id: str) -> BatchFixResult:
        """Apply every available fix of a product.

        Raises:
            EntitlementError: If the plan does not include auto-fix.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "auto_fix")
        return await self.remediation.apply_all_fixes(tenant_id, product_id, policy.remediation)

    # ------------------------------------------------------------------
    # Field history
    # ------------------------------------------------------------------

    async def record_field_edit(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        current_value: str | list[str] | None,
        source: VersionSource = "manual_edit",
        ai_model: str | None = None,
    ) -> FieldVersion | None:
        """Record the value a field holds before an edit.

        Returns None when the plan has no version history.

        Raises:
            QuotaExceededError: If an AI-sourced edit has no credits left.
            ValidationError: If the field is not versioned.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_ai_quota(policy, source)
        return await self.versions.record_version(
            tenant_id, product_id, field, current_value, source, policy, ai_model=ai_model
        )

    async def get_field_history(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        limit: int = 20,
    ) -> list[FieldVersion]:
        """Return the stored versions of a field, newest first.

        Raises:
            EntitlementError: If the plan does not include version history.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "version_history")
        return await self.versions.get_history(tenant_id, product_id, field, limit=limit)

    async def revert_field(self, tenant_id: str, product_id: str, field: str, version: int) -> RevertResult:
        """Restore a field to a stored version.

        The value being replaced is itself recorded as a manual edit, the
        stored value is written to the catalog and the audit is recomputed.

        Raises:
            EntitlementError: If the plan does not include version history.
            NotFoundError: If the version or the product does not exist.
            CatalogClientError: If the catalog rejects the write.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "version_history")

        value = await self.versions.revert(tenant_id, product_id, field, version)
        snapshot = await self._fetch(tenant_id, product_id)
        attribute = _FIELD_ATTRIBUTES[field]
        current = getattr(snapshot, attribute)
        current_value = list(current) if isinstance(current, tuple) else current

        if encode_field_value(field, current_value) != encode_field_value(field, value):
            await self.versions.record_version(tenant_id, product_id, field, current_value, "manual_edit", policy)
            patch_value: Any = tuple(value) if isinstance(value, list) else value
            outcome = await self._catalog.apply_mutation(tenant_id, product_id, ProductPatch(**{attribute: patch_value}))
            if not outcome.ok:
                raise CatalogClientError(f"Revert of '{field}' rejected: {outcome.errors[0]}")
            snapshot = await self._fetch(tenant_id, product_id)

        audit = await self.audits.recompute(tenant_id, snapshot)
        logger.info("Field reverted", tenant_id=tenant_id, product_id=product_id, field=field, version=version)
        return RevertResult(field=field, version=version, value=value, audit=audit)

    # ------------------------------------------------------------------
    # Drift monitoring
    # ------------------------------------------------------------------

    async def check_for_drift(self, tenant_id: str, product_id: str) -> DriftCheckResult:
        """Compare the live product with its baseline.

        Raises:
            EntitlementError: If the plan does not include drift monitoring.
            NotFoundError: If the product does not exist.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "drift_monitoring")
        snapshot = await self._fetch(tenant_id, product_id)
        result = await self.drift.check_for_drift(tenant_id, snapshot)
        await self._alert(tenant_id, snapshot, result)
        return result

    async def list_unresolved_drifts(
        self,
        tenant_id: str,
        product_id: str | None = None,
        limit: int = 50,
    ) -> list[DriftRecord]:
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "drift_monitoring")
        return await self.drift.list_unresolved(tenant_id, product_id=product_id, limit=limit)

    async def resolve_drift(self, tenant_id: str, drift_id: uuid.UUID, resolved_by: ResolvedBy = "user") -> DriftRecord:
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "drift_monitoring")
        return await self.drift.resolve_drift(tenant_id, drift_id, resolved_by)

    async def resolve_product_drifts(self, tenant_id: str, product_id: str, resolved_by: ResolvedBy = "user") -> int:
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "drift_monitoring")
        return await self.drift.resolve_product(tenant_id, product_id, resolved_by)

    async def get_drift_summary(self, tenant_id: str, days: int = 30) -> DriftSummary:
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "drift_monitoring")
        return await self.drift.summary(tenant_id, days=days)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def generate_report(self, tenant_id: str, period: ReportPeriod = "weekly") -> CatalogReport:
        """Generate (or return the stored) report for the current period.

        Raises:
            EntitlementError: If the plan does not include reports.
        """
        policy = await self._plans.get_plan_policy(tenant_id)
        require_feature(policy, "reports")
        return await self.reports.generate_report(tenant_id, period)

    async def get_latest_report(self, tenant_id: str) -> CatalogReport | None:
        return await self.reports.get_latest_report(tenant_id)

    async def get_report_history(self, tenant_id: str, limit: int = 12) -> list[CatalogReport]:
        return await self.reports.get_report_history(tenant_id, limit=limit)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def handle_product_update(self, tenant_id: str, product_id: str) -> AuditRecord | None:
        """Process a platform product-update notification.

        Runs drift detection first (when the plan includes it) against the
        existing baseline, then recomputes the audit. The baseline is only
        moved when no drift is open. A product that no longer exists is
        forgotten.

        Returns:
            The stored audit, or None if the product was deleted.
        """
        snapshot = await self._catalog.fetch_snapshot(tenant_id, product_id)
        if snapshot is None:
            await self.audits.delete(tenant_id, product_id)
            return None

        policy = await self._plans.get_plan_policy(tenant_id)
        drift_open = False
        if has_feature(policy, "drift_monitoring"):
            try:
                result = await self.drift.check_for_drift(tenant_id, snapshot)
            except DataIntegrityError:
                raise
            except Exception as exc:
                logger.error(
                    "Drift check failed during product update",
                    tenant_id=tenant_id,
                    product_id=product_id,
                    error=str(exc),
                )
                drift_open = True
            else:
                drift_open = result.detected
                await self._alert(tenant_id, snapshot, result)

        return await self.audits.recompute(tenant_id, snapshot, capture_baseline=not drift_open)

    async def handle_product_delete(self, tenant_id: str, product_id: str) -> bool:
        """Forget a product deleted on the platform."""
        return await self.delete_audit(tenant_id, product_id)

    async def delete_audit(self, tenant_id: str, product_id: str) -> bool:
        """Remove the audit and baseline of a product.

        Returns:
            True if an audit existed.
        """
        return await self.audits.delete(tenant_id, product_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch(self, tenant_id: str, product_id: str) -> Snapshot:
        snapshot = await self._catalog.fetch_snapshot(tenant_id, product_id)
        if snapshot is None:
            raise NotFoundError(resource="Product", resource_id=product_id)
        return snapshot

    async def _alert(self, tenant_id: str, snapshot: Snapshot, result: DriftCheckResult) -> None:
        if not result.created:
            return
        payload = {
            "tenant_id": tenant_id,
            "product_id": snapshot.product_id,
            "product_title": snapshot.title,
            "drifts": [
                {"id": str(d.id), "field": d.field, "drift_type": d.drift_type, "severity": d.severity}
                for d in result.created
            ],
        }
        try:
            delivered = await self._notifier.notify("drift_alert", payload)
        except Exception as exc:
            logger.warning("Drift alert failed", tenant_id=tenant_id, product_id=snapshot.product_id, error=str(exc))
            return
        if not delivered:
            logger.warning("Drift alert not delivered", tenant_id=tenant_id, product_id=snapshot.product_id)
