"""Remediation dispatcher.

Maps rule keys to remediation functions and runs them against the live
catalog:

1. fetch the current snapshot,
2. compute the fix plan,
3. apply each patch through the catalog client,
4. on success, recompute the audit so it reflects the fix immediately.

Every catalog call is bounded by a timeout. Failures of any kind are
reported as ``success=False`` and never raised, so ``apply_all_fixes`` always
runs to the end. Cancellation is not intercepted: a cancelled batch keeps the
fixes (and audit refreshes) already completed.

The registry is validated at construction: every fixable rule must have a
remediation and every remediation must belong to a fixable rule.
"""

import asyncio
from collections.abc import Awaitable, Mapping, Sequence
from typing import TypeVar

from catalog_compliance.checklist.rules import RULES, Rule
from catalog_compliance.core.interfaces import ICatalogClient
from catalog_compliance.core.services import AuditService
from catalog_compliance.core.types import (
    AuditItemResult,
    BatchFixResult,
    FixResult,
    RemediationConfig,
    Snapshot,
)
from catalog_compliance.errors import DataIntegrityError
from catalog_compliance.observability import get_logger
from catalog_compliance.remediation.fixes import REMEDIATIONS, Remediation

logger = get_logger(__name__)

# Default per-call timeout in milliseconds, overridden by CATALOG_COMPLIANCE_REMEDIATION_TIMEOUT_MS
_DEFAULT_TIMEOUT_MS = 10_000

NO_AUTO_FIX = "no auto-fix available"

T = TypeVar("T")


def validate_registry(rules: Sequence[Rule], remediations: Mapping[str, Remediation]) -> None:
    """Check that fixable rules and remediations correspond one to one.

    Raises:
        DataIntegrityError: On any mismatch.
    """
    fixable = {rule.key for rule in rules if rule.fixable}
    missing = sorted(fixable - remediations.keys())
    orphaned = sorted(remediations.keys() - fixable)
    if missing or orphaned:
        raise DataIntegrityError(
            f"Remediation registry mismatch: missing={missing or '[]'} orphaned={orphaned or '[]'}"
        )


class RemediationDispatcher:
    """Runs automated fixes for failed checklist items.

    Args:
        catalog: Catalog read/write collaborator.
        audits: Audit Store used to refresh the audit after a fix.
        timeout_ms: Bound for each catalog fetch or mutation.
        rules: Rule set the registry is validated against.
        remediations: Rule key to remediation mapping.
    """

    def __init__(
        self,
        catalog: ICatalogClient,
        audits: AuditService,
        timeout_ms: int = _DEFAULT_TIMEOUT_MS,
        rules: Sequence[Rule] = RULES,
        remediations: Mapping[str, Remediation] = REMEDIATIONS,
    ) -> None:
        """Initialize RemediationDispatcher.

        Raises:
            DataIntegrityError: If the registry does not match the fixable rules.
        """
        validate_registry(rules, remediations)
        self._catalog = catalog
        self._audits = audits
        self._timeout_ms = timeout_ms
        self._timeout_s = timeout_ms / 1000.0
        self._remediations = dict(remediations)

    async def apply_fix(
        self,
        tenant_id: str,
        product_id: str,
        item_key: str,
        config: RemediationConfig,
    ) -> FixResult:
        """Apply the remediation of one rule and refresh the audit.

        Args:
            tenant_id: Owning tenant.
            product_id: Product to fix.
            item_key: Rule key of the failed item.
            config: Tenant defaults used by some remediations.

        Returns:
            FixResult. Never raises for catalog or remediation failures.
        """
        return await self._apply_and_refresh(tenant_id, product_id, item_key, config, already_fixed=())

    async def apply_all_fixes(
        self,
        tenant_id: str,
        product_id: str,
        config: RemediationConfig,
    ) -> BatchFixResult:
        """Apply every available fix of a product, continuing past failures.

        Fixes run in the stored audit's item order. Each successful fix
        refreshes the audit before the next one starts.

        Returns:
            BatchFixResult with per-item results in order and the counts.
        """
        keys = [item.key for item in await self.get_available_fixes(tenant_id, product_id)]
        results: list[FixResult] = []
        fixed_keys: list[str] = []

        for key in keys:
            result = await self._apply_and_refresh(tenant_id, product_id, key, config, already_fixed=fixed_keys)
            results.append(result)
            if result.success:
                fixed_keys.append(key)

        succeeded = sum(1 for r in results if r.success)
        failed = len(results) - succeeded
        logger.info(
            "Batch auto-fix complete",
            tenant_id=tenant_id,
            product_id=product_id,
            succeeded=succeeded,
            failed=failed,
        )
        return BatchFixResult(
            results=results,
            succeeded=succeeded,
            failed=failed,
            message=f"{succeeded} fixes applied, {failed} failed",
        )

    async def get_available_fixes(self, tenant_id: str, product_id: str) -> list[AuditItemResult]:
        """List failed, fixable items of the stored audit that have a remediation."""
        record = await self._audits.get(tenant_id, product_id)
        if record is None:
            return []
        return [
            item
            for item in record.items
            if item.status == "failed" and item.can_auto_fix and item.key in self._remediations
        ]

    async def _apply_and_refresh(
        self,
        tenant_id: str,
        product_id: str,
        item_key: str,
        config: RemediationConfig,
        already_fixed: Sequence[str],
    ) -> FixResult:
        result = await self._run(tenant_id, product_id, item_key, config)
        if not result.success or result.attempted == 0:
            return result

        try:
            snapshot = await self._bounded(self._catalog.fetch_snapshot(tenant_id, product_id))
            if snapshot is None:
                raise LookupError("product disappeared after fix")
            await self._audits.recompute(tenant_id, snapshot, auto_fixed_keys=[*already_fixed, item_key])
        except Exception as exc:
            logger.error(
                "Audit refresh after fix failed",
                tenant_id=tenant_id,
                product_id=product_id,
                item_key=item_key,
                error=str(exc) or type(exc).__name__,
            )
            return result.model_copy(
                update={"success": False, "message": f"{result.message}, but the audit could not be refreshed"}
            )
        return result

    async def _run(
        self,
        tenant_id: str,
        product_id: str,
        item_key: str,
        config: RemediationConfig,
    ) -> FixResult:
        remediation = self._remediations.get(item_key)
        if remediation is None:
            logger.info("No auto-fix for rule", tenant_id=tenant_id, product_id=product_id, item_key=item_key)
            return FixResult(item_key=item_key, success=False, message=NO_AUTO_FIX)

        try:
            snapshot: Snapshot | None = await self._bounded(self._catalog.fetch_snapshot(tenant_id, product_id))
        except Exception as exc:
            return self._failure(tenant_id, product_id, item_key, "Could not load product", exc)
        if snapshot is None:
            return FixResult(item_key=item_key, success=False, message="Product not found")

        try:
            plan = remediation(snapshot, config)
        except Exception as exc:
            return self._failure(tenant_id, product_id, item_key, "Could not compute fix", exc)
        if plan.failure is not None:
            logger.info("Auto-fix not applicable", tenant_id=tenant_id, product_id=product_id, item_key=item_key)
            return FixResult(item_key=item_key, success=False, message=plan.failure)

        fixed = 0
        last_error = ""
        for patch in plan.patches:
            try:
                outcome = await self._bounded(self._catalog.apply_mutation(tenant_id, product_id, patch))
            except Exception as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "Auto-fix mutation failed",
                    tenant_id=tenant_id,
                    product_id=product_id,
                    item_key=item_key,
                    error=last_error,
                )
                continue
            if outcome.ok:
                fixed += 1
            else:
                last_error = outcome.errors[0]
                logger.warning(
                    "Auto-fix mutation rejected",
                    tenant_id=tenant_id,
                    product_id=product_id,
                    item_key=item_key,
                    error=last_error,
                )

        attempted = len(plan.patches)
        success = fixed > 0 or attempted == 0
        message = plan.message.replace("{fixed}", str(fixed)).replace("{attempted}", str(attempted))
        if not success and attempted == 1:
            message = last_error
        logger.info(
            "Auto-fix applied" if success else "Auto-fix failed",
            tenant_id=tenant_id,
            product_id=product_id,
            item_key=item_key,
            fixed=fixed,
            attempted=attempted,
        )
        return FixResult(item_key=item_key, success=success, message=message, fixed=fixed, attempted=attempted)

    async def _bounded(self, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self._timeout_s)
        except TimeoutError as exc:
            raise TimeoutError(f"catalog call timed out after {self._timeout_ms}ms") from exc

    @staticmethod
    def _failure(tenant_id: str, product_id: str, item_key: str, prefix: str, exc: Exception) -> FixResult:
        error = str(exc) or type(exc).__name__
        logger.warning("Auto-fix failed", tenant_id=tenant_id, product_id=product_id, item_key=item_key, error=error)
        return FixResult(item_key=item_key, success=False, message=f"{prefix}: {error}")
