"""Abstract interfaces (Protocol classes) for the catalog compliance engine.

Defines the contracts between the service layer and the adapter layer using
Python's typing.Protocol. Services depend on these protocols, never on
concrete adapter implementations, so every component can be exercised
against the in-memory adapters or AsyncMock collaborators.

Repository protocols:
- IAuditRepository
- IBaselineRepository
- IFieldVersionRepository
- IDriftRepository
- IReportRepository

External collaborator protocols:
- ICatalogClient
- IPlanPolicyProvider
- INotifier
"""

import uuid
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any, Protocol

from catalog_compliance.core.types import (
    AuditRecord,
    CatalogReport,
    DriftRecord,
    FieldVersion,
    MutationResult,
    PlanPolicy,
    ProductBaseline,
    ProductPatch,
    Snapshot,
)


class IAuditRepository(Protocol):
    """Repository contract for the materialized AuditRecord projection."""

    async def get(self, tenant_id: str, product_id: str) -> AuditRecord | None:
        """Return the stored audit for a product, or None if never audited."""
        ...

    async def upsert(self, record: AuditRecord) -> tuple[AuditRecord, bool]:
        """Create or replace the audit for (tenant_id, product_id).

        The write is conditional: a record whose ``source_updated_at`` is older
        than the stored record's is rejected.

        Args:
            record: The freshly evaluated audit record.

        Returns:
            Tuple of (stored record, applied). When ``applied`` is False the
            stored record is the newer one that was kept.
        """
        ...

    async def delete(self, tenant_id: str, product_id: str) -> bool:
        """Delete the audit for a product. Returns True if a row was removed."""
        ...

    async def list_incomplete(self, tenant_id: str, limit: int | None = None) -> list[AuditRecord]:
        """List incomplete audits ordered by updated_at ascending, then product_id.

        Args:
            tenant_id: Owning tenant.
            limit: Optional maximum number of records.

        Returns:
            Incomplete audit records in stable navigation order.
        """
        ...

    def iter_all(self, tenant_id: str, batch_size: int) -> AsyncIterator[list[AuditRecord]]:
        """Stream every audit of a tenant in batches ordered by product_id."""
        ...


class IBaselineRepository(Protocol):
    """Repository contract for per-product drift baselines."""

    async def get(self, tenant_id: str, product_id: str) -> ProductBaseline | None:
        """Return the baseline for a product, or None if none has been captured."""
        ...

    async def save(self, baseline: ProductBaseline) -> ProductBaseline:
        """Create or replace the baseline for (tenant_id, product_id)."""
        ...

    async def delete(self, tenant_id: str, product_id: str) -> None:
        """Remove the baseline of a deleted product."""
        ...


class IFieldVersionRepository(Protocol):
    """Repository contract for the append-only FieldVersion log."""

    async def latest_version(self, tenant_id: str, product_id: str, field: str) -> int:
        """Return the highest version number recorded for a field, or 0."""
        ...

    async def insert(self, version: FieldVersion) -> FieldVersion:
        """Insert a new version.

        Raises:
            DataIntegrityError: If (tenant, product, field, version) already exists.
        """
        ...

    async def list_versions(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        limit: int | None = None,
    ) -> list[FieldVersion]:
        """List versions of a field ordered newest-first."""
        ...

    async def get_version(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        version: int,
    ) -> FieldVersion | None:
        """Return a specific version, or None if missing or pruned."""
        ...

    async def prune(self, tenant_id: str, product_id: str, field: str, cutoff: datetime) -> int:
        """Delete versions created before ``cutoff``, keeping the newest one.

        Args:
            tenant_id: Owning tenant.
            product_id: Product whose field history is pruned.
            field: Field name.
            cutoff: Versions with ``created_at`` strictly before this are deleted.

        Returns:
            Number of deleted versions.
        """
        ...


class IDriftRepository(Protocol):
    """Repository contract for DriftRecord persistence."""

    async def get_open(self, tenant_id: str, product_id: str, field: str) -> DriftRecord | None:
        """Return the unresolved drift for a (product, field), or None."""
        ...

    async def list_open(
        self,
        tenant_id: str,
        product_id: str | None = None,
        limit: int | None = None,
    ) -> list[DriftRecord]:
        """List unresolved drifts newest-first, optionally for one product."""
        ...

    async def create(self, drift: DriftRecord) -> DriftRecord:
        """Persist a new open drift record."""
        ...

    async def update(self, drift: DriftRecord) -> DriftRecord:
        """Replace a stored drift record by id."""
        ...

    async def get_by_id(self, tenant_id: str, drift_id: uuid.UUID) -> DriftRecord | None:
        """Return a drift by id within the tenant, or None."""
        ...

    async def list_detected_between(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> list[DriftRecord]:
        """List drifts with ``start <= detected_at < end`` ordered by detected_at."""
        ...

    async def count_open(self, tenant_id: str) -> int:
        """Count unresolved drifts of a tenant."""
        ...


class IReportRepository(Protocol):
    """Repository contract for immutable CatalogReport rows."""

    async def get_for_period(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> CatalogReport | None:
        """Return the report generated for exactly this period, or None."""
        ...

    async def latest(self, tenant_id: str, before: datetime | None = None) -> CatalogReport | None:
        """Return the report with the greatest period_end (optionally <= before)."""
        ...

    async def list_reports(self, tenant_id: str, limit: int = 12) -> list[CatalogReport]:
        """List reports newest-first."""
        ...

    async def create(self, report: CatalogReport) -> CatalogReport:
        """Persist a new report.

        Raises:
            DataIntegrityError: If a report for the same period already exists.
        """
        ...


class ICatalogClient(Protocol):
    """Read/write access to the commerce platform's catalog."""

    async def fetch_snapshot(self, tenant_id: str, product_id: str) -> Snapshot | None:
        """Read the current state of a product, or None if it no longer exists.

        Raises:
            CatalogClientError: If the platform cannot be reached.
        """
        ...

    async def apply_mutation(self, tenant_id: str, product_id: str, patch: ProductPatch) -> MutationResult:
        """Write a partial update to a product.

        Raises:
            CatalogClientError: If the platform cannot be reached.
        """
        ...


class IPlanPolicyProvider(Protocol):
    """Billing collaborator exposing per-tenant entitlements."""

    async def get_plan_policy(self, tenant_id: str) -> PlanPolicy:
        """Return the current plan facts for a tenant."""
        ...


class INotifier(Protocol):
    """Best-effort outbound notification channel."""

    async def notify(self, kind: str, payload: dict[str, Any]) -> bool:
        """Deliver a notification.

        Args:
            kind: Notification kind (drift_alert, report_ready).
            payload: JSON-serializable body.

        Returns:
            True if delivered. Implementations never raise.
        """
        ...
