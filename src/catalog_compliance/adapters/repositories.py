"""SQLAlchemy repositories for the catalog compliance engine.

Each repository implements the corresponding Protocol from core/interfaces.py.
Repositories own the conversion between ORM rows and the immutable domain
models; nothing outside this module touches a row object.

Every operation runs in its own short transaction opened from the shared
session factory (see adapters/database.py).

Repositories:
- SQLAuditRepository         — AuditRecord upsert with stale-snapshot rejection
- SQLBaselineRepository      — ProductBaseline save/get
- SQLFieldVersionRepository  — FieldVersion append, history and pruning
- SQLDriftRepository         — DriftRecord lifecycle and period queries
- SQLReportRepository        — immutable CatalogReport rows
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_compliance.core.models import (
    AuditRecordRow,
    CatalogReportRow,
    DriftRecordRow,
    FieldVersionRow,
    ProductBaselineRow,
)
from catalog_compliance.core.types import (
    AuditItemResult,
    AuditRecord,
    CatalogReport,
    DriftRecord,
    FieldVersion,
    ImprovedProduct,
    ProductAtRisk,
    ProductBaseline,
    Suggestion,
    TopIssue,
)
from catalog_compliance.errors import DataIntegrityError
from catalog_compliance.observability import get_logger

logger = get_logger(__name__)


class _SQLRepository:
    """Shared transaction handling for the SQL repositories.

    Args:
        session_factory: Factory returned by init_database().
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize with a session factory.

        Args:
            session_factory: The SQLAlchemy async session factory.
        """
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            async with session.begin():
                yield session


# ---------------------------------------------------------------------------
# Audit records
# ---------------------------------------------------------------------------


def _audit_to_domain(row: AuditRecordRow) -> AuditRecord:
    return AuditRecord(
        tenant_id=row.tenant_id,
        product_id=row.product_id,
        product_title=row.product_title,
        status=row.status,
        passed_count=row.passed_count,
        failed_count=row.failed_count,
        total_count=row.total_count,
        score=row.score,
        items=tuple(AuditItemResult.model_validate(item) for item in row.items),
        source_updated_at=row.source_updated_at,
        updated_at=row.updated_at,
    )


def _apply_audit(row: AuditRecordRow, record: AuditRecord) -> None:
    row.product_title = record.product_title
    row.status = record.status
    row.passed_count = record.passed_count
    row.failed_count = record.failed_count
    row.total_count = record.total_count
    row.score = record.score
    row.items = [item.model_dump(mode="json") for item in record.items]
    row.source_updated_at = record.source_updated_at
    row.updated_at = record.updated_at


class SQLAuditRepository(_SQLRepository):
    """Repository for the materialized AuditRecord projection."""

    async def get(self, tenant_id: str, product_id: str) -> AuditRecord | None:
        """Return the stored audit for a product, or None."""
        async with self._transaction() as session:
            row = await self._get_row(session, tenant_id, product_id)
            return _audit_to_domain(row) if row is not None else None

    async def upsert(self, record: AuditRecord) -> tuple[AuditRecord, bool]:
        """Create or replace the audit unless the stored one is newer.

        When another writer inserts the first audit of the product between
        the read and the insert, the write is retried once against the row
        that now exists.

        Args:
            record: The freshly evaluated audit.

        Returns:
            Tuple of (stored record, applied).

        Raises:
            DataIntegrityError: If the retry collides as well.
        """
        try:
            return await self._write(record)
        except IntegrityError:
            logger.info(
                "Concurrent audit insert, retrying as update",
                tenant_id=record.tenant_id,
                product_id=record.product_id,
            )
        try:
            return await self._write(record)
        except IntegrityError as exc:
            raise DataIntegrityError(
                f"Concurrent insert of audit for product '{record.product_id}'"
            ) from exc

    async def _write(self, record: AuditRecord) -> tuple[AuditRecord, bool]:
        async with self._transaction() as session:
            row = await self._get_row(session, record.tenant_id, record.product_id, for_update=True)
            if row is not None and row.source_updated_at > record.source_updated_at:
                return _audit_to_domain(row), False
            if row is None:
                row = AuditRecordRow(tenant_id=record.tenant_id, product_id=record.product_id)
                session.add(row)
            _apply_audit(row, record)
            await session.flush()
            return _audit_to_domain(row), True

    async def delete(self, tenant_id: str, product_id: str) -> bool:
        """Delete the audit for a product."""
        async with self._transaction() as session:
            result = await session.execute(
                delete(AuditRecordRow).where(
                    AuditRecordRow.tenant_id == tenant_id,
                    AuditRecordRow.product_id == product_id,
                )
            )
            return (result.rowcount or 0) > 0

    async def list_incomplete(self, tenant_id: str, limit: int | None = None) -> list[AuditRecord]:
        """List incomplete audits ordered by updated_at ascending, then product_id."""
        stmt = (
            select(AuditRecordRow)
            .where(
                AuditRecordRow.tenant_id == tenant_id,
                AuditRecordRow.status == "incomplete",
            )
            .order_by(AuditRecordRow.updated_at.asc(), AuditRecordRow.product_id.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [_audit_to_domain(row) for row in result.scalars().all()]

    async def iter_all(self, tenant_id: str, batch_size: int) -> AsyncIterator[list[AuditRecord]]:
        """Stream every audit of a tenant in product_id order, one batch per transaction.

        Args:
            tenant_id: Owning tenant.
            batch_size: Rows per batch.

        Yields:
            Non-empty lists of AuditRecord.
        """
        after: str | None = None
        while True:
            stmt = select(AuditRecordRow).where(AuditRecordRow.tenant_id == tenant_id)
            if after is not None:
                stmt = stmt.where(AuditRecordRow.product_id > after)
            stmt = stmt.order_by(AuditRecordRow.product_id.asc()).limit(batch_size)
            async with self._transaction() as session:
                result = await session.execute(stmt)
                batch = [_audit_to_domain(row) for row in result.scalars().all()]
            if not batch:
                return
            yield batch
            if len(batch) < batch_size:
                return
            after = batch[-1].product_id

    @staticmethod
    async def _get_row(
        session: AsyncSession,
        tenant_id: str,
        product_id: str,
        for_update: bool = False,
    ) -> AuditRecordRow | None:
        stmt = select(AuditRecordRow).where(
            AuditRecordRow.tenant_id == tenant_id,
            AuditRecordRow.product_id == product_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Baselines
# ---------------------------------------------------------------------------


def _baseline_to_domain(row: ProductBaselineRow) -> ProductBaseline:
    return ProductBaseline(
        tenant_id=row.tenant_id,
        product_id=row.product_id,
        field_values=dict(row.field_values),
        source_updated_at=row.source_updated_at,
        captured_at=row.captured_at,
    )


class SQLBaselineRepository(_SQLRepository):
    """Repository for per-product drift baselines."""

    async def get(self, tenant_id: str, product_id: str) -> ProductBaseline | None:
        """Return the baseline for a product, or None."""
        async with self._transaction() as session:
            row = await self._get_row(session, tenant_id, product_id)
            return _baseline_to_domain(row) if row is not None else None

    async def save(self, baseline: ProductBaseline) -> ProductBaseline:
        """Create or replace the baseline for a product."""
        async with self._transaction() as session:
            row = await self._get_row(session, baseline.tenant_id, baseline.product_id)
            if row is None:
                row = ProductBaselineRow(tenant_id=baseline.tenant_id, product_id=baseline.product_id)
                session.add(row)
            row.field_values = dict(baseline.field_values)
            row.source_updated_at = baseline.source_updated_at
            row.captured_at = baseline.captured_at
            await session.flush()
            return _baseline_to_domain(row)

    async def delete(self, tenant_id: str, product_id: str) -> None:
        """Remove the baseline of a deleted product."""
        async with self._transaction() as session:
            await session.execute(
                delete(ProductBaselineRow).where(
                    ProductBaselineRow.tenant_id == tenant_id,
                    ProductBaselineRow.product_id == product_id,
                )
            )

    @staticmethod
    async def _get_row(session: AsyncSession, tenant_id: str, product_id: str) -> ProductBaselineRow | None:
        result = await session.execute(
            select(ProductBaselineRow).where(
                ProductBaselineRow.tenant_id == tenant_id,
                ProductBaselineRow.product_id == product_id,
            )
        )
        return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Field versions
# ---------------------------------------------------------------------------


def _version_to_domain(row: FieldVersionRow) -> FieldVersion:
    return FieldVersion(
        id=row.id,
        tenant_id=row.tenant_id,
        product_id=row.product_id,
        field=row.field,
        value=row.value,
        version=row.version,
        source=row.source,
        ai_model=row.ai_model,
        created_at=row.created_at,
    )


class SQLFieldVersionRepository(_SQLRepository):
    """Repository for the append-only FieldVersion log."""

    async def latest_version(self, tenant_id: str, product_id: str, field: str) -> int:
        """Return the highest version number for a field, or 0."""
        async with self._transaction() as session:
            result = await session.execute(
                select(func.max(FieldVersionRow.version)).where(
                    FieldVersionRow.tenant_id == tenant_id,
                    FieldVersionRow.product_id == product_id,
                    FieldVersionRow.field == field,
                )
            )
            return result.scalar() or 0

    async def insert(self, version: FieldVersion) -> FieldVersion:
        """Insert a new version.

        Raises:
            DataIntegrityError: If the version number is already taken.
        """
        row = FieldVersionRow(
            id=version.id,
            tenant_id=version.tenant_id,
            product_id=version.product_id,
            field=version.field,
            value=version.value,
            version=version.version,
            source=version.source,
            ai_model=version.ai_model,
            created_at=version.created_at,
        )
        try:
            async with self._transaction() as session:
                session.add(row)
                await session.flush()
        except IntegrityError as exc:
            raise DataIntegrityError(
                f"Version {version.version} of field '{version.field}' already exists "
                f"for product '{version.product_id}'"
            ) from exc
        return version

    async def list_versions(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        limit: int | None = None,
    ) -> list[FieldVersion]:
        """List versions of a field, newest first."""
        stmt = (
            select(FieldVersionRow)
            .where(
                FieldVersionRow.tenant_id == tenant_id,
                FieldVersionRow.product_id == product_id,
                FieldVersionRow.field == field,
            )
            .order_by(FieldVersionRow.version.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [_version_to_domain(row) for row in result.scalars().all()]

    async def get_version(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        version: int,
    ) -> FieldVersion | None:
        """Return one version, or None if it never existed or was pruned."""
        async with self._transaction() as session:
            result = await session.execute(
                select(FieldVersionRow).where(
                    FieldVersionRow.tenant_id == tenant_id,
                    FieldVersionRow.product_id == product_id,
                    FieldVersionRow.field == field,
                    FieldVersionRow.version == version,
                )
            )
            row = result.scalar_one_or_none()
            return _version_to_domain(row) if row is not None else None

    async def prune(self, tenant_id: str, product_id: str, field: str, cutoff: datetime) -> int:
        """Delete versions older than ``cutoff`` except the newest one of the field."""
        scope = (
            FieldVersionRow.tenant_id == tenant_id,
            FieldVersionRow.product_id == product_id,
            FieldVersionRow.field == field,
        )
        async with self._transaction() as session:
            newest = (await session.execute(select(func.max(FieldVersionRow.version)).where(*scope))).scalar()
            if newest is None:
                return 0
            result = await session.execute(
                delete(FieldVersionRow).where(
                    *scope,
                    FieldVersionRow.created_at < cutoff,
                    FieldVersionRow.version < newest,
                )
            )
            return result.rowcount or 0


# ---------------------------------------------------------------------------
# Drift records
# ---------------------------------------------------------------------------


def _drift_to_domain(row: DriftRecordRow) -> DriftRecord:
    return DriftRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        product_id=row.product_id,
        product_title=row.product_title,
        field=row.field,
        drift_type=row.drift_type,
        severity=row.severity,
        previous_value=row.previous_value,
        observed_value=row.observed_value,
        detected_at=row.detected_at,
        is_resolved=row.is_resolved,
        resolved_at=row.resolved_at,
        resolved_by=row.resolved_by,
    )


def _apply_drift(row: DriftRecordRow, drift: DriftRecord) -> None:
    row.product_title = drift.product_title
    row.drift_type = drift.drift_type
    row.severity = drift.severity
    row.previous_value = drift.previous_value
    row.observed_value = drift.observed_value
    row.detected_at = drift.detected_at
    row.is_resolved = drift.is_resolved
    row.resolved_at = drift.resolved_at
    row.resolved_by = drift.resolved_by


class SQLDriftRepository(_SQLRepository):
    """Repository for DriftRecord persistence."""

    async def get_open(self, tenant_id: str, product_id: str, field: str) -> DriftRecord | None:
        """Return the unresolved drift for a (product, field), or None.

        Raises:
            DataIntegrityError: If more than one open drift exists for the field.
        """
        async with self._transaction() as session:
            result = await session.execute(
                select(DriftRecordRow).where(
                    DriftRecordRow.tenant_id == tenant_id,
                    DriftRecordRow.product_id == product_id,
                    DriftRecordRow.field == field,
                    DriftRecordRow.is_resolved == False,  # noqa: E712
                )
            )
            rows = result.scalars().all()
        if len(rows) > 1:
            raise DataIntegrityError(f"{len(rows)} open drifts for field '{field}' of product '{product_id}'")
        return _drift_to_domain(rows[0]) if rows else None

    async def list_open(
        self,
        tenant_id: str,
        product_id: str | None = None,
        limit: int | None = None,
    ) -> list[DriftRecord]:
        """List unresolved drifts newest-first."""
        stmt = select(DriftRecordRow).where(
            DriftRecordRow.tenant_id == tenant_id,
            DriftRecordRow.is_resolved == False,  # noqa: E712
        )
        if product_id is not None:
            stmt = stmt.where(DriftRecordRow.product_id == product_id)
        stmt = stmt.order_by(DriftRecordRow.detected_at.desc(), DriftRecordRow.field.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            return [_drift_to_domain(row) for row in result.scalars().all()]

    async def create(self, drift: DriftRecord) -> DriftRecord:
        """Persist a new drift record."""
        row = DriftRecordRow(id=drift.id, tenant_id=drift.tenant_id, product_id=drift.product_id, field=drift.field)
        _apply_drift(row, drift)
        async with self._transaction() as session:
            session.add(row)
            await session.flush()
        return drift

    async def update(self, drift: DriftRecord) -> DriftRecord:
        """Replace a stored drift record by id."""
        async with self._transaction() as session:
            row = await session.get(DriftRecordRow, drift.id)
            if row is None or row.tenant_id != drift.tenant_id:
                raise DataIntegrityError(f"Drift '{drift.id}' vanished during update")
            _apply_drift(row, drift)
            await session.flush()
        return drift

    async def get_by_id(self, tenant_id: str, drift_id: uuid.UUID) -> DriftRecord | None:
        """Return a drift by id within the tenant, or None."""
        async with self._transaction() as session:
            row = await session.get(DriftRecordRow, drift_id)
            if row is None or row.tenant_id != tenant_id:
                return None
            return _drift_to_domain(row)

    async def list_detected_between(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> list[DriftRecord]:
        """List drifts detected in ``[start, end)`` ordered by detected_at."""
        async with self._transaction() as session:
            result = await session.execute(
                select(DriftRecordRow)
                .where(
                    DriftRecordRow.tenant_id == tenant_id,
                    DriftRecordRow.detected_at >= start,
                    DriftRecordRow.detected_at < end,
                )
                .order_by(DriftRecordRow.detected_at.asc(), DriftRecordRow.id.asc())
            )
            return [_drift_to_domain(row) for row in result.scalars().all()]

    async def count_open(self, tenant_id: str) -> int:
        """Count unresolved drifts of a tenant."""
        async with self._transaction() as session:
            result = await session.execute(
                select(func.count())
                .select_from(DriftRecordRow)
                .where(
                    DriftRecordRow.tenant_id == tenant_id,
                    DriftRecordRow.is_resolved == False,  # noqa: E712
                )
            )
            return result.scalar() or 0


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _report_to_domain(row: CatalogReportRow) -> CatalogReport:
    return CatalogReport(
        id=row.id,
        tenant_id=row.tenant_id,
        period_start=row.period_start,
        period_end=row.period_end,
        total_products=row.total_products,
        ready_products=row.ready_products,
        incomplete_products=row.incomplete_products,
        average_score=row.average_score,
        previous_average_score=row.previous_average_score,
        top_issues=tuple(TopIssue.model_validate(i) for i in row.top_issues),
        products_at_risk=tuple(ProductAtRisk.model_validate(p) for p in row.products_at_risk),
        most_improved=tuple(ImprovedProduct.model_validate(p) for p in row.most_improved),
        drifts_detected=row.drifts_detected,
        drifts_resolved=row.drifts_resolved,
        drifts_unresolved=row.drifts_unresolved,
        suggestions=tuple(Suggestion.model_validate(s) for s in row.suggestions),
        product_scores={str(k): int(v) for k, v in row.product_scores.items()},
        generated_at=row.generated_at,
    )


class SQLReportRepository(_SQLRepository):
    """Repository for immutable CatalogReport rows."""

    async def get_for_period(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> CatalogReport | None:
        """Return the report for exactly this period, or None."""
        async with self._transaction() as session:
            result = await session.execute(
                select(CatalogReportRow).where(
                    CatalogReportRow.tenant_id == tenant_id,
                    CatalogReportRow.period_start == period_start,
                    CatalogReportRow.period_end == period_end,
                )
            )
            row = result.scalar_one_or_none()
            return _report_to_domain(row) if row is not None else None

    async def latest(self, tenant_id: str, before: datetime | None = None) -> CatalogReport | None:
        """Return the report with the greatest period_end, optionally ending at or before ``before``."""
        stmt = select(CatalogReportRow).where(CatalogReportRow.tenant_id == tenant_id)
        if before is not None:
            stmt = stmt.where(CatalogReportRow.period_end <= before)
        stmt = stmt.order_by(CatalogReportRow.period_end.desc(), CatalogReportRow.generated_at.desc()).limit(1)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return _report_to_domain(row) if row is not None else None

    async def list_reports(self, tenant_id: str, limit: int = 12) -> list[CatalogReport]:
        """List reports newest-first."""
        async with self._transaction() as session:
            result = await session.execute(
                select(CatalogReportRow)
                .where(CatalogReportRow.tenant_id == tenant_id)
                .order_by(CatalogReportRow.period_end.desc(), CatalogReportRow.generated_at.desc())
                .limit(limit)
            )
            return [_report_to_domain(row) for row in result.scalars().all()]

    async def create(self, report: CatalogReport) -> CatalogReport:
        """Persist a new report.

        Raises:
            DataIntegrityError: If a report for the same period already exists.
        """
        row = CatalogReportRow(
            id=report.id,
            tenant_id=report.tenant_id,
            period_start=report.period_start,
            period_end=report.period_end,
            total_products=report.total_products,
            ready_products=report.ready_products,
            incomplete_products=report.incomplete_products,
            average_score=report.average_score,
            previous_average_score=report.previous_average_score,
            top_issues=[i.model_dump(mode="json") for i in report.top_issues],
            products_at_risk=[p.model_dump(mode="json") for p in report.products_at_risk],
            most_improved=[p.model_dump(mode="json") for p in report.most_improved],
            drifts_detected=report.drifts_detected,
            drifts_resolved=report.drifts_resolved,
            drifts_unresolved=report.drifts_unresolved,
            suggestions=[s.model_dump(mode="json") for s in report.suggestions],
            product_scores=dict(report.product_scores),
            generated_at=report.generated_at,
            created_at=report.generated_at,
        )
        try:
            async with self._transaction() as session:
                session.add(row)
                await session.flush()
        except IntegrityError as exc:
            raise DataIntegrityError(
                f"Report for period {report.period_start.isoformat()} - {report.period_end.isoformat()} already exists"
            ) from exc
        logger.info("Catalog report stored", tenant_id=report.tenant_id, report_id=str(report.id))
        return report
