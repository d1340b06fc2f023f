"""In-memory repositories for the catalog compliance engine.

Drop-in implementations of the repository Protocols used when no database
URL is configured and by the test suite. Stored values are the frozen
domain models themselves, so callers can never mutate stored state.

The methods are async only to satisfy the Protocols; none of them awaits,
so each call is atomic with respect to other coroutines on the loop.
"""

import uuid
from collections.abc import AsyncIterator
from datetime import datetime

from catalog_compliance.core.types import (
    AuditRecord,
    CatalogReport,
    DriftRecord,
    FieldVersion,
    ProductBaseline,
)
from catalog_compliance.errors import DataIntegrityError


class InMemoryAuditRepository:
    """AuditRecord store keyed by (tenant_id, product_id)."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], AuditRecord] = {}

    async def get(self, tenant_id: str, product_id: str) -> AuditRecord | None:
        return self._records.get((tenant_id, product_id))

    async def upsert(self, record: AuditRecord) -> tuple[AuditRecord, bool]:
        key = (record.tenant_id, record.product_id)
        stored = self._records.get(key)
        if stored is not None and stored.source_updated_at > record.source_updated_at:
            return stored, False
        self._records[key] = record
        return record, True

    async def delete(self, tenant_id: str, product_id: str) -> bool:
        return self._records.pop((tenant_id, product_id), None) is not None

    async def list_incomplete(self, tenant_id: str, limit: int | None = None) -> list[AuditRecord]:
        records = sorted(
            (r for (t, _), r in self._records.items() if t == tenant_id and r.status == "incomplete"),
            key=lambda r: (r.updated_at, r.product_id),
        )
        return records if limit is None else records[:limit]

    async def iter_all(self, tenant_id: str, batch_size: int) -> AsyncIterator[list[AuditRecord]]:
        records = sorted(
            (r for (t, _), r in self._records.items() if t == tenant_id),
            key=lambda r: r.product_id,
        )
        for start in range(0, len(records), batch_size):
            yield records[start : start + batch_size]


class InMemoryBaselineRepository:
    """ProductBaseline store keyed by (tenant_id, product_id)."""

    def __init__(self) -> None:
        self._baselines: dict[tuple[str, str], ProductBaseline] = {}

    async def get(self, tenant_id: str, product_id: str) -> ProductBaseline | None:
        return self._baselines.get((tenant_id, product_id))

    async def save(self, baseline: ProductBaseline) -> ProductBaseline:
        self._baselines[(baseline.tenant_id, baseline.product_id)] = baseline
        return baseline

    async def delete(self, tenant_id: str, product_id: str) -> None:
        self._baselines.pop((tenant_id, product_id), None)


class InMemoryFieldVersionRepository:
    """Append-only FieldVersion log keyed by (tenant_id, product_id, field).

    Each per-field list is kept sorted by version ascending.
    """

    def __init__(self) -> None:
        self._versions: dict[tuple[str, str, str], list[FieldVersion]] = {}

    async def latest_version(self, tenant_id: str, product_id: str, field: str) -> int:
        versions = self._versions.get((tenant_id, product_id, field))
        return versions[-1].version if versions else 0

    async def insert(self, version: FieldVersion) -> FieldVersion:
        versions = self._versions.setdefault((version.tenant_id, version.product_id, version.field), [])
        if versions and versions[-1].version >= version.version:
            raise DataIntegrityError(
                f"Version {version.version} of field '{version.field}' is not newer than "
                f"{versions[-1].version} for product '{version.product_id}'"
            )
        versions.append(version)
        return version

    async def list_versions(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        limit: int | None = None,
    ) -> list[FieldVersion]:
        newest_first = list(reversed(self._versions.get((tenant_id, product_id, field), [])))
        return newest_first if limit is None else newest_first[:limit]

    async def get_version(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        version: int,
    ) -> FieldVersion | None:
        for stored in self._versions.get((tenant_id, product_id, field), []):
            if stored.version == version:
                return stored
        return None

    async def prune(self, tenant_id: str, product_id: str, field: str, cutoff: datetime) -> int:
        versions = self._versions.get((tenant_id, product_id, field))
        if not versions:
            return 0
        newest = versions[-1]
        kept = [v for v in versions[:-1] if v.created_at >= cutoff]
        kept.append(newest)
        removed = len(versions) - len(kept)
        self._versions[(tenant_id, product_id, field)] = kept
        return removed


class InMemoryDriftRepository:
    """DriftRecord store keyed by id."""

    def __init__(self) -> None:
        self._drifts: dict[uuid.UUID, DriftRecord] = {}

    async def get_open(self, tenant_id: str, product_id: str, field: str) -> DriftRecord | None:
        matches = [
            d
            for d in self._drifts.values()
            if d.tenant_id == tenant_id and d.product_id == product_id and d.field == field and not d.is_resolved
        ]
        if len(matches) > 1:
            raise DataIntegrityError(f"{len(matches)} open drifts for field '{field}' of product '{product_id}'")
        return matches[0] if matches else None

    async def list_open(
        self,
        tenant_id: str,
        product_id: str | None = None,
        limit: int | None = None,
    ) -> list[DriftRecord]:
        drifts = [
            d
            for d in self._drifts.values()
            if d.tenant_id == tenant_id
            and not d.is_resolved
            and (product_id is None or d.product_id == product_id)
        ]
        # Newest first, field name breaking ties
        drifts.sort(key=lambda d: d.field)
        drifts.sort(key=lambda d: d.detected_at, reverse=True)
        return drifts if limit is None else drifts[:limit]

    async def create(self, drift: DriftRecord) -> DriftRecord:
        if drift.id in self._drifts:
            raise DataIntegrityError(f"Drift '{drift.id}' already exists")
        self._drifts[drift.id] = drift
        return drift

    async def update(self, drift: DriftRecord) -> DriftRecord:
        stored = self._drifts.get(drift.id)
        if stored is None or stored.tenant_id != drift.tenant_id:
            raise DataIntegrityError(f"Drift '{drift.id}' vanished during update")
        self._drifts[drift.id] = drift
        return drift

    async def get_by_id(self, tenant_id: str, drift_id: uuid.UUID) -> DriftRecord | None:
        drift = self._drifts.get(drift_id)
        if drift is None or drift.tenant_id != tenant_id:
            return None
        return drift

    async def list_detected_between(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
    ) -> list[DriftRecord]:
        drifts = [d for d in self._drifts.values() if d.tenant_id == tenant_id and start <= d.detected_at < end]
        return sorted(drifts, key=lambda d: (d.detected_at, str(d.id)))

    async def count_open(self, tenant_id: str) -> int:
        return sum(1 for d in self._drifts.values() if d.tenant_id == tenant_id and not d.is_resolved)


class InMemoryReportRepository:
    """CatalogReport store keyed by (tenant_id, period_start, period_end)."""

    def __init__(self) -> None:
        self._reports: dict[tuple[str, datetime, datetime], CatalogReport] = {}

    async def get_for_period(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> CatalogReport | None:
        return self._reports.get((tenant_id, period_start, period_end))

    async def latest(self, tenant_id: str, before: datetime | None = None) -> CatalogReport | None:
        reports = self._tenant_reports(tenant_id)
        if before is not None:
            reports = [r for r in reports if r.period_end <= before]
        return reports[0] if reports else None

    async def list_reports(self, tenant_id: str, limit: int = 12) -> list[CatalogReport]:
        return self._tenant_reports(tenant_id)[:limit]

    async def create(self, report: CatalogReport) -> CatalogReport:
        key = (report.tenant_id, report.period_start, report.period_end)
        if key in self._reports:
            raise DataIntegrityError(
                f"Report for period {report.period_start.isoformat()} - {report.period_end.isoformat()} already exists"
            )
        self._reports[key] = report
        return report

    def _tenant_reports(self, tenant_id: str) -> list[CatalogReport]:
        return sorted(
            (r for r in self._reports.values() if r.tenant_id == tenant_id),
            key=lambda r: (r.period_end, r.generated_at),
            reverse=True,
        )
