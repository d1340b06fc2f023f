"""Drift detection against a per-product baseline.

A baseline holds the values of a small set of monitored fields captured
when the product was last known-good. Every later snapshot is compared with
it field by field:

- a differing field opens a DriftRecord, or updates the field's open record
  in place (at most one unresolved record per product and field);
- a field that matches its baseline again closes its open record with
  ``resolved_by="auto"``.

Only title, SEO fields, image URLs, image alt text and tags are monitored.
Drift monitoring is a paid feature; entitlement is checked by the caller,
never here.
"""

import json
import uuid
from collections import Counter
from datetime import timedelta

from catalog_compliance.core.concurrency import KeyedLock
from catalog_compliance.core.interfaces import IBaselineRepository, IDriftRepository
from catalog_compliance.core.types import (
    Clock,
    DriftCheckResult,
    DriftRecord,
    DriftSummary,
    ProductBaseline,
    ResolvedBy,
    Severity,
    Snapshot,
    utcnow,
)
from catalog_compliance.errors import NotFoundError
from catalog_compliance.observability import get_logger
from catalog_compliance.settings import Settings

logger = get_logger(__name__)

MONITORED_FIELDS: tuple[str, ...] = (
    "title",
    "seo_title",
    "seo_description",
    "image_urls",
    "image_alt_text",
    "tags",
)


def monitored_values(snapshot: Snapshot) -> dict[str, str]:
    """Project a snapshot onto the monitored fields.

    List-valued fields are encoded as canonical JSON so that reordering
    images or tags is not reported as drift.

    Args:
        snapshot: The product snapshot.

    Returns:
        Mapping of monitored field name to its canonical string value.
    """
    alt_by_url = {image.url: (image.alt_text or "").strip() for image in snapshot.images}
    return {
        "title": snapshot.title.strip(),
        "seo_title": (snapshot.seo_title or "").strip(),
        "seo_description": (snapshot.seo_description or "").strip(),
        "image_urls": json.dumps(sorted(alt_by_url)),
        "image_alt_text": json.dumps(alt_by_url, sort_keys=True),
        "tags": json.dumps(sorted(tag.strip() for tag in snapshot.tags if tag.strip())),
    }


class DriftDetector:
    """Compares snapshots with their baseline and maintains DriftRecords.

    Args:
        drift_repo: DriftRecord persistence.
        baseline_repo: ProductBaseline persistence.
        settings: Thresholds used to classify severity.
        clock: Source of the current UTC time.
        locks: Per-product locks keyed by (tenant_id, product_id), shared with
            the AuditService capturing the same baselines.
    """

    def __init__(
        self,
        drift_repo: IDriftRepository,
        baseline_repo: IBaselineRepository,
        settings: Settings | None = None,
        clock: Clock = utcnow,
        locks: KeyedLock | None = None,
    ) -> None:
        self._drifts = drift_repo
        self._baselines = baseline_repo
        self._settings = settings or Settings()
        self._clock = clock
        self._locks = locks if locks is not None else KeyedLock()

    async def check_for_drift(self, tenant_id: str, snapshot: Snapshot) -> DriftCheckResult:
        """Compare a snapshot with the product's baseline.

        Args:
            tenant_id: Owning tenant.
            snapshot: The newly observed product state.

        Returns:
            DriftCheckResult. When no baseline exists yet the result is empty
            with ``baseline_missing=True``.
        """
        async with self._locks.hold((tenant_id, snapshot.product_id)):
            return await self._check(tenant_id, snapshot)

    async def _check(self, tenant_id: str, snapshot: Snapshot) -> DriftCheckResult:
        baseline = await self._baselines.get(tenant_id, snapshot.product_id)
        if baseline is None:
            logger.info("No baseline for drift check", tenant_id=tenant_id, product_id=snapshot.product_id)
            return DriftCheckResult(detected=False, baseline_missing=True)

        current = monitored_values(snapshot)
        now = self._clock()
        open_drifts: list[DriftRecord] = []
        created: list[DriftRecord] = []
        resolved: list[DriftRecord] = []

        for field in MONITORED_FIELDS:
            expected = baseline.field_values.get(field, "")
            observed = current[field]
            existing = await self._drifts.get_open(tenant_id, snapshot.product_id, field)

            if observed == expected:
                if existing is not None:
                    closed = existing.model_copy(
                        update={"is_resolved": True, "resolved_at": now, "resolved_by": "auto"}
                    )
                    resolved.append(await self._drifts.update(closed))
                continue

            drift_type, severity = self.classify(field, expected, observed)
            if existing is None:
                drift = DriftRecord(
                    id=uuid.uuid4(),
                    tenant_id=tenant_id,
                    product_id=snapshot.product_id,
                    product_title=snapshot.title,
                    field=field,
                    drift_type=drift_type,
                    severity=severity,
                    previous_value=expected,
                    observed_value=observed,
                    detected_at=now,
                )
                drift = await self._drifts.create(drift)
                created.append(drift)
            elif existing.observed_value != observed:
                drift = await self._drifts.update(
                    existing.model_copy(
                        update={
                            "product_title": snapshot.title,
                            "drift_type": drift_type,
                            "severity": severity,
                            "observed_value": observed,
                            "detected_at": now,
                        }
                    )
                )
            else:
                drift = existing
            open_drifts.append(drift)

        logger.info(
            "Drift check complete",
            tenant_id=tenant_id,
            product_id=snapshot.product_id,
            open=len(open_drifts),
            created=len(created),
            resolved=len(resolved),
        )
        return DriftCheckResult(
            detected=bool(open_drifts),
            drifts=open_drifts,
            created=created,
            resolved=resolved,
        )

    def classify(self, field: str, expected: str, observed: str) -> tuple[str, Severity]:
        """Classify a change of one monitored field.

        Args:
            field: Monitored field name.
            expected: Baseline value.
            observed: Current value.

        Returns:
            Tuple of (drift_type, severity).
        """
        s = self._settings
        if field == "title":
            if expected and not observed:
                return "title_removed", "high"
            return "title_changed", "low"

        if field == "seo_title":
            if expected and not observed:
                return "seo_title_removed", "high"
            if len(observed) > s.seo_title_max_length:
                return "seo_title_too_long", "medium"
            if 0 < len(observed) < s.seo_title_min_length:
                return "seo_title_too_short", "low"
            return "seo_title_changed", "low"

        if field == "seo_description":
            if expected and not observed:
                return "seo_description_removed", "high"
            if len(observed) < len(expected) * s.description_shortened_ratio:
                return "seo_description_shortened", "medium"
            if len(observed) > s.seo_description_max_length:
                return "seo_description_too_long", "low"
            return "seo_description_changed", "low"

        if field == "image_urls":
            before, after = len(json.loads(expected or "[]")), len(json.loads(observed or "[]"))
            if before > 0 and after == 0:
                return "images_removed", "high"
            if 0 < after < s.min_image_count:
                return "images_low_count", "medium"
            return "images_changed", "low"

        if field == "image_alt_text":
            alts = json.loads(observed or "{}")
            if any(not alt for alt in alts.values()):
                return "alt_text_missing", "medium"
            return "alt_text_changed", "low"

        if field == "tags":
            if json.loads(expected or "[]") and not json.loads(observed or "[]"):
                return "tags_removed", "medium"
            return "tags_changed", "low"

        return f"{field}_changed", "low"

    async def resolve_drift(
        self,
        tenant_id: str,
        drift_id: uuid.UUID,
        resolved_by: ResolvedBy = "user",
    ) -> DriftRecord:
        """Close one drift and accept its observed value into the baseline.

        Resolving an already-resolved drift returns it unchanged.

        Args:
            tenant_id: Owning tenant.
            drift_id: The drift to close.
            resolved_by: user or ignored.

        Returns:
            The resolved DriftRecord.

        Raises:
            NotFoundError: If the drift does not exist for this tenant.
        """
        drift = await self._drifts.get_by_id(tenant_id, drift_id)
        if drift is None:
            raise NotFoundError(resource="DriftRecord", resource_id=str(drift_id))

        async with self._locks.hold((tenant_id, drift.product_id)):
            drift = await self._drifts.get_by_id(tenant_id, drift_id) or drift
            if drift.is_resolved:
                return drift
            closed = await self._drifts.update(
                drift.model_copy(update={"is_resolved": True, "resolved_at": self._clock(), "resolved_by": resolved_by})
            )
            await self._accept_into_baseline(tenant_id, drift.product_id, [closed])
        logger.info(
            "Drift resolved",
            tenant_id=tenant_id,
            drift_id=str(drift_id),
            field=drift.field,
            resolved_by=resolved_by,
        )
        return closed

    async def resolve_product(self, tenant_id: str, product_id: str, resolved_by: ResolvedBy = "user") -> int:
        """Close every open drift of a product.

        Returns:
            Number of drifts resolved.
        """
        now = self._clock()
        closed: list[DriftRecord] = []
        async with self._locks.hold((tenant_id, product_id)):
            for drift in await self._drifts.list_open(tenant_id, product_id=product_id):
                closed.append(
                    await self._drifts.update(
                        drift.model_copy(update={"is_resolved": True, "resolved_at": now, "resolved_by": resolved_by})
                    )
                )
            await self._accept_into_baseline(tenant_id, product_id, closed)
        logger.info("Product drifts resolved", tenant_id=tenant_id, product_id=product_id, count=len(closed))
        return len(closed)

    async def list_unresolved(
        self,
        tenant_id: str,
        product_id: str | None = None,
        limit: int = 50,
    ) -> list[DriftRecord]:
        """List open drifts newest-first."""
        return await self._drifts.list_open(tenant_id, product_id=product_id, limit=limit)

    async def summary(self, tenant_id: str, days: int = 30) -> DriftSummary:
        """Summarize drifts detected during the last ``days`` days.

        Args:
            tenant_id: Owning tenant.
            days: Size of the look-back window.

        Returns:
            DriftSummary with totals by type and the ten most recent open drifts.
        """
        now = self._clock()
        window = await self._drifts.list_detected_between(
            tenant_id, now - timedelta(days=days), now + timedelta(microseconds=1)
        )
        open_in_window = [d for d in window if not d.is_resolved]
        by_type = Counter(d.drift_type for d in window)
        return DriftSummary(
            total=len(window),
            unresolved=len(open_in_window),
            products_affected=len({d.product_id for d in open_in_window}),
            by_type=dict(sorted(by_type.items())),
            recent=await self._drifts.list_open(tenant_id, limit=10),
        )

    async def _accept_into_baseline(self, tenant_id: str, product_id: str, drifts: list[DriftRecord]) -> None:
        if not drifts:
            return
        baseline = await self._baselines.get(tenant_id, product_id)
        if baseline is None:
            return
        values = dict(baseline.field_values)
        for drift in drifts:
            values[drift.field] = drift.observed_value
        await self._baselines.save(
            ProductBaseline(
                tenant_id=tenant_id,
                product_id=product_id,
                field_values=values,
                source_updated_at=baseline.source_updated_at,
                captured_at=self._clock(),
            )
        )
