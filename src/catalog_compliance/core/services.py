"""Core business logic services for the catalog compliance engine.

Two service classes:
- AuditService: the Audit Store. Recomputes, stores and navigates the
  materialized AuditRecord of each product and captures drift baselines.
- FieldVersionService: the Version Store. Records pre-change field values
  with monotonic version numbers, enforces retention and serves history
  and revert targets.

Both services are async-first, accept injected repositories through their
constructors and contain no framework code. Writes that must not interleave
are serialized with a KeyedLock; the repositories' conditional writes and
unique constraints guard across processes.
"""

import json
from collections.abc import Iterable, Sequence
from datetime import timedelta

from catalog_compliance.checklist.evaluator import evaluate
from catalog_compliance.checklist.rules import RULES, Rule
from catalog_compliance.core.concurrency import KeyedLock
from catalog_compliance.core.interfaces import IAuditRepository, IBaselineRepository, IFieldVersionRepository
from catalog_compliance.core.types import (
    LIST_FIELDS,
    VERSIONED_FIELDS,
    AuditRecord,
    Clock,
    DashboardStats,
    FieldVersion,
    PlanPolicy,
    ProductBaseline,
    ProductRef,
    Snapshot,
    VersionSource,
    utcnow,
)
from catalog_compliance.errors import NotFoundError, ValidationError
from catalog_compliance.monitoring.drift import monitored_values
from catalog_compliance.observability import get_logger

logger = get_logger(__name__)


class AuditService:
    """Materialized audit projection with timestamp-guarded recompute.

    Args:
        audit_repo: AuditRecord persistence.
        baseline_repo: ProductBaseline persistence.
        clock: Source of the current UTC time.
        rules: Rule set evaluated on recompute.
        locks: Per-product locks, shared with the DriftDetector writing the
            same baselines.
    """

    def __init__(
        self,
        audit_repo: IAuditRepository,
        baseline_repo: IBaselineRepository,
        clock: Clock = utcnow,
        rules: Sequence[Rule] = RULES,
        locks: KeyedLock | None = None,
    ) -> None:
        """Initialize AuditService.

        Args:
            audit_repo: AuditRecord persistence.
            baseline_repo: ProductBaseline persistence.
            clock: Source of the current UTC time.
            rules: Rule set evaluated on recompute.
            locks: Per-product locks keyed by (tenant_id, product_id).
        """
        self._audits = audit_repo
        self._baselines = baseline_repo
        self._clock = clock
        self._rules = tuple(rules)
        self._locks = locks if locks is not None else KeyedLock()

    async def recompute(
        self,
        tenant_id: str,
        snapshot: Snapshot,
        auto_fixed_keys: Iterable[str] = (),
        capture_baseline: bool = True,
    ) -> AuditRecord:
        """Evaluate a snapshot and store the result.

        The write is rejected when the stored audit was built from a newer
        snapshot; the stored record is then returned unchanged. A ready audit
        captures the product's drift baseline when ``capture_baseline`` is set,
        and the first ready audit of a product always captures one.

        Args:
            tenant_id: Owning tenant.
            snapshot: Current product state.
            auto_fixed_keys: Rule keys a remediation just repaired.
            capture_baseline: Whether this recompute comes from an authorized
                path whose values may become the new baseline.

        Returns:
            The AuditRecord now stored for the product.
        """
        record = evaluate(snapshot, tenant_id, rules=self._rules, auto_fixed_keys=auto_fixed_keys)
        record = record.model_copy(update={"updated_at": self._clock()})

        async with self._locks.hold((tenant_id, snapshot.product_id)):
            stored, applied = await self._audits.upsert(record)
            if not applied:
                logger.warning(
                    "Stale recompute rejected",
                    tenant_id=tenant_id,
                    product_id=snapshot.product_id,
                    snapshot_updated_at=snapshot.updated_at.isoformat(),
                    stored_updated_at=stored.source_updated_at.isoformat(),
                )
                return stored

            if stored.status == "ready":
                await self._maybe_capture_baseline(tenant_id, snapshot, force=capture_baseline)

        logger.info(
            "Audit recomputed",
            tenant_id=tenant_id,
            product_id=snapshot.product_id,
            status=stored.status,
            passed=stored.passed_count,
            failed=stored.failed_count,
        )
        return stored

    async def get(self, tenant_id: str, product_id: str) -> AuditRecord | None:
        """Return the stored audit, or None if the product was never audited."""
        return await self._audits.get(tenant_id, product_id)

    async def list_incomplete(self, tenant_id: str, limit: int | None = None) -> list[AuditRecord]:
        """List incomplete audits, least recently updated first."""
        return await self._audits.list_incomplete(tenant_id, limit=limit)

    async def count_incomplete(self, tenant_id: str) -> int:
        """Count incomplete audits of a tenant."""
        return len(await self._audits.list_incomplete(tenant_id))

    async def next_incomplete(self, tenant_id: str, current_product_id: str | None = None) -> ProductRef | None:
        """Return the incomplete product after ``current_product_id``, wrapping around.

        Args:
            tenant_id: Owning tenant.
            current_product_id: Product currently shown, if any.

        Returns:
            The next incomplete product, or None if no other product is incomplete.
        """
        return await self._step_incomplete(tenant_id, current_product_id, step=1)

    async def previous_incomplete(
        self,
        tenant_id: str,
        current_product_id: str | None = None,
    ) -> ProductRef | None:
        """Return the incomplete product before ``current_product_id``, wrapping around."""
        return await self._step_incomplete(tenant_id, current_product_id, step=-1)

    async def get_dashboard_stats(self, tenant_id: str, batch_size: int = 200) -> DashboardStats:
        """Aggregate audit totals for the dashboard.

        ``avg_completion`` is the rounded percentage of passed checks over all
        checks of all audited products.
        """
        total = ready = passed_checks = all_checks = 0
        async for batch in self._audits.iter_all(tenant_id, batch_size):
            for record in batch:
                total += 1
                ready += record.status == "ready"
                passed_checks += record.passed_count
                all_checks += record.total_count
        return DashboardStats(
            total_audited=total,
            ready_count=ready,
            incomplete_count=total - ready,
            avg_completion=round(passed_checks / all_checks * 100) if all_checks else 0,
        )

    async def delete(self, tenant_id: str, product_id: str) -> bool:
        """Forget a deleted product: its audit and its baseline.

        Returns:
            True if an audit was removed.
        """
        async with self._locks.hold((tenant_id, product_id)):
            removed = await self._audits.delete(tenant_id, product_id)
            await self._baselines.delete(tenant_id, product_id)
        logger.info("Audit deleted", tenant_id=tenant_id, product_id=product_id, removed=removed)
        return removed

    async def _step_incomplete(self, tenant_id: str, current_product_id: str | None, step: int) -> ProductRef | None:
        records = await self._audits.list_incomplete(tenant_id)
        ids = [r.product_id for r in records]
        if current_product_id in ids:
            index = ids.index(current_product_id)
            if len(ids) == 1:
                return None
            target = records[(index + step) % len(records)]
        elif records:
            target = records[0] if step > 0 else records[-1]
        else:
            return None
        return ProductRef(product_id=target.product_id, product_title=target.product_title)

    async def _maybe_capture_baseline(self, tenant_id: str, snapshot: Snapshot, force: bool) -> None:
        existing = await self._baselines.get(tenant_id, snapshot.product_id)
        if existing is not None and not force:
            return
        if existing is not None and existing.source_updated_at > snapshot.updated_at:
            return
        await self._baselines.save(
            ProductBaseline(
                tenant_id=tenant_id,
                product_id=snapshot.product_id,
                field_values=monitored_values(snapshot),
                source_updated_at=snapshot.updated_at,
                captured_at=self._clock(),
            )
        )
        logger.info("Baseline captured", tenant_id=tenant_id, product_id=snapshot.product_id)


def encode_field_value(field: str, value: str | list[str] | tuple[str, ...] | None) -> str:
    """Encode a field value for the version log.

    List fields are stored as a JSON array string, text fields as-is.

    Raises:
        ValidationError: If the value does not match the field's shape.
    """
    if field in LIST_FIELDS:
        if value is None:
            return json.dumps([])
        if not isinstance(value, list | tuple) or not all(isinstance(item, str) for item in value):
            raise ValidationError(f"Field '{field}' expects a list of strings")
        return json.dumps(list(value))
    if not isinstance(value, str | None):
        raise ValidationError(f"Field '{field}' expects a string value")
    return value or ""


def decode_field_value(field: str, stored: str) -> str | list[str]:
    """Inverse of encode_field_value."""
    if field in LIST_FIELDS:
        return list(json.loads(stored))
    return stored


class FieldVersionService:
    """Append-only, retention-bounded history of edited product fields.

    Version N of a field is the value the field held immediately before
    change N was applied. Numbers start at 1, grow by exactly one per
    recorded change and are never reused, even after pruning.

    Args:
        version_repo: FieldVersion persistence.
        clock: Source of the current UTC time.
    """

    def __init__(self, version_repo: IFieldVersionRepository, clock: Clock = utcnow) -> None:
        """Initialize FieldVersionService.

        Args:
            version_repo: FieldVersion persistence.
            clock: Source of the current UTC time.
        """
        self._versions = version_repo
        self._clock = clock
        self._locks = KeyedLock()

    async def record_version(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        current_value: str | list[str] | tuple[str, ...] | None,
        source: VersionSource,
        policy: PlanPolicy,
        ai_model: str | None = None,
    ) -> FieldVersion | None:
        """Store the value a field holds before it is changed.

        Call before mutating the field. No-op when the plan has version history
        disabled or a non-positive retention window. After inserting, versions
        of the field older than the retention window are pruned, except the
        newest one.

        Args:
            tenant_id: Owning tenant.
            product_id: Edited product.
            field: One of title, description, seo_title, seo_description, tags.
            current_value: The value about to be replaced.
            source: What is making the change (manual_edit or an AI source).
            policy: The tenant's plan facts for this operation.
            ai_model: Model identifier for AI sources.

        Returns:
            The new FieldVersion, or None if history is disabled.

        Raises:
            ValidationError: If ``field`` is not a versioned field.
            DataIntegrityError: If the version number was taken concurrently.
        """
        self._validate_field(field)
        if not policy.version_history_enabled or policy.retention_days <= 0:
            return None

        value = encode_field_value(field, current_value)
        async with self._locks.hold((tenant_id, product_id, field)):
            now = self._clock()
            next_version = await self._versions.latest_version(tenant_id, product_id, field) + 1
            version = await self._versions.insert(
                FieldVersion(
                    tenant_id=tenant_id,
                    product_id=product_id,
                    field=field,
                    value=value,
                    version=next_version,
                    source=source,
                    ai_model=ai_model,
                    created_at=now,
                )
            )
            pruned = await self._versions.prune(
                tenant_id,
                product_id,
                field,
                cutoff=now - timedelta(days=policy.retention_days),
            )

        logger.info(
            "Field version recorded",
            tenant_id=tenant_id,
            product_id=product_id,
            field=field,
            version=version.version,
            source=source,
            value_length=len(value),
            pruned=pruned,
        )
        return version

    async def get_history(
        self,
        tenant_id: str,
        product_id: str,
        field: str,
        limit: int = 20,
    ) -> list[FieldVersion]:
        """Return the stored versions of a field, newest first."""
        self._validate_field(field)
        return await self._versions.list_versions(tenant_id, product_id, field, limit=limit)

    async def revert(self, tenant_id: str, product_id: str, field: str, version: int) -> str | list[str]:
        """Return the value stored in a version for the caller to replay.

        Does not touch the catalog.

        Args:
            tenant_id: Owning tenant.
            product_id: Product whose field is reverted.
            field: Field name.
            version: Version number to restore.

        Returns:
            The stored value, decoded (a list for tags).

        Raises:
            NotFoundError: If the version does not exist or was pruned.
        """
        self._validate_field(field)
        stored = await self._versions.get_version(tenant_id, product_id, field, version)
        if stored is None:
            raise NotFoundError(resource="FieldVersion", resource_id=f"{product_id}:{field}:v{version}")
        return decode_field_value(field, stored.value)

    @staticmethod
    def _validate_field(field: str) -> None:
        if field not in VERSIONED_FIELDS:
            raise ValidationError(
                f"Field '{field}' is not versioned; expected one of {', '.join(sorted(VERSIONED_FIELDS))}"
            )
