"""Test fixtures for catalog-compliance.

Provides:
- FakeClock: a settable clock injected wherever components read the time
- FakeCatalogClient: an in-memory catalog that applies ProductPatches
- FakePlanProvider: returns a configurable PlanPolicy per tenant
- make_snapshot / make_bare_snapshot: compliant and all-failing products
- engine: a ComplianceEngine wired on in-memory repositories
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from catalog_compliance.adapters.memory import (
    InMemoryAuditRepository,
    InMemoryBaselineRepository,
    InMemoryDriftRepository,
    InMemoryFieldVersionRepository,
    InMemoryReportRepository,
)
from catalog_compliance.core.engine import ComplianceEngine
from catalog_compliance.core.types import (
    Collection,
    MutationResult,
    PlanPolicy,
    ProductImage,
    ProductPatch,
    RemediationConfig,
    Snapshot,
)
from catalog_compliance.settings import Settings

TENANT = "tenant-1"
OTHER_TENANT = "tenant-2"
FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

PRO_POLICY = PlanPolicy(
    plan="pro",
    retention_days=30,
    version_history_enabled=True,
    ai_quota_remaining=100,
    auto_fix_enabled=True,
    drift_monitoring_enabled=True,
    reports_enabled=True,
    remediation=RemediationConfig(default_collection_id="col-default", default_tags=("new-arrival",)),
)
FREE_POLICY = PlanPolicy(plan="free")


class FakeClock:
    """Callable clock whose time only moves when a test moves it."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


def make_snapshot(product_id: str = "prod-1", **overrides: Any) -> Snapshot:
    """Build a snapshot that passes every checklist rule.

    Args:
        product_id: Product identifier.
        **overrides: Snapshot fields to replace.

    Returns:
        A compliant Snapshot unless overridden.
    """
    values: dict[str, Any] = {
        "product_id": product_id,
        "title": "Organic Cotton Crew T-Shirt",
        "description_html": (
            "<p>A soft, breathable crew neck tee made from 100% organic cotton. "
            "Pre-shrunk and built to last.</p>"
        ),
        "vendor": "Acme Apparel",
        "product_type": "T-Shirt",
        "tags": ("cotton", "organic"),
        "seo_title": "Organic Cotton Crew T-Shirt | Acme Apparel",
        "seo_description": (
            "Shop the Acme Apparel organic cotton crew t-shirt: soft, breathable "
            "and pre-shrunk for a lasting fit."
        ),
        "images": (
            ProductImage(id="img-1", url="https://cdn.example.com/1.jpg", alt_text="Front view"),
            ProductImage(id="img-2", url="https://cdn.example.com/2.jpg", alt_text="Back view"),
            ProductImage(id="img-3", url="https://cdn.example.com/3.jpg", alt_text="Detail view"),
        ),
        "collections": (Collection(id="col-summer", title="Summer"),),
        "updated_at": FIXED_NOW,
    }
    values.update(overrides)
    return Snapshot(**values)


def make_bare_snapshot(product_id: str = "prod-bare", **overrides: Any) -> Snapshot:
    """Build a snapshot that fails every checklist rule."""
    values: dict[str, Any] = {
        "title": "Shirt",
        "description_html": "",
        "vendor": "",
        "product_type": "",
        "tags": (),
        "seo_title": None,
        "seo_description": None,
        "images": (),
        "collections": (),
    }
    values.update(overrides)
    return make_snapshot(product_id, **values)


class FakeCatalogClient:
    """In-memory catalog keyed by (tenant_id, product_id).

    ``apply_mutation`` applies the patch and moves ``updated_at`` forward one
    second. ``reject`` may return an error message to refuse a patch.
    """

    def __init__(self) -> None:
        self.products: dict[tuple[str, str], Snapshot] = {}
        self.mutations: list[tuple[str, str, ProductPatch]] = []
        self.reject: Callable[[ProductPatch], str | None] | None = None
        self.fetch_error: Exception | None = None

    def put(self, snapshot: Snapshot, tenant_id: str = TENANT) -> Snapshot:
        self.products[(tenant_id, snapshot.product_id)] = snapshot
        return snapshot

    def get(self, product_id: str, tenant_id: str = TENANT) -> Snapshot:
        return self.products[(tenant_id, product_id)]

    async def fetch_snapshot(self, tenant_id: str, product_id: str) -> Snapshot | None:
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.products.get((tenant_id, product_id))

    async def apply_mutation(self, tenant_id: str, product_id: str, patch: ProductPatch) -> MutationResult:
        self.mutations.append((tenant_id, product_id, patch))
        if self.reject is not None:
            error = self.reject(patch)
            if error:
                return MutationResult(errors=[error])

        snapshot = self.products[(tenant_id, product_id)]
        update: dict[str, Any] = {
            name: value
            for name in ("title", "description_html", "seo_title", "seo_description", "tags")
            if (value := getattr(patch, name)) is not None
        }
        if patch.add_collection_ids:
            existing = {c.id for c in snapshot.collections}
            update["collections"] = snapshot.collections + tuple(
                Collection(id=cid) for cid in patch.add_collection_ids if cid not in existing
            )
        if patch.image_alt_texts:
            update["images"] = tuple(
                image.model_copy(update={"alt_text": patch.image_alt_texts.get(image.id, image.alt_text)})
                for image in snapshot.images
            )
        update["updated_at"] = snapshot.updated_at + timedelta(seconds=1)
        self.products[(tenant_id, product_id)] = snapshot.model_copy(update=update)
        return MutationResult()


class FakePlanProvider:
    """Returns PRO_POLICY unless a tenant has an explicit policy."""

    def __init__(self, default: PlanPolicy = PRO_POLICY) -> None:
        self.default = default
        self.policies: dict[str, PlanPolicy] = {}
        self.calls = 0

    async def get_plan_policy(self, tenant_id: str) -> PlanPolicy:
        self.calls += 1
        return self.policies.get(tenant_id, self.default)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    """Settings isolated from the environment."""
    return Settings(database_url="", notification_webhook_url="", remediation_timeout_ms=500)


@pytest.fixture()
def catalog() -> FakeCatalogClient:
    return FakeCatalogClient()


@pytest.fixture()
def plans() -> FakePlanProvider:
    return FakePlanProvider()


@pytest.fixture()
def notifier() -> AsyncMock:
    """A notifier whose deliveries always succeed."""
    mock = AsyncMock()
    mock.notify.return_value = True
    return mock


@pytest.fixture()
def audit_repo() -> InMemoryAuditRepository:
    return InMemoryAuditRepository()


@pytest.fixture()
def baseline_repo() -> InMemoryBaselineRepository:
    return InMemoryBaselineRepository()


@pytest.fixture()
def version_repo() -> InMemoryFieldVersionRepository:
    return InMemoryFieldVersionRepository()


@pytest.fixture()
def drift_repo() -> InMemoryDriftRepository:
    return InMemoryDriftRepository()


@pytest.fixture()
def report_repo() -> InMemoryReportRepository:
    return InMemoryReportRepository()


@pytest.fixture()
def engine(
    catalog: FakeCatalogClient,
    plans: FakePlanProvider,
    notifier: AsyncMock,
    audit_repo: InMemoryAuditRepository,
    baseline_repo: InMemoryBaselineRepository,
    version_repo: InMemoryFieldVersionRepository,
    drift_repo: InMemoryDriftRepository,
    report_repo: InMemoryReportRepository,
    settings: Settings,
    clock: FakeClock,
) -> ComplianceEngine:
    """A fully wired engine on in-memory repositories and fake collaborators."""
    return ComplianceEngine.build(
        catalog=catalog,
        plans=plans,
        notifier=notifier,
        audit_repo=audit_repo,
        baseline_repo=baseline_repo,
        version_repo=version_repo,
        drift_repo=drift_repo,
        report_repo=report_repo,
        settings=settings,
        clock=clock,
    )
