"""Tests for the Drift Detector.

Covers missing baselines, drift creation and in-place updates, automatic
resolution, the one-open-drift-per-field invariant, severity classification,
manual resolution and the drift summary.
"""

import asyncio
import json
import uuid

import pytest

from catalog_compliance.adapters.memory import InMemoryBaselineRepository, InMemoryDriftRepository
from catalog_compliance.core.types import ProductBaseline, ProductImage, Snapshot
from catalog_compliance.errors import NotFoundError
from catalog_compliance.monitoring.drift import MONITORED_FIELDS, DriftDetector, monitored_values
from catalog_compliance.settings import Settings
from tests.conftest import FIXED_NOW, TENANT, FakeClock, make_snapshot


async def _capture(baselines: InMemoryBaselineRepository, snapshot: Snapshot) -> None:
    await baselines.save(
        ProductBaseline(
            tenant_id=TENANT,
            product_id=snapshot.product_id,
            field_values=monitored_values(snapshot),
            source_updated_at=snapshot.updated_at,
            captured_at=FIXED_NOW,
        )
    )


@pytest.fixture()
def detector(
    drift_repo: InMemoryDriftRepository,
    baseline_repo: InMemoryBaselineRepository,
    clock: FakeClock,
) -> DriftDetector:
    return DriftDetector(drift_repo, baseline_repo, settings=Settings(), clock=clock)


class TestMonitoredValues:
    def test_projects_every_monitored_field(self) -> None:
        assert set(monitored_values(make_snapshot())) == set(MONITORED_FIELDS)

    def test_list_fields_are_order_insensitive(self) -> None:
        snapshot = make_snapshot()
        shuffled = make_snapshot(tags=("organic", "cotton"), images=tuple(reversed(snapshot.images)))

        assert monitored_values(snapshot) == monitored_values(shuffled)


class TestCheckForDrift:
    """Tests for DriftDetector.check_for_drift."""

    @pytest.mark.asyncio()
    async def test_missing_baseline_is_not_an_error(self, detector: DriftDetector) -> None:
        result = await detector.check_for_drift(TENANT, make_snapshot())

        assert result.detected is False
        assert result.baseline_missing is True
        assert result.drifts == []

    @pytest.mark.asyncio()
    async def test_unchanged_product_has_no_drift(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())

        result = await detector.check_for_drift(TENANT, make_snapshot())

        assert result.detected is False
        assert result.baseline_missing is False

    @pytest.mark.asyncio()
    async def test_changed_field_opens_a_drift(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())

        result = await detector.check_for_drift(TENANT, make_snapshot(seo_title=None))

        assert result.detected is True
        assert len(result.created) == 1
        drift = result.created[0]
        assert drift.field == "seo_title"
        assert drift.drift_type == "seo_title_removed"
        assert drift.severity == "high"
        assert drift.previous_value == "Organic Cotton Crew T-Shirt | Acme Apparel"
        assert drift.observed_value == ""
        assert drift.detected_at == FIXED_NOW

    @pytest.mark.asyncio()
    async def test_repeated_change_updates_the_open_drift(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        drift_repo: InMemoryDriftRepository,
        clock: FakeClock,
    ) -> None:
        """A second difference on an open field updates it instead of duplicating."""
        await _capture(baseline_repo, make_snapshot())

        first = await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee"))
        clock.advance(hours=1)
        second = await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee v2"))

        open_drifts = await drift_repo.list_open(TENANT, product_id="prod-1")
        assert len(open_drifts) == 1
        assert second.created == []
        assert open_drifts[0].id == first.created[0].id
        assert open_drifts[0].observed_value == "Cotton Tee v2"
        assert open_drifts[0].detected_at == clock.now

    @pytest.mark.asyncio()
    async def test_same_observation_is_idempotent(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        drift_repo: InMemoryDriftRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        changed = make_snapshot(tags=())

        for _ in range(3):
            result = await detector.check_for_drift(TENANT, changed)

        assert result.detected is True
        assert result.created == []
        assert await drift_repo.count_open(TENANT) == 1

    @pytest.mark.asyncio()
    async def test_restored_field_resolves_its_drift(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        drift_repo: InMemoryDriftRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee", tags=()))

        result = await detector.check_for_drift(TENANT, make_snapshot(tags=()))

        assert [d.field for d in result.resolved] == ["title"]
        assert result.resolved[0].resolved_by == "auto"
        assert [d.field for d in result.drifts] == ["tags"]
        assert await drift_repo.count_open(TENANT) == 1

    @pytest.mark.asyncio()
    async def test_concurrent_checks_keep_one_open_drift_per_field(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        drift_repo: InMemoryDriftRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        changed = [make_snapshot(title=f"Cotton Tee {i}") for i in range(10)]

        await asyncio.gather(*(detector.check_for_drift(TENANT, s) for s in changed))

        assert await drift_repo.count_open(TENANT) == 1


class TestClassify:
    """Tests for DriftDetector.classify severity rules."""

    @pytest.mark.parametrize(
        ("field", "expected", "observed", "drift_type", "severity"),
        [
            ("title", "Old title", "", "title_removed", "high"),
            ("title", "Old title", "New title", "title_changed", "low"),
            ("seo_title", "x" * 40, "y" * 70, "seo_title_too_long", "medium"),
            ("seo_title", "x" * 40, "short", "seo_title_too_short", "low"),
            ("seo_title", "x" * 40, "z" * 45, "seo_title_changed", "low"),
            ("seo_description", "x" * 120, "y" * 40, "seo_description_shortened", "medium"),
            ("seo_description", "x" * 120, "", "seo_description_removed", "high"),
            ("seo_description", "x" * 120, "y" * 170, "seo_description_too_long", "low"),
            ("image_urls", '["a", "b", "c"]', "[]", "images_removed", "high"),
            ("image_urls", '["a", "b", "c"]', '["a"]', "images_low_count", "medium"),
            ("image_urls", '["a", "b", "c"]', '["a", "b", "d"]', "images_changed", "low"),
            ("image_alt_text", '{"a": "Front"}', '{"a": ""}', "alt_text_missing", "medium"),
            ("image_alt_text", '{"a": "Front"}', '{"a": "Side"}', "alt_text_changed", "low"),
            ("tags", '["a"]', "[]", "tags_removed", "medium"),
            ("tags", '["a"]', '["b"]', "tags_changed", "low"),
        ],
    )
    def test_classification(
        self,
        detector: DriftDetector,
        field: str,
        expected: str,
        observed: str,
        drift_type: str,
        severity: str,
    ) -> None:
        assert detector.classify(field, expected, observed) == (drift_type, severity)

    @pytest.mark.asyncio()
    async def test_removed_images_are_high_severity(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())

        result = await detector.check_for_drift(TENANT, make_snapshot(images=()))

        by_field = {d.field: d for d in result.drifts}
        assert by_field["image_urls"].severity == "high"
        assert json.loads(by_field["image_urls"].observed_value) == []

    @pytest.mark.asyncio()
    async def test_cleared_alt_text_is_detected(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        snapshot = make_snapshot()
        await _capture(baseline_repo, snapshot)
        images = (snapshot.images[0].model_copy(update={"alt_text": None}), *snapshot.images[1:])

        result = await detector.check_for_drift(TENANT, make_snapshot(images=images))

        assert [(d.field, d.drift_type) for d in result.drifts] == [("image_alt_text", "alt_text_missing")]


class TestResolution:
    """Tests for manual resolution, listing and summaries."""

    @pytest.mark.asyncio()
    async def test_resolve_drift_accepts_value_into_baseline(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        result = await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee"))

        resolved = await detector.resolve_drift(TENANT, result.created[0].id)

        assert resolved.is_resolved is True
        assert resolved.resolved_by == "user"
        assert (await baseline_repo.get(TENANT, "prod-1")).field_values["title"] == "Cotton Tee"
        follow_up = await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee"))
        assert follow_up.detected is False

    @pytest.mark.asyncio()
    async def test_resolve_drift_is_idempotent(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        clock: FakeClock,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        result = await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee"))
        first = await detector.resolve_drift(TENANT, result.created[0].id, resolved_by="ignored")
        clock.advance(minutes=1)

        second = await detector.resolve_drift(TENANT, result.created[0].id)

        assert second == first
        assert second.resolved_by == "ignored"

    @pytest.mark.asyncio()
    async def test_resolve_unknown_drift_raises(self, detector: DriftDetector) -> None:
        with pytest.raises(NotFoundError):
            await detector.resolve_drift(TENANT, uuid.uuid4())

    @pytest.mark.asyncio()
    async def test_resolve_drift_of_other_tenant_raises(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        result = await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee"))

        with pytest.raises(NotFoundError):
            await detector.resolve_drift("someone-else", result.created[0].id)

    @pytest.mark.asyncio()
    async def test_resolve_product_closes_all_open_drifts(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        drift_repo: InMemoryDriftRepository,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        await detector.check_for_drift(TENANT, make_snapshot(title="Cotton Tee", tags=(), seo_title=None))

        count = await detector.resolve_product(TENANT, "prod-1")

        assert count == 3
        assert await drift_repo.count_open(TENANT) == 0
        assert await detector.list_unresolved(TENANT) == []

    @pytest.mark.asyncio()
    async def test_summary_counts_by_type(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        clock: FakeClock,
    ) -> None:
        await _capture(baseline_repo, make_snapshot("p1"))
        await _capture(baseline_repo, make_snapshot("p2"))
        await detector.check_for_drift(TENANT, make_snapshot("p1", title="Cotton Tee", tags=()))
        clock.advance(hours=2)
        await detector.check_for_drift(TENANT, make_snapshot("p2", tags=()))
        await detector.check_for_drift(TENANT, make_snapshot("p1", tags=()))

        summary = await detector.summary(TENANT, days=30)

        assert summary.total == 3
        assert summary.unresolved == 2
        assert summary.products_affected == 2
        assert summary.by_type == {"tags_removed": 2, "title_changed": 1}
        assert len(summary.recent) == 2

    @pytest.mark.asyncio()
    async def test_summary_excludes_old_drifts(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
        clock: FakeClock,
    ) -> None:
        await _capture(baseline_repo, make_snapshot())
        await detector.check_for_drift(TENANT, make_snapshot(tags=()))
        clock.advance(days=45)

        summary = await detector.summary(TENANT, days=30)

        assert summary.total == 0
        assert len(summary.recent) == 1

    @pytest.mark.asyncio()
    async def test_images_reordered_are_not_drift(
        self,
        detector: DriftDetector,
        baseline_repo: InMemoryBaselineRepository,
    ) -> None:
        snapshot = make_snapshot()
        await _capture(baseline_repo, snapshot)
        extra = ProductImage(id="img-9", url="https://cdn.example.com/9.jpg", alt_text="Box")

        unchanged = await detector.check_for_drift(TENANT, make_snapshot(images=tuple(reversed(snapshot.images))))
        added = await detector.check_for_drift(TENANT, make_snapshot(images=(*snapshot.images, extra)))

        assert unchanged.detected is False
        assert {d.field for d in added.created} == {"image_urls", "image_alt_text"}
