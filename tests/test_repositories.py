"""Tests for the SQLAlchemy repositories.

Runs every repository against a file-backed SQLite database through
aiosqlite, created fresh per test with create_schema().

Tests verify:
- Stale-snapshot rejection on audit upsert
- Version numbering uniqueness and age-based pruning
- Open-drift lookup and period queries
- One report per (tenant, period)
- Timezone-aware datetimes survive a round-trip
- Tenant isolation
"""

from collections.abc import AsyncIterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_compliance.adapters.database import close_database, create_schema, init_database
from catalog_compliance.adapters.repositories import (
    SQLAuditRepository,
    SQLBaselineRepository,
    SQLDriftRepository,
    SQLFieldVersionRepository,
    SQLReportRepository,
)
from catalog_compliance.checklist.evaluator import evaluate
from catalog_compliance.core.models import AuditRecordRow
from catalog_compliance.core.services import AuditService
from catalog_compliance.core.types import (
    CatalogReport,
    DriftRecord,
    FieldVersion,
    ProductBaseline,
    Suggestion,
    TopIssue,
)
from catalog_compliance.errors import DataIntegrityError
from tests.conftest import FIXED_NOW, OTHER_TENANT, TENANT, FakeClock, make_bare_snapshot, make_snapshot


@pytest_asyncio.fixture()
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """A fresh SQLite schema per test."""
    factory = init_database(f"sqlite+aiosqlite:///{tmp_path}/cc.db")
    await create_schema()
    yield factory
    await close_database()


def _version(number: int, created_at: datetime, field: str = "title", value: str = "v") -> FieldVersion:
    return FieldVersion(
        tenant_id=TENANT,
        product_id="prod-1",
        field=field,
        value=value,
        version=number,
        source="manual_edit",
        created_at=created_at,
    )


def _drift(field: str = "title", detected_at: datetime = FIXED_NOW, tenant_id: str = TENANT) -> DriftRecord:
    return DriftRecord(
        tenant_id=tenant_id,
        product_id="prod-1",
        product_title="Organic Cotton Crew T-Shirt",
        field=field,
        drift_type=f"{field}_changed",
        severity="low",
        previous_value="before",
        observed_value="after",
        detected_at=detected_at,
    )


def _report(period_end: datetime, average: float = 80.0) -> CatalogReport:
    return CatalogReport(
        tenant_id=TENANT,
        period_start=period_end - timedelta(days=7),
        period_end=period_end,
        total_products=2,
        ready_products=1,
        incomplete_products=1,
        average_score=average,
        top_issues=(TopIssue(issue="Fair (50-75%)", count=1),),
        suggestions=(Suggestion(priority="low", message="Keep going"),),
        product_scores={"prod-1": 100, "prod-2": 60},
        generated_at=period_end - timedelta(hours=1),
    )


class _LateReader(SQLAuditRepository):
    """Misses existing rows on its first locked reads, as if another writer inserted them meanwhile."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], misses: int = 1) -> None:
        super().__init__(session_factory)
        self.misses = misses

    async def _get_row(
        self,
        session: AsyncSession,
        tenant_id: str,
        product_id: str,
        for_update: bool = False,
    ) -> AuditRecordRow | None:
        if for_update and self.misses > 0:
            self.misses -= 1
            return None
        return await SQLAuditRepository._get_row(session, tenant_id, product_id, for_update)


class TestSQLAuditRepository:
    """Tests for SQLAuditRepository."""

    @pytest.mark.asyncio()
    async def test_upsert_round_trip(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLAuditRepository(session_factory)
        record = evaluate(make_bare_snapshot(), TENANT)

        stored, applied = await repo.upsert(record)
        loaded = await repo.get(TENANT, "prod-bare")

        assert applied is True
        assert loaded == stored == record
        assert loaded.source_updated_at.tzinfo is not None

    @pytest.mark.asyncio()
    async def test_older_snapshot_is_rejected(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLAuditRepository(session_factory)
        newer = evaluate(make_snapshot(updated_at=FIXED_NOW), TENANT)
        older = evaluate(make_bare_snapshot("prod-1", updated_at=FIXED_NOW - timedelta(seconds=1)), TENANT)
        await repo.upsert(newer)

        stored, applied = await repo.upsert(older)

        assert applied is False
        assert stored.status == "ready"
        assert (await repo.get(TENANT, "prod-1")).status == "ready"

    @pytest.mark.asyncio()
    async def test_equal_timestamp_is_applied(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLAuditRepository(session_factory)
        await repo.upsert(evaluate(make_snapshot(), TENANT))

        _, applied = await repo.upsert(evaluate(make_bare_snapshot("prod-1"), TENANT))

        assert applied is True
        assert (await repo.get(TENANT, "prod-1")).status == "incomplete"

    @pytest.mark.asyncio()
    async def test_list_incomplete_and_iter_all(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLAuditRepository(session_factory)
        for index, product_id in enumerate(["c", "a", "b"]):
            record = evaluate(make_bare_snapshot(product_id), TENANT)
            await repo.upsert(record.model_copy(update={"updated_at": FIXED_NOW + timedelta(minutes=index)}))
        await repo.upsert(evaluate(make_snapshot("d"), TENANT))
        await repo.upsert(evaluate(make_bare_snapshot("z"), OTHER_TENANT))

        incomplete = await repo.list_incomplete(TENANT)
        batches = [[r.product_id for r in batch] async for batch in repo.iter_all(TENANT, batch_size=2)]

        assert [r.product_id for r in incomplete] == ["c", "a", "b"]
        assert [r.product_id for r in await repo.list_incomplete(TENANT, limit=1)] == ["c"]
        assert batches == [["a", "b"], ["c", "d"]]

    @pytest.mark.asyncio()
    async def test_delete(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLAuditRepository(session_factory)
        await repo.upsert(evaluate(make_snapshot(), TENANT))

        assert await repo.delete(TENANT, "prod-1") is True
        assert await repo.delete(TENANT, "prod-1") is False
        assert await repo.get(TENANT, "prod-1") is None

    @pytest.mark.asyncio()
    async def test_concurrent_first_insert_is_retried_as_update(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        other_writer = SQLAuditRepository(session_factory)
        repo = _LateReader(session_factory)
        await other_writer.upsert(
            evaluate(make_bare_snapshot("prod-1", updated_at=FIXED_NOW - timedelta(seconds=1)), TENANT)
        )

        stored, applied = await repo.upsert(evaluate(make_snapshot(updated_at=FIXED_NOW), TENANT))

        assert applied is True
        assert stored.status == "ready"
        assert (await repo.get(TENANT, "prod-1")).status == "ready"

    @pytest.mark.asyncio()
    async def test_retry_still_rejects_older_snapshot(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        other_writer = SQLAuditRepository(session_factory)
        repo = _LateReader(session_factory)
        await other_writer.upsert(evaluate(make_snapshot(updated_at=FIXED_NOW), TENANT))

        stored, applied = await repo.upsert(
            evaluate(make_bare_snapshot("prod-1", updated_at=FIXED_NOW - timedelta(seconds=1)), TENANT)
        )

        assert applied is False
        assert stored.status == "ready"

    @pytest.mark.asyncio()
    async def test_second_collision_is_an_integrity_error(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await SQLAuditRepository(session_factory).upsert(evaluate(make_snapshot(), TENANT))
        repo = _LateReader(session_factory, misses=2)

        with pytest.raises(DataIntegrityError, match="prod-1"):
            await repo.upsert(evaluate(make_snapshot(), TENANT))


class TestSQLBaselineRepository:
    @pytest.mark.asyncio()
    async def test_save_replaces_baseline(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLBaselineRepository(session_factory)
        first = ProductBaseline(
            tenant_id=TENANT,
            product_id="prod-1",
            field_values={"title": "A"},
            source_updated_at=FIXED_NOW,
            captured_at=FIXED_NOW,
        )
        await repo.save(first)

        await repo.save(first.model_copy(update={"field_values": {"title": "B"}}))

        loaded = await repo.get(TENANT, "prod-1")
        assert loaded.field_values == {"title": "B"}
        assert loaded.captured_at == FIXED_NOW
        assert await repo.get(OTHER_TENANT, "prod-1") is None

        await repo.delete(TENANT, "prod-1")
        assert await repo.get(TENANT, "prod-1") is None


class TestSQLFieldVersionRepository:
    @pytest.mark.asyncio()
    async def test_versions_are_unique_per_field(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLFieldVersionRepository(session_factory)
        await repo.insert(_version(1, FIXED_NOW))
        await repo.insert(_version(1, FIXED_NOW, field="seo_title"))

        with pytest.raises(DataIntegrityError):
            await repo.insert(_version(1, FIXED_NOW, value="again"))

        assert await repo.latest_version(TENANT, "prod-1", "title") == 1
        assert await repo.latest_version(TENANT, "prod-1", "tags") == 0

    @pytest.mark.asyncio()
    async def test_prune_keeps_newest(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLFieldVersionRepository(session_factory)
        for number, days_ago in [(1, 40), (2, 35), (3, 31)]:
            await repo.insert(_version(number, FIXED_NOW - timedelta(days=days_ago)))
        await repo.insert(_version(1, FIXED_NOW - timedelta(days=90), field="seo_title"))

        pruned = await repo.prune(TENANT, "prod-1", "title", cutoff=FIXED_NOW - timedelta(days=30))

        assert pruned == 2
        assert [v.version for v in await repo.list_versions(TENANT, "prod-1", "title")] == [3]
        assert await repo.get_version(TENANT, "prod-1", "title", 1) is None
        assert await repo.get_version(TENANT, "prod-1", "seo_title", 1) is not None

    @pytest.mark.asyncio()
    async def test_list_versions_newest_first(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLFieldVersionRepository(session_factory)
        for number in range(1, 5):
            await repo.insert(_version(number, FIXED_NOW + timedelta(minutes=number), value=f"v{number}"))

        versions = await repo.list_versions(TENANT, "prod-1", "title", limit=2)

        assert [(v.version, v.value) for v in versions] == [(4, "v4"), (3, "v3")]
        assert versions[0].created_at == FIXED_NOW + timedelta(minutes=4)


class TestSQLDriftRepository:
    @pytest.mark.asyncio()
    async def test_open_drift_lifecycle(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLDriftRepository(session_factory)
        drift = await repo.create(_drift())

        assert await repo.get_open(TENANT, "prod-1", "title") == drift
        assert await repo.count_open(TENANT) == 1

        resolved = drift.model_copy(update={"is_resolved": True, "resolved_at": FIXED_NOW, "resolved_by": "auto"})
        await repo.update(resolved)

        assert await repo.get_open(TENANT, "prod-1", "title") is None
        assert await repo.get_by_id(TENANT, drift.id) == resolved
        assert await repo.get_by_id(OTHER_TENANT, drift.id) is None

    @pytest.mark.asyncio()
    async def test_duplicate_open_drift_is_an_integrity_error(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        repo = SQLDriftRepository(session_factory)
        await repo.create(_drift())
        await repo.create(_drift())

        with pytest.raises(DataIntegrityError):
            await repo.get_open(TENANT, "prod-1", "title")

    @pytest.mark.asyncio()
    async def test_period_queries(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLDriftRepository(session_factory)
        inside = await repo.create(_drift("title", FIXED_NOW - timedelta(days=1)))
        await repo.create(_drift("tags", FIXED_NOW))
        await repo.create(_drift("seo_title", FIXED_NOW - timedelta(days=10)))
        await repo.create(_drift("title", FIXED_NOW - timedelta(days=1), tenant_id=OTHER_TENANT))

        window = await repo.list_detected_between(TENANT, FIXED_NOW - timedelta(days=7), FIXED_NOW)
        open_drifts = await repo.list_open(TENANT)

        assert window == [inside]
        assert [d.field for d in open_drifts] == ["tags", "title", "seo_title"]
        assert [d.field for d in await repo.list_open(TENANT, limit=1)] == ["tags"]

    @pytest.mark.asyncio()
    async def test_update_of_missing_drift_raises(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLDriftRepository(session_factory)

        with pytest.raises(DataIntegrityError):
            await repo.update(_drift())


class TestSQLReportRepository:
    @pytest.mark.asyncio()
    async def test_round_trip(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLReportRepository(session_factory)
        report = _report(datetime(2026, 3, 11, tzinfo=UTC))

        await repo.create(report)
        loaded = await repo.get_for_period(TENANT, report.period_start, report.period_end)

        assert loaded == report

    @pytest.mark.asyncio()
    async def test_one_report_per_period(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLReportRepository(session_factory)
        end = datetime(2026, 3, 11, tzinfo=UTC)
        await repo.create(_report(end))

        with pytest.raises(DataIntegrityError):
            await repo.create(_report(end, average=10.0))

    @pytest.mark.asyncio()
    async def test_latest_and_history(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        repo = SQLReportRepository(session_factory)
        ends = [datetime(2026, 3, day, tzinfo=UTC) for day in (4, 11, 18)]
        for end in ends:
            await repo.create(_report(end))

        latest = await repo.latest(TENANT)
        before = await repo.latest(TENANT, before=ends[1])
        history = await repo.list_reports(TENANT, limit=2)

        assert latest.period_end == ends[2]
        assert before.period_end == ends[1]
        assert [r.period_end for r in history] == [ends[2], ends[1]]
        assert await repo.latest(OTHER_TENANT) is None


class TestAuditServiceOnSQL:
    """The audit service keeps its guarantees on the SQL repositories."""

    @pytest.mark.asyncio()
    async def test_recompute_captures_baseline(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        baselines = SQLBaselineRepository(session_factory)
        service = AuditService(SQLAuditRepository(session_factory), baselines, clock=FakeClock())

        record = await service.recompute(TENANT, make_snapshot())

        assert record.status == "ready"
        baseline = await baselines.get(TENANT, "prod-1")
        assert baseline.source_updated_at == FIXED_NOW
        assert (await service.get_dashboard_stats(TENANT)).ready_count == 1
