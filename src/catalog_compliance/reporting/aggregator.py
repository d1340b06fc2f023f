"""Report aggregator: periodic catalog health reports.

A report summarizes every current AuditRecord of a tenant plus the drifts
detected during the report period. Audits are streamed in batches and only
bounded rankings plus a product-to-score map are kept in memory.

Definitions:
- average_score: mean of passed_count / total_count * 100, two decimals
- top_issues: incomplete products bucketed by score band
  (Critical <25, Poor 25-50, Fair 50-75, Good 75-99), most frequent first
- products_at_risk: lowest-scoring incomplete products
- most_improved: products whose score rose since the previous report, using
  the product_scores map stored in that report
- previous_average_score: average_score of the previous report

Reports are immutable and unique per (tenant, period): generating the same
period again returns the stored report.
"""

import calendar
import heapq
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Literal

from catalog_compliance.core.concurrency import KeyedLock
from catalog_compliance.core.interfaces import IAuditRepository, IDriftRepository, INotifier, IReportRepository
from catalog_compliance.core.types import (
    AuditRecord,
    CatalogReport,
    Clock,
    ImprovedProduct,
    ProductAtRisk,
    TopIssue,
    utcnow,
)
from catalog_compliance.errors import ValidationError
from catalog_compliance.observability import get_logger
from catalog_compliance.reporting.suggestions import ReportMetrics, build_suggestions
from catalog_compliance.settings import Settings

logger = get_logger(__name__)

ReportPeriod = Literal["weekly", "monthly"]

SCORE_BANDS: tuple[tuple[int, str], ...] = (
    (25, "Critical (0-25%)"),
    (50, "Poor (25-50%)"),
    (75, "Fair (50-75%)"),
    (101, "Good (75-99%)"),
)
CRITICAL_BAND = SCORE_BANDS[0][1]
_BAND_RANK = {label: rank for rank, (_, label) in enumerate(SCORE_BANDS)}


def score_band(score: int) -> str:
    """Return the band label of an incomplete product's score."""
    for upper, label in SCORE_BANDS:
        if score < upper:
            return label
    return SCORE_BANDS[-1][1]


def _minus_one_month(moment: datetime) -> datetime:
    year, month = (moment.year, moment.month - 1) if moment.month > 1 else (moment.year - 1, 12)
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def period_bounds(now: datetime, period: ReportPeriod) -> tuple[datetime, datetime]:
    """Compute the UTC day-aligned window of a report.

    The window ends at the midnight following ``now`` (exclusive) and starts
    seven days, or one calendar month, earlier.

    Raises:
        ValidationError: If ``period`` is not weekly or monthly.
    """
    end = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    if period == "weekly":
        return end - timedelta(days=7), end
    if period == "monthly":
        return _minus_one_month(end), end
    raise ValidationError(f"Unknown report period '{period}'; expected weekly or monthly")


@dataclass
class _Accumulator:
    at_risk_limit: int
    improved_limit: int
    previous_scores: dict[str, int]
    total: int = 0
    ready: int = 0
    completion_sum: float = 0.0
    bands: Counter[str] = field(default_factory=Counter)
    at_risk: list[ProductAtRisk] = field(default_factory=list)
    improved: list[ImprovedProduct] = field(default_factory=list)
    scores: dict[str, int] = field(default_factory=dict)

    def add_batch(self, batch: Iterable[AuditRecord]) -> None:
        risk_candidates: list[ProductAtRisk] = []
        improved_candidates: list[ImprovedProduct] = []
        for record in batch:
            self.total += 1
            self.completion_sum += record.passed_count / record.total_count * 100 if record.total_count else 100.0
            self.scores[record.product_id] = record.score
            if record.status == "ready":
                self.ready += 1
            else:
                self.bands[score_band(record.score)] += 1
                risk_candidates.append(
                    ProductAtRisk(
                        product_id=record.product_id,
                        title=record.product_title,
                        score=record.score,
                        issue_count=record.failed_count,
                    )
                )
            previous = self.previous_scores.get(record.product_id)
            if previous is not None and record.score > previous:
                improved_candidates.append(
                    ImprovedProduct(
                        product_id=record.product_id,
                        title=record.product_title,
                        previous_score=previous,
                        score=record.score,
                        score_change=record.score - previous,
                    )
                )
        self.at_risk = heapq.nsmallest(
            self.at_risk_limit,
            [*self.at_risk, *risk_candidates],
            key=lambda p: (p.score, p.product_id),
        )
        self.improved = heapq.nsmallest(
            self.improved_limit,
            [*self.improved, *improved_candidates],
            key=lambda p: (-p.score_change, p.product_id),
        )

    @property
    def average_score(self) -> float:
        return round(self.completion_sum / self.total, 2) if self.total else 0.0


class ReportAggregator:
    """Generates, stores and serves CatalogReports.

    Args:
        audit_repo: Source of current AuditRecords.
        drift_repo: Source of DriftRecords for the period.
        report_repo: CatalogReport persistence.
        notifier: Best-effort report_ready notifications.
        settings: Batch size and ranking caps.
        clock: Source of the current UTC time.
    """

    def __init__(
        self,
        audit_repo: IAuditRepository,
        drift_repo: IDriftRepository,
        report_repo: IReportRepository,
        notifier: INotifier,
        settings: Settings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._audits = audit_repo
        self._drifts = drift_repo
        self._reports = report_repo
        self._notifier = notifier
        self._settings = settings or Settings()
        self._clock = clock
        self._locks = KeyedLock()

    async def generate_report(self, tenant_id: str, period: ReportPeriod = "weekly") -> CatalogReport:
        """Generate the report for the period ending today, or return the stored one.

        Args:
            tenant_id: Owning tenant.
            period: weekly or monthly.

        Returns:
            The CatalogReport for the period.

        Raises:
            ValidationError: If ``period`` is invalid.
        """
        now = self._clock()
        period_start, period_end = period_bounds(now, period)

        async with self._locks.hold((tenant_id, period_start, period_end)):
            existing = await self._reports.get_for_period(tenant_id, period_start, period_end)
            if existing is not None:
                logger.info("Report already generated for period", tenant_id=tenant_id, report_id=str(existing.id))
                return existing
            report = await self._aggregate(tenant_id, period_start, period_end, now)
            report = await self._reports.create(report)

        logger.info(
            "Catalog report generated",
            tenant_id=tenant_id,
            period=period,
            total_products=report.total_products,
            average_score=report.average_score,
            suggestions=len(report.suggestions),
        )
        await self._notify_ready(report)
        return report

    async def get_latest_report(self, tenant_id: str) -> CatalogReport | None:
        """Return the most recent report, or None."""
        return await self._reports.latest(tenant_id)

    async def get_report_history(self, tenant_id: str, limit: int = 12) -> list[CatalogReport]:
        """Return up to ``limit`` reports, newest first."""
        return await self._reports.list_reports(tenant_id, limit=limit)

    async def _aggregate(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
        generated_at: datetime,
    ) -> CatalogReport:
        s = self._settings
        previous = await self._reports.latest(tenant_id, before=period_end)
        acc = _Accumulator(
            at_risk_limit=s.report_at_risk_limit,
            improved_limit=s.report_most_improved_limit,
            previous_scores=dict(previous.product_scores) if previous is not None else {},
        )
        async for batch in self._audits.iter_all(tenant_id, s.report_batch_size):
            acc.add_batch(batch)

        drifts = await self._drifts.list_detected_between(tenant_id, period_start, period_end)
        drifts_resolved = sum(1 for d in drifts if d.is_resolved)
        drifts_unresolved = len(drifts) - drifts_resolved

        top_issues = sorted(acc.bands.items(), key=lambda kv: (-kv[1], _BAND_RANK[kv[0]]))[: s.report_top_issues_limit]
        metrics = ReportMetrics(
            total_products=acc.total,
            ready_products=acc.ready,
            average_score=acc.average_score,
            previous_average_score=previous.average_score if previous is not None else None,
            unresolved_drifts=drifts_unresolved,
            critical_products=acc.bands.get(CRITICAL_BAND, 0),
            worst_band=top_issues[0][0] if top_issues else None,
        )

        return CatalogReport(
            tenant_id=tenant_id,
            period_start=period_start,
            period_end=period_end,
            total_products=acc.total,
            ready_products=acc.ready,
            incomplete_products=acc.total - acc.ready,
            average_score=acc.average_score,
            previous_average_score=metrics.previous_average_score,
            top_issues=tuple(TopIssue(issue=band, count=count) for band, count in top_issues),
            products_at_risk=tuple(acc.at_risk),
            most_improved=tuple(acc.improved),
            drifts_detected=len(drifts),
            drifts_resolved=drifts_resolved,
            drifts_unresolved=drifts_unresolved,
            suggestions=tuple(build_suggestions(metrics)),
            product_scores=acc.scores,
            generated_at=generated_at,
        )

    async def _notify_ready(self, report: CatalogReport) -> None:
        payload = {
            "tenant_id": report.tenant_id,
            "report_id": str(report.id),
            "period_start": report.period_start.isoformat(),
            "period_end": report.period_end.isoformat(),
            "average_score": report.average_score,
            "ready_products": report.ready_products,
            "total_products": report.total_products,
        }
        try:
            delivered = await self._notifier.notify("report_ready", payload)
        except Exception as exc:
            logger.warning("Report notification failed", tenant_id=report.tenant_id, error=str(exc))
            return
        if not delivered:
            logger.warning("Report notification not delivered", tenant_id=report.tenant_id)
