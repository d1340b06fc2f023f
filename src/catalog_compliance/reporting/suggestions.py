"""Rule-based suggestions for catalog health reports.

Each heuristic looks at one aggregate metric and may emit one suggestion
with a priority. The list is ordered high, medium, low (stable within a
priority); when nothing triggers, a single low-priority "all good" message
is returned.
"""

from dataclasses import dataclass

from catalog_compliance.core.types import Suggestion

_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}

# Score movement, in points, that counts as a trend
TREND_THRESHOLD = 5.0

ALL_GOOD = "Your catalog is in great shape! Keep monitoring for any changes."


@dataclass(frozen=True)
class ReportMetrics:
    """Aggregates the heuristics read.

    Attributes:
        total_products: Audited products.
        ready_products: Products with no failed check.
        average_score: Mean completion percentage.
        previous_average_score: Average of the previous report, if any.
        unresolved_drifts: Drifts detected in the period and still open.
        critical_products: Incomplete products scoring below 25.
        worst_band: Most frequent score band among incomplete products.
    """

    total_products: int
    ready_products: int
    average_score: float
    previous_average_score: float | None
    unresolved_drifts: int
    critical_products: int
    worst_band: str | None = None


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def readiness_suggestion(m: ReportMetrics) -> Suggestion | None:
    rate = m.ready_products / m.total_products * 100 if m.total_products else 0.0
    if rate < 50:
        return Suggestion(
            priority="high",
            message=(
                f"Only {round(rate)}% of products are launch-ready. "
                "Consider using bulk autofix to improve multiple products at once."
            ),
        )
    if rate < 80:
        focus = m.worst_band or "lowest scoring"
        return Suggestion(
            priority="medium",
            message=f"{round(rate)}% readiness is good, but there's room for improvement. Focus on the {focus} products.",
        )
    return None


def trend_suggestion(m: ReportMetrics) -> Suggestion | None:
    if m.previous_average_score is None:
        return None
    diff = m.average_score - m.previous_average_score
    if diff < -TREND_THRESHOLD:
        return Suggestion(
            priority="high",
            message=(
                f"Average score dropped by {abs(round(diff))}% since last report. "
                "Review recent product changes to identify issues."
            ),
        )
    if diff > TREND_THRESHOLD:
        return Suggestion(
            priority="low",
            message=f"Great progress! Average score improved by {round(diff)}% since last report.",
        )
    return None


def drift_suggestion(m: ReportMetrics) -> Suggestion | None:
    if m.unresolved_drifts <= 0:
        return None
    return Suggestion(
        priority="medium",
        message=(
            f"You have {_plural(m.unresolved_drifts, 'unresolved compliance drift')}. "
            "Review and resolve them to maintain catalog health."
        ),
    )


def critical_suggestion(m: ReportMetrics) -> Suggestion | None:
    if m.critical_products <= 0:
        return None
    verb = "has" if m.critical_products == 1 else "have"
    return Suggestion(
        priority="high",
        message=(
            f"{_plural(m.critical_products, 'product')} {verb} critical issues (score below 25%). "
            "These should be prioritized."
        ),
    )


HEURISTICS = (readiness_suggestion, trend_suggestion, drift_suggestion, critical_suggestion)


def build_suggestions(metrics: ReportMetrics) -> list[Suggestion]:
    """Run every heuristic and order the suggestions by priority.

    Args:
        metrics: Aggregates of the report being generated.

    Returns:
        At least one suggestion, highest priority first.
    """
    suggestions = [s for s in (heuristic(metrics) for heuristic in HEURISTICS) if s is not None]
    if not suggestions:
        return [Suggestion(priority="low", message=ALL_GOOD)]
    return sorted(suggestions, key=lambda s: _PRIORITY_RANK[s.priority])
