"""Audit evaluator: runs the rule set against one snapshot.

``evaluate`` is pure and deterministic. A rule that raises is contained and
reported as a failed item with ``details="evaluation error"``; the rest of
the audit still runs.
"""

from collections.abc import Iterable, Sequence

from catalog_compliance.checklist.rules import RULES, Rule, RuleOutcome, order_index
from catalog_compliance.core.types import AuditItemResult, AuditRecord, Snapshot
from catalog_compliance.observability import get_logger

logger = get_logger(__name__)

EVALUATION_ERROR = "evaluation error"


def _run_rule(rule: Rule, snapshot: Snapshot) -> RuleOutcome:
    try:
        return rule.check(snapshot)
    except Exception as exc:
        logger.warning(
            "Rule evaluation failed",
            rule=rule.key,
            product_id=snapshot.product_id,
            error=str(exc),
        )
        return RuleOutcome(status="failed", details=EVALUATION_ERROR)


def evaluate(
    snapshot: Snapshot,
    tenant_id: str,
    rules: Sequence[Rule] = RULES,
    auto_fixed_keys: Iterable[str] = (),
) -> AuditRecord:
    """Evaluate every rule against a snapshot.

    Args:
        snapshot: Current state of the product.
        tenant_id: Owning tenant.
        rules: Rule set to evaluate. Defaults to the built-in checklist.
        auto_fixed_keys: Rule keys just repaired by a remediation; those that
            now pass are reported as ``auto_fixed`` (counted as passed).

    Returns:
        An AuditRecord whose items follow the fixed presentation order and
        whose timestamps are the snapshot's own ``updated_at``.
    """
    fixed = frozenset(auto_fixed_keys)
    items: list[AuditItemResult] = []

    for rule in rules:
        outcome = _run_rule(rule, snapshot)
        status = outcome.status
        if status == "passed" and rule.key in fixed:
            status = "auto_fixed"
        items.append(
            AuditItemResult(
                key=rule.key,
                label=rule.label,
                status=status,
                details=outcome.details,
                category=rule.category,
                can_auto_fix=rule.fixable and outcome.status == "failed",
            )
        )

    items.sort(key=lambda item: (order_index(item.key), item.key))

    total = len(items)
    failed = sum(1 for item in items if item.status == "failed")
    passed = total - failed
    score = round(passed / total * 100) if total else 100

    return AuditRecord(
        tenant_id=tenant_id,
        product_id=snapshot.product_id,
        product_title=snapshot.title,
        status="ready" if failed == 0 else "incomplete",
        passed_count=passed,
        failed_count=failed,
        total_count=total,
        score=score,
        items=tuple(items),
        source_updated_at=snapshot.updated_at,
        updated_at=snapshot.updated_at,
    )
