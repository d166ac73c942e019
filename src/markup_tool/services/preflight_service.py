"""
Preflight Service - Checks a billing period can be invoiced before generation.

Prices every transaction against the live catalog and reports every problem
at once (unpriceable transactions, misconfigured rules, unreadable rows),
in the same report shape as the catalog build report.
"""
import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Optional

from ..engine.markup_engine import MarkupEngine
from ..engine.models import Transaction

logger = logging.getLogger(__name__)


def run_preflight(
    engine: MarkupEngine,
    transactions: Iterable[Transaction],
    as_of_date: Optional[date] = None,
    report_path: Optional[Path] = None,
    input_errors: Optional[list[str]] = None,
    max_workers: Optional[int] = None,
    verbose: bool = False,
) -> dict:
    """
    Run the preflight gate.

    Returns a report dict whose status is "passed" only when every
    transaction priced and every rule in the catalog is well formed.
    """
    batch = engine.price_transactions(transactions, as_of_date=as_of_date, max_workers=max_workers)
    input_errors = list(input_errors or [])

    failures_by_type = {}
    for failure in batch.failures:
        code = getattr(failure.error, 'code', type(failure.error).__name__)
        failures_by_type[code] = failures_by_type.get(code, 0) + 1

    rules_used = {}
    for line in batch.lines:
        rules_used[line.rule_id] = rules_used.get(line.rule_id, 0) + 1

    passed = batch.ok and not batch.rule_issues and not input_errors
    report = {
        "timestamp": datetime.now().isoformat(),
        "status": "passed" if passed else "failed",
        "as_of_date": as_of_date.isoformat() if as_of_date else None,
        "catalog_hash": batch.catalog_hash,
        "metrics": {
            "transactions_priced": len(batch.lines),
            "transactions_failed": len(batch.failures),
            "failures_by_type": failures_by_type,
            "rules_used": dict(sorted(rules_used.items())),
            "total_cost": str(batch.total_cost),
            "total_markup": str(batch.total_markup),
            "total_billed": str(batch.total_billed),
            "totals_by_category": batch.category_totals_dict(),
        },
        "failures": [failure.to_dict() for failure in batch.failures],
        "rule_issues": [issue.to_dict() for issue in batch.rule_issues],
        "input_errors": input_errors,
    }

    if passed:
        logger.info("Preflight passed: %d transactions", len(batch.lines))
    else:
        logger.warning(
            "Preflight failed: %d transaction failures, %d rule issues, %d input errors",
            len(batch.failures), len(batch.rule_issues), len(input_errors),
        )

    if verbose:
        print(f"Priced {len(batch.lines)} transactions, {len(batch.failures)} failed")
        for failure in batch.failures:
            print(f"  ❌ {failure.transaction.transaction_id}: {failure.error}")
        for issue in batch.rule_issues:
            print(f"  ⚠️  {issue}")
        for err in input_errors:
            print(f"  ⚠️  {err}")

    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        with open(report_path, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2)
        if verbose:
            print(f"Preflight report saved to: {report_path}")

    return report
