#!/usr/bin/env python
"""
Build pipeline - compiles markup rules and runs the invoice preflight.

Usage:
    python scripts/build_all.py [transactions.csv] [--as-of YYYY-MM-DD]
"""
import argparse
import sys
from datetime import date
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from markup_tool.config.settings import configure_logging, get_settings
from markup_tool.data.load_transactions import TransactionSource
from markup_tool.engine.markup_engine import MarkupEngine
from markup_tool.rules.compile_rules import compile_rules
from markup_tool.services.preflight_service import run_preflight


def main():
    parser = argparse.ArgumentParser(description="Compile markup rules and run preflight")
    parser.add_argument('transactions', nargs='?', help="Transaction export CSV")
    parser.add_argument('--as-of', dest='as_of', help="Invoice date (YYYY-MM-DD)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    print("=" * 60)
    print("MARKUP TOOL BUILD PIPELINE")
    print("=" * 60)
    print()

    print("[1/2] Compiling markup rules...")
    success, rules, errors = compile_rules(settings.rules_csv, settings.compiled_rules)
    if not success:
        print("\n❌ BUILD FAILED")
        for error in errors:
            print(f"  ERROR: {error}")
        sys.exit(1)

    print()
    print("[2/2] Running invoice preflight...")
    transactions_path = Path(args.transactions) if args.transactions else settings.transactions_csv
    if not transactions_path.exists():
        print(f"\n❌ Transactions file not found: {transactions_path}")
        sys.exit(1)

    as_of = date.fromisoformat(args.as_of) if args.as_of else None
    engine = MarkupEngine.from_file(settings.compiled_rules)
    source = TransactionSource(transactions_path)
    report = run_preflight(
        engine,
        source,
        as_of_date=as_of,
        report_path=settings.preflight_report,
        input_errors=source.errors,
        max_workers=settings.max_workers,
        verbose=True,
    )

    if report["status"] != "passed":
        print("\n❌ PREFLIGHT FAILED")
        sys.exit(1)

    metrics = report["metrics"]
    print()
    print("=" * 60)
    print("✅ BUILD COMPLETE")
    print("=" * 60)
    print()
    print("Summary:")
    print(f"  Rules: {len(rules)}")
    print(f"  Transactions priced: {metrics['transactions_priced']}")
    print(f"  Cost: ${metrics['total_cost']}")
    print(f"  Markup: ${metrics['total_markup']}")
    print(f"  Billed: ${metrics['total_billed']}")
    print()
    print("Rules used:")
    for rule_id, count in metrics['rules_used'].items():
        print(f"  {rule_id}: {count}")


if __name__ == "__main__":
    main()
