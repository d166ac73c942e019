"""
Create a client-specific markup rule from the command line.

Usage:
    python scripts/create_rule.py CLIENT_ID FEE_TYPE CATEGORY PERCENT [--ship-option ID] [--from YYYY-MM-DD]
"""
import argparse
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from markup_tool.config.settings import get_settings
from markup_tool.engine.models import MarkupRule, scope_for
from markup_tool.services.rules_service import RulesService


def main():
    parser = argparse.ArgumentParser(description="Create a client markup rule")
    parser.add_argument('client_id')
    parser.add_argument('fee_type')
    parser.add_argument('billing_category')
    parser.add_argument('percent')
    parser.add_argument('--ship-option', dest='ship_option')
    parser.add_argument('--from', dest='effective_from', default=date.today().isoformat())
    parser.add_argument('--reason', default=None)
    args = parser.parse_args()

    settings = get_settings()
    service = RulesService(
        rules_csv_path=settings.rules_csv,
        compiled_rules_path=settings.compiled_rules,
        history_path=settings.rule_history,
    )

    name = f"{args.fee_type} {args.percent}% ({args.client_id})"
    if args.ship_option:
        name += f" + Ship {args.ship_option}"

    rule = MarkupRule(
        rule_id="",
        name=name,
        scope=scope_for(args.client_id),
        fee_type=args.fee_type,
        billing_category=args.billing_category,
        markup_type='percentage',
        markup_value=Decimal(args.percent),
        effective_from=date.fromisoformat(args.effective_from),
        ship_option_id=args.ship_option,
    )

    try:
        created = service.create_rule(rule, changed_by="cli", change_reason=args.reason)
        print(f"✅ Created rule: {created.rule_id}")
    except ValueError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
