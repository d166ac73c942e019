import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add src to path
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from markup_tool.config.settings import get_settings
from markup_tool.engine.errors import MarkupError
from markup_tool.engine.markup_engine import MarkupEngine
from markup_tool.engine.models import Transaction, weight_bracket_for

def debug():
    settings = get_settings()
    engine = MarkupEngine.from_file(settings.compiled_rules)
    
    print(f"Loaded {len(engine.rules)} rules (catalog {engine.catalog_hash})")
    for issue in engine.rule_issues:
        print(f"  Excluded: {issue}")
    
    # Test Case: Ship 146 at 7lbs should hit the 5-10lbs rule
    print("\n--- Testing Ship 146 weight brackets ---")
    for weight in (6.0, 8.0, 112.0, 160.0, 320.0):
        tx = Transaction(
            transaction_id=f"DEBUG-{weight}",
            client_id="C-100",
            fee_type="Standard",
            billing_category="shipments",
            cost=Decimal("10.00"),
            charge_date=date.today(),
            ship_option_id="146",
            weight_oz=weight,
        )
        print(f"\n{weight}oz ({weight_bracket_for(weight)}):")
        try:
            line = engine.price(tx)
            print(line.get_trace_text())
        except MarkupError as e:
            print(f"  {e}")

if __name__ == "__main__":
    debug()
