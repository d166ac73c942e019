import os
import shutil
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

# Add src to path for internal imports
src_path = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src')
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from markup_tool.engine.models import MarkupRule, RuleConditions, Transaction, scope_for

PACKAGE_DIR = Path(src_path) / 'markup_tool'
SEED_RULES_CSV = PACKAGE_DIR / 'rules' / 'rules.csv'
SAMPLE_TRANSACTIONS_CSV = PACKAGE_DIR / 'data' / 'transactions.csv'


def make_rule(
    rule_id,
    markup_value='14',
    fee_type='Standard',
    billing_category='shipments',
    client_id=None,
    ship_option_id=None,
    conditions=None,
    markup_type='percentage',
    effective_from=date(2025, 1, 1),
    effective_to=None,
    is_active=True,
    name=None,
):
    return MarkupRule(
        rule_id=rule_id,
        name=name or rule_id or fee_type,
        scope=scope_for(client_id),
        fee_type=fee_type,
        billing_category=billing_category,
        markup_type=markup_type,
        markup_value=Decimal(markup_value),
        effective_from=effective_from,
        effective_to=effective_to,
        ship_option_id=ship_option_id,
        conditions=RuleConditions.from_dict(conditions),
        is_active=is_active,
    )


def make_tx(
    transaction_id='T-1',
    cost='100.00',
    fee_type='Standard',
    billing_category='shipments',
    client_id='C-100',
    charge_date=date(2025, 11, 3),
    ship_option_id=None,
    weight_oz=None,
    destination_state=None,
    destination_country=None,
):
    return Transaction(
        transaction_id=transaction_id,
        client_id=client_id,
        fee_type=fee_type,
        billing_category=billing_category,
        cost=Decimal(cost),
        charge_date=charge_date,
        ship_option_id=ship_option_id,
        weight_oz=weight_oz,
        destination_state=destination_state,
        destination_country=destination_country,
    )


@pytest.fixture
def shipping_rules():
    """Global, ship-option and ship-option + 5-10lbs rules for Standard shipments."""
    return [
        make_rule('STD-GLOBAL', '14'),
        make_rule('STD-SHIP146', '18', ship_option_id='146'),
        make_rule(
            'STD-SHIP146-5-10LB', '25', ship_option_id='146',
            conditions={'weight_min_oz': 80, 'weight_max_oz': 160},
        ),
    ]


@pytest.fixture
def rules_dir(tmp_path):
    """A scratch copy of the seed rules.csv."""
    shutil.copy(SEED_RULES_CSV, tmp_path / 'rules.csv')
    return tmp_path
