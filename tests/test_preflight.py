import json
from datetime import date

import pytest

from conftest import SAMPLE_TRANSACTIONS_CSV, SEED_RULES_CSV, make_rule, make_tx
from markup_tool.data.load_transactions import TransactionSource
from markup_tool.engine.markup_engine import MarkupEngine
from markup_tool.rules.compile_rules import read_rules_csv
from markup_tool.services.preflight_service import run_preflight


@pytest.fixture
def engine():
    rules, errors = read_rules_csv(SEED_RULES_CSV)
    assert errors == []
    return MarkupEngine(rules)


def test_preflight_on_sample_export(engine, tmp_path):
    """The sample export has one unbilled fee type (Kitting Fee) so preflight fails."""
    report_path = tmp_path / 'outputs' / 'preflight_report.json'
    source = TransactionSource(SAMPLE_TRANSACTIONS_CSV)

    report = run_preflight(engine, source, report_path=report_path, input_errors=source.errors)

    assert report['status'] == 'failed'
    metrics = report['metrics']
    assert metrics['transactions_priced'] == 5
    assert metrics['transactions_failed'] == 1
    assert metrics['failures_by_type'] == {'no_matching_rule': 1}
    assert metrics['rules_used'] == {
        'FBA-GLOBAL': 1,
        'PICK-FEE': 1,
        'STD-GLOBAL': 1,
        'STD-SHIP146-5-10LB': 1,
        'STORAGE': 1,
    }
    assert metrics['total_cost'] == '153.75'
    assert metrics['total_markup'] == '26.27'
    assert metrics['total_billed'] == '180.02'
    assert metrics['totals_by_category'] == {
        'shipment_fees': {'count': 1, 'cost': '0.30', 'markup': '0.25', 'billed': '0.55'},
        'shipments': {'count': 3, 'cost': '68.45', 'markup': '9.02', 'billed': '77.47'},
        'storage': {'count': 1, 'cost': '85.00', 'markup': '17.00', 'billed': '102.00'},
    }
    assert report['failures'][0]['transaction_id'] == 'T-1006'
    assert report['failures'][0]['fee_type'] == 'Kitting Fee'

    saved = json.loads(report_path.read_text(encoding='utf-8'))
    assert saved == report


def test_preflight_passes_when_everything_prices(engine):
    transactions = [
        make_tx('T-1', cost='12.40', ship_option_id='146', weight_oz=112),
        make_tx('T-2', cost='85.00', fee_type='Warehousing Fee', billing_category='storage'),
    ]
    report = run_preflight(engine, transactions, as_of_date=date(2025, 11, 30))

    assert report['status'] == 'passed'
    assert report['as_of_date'] == '2025-11-30'
    assert report['catalog_hash'] == engine.catalog_hash
    assert report['failures'] == []


def test_rule_issues_fail_preflight():
    engine = MarkupEngine([
        make_rule('STD-GLOBAL', '14'),
        make_rule('STD-BROKEN', '20', effective_from=date(2025, 6, 1), effective_to=date(2025, 1, 1)),
    ])
    report = run_preflight(engine, [make_tx()])

    assert report['metrics']['transactions_failed'] == 0
    assert report['status'] == 'failed'
    assert report['rule_issues'][0]['rule_id'] == 'STD-BROKEN'


def test_input_errors_fail_preflight(engine):
    report = run_preflight(engine, [make_tx()], input_errors=['Line 3: T-2: cost must be numeric'])
    assert report['status'] == 'failed'
    assert report['input_errors'] == ['Line 3: T-2: cost must be numeric']
