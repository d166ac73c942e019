from datetime import date
from decimal import Decimal

import pytest

from conftest import SAMPLE_TRANSACTIONS_CSV
from markup_tool.data.load_transactions import TransactionSource, iter_transactions
from markup_tool.policy.fee_types import FeeTypeResolver, shipment_fee_type

HEADER = "transaction_id,client_id,fee_type,order_category,ship_option_id,weight_oz,charge_date,cost\n"


def test_sample_export_loads():
    transactions = list(iter_transactions(SAMPLE_TRANSACTIONS_CSV))
    assert [t.transaction_id for t in transactions] == ['T-1001', 'T-1002', 'T-1003', 'T-1004', 'T-1005', 'T-1006']

    first = transactions[0]
    assert first.fee_type == 'Standard'
    assert first.billing_category == 'shipments'
    assert first.ship_option_id == '146'
    assert first.weight_oz == 112.0
    assert first.destination_state == 'CA'
    assert first.cost == Decimal('12.40')
    assert first.charge_date == date(2025, 11, 3)

    fba = transactions[2]
    assert fba.fee_type == 'FBA'

    pick = transactions[3]
    assert pick.fee_type == 'Per Pick Fee'
    assert pick.billing_category == 'shipment_fees'
    assert pick.ship_option_id is None
    assert pick.weight_oz is None

    assert transactions[4].billing_category == 'storage'


def test_source_is_restartable():
    source = TransactionSource(SAMPLE_TRANSACTIONS_CSV)
    assert len(list(source)) == len(list(source)) == 6
    assert source.errors == []
    assert len(source.file_hash) == 12


def test_bad_rows_collected(tmp_path):
    path = tmp_path / 'tx.csv'
    path.write_text(
        HEADER
        + "T-1,C-1,Shipping,,146,100,2025-11-03,10.00\n"
        + "T-2,C-1,Shipping,,146,heavy,2025-11-03,10.00\n"
        + "T-3,C-1,Per Pick Fee,,,,2025-11-03,n/a\n"
        + ",C-1,Per Pick Fee,,,,2025-11-03,1.00\n"
        + "T-5,C-1,Per Pick Fee,,,,11/03/2025,1.00\n",
        encoding='utf-8',
    )
    source = TransactionSource(path)
    transactions = list(source)

    assert [t.transaction_id for t in transactions] == ['T-1']
    assert source.errors == [
        "Line 3: T-2: weight_oz must be numeric",
        "Line 4: T-3: cost must be numeric",
        "Line 5: transaction_id is required",
        "Line 6: T-5: charge_date must be YYYY-MM-DD format",
    ]


def test_bad_row_raises_without_error_list(tmp_path):
    path = tmp_path / 'tx.csv'
    path.write_text(HEADER + "T-1,C-1,Per Pick Fee,,,,2025-11-03,abc\n", encoding='utf-8')
    with pytest.raises(ValueError, match='Line 2'):
        list(iter_transactions(path))


def test_missing_columns(tmp_path):
    path = tmp_path / 'tx.csv'
    path.write_text("transaction_id,fee_type,cost\nT-1,Shipping,1.00\n", encoding='utf-8')
    with pytest.raises(ValueError, match='client_id'):
        list(iter_transactions(path))


def test_chunked_reading(tmp_path):
    path = tmp_path / 'tx.csv'
    rows = "".join(f"T-{i},C-1,Per Pick Fee,,,,2025-11-03,0.30\n" for i in range(25))
    path.write_text(HEADER + rows, encoding='utf-8')

    transactions = list(iter_transactions(path, chunksize=10))
    assert len(transactions) == 25
    assert transactions[-1].transaction_id == 'T-24'


def test_shipment_fee_type():
    assert shipment_fee_type(None) == 'Standard'
    assert shipment_fee_type('') == 'Standard'
    assert shipment_fee_type(' FBA ') == 'FBA'


def test_resolver_mapping_and_fallback():
    resolver = FeeTypeResolver()
    assert resolver.billing_category_for('Shipping') == 'shipments'
    assert resolver.billing_category_for('URO Storage Fee') == 'storage'
    assert resolver.billing_category_for('Something New') == 'shipment_fees'

    assert resolver.markup_fee_type('Shipping') == 'Standard'
    assert resolver.markup_fee_type('Shipping', 'VAS') == 'VAS'
    assert resolver.markup_fee_type('Per Pick Fee', 'FBA') == 'Per Pick Fee'


def test_resolver_overrides(tmp_path):
    overrides = tmp_path / 'overrides.csv'
    overrides.write_text("fee_type,billing_category\nKitting Fee , receiving\n", encoding='utf-8')
    resolver = FeeTypeResolver(overrides)

    assert resolver.billing_category_for('Kitting Fee') == 'receiving'
    assert resolver.billing_category_for('Per Pick Fee') == 'shipment_fees'


def test_non_finite_costs_rejected(tmp_path):
    path = tmp_path / 'tx.csv'
    path.write_text(
        HEADER
        + "T-1,C-1,Per Pick Fee,,,,2025-11-03,Infinity\n"
        + "T-2,C-1,Per Pick Fee,,,,2025-11-03,NaN\n"
        + "T-3,C-1,Per Pick Fee,,,,2025-11-03,10.00\n",
        encoding='utf-8',
    )
    source = TransactionSource(path)

    assert [t.transaction_id for t in source] == ['T-3']
    assert source.errors == [
        "Line 2: T-1: cost must be a finite number",
        "Line 3: T-2: cost must be a finite number",
    ]
