"""
Transaction Loader - Reads billing transaction exports into Transaction records.

Features:
- Lazy iteration (each call re-reads the file, so runs are restartable)
- Fee type / billing category resolution for raw provider exports
- Row-level error collection
"""
import hashlib
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterator, Optional

import pandas as pd

from ..engine.models import Transaction
from ..policy.fee_types import FeeTypeResolver


REQUIRED_COLUMNS = ('transaction_id', 'client_id', 'fee_type', 'cost', 'charge_date')


def get_file_hash(path: Path) -> str:
    """Get SHA256 hash of a file."""
    if not path.exists():
        return ""
    with open(path, 'rb') as f:
        return hashlib.sha256(f.read()).hexdigest()[:12]


def _clean(value) -> Optional[str]:
    if value is None or pd.isna(value):
        return None
    text = str(value).strip()
    return text or None


def row_to_transaction(row: dict, resolver: FeeTypeResolver) -> Transaction:
    """Convert one export row to a Transaction. Raises ValueError on bad data."""
    transaction_id = _clean(row.get('transaction_id'))
    if not transaction_id:
        raise ValueError("transaction_id is required")

    raw_fee_type = _clean(row.get('fee_type'))
    if not raw_fee_type:
        raise ValueError(f"{transaction_id}: fee_type is required")

    try:
        cost = Decimal(_clean(row.get('cost')) or '')
    except InvalidOperation:
        raise ValueError(f"{transaction_id}: cost must be numeric")
    if not cost.is_finite():
        raise ValueError(f"{transaction_id}: cost must be a finite number")

    charge_text = _clean(row.get('charge_date'))
    try:
        charge_date = date.fromisoformat(charge_text[:10]) if charge_text else None
    except ValueError:
        raise ValueError(f"{transaction_id}: charge_date must be YYYY-MM-DD format")

    weight_text = _clean(row.get('weight_oz'))
    try:
        weight_oz = float(weight_text) if weight_text else None
    except ValueError:
        raise ValueError(f"{transaction_id}: weight_oz must be numeric")

    billing_category = _clean(row.get('billing_category')) or resolver.billing_category_for(raw_fee_type)
    fee_type = resolver.markup_fee_type(raw_fee_type, _clean(row.get('order_category')))

    return Transaction(
        transaction_id=transaction_id,
        client_id=_clean(row.get('client_id')) or '',
        fee_type=fee_type,
        billing_category=billing_category,
        cost=cost,
        charge_date=charge_date,
        ship_option_id=_clean(row.get('ship_option_id')),
        weight_oz=weight_oz,
        destination_state=_clean(row.get('destination_state')),
        destination_country=_clean(row.get('destination_country')),
    )


def iter_transactions(
    path: Path,
    resolver: Optional[FeeTypeResolver] = None,
    errors: Optional[list] = None,
    chunksize: int = 5000,
) -> Iterator[Transaction]:
    """
    Yield transactions from a CSV export.

    Bad rows raise ValueError, unless an `errors` list is supplied, in which
    case they are recorded there (with line numbers) and skipped.
    """
    resolver = resolver or FeeTypeResolver()
    line_num = 1  # header

    for chunk in pd.read_csv(path, dtype=str, chunksize=chunksize, keep_default_na=False):
        chunk.columns = [c.strip() for c in chunk.columns]
        missing = [c for c in REQUIRED_COLUMNS if c not in chunk.columns]
        if missing:
            raise ValueError(f"{path.name} is missing columns: {', '.join(missing)}")

        for row in chunk.to_dict(orient='records'):
            line_num += 1
            try:
                transaction = row_to_transaction(row, resolver)
            except ValueError as e:
                if errors is None:
                    raise ValueError(f"Line {line_num}: {e}") from e
                errors.append(f"Line {line_num}: {e}")
                continue
            yield transaction


class TransactionSource:
    """Restartable transaction sequence backed by a CSV export."""

    def __init__(self, path: Path, resolver: Optional[FeeTypeResolver] = None):
        self.path = path
        self.resolver = resolver or FeeTypeResolver()
        self.errors: list[str] = []

    def __iter__(self) -> Iterator[Transaction]:
        self.errors.clear()
        return iter_transactions(self.path, self.resolver, self.errors)

    @property
    def file_hash(self) -> str:
        return get_file_hash(self.path)
