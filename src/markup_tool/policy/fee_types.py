"""
Fee Type Resolver - Resolves the billing category and markup fee type of a charge.
"""
from typing import Optional
from pathlib import Path

import pandas as pd


# Fee types as they arrive from the fulfillment provider
FEE_TYPE_TO_CATEGORY = {
    # Shipment fees
    'Shipping': 'shipments',
    'Per Pick Fee': 'shipment_fees',
    'B2B - Label Fee': 'shipment_fees',
    'B2B - Each Pick Fee': 'shipment_fees',
    'B2B - Case Pick Fee': 'shipment_fees',
    'B2B - Order Fee': 'shipment_fees',
    'B2B - Supplies': 'shipment_fees',
    'B2B - Pallet Material Charge': 'shipment_fees',
    'B2B - Pallet Pack Fee': 'shipment_fees',
    'B2B - ShipBob Freight Fee': 'shipment_fees',
    'Address Correction': 'shipment_fees',
    'Inventory Placement Program Fee': 'shipment_fees',
    'Kitting Fee': 'shipment_fees',
    'VAS - Paid Requests': 'shipment_fees',
    'Others': 'shipment_fees',

    # Storage
    'Warehousing Fee': 'storage',
    'URO Storage Fee': 'storage',

    # Returns
    'Return to sender - Processing Fees': 'returns',
    'Return Processed by Operations Fee': 'returns',
    'Return Label': 'returns',

    # Receiving
    'WRO Receiving Fee': 'receiving',
    'WRO Label Fee': 'receiving',

    'Credit': 'credits',
    'Insurance': 'insurance',
}

DEFAULT_CATEGORY = 'shipment_fees'


def shipment_fee_type(order_category: Optional[str]) -> str:
    """
    Markup fee type of a shipment from its order category.

    No category means a standard D2C shipment; FBA, VAS etc. pass through.
    Refunds use the same fee type as the charge they reverse.
    """
    if order_category is None or str(order_category).strip() in ('', 'nan', 'None'):
        return 'Standard'
    return str(order_category).strip()


class FeeTypeResolver:
    """
    Resolves the billing category for a raw fee type.

    Waterfall precedence:
    1. Override file (fee_type,billing_category)
    2. Built-in mapping
    3. Fallback: shipment_fees
    """

    def __init__(self, overrides_path: Optional[Path] = None):
        self.overrides_path = overrides_path
        self.overrides_df = pd.DataFrame(columns=['fee_type', 'billing_category'])
        if overrides_path and overrides_path.exists():
            df = pd.read_csv(overrides_path, dtype=str).fillna('')
            df.columns = [c.strip() for c in df.columns]
            for col in df.columns:
                df[col] = df[col].astype(str).str.strip()
            self.overrides_df = df

    def billing_category_for(self, fee_type: str) -> str:
        """Resolve the billing category for a fee type."""
        fee_type = str(fee_type).strip()

        # 1. Override file
        if not self.overrides_df.empty:
            match = self.overrides_df[self.overrides_df['fee_type'] == fee_type]
            if not match.empty:
                return match.iloc[0]['billing_category']

        # 2. Built-in mapping
        if fee_type in FEE_TYPE_TO_CATEGORY:
            return FEE_TYPE_TO_CATEGORY[fee_type]

        # 3. Fallback
        return DEFAULT_CATEGORY

    def markup_fee_type(self, fee_type: str, order_category: Optional[str] = None) -> str:
        """Fee type used for rule matching: shipments match on order category."""
        fee_type = str(fee_type).strip()
        if self.billing_category_for(fee_type) == 'shipments':
            return shipment_fee_type(order_category)
        return fee_type
