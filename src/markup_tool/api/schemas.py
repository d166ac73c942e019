"""
Pydantic models for the markup API.
"""
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from ..engine.models import Transaction
from ..policy.fee_types import FeeTypeResolver


class TransactionIn(BaseModel):
    """A transaction as posted by the invoicing pipeline."""
    transaction_id: str
    client_id: str
    fee_type: str
    cost: Decimal = Field(allow_inf_nan=False)
    charge_date: Optional[date] = None
    billing_category: Optional[str] = None
    order_category: Optional[str] = None
    ship_option_id: Optional[str] = None
    weight_oz: Optional[float] = None
    destination_state: Optional[str] = None
    destination_country: Optional[str] = None

    def to_transaction(self, resolver: FeeTypeResolver) -> Transaction:
        return Transaction(
            transaction_id=self.transaction_id,
            client_id=self.client_id,
            fee_type=resolver.markup_fee_type(self.fee_type, self.order_category),
            billing_category=self.billing_category or resolver.billing_category_for(self.fee_type),
            cost=self.cost,
            charge_date=self.charge_date,
            ship_option_id=self.ship_option_id,
            weight_oz=self.weight_oz,
            destination_state=self.destination_state,
            destination_country=self.destination_country,
        )


class PriceRequest(BaseModel):
    transactions: list[TransactionIn]
    as_of_date: Optional[date] = None
    include_trace: bool = False


class RuleCreate(BaseModel):
    """Request model for creating a rule."""
    rule_id: Optional[str] = None
    name: str
    client_id: Optional[str] = None
    fee_type: str
    billing_category: str
    ship_option_id: Optional[str] = None
    conditions: dict = Field(default_factory=dict)
    markup_type: Literal['percentage', 'fixed']
    markup_value: Decimal
    effective_from: date
    effective_to: Optional[date] = None
    is_active: bool = True
    description: Optional[str] = None
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None

    def rule_data(self) -> dict:
        """Fields in the compiled rule JSON shape."""
        data = self.model_dump(exclude={'changed_by', 'change_reason'})
        data['rule_id'] = self.rule_id or ''
        data['markup_value'] = str(self.markup_value)
        data['effective_from'] = self.effective_from.isoformat()
        data['effective_to'] = self.effective_to.isoformat() if self.effective_to else None
        return data


class RuleUpdate(BaseModel):
    """Request model for updating a rule."""
    name: Optional[str] = None
    client_id: Optional[str] = None
    fee_type: Optional[str] = None
    billing_category: Optional[str] = None
    ship_option_id: Optional[str] = None
    conditions: Optional[dict] = None
    markup_type: Optional[Literal['percentage', 'fixed']] = None
    markup_value: Optional[Decimal] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None

    def changes(self) -> dict:
        # exclude_unset keeps explicit nulls (e.g. clearing effective_to)
        data = self.model_dump(exclude_unset=True, exclude={'changed_by', 'change_reason'})
        if data.get('markup_value') is not None:
            data['markup_value'] = str(data['markup_value'])
        return data


class SupersedeRequest(BaseModel):
    """Close a rule and start its replacement."""
    effective_from: date
    changes: RuleUpdate = Field(default_factory=RuleUpdate)
    new_rule_id: Optional[str] = None
    changed_by: Optional[str] = None
    change_reason: Optional[str] = None


class RuleResponse(BaseModel):
    """Response model for a rule."""
    rule_id: str
    name: str
    client_id: Optional[str]
    fee_type: str
    billing_category: str
    ship_option_id: Optional[str]
    conditions: dict
    markup_type: str
    markup_value: str
    effective_from: str
    effective_to: Optional[str]
    is_active: bool
    description: str


class RuleDetailResponse(BaseModel):
    rule: RuleResponse
    history: list[dict]


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]
    conflicts: list[str]


class SupersedeResponse(BaseModel):
    closed: RuleResponse
    created: RuleResponse


class TestRuleResponse(BaseModel):
    """Response model for rule test."""
    rule_id: str
    rule_name: str
    specificity: int
    match_reason: str
    markup_applied: str
    billed_amount: str
    markup_percentage: str
    trace: list[str]
