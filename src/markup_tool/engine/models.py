"""
Data models for the markup engine.

Uses dataclasses for structured, type-safe data representation.
Money is carried as Decimal; weights are in ounces.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Union


BILLING_CATEGORIES = (
    'shipments',
    'shipment_fees',
    'storage',
    'returns',
    'receiving',
    'credits',
    'insurance',
)

MARKUP_TYPES = ('percentage', 'fixed')

# (label, min_oz inclusive, max_oz exclusive; None = unbounded)
WEIGHT_BRACKETS = (
    ('<8oz', 0, 8),
    ('8-16oz', 8, 16),
    ('1-5lbs', 16, 80),
    ('5-10lbs', 80, 160),
    ('10-15lbs', 160, 240),
    ('15-20lbs', 240, 320),
    ('20+lbs', 320, None),
)


def weight_bracket_for(weight_oz: float) -> str:
    """Return the bracket label for a weight in ounces."""
    for label, min_oz, max_oz in WEIGHT_BRACKETS:
        if weight_oz >= min_oz and (max_oz is None or weight_oz < max_oz):
            return label
    # Only negative weights fall through
    raise ValueError(f"Weight must be non-negative, got {weight_oz}")


def bracket_bounds(label: str) -> tuple[float, Optional[float]]:
    """Return (min_oz, max_oz) for a bracket label."""
    for bracket_label, min_oz, max_oz in WEIGHT_BRACKETS:
        if bracket_label == label:
            return min_oz, max_oz
    raise ValueError(f"Unknown weight bracket '{label}'")


@dataclass(frozen=True)
class GlobalScope:
    """Rule applies to every client."""

    def describe(self) -> str:
        return "global"


@dataclass(frozen=True)
class ClientScope:
    """Rule applies to a single client."""
    client_id: str

    def describe(self) -> str:
        return f"client={self.client_id}"


RuleScope = Union[GlobalScope, ClientScope]


def scope_for(client_id: Optional[str]) -> RuleScope:
    """Build a scope from a nullable client id column."""
    if client_id is None or str(client_id).strip() == '':
        return GlobalScope()
    return ClientScope(client_id=str(client_id).strip())


@dataclass(frozen=True)
class RuleConditions:
    """Typed form of a rule's conditions blob."""
    weight_min_oz: Optional[float] = None
    weight_max_oz: Optional[float] = None
    states: tuple[str, ...] = ()
    countries: tuple[str, ...] = ()
    ship_option_ids: tuple[str, ...] = ()

    @property
    def has_weight(self) -> bool:
        return self.weight_min_oz is not None or self.weight_max_oz is not None

    def weight_matches(self, weight_oz: Optional[float]) -> bool:
        """Lower bound inclusive, upper bound exclusive."""
        if not self.has_weight:
            return True
        if weight_oz is None:
            return False
        if self.weight_min_oz is not None and weight_oz < self.weight_min_oz:
            return False
        if self.weight_max_oz is not None and weight_oz >= self.weight_max_oz:
            return False
        return True

    def to_dict(self) -> dict:
        data = {}
        if self.weight_min_oz is not None:
            data['weight_min_oz'] = self.weight_min_oz
        if self.weight_max_oz is not None:
            data['weight_max_oz'] = self.weight_max_oz
        if self.states:
            data['states'] = list(self.states)
        if self.countries:
            data['countries'] = list(self.countries)
        if self.ship_option_ids:
            data['ship_option_ids'] = list(self.ship_option_ids)
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'RuleConditions':
        """Deserialize a conditions blob. Unknown keys are rejected."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("conditions must be a JSON object")

        known = {'weight_min_oz', 'weight_max_oz', 'states', 'countries', 'ship_option_ids'}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown condition keys: {', '.join(sorted(unknown))}")

        def _weight(key: str) -> Optional[float]:
            value = data.get(key)
            if value is None or value == '':
                return None
            return float(value)

        def _codes(key: str, upper: bool = True) -> tuple[str, ...]:
            values = data.get(key) or []
            if isinstance(values, str):
                values = [values]
            cleaned = [str(v).strip() for v in values if str(v).strip()]
            if upper:
                cleaned = [v.upper() for v in cleaned]
            return tuple(sorted(set(cleaned)))

        return cls(
            weight_min_oz=_weight('weight_min_oz'),
            weight_max_oz=_weight('weight_max_oz'),
            states=_codes('states'),
            countries=_codes('countries'),
            ship_option_ids=_codes('ship_option_ids', upper=False),
        )


@dataclass(frozen=True)
class MarkupRule:
    """A conditional markup applied to a transaction's base cost."""
    rule_id: str
    name: str
    scope: RuleScope
    fee_type: str
    billing_category: str
    markup_type: str
    markup_value: Decimal
    effective_from: date
    effective_to: Optional[date] = None
    ship_option_id: Optional[str] = None
    conditions: RuleConditions = field(default_factory=RuleConditions)
    is_active: bool = True
    description: str = ""

    @property
    def client_id(self) -> Optional[str]:
        if isinstance(self.scope, ClientScope):
            return self.scope.client_id
        return None

    @property
    def is_client_specific(self) -> bool:
        return isinstance(self.scope, ClientScope)

    def is_effective_on(self, charge_date: date) -> bool:
        """Active iff effective_from <= charge_date <= effective_to (inclusive)."""
        if charge_date < self.effective_from:
            return False
        if self.effective_to is not None and charge_date > self.effective_to:
            return False
        return True

    def label(self) -> str:
        return f"{self.name} ({self.rule_id})"


@dataclass(frozen=True)
class Transaction:
    """A billable charge, as handed over by the ingestion pipeline."""
    transaction_id: str
    client_id: str
    fee_type: str
    billing_category: str
    cost: Decimal
    charge_date: Optional[date] = None
    ship_option_id: Optional[str] = None
    weight_oz: Optional[float] = None
    destination_state: Optional[str] = None
    destination_country: Optional[str] = None


@dataclass
class TraceStep:
    """A single step in the markup resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass(frozen=True)
class MarkupAmounts:
    """Rounded amounts for one transaction under one rule."""
    markup_applied: Decimal
    billed_amount: Decimal
    markup_percentage: Decimal


@dataclass
class PricedLine:
    """A transaction priced under its winning rule."""
    transaction: Transaction
    rule: MarkupRule
    specificity: int
    markup_applied: Decimal
    billed_amount: Decimal
    markup_percentage: Decimal
    trace: list[TraceStep] = field(default_factory=list)

    @property
    def rule_id(self) -> str:
        return self.rule.rule_id

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this line."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        tx = self.transaction
        return {
            "transaction_id": tx.transaction_id,
            "client_id": tx.client_id,
            "fee_type": tx.fee_type,
            "billing_category": tx.billing_category,
            "charge_date": tx.charge_date.isoformat() if tx.charge_date else None,
            "cost": str(tx.cost),
            "markup_rule_id": self.rule.rule_id,
            "markup_rule_name": self.rule.name,
            "markup_type": self.rule.markup_type,
            "specificity": self.specificity,
            "markup_applied": str(self.markup_applied),
            "billed_amount": str(self.billed_amount),
            "markup_percentage": str(self.markup_percentage),
        }


@dataclass
class PricingFailure:
    """A transaction that could not be priced, with the typed error."""
    transaction: Transaction
    error: Exception

    def to_dict(self) -> dict:
        if hasattr(self.error, 'to_dict'):
            data = self.error.to_dict()
        else:
            data = {"error": type(self.error).__name__, "message": str(self.error)}
        data["transaction_id"] = self.transaction.transaction_id
        return data


@dataclass
class BatchResult:
    """Outcome of pricing a sequence of transactions."""
    lines: list[PricedLine] = field(default_factory=list)
    failures: list[PricingFailure] = field(default_factory=list)
    rule_issues: list = field(default_factory=list)
    catalog_hash: Optional[str] = None
    # Lines and failures interleaved in input order
    outcomes: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def total_cost(self) -> Decimal:
        return sum((line.transaction.cost for line in self.lines), Decimal("0"))

    @property
    def total_markup(self) -> Decimal:
        return sum((line.markup_applied for line in self.lines), Decimal("0"))

    @property
    def total_billed(self) -> Decimal:
        return sum((line.billed_amount for line in self.lines), Decimal("0"))

    @property
    def totals_by_category(self) -> dict[str, dict]:
        """Line count and summed rounded amounts per billing category."""
        totals = {}
        for line in self.lines:
            entry = totals.setdefault(line.transaction.billing_category, {
                "count": 0, "cost": Decimal("0"), "markup": Decimal("0"), "billed": Decimal("0"),
            })
            entry["count"] += 1
            entry["cost"] += line.transaction.cost
            entry["markup"] += line.markup_applied
            entry["billed"] += line.billed_amount
        return dict(sorted(totals.items()))

    def category_totals_dict(self) -> dict[str, dict]:
        return {
            category: {
                "count": entry["count"],
                "cost": str(entry["cost"]),
                "markup": str(entry["markup"]),
                "billed": str(entry["billed"]),
            }
            for category, entry in self.totals_by_category.items()
        }

    def to_dict(self) -> dict:
        return {
            "catalog_hash": self.catalog_hash,
            "ok": self.ok,
            "totals": {
                "transactions_priced": len(self.lines),
                "transactions_failed": len(self.failures),
                "cost": str(self.total_cost),
                "markup": str(self.total_markup),
                "billed": str(self.total_billed),
            },
            "totals_by_category": self.category_totals_dict(),
            "lines": [line.to_dict() for line in self.lines],
            "failures": [failure.to_dict() for failure in self.failures],
            "rule_issues": [issue.to_dict() for issue in self.rule_issues],
        }
