"""
Markup Engine - Prices billing transactions under their winning markup rule.

Resolution rules:
- One standalone rule per transaction (no stacking)
- Decimal amounts rounded half-up to cents, once per transaction
- Execution trace for every resolution step
- Per-transaction failures collected instead of aborting the batch
"""
import hashlib
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Iterable, Optional, Union

from .errors import MarkupError
from .models import (
    BatchResult,
    MarkupAmounts,
    MarkupRule,
    PricedLine,
    PricingFailure,
    Transaction,
)
from .rule_matcher import RuleMatcher

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def round2(value: Union[Decimal, float, int, str]) -> Decimal:
    """Round half-up to 2 decimal places."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_markup(transaction: Transaction, rule: MarkupRule) -> MarkupAmounts:
    """
    Compute the markup and billed amount of a transaction under a rule.

    percentage: markup = round2(cost * value / 100)
    fixed:      markup = round2(value)
    billed = cost + markup
    """
    cost = transaction.cost if isinstance(transaction.cost, Decimal) else Decimal(str(transaction.cost))
    value = rule.markup_value if isinstance(rule.markup_value, Decimal) else Decimal(str(rule.markup_value))
    if not cost.is_finite():
        raise ValueError(f"Transaction {transaction.transaction_id} has a non-finite cost '{cost}'")

    if rule.markup_type == 'percentage':
        markup = round2(cost * value / Decimal(100))
    elif rule.markup_type == 'fixed':
        markup = round2(value)
    else:
        raise ValueError(f"Unknown markup_type '{rule.markup_type}' on rule {rule.rule_id}")

    if cost != 0:
        percentage = round2(markup / cost * Decimal(100))
    else:
        percentage = Decimal("0.00")

    return MarkupAmounts(
        markup_applied=markup,
        billed_amount=cost + markup,
        markup_percentage=percentage,
    )


def _rule_fingerprint(rule: MarkupRule) -> dict:
    return {
        "rule_id": rule.rule_id,
        "name": rule.name,
        "scope": rule.scope.describe(),
        "fee_type": rule.fee_type,
        "billing_category": rule.billing_category,
        "ship_option_id": rule.ship_option_id,
        "conditions": rule.conditions.to_dict(),
        "markup_type": rule.markup_type,
        "markup_value": str(rule.markup_value),
        "effective_from": rule.effective_from.isoformat(),
        "effective_to": rule.effective_to.isoformat() if rule.effective_to else None,
        "is_active": rule.is_active,
    }


def catalog_hash(rules: Iterable[MarkupRule]) -> str:
    """Stable short hash of a rule catalog, independent of rule order."""
    payload = sorted((_rule_fingerprint(r) for r in rules), key=lambda d: d["rule_id"])
    digest = hashlib.sha256(json.dumps(payload, sort_keys=True).encode('utf-8'))
    return digest.hexdigest()[:12]


class MarkupEngine:
    """
    Resolves markups for transactions against an in-memory rule catalog.

    Resolution order per transaction:
    1. Prefilter the catalog by billing category, fee type and active date
    2. Drop rules with any unsatisfied condition
    3. Most specific rule wins (client > global, then latest effective_from)
    4. Compute markup and billed amount under that rule

    The engine holds no mutable state after construction, so batches may be
    priced from several threads.
    """

    def __init__(self, rules: Iterable[MarkupRule] = (), source: Optional[Path] = None):
        rules = list(rules)
        self.source = source
        self.matcher = RuleMatcher(rules)
        self.catalog_hash = catalog_hash(rules)
        logger.info(
            "Markup catalog loaded: %d rules (%d excluded), hash %s",
            len(self.matcher.rules), len(self.matcher.rule_issues), self.catalog_hash,
        )

    @classmethod
    def from_file(cls, compiled_rules_path: Path) -> 'MarkupEngine':
        """Build an engine from compiled_rules.json."""
        from ..rules.compile_rules import load_compiled_rules

        if not compiled_rules_path.exists():
            raise FileNotFoundError(
                f"compiled_rules.json not found at {compiled_rules_path}. "
                "Run compile_rules.py first."
            )
        return cls(load_compiled_rules(compiled_rules_path), source=compiled_rules_path)

    @property
    def rules(self) -> list[MarkupRule]:
        return self.matcher.rules

    @property
    def rule_issues(self) -> list:
        return self.matcher.rule_issues

    def select_rule(self, transaction: Transaction, candidates: Iterable[MarkupRule]) -> MarkupRule:
        """Select among caller-supplied candidates."""
        return self.matcher.select_rule(transaction, candidates)

    def price(self, transaction: Transaction, as_of_date: Optional[date] = None) -> PricedLine:
        """
        Price a single transaction with full traceability.

        Raises NoMatchingRuleError or AmbiguousRuleError.
        """
        charge_date = transaction.charge_date or as_of_date
        candidates = self.matcher.candidate_rules(transaction, as_of_date)
        selection = self.matcher.select(transaction, candidates)
        rule = selection.rule
        amounts = compute_markup(transaction, rule)

        line = PricedLine(
            transaction=transaction,
            rule=rule,
            specificity=selection.specificity,
            markup_applied=amounts.markup_applied,
            billed_amount=amounts.billed_amount,
            markup_percentage=amounts.markup_percentage,
        )
        line.add_trace(
            "Candidates",
            f"{transaction.fee_type} / {transaction.billing_category} active on {charge_date.isoformat()}",
            f"{selection.considered} rules, {selection.consistent} consistent",
        )
        line.add_trace("Rule Selected", rule.label(), f"specificity {selection.specificity}")
        line.add_trace("Match", selection.match_reason)
        if selection.tie_break:
            line.add_trace("Tie-break", selection.tie_break, ", ".join(selection.runners_up))

        if rule.markup_type == 'percentage':
            line.add_trace("Markup", f"{rule.markup_value}% of ${transaction.cost}", f"${amounts.markup_applied}")
        else:
            line.add_trace("Markup", "Fixed amount", f"${amounts.markup_applied}")
        line.add_trace("Billed", f"${transaction.cost} + ${amounts.markup_applied}", f"${amounts.billed_amount}")
        return line

    def _price_or_fail(self, transaction: Transaction, as_of_date: Optional[date]) -> Union[PricedLine, PricingFailure]:
        try:
            return self.price(transaction, as_of_date)
        except (MarkupError, ValueError, ArithmeticError) as e:
            logger.warning("Transaction %s not priced: %s", transaction.transaction_id, e)
            return PricingFailure(transaction=transaction, error=e)

    def price_transactions(
        self,
        transactions: Iterable[Transaction],
        as_of_date: Optional[date] = None,
        max_workers: Optional[int] = None,
    ) -> BatchResult:
        """
        Price a sequence of transactions independently.

        Failures are collected per transaction; output order follows input
        order regardless of `max_workers`.
        """
        result = BatchResult(rule_issues=list(self.rule_issues), catalog_hash=self.catalog_hash)

        if max_workers and max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as ex:
                outcomes = list(ex.map(lambda tx: self._price_or_fail(tx, as_of_date), transactions))
        else:
            outcomes = [self._price_or_fail(tx, as_of_date) for tx in transactions]

        result.outcomes = outcomes
        for outcome in outcomes:
            if isinstance(outcome, PricingFailure):
                result.failures.append(outcome)
            else:
                result.lines.append(outcome)

        logger.info(
            "Priced %d transactions (%d failed), billed total %s",
            len(result.lines), len(result.failures), result.total_billed,
        )
        return result

    def reload_data(self):
        """Reload rules from the compiled file this engine was built from."""
        if self.source is None:
            raise ValueError("Engine was not loaded from a file")
        from ..rules.compile_rules import load_compiled_rules

        self.__init__(load_compiled_rules(self.source), source=self.source)


def price_transactions(
    transactions: Iterable[Transaction],
    rule_catalog: Iterable[MarkupRule],
    as_of_date: Optional[date] = None,
    max_workers: Optional[int] = None,
) -> BatchResult:
    """Price transactions against a rule catalog in one call."""
    return MarkupEngine(rule_catalog).price_transactions(transactions, as_of_date, max_workers)
