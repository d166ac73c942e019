"""
Rule Matcher - Selects the winning markup rule for a transaction.

Selection is "most specific wins":
- A rule is a candidate only if every condition it specifies is satisfied
- Specificity counts the client, ship option and weight bracket conditions
- Ties go to client-specific rules, then to the latest effective_from
- Anything still tied is a configuration error, never a guess
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from .errors import AmbiguousRuleError, InvalidRuleConfigurationError, NoMatchingRuleError
from .models import (
    BILLING_CATEGORIES,
    MARKUP_TYPES,
    ClientScope,
    MarkupRule,
    Transaction,
)

logger = logging.getLogger(__name__)


def check_rule_configuration(rule: MarkupRule) -> list[str]:
    """Return the internal inconsistencies of a rule (empty when valid)."""
    problems = []

    if not rule.fee_type:
        problems.append("fee_type is required")
    if rule.billing_category not in BILLING_CATEGORIES:
        problems.append(f"unknown billing_category '{rule.billing_category}'")
    if rule.markup_type not in MARKUP_TYPES:
        problems.append(f"unknown markup_type '{rule.markup_type}'")
    value = Decimal(str(rule.markup_value))
    if not value.is_finite():
        problems.append("markup_value must be a finite number")
    elif value < 0:
        problems.append("markup_value must not be negative")

    if rule.effective_to is not None and rule.effective_to < rule.effective_from:
        problems.append(
            f"effective_to {rule.effective_to.isoformat()} is before "
            f"effective_from {rule.effective_from.isoformat()}"
        )

    cond = rule.conditions
    if cond.weight_min_oz is not None and cond.weight_min_oz < 0:
        problems.append("weight_min_oz must not be negative")
    if cond.weight_max_oz is not None and cond.weight_max_oz <= 0:
        problems.append("weight_max_oz must be positive")
    if (
        cond.weight_min_oz is not None
        and cond.weight_max_oz is not None
        and cond.weight_max_oz <= cond.weight_min_oz
    ):
        problems.append("weight_max_oz must be greater than weight_min_oz")

    if rule.ship_option_id and cond.ship_option_ids and rule.ship_option_id not in cond.ship_option_ids:
        problems.append("ship_option_id is not in conditions.ship_option_ids")

    return problems


@dataclass
class RuleSelection:
    """The winning rule with the context of its selection."""
    rule: MarkupRule
    specificity: int
    match_reason: str
    considered: int
    consistent: int
    tie_break: Optional[str] = None
    runners_up: list[str] = field(default_factory=list)
    rule_issues: list[InvalidRuleConfigurationError] = field(default_factory=list)


class RuleMatcher:
    """
    Matches markup rules against transactions.

    Rules with configuration problems are excluded at construction and kept
    in `rule_issues` so callers can report them.
    """

    def __init__(self, rules: Iterable[MarkupRule] = ()):
        self.rules: list[MarkupRule] = []
        self.rule_issues: list[InvalidRuleConfigurationError] = []

        for rule in rules:
            problems = check_rule_configuration(rule)
            if problems:
                issue = InvalidRuleConfigurationError(rule.rule_id, problems)
                logger.warning("Excluding rule: %s", issue)
                self.rule_issues.append(issue)
                continue
            self.rules.append(rule)

        # Stable order keeps tie reporting and traces reproducible
        self.rules.sort(key=lambda r: r.rule_id)

    def candidate_rules(self, transaction: Transaction, as_of_date: Optional[date] = None) -> list[MarkupRule]:
        """
        Rules whose category, fee type and active window fit the transaction.

        The charge date falls back to `as_of_date`. When `as_of_date` is given,
        rules that only take effect after it are left out.
        """
        charge_date = transaction.charge_date or as_of_date
        if charge_date is None:
            raise ValueError(f"Transaction {transaction.transaction_id} has no charge date")

        candidates = []
        for rule in self.rules:
            if not rule.is_active:
                continue
            if rule.billing_category != transaction.billing_category:
                continue
            if rule.fee_type != transaction.fee_type:
                continue
            if not rule.is_effective_on(charge_date):
                continue
            if as_of_date is not None and rule.effective_from > as_of_date:
                continue
            candidates.append(rule)
        return candidates

    def _match(self, rule: MarkupRule, transaction: Transaction) -> Optional[list[str]]:
        """
        Check every condition the rule specifies.

        Returns the reasons (one per satisfied condition) or None if any
        specified condition fails.
        """
        reasons = []

        if isinstance(rule.scope, ClientScope):
            if rule.scope.client_id != str(transaction.client_id):
                return None
            reasons.append(f"client={rule.scope.client_id}")

        ship_option = str(transaction.ship_option_id) if transaction.ship_option_id is not None else None
        if rule.ship_option_id:
            if rule.ship_option_id != ship_option:
                return None
            reasons.append(f"ship_option={rule.ship_option_id}")

        cond = rule.conditions
        if cond.ship_option_ids:
            if ship_option not in cond.ship_option_ids:
                return None
            if not rule.ship_option_id:
                reasons.append(f"ship_option in {','.join(cond.ship_option_ids)}")

        if cond.has_weight:
            if not cond.weight_matches(transaction.weight_oz):
                return None
            low = cond.weight_min_oz if cond.weight_min_oz is not None else 0
            high = cond.weight_max_oz if cond.weight_max_oz is not None else "inf"
            reasons.append(f"weight in [{low}, {high})")

        if cond.states:
            state = (transaction.destination_state or "").strip().upper()
            if state not in cond.states:
                return None
            reasons.append(f"state={state}")

        if cond.countries:
            country = (transaction.destination_country or "").strip().upper()
            if country not in cond.countries:
                return None
            reasons.append(f"country={country}")

        return reasons

    def is_consistent(self, rule: MarkupRule, transaction: Transaction) -> bool:
        """True when every condition the rule specifies is satisfied."""
        return self._match(rule, transaction) is not None

    def specificity(self, rule: MarkupRule, transaction: Transaction) -> int:
        """
        Count of matched client, ship option and weight conditions (0-3).

        Inconsistent rules score -1; they are never candidates.
        """
        if not self.is_consistent(rule, transaction):
            return -1

        score = 0
        if isinstance(rule.scope, ClientScope):
            score += 1
        if rule.ship_option_id or rule.conditions.ship_option_ids:
            score += 1
        if rule.conditions.has_weight:
            score += 1
        return score

    def select(self, transaction: Transaction, candidates: Iterable[MarkupRule]) -> RuleSelection:
        """
        Pick the most specific consistent rule, applying the tie-break policy.

        Misconfigured candidates are dropped and returned in `rule_issues`.
        """
        candidates = list(candidates)
        issues = []
        scored = []
        for rule in candidates:
            problems = check_rule_configuration(rule)
            if problems:
                issue = InvalidRuleConfigurationError(rule.rule_id, problems)
                logger.warning("Skipping candidate: %s", issue)
                issues.append(issue)
                continue
            reasons = self._match(rule, transaction)
            if reasons is None:
                continue
            scored.append((rule, self.specificity(rule, transaction), reasons))

        if not scored:
            raise NoMatchingRuleError(
                transaction.fee_type, transaction.billing_category, transaction.transaction_id,
                rule_issues=issues,
            )

        best_score = max(score for _, score, _ in scored)
        tied = [entry for entry in scored if entry[1] == best_score]
        runners_up = sorted(rule.rule_id for rule, score, _ in scored if score < best_score)
        tie_break = None

        if len(tied) > 1:
            client_specific = [entry for entry in tied if entry[0].is_client_specific]
            if client_specific and len(client_specific) < len(tied):
                tie_break = "client-specific over global"
                runners_up.extend(e[0].rule_id for e in tied if not e[0].is_client_specific)
                tied = client_specific

        if len(tied) > 1:
            latest = max(entry[0].effective_from for entry in tied)
            newest = [entry for entry in tied if entry[0].effective_from == latest]
            if len(newest) < len(tied):
                tie_break = "most recent effective_from"
                runners_up.extend(e[0].rule_id for e in tied if e[0].effective_from != latest)
                tied = newest

        if len(tied) > 1:
            raise AmbiguousRuleError([entry[0].rule_id for entry in tied], transaction.transaction_id)

        rule, score, reasons = tied[0]
        logger.debug(
            "Transaction %s -> rule %s (specificity %d)",
            transaction.transaction_id, rule.rule_id, score,
        )
        return RuleSelection(
            rule=rule,
            specificity=score,
            match_reason=", ".join(reasons) if reasons else "default",
            considered=len(candidates),
            consistent=len(scored),
            tie_break=tie_break,
            runners_up=sorted(runners_up),
            rule_issues=issues,
        )

    def select_rule(self, transaction: Transaction, candidates: Iterable[MarkupRule]) -> MarkupRule:
        """Return the winning rule or raise NoMatchingRuleError / AmbiguousRuleError."""
        return self.select(transaction, candidates).rule

    def resolve(self, transaction: Transaction, as_of_date: Optional[date] = None) -> RuleSelection:
        """Prefilter the catalog for the transaction, then select."""
        return self.select(transaction, self.candidate_rules(transaction, as_of_date))
