"""Engine subpackage - markup rule resolution and pricing."""
from .errors import AmbiguousRuleError, InvalidRuleConfigurationError, MarkupError, NoMatchingRuleError
from .markup_engine import MarkupEngine, compute_markup, price_transactions, round2
from .models import BatchResult, MarkupRule, PricedLine, RuleConditions, Transaction
from .rule_matcher import RuleMatcher

__all__ = [
    'MarkupEngine', 'RuleMatcher', 'compute_markup', 'price_transactions', 'round2',
    'MarkupRule', 'RuleConditions', 'Transaction', 'PricedLine', 'BatchResult',
    'MarkupError', 'NoMatchingRuleError', 'AmbiguousRuleError', 'InvalidRuleConfigurationError',
]
