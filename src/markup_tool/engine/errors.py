"""
Markup engine errors.

Errors are raised per transaction by the rule matcher and collected by the
batch pricer, so one bad transaction never aborts an invoice run.
"""
from typing import Optional


class MarkupError(Exception):
    """Base exception for markup resolution errors."""

    code = "markup_error"

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self)}


class NoMatchingRuleError(MarkupError):
    """No active rule's conditions are all satisfied by the transaction."""

    code = "no_matching_rule"

    def __init__(
        self,
        fee_type: str,
        billing_category: str,
        transaction_id: Optional[str] = None,
        rule_issues: Optional[list] = None,
    ):
        self.fee_type = fee_type
        self.billing_category = billing_category
        self.transaction_id = transaction_id
        # Misconfigured candidates that were dropped before selection
        self.rule_issues = list(rule_issues or [])
        super().__init__(
            f"No markup rule matches fee type '{fee_type}' in category '{billing_category}'"
            + (f" (transaction {transaction_id})" if transaction_id else "")
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "fee_type": self.fee_type,
            "billing_category": self.billing_category,
            "transaction_id": self.transaction_id,
        })
        if self.rule_issues:
            data["rule_issues"] = [issue.to_dict() for issue in self.rule_issues]
        return data


class AmbiguousRuleError(MarkupError):
    """Two or more rules remain tied after the tie-break policy."""

    code = "ambiguous_rule"

    def __init__(self, rule_ids: list[str], transaction_id: Optional[str] = None):
        self.rule_ids = sorted(rule_ids)
        self.transaction_id = transaction_id
        super().__init__(
            f"Ambiguous markup rules: {', '.join(self.rule_ids)}"
            + (f" (transaction {transaction_id})" if transaction_id else "")
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"rule_ids": self.rule_ids, "transaction_id": self.transaction_id})
        return data


class InvalidRuleConfigurationError(MarkupError):
    """A rule carries internally inconsistent data and cannot be a candidate."""

    code = "invalid_rule_configuration"

    def __init__(self, rule_id: str, problems: list[str]):
        self.rule_id = rule_id
        self.problems = list(problems)
        super().__init__(f"Rule {rule_id} is misconfigured: {'; '.join(self.problems)}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"rule_id": self.rule_id, "problems": self.problems})
        return data
