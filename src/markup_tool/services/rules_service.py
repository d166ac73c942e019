"""
Rules Service - CRUD operations for markup rules.
Handles reading/writing rules.csv, change history and auto-compiling to JSON.

update_rule edits a rule in place, so re-running any period it covers prices
at the new values. A price change from a date forward is a supersede instead
(close the old rule's window, insert a new rule), which leaves earlier
periods pricing as they were billed.
"""
import csv
import json
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Optional

from ..engine.models import MarkupRule
from ..engine.rule_matcher import check_rule_configuration
from ..rules.compile_rules import (
    CSV_COLUMNS,
    RuleCompileError,
    compile_rules,
    read_rules_csv,
    rule_from_dict,
    rule_to_csv_row,
    rule_to_dict,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of rule validation."""
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)


def _windows_overlap(a: MarkupRule, b: MarkupRule) -> bool:
    a_end = a.effective_to or date.max
    b_end = b.effective_to or date.max
    return a.effective_from <= b_end and b.effective_from <= a_end


def _ship_options(rule: MarkupRule) -> Optional[set]:
    if rule.ship_option_id:
        return {rule.ship_option_id}
    if rule.conditions.ship_option_ids:
        return set(rule.conditions.ship_option_ids)
    return None


def _intersects(a, b) -> bool:
    """None means unrestricted."""
    if not a or not b:
        return True
    return bool(set(a) & set(b))


def _weights_overlap(a: MarkupRule, b: MarkupRule) -> bool:
    a_min = a.conditions.weight_min_oz or 0
    b_min = b.conditions.weight_min_oz or 0
    a_max = a.conditions.weight_max_oz if a.conditions.weight_max_oz is not None else float('inf')
    b_max = b.conditions.weight_max_oz if b.conditions.weight_max_oz is not None else float('inf')
    return a_min < b_max and b_min < a_max


def rules_can_tie(a: MarkupRule, b: MarkupRule) -> bool:
    """
    True when one transaction could satisfy both rules at the same specificity
    with the same scope, so only effective_from can separate them.
    """
    if a.scope != b.scope:
        return False
    if (a.fee_type, a.billing_category) != (b.fee_type, b.billing_category):
        return False
    if not (a.is_active and b.is_active):
        return False
    if (_ship_options(a) is None) != (_ship_options(b) is None):
        return False
    if a.conditions.has_weight != b.conditions.has_weight:
        return False
    return (
        _windows_overlap(a, b)
        and _intersects(_ship_options(a), _ship_options(b))
        and _weights_overlap(a, b)
        and _intersects(a.conditions.states, b.conditions.states)
        and _intersects(a.conditions.countries, b.conditions.countries)
    )


class RulesService:
    """Service for managing markup rules."""

    CSV_COLUMNS = CSV_COLUMNS

    def __init__(self, rules_csv_path: Path, compiled_rules_path: Path, history_path: Optional[Path] = None):
        self.rules_csv_path = rules_csv_path
        self.compiled_rules_path = compiled_rules_path
        self.history_path = history_path or rules_csv_path.with_name('rule_history.jsonl')

    def list_rules(self, include_inactive: bool = True) -> list[MarkupRule]:
        """List all rules from CSV."""
        if not self.rules_csv_path.exists():
            return []

        rules, errors = read_rules_csv(self.rules_csv_path)
        if errors:
            raise RuleCompileError(errors)

        if include_inactive:
            return rules
        return [r for r in rules if r.is_active]

    def get_rule(self, rule_id: str) -> Optional[MarkupRule]:
        """Get a single rule by ID."""
        for rule in self.list_rules():
            if rule.rule_id == rule_id:
                return rule
        return None

    def create_rule(
        self,
        rule: MarkupRule,
        auto_compile: bool = True,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
    ) -> MarkupRule:
        """Create a new rule."""
        if not rule.rule_id:
            rule = replace(rule, rule_id=self._generate_rule_id(rule))

        if self.get_rule(rule.rule_id):
            raise ValueError(f"Rule with ID '{rule.rule_id}' already exists")

        validation = self.validate_rule(rule)
        if not validation.valid:
            raise ValueError("; ".join(validation.errors))

        rules = self.list_rules()
        rules.append(rule)
        self._write_rules(rules)
        self._record_change(rule.rule_id, 'created', None, rule, changed_by, change_reason)

        if auto_compile:
            self.compile_rules()

        return rule

    def update_rule(
        self,
        rule_id: str,
        updates: dict,
        auto_compile: bool = True,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
    ) -> MarkupRule:
        """
        Update an existing rule.

        `updates` uses the compiled JSON field names (client_id, conditions
        as a dict, dates as ISO strings or date objects).
        """
        rules = self.list_rules()
        index = next((i for i, r in enumerate(rules) if r.rule_id == rule_id), None)
        if index is None:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        current = rules[index]
        data = rule_to_dict(current)
        for key, value in updates.items():
            if key == 'rule_id' or key not in data:
                continue
            if isinstance(value, date):
                value = value.isoformat()
            data[key] = value
        updated = rule_from_dict(data)

        validation = self.validate_rule(updated)
        if not validation.valid:
            raise ValueError("; ".join(validation.errors))

        rules[index] = updated
        self._write_rules(rules)
        self._record_change(rule_id, 'updated', current, updated, changed_by, change_reason)

        if auto_compile:
            self.compile_rules()

        return updated

    def deactivate_rule(
        self,
        rule_id: str,
        auto_compile: bool = True,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
    ) -> MarkupRule:
        """Deactivate a rule. Rules are kept for invoice traceability."""
        rules = self.list_rules()
        index = next((i for i, r in enumerate(rules) if r.rule_id == rule_id), None)
        if index is None:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        current = rules[index]
        rules[index] = replace(current, is_active=False)
        self._write_rules(rules)
        self._record_change(rule_id, 'deactivated', current, rules[index], changed_by, change_reason)

        if auto_compile:
            self.compile_rules()

        return rules[index]

    def supersede_rule(
        self,
        rule_id: str,
        changes: dict,
        effective_from: date,
        new_rule_id: Optional[str] = None,
        auto_compile: bool = True,
        changed_by: Optional[str] = None,
        change_reason: Optional[str] = None,
    ) -> tuple[MarkupRule, MarkupRule]:
        """
        Close an existing rule the day before `effective_from` and insert its
        replacement starting on `effective_from`.

        Returns (closed_rule, new_rule).
        """
        rules = self.list_rules()
        index = next((i for i, r in enumerate(rules) if r.rule_id == rule_id), None)
        if index is None:
            raise ValueError(f"Rule with ID '{rule_id}' not found")

        current = rules[index]
        if effective_from <= current.effective_from:
            raise ValueError(
                f"New effective_from {effective_from.isoformat()} must be after "
                f"{current.effective_from.isoformat()}"
            )
        if current.effective_to is not None and effective_from > current.effective_to + timedelta(days=1):
            raise ValueError(f"Rule '{rule_id}' already ended on {current.effective_to.isoformat()}")

        closed = replace(current, effective_to=effective_from - timedelta(days=1))

        data = rule_to_dict(current)
        data.update({k: v for k, v in changes.items() if k in data and k != 'rule_id'})
        data['effective_from'] = effective_from.isoformat()
        data['effective_to'] = changes.get('effective_to')
        if isinstance(data['effective_to'], date):
            data['effective_to'] = data['effective_to'].isoformat()
        data['rule_id'] = new_rule_id or current.rule_id
        successor = rule_from_dict(data)
        if not new_rule_id:
            successor = replace(successor, rule_id=self._generate_rule_id(successor))

        if any(r.rule_id == successor.rule_id for r in rules):
            raise ValueError(f"Rule with ID '{successor.rule_id}' already exists")

        rules[index] = closed
        validation = self._validate_against(successor, rules)
        if not validation.valid:
            raise ValueError("; ".join(validation.errors))

        rules.append(successor)
        self._write_rules(rules)
        self._record_change(rule_id, 'superseded', current, closed, changed_by, change_reason)
        self._record_change(successor.rule_id, 'created', None, successor, changed_by, change_reason)

        if auto_compile:
            self.compile_rules()

        return closed, successor

    def validate_rule(self, rule: MarkupRule) -> ValidationResult:
        """Validate a rule before saving."""
        return self._validate_against(rule, self.list_rules())

    def _validate_against(self, rule: MarkupRule, existing_rules: list[MarkupRule]) -> ValidationResult:
        result = ValidationResult(valid=True)

        for problem in check_rule_configuration(rule):
            result.errors.append(problem)
            result.valid = False

        if not rule.name:
            result.errors.append("Name is required")
            result.valid = False

        # Warn if the rule has already ended
        if rule.effective_to and rule.effective_to < date.today():
            result.warnings.append("Rule has expired (effective_to is in the past)")

        if result.valid:
            for existing in existing_rules:
                if existing.rule_id == rule.rule_id or not rules_can_tie(rule, existing):
                    continue
                if existing.effective_from == rule.effective_from:
                    result.conflicts.append(existing.rule_id)
                    result.errors.append(
                        f"Ambiguous with rule '{existing.rule_id}': same scope, conditions "
                        f"and effective_from {rule.effective_from.isoformat()}"
                    )
                    result.valid = False
                else:
                    result.warnings.append(
                        f"Overlaps rule '{existing.rule_id}'; the later effective_from wins "
                        "while both are active"
                    )

        return result

    def _generate_rule_id(self, rule: MarkupRule) -> str:
        """Generate a unique rule ID."""
        base = re.sub(r'[^A-Z0-9]+', '-', rule.fee_type.upper()).strip('-')[:12] or "RULE"
        if rule.client_id:
            base = f"{rule.client_id}-{base}"
        if rule.ship_option_id:
            base += f"-S{rule.ship_option_id}"

        # Ensure uniqueness
        existing_ids = {r.rule_id for r in self.list_rules()}
        candidate = base
        counter = 1
        while candidate in existing_ids:
            candidate = f"{base}-{counter}"
            counter += 1

        return candidate

    def _write_rules(self, rules: list[MarkupRule]):
        """Write rules back to CSV."""
        self.rules_csv_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.rules_csv_path, 'w', encoding='utf-8', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.CSV_COLUMNS)
            writer.writeheader()
            for rule in rules:
                writer.writerow(rule_to_csv_row(rule))

    def _record_change(
        self,
        rule_id: str,
        change_type: str,
        previous: Optional[MarkupRule],
        new: Optional[MarkupRule],
        changed_by: Optional[str],
        change_reason: Optional[str],
    ):
        """Append a history entry for a rule change."""
        entry = {
            "rule_id": rule_id,
            "change_type": change_type,
            "previous_values": rule_to_dict(previous) if previous else None,
            "new_values": rule_to_dict(new) if new else None,
            "changed_by": changed_by,
            "change_reason": change_reason,
            "changed_at": datetime.now().isoformat(),
        }
        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.history_path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(entry) + "\n")
        logger.info("Rule %s %s", rule_id, change_type)

    def get_history(self, rule_id: str) -> list[dict]:
        """Get rule change history, newest first."""
        if not self.history_path.exists():
            return []
        entries = []
        with open(self.history_path, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                entry = json.loads(line)
                if entry.get('rule_id') == rule_id:
                    entries.append(entry)
        entries.reverse()
        return entries

    def compile_rules(self) -> tuple[bool, str]:
        """Compile rules.csv into compiled_rules.json."""
        success, rules, errors = compile_rules(
            self.rules_csv_path, self.compiled_rules_path, verbose=False
        )
        if success:
            return True, f"Compiled {len(rules)} rules"
        return False, "\n".join(errors)

    def get_stats(self) -> dict:
        """Get statistics about rules."""
        rules = self.list_rules()
        today = date.today()

        active = [r for r in rules if r.is_active]
        expired = [r for r in rules if r.effective_to and r.effective_to < today]
        by_scope = {}
        by_category = {}
        for r in rules:
            scope = r.client_id or 'Global'
            by_scope[scope] = by_scope.get(scope, 0) + 1
            by_category[r.billing_category] = by_category.get(r.billing_category, 0) + 1

        return {
            'total': len(rules),
            'active': len(active),
            'inactive': len(rules) - len(active),
            'expired': len(expired),
            'by_scope': by_scope,
            'by_category': by_category,
        }
