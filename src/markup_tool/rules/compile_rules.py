"""
Rule Compiler - Validates and compiles markup rules from CSV to JSON.

Reads rules.csv, validates every row, deserializes the conditions blob into
typed conditions once, and outputs compiled_rules.json.
"""
import csv
import json
import sys
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from ..engine.models import MarkupRule, RuleConditions, scope_for
from ..engine.rule_matcher import check_rule_configuration


CSV_COLUMNS = [
    'rule_id', 'name', 'client_id', 'fee_type', 'billing_category',
    'ship_option_id', 'conditions', 'markup_type', 'markup_value',
    'effective_from', 'effective_to', 'is_active', 'description',
]


class RuleCompileError(Exception):
    """Raised when rule data cannot be parsed."""

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


def parse_bool(value: str) -> bool:
    """Parse a boolean from CSV string."""
    return str(value).strip().lower() in ('true', '1', 'yes', 'on')


def parse_optional_str(value) -> Optional[str]:
    """Parse optional string (empty = None)."""
    if value is None or str(value).strip() == '':
        return None
    return str(value).strip()


def parse_date(value) -> Optional[date]:
    """Parse an ISO date (YYYY-MM-DD); empty = None."""
    text = parse_optional_str(value)
    if text is None:
        return None
    return date.fromisoformat(text[:10])


def parse_conditions(value) -> RuleConditions:
    """Parse the conditions JSON blob."""
    if isinstance(value, dict):
        return RuleConditions.from_dict(value)
    text = parse_optional_str(value)
    if text is None:
        return RuleConditions()
    return RuleConditions.from_dict(json.loads(text))


def validate_rule(row: dict, line_num: int) -> tuple[Optional[MarkupRule], list[str]]:
    """
    Validate and parse a rule from a CSV row.

    Returns (rule, errors) - rule is None if validation failed.
    """
    errors = []

    rule_id = parse_optional_str(row.get('rule_id', ''))
    if not rule_id:
        errors.append(f"Line {line_num}: rule_id is required")
        return None, errors

    name = parse_optional_str(row.get('name', '')) or rule_id

    fee_type = parse_optional_str(row.get('fee_type', ''))
    if not fee_type:
        errors.append(f"Line {line_num}: fee_type is required")

    billing_category = parse_optional_str(row.get('billing_category', '')) or ''
    markup_type = (parse_optional_str(row.get('markup_type', '')) or '').lower()

    markup_value = None
    value_str = parse_optional_str(row.get('markup_value', ''))
    if value_str is None:
        errors.append(f"Line {line_num}: markup_value is required")
    else:
        try:
            markup_value = Decimal(value_str)
        except InvalidOperation:
            errors.append(f"Line {line_num}: markup_value must be numeric")

    effective_from = effective_to = None
    try:
        effective_from = parse_date(row.get('effective_from', ''))
        if effective_from is None:
            errors.append(f"Line {line_num}: effective_from is required")
    except ValueError:
        errors.append(f"Line {line_num}: effective_from must be YYYY-MM-DD format")
    try:
        effective_to = parse_date(row.get('effective_to', ''))
    except ValueError:
        errors.append(f"Line {line_num}: effective_to must be YYYY-MM-DD format")

    conditions = RuleConditions()
    try:
        conditions = parse_conditions(row.get('conditions', ''))
    except (ValueError, TypeError) as e:
        errors.append(f"Line {line_num}: invalid conditions ({e})")

    if errors:
        return None, errors

    active_raw = row.get('is_active', '')
    rule = MarkupRule(
        rule_id=rule_id,
        name=name,
        scope=scope_for(row.get('client_id')),
        fee_type=fee_type,
        billing_category=billing_category,
        markup_type=markup_type,
        markup_value=markup_value,
        effective_from=effective_from,
        effective_to=effective_to,
        ship_option_id=parse_optional_str(row.get('ship_option_id', '')),
        conditions=conditions,
        is_active=parse_bool(active_raw) if parse_optional_str(active_raw) is not None else True,
        description=parse_optional_str(row.get('description', '')) or "",
    )

    for problem in check_rule_configuration(rule):
        errors.append(f"Line {line_num}: {problem}")
    if errors:
        return None, errors

    return rule, []


def rule_to_dict(rule: MarkupRule) -> dict:
    """JSON shape of a compiled rule."""
    return {
        "rule_id": rule.rule_id,
        "name": rule.name,
        "client_id": rule.client_id,
        "fee_type": rule.fee_type,
        "billing_category": rule.billing_category,
        "ship_option_id": rule.ship_option_id,
        "conditions": rule.conditions.to_dict(),
        "markup_type": rule.markup_type,
        "markup_value": str(rule.markup_value),
        "effective_from": rule.effective_from.isoformat(),
        "effective_to": rule.effective_to.isoformat() if rule.effective_to else None,
        "is_active": rule.is_active,
        "description": rule.description,
    }


def rule_from_dict(data: dict) -> MarkupRule:
    """Rebuild a rule from its JSON shape. Raises ValueError on bad data."""
    try:
        markup_value = Decimal(str(data['markup_value']))
    except (KeyError, InvalidOperation):
        raise ValueError(f"Rule {data.get('rule_id')}: markup_value missing or not numeric")

    effective_from = parse_date(data.get('effective_from'))
    if effective_from is None:
        raise ValueError(f"Rule {data.get('rule_id')}: effective_from is required")

    return MarkupRule(
        rule_id=str(data['rule_id']),
        name=data.get('name') or str(data['rule_id']),
        scope=scope_for(data.get('client_id')),
        fee_type=data.get('fee_type') or '',
        billing_category=data.get('billing_category') or '',
        markup_type=(data.get('markup_type') or '').lower(),
        markup_value=markup_value,
        effective_from=effective_from,
        effective_to=parse_date(data.get('effective_to')),
        ship_option_id=parse_optional_str(data.get('ship_option_id')),
        conditions=parse_conditions(data.get('conditions')),
        is_active=bool(data.get('is_active', True)),
        description=data.get('description') or "",
    )


def rule_to_csv_row(rule: MarkupRule) -> dict:
    """Convert to CSV row format."""
    data = rule_to_dict(rule)
    conditions = data['conditions']
    return {
        'rule_id': rule.rule_id,
        'name': rule.name,
        'client_id': rule.client_id or '',
        'fee_type': rule.fee_type,
        'billing_category': rule.billing_category,
        'ship_option_id': rule.ship_option_id or '',
        'conditions': json.dumps(conditions, sort_keys=True) if conditions else '',
        'markup_type': rule.markup_type,
        'markup_value': data['markup_value'],
        'effective_from': data['effective_from'],
        'effective_to': data['effective_to'] or '',
        'is_active': 'true' if rule.is_active else 'false',
        'description': rule.description or '',
    }


def read_rules_csv(rules_csv: Path) -> tuple[list[MarkupRule], list[str]]:
    """Parse every row of rules.csv. Returns (rules, errors)."""
    all_errors = []
    rules = []

    with open(rules_csv, 'r', newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)

        for line_num, row in enumerate(reader, start=2):  # +2 for 1-indexed header row
            rule, errors = validate_rule(row, line_num)

            if errors:
                all_errors.extend(errors)
            elif rule:
                rules.append(rule)

    seen = set()
    for rule in rules:
        if rule.rule_id in seen:
            all_errors.append(f"Duplicate rule_id '{rule.rule_id}'")
        seen.add(rule.rule_id)

    return rules, all_errors


def compile_rules(
    rules_csv: Path,
    output_json: Path,
    verbose: bool = True
) -> tuple[bool, list[MarkupRule], list[str]]:
    """
    Compile rules from CSV to JSON.

    Returns (success, rules, errors).
    """
    if not rules_csv.exists():
        return False, [], [f"Rules file not found: {rules_csv}"]

    rules, all_errors = read_rules_csv(rules_csv)

    if all_errors:
        if verbose:
            print("Validation errors:")
            for err in all_errors:
                print(f"  ❌ {err}")
        return False, rules, all_errors

    rules.sort(key=lambda r: r.rule_id)

    output_data = {
        "compiled_at": datetime.now().isoformat(),
        "source_file": str(rules_csv),
        "total_rules": len(rules),
        "active_rules": sum(1 for r in rules if r.is_active),
        "rules": [rule_to_dict(rule) for rule in rules],
    }

    output_json.parent.mkdir(parents=True, exist_ok=True)
    with open(output_json, 'w', encoding='utf-8') as f:
        json.dump(output_data, f, indent=2)

    if verbose:
        print(f"✅ Compiled {len(rules)} rules ({output_data['active_rules']} active)")
        print(f"   Output: {output_json}")

    return True, rules, []


def load_compiled_rules(path: Path) -> list[MarkupRule]:
    """Load rules from compiled_rules.json."""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    rules = []
    errors = []
    for entry in data.get('rules', []):
        try:
            rules.append(rule_from_dict(entry))
        except (ValueError, TypeError) as e:
            errors.append(str(e))

    if errors:
        raise RuleCompileError(errors)
    return rules


def main():
    """CLI entry point."""
    from ..config.settings import get_settings

    settings = get_settings()

    print("Compiling markup rules...")
    success, rules, errors = compile_rules(settings.rules_csv, settings.compiled_rules)

    if not success:
        print(f"\n❌ Compilation failed with {len(errors)} errors")
        sys.exit(1)


if __name__ == "__main__":
    main()
