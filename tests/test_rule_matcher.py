from datetime import date

import pytest

from conftest import make_rule, make_tx
from markup_tool.engine.errors import AmbiguousRuleError, NoMatchingRuleError
from markup_tool.engine.models import bracket_bounds, weight_bracket_for
from markup_tool.engine.rule_matcher import RuleMatcher, check_rule_configuration


def test_most_specific_rule_wins(shipping_rules):
    """Ship 146 at 7lbs satisfies all three rules; the weight-bracket rule wins."""
    matcher = RuleMatcher(shipping_rules)
    tx = make_tx(ship_option_id='146', weight_oz=112)

    selection = matcher.resolve(tx)

    assert selection.rule.rule_id == 'STD-SHIP146-5-10LB'
    assert selection.specificity == 2
    assert selection.consistent == 3
    assert selection.runners_up == ['STD-GLOBAL', 'STD-SHIP146']


def test_fallback_to_less_specific_rules(shipping_rules):
    """Outside the bracket the ship-option rule wins; other ship options get the default."""
    matcher = RuleMatcher(shipping_rules)

    light = matcher.resolve(make_tx(ship_option_id='146', weight_oz=6))
    assert light.rule.rule_id == 'STD-SHIP146'
    assert light.specificity == 1

    other = matcher.resolve(make_tx(ship_option_id='3', weight_oz=112))
    assert other.rule.rule_id == 'STD-GLOBAL'
    assert other.specificity == 0
    assert other.match_reason == 'default'


def test_weight_bracket_is_half_open(shipping_rules):
    """The lower bound is inclusive and the upper bound exclusive."""
    matcher = RuleMatcher(shipping_rules)

    assert matcher.resolve(make_tx(ship_option_id='146', weight_oz=80)).rule.rule_id == 'STD-SHIP146-5-10LB'
    assert matcher.resolve(make_tx(ship_option_id='146', weight_oz=159.99)).rule.rule_id == 'STD-SHIP146-5-10LB'
    assert matcher.resolve(make_tx(ship_option_id='146', weight_oz=160)).rule.rule_id == 'STD-SHIP146'


def test_missing_weight_does_not_satisfy_weight_condition(shipping_rules):
    matcher = RuleMatcher(shipping_rules)
    selection = matcher.resolve(make_tx(ship_option_id='146', weight_oz=None))
    assert selection.rule.rule_id == 'STD-SHIP146'


def test_weight_bracket_labels():
    assert weight_bracket_for(0) == '<8oz'
    assert weight_bracket_for(7.99) == '<8oz'
    assert weight_bracket_for(8) == '8-16oz'
    assert weight_bracket_for(16) == '1-5lbs'
    assert weight_bracket_for(112) == '5-10lbs'
    assert weight_bracket_for(319.9) == '15-20lbs'
    assert weight_bracket_for(320) == '20+lbs'
    assert bracket_bounds('5-10lbs') == (80, 160)
    assert bracket_bounds('20+lbs') == (320, None)

    with pytest.raises(ValueError):
        weight_bracket_for(-1)
    with pytest.raises(ValueError):
        bracket_bounds('heavy')


def test_client_rule_beats_global_rule_at_equal_specificity():
    """A client rule and a global ship-option rule both score 1; the client rule wins."""
    rules = [
        make_rule('STD-SHIP146', '18', ship_option_id='146'),
        make_rule('C100-STD', '12', client_id='C-100'),
    ]
    selection = RuleMatcher(rules).resolve(make_tx(ship_option_id='146'))

    assert selection.rule.rule_id == 'C100-STD'
    assert selection.specificity == 1
    assert selection.tie_break == 'client-specific over global'
    assert 'STD-SHIP146' in selection.runners_up


def test_client_rule_does_not_apply_to_other_clients():
    rules = [make_rule('STD-GLOBAL', '14'), make_rule('C100-STD', '12', client_id='C-100')]
    selection = RuleMatcher(rules).resolve(make_tx(client_id='C-200'))
    assert selection.rule.rule_id == 'STD-GLOBAL'


def test_latest_effective_from_breaks_remaining_tie():
    rules = [
        make_rule('STD-2025', '14', effective_from=date(2025, 1, 1)),
        make_rule('STD-2025H2', '16', effective_from=date(2025, 7, 1)),
    ]
    matcher = RuleMatcher(rules)

    selection = matcher.resolve(make_tx(charge_date=date(2025, 8, 1)))
    assert selection.rule.rule_id == 'STD-2025H2'
    assert selection.tie_break == 'most recent effective_from'

    # Before the newer rule starts only the older one is a candidate
    assert matcher.resolve(make_tx(charge_date=date(2025, 6, 30))).rule.rule_id == 'STD-2025'


def test_unresolvable_tie_is_ambiguous():
    rules = [make_rule('STD-B', '14'), make_rule('STD-A', '15')]
    matcher = RuleMatcher(rules)

    with pytest.raises(AmbiguousRuleError) as excinfo:
        matcher.resolve(make_tx(transaction_id='T-9'))

    assert excinfo.value.rule_ids == ['STD-A', 'STD-B']
    assert excinfo.value.to_dict()['error'] == 'ambiguous_rule'
    assert excinfo.value.to_dict()['transaction_id'] == 'T-9'


def test_no_matching_rule():
    matcher = RuleMatcher([make_rule('STD-GLOBAL', '14')])

    with pytest.raises(NoMatchingRuleError) as excinfo:
        matcher.resolve(make_tx(fee_type='Kitting Fee', billing_category='shipment_fees'))

    assert excinfo.value.fee_type == 'Kitting Fee'
    assert excinfo.value.billing_category == 'shipment_fees'


def test_select_rule_with_empty_candidates_raises():
    matcher = RuleMatcher([])
    with pytest.raises(NoMatchingRuleError):
        matcher.select_rule(make_tx(), [])


def test_select_rule_filters_inconsistent_candidates(shipping_rules):
    """Caller-supplied candidates still go through the consistency filter."""
    matcher = RuleMatcher()
    rule = matcher.select_rule(make_tx(ship_option_id='3', weight_oz=100), shipping_rules)
    assert rule.rule_id == 'STD-GLOBAL'


def test_specificity_and_consistency(shipping_rules):
    matcher = RuleMatcher()
    tx = make_tx(ship_option_id='146', weight_oz=6)
    glob, ship, heavy = shipping_rules

    assert matcher.specificity(glob, tx) == 0
    assert matcher.specificity(ship, tx) == 1
    assert not matcher.is_consistent(heavy, tx)
    assert matcher.specificity(heavy, tx) == -1

    client_rule = make_rule(
        'C100-HEAVY', '30', client_id='C-100', ship_option_id='146',
        conditions={'weight_min_oz': 0, 'weight_max_oz': 8},
    )
    assert matcher.specificity(client_rule, tx) == 3


def test_ship_option_list_counts_once():
    rule = make_rule(
        'STD-GROUND', '17', ship_option_id='146',
        conditions={'ship_option_ids': ['146', '3']},
    )
    list_only = make_rule('STD-LIST', '16', conditions={'ship_option_ids': ['3', '7']})
    matcher = RuleMatcher()

    assert matcher.specificity(rule, make_tx(ship_option_id='146')) == 1
    assert matcher.specificity(list_only, make_tx(ship_option_id='7')) == 1
    assert not matcher.is_consistent(list_only, make_tx(ship_option_id='146'))


def test_destination_conditions_filter_but_do_not_score():
    west = make_rule('STD-WEST', '15', conditions={'states': ['ca', 'wa'], 'countries': ['us']})
    matcher = RuleMatcher()

    tx = make_tx(destination_state='ca', destination_country='US')
    assert matcher.is_consistent(west, tx)
    assert matcher.specificity(west, tx) == 0
    assert not matcher.is_consistent(west, make_tx(destination_state='NY', destination_country='US'))
    assert not matcher.is_consistent(west, make_tx())


def test_candidate_prefilter():
    rules = [
        make_rule('STD-GLOBAL', '14'),
        make_rule('STD-OFF', '99', is_active=False),
        make_rule('STD-OLD', '10', effective_to=date(2024, 12, 31), effective_from=date(2024, 1, 1)),
        make_rule('FBA-GLOBAL', '10', fee_type='FBA'),
        make_rule('STD-RETURNS', '15', billing_category='returns'),
    ]
    matcher = RuleMatcher(rules)

    candidates = matcher.candidate_rules(make_tx())
    assert [r.rule_id for r in candidates] == ['STD-GLOBAL']


def test_effective_window_is_inclusive():
    rule = make_rule('STD-Q1', '14', effective_from=date(2025, 1, 1), effective_to=date(2025, 3, 31))
    matcher = RuleMatcher([rule])

    assert matcher.candidate_rules(make_tx(charge_date=date(2025, 1, 1)))
    assert matcher.candidate_rules(make_tx(charge_date=date(2025, 3, 31)))
    assert not matcher.candidate_rules(make_tx(charge_date=date(2025, 4, 1)))
    assert not matcher.candidate_rules(make_tx(charge_date=date(2024, 12, 31)))


def test_as_of_date_fills_missing_charge_date_and_caps_catalog():
    rules = [
        make_rule('STD-2025', '14', effective_from=date(2025, 1, 1)),
        make_rule('STD-2026', '16', effective_from=date(2026, 1, 1)),
    ]
    matcher = RuleMatcher(rules)

    undated = make_tx(charge_date=None)
    assert matcher.resolve(undated, as_of_date=date(2026, 2, 1)).rule.rule_id == 'STD-2026'
    assert matcher.resolve(undated, as_of_date=date(2025, 12, 1)).rule.rule_id == 'STD-2025'

    # Rules created after the invoice snapshot are ignored
    dated = make_tx(charge_date=date(2026, 1, 15))
    assert matcher.resolve(dated, as_of_date=date(2025, 12, 31)).rule.rule_id == 'STD-2025'

    with pytest.raises(ValueError):
        matcher.candidate_rules(undated)


def test_invalid_rules_are_excluded_and_reported():
    rules = [
        make_rule('STD-GLOBAL', '14'),
        make_rule('STD-BACKWARDS', '20', effective_from=date(2025, 6, 1), effective_to=date(2025, 5, 1)),
        make_rule('STD-INVERTED', '20', conditions={'weight_min_oz': 160, 'weight_max_oz': 80}),
    ]
    matcher = RuleMatcher(rules)

    assert [r.rule_id for r in matcher.rules] == ['STD-GLOBAL']
    assert sorted(issue.rule_id for issue in matcher.rule_issues) == ['STD-BACKWARDS', 'STD-INVERTED']
    assert matcher.resolve(make_tx(weight_oz=100)).rule.rule_id == 'STD-GLOBAL'


def test_check_rule_configuration_problems():
    assert check_rule_configuration(make_rule('OK', '14')) == []

    problems = check_rule_configuration(make_rule('BAD', '-1', billing_category='freight', markup_type='tiered'))
    assert "unknown billing_category 'freight'" in problems
    assert "unknown markup_type 'tiered'" in problems
    assert "markup_value must not be negative" in problems

    mismatch = make_rule('MIX', '14', ship_option_id='9', conditions={'ship_option_ids': ['3']})
    assert check_rule_configuration(mismatch) == ["ship_option_id is not in conditions.ship_option_ids"]


def test_bracket_boundaries_resolve_to_upper_bracket():
    """8oz belongs to 8-16oz and 320oz to 20+lbs when rules are split at those points."""
    rules = [
        make_rule('STD-LT8', '10', conditions={'weight_min_oz': 0, 'weight_max_oz': 8}),
        make_rule('STD-8-16', '12', conditions={'weight_min_oz': 8, 'weight_max_oz': 16}),
        make_rule('STD-15-20LB', '20', conditions={'weight_min_oz': 240, 'weight_max_oz': 320}),
        make_rule('STD-20LB-PLUS', '22', conditions={'weight_min_oz': 320}),
    ]
    matcher = RuleMatcher(rules)

    assert matcher.resolve(make_tx(weight_oz=7.99)).rule.rule_id == 'STD-LT8'
    assert matcher.resolve(make_tx(weight_oz=8)).rule.rule_id == 'STD-8-16'
    assert matcher.resolve(make_tx(weight_oz=319.99)).rule.rule_id == 'STD-15-20LB'
    assert matcher.resolve(make_tx(weight_oz=320)).rule.rule_id == 'STD-20LB-PLUS'
    assert matcher.resolve(make_tx(weight_oz=5000)).rule.rule_id == 'STD-20LB-PLUS'


def test_select_rule_skips_misconfigured_candidates():
    """Caller-supplied candidates are checked too; a broken rule is never billed."""
    broken = make_rule('BAD', '-50', effective_from=date(2025, 6, 1), effective_to=date(2025, 1, 1))
    matcher = RuleMatcher()

    with pytest.raises(NoMatchingRuleError) as excinfo:
        matcher.select_rule(make_tx(), [broken])
    assert [issue.rule_id for issue in excinfo.value.rule_issues] == ['BAD']
    assert excinfo.value.to_dict()['rule_issues'][0]['error'] == 'invalid_rule_configuration'

    selection = matcher.select(make_tx(), [broken, make_rule('STD-GLOBAL', '14')])
    assert selection.rule.rule_id == 'STD-GLOBAL'
    assert [issue.rule_id for issue in selection.rule_issues] == ['BAD']
    assert 'markup_value must not be negative' in selection.rule_issues[0].problems


def test_non_finite_markup_value_is_misconfigured():
    assert check_rule_configuration(make_rule('NAN', 'NaN')) == ["markup_value must be a finite number"]
    assert check_rule_configuration(make_rule('INF', 'Infinity')) == ["markup_value must be a finite number"]
