"""Tests for the runtime evaluator that picks a respondent's next section."""

from dataclasses import replace

import pytest

from navigation.evaluator import (
    NavigationInvariantError,
    NavigationOutcome,
    OutcomeType,
    resolve_next,
    rule_matches,
)
from navigation.rules import (
    ConditionalRule,
    LogicType,
    NavigationSpec,
    NavigationTarget,
    Operator,
    coerce_value,
    create_default_logic,
)


def _rule(field_id, operator, value, target="S3", rule_id=None, field_type="MULTIPLE_CHOICE"):
    return ConditionalRule(
        id=rule_id or f"r_{field_id}_{operator}",
        field_id=field_id,
        field_type=field_type,
        operator=Operator(operator),
        value=coerce_value(operator, value),
        target_section_id=NavigationTarget.parse(target),
    )


def _conditional(*rules, default="NEXT"):
    return NavigationSpec(LogicType.CONDITIONAL, tuple(rules), NavigationTarget.parse(default))


@pytest.fixture
def sections(make_sections):
    return make_sections(
        "S1", "S2", "S3",
        fields={"S1": [("F1", "MULTIPLE_CHOICE"), ("F2", "MULTIPLE_CHOICE")]},
    )


class TestSimpleBranch:
    """S1 has F1 (yes/no) with one rule: F1 == yes -> S3, default NEXT."""

    @pytest.fixture
    def spec(self):
        return _conditional(_rule("F1", "equals", "yes", target="S3"))

    def test_yes_jumps_to_s3(self, spec, sections):
        outcome = resolve_next(spec, 1, sections, {"F1": "yes"})
        assert outcome == NavigationOutcome.go_to("S3")
        assert outcome.to_dict() == {"type": "SECTION", "section_id": "S3"}

    def test_no_falls_through_to_next(self, spec, sections):
        assert resolve_next(spec, 1, sections, {"F1": "no"}) == NavigationOutcome.go_to("S2")

    def test_deterministic(self, spec, sections):
        outcomes = {resolve_next(spec, 1, sections, {"F1": "yes"}) for _ in range(5)}
        assert len(outcomes) == 1


def test_first_match_wins(sections):
    spec = _conditional(
        _rule("F1", "equals", "yes", target="S2", rule_id="first"),
        _rule("F2", "equals", "no", target="SUBMIT", rule_id="second"),
        _rule("F1", "not_equals", "maybe", target="S3", rule_id="third"),
    )
    outcome = resolve_next(spec, 1, sections, {"F1": "yes", "F2": "yes"})
    assert outcome == NavigationOutcome.go_to("S2")


def test_linear_ignores_rules(sections):
    spec = NavigationSpec(
        LogicType.LINEAR,
        (_rule("F1", "equals", "yes", target="S3"),),
        NavigationTarget.NEXT,
    )
    assert resolve_next(spec, 1, sections, {"F1": "yes"}) == NavigationOutcome.go_to("S2")


def test_last_section_next_submits(sections):
    outcome = resolve_next(create_default_logic(), 3, sections, {})
    assert outcome.type is OutcomeType.SUBMIT
    assert outcome.to_dict() == {"type": "SUBMIT"}


def test_next_uses_smallest_greater_order(make_sections):
    gapped = [replace(s, order=s.order * 10) for s in make_sections("A", "B", "C")]
    assert resolve_next(create_default_logic(), 10, gapped, {}) == NavigationOutcome.go_to("B")


def test_default_submit_and_concrete_targets(sections):
    assert resolve_next(_conditional(default="SUBMIT"), 1, sections, {}).is_submit
    assert resolve_next(_conditional(default="S3"), 1, sections, {}) == NavigationOutcome.go_to("S3")


def test_rule_target_next_and_submit(sections):
    to_next = _conditional(_rule("F1", "equals", "yes", target="NEXT"), default="SUBMIT")
    assert resolve_next(to_next, 1, sections, {"F1": "yes"}) == NavigationOutcome.go_to("S2")
    to_submit = _conditional(_rule("F1", "equals", "yes", target="SUBMIT"))
    assert resolve_next(to_submit, 1, sections, {"F1": "yes"}).is_submit


def test_unanswered_field_falls_through(sections):
    spec = _conditional(
        _rule("F1", "not_equals", "yes", target="S3"),
        default="SUBMIT",
    )
    for answers in ({}, {"F1": None}, {"F1": ""}, {"F1": []}):
        assert resolve_next(spec, 1, sections, answers).is_submit


def test_unknown_section_order_is_fatal(sections):
    with pytest.raises(NavigationInvariantError):
        resolve_next(create_default_logic(), 7, sections, {})


def test_rule_on_field_outside_section_is_fatal(sections):
    spec = _conditional(_rule("ghost", "equals", "3", target="S3"))
    with pytest.raises(NavigationInvariantError, match="ghost"):
        resolve_next(spec, 1, sections, {"ghost": "3"})


def test_linear_spec_with_stale_rules_still_resolves(sections):
    spec = NavigationSpec(
        LogicType.LINEAR,
        (_rule("ghost", "equals", "3", target="S3"),),
        NavigationTarget.NEXT,
    )
    assert resolve_next(spec, 1, sections, {"ghost": "3"}) == NavigationOutcome.go_to("S2")


class TestRuleMatching:

    def test_equals_is_case_sensitive_and_exact(self):
        rule = _rule("f", "equals", "Yes")
        assert rule_matches(rule, "Yes")
        assert not rule_matches(rule, "yes")
        assert not rule_matches(rule, "Yes ")

    def test_equals_on_single_item_list(self):
        assert rule_matches(_rule("f", "equals", "a"), ["a"])
        assert not rule_matches(_rule("f", "equals", "a"), ["a", "b"])

    def test_numeric_equals_compares_text(self):
        rule = _rule("f", "equals", "4", field_type="RATING")
        assert rule_matches(rule, 4)
        assert rule_matches(rule, 4.0)
        assert not rule_matches(rule, 5)

    def test_not_equals(self):
        assert rule_matches(_rule("f", "not_equals", "a"), "b")
        assert not rule_matches(_rule("f", "not_equals", "a"), "a")

    @pytest.mark.parametrize("operator,value,answer,expected", [
        ("any_of", ["a", "b"], ["b", "c"], True),
        ("any_of", ["a", "b"], ["c"], False),
        ("all_of", ["a", "b"], ["a", "b", "c"], True),
        ("all_of", ["a", "b"], ["a"], False),
        ("none_of", ["a", "b"], ["c"], True),
        ("none_of", ["a", "b"], ["c", "a"], False),
        ("contains", "a", ["a", "z"], True),
        ("contains", "a", ["z"], False),
        ("any_of", ["a"], "a", True),
    ])
    def test_set_operators(self, operator, value, answer, expected):
        assert rule_matches(_rule("f", operator, value, field_type="CHECKBOXES"), answer) is expected

    @pytest.mark.parametrize("operator,value,answer,expected", [
        ("greater_than", "3", 4, True),
        ("greater_than", "3", "3", False),
        ("less_than", "3", "2.5", True),
        ("less_than", "3", 3, False),
        ("between", ["2", "4"], 2, True),
        ("between", ["2", "4"], "4", True),
        ("between", ["2", "4"], 4.5, False),
        ("between", ["2", "4"], 1, False),
    ])
    def test_numeric_operators(self, operator, value, answer, expected):
        assert rule_matches(_rule("f", operator, value, field_type="RATING"), answer) is expected

    def test_non_numeric_answer_does_not_match(self):
        assert not rule_matches(_rule("f", "greater_than", "3", field_type="RATING"), "lots")
        assert not rule_matches(_rule("f", "between", ["1", "5"], field_type="RATING"), "three")
