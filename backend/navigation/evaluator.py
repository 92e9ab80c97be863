"""
Runtime evaluator: pick the next destination once a respondent completes a section.

Pure and deterministic. Given a validated NavigationSpec, the ordered sections
of the form and the answers captured for the current section, it always yields
exactly one outcome: another section, or submit.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Sequence

from navigation.rules import (
    ChoiceSetValue,
    ConditionalRule,
    NavigationSpec,
    NavigationTarget,
    Operator,
    RangeValue,
    SectionRef,
    TargetKind,
    section_after,
)

logger = logging.getLogger(__name__)


class NavigationInvariantError(RuntimeError):
    """The caller handed the evaluator inconsistent data. Never recoverable."""


class OutcomeType(str, Enum):
    SECTION = "SECTION"
    SUBMIT = "SUBMIT"


@dataclass(frozen=True)
class NavigationOutcome:
    type: OutcomeType
    section_id: Optional[str] = None

    @classmethod
    def go_to(cls, section_id):
        return cls(OutcomeType.SECTION, section_id)

    @classmethod
    def submit(cls):
        return cls(OutcomeType.SUBMIT)

    @property
    def is_submit(self):
        return self.type is OutcomeType.SUBMIT

    def to_dict(self):
        if self.is_submit:
            return {"type": self.type.value}
        return {"type": self.type.value, "section_id": self.section_id}


# ── Answer normalisation ──────────────────────────────────────

def _is_unanswered(answer):
    if answer is None:
        return True
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, (list, tuple, set, frozenset)):
        return not answer
    return False


def _text(value):
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _single(answer):
    """The one value of a single-select answer, or None if there isn't exactly one."""
    if isinstance(answer, (list, tuple, set, frozenset)):
        return _text(next(iter(answer))) if len(answer) == 1 else None
    return _text(answer)


def _selected(answer):
    if isinstance(answer, (list, tuple, set, frozenset)):
        return {_text(v) for v in answer}
    return {_text(answer)}


def _number(value):
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# ── Rule matching ─────────────────────────────────────────────

def rule_matches(rule: ConditionalRule, answer) -> bool:
    """True when ``answer`` satisfies ``rule``. Unanswered never matches."""
    if _is_unanswered(answer):
        return False

    op = rule.operator
    value = rule.value

    if op in (Operator.EQUALS, Operator.NOT_EQUALS):
        given = _single(answer)
        if given is None:
            return False
        equal = given == value.value
        return equal if op is Operator.EQUALS else not equal

    if op is Operator.CONTAINS:
        return value.value in _selected(answer)

    if isinstance(value, ChoiceSetValue):
        selected = _selected(answer)
        wanted = set(value.values)
        if op is Operator.ANY_OF:
            return bool(selected & wanted)
        if op is Operator.ALL_OF:
            return wanted <= selected
        if op is Operator.NONE_OF:
            return not (selected & wanted)
        return False

    number = _number(_single(answer))
    if number is None:
        return False

    if isinstance(value, RangeValue):
        low, high = _number(value.low), _number(value.high)
        if low is None or high is None:
            return False
        return low <= number <= high

    threshold = _number(value.value)
    if threshold is None:
        return False
    if op is Operator.GREATER_THAN:
        return number > threshold
    if op is Operator.LESS_THAN:
        return number < threshold
    return False


def _resolve_target(target: NavigationTarget, section_order, sections):
    if target.kind is TargetKind.SUBMIT:
        return NavigationOutcome.submit()
    if target.kind is TargetKind.SECTION:
        return NavigationOutcome.go_to(target.section_id)
    following = section_after(sections, section_order)
    if following is None:
        return NavigationOutcome.submit()
    return NavigationOutcome.go_to(following.id)


def resolve_next(
    spec: NavigationSpec,
    section_order: int,
    sections: Sequence[SectionRef],
    answers: Mapping[str, object],
) -> NavigationOutcome:
    """Decide where a respondent goes after the section at ``section_order``.

    Rules are tried in stored order and the first match wins; otherwise the
    default target applies. Linear specs skip the rules entirely.

    Raises:
        NavigationInvariantError: ``section_order`` belongs to none of
            ``sections``, or an active rule reads a field outside that section.
    """
    current = next((s for s in sections if s.order == section_order), None)
    if current is None:
        raise NavigationInvariantError(
            f"Section order {section_order} is not part of the supplied sections"
        )
    for rule in spec.active_rules:
        if current.field_by_id(rule.field_id) is None:
            raise NavigationInvariantError(
                f"Rule {rule.id} reads field {rule.field_id}, "
                f"which is not in section {current.id}"
            )

    for rule in spec.active_rules:
        if rule_matches(rule, answers.get(rule.field_id)):
            logger.debug("Rule %s matched on field %s", rule.id, rule.field_id)
            return _resolve_target(rule.target_section_id, section_order, sections)

    return _resolve_target(spec.default_target, section_order, sections)
