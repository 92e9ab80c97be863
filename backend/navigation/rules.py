"""
Navigation rule model for multi-section forms.

A section carries one NavigationSpec describing where a respondent goes after
completing it: straight on (linear) or through an ordered list of conditional
rules keyed on that section's own answers, with a default target as fallback.

Wire format (stored in Section.navigation_logic):
    {
      "type": "linear" | "conditional",
      "default_target": "NEXT" | "SUBMIT" | <section id>,
      "rules": [
        {"id", "field_id", "field_type", "operator", "value", "target_section_id"}
      ]
    }
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple, Union


class LogicFormatError(ValueError):
    """Raised when a payload cannot be read as a navigation spec at all."""


class LogicType(str, Enum):
    LINEAR = "linear"
    CONDITIONAL = "conditional"


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    CONTAINS = "contains"
    ANY_OF = "any_of"
    ALL_OF = "all_of"
    NONE_OF = "none_of"


SET_OPERATORS = frozenset({Operator.ANY_OF, Operator.ALL_OF, Operator.NONE_OF})
RANGE_OPERATORS = frozenset({Operator.BETWEEN})

OPERATOR_LABELS = {
    Operator.EQUALS: "is equal to",
    Operator.NOT_EQUALS: "is not equal to",
    Operator.GREATER_THAN: "is greater than",
    Operator.LESS_THAN: "is less than",
    Operator.BETWEEN: "is between",
    Operator.CONTAINS: "contains",
    Operator.ANY_OF: "contains any of",
    Operator.ALL_OF: "contains all of",
    Operator.NONE_OF: "contains none of",
}

# ── Field type families ───────────────────────────────────────

SINGLE_CHOICE_TYPES = frozenset({"MULTIPLE_CHOICE", "DROPDOWN"})
MULTI_CHOICE_TYPES = frozenset({"CHECKBOXES"})
NUMERIC_TYPES = frozenset({"RATING", "LINEAR_SCALE"})
CONDITIONAL_FIELD_TYPES = SINGLE_CHOICE_TYPES | MULTI_CHOICE_TYPES | NUMERIC_TYPES

_SINGLE_CHOICE_OPERATORS = (Operator.EQUALS, Operator.NOT_EQUALS)
_MULTI_CHOICE_OPERATORS = (
    Operator.ANY_OF, Operator.ALL_OF, Operator.NONE_OF, Operator.CONTAINS,
)
_NUMERIC_OPERATORS = (
    Operator.EQUALS, Operator.NOT_EQUALS,
    Operator.GREATER_THAN, Operator.LESS_THAN, Operator.BETWEEN,
)


def get_valid_operators(field_type) -> Tuple[Operator, ...]:
    """Ordered operators a field type may drive. Unknown types get none."""
    if field_type in SINGLE_CHOICE_TYPES:
        return _SINGLE_CHOICE_OPERATORS
    if field_type in MULTI_CHOICE_TYPES:
        return _MULTI_CHOICE_OPERATORS
    if field_type in NUMERIC_TYPES:
        return _NUMERIC_OPERATORS
    return ()


def is_valid_operator(field_type, operator) -> bool:
    return operator in get_valid_operators(field_type)


def supports_conditional_logic(field_type) -> bool:
    return field_type in CONDITIONAL_FIELD_TYPES


def get_operator_label(operator) -> str:
    return OPERATOR_LABELS[Operator(operator)]


# ── Rule values ───────────────────────────────────────────────

@dataclass(frozen=True)
class ScalarValue:
    value: str = ""

    def is_empty(self):
        return not self.value.strip()

    def to_json(self):
        return self.value


@dataclass(frozen=True)
class ChoiceSetValue:
    values: Tuple[str, ...] = ()

    def is_empty(self):
        return not [v for v in self.values if v.strip()]

    def to_json(self):
        return list(self.values)


@dataclass(frozen=True)
class RangeValue:
    low: str = ""
    high: str = ""

    def is_empty(self):
        return not self.low.strip() or not self.high.strip()

    def to_json(self):
        return [self.low, self.high]


RuleValue = Union[ScalarValue, ChoiceSetValue, RangeValue]


def _as_text(raw) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bool):
        return str(raw).lower()
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw)


def empty_value_for(operator) -> RuleValue:
    operator = Operator(operator)
    if operator in SET_OPERATORS:
        return ChoiceSetValue()
    if operator in RANGE_OPERATORS:
        return RangeValue()
    return ScalarValue()


def coerce_value(operator, raw) -> RuleValue:
    """Fit a raw JSON value to the shape the operator expects.

    Mirrors the editing dialog: a lone value becomes a one-item set, a range
    operator without a pair starts from two blanks, and a list handed to a
    scalar operator is reset to blank.
    """
    operator = Operator(operator)
    if operator in SET_OPERATORS:
        if isinstance(raw, (list, tuple)):
            return ChoiceSetValue(tuple(_as_text(v) for v in raw))
        text = _as_text(raw)
        return ChoiceSetValue((text,) if text else ())
    if operator in RANGE_OPERATORS:
        if isinstance(raw, (list, tuple)) and len(raw) == 2:
            return RangeValue(_as_text(raw[0]), _as_text(raw[1]))
        return RangeValue()
    if isinstance(raw, (list, tuple, dict)):
        return ScalarValue()
    return ScalarValue(_as_text(raw))


# ── Targets ───────────────────────────────────────────────────

class TargetKind(str, Enum):
    NEXT = "NEXT"
    SUBMIT = "SUBMIT"
    SECTION = "SECTION"


@dataclass(frozen=True)
class NavigationTarget:
    kind: TargetKind
    section_id: Optional[str] = None

    NEXT = None  # type: NavigationTarget
    SUBMIT = None  # type: NavigationTarget

    @classmethod
    def section(cls, section_id):
        return cls(TargetKind.SECTION, str(section_id))

    @classmethod
    def parse(cls, raw):
        if raw is None or raw == "" or raw == TargetKind.NEXT.value:
            return cls.NEXT
        if raw == TargetKind.SUBMIT.value:
            return cls.SUBMIT
        if not isinstance(raw, (str, int)) or isinstance(raw, bool):
            raise LogicFormatError(f"Invalid navigation target: {raw!r}")
        return cls.section(raw)

    @property
    def is_section(self):
        return self.kind is TargetKind.SECTION

    def points_to(self, section_id):
        return self.is_section and self.section_id == section_id

    def to_json(self):
        return self.section_id if self.is_section else self.kind.value


NavigationTarget.NEXT = NavigationTarget(TargetKind.NEXT)
NavigationTarget.SUBMIT = NavigationTarget(TargetKind.SUBMIT)


# ── Rules & specs ─────────────────────────────────────────────

@dataclass(frozen=True)
class ConditionalRule:
    id: str
    field_id: str
    field_type: str
    operator: Operator
    value: RuleValue
    target_section_id: NavigationTarget = NavigationTarget.NEXT

    def __post_init__(self):
        expected = type(empty_value_for(self.operator))
        if type(self.value) is not expected:
            raise LogicFormatError(
                f"Operator '{Operator(self.operator).value}' takes a "
                f"{expected.__name__}, got {type(self.value).__name__}"
            )

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise LogicFormatError("Each rule must be an object")
        field_id = data.get("field_id")
        if not field_id:
            raise LogicFormatError("Rule is missing field_id")
        raw_operator = data.get("operator") or Operator.EQUALS.value
        try:
            operator = Operator(raw_operator)
        except ValueError:
            raise LogicFormatError(f"Unknown operator '{raw_operator}'") from None
        return cls(
            id=str(data.get("id") or _new_rule_id()),
            field_id=str(field_id),
            field_type=str(data.get("field_type") or ""),
            operator=operator,
            value=coerce_value(operator, data.get("value")),
            target_section_id=NavigationTarget.parse(data.get("target_section_id")),
        )

    def to_dict(self):
        return {
            "id": self.id,
            "field_id": self.field_id,
            "field_type": self.field_type,
            "operator": self.operator.value,
            "value": self.value.to_json(),
            "target_section_id": self.target_section_id.to_json(),
        }


@dataclass(frozen=True)
class NavigationSpec:
    type: LogicType = LogicType.LINEAR
    rules: Tuple[ConditionalRule, ...] = ()
    default_target: NavigationTarget = NavigationTarget.NEXT

    @property
    def is_conditional(self):
        return self.type is LogicType.CONDITIONAL

    @property
    def active_rules(self):
        """Rules only count in conditional mode."""
        return self.rules if self.is_conditional else ()

    def targets(self):
        """Every destination this spec can lead to, rule targets first."""
        return [r.target_section_id for r in self.active_rules] + [self.default_target]

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return create_default_logic()
        if not isinstance(data, dict):
            raise LogicFormatError("Navigation logic must be an object")
        raw_type = data.get("type") or LogicType.LINEAR.value
        try:
            logic_type = LogicType(raw_type)
        except ValueError:
            raise LogicFormatError(f"Unknown navigation type '{raw_type}'") from None
        raw_rules = data.get("rules") or []
        if not isinstance(raw_rules, list):
            raise LogicFormatError("rules must be a list")
        return cls(
            type=logic_type,
            rules=tuple(ConditionalRule.from_dict(r) for r in raw_rules),
            default_target=NavigationTarget.parse(data.get("default_target")),
        )

    def to_dict(self):
        return {
            "type": self.type.value,
            "default_target": self.default_target.to_json(),
            "rules": [r.to_dict() for r in self.rules],
        }


def _new_rule_id():
    return f"rule_{uuid.uuid4().hex[:12]}"


def create_default_logic() -> NavigationSpec:
    return NavigationSpec(LogicType.LINEAR, (), NavigationTarget.NEXT)


def create_empty_rule(field_id, field_type) -> ConditionalRule:
    operators = get_valid_operators(field_type)
    operator = operators[0] if operators else Operator.EQUALS
    return ConditionalRule(
        id=_new_rule_id(),
        field_id=field_id,
        field_type=field_type,
        operator=operator,
        value=empty_value_for(operator),
        target_section_id=NavigationTarget.NEXT,
    )


# ── Section snapshots ─────────────────────────────────────────

@dataclass(frozen=True)
class FieldRef:
    id: str
    type: str
    options: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SectionRef:
    id: str
    order: int
    title: str = ""
    fields: Tuple[FieldRef, ...] = ()

    def field_by_id(self, field_id):
        return next((f for f in self.fields if f.id == field_id), None)

    @property
    def label(self):
        return f'"{self.title}"' if self.title else self.id


def section_after(sections: Sequence[SectionRef], order) -> Optional[SectionRef]:
    """The section with the smallest order strictly greater than ``order``."""
    later = [s for s in sections if s.order > order]
    return min(later, key=lambda s: s.order) if later else None
