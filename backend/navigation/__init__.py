"""Section navigation logic engine: rule model, graph validator, runtime evaluator."""

from navigation.rules import (  # noqa: F401
    ConditionalRule,
    FieldRef,
    LogicFormatError,
    LogicType,
    NavigationSpec,
    NavigationTarget,
    Operator,
    SectionRef,
    create_default_logic,
    create_empty_rule,
    get_operator_label,
    get_valid_operators,
    supports_conditional_logic,
)
from navigation.validator import (  # noqa: F401
    CycleReport,
    ValidationResult,
    detect_circular_references,
    validate,
)
from navigation.evaluator import (  # noqa: F401
    NavigationInvariantError,
    NavigationOutcome,
    OutcomeType,
    resolve_next,
)
from navigation.cleanup import (  # noqa: F401
    drop_field_rules,
    remap_fields,
    remap_sections,
    rewrite_references,
)
