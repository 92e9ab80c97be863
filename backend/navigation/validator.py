"""
Graph validator for section navigation logic.

Runs before a section's navigation spec is persisted. Structural problems and
circular navigation are collected into one list so the editor can show every
problem at once; nothing here raises for user-authored mistakes.

The navigation graph is rebuilt from scratch on every call: one node per
section, one edge per possible destination (every rule target plus the default
target). A respondent's answers aren't known in advance, so any path through
any combination of edges counts.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence

from navigation.rules import (
    NUMERIC_TYPES,
    NavigationSpec,
    NavigationTarget,
    Operator,
    RangeValue,
    SectionRef,
    TargetKind,
    create_default_logic,
    get_valid_operators,
    section_after,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)

    def to_dict(self):
        return {"valid": self.valid, "errors": self.errors, "cycles": self.cycles}


@dataclass
class CycleReport:
    has_circular_reference: bool
    cycles: List[List[str]] = field(default_factory=list)

    def to_dict(self):
        return {
            "has_circular_reference": self.has_circular_reference,
            "cycles": self.cycles,
        }


# ── Graph ─────────────────────────────────────────────────────

def _resolve_edge(target: NavigationTarget, section: SectionRef, sections, known_ids):
    if target.kind is TargetKind.SUBMIT:
        return None
    if target.kind is TargetKind.NEXT:
        following = section_after(sections, section.order)
        return following.id if following else None
    return target.section_id if target.section_id in known_ids else None


def build_graph(
    sections: Sequence[SectionRef],
    specs_by_section: Mapping[str, NavigationSpec],
) -> Dict[str, List[str]]:
    """Adjacency map: section id -> distinct destination section ids.

    Sections without a stored spec fall back to the default linear logic.
    Targets naming unknown sections are left out; the structural checks
    report those separately.
    """
    known_ids = {s.id for s in sections}
    graph = {}
    for section in sections:
        spec = specs_by_section.get(section.id) or create_default_logic()
        destinations = []
        for target in spec.targets():
            dest = _resolve_edge(target, section, sections, known_ids)
            if dest is not None and dest not in destinations:
                destinations.append(dest)
        graph[section.id] = destinations
    return graph


def find_cycles(graph: Mapping[str, List[str]], start_order: Sequence[str] = None):
    """Depth-first search with a recursion stack, started from every section.

    Returns the cycles found via back edges, each once, as an id path closing
    on its first id, e.g. ``["A", "B", "A"]``. Every cyclic graph yields at
    least one, but cycles sharing already-visited nodes may go unlisted.
    """
    visited = set()
    on_stack = set()
    cycles = []
    seen_keys = set()

    def dfs(node, path):
        visited.add(node)
        on_stack.add(node)
        path.append(node)
        for neighbor in graph.get(node, ()):
            if neighbor in on_stack:
                loop = path[path.index(neighbor):]
                key = frozenset(loop), len(loop)
                if key not in seen_keys:
                    seen_keys.add(key)
                    cycles.append(loop + [neighbor])
            elif neighbor not in visited:
                dfs(neighbor, path)
        path.pop()
        on_stack.discard(node)

    for node in start_order or list(graph):
        if node not in visited:
            dfs(node, [])
    return cycles


def _cycle_message(cycle, titles):
    return "Circular navigation detected: " + " → ".join(
        titles.get(section_id) or section_id for section_id in cycle
    )


def detect_circular_references(
    sections: Sequence[SectionRef],
    specs_by_section: Mapping[str, NavigationSpec],
) -> CycleReport:
    """Form-wide cycle check over the stored navigation graph."""
    ordered = sorted(sections, key=lambda s: s.order)
    cycles = find_cycles(
        build_graph(ordered, specs_by_section), [s.id for s in ordered]
    )
    if cycles:
        logger.info("Found %d navigation cycle(s)", len(cycles))
    return CycleReport(bool(cycles), cycles)


# ── Structural checks ─────────────────────────────────────────

def _is_number(raw):
    try:
        float(raw)
    except (TypeError, ValueError):
        return False
    return True


def _value_errors(rule, field_type, position):
    prefix = f"Rule {position}"
    value = rule.value
    if value.is_empty():
        if rule.operator is Operator.BETWEEN:
            return [f"{prefix}: both a minimum and a maximum value are required"]
        if rule.operator in (Operator.ANY_OF, Operator.ALL_OF, Operator.NONE_OF):
            return [f"{prefix}: select at least one value"]
        return [f"{prefix}: a value is required"]

    if field_type not in NUMERIC_TYPES:
        return []
    if isinstance(value, RangeValue):
        if not (_is_number(value.low) and _is_number(value.high)):
            return [f"{prefix}: range bounds must be numbers"]
        if float(value.low) > float(value.high):
            return [f"{prefix}: range minimum must not exceed its maximum"]
        return []
    if not _is_number(value.value):
        return [f"{prefix}: value must be a number"]
    return []


def _rule_errors(rule, position, section, known_ids):
    errors = []
    field_ref = section.field_by_id(rule.field_id)
    if field_ref is None:
        errors.append(f"Rule {position}: field {rule.field_id} not found in section {section.label}")
    field_type = field_ref.type if field_ref else rule.field_type

    operators = get_valid_operators(field_type)
    if not operators:
        errors.append(f"Rule {position}: no conditional field selected")
    elif rule.operator not in operators:
        errors.append(
            f"Rule {position}: operator '{rule.operator.value}' is not valid for {field_type} fields"
        )
    errors.extend(_value_errors(rule, field_type, position))

    target = rule.target_section_id
    if target.is_section and target.section_id not in known_ids:
        errors.append(f"Rule {position}: target section {target.section_id} not found")
    if target.points_to(section.id):
        errors.append(f"Rule {position}: a section cannot navigate to itself")
    return errors


def validate(
    sections: Sequence[SectionRef],
    specs_by_section: Mapping[str, NavigationSpec],
    edited_section_id: str,
    edited_spec: NavigationSpec,
) -> ValidationResult:
    """Check a proposed spec for ``edited_section_id`` against the whole form.

    The proposal replaces the stored spec for that section; every other
    section keeps its stored spec. All problems are returned together.
    """
    ordered = sorted(sections, key=lambda s: s.order)
    by_id = {s.id: s for s in ordered}
    section = by_id.get(edited_section_id)
    if section is None:
        return ValidationResult(False, [f"Section {edited_section_id} not found"])

    errors = []
    for position, rule in enumerate(edited_spec.active_rules, start=1):
        errors.extend(_rule_errors(rule, position, section, by_id))

    default = edited_spec.default_target
    if default.is_section and default.section_id not in by_id:
        errors.append(f"Default target section {default.section_id} not found")

    specs = dict(specs_by_section)
    specs[edited_section_id] = edited_spec
    cycles = find_cycles(build_graph(ordered, specs), [s.id for s in ordered])
    titles = {s.id: s.title for s in ordered}
    errors.extend(_cycle_message(c, titles) for c in cycles)

    if errors:
        logger.info(
            "Rejected navigation logic for section %s: %d problem(s)",
            edited_section_id, len(errors),
        )
    return ValidationResult(not errors, errors, cycles)
