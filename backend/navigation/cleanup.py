"""Rewrites applied to stored navigation specs when sections or fields go away."""

from dataclasses import replace
from typing import Dict, Mapping

from navigation.rules import NavigationSpec, NavigationTarget


def _retarget(target, deleted_section_id):
    return NavigationTarget.NEXT if target.points_to(deleted_section_id) else target


def rewrite_references(
    specs_by_section: Mapping[str, NavigationSpec],
    deleted_section_id: str,
) -> Dict[str, NavigationSpec]:
    """Point every reference to ``deleted_section_id`` at NEXT instead.

    Returns only the specs that changed, keyed by their owning section. The
    deleted section's own spec is never included.
    """
    rewritten = {}
    for section_id, spec in specs_by_section.items():
        if section_id == deleted_section_id:
            continue
        rules = tuple(
            replace(r, target_section_id=_retarget(r.target_section_id, deleted_section_id))
            for r in spec.rules
        )
        updated = replace(
            spec,
            rules=rules,
            default_target=_retarget(spec.default_target, deleted_section_id),
        )
        if updated != spec:
            rewritten[section_id] = updated
    return rewritten


def drop_field_rules(spec: NavigationSpec, field_id: str) -> NavigationSpec:
    """Remove the rules driven by a field that no longer exists."""
    return replace(spec, rules=tuple(r for r in spec.rules if r.field_id != field_id))


def remap_fields(spec: NavigationSpec, field_id_map: Mapping[str, str]) -> NavigationSpec:
    """Re-key rules onto copied fields, e.g. after duplicating a section."""
    return replace(spec, rules=tuple(
        replace(r, field_id=field_id_map.get(r.field_id, r.field_id)) for r in spec.rules
    ))


def _remap_target(target, section_id_map):
    if target.is_section and target.section_id in section_id_map:
        return NavigationTarget.section(section_id_map[target.section_id])
    return target


def remap_sections(spec: NavigationSpec, section_id_map: Mapping[str, str]) -> NavigationSpec:
    """Point section targets at their copies, e.g. after duplicating a whole form.

    NEXT, SUBMIT and ids missing from the map are left as they are.
    """
    return replace(
        spec,
        rules=tuple(
            replace(r, target_section_id=_remap_target(r.target_section_id, section_id_map))
            for r in spec.rules
        ),
        default_target=_remap_target(spec.default_target, section_id_map),
    )
