from dataclasses import replace
from datetime import datetime
from flask import Blueprint, current_app, request, jsonify
from sqlalchemy import func
from extensions import db
from models import Field, Form, Section
from navigation import (
    LogicFormatError,
    NavigationSpec,
    create_empty_rule,
    detect_circular_references,
    drop_field_rules,
    get_operator_label,
    get_valid_operators,
    remap_fields,
    rewrite_references,
    supports_conditional_logic,
    validate,
)
from routes import (
    VALID_FIELD_TYPES,
    audit,
    load_form_graph,
    validate_required,
    validation_failed,
)

sections_bp = Blueprint("sections", __name__, url_prefix="/api/v1")


def _cycle_conflict(message, report):
    errors = [
        "Circular navigation detected: " + " → ".join(cycle) for cycle in report.cycles
    ]
    return jsonify({"error": message, "errors": errors, "cycles": report.cycles}), 409


def _next_order(form_id):
    last = db.session.query(func.max(Section.order)).filter_by(form_id=form_id).scalar()
    return (last or 0) + 1


def _next_field_order(section_id):
    last = db.session.query(func.max(Field.order)).filter_by(section_id=section_id).scalar()
    return (last or 0) + 1


# ── Sections ──────────────────────────────────────────────────

@sections_bp.post("/forms/<form_id>/sections")
def create_section(form_id):
    Form.query.get_or_404(form_id)
    data = request.get_json(silent=True) or {}
    section = Section(
        form_id=form_id,
        title=(data.get("title") or "").strip() or "Untitled section",
        description=(data.get("description") or "").strip() or None,
        order=_next_order(form_id),
    )
    db.session.add(section)
    db.session.flush()
    audit("section.created", "section", section.id, {"form_id": form_id})
    db.session.commit()
    return jsonify(section.to_dict(include_fields=True)), 201


@sections_bp.put("/sections/<section_id>")
def update_section(section_id):
    section = Section.query.get_or_404(section_id)
    data = request.get_json(silent=True) or {}

    if "title" in data:
        title = (data["title"] or "").strip()
        if not title:
            return jsonify({"error": "Title cannot be empty"}), 400
        section.title = title
    if "description" in data:
        section.description = (data["description"] or "").strip() or None

    section.updated_at = datetime.utcnow()
    db.session.commit()
    return jsonify(section.to_dict())


@sections_bp.delete("/sections/<section_id>")
def delete_section(section_id):
    """Delete a section after re-pointing every reference to it at NEXT."""
    section = Section.query.get_or_404(section_id)
    form_id = section.form_id
    sections, refs, specs = load_form_graph(form_id)
    if len(sections) <= 1:
        return jsonify({"error": "A form must keep at least one section"}), 400

    rewrites = rewrite_references(specs, section_id)
    remaining_refs = [r for r in refs if r.id != section_id]
    remaining_specs = {sid: spec for sid, spec in specs.items() if sid != section_id}
    remaining_specs.update(rewrites)

    report = detect_circular_references(remaining_refs, remaining_specs)
    if report.has_circular_reference:
        current_app.logger.info(
            "Refused to delete section %s: rewrite would create %d cycle(s)",
            section_id, len(report.cycles),
        )
        return _cycle_conflict(
            "Deleting this section would create circular navigation", report
        )

    remaining = [s for s in sections if s.id != section_id]
    for s in remaining:
        if s.id in rewrites:
            s.navigation_logic = rewrites[s.id].to_dict()
            s.updated_at = datetime.utcnow()
    Field.query.filter_by(section_id=section_id).delete(synchronize_session=False)
    db.session.delete(section)
    db.session.flush()

    # Renumbering keeps the relative order, so NEXT edges are unchanged
    for order, s in enumerate(remaining, start=1):
        s.order = order

    audit("section.deleted", "section", section_id, {
        "form_id": form_id,
        "rewritten_sections": sorted(rewrites),
    })
    db.session.commit()
    return jsonify({"deleted": True, "rewritten_sections": sorted(rewrites)})


@sections_bp.put("/forms/<form_id>/sections/reorder")
def reorder_sections(form_id):
    Form.query.get_or_404(form_id)
    data = request.get_json(silent=True)
    entries = data.get("sections", []) if isinstance(data, dict) else None
    if not isinstance(entries, list) or not entries:
        return jsonify({"error": "Missing required fields: sections"}), 400

    sections, refs, specs = load_form_graph(form_id)
    by_id = {s.id: s for s in sections}
    new_orders = {}
    for entry in entries:
        sid = entry.get("id") if isinstance(entry, dict) else None
        order = entry.get("order") if isinstance(entry, dict) else None
        if not isinstance(sid, str) or sid not in by_id:
            return jsonify({"error": f"Section {sid} does not belong to this form"}), 400
        if not isinstance(order, int) or isinstance(order, bool):
            return jsonify({"error": "Section order must be an integer"}), 400
        new_orders[sid] = order

    final = {s.id: new_orders.get(s.id, s.order) for s in sections}
    if len(set(final.values())) != len(final):
        return jsonify({"error": "Section order values must be unique"}), 400

    reordered = [replace(ref, order=final[ref.id]) for ref in refs]
    report = detect_circular_references(reordered, specs)
    if report.has_circular_reference:
        return _cycle_conflict("This order would create circular navigation", report)

    for s in sections:
        s.order = final[s.id]
    audit("section.reordered", "form", form_id, {"orders": final})
    db.session.commit()
    return jsonify([s.to_dict() for s in sorted(sections, key=lambda s: s.order)])


@sections_bp.post("/sections/<section_id>/duplicate")
def duplicate_section(section_id):
    source = Section.query.get_or_404(section_id)
    copy = Section(
        form_id=source.form_id,
        title=f"{source.title} (Copy)",
        description=source.description,
        order=_next_order(source.form_id),
        is_repeatable=source.is_repeatable,
        repeat_count=source.repeat_count,
    )
    db.session.add(copy)
    db.session.flush()

    id_map = {}
    for f in source.ordered_fields():
        new_field = f.copy_to(copy.id)
        db.session.add(new_field)
        db.session.flush()
        id_map[f.id] = new_field.id

    copy.navigation_logic = remap_fields(source.logic, id_map).to_dict()
    db.session.flush()

    _, refs, specs = load_form_graph(source.form_id)
    report = detect_circular_references(refs, specs)
    if report.has_circular_reference:
        db.session.rollback()
        return _cycle_conflict("Duplicating this section would create circular navigation", report)

    audit("section.duplicated", "section", copy.id, {"source_section_id": section_id})
    db.session.commit()
    return jsonify(copy.to_dict(include_fields=True)), 201


@sections_bp.put("/sections/<section_id>/repeat")
def update_repeatability(section_id):
    section = Section.query.get_or_404(section_id)
    data = request.get_json(silent=True) or {}
    is_repeatable = bool(data.get("is_repeatable", False))
    repeat_count = data.get("repeat_count")
    max_repeat = current_app.config["MAX_REPEAT_COUNT"]

    if is_repeatable:
        if not isinstance(repeat_count, int) or not (1 <= repeat_count <= max_repeat):
            return jsonify({"error": f"Repeat count must be between 1 and {max_repeat}"}), 400
        logic = section.logic
        if logic.is_conditional and logic.rules:
            return jsonify({
                "error": "Cannot enable repeatability on sections with conditional "
                         "navigation. Please remove conditional logic first."
            }), 409

    section.is_repeatable = is_repeatable
    section.repeat_count = repeat_count if is_repeatable else 1
    db.session.commit()
    return jsonify(section.to_dict())


# ── Fields ────────────────────────────────────────────────────

def _apply_field_data(field, data):
    if "question" in data:
        question = (data["question"] or "").strip()
        if not question:
            return "Question cannot be empty"
        field.question = question
    if "type" in data:
        if data["type"] not in VALID_FIELD_TYPES:
            return f"Invalid field type. Must be one of: {', '.join(sorted(VALID_FIELD_TYPES))}"
        field.type = data["type"]
    if "required" in data:
        field.required = bool(data["required"])
    if "options" in data:
        if data["options"] is not None and not isinstance(data["options"], list):
            return "options must be a list"
        field.options = data["options"]
    for key in ("min_value", "max_value"):
        if key in data:
            setattr(field, key, data[key])
    return None


@sections_bp.post("/sections/<section_id>/fields")
def create_field(section_id):
    Section.query.get_or_404(section_id)
    data = request.get_json(silent=True) or {}
    if err := validate_required(data, "question", "type"):
        return err

    field = Field(section_id=section_id, order=_next_field_order(section_id))
    if error := _apply_field_data(field, data):
        return jsonify({"error": error}), 400
    db.session.add(field)
    db.session.commit()
    return jsonify(field.to_dict()), 201


@sections_bp.put("/fields/<field_id>")
def update_field(field_id):
    field = Field.query.get_or_404(field_id)
    data = request.get_json(silent=True) or {}
    # Type changes are allowed; rules built on the old type fail at the next logic save
    if error := _apply_field_data(field, data):
        return jsonify({"error": error}), 400
    db.session.commit()
    return jsonify(field.to_dict())


@sections_bp.delete("/fields/<field_id>")
def delete_field(field_id):
    field = Field.query.get_or_404(field_id)
    section = db.session.get(Section, field.section_id)
    logic = section.logic
    trimmed = drop_field_rules(logic, field_id)
    dropped = len(logic.rules) - len(trimmed.rules)
    if dropped:
        section.navigation_logic = trimmed.to_dict()
        section.updated_at = datetime.utcnow()
        audit("section.logic_rules_dropped", "section", section.id, {
            "field_id": field_id, "dropped_rules": dropped,
        })
    db.session.delete(field)
    db.session.commit()
    return jsonify({"deleted": True, "dropped_rules": dropped})


@sections_bp.post("/fields/<field_id>/duplicate")
def duplicate_field(field_id):
    source = Field.query.get_or_404(field_id)
    copy = source.copy_to(
        source.section_id,
        question=f"{source.question} (Copy)",
        order=_next_field_order(source.section_id),
    )
    db.session.add(copy)
    db.session.commit()
    return jsonify(copy.to_dict()), 201


@sections_bp.put("/sections/<section_id>/fields/reorder")
def reorder_fields(section_id):
    Section.query.get_or_404(section_id)
    data = request.get_json(silent=True)
    entries = data.get("fields", []) if isinstance(data, dict) else None
    if not isinstance(entries, list) or not entries:
        return jsonify({"error": "Missing required fields: fields"}), 400

    by_id = {f.id: f for f in Field.query.filter_by(section_id=section_id).all()}
    new_orders = {}
    for entry in entries:
        fid = entry.get("id") if isinstance(entry, dict) else None
        order = entry.get("order") if isinstance(entry, dict) else None
        if not isinstance(fid, str) or fid not in by_id:
            return jsonify({"error": f"Field {fid} does not belong to this section"}), 400
        if not isinstance(order, int) or isinstance(order, bool):
            return jsonify({"error": "Field order must be an integer"}), 400
        new_orders[fid] = order

    for fid, order in new_orders.items():
        by_id[fid].order = order
    db.session.commit()
    return jsonify([f.to_dict() for f in sorted(by_id.values(), key=lambda f: f.order)])


@sections_bp.post("/fields/<field_id>/move")
def move_field(field_id):
    """Move a field to another section of the same form.

    Rules in the old section that read this field are dropped, since a rule
    may only depend on its own section's answers.
    """
    field = Field.query.get_or_404(field_id)
    data = request.get_json(silent=True) or {}
    if err := validate_required(data, "section_id"):
        return err

    source = db.session.get(Section, field.section_id)
    target = None
    if isinstance(data["section_id"], str):
        target = db.session.get(Section, data["section_id"])
    if target is None or target.form_id != source.form_id:
        return jsonify({"error": "Target section must belong to the same form"}), 400

    order = data.get("order")
    if order is not None and (not isinstance(order, int) or isinstance(order, bool)):
        return jsonify({"error": "Field order must be an integer"}), 400

    dropped = 0
    if target.id != source.id:
        logic = source.logic
        trimmed = drop_field_rules(logic, field_id)
        dropped = len(logic.rules) - len(trimmed.rules)
        if dropped:
            source.navigation_logic = trimmed.to_dict()
            source.updated_at = datetime.utcnow()
        if order is None:
            order = _next_field_order(target.id)
        field.section_id = target.id
        audit("field.moved", "field", field_id, {
            "from_section_id": source.id,
            "to_section_id": target.id,
            "dropped_rules": dropped,
        })
    if order is not None:
        field.order = order

    db.session.commit()
    return jsonify({**field.to_dict(), "dropped_rules": dropped})


# ── Navigation logic ──────────────────────────────────────────

def _parse_logic(data):
    if data is None:
        return None, (jsonify({"error": "Request body must be a navigation logic object"}), 400)
    try:
        return NavigationSpec.from_dict(data), None
    except LogicFormatError as exc:
        return None, (jsonify({"error": str(exc)}), 400)


def _validate_proposal(section, spec):
    _, refs, specs = load_form_graph(section.form_id)
    result = validate(refs, specs, section.id, spec)
    if section.is_repeatable and spec.is_conditional and spec.rules:
        result.errors.append("Repeatable sections cannot use conditional navigation")
        result.valid = False
    return result


@sections_bp.get("/sections/<section_id>/logic")
def get_section_logic(section_id):
    section = Section.query.get_or_404(section_id)
    conditional_fields = []
    for f in section.ordered_fields():
        if not supports_conditional_logic(f.type):
            continue
        conditional_fields.append({
            "id": f.id,
            "question": f.question,
            "type": f.type,
            "options": f.options or [],
            "operators": [
                {"value": op.value, "label": get_operator_label(op)}
                for op in get_valid_operators(f.type)
            ],
            "empty_rule": create_empty_rule(f.id, f.type).to_dict(),
        })
    targets = (
        Section.query
        .filter(Section.form_id == section.form_id, Section.id != section.id)
        .order_by(Section.order)
        .all()
    )
    return jsonify({
        "section": section.to_dict(),
        "logic": section.logic.to_dict(),
        "conditional_fields": conditional_fields,
        "target_sections": [{"id": s.id, "title": s.title, "order": s.order} for s in targets],
    })


@sections_bp.post("/sections/<section_id>/logic/validate")
def validate_section_logic(section_id):
    section = Section.query.get_or_404(section_id)
    spec, err = _parse_logic(request.get_json(silent=True))
    if err:
        return err
    return jsonify(_validate_proposal(section, spec).to_dict())


@sections_bp.put("/sections/<section_id>/logic")
def update_section_logic(section_id):
    """Persist a section's navigation logic, but only if the whole graph stays valid."""
    section = Section.query.get_or_404(section_id)
    spec, err = _parse_logic(request.get_json(silent=True))
    if err:
        return err

    result = _validate_proposal(section, spec)
    if not result.valid:
        return validation_failed("Navigation logic is invalid", result), 422

    section.navigation_logic = spec.to_dict()
    section.updated_at = datetime.utcnow()
    audit("section.logic_updated", "section", section_id, {
        "type": spec.type.value,
        "rule_count": len(spec.rules),
    })
    db.session.commit()
    return jsonify(section.to_dict())
