from datetime import datetime
from flask import Blueprint, request, jsonify
from sqlalchemy import or_
from extensions import db
from models import AuditLog, Form, Section
from navigation import detect_circular_references, remap_fields, remap_sections
from routes import audit, load_form_graph, paginate_query, validate_required

forms_bp = Blueprint("forms", __name__, url_prefix="/api/v1")


# ── Forms ─────────────────────────────────────────────────────

@forms_bp.get("/forms")
def list_forms():
    query = Form.query.filter_by(is_archived=request.args.get("archived") == "1")

    if search := request.args.get("search", "").strip():
        query = query.filter(
            or_(Form.title.ilike(f"%{search}%"), Form.description.ilike(f"%{search}%"))
        )

    sort = request.args.get("sort", "newest")
    if sort == "oldest":
        query = query.order_by(Form.created_at.asc())
    elif sort == "title":
        query = query.order_by(Form.title.asc())
    else:
        query = query.order_by(Form.created_at.desc())

    forms, pagination = paginate_query(query)
    resp = jsonify({
        "data": [f.to_dict() for f in forms],
        "pagination": pagination,
    })
    resp.headers["X-Total-Count"] = pagination["total"]
    return resp


@forms_bp.post("/forms")
def create_form():
    data = request.get_json(silent=True) or {}
    if err := validate_required(data, "title"):
        return err
    if len(data["title"].strip()) > 255:
        return jsonify({"error": "Title must be 255 characters or fewer"}), 400

    form = Form(
        title=data["title"].strip(),
        description=(data.get("description") or "").strip() or None,
    )
    db.session.add(form)
    db.session.flush()
    # Every form starts with one section so respondents always have somewhere to land
    db.session.add(Section(form_id=form.id, title="Section 1", order=1))
    audit("form.created", "form", form.id, {"title": form.title})
    db.session.commit()
    return jsonify(form.to_dict(include_sections=True)), 201


@forms_bp.get("/forms/<form_id>")
def get_form(form_id):
    form = Form.query.get_or_404(form_id)
    return jsonify(form.to_dict(include_sections=True))


@forms_bp.put("/forms/<form_id>")
def update_form(form_id):
    form = Form.query.get_or_404(form_id)
    data = request.get_json(silent=True) or {}

    if "title" in data:
        title = (data["title"] or "").strip()
        if not title:
            return jsonify({"error": "Title cannot be empty"}), 400
        form.title = title
    if "description" in data:
        form.description = (data["description"] or "").strip() or None

    form.updated_at = datetime.utcnow()
    audit("form.updated", "form", form_id, {"fields": list(data.keys())})
    db.session.commit()
    return jsonify(form.to_dict())


@forms_bp.delete("/forms/<form_id>")
def archive_form(form_id):
    """Soft delete — moves to archive, recoverable."""
    form = Form.query.get_or_404(form_id)
    form.is_archived = True
    form.updated_at = datetime.utcnow()
    audit("form.archived", "form", form_id)
    db.session.commit()
    return jsonify({"archived": True})


@forms_bp.post("/forms/<form_id>/duplicate")
def duplicate_form(form_id):
    """Deep copy: sections, fields and navigation logic re-pointed at the copies."""
    source = Form.query.get_or_404(form_id)
    copy = Form(title=f"{source.title} (Copy)"[:255], description=source.description)
    db.session.add(copy)
    db.session.flush()

    originals = source.ordered_sections()
    section_map, field_map, copies = {}, {}, []
    for section in originals:
        new_section = Section(
            form_id=copy.id,
            title=section.title,
            description=section.description,
            order=section.order,
            is_repeatable=section.is_repeatable,
            repeat_count=section.repeat_count,
        )
        db.session.add(new_section)
        db.session.flush()
        section_map[section.id] = new_section.id
        copies.append(new_section)
        for f in section.ordered_fields():
            new_field = f.copy_to(new_section.id)
            db.session.add(new_field)
            db.session.flush()
            field_map[f.id] = new_field.id

    for section, new_section in zip(originals, copies):
        logic = remap_sections(remap_fields(section.logic, field_map), section_map)
        new_section.navigation_logic = logic.to_dict()

    audit("form.duplicated", "form", copy.id, {"source_form_id": form_id})
    db.session.commit()
    return jsonify(copy.to_dict(include_sections=True)), 201


@forms_bp.post("/forms/<form_id>/restore")
def restore_form(form_id):
    form = Form.query.get_or_404(form_id)
    form.is_archived = False
    form.updated_at = datetime.utcnow()
    audit("form.restored", "form", form_id)
    db.session.commit()
    return jsonify(form.to_dict())


# ── Navigation graph ──────────────────────────────────────────

@forms_bp.get("/forms/<form_id>/logic/cycles")
def form_cycles(form_id):
    """Deep check over the stored navigation graph of the whole form."""
    Form.query.get_or_404(form_id)
    _, refs, specs = load_form_graph(form_id)
    return jsonify(detect_circular_references(refs, specs).to_dict())


@forms_bp.get("/forms/<form_id>/navigation")
def form_navigation(form_id):
    """Sections available as navigation targets, in display order."""
    Form.query.get_or_404(form_id)
    sections = Section.query.filter_by(form_id=form_id).order_by(Section.order).all()
    return jsonify([
        {"id": s.id, "title": s.title, "order": s.order} for s in sections
    ])


# ── Audit log ─────────────────────────────────────────────────

@forms_bp.get("/audit-logs")
def list_audit_logs():
    query = AuditLog.query.order_by(AuditLog.created_at.desc())
    if resource_type := request.args.get("resource_type"):
        query = query.filter_by(resource_type=resource_type)
    if resource_id := request.args.get("resource_id"):
        query = query.filter_by(resource_id=resource_id)

    logs, pagination = paginate_query(query, default_limit=100)
    return jsonify({
        "data": [log.to_dict() for log in logs],
        "pagination": pagination,
    })
