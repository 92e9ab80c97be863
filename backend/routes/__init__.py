from flask import request, jsonify
from extensions import db
from models import AuditLog, Field, Section


def audit(action, resource_type=None, resource_id=None, payload=None):
    """Write an audit log entry. Committed with the next db.session.commit()."""
    actor = request.headers.get("X-Actor-Id")
    db.session.add(AuditLog(
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        actor_id=actor,
        payload=payload,
    ))


def paginate_query(query, default_limit=50, max_limit=200):
    """Paginate a SQLAlchemy query using ?page= and ?limit= query params."""
    page = max(1, int(request.args.get("page", 1)))
    limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


def validate_required(data, *fields):
    """Return a 400 error response if any required fields are missing."""
    missing = [f for f in fields if not data.get(f)]
    if missing:
        return jsonify({"error": f"Missing required fields: {', '.join(missing)}"}), 400
    return None


def load_form_graph(form_id, overrides=None):
    """Snapshot a form's sections and stored navigation specs for the engine.

    ``overrides`` maps section id -> NavigationSpec and stands in for the
    stored spec of those sections (e.g. rewrites not yet committed).
    Returns (section rows, SectionRef list, {section id: NavigationSpec}).
    """
    sections = Section.query.filter_by(form_id=form_id).order_by(Section.order).all()
    section_ids = [s.id for s in sections]
    fields_by_section = {sid: [] for sid in section_ids}
    if section_ids:
        for f in Field.query.filter(Field.section_id.in_(section_ids)).order_by(Field.order).all():
            fields_by_section[f.section_id].append(f)

    refs = [s.to_ref(fields_by_section[s.id]) for s in sections]
    specs = {s.id: s.logic for s in sections}
    specs.update(overrides or {})
    return sections, refs, specs


def validation_failed(message, result):
    return jsonify({"error": message, **result.to_dict()})


VALID_FIELD_TYPES = {
    "SHORT_ANSWER", "PARAGRAPH", "MULTIPLE_CHOICE", "CHECKBOXES", "DROPDOWN",
    "EMAIL", "NUMBER", "PHONE", "URL", "DATE", "DATE_RANGE", "TIME",
    "FILE_UPLOAD", "RATING", "LINEAR_SCALE",
}
