from datetime import datetime
from flask import Blueprint, current_app, request, jsonify
from extensions import db
from models import Form, FormResponse, ResponseStep, Section
from navigation import resolve_next
from routes import load_form_graph, paginate_query, validate_required

responses_bp = Blueprint("responses", __name__, url_prefix="/api/v1")


def _build_response_state(response):
    """Build the full state payload returned after every response action."""
    payload = response.to_dict()
    payload["step_number"] = len(response.path_taken or [])
    payload["current_section"] = None
    if response.current_section_id:
        section = db.session.get(Section, response.current_section_id)
        if section:
            payload["current_section"] = section.to_dict(include_fields=True)

    breadcrumb = []
    for section_id in (response.path_taken or [])[:-1]:
        past = db.session.get(Section, section_id)
        breadcrumb.append({
            "section_id": section_id,
            "title": past.title if past else None,
        })
    payload["breadcrumb"] = breadcrumb
    return payload


def _is_blank(answer):
    if isinstance(answer, str):
        return not answer.strip()
    return answer is None or answer == []


def _missing_required(section, answers):
    return [
        f.question for f in section.ordered_fields()
        if f.required and _is_blank(answers.get(f.id))
    ]


# ── Response lifecycle ─────────────────────────────────────────

@responses_bp.post("/responses")
def start_response():
    data = request.get_json(silent=True) or {}
    if err := validate_required(data, "form_id"):
        return err

    form = Form.query.get_or_404(data["form_id"])
    if form.is_archived:
        return jsonify({"error": "Form is archived"}), 400

    first = Section.query.filter_by(form_id=form.id).order_by(Section.order).first()
    if not first:
        return jsonify({"error": "Form has no sections"}), 400

    response = FormResponse(
        form_id=form.id,
        current_section_id=first.id,
        path_taken=[first.id],
        answers={},
    )
    db.session.add(response)
    db.session.commit()
    return jsonify(_build_response_state(response)), 201


@responses_bp.get("/responses")
def list_responses():
    query = FormResponse.query
    if form_id := request.args.get("form_id"):
        query = query.filter_by(form_id=form_id)
    if status := request.args.get("status"):
        query = query.filter_by(status=status)

    query = query.order_by(FormResponse.started_at.desc())
    responses, pagination = paginate_query(query)
    return jsonify({"data": [r.to_dict() for r in responses], "pagination": pagination})


@responses_bp.get("/responses/<response_id>")
def get_response(response_id):
    response = FormResponse.query.get_or_404(response_id)
    return jsonify(_build_response_state(response))


@responses_bp.post("/responses/<response_id>/submit-section")
def submit_section(response_id):
    """Store the current section's answers and move to wherever its logic points."""
    response = FormResponse.query.get_or_404(response_id)
    if response.status == "completed":
        return jsonify({"error": "Response already completed"}), 400

    data = request.get_json(silent=True) or {}
    answers = data.get("answers") or {}
    if not isinstance(answers, dict):
        return jsonify({"error": "answers must be an object keyed by field id"}), 400

    sections, refs, _ = load_form_graph(response.form_id)
    section = next((s for s in sections if s.id == response.current_section_id), None)
    if section is None:
        return jsonify({"error": "Current section no longer exists"}), 409

    if missing := _missing_required(section, answers):
        return jsonify({"error": f"Missing required answers: {', '.join(missing)}"}), 400

    outcome = resolve_next(section.logic, section.order, refs, answers)
    current_app.logger.debug(
        "Response %s: section %s -> %s", response.id, section.id, outcome.to_dict()
    )

    path = response.path_taken or []
    db.session.add(ResponseStep(
        response_id=response.id,
        section_id=section.id,
        answers=answers,
        outcome=outcome.to_dict(),
        step_number=len(path),
    ))
    response.answers = {**(response.answers or {}), **answers}

    if outcome.is_submit:
        now = datetime.utcnow()
        response.status = "completed"
        response.current_section_id = None
        response.completed_at = now
        if response.started_at:
            response.duration_seconds = int((now - response.started_at).total_seconds())
    else:
        response.current_section_id = outcome.section_id
        response.path_taken = path + [outcome.section_id]

    db.session.commit()
    state = _build_response_state(response)
    state["outcome"] = outcome.to_dict()
    return jsonify(state)


@responses_bp.post("/responses/<response_id>/back")
def go_back(response_id):
    response = FormResponse.query.get_or_404(response_id)
    path = response.path_taken or []

    last_step = (
        ResponseStep.query
        .filter_by(response_id=response.id)
        .order_by(ResponseStep.step_number.desc())
        .first()
    )
    if not last_step:
        return jsonify({"error": "Already at start"}), 400

    if response.status == "completed":
        # The final section stays on the path; reopen it
        response.current_section_id = last_step.section_id
    else:
        path = path[:-1]
        response.current_section_id = path[-1]
    undone = last_step.answers or {}
    response.answers = {
        k: v for k, v in (response.answers or {}).items() if k not in undone
    }
    response.path_taken = path
    response.status = "in_progress"
    response.completed_at = None
    response.duration_seconds = None
    db.session.delete(last_step)
    db.session.commit()
    return jsonify(_build_response_state(response))
