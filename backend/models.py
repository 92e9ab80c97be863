import uuid
from datetime import datetime
from extensions import db
from navigation.rules import (
    FieldRef,
    NavigationSpec,
    SectionRef,
    create_default_logic,
    supports_conditional_logic,
)


class Form(db.Model):
    __tablename__ = "forms"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    is_archived = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def ordered_sections(self):
        return Section.query.filter_by(form_id=self.id).order_by(Section.order).all()

    def to_dict(self, include_sections=False):
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "is_archived": self.is_archived,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_sections:
            data["sections"] = [s.to_dict(include_fields=True) for s in self.ordered_sections()]
        else:
            data["section_count"] = Section.query.filter_by(form_id=self.id).count()
        return data


class Section(db.Model):
    __tablename__ = "sections"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    form_id = db.Column(db.String(36), db.ForeignKey("forms.id"), nullable=False)
    title = db.Column(db.String(255), nullable=False, default="Untitled section")
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False)
    navigation_logic = db.Column(
        db.JSON, nullable=False, default=lambda: create_default_logic().to_dict()
    )
    is_repeatable = db.Column(db.Boolean, default=False, nullable=False)
    repeat_count = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def ordered_fields(self):
        return Field.query.filter_by(section_id=self.id).order_by(Field.order).all()

    @property
    def logic(self):
        return NavigationSpec.from_dict(self.navigation_logic)

    def to_ref(self, fields=None):
        """Immutable snapshot handed to the navigation engine."""
        if fields is None:
            fields = self.ordered_fields()
        return SectionRef(
            id=self.id,
            order=self.order,
            title=self.title or "",
            fields=tuple(f.to_ref() for f in fields),
        )

    def to_dict(self, include_fields=False):
        data = {
            "id": self.id,
            "form_id": self.form_id,
            "title": self.title,
            "description": self.description,
            "order": self.order,
            "navigation_logic": self.navigation_logic,
            "is_repeatable": self.is_repeatable,
            "repeat_count": self.repeat_count,
        }
        if include_fields:
            data["fields"] = [f.to_dict() for f in self.ordered_fields()]
        return data


class Field(db.Model):
    __tablename__ = "fields"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    section_id = db.Column(db.String(36), db.ForeignKey("sections.id"), nullable=False)
    question = db.Column(db.String(500), nullable=False)
    type = db.Column(db.String(30), nullable=False)
    required = db.Column(db.Boolean, default=False, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    options = db.Column(db.JSON, nullable=True)
    min_value = db.Column(db.Float, nullable=True)
    max_value = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def option_values(self):
        values = []
        for option in self.options or []:
            if isinstance(option, dict):
                values.append(str(option.get("value") or option.get("label") or ""))
            else:
                values.append(str(option))
        return tuple(v for v in values if v)

    def copy_to(self, section_id, **overrides):
        """Unsaved copy of this field placed in ``section_id``."""
        values = {
            "section_id": section_id,
            "question": self.question,
            "type": self.type,
            "required": self.required,
            "order": self.order,
            "options": list(self.options) if self.options is not None else None,
            "min_value": self.min_value,
            "max_value": self.max_value,
        }
        values.update(overrides)
        return Field(**values)

    def to_ref(self):
        return FieldRef(id=self.id, type=self.type, options=self.option_values())

    def to_dict(self):
        return {
            "id": self.id,
            "section_id": self.section_id,
            "question": self.question,
            "type": self.type,
            "required": self.required,
            "order": self.order,
            "options": self.options or [],
            "min_value": self.min_value,
            "max_value": self.max_value,
            "supports_conditional_logic": supports_conditional_logic(self.type),
        }


class FormResponse(db.Model):
    __tablename__ = "form_responses"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    form_id = db.Column(db.String(36), db.ForeignKey("forms.id"), nullable=False)
    status = db.Column(db.String(20), default="in_progress")
    current_section_id = db.Column(db.String(36), nullable=True)
    path_taken = db.Column(db.JSON, default=list)
    answers = db.Column(db.JSON, default=dict)
    started_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    duration_seconds = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "form_id": self.form_id,
            "status": self.status,
            "current_section_id": self.current_section_id,
            "path_taken": self.path_taken or [],
            "answers": self.answers or {},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


class ResponseStep(db.Model):
    __tablename__ = "response_steps"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    response_id = db.Column(db.String(36), db.ForeignKey("form_responses.id"), nullable=False)
    section_id = db.Column(db.String(36), nullable=False)
    answers = db.Column(db.JSON, default=dict)
    outcome = db.Column(db.JSON, nullable=False)
    step_number = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    action = db.Column(db.String(100), nullable=False)
    resource_type = db.Column(db.String(50), nullable=True)
    resource_id = db.Column(db.String(36), nullable=True)
    actor_id = db.Column(db.String(100), nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
