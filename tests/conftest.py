"""Shared fixtures for the navigation engine and API tests."""

import pytest

from app import create_app
from config import TestConfig
from navigation import FieldRef, SectionRef


@pytest.fixture
def app():
    return create_app(TestConfig)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def form_factory(client):
    """Create a form with N sections through the API and return its payload.

    The form starts with "Section 1"; extra sections are appended in order.
    """

    def _create(section_count=3, title="Survey"):
        form = client.post("/api/v1/forms", json={"title": title}).get_json()
        for i in range(2, section_count + 1):
            client.post(f"/api/v1/forms/{form['id']}/sections", json={"title": f"Section {i}"})
        return client.get(f"/api/v1/forms/{form['id']}").get_json()

    return _create


@pytest.fixture
def add_field(client):
    def _add(section_id, field_type="MULTIPLE_CHOICE", question="Continue?", options=None, **extra):
        payload = {
            "question": question,
            "type": field_type,
            "options": options if options is not None else [
                {"label": "Yes", "value": "yes"},
                {"label": "No", "value": "no"},
            ],
            **extra,
        }
        resp = client.post(f"/api/v1/sections/{section_id}/fields", json=payload)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()

    return _add


@pytest.fixture
def make_sections():
    def _make(*ids, fields=None):
        """SectionRefs ordered 1..n; ``fields`` maps section id -> [(field id, type)]."""
        fields = fields or {}
        return [
            SectionRef(
                id=sid,
                order=i,
                title=sid,
                fields=tuple(FieldRef(fid, ftype) for fid, ftype in fields.get(sid, ())),
            )
            for i, sid in enumerate(ids, start=1)
        ]

    return _make
