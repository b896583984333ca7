"""
Pytest fixtures for the approval workflow test suite.

Provides:
- A Flask application per test on an in-memory SQLite database
- User and survey factories for every workflow role
- Flask-Login aware test clients
"""
import os

os.environ.setdefault("FLASK_CONFIG", "testing")

import itertools
from uuid import uuid4

import pytest
from flask import g
from flask_login import FlaskLoginClient

from app import create_app
from extensions import db
from models import LocationIdentifier, Role, SurveyLocation, User

PROVINCE_CODE = "04"
WARD_CODE = "0028"
PROVINCE_ID = 4
WARD_ID = 28


@pytest.fixture
def app():
    app = create_app("testing")
    app.test_client_class = FlaskLoginClient

    @app.before_request
    def _forget_cached_user():
        # Requests share the test's app context, so g would keep the previous client's user.
        g.pop("_login_user", None)

    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role: str, *, province_code: str | None = PROVINCE_CODE, ward_code: str | None = WARD_CODE) -> User:
        user = User(
            full_name=f"{role} {next(counter)}",
            email=f"{role}-{uuid4().hex[:8]}@registry.test",
            role=Role.query.filter_by(name=role).one(),
            province_code=province_code,
            ward_code=ward_code,
            # Password hashing is slow and irrelevant here.
            password_hash="!",
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def officer(make_user):
    return make_user("commune_officer")


@pytest.fixture
def supervisor(make_user):
    return make_user("commune_supervisor", ward_code=None)


@pytest.fixture
def central_admin(make_user):
    return make_user("central_admin", province_code=None, ward_code=None)


@pytest.fixture
def system_admin(make_user):
    return make_user("system_admin", province_code=None, ward_code=None)


@pytest.fixture
def actors(officer, supervisor, central_admin, system_admin):
    return {
        "commune_officer": officer,
        "commune_supervisor": supervisor,
        "central_admin": central_admin,
        "system_admin": system_admin,
    }


@pytest.fixture
def make_survey(app, officer):
    def _make(status: str = "pending", **fields) -> SurveyLocation:
        values = {
            "surveyor_id": officer.id,
            "location_name": "Nhà văn hóa thôn Đông",
            "address": "12 Đường Lê Lợi",
            "province_code": PROVINCE_CODE,
            "ward_code": WARD_CODE,
            "province_id": PROVINCE_ID,
            "ward_id": WARD_ID,
            "latitude": 21.028511,
            "longitude": 105.804817,
            "accuracy": 4.5,
            "object_type": "house",
            "status": status,
        }
        values.update(fields)
        survey = SurveyLocation(**values)
        db.session.add(survey)
        db.session.commit()
        return survey

    return _make


@pytest.fixture
def issued_identifier(make_survey, central_admin):
    """An existing identifier ``040028000042`` owned by another survey."""

    def _make(sequence: str = "000042", admin_code: str = PROVINCE_CODE + WARD_CODE) -> LocationIdentifier:
        owner = make_survey("approved_central", location_identifier=admin_code + sequence)
        identifier = LocationIdentifier(
            survey_location_id=owner.id,
            location_id=admin_code + sequence,
            admin_code=admin_code,
            sequence_number=sequence,
            assigned_by=central_admin.id,
        )
        db.session.add(identifier)
        db.session.commit()
        return identifier

    return _make


@pytest.fixture
def client_for(app):
    def _client(user):
        return app.test_client(user=user)

    return _client
