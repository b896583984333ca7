"""
Tests for location identifier derivation, parsing and issuance.

Verifies:
- Administrative code padding and range checks
- Twelve-digit format and parsing
- Collision retry versus abort on other storage errors
- Public lookup with exact and partial matches
"""

import pytest
from sqlalchemy.exc import OperationalError

from extensions import db
from models import SurveyLocation
from utils import location_identifier as li
from utils.location_identifier import (
    IdentifierAlreadyIssued,
    IdentifierCollisionExhausted,
    IdentifierIssuer,
    InvalidAdministrativeCode,
    admin_code_for,
    derive_admin_code,
    format_location_code,
    lookup_identifier,
    parse_location_code,
)
from utils.workflow_store import UniquenessViolation


class FakeStore:
    """In-memory stand-in for SurveyWorkflowStore, scripted per insert attempt."""

    def __init__(self, outcomes=(), active=None):
        self.outcomes = list(outcomes)
        self.active = active
        self.inserted = []
        self.attached = []

    def active_identifier_for(self, record_id):
        return self.active

    def insert_identifier_if_unique(self, **fields):
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        self.inserted.append(fields)
        return type("Issued", (), fields)()

    def attach_identifier(self, record, code):
        self.attached.append((record.id, code))


def survey_stub(**fields):
    values = {"id": "survey-1", "province_id": 4, "ward_id": 28, "province_code": "04", "ward_code": "0028"}
    values.update(fields)
    return SurveyLocation(**values)


class TestAdminCode:
    def test_pads_province_and_ward(self):
        assert derive_admin_code(4, 28) == "040028"
        assert derive_admin_code(1, 1) == "010001"
        assert derive_admin_code(99, 9999) == "999999"

    @pytest.mark.parametrize("province_id, ward_id", [(100, 1), (1, 10000), (-1, 28), (4, -28)])
    def test_out_of_range_codes_rejected(self, province_id, ward_id):
        with pytest.raises(InvalidAdministrativeCode):
            derive_admin_code(province_id, ward_id)

    def test_prefers_numeric_ids(self, app):
        record = survey_stub(province_id=79, ward_id=274, province_code="HCM", ward_code="BT")
        assert admin_code_for(record) == "790274"

    def test_falls_back_to_digit_string_codes(self, app):
        record = survey_stub(province_id=None, ward_id=None, province_code="79", ward_code="0274")
        assert admin_code_for(record) == "790274"

    def test_non_numeric_codes_rejected(self, app):
        record = survey_stub(province_id=None, ward_id=None, province_code="HN", ward_code="0028")
        with pytest.raises(InvalidAdministrativeCode):
            admin_code_for(record)


class TestFormatAndParse:
    def test_format_pads_sequence(self):
        assert format_location_code("040028", 7) == "040028000007"
        assert format_location_code("040028", 999999) == "040028999999"

    @pytest.mark.parametrize("sequence", [0, 1_000_000, -5])
    def test_format_rejects_out_of_range_sequence(self, sequence):
        with pytest.raises(ValueError):
            format_location_code("040028", sequence)

    def test_parse_splits_parts(self):
        parts = parse_location_code(" 040028000123 ")
        assert parts.province_code == "04"
        assert parts.ward_code == "0028"
        assert parts.sequence_number == "000123"
        assert parts.admin_code == "040028"
        assert parts.code == "040028000123"

    @pytest.mark.parametrize(
        "code",
        ["", None, "04002800012", "0400280001234", "04002800012A", "０４００２８０００１２３"],
    )
    def test_parse_rejects_malformed(self, code):
        with pytest.raises(ValueError):
            parse_location_code(code)

    def test_draw_stays_in_range(self, monkeypatch):
        monkeypatch.setattr(li.secrets, "randbelow", lambda n: 0)
        assert li._draw_sequence() == 1
        monkeypatch.setattr(li.secrets, "randbelow", lambda n: n - 1)
        assert li._draw_sequence() == 999_999


class TestIssuer:
    def test_issues_code_from_admin_code_and_draw(self, app):
        store = FakeStore()
        issuer = IdentifierIssuer(store, max_attempts=3, draw=lambda: 512)

        issued = issuer.issue(survey_stub(), "central-1")

        assert issued.location_id == "040028000512"
        assert store.inserted[0]["admin_code"] == "040028"
        assert store.inserted[0]["sequence_number"] == "000512"
        assert store.inserted[0]["assigned_by"] == "central-1"
        assert store.attached == [("survey-1", "040028000512")]

    def test_retries_after_code_collision(self, app):
        collision = UniquenessViolation("duplicate", constraint="location_identifiers.location_id")
        store = FakeStore([collision, collision])
        sequence = iter([11, 12, 13])

        issued = IdentifierIssuer(store, max_attempts=5, draw=lambda: next(sequence)).issue(survey_stub(), "c")

        assert issued.location_id == "040028000013"
        assert len(store.inserted) == 1

    def test_exhaustion_after_max_attempts(self, app):
        collision = UniquenessViolation("duplicate", constraint="location_identifiers.location_id")
        store = FakeStore([collision] * 4)

        with pytest.raises(IdentifierCollisionExhausted) as exc_info:
            IdentifierIssuer(store, max_attempts=4, draw=lambda: 1).issue(survey_stub(), "c")

        assert exc_info.value.attempts == 4
        assert store.attached == []

    def test_max_attempts_defaults_to_config(self, app):
        app.config["LOCATION_ID_MAX_ATTEMPTS"] = 3
        assert IdentifierIssuer(FakeStore()).max_attempts == 3

    def test_other_storage_errors_abort_immediately(self, app):
        failure = OperationalError("INSERT INTO location_identifiers", {}, Exception("connection lost"))
        store = FakeStore([failure])
        calls = []

        def draw():
            calls.append(1)
            return 9

        with pytest.raises(OperationalError):
            IdentifierIssuer(store, max_attempts=10, draw=draw).issue(survey_stub(), "c")
        assert len(calls) == 1

    def test_existing_active_identifier_is_refused(self, app):
        store = FakeStore(active=object())
        with pytest.raises(IdentifierAlreadyIssued):
            IdentifierIssuer(store, max_attempts=3).issue(survey_stub(), "c")
        assert store.inserted == []

    def test_per_location_uniqueness_is_not_retried(self, app):
        violation = UniquenessViolation("duplicate", constraint="location_identifiers.survey_location_id")
        store = FakeStore([violation])
        with pytest.raises(IdentifierAlreadyIssued):
            IdentifierIssuer(store, max_attempts=10, draw=lambda: 3).issue(survey_stub(), "c")

    def test_database_already_issued(self, issued_identifier):
        owner_identifier = issued_identifier("000321")
        owner = owner_identifier.survey_location
        with pytest.raises(IdentifierAlreadyIssued):
            IdentifierIssuer(max_attempts=3).issue(owner, "c")

    def test_database_collision_is_detected(self, make_survey, issued_identifier, central_admin):
        issued_identifier("000042")
        survey = make_survey("approved_commune")
        sequence = iter([42, 43])

        issued = IdentifierIssuer(max_attempts=2, draw=lambda: next(sequence)).issue(survey, central_admin.id)
        db.session.commit()

        assert issued.location_id == "040028000043"
        assert db.session.get(SurveyLocation, survey.id).location_identifier == "040028000043"


class TestLookup:
    def test_exact_match_returns_details(self, issued_identifier):
        issued_identifier("000042")
        result = lookup_identifier(" 0400 2800 0042 ")

        assert result["found"] is True
        assert result["location"]["location_id"] == "040028000042"
        assert result["location"]["admin_code"] == "040028"
        assert result["details"]["public_status"] == "Đang xử lý"
        assert result["details"]["status"] == "approved_central"

    def test_published_location_is_labelled(self, issued_identifier):
        identifier = issued_identifier("000042")
        identifier.survey_location.status = "published"
        db.session.commit()

        result = lookup_identifier("040028000042")
        assert result["details"]["public_status"] == "Đã công bố"

    def test_partial_match_suggests(self, issued_identifier):
        issued_identifier("000042")
        issued_identifier("000043")

        result = lookup_identifier("00004")

        assert result["found"] is False
        assert {s["location_id"] for s in result["suggestions"]} == {"040028000042", "040028000043"}

    def test_suggestions_are_limited(self, issued_identifier):
        for n in range(1, 5):
            issued_identifier(f"00010{n}")
        result = lookup_identifier("0400280001", suggestion_limit=2)
        assert len(result["suggestions"]) == 2

    def test_unknown_code(self, app):
        result = lookup_identifier("999999999999")
        assert result == {
            "found": False,
            "message": "Mã định danh không tồn tại trong hệ thống",
            "suggestions": [],
        }

    def test_blank_code(self, app):
        assert lookup_identifier("   ")["suggestions"] == []

    def test_wildcards_are_literal(self, issued_identifier):
        issued_identifier("000042")
        for fragment in ("%", "_", "0400_8", "04%42"):
            result = lookup_identifier(fragment)
            assert result["found"] is False
            assert result["suggestions"] == [], fragment
