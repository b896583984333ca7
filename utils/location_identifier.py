"""Location identifier derivation, parsing, and collision-safe issuance.

A location identifier is exactly twelve ASCII digits ``PPWWWWNNNNNN``:

* ``PP``     province numeric code, zero-padded to 2 digits
* ``WWWW``   ward numeric code, zero-padded to 4 digits
* ``NNNNNN`` random sequence in ``[1, 999999]``, zero-padded to 6 digits

The first six digits form the ``admin_code``. It is captured when the code is
issued and never re-derived, so later boundary re-codes leave issued
identifiers untouched. Uniqueness is arbitrated by the database: a duplicate
code is reported as ``UniquenessViolation`` and retried with a fresh draw.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Callable, Optional

from flask import current_app

from models import LocationIdentifier, SurveyLocation
from utils.workflow_store import SurveyWorkflowStore, UniquenessViolation

LOCATION_CODE_LENGTH = 12
SEQUENCE_MIN = 1
SEQUENCE_MAX = 999_999
DEFAULT_MAX_ATTEMPTS = 10


class IdentifierError(Exception):
    """Base class for identifier issuance failures."""

    code = "identifier_error"


class IdentifierCollisionExhausted(IdentifierError):
    """Raised when every attempt drew a code that already exists."""

    code = "identifier_exhausted"

    def __init__(self, attempts: int) -> None:
        super().__init__(f"Could not generate a unique location identifier after {attempts} attempts")
        self.attempts = attempts


class IdentifierAlreadyIssued(IdentifierError):
    """Raised when the survey already holds an active identifier."""

    code = "identifier_already_issued"


class InvalidAdministrativeCode(IdentifierError):
    """Raised when the survey lacks usable province or ward numeric codes."""

    code = "invalid_admin_code"


@dataclass(frozen=True)
class LocationCodeParts:
    province_code: str
    ward_code: str
    sequence_number: str

    @property
    def admin_code(self) -> str:
        return self.province_code + self.ward_code

    @property
    def code(self) -> str:
        return self.admin_code + self.sequence_number


def _pad(value: int, width: int, label: str) -> str:
    if value < 0 or value >= 10**width:
        raise InvalidAdministrativeCode(f"{label} code {value} does not fit in {width} digits")
    return str(value).zfill(width)


def derive_admin_code(province_id: int, ward_id: int) -> str:
    return _pad(int(province_id), 2, "Province") + _pad(int(ward_id), 4, "Ward")


def format_location_code(admin_code: str, sequence: int) -> str:
    if not SEQUENCE_MIN <= sequence <= SEQUENCE_MAX:
        raise ValueError(f"Sequence {sequence} outside [{SEQUENCE_MIN}, {SEQUENCE_MAX}]")
    return f"{admin_code}{sequence:06d}"


def parse_location_code(code: str) -> LocationCodeParts:
    """Split a 12-digit identifier into its province, ward and sequence parts."""
    candidate = (code or "").strip()
    if len(candidate) != LOCATION_CODE_LENGTH or not candidate.isascii() or not candidate.isdigit():
        raise ValueError(f"Location identifier must be {LOCATION_CODE_LENGTH} digits: {code!r}")
    return LocationCodeParts(
        province_code=candidate[0:2],
        ward_code=candidate[2:6],
        sequence_number=candidate[6:12],
    )


def _numeric_code(numeric_id: Optional[int], string_code: Optional[str]) -> Optional[int]:
    if numeric_id is not None:
        return int(numeric_id)
    if string_code and string_code.strip().isdigit():
        return int(string_code.strip())
    return None


def admin_code_for(record: SurveyLocation) -> str:
    province = _numeric_code(record.province_id, record.province_code)
    ward = _numeric_code(record.ward_id, record.ward_code)
    if province is None or ward is None:
        raise InvalidAdministrativeCode(f"Survey {record.id} has no numeric province/ward code")
    return derive_admin_code(province, ward)


def _draw_sequence() -> int:
    return secrets.randbelow(SEQUENCE_MAX) + SEQUENCE_MIN


class IdentifierIssuer:
    """Allocate one identifier for a survey entering central approval.

    The issuer is not idempotent on its own; the workflow transition table
    guarantees it runs at most once per survey.
    """

    def __init__(
        self,
        store: Optional[SurveyWorkflowStore] = None,
        *,
        max_attempts: Optional[int] = None,
        draw: Optional[Callable[[], int]] = None,
    ) -> None:
        self.store = store or SurveyWorkflowStore()
        if max_attempts is None:
            max_attempts = int(current_app.config.get("LOCATION_ID_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))
        self.max_attempts = max_attempts
        self.draw = draw or _draw_sequence

    def issue(self, record: SurveyLocation, actor_id: str) -> LocationIdentifier:
        if self.store.active_identifier_for(record.id) is not None:
            raise IdentifierAlreadyIssued(f"Survey {record.id} already has an active identifier")

        admin_code = admin_code_for(record)
        for attempt in range(1, self.max_attempts + 1):
            sequence_number = f"{self.draw():06d}"
            code = format_location_code(admin_code, int(sequence_number))
            try:
                identifier = self.store.insert_identifier_if_unique(
                    survey_location_id=str(record.id),
                    location_id=code,
                    admin_code=admin_code,
                    sequence_number=sequence_number,
                    assigned_by=str(actor_id),
                )
            except UniquenessViolation as exc:
                if "survey_location_id" in exc.constraint or "uq_active_identifier_per_location" in exc.constraint:
                    raise IdentifierAlreadyIssued(f"Survey {record.id} already has an active identifier") from exc
                current_app.logger.warning(
                    "Location identifier collision",
                    extra={"survey_id": str(record.id), "attempt": attempt, "admin_code": admin_code},
                )
                continue

            self.store.attach_identifier(record, code)
            current_app.logger.info(
                "Location identifier issued",
                extra={"survey_id": str(record.id), "location_id": code, "attempt": attempt},
            )
            return identifier

        current_app.logger.error(
            "Location identifier retries exhausted",
            extra={"survey_id": str(record.id), "admin_code": admin_code, "attempts": self.max_attempts},
        )
        raise IdentifierCollisionExhausted(self.max_attempts)


def lookup_identifier(
    code: str,
    *,
    store: Optional[SurveyWorkflowStore] = None,
    suggestion_limit: Optional[int] = None,
) -> dict:
    """Resolve a public identifier lookup.

    Exact matches return the identifier with a summary of its location; anything
    else returns up to ``suggestion_limit`` partial matches.
    """
    store = store or SurveyWorkflowStore()
    if suggestion_limit is None:
        suggestion_limit = int(current_app.config.get("LOOKUP_SUGGESTION_LIMIT", 5))
    cleaned = "".join((code or "").split()).upper()

    identifier = store.find_identifier(cleaned) if cleaned else None
    if identifier is None:
        suggestions = store.search_identifiers(cleaned, limit=suggestion_limit) if cleaned else []
        if not suggestions:
            return {"found": False, "message": "Mã định danh không tồn tại trong hệ thống", "suggestions": []}
        return {
            "found": False,
            "message": "Không tìm thấy chính xác, có thể bạn muốn tìm:",
            "suggestions": [{"location_id": s.location_id, "is_active": s.is_active} for s in suggestions],
        }

    location = identifier.public_payload()
    record = identifier.survey_location
    if record is None:
        return {
            "found": True,
            "location": location,
            "details": None,
            "message": "Mã định danh hợp lệ nhưng không có thông tin chi tiết",
        }
    details = record.summary_payload()
    details["public_status"] = "Đã công bố" if record.status == "published" else "Đang xử lý"
    return {"found": True, "location": location, "details": details}
