"""Persistence seam for workflow transitions, identifier rows, and approval trails.

Every workflow action runs inside one SQLAlchemy session transaction: the
conditional status update, the identifier insert (wrapped in a SAVEPOINT so a
code collision only discards the failed row), the approval history entry and
the audit event are committed together, or rolled back together.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import has_request_context, request
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import ApprovalHistory, AuditLog, LocationIdentifier, SurveyLocation, User


class UniquenessViolation(Exception):
    """Raised when an insert is rejected by a unique constraint."""

    def __init__(self, message: str, constraint: str = "") -> None:
        super().__init__(message)
        self.constraint = constraint


class StaleStateError(Exception):
    """Raised when a conditional status update finds the record in another state."""

    def __init__(self, record_id: str, expected_status: str) -> None:
        super().__init__(f"Survey {record_id} is no longer in status {expected_status}")
        self.record_id = record_id
        self.expected_status = expected_status


def _unique_violation_constraint(exc: IntegrityError) -> Optional[str]:
    """Return the violated constraint name when ``exc`` is a duplicate-key error, else None."""
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == "23505":
        diag = getattr(orig, "diag", None)
        return getattr(diag, "constraint_name", None) or ""
    message = str(orig)
    marker = "UNIQUE constraint failed:"
    if marker in message:
        return message.split(marker, 1)[1].strip()
    return None


class SurveyWorkflowStore:
    """SQLAlchemy-backed storage used by the workflow engine and the identifier issuer."""

    def __init__(self, session=None) -> None:
        self.session = session if session is not None else db.session

    def get_record(self, record_id) -> Optional[SurveyLocation]:
        if not record_id:
            return None
        return self.session.get(SurveyLocation, str(record_id))

    def actor(self, actor_id) -> Optional[User]:
        if not actor_id:
            return None
        return self.session.get(User, str(actor_id))

    def compare_and_set_status(self, record_id: str, expected_status: str, new_status: str) -> None:
        stmt = (
            update(SurveyLocation)
            .where(SurveyLocation.id == str(record_id), SurveyLocation.status == expected_status)
            .values(status=new_status, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="evaluate")
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            raise StaleStateError(str(record_id), expected_status)

    def active_identifier_for(self, record_id) -> Optional[LocationIdentifier]:
        return self.session.query(LocationIdentifier).filter_by(survey_location_id=str(record_id), is_active=True).first()

    def insert_identifier_if_unique(self, **fields: Any) -> LocationIdentifier:
        identifier = LocationIdentifier(**fields)
        try:
            with self.session.begin_nested():
                self.session.add(identifier)
        except IntegrityError as exc:
            constraint = _unique_violation_constraint(exc)
            if constraint is None:
                raise
            raise UniquenessViolation(str(exc.orig), constraint=constraint) from exc
        return identifier

    def attach_identifier(self, record: SurveyLocation, code: str) -> None:
        record.location_identifier = code
        self.session.flush()

    def append_history(
        self,
        record_id: str,
        action: str,
        actor_id: str,
        actor_role: str,
        previous_status: Optional[str],
        new_status: Optional[str],
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ApprovalHistory:
        entry = ApprovalHistory(
            survey_location_id=str(record_id),
            action=action,
            actor_id=str(actor_id),
            actor_role=actor_role,
            previous_status=previous_status,
            new_status=new_status,
            notes=notes or None,
            extra_metadata=metadata or None,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def record_audit_event(
        self,
        user_id: Optional[str],
        action_type: str,
        resource_id: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        ip_address = None
        user_agent = None
        if has_request_context():
            ip_address = request.remote_addr
            user_agent = (request.headers.get("User-Agent") or "unknown")[:255]
        # Actor ids are not guaranteed to be local accounts (background jobs, synced users).
        local_user = self.actor(user_id)
        audit = AuditLog(
            user_id=local_user.id if local_user else None,
            action_type=action_type,
            resource_type="survey_location",
            resource_id=str(resource_id),
            extra_metadata=metadata,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(audit)
        return audit

    def history_for(self, record_id) -> List[ApprovalHistory]:
        return (
            self.session.query(ApprovalHistory).filter_by(survey_location_id=str(record_id))
            .order_by(ApprovalHistory.created_at.desc(), ApprovalHistory.id.desc())
            .all()
        )

    def find_identifier(self, code: str) -> Optional[LocationIdentifier]:
        return self.session.query(LocationIdentifier).filter_by(location_id=code).first()

    def search_identifiers(self, fragment: str, limit: int = 5) -> List[LocationIdentifier]:
        # Match the fragment literally; % and _ are not wildcards here.
        literal = fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return (
            self.session.query(LocationIdentifier)
            .filter(LocationIdentifier.location_id.ilike(f"%{literal}%", escape="\\"))
            .order_by(LocationIdentifier.assigned_at.desc())
            .limit(limit)
            .all()
        )

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
