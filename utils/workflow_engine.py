"""Survey approval workflow: transition table, role gating, and transactional execution.

Lifecycle::

    pending --forward/submit--> reviewed --approve--> approved_commune --approve--> approved_central
       |                           |                        |
       +--------reject-------------+---------reject---------+--> rejected --submit--> pending

Landing on ``approved_central`` issues the location identifier in the same
transaction. Every public operation returns a result object carrying a
Vietnamese message suitable for direct display; failures never leave a status
change, identifier row, or history entry behind.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import STATUS_LABELS, WORKFLOW_ACTIONS, SurveyLocation
from utils.location_identifier import IdentifierError, IdentifierIssuer
from utils.workflow_store import StaleStateError, SurveyWorkflowStore

TRANSITIONS: Dict[str, Dict[str, str]] = {
    "pending": {"submit": "reviewed", "reject": "rejected", "forward": "reviewed"},
    "reviewed": {"approve": "approved_commune", "reject": "rejected"},
    "approved_commune": {"approve": "approved_central", "reject": "rejected"},
    "rejected": {"submit": "pending"},
}

HISTORY_ACTIONS: Dict[str, str] = {
    "submit": "submitted",
    "review": "reviewed",
    "approve": "approved",
    "reject": "rejected",
    "forward": "forwarded",
}

CENTRAL_ROLES = frozenset({"central_admin", "system_admin"})

ROLE_PERMISSIONS: Dict[str, Dict[str, frozenset]] = {
    "commune_officer": {
        "actions": frozenset({"submit", "forward"}),
        "statuses": frozenset({"pending", "rejected"}),
    },
    "commune_supervisor": {
        "actions": frozenset({"approve", "reject"}),
        "statuses": frozenset({"reviewed"}),
    },
    "central_admin": {
        "actions": frozenset({"approve", "reject"}),
        "statuses": frozenset({"approved_commune"}),
    },
    "system_admin": {
        "actions": frozenset({"approve", "reject"}),
        "statuses": frozenset({"approved_commune"}),
    },
}

ROLE_DENIAL_REASONS: Dict[str, str] = {
    "commune_officer": "Cán bộ xã chỉ có thể gửi hoặc chuyển tiếp hồ sơ đang chờ xử lý hoặc bị từ chối",
    "commune_supervisor": "Cán bộ tỉnh chỉ có thể phê duyệt hoặc từ chối khảo sát đã được xem xét",
    "central_admin": "Chỉ có thể phê duyệt khảo sát đã được tỉnh phê duyệt",
    "system_admin": "Chỉ có thể phê duyệt khảo sát đã được tỉnh phê duyệt",
}

MESSAGES: Dict[str, str] = {
    "not_found": "Không tìm thấy khảo sát",
    "invalid_action": "Hành động không hợp lệ",
    "invalid_transition": "Không thể thực hiện hành động này từ trạng thái hiện tại ({status})",
    "stale_state": "Trạng thái khảo sát đã thay đổi, vui lòng tải lại và thử lại",
    "unauthorized": "Bạn không có quyền thực hiện hành động này: {reason}",
    "invalid_role": "Vai trò không hợp lệ",
    "missing_reason": "Vui lòng nhập lý do từ chối",
    "ward_mismatch": "Khảo sát không thuộc xã/phường của bạn",
    "province_mismatch": "Khảo sát không thuộc tỉnh của bạn",
    "identifier_exhausted": "Không thể tạo mã định danh duy nhất, vui lòng thử lại sau",
    "identifier_already_issued": "Khảo sát đã được cấp mã định danh",
    "invalid_admin_code": "Thiếu mã đơn vị hành chính để cấp mã định danh",
    "identifier_error": "Không thể cấp mã định danh",
    "persistence_failure": "Đã xảy ra lỗi khi thực hiện hành động",
    "unexpected_error": "Đã xảy ra lỗi không mong muốn, vui lòng thử lại",
    "publish_requires_identifier": "Khảo sát chưa có mã định danh, không thể công bố",
    "publish_denied": "Chỉ cán bộ trung ương mới có thể công bố khảo sát",
}


class WorkflowError(Exception):
    """Base error carrying a machine code and a display message."""

    code = "workflow_error"

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class RecordNotFound(WorkflowError):
    code = "not_found"


class InvalidTransition(WorkflowError):
    code = "invalid_transition"


class Unauthorized(WorkflowError):
    code = "unauthorized"


class MissingRejectionReason(WorkflowError):
    code = "missing_reason"


class PersistenceFailure(WorkflowError):
    code = "persistence_failure"


@dataclass
class WorkflowResult:
    success: bool
    message: str
    new_status: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    location_identifier: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class PermissionCheck:
    allowed: bool
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"allowed": self.allowed}
        if self.reason:
            payload["reason"] = self.reason
        return payload


@dataclass
class BatchResult:
    successful: int = 0
    failed: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def success_message(action: str, new_status: str) -> str:
    if action == "approve":
        if new_status == "approved_commune":
            return "Đã phê duyệt ở cấp tỉnh"
        if new_status == "approved_central":
            return "Đã phê duyệt ở cấp trung ương"
        return "Đã phê duyệt khảo sát"
    if action == "reject":
        return "Đã từ chối khảo sát"
    if action == "forward":
        return "Đã chuyển hồ sơ lên cấp trên"
    if action == "submit":
        return "Đã gửi lại hồ sơ khảo sát" if new_status == "pending" else "Đã gửi hồ sơ lên cấp trên"
    return "Đã thực hiện hành động"


def resolve_transition(current_status: str, action: str) -> str:
    """Return the target status for ``action`` or raise InvalidTransition."""
    if action not in WORKFLOW_ACTIONS:
        raise InvalidTransition(MESSAGES["invalid_action"])
    target = TRANSITIONS.get(current_status, {}).get(action)
    if target is None:
        label = STATUS_LABELS.get(current_status, current_status)
        raise InvalidTransition(MESSAGES["invalid_transition"].format(status=label))
    return target


def _role_check(record: SurveyLocation, action: str, role: str, jurisdiction_code: Optional[str]) -> PermissionCheck:
    permissions = ROLE_PERMISSIONS.get(role)
    if permissions is None:
        return PermissionCheck(False, MESSAGES["invalid_role"])
    if action not in permissions["actions"] or record.status not in permissions["statuses"]:
        return PermissionCheck(False, ROLE_DENIAL_REASONS[role])
    if role == "commune_officer":
        if not jurisdiction_code or (record.ward_code or "") != jurisdiction_code:
            return PermissionCheck(False, MESSAGES["ward_mismatch"])
    elif role == "commune_supervisor":
        if not jurisdiction_code or (record.province_code or "") != jurisdiction_code:
            return PermissionCheck(False, MESSAGES["province_mismatch"])
    return PermissionCheck(True)


def can_perform_action(
    record: SurveyLocation,
    action: str,
    role: str,
    jurisdiction_code: Optional[str] = None,
) -> PermissionCheck:
    """Pre-flight check without side effects.

    ``jurisdiction_code`` is the ward code of a commune officer or the province
    code of a commune supervisor; central roles ignore it.
    """
    try:
        resolve_transition(record.status, action)
    except InvalidTransition as exc:
        return PermissionCheck(False, exc.message)
    return _role_check(record, action, role, jurisdiction_code)


def jurisdiction_for(actor, role: str) -> Optional[str]:
    if actor is None:
        return None
    if role == "commune_officer":
        return actor.ward_code
    if role == "commune_supervisor":
        return actor.province_code
    return None


def _join_notes(*parts: Optional[str]) -> Optional[str]:
    cleaned = [p.strip() for p in parts if p and p.strip()]
    return "\n".join(cleaned) if cleaned else None


def _run(store: SurveyWorkflowStore, context: Dict[str, Any], operation) -> WorkflowResult:
    """Execute ``operation`` as one transaction and fold every failure into a WorkflowResult."""
    try:
        result = operation()
        store.commit()
    except WorkflowError as exc:
        store.rollback()
        current_app.logger.warning(
            "Workflow action refused",
            extra={**context, "error": exc.code, "reason": exc.message},
        )
        return WorkflowResult(False, exc.message, error=exc.code, detail=exc.detail)
    except IdentifierError as exc:
        store.rollback()
        message = MESSAGES.get(exc.code, MESSAGES["identifier_error"])
        current_app.logger.error(
            "Location identifier issuance failed",
            extra={**context, "error": exc.code, "detail": str(exc)},
        )
        return WorkflowResult(False, message, error=exc.code, detail=str(exc))
    except SQLAlchemyError as exc:
        store.rollback()
        current_app.logger.exception("Workflow persistence failure", extra=context)
        return WorkflowResult(
            False,
            MESSAGES["persistence_failure"],
            error=PersistenceFailure.code,
            detail=str(exc),
        )
    except Exception as exc:
        store.rollback()
        current_app.logger.exception("Unexpected workflow failure", extra=context)
        return WorkflowResult(False, MESSAGES["unexpected_error"], error="internal_error", detail=str(exc))

    current_app.logger.info("Workflow action completed", extra={**context, "new_status": result.new_status})
    return result


def execute_workflow_action(
    record_id: str,
    action: str,
    actor_id: str,
    actor_role: str,
    notes: Optional[str] = None,
    *,
    metadata: Optional[Dict[str, Any]] = None,
    jurisdiction_code: Optional[str] = None,
    store: Optional[SurveyWorkflowStore] = None,
    issuer: Optional[IdentifierIssuer] = None,
) -> WorkflowResult:
    """Apply ``action`` to a survey on behalf of an actor.

    When ``jurisdiction_code`` is omitted it is taken from the actor's account
    (ward for commune officers, province for commune supervisors).
    """
    store = store or SurveyWorkflowStore()
    action = (action or "").strip().lower()
    context = {"survey_id": str(record_id), "action": action, "actor_id": str(actor_id), "actor_role": actor_role}

    def operation() -> WorkflowResult:
        record = store.get_record(record_id)
        if record is None:
            raise RecordNotFound(MESSAGES["not_found"])

        previous_status = record.status
        new_status = resolve_transition(previous_status, action)

        scope = jurisdiction_code
        if scope is None:
            scope = jurisdiction_for(store.actor(actor_id), actor_role)
        permission = _role_check(record, action, actor_role, scope)
        if not permission.allowed:
            raise Unauthorized(MESSAGES["unauthorized"].format(reason=permission.reason))

        if action == "reject" and not (notes or "").strip():
            raise MissingRejectionReason(MESSAGES["missing_reason"])

        try:
            store.compare_and_set_status(record.id, previous_status, new_status)
        except StaleStateError as exc:
            raise InvalidTransition(MESSAGES["stale_state"], detail=str(exc)) from exc

        history_notes = notes
        history_metadata = dict(metadata or {})
        issued_code = None
        if new_status == "approved_central":
            identifier = (issuer or IdentifierIssuer(store)).issue(record, actor_id)
            issued_code = identifier.location_id
            history_metadata["location_identifier"] = issued_code
            history_notes = _join_notes(notes, f"Đã cấp mã định danh: {issued_code}")

        store.append_history(
            record_id=record.id,
            action=HISTORY_ACTIONS[action],
            actor_id=actor_id,
            actor_role=actor_role,
            previous_status=previous_status,
            new_status=new_status,
            notes=history_notes,
            metadata=history_metadata,
        )
        store.record_audit_event(
            actor_id,
            "workflow_action",
            record.id,
            {
                "survey_id": str(record.id),
                "action": action,
                "previous_status": previous_status,
                "new_status": new_status,
                "notes": notes,
                "location_identifier": issued_code,
            },
        )
        return WorkflowResult(
            True,
            success_message(action, new_status),
            new_status=new_status,
            location_identifier=issued_code,
        )

    return _run(store, context, operation)


def batch_approve(
    record_ids: Iterable[str],
    actor_id: str,
    actor_role: str,
    notes: Optional[str] = None,
    *,
    store: Optional[SurveyWorkflowStore] = None,
) -> BatchResult:
    """Approve each survey independently; one failure never aborts the batch."""
    store = store or SurveyWorkflowStore()
    results = BatchResult()
    for record_id in record_ids:
        result = execute_workflow_action(record_id, "approve", actor_id, actor_role, notes, store=store)
        if result.success:
            results.successful += 1
        else:
            results.failed += 1
            results.errors.append({"survey_id": str(record_id), "error": result.error, "message": result.message})

    current_app.logger.info(
        "Batch approval finished",
        extra={"actor_id": str(actor_id), "successful": results.successful, "failed": results.failed},
    )
    return results


def publish_location(
    record_id: str,
    actor_id: str,
    actor_role: str,
    notes: Optional[str] = None,
    *,
    store: Optional[SurveyWorkflowStore] = None,
) -> WorkflowResult:
    """Move a centrally approved survey to ``published``."""
    store = store or SurveyWorkflowStore()
    context = {"survey_id": str(record_id), "action": "publish", "actor_id": str(actor_id), "actor_role": actor_role}

    def operation() -> WorkflowResult:
        record = store.get_record(record_id)
        if record is None:
            raise RecordNotFound(MESSAGES["not_found"])
        if record.status != "approved_central":
            label = STATUS_LABELS.get(record.status, record.status)
            raise InvalidTransition(MESSAGES["invalid_transition"].format(status=label))
        if actor_role not in CENTRAL_ROLES:
            raise Unauthorized(MESSAGES["unauthorized"].format(reason=MESSAGES["publish_denied"]))
        identifier = store.active_identifier_for(record.id)
        if identifier is None:
            raise InvalidTransition(MESSAGES["publish_requires_identifier"])

        try:
            store.compare_and_set_status(record.id, "approved_central", "published")
        except StaleStateError as exc:
            raise InvalidTransition(MESSAGES["stale_state"], detail=str(exc)) from exc

        store.append_history(
            record_id=record.id,
            action="published",
            actor_id=actor_id,
            actor_role=actor_role,
            previous_status="approved_central",
            new_status="published",
            notes=notes,
            metadata={"location_identifier": identifier.location_id},
        )
        store.record_audit_event(
            actor_id,
            "workflow_action",
            record.id,
            {"survey_id": str(record.id), "action": "publish", "previous_status": "approved_central", "new_status": "published"},
        )
        return WorkflowResult(
            True,
            "Đã công bố khảo sát",
            new_status="published",
            location_identifier=identifier.location_id,
        )

    return _run(store, context, operation)


def get_workflow_history(record_id: str, *, store: Optional[SurveyWorkflowStore] = None) -> List[Dict[str, Any]]:
    store = store or SurveyWorkflowStore()
    return [entry.to_dict() for entry in store.history_for(record_id)]
