"""JSON endpoints through which the portal drives the survey approval workflow."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from flask_wtf import FlaskForm
from wtforms import SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, ValidationError

from extensions import csrf
from utils.decorators import roles_required
from utils.rejection import OTHER_REASON_ID, REJECTION_REASONS, RejectionReasonError, build_rejection_payload
from utils.workflow_engine import (
    MESSAGES,
    batch_approve,
    can_perform_action,
    execute_workflow_action,
    get_workflow_history,
    jurisdiction_for,
    publish_location,
)
from utils.workflow_store import SurveyWorkflowStore

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/surveys")

ERROR_STATUS_CODES: dict[str, int] = {
    "not_found": 404,
    "unauthorized": 403,
    "invalid_transition": 409,
    "missing_reason": 400,
    "identifier_already_issued": 409,
    "invalid_admin_code": 422,
    "identifier_exhausted": 503,
    "persistence_failure": 500,
    "internal_error": 500,
}

NOT_TEXT_MESSAGE = "Giá trị phải là chuỗi ký tự"


class RejectionForm(FlaskForm):
    class Meta:
        csrf = False

    reason = SelectField(
        "Lý do từ chối",
        choices=[(r["id"], r["label"]) for r in REJECTION_REASONS],
        validators=[DataRequired()],
    )
    # No Optional() here: it would stop the chain before validate_custom_reason runs.
    custom_reason = StringField("Lý do cụ thể", validators=[Length(max=500)])
    notes = TextAreaField("Ghi chú thêm", validators=[Optional(), Length(max=2000)])

    def validate_custom_reason(self, field):
        if self.reason.data == OTHER_REASON_ID and not (field.data or "").strip():
            raise ValidationError("Vui lòng nhập lý do cụ thể")


def _result_response(result, success_status: int = 200):
    if result.success:
        return jsonify(result.to_dict()), success_status
    return jsonify(result.to_dict()), ERROR_STATUS_CODES.get(result.error, 400)


def _invalid_input(message: str, fields: dict | None = None):
    body = {"success": False, "error": "invalid_input", "message": message}
    if fields:
        body["fields"] = fields
    return jsonify(body), 400


def _json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _non_text_fields(payload: dict, *keys: str) -> dict:
    """Field errors for keys whose JSON value is present but not a string."""
    return {
        key: [NOT_TEXT_MESSAGE]
        for key in keys
        if payload.get(key) is not None and not isinstance(payload.get(key), str)
    }


@workflow_bp.route("/<string:survey_id>/actions", methods=["POST"])
@csrf.exempt
@login_required
def perform_action(survey_id):
    payload = _json_payload()
    bad_fields = _non_text_fields(payload, "action", "notes", "reason", "custom_reason")
    if bad_fields:
        return _invalid_input(NOT_TEXT_MESSAGE, bad_fields)

    action = (payload.get("action") or "").strip().lower()
    notes = payload.get("notes")
    metadata = None

    if action == "reject" and payload.get("reason"):
        form = RejectionForm()
        if not form.validate_on_submit():
            return _invalid_input(MESSAGES["missing_reason"], form.errors)
        try:
            rejection = build_rejection_payload(form.reason.data, form.custom_reason.data, form.notes.data)
        except RejectionReasonError as exc:
            return _invalid_input(MESSAGES["missing_reason"], {"reason": [str(exc)]})
        notes = rejection.notes
        metadata = rejection.metadata

    result = execute_workflow_action(
        survey_id,
        action,
        current_user.id,
        current_user.role_name,
        notes,
        metadata=metadata,
    )
    return _result_response(result)


@workflow_bp.route("/<string:survey_id>/permissions", methods=["GET"])
@login_required
def check_permission(survey_id):
    action = (request.args.get("action") or "").strip().lower()
    store = SurveyWorkflowStore()
    record = store.get_record(survey_id)
    if record is None:
        return jsonify({"allowed": False, "reason": MESSAGES["not_found"]}), 404
    role = current_user.role_name
    check = can_perform_action(record, action, role, jurisdiction_for(current_user, role))
    return jsonify(check.to_dict())


@workflow_bp.route("/batch-approve", methods=["POST"])
@csrf.exempt
@roles_required("commune_supervisor", "central_admin", "system_admin")
def batch_approve_surveys():
    payload = _json_payload()
    survey_ids = payload.get("survey_ids") or []
    max_batch = int(current_app.config.get("BATCH_APPROVE_MAX", 100))
    if not isinstance(survey_ids, list) or not survey_ids:
        return _invalid_input("Chưa chọn khảo sát nào")
    if len(survey_ids) > max_batch:
        return _invalid_input("Số lượng khảo sát vượt quá giới hạn")
    bad_fields = _non_text_fields(payload, "notes")
    if bad_fields:
        return _invalid_input(NOT_TEXT_MESSAGE, bad_fields)

    results = batch_approve(
        [str(s) for s in survey_ids],
        current_user.id,
        current_user.role_name,
        payload.get("notes"),
    )
    return jsonify(results.to_dict())


@workflow_bp.route("/<string:survey_id>/publish", methods=["POST"])
@csrf.exempt
@roles_required("central_admin", "system_admin")
def publish_survey(survey_id):
    payload = _json_payload()
    bad_fields = _non_text_fields(payload, "notes")
    if bad_fields:
        return _invalid_input(NOT_TEXT_MESSAGE, bad_fields)
    result = publish_location(survey_id, current_user.id, current_user.role_name, payload.get("notes"))
    return _result_response(result)


@workflow_bp.route("/<string:survey_id>/history", methods=["GET"])
@login_required
def survey_history(survey_id):
    store = SurveyWorkflowStore()
    if store.get_record(survey_id) is None:
        return jsonify({"success": False, "error": "not_found", "message": MESSAGES["not_found"]}), 404
    return jsonify({"survey_id": survey_id, "history": get_workflow_history(survey_id, store=store)})
