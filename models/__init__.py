"""Core data models for accounts, survey locations, issued identifiers, and approval trails."""
import uuid
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


SURVEY_STATUSES: tuple[str, ...] = (
	"pending",
	"reviewed",
	"approved_commune",
	"approved_central",
	"rejected",
	"published",
)

STATUS_LABELS: dict[str, str] = {
	"pending": "Chờ xử lý",
	"reviewed": "Đã xem xét",
	"approved_commune": "Tỉnh đã duyệt",
	"approved_central": "Trung ương đã duyệt",
	"rejected": "Từ chối",
	"published": "Đã công bố",
}

USER_ROLES: tuple[str, ...] = (
	"commune_officer",
	"commune_supervisor",
	"central_admin",
	"system_admin",
)

ROLE_DESCRIPTIONS: dict[str, str] = {
	"commune_officer": "Cán bộ xã: tiếp nhận và chuyển tiếp hồ sơ khảo sát",
	"commune_supervisor": "Cán bộ tỉnh: phê duyệt hoặc từ chối hồ sơ đã xem xét",
	"central_admin": "Cán bộ trung ương: phê duyệt cuối cùng và cấp mã định danh",
	"system_admin": "Quản trị hệ thống",
}

# Workflow verbs a caller may request.
WORKFLOW_ACTIONS: tuple[str, ...] = (
	"submit",
	"review",
	"approve",
	"reject",
	"forward",
)

# Past-tense verbs stored on approval_history rows.
APPROVAL_ACTIONS: tuple[str, ...] = (
	"submitted",
	"reviewed",
	"approved",
	"rejected",
	"forwarded",
	"published",
)


def _in_clause(values: tuple[str, ...]) -> str:
	return ",".join(f"'{v}'" for v in values)


class Role(db.Model):
	__tablename__ = "roles"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(50), unique=True, nullable=False, index=True)
	description = db.Column(db.String(255), nullable=True)

	users = db.relationship("User", back_populates="role", lazy="dynamic")

	@staticmethod
	def get_or_create(name: str, description: str = ""):
		role = Role.query.filter_by(name=name).first()
		if role:
			return role
		role = Role(name=name, description=description)
		db.session.add(role)
		db.session.commit()
		return role


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	full_name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), unique=True, nullable=False, index=True)
	password_hash = db.Column(db.String(255), nullable=False)
	role_id = db.Column(db.Integer, db.ForeignKey("roles.id"), nullable=False)
	province_code = db.Column(db.String(10), nullable=True, index=True)
	ward_code = db.Column(db.String(10), nullable=True, index=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	role = db.relationship("Role", back_populates="users")
	audit_logs = db.relationship("AuditLog", back_populates="user", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	@property
	def role_name(self) -> str:
		return self.role.name if self.role else ""

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	action_type = db.Column(db.String(50), nullable=False)
	resource_type = db.Column(db.String(50), nullable=True, index=True)
	resource_id = db.Column(db.String(64), nullable=True, index=True)
	extra_metadata = db.Column("metadata", db.JSON, nullable=True)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	user = db.relationship("User", back_populates="audit_logs")


class SurveyLocation(db.Model):
	__tablename__ = "survey_locations"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	surveyor_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)
	location_name = db.Column(db.String(255), nullable=True)
	address = db.Column(db.String(500), nullable=True)
	house_number = db.Column(db.String(50), nullable=True)
	street = db.Column(db.String(255), nullable=True)
	hamlet = db.Column(db.String(255), nullable=True)
	province_code = db.Column(db.String(10), nullable=True, index=True)
	district_code = db.Column(db.String(10), nullable=True, index=True)
	ward_code = db.Column(db.String(10), nullable=True, index=True)
	province_id = db.Column(db.Integer, nullable=True, index=True)
	ward_id = db.Column(db.Integer, nullable=True, index=True)
	latitude = db.Column(db.Numeric(9, 6), nullable=False)
	longitude = db.Column(db.Numeric(9, 6), nullable=False)
	accuracy = db.Column(db.Float, nullable=True)
	object_type = db.Column(db.String(50), nullable=True)
	land_use_type = db.Column(db.String(50), nullable=True)
	owner_name = db.Column(db.String(255), nullable=True)
	parcel_code = db.Column(db.String(64), nullable=True)
	notes = db.Column(db.Text, nullable=True)
	status = db.Column(db.String(20), nullable=False, default="pending", index=True)
	location_identifier = db.Column(db.String(12), nullable=True, unique=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(
			f"status IN ({_in_clause(SURVEY_STATUSES)})",
			name="ck_survey_status_valid",
		),
		db.Index("ix_survey_admin_status", "province_code", "ward_code", "status"),
	)

	surveyor = db.relationship("User")
	identifiers = db.relationship(
		"LocationIdentifier",
		back_populates="survey_location",
		order_by="LocationIdentifier.assigned_at",
	)
	approval_history = db.relationship(
		"ApprovalHistory",
		back_populates="survey_location",
		order_by="ApprovalHistory.created_at",
	)

	@property
	def status_label(self) -> str:
		return STATUS_LABELS.get(self.status, self.status)

	def summary_payload(self) -> dict:
		return {
			"id": str(self.id),
			"location_name": self.location_name,
			"address": self.address,
			"latitude": float(self.latitude) if self.latitude is not None else None,
			"longitude": float(self.longitude) if self.longitude is not None else None,
			"object_type": self.object_type,
			"province_code": self.province_code,
			"ward_code": self.ward_code,
			"status": self.status,
			"status_label": self.status_label,
			"location_identifier": self.location_identifier,
		}


class LocationIdentifier(db.Model):
	__tablename__ = "location_identifiers"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	survey_location_id = db.Column(db.String(36), db.ForeignKey("survey_locations.id"), nullable=False, index=True)
	location_id = db.Column(db.String(12), nullable=False, unique=True, index=True)
	admin_code = db.Column(db.String(6), nullable=False, index=True)
	sequence_number = db.Column(db.String(6), nullable=False)
	assigned_by = db.Column(db.String(36), nullable=False)
	assigned_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
	deactivated_at = db.Column(db.DateTime, nullable=True)
	deactivated_by = db.Column(db.String(36), nullable=True)
	deactivation_reason = db.Column(db.String(500), nullable=True)

	__table_args__ = (
		db.CheckConstraint("length(location_id) = 12", name="ck_location_id_length"),
		db.Index(
			"uq_active_identifier_per_location",
			"survey_location_id",
			unique=True,
			postgresql_where=db.text("is_active"),
			sqlite_where=db.text("is_active = 1"),
		),
	)

	survey_location = db.relationship("SurveyLocation", back_populates="identifiers")

	def public_payload(self) -> dict:
		return {
			"location_id": self.location_id,
			"admin_code": self.admin_code,
			"sequence_number": self.sequence_number,
			"is_active": self.is_active,
			"assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
		}


class ApprovalHistory(db.Model):
	__tablename__ = "approval_history"

	id = db.Column(db.Integer, primary_key=True)
	survey_location_id = db.Column(db.String(36), db.ForeignKey("survey_locations.id"), nullable=False, index=True)
	action = db.Column(db.String(20), nullable=False, index=True)
	actor_id = db.Column(db.String(36), nullable=False, index=True)
	actor_role = db.Column(db.String(50), nullable=False)
	previous_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=True)
	notes = db.Column(db.Text, nullable=True)
	extra_metadata = db.Column("metadata", db.JSON, nullable=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(
			f"action IN ({_in_clause(APPROVAL_ACTIONS)})",
			name="ck_approval_action_valid",
		),
		db.Index("ix_approval_history_location_created", "survey_location_id", "created_at"),
	)

	survey_location = db.relationship("SurveyLocation", back_populates="approval_history")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"survey_location_id": str(self.survey_location_id),
			"action": self.action,
			"actor_id": self.actor_id,
			"actor_role": self.actor_role,
			"previous_status": self.previous_status,
			"new_status": self.new_status,
			"notes": self.notes,
			"metadata": self.extra_metadata,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}
