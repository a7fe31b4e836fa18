"""Core data models for identity, audit trails, civic issues, votes and triage analyses."""
import uuid
from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


ISSUE_CATEGORIES: tuple[str, ...] = (
	"Road Damage",
	"Garbage & Waste",
	"Water Leakage",
	"Street Light Issue",
	"Drainage Blockage",
	"Tree Hazard",
	"Graffiti",
	"Abandoned Vehicle",
	"Noise Complaint",
	"Sidewalk Damage",
	"Traffic Signal Issue",
	"Park Maintenance",
	"Public Property Damage",
	"Illegal Dumping",
	"Animal Control",
	"Pest Control",
	"Snow Removal",
	"Public Safety Concern",
	"Parking Violation",
	"Water Pollution",
	"Electricity Issues",
	"Encroachment",
	"Public Transport",
	"Sewage Problem",
	"Construction",
	"Environmental Hazard",
	"Electrical Hazard",
	"Other",
)

# Linear triage lifecycle; "fake" is a side exit handled by utils.lifecycle.
ISSUE_STATUSES: tuple[str, ...] = (
	"new",
	"verified",
	"in-progress",
	"resolved",
	"fake",
)

URGENCY_LEVELS: tuple[str, ...] = (
	"Low",
	"Low-Medium",
	"Medium",
	"High",
	"Critical",
)

ANALYSIS_SOURCES: tuple[str, ...] = (
	"heuristic",
	"ai",
)

ROLE_CITIZEN = "Citizen"
ROLE_OFFICIAL = "Official"
ROLE_ADMIN = "Admin"

OFFICIAL_ROLES: tuple[str, ...] = (ROLE_OFFICIAL, ROLE_ADMIN)


def _sql_in(column: str, values: tuple[str, ...]) -> str:
	quoted = ",".join("'" + value.replace("'", "''") + "'" for value in values)
	return f"{column} IN ({quoted})"


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
	is_active = db.Column(db.Boolean, default=True, nullable=False)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
	last_login_at = db.Column(db.DateTime, nullable=True)

	role = db.relationship("Role", back_populates="users")
	audit_logs = db.relationship("AuditLog", back_populates="user", lazy="dynamic")
	issues = db.relationship("Issue", back_populates="reporter", lazy="dynamic")
	votes = db.relationship("Vote", back_populates="voter", lazy="dynamic")

	def set_password(self, password: str) -> None:
		self.password_hash = generate_password_hash(password, method="pbkdf2:sha256", salt_length=16)

	def check_password(self, password: str) -> bool:
		return check_password_hash(self.password_hash, password)

	@property
	def role_name(self) -> str:
		return self.role.name if self.role else ""

	@property
	def is_admin(self) -> bool:
		return self.role_name.lower() == ROLE_ADMIN.lower()

	@property
	def is_official(self) -> bool:
		return self.role_name.lower() in {r.lower() for r in OFFICIAL_ROLES}

	@property
	def active(self) -> bool:  # Flask-Login compatibility alias
		return self.is_active

	def to_payload(self) -> dict:
		return {
			"id": self.id,
			"full_name": self.full_name,
			"email": self.email,
			"role": self.role_name,
			"created_at": self.created_at.isoformat() if self.created_at else None,
		}


class AuditLog(db.Model):
	__tablename__ = "audit_logs"

	id = db.Column(db.Integer, primary_key=True)
	user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	action_type = db.Column(db.String(50), nullable=False)
	ip_address = db.Column(db.String(64), nullable=True)
	user_agent = db.Column(db.String(255), nullable=True)
	context_entity = db.Column(db.String(120), nullable=True)
	timestamp = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	user = db.relationship("User", back_populates="audit_logs")


class Issue(db.Model):
	__tablename__ = "issues"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	reporter_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	title = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	category = db.Column(db.String(50), nullable=False, index=True)
	status = db.Column(db.String(20), nullable=False, default="new", index=True)
	address = db.Column(db.String(500), nullable=True)
	latitude = db.Column(db.Float, nullable=True)
	longitude = db.Column(db.Float, nullable=True)
	vote_count = db.Column(db.Integer, nullable=False, default=0)
	image_urls = db.Column(db.JSON, nullable=False, default=list)
	video_urls = db.Column(db.JSON, nullable=False, default=list)
	audio_urls = db.Column(db.JSON, nullable=False, default=list)
	ai_tags = db.Column(db.JSON, nullable=False, default=list)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	updated_at = db.Column(
		db.DateTime,
		default=datetime.utcnow,
		onupdate=datetime.utcnow,
		nullable=False,
		index=True,
	)

	__table_args__ = (
		db.CheckConstraint(_sql_in("category", ISSUE_CATEGORIES), name="ck_issue_category_valid"),
		db.CheckConstraint(_sql_in("status", ISSUE_STATUSES), name="ck_issue_status_valid"),
		db.CheckConstraint("vote_count >= 0", name="ck_issue_vote_count_non_negative"),
		db.Index("ix_issues_category_status", "category", "status"),
	)

	reporter = db.relationship("User", back_populates="issues")
	votes = db.relationship("Vote", back_populates="issue", cascade="all, delete-orphan", lazy="dynamic")
	analysis = db.relationship("AIAnalysis", back_populates="issue", uselist=False, cascade="all, delete-orphan")
	status_history = db.relationship(
		"IssueStatusHistory",
		back_populates="issue",
		order_by="IssueStatusHistory.changed_at",
		cascade="all, delete-orphan",
	)

	@property
	def location_payload(self):
		if self.latitude is not None and self.longitude is not None:
			return {"address": self.address or "", "lat": self.latitude, "lng": self.longitude}
		return self.address

	def to_payload(self, include_analysis: bool = False) -> dict:
		payload = {
			"id": self.id,
			"title": self.title,
			"description": self.description,
			"category": self.category,
			"status": self.status,
			"location": self.location_payload,
			"votes": self.vote_count,
			"images": list(self.image_urls or []),
			"videos": list(self.video_urls or []),
			"audio": list(self.audio_urls or []),
			"ai_tags": list(self.ai_tags or []),
			"reported_by": self.reporter_id,
			"reported_at": self.created_at.isoformat() if self.created_at else None,
			"updated_at": self.updated_at.isoformat() if self.updated_at else None,
		}
		if include_analysis:
			payload["analysis"] = self.analysis.to_payload() if self.analysis else None
		return payload


class IssueStatusHistory(db.Model):
	__tablename__ = "issue_status_history"

	id = db.Column(db.Integer, primary_key=True)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, index=True)
	previous_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=False, index=True)
	remarks = db.Column(db.String(500), nullable=True)
	changed_by = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)
	changed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(_sql_in("new_status", ISSUE_STATUSES), name="ck_issue_status_history_valid"),
	)

	issue = db.relationship("Issue", back_populates="status_history")
	actor = db.relationship("User")

	def to_payload(self) -> dict:
		return {
			"previous_status": self.previous_status,
			"new_status": self.new_status,
			"remarks": self.remarks,
			"changed_by": self.changed_by,
			"changed_at": self.changed_at.isoformat() if self.changed_at else None,
		}


class Vote(db.Model):
	__tablename__ = "votes"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, index=True)
	voter_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.UniqueConstraint("issue_id", "voter_id", name="uq_vote_issue_voter"),
	)

	issue = db.relationship("Issue", back_populates="votes")
	voter = db.relationship("User", back_populates="votes")


class AIAnalysis(db.Model):
	__tablename__ = "ai_analyses"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	issue_id = db.Column(db.String(36), db.ForeignKey("issues.id"), nullable=False, unique=True, index=True)
	predicted_category = db.Column(db.String(50), nullable=False)
	category_confidence = db.Column(db.Float, nullable=False)
	alternative_categories = db.Column(db.JSON, nullable=False, default=dict)
	extracted_keywords = db.Column(db.JSON, nullable=False, default=list)
	similar_issue_ids = db.Column(db.JSON, nullable=False, default=list)
	similarity_scores = db.Column(db.JSON, nullable=False, default=dict)
	duplicate_score = db.Column(db.Float, nullable=False, default=0.0)
	priority_score = db.Column(db.Integer, nullable=False, index=True)
	urgency_level = db.Column(db.String(20), nullable=False)
	impact_assessment = db.Column(db.String(255), nullable=False)
	assigned_departments = db.Column(db.JSON, nullable=False, default=list)
	estimated_response_time = db.Column(db.Integer, nullable=False)
	resource_requirements = db.Column(db.JSON, nullable=False, default=dict)
	source = db.Column(db.String(20), nullable=False, default="heuristic")
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)

	__table_args__ = (
		db.CheckConstraint(_sql_in("predicted_category", ISSUE_CATEGORIES), name="ck_analysis_category_valid"),
		db.CheckConstraint(_sql_in("urgency_level", URGENCY_LEVELS), name="ck_analysis_urgency_valid"),
		db.CheckConstraint(_sql_in("source", ANALYSIS_SOURCES), name="ck_analysis_source_valid"),
		db.CheckConstraint("priority_score BETWEEN 1 AND 5", name="ck_analysis_priority_range"),
		db.CheckConstraint("estimated_response_time > 0", name="ck_analysis_response_time_positive"),
	)

	issue = db.relationship("Issue", back_populates="analysis")

	# Field names are read by the officials' dashboards; keep them stable.
	PAYLOAD_FIELDS: tuple[str, ...] = (
		"predicted_category",
		"category_confidence",
		"alternative_categories",
		"extracted_keywords",
		"similar_issue_ids",
		"similarity_scores",
		"duplicate_score",
		"priority_score",
		"urgency_level",
		"impact_assessment",
		"assigned_departments",
		"estimated_response_time",
		"resource_requirements",
	)

	def apply(self, payload: dict) -> None:
		"""Overwrite every analysis field; records are never partially updated."""
		missing = [field for field in self.PAYLOAD_FIELDS if field not in payload]
		if missing:
			raise ValueError(f"Analysis payload missing fields: {', '.join(missing)}")
		for field in self.PAYLOAD_FIELDS:
			setattr(self, field, payload[field])
		self.source = payload.get("source", "heuristic")
		self.created_at = datetime.utcnow()

	def to_payload(self) -> dict:
		payload = {"id": self.id, "issue_id": self.issue_id}
		for field in self.PAYLOAD_FIELDS:
			payload[field] = getattr(self, field)
		payload["source"] = self.source
		payload["created_at"] = self.created_at.isoformat() if self.created_at else None
		return payload
