"""Authentication blueprint: registration, session login and role management."""
from datetime import datetime

from flask import Blueprint, current_app, jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from sqlalchemy.exc import IntegrityError
from wtforms import BooleanField, PasswordField, SelectField, StringField
from wtforms.validators import DataRequired, Email, EqualTo, Length, ValidationError

from extensions import db
from models import ROLE_ADMIN, ROLE_CITIZEN, ROLE_OFFICIAL, Role, User
from utils.decorators import record_audit, roles_required
from utils.errors import AuthenticationRequired, ConstraintViolation, InvalidInput, NotFound, PermissionDenied
from utils.forms import APIForm, Text, load_form, strip_text
from utils.security import password_meets_policy, track_attempt

auth_bp = Blueprint("auth", __name__)

ROLE_DESCRIPTIONS: dict[str, str] = {
    ROLE_CITIZEN: "Reports and votes on civic issues",
    ROLE_OFFICIAL: "Triages, verifies and resolves reported issues",
    ROLE_ADMIN: "Platform administrator with full privileges",
}


class RegistrationForm(APIForm):
    full_name = StringField("Full Name", validators=[Text(), DataRequired(), Length(max=150)], filters=[strip_text])
    email = StringField("Email", validators=[Text(), DataRequired(), Email(), Length(max=255)], filters=[strip_text])
    password = PasswordField("Password", validators=[Text(), DataRequired(), Length(min=12, max=128)])
    confirm_password = PasswordField(
        "Confirm Password",
        validators=[Text(), DataRequired(), EqualTo("password", message="Passwords must match.")],
    )

    def validate_email(self, field):
        if User.query.filter_by(email=field.data.lower()).first():
            raise ValidationError("An account with this email already exists.")

    def validate_password(self, field):
        ok, reason = password_meets_policy(field.data)
        if not ok:
            raise ValidationError(reason)


class LoginForm(APIForm):
    email = StringField("Email", validators=[Text(), DataRequired(), Email(), Length(max=255)], filters=[strip_text])
    password = PasswordField("Password", validators=[Text(), DataRequired()])
    remember_me = BooleanField("Remember me")


class RoleAssignmentForm(APIForm):
    role = SelectField(
        "Role",
        choices=[(name, name) for name in ROLE_DESCRIPTIONS],
        validators=[DataRequired()],
    )


@auth_bp.route("/csrf-token", methods=["GET"])
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@auth_bp.route("/register", methods=["POST"])
def register():
    if current_user.is_authenticated:
        raise InvalidInput("Already signed in")

    form = load_form(RegistrationForm)
    try:
        role = Role.get_or_create(ROLE_CITIZEN, description=ROLE_DESCRIPTIONS[ROLE_CITIZEN])
        user = User(
            full_name=form.full_name.data,
            email=form.email.data.lower(),
            role=role,
            is_active=True,
        )
        user.set_password(form.password.data)
        db.session.add(user)
        db.session.flush()
        record_audit("REGISTER", user_id=user.id)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConstraintViolation("An account with this email already exists.") from exc

    current_app.logger.info("User registered", extra={"user_id": user.id})
    return jsonify({"user": user.to_payload()}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    form = load_form(LoginForm)
    email = form.email.data.lower()
    if not track_attempt(f"login:{email}", limit=10, window_seconds=900):
        raise PermissionDenied("Too many login attempts. Try again later.")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(form.password.data):
        record_audit("LOGIN_FAILED", user_id=user.id if user else None)
        db.session.commit()
        raise AuthenticationRequired("Invalid credentials provided.")

    if not user.is_active:
        raise PermissionDenied("Your account is inactive. Please contact support.")

    login_user(user, remember=bool(form.remember_me.data))
    session.permanent = True
    user.last_login_at = datetime.utcnow()
    record_audit("LOGIN", user_id=user.id)
    db.session.commit()
    return jsonify({"user": user.to_payload()})


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    user_id = current_user.id
    logout_user()
    session.clear()
    record_audit("LOGOUT", user_id=user_id)
    db.session.commit()
    return jsonify({"logged_out": True})


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify({"user": current_user.to_payload()})


@auth_bp.route("/users/<string:user_id>/role", methods=["POST"])
@roles_required(ROLE_ADMIN)
def assign_role(user_id):
    form = load_form(RoleAssignmentForm)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    role = Role.get_or_create(form.role.data, description=ROLE_DESCRIPTIONS[form.role.data])
    user.role = role
    record_audit("ROLE_ASSIGNED", context_entity=f"user:{user.id}")
    db.session.commit()
    current_app.logger.info("Role assigned", extra={"user_id": user.id, "role": role.name, "by": current_user.id})
    return jsonify({"user": user.to_payload()})
