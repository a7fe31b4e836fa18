"""Issue reporting, triage, voting and analysis blueprint."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import String, case, cast, or_
from sqlalchemy.exc import SQLAlchemyError
from wtforms import FloatField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional

from extensions import db
from models import ISSUE_CATEGORIES, ISSUE_STATUSES, OFFICIAL_ROLES, URGENCY_LEVELS, AIAnalysis, Issue
from utils.analysis_service import analyze_issue, analyze_issue_safely, get_or_create_analysis, triage_rng
from utils.decorators import record_audit, roles_required
from utils.errors import AuthenticationRequired, InvalidInput, NotFound, PermissionDenied
from utils.forms import APIForm, Text, load_form, request_payload, string_list, strip_text
from utils.lifecycle import allowed_transitions, transition_issue
from utils.security import track_attempt
from utils.triage import KNOWN_DEPARTMENTS, MAX_PRIORITY, MIN_PRIORITY, suggest_for_report
from utils.vote_ledger import has_voted, toggle_vote, voted_issue_ids

issues_bp = Blueprint("issues", __name__, url_prefix="/issues")

SORT_OPTIONS = ("recent", "votes", "priority")


class IssueReportForm(APIForm):
    title = StringField("Title", validators=[Text(), DataRequired(), Length(max=255)], filters=[strip_text])
    description = TextAreaField(
        "Description", validators=[Text(), DataRequired(), Length(max=5000)], filters=[strip_text]
    )
    category = SelectField(
        "Category",
        choices=[(c, c) for c in ISSUE_CATEGORIES],
        validators=[DataRequired()],
    )
    address = StringField("Location", validators=[Text(), Optional(), Length(max=500)], filters=[strip_text])
    latitude = FloatField("Latitude", validators=[Optional(), NumberRange(min=-90, max=90)])
    longitude = FloatField("Longitude", validators=[Optional(), NumberRange(min=-180, max=180)])

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        # Optional() short-circuits per-field checks, so the location rules live here.
        if (self.latitude.data is None) != (self.longitude.data is None):
            self.longitude.errors.append("Latitude and longitude must be provided together.")
            return False
        if not self.address.data and self.latitude.data is None:
            self.address.errors.append("Provide an address or a map location.")
            return False
        return True


class SuggestionForm(APIForm):
    title = StringField("Title", validators=[Text(), Optional(), Length(max=255)], filters=[strip_text])
    description = TextAreaField("Description", validators=[Text(), Optional(), Length(max=5000)], filters=[strip_text])


class StatusUpdateForm(APIForm):
    status = SelectField("Status", choices=[(s, s) for s in ISSUE_STATUSES], validators=[DataRequired()])
    remarks = TextAreaField("Remarks", validators=[Text(), Optional(), Length(max=500)], filters=[strip_text])


def _issue_or_404(issue_id: str) -> Issue:
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        raise NotFound(f"Issue {issue_id} not found")
    return issue


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidInput(f"{name} must be an integer", details={"field": name})
    if value < 1:
        raise InvalidInput(f"{name} must be positive", details={"field": name})
    return value


def _issue_detail(issue: Issue) -> dict:
    payload = issue.to_payload(include_analysis=True)
    payload["status_history"] = [h.to_payload() for h in issue.status_history]
    payload["allowed_transitions"] = allowed_transitions(issue.status)
    payload["has_voted"] = has_voted(issue.id, current_user.id) if current_user.is_authenticated else False
    return payload


@issues_bp.route("", methods=["GET"])
def list_issues():
    category = request.args.get("category")
    status = request.args.get("status")
    sort = request.args.get("sort", "recent")
    text = (request.args.get("q") or "").strip()
    urgency = request.args.get("urgency")
    department = request.args.get("department")
    priority = _int_arg("priority", 0) or None
    page = _int_arg("page", 1)
    per_page = min(_int_arg("per_page", current_app.config.get("ISSUES_PER_PAGE", 20)), current_app.config.get("ISSUES_MAX_PER_PAGE", 100))

    if category and category not in ISSUE_CATEGORIES:
        raise InvalidInput(f"Unknown category: {category}", details={"field": "category"})
    if status and status not in ISSUE_STATUSES:
        raise InvalidInput(f"Unknown status: {status}", details={"field": "status"})
    if sort not in SORT_OPTIONS:
        raise InvalidInput(f"sort must be one of {', '.join(SORT_OPTIONS)}", details={"field": "sort"})
    if priority is not None and not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise InvalidInput(f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}", details={"field": "priority"})
    if urgency and urgency not in URGENCY_LEVELS:
        raise InvalidInput(f"Unknown urgency: {urgency}", details={"field": "urgency"})
    if department and department not in KNOWN_DEPARTMENTS:
        raise InvalidInput(f"Unknown department: {department}", details={"field": "department"})

    query = Issue.query
    if category:
        query = query.filter(Issue.category == category)
    if status:
        query = query.filter(Issue.status == status)
    if request.args.get("reporter") == "me":
        if not current_user.is_authenticated:
            raise AuthenticationRequired("Sign in to see your reports")
        query = query.filter(Issue.reporter_id == current_user.id)
    if text:
        pattern = f"%{text}%"
        query = query.filter(or_(Issue.title.ilike(pattern), Issue.description.ilike(pattern)))

    if sort == "priority" or priority or urgency or department:
        query = query.outerjoin(AIAnalysis, AIAnalysis.issue_id == Issue.id)
    if priority:
        query = query.filter(AIAnalysis.priority_score == priority)
    if urgency:
        query = query.filter(AIAnalysis.urgency_level == urgency)
    if department:
        # Department names are a closed set, so matching the quoted name inside the JSON text is exact.
        query = query.filter(cast(AIAnalysis.assigned_departments, String).like(f'%"{department}"%'))

    if sort == "priority":
        query = query.order_by(
            case((AIAnalysis.priority_score.is_(None), 1), else_=0),
            AIAnalysis.priority_score.desc(),
            Issue.vote_count.desc(),
            Issue.created_at.desc(),
        )
    elif sort == "votes":
        query = query.order_by(Issue.vote_count.desc(), Issue.created_at.desc())
    else:
        query = query.order_by(Issue.created_at.desc())

    pagination = query.paginate(page=page, per_page=per_page, error_out=False)
    return jsonify(
        {
            "issues": [issue.to_payload(include_analysis=True) for issue in pagination.items],
            "page": pagination.page,
            "per_page": pagination.per_page,
            "total": pagination.total,
            "pages": pagination.pages,
        }
    )


@issues_bp.route("", methods=["POST"])
@login_required
def report_issue():
    payload = request_payload()
    form = load_form(IssueReportForm, payload)
    image_urls = string_list(payload, "images", urls=True)
    video_urls = string_list(payload, "videos", urls=True)
    audio_urls = string_list(payload, "audio", urls=True)
    ai_tags = [tag.lower() for tag in string_list(payload, "ai_tags", max_items=30)]

    if not track_attempt(f"report:{current_user.id}", limit=int(current_app.config.get("REPORT_RATE_LIMIT", 30))):
        raise PermissionDenied("Report limit reached. Try again later.")

    try:
        issue = Issue(
            reporter_id=current_user.id,
            title=form.title.data,
            description=form.description.data,
            category=form.category.data,
            status="new",
            address=form.address.data or None,
            latitude=form.latitude.data,
            longitude=form.longitude.data,
            image_urls=image_urls,
            video_urls=video_urls,
            audio_urls=audio_urls,
            ai_tags=ai_tags,
        )
        db.session.add(issue)
        db.session.flush()
        record_audit("ISSUE_REPORTED", context_entity=f"issue:{issue.id}")
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while saving issue")
        raise

    current_app.logger.info(
        "Issue reported",
        extra={"issue_id": issue.id, "category": issue.category, "reporter_id": current_user.id},
    )

    if current_app.config.get("ANALYZE_ON_SUBMIT", True):
        analyze_issue_safely(issue.id)

    issue = _issue_or_404(issue.id)
    return jsonify({"issue": _issue_detail(issue)}), 201


@issues_bp.route("/suggest", methods=["POST"])
def suggest_category():
    """Fast path used while the report form is being filled in."""
    payload = request_payload()
    form = load_form(SuggestionForm, payload)
    tags = string_list(payload, "tags", max_items=30)
    suggestion = suggest_for_report(
        form.title.data or "",
        form.description.data or "",
        tags=tags,
        rng=triage_rng(),
    )
    return jsonify({"suggestion": suggestion})


@issues_bp.route("/<string:issue_id>", methods=["GET"])
def view_issue(issue_id):
    return jsonify({"issue": _issue_detail(_issue_or_404(issue_id))})


@issues_bp.route("/<string:issue_id>/analysis", methods=["GET"])
def view_analysis(issue_id):
    # First reads are open to anyone, so they only ever build the rule-based record.
    record = get_or_create_analysis(issue_id, use_ai=False)
    return jsonify({"analysis": record.to_payload()})


@issues_bp.route("/<string:issue_id>/analysis", methods=["POST"])
@roles_required(*OFFICIAL_ROLES)
def regenerate_analysis(issue_id):
    issue = _issue_or_404(issue_id)
    record = analyze_issue(issue)
    record_audit("ANALYSIS_REGENERATED", context_entity=f"issue:{issue.id}")
    db.session.commit()
    return jsonify({"analysis": record.to_payload()})


@issues_bp.route("/<string:issue_id>/vote", methods=["POST"])
@login_required
def vote(issue_id):
    if not track_attempt(f"vote:{current_user.id}", limit=int(current_app.config.get("VOTE_RATE_LIMIT", 120))):
        raise PermissionDenied("Vote limit reached. Try again later.")
    result = toggle_vote(issue_id, current_user)
    record_audit("ISSUE_VOTED" if result.voted else "ISSUE_VOTE_RETRACTED", context_entity=f"issue:{result.issue_id}")
    db.session.commit()
    return jsonify(result.to_payload())


@issues_bp.route("/<string:issue_id>/vote", methods=["GET"])
def vote_state(issue_id):
    issue = _issue_or_404(issue_id)
    voted = has_voted(issue.id, current_user.id) if current_user.is_authenticated else False
    return jsonify({"issue_id": issue.id, "voted": voted, "votes": issue.vote_count})


@issues_bp.route("/votes/mine", methods=["GET"])
@login_required
def my_votes():
    return jsonify({"issue_ids": voted_issue_ids(current_user.id)})


@issues_bp.route("/<string:issue_id>/status", methods=["POST"])
@roles_required(*OFFICIAL_ROLES)
def update_status(issue_id):
    issue = _issue_or_404(issue_id)
    form = load_form(StatusUpdateForm)
    previous = issue.status
    transition_issue(issue, form.status.data, actor_id=current_user.id, remarks=form.remarks.data or None)
    record_audit("ISSUE_STATUS_CHANGED", context_entity=f"issue:{issue.id}")
    db.session.commit()
    current_app.logger.info(
        "Issue status changed",
        extra={"issue_id": issue.id, "from": previous, "to": issue.status, "by": current_user.id},
    )
    return jsonify({"issue": _issue_detail(issue)})
