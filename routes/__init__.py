"""Blueprint registration plus health and community statistics endpoints."""
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import ISSUE_CATEGORIES, ISSUE_STATUSES, OFFICIAL_ROLES, Issue
from utils.decorators import roles_required
from utils.errors import InvalidInput
from utils.insights import analysis_insights, issue_hotspots
from .assistant import assistant_bp
from .auth import auth_bp
from .issues import issues_bp
from .routing import routing_bp

main_bp = Blueprint("main", __name__)

__all__ = ["main_bp", "auth_bp", "issues_bp", "assistant_bp", "routing_bp"]


@main_bp.route("/health", methods=["GET"])
def health():
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        current_app.logger.exception("Health check database ping failed")
        database = "unavailable"
    status_code = 200 if database == "ok" else 503
    return jsonify({"status": "ok" if status_code == 200 else "degraded", "database": database}), status_code


@main_bp.route("/stats", methods=["GET"])
def community_stats():
    by_status = dict.fromkeys(ISSUE_STATUSES, 0)
    for status, count in db.session.query(Issue.status, func.count(Issue.id)).group_by(Issue.status):
        by_status[status] = count

    by_category = {
        category: count
        for category, count in db.session.query(Issue.category, func.count(Issue.id))
        .group_by(Issue.category)
        .order_by(func.count(Issue.id).desc())
        if category in ISSUE_CATEGORIES
    }
    total = sum(by_status.values())
    total_votes = db.session.query(func.coalesce(func.sum(Issue.vote_count), 0)).scalar() or 0
    # Fake reports are excluded from the resolution rate denominator.
    genuine = total - by_status["fake"]
    resolved_rate = round(by_status["resolved"] / genuine * 100, 2) if genuine else 0.0

    return jsonify(
        {
            "total_issues": total,
            "total_votes": int(total_votes),
            "by_status": by_status,
            "by_category": by_category,
            "resolved_rate": resolved_rate,
        }
    )


@main_bp.route("/stats/insights", methods=["GET"])
@roles_required(*OFFICIAL_ROLES)
def analysis_stats():
    return jsonify(analysis_insights())


@main_bp.route("/stats/hotspots", methods=["GET"])
def hotspots():
    category = request.args.get("category")
    if category and category not in ISSUE_CATEGORIES:
        raise InvalidInput(f"Unknown category: {category}", details={"field": "category"})
    clusters = issue_hotspots(category)
    return jsonify({"hotspots": clusters, "total": sum(c["count"] for c in clusters)})
