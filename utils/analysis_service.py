"""Server-side issue analysis: heuristic triage, optional AI refinement, durable record."""
from __future__ import annotations

import random
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import AIAnalysis, Issue
from utils import ai_gateway
from utils.errors import NotFound, UpstreamUnavailable
from utils.triage import build_analysis


def triage_rng() -> random.Random:
    """Seeded when TRIAGE_RANDOM_SEED is configured so estimates are reproducible."""
    return random.Random(current_app.config.get("TRIAGE_RANDOM_SEED"))


def similar_issue_candidates(issue: Issue) -> List[Issue]:
    return (
        Issue.query.filter(Issue.category == issue.category, Issue.id != issue.id)
        .order_by(Issue.created_at.desc())
        .limit(200)
        .all()
    )


def analyze_issue(issue: Issue, rng: Optional[random.Random] = None, use_ai: bool = True) -> AIAnalysis:
    """Compute and store a complete analysis for ``issue``, replacing any earlier one."""
    limit = int(current_app.config.get("SIMILAR_ISSUE_LIMIT", 3))
    payload = build_analysis(issue, similar_issue_candidates(issue), rng=rng or triage_rng(), similar_limit=limit)

    if use_ai and current_app.config.get("GEMINI_API_KEY"):
        try:
            payload.update(ai_gateway.refine_analysis(issue, payload))
            payload["source"] = "ai"
        except UpstreamUnavailable as exc:
            current_app.logger.info(
                "AI refinement unavailable; keeping heuristic analysis",
                extra={"issue_id": issue.id, "reason": exc.message},
            )

    record = AIAnalysis.query.filter_by(issue_id=issue.id).first()
    if record is None:
        record = AIAnalysis(issue_id=issue.id)
        db.session.add(record)
    record.apply(payload)
    db.session.commit()

    current_app.logger.info(
        "Issue analysis stored",
        extra={
            "issue_id": issue.id,
            "priority": record.priority_score,
            "urgency": record.urgency_level,
            "source": record.source,
        },
    )
    return record


def analyze_issue_safely(issue_id: str) -> Optional[AIAnalysis]:
    """Fire-and-forget wrapper used after a report is committed; never raises."""
    try:
        issue = db.session.get(Issue, issue_id)
        if issue is None:
            current_app.logger.warning("Analysis skipped for missing issue", extra={"issue_id": issue_id})
            return None
        return analyze_issue(issue)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while storing analysis", extra={"issue_id": issue_id})
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Unexpected error during issue analysis", extra={"issue_id": issue_id})
    return None


def get_or_create_analysis(issue_id: str, use_ai: bool = True) -> AIAnalysis:
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        raise NotFound(f"Issue {issue_id} not found")
    if issue.analysis is not None:
        return issue.analysis
    return analyze_issue(issue, use_ai=use_ai)
