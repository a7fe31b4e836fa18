"""Issue status transitions driven by official triage actions."""
from __future__ import annotations

from typing import Optional

from extensions import db
from models import ISSUE_STATUSES, Issue, IssueStatusHistory
from utils.errors import InvalidInput

FORWARD_ORDER: tuple[str, ...] = ("new", "verified", "in-progress", "resolved")
FAKE_REACHABLE_FROM = frozenset({"new", "verified"})
TERMINAL_STATUSES = frozenset({"resolved", "fake"})


class InvalidTransition(InvalidInput):
    error_code = "invalid_transition"


def can_transition(current: str, new: str) -> bool:
    if current not in ISSUE_STATUSES or new not in ISSUE_STATUSES:
        return False
    if current in TERMINAL_STATUSES or current == new:
        return False
    if new == "fake":
        return current in FAKE_REACHABLE_FROM
    return FORWARD_ORDER.index(new) > FORWARD_ORDER.index(current)


def allowed_transitions(current: str) -> list[str]:
    return [status for status in ISSUE_STATUSES if can_transition(current, status)]


def transition_issue(issue: Issue, new_status: str, actor_id: Optional[str] = None, remarks: Optional[str] = None) -> IssueStatusHistory:
    """Move ``issue`` forward and record the change; the caller commits."""
    if new_status not in ISSUE_STATUSES:
        raise InvalidInput(f"Unknown status: {new_status!r}", details={"field": "status"})
    if not can_transition(issue.status, new_status):
        raise InvalidTransition(
            f"Cannot move issue from {issue.status} to {new_status}",
            details={"allowed": allowed_transitions(issue.status)},
        )
    history = IssueStatusHistory(
        issue_id=issue.id,
        previous_status=issue.status,
        new_status=new_status,
        remarks=remarks,
        changed_by=actor_id,
    )
    issue.status = new_status
    db.session.add(history)
    return history
