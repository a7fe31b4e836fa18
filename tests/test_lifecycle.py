"""Issue status lifecycle: forward-only moves, fake side exit, history rows."""

import pytest

from extensions import db
from models import Issue, IssueStatusHistory
from utils.errors import InvalidInput
from utils.lifecycle import InvalidTransition, allowed_transitions, can_transition, transition_issue


@pytest.mark.parametrize(
    "current, new, expected",
    [
        ("new", "verified", True),
        ("new", "in-progress", True),
        ("new", "resolved", True),
        ("new", "fake", True),
        ("verified", "fake", True),
        ("in-progress", "fake", False),
        ("verified", "new", False),
        ("resolved", "in-progress", False),
        ("fake", "verified", False),
        ("new", "new", False),
        ("new", "closed", False),
    ],
)
def test_can_transition(current, new, expected):
    assert can_transition(current, new) is expected


def test_terminal_statuses_have_no_exits():
    assert allowed_transitions("resolved") == []
    assert allowed_transitions("fake") == []


def test_allowed_transitions_from_new():
    assert allowed_transitions("new") == ["verified", "in-progress", "resolved", "fake"]


def test_transition_records_history(ctx, make_user, make_issue):
    actor_id = make_user().id
    issue = db.session.get(Issue, make_issue(actor_id))

    transition_issue(issue, "verified", actor_id=actor_id, remarks="Seen on site")
    db.session.commit()

    history = IssueStatusHistory.query.filter_by(issue_id=issue.id).one()
    assert issue.status == "verified"
    assert history.previous_status == "new"
    assert history.new_status == "verified"
    assert history.changed_by == actor_id
    assert history.to_payload()["remarks"] == "Seen on site"


def test_backward_transition_is_rejected(ctx, make_user, make_issue):
    issue = db.session.get(Issue, make_issue(make_user().id, status="in-progress"))

    with pytest.raises(InvalidTransition) as excinfo:
        transition_issue(issue, "verified")

    assert excinfo.value.error_code == "invalid_transition"
    assert excinfo.value.details["allowed"] == ["resolved"]
    assert issue.status == "in-progress"


def test_unknown_status_is_invalid_input(ctx, make_user, make_issue):
    issue = db.session.get(Issue, make_issue(make_user().id))
    with pytest.raises(InvalidInput):
        transition_issue(issue, "closed")
