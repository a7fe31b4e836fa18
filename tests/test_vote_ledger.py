"""
Vote ledger
===========
One vote per (issue, voter); the denormalized counter always equals the ledger.
"""

from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from extensions import db
from models import Issue, User, Vote
from utils import vote_ledger
from utils.errors import AuthenticationRequired, ConstraintViolation, NotFound


def _ledger_count(issue_id):
    return db.session.execute(select(func.count(Vote.id)).where(Vote.issue_id == issue_id)).scalar_one()


@pytest.fixture
def citizen(ctx, make_user):
    return db.session.get(User, make_user().id)


@pytest.fixture
def issue_id(ctx, make_user, make_issue):
    return make_issue(make_user().id)


def test_toggle_sequence_matches_ledger(citizen, issue_id):
    states = []
    for _ in range(4):
        result = vote_ledger.toggle_vote(issue_id, citizen)
        states.append((result.voted, result.vote_count))
        assert db.session.get(Issue, issue_id).vote_count == _ledger_count(issue_id)

    assert states == [(True, 1), (False, 0), (True, 1), (False, 0)]


def test_votes_from_different_users_accumulate(ctx, make_user, issue_id):
    for _ in range(3):
        voter = db.session.get(User, make_user().id)
        vote_ledger.toggle_vote(issue_id, voter)
    assert db.session.get(Issue, issue_id).vote_count == 3
    assert _ledger_count(issue_id) == 3


def test_result_payload_shape(citizen, issue_id):
    result = vote_ledger.toggle_vote(issue_id, citizen)
    assert result.to_payload() == {"issue_id": issue_id, "voted": True, "votes": 1}


@pytest.mark.parametrize(
    "voter",
    [None, SimpleNamespace(is_authenticated=False, id="x"), SimpleNamespace(is_authenticated=True, id=None)],
)
def test_anonymous_voter_is_rejected(issue_id, voter):
    with pytest.raises(AuthenticationRequired):
        vote_ledger.toggle_vote(issue_id, voter)
    assert db.session.get(Issue, issue_id).vote_count == 0


def test_unknown_issue_is_not_found(citizen):
    with pytest.raises(NotFound):
        vote_ledger.toggle_vote("missing-issue", citizen)


def test_duplicate_insert_is_rejected_by_constraint(citizen, issue_id, monkeypatch):
    vote_ledger.toggle_vote(issue_id, citizen)
    # Simulate a racing request that did not see the existing row.
    monkeypatch.setattr(vote_ledger, "_existing_vote_id", lambda *_args: None)

    with pytest.raises(ConstraintViolation):
        vote_ledger.toggle_vote(issue_id, citizen)

    assert db.session.get(Issue, issue_id).vote_count == 1
    assert _ledger_count(issue_id) == 1


def test_has_voted_and_voted_issue_ids(citizen, issue_id, make_issue):
    other_id = make_issue(citizen.id, title="Graffiti on the wall", category="Graffiti")
    assert vote_ledger.has_voted(issue_id, citizen.id) is False

    vote_ledger.toggle_vote(issue_id, citizen)
    vote_ledger.toggle_vote(other_id, citizen)

    assert vote_ledger.has_voted(issue_id, citizen.id) is True
    assert set(vote_ledger.voted_issue_ids(citizen.id)) == {issue_id, other_id}
    assert vote_ledger.has_voted(issue_id, None) is False


def test_recount_repairs_drift(citizen, issue_id):
    vote_ledger.toggle_vote(issue_id, citizen)
    issue = db.session.get(Issue, issue_id)
    issue.vote_count = 5
    db.session.commit()

    assert vote_ledger.recount_votes(issue_id) == 1
    assert db.session.get(Issue, issue_id).vote_count == 1
