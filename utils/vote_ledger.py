"""One-vote-per-user toggle ledger backed by the votes table.

The (issue_id, voter_id) unique constraint is the source of truth; the denormalized
``Issue.vote_count`` is moved in the same transaction with a single SQL increment so no
request ever observes a counter that disagrees with the membership row it just wrote.
"""
from __future__ import annotations

from typing import List, NamedTuple

from flask import current_app
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from extensions import db
from models import Issue, Vote
from utils.errors import AuthenticationRequired, ConstraintViolation, NotFound


class VoteResult(NamedTuple):
    issue_id: str
    voted: bool
    vote_count: int

    def to_payload(self) -> dict:
        return {"issue_id": self.issue_id, "voted": self.voted, "votes": self.vote_count}


def _require_voter(voter) -> str:
    if voter is None or not getattr(voter, "is_authenticated", False) or not getattr(voter, "id", None):
        raise AuthenticationRequired("Sign in to vote on issues")
    return str(voter.id)


def _issue_or_raise(issue_id: str) -> Issue:
    issue = db.session.get(Issue, str(issue_id)) if issue_id else None
    if issue is None:
        raise NotFound(f"Issue {issue_id} not found")
    return issue


def _shift_counter(issue_id: str, delta: int) -> None:
    stmt = update(Issue).where(Issue.id == issue_id)
    if delta < 0:
        stmt = stmt.where(Issue.vote_count > 0)
    db.session.execute(
        stmt.values(vote_count=Issue.vote_count + delta).execution_options(synchronize_session=False)
    )


def _existing_vote_id(issue_id: str, voter_id: str):
    return db.session.execute(
        select(Vote.id).where(Vote.issue_id == issue_id, Vote.voter_id == voter_id)
    ).scalar_one_or_none()


def toggle_vote(issue_id: str, voter) -> VoteResult:
    """Add the voter's vote if absent, otherwise retract it."""
    voter_id = _require_voter(voter)
    issue = _issue_or_raise(issue_id)

    existing = _existing_vote_id(issue.id, voter_id)

    try:
        if existing:
            removed = db.session.execute(
                delete(Vote).where(Vote.id == existing).execution_options(synchronize_session=False)
            ).rowcount
            # A concurrent retraction already removed the row and moved the counter.
            if removed:
                _shift_counter(issue.id, -1)
            voted = False
        else:
            db.session.add(Vote(issue_id=issue.id, voter_id=voter_id))
            db.session.flush()
            _shift_counter(issue.id, 1)
            voted = True
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.warning(
            "Duplicate vote rejected by constraint",
            extra={"issue_id": issue.id, "voter_id": voter_id},
        )
        raise ConstraintViolation("Vote already recorded for this issue") from exc
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while toggling vote")
        raise

    db.session.refresh(issue)
    current_app.logger.info(
        "Vote toggled",
        extra={"issue_id": issue.id, "voter_id": voter_id, "voted": voted, "votes": issue.vote_count},
    )
    return VoteResult(issue.id, voted, issue.vote_count)


def has_voted(issue_id: str, voter_id: str) -> bool:
    if not voter_id:
        return False
    return _existing_vote_id(str(issue_id), str(voter_id)) is not None


def voted_issue_ids(voter_id: str) -> List[str]:
    rows = db.session.execute(
        select(Vote.issue_id).where(Vote.voter_id == str(voter_id)).order_by(Vote.created_at.desc())
    ).scalars()
    return list(rows)


def recount_votes(issue_id: str) -> int:
    """Re-derive the denormalized counter from the ledger rows."""
    issue = _issue_or_raise(issue_id)
    count = db.session.execute(select(func.count(Vote.id)).where(Vote.issue_id == issue.id)).scalar_one()
    if issue.vote_count != count:
        current_app.logger.warning(
            "Vote counter drift corrected",
            extra={"issue_id": issue.id, "stored": issue.vote_count, "actual": count},
        )
        issue.vote_count = count
        db.session.commit()
    return count
