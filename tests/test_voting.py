import uuid
from datetime import timedelta

import pytest
from conftest import NOW, TestingSessionLocal, track

from songbattle.models.battle import Round, RoundPhase, Submission, Vote
from songbattle.services.outcome import ErrorKind
from songbattle.services.scheduler import check_phase_transitions
from songbattle.services.submissions import submit_item
from songbattle.services import voting
from songbattle.services.voting import (
    all_participants_voted,
    award_vote,
    remove_vote,
    voting_state,
)


@pytest.fixture()
def voting_round(db, make_battle):
    """Four players, one song each, round already in voting."""
    setup = make_battle(players=4)
    submissions = {}
    for i, user_id in enumerate(setup.everyone):
        outcome = submit_item(db, user_id, setup.round_id, track(i + 1), now=NOW)
        submissions[user_id] = uuid.UUID(outcome["submission_id"])
    check_phase_transitions(db, now=setup.submission_deadline)
    setup.voting_opens = setup.submission_deadline
    setup.submissions = submissions
    return setup


def _others(setup, voter_id):
    return [sid for owner, sid in setup.submissions.items() if owner != voter_id]


def test_award_vote_counts_down(db, voting_round) -> None:
    voter = voting_round.creator_id
    when = voting_round.voting_opens
    targets = _others(voting_round, voter)

    first = award_vote(db, voter, targets[0], now=when)
    assert first.success
    assert first.message == "Vote awarded! You have 2 votes remaining."
    assert first["votes_remaining"] == 2

    second = award_vote(db, voter, targets[1], now=when)
    assert second.message == "Vote awarded! You have 1 vote remaining."

    assert db.get(Submission, targets[0]).tally == 1


def test_vote_rules(db, voting_round, make_user) -> None:
    voter = voting_round.creator_id
    when = voting_round.voting_opens
    own = voting_round.submissions[voter]
    target = _others(voting_round, voter)[0]

    self_vote = award_vote(db, voter, own, now=when)
    assert self_vote.kind == ErrorKind.AUTHORIZATION
    assert self_vote.message == "You cannot vote for your own submission"
    assert db.get(Submission, own).tally == 0

    outsider = award_vote(db, make_user("lurker"), target, now=when)
    assert outsider.kind == ErrorKind.AUTHORIZATION

    assert award_vote(db, voter, target, now=when).success
    stacked = award_vote(db, voter, target, now=when)
    assert stacked.success
    assert stacked["votes_remaining"] == 1

    late = award_vote(db, voter, target, now=voting_round.voting_deadline + timedelta(seconds=1))
    assert late.kind == ErrorKind.PHASE
    assert late.message == "Voting deadline has passed"

    assert db.get(Submission, target).tally == 2
    assert db.query(Vote).count() == 2


def test_stacked_votes_come_off_newest_first(db, voting_round) -> None:
    voter = voting_round.creator_id
    when = voting_round.voting_opens
    target, other = _others(voting_round, voter)[:2]

    award_vote(db, voter, target, now=when)
    award_vote(db, voter, other, now=when + timedelta(seconds=1))
    award_vote(db, voter, target, now=when + timedelta(seconds=2))

    removed = remove_vote(db, voter, target, now=when + timedelta(seconds=3))
    assert removed["votes_remaining"] == 1
    assert db.get(Submission, target).tally == 1
    slots = sorted(slot for (slot,) in db.query(Vote.slot).filter(Vote.voter_id == voter).all())
    assert slots == [1, 2]

    # The freed slot is reused.
    assert award_vote(db, voter, other, now=when + timedelta(seconds=4)).success
    slots = sorted(slot for (slot,) in db.query(Vote.slot).filter(Vote.voter_id == voter).all())
    assert slots == [1, 2, 3]
    assert db.get(Submission, other).tally == 2


def test_vote_quota(db, make_battle) -> None:
    setup = make_battle(players=5)
    ids = []
    for i, user_id in enumerate(setup.everyone):
        ids.append(uuid.UUID(submit_item(db, user_id, setup.round_id, track(i + 1), now=NOW)["submission_id"]))
    check_phase_transitions(db, now=setup.submission_deadline)

    when = setup.submission_deadline
    voter = setup.creator_id
    for submission_id in ids[1:4]:
        assert award_vote(db, voter, submission_id, now=when).success

    over = award_vote(db, voter, ids[4], now=when)
    assert over.kind == ErrorKind.QUOTA
    assert over.message == "You have already used all 3 votes for this round"
    assert db.get(Submission, ids[4]).tally == 0


def test_voting_before_voting_phase(db, make_battle) -> None:
    setup = make_battle(players=2)
    theirs = submit_item(db, setup.player_ids[0], setup.round_id, track(1), now=NOW)

    outcome = award_vote(db, setup.creator_id, uuid.UUID(theirs["submission_id"]), now=NOW)
    assert outcome.kind == ErrorKind.PHASE
    assert outcome.message == "Voting hasn't started yet"


def test_remove_vote(db, voting_round) -> None:
    voter = voting_round.creator_id
    when = voting_round.voting_opens
    target, other = _others(voting_round, voter)[:2]

    missing = remove_vote(db, voter, target, now=when)
    assert missing.kind == ErrorKind.CONFLICT
    assert missing.message == "You haven't voted for this submission"

    award_vote(db, voter, target, now=when)
    removed = remove_vote(db, voter, target, now=when)
    assert removed.success
    assert removed["votes_remaining"] == 3
    assert db.get(Submission, target).tally == 0

    # A freed vote can be spent elsewhere.
    assert award_vote(db, voter, other, now=when).success


def test_remove_vote_never_drives_tally_negative(db, voting_round) -> None:
    voter = voting_round.creator_id
    when = voting_round.voting_opens
    target = _others(voting_round, voter)[0]
    award_vote(db, voter, target, now=when)

    submission = db.get(Submission, target)
    submission.tally = 0
    db.commit()

    assert remove_vote(db, voter, target, now=when).success
    db.expire_all()
    assert db.get(Submission, target).tally == 0


def test_vote_change_notifies_round_hook(db, voting_round) -> None:
    seen = []
    voter = voting_round.creator_id
    target = _others(voting_round, voter)[0]

    award_vote(db, voter, target, now=voting_round.voting_opens, on_change=seen.append)
    remove_vote(db, voter, target, now=voting_round.voting_opens, on_change=seen.append)
    assert seen == [voting_round.round_id, voting_round.round_id]


def test_failing_round_hook_does_not_fail_the_vote(db, voting_round) -> None:
    def broken(_round_id):
        raise RuntimeError("scheduler unavailable")

    voter = voting_round.creator_id
    target = _others(voting_round, voter)[0]
    outcome = award_vote(db, voter, target, now=voting_round.voting_opens, on_change=broken)
    assert outcome.success
    assert db.query(Vote).count() == 1


def test_voting_state_and_completion_predicate(db, voting_round, make_user) -> None:
    round_ = db.get(Round, voting_round.round_id)
    when = voting_round.voting_opens
    assert not all_participants_voted(db, round_)

    for voter in voting_round.everyone:
        for target in _others(voting_round, voter):
            assert award_vote(db, voter, target, now=when).success

    state = voting_state(db, voting_round.round_id, voting_round.creator_id, now=when)
    assert state["votes_remaining"] == 0
    assert len(state["voted_submission_ids"]) == 3
    assert state["can_vote"] is False

    stranger = voting_state(db, voting_round.round_id, make_user("stranger"), now=when)
    assert stranger["can_vote"] is False

    assert all_participants_voted(db, round_)


def _close_round_while_locking(monkeypatch: pytest.MonkeyPatch, setup) -> None:
    """Let a scheduler tick in another session complete the round mid-vote."""
    original = voting._lock_participant

    def interleaved(db, battle_id, user_id):
        with TestingSessionLocal() as other:
            check_phase_transitions(other, now=setup.voting_deadline)
        return original(db, battle_id, user_id)

    monkeypatch.setattr(voting, "_lock_participant", interleaved)


def test_vote_racing_round_completion_is_rejected(db, voting_round, monkeypatch: pytest.MonkeyPatch) -> None:
    voter = voting_round.creator_id
    target = _others(voting_round, voter)[0]
    _close_round_while_locking(monkeypatch, voting_round)

    outcome = award_vote(db, voter, target, now=voting_round.voting_deadline - timedelta(seconds=1))
    assert outcome.kind == ErrorKind.PHASE

    db.expire_all()
    assert db.get(Round, voting_round.round_id).phase == RoundPhase.COMPLETED.value
    assert db.get(Submission, target).tally == 0
    assert db.query(Vote).count() == 0


def test_vote_removal_racing_round_completion_is_rejected(
    db, voting_round, monkeypatch: pytest.MonkeyPatch
) -> None:
    voter = voting_round.creator_id
    target = _others(voting_round, voter)[0]
    assert award_vote(db, voter, target, now=voting_round.voting_opens).success
    _close_round_while_locking(monkeypatch, voting_round)

    outcome = remove_vote(db, voter, target, now=voting_round.voting_deadline - timedelta(seconds=1))
    assert outcome.kind == ErrorKind.PHASE
    assert outcome.message == "Cannot change votes outside voting period"

    db.expire_all()
    assert db.get(Submission, target).tally == 1
    assert db.query(Vote).count() == 1
