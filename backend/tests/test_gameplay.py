import logging
import os

import pytest

from resolution_bingo import db
from resolution_bingo.errors import (
    CellIsEmptyOrJoker, CompletingUserCannotVote, DuplicateContent, EmptyContent, FileTooLarge,
    InvalidTransition, InvalidVoteValue, NotAuthorized, NotFound, NotOwner, ThreadAlreadyOpen,
    ThreadClosed, UnsupportedFileType, ValidationError,
)
from resolution_bingo.models import (
    BingoCard, BingoCell, DuplicateReport, LeaderboardEntry, ReviewFile, ReviewMessage, ReviewThread,
    ReviewVote, TeamMembership, User,
)
from resolution_bingo.services.bingo import leaderboard
from resolution_bingo.services.bingo.gameplay import Gameplay, tally
from resolution_bingo.services.bingo.storage import ProofStorage
from resolution_bingo.services.bingo.transactions import atomic

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64


class Ballot:
    def __init__(self, voter_user_id, vote):
        self.voter_user_id = voter_user_id
        self.vote = vote


def card_of(team, user):
    return BingoCard.query.filter_by(team_id=team.id, user_id=user.id).first()


def cell_at(team, user, position):
    return BingoCell.query.filter_by(card_id=card_of(team, user).id, position=position).first()


def entry_for(team, user):
    db.session.expire_all()
    return LeaderboardEntry.query.filter_by(team_id=team.id, user_id=user.id).first()


def open_review(gameplay, team, owner, requester, position=0):
    cell = cell_at(team, owner, position)
    gameplay.set_cell_state(cell.id, owner.id, 'completed')
    thread = gameplay.request_proof(cell.id, requester.id)
    return cell, thread


# ---- tally ----

@pytest.mark.parametrize('eligible, votes, expected', [
    ({2, 3, 4}, [(2, 'accept'), (3, 'accept')], None),
    ({2, 3, 4}, [(2, 'accept'), (3, 'accept'), (4, 'deny')], 'accomplished'),
    ({2, 3, 4}, [(2, 'accept'), (3, 'deny'), (4, 'deny')], 'pending'),
    ({2, 3}, [(2, 'accept'), (3, 'deny')], 'accomplished'),
    ({2}, [(2, 'deny')], 'pending'),
    (set(), [], 'accomplished'),
    # A departed member's ballot neither fills quorum nor tips the ratio
    ({3, 4}, [(2, 'deny'), (3, 'accept')], None),
    ({3, 4}, [(2, 'deny'), (3, 'accept'), (4, 'accept')], 'accomplished'),
])
def test_tally(eligible, votes, expected):
    assert tally(eligible, [Ballot(voter, v) for voter, v in votes]) == expected


# ---- cell state machine ----

def test_owner_toggles_pending_and_completed(started_team, gameplay, notifier):
    team, users = started_team
    alice = users[0]
    cell = cell_at(team, alice, 0)

    gameplay.set_cell_state(cell.id, alice.id, 'completed')
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'completed'
    assert entry_for(team, alice).completed_tasks == 1

    gameplay.set_cell_state(cell.id, alice.id, 'pending')
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending'
    assert entry_for(team, alice).completed_tasks == 0
    assert notifier.team_events.count(team.id) == 3  # start + two toggles


def test_completing_a_row_records_first_bingo(started_team, gameplay):
    team, users = started_team
    alice = users[0]
    for position in range(5):
        gameplay.set_cell_state(cell_at(team, alice, position).id, alice.id, 'completed')
    entry = entry_for(team, alice)
    assert entry.completed_tasks == 5
    assert entry.first_bingo_at is not None


def test_only_owner_can_change_state(started_team, gameplay):
    team, users = started_team
    cell = cell_at(team, users[0], 0)
    with pytest.raises(NotOwner):
        gameplay.set_cell_state(cell.id, users[1].id, 'completed')
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending'


@pytest.mark.parametrize('target', ['accomplished', 'pending_review', 'bogus'])
def test_owner_cannot_jump_to_review_states(started_team, gameplay, target):
    team, users = started_team
    cell = cell_at(team, users[0], 0)
    with pytest.raises(InvalidTransition):
        gameplay.set_cell_state(cell.id, users[0].id, target)


def test_same_state_is_rejected(started_team, gameplay):
    team, users = started_team
    cell = cell_at(team, users[0], 0)
    with pytest.raises(InvalidTransition):
        gameplay.set_cell_state(cell.id, users[0].id, 'pending')


def test_pending_review_cannot_be_toggled(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    cell, _ = open_review(gameplay, team, alice, bob)
    for target in ('pending', 'completed'):
        with pytest.raises(InvalidTransition):
            gameplay.set_cell_state(cell.id, alice.id, target)


def test_joker_position_is_immutable(started_team, gameplay):
    team, users = started_team
    card = card_of(team, users[0])
    with pytest.raises(CellIsEmptyOrJoker):
        gameplay.set_position_state(card.id, 12, users[0].id, 'completed')


def test_set_position_state_updates_stored_cell(started_team, gameplay):
    team, users = started_team
    card = card_of(team, users[0])
    cell = gameplay.set_position_state(card.id, 7, users[0].id, 'completed')
    assert cell.position == 7
    assert cell.state == 'completed'
    with pytest.raises(NotFound):
        gameplay.set_position_state(card.id, 25, users[0].id, 'completed')


def test_empty_cells_are_frozen(make_team, generator, gameplay):
    team, users = make_team(names=('erin', 'finn'), personal_count=0)
    generator.start_game(team.id, users[0].id)
    empty = BingoCell.query.filter_by(card_id=card_of(team, users[0]).id, source_type='empty').first()
    with pytest.raises(CellIsEmptyOrJoker):
        gameplay.set_cell_state(empty.id, users[0].id, 'completed')
    with pytest.raises(CellIsEmptyOrJoker):
        gameplay.request_proof(empty.id, users[1].id)


def test_missing_cell_is_not_found(started_team, gameplay):
    _, users = started_team
    with pytest.raises(NotFound):
        gameplay.set_cell_state(999999, users[0].id, 'completed')


# ---- proof requests ----

def test_request_proof_opens_thread(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    cell, thread = open_review(gameplay, team, alice, bob)
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending_review'
    assert thread.status == 'open'
    assert thread.completed_by_user_id == alice.id
    # Under review no longer scores
    assert entry_for(team, alice).completed_tasks == 0


def test_request_proof_rules(started_team, gameplay):
    team, users = started_team
    alice, bob, cara = users[0], users[1], users[2]
    cell = cell_at(team, alice, 0)

    with pytest.raises(InvalidTransition):
        gameplay.request_proof(cell.id, bob.id)  # still pending

    gameplay.set_cell_state(cell.id, alice.id, 'completed')
    with pytest.raises(NotAuthorized):
        gameplay.request_proof(cell.id, alice.id)

    outsider = User(username='outsider')
    db.session.add(outsider)
    db.session.commit()
    with pytest.raises(NotAuthorized):
        gameplay.request_proof(cell.id, outsider.id)

    gameplay.request_proof(cell.id, bob.id)
    with pytest.raises(ThreadAlreadyOpen):
        gameplay.request_proof(cell.id, cara.id)
    assert ReviewThread.query.filter_by(cell_id=cell.id).count() == 1


# ---- messages and files ----

def test_members_discuss_in_thread(started_team, gameplay, notifier):
    team, users = started_team
    alice, bob = users[0], users[1]
    _, thread = open_review(gameplay, team, alice, bob)

    gameplay.add_message(thread.id, bob.id, '  Show me the receipt  ')
    gameplay.add_message(thread.id, alice.id, 'Attached!')
    assert notifier.thread_events[0] == (thread.id, {'author_username': 'bob', 'content': 'Show me the receipt'})

    detail = gameplay.get_thread(thread.id, users[2].id)
    assert [m['content'] for m in detail['messages']] == ['Show me the receipt', 'Attached!']
    assert detail['messages'][0]['author_username'] == 'bob'
    assert detail['eligible_voters'] == 3
    assert detail['cell_state'] == 'pending_review'


def test_message_validation(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    _, thread = open_review(gameplay, team, alice, bob)
    with pytest.raises(EmptyContent):
        gameplay.add_message(thread.id, bob.id, '   ')
    outsider = User(username='outsider')
    db.session.add(outsider)
    db.session.commit()
    with pytest.raises(NotAuthorized):
        gameplay.add_message(thread.id, outsider.id, 'hi')
    with pytest.raises(NotAuthorized):
        gameplay.get_thread(thread.id, outsider.id)
    assert ReviewMessage.query.filter_by(thread_id=thread.id).count() == 0


def test_completing_user_uploads_proof(started_team, gameplay, flask_app):
    team, users = started_team
    alice, bob = users[0], users[1]
    _, thread = open_review(gameplay, team, alice, bob)

    record = gameplay.upload_file(thread.id, alice.id, PNG, 'receipt.png', 'image/png')
    assert record.file_path.startswith('review-files/')
    assert record.file_path.endswith('.png')
    assert record.file_size == len(PNG)
    assert record.file_name == 'receipt.png'
    on_disk = os.path.join(flask_app.config['UPLOAD_FOLDER'], record.file_path)
    with open(on_disk, 'rb') as fh:
        assert fh.read() == PNG


def test_upload_rules(started_team, notifier, flask_app):
    team, users = started_team
    alice, bob = users[0], users[1]
    gameplay = Gameplay(notifier=notifier, storage=ProofStorage(max_bytes=16))
    _, thread = open_review(gameplay, team, alice, bob)

    with pytest.raises(NotAuthorized):
        gameplay.upload_file(thread.id, bob.id, b'tiny', 'x.png', 'image/png')
    with pytest.raises(FileTooLarge):
        gameplay.upload_file(thread.id, alice.id, PNG, 'big.png', 'image/png')
    with pytest.raises(UnsupportedFileType):
        gameplay.upload_file(thread.id, alice.id, b'hello', 'notes.txt', 'text/plain')
    assert ReviewFile.query.count() == 0
    folder = os.path.join(flask_app.config['UPLOAD_FOLDER'], 'review-files')
    assert not os.path.isdir(folder) or os.listdir(folder) == []


# ---- voting ----

def test_quorum_with_majority_accept_accomplishes(started_team, gameplay):
    team, users = started_team
    alice, bob, cara, dan = users
    cell, thread = open_review(gameplay, team, alice, bob)

    assert gameplay.submit_vote(thread.id, bob.id, 'accept')['thread_closed'] is False
    assert gameplay.submit_vote(thread.id, cara.id, 'accept')['thread_closed'] is False
    result = gameplay.submit_vote(thread.id, dan.id, 'deny')
    assert result['thread_closed'] is True
    assert result['outcome'] == 'accomplished'

    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'accomplished'
    assert db.session.get(ReviewThread, thread.id).status == 'closed'
    assert entry_for(team, alice).completed_tasks == 1


def test_quorum_with_minority_accept_resets(started_team, gameplay):
    team, users = started_team
    alice, bob, cara, dan = users
    cell, thread = open_review(gameplay, team, alice, bob)
    gameplay.submit_vote(thread.id, bob.id, 'deny')
    gameplay.submit_vote(thread.id, cara.id, 'accept')
    result = gameplay.submit_vote(thread.id, dan.id, 'deny')
    assert result['outcome'] == 'pending'
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending'


def test_revote_replaces_ballot(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    _, thread = open_review(gameplay, team, alice, bob)
    gameplay.submit_vote(thread.id, bob.id, 'accept')
    gameplay.submit_vote(thread.id, bob.id, 'deny')
    ballots = ReviewVote.query.filter_by(thread_id=thread.id).all()
    assert [(b.voter_user_id, b.vote) for b in ballots] == [(bob.id, 'deny')]


def test_vote_rules(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    _, thread = open_review(gameplay, team, alice, bob)
    with pytest.raises(CompletingUserCannotVote):
        gameplay.submit_vote(thread.id, alice.id, 'accept')
    with pytest.raises(InvalidVoteValue):
        gameplay.submit_vote(thread.id, bob.id, 'maybe')
    assert ReviewVote.query.count() == 0


def test_closed_thread_rejects_writes(started_team, gameplay):
    team, users = started_team
    alice, bob, cara, dan = users
    _, thread = open_review(gameplay, team, alice, bob)
    for voter in (bob, cara, dan):
        gameplay.submit_vote(thread.id, voter.id, 'accept')
    with pytest.raises(ThreadClosed):
        gameplay.submit_vote(thread.id, bob.id, 'deny')
    with pytest.raises(ThreadClosed):
        gameplay.add_message(thread.id, bob.id, 'late')
    with pytest.raises(ThreadClosed):
        gameplay.upload_file(thread.id, alice.id, PNG, 'late.png', 'image/png')


def test_closure_is_claimed_once(started_team, gameplay):
    team, users = started_team
    _, thread = open_review(gameplay, team, users[0], users[1])
    assert gameplay._claim_thread_closure(thread.id) is True
    assert gameplay._claim_thread_closure(thread.id) is False
    db.session.commit()
    assert gameplay.evaluate_thread(thread.id) is None


def test_evaluate_with_no_eligible_voters_accepts(make_team, generator, gameplay):
    team, users = make_team(names=('erin', 'finn'))
    erin, finn = users
    generator.start_game(team.id, erin.id)
    cell, thread = open_review(gameplay, team, erin, finn)
    assert gameplay.evaluate_thread(thread.id) is None

    TeamMembership.query.filter_by(team_id=team.id, user_id=finn.id).delete()
    db.session.commit()
    assert gameplay.evaluate_thread(thread.id) == 'accomplished'
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'accomplished'


def test_departed_members_ballot_is_ignored(started_team, gameplay):
    team, users = started_team
    alice, bob, cara, dan = users
    cell, thread = open_review(gameplay, team, alice, cara)
    gameplay.submit_vote(thread.id, bob.id, 'deny')
    TeamMembership.query.filter_by(team_id=team.id, user_id=bob.id).delete()
    db.session.commit()

    # dan has not voted yet, so bob's old ballot must not complete the quorum
    assert gameplay.submit_vote(thread.id, cara.id, 'accept')['thread_closed'] is False
    assert gameplay.evaluate_thread(thread.id) is None

    # 1 of 2 current voters accept; counting bob would make it 1 of 3
    result = gameplay.submit_vote(thread.id, dan.id, 'deny')
    assert result['outcome'] == 'accomplished'
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'accomplished'


def test_racing_deciding_votes_resolve_once(started_team, gameplay, flask_app, monkeypatch):
    team, users = started_team
    alice, bob, cara, dan = users
    cell, thread = open_review(gameplay, team, alice, bob)
    gameplay.submit_vote(thread.id, bob.id, 'accept')
    gameplay.submit_vote(thread.id, cara.id, 'accept')
    team_id, thread_id, dan_id, alice_id = team.id, thread.id, dan.id, alice.id

    refreshed = []
    real_refresh = leaderboard.refresh

    def counting_refresh(t_id, user_id):
        refreshed.append(user_id)
        return real_refresh(t_id, user_id)

    monkeypatch.setattr(leaderboard, 'refresh', counting_refresh)

    # This request read the thread while it was still open
    stale = ReviewThread.query.filter_by(id=thread_id).first()
    assert stale.status == 'open'

    # Meanwhile the deciding vote lands through another request and session
    with flask_app.app_context():
        result = gameplay.submit_vote(thread_id, dan_id, 'accept')
    assert result['outcome'] == 'accomplished'

    # The slower request also sees quorum but loses the open -> closed claim
    with atomic():
        outcome, paths = gameplay._settle(stale, team_id)
    assert (outcome, paths) == (None, [])

    db.session.expire_all()
    assert refreshed == [alice_id]
    assert db.session.get(BingoCell, cell.id).state == 'accomplished'
    assert ReviewThread.query.filter_by(cell_id=cell.id, status='closed').count() == 1
    assert ReviewThread.query.filter_by(cell_id=cell.id, status='open').count() == 0
    assert entry_for(team, alice).completed_tasks == 1


def test_failed_resolution_rolls_back_deciding_vote(started_team, gameplay, monkeypatch):
    team, users = started_team
    alice, bob, cara, dan = users
    cell, thread = open_review(gameplay, team, alice, bob)
    gameplay.add_message(thread.id, bob.id, 'proof please')
    gameplay.submit_vote(thread.id, bob.id, 'accept')
    gameplay.submit_vote(thread.id, cara.id, 'accept')

    def broken_refresh(team_id, user_id):
        raise RuntimeError('leaderboard unavailable')

    monkeypatch.setattr(leaderboard, 'refresh', broken_refresh)
    with pytest.raises(RuntimeError):
        gameplay.submit_vote(thread.id, dan.id, 'accept')
    monkeypatch.undo()

    db.session.expire_all()
    assert db.session.get(ReviewThread, thread.id).status == 'open'
    assert db.session.get(BingoCell, cell.id).state == 'pending_review'
    assert ReviewVote.query.filter_by(thread_id=thread.id, voter_user_id=dan.id).count() == 0
    assert ReviewVote.query.filter_by(thread_id=thread.id).count() == 2
    assert ReviewMessage.query.filter_by(thread_id=thread.id).count() == 1

    # A retry goes through cleanly
    assert gameplay.submit_vote(thread.id, dan.id, 'accept')['outcome'] == 'accomplished'


# ---- undo ----

def test_undo_force_closes_review_and_discards_proof(started_team, gameplay, flask_app):
    team, users = started_team
    alice, bob = users[0], users[1]
    cell, thread = open_review(gameplay, team, alice, bob)
    gameplay.add_message(thread.id, bob.id, 'prove it')
    record = gameplay.upload_file(thread.id, alice.id, PNG, 'p.png', 'image/png')
    blob = os.path.join(flask_app.config['UPLOAD_FOLDER'], record.file_path)
    gameplay.submit_vote(thread.id, bob.id, 'accept')
    assert os.path.exists(blob)

    gameplay.undo_completion(cell.id, alice.id)

    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending'
    assert db.session.get(ReviewThread, thread.id).status == 'closed'
    assert ReviewMessage.query.filter_by(thread_id=thread.id).count() == 0
    assert ReviewFile.query.filter_by(thread_id=thread.id).count() == 0
    assert ReviewVote.query.filter_by(thread_id=thread.id).count() == 1
    assert not os.path.exists(blob)

    # A fresh claim can be challenged again
    gameplay.set_cell_state(cell.id, alice.id, 'completed')
    again = gameplay.request_proof(cell.id, bob.id)
    assert again.id != thread.id


def test_undo_from_accomplished(started_team, gameplay):
    team, users = started_team
    alice, bob, cara, dan = users
    cell, thread = open_review(gameplay, team, alice, bob)
    for voter in (bob, cara, dan):
        gameplay.submit_vote(thread.id, voter.id, 'accept')
    gameplay.undo_completion(cell.id, alice.id)
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending'
    assert entry_for(team, alice).completed_tasks == 0


def test_undo_rules(started_team, gameplay):
    team, users = started_team
    cell = cell_at(team, users[0], 0)
    with pytest.raises(InvalidTransition):
        gameplay.undo_completion(cell.id, users[0].id)
    gameplay.set_cell_state(cell.id, users[0].id, 'completed')
    with pytest.raises(NotOwner):
        gameplay.undo_completion(cell.id, users[1].id)


def test_undo_survives_refused_blob_path(started_team, gameplay, tmp_path, caplog):
    team, users = started_team
    alice, bob = users[0], users[1]
    cell, thread = open_review(gameplay, team, alice, bob)
    outside = tmp_path / 'keep.png'
    outside.write_bytes(b'not yours')
    db.session.add(ReviewFile(thread_id=thread.id, uploaded_by_user_id=alice.id, file_path='../keep.png',
                              file_size=9, file_name='keep.png', mime_type='image/png'))
    db.session.commit()

    with caplog.at_level(logging.ERROR):
        gameplay.undo_completion(cell.id, alice.id)

    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).state == 'pending'
    assert db.session.get(ReviewThread, thread.id).status == 'closed'
    assert ReviewFile.query.filter_by(thread_id=thread.id).count() == 0
    assert outside.exists()
    assert any('[storage-refuse]' in r.getMessage() and '../keep.png' in r.getMessage() for r in caplog.records)


# ---- card editing ----

def test_owner_edits_pending_cell(started_team, gameplay, notifier):
    team, users = started_team
    alice = users[0]
    cell = BingoCell.query.filter_by(card_id=card_of(team, alice).id, source_type='member_provided').first()
    before = cell.updated_at

    gameplay.edit_cell(cell.id, alice.id, '  Learn to bake bread  ', 'personal')

    db.session.expire_all()
    edited = db.session.get(BingoCell, cell.id)
    assert edited.resolved_text == 'Learn to bake bread'
    assert edited.source_type == 'personal'
    assert edited.source_user_id == alice.id
    assert edited.provided_resolution_id is None
    assert edited.resolution_id is None
    assert edited.state == 'pending'
    assert edited.updated_at == before
    assert notifier.team_events[-1] == team.id


def test_edit_source_rules(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    cell = cell_at(team, alice, 2)

    gameplay.edit_cell(cell.id, alice.id, 'Bob thinks I should swim', 'member_provided', bob.id)
    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).source_user_id == bob.id

    with pytest.raises(ValidationError):
        gameplay.edit_cell(cell.id, alice.id, 'Swim more', 'member_provided', alice.id)
    with pytest.raises(ValidationError):
        gameplay.edit_cell(cell.id, alice.id, 'Swim more', 'member_provided', None)
    with pytest.raises(ValidationError):
        gameplay.edit_cell(cell.id, alice.id, 'Swim more', 'ai_generated')
    with pytest.raises(EmptyContent):
        gameplay.edit_cell(cell.id, alice.id, '   ', 'team')

    gameplay.edit_cell(cell.id, alice.id, None, 'empty')
    db.session.expire_all()
    emptied = db.session.get(BingoCell, cell.id)
    assert emptied.is_empty
    assert emptied.resolved_text == 'Empty'
    assert emptied.source_user_id is None


def test_edit_guards(started_team, gameplay):
    team, users = started_team
    alice, bob = users[0], users[1]
    cell = cell_at(team, alice, 3)
    other = cell_at(team, alice, 4)
    original = cell.resolved_text

    with pytest.raises(NotOwner):
        gameplay.edit_cell(cell.id, bob.id, 'Mine now', 'personal')
    with pytest.raises(DuplicateContent):
        gameplay.edit_cell(cell.id, alice.id, other.resolved_text.lower(), 'personal')
    with pytest.raises(CellIsEmptyOrJoker):
        gameplay.edit_position(cell.card_id, 12, alice.id, 'Free square', 'personal')

    gameplay.set_cell_state(cell.id, alice.id, 'completed')
    with pytest.raises(InvalidTransition):
        gameplay.edit_cell(cell.id, alice.id, 'Too late', 'personal')

    db.session.expire_all()
    assert db.session.get(BingoCell, cell.id).resolved_text == original


def test_edit_by_position(started_team, gameplay):
    team, users = started_team
    alice = users[0]
    card = card_of(team, alice)
    cell = gameplay.edit_position(card.id, 6, alice.id, 'Visit grandma monthly', 'team')
    assert cell.position == 6
    assert cell.resolved_text == 'Visit grandma monthly'
    assert cell.source_user_id is None


# ---- duplicate reports ----

def test_owner_replaces_duplicate_text(started_team, gameplay):
    team, users = started_team
    alice = users[0]
    cell = BingoCell.query.filter_by(card_id=card_of(team, alice).id, source_type='member_provided').first()
    assert cell.provided_resolution_id is not None
    before = cell.updated_at

    report = gameplay.report_duplicate(cell.id, alice.id, 'Learn to juggle')
    assert report.status == 'resolved'
    db.session.expire_all()
    replaced = db.session.get(BingoCell, cell.id)
    assert replaced.resolved_text == 'Learn to juggle'
    # The old resolution row no longer describes this cell
    assert replaced.provided_resolution_id is None
    assert replaced.resolution_id is None
    assert replaced.updated_at == before


def test_text_replacement_keeps_line_timing(started_team, gameplay):
    team, users = started_team
    alice = users[0]
    for position in range(5):
        gameplay.set_cell_state(cell_at(team, alice, position).id, alice.id, 'completed')
    bingo_at = entry_for(team, alice).first_bingo_at

    gameplay.report_duplicate(cell_at(team, alice, 2).id, alice.id, 'Learn to juggle')
    gameplay.set_cell_state(cell_at(team, alice, 9).id, alice.id, 'completed')
    assert entry_for(team, alice).first_bingo_at == bingo_at


def test_replacement_must_be_unique_on_card(started_team, gameplay):
    team, users = started_team
    alice = users[0]
    cell = cell_at(team, alice, 3)
    other = cell_at(team, alice, 4)
    with pytest.raises(DuplicateContent):
        gameplay.report_duplicate(cell.id, alice.id, other.resolved_text.upper())
    assert DuplicateReport.query.count() == 0


def test_provider_may_report_but_bystander_may_not(started_team, gameplay):
    team, users = started_team
    alice, bob, cara = users[0], users[1], users[2]
    card = card_of(team, alice)
    from_bob = BingoCell.query.filter_by(card_id=card.id, source_user_id=bob.id).first()
    report = gameplay.report_duplicate(from_bob.id, bob.id)
    assert report.status == 'pending'
    with pytest.raises(NotAuthorized):
        gameplay.report_duplicate(from_bob.id, cara.id)
