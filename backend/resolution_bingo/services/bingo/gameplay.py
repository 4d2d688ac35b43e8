"""Cell lifecycle and proof review, as a single service.

Cell states::

    pending -> completed              owner toggles
    completed -> pending              owner toggles back (no review yet)
    completed -> pending_review       a teammate requests proof
    pending_review -> accomplished    vote quorum, >= 50% accept
    pending_review -> pending         vote quorum, < 50% accept
    completed | pending_review | accomplished -> pending    owner undo

Every write runs in one transaction: the read (row locked where the dialect
allows), the compare-and-set on state, cascading cleanup and the leaderboard
refresh. Notifications and blob deletion happen after commit and never fail
the request.
"""
from typing import Iterable, List, Optional, Tuple

from flask import current_app
from werkzeug.utils import secure_filename

from resolution_bingo import db
from resolution_bingo.errors import (
    CellIsEmptyOrJoker, CompletingUserCannotVote, DuplicateContent, EmptyContent, InvalidTransition,
    InvalidVoteValue, NotAuthorized, NotFound, NotOwner, ThreadAlreadyOpen, ThreadClosed, UnsafeStoragePath,
    ValidationError,
)
from resolution_bingo.models import (
    BingoCard, BingoCell, CellState, DuplicateReport, ReviewFile, ReviewMessage, ReviewThread, ReviewVote,
    SourceType, ThreadStatus, User, Vote, EMPTY_CELL_TEXT, GRID_SIZE, JOKER_POSITION, utcnow,
)
from . import leaderboard
from .notifier import RealtimeNotifier
from .storage import ProofStorage
from .teams import is_team_member, team_member_ids
from .transactions import atomic

UNDOABLE_STATES = (CellState.COMPLETED, CellState.PENDING_REVIEW, CellState.ACCOMPLISHED)
ACCEPT_THRESHOLD = 0.5


def tally(eligible_ids: Iterable[int], votes: Iterable) -> Optional[str]:
    """Outcome of a review, or None while quorum is not reached.

    Quorum is every eligible voter having voted. Ballots from anyone outside
    ``eligible_ids`` (e.g. a member who left the team) are ignored. With no
    eligible voters at all the claim is accepted.
    """
    eligible = set(eligible_ids)
    if not eligible:
        return CellState.ACCOMPLISHED
    counted = [v for v in votes if v.voter_user_id in eligible]
    if {v.voter_user_id for v in counted} != eligible:
        return None
    accepts = sum(1 for v in counted if v.vote == Vote.ACCEPT)
    return CellState.ACCOMPLISHED if accepts / len(counted) >= ACCEPT_THRESHOLD else CellState.PENDING


class Gameplay:
    def __init__(self, notifier: Optional[RealtimeNotifier] = None, storage: Optional[ProofStorage] = None):
        self.notifier = notifier or RealtimeNotifier()
        self.storage = storage or ProofStorage()

    # ---- cell state machine ----

    def set_cell_state(self, cell_id: int, user_id: int, new_state: str) -> BingoCell:
        """Owner toggles a cell between pending and completed."""
        with atomic():
            cell = self._load_cell(cell_id)
            card = cell.card
            if card.user_id != user_id:
                raise NotOwner('Only the card owner can update cell state')
            if cell.is_empty:
                raise CellIsEmptyOrJoker('Empty cells cannot be changed')
            if new_state == CellState.COMPLETED:
                expected = CellState.PENDING
            elif new_state == CellState.PENDING:
                expected = CellState.COMPLETED
            else:
                raise InvalidTransition(f'Cell state cannot be set to {new_state} directly')
            if cell.state != expected:
                raise InvalidTransition(f'Cannot move cell from {cell.state} to {new_state}')
            self._cas_cell_state(cell.id, (expected,), new_state)
            leaderboard.refresh(card.team_id, card.user_id)
            team_id = card.team_id

        current_app.logger.info(f"[cell-state] cell={cell_id} user={user_id} {expected}->{new_state}")
        self.notifier.notify_team_room(team_id)
        return cell

    def set_position_state(self, card_id: int, position: int, user_id: int, new_state: str) -> BingoCell:
        cell = self._cell_at(card_id, position)
        return self.set_cell_state(cell.id, user_id, new_state)

    def undo_completion(self, cell_id: int, user_id: int) -> BingoCell:
        """Owner reverts a claimed cell to pending, force-closing any review."""
        with atomic():
            cell = self._load_cell(cell_id)
            card = cell.card
            if card.user_id != user_id:
                raise NotOwner('Only the card owner can undo completion')
            if cell.is_empty:
                raise CellIsEmptyOrJoker('Empty cells cannot be changed')
            if cell.state not in UNDOABLE_STATES:
                raise InvalidTransition(f'Cannot undo a cell in state {cell.state}')
            previous = cell.state
            blob_paths: List[str] = []
            for thread in ReviewThread.query.filter_by(cell_id=cell.id, status=ThreadStatus.OPEN).all():
                _, paths = self._close_thread(thread.id)
                blob_paths.extend(paths)
            self._cas_cell_state(cell.id, (previous,), CellState.PENDING)
            leaderboard.refresh(card.team_id, card.user_id)
            team_id = card.team_id

        current_app.logger.info(f"[cell-undo] cell={cell_id} user={user_id} {previous}->pending")
        self._discard_blobs(blob_paths)
        self.notifier.notify_team_room(team_id)
        return cell

    # ---- review threads ----

    def request_proof(self, cell_id: int, requester_id: int) -> ReviewThread:
        """A teammate challenges a completed cell; opens the review thread."""
        with atomic():
            cell = self._load_cell(cell_id)
            card = cell.card
            if not is_team_member(card.team_id, requester_id):
                raise NotAuthorized('Only team members can request proof')
            if card.user_id == requester_id:
                raise NotAuthorized('Cannot request proof for your own resolution')
            if cell.is_empty:
                raise CellIsEmptyOrJoker('Empty cells cannot be reviewed')
            if ReviewThread.query.filter_by(cell_id=cell.id, status=ThreadStatus.OPEN).first():
                raise ThreadAlreadyOpen('A review thread already exists for this cell')
            if cell.state != CellState.COMPLETED:
                raise InvalidTransition('Cell must be completed before requesting proof')

            thread = ReviewThread(cell_id=cell.id, completed_by_user_id=card.user_id, status=ThreadStatus.OPEN)
            db.session.add(thread)
            db.session.flush()
            self._cas_cell_state(cell.id, (CellState.COMPLETED,), CellState.PENDING_REVIEW)
            leaderboard.refresh(card.team_id, card.user_id)
            team_id = card.team_id

        current_app.logger.info(f"[proof-requested] cell={cell_id} thread={thread.id} by={requester_id}")
        self.notifier.notify_team_room(team_id)
        return thread

    def add_message(self, thread_id: int, author_id: int, content: str) -> ReviewMessage:
        with atomic():
            thread = self._load_thread(thread_id)
            if thread.status != ThreadStatus.OPEN:
                raise ThreadClosed('Thread is closed')
            if not is_team_member(thread.cell.card.team_id, author_id):
                raise NotAuthorized('Only team members can post messages')
            text = (content or '').strip()
            if not text:
                raise EmptyContent('Message content is required')
            message = ReviewMessage(thread_id=thread.id, author_user_id=author_id, content=text)
            db.session.add(message)

        author = db.session.get(User, author_id)
        self.notifier.notify_thread_room(thread_id, {
            'author_username': author.username if author else None,
            'content': text,
        })
        return message

    def upload_file(self, thread_id: int, uploader_id: int, data: bytes, filename: Optional[str],
                    mime_type: Optional[str]) -> ReviewFile:
        """Only the completing user attaches proof, and only while the thread is open."""
        thread = self._load_thread(thread_id, lock=False)
        if thread.status != ThreadStatus.OPEN:
            raise ThreadClosed('Thread is closed')
        if thread.completed_by_user_id != uploader_id:
            raise NotAuthorized('Only the completing user can upload proof files')

        path = self.storage.save_file(data, filename, mime_type)
        try:
            with atomic():
                thread = self._load_thread(thread_id)
                if thread.status != ThreadStatus.OPEN:
                    raise ThreadClosed('Thread is closed')
                record = ReviewFile(
                    thread_id=thread.id,
                    uploaded_by_user_id=uploader_id,
                    file_path=path,
                    file_size=len(data),
                    file_name=secure_filename(filename or '') or path.rsplit('/', 1)[-1],
                    mime_type=mime_type or None,
                )
                db.session.add(record)
        except Exception:
            self._discard_blobs([path])
            raise

        current_app.logger.info(f"[proof-uploaded] thread={thread_id} file={path} size={len(data)}")
        self.notifier.notify_team_room(thread.cell.card.team_id)
        return record

    def get_thread(self, thread_id: int, user_id: int) -> dict:
        thread = self._load_thread(thread_id, lock=False)
        cell = thread.cell
        team_id = cell.card.team_id
        if not is_team_member(team_id, user_id):
            raise NotAuthorized('Only team members can access this thread')
        votes = thread.votes.all()
        eligible = [uid for uid in team_member_ids(team_id) if uid != thread.completed_by_user_id]
        payload = thread.to_dict()
        payload.update({
            'team_id': team_id,
            'cell_text': cell.resolved_text,
            'cell_state': cell.state,
            'messages': [m.to_dict() for m in thread.messages],
            'files': [f.to_dict() for f in thread.files],
            'votes': [v.to_dict() for v in votes],
            'eligible_voters': len(eligible),
            'accept_votes': sum(1 for v in votes if v.vote == Vote.ACCEPT),
            'deny_votes': sum(1 for v in votes if v.vote == Vote.DENY),
        })
        return payload

    # ---- voting ----

    def submit_vote(self, thread_id: int, voter_id: int, vote: str) -> dict:
        if vote not in Vote.ALL:
            raise InvalidVoteValue('Vote must be "accept" or "deny"')
        with atomic():
            thread = self._load_thread(thread_id)
            if thread.status != ThreadStatus.OPEN:
                raise ThreadClosed('Thread is closed')
            team_id = thread.cell.card.team_id
            if not is_team_member(team_id, voter_id):
                raise NotAuthorized('Only team members can vote')
            if thread.completed_by_user_id == voter_id:
                raise CompletingUserCannotVote('Completing user cannot vote on their own proof')

            ballot = ReviewVote.query.filter_by(thread_id=thread.id, voter_user_id=voter_id).first()
            if ballot:
                ballot.vote = vote
                ballot.updated_at = utcnow()
            else:
                ballot = ReviewVote(thread_id=thread.id, voter_user_id=voter_id, vote=vote)
                db.session.add(ballot)
            db.session.flush()
            outcome, blob_paths = self._settle(thread, team_id)

        current_app.logger.info(f"[vote] thread={thread_id} voter={voter_id} vote={vote} outcome={outcome}")
        self._discard_blobs(blob_paths)
        self.notifier.notify_team_room(team_id)
        return {'vote': ballot.to_dict(), 'thread_closed': outcome is not None, 'outcome': outcome}

    def evaluate_thread(self, thread_id: int) -> Optional[str]:
        """Re-check quorum without a new vote, e.g. after the team shrinks."""
        with atomic():
            thread = self._load_thread(thread_id)
            if thread.status != ThreadStatus.OPEN:
                return None
            team_id = thread.cell.card.team_id
            outcome, blob_paths = self._settle(thread, team_id)
        if outcome is not None:
            self._discard_blobs(blob_paths)
            self.notifier.notify_team_room(team_id)
        return outcome

    # ---- card editing ----

    def edit_cell(self, cell_id: int, user_id: int, text: Optional[str], source_type: str,
                  source_user_id: Optional[int] = None) -> BingoCell:
        """Owner rewrites a pending cell's content by hand.

        The free-text edit detaches the cell from any stored resolution row.
        ``source_user_id`` only matters for ``member_provided`` cells, where it
        must name a teammate; personal cells belong to the owner and team or
        empty cells have no source user.
        """
        if source_type not in SourceType.ALL:
            raise ValidationError('Invalid source_type')
        text = (text or '').strip()
        if source_type == SourceType.EMPTY:
            text = EMPTY_CELL_TEXT
        elif not text:
            raise EmptyContent('Resolution text is required')

        with atomic():
            cell = self._load_cell(cell_id)
            card = cell.card
            if card.user_id != user_id:
                raise NotOwner('Only the card owner can edit cells')
            if cell.state != CellState.PENDING:
                raise InvalidTransition('Only pending cells can be edited')

            if source_type == SourceType.PERSONAL:
                source_user_id = card.user_id
            elif source_type == SourceType.MEMBER_PROVIDED:
                if source_user_id == card.user_id or not is_team_member(card.team_id, source_user_id):
                    raise ValidationError('source_user_id must be a teammate for member_provided cells')
            else:
                source_user_id = None

            if source_type != SourceType.EMPTY:
                siblings = BingoCell.query.filter(BingoCell.card_id == card.id, BingoCell.id != cell.id).all()
                if any(not s.is_empty and s.resolved_text.strip().lower() == text.lower() for s in siblings):
                    raise DuplicateContent('Text duplicates another cell on this card')

            self._rewrite_content(cell.id, {
                'resolved_text': text,
                'source_type': source_type,
                'source_user_id': source_user_id,
                'resolution_id': None,
                'provided_resolution_id': None,
            }, expected_states=(CellState.PENDING,))
            team_id = card.team_id

        current_app.logger.info(f"[cell-edit] cell={cell_id} user={user_id} source={source_type}")
        self.notifier.notify_team_room(team_id)
        return cell

    def edit_position(self, card_id: int, position: int, user_id: int, text: Optional[str], source_type: str,
                      source_user_id: Optional[int] = None) -> BingoCell:
        cell = self._cell_at(card_id, position)
        return self.edit_cell(cell.id, user_id, text, source_type, source_user_id)

    # ---- duplicate reports ----

    def report_duplicate(self, cell_id: int, reporter_id: int, replacement_text: Optional[str] = None) -> DuplicateReport:
        """Card owner or the resolution's author flags a duplicate, optionally fixing it."""
        with atomic():
            cell = self._load_cell(cell_id)
            card = cell.card
            if reporter_id not in (card.user_id, cell.source_user_id):
                raise NotAuthorized('Only the card owner or resolution provider can report duplicates')
            if cell.is_empty:
                raise CellIsEmptyOrJoker('Empty cells cannot be reported')
            report = DuplicateReport(cell_id=cell.id, reporter_user_id=reporter_id,
                                     replacement_text=replacement_text or None, status='pending')
            db.session.add(report)
            text = (replacement_text or '').strip()
            if text:
                siblings = BingoCell.query.filter(BingoCell.card_id == card.id, BingoCell.id != cell.id).all()
                if any(not s.is_empty and s.resolved_text.strip().lower() == text.lower() for s in siblings):
                    raise DuplicateContent('Replacement duplicates another cell on this card')
                self._rewrite_content(cell.id, {
                    'resolved_text': text,
                    'resolution_id': None,
                    'provided_resolution_id': None,
                })
                report.status = 'resolved'
                report.resolved_at = utcnow()
            team_id = card.team_id

        current_app.logger.info(f"[duplicate-report] cell={cell_id} by={reporter_id} status={report.status}")
        self.notifier.notify_team_room(team_id)
        return report

    # ---- internals ----

    def _load_cell(self, cell_id: int) -> BingoCell:
        cell = (
            BingoCell.query.filter_by(id=cell_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if not cell:
            raise NotFound('Cell not found')
        return cell

    def _cell_at(self, card_id: int, position: int) -> BingoCell:
        if position == JOKER_POSITION:
            raise CellIsEmptyOrJoker('Joker cell cannot be modified')
        if not 0 <= position < GRID_SIZE * GRID_SIZE:
            raise NotFound('Cell not found')
        card = db.session.get(BingoCard, card_id)
        if not card:
            raise NotFound('Card not found')
        cell = BingoCell.query.filter_by(card_id=card.id, position=position).first()
        if not cell:
            raise NotFound('Cell not found')
        return cell

    def _load_thread(self, thread_id: int, lock: bool = True) -> ReviewThread:
        q = ReviewThread.query.filter_by(id=thread_id)
        if lock:
            q = q.with_for_update().populate_existing()
        thread = q.first()
        if not thread:
            raise NotFound('Thread not found')
        return thread

    def _cas_cell_state(self, cell_id: int, expected: Tuple[str, ...], new_state: str) -> None:
        updated = BingoCell.query.filter(BingoCell.id == cell_id, BingoCell.state.in_(expected)).update(
            {'state': new_state, 'updated_at': utcnow()}, synchronize_session='fetch'
        )
        if updated != 1:
            raise InvalidTransition('Cell state changed concurrently')

    def _rewrite_content(self, cell_id: int, values: dict, expected_states: Optional[Tuple[str, ...]] = None) -> None:
        """Content-only update. ``updated_at`` marks the last state change, so it keeps its value."""
        q = BingoCell.query.filter(BingoCell.id == cell_id)
        if expected_states:
            q = q.filter(BingoCell.state.in_(expected_states))
        updated = q.update(dict(values, updated_at=BingoCell.updated_at), synchronize_session='fetch')
        if updated != 1:
            raise InvalidTransition('Cell state changed concurrently')

    def _claim_thread_closure(self, thread_id: int) -> bool:
        """Flip open -> closed; True only for the caller that performed the flip."""
        updated = ReviewThread.query.filter_by(id=thread_id, status=ThreadStatus.OPEN).update(
            {'status': ThreadStatus.CLOSED, 'closed_at': utcnow()}, synchronize_session='fetch'
        )
        return updated == 1

    def _close_thread(self, thread_id: int) -> Tuple[bool, List[str]]:
        """Close a thread and delete its messages and file rows; returns blob paths to discard."""
        if not self._claim_thread_closure(thread_id):
            return False, []
        paths = [f.file_path for f in ReviewFile.query.filter_by(thread_id=thread_id).all()]
        ReviewMessage.query.filter_by(thread_id=thread_id).delete(synchronize_session=False)
        ReviewFile.query.filter_by(thread_id=thread_id).delete(synchronize_session=False)
        current_app.logger.info(f"[thread-closed] thread={thread_id} files={len(paths)}")
        return True, paths

    def _settle(self, thread: ReviewThread, team_id: int) -> Tuple[Optional[str], List[str]]:
        eligible = [uid for uid in team_member_ids(team_id) if uid != thread.completed_by_user_id]
        votes = ReviewVote.query.filter_by(thread_id=thread.id).all()
        outcome = tally(eligible, votes)
        if outcome is None:
            return None, []
        closed, paths = self._close_thread(thread.id)
        if not closed:
            return None, []
        self._cas_cell_state(thread.cell_id, (CellState.PENDING_REVIEW,), outcome)
        card = thread.cell.card
        leaderboard.refresh(card.team_id, card.user_id)
        current_app.logger.info(
            f"[thread-resolved] thread={thread.id} eligible={len(eligible)} votes={len(votes)} outcome={outcome}"
        )
        return outcome, paths

    def _discard_blobs(self, paths: Iterable[str]) -> None:
        for path in paths:
            try:
                self.storage.delete_file(path)
            except UnsafeStoragePath as exc:
                current_app.logger.error(f"[storage-refuse] path={path} error={exc}")
            except OSError as exc:
                current_app.logger.warning(f"[storage-delete-failed] path={path} error={exc}")
