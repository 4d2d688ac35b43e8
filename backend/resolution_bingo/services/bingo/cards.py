"""Card read models: stored cells plus the synthesized center joker."""
from typing import List

from resolution_bingo.errors import NotAuthorized, NotFound
from resolution_bingo.models import BingoCard, BingoCell, ReviewThread, ThreadStatus, JOKER_POSITION
from .lines import has_bingo
from .teams import is_team_member


class JokerCell:
    """The always-done center square. Never persisted."""
    id = None
    position = JOKER_POSITION
    state = None
    is_joker = True
    is_empty = False
    updated_at = None
    resolved_text = 'Joker'

    def to_dict(self, open_thread_id=None):
        return {
            'id': None,
            'position': self.position,
            'text': self.resolved_text,
            'source_type': None,
            'source_user_id': None,
            'state': None,
            'is_joker': True,
            'is_empty': False,
            'open_thread_id': None,
            'updated_at': None,
        }


JOKER = JokerCell()


def logical_cells(stored_cells) -> List:
    """Stored cells indexed by position with the joker injected at the center."""
    cells = [c for c in stored_cells if c.position != JOKER_POSITION]
    cells.append(JOKER)
    cells.sort(key=lambda c: c.position)
    return cells


def card_cells(card: BingoCard) -> List:
    stored = BingoCell.query.filter_by(card_id=card.id).order_by(BingoCell.position).all()
    return logical_cells(stored)


def card_to_dict(card: BingoCard) -> dict:
    cells = card_cells(card)
    stored_ids = [c.id for c in cells if not c.is_joker]
    open_threads = {}
    if stored_ids:
        for t in ReviewThread.query.filter(
            ReviewThread.cell_id.in_(stored_ids), ReviewThread.status == ThreadStatus.OPEN
        ).all():
            open_threads[t.cell_id] = t.id
    return {
        'id': card.id,
        'team_id': card.team_id,
        'user_id': card.user_id,
        'username': card.owner.username if card.owner else None,
        'grid_size': card.grid_size,
        'has_bingo': has_bingo(cells),
        'cells': [c.to_dict(open_thread_id=open_threads.get(c.id)) for c in cells],
    }


def get_card(team_id: int, user_id: int, viewer_id: int) -> dict:
    if not is_team_member(team_id, viewer_id):
        raise NotAuthorized('Only team members can view team cards')
    card = BingoCard.query.filter_by(team_id=team_id, user_id=user_id).first()
    if not card:
        raise NotFound('Card not found')
    return card_to_dict(card)


def team_cards(team_id: int, viewer_id: int) -> List[dict]:
    if not is_team_member(team_id, viewer_id):
        raise NotAuthorized('Only team members can view team cards')
    cards = BingoCard.query.filter_by(team_id=team_id).order_by(BingoCard.id).all()
    return [card_to_dict(c) for c in cards]
