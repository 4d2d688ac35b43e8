from datetime import datetime
from typing import Iterable, List, Optional

from flask import current_app

from resolution_bingo import db
from resolution_bingo.models import BingoCard, BingoCell, LeaderboardEntry, User
from .cards import logical_cells
from .lines import SCORE_DONE_STATES, first_bingo_at


def refresh(team_id: int, user_id: int) -> Optional[LeaderboardEntry]:
    """Recompute one member's entry from their cells and upsert it.

    Runs inside the caller's transaction; does not commit.
    """
    card = BingoCard.query.filter_by(team_id=team_id, user_id=user_id).first()
    if not card:
        return None
    db.session.flush()
    stored = BingoCell.query.filter_by(card_id=card.id).all()
    completed = sum(1 for c in stored if not c.is_empty and c.state in SCORE_DONE_STATES)
    bingo_at = first_bingo_at(logical_cells(stored))

    entry = LeaderboardEntry.query.filter_by(team_id=team_id, user_id=user_id).first()
    if entry is None:
        entry = LeaderboardEntry(team_id=team_id, user_id=user_id)
        db.session.add(entry)
    entry.completed_tasks = completed
    entry.first_bingo_at = bingo_at
    current_app.logger.info(
        f"[leaderboard] team={team_id} user={user_id} completed={completed} first_bingo_at={bingo_at}"
    )
    return entry


def initialize(team_id: int, user_ids: Iterable[int]) -> None:
    """Insert zeroed rows for members without one; existing rows are left alone."""
    user_ids = list(user_ids)
    if not user_ids:
        return
    existing = {
        e.user_id for e in LeaderboardEntry.query.filter(
            LeaderboardEntry.team_id == team_id, LeaderboardEntry.user_id.in_(user_ids)
        ).all()
    }
    for uid in user_ids:
        if uid not in existing:
            db.session.add(LeaderboardEntry(team_id=team_id, user_id=uid, completed_tasks=0, first_bingo_at=None))


def _rank_key(row):
    entry, username = row
    has_bingo = entry.first_bingo_at is not None
    return (
        0 if has_bingo else 1,
        entry.first_bingo_at or datetime.min,
        -(entry.completed_tasks or 0),
        username or '',
    )


def ranked(team_id: int) -> List[dict]:
    """Earliest first bingo first; then most completed tasks; then username."""
    rows = (
        db.session.query(LeaderboardEntry, User.username)
        .join(User, LeaderboardEntry.user_id == User.id)
        .filter(LeaderboardEntry.team_id == team_id)
        .all()
    )
    result = []
    for idx, (entry, username) in enumerate(sorted(rows, key=_rank_key), start=1):
        result.append({
            'rank': idx,
            'user_id': entry.user_id,
            'username': username,
            'first_bingo_at': entry.first_bingo_at.isoformat() if entry.first_bingo_at else None,
            'completed_tasks': entry.completed_tasks,
        })
    return result
