"""Bingo line detection over the 25 logical cells of a card.

Two "done" predicates:

- ``is_done_for_bingo`` drives the bingo banner shown on a card and treats a
  cell under review as done.
- ``is_done_for_score`` drives leaderboard timestamping and only counts cells
  whose completion is settled (completed or accomplished).

Cells are any objects exposing ``position``, ``state``, ``is_joker`` and
``is_empty`` (plus ``updated_at`` for timestamping).
"""
from typing import Callable, Iterable, List, Optional, Tuple

from resolution_bingo.models import CellState, GRID_SIZE

BINGO_DONE_STATES = frozenset({CellState.COMPLETED, CellState.ACCOMPLISHED, CellState.PENDING_REVIEW})
SCORE_DONE_STATES = frozenset({CellState.COMPLETED, CellState.ACCOMPLISHED})


def _build_lines(size: int) -> Tuple[Tuple[int, ...], ...]:
    rows = [tuple(r * size + c for c in range(size)) for r in range(size)]
    cols = [tuple(r * size + c for r in range(size)) for c in range(size)]
    diagonals = [
        tuple(i * size + i for i in range(size)),
        tuple(i * size + (size - 1 - i) for i in range(size)),
    ]
    return tuple(rows + cols + diagonals)


ALL_LINES = _build_lines(GRID_SIZE)


def is_done_for_bingo(cell) -> bool:
    if cell.is_joker:
        return True
    if cell.is_empty:
        return False
    return cell.state in BINGO_DONE_STATES


def is_done_for_score(cell) -> bool:
    if cell.is_joker:
        return True
    if cell.is_empty:
        return False
    return cell.state in SCORE_DONE_STATES


def completed_lines(cells: Iterable, is_done: Callable = is_done_for_bingo) -> List[Tuple[int, ...]]:
    """Return every row, column, or diagonal whose cells all satisfy ``is_done``."""
    by_position = {c.position: c for c in cells}
    done = []
    for line in ALL_LINES:
        if all(p in by_position and is_done(by_position[p]) for p in line):
            done.append(line)
    return done


def has_bingo(cells: Iterable) -> bool:
    return bool(completed_lines(cells, is_done_for_bingo))


def first_bingo_at(cells: Iterable):
    """When the earliest settled line was achieved, or None.

    A line is achieved when its slowest non-joker cell finished, i.e. the
    maximum ``updated_at`` over the line.
    """
    cells = list(cells)
    by_position = {c.position: c for c in cells}
    earliest: Optional[object] = None
    for line in completed_lines(cells, is_done_for_score):
        stamps = [
            by_position[p].updated_at for p in line
            if not by_position[p].is_joker and by_position[p].updated_at is not None
        ]
        if not stamps:
            continue
        achieved = max(stamps)
        if earliest is None or achieved < earliest:
            earliest = achieved
    return earliest
