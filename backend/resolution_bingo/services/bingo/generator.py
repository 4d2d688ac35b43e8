import random
from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy.exc import IntegrityError

from resolution_bingo import db
from resolution_bingo.errors import NotAuthorized, PreconditionNotMet
from resolution_bingo.models import (
    BingoCard, BingoCell, CellState, ProvidedResolution, SourceType, Team, TeamStatus,
    EMPTY_CELL_TEXT, GRID_SIZE, JOKER_POSITION,
)
from . import leaderboard
from .notifier import RealtimeNotifier
from .pool import ResolutionPool
from .teams import is_team_leader, is_team_member, load_team, team_member_ids
from .transactions import atomic

CELL_COUNT = GRID_SIZE * GRID_SIZE
SLOTS = CELL_COUNT - 1


class CardGenerator:
    """Builds one card per (team, member).

    Randomness (personal sampling and placement) comes from ``rng`` so tests
    can pin it with a seeded ``random.Random``.
    """

    def __init__(self, rng: Optional[random.Random] = None, pool: Optional[ResolutionPool] = None,
                 notifier: Optional[RealtimeNotifier] = None):
        self.rng = rng or random.Random()
        self.pool = pool or ResolutionPool(self.rng)
        self.notifier = notifier or RealtimeNotifier()

    # ---- public operations ----

    def generate(self, team_id: int, member_id: int) -> BingoCard:
        """Return the member's card, creating it on first call."""
        try:
            with atomic():
                card, _ = self._generate_for_member(team_id, member_id)
            return card
        except IntegrityError:
            # A concurrent request created the card first
            existing = BingoCard.query.filter_by(team_id=team_id, user_id=member_id).first()
            if existing:
                return existing
            raise

    def generate_for_team(self, team_id: int) -> List[BingoCard]:
        with atomic():
            return self._generate_team(team_id)

    def start_game(self, team_id: int, user_id: int) -> List[BingoCard]:
        """Leader starts the game: flip status, deal every card, zero the leaderboard."""
        team = load_team(team_id)
        if not is_team_leader(team_id, user_id):
            raise NotAuthorized('Only the team leader can start the game')
        if team.status != TeamStatus.FORMING:
            raise PreconditionNotMet('Team is not in forming status')
        if not (team.team_resolution_text or '').strip():
            raise PreconditionNotMet('Team resolution must be set before starting')
        missing = self.missing_provided_resolutions(team_id)
        if missing:
            raise PreconditionNotMet(
                f'Not all members have provided resolutions for all other members. Missing: {len(missing)} resolutions'
            )

        with atomic():
            claimed = Team.query.filter_by(id=team_id, status=TeamStatus.FORMING).update(
                {'status': TeamStatus.STARTED}, synchronize_session='fetch'
            )
            if claimed != 1:
                raise PreconditionNotMet('Team is not in forming status')
            cards = self._generate_team(team_id)
            leaderboard.initialize(team_id, team_member_ids(team_id))

        current_app.logger.info(f"[game-start] team={team_id} cards={len(cards)}")
        self.notifier.notify_team_room(team_id)
        return cards

    def ensure_card(self, team_id: int, member_id: int) -> Tuple[BingoCard, bool]:
        """Late joiner path: idempotent generation plus a leaderboard row."""
        with atomic():
            card, created = self._generate_for_member(team_id, member_id)
            if created:
                leaderboard.initialize(team_id, [member_id])
        if created:
            self.notifier.notify_team_room(team_id)
        return card, created

    @staticmethod
    def missing_provided_resolutions(team_id: int) -> List[Tuple[int, int]]:
        """Ordered (from, to) member pairs that still lack a provided resolution."""
        member_ids = team_member_ids(team_id)
        if len(member_ids) < 2:
            return []
        provided = {
            (r.from_user_id, r.to_user_id)
            for r in ProvidedResolution.query.filter_by(team_id=team_id).all()
        }
        return [
            (src, dst) for src in member_ids for dst in member_ids
            if src != dst and (src, dst) not in provided
        ]

    # ---- internals (run inside the caller's transaction) ----

    def _generate_team(self, team_id: int) -> List[BingoCard]:
        cards = []
        for member_id in team_member_ids(team_id):
            card, _ = self._generate_for_member(team_id, member_id)
            cards.append(card)
        return cards

    def _require_started_team(self, team_id: int, member_id: int) -> str:
        team = load_team(team_id)
        if team.status != TeamStatus.STARTED:
            raise PreconditionNotMet('Team must be in started status to generate cards')
        goal = (self.pool.team_goal(team_id) or '').strip()
        if not goal:
            raise PreconditionNotMet('Team resolution must be set')
        if not is_team_member(team_id, member_id):
            raise PreconditionNotMet('User is not a member of this team')
        return goal

    def _generate_for_member(self, team_id: int, member_id: int) -> Tuple[BingoCard, bool]:
        existing = BingoCard.query.filter_by(team_id=team_id, user_id=member_id).first()
        if existing:
            return existing, False
        goal = self._require_started_team(team_id, member_id)

        entries = self._choose_entries(team_id, member_id, goal)
        self.rng.shuffle(entries)

        card = BingoCard(team_id=team_id, user_id=member_id, grid_size=GRID_SIZE)
        db.session.add(card)
        db.session.flush()

        positions = [p for p in range(CELL_COUNT) if p != JOKER_POSITION]
        for position, entry in zip(positions, entries):
            db.session.add(BingoCell(
                card_id=card.id,
                position=position,
                resolution_id=entry.get('resolution_id'),
                provided_resolution_id=entry.get('provided_resolution_id'),
                source_type=entry['source_type'],
                source_user_id=entry.get('source_user_id'),
                resolved_text=entry['text'],
                state=CellState.PENDING,
            ))
        db.session.flush()
        filled = sum(1 for e in entries if e['source_type'] != SourceType.EMPTY)
        current_app.logger.info(f"[card-generated] team={team_id} user={member_id} card={card.id} filled={filled}")
        return card, True

    def _choose_entries(self, team_id: int, member_id: int, goal: str) -> List[dict]:
        entries: List[dict] = []
        used = set()

        for res in self.pool.provided_for(team_id, member_id):
            if len(entries) >= SLOTS:
                break
            key = res['text'].strip().lower()
            if not key or key in used:
                continue
            entries.append({
                'text': res['text'],
                'source_type': SourceType.MEMBER_PROVIDED,
                'source_user_id': res['from_user_id'],
                'provided_resolution_id': res['id'],
            })
            used.add(key)

        if len(entries) < SLOTS and goal.lower() not in used:
            entries.append({'text': goal, 'source_type': SourceType.TEAM, 'source_user_id': None})
            used.add(goal.lower())

        needed = SLOTS - len(entries)
        if needed > 0:
            # Oversample so de-duplication still leaves enough to fill the card
            for res in self.pool.personal_sample(member_id, needed * 2, used):
                if len(entries) >= SLOTS:
                    break
                key = res['text'].strip().lower()
                if not key or key in used:
                    continue
                entries.append({
                    'text': res['text'],
                    'source_type': SourceType.PERSONAL,
                    'source_user_id': member_id,
                    'resolution_id': res['id'],
                })
                used.add(key)

        while len(entries) < SLOTS:
            entries.append({'text': EMPTY_CELL_TEXT, 'source_type': SourceType.EMPTY, 'source_user_id': None})
        return entries
