import random
from typing import Iterable, List, Optional

from resolution_bingo import db
from resolution_bingo.models import Team, Resolution, ProvidedResolution


class ResolutionPool:
    """Read-only view over the three sources a card is built from."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def team_goal(self, team_id: int) -> Optional[str]:
        team = db.session.get(Team, team_id)
        return team.team_resolution_text if team else None

    def provided_for(self, team_id: int, member_id: int) -> List[dict]:
        rows = (
            ProvidedResolution.query
            .filter_by(team_id=team_id, to_user_id=member_id)
            .order_by(ProvidedResolution.created_at, ProvidedResolution.id)
            .all()
        )
        return [{'id': r.id, 'text': r.text, 'from_user_id': r.from_user_id} for r in rows]

    def personal_sample(self, member_id: int, count: int, exclude_texts: Iterable[str]) -> List[dict]:
        """Random ``count`` personal resolutions whose text is not already taken."""
        if count <= 0:
            return []
        excluded = {t.lower() for t in exclude_texts}
        rows = Resolution.query.filter_by(owner_user_id=member_id).order_by(Resolution.id).all()
        candidates = [r for r in rows if r.text.lower() not in excluded]
        picked = self.rng.sample(candidates, min(count, len(candidates)))
        return [{'id': r.id, 'text': r.text} for r in picked]
