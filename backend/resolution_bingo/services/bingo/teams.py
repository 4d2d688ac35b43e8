from typing import List

from resolution_bingo import db
from resolution_bingo.errors import NotFound
from resolution_bingo.models import Team, TeamMembership


def load_team(team_id: int) -> Team:
    team = db.session.get(Team, team_id)
    if not team:
        raise NotFound('Team not found')
    return team


def is_team_member(team_id: int, user_id: int) -> bool:
    return TeamMembership.query.filter_by(team_id=team_id, user_id=user_id).first() is not None


def team_member_ids(team_id: int) -> List[int]:
    rows = TeamMembership.query.filter_by(team_id=team_id).order_by(TeamMembership.id).all()
    return [m.user_id for m in rows]


def is_team_leader(team_id: int, user_id: int) -> bool:
    team = db.session.get(Team, team_id)
    if team and team.leader_user_id == user_id:
        return True
    membership = TeamMembership.query.filter_by(team_id=team_id, user_id=user_id).first()
    return bool(membership and membership.role == 'leader')
