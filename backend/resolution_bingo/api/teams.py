from flask import Blueprint, jsonify
from flask_login import login_required, current_user

from resolution_bingo.errors import NotAuthorized
from resolution_bingo.services.bingo import leaderboard
from resolution_bingo.services.bingo.cards import card_to_dict, get_card, team_cards
from resolution_bingo.services.bingo.generator import CardGenerator
from resolution_bingo.services.bingo.teams import is_team_member, load_team

teams = Blueprint('teams', __name__)


@teams.route('/<int:team_id>/start', methods=['POST'])
@login_required
def start_game(team_id):
    """Team leader starts the game; every member gets a card."""
    cards = CardGenerator().start_game(team_id, current_user.id)
    team = load_team(team_id)
    return jsonify({
        'message': 'Bingo game started successfully',
        'team': team.to_dict(),
        'card_ids': [c.id for c in cards],
    })


@teams.route('/<int:team_id>/cards/me', methods=['POST'])
@login_required
def ensure_my_card(team_id):
    """Members who joined after the start get their card lazily."""
    card, created = CardGenerator().ensure_card(team_id, current_user.id)
    return jsonify(card_to_dict(card)), 201 if created else 200


@teams.route('/<int:team_id>/cards', methods=['GET'])
@login_required
def list_cards(team_id):
    return jsonify(team_cards(team_id, current_user.id))


@teams.route('/<int:team_id>/cards/<int:user_id>', methods=['GET'])
@login_required
def get_member_card(team_id, user_id):
    return jsonify(get_card(team_id, user_id, current_user.id))


@teams.route('/<int:team_id>/leaderboard', methods=['GET'])
@login_required
def get_leaderboard(team_id):
    load_team(team_id)
    if not is_team_member(team_id, current_user.id):
        raise NotAuthorized('Only team members can view the leaderboard')
    return jsonify({'team_id': team_id, 'entries': leaderboard.ranked(team_id)})
