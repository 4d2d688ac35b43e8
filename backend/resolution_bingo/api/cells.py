from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from resolution_bingo.errors import ValidationError
from resolution_bingo.services.bingo.gameplay import Gameplay

cells = Blueprint('cells', __name__)


def _requested_state():
    data = request.get_json(silent=True) or {}
    state = data.get('state')
    if not isinstance(state, str) or not state:
        raise ValidationError('state is required')
    return state


@cells.route('/cells/<int:cell_id>', methods=['PATCH'])
@login_required
def update_cell_state(cell_id):
    cell = Gameplay().set_cell_state(cell_id, current_user.id, _requested_state())
    return jsonify({'cell': cell.to_dict()})


@cells.route('/cards/<int:card_id>/cells/<int:position>', methods=['PATCH'])
@login_required
def update_cell_state_at(card_id, position):
    cell = Gameplay().set_position_state(card_id, position, current_user.id, _requested_state())
    return jsonify({'cell': cell.to_dict()})


@cells.route('/cells/<int:cell_id>/request-proof', methods=['POST'])
@login_required
def request_proof(cell_id):
    thread = Gameplay().request_proof(cell_id, current_user.id)
    return jsonify({'thread': thread.to_dict()}), 201


@cells.route('/cells/<int:cell_id>/undo-complete', methods=['POST'])
@login_required
def undo_complete(cell_id):
    """Revert a mistaken completion; closes any open review thread."""
    cell = Gameplay().undo_completion(cell_id, current_user.id)
    return jsonify({'cell': cell.to_dict()})


def _edit_payload():
    data = request.get_json(silent=True) or {}
    text = data.get('resolution_text')
    if text is not None and not isinstance(text, str):
        raise ValidationError('resolution_text must be a string')
    source_user_id = data.get('source_user_id')
    if source_user_id is not None and not isinstance(source_user_id, int):
        raise ValidationError('source_user_id must be an integer')
    return text, data.get('source_type'), source_user_id


@cells.route('/cells/<int:cell_id>/edit', methods=['PUT'])
@login_required
def edit_cell(cell_id):
    """Card owner replaces a pending cell's content."""
    text, source_type, source_user_id = _edit_payload()
    cell = Gameplay().edit_cell(cell_id, current_user.id, text, source_type, source_user_id)
    return jsonify({'cell': cell.to_dict()})


@cells.route('/cards/<int:card_id>/cells/<int:position>/edit', methods=['PUT'])
@login_required
def edit_cell_at(card_id, position):
    text, source_type, source_user_id = _edit_payload()
    cell = Gameplay().edit_position(card_id, position, current_user.id, text, source_type, source_user_id)
    return jsonify({'cell': cell.to_dict()})


@cells.route('/cells/<int:cell_id>/duplicate', methods=['POST'])
@login_required
def report_duplicate(cell_id):
    data = request.get_json(silent=True) or {}
    replacement = data.get('replacement_text')
    if replacement is not None and not isinstance(replacement, str):
        raise ValidationError('replacement_text must be a string')
    report = Gameplay().report_duplicate(cell_id, current_user.id, replacement)
    return jsonify({'message': 'Duplicate reported successfully', 'report': report.to_dict()})
