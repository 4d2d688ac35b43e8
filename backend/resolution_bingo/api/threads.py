from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from resolution_bingo.errors import ValidationError
from resolution_bingo.services.bingo.gameplay import Gameplay

threads = Blueprint('threads', __name__)


@threads.route('/<int:thread_id>', methods=['GET'])
@login_required
def get_thread(thread_id):
    return jsonify({'thread': Gameplay().get_thread(thread_id, current_user.id)})


@threads.route('/<int:thread_id>/messages', methods=['POST'])
@login_required
def post_message(thread_id):
    data = request.get_json(silent=True) or {}
    content = data.get('content')
    if content is not None and not isinstance(content, str):
        raise ValidationError('content must be a string')
    message = Gameplay().add_message(thread_id, current_user.id, content or '')
    return jsonify({'message': message.to_dict()}), 201


@threads.route('/<int:thread_id>/files', methods=['POST'])
@login_required
def upload_file(thread_id):
    """Attach a proof file (multipart field ``file``)."""
    upload = request.files.get('file')
    if upload is None:
        raise ValidationError('File is required')
    data = upload.read()
    record = Gameplay().upload_file(thread_id, current_user.id, data, upload.filename, upload.mimetype)
    return jsonify({'file': record.to_dict()}), 201


@threads.route('/<int:thread_id>/vote', methods=['POST'])
@login_required
def vote(thread_id):
    data = request.get_json(silent=True) or {}
    result = Gameplay().submit_vote(thread_id, current_user.id, data.get('vote'))
    return jsonify(result)
