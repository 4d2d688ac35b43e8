from flask_socketio import join_room, leave_room, emit

from resolution_bingo import socketio
from resolution_bingo.services.bingo.notifier import NAMESPACE, team_room, thread_room


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def _room_for(data, key, room_fn):
    value = (data or {}).get(key)
    if value in (None, ''):
        emit('error', {'message': f'{key} is required'})
        return None
    return room_fn(value)


def handle_join_team(data):
    # Card viewers of any member in the team share one room
    room = _room_for(data, 'team_id', team_room)
    if room:
        join_room(room)
        emit('joined', {'room': room})


def handle_leave_team(data):
    room = _room_for(data, 'team_id', team_room)
    if room:
        leave_room(room)
        emit('left', {'room': room})


def handle_join_thread(data):
    room = _room_for(data, 'thread_id', thread_room)
    if room:
        join_room(room)
        emit('joined', {'room': room})


def handle_leave_thread(data):
    room = _room_for(data, 'thread_id', thread_room)
    if room:
        leave_room(room)
        emit('left', {'room': room})


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers(testing: bool = False) -> None:
    """Register Socket.IO event handlers.

    Always register on namespace '/ws'. When testing is True, also mirror
    handlers on the default namespace '/' to accommodate the test harness.
    """
    handlers = {
        'connect': handle_connect,
        'join_team': handle_join_team,
        'leave_team': handle_leave_team,
        'join_thread': handle_join_thread,
        'leave_thread': handle_leave_thread,
        'ping': handle_ping,
    }
    namespaces = [NAMESPACE, '/'] if testing else [NAMESPACE]
    for namespace in namespaces:
        for event, handler in handlers.items():
            socketio.on_event(event, handler, namespace=namespace)
