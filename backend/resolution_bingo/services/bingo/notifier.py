from flask import current_app

from resolution_bingo import socketio

NAMESPACE = '/ws'


def team_room(team_id) -> str:
    return f"team:{team_id}"


def thread_room(thread_id) -> str:
    return f"thread:{thread_id}"


class RealtimeNotifier:
    """Best-effort room broadcasts. Payloads mean "re-fetch", never a diff.

    Emits are fire-and-forget; failures are logged and never reach the caller.
    """

    def __init__(self, sio=None):
        self.sio = sio or socketio

    def notify_team_room(self, team_id: int) -> None:
        try:
            self.sio.emit('refresh-card', {'team_id': team_id}, to=team_room(team_id), namespace=NAMESPACE)
        except Exception as exc:
            current_app.logger.warning(f"[notify-drop] room={team_room(team_id)} error={exc}")

    def notify_thread_room(self, thread_id: int, payload: dict) -> None:
        body = {
            'thread_id': thread_id,
            'author_username': payload.get('author_username'),
            'content': payload.get('content'),
        }
        try:
            self.sio.emit('thread-message', body, to=thread_room(thread_id), namespace=NAMESPACE)
        except Exception as exc:
            current_app.logger.warning(f"[notify-drop] room={thread_room(thread_id)} error={exc}")
