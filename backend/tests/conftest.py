import os
import sys
import random
import pytest

# Ensure the backend root (containing the `resolution_bingo` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from flask import g
from flask_login import FlaskLoginClient

from resolution_bingo import create_app, db, socketio
from resolution_bingo.models import (
    User, Team, TeamMembership, Resolution, ProvidedResolution, TeamStatus,
)
from resolution_bingo.services.bingo.gameplay import Gameplay
from resolution_bingo.services.bingo.generator import CardGenerator
from resolution_bingo.services.bingo.storage import ProofStorage


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_PROOF_FILE_BYTES = 5 * 1024 * 1024
    CORS_ORIGINS = ['http://localhost:5173']


class RecordingNotifier:
    """Collects broadcasts instead of emitting them."""

    def __init__(self):
        self.team_events = []
        self.thread_events = []

    def notify_team_room(self, team_id):
        self.team_events.append(team_id)

    def notify_thread_room(self, thread_id, payload):
        self.thread_events.append((thread_id, payload))


@pytest.fixture()
def flask_app(tmp_path):
    # File-backed so a second app context gets its own connection and session
    class _Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'bingo.db'}"

    application = create_app(_Config)
    application.config['UPLOAD_FOLDER'] = str(tmp_path / 'uploads')
    application.test_client_class = FlaskLoginClient

    # The app context below outlives individual test requests, so Flask reuses it
    # (and its `g`) for every request; drop Flask-Login's cached user per request.
    @application.before_request
    def _reset_cached_login_user():
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import resolution_bingo.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def login_as(flask_app):
    def _login(user):
        return flask_app.test_client(user=user)
    return _login


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def storage(flask_app):
    return ProofStorage()


@pytest.fixture()
def gameplay(notifier, storage):
    return Gameplay(notifier=notifier, storage=storage)


@pytest.fixture()
def generator(notifier):
    return CardGenerator(rng=random.Random(1234), notifier=notifier)


@pytest.fixture()
def make_team(flask_app):
    """Build a forming team where every member wrote one resolution for every other member."""
    def _make(names=('alice', 'bob', 'cara', 'dan'), goal='Run a marathon together', personal_count=30,
              provide_all=True):
        users = []
        for name in names:
            user = User(username=name)
            db.session.add(user)
            users.append(user)
        db.session.flush()
        team = Team(name='Resolvers', leader_user_id=users[0].id, team_resolution_text=goal,
                    status=TeamStatus.FORMING)
        db.session.add(team)
        db.session.flush()
        for idx, user in enumerate(users):
            db.session.add(TeamMembership(team_id=team.id, user_id=user.id, role='leader' if idx == 0 else 'member'))
            for n in range(personal_count):
                db.session.add(Resolution(owner_user_id=user.id, text=f'{user.username} personal goal {n}'))
        if provide_all:
            for src in users:
                for dst in users:
                    if src.id != dst.id:
                        db.session.add(ProvidedResolution(
                            team_id=team.id, from_user_id=src.id, to_user_id=dst.id,
                            text=f'{src.username} says {dst.username} should learn {src.username}-skill',
                        ))
        db.session.commit()
        return team, users
    return _make


@pytest.fixture()
def started_team(make_team, generator):
    team, users = make_team()
    generator.start_game(team.id, users[0].id)
    return team, users
