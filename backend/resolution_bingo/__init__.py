from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from resolution_bingo.errors import register_error_handlers
    register_error_handlers(flask_app)

    from resolution_bingo.api.teams import teams
    from resolution_bingo.api.cells import cells
    from resolution_bingo.api.threads import threads
    flask_app.register_blueprint(teams, url_prefix='/api/teams')
    flask_app.register_blueprint(cells, url_prefix='/api')
    flask_app.register_blueprint(threads, url_prefix='/api/threads')

    from resolution_bingo.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # Flask-Login user loader; sessions themselves are issued elsewhere
    from resolution_bingo.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from resolution_bingo.models import User
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            for name in ['testuser1', 'testuser2', 'testuser3']:
                db.session.add(User(username=name))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
