from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    origins = flask_app.config.get('CORS_ORIGINS', [])
    CORS(flask_app, supports_credentials=True, origins=origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    from tictactoe.errors import register_error_handlers
    register_error_handlers(flask_app)

    from tictactoe.main import main
    flask_app.register_blueprint(main)

    from tictactoe.api.auth import auth
    flask_app.register_blueprint(auth, url_prefix='/api/auth')

    from tictactoe.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from tictactoe.api.leaderboard import leaderboard
    flask_app.register_blueprint(leaderboard, url_prefix='/api/leaderboard')

    # Live game services are owned by the app and torn down with it
    from tictactoe.services.games.coordinator import MatchCoordinator
    from tictactoe.services.games.reconciliation import SessionReconciler
    from tictactoe.services.games.rooms import RoomRegistry
    from tictactoe.services.games.scheduler import RoomSweeper, run_in_background

    flask_app.rooms = RoomRegistry(code_length=flask_app.config.get('ROOM_CODE_LENGTH', 6))
    flask_app.reconciler = SessionReconciler()
    flask_app.coordinator = MatchCoordinator(
        flask_app.rooms,
        flask_app.reconciler,
        idle_timeout_sec=flask_app.config.get('ROOM_IDLE_TIMEOUT_SEC', 1800),
        chat_max_length=flask_app.config.get('CHAT_MESSAGE_MAX_LENGTH', 500),
    )
    flask_app.sweeper = RoomSweeper(
        flask_app,
        flask_app.coordinator,
        flask_app.reconciler,
        interval=flask_app.config.get('ROOM_SWEEP_INTERVAL_SEC', 300),
    )

    # Register Socket.IO event handlers
    from tictactoe.socketio_events import register_socketio_handlers
    register_socketio_handlers(namespace=flask_app.config.get('SOCKETIO_NAMESPACE', '/ws'))

    from tictactoe.auth import init_login_manager
    init_login_manager()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from tictactoe.models import User
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(username=u, email=f'{u}@example.com')
                user.set_password('Password1')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('purge-empty-sessions')
    def purge_empty_sessions_command():
        """Deletes game sessions that never completed a round."""
        with flask_app.app_context():
            deleted = flask_app.reconciler.purge_empty_sessions(keep=flask_app.rooms.linked_session_ids())
            print(f'Deleted {deleted} empty game sessions.')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(purge_empty_sessions_command)

    if not flask_app.config.get('TESTING'):
        # Leftovers from a previous process lifetime
        run_in_background(flask_app, 'startup-purge', flask_app.reconciler.purge_empty_sessions)
        flask_app.sweeper.start()

    return flask_app
