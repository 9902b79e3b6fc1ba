import os
import sys
import pytest
from flask import g

# Ensure the backend root (containing the `tictactoe` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tictactoe import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    JWT_SECRET_KEY = 'test-jwt-secret'
    JWT_ALGORITHM = 'HS256'
    JWT_EXPIRE_HOURS = 1
    BCRYPT_LOG_ROUNDS = 4
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    ROOM_CODE_LENGTH = 6
    ROOM_IDLE_TIMEOUT_SEC = 1800
    ROOM_SWEEP_INTERVAL_SEC = 300
    CHAT_MESSAGE_MAX_LENGTH = 500
    SOCKETIO_NAMESPACE = '/ws'
    CORS_ORIGINS = ['http://localhost:5173']
    LOG_LEVEL = 'DEBUG'


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # The test client reuses the fixture's app context, so drop Flask-Login's
    # per-request user cache before each request.
    @application.before_request
    def _reset_login_cache():
        g.pop('_login_user', None)

    with application.app_context():
        # Ensure models are imported so tables are created
        import tictactoe.models  # noqa: F401
        db.create_all()
        yield application
        application.coordinator.shutdown()
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def coordinator(flask_app):
    return flask_app.coordinator


@pytest.fixture()
def make_sio_client(flask_app):
    """Factory for extra Socket.IO clients; all are disconnected on teardown."""
    created = []

    def _make():
        test_client = socketio.test_client(
            flask_app,
            flask_test_client=flask_app.test_client(),
            namespace='/ws'
        )
        # Drop the greeting emitted on connect
        test_client.get_received('/ws')
        created.append(test_client)
        return test_client

    yield _make
    for test_client in created:
        if test_client.is_connected('/ws'):
            test_client.disconnect(namespace='/ws')


@pytest.fixture()
def sio_client(make_sio_client):
    return make_sio_client()


@pytest.fixture()
def user_factory(flask_app):
    from tictactoe.models import User

    def _make(username='alice', email=None, password='Secret123', **fields):
        user = User(username=username, email=email or f'{username}@example.com', **fields)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers(flask_app):
    from tictactoe.auth import issue_token

    def _make(user):
        return {'Authorization': f'Bearer {issue_token(user.id)}'}

    return _make
