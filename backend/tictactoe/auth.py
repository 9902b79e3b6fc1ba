from datetime import datetime, timedelta
from typing import Optional

from flask import current_app, jsonify, request
from jose import JWTError, jwt

from tictactoe import db, login_manager


def issue_token(user_id: int) -> str:
    expire = datetime.utcnow() + timedelta(hours=current_app.config.get('JWT_EXPIRE_HOURS', 168))
    # python-jose requires the subject claim to be a string
    to_encode = {'sub': str(user_id), 'exp': expire}
    return jwt.encode(
        to_encode,
        current_app.config['JWT_SECRET_KEY'],
        algorithm=current_app.config.get('JWT_ALGORITHM', 'HS256'),
    )


def decode_token(token: Optional[str]) -> Optional[int]:
    """Return the account id carried by a valid token, or None."""
    if not token or not isinstance(token, str):
        return None
    try:
        payload = jwt.decode(
            token,
            current_app.config['JWT_SECRET_KEY'],
            algorithms=[current_app.config.get('JWT_ALGORITHM', 'HS256')],
        )
        return int(payload.get('sub'))
    except (JWTError, TypeError, ValueError):
        return None


def token_from_header(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        return None
    return token.strip()


def resolve_account_id(token: Optional[str]) -> Optional[int]:
    """Map a socket intent's token to an active account; anything else plays as a guest."""
    user_id = decode_token(token)
    if user_id is None:
        return None
    from tictactoe.models import User
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        current_app.logger.info(f"[auth-guest] user={user_id} reason=unknown_or_inactive")
        return None
    return user.id


def init_login_manager() -> None:
    from tictactoe.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.request_loader
    def load_user_from_request(req):
        user_id = decode_token(token_from_header(req.headers.get('Authorization')))
        if user_id is None:
            return None
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        current_app.logger.info(f"[auth-denied] path={request.path}")
        return jsonify({'error': 'Access denied', 'message': 'A valid token is required'}), 401
