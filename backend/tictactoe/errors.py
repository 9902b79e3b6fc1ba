"""Error types shared by the REST API and the live game gateway.

Every error raised on purpose by request handling derives from
:class:`GameError`. REST handlers render them through the Flask error
handler registered in :func:`register_error_handlers`; the Socket.IO gateway
turns them into a failed acknowledgement for the acting client.
"""

from typing import Any, Dict, List, Optional

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException


class GameError(Exception):
    status_code = 400
    code = 'game_error'

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {'error': self.message, 'code': self.code}


class ValidationError(GameError):
    """Malformed or missing input. Nothing was mutated."""

    code = 'validation_error'

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.details:
            payload['details'] = self.details
        return payload


class StateConflictError(GameError):
    """The request is well formed but the room state does not allow it."""

    status_code = 409
    code = 'state_conflict'


class NotFoundError(GameError):
    status_code = 404
    code = 'not_found'


class AuthenticationError(GameError):
    status_code = 401
    code = 'unauthorized'


# Reason codes for state conflicts raised by the match coordinator
ROOM_NOT_FOUND = 'room_not_found'
ROOM_FULL = 'room_full'
GAME_NOT_ACTIVE = 'game_not_active'
NOT_YOUR_TURN = 'not_your_turn'
INVALID_TARGET = 'invalid_target'
ROUND_IN_PROGRESS = 'round_in_progress'
NOT_IN_ROOM = 'not_in_room'


def register_error_handlers(flask_app) -> None:
    @flask_app.errorhandler(GameError)
    def handle_game_error(exc: GameError):
        return jsonify(exc.to_dict()), exc.status_code

    @flask_app.errorhandler(404)
    def handle_not_found(exc):
        return jsonify({
            'error': 'Not found',
            'message': f'Route {request.method} {request.path} not found',
        }), 404

    @flask_app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({'error': exc.name, 'message': exc.description}), exc.code
        current_app.logger.exception(f"[unhandled] {exc}")
        message = str(exc) if current_app.debug else 'Something went wrong'
        return jsonify({'error': 'Internal server error', 'message': message}), 500
