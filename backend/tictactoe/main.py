from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({
        'message': 'Tic-tac-toe game server',
        'status': 'ok',
        'live_rooms': len(current_app.rooms),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    })
