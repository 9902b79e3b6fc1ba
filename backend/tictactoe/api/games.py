import math

from flask import Blueprint, current_app, jsonify, request

from tictactoe import db
from tictactoe.errors import NotFoundError, ValidationError
from tictactoe.models import GameSession
from tictactoe.validation import (
    parse_session_id,
    parse_session_list_query,
    validate_game_session_create,
    validate_game_session_update,
)

games = Blueprint('games', __name__)


def _get_session_or_404(raw_id) -> GameSession:
    session = db.session.get(GameSession, parse_session_id(raw_id))
    if session is None:
        raise NotFoundError('Game session not found')
    return session


@games.route('', methods=['GET'])
def list_sessions():
    params = parse_session_list_query(request.args)
    page, limit = params['page'], params['limit']
    query = GameSession.query.filter_by(**params['filters'])
    total = query.count()
    sessions = (
        query.order_by(GameSession.created_at.desc(), GameSession.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    total_pages = math.ceil(total / limit)
    has_next = page < total_pages
    has_prev = page > 1
    return jsonify({
        'sessions': [s.to_dict() for s in sessions],
        'pagination': {
            'page': page,
            'limit': limit,
            'total': total,
            'total_pages': total_pages,
            'has_next': has_next,
            'has_prev': has_prev,
            'next_page': page + 1 if has_next else None,
            'prev_page': page - 1 if has_prev else None,
        },
    })


@games.route('', methods=['POST'])
def create_session():
    data = validate_game_session_create(request.get_json(silent=True))
    session = GameSession(**data)
    db.session.add(session)
    db.session.commit()
    current_app.logger.info(f"[session-created] session={session.id} source=rest")
    return jsonify(session.to_dict()), 201


@games.route('/<session_id>', methods=['GET'])
def get_session(session_id):
    return jsonify(_get_session_or_404(session_id).to_dict(include_history=True))


@games.route('/<session_id>', methods=['PATCH'])
def update_session(session_id):
    session = _get_session_or_404(session_id)
    updates = validate_game_session_update(request.get_json(silent=True))
    merged = {
        key: updates.get(key, getattr(session, key))
        for key in ('player1_wins', 'player2_wins', 'draws', 'total_rounds')
    }
    if merged['player1_wins'] + merged['player2_wins'] + merged['draws'] != merged['total_rounds']:
        raise ValidationError('player1_wins + player2_wins + draws must equal total_rounds')
    for key, value in updates.items():
        setattr(session, key, value)
    db.session.commit()
    current_app.logger.info(f"[session-corrected] session={session.id} fields={sorted(updates)}")
    return jsonify(session.to_dict())
