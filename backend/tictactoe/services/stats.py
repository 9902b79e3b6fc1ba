"""Leaderboard and per-account statistics built from User and GameSession rows."""

import math
from collections import defaultdict
from typing import Any, Dict, List

from sqlalchemy import and_, case, or_

from tictactoe import db
from tictactoe.errors import NotFoundError
from tictactoe.models import GameSession, User

RECENT_SESSIONS_LIMIT = 10


def win_rate_expression():
    return case((User.total_games == 0, 0.0), else_=User.wins * 100.0 / User.total_games)


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError('User not found')
    return user


def get_leaderboard(sort_by: str = 'wins', order: str = 'desc', limit: int = 50, skip: int = 0, min_games: int = 0) -> Dict[str, Any]:
    win_rate = win_rate_expression()
    direction = (lambda col: col.desc()) if order == 'desc' else (lambda col: col.asc())

    if sort_by == 'total_games':
        ordering = [direction(User.total_games)]
    elif sort_by == 'win_rate':
        # Win rate first, then activity, then absolute wins
        ordering = [direction(win_rate), User.total_games.desc(), User.wins.desc()]
    else:
        ordering = [direction(User.wins), User.total_games.desc()]

    query = User.query.filter(User.is_active.is_(True))
    if min_games > 0:
        query = query.filter(User.total_games >= min_games)
    total = query.count()
    rows = (
        query.add_columns(win_rate.label('win_rate'))
        .order_by(*ordering, User.id.asc())
        .offset(skip)
        .limit(limit)
        .all()
    )

    leaderboard = []
    for index, (user, rate) in enumerate(rows):
        leaderboard.append({
            'id': user.id,
            'username': user.username,
            'wins': user.wins,
            'losses': user.losses,
            'draws': user.draws,
            'total_games': user.total_games,
            'win_rate': round(float(rate or 0), 1),
            'avatar': user.avatar,
            'bio': user.bio,
            'created_at': user.created_at.isoformat() if user.created_at else None,
            'rank': skip + index + 1,
        })

    return {
        'leaderboard': leaderboard,
        'pagination': {
            'total': total,
            'page': skip // limit + 1,
            'pages': math.ceil(total / limit) if limit else 0,
            'has_next': skip + limit < total,
            'has_prev': skip > 0,
        },
    }


def _opponent(session: GameSession, user_id: int) -> Dict[str, Any]:
    if session.player1_id == user_id:
        other, name = session.player2, session.player2_name
    else:
        other, name = session.player1, session.player1_name
    if other is None:
        return {'username': name, 'is_guest': True}
    return other.to_summary()


def _result_for(session: GameSession, user_id: int) -> str:
    if session.player1_id == user_id:
        own, theirs = session.player1_wins, session.player2_wins
    else:
        own, theirs = session.player2_wins, session.player1_wins
    if own > theirs:
        return 'win'
    if theirs > own:
        return 'loss'
    return 'draw'


def get_head_to_head(user_id: int) -> List[Dict[str, Any]]:
    sessions = GameSession.query.filter(
        or_(GameSession.player1_id == user_id, GameSession.player2_id == user_id),
        GameSession.session_type.in_(('authenticated', 'mixed')),
    ).all()

    records: Dict[int, Dict[str, int]] = defaultdict(lambda: {'wins': 0, 'losses': 0, 'draws': 0, 'total_games': 0})
    for s in sessions:
        is_player1 = s.player1_id == user_id
        opponent_id = s.player2_id if is_player1 else s.player1_id
        if not opponent_id:
            continue
        rec = records[opponent_id]
        rec['wins'] += s.player1_wins if is_player1 else s.player2_wins
        rec['losses'] += s.player2_wins if is_player1 else s.player1_wins
        rec['draws'] += s.draws
        rec['total_games'] += s.total_rounds

    result = []
    for opponent_id, rec in records.items():
        opponent = db.session.get(User, opponent_id)
        if opponent is None:
            continue
        total = rec['total_games']
        result.append({
            'opponent': opponent.to_summary(),
            **rec,
            'win_rate': round(rec['wins'] / total * 100, 1) if total else 0,
        })
    result.sort(key=lambda r: r['total_games'], reverse=True)
    return result


def get_user_stats(user_id: int) -> Dict[str, Any]:
    user = _get_user(user_id)
    recent = (
        GameSession.query.filter(or_(GameSession.player1_id == user_id, GameSession.player2_id == user_id))
        .order_by(GameSession.updated_at.desc(), GameSession.id.desc())
        .limit(RECENT_SESSIONS_LIMIT)
        .all()
    )
    return {
        'user': user.to_dict(),
        'recent_games': [
            {
                'id': s.id,
                'opponent': _opponent(s, user_id),
                'result': _result_for(s, user_id),
                'total_rounds': s.total_rounds,
                'created_at': s.created_at.isoformat() if s.created_at else None,
                'updated_at': s.updated_at.isoformat() if s.updated_at else None,
            }
            for s in recent
        ],
        'head_to_head': get_head_to_head(user_id),
    }


def get_user_rank(user_id: int) -> Dict[str, Any]:
    user = _get_user(user_id)
    better = User.query.filter(
        User.is_active.is_(True),
        or_(
            User.wins > user.wins,
            and_(User.wins == user.wins, User.total_games > user.total_games),
        ),
    ).count()
    return {'rank': better + 1, 'user': user.to_dict()}
