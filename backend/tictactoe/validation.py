"""Input checks for REST payloads, query strings and socket intents.

Each helper returns the cleaned value(s) or raises ValidationError carrying
every problem found, so clients can show all of them at once.
"""

import re
from typing import Any, Dict, List, Optional

from tictactoe.errors import ValidationError

PLAYER_NAME_MAX_LENGTH = 50
USERNAME_RE = re.compile(r'^[a-zA-Z0-9_-]+$')
EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[a-zA-Z]{2,}$')
PASSWORD_RE = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)')
URL_RE = re.compile(r'^https?://.+')

LEADERBOARD_SORTS = ('wins', 'win_rate', 'total_games')
SORT_ORDERS = ('asc', 'desc')


def clean_player_name(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('Player name is required')
    name = value.strip()
    if len(name) > PLAYER_NAME_MAX_LENGTH:
        raise ValidationError(f'Player name must be {PLAYER_NAME_MAX_LENGTH} characters or less')
    return name


def _check_username(username: Any, errors: List[str]) -> None:
    if not isinstance(username, str) or not 3 <= len(username.strip()) <= 30:
        errors.append('Username must be between 3 and 30 characters')
    elif not USERNAME_RE.match(username.strip()):
        errors.append('Username can only contain letters, numbers, underscores and hyphens')


def _check_email(email: Any, errors: List[str]) -> None:
    if not isinstance(email, str) or not EMAIL_RE.match(email.strip()):
        errors.append('Please enter a valid email address')


def _check_password(password: Any, errors: List[str], label: str = 'Password') -> None:
    if not isinstance(password, str) or len(password) < 6:
        errors.append(f'{label} must be at least 6 characters long')
    elif not PASSWORD_RE.match(password):
        errors.append(f'{label} must contain at least one lowercase letter, one uppercase letter, and one number')


def _raise_if(errors: List[str]) -> None:
    if errors:
        raise ValidationError('Validation failed', details=errors)


def validate_registration(data: Optional[dict]) -> Dict[str, str]:
    data = data or {}
    errors: List[str] = []
    _check_username(data.get('username'), errors)
    _check_email(data.get('email'), errors)
    _check_password(data.get('password'), errors)
    _raise_if(errors)
    return {
        'username': data['username'].strip(),
        'email': data['email'].strip().lower(),
        'password': data['password'],
    }


def validate_login(data: Optional[dict]) -> Dict[str, str]:
    data = data or {}
    errors: List[str] = []
    login = data.get('login') or data.get('username') or data.get('email')
    if not isinstance(login, str) or not login.strip():
        errors.append('Username or email is required')
    if not data.get('password'):
        errors.append('Password is required')
    _raise_if(errors)
    return {'login': login.strip(), 'password': data['password']}


def validate_profile_update(data: Optional[dict]) -> Dict[str, Any]:
    data = data or {}
    errors: List[str] = []
    updates: Dict[str, Any] = {}
    if 'username' in data:
        _check_username(data['username'], errors)
        if isinstance(data['username'], str):
            updates['username'] = data['username'].strip()
    if 'email' in data:
        _check_email(data['email'], errors)
        if isinstance(data['email'], str):
            updates['email'] = data['email'].strip().lower()
    if 'bio' in data:
        bio = data['bio'] or ''
        if not isinstance(bio, str) or len(bio) > 200:
            errors.append('Bio cannot exceed 200 characters')
        else:
            updates['bio'] = bio
    if 'avatar' in data:
        avatar = (data['avatar'] or '').strip() if isinstance(data['avatar'], (str, type(None))) else None
        if avatar is None or (avatar and not URL_RE.match(avatar)):
            errors.append('Avatar must be a valid URL')
        else:
            updates['avatar'] = avatar or None
    _raise_if(errors)
    if not updates:
        raise ValidationError('No valid updates provided')
    return updates


def validate_change_password(data: Optional[dict]) -> Dict[str, str]:
    data = data or {}
    errors: List[str] = []
    if not data.get('current_password'):
        errors.append('Current password is required')
    _check_password(data.get('new_password'), errors, label='New password')
    _raise_if(errors)
    return {'current_password': data['current_password'], 'new_password': data['new_password']}


def _non_negative_int(data: dict, key: str, errors: List[str]) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        errors.append(f'{key} must be a non-negative number')
        return None
    return value


def validate_game_session_create(data: Optional[dict]) -> Dict[str, Any]:
    data = data or {}
    errors: List[str] = []
    names = {}
    for key in ('player1_name', 'player2_name'):
        value = data.get(key)
        if not isinstance(value, str):
            errors.append(f'{key} is required and must be a string')
        elif not value.strip():
            errors.append(f'{key} cannot be empty')
        elif len(value.strip()) > PLAYER_NAME_MAX_LENGTH:
            errors.append(f'{key} must be {PLAYER_NAME_MAX_LENGTH} characters or less')
        else:
            names[key] = value.strip()
    if len(names) == 2 and names['player1_name'] == names['player2_name']:
        errors.append('Player names must be different')

    counters = {}
    for key in ('player1_wins', 'player2_wins', 'draws', 'total_rounds'):
        value = _non_negative_int(data, key, errors)
        counters[key] = value or 0
    if not errors and counters['player1_wins'] + counters['player2_wins'] + counters['draws'] != counters['total_rounds']:
        errors.append('player1_wins + player2_wins + draws must equal total_rounds')
    _raise_if(errors)
    return {**names, **counters}


def validate_game_session_update(data: Optional[dict]) -> Dict[str, int]:
    data = data or {}
    errors: List[str] = []
    updates = {}
    for key in ('player1_wins', 'player2_wins', 'draws', 'total_rounds'):
        value = _non_negative_int(data, key, errors)
        if value is not None:
            updates[key] = value
    _raise_if(errors)
    if not updates:
        raise ValidationError('No valid updates provided')
    return updates


def parse_session_id(raw: str) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError('Invalid game session ID')
    if value < 1:
        raise ValidationError('Invalid game session ID')
    return value


def _int_arg(args, key: str, default: int, minimum: int, maximum: Optional[int], errors: List[str]) -> int:
    raw = args.get(key)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        errors.append(f'{key} must be an integer')
        return default
    if value < minimum or (maximum is not None and value > maximum):
        if maximum is None:
            errors.append(f'{key} must be at least {minimum}')
        else:
            errors.append(f'{key} must be between {minimum} and {maximum}')
        return default
    return value


def parse_leaderboard_query(args) -> Dict[str, Any]:
    errors: List[str] = []
    sort_by = args.get('sort_by', 'wins')
    if sort_by not in LEADERBOARD_SORTS:
        errors.append(f"sort_by must be one of: {', '.join(LEADERBOARD_SORTS)}")
    order = args.get('order', 'desc')
    if order not in SORT_ORDERS:
        errors.append('order must be either asc or desc')
    page = _int_arg(args, 'page', 1, 1, None, errors)
    limit = _int_arg(args, 'limit', 50, 1, 100, errors)
    min_games = _int_arg(args, 'min_games', 0, 0, None, errors)
    _raise_if(errors)
    return {
        'sort_by': sort_by,
        'order': order,
        'limit': limit,
        'skip': (page - 1) * limit,
        'min_games': min_games,
    }


def parse_session_list_query(args) -> Dict[str, Any]:
    # Out-of-range paging values are clamped rather than rejected
    try:
        page = max(1, int(args.get('page', 1)))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(50, max(1, int(args.get('limit', 10))))
    except (TypeError, ValueError):
        limit = 10
    filters: Dict[str, Any] = {}
    session_type = args.get('session_type')
    if session_type in ('guest', 'authenticated', 'mixed'):
        filters['session_type'] = session_type
    if args.get('is_active') is not None:
        filters['is_active'] = args.get('is_active') == 'true'
    return {'page': page, 'limit': limit, 'filters': filters}
