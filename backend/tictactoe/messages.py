"""Typed intents received on the live game channel.

Clients send either a single JSON object (snake_case or camelCase keys) or
the older positional form, e.g. ``make_move('ABC123', 4)``. Both are
normalized here into one frozen dataclass per intent so the coordinator
never inspects raw payloads.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from tictactoe.errors import ValidationError


@dataclass(frozen=True)
class CreateRoom:
    player_name: Any
    auth_token: Optional[str] = None


@dataclass(frozen=True)
class JoinRoom:
    room_code: str
    player_name: Any
    auth_token: Optional[str] = None


@dataclass(frozen=True)
class JoinExistingRoom:
    room_code: str
    player_name: Any
    symbol: str
    auth_token: Optional[str] = None


@dataclass(frozen=True)
class MakeMove:
    room_code: str
    position: int


@dataclass(frozen=True)
class PlayerReady:
    room_code: str


@dataclass(frozen=True)
class NewRound:
    room_code: str


@dataclass(frozen=True)
class SendMessage:
    room_code: str
    message: Any


Message = Union[CreateRoom, JoinRoom, JoinExistingRoom, MakeMove, PlayerReady, NewRound, SendMessage]

ALIASES = {
    'roomCode': 'room_code',
    'playerName': 'player_name',
    'authToken': 'auth_token',
    'token': 'auth_token',
    'playerSymbol': 'symbol',
    'assignedSymbol': 'symbol',
}

# Field order of the positional form for each intent
POSITIONAL = {
    'create_room': ('player_name', 'auth_token'),
    'join_room': ('room_code', 'player_name', 'auth_token'),
    'join_existing_room': ('room_code', 'player_name', 'symbol', 'auth_token'),
    'make_move': ('room_code', 'position'),
    'player_ready': ('room_code',),
    'new_round': ('room_code',),
    'send_message': ('room_code', 'message'),
}


def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
    fields = {}
    for key, value in data.items():
        fields[ALIASES.get(key, key)] = value
    return fields


def _fields(event: str, args: Sequence[Any]) -> Dict[str, Any]:
    names = POSITIONAL[event]
    if len(args) == 1 and isinstance(args[0], dict):
        return _normalize(args[0])
    # A bare room code for intents whose only field is the room
    if len(names) == 1 and len(args) == 1 and isinstance(args[0], str):
        return {names[0]: args[0]}
    if args and not any(isinstance(a, dict) for a in args):
        return dict(zip(names, args))
    raise ValidationError('Invalid message payload')


def _room_code(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError('Room code is required')
    return value.strip().upper()


def _position(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError('Position must be an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip('-').isdigit():
        return int(value.strip())
    raise ValidationError('Position must be an integer')


def _symbol(value: Any) -> str:
    if not isinstance(value, str) or value.strip().upper() not in ('X', 'O'):
        raise ValidationError('Symbol must be X or O')
    return value.strip().upper()


def _token(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def parse_message(event: str, args: Tuple[Any, ...]) -> Message:
    if event not in POSITIONAL:
        raise ValidationError(f'Unknown intent {event}')
    data = _fields(event, args)

    if event == 'create_room':
        return CreateRoom(player_name=data.get('player_name'), auth_token=_token(data.get('auth_token')))
    if event == 'join_room':
        return JoinRoom(
            room_code=_room_code(data.get('room_code')),
            player_name=data.get('player_name'),
            auth_token=_token(data.get('auth_token')),
        )
    if event == 'join_existing_room':
        return JoinExistingRoom(
            room_code=_room_code(data.get('room_code')),
            player_name=data.get('player_name'),
            symbol=_symbol(data.get('symbol')),
            auth_token=_token(data.get('auth_token')),
        )
    if event == 'make_move':
        return MakeMove(room_code=_room_code(data.get('room_code')), position=_position(data.get('position')))
    if event == 'player_ready':
        return PlayerReady(room_code=_room_code(data.get('room_code')))
    if event == 'new_round':
        return NewRound(room_code=_room_code(data.get('room_code')))
    return SendMessage(room_code=_room_code(data.get('room_code')), message=data.get('message'))
