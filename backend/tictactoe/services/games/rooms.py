import logging
import random
import string
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from .board import empty_board

logger = logging.getLogger(__name__)

MAX_PLAYERS = 2
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits


class RoomState(str, Enum):
    WAITING_FOR_PLAYER2 = "waiting_for_player2"
    ACTIVE_ROUND = "active_round"
    ROUND_OVER = "round_over"
    AWAITING_READY = "awaiting_ready"
    TORN_DOWN = "torn_down"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Player:
    connection_id: str
    name: str
    symbol: str
    account_id: Optional[int] = None
    player_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self):
        return {
            'id': self.player_id,
            'name': self.name,
            'symbol': self.symbol,
            'is_guest': self.account_id is None,
        }


@dataclass
class Room:
    code: str
    players: List[Player] = field(default_factory=list)
    board: List[Optional[str]] = field(default_factory=empty_board)
    current_turn: str = 'X'
    winner: Optional[str] = None
    is_draw: bool = False
    is_active: bool = False
    round_count: int = 0
    ready: Set[str] = field(default_factory=set)
    session_id: Optional[int] = None
    session_roster: Optional[Tuple[str, ...]] = None
    moves: List[dict] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    torn_down: bool = False
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def state(self) -> RoomState:
        if self.torn_down:
            return RoomState.TORN_DOWN
        if self.is_active:
            return RoomState.ACTIVE_ROUND
        if self.is_finished:
            return RoomState.AWAITING_READY if self.ready else RoomState.ROUND_OVER
        return RoomState.WAITING_FOR_PLAYER2

    @property
    def is_full(self) -> bool:
        return len(self.players) >= MAX_PLAYERS

    @property
    def is_finished(self) -> bool:
        return self.winner is not None or self.is_draw

    def player_by_connection(self, connection_id: str) -> Optional[Player]:
        for p in self.players:
            if p.connection_id == connection_id:
                return p
        return None

    def player_by_symbol(self, symbol: str) -> Optional[Player]:
        for p in self.players:
            if p.symbol == symbol:
                return p
        return None

    def reset_round(self) -> None:
        self.board = empty_board()
        self.current_turn = 'X'
        self.winner = None
        self.is_draw = False
        self.is_active = True
        self.ready.clear()
        self.moves = []

    def game_state(self):
        return {
            'board': list(self.board),
            'current_turn': self.current_turn,
            'winner': self.winner,
            'is_draw': self.is_draw,
            'is_active': self.is_active,
            'round': self.round_count,
            'state': self.state.value,
        }


class RoomRegistry:
    """Live rooms keyed by their short join code.

    One registry is built per application in ``create_app`` and cleared on
    shutdown. The map itself is guarded by a lock; room contents are guarded
    by each room's own lock, which callers take before touching the registry.
    """

    def __init__(self, code_length: int = 6):
        self.code_length = code_length
        self._rooms: Dict[str, Room] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    def _generate_code(self) -> str:
        while True:
            code = ''.join(random.choices(ROOM_CODE_ALPHABET, k=self.code_length))
            if code not in self._rooms:
                return code
            logger.info(f"[room-code-collision] code={code}")

    def create(self, connection_id: str, player_name: str, account_id: Optional[int] = None) -> Tuple[str, Room]:
        with self._lock:
            code = self._generate_code()
            room = Room(code=code)
            room.players.append(Player(
                connection_id=connection_id,
                name=player_name,
                symbol='X',
                account_id=account_id,
            ))
            self._rooms[code] = room
        return code, room

    def get(self, code: Optional[str]) -> Optional[Room]:
        if not code:
            return None
        return self._rooms.get(code.strip().upper())

    def delete(self, code: str) -> Optional[Room]:
        with self._lock:
            room = self._rooms.pop(code.upper(), None)
        if room is not None:
            room.torn_down = True
        return room

    def find_by_connection(self, connection_id: str) -> Optional[Room]:
        with self._lock:
            rooms = list(self._rooms.values())
        for room in rooms:
            if room.player_by_connection(connection_id):
                return room
        return None

    def idle_rooms(self, now: datetime, max_age_sec: float) -> List[Room]:
        with self._lock:
            rooms = list(self._rooms.values())
        return [r for r in rooms if (now - r.created_at).total_seconds() > max_age_sec]

    def codes(self) -> List[str]:
        with self._lock:
            return list(self._rooms)

    def linked_session_ids(self) -> Set[int]:
        with self._lock:
            return {r.session_id for r in self._rooms.values() if r.session_id is not None}

    def clear(self) -> None:
        with self._lock:
            rooms = list(self._rooms.values())
            self._rooms.clear()
        for room in rooms:
            room.torn_down = True
