import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from tictactoe.errors import (
    GAME_NOT_ACTIVE,
    INVALID_TARGET,
    NOT_IN_ROOM,
    NOT_YOUR_TURN,
    ROOM_FULL,
    ROOM_NOT_FOUND,
    ROUND_IN_PROGRESS,
    StateConflictError,
    ValidationError,
)
from tictactoe.validation import clean_player_name
from .board import BOARD_SIZE, SYMBOLS, check_winner, is_board_full, other_symbol
from .reconciliation import SessionReconciler
from .rooms import MAX_PLAYERS, Player, Room, RoomRegistry

logger = logging.getLogger(__name__)


@dataclass
class Broadcast:
    """An event the gateway must emit; ``to`` is a room code or a connection id."""

    event: str
    payload: dict
    to: str
    skip_connection: Optional[str] = None


@dataclass
class Outcome:
    ack: dict
    room_code: Optional[str] = None
    join: bool = False
    broadcasts: List[Broadcast] = field(default_factory=list)


def _ok(**extra) -> dict:
    return {'success': True, **extra}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MatchCoordinator:
    """Per-room state machine for live matches.

    Every operation that reads or mutates a room holds that room's lock for
    its whole duration, storage round trips included, so two intents for the
    same room are applied one after the other. Operations return an
    :class:`Outcome` describing the acknowledgement and the broadcasts; they
    raise :class:`~tictactoe.errors.GameError` subclasses to reject an intent
    without changing any state.
    """

    def __init__(
        self,
        registry: RoomRegistry,
        reconciler: SessionReconciler,
        idle_timeout_sec: int = 1800,
        chat_max_length: int = 500,
    ):
        self.registry = registry
        self.reconciler = reconciler
        self.idle_timeout_sec = idle_timeout_sec
        self.chat_max_length = chat_max_length

    # ---- helpers ----

    def _room_or_conflict(self, room_code: Optional[str], message: str, code: str) -> Room:
        room = self.registry.get(room_code)
        if room is None or room.torn_down:
            raise StateConflictError(message, code)
        return room

    def _member(self, room: Room, connection_id: str) -> Player:
        player = room.player_by_connection(connection_id)
        if player is None:
            raise StateConflictError('You are not in this room', NOT_IN_ROOM)
        return player

    def _with_session(self, room: Room, payload: dict) -> dict:
        # A failed fetch omits the snapshot instead of holding up the broadcast
        snapshot = self.reconciler.snapshot(room.session_id)
        if snapshot is not None:
            payload['game_session'] = snapshot
        return payload

    def _room_payload(self, room: Room) -> dict:
        return {
            'room_code': room.code,
            'players': [p.to_dict() for p in room.players],
            'game_state': room.game_state(),
        }

    def _seat(self, room: Room, player: Player) -> None:
        """Fill the open seat and decide which round the pair plays next."""
        returning = room.session_roster is not None and player.name in room.session_roster
        room.players.append(player)
        if room.round_count == 0:
            room.round_count = 1
            room.is_active = True
        elif returning:
            room.is_active = not room.is_finished
        else:
            # A new pairing never inherits the previous opponent's board
            if room.is_finished:
                room.round_count += 1
            room.reset_round()
        room.ready.clear()
        self.reconciler.ensure_created(room)

    @contextmanager
    def serialized(self, room_code: Optional[str] = None, connection_id: Optional[str] = None):
        """Hold the lock of the room an intent targets.

        The gateway applies the intent and emits its broadcasts inside this
        block, so clients of one room see events in the order they were
        applied. Yields the room, or ``None`` when there is none yet.
        """
        room = self.registry.get(room_code)
        if room is None and connection_id is not None:
            room = self.registry.find_by_connection(connection_id)
        if room is None:
            yield None
            return
        with room.lock:
            yield room

    # ---- lifecycle ----

    def create_room(self, connection_id: str, player_name, account_id: Optional[int] = None) -> Outcome:
        name = clean_player_name(player_name)
        code, room = self.registry.create(connection_id, name, account_id)
        logger.info(f"[room-created] room={code} player={name} guest={account_id is None}")
        return Outcome(ack=_ok(room_code=code, assigned_symbol='X'), room_code=code, join=True)

    def join_room(self, connection_id: str, room_code, player_name, account_id: Optional[int] = None) -> Outcome:
        name = clean_player_name(player_name)
        room = self._room_or_conflict(room_code, 'Room not found', ROOM_NOT_FOUND)
        with room.lock:
            if room.torn_down:
                raise StateConflictError('Room not found', ROOM_NOT_FOUND)
            if room.is_full:
                raise StateConflictError('Room is full', ROOM_FULL)
            if any(p.name == name for p in room.players):
                raise ValidationError('Player names must be different')

            taken = {p.symbol for p in room.players}
            symbol = 'O' if 'O' not in taken else 'X'
            self._seat(room, Player(
                connection_id=connection_id,
                name=name,
                symbol=symbol,
                account_id=account_id,
            ))
            logger.info(f"[room-joined] room={room.code} player={name} symbol={symbol} session={room.session_id}")
            payload = self._with_session(room, self._room_payload(room))
            return Outcome(
                ack=_ok(room_code=room.code, assigned_symbol=symbol),
                room_code=room.code,
                join=True,
                broadcasts=[Broadcast('game_ready', payload, to=room.code)],
            )

    def rejoin_room(self, connection_id: str, room_code, player_name, symbol, account_id: Optional[int] = None) -> Outcome:
        """Re-associate a new connection with a named seat, or late-join an open one."""
        name = clean_player_name(player_name)
        if symbol not in SYMBOLS:
            raise ValidationError('Symbol must be X or O')
        room = self._room_or_conflict(room_code, 'Room not found', ROOM_NOT_FOUND)
        with room.lock:
            if room.torn_down:
                raise StateConflictError('Room not found', ROOM_NOT_FOUND)
            existing = next((p for p in room.players if p.name == name and p.symbol == symbol), None)
            if existing is not None:
                previous = existing.connection_id
                existing.connection_id = connection_id
                logger.info(f"[room-rejoined] room={room.code} player={name} old_sid={previous} new_sid={connection_id}")
                payload = self._with_session(room, self._room_payload(room))
                return Outcome(
                    ack=_ok(),
                    room_code=room.code,
                    join=True,
                    broadcasts=[Broadcast('game_ready', payload, to=connection_id)],
                )

            if any(p.name == name for p in room.players):
                raise ValidationError('Player names must be different')
            if len(room.players) == 1 and room.player_by_symbol(symbol) is None:
                self._seat(room, Player(
                    connection_id=connection_id,
                    name=name,
                    symbol=symbol,
                    account_id=account_id,
                ))
                logger.info(f"[room-late-join] room={room.code} player={name} symbol={symbol}")
                payload = self._with_session(room, self._room_payload(room))
                return Outcome(
                    ack=_ok(),
                    room_code=room.code,
                    join=True,
                    broadcasts=[Broadcast('game_ready', payload, to=room.code)],
                )

            raise StateConflictError('Room is full or invalid', ROOM_FULL)

    # ---- play ----

    def make_move(self, connection_id: str, room_code, position) -> Outcome:
        if isinstance(position, bool) or not isinstance(position, int):
            raise ValidationError('Position must be an integer')
        room = self._room_or_conflict(room_code, 'Game not active', GAME_NOT_ACTIVE)
        with room.lock:
            if room.torn_down or not room.is_active:
                raise StateConflictError('Game not active', GAME_NOT_ACTIVE)
            player = room.player_by_connection(connection_id)
            if player is None or player.symbol != room.current_turn:
                raise StateConflictError('Not your turn', NOT_YOUR_TURN)
            if not 0 <= position < BOARD_SIZE:
                raise StateConflictError('Position out of range', INVALID_TARGET)
            if room.board[position] is not None:
                raise StateConflictError('Position already taken', INVALID_TARGET)

            room.board[position] = player.symbol
            room.moves.append({'player': player.symbol, 'position': position, 'timestamp': _now_iso()})
            room.current_turn = other_symbol(player.symbol)

            winner = check_winner(room.board)
            draw = winner is None and is_board_full(room.board)
            payload = {
                'position': position,
                'player': player.symbol,
                'game_state': None,
            }
            if winner or draw:
                room.winner = winner
                room.is_draw = draw
                room.is_active = False
                logger.info(f"[round-over] room={room.code} round={room.round_count} winner={winner} draw={draw}")
                self.reconciler.record_round(room, winner, room.board, room.moves)
                payload['game_state'] = room.game_state()
                self._with_session(room, payload)
            else:
                payload['game_state'] = room.game_state()

            return Outcome(
                ack=_ok(),
                room_code=room.code,
                broadcasts=[Broadcast('move_made', payload, to=room.code)],
            )

    def player_ready(self, connection_id: str, room_code) -> Outcome:
        room = self._room_or_conflict(room_code, 'Room not found', ROOM_NOT_FOUND)
        with room.lock:
            player = self._member(room, connection_id)
            if not room.is_finished:
                if room.is_active:
                    raise StateConflictError('Round still in progress', ROUND_IN_PROGRESS)
                raise StateConflictError('Game not active', GAME_NOT_ACTIVE)

            room.ready.add(player.player_id)
            logger.info(f"[player-ready] room={room.code} player={player.name} ready={len(room.ready)}/{MAX_PLAYERS}")
            broadcasts = [Broadcast('player_ready_status', {
                'ready_count': len(room.ready),
                'total_players': len(room.players),
                'player_ready': player.name,
            }, to=room.code)]
            if len(room.ready) == MAX_PLAYERS and len(room.players) == MAX_PLAYERS:
                broadcasts.append(self._advance_round(room))
            return Outcome(ack=_ok(), room_code=room.code, broadcasts=broadcasts)

    def new_round(self, connection_id: str, room_code) -> Outcome:
        """Start the next round immediately, without the ready handshake."""
        room = self._room_or_conflict(room_code, 'Room not found', ROOM_NOT_FOUND)
        with room.lock:
            self._member(room, connection_id)
            if room.is_active:
                raise StateConflictError('Round still in progress', ROUND_IN_PROGRESS)
            if len(room.players) < MAX_PLAYERS:
                raise StateConflictError('Game not active', GAME_NOT_ACTIVE)
            return Outcome(ack=_ok(), room_code=room.code, broadcasts=[self._advance_round(room)])

    def _advance_round(self, room: Room) -> Broadcast:
        # X always opens, so swapping hands the first move to the other player
        if room.round_count > 0 and len(room.players) == MAX_PLAYERS:
            first, second = room.players
            first.symbol, second.symbol = second.symbol, first.symbol
        room.round_count += 1
        room.reset_round()
        opener = room.player_by_symbol('X')
        logger.info(f"[round-started] room={room.code} round={room.round_count} x={opener.name if opener else None}")
        payload = self._with_session(room, self._room_payload(room))
        return Broadcast('new_round_started', payload, to=room.code)

    def send_message(self, connection_id: str, room_code, message) -> Outcome:
        room = self._room_or_conflict(room_code, 'Room not found', ROOM_NOT_FOUND)
        if not isinstance(message, str) or not message.strip():
            raise ValidationError('Message cannot be empty')
        text = message.strip()
        if len(text) > self.chat_max_length:
            raise ValidationError(f'Message must be {self.chat_max_length} characters or less')
        with room.lock:
            player = self._member(room, connection_id)
            chat = {
                'id': uuid.uuid4().hex,
                'player_name': player.name,
                'player_symbol': player.symbol,
                'message': text,
                'timestamp': _now_iso(),
            }
        return Outcome(ack=_ok(), room_code=room.code, broadcasts=[Broadcast('new_message', chat, to=room.code)])

    # ---- teardown ----

    def disconnect(self, connection_id: str) -> Outcome:
        room = self.registry.find_by_connection(connection_id)
        if room is None:
            return Outcome(ack={})
        with room.lock:
            player = room.player_by_connection(connection_id)
            if player is None:
                return Outcome(ack={})
            room.players.remove(player)
            room.ready.discard(player.player_id)

            if room.players:
                logger.info(f"[player-left] room={room.code} player={player.name} remaining={len(room.players)}")
                return Outcome(ack={}, room_code=room.code, broadcasts=[Broadcast(
                    'player_disconnected',
                    {'player_name': player.name, 'players': [p.to_dict() for p in room.players]},
                    to=room.code,
                    skip_connection=connection_id,
                )])

            self._tear_down(room, reason='empty')
            return Outcome(ack={}, room_code=room.code)

    def _tear_down(self, room: Room, reason: str) -> None:
        self.registry.delete(room.code)
        logger.info(f"[room-closed] room={room.code} reason={reason} session={room.session_id}")
        if room.session_id is not None:
            self.reconciler.cleanup_if_empty(room.session_id)

    def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        now = now or datetime.now(timezone.utc)
        evicted = []
        for room in self.registry.idle_rooms(now, self.idle_timeout_sec):
            with room.lock:
                if room.torn_down:
                    continue
                self._tear_down(room, reason='idle')
                evicted.append(room.code)
        return evicted

    def shutdown(self) -> None:
        logger.info(f"[coordinator-shutdown] rooms={len(self.registry)}")
        self.registry.clear()
