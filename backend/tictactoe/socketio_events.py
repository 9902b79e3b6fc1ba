from typing import Any, Callable

from flask import current_app, request
from flask_socketio import emit, join_room

from tictactoe import socketio
from tictactoe.auth import resolve_account_id
from tictactoe.errors import GameError
from tictactoe.messages import parse_message
from tictactoe.services.games.coordinator import Outcome


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _relay(outcome: Outcome) -> None:
    """Join the acting connection to its room, then emit every broadcast."""
    namespace = request.namespace  # type: ignore
    if outcome.join and outcome.room_code:
        join_room(outcome.room_code)
    for b in outcome.broadcasts:
        socketio.emit(b.event, b.payload, to=b.to, skip_sid=b.skip_connection, namespace=namespace)


def _dispatch(event: str, args, operation: Callable[[str, Any], Outcome]) -> dict:
    sid = _get_sid()
    coordinator = current_app.coordinator
    try:
        message = parse_message(event, args)
        # Emit before releasing the room so the next intent's events follow ours
        with coordinator.serialized(getattr(message, 'room_code', None)):
            outcome = operation(sid, message)
            _relay(outcome)
    except GameError as exc:
        current_app.logger.info(f"[intent-rejected] event={event} sid={sid} code={exc.code} error={exc.message}")
        return {'success': False, **exc.to_dict()}
    return outcome.ack


def handle_connect(auth=None):
    current_app.logger.info(f"[connect] sid={_get_sid()}")
    emit('connected', {'message': 'Connected to game server'})


def handle_disconnect(reason=None):
    sid = _get_sid()
    current_app.logger.info(f"[disconnect] sid={sid} reason={reason}")
    coordinator = current_app.coordinator
    with coordinator.serialized(connection_id=sid):
        _relay(coordinator.disconnect(sid))


def handle_create_room(*args):
    return _dispatch('create_room', args, lambda sid, m: current_app.coordinator.create_room(
        sid, m.player_name, resolve_account_id(m.auth_token),
    ))


def handle_join_room(*args):
    return _dispatch('join_room', args, lambda sid, m: current_app.coordinator.join_room(
        sid, m.room_code, m.player_name, resolve_account_id(m.auth_token),
    ))


def handle_join_existing_room(*args):
    return _dispatch('join_existing_room', args, lambda sid, m: current_app.coordinator.rejoin_room(
        sid, m.room_code, m.player_name, m.symbol, resolve_account_id(m.auth_token),
    ))


def handle_make_move(*args):
    return _dispatch('make_move', args, lambda sid, m: current_app.coordinator.make_move(
        sid, m.room_code, m.position,
    ))


def handle_player_ready(*args):
    return _dispatch('player_ready', args, lambda sid, m: current_app.coordinator.player_ready(sid, m.room_code))


def handle_new_round(*args):
    return _dispatch('new_round', args, lambda sid, m: current_app.coordinator.new_round(sid, m.room_code))


def handle_send_message(*args):
    return _dispatch('send_message', args, lambda sid, m: current_app.coordinator.send_message(
        sid, m.room_code, m.message,
    ))


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register the live game intents on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('create_room', handle_create_room, namespace=namespace)
    socketio.on_event('join_room', handle_join_room, namespace=namespace)
    socketio.on_event('join_existing_room', handle_join_existing_room, namespace=namespace)
    socketio.on_event('make_move', handle_make_move, namespace=namespace)
    socketio.on_event('player_ready', handle_player_ready, namespace=namespace)
    socketio.on_event('new_round', handle_new_round, namespace=namespace)
    socketio.on_event('send_message', handle_send_message, namespace=namespace)
